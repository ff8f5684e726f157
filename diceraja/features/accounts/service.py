"""
Account domain service.
- register_user / register_gamer
- authenticate (login by email + password + role)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from diceraja.core.auth import hash_password, verify_password
from diceraja.core.config import settings
from diceraja.core.database import get_db_session
from diceraja.core.errors import AuthenticationError, ValidationError
from diceraja.core.logging import log_event
from diceraja.features.accounts.repository import repository_for, repository_for_role
from diceraja.models.account import Account, AccountKind

DUPLICATE_FIELD = "Duplicate field value entered"
TERMS_REQUIRED = "You must accept the terms and policy to register as a gamer"
INVALID_CREDENTIALS = "Invalid credentials"


def _base_values(*, name: str, email: str, phone: str, password: str, state: str, city: str, now: datetime) -> dict:
    return {
        "id": str(uuid4()),
        "name": name.strip(),
        "email": email.strip().lower(),
        "phone": phone,
        "password_hash": hash_password(password),
        "state": state,
        "city": city,
        "tokens": 0,
        "created_at": now,
    }


def _insert(kind: AccountKind, values: dict) -> Account:
    repo = repository_for(kind)
    try:
        with get_db_session() as session:
            if repo.email_taken(session, values["email"]):
                raise ValidationError(DUPLICATE_FIELD)
            account = repo.insert(session, values)
    except IntegrityError:
        # Lost a race on the unique email index
        raise ValidationError(DUPLICATE_FIELD)

    log_event("info", "auth.registered", account_id=account.id, account_kind=kind.value, event_type="register")
    return account


def register_user(*, name: str, email: str, phone: str, password: str, state: str, city: str, now: Optional[datetime] = None) -> Account:
    """Create a standard account. The role is always "user" regardless of input."""
    moment = now or datetime.now(timezone.utc)
    values = _base_values(name=name, email=email, phone=phone, password=password, state=state, city=city, now=moment)
    values["role"] = "user"
    return _insert(AccountKind.STANDARD, values)


def register_gamer(
    *,
    name: str,
    email: str,
    phone: str,
    password: str,
    state: str,
    city: str,
    group: str,
    terms_accepted: bool,
    policy_accepted: bool,
    now: Optional[datetime] = None,
) -> Account:
    if not terms_accepted or not policy_accepted:
        raise ValidationError(TERMS_REQUIRED)

    moment = now or datetime.now(timezone.utc)
    values = _base_values(name=name, email=email, phone=phone, password=password, state=state, city=city, now=moment)
    values.update(
        {
            "role": "gamer",
            "group": group,
            "terms_accepted": terms_accepted,
            "policy_accepted": policy_accepted,
            "joining_fees": settings.GAMER_JOINING_FEE,
            "joining_date": moment,
            "expiry_date": moment + timedelta(days=settings.GAMER_MEMBERSHIP_DAYS),
            "is_active": True,
        }
    )
    return _insert(AccountKind.GAMER, values)


def authenticate(email: Optional[str], password: Optional[str], role: Optional[str] = None, now: Optional[datetime] = None) -> Account:
    """
    Verify credentials against the collection selected by role.

    Raises:
        ValidationError: email or password missing
        AuthenticationError: unknown email, wrong password, or expired gamer
    """
    if not email or not password:
        raise ValidationError("Please provide an email and password")

    repo = repository_for_role(role)
    with get_db_session() as session:
        found = repo.find_credentials(session, email.strip().lower())

    if found is None:
        log_event("warning", "auth.login_failed", account_kind=repo.kind.value, error_code="unknown_email")
        raise AuthenticationError(INVALID_CREDENTIALS)

    account, password_hash = found
    if repo.kind is AccountKind.GAMER and not account.is_active(now):
        log_event("warning", "auth.login_failed", account_id=account.id, account_kind=repo.kind.value, error_code="expired")
        raise AuthenticationError("Your gamer account has expired")

    if not verify_password(password, password_hash):
        log_event("warning", "auth.login_failed", account_id=account.id, account_kind=repo.kind.value, error_code="bad_password")
        raise AuthenticationError(INVALID_CREDENTIALS)

    return account
