"""
Auth utilities for the Dice Raja API.

Passwords are bcrypt-hashed; sessions are HS256 JWTs carrying the account id
and role. `get_current_account` is the FastAPI dependency that turns a Bearer
token into an Account (users first, then gamers).
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

import bcrypt
import jwt
from fastapi import Depends, Request

from diceraja.core.config import settings
from diceraja.core.database import get_db_session
from diceraja.core.errors import AuthenticationError, PermissionError
from diceraja.models.account import Account

logger = logging.getLogger("diceraja")

NOT_AUTHORIZED = "Not authorized to access this route"
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _secret() -> str:
    secret = settings.JWT_SECRET
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    return secret


def create_access_token(account: Account, now: Optional[datetime] = None) -> str:
    """Sign a session token for the account."""
    issued = now or datetime.now(timezone.utc)
    payload = {
        "id": account.id,
        "role": account.role,
        "iat": issued,
        "exp": issued + timedelta(days=settings.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, _secret(), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify a session token and return its claims.

    Raises:
        AuthenticationError: Invalid, expired or malformed token
    """
    try:
        payload = jwt.decode(token, _secret(), algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("auth.token_expired")
        raise AuthenticationError(NOT_AUTHORIZED)
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError(NOT_AUTHORIZED)

    if not payload.get("id"):
        raise AuthenticationError(NOT_AUTHORIZED)
    return payload


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer"):
        return None
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or not parts[1].strip():
        return None
    return parts[1].strip()


def get_current_account(request: Request) -> Account:
    """
    Resolve the authenticated principal from the Authorization header.

    Raises:
        AuthenticationError 401: Missing/invalid token or unknown account
    """
    from diceraja.features.accounts.repository import find_account

    token = _bearer_token(request)
    if not token:
        raise AuthenticationError(NOT_AUTHORIZED)

    payload = decode_access_token(token)
    with get_db_session() as session:
        account = find_account(session, str(payload["id"]))

    if account is None:
        raise AuthenticationError(NOT_AUTHORIZED)

    request.state.account_id = account.id
    request.state.account_kind = account.kind.value
    return account


def require_roles(*roles: str) -> Callable[..., Account]:
    """Dependency factory limiting a route to the given roles."""

    def _guard(account: Account = Depends(get_current_account)) -> Account:
        if account.role not in roles:
            raise PermissionError(f"User role {account.role} is not authorized to access this route")
        return account

    return _guard
