from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from diceraja.core.auth import create_access_token, get_current_account
from diceraja.features.accounts import service as accounts
from diceraja.models.account import Account, GamerGroup

router = APIRouter(prefix="/api/auth")

EMAIL_PATTERN = r"^\w+([\.-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,3})+$"


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., pattern=r"^[0-9]{10}$")
    password: str = Field(..., min_length=6)
    state: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)


class RegisterGamerIn(RegisterIn):
    model_config = ConfigDict(populate_by_name=True)

    group: GamerGroup
    terms_accepted: bool = Field(False, alias="termsAccepted")
    policy_accepted: bool = Field(False, alias="policyAccepted")


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


def _token_response(account: Account, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": True,
            "token": create_access_token(account),
            "user": {
                "id": account.id,
                "name": account.name,
                "email": account.email,
                "role": account.role,
            },
        },
    )


@router.post("/register")
def register_user(body: RegisterIn):
    account = accounts.register_user(
        name=body.name,
        email=body.email,
        phone=body.phone,
        password=body.password,
        state=body.state,
        city=body.city,
    )
    return _token_response(account, 201)


@router.post("/register-gamer")
def register_gamer(body: RegisterGamerIn):
    account = accounts.register_gamer(
        name=body.name,
        email=body.email,
        phone=body.phone,
        password=body.password,
        state=body.state,
        city=body.city,
        group=body.group,
        terms_accepted=body.terms_accepted,
        policy_accepted=body.policy_accepted,
    )
    return _token_response(account, 201)


@router.post("/login")
def login(body: LoginIn):
    account = accounts.authenticate(body.email, body.password, body.role)
    return _token_response(account, 200)


@router.get("/me")
def get_me(account: Account = Depends(get_current_account)):
    return {"success": True, "data": account.public_dict()}


@router.get("/logout")
def logout(account: Account = Depends(get_current_account)):
    # Tokens are stateless; the client discards its copy
    return {"success": True, "data": {}}
