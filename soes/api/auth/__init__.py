from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, EmailStr, Field

from soes.connections.mongo import Database, get_database
from soes.models.user import User
from soes.utils.base import Role
from soes.utils.base.responses import success
from soes.services.auth import (
    UserStore,
    TokenPair,
    create_tokens,
    decode_token,
    get_current_user,
)


router = APIRouter()


def _session_payload(user: User, tokens: TokenPair) -> dict:
    return {**user.to_output(fields=["name", "email", "role"]), **tokens.model_dump()}


class RegisterBody(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = Role.STUDENT

@router.post("/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_database)) -> dict:
    """PUBLIC: Register an admin or student and log them in."""
    user = UserStore(db).register(name=body.name, email=body.email, password=body.password, role=body.role)
    return success(_session_payload(user, create_tokens(user)), message="User registered successfully")


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_database)) -> dict:
    user = UserStore(db).authenticate(body.email, body.password)
    # Avoid leaking whether the email exists
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return success(_session_payload(user, create_tokens(user)), message="Login successful")


class RefreshBody(BaseModel):
    refresh_token: str

@router.post("/refresh", response_model=TokenPair)
def refresh_token(body: RefreshBody, db: Database = Depends(get_database)) -> TokenPair:
    user_id, token_version = decode_token(body.refresh_token, expected_type="refresh")
    # Ensure the user exists and token version matches (not logged out)
    user = UserStore(db).find(user_id)
    if not user or user.token_version != token_version:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return create_tokens(user)


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user), db: Database = Depends(get_database)) -> dict:
    # Bump token_version so existing tokens become invalid immediately
    UserStore(db).bump_token_version(current_user)
    return success(message="Logged out")


@router.get("/profile")
def get_profile(current_user: User = Depends(get_current_user)) -> dict:
    return success(current_user.to_output(fields=["name", "email", "role", "created_at"]))


class ProfileBody(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    email: EmailStr | None = None
    password: str | None = Field(default=None, min_length=6)

@router.put("/profile")
def update_profile(
    body: ProfileBody,
    current_user: User = Depends(get_current_user),
    db: Database = Depends(get_database),
) -> dict:
    user = UserStore(db).update_profile(current_user, name=body.name, email=body.email, password=body.password)
    return success(user.to_output(fields=["name", "email", "role"]), message="Profile updated successfully")


@router.delete("/profile")
def delete_account(current_user: User = Depends(get_current_user), db: Database = Depends(get_database)) -> dict:
    UserStore(db).delete(current_user)
    return success(message="Account deleted successfully")
