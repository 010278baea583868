from datetime import datetime, timedelta, timezone
from typing import Callable

from bson.objectid import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import jwt, JWTError
from mongoengine import NotUniqueError
from pydantic import BaseModel

from soes.connections.mongo import Database, get_database
from soes.models.base import utcnow
from soes.models.user import User
from soes.utils.base import Role
from soes.utils.base.errors import DuplicateEmailError, UserNotFoundError
from soes.utils.config import settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class TokenPair(BaseModel):
    """Pair of JWT tokens used by the client for auth and refresh."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plaintext password against a bcrypt hash."""
    return pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return pwd_context.hash(plain)


def create_token(subject: str, token_version: str, role: str, expires_delta: timedelta, token_type: str) -> str:
    """Create a signed JWT with subject, token version, role, expiration and type."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "tv": token_version,
        "role": role,
        "typ": token_type,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_tokens(user: User) -> TokenPair:
    """Create access and refresh token pair for a user."""
    access = create_token(
        subject=str(user.id),
        token_version=user.token_version,
        role=user.role,
        expires_delta=timedelta(minutes=settings.access_token_expires_minutes),
        token_type="access",
    )
    refresh = create_token(
        subject=str(user.id),
        token_version=user.token_version,
        role=user.role,
        expires_delta=timedelta(days=settings.refresh_token_expires_days),
        token_type="refresh",
    )
    return TokenPair(access_token=access, refresh_token=refresh)


def decode_token(token: str, expected_type: str) -> tuple[str, str]:
    """Return (user_id, token_version) for a valid token of the expected type."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    user_id: str = payload.get("sub")
    token_version: str = payload.get("tv")
    if user_id is None or token_version is None or payload.get("typ") != expected_type:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    if not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user_id, token_version


class UserStore:
    def __init__(self, db: Database):
        self.db = db

    def find_by_email(self, email: str) -> User | None:
        return User.objects(email=email.strip().lower()).first()

    def find(self, user_id: str | ObjectId) -> User | None:
        return User.objects(id=ObjectId(user_id)).first()

    def get(self, user_id: str | ObjectId) -> User:
        user = self.find(user_id)
        if not user:
            raise UserNotFoundError()
        return user

    def register(self, name: str, email: str, password: str, role: Role = Role.STUDENT) -> User:
        if self.find_by_email(email):
            raise DuplicateEmailError()
        user = User(name=name.strip(), email=email.strip().lower(), password=hash_password(password), role=Role(role).value)
        self._save(user)
        return user

    def authenticate(self, email: str, password: str) -> User | None:
        user = self.find_by_email(email)
        # Same answer for unknown email and wrong password
        if not user or not verify_password(password, user.password):
            return None
        return user

    def update_profile(self, user: User, name: str | None = None, email: str | None = None, password: str | None = None) -> User:
        if name:
            user.name = name.strip()
        if email and email.strip().lower() != user.email:
            if self.find_by_email(email):
                raise DuplicateEmailError()
            user.email = email.strip().lower()
        if password:
            user.password = hash_password(password)
        self._save(user)
        return user

    def bump_token_version(self, user: User) -> None:
        User.objects(id=user.id).update_one(
            set__token_version=str(int(user.token_version) + 1),
            set__updated_at=utcnow(),
        )

    def delete(self, user: User) -> None:
        """Delete the account; its attempts and results go with it."""
        user.delete()

    @staticmethod
    def _save(user: User) -> None:
        # The unique email index settles a race between two registrations
        try:
            user.save()
        except NotUniqueError as exc:
            raise DuplicateEmailError() from exc


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_database)) -> User:
    """Auth dependency that validates an access token and returns the user.

    Rejects invalid tokens and tokens with mismatched token versions (logout).
    """
    user_id, token_version = decode_token(token, expected_type="access")
    user = UserStore(db).find(user_id)
    if not user or user.token_version != token_version:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    return user


def require_role(*roles: Role) -> Callable[..., User]:
    """Return a dependency that only lets users with one of `roles` through."""
    allowed = {Role(role).value for role in roles}

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            names = " or ".join(sorted(allowed))
            raise HTTPException(status_code=403, detail=f"Access denied. Only {names} can access this route")
        return current_user

    return _dependency
