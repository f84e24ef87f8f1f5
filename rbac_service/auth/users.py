"""
User management service.

This module provides functionality for:
- User registration
- User authentication
- Password reset and profile updates
- Directory queries behind the admin and manager dashboards
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from functools import lru_cache
from typing import Optional, List, Dict, Any, Tuple

import bcrypt
from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_service.base_microservice import AsyncSessionLocal, get_db_session
from rbac_service.config import Settings, get_settings
from rbac_service.auth.exceptions import (
    EmailTaken,
    InvalidCredentials,
    NotFound,
    StoreUnavailable,
)
from rbac_service.auth.store import Identity, SQLAlchemyUserStore, UserStore

logger = logging.getLogger("rbac_service.users")

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_USER = "user"
DEFAULT_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_USER)

BCRYPT_MAX_BYTES = 72
PASSWORD_RULES = "Password must be at least 8 characters with uppercase, lowercase, and number"


def validate_password_strength(password: str) -> str:
    """Require 8+ characters with an uppercase letter, a lowercase letter and a digit."""
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    has_upper = any("A" <= c <= "Z" for c in password)
    has_lower = any("a" <= c <= "z" for c in password)
    has_digit = any("0" <= c <= "9" for c in password)
    if len(password) < 8 or not (has_upper and has_lower and has_digit):
        raise ValueError(PASSWORD_RULES)
    return password


def hash_password(password: str, rounds: int = 12) -> str:
    """Generate password hash using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Check if provided password matches the stored hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Over-long password or a corrupt stored hash
        return False


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return hash_password("dummy-password-for-timing", rounds)


async def warm_dummy_hash(rounds: int) -> None:
    """Compute the unknown-email comparison hash ahead of the first login."""
    await run_in_threadpool(_dummy_hash, rounds)


# Pydantic models for request validation
class RegisterRequest(BaseModel):
    """Model for public user registration. Roles cannot be chosen here."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v):
        return validate_password_strength(v)


class LoginRequest(BaseModel):
    """Model for user login."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordReset(BaseModel):
    """Model for password reset request."""
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    """Model for password reset confirmation."""
    reset_token: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_must_be_strong(cls, v):
        return validate_password_strength(v)


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v):
        if v is None:
            return v
        return validate_password_strength(v)


class AdminUserCreate(BaseModel):
    """Model for an administrator creating a user."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str
    role_id: Optional[int] = None

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v):
        return validate_password_strength(v)


class AdminUserUpdate(BaseModel):
    """Fields an administrator may change on any user."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role_id: Optional[int] = None

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v):
        if v is None:
            return v
        return validate_password_strength(v)


class UserOut(BaseModel):
    """Model for user information returned to clients."""
    id: int
    name: str
    email: str
    role_id: int
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserOut":
        return cls(**identity.model_dump(exclude={"password_hash"}))


class UserService:
    """
    Credential service: the only component that touches stored identities.

    Every store call runs under the configured timeout; a slow or
    unreachable store surfaces as StoreUnavailable.
    """

    def __init__(self, store: UserStore, timeout: float = 5.0, bcrypt_rounds: int = 12):
        self.store = store
        self.timeout = timeout
        self.bcrypt_rounds = bcrypt_rounds

    async def _call(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Datastore call exceeded %.1fs", self.timeout)
            raise StoreUnavailable() from exc

    async def hash(self, password: str) -> str:
        """Hash a password off the event loop."""
        return await run_in_threadpool(hash_password, password, self.bcrypt_rounds)

    async def authenticate(self, email: str, password: str) -> Identity:
        """
        Verify credentials.

        Args:
            email: Exact, case-sensitive email
            password: Plaintext password

        Returns:
            The identity, including its role name

        Raises:
            InvalidCredentials: Unknown email or wrong password, indistinguishably
        """
        identity = await self._call(self.store.find_by_email(email))

        if identity is None:
            # Same bcrypt cost as a real check
            dummy = await run_in_threadpool(_dummy_hash, self.bcrypt_rounds)
            await run_in_threadpool(verify_password, password, dummy)
            raise InvalidCredentials()

        if not await run_in_threadpool(verify_password, password, identity.password_hash):
            raise InvalidCredentials()

        return identity

    async def _resolve_role_id(self, role_id: Optional[int]) -> int:
        if role_id is None:
            role = await self._call(self.store.find_role_by_name(ROLE_USER))
        else:
            role = await self._call(self.store.find_role_by_id(role_id))
        if role is None:
            raise NotFound("Role not found")
        return role.id

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        role_id: Optional[int] = None,
    ) -> Identity:
        """
        Register a new identity.

        Raises:
            EmailTaken: If the email is already registered
            NotFound: If the requested (or default) role does not exist
        """
        existing = await self._call(self.store.find_by_email(email))
        if existing is not None:
            raise EmailTaken()

        resolved_role_id = await self._resolve_role_id(role_id)
        password_hash = await self.hash(password)
        return await self._call(
            self.store.create(name=name, email=email, password_hash=password_hash, role_id=resolved_role_id)
        )

    async def reset_password(self, identity_id: int, new_hash: str) -> None:
        """
        Replace an identity's password hash.

        Raises:
            NotFound: If the identity does not exist
        """
        updated = await self._call(self.store.update_password(identity_id, new_hash))
        if not updated:
            raise NotFound()

    async def find_by_email(self, email: str) -> Optional[Identity]:
        return await self._call(self.store.find_by_email(email))

    async def get_identity(self, identity_id: int) -> Identity:
        identity = await self._call(self.store.find_by_id(identity_id))
        if identity is None:
            raise NotFound()
        return identity

    async def update_profile(self, identity_id: int, update: ProfileUpdate) -> Identity:
        password_hash = await self.hash(update.password) if update.password else None
        updated = await self._call(
            self.store.update(identity_id, name=update.name, password_hash=password_hash)
        )
        if updated is None:
            raise NotFound()
        return updated

    # --- Directory operations ---

    async def list_identities(self, page: int = 1, limit: int = 10) -> Tuple[List[Identity], int]:
        offset = (page - 1) * limit
        return await self._call(self.store.list(offset, limit))

    async def create_identity(self, data: AdminUserCreate) -> Identity:
        return await self.register(data.name, data.email, data.password, data.role_id)

    async def update_identity(self, identity_id: int, data: AdminUserUpdate) -> Identity:
        """
        Apply an administrator's changes to an identity.

        Raises:
            NotFound: If the identity or the requested role does not exist
            EmailTaken: If the new email belongs to another identity
        """
        await self.get_identity(identity_id)

        if data.email is not None:
            other = await self._call(self.store.find_by_email(data.email))
            if other is not None and other.id != identity_id:
                raise EmailTaken()

        role_id = await self._resolve_role_id(data.role_id) if data.role_id is not None else None
        password_hash = await self.hash(data.password) if data.password else None

        updated = await self._call(
            self.store.update(
                identity_id,
                name=data.name,
                email=data.email,
                password_hash=password_hash,
                role_id=role_id,
            )
        )
        if updated is None:
            raise NotFound()
        return updated

    async def delete_identity(self, identity_id: int) -> None:
        deleted = await self._call(self.store.delete(identity_id))
        if not deleted:
            raise NotFound()

    async def admin_stats(self) -> Dict[str, int]:
        return {
            "total_users": await self._call(self.store.count()),
            "total_admins": await self._call(self.store.count(ROLE_ADMIN)),
            "total_managers": await self._call(self.store.count(ROLE_MANAGER)),
        }

    async def manager_stats(self, recent: int = 5) -> Dict[str, Any]:
        recent_users = await self._call(self.store.recent(recent))
        return {
            "total_users": await self._call(self.store.count()),
            "recent_users": [UserOut.from_identity(u) for u in recent_users],
        }

    async def reports(self) -> Dict[str, Any]:
        total = await self._call(self.store.count())
        users, _ = await self._call(self.store.list(0, max(total, 1)))

        users_by_role: Dict[str, List[UserOut]] = defaultdict(list)
        for user in users:
            users_by_role[user.role].append(UserOut.from_identity(user))

        return {
            "users_by_role": dict(users_by_role),
            "total_users": len(users),
        }


def get_user_store(db: AsyncSession = Depends(get_db_session)) -> UserStore:
    """Dependency for the request-scoped datastore."""
    return SQLAlchemyUserStore(db)


def get_user_service(
    store: UserStore = Depends(get_user_store),
    settings: Settings = Depends(get_settings),
) -> UserService:
    """Dependency for the credential service."""
    return UserService(store, timeout=settings.db_timeout_seconds, bcrypt_rounds=settings.bcrypt_rounds)


# Initialize basic roles on startup
async def init_roles_and_permissions() -> List[str]:
    """Create the admin, manager and user roles if they don't exist."""
    async with AsyncSessionLocal() as db:
        created = await SQLAlchemyUserStore(db).ensure_roles(DEFAULT_ROLES)
    for name in created:
        logger.info(f"Created role: {name}")
    return created
