"""
Datastore boundary for identities and roles.

The credential service only talks to a UserStore. The SQLAlchemy
implementation below is what the running service uses; anything that
honours the same contract can stand in for it.
"""
import abc
from datetime import datetime
from functools import wraps
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from rbac_service.auth.exceptions import EmailTaken, NotFound, StoreUnavailable
from rbac_service.auth.models import Role, User, utc_now


class RoleRecord(BaseModel):
    id: int
    name: str


class Identity(BaseModel):
    """A user as seen by the credential service."""
    id: int
    name: str
    email: str
    role_id: int
    role: str
    password_hash: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserStore(abc.ABC):
    """Narrow interface to wherever identities live."""

    @abc.abstractmethod
    async def find_by_email(self, email: str) -> Optional[Identity]:
        """Exact, case-sensitive lookup."""

    @abc.abstractmethod
    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        ...

    @abc.abstractmethod
    async def create(self, name: str, email: str, password_hash: str, role_id: int) -> Identity:
        """Raises EmailTaken if the email is already stored."""

    @abc.abstractmethod
    async def update_password(self, identity_id: int, password_hash: str) -> bool:
        """Returns False if no such identity."""

    @abc.abstractmethod
    async def update(
        self,
        identity_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password_hash: Optional[str] = None,
        role_id: Optional[int] = None,
    ) -> Optional[Identity]:
        """Set only the given fields. Returns None if no such identity."""

    @abc.abstractmethod
    async def delete(self, identity_id: int) -> bool:
        ...

    @abc.abstractmethod
    async def list(self, offset: int, limit: int) -> Tuple[List[Identity], int]:
        """Return a page of identities ordered by id, and the total count."""

    @abc.abstractmethod
    async def count(self, role_name: Optional[str] = None) -> int:
        ...

    @abc.abstractmethod
    async def recent(self, limit: int) -> List[Identity]:
        """Newest identities first."""

    @abc.abstractmethod
    async def find_role_by_id(self, role_id: int) -> Optional[RoleRecord]:
        ...

    @abc.abstractmethod
    async def find_role_by_name(self, name: str) -> Optional[RoleRecord]:
        ...

    @abc.abstractmethod
    async def list_roles(self) -> List[RoleRecord]:
        ...

    @abc.abstractmethod
    async def ensure_roles(self, names: Iterable[str]) -> List[str]:
        """Create any missing roles and return the names that were created."""


def translate_store_errors(method):
    """Surface connection-level failures as a retryable StoreUnavailable."""
    @wraps(method)
    async def wrapper(*args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except (OperationalError, InterfaceError, OSError) as exc:
            raise StoreUnavailable() from exc
    return wrapper


def _to_identity(user: User) -> Identity:
    return Identity(
        id=user.id,
        name=user.name,
        email=user.email,
        role_id=user.role_id,
        role=user.role.name if user.role is not None else "",
        password_hash=user.hashed_password,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


class SQLAlchemyUserStore(UserStore):
    """
    UserStore backed by the async SQLAlchemy session of the current request.

    Soft-deleted users are excluded from every query.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _active(self):
        # Refresh rows already in the session so role changes are picked up
        return (
            select(User)
            .where(User.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )

    async def _get_user(self, identity_id: int) -> Optional[User]:
        result = await self.db.execute(self._active().where(User.id == identity_id))
        return result.scalar_one_or_none()

    @translate_store_errors
    async def find_by_email(self, email: str) -> Optional[Identity]:
        result = await self.db.execute(self._active().where(User.email == email))
        user = result.scalar_one_or_none()
        return _to_identity(user) if user else None

    @translate_store_errors
    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        user = await self._get_user(identity_id)
        return _to_identity(user) if user else None

    @translate_store_errors
    async def create(self, name: str, email: str, password_hash: str, role_id: int) -> Identity:
        user = User(name=name, email=email, hashed_password=password_hash, role_id=role_id)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise EmailTaken() from exc

        created = await self._get_user(user.id)
        if created is None:
            raise NotFound()
        return _to_identity(created)

    @translate_store_errors
    async def update_password(self, identity_id: int, password_hash: str) -> bool:
        user = await self._get_user(identity_id)
        if user is None:
            return False
        user.hashed_password = password_hash
        await self.db.commit()
        return True

    @translate_store_errors
    async def update(
        self,
        identity_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password_hash: Optional[str] = None,
        role_id: Optional[int] = None,
    ) -> Optional[Identity]:
        user = await self._get_user(identity_id)
        if user is None:
            return None

        if name is not None:
            user.name = name
        if email is not None:
            user.email = email
        if password_hash is not None:
            user.hashed_password = password_hash
        if role_id is not None:
            user.role_id = role_id

        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise EmailTaken() from exc

        updated = await self._get_user(identity_id)
        return _to_identity(updated) if updated else None

    @translate_store_errors
    async def delete(self, identity_id: int) -> bool:
        user = await self._get_user(identity_id)
        if user is None:
            return False
        user.deleted_at = utc_now()
        await self.db.commit()
        return True

    @translate_store_errors
    async def list(self, offset: int, limit: int) -> Tuple[List[Identity], int]:
        result = await self.db.execute(
            self._active().order_by(User.id).offset(offset).limit(limit)
        )
        users = result.scalars().all()
        total = await self.count()
        return [_to_identity(u) for u in users], total

    @translate_store_errors
    async def count(self, role_name: Optional[str] = None) -> int:
        query = select(func.count(User.id)).where(User.deleted_at.is_(None))
        if role_name is not None:
            query = query.join(Role, User.role_id == Role.id).where(Role.name == role_name)
        result = await self.db.execute(query)
        return result.scalar_one()

    @translate_store_errors
    async def recent(self, limit: int) -> List[Identity]:
        result = await self.db.execute(
            self._active().order_by(User.created_at.desc(), User.id.desc()).limit(limit)
        )
        return [_to_identity(u) for u in result.scalars().all()]

    @translate_store_errors
    async def find_role_by_id(self, role_id: int) -> Optional[RoleRecord]:
        result = await self.db.execute(select(Role).where(Role.id == role_id))
        role = result.scalar_one_or_none()
        return RoleRecord(id=role.id, name=role.name) if role else None

    @translate_store_errors
    async def find_role_by_name(self, name: str) -> Optional[RoleRecord]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        role = result.scalar_one_or_none()
        return RoleRecord(id=role.id, name=role.name) if role else None

    @translate_store_errors
    async def list_roles(self) -> List[RoleRecord]:
        result = await self.db.execute(select(Role).order_by(Role.id))
        return [RoleRecord(id=r.id, name=r.name) for r in result.scalars().all()]

    @translate_store_errors
    async def ensure_roles(self, names: Iterable[str]) -> List[str]:
        created = []
        for name in names:
            result = await self.db.execute(select(Role).where(Role.name == name))
            if result.scalar_one_or_none() is None:
                self.db.add(Role(name=name))
                created.append(name)
        if created:
            await self.db.commit()
        return created
