"""
Shared fixtures for the RBAC service tests.

The datastore is swapped for an in-memory UserStore so the suite runs
without PostgreSQL.
"""
import os

# Must be set before anything imports the service settings
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-signing-secret-for-the-rbac-service-suite"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EXPOSE_RESET_TOKEN"] = "true"

import copy
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from rbac_service.main import app
from rbac_service.auth.exceptions import EmailTaken
from rbac_service.auth.jwt import get_token_codec, get_token_validator
from rbac_service.auth.store import Identity, RoleRecord, UserStore
from rbac_service.auth.users import DEFAULT_ROLES, UserService, get_user_store, hash_password

TEST_PASSWORD = "Abcdef12"
TEST_BCRYPT_ROUNDS = 4


class InMemoryUserStore(UserStore):
    """UserStore keeping identities in a dict; mirrors the SQL store's rules."""

    def __init__(self, roles: Iterable[str] = DEFAULT_ROLES):
        self.roles: List[RoleRecord] = []
        self.users = {}
        self.deleted = set()
        self._next_id = 1
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for name in roles:
            self.roles.append(RoleRecord(id=len(self.roles) + 1, name=name))

    def _role(self, role_id: int) -> Optional[RoleRecord]:
        return next((r for r in self.roles if r.id == role_id), None)

    def _active(self) -> List[Identity]:
        return [u for uid, u in sorted(self.users.items()) if uid not in self.deleted]

    async def find_by_email(self, email: str) -> Optional[Identity]:
        return next((copy.copy(u) for u in self._active() if u.email == email), None)

    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        if identity_id in self.deleted or identity_id not in self.users:
            return None
        return copy.copy(self.users[identity_id])

    async def create(self, name: str, email: str, password_hash: str, role_id: int) -> Identity:
        # Soft-deleted rows keep their email, as the unique index does
        if any(u.email == email for u in self.users.values()):
            raise EmailTaken()
        created_at = self._epoch + timedelta(minutes=self._next_id)
        identity = Identity(
            id=self._next_id,
            name=name,
            email=email,
            role_id=role_id,
            role=self._role(role_id).name,
            password_hash=password_hash,
            created_at=created_at,
            updated_at=created_at,
        )
        self.users[identity.id] = identity
        self._next_id += 1
        return copy.copy(identity)

    async def update_password(self, identity_id: int, password_hash: str) -> bool:
        return await self.update(identity_id, password_hash=password_hash) is not None

    async def update(self, identity_id, *, name=None, email=None, password_hash=None, role_id=None):
        current = await self.find_by_id(identity_id)
        if current is None:
            return None
        if email is not None and any(
            u.email == email and uid != identity_id for uid, u in self.users.items()
        ):
            raise EmailTaken()

        changes = {}
        if name is not None:
            changes["name"] = name
        if email is not None:
            changes["email"] = email
        if password_hash is not None:
            changes["password_hash"] = password_hash
        if role_id is not None:
            changes["role_id"] = role_id
            changes["role"] = self._role(role_id).name

        updated = current.model_copy(update=changes)
        self.users[identity_id] = updated
        return copy.copy(updated)

    async def delete(self, identity_id: int) -> bool:
        if await self.find_by_id(identity_id) is None:
            return False
        self.deleted.add(identity_id)
        return True

    async def list(self, offset: int, limit: int) -> Tuple[List[Identity], int]:
        active = self._active()
        return active[offset:offset + limit], len(active)

    async def count(self, role_name: Optional[str] = None) -> int:
        return len([u for u in self._active() if role_name is None or u.role == role_name])

    async def recent(self, limit: int) -> List[Identity]:
        return sorted(self._active(), key=lambda u: u.created_at, reverse=True)[:limit]

    async def find_role_by_id(self, role_id: int) -> Optional[RoleRecord]:
        return self._role(role_id)

    async def find_role_by_name(self, name: str) -> Optional[RoleRecord]:
        return next((r for r in self.roles if r.name == name), None)

    async def list_roles(self) -> List[RoleRecord]:
        return list(self.roles)

    async def ensure_roles(self, names: Iterable[str]) -> List[str]:
        created = []
        for name in names:
            if await self.find_role_by_name(name) is None:
                self.roles.append(RoleRecord(id=len(self.roles) + 1, name=name))
                created.append(name)
        return created

    # Test helper
    async def add_user(self, name: str, email: str, password: str = TEST_PASSWORD, role: str = "user") -> Identity:
        role_record = await self.find_role_by_name(role)
        return await self.create(name, email, hash_password(password, TEST_BCRYPT_ROUNDS), role_record.id)


@pytest.fixture
def store():
    return InMemoryUserStore()


@pytest.fixture
def service(store):
    return UserService(store, timeout=1.0, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def codec():
    return get_token_codec()


@pytest.fixture
def validator():
    return get_token_validator()


@pytest_asyncio.fixture
async def client(store):
    """HTTP client against the app, wired to the in-memory store."""
    app.dependency_overrides[get_user_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(base_url="http://test", transport=transport) as ac:
        yield ac
    app.dependency_overrides.clear()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def login(ac: AsyncClient, email: str, password: str = TEST_PASSWORD) -> dict:
    response = await ac.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["data"]
