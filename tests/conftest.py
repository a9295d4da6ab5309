"""
Pytest fixtures for FleurEase tests
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId

from accounts import TOKEN_FIELDS, validate_account
from auth import AccountService
from avatars import AvatarUploadError
from mailer import Mailer
from schemas import Avatar, User
from tokens import TokenManager

FIXED_NOW = datetime(2024, 10, 15, 12, 0, tzinfo=timezone.utc)


class InMemoryAccountStore:
    """AccountStore kept in a dict, returning copies like a real database would"""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.fail_delete = False
        self.fail_create = False

    def _out(self, doc: Optional[Dict[str, Any]]):
        return copy.deepcopy(doc) if doc is not None else None

    def find_by_id(self, account_id: str):
        return self._out(self.docs.get(account_id))

    def find_by_email(self, email: str):
        return self._out(next((d for d in self.docs.values() if d["email"] == email), None))

    def find_by_token(self, field: str, token_hash: str):
        assert field in TOKEN_FIELDS
        return self._out(next((d for d in self.docs.values() if d.get(field) == token_hash), None))

    def create(self, user: User):
        if self.fail_create:
            raise RuntimeError("database unavailable")
        doc = user.model_dump()
        doc["created_at"] = doc.get("created_at") or FIXED_NOW
        doc["_id"] = str(ObjectId())
        self.docs[doc["_id"]] = doc
        return self._out(doc)

    def update_fields(self, account_id: str, set_fields: Mapping[str, Any], clear_fields: Iterable[str] = (),
                      validate: bool = True):
        current = self.docs.get(account_id)
        if current is None:
            return None
        merged = {**current, **copy.deepcopy(dict(set_fields))}
        for name in clear_fields:
            merged[name] = None
        if validate:
            validate_account(merged)
        self.docs[account_id] = merged
        return self._out(merged)

    def delete(self, account_id: str) -> bool:
        if self.fail_delete:
            raise RuntimeError("database unavailable")
        return self.docs.pop(account_id, None) is not None

    def list_accounts(self) -> List[Dict[str, Any]]:
        return [self._out(d) for d in self.docs.values()]

    def list_stale_unverified(self, now: datetime):
        stale = []
        for doc in self.docs.values():
            if doc["is_verified"] or doc.get("google_id") or doc.get("facebook_id"):
                continue
            expires = doc.get("verification_token_expire")
            if expires is None or expires <= now:
                stale.append(self._out(doc))
        return stale


class FakeAvatarHost:
    """AvatarHost that remembers which images are currently hosted"""

    def __init__(self):
        self.hosted: Dict[str, str] = {}
        self.destroyed: List[str] = []
        self.fail_upload = False
        self._counter = 0

    async def upload(self, image: str, folder: str = "avatars", width: int = 150, crop: str = "scale") -> Avatar:
        if self.fail_upload:
            raise AvatarUploadError("Avatar upload failed")
        self._counter += 1
        public_id = f"{folder}/avatar{self._counter}"
        self.hosted[public_id] = image
        return Avatar(public_id=public_id, url=f"https://images.test/{public_id}.png")

    async def destroy(self, public_id: str) -> bool:
        self.destroyed.append(public_id)
        return self.hosted.pop(public_id, None) is not None


class Clock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def avatars() -> FakeAvatarHost:
    return FakeAvatarHost()


@pytest.fixture
def mailer():
    """Mailer whose send() is an AsyncMock"""
    return AsyncMock(spec=Mailer)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def tokens(store, clock) -> TokenManager:
    return TokenManager(store, clock=clock)


@pytest.fixture
def service(store, tokens, mailer, avatars) -> AccountService:
    return AccountService(store, tokens, mailer, avatars, frontend_url="http://localhost:5173")


@pytest.fixture
def make_account(store):
    """Create an account directly in the store"""
    from security import hash_password

    def _make(email="daisy@example.com", password="secret123", **fields):
        fields.setdefault("name", "Daisy Bloom")
        fields.setdefault("is_verified", True)
        return store.create(User(email=email, password_hash=hash_password(password), **fields))

    return _make
