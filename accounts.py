"""
Account persistence.

Accounts travel through the application as plain dicts shaped like
``schemas.User`` plus a string ``_id``.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from schemas import User

Account = Dict[str, Any]

TOKEN_FIELDS = ("verification_token", "reset_password_token")


class AccountStore(Protocol):
    """Persistence operations on the user collection."""

    def find_by_id(self, account_id: str) -> Optional[Account]:
        ...

    def find_by_email(self, email: str) -> Optional[Account]:
        ...

    def find_by_token(self, field: str, token_hash: str) -> Optional[Account]:
        ...

    def create(self, user: User) -> Account:
        ...

    def update_fields(
        self,
        account_id: str,
        set_fields: Mapping[str, Any],
        clear_fields: Iterable[str] = (),
        validate: bool = True,
    ) -> Optional[Account]:
        ...

    def delete(self, account_id: str) -> bool:
        ...

    def list_accounts(self) -> List[Account]:
        ...

    def list_stale_unverified(self, now: datetime) -> List[Account]:
        ...


def public_account(account: Mapping[str, Any]) -> Dict[str, Any]:
    """Strip secrets from an account before it leaves the API."""
    hidden = {"password_hash", "verification_token", "verification_token_expire",
              "reset_password_token", "reset_password_expire"}
    return {k: v for k, v in account.items() if k not in hidden}


def validate_account(doc: Mapping[str, Any]) -> None:
    """Raise pydantic.ValidationError when a merged document breaks the User schema."""
    User.model_validate({k: v for k, v in doc.items() if k not in ("_id", "updated_at")})


class MongoAccountStore:
    """AccountStore backed by the pymongo ``user`` collection."""

    def __init__(self, database, collection_name: str = "user"):
        self.collection = database[collection_name]

    @staticmethod
    def _out(doc: Optional[Dict[str, Any]]) -> Optional[Account]:
        if doc is None:
            return None
        doc["_id"] = str(doc["_id"])
        return doc

    @staticmethod
    def _oid(account_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(account_id)
        except (InvalidId, TypeError):
            return None

    def find_by_id(self, account_id: str) -> Optional[Account]:
        oid = self._oid(account_id)
        if oid is None:
            return None
        return self._out(self.collection.find_one({"_id": oid}))

    def find_by_email(self, email: str) -> Optional[Account]:
        return self._out(self.collection.find_one({"email": email}))

    def find_by_token(self, field: str, token_hash: str) -> Optional[Account]:
        if field not in TOKEN_FIELDS:
            raise ValueError(f"Not a token field: {field}")
        return self._out(self.collection.find_one({field: token_hash}))

    def create(self, user: User) -> Account:
        doc = user.model_dump()
        now = datetime.now(timezone.utc)
        doc["created_at"] = doc.get("created_at") or now
        doc["updated_at"] = now
        inserted = self.collection.insert_one(doc)
        doc["_id"] = str(inserted.inserted_id)
        return doc

    def update_fields(
        self,
        account_id: str,
        set_fields: Mapping[str, Any],
        clear_fields: Iterable[str] = (),
        validate: bool = True,
    ) -> Optional[Account]:
        oid = self._oid(account_id)
        if oid is None:
            return None
        clear_fields = list(clear_fields)
        if validate:
            current = self.collection.find_one({"_id": oid})
            if current is None:
                return None
            merged = {**current, **set_fields}
            for name in clear_fields:
                merged[name] = None
            validate_account(merged)

        update: Dict[str, Any] = {
            "$set": {**set_fields, "updated_at": datetime.now(timezone.utc)},
        }
        if clear_fields:
            update["$set"].update({name: None for name in clear_fields})
        doc = self.collection.find_one_and_update(
            {"_id": oid}, update, return_document=ReturnDocument.AFTER
        )
        return self._out(doc)

    def delete(self, account_id: str) -> bool:
        oid = self._oid(account_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count == 1

    def list_accounts(self) -> List[Account]:
        return [self._out(doc) for doc in self.collection.find({})]

    def list_stale_unverified(self, now: datetime) -> List[Account]:
        query = {
            "is_verified": False,
            "google_id": None,
            "facebook_id": None,
            "$or": [
                {"verification_token_expire": {"$lte": now}},
                {"verification_token_expire": None},
            ],
        }
        return [self._out(doc) for doc in self.collection.find(query)]
