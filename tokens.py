"""
Email verification and password reset tokens.

A token is handed out in plaintext exactly once (for the email link); only its
SHA-256 digest and an expiry are stored on the account. Issuing a token
overwrites whatever token of the same kind was pending.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from accounts import Account, AccountStore

logger = logging.getLogger(__name__)

VERIFICATION_FIELDS = ("verification_token", "verification_token_expire")
RESET_FIELDS = ("reset_password_token", "reset_password_expire")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


class TokenManager:
    """Issues and consumes single-use verification and reset tokens."""

    def __init__(
        self,
        store: AccountStore,
        verification_ttl: timedelta = timedelta(hours=24),
        reset_ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl
        self.clock = clock

    def _issue(self, account: Account, fields, ttl: timedelta) -> IssuedToken:
        token_field, expire_field = fields
        token = secrets.token_hex(20)
        expires_at = self.clock() + ttl
        updated = self.store.update_fields(
            account["_id"],
            {token_field: hash_token(token), expire_field: expires_at},
            validate=False,
        )
        if updated is None:
            raise LookupError(f"Account {account['_id']} disappeared while issuing a token")
        account[token_field] = updated[token_field]
        account[expire_field] = expires_at
        return IssuedToken(token=token, expires_at=expires_at)

    def _match(self, fields, token: str) -> Optional[Account]:
        token_field, expire_field = fields
        if not token:
            return None
        account = self.store.find_by_token(token_field, hash_token(token))
        if account is None:
            return None
        expires_at = account.get(expire_field)
        if expires_at is None or as_utc(expires_at) <= self.clock():
            return None
        return account

    def issue_verification_token(self, account: Account) -> IssuedToken:
        return self._issue(account, VERIFICATION_FIELDS, self.verification_ttl)

    def issue_reset_token(self, account: Account) -> IssuedToken:
        return self._issue(account, RESET_FIELDS, self.reset_ttl)

    def consume_verification_token(self, token: str) -> Optional[Account]:
        """Mark the owning account verified; None for wrong, used or expired tokens."""
        account = self._match(VERIFICATION_FIELDS, token)
        if account is None:
            return None
        updated = self.store.update_fields(
            account["_id"], {"is_verified": True}, clear_fields=VERIFICATION_FIELDS
        )
        logger.info("Account %s verified", account["_id"])
        return updated

    def consume_reset_token(self, token: str, new_password_hash: str) -> Optional[Account]:
        """Replace the password of the owning account; None for wrong, used or expired tokens."""
        account = self._match(RESET_FIELDS, token)
        if account is None:
            return None
        updated = self.store.update_fields(
            account["_id"], {"password_hash": new_password_hash}, clear_fields=RESET_FIELDS
        )
        logger.info("Password reset for account %s", account["_id"])
        return updated

    def clear_verification_token(self, account: Account) -> None:
        self.store.update_fields(account["_id"], {}, clear_fields=VERIFICATION_FIELDS, validate=False)
        for name in VERIFICATION_FIELDS:
            account[name] = None

    def clear_reset_token(self, account: Account) -> None:
        self.store.update_fields(account["_id"], {}, clear_fields=RESET_FIELDS, validate=False)
        for name in RESET_FIELDS:
            account[name] = None
