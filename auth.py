"""
Account flows

Registration, email verification, password recovery, social login and the
administrative account operations. Every flow that mails a token persists the
token first and undoes that write when the mail cannot be sent, so no account
keeps a pending token whose email never went out.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from accounts import Account, AccountStore
from avatars import AvatarHost, is_hosted
from mailer import Mailer, MailError
from schemas import User
from security import hash_password, verify_password
from templates import (
    password_reset_email,
    reactivation_email,
    suspension_email,
    verification_email,
)
from tokens import VERIFICATION_FIELDS, TokenManager, as_utc, utcnow

logger = logging.getLogger(__name__)

SOCIAL_PROVIDERS = ("google", "facebook")
SOCIAL_AVATAR_PLACEHOLDER = "https://via.placeholder.com/150"

# Accounts younger than this are never swept: their verification mail may still be in flight
STALE_ACCOUNT_GRACE = timedelta(hours=1)


class AccountError(Exception):
    """Account flow failure carrying the HTTP status it maps to."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AccountExists(AccountError):
    def __init__(self, message: str = "User already exists with this email"):
        super().__init__(message, 400)


class AccountNotFound(AccountError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message, 404)


class InvalidToken(AccountError):
    """Wrong, already used and expired tokens all look the same to the caller."""

    def __init__(self, message: str):
        super().__init__(message, 400)


class AccountService:
    def __init__(
        self,
        store: AccountStore,
        tokens: TokenManager,
        mailer: Mailer,
        avatars: AvatarHost,
        frontend_url: str,
    ):
        self.store = store
        self.tokens = tokens
        self.mailer = mailer
        self.avatars = avatars
        self.frontend_url = frontend_url.rstrip("/")

    # Registration / verification

    async def register(self, name: str, email: str, password: str, avatar_image: Optional[str],
                       base_url: str) -> Account:
        if self.store.find_by_email(email):
            raise AccountExists()

        avatar = None
        if avatar_image:
            avatar = await self.avatars.upload(avatar_image)

        try:
            account = self.store.create(User(
                name=name,
                email=email,
                password_hash=hash_password(password),
                avatar=avatar,
                is_verified=False,
            ))
        except Exception:
            if avatar is not None:
                await self._discard_avatar(avatar.public_id)
            raise
        logger.info("Registered unverified account %s (%s)", account["_id"], email)

        try:
            await self._send_verification(account, base_url)
        except MailError:
            await self._rollback_registration(account)
            raise
        return account

    async def _send_verification(self, account: Account, base_url: str) -> None:
        issued = self.tokens.issue_verification_token(account)
        url = f"{base_url.rstrip('/')}/api/v1/verify-email/{issued.token}"
        subject, html = verification_email(account["name"], url)
        await self.mailer.send(account["email"], subject, html)

    async def _rollback_registration(self, account: Account) -> None:
        try:
            self.store.delete(account["_id"])
        except Exception:
            # the stale-account sweep removes it later
            logger.error("Rollback of account %s failed, left for cleanup", account["_id"], exc_info=True)
            return
        avatar = account.get("avatar")
        if is_hosted(avatar):
            await self._discard_avatar(avatar["public_id"])
        logger.info("Registration of %s rolled back", account["email"])

    async def _discard_avatar(self, public_id: str) -> None:
        try:
            await self.avatars.destroy(public_id)
        except Exception:
            logger.error("Rollback could not delete avatar %s", public_id, exc_info=True)

    async def resend_verification(self, email: str, base_url: str) -> Account:
        account = self.store.find_by_email(email)
        if account is None:
            raise AccountNotFound("User not found with this email")
        if account.get("is_verified"):
            raise AccountError("Email is already verified")
        try:
            await self._send_verification(account, base_url)
        except MailError:
            self.tokens.clear_verification_token(account)
            raise
        return account

    def verify_email(self, token: str) -> Account:
        account = self.tokens.consume_verification_token(token)
        if account is None:
            raise InvalidToken("Verification link is invalid or has expired")
        return account

    # Password recovery

    async def request_password_reset(self, email: str) -> Account:
        account = self.store.find_by_email(email)
        if account is None:
            raise AccountNotFound("User not found with this email")
        issued = self.tokens.issue_reset_token(account)
        subject, html = password_reset_email(f"{self.frontend_url}/password/reset/{issued.token}")
        try:
            await self.mailer.send(account["email"], subject, html)
        except MailError:
            self.tokens.clear_reset_token(account)
            raise
        return account

    def reset_password(self, token: str, password: str, confirm_password: str) -> Account:
        if password != confirm_password:
            raise AccountError("Password does not match")
        account = self.tokens.consume_reset_token(token, hash_password(password))
        if account is None:
            raise InvalidToken("Password reset token is invalid or has been expired")
        return account

    # Sign-in

    def authenticate(self, email: str, password: str) -> Account:
        account = self.store.find_by_email(email)
        if account is None or not verify_password(password, account.get("password_hash", "")):
            raise AccountError("Invalid Email or Password", 401)
        if not account.get("is_verified") and not account.get("google_id") and not account.get("facebook_id"):
            raise AccountError(
                "Please verify your email before logging in. Check your inbox for the verification link.", 403
            )
        if account.get("is_suspended"):
            raise AccountError("Your account has been suspended", 403)
        return account

    def social_login(self, provider: str, email: str, name: str, provider_user_id: str,
                     avatar_url: Optional[str] = None) -> Account:
        """Find-or-create an account for an identity already vouched for by the provider."""
        if provider not in SOCIAL_PROVIDERS:
            raise AccountError(f"Unsupported provider: {provider}")
        id_field = f"{provider}_id"

        account = self.store.find_by_email(email)
        if account is None:
            account = self.store.create(User(
                name=name,
                email=email,
                password_hash=hash_password(secrets.token_urlsafe(16) + provider_user_id),
                avatar={
                    "public_id": f"{provider}_{provider_user_id}",
                    "url": avatar_url or SOCIAL_AVATAR_PLACEHOLDER,
                },
                is_verified=True,
                **{id_field: provider_user_id},
            ))
            logger.info("Created account %s from %s login", account["_id"], provider)
        else:
            changes: Dict[str, Any] = {}
            if not account.get("is_verified"):
                changes["is_verified"] = True
            if not account.get(id_field):
                changes[id_field] = provider_user_id
            if changes:
                account = self.store.update_fields(account["_id"], changes, clear_fields=VERIFICATION_FIELDS)

        if account.get("is_suspended"):
            raise AccountError("Your account has been suspended", 403)
        return account

    # Profile

    async def update_profile(self, account: Account, fields: Mapping[str, Any],
                             avatar_image: Optional[str] = None) -> Account:
        changes = dict(fields)
        new_email = changes.get("email")
        if new_email and new_email != account["email"]:
            other = self.store.find_by_email(new_email)
            if other is not None and other["_id"] != account["_id"]:
                raise AccountExists("Email is already in use")

        new_avatar = None
        if avatar_image:
            new_avatar = await self.avatars.upload(avatar_image)
            changes["avatar"] = new_avatar.model_dump()

        try:
            updated = self.store.update_fields(account["_id"], changes)
            if updated is None:
                raise AccountNotFound()
        except Exception:
            if new_avatar is not None:
                await self._discard_avatar(new_avatar.public_id)
            raise

        # old image goes only once the new descriptor is stored
        old = account.get("avatar")
        if new_avatar is not None and is_hosted(old):
            await self.avatars.destroy(old["public_id"])
        return updated

    def change_password(self, account: Account, old_password: str, new_password: str) -> Account:
        if not verify_password(old_password, account.get("password_hash", "")):
            raise AccountError("Old password is incorrect")
        return self.store.update_fields(account["_id"], {"password_hash": hash_password(new_password)})

    def add_to_wishlist(self, account: Account, product_id: str) -> Account:
        wishlist = list(account.get("wishlist") or [])
        if product_id in wishlist:
            raise AccountError("Product already in wishlist")
        wishlist.append(product_id)
        return self.store.update_fields(account["_id"], {"wishlist": wishlist})

    def remove_from_wishlist(self, account: Account, product_id: str) -> Account:
        wishlist = [item for item in account.get("wishlist") or [] if item != product_id]
        return self.store.update_fields(account["_id"], {"wishlist": wishlist})

    # Administration

    async def delete_account(self, account: Account) -> None:
        avatar = account.get("avatar")
        if is_hosted(avatar):
            await self.avatars.destroy(avatar["public_id"])
        self.store.delete(account["_id"])
        logger.info("Deleted account %s", account["_id"])

    async def set_suspension(self, account: Account, suspended: bool, reason: str = "",
                             subject: str = "") -> Account:
        if suspended:
            reason = reason or "No reason provided"
            updated = self.store.update_fields(account["_id"], {"is_suspended": True, "suspension_reason": reason})
            mail_subject, html = suspension_email(account["name"], reason, subject)
        else:
            updated = self.store.update_fields(account["_id"], {"is_suspended": False, "suspension_reason": ""})
            message = reason or "Your account is now active and you can continue using our services."
            mail_subject, html = reactivation_email(account["name"], message, f"{self.frontend_url}/login", subject)
        logger.info("Account %s suspended=%s", account["_id"], suspended)
        await self.mailer.send(account["email"], mail_subject, html)
        return updated

    async def purge_stale_unverified(self, now: Optional[datetime] = None) -> int:
        """Delete unverified accounts whose verification window is over."""
        now = now or utcnow()
        removed = 0
        for account in self.store.list_stale_unverified(now):
            created_at = account.get("created_at")
            if created_at is not None and as_utc(created_at) > now - STALE_ACCOUNT_GRACE:
                continue
            await self.delete_account(account)
            removed += 1
        if removed:
            logger.info("Purged %d stale unverified accounts", removed)
        return removed
