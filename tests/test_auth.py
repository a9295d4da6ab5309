"""
Unit tests for the account flows
"""

import re
from datetime import timedelta

import pytest

from auth import AccountError, AccountExists, AccountNotFound, AccountService, InvalidToken
from avatars import AvatarUploadError
from mailer import Mailer, MailError
from security import verify_password

BASE_URL = "http://api.test"


def sent_link(mailer, pattern: str) -> str:
    _, _, html = mailer.send.call_args.args
    match = re.search(pattern, html)
    assert match, html
    return match.group(1)


class TestRegister:
    """Registration saga"""

    @pytest.mark.asyncio
    async def test_register_creates_unverified_account_and_mails_link(self, service, store, mailer):
        account = await service.register("Rose Petal", "rose@example.com", "secret123", None, BASE_URL)

        assert account["is_verified"] is False
        assert store.docs[account["_id"]]["verification_token"] is not None
        to_email, subject, _ = mailer.send.call_args.args
        assert to_email == "rose@example.com"
        assert "Verify" in subject
        token = sent_link(mailer, r"http://api\.test/api/v1/verify-email/([0-9a-f]{40})")
        assert service.verify_email(token)["is_verified"] is True

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected_before_upload(self, service, make_account, avatars):
        make_account(email="rose@example.com")

        with pytest.raises(AccountExists):
            await service.register("Rose Petal", "rose@example.com", "secret123", "data:image/png;base64,AA", BASE_URL)
        assert avatars.hosted == {}

    @pytest.mark.asyncio
    async def test_avatar_uploaded_with_account(self, service, avatars):
        account = await service.register("Rose Petal", "rose@example.com", "secret123", "data:image/png;base64,AA",
                                         BASE_URL)

        assert account["avatar"]["public_id"] in avatars.hosted

    @pytest.mark.asyncio
    async def test_mail_failure_rolls_back_account_and_avatar(self, service, store, mailer, avatars):
        mailer.send.side_effect = MailError("smtp down")

        with pytest.raises(MailError):
            await service.register("Rose Petal", "rose@example.com", "secret123", "data:image/png;base64,AA",
                                   BASE_URL)

        assert store.docs == {}
        assert avatars.hosted == {}
        assert len(avatars.destroyed) == 1

    @pytest.mark.asyncio
    async def test_unconfigured_mailer_rolls_back_registration(self, store, tokens, avatars):
        service = AccountService(store, tokens, Mailer(host="", suppress_send=False), avatars,
                                 frontend_url="http://localhost:5173")

        with pytest.raises(MailError):
            await service.register("Rose Petal", "rose@example.com", "secret123", "data:image/png;base64,AA",
                                   BASE_URL)

        assert store.docs == {}
        assert avatars.hosted == {}

    @pytest.mark.asyncio
    async def test_create_failure_discards_uploaded_avatar(self, service, store, avatars, mailer):
        store.fail_create = True

        with pytest.raises(RuntimeError):
            await service.register("Rose Petal", "rose@example.com", "secret123", "data:image/png;base64,AA",
                                   BASE_URL)

        assert avatars.hosted == {}
        assert len(avatars.destroyed) == 1
        mailer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_rollback_leaves_account_for_sweep(self, service, store, mailer, avatars, clock):
        mailer.send.side_effect = MailError("smtp down")
        store.fail_delete = True

        with pytest.raises(MailError):
            await service.register("Rose Petal", "rose@example.com", "secret123", None, BASE_URL)
        assert len(store.docs) == 1

        store.fail_delete = False
        removed = await service.purge_stale_unverified(now=clock.now + timedelta(hours=25))
        assert removed == 1
        assert store.docs == {}


class TestVerification:
    def test_invalid_token(self, service):
        with pytest.raises(InvalidToken):
            service.verify_email("nope")

    @pytest.mark.asyncio
    async def test_resend_overwrites_previous_link(self, service, mailer, make_account):
        make_account(email="lily@example.com", is_verified=False)

        await service.resend_verification("lily@example.com", BASE_URL)
        first = sent_link(mailer, r"verify-email/([0-9a-f]{40})")
        await service.resend_verification("lily@example.com", BASE_URL)
        second = sent_link(mailer, r"verify-email/([0-9a-f]{40})")

        with pytest.raises(InvalidToken):
            service.verify_email(first)
        assert service.verify_email(second)["is_verified"] is True

    @pytest.mark.asyncio
    async def test_resend_for_verified_account(self, service, make_account):
        make_account(email="lily@example.com")
        with pytest.raises(AccountError):
            await service.resend_verification("lily@example.com", BASE_URL)

    @pytest.mark.asyncio
    async def test_resend_mail_failure_clears_token(self, service, store, mailer, make_account):
        account = make_account(email="lily@example.com", is_verified=False)
        mailer.send.side_effect = MailError("smtp down")

        with pytest.raises(MailError):
            await service.resend_verification("lily@example.com", BASE_URL)
        assert store.docs[account["_id"]]["verification_token"] is None


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_flow(self, service, mailer, make_account):
        make_account(email="iris@example.com", password="oldpass1")

        await service.request_password_reset("iris@example.com")
        token = sent_link(mailer, r"http://localhost:5173/password/reset/([0-9a-f]{40})")
        account = service.reset_password(token, "newpass1", "newpass1")

        assert verify_password("newpass1", account["password_hash"])
        with pytest.raises(InvalidToken):
            service.reset_password(token, "again123", "again123")

    @pytest.mark.asyncio
    async def test_unknown_email(self, service):
        with pytest.raises(AccountNotFound):
            await service.request_password_reset("nobody@example.com")

    @pytest.mark.asyncio
    async def test_mismatch_does_not_consume_token(self, service, mailer, make_account):
        make_account(email="iris@example.com")
        await service.request_password_reset("iris@example.com")
        token = sent_link(mailer, r"password/reset/([0-9a-f]{40})")

        with pytest.raises(AccountError, match="does not match"):
            service.reset_password(token, "newpass1", "different")
        assert service.reset_password(token, "newpass1", "newpass1")

    @pytest.mark.asyncio
    async def test_mail_failure_clears_reset_fields(self, service, store, mailer, make_account):
        account = make_account(email="iris@example.com")
        mailer.send.side_effect = MailError("smtp down")

        with pytest.raises(MailError):
            await service.request_password_reset("iris@example.com")
        doc = store.docs[account["_id"]]
        assert doc["reset_password_token"] is None
        assert doc["reset_password_expire"] is None


class TestAuthenticate:
    def test_valid_credentials(self, service, make_account):
        make_account(email="tulip@example.com", password="secret123")
        assert service.authenticate("tulip@example.com", "secret123")["email"] == "tulip@example.com"

    def test_wrong_password(self, service, make_account):
        make_account(email="tulip@example.com", password="secret123")
        with pytest.raises(AccountError) as exc:
            service.authenticate("tulip@example.com", "wrong")
        assert exc.value.status_code == 401

    def test_unverified_account(self, service, make_account):
        make_account(email="tulip@example.com", password="secret123", is_verified=False)
        with pytest.raises(AccountError) as exc:
            service.authenticate("tulip@example.com", "secret123")
        assert exc.value.status_code == 403

    def test_suspended_account(self, service, make_account):
        make_account(email="tulip@example.com", password="secret123", is_suspended=True)
        with pytest.raises(AccountError) as exc:
            service.authenticate("tulip@example.com", "secret123")
        assert exc.value.status_code == 403


class TestSocialLogin:
    def test_creates_verified_account(self, service):
        account = service.social_login("google", "orchid@example.com", "Orchid", "g-123", "https://pics.test/o.png")

        assert account["is_verified"] is True
        assert account["google_id"] == "g-123"
        assert account["avatar"] == {"public_id": "google_g-123", "url": "https://pics.test/o.png"}

    def test_links_existing_unverified_account(self, service, store, tokens, make_account):
        existing = make_account(email="orchid@example.com", is_verified=False)
        tokens.issue_verification_token(existing)

        account = service.social_login("facebook", "orchid@example.com", "Orchid", "fb-9")

        assert account["_id"] == existing["_id"]
        assert account["is_verified"] is True
        assert account["facebook_id"] == "fb-9"
        assert account["verification_token"] is None
        assert len(store.docs) == 1

    def test_unknown_provider(self, service):
        with pytest.raises(AccountError):
            service.social_login("myspace", "orchid@example.com", "Orchid", "1")


class TestProfile:
    def test_wishlist_rejects_duplicates(self, service, make_account):
        account = make_account()
        account = service.add_to_wishlist(account, "p1")

        with pytest.raises(AccountError, match="already in wishlist"):
            service.add_to_wishlist(account, "p1")
        assert service.remove_from_wishlist(account, "p1")["wishlist"] == []

    def test_change_password_checks_old_password(self, service, make_account):
        account = make_account(password="secret123")
        with pytest.raises(AccountError):
            service.change_password(account, "wrong", "newpass1")
        assert verify_password("newpass1", service.change_password(account, "secret123", "newpass1")["password_hash"])

    @pytest.mark.asyncio
    async def test_update_profile_replaces_avatar(self, service, avatars, make_account):
        account = make_account()
        account = await service.update_profile(account, {"city": "Lyon"}, "data:image/png;base64,AA")
        first = account["avatar"]["public_id"]

        account = await service.update_profile(account, {}, "data:image/png;base64,BB")

        assert account["city"] == "Lyon"
        assert first in avatars.destroyed
        assert list(avatars.hosted) == [account["avatar"]["public_id"]]

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_current_avatar(self, service, store, avatars, make_account):
        account = make_account()
        account = await service.update_profile(account, {}, "data:image/png;base64,AA")
        current = account["avatar"]
        avatars.fail_upload = True

        with pytest.raises(AvatarUploadError):
            await service.update_profile(account, {"city": "Lyon"}, "data:image/png;base64,BB")

        assert current["public_id"] in avatars.hosted
        assert avatars.destroyed == []
        assert store.docs[account["_id"]]["avatar"] == current

    @pytest.mark.asyncio
    async def test_update_profile_email_taken(self, service, make_account):
        make_account(email="taken@example.com")
        account = make_account(email="mine@example.com")
        with pytest.raises(AccountExists):
            await service.update_profile(account, {"email": "taken@example.com"})


class TestAdministration:
    @pytest.mark.asyncio
    async def test_suspend_then_unsuspend(self, service, mailer, make_account):
        account = make_account()

        suspended = await service.set_suspension(account, True, "Spam")
        assert suspended["is_suspended"] is True
        assert suspended["suspension_reason"] == "Spam"
        assert "Suspended" in mailer.send.call_args.args[1]

        active = await service.set_suspension(suspended, False)
        assert active["is_suspended"] is False
        assert active["suspension_reason"] == ""
        assert mailer.send.await_count == 2

    @pytest.mark.asyncio
    async def test_delete_account_destroys_hosted_avatar(self, service, store, avatars, make_account):
        account = make_account()
        account = await service.update_profile(account, {}, "data:image/png;base64,AA")

        await service.delete_account(account)

        assert store.docs == {}
        assert avatars.hosted == {}

    @pytest.mark.asyncio
    async def test_purge_keeps_fresh_and_verified_accounts(self, service, store, make_account, clock):
        make_account(email="verified@example.com")
        make_account(email="social@example.com", is_verified=False, google_id="g-1")
        stale = make_account(email="stale@example.com", is_verified=False)

        removed = await service.purge_stale_unverified(now=clock.now + timedelta(hours=2))

        assert removed == 1
        assert stale["_id"] not in store.docs
        assert len(store.docs) == 2

    @pytest.mark.asyncio
    async def test_purge_respects_grace_period(self, service, store, make_account, clock):
        make_account(email="new@example.com", is_verified=False)
        assert await service.purge_stale_unverified(now=clock.now + timedelta(minutes=10)) == 0
        assert len(store.docs) == 1
