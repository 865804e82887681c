"""
tests/test_codes.py -- Unit tests for VerificationCodeManager.

Coverage:
  - issue() persists a code and mails it
  - single use: the second redemption fails
  - expiry, wrong kind, wrong email, fabricated code
  - redemption effects: email verified / password replaced and counter zeroed
  - a reset code for a Google-only account is rejected and stays unused
  - delivery failure keeps the stored code
  - concurrent redemptions of one code succeed exactly once
"""

from __future__ import annotations

import pytest

from auth.codes import VerificationCodeManager
from auth.errors import DeliveryError, InvalidOrExpiredCode
from auth.models import AuthLevel, CodeKind, IdentityProvider, User
from auth.passwords import hash_password, verify_password

TTL = 24 * 60 * 60


@pytest.fixture
def codes(store, mailer, clock) -> VerificationCodeManager:
    return VerificationCodeManager(store, mailer, "registration@tld.com", TTL, clock=clock)


@pytest.fixture
def alice(store) -> User:
    user = User(username="alice", email="alice@example.com", hashed_password=hash_password("Passw0rd!"))
    user.id = store.create_user(user)
    return user


class TestIssue:
    def test_issue_stores_and_mails_code(self, codes, store, mailer, clock) -> None:
        code = codes.issue("alice@example.com", CodeKind.email_verification, recipient="alice")
        [stored] = store.get_codes("alice@example.com", CodeKind.email_verification)
        assert stored.code == code
        assert stored.used is False
        assert stored.expiry_ts == int(clock()) + TTL
        assert mailer.last.to == "alice <alice@example.com>"
        assert mailer.last.sender == "registration@tld.com"
        assert mailer.last.subject == "Verify your email"
        assert code in mailer.last.body

    def test_reset_code_uses_reset_template(self, codes, mailer) -> None:
        code = codes.issue("alice@example.com", CodeKind.password_reset)
        assert mailer.last.subject == "Password Reset"
        assert mailer.last.to == "alice@example.com"
        assert mailer.last.code == code

    def test_delivery_failure_keeps_code(self, codes, store, mailer) -> None:
        mailer.fail = DeliveryError("Could not send email")
        with pytest.raises(DeliveryError):
            codes.issue("alice@example.com", CodeKind.email_verification)
        assert len(store.get_codes("alice@example.com", CodeKind.email_verification)) == 1


class TestEmailVerification:
    def test_redeem_marks_account_verified(self, codes, store, alice) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        codes.redeem(alice.email, code, CodeKind.email_verification)
        user = store.get_by_email(alice.email)
        assert user.email_verified is True
        assert user.auth_level is AuthLevel.verified

    def test_code_redeems_exactly_once(self, codes, alice) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        codes.redeem(alice.email, code, CodeKind.email_verification)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem(alice.email, code, CodeKind.email_verification)

    def test_code_is_case_and_whitespace_tolerant(self, codes, store, alice) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        codes.redeem(alice.email, f"  {code.lower()} ", CodeKind.email_verification)
        assert store.get_by_email(alice.email).email_verified is True

    def test_expired_code_rejected(self, codes, alice, clock) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        clock.advance(TTL)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem(alice.email, code, CodeKind.email_verification)

    def test_wrong_email_rejected(self, codes, alice) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem("mallory@example.com", code, CodeKind.email_verification)

    def test_wrong_kind_rejected(self, codes, alice) -> None:
        code = codes.issue(alice.email, CodeKind.email_verification)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem(alice.email, code, CodeKind.password_reset, new_password_hash=hash_password("N3wPassw0rd"))

    def test_admin_keeps_level_on_verification(self, codes, store) -> None:
        admin = User(
            username="root",
            email="root@example.com",
            hashed_password="x",
            auth_level=AuthLevel.admin,
        )
        store.create_user(admin)
        code = codes.issue(admin.email, CodeKind.email_verification)
        codes.redeem(admin.email, code, CodeKind.email_verification)
        assert store.get_by_email(admin.email).auth_level is AuthLevel.admin


class TestPasswordReset:
    def test_redeem_replaces_password_and_zeroes_counter(self, codes, store, alice) -> None:
        store.reserve_login_attempt(alice.id, 5)
        store.reserve_login_attempt(alice.id, 5)
        code = codes.issue(alice.email, CodeKind.password_reset)
        codes.redeem(alice.email, code, CodeKind.password_reset, new_password_hash=hash_password("N3wPassw0rd"))
        user = store.get_by_email(alice.email)
        assert user.login_attempts == 0
        assert verify_password(user.hashed_password, "N3wPassw0rd")
        assert not verify_password(user.hashed_password, "Passw0rd!")

    def test_fabricated_code_rejected(self, codes, alice) -> None:
        codes.issue(alice.email, CodeKind.password_reset)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem(alice.email, "00000000", CodeKind.password_reset, new_password_hash="h")

    def test_reset_requires_new_hash(self, codes, alice) -> None:
        code = codes.issue(alice.email, CodeKind.password_reset)
        with pytest.raises(ValueError):
            codes.redeem(alice.email, code, CodeKind.password_reset)

    def test_google_account_cannot_take_password(self, codes, store) -> None:
        """No default account matched, so the transaction rolls back and the code stays unused."""
        google = User(
            username="gina",
            email="gina@example.com",
            provider=IdentityProvider.google,
            federation_subject="1234",
        )
        store.create_user(google)
        code = codes.issue(google.email, CodeKind.password_reset)
        with pytest.raises(InvalidOrExpiredCode):
            codes.redeem(google.email, code, CodeKind.password_reset, new_password_hash=hash_password("N3wPassw0rd"))
        [stored] = store.get_codes(google.email, CodeKind.password_reset)
        assert stored.used is False
        assert store.get_by_email(google.email).hashed_password is None


class TestConcurrentRedemption:
    """Simultaneous redemptions of one code: exactly one wins."""

    @pytest.fixture
    def racing_codes(self, file_store, mailer, clock) -> VerificationCodeManager:
        return VerificationCodeManager(file_store, mailer, "registration@tld.com", TTL, clock=clock)

    @pytest.fixture
    def bob(self, file_store) -> User:
        user = User(username="bob", email="bob@example.com", hashed_password=hash_password("Passw0rd!"))
        user.id = file_store.create_user(user)
        return user

    def test_verification_code_redeems_once(self, racing_codes, file_store, bob, race) -> None:
        code = racing_codes.issue(bob.email, CodeKind.email_verification)
        outcomes = race(8, lambda: racing_codes.redeem(bob.email, code, CodeKind.email_verification))
        assert outcomes.count(None) == 1
        assert sum(isinstance(o, InvalidOrExpiredCode) for o in outcomes) == 7
        [stored] = file_store.get_codes(bob.email, CodeKind.email_verification)
        assert stored.used is True
        assert file_store.get_by_email(bob.email).email_verified is True

    def test_reset_code_redeems_once(self, racing_codes, file_store, bob, race) -> None:
        code = racing_codes.issue(bob.email, CodeKind.password_reset)
        new_hash = hash_password("N3wPassw0rd")
        outcomes = race(
            8,
            lambda: racing_codes.redeem(bob.email, code, CodeKind.password_reset, new_password_hash=new_hash),
        )
        assert outcomes.count(None) == 1
        assert sum(isinstance(o, InvalidOrExpiredCode) for o in outcomes) == 7
        assert verify_password(file_store.get_by_email(bob.email).hashed_password, "N3wPassw0rd")
