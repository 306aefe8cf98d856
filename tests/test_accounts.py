"""Tests for app.services.accounts: the account lifecycle against in-memory SQLite."""

import unittest
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

from fastapi import BackgroundTasks
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import security
from app.core.config import Settings
from app.core.security import TokenFailure, create_access_token
from app.models import Account, Base, Profile
from app.services import account_store, accounts
from app.services.accounts import (
    AccountConflictError,
    AccountNotFoundError,
    AccountValidationError,
    AlreadyConfirmedError,
    EmailNotConfirmedError,
    InactiveAccountError,
    InvalidCredentialsError,
    InvalidTokenError,
    ServiceUnavailableError,
    SessionTokenError,
)
from app.services.mailer import Mailer


def _memory_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "JWT_SECRET": "lifecycle-test-secret",
        "FRONTEND_URL": "https://app.example.com",
        "CONFIRMATION_TOKEN_TTL_HOURS": 24,
        "RECOVERY_TOKEN_TTL_MINUTES": 60,
    }
    values.update(overrides)
    return Settings(**values)


def _mailer(sent: bool = True) -> MagicMock:
    mailer = MagicMock(spec=Mailer)
    mailer.send.return_value = sent
    return mailer


class LifecycleTestCase(unittest.TestCase):
    """Fresh database, fast bcrypt and a mock mailer per test."""

    def setUp(self) -> None:
        patcher = patch.object(security, "BCRYPT_ROUNDS", 4)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.session = _memory_session()
        self.addCleanup(self.session.close)
        self.settings = _settings()
        self.mailer = _mailer()

    def register(self, email: str = "a@x.com", password: str = "secret1", **kwargs: object):
        return accounts.register(self.session, self.settings, self.mailer, email, password, **kwargs)

    def sent_token(self, call_index: int = -1) -> str:
        """Token embedded in the plain-text body of a sent email."""
        _, kwargs = self.mailer.send.call_args_list[call_index]
        return kwargs["text"].split("token=")[1].split("&")[0]


class TestRegister(LifecycleTestCase):
    def test_register_returns_unconfirmed_account_profile_and_token(self) -> None:
        result = self.register("A@X.com", full_name="Ann", business_name="Ann's Grains")
        self.assertEqual(result.account.email, "a@x.com")
        self.assertIsNone(result.account.email_confirmed_at)
        self.assertIsNotNone(result.account.confirmation_token)
        self.assertEqual(result.account.business_name, "Ann's Grains")
        self.assertEqual(result.profile.role, "admin")
        self.assertTrue(result.profile.is_active)
        claims = accounts.verify_session_token(result.token, self.settings)
        self.assertEqual(claims.account_id, str(result.account.id))
        self.assertEqual(claims.email, "a@x.com")

    def test_register_sends_confirmation_email(self) -> None:
        result = self.register()
        self.mailer.send.assert_called_once()
        args, kwargs = self.mailer.send.call_args
        self.assertEqual(args[0], "a@x.com")
        self.assertIn("type=email_confirmation", kwargs["text"])
        self.assertEqual(self.sent_token(), result.account.confirmation_token)

    def test_register_stores_hash_not_password(self) -> None:
        result = self.register(password="secret1")
        self.assertNotEqual(result.account.password_hash, "secret1")
        self.assertTrue(security.verify_password("secret1", result.account.password_hash))

    def test_duplicate_email_any_case_is_conflict(self) -> None:
        self.register("a@x.com")
        with self.assertRaises(AccountConflictError):
            self.register("A@X.COM", "another1")
        self.assertEqual(self.session.query(Account).count(), 1)
        self.assertEqual(self.session.query(Profile).count(), 1)

    def test_unique_index_violation_is_conflict(self) -> None:
        self.register("a@x.com")
        real_find = account_store.find_by_email
        calls: list[str] = []

        def find_missing_first(session, email):
            # Simulate a concurrent registration that slipped past the pre-check.
            calls.append(email)
            if len(calls) == 1:
                return None
            return real_find(session, email)

        with patch.object(account_store, "find_by_email", side_effect=find_missing_first):
            with self.assertRaises(AccountConflictError):
                self.register("a@x.com", "another1")
        self.assertEqual(self.session.query(Account).count(), 1)

    def test_invalid_input_never_touches_store(self) -> None:
        cases = [
            ("", "secret1"),
            ("not-an-email", "secret1"),
            ("a@x.com", ""),
            ("a@x.com", "short"),
            ("a@x.com", "x" * 129),
        ]
        for email, password in cases:
            with self.subTest(email=email, password=password):
                with patch.object(account_store, "find_by_email") as find:
                    with self.assertRaises(AccountValidationError):
                        self.register(email, password)
                    find.assert_not_called()
        self.mailer.send.assert_not_called()

    def test_mailer_failure_does_not_fail_registration(self) -> None:
        self.mailer.send.return_value = False
        result = self.register()
        self.assertIsNotNone(result.token)

    def test_mailer_exception_does_not_fail_registration(self) -> None:
        self.mailer.send.side_effect = OSError("smtp down")
        result = self.register()
        self.assertEqual(self.session.query(Account).count(), 1)
        self.assertIsNotNone(result.token)

    def test_background_tasks_defer_email(self) -> None:
        tasks = BackgroundTasks()
        self.register(background_tasks=tasks)
        self.mailer.send.assert_not_called()
        self.assertEqual(len(tasks.tasks), 1)
        task = tasks.tasks[0]
        task.func(*task.args, **task.kwargs)
        self.mailer.send.assert_called_once()


class TestLogin(LifecycleTestCase):
    def test_full_confirmation_scenario(self) -> None:
        registered = self.register("a@x.com", "secret1")
        self.assertIsNone(registered.account.email_confirmed_at)

        with self.assertRaises(EmailNotConfirmedError) as ctx:
            accounts.login(self.session, self.settings, "a@x.com", "secret1")
        self.assertEqual(ctx.exception.code, "EMAIL_NOT_CONFIRMED")

        accounts.confirm_email(self.session, self.settings, self.sent_token())

        result = accounts.login(self.session, self.settings, "a@x.com", "secret1")
        self.assertTrue(result.token)
        self.assertIsNotNone(result.account.last_sign_in_at)
        self.assertIsNotNone(result.account.email_confirmed_at)

        with self.assertRaises(InvalidCredentialsError) as ctx:
            accounts.login(self.session, self.settings, "a@x.com", "wrong")
        self.assertEqual(ctx.exception.message, "Invalid email or password")

    def test_unknown_email_and_wrong_password_share_message(self) -> None:
        self.register("a@x.com", "secret1")
        with self.assertRaises(InvalidCredentialsError) as unknown:
            accounts.login(self.session, self.settings, "b@x.com", "secret1")
        with self.assertRaises(InvalidCredentialsError) as wrong:
            accounts.login(self.session, self.settings, "a@x.com", "secret2")
        self.assertEqual(unknown.exception.message, wrong.exception.message)

    def test_password_checked_before_confirmation(self) -> None:
        self.register("a@x.com", "secret1")
        with self.assertRaises(InvalidCredentialsError):
            accounts.login(self.session, self.settings, "a@x.com", "wrong-password")

    def test_inactive_account_is_rejected(self) -> None:
        result = self.register("a@x.com", "secret1")
        accounts.confirm_email(self.session, self.settings, result.account.confirmation_token)
        result.account.profile.is_active = False
        self.session.commit()
        with self.assertRaises(InactiveAccountError):
            accounts.login(self.session, self.settings, "a@x.com", "secret1")

    def test_login_is_case_insensitive_on_email(self) -> None:
        result = self.register("a@x.com", "secret1")
        accounts.confirm_email(self.session, self.settings, result.account.confirmation_token)
        login = accounts.login(self.session, self.settings, "A@X.COM", "secret1")
        self.assertEqual(login.account.id, result.account.id)

    def test_missing_credentials_is_validation_error(self) -> None:
        with self.assertRaises(AccountValidationError):
            accounts.login(self.session, self.settings, "", "secret1")
        with self.assertRaises(AccountValidationError):
            accounts.login(self.session, self.settings, "a@x.com", "")


class TestConfirmEmail(LifecycleTestCase):
    def test_confirmation_is_single_use(self) -> None:
        self.register()
        token = self.sent_token()
        account = accounts.confirm_email(self.session, self.settings, token)
        self.assertIsNotNone(account.email_confirmed_at)
        self.assertIsNone(account.confirmation_token)

        with self.assertRaises(InvalidTokenError) as ctx:
            accounts.confirm_email(self.session, self.settings, token)
        self.assertEqual(ctx.exception.message, "Invalid or expired confirmation token")

    def test_bogus_token_fails_like_used_token(self) -> None:
        with self.assertRaises(InvalidTokenError) as ctx:
            accounts.confirm_email(self.session, self.settings, "deadbeef")
        self.assertEqual(ctx.exception.message, "Invalid or expired confirmation token")

    def test_empty_token_is_validation_error(self) -> None:
        with self.assertRaises(AccountValidationError):
            accounts.confirm_email(self.session, self.settings, "")

    def test_expired_confirmation_token_is_rejected(self) -> None:
        result = self.register()
        token = result.account.confirmation_token
        result.account.confirmation_sent_at = datetime.now(UTC) - timedelta(hours=25)
        self.session.commit()
        with self.assertRaises(InvalidTokenError):
            accounts.confirm_email(self.session, self.settings, token)

    def test_ttl_zero_disables_expiry(self) -> None:
        self.settings = _settings(CONFIRMATION_TOKEN_TTL_HOURS=0)
        result = self.register()
        token = result.account.confirmation_token
        result.account.confirmation_sent_at = datetime.now(UTC) - timedelta(days=90)
        self.session.commit()
        account = accounts.confirm_email(self.session, self.settings, token)
        self.assertIsNotNone(account.email_confirmed_at)


class TestPasswordReset(LifecycleTestCase):
    def test_unknown_email_succeeds_without_side_effects(self) -> None:
        self.register("a@x.com")
        self.mailer.reset_mock()
        with patch.object(account_store, "update_recovery_token") as update:
            self.assertTrue(
                accounts.initiate_password_reset(
                    self.session, self.settings, self.mailer, "unknown@x.com"
                )
            )
            update.assert_not_called()
        self.mailer.send.assert_not_called()
        self.assertIsNone(account_store.find_by_email(self.session, "a@x.com").recovery_token)

    def test_reset_flow_replaces_password(self) -> None:
        result = self.register("a@x.com", "secret1")
        accounts.confirm_email(self.session, self.settings, result.account.confirmation_token)

        accounts.initiate_password_reset(self.session, self.settings, self.mailer, "A@x.com")
        _, kwargs = self.mailer.send.call_args
        self.assertIn("type=password_reset", kwargs["text"])
        token = self.sent_token()

        account = accounts.reset_password(self.session, self.settings, token, "newpass123")
        self.assertIsNone(account.recovery_token)
        self.assertIsNone(account.recovery_sent_at)

        with self.assertRaises(InvalidCredentialsError):
            accounts.login(self.session, self.settings, "a@x.com", "secret1")
        self.assertTrue(accounts.login(self.session, self.settings, "a@x.com", "newpass123").token)

    def test_stale_token_after_second_request_is_invalid(self) -> None:
        self.register("a@x.com")
        accounts.initiate_password_reset(self.session, self.settings, self.mailer, "a@x.com")
        stale = self.sent_token()
        accounts.initiate_password_reset(self.session, self.settings, self.mailer, "a@x.com")
        fresh = self.sent_token()
        self.assertNotEqual(stale, fresh)

        with self.assertRaises(InvalidTokenError) as ctx:
            accounts.reset_password(self.session, self.settings, stale, "newpass123")
        self.assertEqual(ctx.exception.message, "Invalid or expired reset token")
        accounts.reset_password(self.session, self.settings, fresh, "newpass123")

    def test_reset_token_is_single_use(self) -> None:
        self.register("a@x.com")
        accounts.initiate_password_reset(self.session, self.settings, self.mailer, "a@x.com")
        token = self.sent_token()
        accounts.reset_password(self.session, self.settings, token, "newpass123")
        with self.assertRaises(InvalidTokenError):
            accounts.reset_password(self.session, self.settings, token, "another123")

    def test_expired_reset_token_is_rejected(self) -> None:
        self.register("a@x.com")
        accounts.initiate_password_reset(self.session, self.settings, self.mailer, "a@x.com")
        account = account_store.find_by_email(self.session, "a@x.com")
        account.recovery_sent_at = datetime.now(UTC) - timedelta(minutes=61)
        self.session.commit()
        with self.assertRaises(InvalidTokenError):
            accounts.reset_password(self.session, self.settings, self.sent_token(), "newpass123")

    def test_short_new_password_is_validation_error(self) -> None:
        with self.assertRaises(AccountValidationError):
            accounts.reset_password(self.session, self.settings, "tok", "short")

    def test_reset_email_failure_still_succeeds(self) -> None:
        self.register("a@x.com")
        self.mailer.send.side_effect = OSError("smtp down")
        self.assertTrue(
            accounts.initiate_password_reset(self.session, self.settings, self.mailer, "a@x.com")
        )
        self.assertIsNotNone(account_store.find_by_email(self.session, "a@x.com").recovery_token)


class TestResendConfirmation(LifecycleTestCase):
    def test_unknown_email_is_not_found(self) -> None:
        with self.assertRaises(AccountNotFoundError):
            accounts.resend_confirmation_email(
                self.session, self.settings, self.mailer, "nobody@x.com"
            )

    def test_confirmed_account_is_already_confirmed(self) -> None:
        result = self.register()
        accounts.confirm_email(self.session, self.settings, result.account.confirmation_token)
        with self.assertRaises(AlreadyConfirmedError):
            accounts.resend_confirmation_email(self.session, self.settings, self.mailer, "a@x.com")

    def test_resend_replaces_token(self) -> None:
        self.register()
        first = self.sent_token()
        accounts.resend_confirmation_email(self.session, self.settings, self.mailer, "a@x.com")
        second = self.sent_token()
        self.assertNotEqual(first, second)
        self.assertEqual(self.mailer.send.call_count, 2)

        with self.assertRaises(InvalidTokenError):
            accounts.confirm_email(self.session, self.settings, first)
        accounts.confirm_email(self.session, self.settings, second)


class TestSessionTokens(LifecycleTestCase):
    def test_verify_distinguishes_expired(self) -> None:
        token = create_access_token(
            "abc", "a@x.com", expires_delta=timedelta(seconds=-5), settings=self.settings
        )
        with self.assertRaises(SessionTokenError) as ctx:
            accounts.verify_session_token(token, self.settings)
        self.assertEqual(ctx.exception.reason, TokenFailure.EXPIRED)

    def test_verify_malformed(self) -> None:
        with self.assertRaises(SessionTokenError) as ctx:
            accounts.verify_session_token("garbage", self.settings)
        self.assertEqual(ctx.exception.reason, TokenFailure.MALFORMED)

    def test_missing_secret_is_unavailable(self) -> None:
        settings = MagicMock()
        settings.JWT_SECRET = None
        with self.assertRaises(ServiceUnavailableError):
            accounts.verify_session_token("anything", settings)

    def test_authenticate_session_rechecks_active_flag(self) -> None:
        result = self.register()
        account = accounts.authenticate_session(self.session, self.settings, result.token)
        self.assertEqual(account.id, result.account.id)

        account.profile.is_active = False
        self.session.commit()
        with self.assertRaises(InactiveAccountError):
            accounts.authenticate_session(self.session, self.settings, result.token)

    def test_authenticate_session_unknown_account(self) -> None:
        token = create_access_token(
            "00000000-0000-0000-0000-000000000000", "ghost@x.com", settings=self.settings
        )
        with self.assertRaises(AccountNotFoundError):
            accounts.authenticate_session(self.session, self.settings, token)

    def test_get_account_by_id(self) -> None:
        result = self.register()
        account = accounts.get_account_by_id(self.session, str(result.account.id))
        self.assertEqual(account.email, "a@x.com")
        self.assertIsNone(accounts.get_account_by_id(self.session, "not-a-uuid"))


if __name__ == "__main__":
    unittest.main()
