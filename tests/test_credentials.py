"""Unit tests for auth/credentials.py -- CredentialManager.

Covers:
- register -> login round trip yields tokens and a sanitized account
- duplicate registration (case-insensitive) raises DuplicateAccount
- email / password / name validation before storage is touched
- login failures are indistinguishable (unknown email, OAuth-only, wrong password)
- change_password and update_profile rules
"""

from __future__ import annotations

import pytest

from auth.errors import (
    AccountNotFound,
    DuplicateAccount,
    InvalidCredentials,
    NoChanges,
    UnsupportedOperation,
    ValidationError,
)
from auth.models import SENSITIVE_FIELDS, Account

_PASSWORD = "Passw0rd1"


def _assert_sanitized(account: Account) -> None:
    for name in SENSITIVE_FIELDS:
        assert getattr(account, name) is None, f"{name} leaked"


class TestRegister:
    def test_register_returns_tokens_and_sanitized_account(self, credentials, store):
        result = credentials.register("a@b.com", _PASSWORD, "A B")

        assert result.access_token
        assert result.refresh_token
        assert result.account.email == "a@b.com"
        assert result.account.full_name == "A B"
        assert result.account.is_verified is False
        _assert_sanitized(result.account)

        row = store.find_by_email("a@b.com")
        assert row.password_hash.startswith("$2b$")
        assert row.verification_token is not None
        assert row.refresh_token == result.refresh_token

    def test_register_normalizes_email(self, credentials, store):
        result = credentials.register("  Mixed.Case@Example.COM ", _PASSWORD, "M C")
        assert result.account.email == "mixed.case@example.com"
        assert store.find_by_email("MIXED.CASE@example.com") is not None

    def test_duplicate_email_case_insensitive(self, credentials):
        credentials.register("a@b.com", _PASSWORD, "A B")
        with pytest.raises(DuplicateAccount):
            credentials.register("A@B.COM", _PASSWORD, "Other")

    @pytest.mark.parametrize("email", ["plainaddress", "no-at.example.com", "a@b", "a b@c.com", "@b.com"])
    def test_invalid_email_rejected(self, credentials, email):
        with pytest.raises(ValidationError, match="email"):
            credentials.register(email, _PASSWORD, "A B")

    @pytest.mark.parametrize(
        "password",
        [
            "Sh0rt",  # too short
            "alllowercase1",  # no upper
            "ALLUPPERCASE1",  # no lower
            "NoDigitsHere",  # no digit
        ],
    )
    def test_weak_password_rejected(self, credentials, store, password):
        with pytest.raises(ValidationError):
            credentials.register("weak@b.com", password, "A B")
        assert store.find_by_email("weak@b.com") is None

    @pytest.mark.parametrize(
        "password",
        [
            "Aa1" + "x" * 97,  # ASCII, 100 bytes
            "Aa1" + "é" * 35,  # 38 characters but 73 UTF-8 bytes
        ],
    )
    def test_password_over_72_bytes_rejected(self, credentials, store, password):
        with pytest.raises(ValidationError, match="72 bytes"):
            credentials.register("long@example.com", password, "Long Pw")
        assert store.find_by_email("long@example.com") is None

    def test_password_of_exactly_72_bytes_accepted(self, credentials):
        password = "Aa1" + "x" * 69
        credentials.register("edge@example.com", password, "Edge")
        assert credentials.login("edge@example.com", password).access_token

    def test_missing_fields_rejected(self, credentials):
        with pytest.raises(ValidationError):
            credentials.register("a@b.com", _PASSWORD, "")

    def test_blank_name_rejected(self, credentials):
        with pytest.raises(ValidationError):
            credentials.register("a@b.com", _PASSWORD, "   ")


class TestLogin:
    def test_login_after_register(self, credentials, store):
        credentials.register("a@b.com", _PASSWORD, "A B")
        result = credentials.login("A@b.com", _PASSWORD)

        assert result.access_token
        assert result.refresh_token
        assert result.account.last_login_at is not None
        _assert_sanitized(result.account)
        assert store.find_by_email("a@b.com").last_login_at is not None

    def test_login_replaces_live_refresh_token(self, credentials, store):
        first = credentials.register("a@b.com", _PASSWORD, "A B")
        second = credentials.login("a@b.com", _PASSWORD)
        assert store.find_by_email("a@b.com").refresh_token == second.refresh_token
        assert second.refresh_token != first.refresh_token

    def test_unknown_email_and_wrong_password_are_identical(self, credentials):
        credentials.register("real@example.com", _PASSWORD, "Real")

        with pytest.raises(InvalidCredentials) as unknown:
            credentials.login("nonexistent@example.com", "anything")
        with pytest.raises(InvalidCredentials) as wrong:
            credentials.login("real@example.com", "wrongpassword")

        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.code == wrong.value.code
        assert unknown.value.message == wrong.value.message

    def test_oauth_only_account_gets_generic_error(self, credentials, store):
        store.insert(Account(email="oauth@example.com", full_name="O Auth", google_id="g-123"))
        with pytest.raises(InvalidCredentials) as exc_info:
            credentials.login("oauth@example.com", _PASSWORD)
        assert exc_info.value.message == InvalidCredentials.default_message

    def test_over_long_password_is_plain_invalid_credentials(self, credentials):
        credentials.register("a@b.com", _PASSWORD, "A B")
        with pytest.raises(InvalidCredentials):
            credentials.login("a@b.com", "Aa1" + "x" * 97)

    def test_empty_password_rejected(self, credentials):
        credentials.register("a@b.com", _PASSWORD, "A B")
        with pytest.raises(InvalidCredentials):
            credentials.login("a@b.com", "")


class TestChangePassword:
    def test_change_password_then_login_with_new(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        credentials.change_password(account_id, _PASSWORD, "NewPassw0rd")

        with pytest.raises(InvalidCredentials):
            credentials.login("a@b.com", _PASSWORD)
        assert credentials.login("a@b.com", "NewPassw0rd").access_token

    def test_wrong_current_password(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        with pytest.raises(InvalidCredentials):
            credentials.change_password(account_id, "Wrong0Password", "NewPassw0rd")

    def test_new_password_must_meet_policy(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        with pytest.raises(ValidationError):
            credentials.change_password(account_id, _PASSWORD, "weak")

    def test_new_password_over_72_bytes_rejected(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        with pytest.raises(ValidationError):
            credentials.change_password(account_id, _PASSWORD, "Aa1" + "é" * 35)

    def test_oauth_only_account_unsupported(self, credentials, store):
        account_id = store.insert(Account(email="oauth@example.com", full_name="O Auth"))
        with pytest.raises(UnsupportedOperation):
            credentials.change_password(account_id, _PASSWORD, "NewPassw0rd")

    def test_unknown_account(self, credentials):
        with pytest.raises(AccountNotFound):
            credentials.change_password(999, _PASSWORD, "NewPassw0rd")


class TestUpdateProfile:
    def test_whitelisted_fields_updated(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        updated = credentials.update_profile(account_id, {"full_name": "Alice B", "avatar_url": "https://x/a.png"})
        assert updated.full_name == "Alice B"
        assert updated.avatar_url == "https://x/a.png"
        _assert_sanitized(updated)

    def test_non_whitelisted_fields_ignored(self, credentials, store):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        credentials.update_profile(account_id, {"full_name": "Alice", "is_premium": True, "email": "x@y.com"})
        row = store.find_by_id(account_id)
        assert row.is_premium is False
        assert row.email == "a@b.com"

    def test_no_whitelisted_fields_raises_no_changes(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        with pytest.raises(NoChanges):
            credentials.update_profile(account_id, {"is_premium": True})

    def test_blank_full_name_rejected(self, credentials):
        account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
        with pytest.raises(ValidationError):
            credentials.update_profile(account_id, {"full_name": " "})

    def test_unknown_account(self, credentials):
        with pytest.raises(AccountNotFound):
            credentials.update_profile(999, {"full_name": "Ghost"})


def test_get_account_is_sanitized(credentials):
    account_id = credentials.register("a@b.com", _PASSWORD, "A B").account.id
    _assert_sanitized(credentials.get_account(account_id))
