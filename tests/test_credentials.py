"""
Tests for the environment-backed credential provider.
"""

import pytest

from contactsync.auth.credentials import (
    CredentialError,
    EnvCredentialProvider,
    env_key,
)


class TestEnvKey:
    """Tests for env_key."""

    def test_upper_cases_and_replaces(self):
        """Test that ids become valid variable suffixes."""
        assert env_key("CONTACTSYNC_TOKEN_", "abc-123.x") == "CONTACTSYNC_TOKEN_ABC_123_X"


class TestEnvCredentialProvider:
    """Tests for EnvCredentialProvider lookups."""

    def test_specific_password_wins(self):
        """Test that the per-source variable is preferred."""
        provider = EnvCredentialProvider(
            {
                "CONTACTSYNC_PASSWORD_SRC_1": "specific",
                "CONTACTSYNC_PASSWORD": "generic",
            }
        )
        assert provider.get_carddav_password("src-1") == "specific"

    def test_password_fallback(self):
        """Test that the generic password is used as a fallback."""
        provider = EnvCredentialProvider({"CONTACTSYNC_PASSWORD": "generic"})
        assert provider.get_carddav_password("src-1") == "generic"

    def test_account_token(self):
        """Test looking up an account token."""
        provider = EnvCredentialProvider({"CONTACTSYNC_TOKEN_ACCT": "tok"})
        assert provider.get_account_token("acct") == "tok"

    def test_source_token_fallback(self):
        """Test that the generic access token is used as a fallback."""
        provider = EnvCredentialProvider({"CONTACTSYNC_ACCESS_TOKEN": "tok"})
        assert provider.get_source_token("src-2") == "tok"

    def test_empty_values_are_ignored(self):
        """Test that blank variables count as unset."""
        provider = EnvCredentialProvider(
            {"CONTACTSYNC_TOKEN_SRC": "", "CONTACTSYNC_ACCESS_TOKEN": "tok"}
        )
        assert provider.get_source_token("src") == "tok"

    def test_missing_raises(self):
        """Test that a missing secret raises CredentialError."""
        provider = EnvCredentialProvider({})
        with pytest.raises(CredentialError, match="CONTACTSYNC_PASSWORD_SRC"):
            provider.get_carddav_password("src")

    def test_defaults_to_os_environ(self, monkeypatch):
        """Test that the process environment is used by default."""
        monkeypatch.setenv("CONTACTSYNC_ACCESS_TOKEN", "from-env")
        assert EnvCredentialProvider().get_account_token("a") == "from-env"
