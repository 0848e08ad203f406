"""
Unit tests for the keyring-backed credential store.

These tests verify that:
1. Tokens round-trip through the keyring per account
2. Saving again replaces the token instead of failing
3. Deleting is idempotent and updates the account index
4. Keyring failures surface as CredentialError
"""

from unittest.mock import patch

import pytest
from keyring.errors import KeyringError

from devradar.credentials import ACCOUNT_INDEX_KEY, CredentialStore
from devradar.domain import CredentialError, CredentialNotFoundError

SERVICE = "com.devradar.test"


class TestCredentialStore:
    """Test saving, reading and deleting tokens."""

    def test_save_and_retrieve(self, memory_keyring):
        """A saved token can be read back by account."""
        store = CredentialStore(service=SERVICE)

        store.save("token-1", "octocat")

        assert store.retrieve("octocat") == "token-1"
        assert memory_keyring.entries[(SERVICE, "octocat")] == "token-1"

    def test_save_replaces_existing_token(self, memory_keyring):
        """Saving for a known account overwrites the old token."""
        store = CredentialStore(service=SERVICE)

        store.save("token-1", "octocat")
        store.save("token-2", "octocat")

        assert store.retrieve("octocat") == "token-2"
        assert store.list() == ["octocat"]

    def test_retrieve_unknown_account(self, memory_keyring):
        """Unknown accounts raise CredentialNotFoundError."""
        store = CredentialStore(service=SERVICE)

        with pytest.raises(CredentialNotFoundError) as exc_info:
            store.retrieve("nobody")

        assert exc_info.value.account == "nobody"

    def test_list_keeps_save_order(self, memory_keyring):
        """Accounts are listed in the order first saved."""
        store = CredentialStore(service=SERVICE)

        store.save("token-1", "octocat")
        store.save("token-2", "hubot")
        store.save("token-3", "octocat")

        assert store.list() == ["octocat", "hubot"]

    def test_delete(self, memory_keyring):
        """Deleting removes both the token and the index entry."""
        store = CredentialStore(service=SERVICE)
        store.save("token-1", "octocat")
        store.save("token-2", "hubot")

        store.delete("octocat")

        assert store.list() == ["hubot"]
        with pytest.raises(CredentialNotFoundError):
            store.retrieve("octocat")

    def test_delete_unknown_account_is_noop(self, memory_keyring):
        """Deleting a missing account does not raise."""
        store = CredentialStore(service=SERVICE)

        store.delete("nobody")

        assert store.list() == []

    def test_services_are_isolated(self, memory_keyring):
        """Stores for different services do not see each other."""
        CredentialStore(service=SERVICE).save("token-1", "octocat")

        assert CredentialStore(service="other").list() == []

    def test_invalid_account_names(self, memory_keyring):
        """Empty names and the index key are rejected."""
        store = CredentialStore(service=SERVICE)

        with pytest.raises(ValueError):
            store.save("token", "")
        with pytest.raises(ValueError):
            store.save("token", ACCOUNT_INDEX_KEY)

    def test_corrupted_index(self, memory_keyring):
        """A corrupted index is treated as empty."""
        memory_keyring.entries[(SERVICE, ACCOUNT_INDEX_KEY)] = "{not json"
        store = CredentialStore(service=SERVICE)

        assert store.list() == []

    def test_keyring_failure(self, memory_keyring):
        """Backend errors are wrapped in CredentialError."""
        store = CredentialStore(service=SERVICE)

        with patch(
            "devradar.credentials.keyring.get_password", side_effect=KeyringError("locked")
        ):
            with pytest.raises(CredentialError, match="locked"):
                store.retrieve("octocat")
