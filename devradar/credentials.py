"""
Secure token storage on top of the OS keyring.

One secret is kept per account login under the configured keyring service.
Keyrings cannot enumerate their entries, so the store also maintains an
account index entry in the same service.
"""

import json
import logging
from typing import List

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import settings
from .domain import CredentialError, CredentialNotFoundError

logger = logging.getLogger(__name__)

ACCOUNT_INDEX_KEY = "__devradar_accounts__"


class CredentialStore:
    """Maps an account identifier to its access token."""

    def __init__(self, service: str = settings.keyring_service):
        self.service = service

    def save(self, token: str, account: str) -> None:
        """Store ``token`` for ``account``, replacing any existing token."""
        if not account or account == ACCOUNT_INDEX_KEY:
            raise ValueError(f"Invalid account name: {account!r}")
        try:
            # set_password overwrites in place, so an existing entry is an update
            keyring.set_password(self.service, account, token)
            accounts = self._read_index()
            if account not in accounts:
                accounts.append(account)
                self._write_index(accounts)
        except KeyringError as e:
            raise CredentialError(f"Could not save credential for '{account}': {e}") from e
        logger.info(f"🔐 Saved credential for {account}")

    def retrieve(self, account: str) -> str:
        try:
            token = keyring.get_password(self.service, account)
        except KeyringError as e:
            raise CredentialError(f"Could not read credential for '{account}': {e}") from e
        if token is None:
            raise CredentialNotFoundError(account)
        return token

    def delete(self, account: str) -> None:
        """Remove the token for ``account``; unknown accounts are a no-op."""
        try:
            keyring.delete_password(self.service, account)
        except PasswordDeleteError:
            logger.debug(f"No credential to delete for {account}")
        except KeyringError as e:
            raise CredentialError(f"Could not delete credential for '{account}': {e}") from e

        accounts = self._read_index()
        if account in accounts:
            accounts.remove(account)
            self._write_index(accounts)
        logger.info(f"🗑️ Deleted credential for {account}")

    def list(self) -> List[str]:
        """Accounts with a stored token, in the order they were first saved."""
        return self._read_index()

    def _read_index(self) -> List[str]:
        try:
            raw = keyring.get_password(self.service, ACCOUNT_INDEX_KEY)
        except KeyringError as e:
            raise CredentialError(f"Could not read account index: {e}") from e
        if not raw:
            return []
        try:
            accounts = json.loads(raw)
        except ValueError:
            logger.warning("⚠️ Account index is corrupted, starting a new one")
            return []
        return [a for a in accounts if isinstance(a, str)]

    def _write_index(self, accounts: List[str]) -> None:
        try:
            keyring.set_password(self.service, ACCOUNT_INDEX_KEY, json.dumps(accounts))
        except KeyringError as e:
            raise CredentialError(f"Could not write account index: {e}") from e
