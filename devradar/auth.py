"""
OAuth account management.

Covers everything around the browser step: building the authorize URL,
validating the redirect, trading the code for a token, and keeping the
token in the credential store under the account's login. Opening the
browser and catching the redirect is left to the host application.
"""

import asyncio
import logging
import secrets
import string
from typing import List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from .cache import CacheStore
from .client import GitHubClient
from .config import settings
from .domain import (
    AuthenticationError,
    DecodingError,
    InvalidStateError,
    MissingCodeError,
    NoAccountError,
    TokenExchangeError,
)
from .credentials import CredentialStore
from .sync import AccountSession

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/authorize"
STATE_ALPHABET = string.ascii_letters + string.digits


def generate_state(length: int = 32) -> str:
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


class AuthenticationManager:
    """Tracks the signed-in account and its stored token."""

    def __init__(
        self,
        client: GitHubClient,
        credentials: CredentialStore,
        cache: Optional[CacheStore] = None,
        client_id: str = settings.github_client_id,
        client_secret: str = settings.github_client_secret,
        redirect_uri: str = settings.github_redirect_uri,
        scopes: Optional[List[str]] = None,
        oauth_url: str = settings.github_oauth_url,
    ):
        self.client = client
        self.credentials = credentials
        self.cache = cache
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes if scopes is not None else list(settings.github_scopes)
        self.oauth_url = oauth_url.rstrip("/")
        self.current_account: Optional[str] = None
        self._expected_state: Optional[str] = None
        self.restore()

    @property
    def is_authenticated(self) -> bool:
        return self.current_account is not None

    def restore(self) -> None:
        """Pick up the first stored account, if any."""
        accounts = self.list_accounts()
        self.current_account = accounts[0] if accounts else None

    def list_accounts(self) -> List[str]:
        return self.credentials.list()

    def authorization_url(self) -> str:
        """Start a sign-in: a fresh state is generated and remembered."""
        self._expected_state = generate_state()
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "scope": " ".join(self.scopes),
                "state": self._expected_state,
            }
        )
        return f"{self.oauth_url}{AUTHORIZE_PATH}?{query}"

    async def handle_callback(self, callback_url: str) -> str:
        """
        Finish a sign-in from the redirect URL and return the account login.

        The state must match the one issued by ``authorization_url``.
        """
        params = parse_qs(urlparse(callback_url).query)
        state = (params.get("state") or [None])[0]
        if self._expected_state is None or state != self._expected_state:
            raise InvalidStateError()
        self._expected_state = None

        code = (params.get("code") or [None])[0]
        if not code:
            raise MissingCodeError()

        token = await self.exchange_code_for_token(code)
        login = await self.fetch_username(token)
        await asyncio.to_thread(self.credentials.save, token, login)
        self.current_account = login
        logger.info(f"✅ Signed in as {login}")
        return login

    async def exchange_code_for_token(self, code: str) -> str:
        response = await self.client.exchange_oauth_code(
            code,
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            oauth_url=self.oauth_url,
        )
        token = response.get("access_token")
        if not token:
            logger.warning(f"⚠️ Token exchange refused: {response.get('error')}")
            raise TokenExchangeError()
        return token

    async def fetch_username(self, token: str) -> str:
        user = await self.client.execute_rest("/user", token)
        if not isinstance(user, dict) or not isinstance(user.get("login"), str):
            raise DecodingError("Missing key 'login' at path: user")
        return user["login"]

    async def sign_in_with_token(self, token: str, account: Optional[str] = None) -> str:
        """
        Store a personal access token under the login it belongs to.

        When ``account`` is given the token must belong to that login.
        """
        login = await self.fetch_username(token)
        if account is not None and account != login:
            raise AuthenticationError(f"The token belongs to {login}, not {account}")
        await asyncio.to_thread(self.credentials.save, token, login)
        self.current_account = login
        return login

    async def sign_out(self) -> None:
        """Forget the current account's token and its cached data."""
        account = self.current_account
        if account is None:
            return
        await asyncio.to_thread(self.credentials.delete, account)
        if self.cache is not None:
            await self.cache.delete_account(account)
        self.current_account = None
        logger.info(f"👋 Signed out {account}")

    def switch_account(self, account: str) -> None:
        if account not in self.list_accounts():
            raise NoAccountError()
        self.current_account = account

    def session(self) -> AccountSession:
        """The session for the sync engine; requires a signed-in account."""
        if self.current_account is None:
            raise NoAccountError()
        return AccountSession(account=self.current_account)
