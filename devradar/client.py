import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import aiohttp

from .config import settings
from .domain import (
    ApiError,
    AuthenticationError,
    DecodingError,
    GraphQLResponse,
    HttpError,
    InvalidRequestError,
    NoConnectionError,
    NoDataError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnknownApiError,
    parse_graphql_response,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"


class EmptyResponse:
    """Marker returned for a successful response with no body."""

    def __repr__(self):
        return "EMPTY_RESPONSE"


EMPTY_RESPONSE = EmptyResponse()


def parse_rate_limit_reset(value: Optional[str]) -> Optional[datetime]:
    """Parse the Unix-timestamp reset header, or None if absent/garbled."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def raise_for_status(status: int, headers: Mapping[str, str], body: str) -> None:
    """Translate a non-2xx HTTP status into the client's error taxonomy."""
    if 200 <= status < 300:
        return
    if status == 401:
        raise AuthenticationError()
    if status == 403:
        raise RateLimitError(parse_rate_limit_reset(headers.get(RATE_LIMIT_RESET_HEADER)))
    if status == 404:
        raise NotFoundError()
    if 500 <= status < 600:
        raise ServerError(status)

    message = None
    try:
        error_body = json.loads(body)
        if isinstance(error_body, dict) and isinstance(error_body.get("message"), str):
            message = error_body["message"]
    except ValueError:
        pass
    raise HttpError(status, message)


class GitHubClient:
    """
    Authenticated GitHub GraphQL/REST client.

    The client performs no retries: every failure is classified into the
    ``ApiError`` taxonomy and surfaced to the caller, which decides whether
    to try again. Tokens are passed per call so one session can serve
    several accounts.
    """

    def __init__(
        self,
        base_url: str = settings.github_api_url,
        timeout: float = settings.request_timeout_seconds,
        api_version: str = settings.github_api_version,
    ):
        self.base_url = base_url.rstrip("/")
        self.graphql_url = f"{self.base_url}/graphql"
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": api_version,
            "User-Agent": "DevRadar/1.0",
        }
        self.timeout = timeout
        self._connector = None
        self._session = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._connector = aiohttp.TCPConnector(
            limit=20,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        self._session = aiohttp.ClientSession(
            connector=self._connector,
            headers=self.headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._session:
            await self._session.close()
        if self._connector:
            await self._connector.close()

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def execute_graphql(
        self,
        query: str,
        token: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> GraphQLResponse:
        """
        POST a GraphQL document and decode the response envelope.

        The envelope is returned as-is; call ``unwrap()`` on it to get the
        data or the server-reported errors.
        """
        payload = {"query": query, "variables": variables or {}}
        body = await self._send(
            "POST",
            self.graphql_url,
            headers=self._auth_headers(token),
            json_body=payload,
        )
        return parse_graphql_response(body)

    async def execute_rest(
        self,
        endpoint: str,
        token: str,
        method: str = "GET",
        body: Optional[Any] = None,
        expect_content: bool = True,
    ) -> Any:
        """
        Call ``{base_url}{endpoint}`` and return the decoded JSON body.

        With ``expect_content=False`` an empty body yields ``EMPTY_RESPONSE``.
        """
        return await self._send(
            method,
            f"{self.base_url}{endpoint}",
            headers=self._auth_headers(token),
            json_body=body,
            expect_content=expect_content,
        )

    async def exchange_oauth_code(
        self,
        code: str,
        client_id: str = settings.github_client_id,
        client_secret: str = settings.github_client_secret,
        redirect_uri: str = settings.github_redirect_uri,
        oauth_url: str = settings.github_oauth_url,
    ) -> Dict[str, Any]:
        """Trade an OAuth authorization code for a token response."""
        response = await self._send(
            "POST",
            f"{oauth_url.rstrip('/')}/access_token",
            headers={"Accept": "application/json"},
            params={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        if not isinstance(response, dict):
            raise DecodingError("Expected an object in the token response")
        return response

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Any] = None,
        params: Optional[Dict[str, str]] = None,
        expect_content: bool = True,
    ) -> Any:
        if not self._session:
            raise RuntimeError("Client must be used as async context manager")

        logger.debug(f"➡️ {method} {url}")
        try:
            async with self._session.request(
                method, url, headers=headers, json=json_body, params=params
            ) as resp:
                body = await resp.read()
                raise_for_status(
                    resp.status, resp.headers, body.decode("utf-8", errors="replace")
                )
        except ApiError as e:
            logger.warning(f"⚠️ {method} {url} failed: {e}")
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"⏱️ {method} {url} timed out")
            raise RequestTimeoutError() from e
        except aiohttp.InvalidURL as e:
            raise InvalidRequestError(f"The URL is invalid: {url}") from e
        except aiohttp.ClientConnectionError as e:
            logger.warning(f"🔌 Network error: {e}")
            raise NoConnectionError() from e
        except aiohttp.ClientError as e:
            logger.error(f"❌ Unexpected client error: {e}")
            raise UnknownApiError(e) from e

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodingError(f"Response is not valid UTF-8: {e}") from e

        if not text.strip():
            if expect_content:
                raise NoDataError()
            return EMPTY_RESPONSE

        try:
            return json.loads(text)
        except ValueError as e:
            raise DecodingError(f"Response is not valid JSON: {e}") from e
