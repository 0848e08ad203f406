"""
Unit tests for GitHub client implementation.

These tests verify that:
1. GitHubClient initializes and manages its session properly
2. GraphQL and REST requests are sent with the right URL, body and headers
3. HTTP statuses map onto the error taxonomy
4. Empty and malformed bodies are reported
5. Transport failures are classified and never retried
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from devradar.client import (
    EMPTY_RESPONSE,
    GitHubClient,
    parse_rate_limit_reset,
    raise_for_status,
)
from devradar.domain import (
    AuthenticationError,
    DecodingError,
    GraphQLErrors,
    HttpError,
    NoConnectionError,
    NoDataError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnknownApiError,
)

BASE_URL = "https://api.example.test"


def mock_response(status=200, body="", headers=None):
    """Async context manager standing in for ``session.request(...)``."""
    response = AsyncMock()
    response.status = status
    response.read = AsyncMock(
        return_value=body if isinstance(body, bytes) else body.encode("utf-8")
    )
    response.headers = headers or {}

    mock_context = AsyncMock()
    mock_context.__aenter__ = AsyncMock(return_value=response)
    mock_context.__aexit__ = AsyncMock(return_value=None)
    return mock_context


class TestGitHubClientInitialization:
    """Test GitHubClient initialization and setup."""

    def test_client_initialization(self):
        """Client builds its endpoints and default headers."""
        client = GitHubClient(base_url=BASE_URL + "/", api_version="2022-11-28")

        assert client.base_url == BASE_URL
        assert client.graphql_url == f"{BASE_URL}/graphql"
        assert client.headers["Accept"] == "application/vnd.github+json"
        assert client.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert client.headers["User-Agent"] == "DevRadar/1.0"

    @pytest.mark.asyncio
    async def test_request_outside_context_manager(self):
        """Requests need an open session."""
        client = GitHubClient(base_url=BASE_URL)

        with pytest.raises(RuntimeError, match="async context manager"):
            await client.execute_graphql("query { viewer { login } }", "token")


class TestGitHubClientContextManager:
    """Test GitHubClient async context manager functionality."""

    @pytest.mark.asyncio
    async def test_context_manager_session_creation(self):
        """Entering the client opens a session, leaving closes it."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            assert client._session is not None
            assert not client._session.closed

        assert client._session.closed


class TestGraphQLRequests:
    """Test GraphQL request handling."""

    @pytest.mark.asyncio
    async def test_graphql_request_success(self):
        """The query and variables are POSTed with a bearer token."""
        client = GitHubClient(base_url=BASE_URL)
        body = json.dumps({"data": {"viewer": {"login": "octocat"}}})

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, body)

                response = await client.execute_graphql(
                    "query { viewer { login } }", "secret-token", {"cursor": "abc"}
                )

        assert response.unwrap() == {"viewer": {"login": "octocat"}}
        call = mock_request.call_args
        assert call.args == ("POST", f"{BASE_URL}/graphql")
        assert call.kwargs["json"] == {
            "query": "query { viewer { login } }",
            "variables": {"cursor": "abc"},
        }
        assert call.kwargs["headers"] == {"Authorization": "Bearer secret-token"}

    @pytest.mark.asyncio
    async def test_graphql_envelope_errors_are_returned(self):
        """Server-reported errors arrive in the envelope, not as HTTP errors."""
        client = GitHubClient(base_url=BASE_URL)
        body = json.dumps(
            {"data": None, "errors": [{"message": "Field 'nope' doesn't exist"}]}
        )

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, body)
                response = await client.execute_graphql("query { nope }", "token")

        assert mock_request.call_args.kwargs["json"]["variables"] == {}
        with pytest.raises(GraphQLErrors, match="doesn't exist"):
            response.unwrap()

    @pytest.mark.asyncio
    async def test_graphql_empty_body(self):
        """An empty 200 body is a no-data failure."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, "")
                with pytest.raises(NoDataError):
                    await client.execute_graphql("query { viewer { login } }", "token")

    @pytest.mark.asyncio
    async def test_graphql_invalid_json(self):
        """A body that is not JSON is a decoding failure."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, "<html>oops</html>")
                with pytest.raises(DecodingError, match="not valid JSON"):
                    await client.execute_graphql("query { viewer { login } }", "token")

    @pytest.mark.asyncio
    async def test_graphql_invalid_utf8(self):
        """A body that is not UTF-8 is a decoding failure."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, b'{"data": {"x": "\xff\xfe"}}')
                with pytest.raises(DecodingError, match="not valid UTF-8"):
                    await client.execute_graphql("query { viewer { login } }", "token")

    @pytest.mark.asyncio
    async def test_error_status_with_invalid_utf8_body(self):
        """Error statuses are still classified when the body is not UTF-8."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(404, b"\xff\xfe")
                with pytest.raises(NotFoundError):
                    await client.execute_graphql("query { viewer { login } }", "token")


class TestStatusMapping:
    """Test HTTP status classification."""

    @pytest.mark.asyncio
    async def test_rate_limit_with_reset_header(self):
        """403 carries the reset time from the response headers."""
        client = GitHubClient(base_url=BASE_URL)
        headers = {"X-RateLimit-Reset": "1700000000"}

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(403, "", headers)
                with pytest.raises(RateLimitError) as exc_info:
                    await client.execute_graphql("query { viewer { login } }", "token")

        assert exc_info.value.reset_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_without_reset_header(self):
        """403 without the header has no reset time."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(403, "rate limited")
                with pytest.raises(RateLimitError) as exc_info:
                    await client.execute_graphql("query { viewer { login } }", "token")

        assert exc_info.value.reset_at is None
        assert "try again later" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self):
        """5xx surfaces immediately after a single attempt."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(502, "Bad Gateway")
                with pytest.raises(ServerError) as exc_info:
                    await client.execute_graphql("query { viewer { login } }", "token")

        assert exc_info.value.status_code == 502
        assert mock_request.call_count == 1

    @pytest.mark.parametrize(
        "status,error",
        [
            (401, AuthenticationError),
            (404, NotFoundError),
            (500, ServerError),
            (599, ServerError),
            (418, HttpError),
        ],
    )
    def test_raise_for_status(self, status, error):
        """Each status range maps onto one error type."""
        with pytest.raises(error):
            raise_for_status(status, {}, "")

    def test_raise_for_status_success(self):
        """2xx statuses pass."""
        raise_for_status(200, {}, "")
        raise_for_status(204, {}, "")

    def test_http_error_uses_body_message(self):
        """Other statuses carry the server's message when the body has one."""
        body = json.dumps({"message": "Validation Failed", "documentation_url": "x"})

        with pytest.raises(HttpError) as exc_info:
            raise_for_status(422, {}, body)

        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "Validation Failed"

    def test_http_error_without_json_body(self):
        """A non-JSON error body leaves the message empty."""
        with pytest.raises(HttpError) as exc_info:
            raise_for_status(422, {}, "nope")

        assert exc_info.value.message is None

    def test_parse_rate_limit_reset(self):
        """Garbled and missing reset headers are ignored."""
        assert parse_rate_limit_reset(None) is None
        assert parse_rate_limit_reset("soon") is None
        assert parse_rate_limit_reset("0") == datetime(1970, 1, 1, tzinfo=timezone.utc)


class TestTransportFailures:
    """Test classification of transport-level failures."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Timeouts become RequestTimeoutError."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(
                client._session, "request", side_effect=asyncio.TimeoutError()
            ):
                with pytest.raises(RequestTimeoutError):
                    await client.execute_graphql("query { viewer { login } }", "token")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Connection errors become NoConnectionError."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(
                client._session,
                "request",
                side_effect=aiohttp.ClientConnectionError("connection refused"),
            ) as mock_request:
                with pytest.raises(NoConnectionError):
                    await client.execute_graphql("query { viewer { login } }", "token")

        assert mock_request.call_count == 1

    @pytest.mark.asyncio
    async def test_other_client_error(self):
        """Anything else from aiohttp is an unknown failure wrapping the cause."""
        client = GitHubClient(base_url=BASE_URL)
        cause = aiohttp.ClientPayloadError("truncated")

        async with client:
            with patch.object(client._session, "request", side_effect=cause):
                with pytest.raises(UnknownApiError) as exc_info:
                    await client.execute_graphql("query { viewer { login } }", "token")

        assert exc_info.value.cause is cause


class TestRestRequests:
    """Test REST requests and the OAuth token exchange."""

    @pytest.mark.asyncio
    async def test_execute_rest_get(self):
        """REST calls hit the endpoint under the base URL."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, json.dumps({"login": "octocat"}))
                user = await client.execute_rest("/user", "token")

        assert user == {"login": "octocat"}
        assert mock_request.call_args.args == ("GET", f"{BASE_URL}/user")

    @pytest.mark.asyncio
    async def test_execute_rest_empty_body_allowed(self):
        """Empty bodies are fine when no content is expected."""
        client = GitHubClient(base_url=BASE_URL)

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(204, "")
                result = await client.execute_rest(
                    "/user/starred/octocat/repo-1", "token", method="PUT", expect_content=False
                )

        assert result is EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_exchange_oauth_code(self):
        """The code is traded at the OAuth endpoint without a bearer token."""
        client = GitHubClient(base_url=BASE_URL)
        body = json.dumps({"access_token": "gho_abc", "token_type": "bearer"})

        async with client:
            with patch.object(client._session, "request") as mock_request:
                mock_request.return_value = mock_response(200, body)
                response = await client.exchange_oauth_code(
                    "code-1",
                    client_id="client",
                    client_secret="secret",
                    redirect_uri="devradar://oauth-callback",
                    oauth_url="https://github.example/login/oauth/",
                )

        assert response["access_token"] == "gho_abc"
        call = mock_request.call_args
        assert call.args == ("POST", "https://github.example/login/oauth/access_token")
        assert call.kwargs["headers"] == {"Accept": "application/json"}
        assert call.kwargs["params"] == {
            "client_id": "client",
            "client_secret": "secret",
            "code": "code-1",
            "redirect_uri": "devradar://oauth-callback",
        }
