"""
pytest configuration for DevRadar tests.

This file configures:
1. Test markers for different test types
2. An in-memory keyring backend
3. Builders for GitHub GraphQL nodes and paginated responses
4. A sync engine wired to mocks and an in-memory cache
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from devradar.cache import MemoryCacheStore
from devradar.client import GitHubClient
from devradar.credentials import CredentialStore
from devradar.domain import parse_graphql_response
from devradar.sync import AccountSession, SyncEngine

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps secrets in a dict."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.entries = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError("No such password")


@pytest.fixture
def memory_keyring():
    """Swap the process keyring for an in-memory one."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


def make_repository_node(
    id="R_1",
    name="repo-1",
    owner="octocat",
    updated_at="2024-05-01T10:00:00Z",
    stars=10,
    **extra,
):
    node = {
        "id": id,
        "name": name,
        "nameWithOwner": f"{owner}/{name}",
        "description": f"The {name} repository",
        "url": f"https://github.com/{owner}/{name}",
        "stargazerCount": stars,
        "forkCount": 2,
        "primaryLanguage": {"name": "Python", "color": "#3572A5"},
        "createdAt": "2023-01-01T00:00:00Z",
        "updatedAt": updated_at,
        "pushedAt": updated_at,
        "isPrivate": False,
        "isFork": False,
        "owner": {"login": owner, "avatarUrl": f"https://avatars.example/{owner}"},
    }
    node.update(extra)
    return node


def make_pull_request_node(
    id="PR_1",
    number=1,
    title="Add feature",
    state="OPEN",
    updated_at="2024-05-01T10:00:00Z",
    **extra,
):
    node = {
        "id": id,
        "title": title,
        "number": number,
        "url": f"https://github.com/octocat/repo-1/pull/{number}",
        "state": state,
        "isDraft": False,
        "createdAt": "2024-04-01T10:00:00Z",
        "updatedAt": updated_at,
        "mergedAt": None,
        "closedAt": None,
        "additions": 10,
        "deletions": 3,
        "repository": {
            "name": "repo-1",
            "nameWithOwner": "octocat/repo-1",
            "owner": {"login": "octocat"},
        },
        "author": {"login": "octocat", "avatarUrl": "https://avatars.example/octocat"},
        "reviewDecision": None,
        "reviews": {"nodes": []},
    }
    node.update(extra)
    return node


def make_viewer_node(login="octocat", counts=(1, 2, 0, 3), with_contributions=True):
    node = {
        "id": "U_1",
        "login": login,
        "name": "Mona Lisa",
        "email": "mona@example.com",
        "avatarUrl": f"https://avatars.example/{login}",
        "bio": "Octocat",
        "company": "GitHub",
        "location": "San Francisco",
        "url": f"https://github.com/{login}",
        "status": {"message": "Shipping", "emoji": ":rocket:"},
        "contributionsCollection": None,
    }
    if with_contributions:
        node["contributionsCollection"] = {
            "contributionCalendar": {
                "totalContributions": sum(counts),
                "weeks": [
                    {
                        "contributionDays": [
                            {
                                "contributionCount": count,
                                "date": f"2024-01-{day + 1:02d}",
                                "color": "#40c463" if count else "#ebedf0",
                            }
                            for day, count in enumerate(counts)
                        ]
                    }
                ],
            },
            "totalCommitContributions": 5,
            "totalIssueContributions": 1,
            "totalPullRequestContributions": 2,
            "totalPullRequestReviewContributions": 3,
        }
    return node


def make_page(connection, nodes, has_next_page=False, end_cursor=None):
    """A viewer connection page, e.g. ``viewer.repositories``."""
    return {
        "data": {
            "viewer": {
                connection: {
                    "pageInfo": {"hasNextPage": has_next_page, "endCursor": end_cursor},
                    "nodes": nodes,
                }
            }
        }
    }


def envelope(payload):
    return parse_graphql_response(payload)


@pytest.fixture
def repository_node():
    return make_repository_node


@pytest.fixture
def pull_request_node():
    return make_pull_request_node


@pytest.fixture
def viewer_node():
    return make_viewer_node


@pytest.fixture
def page():
    return make_page


@pytest.fixture
def as_envelope():
    return envelope


@pytest.fixture
def mock_client():
    client = Mock(spec=GitHubClient)
    client.execute_graphql = AsyncMock()
    return client


@pytest.fixture
def mock_credentials():
    credentials = Mock(spec=CredentialStore)
    credentials.retrieve.return_value = "token-123"
    return credentials


@pytest.fixture
def clock():
    """A settable clock; call ``clock.now = ...`` to move time."""

    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def cache():
    return MemoryCacheStore()


@pytest.fixture
def engine(mock_client, cache, mock_credentials, clock):
    return SyncEngine(
        mock_client,
        cache,
        mock_credentials,
        AccountSession(account="octocat"),
        clock=clock,
    )
