"""
Sync engine: the fetch-or-refresh contract between callers, the local
cache and the GitHub API.

Cached operations (user, repositories, pull requests) follow one template:

1. Unless forced, serve the cache when its most recent record is fresh.
2. Otherwise look up the account token and fetch every page from GitHub.
3. Upsert each fetched entity by identity key and commit one batch.
4. Return the freshly fetched domain objects.

Review requests, repository details and contribution activity are always
fetched live. No failure is retried or swallowed here; partially fetched
pages are dropped and nothing is committed unless the whole fetch succeeded.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .cache import CacheStore, RecordSet
from .client import GitHubClient
from .credentials import CredentialStore
from .domain import (
    AuthenticationError,
    ContributionsCollection,
    DecodingError,
    NoAccountError,
    NotFoundError,
    PullRequest,
    Repository,
    User,
    decode,
    transform_contributions_collection,
    transform_page_info,
    transform_pull_request,
    transform_repository,
    transform_user,
)
from .models import (
    FRESHNESS_WINDOW,
    CachedPullRequest,
    CachedRecord,
    CachedRepository,
    CachedUser,
    utcnow,
)
from .queries import (
    CONTRIBUTION_ACTIVITY_QUERY,
    PULL_REQUESTS_QUERY,
    REPOSITORIES_QUERY,
    REPOSITORY_DETAILS_QUERY,
    REVIEW_REQUESTS_QUERY,
    VIEWER_QUERY,
    CursorVariables,
    DateRangeVariables,
    RepositoryVariables,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AccountSession:
    """The account a sync engine acts for."""

    account: str

    def __post_init__(self):
        if not self.account:
            raise NoAccountError()


def _dig(data: Dict[str, Any], path: Sequence[str]) -> Any:
    node = data
    for key in path:
        node = node[key]
    if node is None:
        raise ValueError(f"'{path[-1]}' is null")
    return node


class SyncEngine:
    """Fetches one account's GitHub data, keeping the local cache current."""

    def __init__(
        self,
        client: GitHubClient,
        cache: CacheStore,
        credentials: CredentialStore,
        session: AccountSession,
        freshness_window: timedelta = FRESHNESS_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.cache = cache
        self.credentials = credentials
        self.session = session
        self.freshness_window = freshness_window
        self.clock = clock

    @property
    def account(self) -> str:
        return self.session.account

    async def _token(self) -> str:
        # keyring calls block, keep them off the event loop
        return await asyncio.to_thread(self.credentials.retrieve, self.account)

    async def _query(
        self, query: str, token: str, variables: Optional[Any] = None
    ) -> Dict[str, Any]:
        response = await self.client.execute_graphql(
            query, token, variables.as_dict() if variables is not None else None
        )
        return response.unwrap()

    async def _paginate(
        self,
        query: str,
        token: str,
        path: Sequence[str],
        transform: Callable[[Dict[str, Any]], T],
    ) -> List[T]:
        """
        Follow a cursor-paginated connection until ``hasNextPage`` is false.

        Pages are requested strictly in order, each with the previous page's
        ``endCursor``. A cursor that fails to advance is a protocol error.
        """
        label = ".".join(path)
        items: List[T] = []
        cursor: Optional[str] = None
        requested = set()
        page = 0

        while True:
            requested.add(cursor)
            data = await self._query(query, token, CursorVariables(cursor))
            connection = decode(lambda d: _dig(d, path), data, label)
            nodes = decode(lambda c: list(c["nodes"]), connection, label)
            for node in nodes:
                items.append(decode(transform, node, f"{label}.nodes[{len(items)}]"))
            page_info = decode(
                lambda c: transform_page_info(c["pageInfo"]), connection, f"{label}.pageInfo"
            )
            page += 1
            logger.debug(f"📄 {label} page {page}: {len(nodes)} nodes")

            if not page_info.has_next_page:
                break
            if page_info.end_cursor is None or page_info.end_cursor in requested:
                raise DecodingError(
                    f"Pagination cursor did not advance at path: {label}.pageInfo.endCursor"
                )
            cursor = page_info.end_cursor

        logger.info(f"🔍 Fetched {len(items)} {path[-1]} in {page} page(s)")
        return items

    def _most_recent_is_fresh(self, records: List[CachedRecord]) -> bool:
        return bool(records) and records[0].is_fresh(self.clock(), self.freshness_window)

    def _upsert(
        self,
        records: RecordSet,
        items: List[Any],
        build: Callable[[Any, datetime], CachedRecord],
    ) -> None:
        now = self.clock()
        for item in items:
            existing = records.find_by_key(item.id)
            if existing is not None:
                records.update_in_place(existing, item, now)
                existing.account = self.account
            else:
                records.insert(build(item, now))

    async def fetch_user(self, force_refresh: bool = False) -> User:
        if not force_refresh:
            cached = self.cache.users.find_by_key(self.account)
            if cached is not None and cached.is_fresh(self.clock(), self.freshness_window):
                logger.info(f"✅ Serving cached profile for {self.account}")
                return cached.to_domain()

        token = await self._token()
        data = await self._query(VIEWER_QUERY, token)
        user = decode(lambda d: transform_user(_dig(d, ["viewer"])), data, "viewer")
        # profiles are cached under the account login
        if user.login != self.account:
            raise AuthenticationError(
                f"The token for {self.account} belongs to {user.login}. Please sign in again"
            )

        now = self.clock()
        existing = self.cache.users.find_by_key(self.account)
        if existing is not None:
            self.cache.users.update_in_place(existing, user, now)
        else:
            self.cache.users.insert(CachedUser.from_domain(user, now))
        await self.cache.commit()

        logger.info(f"👤 Refreshed profile for {user.login}")
        return user

    async def fetch_repositories(self, force_refresh: bool = False) -> List[Repository]:
        if not force_refresh:
            cached = self.cache.repositories.find_all_sorted_by_update_time(
                descending=True, account=self.account
            )
            if self._most_recent_is_fresh(cached):
                logger.info(f"✅ Serving {len(cached)} cached repositories")
                return [record.to_domain() for record in cached]

        token = await self._token()
        repositories = await self._paginate(
            REPOSITORIES_QUERY, token, ["viewer", "repositories"], transform_repository
        )

        self._upsert(
            self.cache.repositories,
            repositories,
            lambda repo, now: CachedRepository.from_domain(repo, self.account, now),
        )
        await self.cache.commit()
        return repositories

    async def fetch_pull_requests(self, force_refresh: bool = False) -> List[PullRequest]:
        if not force_refresh:
            cached = self.cache.pull_requests.find_all_sorted_by_update_time(
                descending=True, account=self.account
            )
            if self._most_recent_is_fresh(cached):
                logger.info(f"✅ Serving {len(cached)} cached pull requests")
                return [record.to_domain() for record in cached]

        token = await self._token()
        pull_requests = await self._paginate(
            PULL_REQUESTS_QUERY, token, ["viewer", "pullRequests"], transform_pull_request
        )

        self._upsert(
            self.cache.pull_requests,
            pull_requests,
            lambda pr, now: CachedPullRequest.from_domain(pr, self.account, now),
        )
        await self.cache.commit()
        return pull_requests

    async def fetch_review_requests(self) -> List[PullRequest]:
        """Open pull requests awaiting the account's review. Never cached."""
        token = await self._token()
        data = await self._query(REVIEW_REQUESTS_QUERY, token)
        nodes = decode(lambda d: list(_dig(d, ["search", "nodes"])), data, "search.nodes")
        # Non-PR search hits come back as empty objects
        return [
            decode(transform_pull_request, node, f"search.nodes[{i}]")
            for i, node in enumerate(nodes)
            if node
        ]

    async def fetch_repository_details(self, owner: str, name: str) -> Repository:
        """Full detail view of one repository. Never cached."""
        variables = RepositoryVariables(owner=owner, name=name)
        token = await self._token()
        data = await self._query(REPOSITORY_DETAILS_QUERY, token, variables)
        if data.get("repository") is None:
            raise NotFoundError(f"Repository {owner}/{name} not found")
        return decode(transform_repository, data["repository"], "repository")

    async def fetch_contribution_activity(
        self, start: datetime, end: datetime
    ) -> ContributionsCollection:
        """Contributions between ``start`` and ``end``. Never cached."""
        variables = DateRangeVariables(start=start, end=end)
        token = await self._token()
        data = await self._query(CONTRIBUTION_ACTIVITY_QUERY, token, variables)
        return decode(
            lambda d: transform_contributions_collection(
                _dig(d, ["viewer", "contributionsCollection"])
            ),
            data,
            "viewer.contributionsCollection",
        )
