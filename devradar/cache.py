"""
Local cache of users, repositories and pull requests.

Each entity kind lives in a ``RecordSet``: an explicit index from identity
key to record, plus a sort pass for "most recent" queries. Inserts and
in-place updates are staged in memory and written as one batch by
``CacheStore.commit()``. A batch that fails to persist is rolled back in
memory too, so a failed write never makes stale data look fresh.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import settings
from .domain import CacheWriteError
from .models import (
    CachedContributionCalendar,
    CachedContributionDay,
    CachedContributionWeek,
    CachedPullRequest,
    CachedRecord,
    CachedRepository,
    CachedUser,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=CachedRecord)


class RecordSet(Generic[R]):
    """Keyed records of one entity kind, with staged changes."""

    def __init__(self, kind: str):
        self.kind = kind
        self._records: Dict[str, R] = {}
        # key -> copy of the record before this batch touched it (None if new)
        self._pending: Dict[str, Optional[R]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def find_by_key(self, key: str) -> Optional[R]:
        return self._records.get(key)

    def find_all_sorted_by_update_time(
        self, descending: bool = True, account: Optional[str] = None
    ) -> List[R]:
        records = [
            r
            for r in self._records.values()
            if account is None or getattr(r, "account", None) == account
        ]
        return sorted(records, key=lambda r: r.recency, reverse=descending)

    def insert(self, record: R) -> None:
        self._track(record.key)
        self._records[record.key] = record

    def update_in_place(self, existing: R, source: Any, now: Optional[datetime] = None) -> None:
        """Overwrite ``existing`` from a domain object and reset its ``cached_at``."""
        self._track(existing.key)
        existing.update_from(source, now)

    def _track(self, key: str) -> None:
        if key in self._pending:
            return
        current = self._records.get(key)
        self._pending[key] = current.model_copy(deep=True) if current is not None else None

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def take_pending(self) -> Tuple[List[R], Dict[str, Optional[R]]]:
        """Detach the staged changes: the records to write and their snapshots."""
        snapshot, self._pending = self._pending, {}
        return [self._records[key] for key in snapshot if key in self._records], snapshot

    def restore(self, snapshot: Dict[str, Optional[R]]) -> None:
        for key, previous in snapshot.items():
            if previous is None:
                self._records.pop(key, None)
            else:
                self._records[key] = previous

    def load(self, records: List[R]) -> None:
        self._records = {r.key: r for r in records}
        self._pending = {}

    def remove_where(self, predicate: Callable[[R], bool]) -> List[R]:
        removed = [r for r in self._records.values() if predicate(r)]
        for record in removed:
            del self._records[record.key]
            self._pending.pop(record.key, None)
        return removed


@dataclass
class CacheBatch:
    """The records one ``commit()`` writes together."""

    users: List[CachedUser] = field(default_factory=list)
    repositories: List[CachedRepository] = field(default_factory=list)
    pull_requests: List[CachedPullRequest] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.users) + len(self.repositories) + len(self.pull_requests)


class CacheStore:
    """
    Base cache store; subclasses decide where committed batches go.

    Lookups are served from the in-memory indexes, so they never block.
    """

    def __init__(self):
        self.users: RecordSet[CachedUser] = RecordSet("user")
        self.repositories: RecordSet[CachedRepository] = RecordSet("repository")
        self.pull_requests: RecordSet[CachedPullRequest] = RecordSet("pull_request")

    async def commit(self) -> int:
        """
        Persist every staged change as one batch and return its size.

        On failure the staged records are rolled back and ``CacheWriteError``
        is raised; none of the batch is considered durable.
        """
        users, user_snapshot = self.users.take_pending()
        repositories, repository_snapshot = self.repositories.take_pending()
        pull_requests, pull_request_snapshot = self.pull_requests.take_pending()
        batch = CacheBatch(users=users, repositories=repositories, pull_requests=pull_requests)
        if batch.size == 0:
            return 0

        def rollback():
            self.users.restore(user_snapshot)
            self.repositories.restore(repository_snapshot)
            self.pull_requests.restore(pull_request_snapshot)

        try:
            await self._persist(batch)
        except asyncio.CancelledError:
            rollback()
            raise
        except Exception as e:
            rollback()
            logger.error(f"❌ Cache commit of {batch.size} records failed: {e}")
            raise CacheWriteError(f"Could not commit {batch.size} cached records: {e}") from e

        logger.debug(
            f"💾 Committed {len(batch.users)} users, {len(batch.repositories)} "
            f"repositories, {len(batch.pull_requests)} pull requests"
        )
        return batch.size

    async def delete_account(self, login: str) -> None:
        """Remove a cached user and everything cached on its behalf."""
        await self._delete_account(login)
        self.users.remove_where(lambda u: u.login == login)
        self.repositories.remove_where(lambda r: r.account == login)
        self.pull_requests.remove_where(lambda p: p.account == login)
        logger.info(f"🗑️ Removed cached data for {login}")

    async def _persist(self, batch: CacheBatch) -> None:
        raise NotImplementedError

    async def _delete_account(self, login: str) -> None:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    """Process-local store: commits succeed but nothing outlives the process."""

    async def _persist(self, batch: CacheBatch) -> None:
        return None

    async def _delete_account(self, login: str) -> None:
        return None


USER_COLUMNS = [
    "login",
    "name",
    "email",
    "avatar_url",
    "bio",
    "company",
    "location",
    "url",
    "total_contributions",
    "current_streak",
    "longest_streak",
    "total_commits",
    "total_prs",
    "total_issues",
    "total_reviews",
    "cached_at",
]

REPOSITORY_COLUMNS = [
    "id",
    "account",
    "name",
    "name_with_owner",
    "description",
    "url",
    "stargazer_count",
    "fork_count",
    "primary_language_name",
    "primary_language_color",
    "updated_at",
    "pushed_at",
    "is_private",
    "is_fork",
    "owner_login",
    "owner_avatar_url",
    "cached_at",
]

PULL_REQUEST_COLUMNS = [
    "id",
    "account",
    "title",
    "number",
    "url",
    "state",
    "is_draft",
    "created_at",
    "updated_at",
    "merged_at",
    "closed_at",
    "additions",
    "deletions",
    "repository_name",
    "repository_name_with_owner",
    "repository_owner_login",
    "author_login",
    "author_avatar_url",
    "review_decision",
    "cached_at",
]

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS cached_user (
        login TEXT PRIMARY KEY,
        name TEXT,
        email TEXT,
        avatar_url TEXT NOT NULL,
        bio TEXT,
        company TEXT,
        location TEXT,
        url TEXT NOT NULL,
        total_contributions INT NOT NULL DEFAULT 0,
        current_streak INT NOT NULL DEFAULT 0,
        longest_streak INT NOT NULL DEFAULT 0,
        total_commits INT NOT NULL DEFAULT 0,
        total_prs INT NOT NULL DEFAULT 0,
        total_issues INT NOT NULL DEFAULT 0,
        total_reviews INT NOT NULL DEFAULT 0,
        cached_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cached_contribution_calendar (
        account TEXT PRIMARY KEY REFERENCES cached_user(login),
        total_contributions INT NOT NULL,
        has_weeks BOOLEAN NOT NULL,
        cached_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cached_contribution_week (
        account TEXT NOT NULL REFERENCES cached_contribution_calendar(account),
        position INT NOT NULL,
        PRIMARY KEY (account, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cached_contribution_day (
        account TEXT NOT NULL,
        week_position INT NOT NULL,
        position INT NOT NULL,
        contribution_count INT NOT NULL,
        date TEXT NOT NULL,
        color TEXT,
        PRIMARY KEY (account, week_position, position),
        FOREIGN KEY (account, week_position)
            REFERENCES cached_contribution_week(account, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cached_repository (
        id TEXT PRIMARY KEY,
        account TEXT NOT NULL,
        name TEXT NOT NULL,
        name_with_owner TEXT NOT NULL,
        description TEXT,
        url TEXT NOT NULL,
        stargazer_count INT NOT NULL DEFAULT 0,
        fork_count INT NOT NULL DEFAULT 0,
        primary_language_name TEXT,
        primary_language_color TEXT,
        updated_at TIMESTAMPTZ NOT NULL,
        pushed_at TIMESTAMPTZ,
        is_private BOOLEAN NOT NULL DEFAULT FALSE,
        is_fork BOOLEAN NOT NULL DEFAULT FALSE,
        owner_login TEXT NOT NULL,
        owner_avatar_url TEXT NOT NULL,
        cached_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cached_pull_request (
        id TEXT PRIMARY KEY,
        account TEXT NOT NULL,
        title TEXT NOT NULL,
        number INT NOT NULL,
        url TEXT NOT NULL,
        state TEXT NOT NULL,
        is_draft BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        merged_at TIMESTAMPTZ,
        closed_at TIMESTAMPTZ,
        additions INT NOT NULL DEFAULT 0,
        deletions INT NOT NULL DEFAULT 0,
        repository_name TEXT NOT NULL,
        repository_name_with_owner TEXT NOT NULL,
        repository_owner_login TEXT NOT NULL,
        author_login TEXT NOT NULL,
        author_avatar_url TEXT NOT NULL,
        review_decision TEXT,
        cached_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_cached_repository_account ON cached_repository (account)",
    "CREATE INDEX IF NOT EXISTS idx_cached_pull_request_account ON cached_pull_request (account)",
]


def upsert_sql(table: str, columns: List[str], key: str) -> str:
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    updates = ",\n          ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != key)
    return f"""
        INSERT INTO {table} ({", ".join(columns)})
          VALUES ({placeholders})
        ON CONFLICT ({key}) DO UPDATE SET
          {updates}
        """


def _row(record: CachedRecord, columns: List[str]) -> Tuple[Any, ...]:
    return tuple(getattr(record, column) for column in columns)


# Children are deleted before their parents, explicitly, in one transaction.
DELETE_CALENDAR_SQL = [
    "DELETE FROM cached_contribution_day WHERE account = $1",
    "DELETE FROM cached_contribution_week WHERE account = $1",
    "DELETE FROM cached_contribution_calendar WHERE account = $1",
]

DELETE_ACCOUNT_SQL = DELETE_CALENDAR_SQL + [
    "DELETE FROM cached_pull_request WHERE account = $1",
    "DELETE FROM cached_repository WHERE account = $1",
    "DELETE FROM cached_user WHERE login = $1",
]

db_retry = retry(
    retry=retry_if_exception_type(
        (
            asyncpg.exceptions.ConnectionDoesNotExistError,
            asyncpg.exceptions.CannotConnectNowError,
            asyncpg.exceptions.InterfaceError,
            ConnectionError,
        )
    ),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    reraise=True,
)


class PostgresCacheStore(CacheStore):
    """
    Cache store persisted to PostgreSQL.

    Handles the connection pool, schema creation, loading the indexes on
    start-up, and writing each committed batch inside one transaction.
    """

    def __init__(self, dsn: str = settings.database_url):
        super().__init__()
        self.dsn = dsn
        self.pool = None

    async def init(self):
        """Initialize the connection pool, the schema and the in-memory indexes."""
        self.pool = await asyncpg.create_pool(
            self.dsn,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
        await self.ensure_schema()
        await self.load()

    async def close(self):
        """Close the database connection pool."""
        if self.pool:
            await self.pool.close()

    async def ensure_schema(self):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA:
                    await conn.execute(statement)

    @db_retry
    async def load(self):
        """Read every cached record into the in-memory indexes."""
        async with self.pool.acquire() as conn:
            user_rows = await conn.fetch(f"SELECT {', '.join(USER_COLUMNS)} FROM cached_user")
            calendar_rows = await conn.fetch(
                "SELECT account, total_contributions, has_weeks, cached_at "
                "FROM cached_contribution_calendar"
            )
            week_rows = await conn.fetch(
                "SELECT account, position FROM cached_contribution_week "
                "ORDER BY account, position"
            )
            day_rows = await conn.fetch(
                "SELECT account, week_position, contribution_count, date, color "
                "FROM cached_contribution_day ORDER BY account, week_position, position"
            )
            repository_rows = await conn.fetch(
                f"SELECT {', '.join(REPOSITORY_COLUMNS)} FROM cached_repository"
            )
            pull_request_rows = await conn.fetch(
                f"SELECT {', '.join(PULL_REQUEST_COLUMNS)} FROM cached_pull_request"
            )

        weeks: Dict[str, Dict[int, CachedContributionWeek]] = {}
        for row in week_rows:
            weeks.setdefault(row["account"], {})[row["position"]] = CachedContributionWeek()
        for row in day_rows:
            week = weeks.get(row["account"], {}).get(row["week_position"])
            if week is None:
                continue
            week.contribution_days.append(
                CachedContributionDay(
                    contribution_count=row["contribution_count"],
                    date=row["date"],
                    color=row["color"],
                )
            )

        calendars = {
            row["account"]: CachedContributionCalendar(
                total_contributions=row["total_contributions"],
                weeks=list(weeks.get(row["account"], {}).values()) if row["has_weeks"] else None,
                cached_at=row["cached_at"],
            )
            for row in calendar_rows
        }

        self.users.load(
            [
                CachedUser(**dict(row), contribution_calendar=calendars.get(row["login"]))
                for row in user_rows
            ]
        )
        self.repositories.load([CachedRepository(**dict(row)) for row in repository_rows])
        self.pull_requests.load([CachedPullRequest(**dict(row)) for row in pull_request_rows])
        logger.info(
            f"📦 Loaded cache: {len(self.users)} users, {len(self.repositories)} "
            f"repositories, {len(self.pull_requests)} pull requests"
        )

    @db_retry
    async def _persist(self, batch: CacheBatch) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if batch.users:
                    await conn.executemany(
                        upsert_sql("cached_user", USER_COLUMNS, "login"),
                        [_row(u, USER_COLUMNS) for u in batch.users],
                    )
                    for user in batch.users:
                        if user.contribution_calendar is not None:
                            await self._replace_calendar(conn, user)
                if batch.repositories:
                    await conn.executemany(
                        upsert_sql("cached_repository", REPOSITORY_COLUMNS, "id"),
                        [_row(r, REPOSITORY_COLUMNS) for r in batch.repositories],
                    )
                if batch.pull_requests:
                    await conn.executemany(
                        upsert_sql("cached_pull_request", PULL_REQUEST_COLUMNS, "id"),
                        [_row(p, PULL_REQUEST_COLUMNS) for p in batch.pull_requests],
                    )

    @staticmethod
    async def _replace_calendar(conn, user: CachedUser) -> None:
        calendar = user.contribution_calendar
        for statement in DELETE_CALENDAR_SQL:
            await conn.execute(statement, user.login)
        await conn.execute(
            "INSERT INTO cached_contribution_calendar "
            "(account, total_contributions, has_weeks, cached_at) VALUES ($1, $2, $3, $4)",
            user.login,
            calendar.total_contributions,
            calendar.weeks is not None,
            calendar.cached_at,
        )
        weeks = calendar.weeks or []
        if not weeks:
            return
        await conn.executemany(
            "INSERT INTO cached_contribution_week (account, position) VALUES ($1, $2)",
            [(user.login, position) for position in range(len(weeks))],
        )
        await conn.executemany(
            "INSERT INTO cached_contribution_day "
            "(account, week_position, position, contribution_count, date, color) "
            "VALUES ($1, $2, $3, $4, $5, $6)",
            [
                (user.login, week_position, position, day.contribution_count, day.date, day.color)
                for week_position, week in enumerate(weeks)
                for position, day in enumerate(week.contribution_days)
            ],
        )

    @db_retry
    async def _delete_account(self, login: str) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in DELETE_ACCOUNT_SQL:
                    await conn.execute(statement, login)
