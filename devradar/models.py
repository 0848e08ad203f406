"""
Cache record models for the DevRadar local store.

These Pydantic models are the persisted shape of the cached entities. Each
record carries a ``cached_at`` timestamp that gates whether a new fetch is
needed, and knows how to overwrite itself from a freshly fetched domain
object and how to rebuild a domain object from its stored fields.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .config import settings
from .domain import (
    ContributionCalendar,
    ContributionDay,
    ContributionsCollection,
    ContributionWeek,
    Language,
    Origin,
    PRAuthor,
    PRRepository,
    PRState,
    PullRequest,
    Repository,
    RepositoryOwner,
    ReviewDecision,
    User,
    parse_datetime,
)

FRESHNESS_WINDOW = timedelta(seconds=settings.cache_freshness_seconds)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CachedRecord(BaseModel):
    """Fields and freshness rules shared by every cached entity kind."""

    cached_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "cached_at",
        "updated_at",
        "pushed_at",
        "created_at",
        "merged_at",
        "closed_at",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def parse_datetimes(cls, v):
        """
        Parse datetime strings from the API or the database into aware
        UTC datetimes.
        """
        return parse_datetime(v)

    @property
    def key(self) -> str:
        raise NotImplementedError

    @property
    def recency(self) -> datetime:
        """The natural "most recently changed" field used for sorting."""
        return self.cached_at

    def is_fresh(
        self, now: Optional[datetime] = None, window: timedelta = FRESHNESS_WINDOW
    ) -> bool:
        now = now or utcnow()
        return now - self.cached_at < window


class CachedContributionDay(BaseModel):
    contribution_count: int
    date: str
    color: Optional[str] = None


class CachedContributionWeek(BaseModel):
    contribution_days: List[CachedContributionDay] = Field(default_factory=list)


class CachedContributionCalendar(BaseModel):
    """A user's calendar; owns its weeks, which own their days."""

    total_contributions: int
    weeks: Optional[List[CachedContributionWeek]] = None
    cached_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_domain(
        cls, calendar: ContributionCalendar, now: Optional[datetime] = None
    ) -> "CachedContributionCalendar":
        return cls(
            total_contributions=calendar.total_contributions,
            weeks=(
                [
                    CachedContributionWeek(
                        contribution_days=[
                            CachedContributionDay(
                                contribution_count=day.contribution_count,
                                date=day.date,
                                color=day.color,
                            )
                            for day in week.contribution_days
                        ]
                    )
                    for week in calendar.weeks
                ]
                if calendar.weeks is not None
                else None
            ),
            cached_at=now or utcnow(),
        )

    def to_domain(self) -> ContributionCalendar:
        return ContributionCalendar(
            total_contributions=self.total_contributions,
            weeks=(
                [
                    ContributionWeek(
                        contribution_days=[
                            ContributionDay(
                                contribution_count=day.contribution_count,
                                date=day.date,
                                color=day.color,
                            )
                            for day in week.contribution_days
                        ]
                    )
                    for week in self.weeks
                ]
                if self.weeks is not None
                else None
            ),
        )


class CachedUser(CachedRecord):
    """
    Cached profile of one account, keyed by login.

    Streaks and totals are stored alongside the calendar so a cache-only
    load can show them even if the calendar itself was never cached.
    """

    login: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: str
    bio: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    url: str
    total_contributions: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_commits: int = 0
    total_prs: int = 0
    total_issues: int = 0
    total_reviews: int = 0
    contribution_calendar: Optional[CachedContributionCalendar] = None

    @property
    def key(self) -> str:
        return self.login

    @classmethod
    def from_domain(cls, user: User, now: Optional[datetime] = None) -> "CachedUser":
        record = cls(
            login=user.login,
            name=user.name,
            email=user.email,
            avatar_url=user.avatar_url,
            bio=user.bio,
            company=user.company,
            location=user.location,
            url=user.url,
        )
        record.update_from(user, now)
        return record

    def update_from(self, user: User, now: Optional[datetime] = None) -> None:
        """Overwrite the stored fields from ``user`` and reset ``cached_at``."""
        now = now or utcnow()
        self.name = user.name
        self.email = user.email
        self.avatar_url = user.avatar_url
        self.bio = user.bio
        self.company = user.company
        self.location = user.location
        self.url = user.url

        contributions = user.contributions_collection
        if contributions is not None:
            calendar = contributions.safe_contribution_calendar
            self.total_contributions = calendar.total_contributions
            self.current_streak = calendar.current_streak
            self.longest_streak = calendar.longest_streak
            self.total_commits = contributions.total_commit_contributions
            self.total_prs = contributions.total_pull_request_contributions
            self.total_issues = contributions.total_issue_contributions
            self.total_reviews = contributions.total_pull_request_review_contributions
            self.contribution_calendar = CachedContributionCalendar.from_domain(
                calendar, now
            )

        self.cached_at = now

    def to_domain(self) -> User:
        if self.contribution_calendar is not None:
            calendar = self.contribution_calendar.to_domain()
        else:
            calendar = ContributionCalendar(
                total_contributions=self.total_contributions, weeks=None
            )
        return User(
            id=self.login,
            login=self.login,
            name=self.name,
            email=self.email,
            avatar_url=self.avatar_url,
            bio=self.bio,
            company=self.company,
            location=self.location,
            url=self.url,
            status=None,
            contributions_collection=ContributionsCollection(
                total_commit_contributions=self.total_commits,
                total_issue_contributions=self.total_issues,
                total_pull_request_contributions=self.total_prs,
                total_pull_request_review_contributions=self.total_reviews,
                contribution_calendar=calendar,
                commit_contributions_by_repository=None,
            ),
            origin=Origin.CACHE,
        )


class CachedRepository(CachedRecord):
    """Cached list-level view of a repository, keyed by its remote id."""

    id: str
    account: str
    name: str
    name_with_owner: str
    description: Optional[str] = None
    url: str
    stargazer_count: int = 0
    fork_count: int = 0
    primary_language_name: Optional[str] = None
    primary_language_color: Optional[str] = None
    updated_at: datetime
    pushed_at: Optional[datetime] = None
    is_private: bool = False
    is_fork: bool = False
    owner_login: str
    owner_avatar_url: str

    @property
    def key(self) -> str:
        return self.id

    @property
    def recency(self) -> datetime:
        return self.updated_at

    @staticmethod
    def _fields_from(repository: Repository) -> Dict[str, Any]:
        language = repository.primary_language
        return {
            "name": repository.name,
            "name_with_owner": repository.name_with_owner,
            "description": repository.description,
            "url": repository.url,
            "stargazer_count": repository.stargazer_count,
            "fork_count": repository.fork_count,
            "primary_language_name": language.name if language else None,
            "primary_language_color": language.color if language else None,
            "updated_at": repository.updated_at,
            "pushed_at": repository.pushed_at,
            "is_private": repository.is_private,
            "is_fork": repository.is_fork,
            "owner_login": repository.owner.login,
            "owner_avatar_url": repository.owner.avatar_url,
        }

    @classmethod
    def from_domain(
        cls, repository: Repository, account: str, now: Optional[datetime] = None
    ) -> "CachedRepository":
        return cls(
            id=repository.id,
            account=account,
            cached_at=now or utcnow(),
            **cls._fields_from(repository),
        )

    def update_from(self, repository: Repository, now: Optional[datetime] = None) -> None:
        """Overwrite the stored fields in place and reset ``cached_at``."""
        for name, value in self._fields_from(repository).items():
            setattr(self, name, value)
        self.cached_at = now or utcnow()

    def to_domain(self) -> Repository:
        return Repository(
            id=self.id,
            name=self.name,
            name_with_owner=self.name_with_owner,
            description=self.description,
            url=self.url,
            stargazer_count=self.stargazer_count,
            fork_count=self.fork_count,
            primary_language=(
                Language(name=self.primary_language_name, color=self.primary_language_color)
                if self.primary_language_name
                else None
            ),
            updated_at=self.updated_at,
            pushed_at=self.pushed_at,
            is_private=self.is_private,
            is_fork=self.is_fork,
            owner=RepositoryOwner(login=self.owner_login, avatar_url=self.owner_avatar_url),
            origin=Origin.CACHE,
        )


class CachedPullRequest(CachedRecord):
    """Cached pull request, keyed by its remote id. Reviews are not stored."""

    id: str
    account: str
    title: str
    number: int
    url: str
    state: str
    is_draft: bool = False
    created_at: datetime
    updated_at: datetime
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    additions: int = 0
    deletions: int = 0
    repository_name: str
    repository_name_with_owner: str
    repository_owner_login: str
    author_login: str
    author_avatar_url: str
    review_decision: Optional[str] = None

    @property
    def key(self) -> str:
        return self.id

    @property
    def recency(self) -> datetime:
        return self.updated_at

    @staticmethod
    def _fields_from(pr: PullRequest) -> Dict[str, Any]:
        return {
            "title": pr.title,
            "number": pr.number,
            "url": pr.url,
            "state": pr.state.value,
            "is_draft": pr.is_draft,
            "created_at": pr.created_at,
            "updated_at": pr.updated_at,
            "merged_at": pr.merged_at,
            "closed_at": pr.closed_at,
            "additions": pr.additions,
            "deletions": pr.deletions,
            "repository_name": pr.repository.name,
            "repository_name_with_owner": pr.repository.name_with_owner,
            "repository_owner_login": pr.repository.owner_login,
            "author_login": pr.author.login,
            "author_avatar_url": pr.author.avatar_url,
            "review_decision": pr.review_decision.value if pr.review_decision else None,
        }

    @classmethod
    def from_domain(
        cls, pull_request: PullRequest, account: str, now: Optional[datetime] = None
    ) -> "CachedPullRequest":
        return cls(
            id=pull_request.id,
            account=account,
            cached_at=now or utcnow(),
            **cls._fields_from(pull_request),
        )

    def update_from(self, pr: PullRequest, now: Optional[datetime] = None) -> None:
        for name, value in self._fields_from(pr).items():
            setattr(self, name, value)
        self.cached_at = now or utcnow()

    def to_domain(self) -> PullRequest:
        try:
            state = PRState(self.state)
        except ValueError:
            state = PRState.OPEN
        try:
            decision = ReviewDecision(self.review_decision) if self.review_decision else None
        except ValueError:
            decision = None
        return PullRequest(
            id=self.id,
            title=self.title,
            number=self.number,
            url=self.url,
            state=state,
            is_draft=self.is_draft,
            created_at=self.created_at,
            updated_at=self.updated_at,
            merged_at=self.merged_at,
            closed_at=self.closed_at,
            additions=self.additions,
            deletions=self.deletions,
            repository=PRRepository(
                name=self.repository_name,
                name_with_owner=self.repository_name_with_owner,
                owner_login=self.repository_owner_login,
            ),
            author=PRAuthor(login=self.author_login, avatar_url=self.author_avatar_url),
            review_decision=decision,
            reviews=None,
            origin=Origin.CACHE,
        )
