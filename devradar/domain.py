"""
Domain models for the DevRadar sync layer.

This module provides clean domain objects that isolate the sync engine from
the GitHub GraphQL wire format, implementing an anti-corruption layer: raw
response dictionaries go in through the ``transform_*`` functions and only
immutable domain objects come out.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from dateutil import parser as date_parser

T = TypeVar("T")

DEFAULT_LANGUAGE_COLOR = "#858585"


class Origin(str, Enum):
    """Where a domain object was built from."""

    REMOTE = "remote"
    CACHE = "cache"


class PRState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class ReviewDecision(str, Enum):
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"


class ReviewState(str, Enum):
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"


# --- User & contributions -------------------------------------------------


@dataclass(frozen=True)
class UserStatus:
    message: Optional[str] = None
    emoji: Optional[str] = None

    @property
    def display_text(self) -> str:
        if self.message:
            return self.message
        return "Active"


@dataclass(frozen=True)
class ContributionDay:
    contribution_count: int
    date: str
    color: Optional[str] = None

    @property
    def parsed_date(self) -> Optional[date]:
        try:
            return date_parser.isoparse(self.date).date()
        except ValueError:
            return None


@dataclass(frozen=True)
class ContributionWeek:
    contribution_days: List[ContributionDay] = field(default_factory=list)


@dataclass(frozen=True)
class ContributionCalendar:
    """
    Daily contribution counts, grouped by week, oldest week first.

    ``weeks`` is None when the calendar was rebuilt from a cached total
    without its day-level breakdown.
    """

    total_contributions: int
    weeks: Optional[List[ContributionWeek]] = None

    @property
    def all_days(self) -> List[ContributionDay]:
        """Every day of every week, in week order."""
        return [day for week in (self.weeks or []) for day in week.contribution_days]

    def _days_by_date(self) -> List[ContributionDay]:
        # ISO dates sort correctly as strings
        return sorted(self.all_days, key=lambda day: day.date)

    @property
    def current_streak(self) -> int:
        """Consecutive active days counted back from the most recent day."""
        streak = 0
        for day in reversed(self._days_by_date()):
            if day.contribution_count <= 0:
                break
            streak += 1
        return streak

    @property
    def longest_streak(self) -> int:
        """Longest run of consecutive active days anywhere in the calendar."""
        longest = 0
        current = 0
        for day in self._days_by_date():
            if day.contribution_count > 0:
                current += 1
                longest = max(longest, current)
            else:
                current = 0
        return longest


@dataclass(frozen=True)
class RepositoryReference:
    name: str
    name_with_owner: str
    owner_login: str


@dataclass(frozen=True)
class CommitContribution:
    occurred_at: datetime
    commit_count: int


@dataclass(frozen=True)
class RepositoryContribution:
    repository: RepositoryReference
    contributions: List[CommitContribution] = field(default_factory=list)

    @property
    def total_commits(self) -> int:
        return sum(c.commit_count for c in self.contributions)


@dataclass(frozen=True)
class ContributionsCollection:
    total_commit_contributions: int = 0
    total_issue_contributions: int = 0
    total_pull_request_contributions: int = 0
    total_pull_request_review_contributions: int = 0
    contribution_calendar: Optional[ContributionCalendar] = None
    commit_contributions_by_repository: Optional[List[RepositoryContribution]] = None

    @property
    def total_contributions(self) -> int:
        """
        Sum of the four contribution counters.

        This is not the calendar's own total; the two can differ.
        """
        return (
            self.total_commit_contributions
            + self.total_issue_contributions
            + self.total_pull_request_contributions
            + self.total_pull_request_review_contributions
        )

    @property
    def safe_contribution_calendar(self) -> ContributionCalendar:
        return self.contribution_calendar or ContributionCalendar(
            total_contributions=0, weeks=[]
        )


@dataclass(frozen=True)
class User:
    """Immutable domain model of the signed-in GitHub user."""

    id: str
    login: str
    avatar_url: str
    url: str
    name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    status: Optional[UserStatus] = None
    contributions_collection: Optional[ContributionsCollection] = None
    origin: Origin = field(default=Origin.REMOTE, compare=False)

    @property
    def display_name(self) -> str:
        return self.name or self.login

    def __post_init__(self):
        if not self.login:
            raise ValueError("User login is required")


# --- Repository -----------------------------------------------------------


@dataclass(frozen=True)
class Language:
    name: str
    color: Optional[str] = None


@dataclass(frozen=True)
class LanguageEdge:
    size: int
    language: Language


@dataclass(frozen=True)
class RepositoryOwner:
    login: str
    avatar_url: str


@dataclass(frozen=True)
class CommitAuthor:
    name: str
    email: str
    login: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class Commit:
    oid: str
    message: str
    committed_date: datetime
    author: CommitAuthor
    additions: int = 0
    deletions: int = 0

    @property
    def short_message(self) -> str:
        return self.message.split("\n", 1)[0]

    @property
    def change_count(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class Branch:
    name: str
    oid: str


@dataclass(frozen=True)
class Collaborator:
    login: str
    avatar_url: str


def format_count(count: int) -> str:
    """Compact display form of a counter, e.g. ``1.2k``."""
    if count >= 1000:
        return f"{count / 1000.0:.1f}k"
    return str(count)


@dataclass(frozen=True)
class Repository:
    """
    Immutable domain model representing a GitHub repository.

    The detail attributes (``watcher_count`` through ``collaborators``) are
    only populated by the single-repository detail fetch. None means
    "not loaded", never zero.
    """

    id: str
    name: str
    name_with_owner: str
    url: str
    owner: RepositoryOwner
    updated_at: datetime
    description: Optional[str] = None
    stargazer_count: int = 0
    fork_count: int = 0
    primary_language: Optional[Language] = None
    languages: Optional[List[LanguageEdge]] = None
    pushed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    is_private: bool = False
    is_fork: bool = False
    watcher_count: Optional[int] = None
    open_issue_count: Optional[int] = None
    open_pull_request_count: Optional[int] = None
    default_branch_name: Optional[str] = None
    commits: Optional[List[Commit]] = None
    branches: Optional[List[Branch]] = None
    collaborators: Optional[List[Collaborator]] = None
    origin: Origin = field(default=Origin.REMOTE, compare=False)

    def __post_init__(self):
        """Validate repository data after initialization."""
        if not self.id:
            raise ValueError("Repository ID is required")
        if not self.name or not self.owner.login:
            raise ValueError("Repository name and owner are required")
        if self.stargazer_count < 0 or self.fork_count < 0:
            raise ValueError("Star and fork counts cannot be negative")

    @property
    def has_details(self) -> bool:
        return self.watcher_count is not None

    @property
    def display_language(self) -> str:
        return self.primary_language.name if self.primary_language else "Unknown"

    @property
    def language_color(self) -> str:
        if self.primary_language and self.primary_language.color:
            return self.primary_language.color
        return DEFAULT_LANGUAGE_COLOR

    @property
    def formatted_stars(self) -> str:
        return format_count(self.stargazer_count)

    @property
    def formatted_forks(self) -> str:
        return format_count(self.fork_count)

    @property
    def total_language_size(self) -> int:
        return sum(edge.size for edge in self.languages or [])

    @property
    def language_percentages(self) -> List[Tuple[Language, float]]:
        """Share of the codebase per language, as percentages."""
        total = self.total_language_size
        if total <= 0:
            return []
        return [
            (edge.language, edge.size / total * 100.0) for edge in self.languages or []
        ]


# --- Pull requests --------------------------------------------------------


@dataclass(frozen=True)
class PRRepository:
    name: str
    name_with_owner: str
    owner_login: str


@dataclass(frozen=True)
class PRAuthor:
    login: str
    avatar_url: str


@dataclass(frozen=True)
class Review:
    author_login: Optional[str]
    state: ReviewState


STATUS_COLORS = {
    "merged": "#8957E5",
    "closed": "#DA3633",
    "draft": "#6E7681",
    ReviewDecision.APPROVED: "#3FB950",
    ReviewDecision.CHANGES_REQUESTED: "#F85149",
    ReviewDecision.REVIEW_REQUIRED: "#858585",
    "open": "#858585",
}

STATUS_TEXTS = {
    "merged": "Merged",
    "closed": "Closed",
    "draft": "Draft",
    ReviewDecision.APPROVED: "Approved",
    ReviewDecision.CHANGES_REQUESTED: "Changes Requested",
    ReviewDecision.REVIEW_REQUIRED: "Review Required",
    "open": "Open",
}


@dataclass(frozen=True)
class PullRequest:
    """Immutable domain model representing a GitHub pull request."""

    id: str
    title: str
    number: int
    url: str
    state: PRState
    is_draft: bool
    created_at: datetime
    updated_at: datetime
    repository: PRRepository
    author: PRAuthor
    additions: int = 0
    deletions: int = 0
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    review_decision: Optional[ReviewDecision] = None
    reviews: Optional[List[Review]] = None
    origin: Origin = field(default=Origin.REMOTE, compare=False)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Pull request ID is required")

    @property
    def _status_key(self):
        # merged > closed > draft > review decision > open
        if self.state == PRState.MERGED:
            return "merged"
        if self.state == PRState.CLOSED:
            return "closed"
        if self.is_draft:
            return "draft"
        if self.review_decision is not None:
            return self.review_decision
        return "open"

    @property
    def status_color(self) -> str:
        return STATUS_COLORS[self._status_key]

    @property
    def status_text(self) -> str:
        return STATUS_TEXTS[self._status_key]

    @property
    def is_open(self) -> bool:
        return self.state == PRState.OPEN

    @property
    def change_count(self) -> int:
        return self.additions + self.deletions

    @property
    def reviewer_count(self) -> int:
        """Number of distinct reviewers across all reviews."""
        return len(
            {review.author_login for review in self.reviews or [] if review.author_login}
        )


# --- GraphQL envelope -----------------------------------------------------


@dataclass(frozen=True)
class PageInfo:
    has_next_page: bool
    end_cursor: Optional[str] = None


@dataclass(frozen=True)
class GraphQLError:
    message: str
    locations: List[Tuple[int, int]] = field(default_factory=list)
    path: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class GraphQLResponse:
    """The ``{data, errors}`` wrapper every GraphQL response arrives in."""

    data: Optional[Dict[str, Any]] = None
    errors: List[GraphQLError] = field(default_factory=list)

    def unwrap(self) -> Dict[str, Any]:
        """
        Return ``data``, or raise.

        Server-reported errors win even when partial data is present.
        """
        if self.errors:
            raise GraphQLErrors(self.errors)
        if self.data is None:
            raise NoDataError()
        return self.data


# --- Errors ---------------------------------------------------------------


class ApiError(Exception):
    """Base exception for API-related errors."""

    pass


class InvalidRequestError(ApiError):
    """The request URL or query could not be built."""

    def __init__(self, message: str = "The URL is invalid"):
        super().__init__(message)


class AuthenticationError(ApiError):
    """Exception raised when GitHub API authentication fails (HTTP 401)."""

    def __init__(self, message: str = "Authentication required. Please sign in again"):
        super().__init__(message)


class RateLimitError(ApiError):
    """Exception raised when GitHub API rate limit is exceeded."""

    def __init__(self, reset_at: Optional[datetime] = None):
        self.reset_at = reset_at
        if reset_at is not None:
            message = f"Rate limit exceeded. Resets at {reset_at:%Y-%m-%d %H:%M:%S %Z}"
        else:
            message = "Rate limit exceeded. Please try again later"
        super().__init__(message.strip())


class NotFoundError(ApiError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ServerError(ApiError):
    def __init__(self, status_code: int = 500):
        self.status_code = status_code
        super().__init__(f"Server error ({status_code}). Please try again later")


class NoConnectionError(ApiError):
    def __init__(self, message: str = "No internet connection. Please check your network"):
        super().__init__(message)


class RequestTimeoutError(ApiError):
    def __init__(self, message: str = "Request timed out. Please try again"):
        super().__init__(message)


class DecodingError(ApiError):
    """The response body did not have the expected shape."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to decode response: {detail}")


class GraphQLErrors(ApiError):
    """The server reported one or more GraphQL errors."""

    def __init__(self, errors: List[GraphQLError]):
        self.errors = list(errors)
        super().__init__("\n".join(self.messages))

    @property
    def messages(self) -> List[str]:
        return [error.message for error in self.errors]


class NoDataError(ApiError):
    def __init__(self, message: str = "No data received from server"):
        super().__init__(message)


class HttpError(ApiError):
    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(message or f"HTTP error with status code {status_code}")


class UnknownApiError(ApiError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"An unexpected error occurred: {cause}")


class CredentialError(Exception):
    """Base exception for secure credential storage errors."""

    pass


class CredentialNotFoundError(CredentialError):
    def __init__(self, account: str):
        self.account = account
        super().__init__(f"No credential stored for account '{account}'")


class CacheError(Exception):
    """Base exception for local cache errors."""

    pass


class CacheWriteError(CacheError):
    """A cache batch could not be committed; none of its updates are durable."""

    pass


class OAuthError(Exception):
    """Base exception for the OAuth sign-in flow."""

    pass


class InvalidStateError(OAuthError):
    def __init__(self):
        super().__init__("Invalid authentication state. Please try again")


class MissingCodeError(OAuthError):
    def __init__(self):
        super().__init__("No authorization code received")


class TokenExchangeError(OAuthError):
    def __init__(self):
        super().__init__("Failed to exchange code for access token")


class NoAccountError(OAuthError):
    def __init__(self):
        super().__init__("No account found. Please sign in")


class FailureKind(str, Enum):
    """How a caller should present a failure to the user."""

    RATE_LIMITED = "rate_limited"
    REAUTHENTICATE = "reauthenticate"
    RETRY = "retry"


def classify_failure(error: BaseException) -> FailureKind:
    if isinstance(error, RateLimitError):
        return FailureKind.RATE_LIMITED
    if isinstance(error, (AuthenticationError, CredentialNotFoundError, NoAccountError)):
        return FailureKind.REAUTHENTICATE
    return FailureKind.RETRY


# --- Anti-corruption layer ------------------------------------------------


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a GitHub timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = date_parser.isoparse(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _required_datetime(value: Any) -> datetime:
    dt = parse_datetime(value)
    if dt is None:
        raise ValueError("expected a timestamp, got null")
    return dt


def decode(transform: Callable[[Any], T], node: Any, path: str) -> T:
    """
    Run a transform and report shape mismatches as ``DecodingError``.

    ``path`` names where ``node`` sits in the response, so the error says
    which field failed.
    """
    try:
        return transform(node)
    except KeyError as e:
        raise DecodingError(f"Missing key {e} at path: {path}") from e
    except (TypeError, ValueError, AttributeError) as e:
        raise DecodingError(f"Invalid value at path: {path}. {e}") from e


def parse_graphql_response(payload: Any) -> GraphQLResponse:
    """Decode the raw ``{data, errors}`` envelope."""

    def _envelope(body: Dict[str, Any]) -> GraphQLResponse:
        if not isinstance(body, dict):
            raise TypeError(f"expected an object, got {type(body).__name__}")
        errors = [
            GraphQLError(
                message=error["message"],
                locations=[
                    (loc["line"], loc["column"]) for loc in error.get("locations") or []
                ],
                path=list(error.get("path") or []),
            )
            for error in body.get("errors") or []
        ]
        data = body.get("data")
        if data is not None and not isinstance(data, dict):
            raise TypeError(f"expected data to be an object, got {type(data).__name__}")
        return GraphQLResponse(data=data, errors=errors)

    return decode(_envelope, payload, "$")


def transform_page_info(node: Dict[str, Any]) -> PageInfo:
    return PageInfo(
        has_next_page=bool(node["hasNextPage"]),
        end_cursor=node.get("endCursor"),
    )


def transform_contribution_calendar(node: Dict[str, Any]) -> ContributionCalendar:
    return ContributionCalendar(
        total_contributions=node["totalContributions"],
        weeks=[
            ContributionWeek(
                contribution_days=[
                    ContributionDay(
                        contribution_count=day["contributionCount"],
                        date=day["date"],
                        color=day.get("color"),
                    )
                    for day in week["contributionDays"]
                ]
            )
            for week in node.get("weeks") or []
        ],
    )


def _transform_repository_contribution(node: Dict[str, Any]) -> RepositoryContribution:
    repo = node["repository"]
    return RepositoryContribution(
        repository=RepositoryReference(
            name=repo["name"],
            name_with_owner=repo["nameWithOwner"],
            owner_login=repo["owner"]["login"],
        ),
        contributions=[
            CommitContribution(
                occurred_at=_required_datetime(c["occurredAt"]),
                commit_count=c["commitCount"],
            )
            for c in node["contributions"]["nodes"]
        ],
    )


def transform_contributions_collection(node: Dict[str, Any]) -> ContributionsCollection:
    calendar = node.get("contributionCalendar")
    by_repository = node.get("commitContributionsByRepository")
    return ContributionsCollection(
        total_commit_contributions=node["totalCommitContributions"],
        total_issue_contributions=node["totalIssueContributions"],
        total_pull_request_contributions=node["totalPullRequestContributions"],
        total_pull_request_review_contributions=node[
            "totalPullRequestReviewContributions"
        ],
        contribution_calendar=(
            transform_contribution_calendar(calendar) if calendar is not None else None
        ),
        commit_contributions_by_repository=(
            [_transform_repository_contribution(c) for c in by_repository]
            if by_repository is not None
            else None
        ),
    )


def transform_user(node: Dict[str, Any]) -> User:
    """Transform a GraphQL ``viewer`` node into a domain User."""
    status = node.get("status")
    contributions = node.get("contributionsCollection")
    return User(
        id=node["id"],
        login=node["login"],
        name=node.get("name"),
        email=node.get("email") or None,
        avatar_url=node["avatarUrl"],
        bio=node.get("bio"),
        company=node.get("company"),
        location=node.get("location"),
        url=node["url"],
        status=(
            UserStatus(message=status.get("message"), emoji=status.get("emoji"))
            if status
            else None
        ),
        contributions_collection=(
            transform_contributions_collection(contributions)
            if contributions is not None
            else None
        ),
    )


def _transform_language(node: Optional[Dict[str, Any]]) -> Optional[Language]:
    if not node:
        return None
    return Language(name=node["name"], color=node.get("color"))


def _transform_commit(node: Dict[str, Any]) -> Commit:
    author = node["author"]
    user = author.get("user")
    return Commit(
        oid=node["oid"],
        message=node["message"],
        committed_date=_required_datetime(node["committedDate"]),
        author=CommitAuthor(
            name=author.get("name") or "",
            email=author.get("email") or "",
            login=user["login"] if user else None,
            avatar_url=user["avatarUrl"] if user else None,
        ),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
    )


def _total_count(node: Dict[str, Any], key: str) -> Optional[int]:
    connection = node.get(key)
    if connection is None:
        return None
    return connection["totalCount"]


def transform_repository(node: Dict[str, Any]) -> Repository:
    """
    Transform a GraphQL repository node into a domain Repository.

    List nodes carry no detail fields, so those stay None.
    """
    languages = node.get("languages")
    branch_ref = node.get("defaultBranchRef")
    refs = node.get("refs")
    collaborators = node.get("collaborators")

    commits = None
    default_branch_name = None
    if branch_ref is not None:
        default_branch_name = branch_ref.get("name")
        history = (branch_ref.get("target") or {}).get("history")
        if history is not None:
            commits = [_transform_commit(c) for c in history["nodes"]]

    return Repository(
        id=node["id"],
        name=node["name"],
        name_with_owner=node["nameWithOwner"],
        description=node.get("description"),
        url=node["url"],
        stargazer_count=node.get("stargazerCount") or 0,
        fork_count=node.get("forkCount") or 0,
        primary_language=_transform_language(node.get("primaryLanguage")),
        languages=(
            [
                LanguageEdge(size=edge["size"], language=_transform_language(edge["node"]))
                for edge in languages["edges"]
            ]
            if languages is not None
            else None
        ),
        updated_at=_required_datetime(node["updatedAt"]),
        pushed_at=parse_datetime(node.get("pushedAt")),
        created_at=parse_datetime(node.get("createdAt")),
        is_private=bool(node.get("isPrivate", False)),
        is_fork=bool(node.get("isFork", False)),
        owner=RepositoryOwner(
            login=node["owner"]["login"], avatar_url=node["owner"]["avatarUrl"]
        ),
        watcher_count=_total_count(node, "watchers"),
        open_issue_count=_total_count(node, "issues"),
        open_pull_request_count=_total_count(node, "pullRequests"),
        default_branch_name=default_branch_name,
        commits=commits,
        branches=(
            [
                Branch(name=ref["name"], oid=(ref.get("target") or {}).get("oid", ""))
                for ref in refs["nodes"]
            ]
            if refs is not None
            else None
        ),
        collaborators=(
            [
                Collaborator(login=c["login"], avatar_url=c["avatarUrl"])
                for c in collaborators["nodes"]
            ]
            if collaborators is not None
            else None
        ),
    )


GHOST_LOGIN = "ghost"


def transform_pull_request(node: Dict[str, Any]) -> PullRequest:
    """Transform a GraphQL pull request node into a domain PullRequest."""
    repo = node["repository"]
    # Deleted accounts come back as a null author
    author = node.get("author") or {"login": GHOST_LOGIN, "avatarUrl": ""}
    decision = node.get("reviewDecision")
    reviews = node.get("reviews")
    return PullRequest(
        id=node["id"],
        title=node["title"],
        number=node["number"],
        url=node["url"],
        state=PRState(node["state"]),
        is_draft=bool(node.get("isDraft", False)),
        created_at=_required_datetime(node["createdAt"]),
        updated_at=_required_datetime(node["updatedAt"]),
        merged_at=parse_datetime(node.get("mergedAt")),
        closed_at=parse_datetime(node.get("closedAt")),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
        repository=PRRepository(
            name=repo["name"],
            name_with_owner=repo["nameWithOwner"],
            owner_login=repo["owner"]["login"],
        ),
        author=PRAuthor(login=author["login"], avatar_url=author.get("avatarUrl") or ""),
        review_decision=ReviewDecision(decision) if decision else None,
        reviews=(
            [
                Review(
                    author_login=(review.get("author") or {}).get("login"),
                    state=ReviewState(review["state"]),
                )
                for review in reviews["nodes"]
            ]
            if reviews is not None
            else None
        ),
    )
