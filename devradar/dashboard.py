import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from .domain import ContributionCalendar, PullRequest, Repository, User
from .sync import SyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardData:
    """Everything the dashboard shows, loaded together."""

    user: User
    repositories: List[Repository] = field(default_factory=list)
    pull_requests: List[PullRequest] = field(default_factory=list)
    review_requests: List[PullRequest] = field(default_factory=list)

    @property
    def _calendar(self) -> ContributionCalendar:
        contributions = self.user.contributions_collection
        if contributions is None:
            return ContributionCalendar(total_contributions=0, weeks=[])
        return contributions.safe_contribution_calendar

    @property
    def current_streak(self) -> int:
        return self._calendar.current_streak

    @property
    def longest_streak(self) -> int:
        return self._calendar.longest_streak

    @property
    def total_contributions(self) -> int:
        """The calendar's own total, as reported by GitHub."""
        return self._calendar.total_contributions

    @property
    def open_pr_count(self) -> int:
        return sum(1 for pr in self.pull_requests if pr.is_open)

    @property
    def pending_review_count(self) -> int:
        return len(self.review_requests)

    @property
    def total_commits(self) -> int:
        contributions = self.user.contributions_collection
        return contributions.total_commit_contributions if contributions else 0


async def load_dashboard(engine: SyncEngine, force_refresh: bool = False) -> DashboardData:
    """
    Run the four dashboard fetches concurrently and join them.

    If any fetch fails the whole load fails with that error. Cache writes
    already committed by the other fetches are kept.
    """
    logger.info(f"🚀 Loading dashboard for {engine.account} (force_refresh={force_refresh})")
    try:
        user, repositories, pull_requests, review_requests = await asyncio.gather(
            engine.fetch_user(force_refresh=force_refresh),
            engine.fetch_repositories(force_refresh=force_refresh),
            engine.fetch_pull_requests(force_refresh=force_refresh),
            engine.fetch_review_requests(),
        )
    except Exception as e:
        logger.error(f"❌ Dashboard load failed: {e}")
        raise

    return DashboardData(
        user=user,
        repositories=repositories,
        pull_requests=pull_requests,
        review_requests=review_requests,
    )
