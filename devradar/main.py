import argparse
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from .auth import AuthenticationManager
from .cache import CacheStore, MemoryCacheStore, PostgresCacheStore
from .client import GitHubClient
from .config import settings
from .credentials import CredentialStore
from .dashboard import load_dashboard
from .domain import FailureKind, InvalidRequestError, classify_failure, parse_datetime
from .sync import SyncEngine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Sync GitHub activity into the local cache")
    p.add_argument(
        "--account",
        default=settings.account,
        help="Account login to act as (defaults to the first stored account)",
    )
    p.add_argument(
        "--memory-cache",
        action="store_true",
        help="Keep the cache in memory instead of PostgreSQL",
    )
    sub = p.add_subparsers(dest="command", required=True)

    dashboard = sub.add_parser("dashboard", help="Load profile, repositories and PRs")
    dashboard.add_argument("--refresh", action="store_true", help="Bypass the cache")

    repo = sub.add_parser("repo", help="Show details for OWNER/NAME")
    repo.add_argument("name_with_owner")

    activity = sub.add_parser("activity", help="Contribution activity for a date range")
    activity.add_argument("--from", dest="start", help="ISO start date (default: a year ago)")
    activity.add_argument("--to", dest="end", help="ISO end date (default: now)")

    sub.add_parser("accounts", help="List stored accounts")

    login = sub.add_parser("login", help="Store a personal access token")
    login.add_argument("--token", required=True)
    login.add_argument("--account", dest="login_account", help="Login the token must belong to")

    sub.add_parser("logout", help="Forget the current account and its cache")
    return p.parse_args(argv)


async def show_dashboard(args, engine: SyncEngine):
    data = await load_dashboard(engine, force_refresh=args.refresh)
    logger.info(f"👤 {data.user.display_name} ({data.user.login})")
    logger.info(f"   - Repositories: {len(data.repositories)}")
    logger.info(f"   - Open pull requests: {data.open_pr_count}")
    logger.info(f"   - Pending reviews: {data.pending_review_count}")
    logger.info(f"   - Contributions this year: {data.total_contributions:,}")
    logger.info(f"   - Current streak: {data.current_streak} days")
    logger.info(f"   - Longest streak: {data.longest_streak} days")


async def show_repository(args, engine: SyncEngine):
    owner, _, name = args.name_with_owner.partition("/")
    repo = await engine.fetch_repository_details(owner, name)
    logger.info(f"📁 {repo.name_with_owner}: {repo.description or ''}")
    logger.info(f"   - ⭐ {repo.formatted_stars}  🍴 {repo.formatted_forks}")
    logger.info(f"   - Open issues: {repo.open_issue_count}, open PRs: {repo.open_pull_request_count}")
    for language, percentage in repo.language_percentages:
        logger.info(f"   - {language.name}: {percentage:.1f}%")
    for commit in (repo.commits or [])[:5]:
        logger.info(f"   - {commit.oid[:7]} {commit.short_message}")


def parse_date_arg(value: str) -> datetime:
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid date: {value}") from e


async def show_activity(args, engine: SyncEngine):
    end = parse_date_arg(args.end) if args.end else datetime.now(timezone.utc)
    start = parse_date_arg(args.start) if args.start else end - timedelta(days=365)
    activity = await engine.fetch_contribution_activity(start, end)
    calendar = activity.safe_contribution_calendar
    logger.info(f"📊 Contributions {start:%Y-%m-%d} → {end:%Y-%m-%d}")
    logger.info(f"   - Calendar total: {calendar.total_contributions:,}")
    logger.info(f"   - Commits/issues/PRs/reviews total: {activity.total_contributions:,}")
    logger.info(f"   - Longest streak: {calendar.longest_streak} days")
    for entry in activity.commit_contributions_by_repository or []:
        logger.info(f"   - {entry.repository.name_with_owner}: {entry.total_commits} commits")


def build_cache(args) -> CacheStore:
    if args.memory_cache:
        return MemoryCacheStore()
    return PostgresCacheStore()


async def run(argv=None):
    """Entry point: wire the client, credential store and cache together."""
    args = parse_args(argv)
    credentials = CredentialStore()
    cache = build_cache(args)
    if isinstance(cache, PostgresCacheStore):
        await cache.init()

    try:
        async with GitHubClient() as client:
            auth = AuthenticationManager(client, credentials, cache)

            if args.command == "accounts":
                for account in auth.list_accounts():
                    marker = "*" if account == auth.current_account else " "
                    logger.info(f"{marker} {account}")
                return
            if args.command == "login":
                login = await auth.sign_in_with_token(args.token, args.login_account)
                logger.info(f"🔐 Stored token for {login}")
                return

            if args.account:
                auth.switch_account(args.account)
            if args.command == "logout":
                await auth.sign_out()
                return

            engine = SyncEngine(client, cache, credentials, auth.session())
            if args.command == "dashboard":
                await show_dashboard(args, engine)
            elif args.command == "repo":
                await show_repository(args, engine)
            elif args.command == "activity":
                await show_activity(args, engine)

    except Exception as e:
        kind = classify_failure(e)
        if kind == FailureKind.RATE_LIMITED:
            logger.error(f"⏱️ {e}")
        elif kind == FailureKind.REAUTHENTICATE:
            logger.error(f"🔐 {e}. Run `devradar login` to sign in again")
        else:
            logger.error(f"❌ {e}")
        raise
    finally:
        if isinstance(cache, PostgresCacheStore):
            await cache.close()


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
