"""
GraphQL documents sent by the sync engine, and the variable shapes they take.

Only three variable shapes exist: a pagination cursor, a repository
owner/name pair, and a contribution date range.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .domain import InvalidRequestError

REPOSITORIES_PAGE_SIZE = 30
PULL_REQUESTS_PAGE_SIZE = 20
REVIEW_REQUESTS_LIMIT = 20


@dataclass(frozen=True)
class CursorVariables:
    cursor: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        if self.cursor is None:
            return {}
        return {"cursor": self.cursor}


@dataclass(frozen=True)
class RepositoryVariables:
    owner: str
    name: str

    def __post_init__(self):
        if not self.owner or not self.name:
            raise InvalidRequestError("Repository owner and name are required")

    def as_dict(self) -> Dict[str, Any]:
        return {"owner": self.owner, "name": self.name}


@dataclass(frozen=True)
class DateRangeVariables:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidRequestError("Date range end must not precede its start")

    @staticmethod
    def _format(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    def as_dict(self) -> Dict[str, Any]:
        return {"from": self._format(self.start), "to": self._format(self.end)}


_CONTRIBUTION_COUNTERS = """
          totalCommitContributions
          totalIssueContributions
          totalPullRequestContributions
          totalPullRequestReviewContributions"""

VIEWER_QUERY = (
    """
    query Viewer {
      viewer {
        id
        login
        name
        email
        avatarUrl
        bio
        company
        location
        url
        status {
          message
          emoji
        }
        contributionsCollection {
          contributionCalendar {
            totalContributions
            weeks {
              contributionDays {
                contributionCount
                date
                color
              }
            }
          }"""
    + _CONTRIBUTION_COUNTERS
    + """
        }
      }
    }"""
)

REPOSITORIES_QUERY = """
    query ViewerRepositories($cursor: String) {
      viewer {
        repositories(first: %d, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}, ownerAffiliations: [OWNER, COLLABORATOR]) {
          pageInfo {
            hasNextPage
            endCursor
          }
          nodes {
            id
            name
            nameWithOwner
            description
            url
            stargazerCount
            forkCount
            primaryLanguage {
              name
              color
            }
            createdAt
            updatedAt
            pushedAt
            isPrivate
            isFork
            owner {
              login
              avatarUrl
            }
          }
        }
      }
    }""" % REPOSITORIES_PAGE_SIZE

_PULL_REQUEST_FIELDS = """
            id
            title
            number
            url
            state
            isDraft
            createdAt
            updatedAt
            mergedAt
            closedAt
            additions
            deletions
            repository {
              name
              nameWithOwner
              owner {
                login
              }
            }
            author {
              login
              avatarUrl
            }
            reviewDecision
            reviews(first: 5) {
              nodes {
                author {
                  login
                }
                state
              }
            }"""

PULL_REQUESTS_QUERY = (
    """
    query ViewerPullRequests($cursor: String) {
      viewer {
        pullRequests(first: %d, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}) {
          pageInfo {
            hasNextPage
            endCursor
          }
          nodes {"""
    % PULL_REQUESTS_PAGE_SIZE
    + _PULL_REQUEST_FIELDS
    + """
          }
        }
      }
    }"""
)

REVIEW_REQUESTS_QUERY = (
    """
    query ReviewRequests {
      search(query: "is:pr is:open review-requested:@me", type: ISSUE, first: %d) {
        nodes {
          ... on PullRequest {"""
    % REVIEW_REQUESTS_LIMIT
    + _PULL_REQUEST_FIELDS
    + """
          }
        }
      }
    }"""
)

REPOSITORY_DETAILS_QUERY = """
    query RepositoryDetails($owner: String!, $name: String!) {
      repository(owner: $owner, name: $name) {
        id
        name
        nameWithOwner
        description
        url
        stargazerCount
        forkCount
        watchers {
          totalCount
        }
        issues(states: OPEN) {
          totalCount
        }
        pullRequests(states: OPEN) {
          totalCount
        }
        primaryLanguage {
          name
          color
        }
        languages(first: 10, orderBy: {field: SIZE, direction: DESC}) {
          edges {
            size
            node {
              name
              color
            }
          }
        }
        defaultBranchRef {
          name
          target {
            ... on Commit {
              history(first: 30) {
                nodes {
                  oid
                  message
                  committedDate
                  author {
                    name
                    email
                    user {
                      login
                      avatarUrl
                    }
                  }
                  additions
                  deletions
                }
              }
            }
          }
        }
        refs(first: 5, refPrefix: "refs/heads/", orderBy: {field: ALPHABETICAL, direction: ASC}) {
          nodes {
            name
            target {
              ... on Commit {
                oid
              }
            }
          }
        }
        collaborators(first: 10) {
          nodes {
            login
            avatarUrl
          }
        }
        createdAt
        updatedAt
        pushedAt
        isPrivate
        isFork
        owner {
          login
          avatarUrl
        }
      }
    }"""

CONTRIBUTION_ACTIVITY_QUERY = (
    """
    query ContributionActivity($from: DateTime!, $to: DateTime!) {
      viewer {
        contributionsCollection(from: $from, to: $to) {
          contributionCalendar {
            totalContributions
            weeks {
              contributionDays {
                contributionCount
                date
                color
              }
            }
          }"""
    + _CONTRIBUTION_COUNTERS
    + """
          commitContributionsByRepository(maxRepositories: 10) {
            repository {
              name
              nameWithOwner
              owner {
                login
              }
            }
            contributions(first: 100) {
              nodes {
                occurredAt
                commitCount
              }
            }
          }
        }
      }
    }"""
)
