"""Canonical data models for git platform entities."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


_HUNK_RE = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,\d+)? @@")


class Platform(str, Enum):
    """Supported git platforms."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE_DEVOPS = "azure_devops"


class MergeRequestState(str, Enum):
    """Merge request state."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class FileStatus(str, Enum):
    """Change status of a file in a merge request."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


class CommitState(str, Enum):
    """Commit status state."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


@dataclass(frozen=True)
class GitUser:
    """A platform user or organization."""

    id: str
    username: str
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    type: str = "user"  # "user", "bot", "organization"


UNKNOWN_USER = GitUser(id="0", username="unknown", name="unknown")


@dataclass(frozen=True)
class Repository:
    """A git repository."""

    id: str
    name: str
    full_name: str
    private: bool
    default_branch: str
    language: str
    url: str
    clone_url: str
    owner: GitUser


@dataclass(frozen=True)
class MergeRequest:
    """A pull request / merge request."""

    id: str
    number: str
    title: str
    description: str
    state: MergeRequestState
    source_branch: str
    target_branch: str
    author: GitUser
    assignees: tuple[GitUser, ...] = ()
    reviewers: tuple[GitUser, ...] = ()
    labels: tuple[str, ...] = ()
    draft: bool = False
    mergeable: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    merged_at: str | None = None
    head_sha: str | None = None


@dataclass(frozen=True)
class ChangedFile:
    """A file changed by a merge request."""

    filename: str
    status: FileStatus
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None
    previous_filename: str | None = None
    language: str | None = None

    def commentable_lines(self) -> frozenset[int] | None:
        """New-side line numbers covered by the patch hunks.

        Returns None when the platform sent no patch, in which case any
        line may be tried.
        """
        if self.patch is None:
            return None

        lines: set[int] = set()
        current = 0
        for row in self.patch.splitlines():
            hunk = _HUNK_RE.match(row)
            if hunk:
                current = int(hunk.group(1))
                continue
            if not current or row.startswith("-") or row.startswith("\\"):
                continue
            # added or context line on the new side
            lines.add(current)
            current += 1
        return frozenset(lines)


@dataclass(frozen=True)
class PullRequestComment:
    """A comment posted on a merge request."""

    id: str
    body: str
    user: GitUser
    path: str | None = None
    line: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class CommitStatus:
    """A commit status update."""

    state: CommitState
    context: str
    description: str
    target_url: str | None = None


@dataclass(frozen=True)
class BranchProtection:
    """Branch protection rules."""

    required_approving_review_count: int = 1
    require_code_owner_reviews: bool = False
    dismiss_stale_reviews: bool = True
    required_status_checks: tuple[str, ...] = ()
    enforce_admins: bool = False


@dataclass(frozen=True)
class RateLimit:
    """Rate limit information extracted from response headers."""

    limit: int
    remaining: int
    reset: int


class EventType(str, Enum):
    """Canonical webhook event types."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    ISSUE = "issue"
    RELEASE = "release"
    WORKFLOW_RUN = "workflow_run"


@dataclass(frozen=True)
class MergeRequestRef:
    """Locates a merge request on its platform."""

    repository_id: str
    number: str
    head_sha: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """A webhook notification normalized across platforms."""

    id: str
    type: EventType
    platform: Platform
    repository: Repository
    sender: GitUser
    payload: dict = field(hash=False)
    timestamp: float
    action: str = ""
    signature: str | None = None
    merge_request: MergeRequestRef | None = None


@dataclass
class PlatformResponse:
    """Raw response envelope for a platform API call."""

    data: Any
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    rate_limit: RateLimit | None = None
