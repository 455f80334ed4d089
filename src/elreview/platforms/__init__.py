"""Git platform connectors for elreview."""

import httpx

from elreview.platforms.azure_devops import AzureDevOpsClient
from elreview.platforms.bitbucket import BitbucketClient
from elreview.platforms.client import (
    PlatformAPIError,
    PlatformAuthError,
    PlatformClient,
    PlatformClientError,
    PlatformConfig,
    PlatformConfigError,
    RetryPolicy,
)
from elreview.platforms.github import GitHubClient
from elreview.platforms.gitlab import GitLabClient
from elreview.platforms.models import (
    BranchProtection,
    ChangedFile,
    CommitState,
    CommitStatus,
    EventType,
    FileStatus,
    GitUser,
    MergeRequest,
    MergeRequestRef,
    MergeRequestState,
    Platform,
    PlatformResponse,
    PullRequestComment,
    RateLimit,
    Repository,
    WebhookEvent,
)


CLIENTS: dict[Platform, type[PlatformClient]] = {
    Platform.GITHUB: GitHubClient,
    Platform.GITLAB: GitLabClient,
    Platform.BITBUCKET: BitbucketClient,
    Platform.AZURE_DEVOPS: AzureDevOpsClient,
}


def create_client(
    config: PlatformConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PlatformClient:
    """Create the client implementation for the configured platform."""
    client_cls = CLIENTS.get(config.platform)
    if client_cls is None:
        raise PlatformConfigError(f"Unsupported platform: {config.platform}")
    return client_cls(config, transport=transport)


__all__ = [
    # Clients
    "PlatformClient",
    "GitHubClient",
    "GitLabClient",
    "BitbucketClient",
    "AzureDevOpsClient",
    "create_client",
    "PlatformConfig",
    "RetryPolicy",
    # Errors
    "PlatformClientError",
    "PlatformAPIError",
    "PlatformAuthError",
    "PlatformConfigError",
    # Models
    "Platform",
    "GitUser",
    "Repository",
    "MergeRequest",
    "MergeRequestState",
    "ChangedFile",
    "FileStatus",
    "PullRequestComment",
    "CommitStatus",
    "CommitState",
    "BranchProtection",
    "RateLimit",
    "PlatformResponse",
    "EventType",
    "WebhookEvent",
    "MergeRequestRef",
]
