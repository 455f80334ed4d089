"""Pytest fixtures for elreview tests."""

import hashlib
import hmac
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from elreview.platforms.models import (
    ChangedFile,
    FileStatus,
    GitUser,
    MergeRequest,
    MergeRequestState,
    Platform,
    PullRequestComment,
)


@pytest.fixture
def sign_github():
    """Compute an X-Hub-Signature-256 header value."""

    def _sign(secret: str, body: bytes) -> str:
        return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def github_pr_payload():
    """Sample GitHub pull_request webhook payload."""
    return {
        "action": "opened",
        "number": 7,
        "pull_request": {
            "id": 1001,
            "number": 7,
            "title": "Add login endpoint",
            "body": "Implements login",
            "state": "open",
            "head": {"ref": "feature/login", "sha": "a" * 40},
            "base": {"ref": "main"},
            "user": {"id": 5, "login": "octocat"},
        },
        "repository": {
            "id": 42,
            "name": "webapp",
            "full_name": "acme/webapp",
            "private": False,
            "default_branch": "main",
            "language": "Python",
            "html_url": "https://github.com/acme/webapp",
            "clone_url": "https://github.com/acme/webapp.git",
            "owner": {"id": 1, "login": "acme", "type": "Organization"},
        },
        "sender": {"id": 5, "login": "octocat", "type": "User"},
    }


@pytest.fixture
def gitlab_push_payload():
    """Sample GitLab Push Hook payload."""
    return {
        "object_kind": "push",
        "ref": "refs/heads/main",
        "before": "0" * 40,
        "after": "b" * 40,
        "user_id": 3,
        "user_name": "Jane Doe",
        "user_username": "jdoe",
        "user_email": "jane@example.com",
        "project": {
            "id": 15,
            "name": "service",
            "path_with_namespace": "group/service",
            "namespace": "group",
            "default_branch": "main",
            "web_url": "https://gitlab.com/group/service",
            "git_ssh_url": "git@gitlab.com:group/service.git",
            "visibility_level": 0,
        },
        "commits": [],
    }


@pytest.fixture
def make_webhook_body():
    """Serialize a payload the way a platform would send it."""

    def _make(payload: dict) -> bytes:
        return json.dumps(payload).encode()

    return _make


@pytest.fixture
def sample_merge_request():
    """Canonical merge request returned by a mocked connector."""
    return MergeRequest(
        id="1001",
        number="7",
        title="Add login endpoint",
        description="Implements login",
        state=MergeRequestState.OPEN,
        source_branch="feature/login",
        target_branch="main",
        author=GitUser(id="5", username="octocat"),
        head_sha="a" * 40,
    )


@pytest.fixture
def sample_files():
    """Three reviewable changed files."""
    return [
        ChangedFile(filename="app/auth.py", status=FileStatus.MODIFIED, additions=20, deletions=2, changes=22),
        ChangedFile(filename="app/views.py", status=FileStatus.ADDED, additions=40, changes=40),
        ChangedFile(filename="app/utils.py", status=FileStatus.MODIFIED, additions=5, deletions=5, changes=10),
    ]


@pytest.fixture
def sample_contents():
    """File content keyed by filename."""
    return {
        "app/auth.py": "def login(user):\n    if user:\n        return True\n    return False\n",
        "app/views.py": "def index():\n    return 'ok'\n",
        "app/utils.py": "def helper(x):\n    for i in range(x):\n        pass\n",
    }


@pytest.fixture
def mock_platform_client(sample_merge_request, sample_files, sample_contents):
    """Mock connector behaving like an authenticated PlatformClient."""
    client = MagicMock()
    client.platform = Platform.GITHUB
    client.initialize = AsyncMock()
    client.close = AsyncMock()
    client.get_merge_request = AsyncMock(return_value=sample_merge_request)
    client.get_changed_files = AsyncMock(return_value=sample_files)
    client.get_file_content = AsyncMock(
        side_effect=lambda repo_id, path, ref=None: sample_contents[path]
    )
    client.post_comment = AsyncMock(
        return_value=PullRequestComment(id="c1", body="", user=GitUser(id="0", username="bot"))
    )
    client.update_commit_status = AsyncMock()
    return client


@pytest.fixture
def mock_llm_provider():
    """Mock LLM provider for testing."""
    from elreview.llm.provider import LLMResponse

    provider = AsyncMock()
    provider.generate.return_value = LLMResponse(
        content="[]",
        model="test-model",
        usage={"prompt_tokens": 100, "completion_tokens": 20},
        raw_response={},
    )
    return provider
