"""GitHub REST API client."""

import base64
from typing import Any

from elreview.platforms.client import PlatformAPIError, PlatformClient
from elreview.platforms.models import (
    UNKNOWN_USER,
    BranchProtection,
    ChangedFile,
    CommitStatus,
    FileStatus,
    GitUser,
    MergeRequest,
    MergeRequestState,
    Platform,
    PullRequestComment,
    Repository,
)


_FILE_STATUSES = {
    "added": FileStatus.ADDED,
    "removed": FileStatus.REMOVED,
    "renamed": FileStatus.RENAMED,
}

# Canonical event names -> GitHub webhook event names
_WEBHOOK_EVENTS = {"issue": "issues"}


def map_user(data: dict | None) -> GitUser:
    if not data:
        return UNKNOWN_USER
    user_type = data.get("type")
    return GitUser(
        id=str(data.get("id", "0")),
        username=data.get("login", "unknown"),
        name=data.get("name"),
        email=data.get("email"),
        avatar_url=data.get("avatar_url"),
        type={"Bot": "bot", "Organization": "organization"}.get(user_type, "user"),
    )


def map_repository(data: dict) -> Repository:
    return Repository(
        id=str(data.get("id", "")),
        name=data.get("name", ""),
        full_name=data.get("full_name", ""),
        private=bool(data.get("private", False)),
        default_branch=data.get("default_branch") or "main",
        language=data.get("language") or "Unknown",
        url=data.get("html_url", ""),
        clone_url=data.get("clone_url", ""),
        owner=map_user(data.get("owner")),
    )


def map_merge_request(data: dict) -> MergeRequest:
    if data.get("state") == "open":
        state = MergeRequestState.OPEN
    elif data.get("merged") or data.get("merged_at"):
        state = MergeRequestState.MERGED
    else:
        state = MergeRequestState.CLOSED

    return MergeRequest(
        id=str(data.get("id", "")),
        number=str(data.get("number", "")),
        title=data.get("title", ""),
        description=data.get("body") or "",
        state=state,
        source_branch=data.get("head", {}).get("ref", ""),
        target_branch=data.get("base", {}).get("ref", ""),
        author=map_user(data.get("user")),
        assignees=tuple(map_user(a) for a in data.get("assignees") or []),
        reviewers=tuple(map_user(r) for r in data.get("requested_reviewers") or []),
        labels=tuple(label.get("name", "") for label in data.get("labels") or []),
        draft=bool(data.get("draft", False)),
        mergeable=data.get("mergeable") is not False,
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        merged_at=data.get("merged_at"),
        head_sha=data.get("head", {}).get("sha"),
    )


def map_changed_file(data: dict) -> ChangedFile:
    return ChangedFile(
        filename=data.get("filename", ""),
        status=_FILE_STATUSES.get(data.get("status", ""), FileStatus.MODIFIED),
        additions=data.get("additions", 0),
        deletions=data.get("deletions", 0),
        changes=data.get("changes", 0),
        patch=data.get("patch"),
        previous_filename=data.get("previous_filename"),
    )


def map_comment(data: dict) -> PullRequestComment:
    return PullRequestComment(
        id=str(data.get("id", "")),
        body=data.get("body", ""),
        user=map_user(data.get("user")),
        path=data.get("path"),
        line=data.get("line"),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
    )


class GitHubClient(PlatformClient):
    """Client for api.github.com. Repository ids are ``owner/repo`` names."""

    platform = Platform.GITHUB
    default_api_url = "https://api.github.com"

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def auth_test_endpoint(self) -> str:
        return "/user"

    async def validate_connection(self) -> None:
        response = await self._request("GET", "/rate_limit")
        if not isinstance(response.data, dict) or "rate" not in response.data:
            raise PlatformAPIError(self.platform, response.status, "Invalid GitHub API response")

    def repositories_endpoint(self) -> str:
        return "/user/repos"

    def repository_endpoint(self, repo_id: str) -> str:
        return f"/repos/{repo_id}"

    def merge_requests_endpoint(self, repo_id: str) -> str:
        return f"/repos/{repo_id}/pulls"

    def merge_request_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/repos/{repo_id}/pulls/{mr_id}"

    def state_params(self, state: MergeRequestState) -> dict[str, Any]:
        # GitHub has no "merged" filter; merged PRs are closed ones
        return {"state": "open" if state == MergeRequestState.OPEN else "closed"}

    def changed_files_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/repos/{repo_id}/pulls/{mr_id}/files"

    def file_content_request(self, repo_id, path, ref):
        params = {"ref": ref} if ref else {}
        return f"/repos/{repo_id}/contents/{path}", params, False

    def extract_file_content(self, data: Any) -> str:
        if isinstance(data, list):
            raise PlatformAPIError(self.platform, 200, "Path is a directory, not a file")
        if not isinstance(data, dict):
            return ""
        if data.get("encoding") == "base64":
            return base64.b64decode(data.get("content", "")).decode("utf-8")
        return data.get("content", "")

    def comments_endpoint(self, repo_id: str, mr_id: str, anchored: bool) -> str:
        if anchored:
            return f"/repos/{repo_id}/pulls/{mr_id}/comments"
        return f"/repos/{repo_id}/issues/{mr_id}/comments"

    def commit_status_endpoint(self, repo_id: str, commit_sha: str) -> str:
        return f"/repos/{repo_id}/statuses/{commit_sha}"

    def branch_protection_request(self, repo_id: str, branch: str) -> tuple[str, str]:
        return "PUT", f"/repos/{repo_id}/branches/{branch}/protection"

    def webhooks_endpoint(self, repo_id: str) -> str:
        return f"/repos/{repo_id}/hooks"

    def build_comment_payload(self, body, path, line, commit_sha) -> dict:
        if path and line:
            payload: dict = {"body": body, "path": path, "line": line, "side": "RIGHT"}
            if commit_sha:
                payload["commit_id"] = commit_sha
            return payload
        return {"body": body}

    def build_commit_status_payload(self, status: CommitStatus) -> dict:
        payload = {
            "state": status.state.value,
            "description": status.description[:140],
            "context": status.context,
        }
        if status.target_url:
            payload["target_url"] = status.target_url
        return payload

    def build_branch_protection_payload(self, branch: str, protection: BranchProtection) -> dict:
        return {
            "required_status_checks": {
                "strict": True,
                "contexts": list(protection.required_status_checks),
            }
            if protection.required_status_checks
            else None,
            "enforce_admins": protection.enforce_admins,
            "required_pull_request_reviews": {
                "dismiss_stale_reviews": protection.dismiss_stale_reviews,
                "require_code_owner_reviews": protection.require_code_owner_reviews,
                "required_approving_review_count": protection.required_approving_review_count,
            },
            "restrictions": None,
        }

    def build_webhook_payload(self, repo_id, url, events, secret) -> dict:
        config = {"url": url, "content_type": "json"}
        if secret:
            config["secret"] = secret
        return {
            "name": "web",
            "config": config,
            "events": [_WEBHOOK_EVENTS.get(e, e) for e in events],
            "active": True,
        }

    def map_repository(self, data: dict) -> Repository:
        return map_repository(data)

    def map_merge_request(self, data: dict) -> MergeRequest:
        return map_merge_request(data)

    def map_changed_file(self, data: dict) -> ChangedFile:
        return map_changed_file(data)

    def map_comment(self, data: dict) -> PullRequestComment:
        return map_comment(data)
