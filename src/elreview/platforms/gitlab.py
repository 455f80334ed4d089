"""GitLab REST API (v4) client."""

from typing import Any
from urllib.parse import quote

from elreview.platforms.client import PlatformAPIError, PlatformClient
from elreview.platforms.models import (
    UNKNOWN_USER,
    BranchProtection,
    ChangedFile,
    CommitState,
    CommitStatus,
    FileStatus,
    GitUser,
    MergeRequest,
    MergeRequestState,
    Platform,
    PullRequestComment,
    Repository,
)


_MR_STATES = {
    "opened": MergeRequestState.OPEN,
    "merged": MergeRequestState.MERGED,
}

_COMMIT_STATES = {
    CommitState.PENDING: "pending",
    CommitState.SUCCESS: "success",
    CommitState.FAILURE: "failed",
    CommitState.ERROR: "failed",
}

# GitLab "Maintainer" access level
_MAINTAINER_ACCESS = 40


def _project_path(repo_id: str) -> str:
    return quote(str(repo_id), safe="")


def count_diff_lines(diff: str | None) -> tuple[int, int]:
    """Count added and deleted lines in a unified diff."""
    additions = deletions = 0
    for line in (diff or "").splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            deletions += 1
    return additions, deletions


def map_user(data: dict | None) -> GitUser:
    if not data:
        return UNKNOWN_USER
    return GitUser(
        id=str(data.get("id", "0")),
        username=data.get("username", "unknown"),
        name=data.get("name"),
        email=data.get("email"),
        avatar_url=data.get("avatar_url"),
    )


def map_repository(data: dict) -> Repository:
    # API responses carry a namespace object, webhook payloads a plain string
    namespace = data.get("namespace")
    if isinstance(namespace, dict):
        owner = GitUser(
            id=str(namespace.get("id", "0")),
            username=namespace.get("path", "unknown"),
            name=namespace.get("name", "unknown"),
            type="organization",
        )
    else:
        owner = GitUser(
            id="0",
            username=namespace or "unknown",
            name=namespace or "unknown",
            type="organization",
        )

    if "visibility" in data:
        private = data["visibility"] == "private"
    else:
        private = data.get("visibility_level", 0) == 0

    return Repository(
        id=str(data.get("id", "")),
        name=data.get("name", ""),
        full_name=data.get("path_with_namespace", ""),
        private=private,
        default_branch=data.get("default_branch") or "main",
        language="Unknown",
        url=data.get("web_url", ""),
        clone_url=data.get("ssh_url_to_repo") or data.get("git_ssh_url", ""),
        owner=owner,
    )


def map_merge_request(data: dict) -> MergeRequest:
    return MergeRequest(
        id=str(data.get("id", "")),
        number=str(data.get("iid", "")),
        title=data.get("title", ""),
        description=data.get("description") or "",
        state=_MR_STATES.get(data.get("state", ""), MergeRequestState.CLOSED),
        source_branch=data.get("source_branch", ""),
        target_branch=data.get("target_branch", ""),
        author=map_user(data.get("author")),
        assignees=tuple(map_user(a) for a in data.get("assignees") or []),
        reviewers=tuple(map_user(r) for r in data.get("reviewers") or []),
        labels=tuple(
            label if isinstance(label, str) else label.get("title", "")
            for label in data.get("labels") or []
        ),
        draft=bool(data.get("draft", data.get("work_in_progress", False))),
        mergeable=data.get("merge_status") == "can_be_merged",
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        merged_at=data.get("merged_at"),
        head_sha=data.get("sha"),
    )


def map_changed_file(data: dict) -> ChangedFile:
    if data.get("new_file"):
        status = FileStatus.ADDED
    elif data.get("deleted_file"):
        status = FileStatus.REMOVED
    elif data.get("renamed_file"):
        status = FileStatus.RENAMED
    else:
        status = FileStatus.MODIFIED

    old_path = data.get("old_path")
    new_path = data.get("new_path") or old_path or ""
    additions, deletions = count_diff_lines(data.get("diff"))

    return ChangedFile(
        filename=new_path,
        status=status,
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        patch=data.get("diff"),
        previous_filename=old_path if old_path and old_path != new_path else None,
    )


def map_comment(data: dict) -> PullRequestComment:
    position = data.get("position") or {}
    return PullRequestComment(
        id=str(data.get("id", "")),
        body=data.get("body", ""),
        user=map_user(data.get("author")),
        path=position.get("new_path"),
        line=position.get("new_line"),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
    )


class GitLabClient(PlatformClient):
    """Client for GitLab. Repository ids are project ids or ``group/project`` paths."""

    platform = Platform.GITLAB
    default_api_url = "https://gitlab.com/api/v4"

    def auth_headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.config.token}

    def auth_test_endpoint(self) -> str:
        return "/user"

    async def validate_connection(self) -> None:
        response = await self._request("GET", "/version")
        if not isinstance(response.data, dict) or "version" not in response.data:
            raise PlatformAPIError(self.platform, response.status, "Invalid GitLab API response")

    def repositories_endpoint(self) -> str:
        return "/projects?membership=true"

    def repository_endpoint(self, repo_id: str) -> str:
        return f"/projects/{_project_path(repo_id)}"

    def merge_requests_endpoint(self, repo_id: str) -> str:
        return f"/projects/{_project_path(repo_id)}/merge_requests"

    def merge_request_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/projects/{_project_path(repo_id)}/merge_requests/{mr_id}"

    def state_params(self, state: MergeRequestState) -> dict[str, Any]:
        return {"state": "opened" if state == MergeRequestState.OPEN else state.value}

    def changed_files_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/projects/{_project_path(repo_id)}/merge_requests/{mr_id}/changes"

    def file_content_request(self, repo_id, path, ref):
        endpoint = f"/projects/{_project_path(repo_id)}/repository/files/{quote(path, safe='')}/raw"
        return endpoint, {"ref": ref or "HEAD"}, True

    def comments_endpoint(self, repo_id: str, mr_id: str, anchored: bool) -> str:
        return f"/projects/{_project_path(repo_id)}/merge_requests/{mr_id}/notes"

    def commit_status_endpoint(self, repo_id: str, commit_sha: str) -> str:
        return f"/projects/{_project_path(repo_id)}/statuses/{commit_sha}"

    def branch_protection_request(self, repo_id: str, branch: str) -> tuple[str, str]:
        return "POST", f"/projects/{_project_path(repo_id)}/protected_branches"

    def webhooks_endpoint(self, repo_id: str) -> str:
        return f"/projects/{_project_path(repo_id)}/hooks"

    def build_comment_payload(self, body, path, line, commit_sha) -> dict:
        # Positioned discussions need the full diff refs; notes carry the location inline
        if path and line:
            body = f"**`{path}:{line}`**\n\n{body}"
        return {"body": body}

    def build_commit_status_payload(self, status: CommitStatus) -> dict:
        payload = {
            "state": _COMMIT_STATES[status.state],
            "name": status.context,
            "description": status.description,
        }
        if status.target_url:
            payload["target_url"] = status.target_url
        return payload

    def build_branch_protection_payload(self, branch: str, protection: BranchProtection) -> dict:
        return {
            "name": branch,
            "push_access_level": _MAINTAINER_ACCESS,
            "merge_access_level": _MAINTAINER_ACCESS,
            "code_owner_approval_required": protection.require_code_owner_reviews,
        }

    def build_webhook_payload(self, repo_id, url, events, secret) -> dict:
        payload: dict = {
            "url": url,
            "push_events": "push" in events,
            "merge_requests_events": "pull_request" in events,
            "issues_events": "issue" in events,
            "releases_events": "release" in events,
            "pipeline_events": "workflow_run" in events,
        }
        if secret:
            payload["token"] = secret
        return payload

    def map_repository(self, data: dict) -> Repository:
        return map_repository(data)

    def map_merge_request(self, data: dict) -> MergeRequest:
        return map_merge_request(data)

    def map_changed_file(self, data: dict) -> ChangedFile:
        return map_changed_file(data)

    def map_comment(self, data: dict) -> PullRequestComment:
        return map_comment(data)
