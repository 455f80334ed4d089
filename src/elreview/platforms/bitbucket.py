"""Bitbucket Cloud REST API (2.0) client."""

from typing import Any

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
    "OPEN": MergeRequestState.OPEN,
    "MERGED": MergeRequestState.MERGED,
}

_FILE_STATUSES = {
    "added": FileStatus.ADDED,
    "removed": FileStatus.REMOVED,
    "renamed": FileStatus.RENAMED,
}

_COMMIT_STATES = {
    CommitState.PENDING: "INPROGRESS",
    CommitState.SUCCESS: "SUCCESSFUL",
    CommitState.FAILURE: "FAILED",
    CommitState.ERROR: "FAILED",
}

_WEBHOOK_EVENTS = {
    "push": ["repo:push"],
    "pull_request": ["pullrequest:created", "pullrequest:updated"],
    "issue": ["issue:created", "issue:updated"],
}


def map_user(data: dict | None) -> GitUser:
    if not data:
        return UNKNOWN_USER
    return GitUser(
        id=data.get("uuid") or data.get("account_id") or "0",
        username=data.get("username") or data.get("nickname") or "unknown",
        name=data.get("display_name"),
        avatar_url=data.get("links", {}).get("avatar", {}).get("href"),
        type="organization" if data.get("type") == "team" else "user",
    )


def map_repository(data: dict) -> Repository:
    links = data.get("links", {})
    clone_links = links.get("clone") or [{}]
    return Repository(
        id=data.get("uuid", ""),
        name=data.get("name", ""),
        full_name=data.get("full_name", ""),
        private=bool(data.get("is_private", False)),
        default_branch=(data.get("mainbranch") or {}).get("name") or "main",
        language=data.get("language") or "Unknown",
        url=links.get("html", {}).get("href", ""),
        clone_url=clone_links[0].get("href", ""),
        owner=map_user(data.get("owner")),
    )


def map_merge_request(data: dict) -> MergeRequest:
    state = _MR_STATES.get(data.get("state", ""), MergeRequestState.CLOSED)
    source = data.get("source") or {}
    return MergeRequest(
        id=str(data.get("id", "")),
        number=str(data.get("id", "")),
        title=data.get("title", ""),
        description=data.get("description") or "",
        state=state,
        source_branch=(source.get("branch") or {}).get("name", ""),
        target_branch=((data.get("destination") or {}).get("branch") or {}).get("name", ""),
        author=map_user(data.get("author")),
        reviewers=tuple(map_user(r) for r in data.get("reviewers") or []),
        draft=bool(data.get("draft", False)),
        created_at=data.get("created_on"),
        updated_at=data.get("updated_on"),
        merged_at=data.get("updated_on") if state == MergeRequestState.MERGED else None,
        head_sha=(source.get("commit") or {}).get("hash"),
    )


def map_changed_file(data: dict) -> ChangedFile:
    old_path = (data.get("old") or {}).get("path")
    new_path = (data.get("new") or {}).get("path")

    status = _FILE_STATUSES.get(data.get("status", ""))
    if status is None:
        if not old_path:
            status = FileStatus.ADDED
        elif not new_path:
            status = FileStatus.REMOVED
        else:
            status = FileStatus.MODIFIED

    additions = data.get("lines_added", 0)
    deletions = data.get("lines_removed", 0)
    return ChangedFile(
        filename=new_path or old_path or "",
        status=status,
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        previous_filename=old_path if old_path and new_path and old_path != new_path else None,
    )


def map_comment(data: dict) -> PullRequestComment:
    inline = data.get("inline") or {}
    return PullRequestComment(
        id=str(data.get("id", "")),
        body=(data.get("content") or {}).get("raw", ""),
        user=map_user(data.get("user")),
        path=inline.get("path"),
        line=inline.get("to"),
        created_at=data.get("created_on"),
        updated_at=data.get("updated_on"),
    )


class BitbucketClient(PlatformClient):
    """Client for Bitbucket Cloud. Repository ids are ``workspace/repo_slug``."""

    platform = Platform.BITBUCKET
    default_api_url = "https://api.bitbucket.org/2.0"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    def auth_test_endpoint(self) -> str:
        return "/user"

    async def validate_connection(self) -> None:
        response = await self._request("GET", "/user")
        data = response.data if isinstance(response.data, dict) else {}
        if not (data.get("username") or data.get("account_id")):
            raise PlatformAPIError(self.platform, response.status, "Invalid Bitbucket API response")

    def pagination_params(self, page: int, per_page: int) -> dict[str, Any]:
        return {"page": page, "pagelen": per_page}

    def state_params(self, state: MergeRequestState) -> dict[str, Any]:
        return {"state": "DECLINED" if state == MergeRequestState.CLOSED else state.value.upper()}

    def repositories_endpoint(self) -> str:
        return "/repositories?role=member"

    def repository_endpoint(self, repo_id: str) -> str:
        return f"/repositories/{repo_id}"

    def merge_requests_endpoint(self, repo_id: str) -> str:
        return f"/repositories/{repo_id}/pullrequests"

    def merge_request_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/repositories/{repo_id}/pullrequests/{mr_id}"

    def changed_files_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"/repositories/{repo_id}/pullrequests/{mr_id}/diffstat"

    def file_content_request(self, repo_id, path, ref):
        return f"/repositories/{repo_id}/src/{ref or 'main'}/{path}", {}, True

    def comments_endpoint(self, repo_id: str, mr_id: str, anchored: bool) -> str:
        return f"/repositories/{repo_id}/pullrequests/{mr_id}/comments"

    def commit_status_endpoint(self, repo_id: str, commit_sha: str) -> str:
        return f"/repositories/{repo_id}/commit/{commit_sha}/statuses/build"

    def branch_protection_request(self, repo_id: str, branch: str) -> tuple[str, str]:
        return "POST", f"/repositories/{repo_id}/branch-restrictions"

    def webhooks_endpoint(self, repo_id: str) -> str:
        return f"/repositories/{repo_id}/hooks"

    def build_comment_payload(self, body, path, line, commit_sha) -> dict:
        payload: dict = {"content": {"raw": body}}
        if path and line:
            payload["inline"] = {"path": path, "to": line}
        return payload

    def build_commit_status_payload(self, status: CommitStatus) -> dict:
        payload = {
            "state": _COMMIT_STATES[status.state],
            "key": status.context,
            "name": status.context,
            "description": status.description,
        }
        if status.target_url:
            payload["url"] = status.target_url
        return payload

    def build_branch_protection_payload(self, branch: str, protection: BranchProtection) -> dict:
        return {
            "kind": "require_approvals_to_merge",
            "branch_match_kind": "glob",
            "pattern": branch,
            "value": protection.required_approving_review_count,
        }

    def build_webhook_payload(self, repo_id, url, events, secret) -> dict:
        bitbucket_events: list[str] = []
        for event in events:
            bitbucket_events.extend(_WEBHOOK_EVENTS.get(event, [event]))

        payload: dict = {
            "description": "ElReview code review webhook",
            "url": url,
            "active": True,
            "events": bitbucket_events,
        }
        if secret:
            payload["secret"] = secret
        return payload

    def map_repository(self, data: dict) -> Repository:
        return map_repository(data)

    def map_merge_request(self, data: dict) -> MergeRequest:
        return map_merge_request(data)

    def map_changed_file(self, data: dict) -> ChangedFile:
        return map_changed_file(data)

    def map_comment(self, data: dict) -> PullRequestComment:
        return map_comment(data)
