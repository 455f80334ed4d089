"""Azure DevOps Services REST API client."""

import base64
import re
from typing import Any

from elreview.platforms.client import (
    PlatformAPIError,
    PlatformClient,
    PlatformConfig,
    PlatformConfigError,
)
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


API_VERSION = "7.0"

# Built-in "Minimum number of reviewers" policy type
MIN_REVIEWERS_POLICY = "fa4e907d-c16b-4a4c-9dfa-4906e5d171dd"

_MR_STATES = {
    "active": MergeRequestState.OPEN,
    "completed": MergeRequestState.MERGED,
}

_MR_STATUS_FILTER = {
    MergeRequestState.OPEN: "active",
    MergeRequestState.MERGED: "completed",
    MergeRequestState.CLOSED: "abandoned",
}

_COMMIT_STATES = {
    CommitState.PENDING: "pending",
    CommitState.SUCCESS: "succeeded",
    CommitState.FAILURE: "failed",
    CommitState.ERROR: "error",
}

_WEBHOOK_EVENTS = {
    "push": ["git.push"],
    "pull_request": ["git.pullrequest.created", "git.pullrequest.updated"],
    "issue": ["workitem.created", "workitem.updated"],
    "workflow_run": ["build.complete"],
}

_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


def _strip_ref(ref: str | None) -> str:
    return (ref or "").removeprefix("refs/heads/")


def map_user(data: dict | None) -> GitUser:
    if not data:
        return UNKNOWN_USER
    return GitUser(
        id=data.get("id") or "0",
        username=data.get("uniqueName") or "unknown",
        name=data.get("displayName") or "unknown",
        email=data.get("uniqueName"),
        avatar_url=data.get("imageUrl"),
    )


AZURE_OWNER = GitUser(
    id="0",
    username="azure-devops",
    name="Azure DevOps",
    type="organization",
)


def map_repository(data: dict | None) -> Repository:
    data = data or {}
    name = data.get("name") or "unknown"
    project = (data.get("project") or {}).get("name")
    return Repository(
        id=data.get("id") or "0",
        name=name,
        full_name=f"{project}/{name}" if project else name,
        private=True,
        default_branch=_strip_ref(data.get("defaultBranch")) or "main",
        language="Unknown",
        url=data.get("webUrl") or "",
        clone_url=data.get("remoteUrl") or "",
        owner=AZURE_OWNER,
    )


def map_merge_request(data: dict) -> MergeRequest:
    state = _MR_STATES.get(data.get("status", ""), MergeRequestState.CLOSED)
    merge_status = data.get("mergeStatus")
    return MergeRequest(
        id=str(data.get("pullRequestId", "")),
        number=str(data.get("pullRequestId", "")),
        title=data.get("title", ""),
        description=data.get("description") or "",
        state=state,
        source_branch=_strip_ref(data.get("sourceRefName")),
        target_branch=_strip_ref(data.get("targetRefName")),
        author=map_user(data.get("createdBy")),
        reviewers=tuple(map_user(r) for r in data.get("reviewers") or []),
        labels=tuple(label.get("name", "") for label in data.get("labels") or []),
        draft=bool(data.get("isDraft", False)),
        mergeable=merge_status in (None, "succeeded"),
        created_at=data.get("creationDate"),
        updated_at=data.get("closedDate") or data.get("creationDate"),
        merged_at=data.get("closedDate") if state == MergeRequestState.MERGED else None,
        head_sha=(data.get("lastMergeSourceCommit") or {}).get("commitId"),
    )


def map_changed_file(data: dict) -> ChangedFile:
    change_type = data.get("changeType", "")
    if "add" in change_type:
        status = FileStatus.ADDED
    elif "delete" in change_type:
        status = FileStatus.REMOVED
    elif "rename" in change_type:
        status = FileStatus.RENAMED
    else:
        status = FileStatus.MODIFIED

    original = data.get("originalPath")
    return ChangedFile(
        filename=(data.get("item") or {}).get("path", "").lstrip("/"),
        status=status,
        previous_filename=original.lstrip("/") if original else None,
    )


def map_comment(data: dict) -> PullRequestComment:
    # Thread responses wrap the comment list
    context = data.get("threadContext") or {}
    comment = (data.get("comments") or [data])[0]
    path = context.get("filePath")
    return PullRequestComment(
        id=str(data.get("id", "")),
        body=comment.get("content") or "",
        user=map_user(comment.get("author")),
        path=path.lstrip("/") if path else None,
        line=(context.get("rightFileStart") or {}).get("line"),
        created_at=comment.get("publishedDate"),
        updated_at=comment.get("lastUpdatedDate"),
    )


class AzureDevOpsClient(PlatformClient):
    """Client for Azure DevOps Services.

    Repository ids are ``project/repository`` (or a bare repository GUID).
    """

    platform = Platform.AZURE_DEVOPS
    default_api_url = "https://dev.azure.com"
    default_params = {"api-version": API_VERSION}

    def __init__(self, config: PlatformConfig, transport=None):
        if not config.organization:
            raise PlatformConfigError("Azure DevOps requires an organization")
        super().__init__(config, transport=transport)

    @property
    def org(self) -> str:
        return self.config.organization or ""

    def _repo_path(self, repo_id: str) -> str:
        if "/" in repo_id:
            project, repo = repo_id.split("/", 1)
            return f"/{self.org}/{project}/_apis/git/repositories/{repo}"
        return f"/{self.org}/_apis/git/repositories/{repo_id}"

    def auth_headers(self) -> dict[str, str]:
        credential = base64.b64encode(f":{self.config.token}".encode()).decode()
        return {"Authorization": f"Basic {credential}"}

    def auth_test_endpoint(self) -> str:
        return f"/{self.org}/_apis/projects"

    async def validate_connection(self) -> None:
        response = await self._request("GET", f"/{self.org}/_apis/projects")
        if not isinstance(response.data, dict) or "value" not in response.data:
            raise PlatformAPIError(
                self.platform, response.status, "Invalid Azure DevOps API response"
            )

    def pagination_params(self, page: int, per_page: int) -> dict[str, Any]:
        return {"$top": per_page, "$skip": (page - 1) * per_page}

    def state_params(self, state: MergeRequestState) -> dict[str, Any]:
        return {"searchCriteria.status": _MR_STATUS_FILTER[state]}

    def repositories_endpoint(self) -> str:
        return f"/{self.org}/_apis/git/repositories"

    def repository_endpoint(self, repo_id: str) -> str:
        return self._repo_path(repo_id)

    def merge_requests_endpoint(self, repo_id: str) -> str:
        return f"{self._repo_path(repo_id)}/pullrequests"

    def merge_request_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"{self._repo_path(repo_id)}/pullrequests/{mr_id}"

    def changed_files_endpoint(self, repo_id: str, mr_id: str) -> str:
        return f"{self._repo_path(repo_id)}/pullrequests/{mr_id}/iterations"

    async def get_changed_files(self, repo_id: str, mr_id: str) -> list[ChangedFile]:
        """Changed files of the latest pull request iteration."""
        self._ensure_authenticated()
        iterations = await self._request("GET", self.changed_files_endpoint(repo_id, mr_id))
        items = self.extract_items(iterations.data)
        if not items:
            return []

        latest = max(item.get("id", 0) for item in items)
        response = await self._request(
            "GET", f"{self.changed_files_endpoint(repo_id, mr_id)}/{latest}/changes"
        )
        entries = (response.data or {}).get("changeEntries", [])
        return [
            self.map_changed_file(entry)
            for entry in entries
            if (entry.get("item") or {}).get("gitObjectType", "blob") == "blob"
        ]

    def file_content_request(self, repo_id, path, ref):
        params: dict[str, Any] = {"path": path, "includeContent": "true", "$format": "json"}
        if ref:
            params["versionDescriptor.version"] = ref
            params["versionDescriptor.versionType"] = "commit" if _SHA_RE.match(ref) else "branch"
        return f"{self._repo_path(repo_id)}/items", params, False

    def extract_file_content(self, data: Any) -> str:
        if isinstance(data, dict):
            return data.get("content") or ""
        return super().extract_file_content(data)

    def comments_endpoint(self, repo_id: str, mr_id: str, anchored: bool) -> str:
        return f"{self._repo_path(repo_id)}/pullrequests/{mr_id}/threads"

    def commit_status_endpoint(self, repo_id: str, commit_sha: str) -> str:
        return f"{self._repo_path(repo_id)}/commits/{commit_sha}/statuses"

    def branch_protection_request(self, repo_id: str, branch: str) -> tuple[str, str]:
        if "/" not in repo_id:
            raise PlatformConfigError(
                "Azure DevOps branch policies need a 'project/repository' id"
            )
        project = repo_id.split("/", 1)[0]
        return "POST", f"/{self.org}/{project}/_apis/policy/configurations"

    def webhooks_endpoint(self, repo_id: str) -> str:
        return f"/{self.org}/_apis/hooks/subscriptions"

    def build_comment_payload(self, body, path, line, commit_sha) -> dict:
        payload: dict = {
            "comments": [{"parentCommentId": 0, "content": body, "commentType": 1}],
            "status": 1,
        }
        if path and line:
            position = {"line": line, "offset": 1}
            payload["threadContext"] = {
                "filePath": f"/{path.lstrip('/')}",
                "rightFileStart": position,
                "rightFileEnd": position,
            }
        return payload

    def build_commit_status_payload(self, status: CommitStatus) -> dict:
        payload: dict = {
            "state": _COMMIT_STATES[status.state],
            "description": status.description,
            "context": {"name": status.context, "genre": "elreview"},
        }
        if status.target_url:
            payload["targetUrl"] = status.target_url
        return payload

    def build_branch_protection_payload(self, branch: str, protection: BranchProtection) -> dict:
        return {
            "isEnabled": True,
            "isBlocking": True,
            "type": {"id": MIN_REVIEWERS_POLICY},
            "settings": {
                "minimumApproverCount": protection.required_approving_review_count,
                "creatorVoteCounts": False,
                "resetOnSourcePush": protection.dismiss_stale_reviews,
                "scope": [
                    {
                        "repositoryId": None,
                        "refName": f"refs/heads/{branch}",
                        "matchKind": "exact",
                    }
                ],
            },
        }

    def build_webhook_payload(self, repo_id, url, events, secret) -> dict:
        """Build the subscription for the first event; see create_webhook."""
        event_type = self._subscription_events(events)[0]
        return self._subscription(repo_id, url, event_type)

    def _subscription_events(self, events: list[str]) -> list[str]:
        event_types: list[str] = []
        for event in events:
            event_types.extend(_WEBHOOK_EVENTS.get(event, [event]))
        return event_types or ["git.pullrequest.created"]

    def _subscription(self, repo_id: str, url: str, event_type: str) -> dict:
        publisher_inputs: dict = {}
        if "/" in repo_id:
            project, repo = repo_id.split("/", 1)
            publisher_inputs = {"projectId": project, "repository": repo}
        else:
            publisher_inputs = {"repository": repo_id}
        return {
            "publisherId": "tfs",
            "eventType": event_type,
            "resourceVersion": "1.0",
            "consumerId": "webHooks",
            "consumerActionId": "httpRequest",
            "publisherInputs": publisher_inputs,
            "consumerInputs": {"url": url},
        }

    async def create_webhook(self, repo_id, url, events, secret=None) -> dict:
        """Create one service hook subscription per event type.

        Azure DevOps has no payload signing; ``secret`` is ignored.
        """
        self._ensure_authenticated()
        subscriptions = []
        for event_type in self._subscription_events(events):
            response = await self._request(
                "POST",
                self.webhooks_endpoint(repo_id),
                json=self._subscription(repo_id, url, event_type),
            )
            subscriptions.append(response.data or {})
        return {"subscriptions": subscriptions}

    def map_repository(self, data: dict) -> Repository:
        return map_repository(data)

    def map_merge_request(self, data: dict) -> MergeRequest:
        return map_merge_request(data)

    def map_changed_file(self, data: dict) -> ChangedFile:
        return map_changed_file(data)

    def map_comment(self, data: dict) -> PullRequestComment:
        return map_comment(data)
