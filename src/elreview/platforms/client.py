"""Base platform client shared by every git platform implementation."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from elreview.platforms.models import (
    BranchProtection,
    ChangedFile,
    CommitStatus,
    MergeRequest,
    MergeRequestState,
    Platform,
    PlatformResponse,
    PullRequestComment,
    RateLimit,
    Repository,
)


logger = logging.getLogger(__name__)

USER_AGENT = "elreview/0.1"

# Statuses worth another attempt when retries are enabled
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class PlatformClientError(Exception):
    """Raised when platform operations fail."""


class PlatformConfigError(PlatformClientError):
    """Raised when a platform client is misconfigured."""


class PlatformAuthError(PlatformClientError):
    """Raised when an operation runs on a client that is not authenticated."""


class PlatformAPIError(PlatformClientError):
    """Raised when a platform API call returns a non-2xx response."""

    def __init__(self, platform: Platform, status: int | None, message: str):
        self.platform = platform
        self.status = status
        super().__init__(f"[{platform.value}] HTTP {status}: {message}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for outbound calls.

    The default is a single attempt. Reads are retried on transport errors
    and retryable statuses when ``max_attempts > 1``; writes only when the
    caller supplies an idempotency key.
    """

    max_attempts: int = 1
    backoff_base: float = 0.5
    backoff_max: float = 8.0

    def delay(self, attempt: int) -> float:
        """Backoff delay in seconds after the given (1-based) attempt."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))


@dataclass
class PlatformConfig:
    """Connection settings for one platform."""

    platform: Platform
    token: str
    api_url: str | None = None
    organization: str | None = None
    timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def extract_rate_limit(headers: httpx.Headers) -> RateLimit | None:
    """Extract rate limit information from response headers, if present."""
    limit = headers.get("x-ratelimit-limit") or headers.get("ratelimit-limit")
    remaining = headers.get("x-ratelimit-remaining") or headers.get("ratelimit-remaining")
    reset = headers.get("x-ratelimit-reset") or headers.get("ratelimit-reset")

    if not (limit and remaining and reset):
        return None

    try:
        return RateLimit(limit=int(limit), remaining=int(remaining), reset=int(reset))
    except ValueError:
        logger.debug(f"Ignoring malformed rate limit headers: {limit}/{remaining}/{reset}")
        return None


class PlatformClient(ABC):
    """Uniform REST client over a git platform.

    Subclasses provide base URL, auth headers, endpoint templates, request
    body builders and response mappers. Callers above this layer never branch
    on the platform.
    """

    platform: Platform
    default_api_url: str = ""

    # Query parameters appended to every request
    default_params: dict[str, str] = {}

    def __init__(
        self,
        config: PlatformConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not config.token:
            raise PlatformConfigError(
                f"No credential configured for platform '{config.platform.value}'"
            )

        self.config = config
        self._authenticated = False
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=httpx.Timeout(config.timeout),
            transport=transport,
        )
        self.last_rate_limit: RateLimit | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self.config.api_url or self.default_api_url

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            **self.auth_headers(),
        }

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    async def initialize(self) -> None:
        """Authenticate and validate the connection.

        Must be called before any other operation.
        """
        await self._request("GET", self.auth_test_endpoint())
        await self.validate_connection()
        self._authenticated = True
        logger.info(f"Connected to {self.platform.value} at {self.base_url}")

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        self._authenticated = False
        await self._http.aclose()

    def _ensure_authenticated(self) -> None:
        if not self._authenticated:
            raise PlatformAuthError(
                f"{self.platform.value} client not authenticated. Call initialize() first."
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        raw: bool = False,
        idempotency_key: str | None = None,
    ) -> PlatformResponse:
        """Send a request and wrap the response in a PlatformResponse.

        Args:
            method: HTTP method
            path: Endpoint path relative to the base URL
            json: JSON body for writes
            params: Query parameters
            raw: Return the body as text instead of decoded JSON
            idempotency_key: Dedupe token that makes a write safe to retry

        Raises:
            PlatformAPIError: On transport failure or a non-2xx response
        """
        query = {**self.default_params, **(params or {})}
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        retryable = method == "GET" or idempotency_key is not None
        attempts = self.config.retry.max_attempts if retryable else 1

        for attempt in range(1, max(attempts, 1) + 1):
            try:
                response = await self._http.request(
                    method,
                    path,
                    json=json,
                    params=query or None,
                    headers=headers or None,
                )
            except httpx.HTTPError as e:
                if attempt < attempts:
                    await self._backoff(method, path, attempt, str(e))
                    continue
                raise PlatformAPIError(
                    self.platform, None, f"{method} {path} failed: {e}"
                ) from e

            if response.status_code in RETRYABLE_STATUSES and attempt < attempts:
                await self._backoff(method, path, attempt, f"HTTP {response.status_code}")
                continue

            if not response.is_success:
                raise PlatformAPIError(
                    self.platform,
                    response.status_code,
                    f"{method} {path}: {response.reason_phrase}",
                )

            rate_limit = extract_rate_limit(response.headers)
            if rate_limit is not None:
                self.last_rate_limit = rate_limit

            if raw:
                data: Any = response.text
            elif response.status_code == 204 or not response.content:
                data = None
            else:
                data = response.json()

            return PlatformResponse(
                data=data,
                status=response.status_code,
                headers=dict(response.headers),
                rate_limit=rate_limit,
            )

        # range() always runs at least once, but keep type checkers happy
        raise PlatformAPIError(self.platform, None, f"{method} {path}: no attempt made")

    async def _backoff(self, method: str, path: str, attempt: int, reason: str) -> None:
        delay = self.config.retry.delay(attempt)
        logger.warning(
            f"{self.platform.value} {method} {path} failed ({reason}), "
            f"retrying in {delay:.1f}s (attempt {attempt}/{self.config.retry.max_attempts})"
        )
        await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def list_repositories(self, page: int = 1, per_page: int = 30) -> list[Repository]:
        self._ensure_authenticated()
        response = await self._request(
            "GET",
            self.repositories_endpoint(),
            params=self.pagination_params(page, per_page),
        )
        return [self.map_repository(r) for r in self.extract_items(response.data)]

    async def get_repository(self, repo_id: str) -> Repository:
        self._ensure_authenticated()
        response = await self._request("GET", self.repository_endpoint(repo_id))
        return self.map_repository(response.data)

    async def list_merge_requests(
        self,
        repo_id: str,
        state: MergeRequestState | None = None,
        page: int = 1,
        per_page: int = 30,
    ) -> list[MergeRequest]:
        self._ensure_authenticated()
        params = self.pagination_params(page, per_page)
        if state is not None:
            params.update(self.state_params(state))
        response = await self._request(
            "GET", self.merge_requests_endpoint(repo_id), params=params
        )
        return [self.map_merge_request(mr) for mr in self.extract_items(response.data)]

    async def get_merge_request(self, repo_id: str, mr_id: str) -> MergeRequest:
        self._ensure_authenticated()
        response = await self._request("GET", self.merge_request_endpoint(repo_id, mr_id))
        return self.map_merge_request(response.data)

    async def get_changed_files(self, repo_id: str, mr_id: str) -> list[ChangedFile]:
        self._ensure_authenticated()
        response = await self._request("GET", self.changed_files_endpoint(repo_id, mr_id))
        return [self.map_changed_file(f) for f in self.extract_items(response.data)]

    async def get_file_content(self, repo_id: str, path: str, ref: str | None = None) -> str:
        """Read a file as text; binary or non-UTF-8 blobs raise PlatformAPIError."""
        self._ensure_authenticated()
        endpoint, params, raw = self.file_content_request(repo_id, path, ref)
        response = await self._request("GET", endpoint, params=params, raw=raw)
        try:
            content = self.extract_file_content(response.data)
        except UnicodeDecodeError as e:
            raise PlatformAPIError(
                self.platform, response.status, f"{path} is not UTF-8 text: {e}"
            ) from e
        if "\x00" in content:
            raise PlatformAPIError(self.platform, response.status, f"{path} is binary content")
        return content

    async def post_comment(
        self,
        repo_id: str,
        mr_id: str,
        body: str,
        path: str | None = None,
        line: int | None = None,
        commit_sha: str | None = None,
        idempotency_key: str | None = None,
    ) -> PullRequestComment:
        """Post a comment, optionally anchored to a file and line."""
        self._ensure_authenticated()
        anchored = bool(path and line)
        endpoint = self.comments_endpoint(repo_id, mr_id, anchored)
        payload = self.build_comment_payload(body, path, line, commit_sha)
        response = await self._request(
            "POST", endpoint, json=payload, idempotency_key=idempotency_key
        )
        return self.map_comment(response.data)

    async def update_commit_status(
        self,
        repo_id: str,
        commit_sha: str,
        status: CommitStatus,
        idempotency_key: str | None = None,
    ) -> None:
        self._ensure_authenticated()
        await self._request(
            "POST",
            self.commit_status_endpoint(repo_id, commit_sha),
            json=self.build_commit_status_payload(status),
            idempotency_key=idempotency_key,
        )
        logger.info(
            f"Updated {self.platform.value} status for {repo_id}@{commit_sha[:7]}: "
            f"{status.state.value}"
        )

    async def set_branch_protection(
        self,
        repo_id: str,
        branch: str,
        protection: BranchProtection,
    ) -> None:
        self._ensure_authenticated()
        method, endpoint = self.branch_protection_request(repo_id, branch)
        await self._request(
            method, endpoint, json=self.build_branch_protection_payload(branch, protection)
        )

    async def create_webhook(
        self,
        repo_id: str,
        url: str,
        events: list[str],
        secret: str | None = None,
    ) -> dict:
        self._ensure_authenticated()
        response = await self._request(
            "POST",
            self.webhooks_endpoint(repo_id),
            json=self.build_webhook_payload(repo_id, url, events, secret),
        )
        return response.data or {}

    # ------------------------------------------------------------------
    # Platform hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def auth_headers(self) -> dict[str, str]:
        """Authentication headers for every request."""

    @abstractmethod
    def auth_test_endpoint(self) -> str: ...

    async def validate_connection(self) -> None:
        """Platform-specific sanity check after authentication."""

    def pagination_params(self, page: int, per_page: int) -> dict[str, Any]:
        return {"page": page, "per_page": per_page}

    def state_params(self, state: MergeRequestState) -> dict[str, Any]:
        return {"state": state.value}

    def extract_items(self, data: Any) -> list[dict]:
        """Pull the list of items out of a (possibly wrapped) list response."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("values", "value", "changes", "items"):
                if isinstance(data.get(key), list):
                    return data[key]
        return []

    @abstractmethod
    def repositories_endpoint(self) -> str: ...

    @abstractmethod
    def repository_endpoint(self, repo_id: str) -> str: ...

    @abstractmethod
    def merge_requests_endpoint(self, repo_id: str) -> str: ...

    @abstractmethod
    def merge_request_endpoint(self, repo_id: str, mr_id: str) -> str: ...

    @abstractmethod
    def changed_files_endpoint(self, repo_id: str, mr_id: str) -> str: ...

    @abstractmethod
    def file_content_request(
        self, repo_id: str, path: str, ref: str | None
    ) -> tuple[str, dict[str, Any], bool]:
        """Return (endpoint, params, raw) for reading a file."""

    @abstractmethod
    def comments_endpoint(self, repo_id: str, mr_id: str, anchored: bool) -> str: ...

    @abstractmethod
    def commit_status_endpoint(self, repo_id: str, commit_sha: str) -> str: ...

    @abstractmethod
    def branch_protection_request(self, repo_id: str, branch: str) -> tuple[str, str]:
        """Return (method, endpoint) for setting branch protection."""

    @abstractmethod
    def webhooks_endpoint(self, repo_id: str) -> str: ...

    @abstractmethod
    def build_comment_payload(
        self,
        body: str,
        path: str | None,
        line: int | None,
        commit_sha: str | None,
    ) -> dict: ...

    @abstractmethod
    def build_commit_status_payload(self, status: CommitStatus) -> dict: ...

    @abstractmethod
    def build_branch_protection_payload(
        self, branch: str, protection: BranchProtection
    ) -> dict: ...

    @abstractmethod
    def build_webhook_payload(
        self,
        repo_id: str,
        url: str,
        events: list[str],
        secret: str | None,
    ) -> dict: ...

    @abstractmethod
    def map_repository(self, data: dict) -> Repository: ...

    @abstractmethod
    def map_merge_request(self, data: dict) -> MergeRequest: ...

    @abstractmethod
    def map_changed_file(self, data: dict) -> ChangedFile: ...

    @abstractmethod
    def map_comment(self, data: dict) -> PullRequestComment: ...

    def extract_file_content(self, data: Any) -> str:
        return data if isinstance(data, str) else ""
