"""Webhook validation and normalization for all supported platforms.

Signature schemes differ per platform:

- GitHub signs the raw body with HMAC-SHA256 (``X-Hub-Signature-256``).
- GitLab sends the shared secret verbatim in ``X-Gitlab-Token``.
- Bitbucket and Azure DevOps deliveries carry no verifiable signature here,
  so verification always passes for them. This is a known gap: those
  deliveries are NOT protected the way GitHub and GitLab deliveries are.
"""

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from elreview.platforms import azure_devops, bitbucket, github, gitlab
from elreview.platforms.models import (
    EventType,
    GitUser,
    MergeRequestRef,
    Platform,
    Repository,
    WebhookEvent,
)


logger = logging.getLogger(__name__)


GITHUB_EVENTS = {
    "pull_request": EventType.PULL_REQUEST,
    "push": EventType.PUSH,
    "issues": EventType.ISSUE,
    "release": EventType.RELEASE,
    "workflow_run": EventType.WORKFLOW_RUN,
}

GITLAB_EVENTS = {
    "Merge Request Hook": EventType.PULL_REQUEST,
    "Push Hook": EventType.PUSH,
    "Tag Push Hook": EventType.PUSH,
    "Issue Hook": EventType.ISSUE,
    "Release Hook": EventType.RELEASE,
    "Pipeline Hook": EventType.WORKFLOW_RUN,
}

BITBUCKET_EVENTS = {
    "pullrequest:created": EventType.PULL_REQUEST,
    "pullrequest:updated": EventType.PULL_REQUEST,
    "pullrequest:fulfilled": EventType.PULL_REQUEST,
    "pullrequest:rejected": EventType.PULL_REQUEST,
    "repo:push": EventType.PUSH,
    "issue:created": EventType.ISSUE,
    "issue:updated": EventType.ISSUE,
}

AZURE_DEVOPS_EVENTS = {
    "git.pullrequest.created": EventType.PULL_REQUEST,
    "git.pullrequest.updated": EventType.PULL_REQUEST,
    "git.pullrequest.merged": EventType.PULL_REQUEST,
    "git.push": EventType.PUSH,
    "workitem.created": EventType.ISSUE,
    "workitem.updated": EventType.ISSUE,
    "build.complete": EventType.WORKFLOW_RUN,
}

EVENT_VOCABULARIES: dict[Platform, dict[str, EventType]] = {
    Platform.GITHUB: GITHUB_EVENTS,
    Platform.GITLAB: GITLAB_EVENTS,
    Platform.BITBUCKET: BITBUCKET_EVENTS,
    Platform.AZURE_DEVOPS: AZURE_DEVOPS_EVENTS,
}

# User-agent fragment sent by Azure DevOps service hooks
AZURE_USER_AGENT = "VSServices"

_GITLAB_ACTIONS = {
    "open": "opened",
    "close": "closed",
    "reopen": "reopened",
    "merge": "merged",
}

_SUFFIX_ACTIONS = {
    "created": "opened",
    "updated": "synchronize",
    "fulfilled": "merged",
    "rejected": "closed",
}


@dataclass
class WebhookRequest:
    """An inbound HTTP request carrying a webhook delivery."""

    method: str
    headers: Mapping[str, str]
    body: bytes

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass
class WebhookResponse:
    """Result of handling a webhook delivery."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    event: WebhookEvent | None = None


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def detect_platform(headers: Mapping[str, str]) -> Platform | None:
    """Determine the source platform from request headers alone."""
    lowered = _lower_headers(headers)
    if lowered.get("x-github-event"):
        return Platform.GITHUB
    if lowered.get("x-gitlab-event"):
        return Platform.GITLAB
    if lowered.get("x-event-key"):
        return Platform.BITBUCKET
    if AZURE_USER_AGENT in lowered.get("user-agent", ""):
        return Platform.AZURE_DEVOPS
    return None


def map_event_type(platform: Platform, raw_type: str | None) -> EventType:
    """Map a platform event name to a canonical type.

    Unknown names fall back to ``push``.
    """
    event_type = EVENT_VOCABULARIES[platform].get(raw_type or "")
    if event_type is None:
        logger.warning(
            f"Unmapped {platform.value} event type '{raw_type}', defaulting to push"
        )
        return EventType.PUSH
    return event_type


def verify_github_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw body."""
    if not signature:
        return False
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode(), expected.encode())


def verify_gitlab_token(token: str | None, secret: str) -> bool:
    """Check an ``X-Gitlab-Token`` header against the shared secret."""
    if not token:
        return False
    return hmac.compare_digest(token.encode(), secret.encode())


def verify_signature(platform: Platform, request: WebhookRequest, secret: str) -> bool:
    """Verify a delivery against the platform's signing scheme."""
    if platform == Platform.GITHUB:
        return verify_github_signature(
            request.body, request.header("x-hub-signature-256"), secret
        )
    if platform == Platform.GITLAB:
        return verify_gitlab_token(request.header("x-gitlab-token"), secret)

    logger.debug(f"{platform.value} deliveries are not signed, accepting without verification")
    return True


def validate_request(request: WebhookRequest) -> str | None:
    """Return an error message if the request is malformed, else None."""
    if request.method.upper() != "POST":
        return "Only POST method is allowed"

    content_type = request.header("content-type") or ""
    if "application/json" not in content_type:
        return "Content-Type must be application/json"

    if not request.body or not request.body.strip():
        return "Request body is required"

    return None


# ----------------------------------------------------------------------
# Per-platform parsing
# ----------------------------------------------------------------------


def _parse_github(request: WebhookRequest, payload: dict) -> tuple:
    raw_type = request.header("x-github-event")
    event_type = map_event_type(Platform.GITHUB, raw_type)
    repository = github.map_repository(payload.get("repository") or {})
    sender = github.map_user(payload.get("sender"))
    action = payload.get("action", "")

    merge_request = None
    pr = payload.get("pull_request")
    if event_type == EventType.PULL_REQUEST and pr:
        merge_request = MergeRequestRef(
            repository_id=repository.full_name,
            number=str(pr.get("number", "")),
            head_sha=(pr.get("head") or {}).get("sha"),
        )

    event_id = request.header("x-github-delivery") or f"github-{uuid.uuid4()}"
    signature = request.header("x-hub-signature-256")
    return event_id, event_type, repository, sender, action, signature, merge_request


def _gitlab_sender(payload: dict) -> GitUser:
    if payload.get("user"):
        return gitlab.map_user(payload["user"])
    # Push hooks flatten the user into top-level fields
    return gitlab.map_user(
        {
            "id": payload.get("user_id", "0"),
            "username": payload.get("user_username", "unknown"),
            "name": payload.get("user_name"),
            "email": payload.get("user_email"),
            "avatar_url": payload.get("user_avatar"),
        }
    )


def _parse_gitlab(request: WebhookRequest, payload: dict) -> tuple:
    raw_type = request.header("x-gitlab-event")
    event_type = map_event_type(Platform.GITLAB, raw_type)
    repository = gitlab.map_repository(payload.get("project") or payload.get("repository") or {})
    sender = _gitlab_sender(payload)

    attributes = payload.get("object_attributes") or {}
    raw_action = attributes.get("action", "")
    if raw_action == "update":
        # Only updates that carry new commits re-trigger review
        action = "synchronize" if attributes.get("oldrev") else "edited"
    else:
        action = _GITLAB_ACTIONS.get(raw_action, raw_action)

    merge_request = None
    if event_type == EventType.PULL_REQUEST and attributes:
        merge_request = MergeRequestRef(
            repository_id=repository.id,
            number=str(attributes.get("iid", "")),
            head_sha=(attributes.get("last_commit") or {}).get("id"),
        )

    event_id = request.header("x-gitlab-event-uuid") or f"gitlab-{uuid.uuid4()}"
    signature = request.header("x-gitlab-token")
    return event_id, event_type, repository, sender, action, signature, merge_request


def _parse_bitbucket(request: WebhookRequest, payload: dict) -> tuple:
    raw_type = request.header("x-event-key") or ""
    event_type = map_event_type(Platform.BITBUCKET, raw_type)
    repository = bitbucket.map_repository(payload.get("repository") or {})
    sender = bitbucket.map_user(payload.get("actor"))

    suffix = raw_type.split(":")[-1]
    action = _SUFFIX_ACTIONS.get(suffix, suffix)

    merge_request = None
    pr = payload.get("pullrequest")
    if event_type == EventType.PULL_REQUEST and pr:
        merge_request = MergeRequestRef(
            repository_id=repository.full_name,
            number=str(pr.get("id", "")),
            head_sha=((pr.get("source") or {}).get("commit") or {}).get("hash"),
        )

    event_id = request.header("x-request-uuid") or f"bitbucket-{uuid.uuid4()}"
    return event_id, event_type, repository, sender, action, None, merge_request


def _parse_azure_devops(request: WebhookRequest, payload: dict) -> tuple:
    raw_type = payload.get("eventType", "")
    event_type = map_event_type(Platform.AZURE_DEVOPS, raw_type)
    resource = payload.get("resource") or {}
    repository = azure_devops.map_repository(resource.get("repository"))
    sender = azure_devops.map_user(
        resource.get("createdBy") or resource.get("pushedBy") or payload.get("createdBy")
    )

    suffix = raw_type.split(".")[-1]
    action = _SUFFIX_ACTIONS.get(suffix, suffix)

    merge_request = None
    if event_type == EventType.PULL_REQUEST and resource.get("pullRequestId"):
        merge_request = MergeRequestRef(
            repository_id=repository.full_name,
            number=str(resource["pullRequestId"]),
            head_sha=(resource.get("lastMergeSourceCommit") or {}).get("commitId"),
        )

    event_id = payload.get("id") or f"azure-{uuid.uuid4()}"
    return event_id, event_type, repository, sender, action, None, merge_request


_PARSERS = {
    Platform.GITHUB: _parse_github,
    Platform.GITLAB: _parse_gitlab,
    Platform.BITBUCKET: _parse_bitbucket,
    Platform.AZURE_DEVOPS: _parse_azure_devops,
}


def parse_webhook_event(
    platform: Platform,
    request: WebhookRequest,
    payload: dict,
) -> WebhookEvent:
    """Convert a platform payload into a canonical WebhookEvent."""
    event_id, event_type, repository, sender, action, signature, merge_request = (
        _PARSERS[platform](request, payload)
    )
    return WebhookEvent(
        id=event_id,
        type=event_type,
        platform=platform,
        repository=repository,
        sender=sender,
        payload=payload,
        timestamp=time.time(),
        action=action,
        signature=signature,
        merge_request=merge_request,
    )


def _error(status_code: int, message: str) -> WebhookResponse:
    return WebhookResponse(status_code=status_code, body={"error": message})


class WebhookNormalizer:
    """Turns inbound webhook requests into canonical events.

    Stateless; every failure path returns a WebhookResponse instead of raising.
    """

    def __init__(self, enable_signature_validation: bool = True):
        self.enable_signature_validation = enable_signature_validation

    def handle(self, request: WebhookRequest, secret: str | None = None) -> WebhookResponse:
        """Validate, authenticate and normalize one delivery.

        Args:
            request: Inbound request
            secret: Shared webhook secret for the detected platform

        Returns:
            200 with the event attached, or a 400/401/500 error response
        """
        try:
            error = validate_request(request)
            if error:
                return _error(400, error)

            platform = detect_platform(request.headers)
            if platform is None:
                return _error(400, "Unable to determine platform")

            try:
                payload = json.loads(request.body)
            except (ValueError, UnicodeDecodeError):
                return _error(400, "Invalid JSON payload")
            if not isinstance(payload, dict):
                return _error(400, "Invalid webhook payload")

            if self.enable_signature_validation and secret:
                if not verify_signature(platform, request, secret):
                    logger.warning(f"Rejected {platform.value} delivery with invalid signature")
                    return _error(401, "Invalid signature")

            try:
                event = parse_webhook_event(platform, request, payload)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Could not parse {platform.value} payload: {e}")
                return _error(400, "Invalid webhook payload")

            logger.info(
                f"Received {platform.value} webhook: {event.type.value}/{event.action or '-'} "
                f"from {event.repository.full_name or 'N/A'} by {event.sender.username}"
            )
            return WebhookResponse(
                status_code=200,
                body={"status": "success", "processed": True},
                event=event,
            )
        except Exception:
            logger.exception("Unexpected error handling webhook")
            return _error(500, "Internal server error")
