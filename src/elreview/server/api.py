"""API endpoints for operators: metrics and synchronous reviews."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from elreview.orchestrator import ReviewAlreadyRunning, ReviewOrchestrator
from elreview.platforms import Platform, PlatformAPIError, PlatformConfigError
from elreview.review import ReviewCancelled, ReviewRequest


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


class ReviewBody(BaseModel):
    """Request body for a synchronous review."""

    platform: Platform
    repository_id: str
    pull_request_id: str
    head_sha: Optional[str] = None


class ReviewResponse(BaseModel):
    """Response body for a synchronous review."""

    status: str  # "success"
    pull_request_id: str
    score: int
    review_status: str  # approved / needs_changes / rejected
    summary: str
    files: list[dict] = []
    suggestions: int = 0
    security_issues: int = 0
    performance_issues: int = 0
    test_coverage: int = 0
    human_review_recommended: bool = False
    files_attempted: list[str] = []
    failed_files: list[str] = []


def get_orchestrator(request: Request) -> ReviewOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return orchestrator


async def verify_admin_token(
    request: Request,
    x_admin_token: Optional[str] = Header(None),
) -> None:
    """Require X-Admin-Token when an admin token is configured."""
    expected = request.app.state.settings.admin_token
    if not expected:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/metrics")
async def get_metrics(orchestrator: ReviewOrchestrator = Depends(get_orchestrator)) -> dict:
    """Read-only snapshot of the review metrics."""
    return orchestrator.get_metrics().to_dict()


@router.post("/metrics/reset", dependencies=[Depends(verify_admin_token)])
async def reset_metrics(orchestrator: ReviewOrchestrator = Depends(get_orchestrator)) -> dict:
    """Reset all metrics counters."""
    orchestrator.reset_metrics()
    return {"status": "reset", "metrics": orchestrator.get_metrics().to_dict()}


@router.get("/runs")
async def list_runs(orchestrator: ReviewOrchestrator = Depends(get_orchestrator)) -> list[dict]:
    """In-flight review runs."""
    return [run.to_dict() for run in orchestrator.runs.active()]


@router.post("/review", response_model=ReviewResponse)
async def review_merge_request(
    body: ReviewBody,
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
) -> ReviewResponse:
    """Synchronous review of one merge request.

    Runs the same pipeline as a webhook-triggered review, including posting
    results when auto_review is enabled.
    """
    logger.info(
        f"Sync review request for {body.platform.value}:{body.repository_id}"
        f"#{body.pull_request_id}"
    )
    request = ReviewRequest(
        platform=body.platform,
        repository_id=body.repository_id,
        pull_request_id=body.pull_request_id,
        head_sha=body.head_sha,
    )

    try:
        result = await orchestrator.review(request)
    except PlatformConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReviewAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ReviewCancelled as e:
        raise HTTPException(status_code=409, detail=f"Review cancelled: {e}")
    except PlatformAPIError as e:
        logger.exception(f"Review failed for {body.repository_id}#{body.pull_request_id}")
        raise HTTPException(status_code=502, detail=f"Review failed: {e}")

    summary = result.to_dict()
    return ReviewResponse(
        status="success",
        pull_request_id=summary["pull_request_id"],
        score=summary["score"],
        review_status=summary["status"],
        summary=summary["summary"],
        files=summary["files"],
        suggestions=summary["suggestions"],
        security_issues=summary["security_issues"],
        performance_issues=summary["performance_issues"],
        test_coverage=summary["test_coverage"],
        human_review_recommended=summary["human_review_recommended"],
        files_attempted=summary["files_attempted"],
        failed_files=summary["failed_files"],
    )
