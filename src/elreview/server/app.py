"""FastAPI application for multi-platform webhook handling."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from elreview.llm import LLMConfigError, get_provider
from elreview.notifications import NotificationChannel
from elreview.orchestrator import Metrics, ReviewOrchestrator
from elreview.platforms import WebhookEvent, create_client
from elreview.review import EngineOptions, ReviewEngine
from elreview.server.api import router as api_router
from elreview.server.config import Settings, get_settings
from elreview.server.webhooks import WebhookNormalizer, WebhookRequest, detect_platform


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReviewOrchestrator:
    """Wire connectors, engine and AI backend from settings."""
    clients = {
        config.platform: create_client(config, transport=transport)
        for config in settings.platform_configs()
    }

    try:
        llm = get_provider(
            provider_name=settings.llm_provider,
            api_key=settings.llm_api_key(),
            model=settings.llm_model,
            api_url=settings.llm_api_url,
            max_tokens=settings.llm_max_tokens,
        )
    except LLMConfigError as e:
        logger.warning(f"AI backend disabled: {e}")
        llm = None

    notifications = NotificationChannel()
    engine = ReviewEngine(
        llm=llm,
        options=EngineOptions(
            parallel=settings.parallel_analysis,
            max_concurrent_analyses=settings.max_concurrent_analyses,
            max_files_per_review=settings.max_files_per_review,
            max_lines_per_file=settings.max_lines_per_file,
            security_enabled=settings.security_enabled,
            performance_enabled=settings.performance_enabled,
        ),
        notifications=notifications,
    )
    return ReviewOrchestrator(
        clients=clients,
        engine=engine,
        metrics=Metrics(),
        notifications=notifications,
        settings=settings,
        llm=llm,
    )


def create_app(
    settings: Settings | None = None,
    orchestrator: ReviewOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to get_settings()
        orchestrator: Pre-built orchestrator; built from settings when omitted

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    logging.getLogger("elreview").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(settings)
        logger.info(f"Starting ElReview webhook server on {settings.host}:{settings.port}")
        logger.info(
            f"Platforms: {', '.join(p.value for p in app.state.orchestrator.clients) or 'none'}"
        )
        await app.state.orchestrator.start()
        yield
        await app.state.orchestrator.close()
        logger.info("Shutting down ElReview webhook server")

    app = FastAPI(
        title="ElReview",
        description="Automated code review across GitHub, GitLab, Bitbucket and Azure DevOps",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.normalizer = WebhookNormalizer()

    @app.get("/")
    async def root():
        """Root endpoint with app info."""
        return {
            "name": "ElReview",
            "version": "0.1.0",
            "description": "Git platform integration and automated review",
            "status": "running",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post(settings.webhook_path)
    async def webhook(request: Request, background_tasks: BackgroundTasks):
        """Webhook endpoint for all platforms.

        Responds once the delivery is normalized; reviews run in the background.
        """
        body = await request.body()
        headers = dict(request.headers)
        platform = detect_platform(headers)
        secret = settings.webhook_secret(platform) if platform else None

        response = app.state.normalizer.handle(
            WebhookRequest(method=request.method, headers=headers, body=body),
            secret=secret,
        )
        if response.event is not None:
            background_tasks.add_task(
                process_event_async, app.state.orchestrator, response.event
            )
        return JSONResponse(status_code=response.status_code, content=response.body)

    # Include API router for synchronous operations
    app.include_router(api_router)

    return app


async def process_event_async(orchestrator: ReviewOrchestrator, event: WebhookEvent):
    """Process a canonical event after the webhook has been acknowledged.

    Args:
        orchestrator: Orchestrator handling the event
        event: Normalized webhook event
    """
    try:
        result = await orchestrator.process_event(event)
        if result is not None:
            logger.info(
                f"Event {event.id} reviewed: {result.overall.status.value} "
                f"({result.overall.score}/100)"
            )
    except Exception as e:
        # The orchestrator has already published review.failed
        logger.exception(f"Error processing event {event.id}: {e}")


# Create default app instance
app = create_app()
