import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from realtorpro.api.deps import status_cache
from realtorpro.api.middleware import AccessGateMiddleware
from realtorpro.api.routes import billing, health
from realtorpro.config import settings
from realtorpro.core.backoff import BackoffPolicy
from realtorpro.core.database import close_database, init_database, session_scope
from realtorpro.services.billing.access import DatabaseStatusProvider
from realtorpro.services.billing.errors import BillingStorageError
from realtorpro.services.billing.events import WebhookEvent
from realtorpro.services.billing.processor import PaymentEventProcessor, ProcessingOutcome
from realtorpro.services.billing.queue import WebhookQueue
from realtorpro.services.billing.repository import SubscriptionRepository

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def handle_webhook_event(event: WebhookEvent) -> ProcessingOutcome:
    """Queue handler: one session and one processor per delivery attempt."""
    async with session_scope() as session:
        processor = PaymentEventProcessor(SubscriptionRepository(session), cache=status_cache)
        return await processor.process(event)


def build_webhook_queue() -> WebhookQueue:
    return WebhookQueue(
        handle_webhook_event,
        max_size=settings.webhook_queue_max_size,
        backoff=BackoffPolicy(
            max_attempts=settings.webhook_max_attempts,
            base_delay=settings.webhook_retry_base_delay,
            max_delay=settings.webhook_retry_max_delay,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Initialize Sentry if DSN is provided
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO),
            ],
            traces_sample_rate=0.1,
            environment=settings.environment,
        )
        logger.info("Sentry initialized")

    # Initialize database
    await init_database()

    await app.state.webhook_queue.start()

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await app.state.webhook_queue.stop()
    await close_database()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription lifecycle and payment webhooks for РиелторПро",
    lifespan=lifespan,
    debug=settings.debug,
)
app.state.webhook_queue = build_webhook_queue()

# Add CORS middleware
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(AccessGateMiddleware, provider=DatabaseStatusProvider(cache=status_cache))

# Add security middleware
app.add_middleware(
    TrustedHostMiddleware, allowed_hosts=["*"] if settings.debug else settings.allowed_hosts
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.info(f"{request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"Response status: {response.status_code}")
    return response


@app.exception_handler(BillingStorageError)
async def storage_error_handler(request: Request, exc: BillingStorageError) -> JSONResponse:
    logger.error("billing.storage.unavailable", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(status_code=503, content={"error": "Storage unavailable"})


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(billing.router, prefix="/api", tags=["billing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
    }
