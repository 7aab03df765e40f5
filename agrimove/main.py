"""
AgriMove Messaging - Main FastAPI Application
"""
import asyncio
from typing import Optional

from fastapi import FastAPI

from agrimove.api.routes import router as api_router
from agrimove.core.config import settings
from agrimove.core.logging import get_logger, setup_logging
from agrimove.core.middleware import setup_exception_handlers, setup_middleware
from agrimove.db.database import create_tables, engine
from agrimove.state_machine.session_store import get_session_store, run_session_sweeper

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)

_OPENAPI_TAGS = [
    {"name": "Webhooks", "description": "USSD and WhatsApp gateway callbacks."},
    {"name": "Orders", "description": "Order status updates pushed to buyers on WhatsApp."},
    {
        "name": "Admin Debug",
        "description": "Diagnostics: circuit breakers and conversation sessions.",
    },
]

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="USSD and WhatsApp menu engine for the AgriMove marketplace.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (rate limit, correlation ID, request logging, CORS)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")

_sweeper_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup() -> None:
    """Create tables and start the session sweeper"""
    global _sweeper_task

    logger.info(
        "Starting application",
        extra_data={"app_name": settings.APP_NAME, "session_backend": settings.SESSION_BACKEND}
    )
    await create_tables()
    logger.info("Database tables initialized")

    _sweeper_task = asyncio.create_task(
        run_session_sweeper(get_session_store(), settings.SESSION_SWEEP_INTERVAL_SECONDS)
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    global _sweeper_task

    logger.info("Shutting down application")
    if _sweeper_task is not None:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None

    from agrimove.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="Process is up and answering. Does not check the database or Redis.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
