"""
Social Engagement Hub - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from engagement_hub.core.config import settings
from engagement_hub.core.logging import setup_logging, get_logger
from engagement_hub.core.middleware import setup_middleware, setup_exception_handlers
from engagement_hub.api.routes import router as api_router
from engagement_hub.db.database import engine, Base

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {
        "name": "webhooks",
        "description": "Instagram and Facebook webhook subscription and delivery endpoints.",
    },
    {
        "name": "admin",
        "description": "Webhook event monitoring and manual retry. Requires X-Admin-API-Key.",
    },
    {"name": "Health", "description": "Liveness and readiness checks."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Ingests Instagram/Facebook engagement webhooks, classifies and stores them, "
        "and dispatches processing to Celery workers."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
)

# Setup middleware (correlation ID, request logging, rate limit)
setup_middleware(app, settings)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness check",
    description="The process is up and answering. Checks no dependencies.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness check",
    description=(
        "Checks the database and the Celery broker. Returns 503 with status=degraded "
        "when one of them is unavailable; the webhook pipeline verdict is informational."
    ),
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "celery": "ok", "webhook_pipeline": "healthy"}
                }
            },
        },
        503: {"description": "At least one dependency is unavailable"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from engagement_hub.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
