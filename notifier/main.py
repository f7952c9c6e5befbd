"""
Notifier - Main FastAPI Application

The HTTP surface is operational only: health probes and the admin
messaging endpoints. Messages are queued by MessageService callers and
delivered by the Celery workers.
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from notifier.core.config import settings
from notifier.core.logging import setup_logging, get_logger
from notifier.core.middleware import setup_middleware, setup_exception_handlers
from notifier.api.routes import router as api_router
from notifier.db.database import engine, init_db

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {
        "name": "Admin Messaging",
        "description": (
            "Queue statistics, failed message retry, on-demand processing, "
            "circuit breaker status and provider self-tests. "
            "Requires the X-Admin-API-Key header."
        ),
    },
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Transactional messaging pipeline: email, SMS and in-app inbox.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await init_db()
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description=(
        "The process is up and answering. "
        "Does not check dependencies, so a database outage does not trigger a restart."
    ),
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database, the Celery broker and the provider circuit breakers. "
        "Returns 200 with status=healthy, or 503 with status=degraded and the failing check."
    ),
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "celery": "ok",
                        "resend_circuit": "ok",
                        "twilio_circuit": "ok",
                    }
                }
            },
        },
        503: {
            "description": "At least one dependency unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "celery": "ok",
                        "resend_circuit": "error: circuit_open",
                        "twilio_circuit": "ok",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from notifier.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
