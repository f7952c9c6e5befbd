"""
Health Service - dependency checks (DB, Celery broker, provider circuits)

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: every dependency the pipeline needs to deliver messages
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from notifier.core.circuit_breaker import get_email_circuit_breaker, get_sms_circuit_breaker
from notifier.core.config import settings
from notifier.core.logging import get_logger
from notifier.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Error strings exposed to the caller, without infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_CELERY = "error: celery_unavailable"
_ERROR_CIRCUIT_OPEN = "error: circuit_open"


async def _check_db() -> str:
    """Run a trivial query against the database"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_celery() -> str:
    """Ping the Celery broker (Redis)"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


def _check_circuits() -> dict[str, str]:
    """An open circuit means sends to that provider are being deferred"""
    return {
        f"{breaker.service_name}_circuit": _ERROR_CIRCUIT_OPEN if breaker.is_open else _CHECK_OK
        for breaker in (get_email_circuit_breaker(), get_sms_circuit_breaker())
    }


async def check_readiness() -> dict[str, Any]:
    """
    Check every dependency.

    Returns a dict with the overall status ("healthy" or "degraded") and
    "ok" / "error: ..." per dependency.
    """
    checks = {
        "db": await _check_db(),
        "celery": await _check_celery(),
        **_check_circuits(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
