"""
HTTP middleware and exception handlers for the admin API.

Admin self-test endpoints take phone numbers and email addresses, so paths
and query values are masked before they reach the request log. Health
probes are logged at DEBUG to keep orchestrator polling out of the INFO log.
"""
import re
import time
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from notifier.core.exceptions import AppException, ErrorCode
from notifier.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Five or more digits between a country-code-sized prefix and a two digit tail
_PHONE_RE = re.compile(r"(\+?\d{3})\d{4,}(\d{2})")
_EMAIL_RE = re.compile(r"([^@\s/=&])[^@\s/=&]*@")

_PROBE_PATHS = frozenset({"/health", "/health/ready"})


def _mask_pii(value: str) -> str:
    """Mask phone number digits and email local parts anywhere in ``value``"""
    return _EMAIL_RE.sub(r"\1***@", _PHONE_RE.sub(r"\1****\2", value))


def _request_fields(request: Request) -> dict[str, Any]:
    return {
        "method": request.method,
        "path": _mask_pii(request.url.path),
    }


def _error_response(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Takes X-Correlation-ID from the caller (or generates one) and echoes it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        fields = _request_fields(request)
        label = f"{fields['method']} {fields['path']}"
        log_completed = logger.debug if request.url.path in _PROBE_PATHS else logger.info
        started = time.perf_counter()

        if request.url.path not in _PROBE_PATHS:
            logger.info(
                f"Request started: {label}",
                extra_data={
                    **fields,
                    "query_params": {k: _mask_pii(v) for k, v in request.query_params.items()},
                    "client_host": request.client.host if request.client else None,
                },
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {label}",
                extra_data={
                    **fields,
                    "duration_seconds": round(time.perf_counter() - started, 4),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        if response.status_code >= 400:
            log_completed = logger.warning
        log_completed(
            f"Request completed: {label}",
            extra_data={
                **fields,
                "status_code": response.status_code,
                "duration_seconds": round(time.perf_counter() - started, 4),
            },
        )
        return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"{exc.error_code.value}: {exc.message}",
        extra_data={
            "error_code": exc.error_code.value,
            "details": exc.details,
            "path": _mask_pii(request.url.path),
        },
    )
    return _error_response(exc.status_code, exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with a fixed message; the exception itself only goes to the log"""
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": _mask_pii(request.url.path),
        },
        exc_info=True,
    )
    return _error_response(
        500,
        {
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
    )


def setup_middleware(app: FastAPI) -> None:
    # add_middleware wraps, so the correlation ID is set before the request is logged
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
