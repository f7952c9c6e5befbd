"""
Structured Logging Infrastructure

JSON log lines with correlation IDs, so a message can be followed from the
API call or task that queued it to the worker run that delivered it.

Recipient fields passed in ``extra_data`` are masked by the formatter:

    logger.info("Queued", extra_data={"recipient_phone": "+447700900123"})
    # -> "extra": {"recipient_phone": "+44770090****"}
"""
import logging
import json
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping
from contextvars import ContextVar
from functools import wraps

from notifier.core.validation import EmailValidator, PhoneNumberValidator

# Context variable for correlation ID
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

_app_name = "notifier"

_PHONE_FIELDS = frozenset({"recipient_phone", "phone", "from_number"})
_EMAIL_FIELDS = frozenset({"recipient_email", "email", "reply_to"})


def mask_extra(extra: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``extra`` with phone numbers and email addresses masked"""
    masked = {}
    for key, value in extra.items():
        if key in _PHONE_FIELDS and isinstance(value, str):
            masked[key] = PhoneNumberValidator.mask(value)
        elif key in _EMAIL_FIELDS and isinstance(value, str):
            masked[key] = EmailValidator.mask(value)
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "app": _app_name,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry["extra"] = mask_extra(extra_data)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """
    Logger that accepts ``extra_data=`` on every level method.

    The dict ends up on the record as ``record.extra_data``.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args,
        exc_info=None,
        extra: Mapping[str, object] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # +1 so module/function/line name the caller, not this frame
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id to records for the text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "notifier"
) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines for production, plain text for development
        app_name: Application name stamped on every JSON log entry
    """
    global _app_name
    _app_name = app_name

    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        handler.addFilter(CorrelationIdFilter())

    root_logger.addHandler(handler)

    # Provider HTTP calls are logged by the adapters themselves
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for the current context, generating one if needed"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation ID; a generated one is kept for the rest of the context"""
    cid = correlation_id_var.get()
    if not cid:
        cid = set_correlation_id()
    return cid


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """Log start, completion time and failure of an async operation"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}: {e}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": round(time.perf_counter() - started, 4),
                        "error": str(e),
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": round(time.perf_counter() - started, 4),
                }
            )
            return result

        return wrapper
    return decorator
