"""
Admin Messaging Endpoints - queue monitoring and maintenance without DB access.

1. Queue statistics and message listing
2. Manual retry of dead-lettered messages and on-demand queue processing
3. Provider circuit breaker status
4. Provider configuration self-tests
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.api.dependencies.admin_auth import require_admin_api_key
from notifier.api.dependencies.providers import get_email_provider, get_sms_provider
from notifier.core.circuit_breaker import get_email_circuit_breaker, get_sms_circuit_breaker
from notifier.core.config import settings
from notifier.core.logging import get_logger
from notifier.core.validation import EmailValidator, PhoneNumberValidator
from notifier.db.database import get_db
from notifier.db.models.queued_message import MessageStatus, QueuedMessage
from notifier.domain.services.message_queue import MessageQueueStore
from notifier.domain.services.providers.email_provider import EmailProvider
from notifier.domain.services.providers.sms_provider import SMSProvider
from notifier.domain.services.queue_processor import QueueProcessor

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
}


# --- Pydantic models -------------------------------------------------------

class CircuitBreakerStatusResponse(BaseModel):
    """Status of one circuit breaker"""
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(
        description="Seconds until a retry is allowed (0 when not open)"
    )


class QueueStatsResponse(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0


class QueuedMessageResponse(BaseModel):
    """One queued message, recipients masked"""
    id: str
    template_key: str
    channel: str
    recipient_type: str
    recipient: str | None
    status: str
    priority: str
    retry_count: int
    max_retries: int
    error_message: str | None
    provider_message_id: str | None
    scheduled_for: datetime | None
    sent_at: datetime | None
    failed_at: datetime | None
    created_at: datetime | None


class RetryResponse(BaseModel):
    message_id: str
    previous_status: str
    new_status: str
    retry_count: int


class ProcessQueueRequest(BaseModel):
    batch_size: int = Field(default=100, ge=1, le=1000)


class ProcessQueueResponse(BaseModel):
    processed: int
    failed: int
    skipped: int
    errors: list[dict[str, str]]


class TestEmailRequest(BaseModel):
    to: str


class TestSMSRequest(BaseModel):
    to: str = Field(description="E.164 phone number, e.g. +441234567890")


class ProviderTestResponse(BaseModel):
    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None


def _to_response(message: QueuedMessage) -> QueuedMessageResponse:
    if message.channel == "sms":
        recipient = PhoneNumberValidator.mask(message.recipient_phone)
    elif message.channel == "email":
        recipient = EmailValidator.mask(message.recipient_email)
    else:
        recipient = message.recipient_id

    return QueuedMessageResponse(
        id=message.id,
        template_key=message.template_key,
        channel=message.channel,
        recipient_type=message.recipient_type,
        recipient=recipient,
        status=MessageStatus(message.status).value,
        priority=message.priority.value if hasattr(message.priority, "value") else str(message.priority),
        retry_count=message.retry_count,
        max_retries=message.max_retries,
        error_message=message.error_message,
        provider_message_id=message.provider_message_id,
        scheduled_for=message.scheduled_for,
        sent_at=message.sent_at,
        failed_at=message.failed_at,
        created_at=message.created_at,
    )


# --- 1. Queue ---------------------------------------------------------------

@router.get(
    "/queue/stats",
    response_model=QueueStatsResponse,
    summary="Message counts by status",
    description=(
        "A processing count that never drains means a worker crashed "
        "while holding messages."
    ),
    responses=_AUTH_RESPONSES,
)
async def get_queue_stats(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> QueueStatsResponse:
    stats = await MessageQueueStore(db).get_queue_stats()
    return QueueStatsResponse(**stats.__dict__)


@router.get(
    "/queue/messages",
    response_model=list[QueuedMessageResponse],
    summary="List queued messages",
    description="Newest first. Defaults to failed messages only.",
    responses={**_AUTH_RESPONSES, 400: {"description": "Invalid status"}},
)
async def list_queue_messages(
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    message_status: Optional[str] = Query(
        default="failed",
        description="Filter by status: pending, processing, sent, failed, cancelled",
    ),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum number of messages"),
) -> list[QueuedMessageResponse]:
    status_filter = None
    if message_status:
        valid_statuses = {s.value for s in MessageStatus}
        if message_status not in valid_statuses:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status. Options: {', '.join(sorted(valid_statuses))}",
            )
        status_filter = MessageStatus(message_status)

    messages = await MessageQueueStore(db).list_messages(status=status_filter, limit=limit)
    return [_to_response(message) for message in messages]


@router.post(
    "/queue/messages/{message_id}/retry",
    response_model=RetryResponse,
    summary="Retry a failed message",
    description=(
        "Resets a failed message to pending with a fresh retry budget. "
        "Only failed messages can be retried."
    ),
    responses={
        **_AUTH_RESPONSES,
        400: {"description": "Message is not failed"},
        404: {"description": "Message not found"},
    },
)
async def retry_message(
    message_id: str,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> RetryResponse:
    # MessageNotFoundError / MessageStatusError are rendered by the app exception handler
    message = await MessageQueueStore(db).requeue_failed_message(message_id)
    return RetryResponse(
        message_id=message.id,
        previous_status=MessageStatus.FAILED.value,
        new_status=MessageStatus(message.status).value,
        retry_count=message.retry_count,
    )


@router.post(
    "/queue/process",
    response_model=ProcessQueueResponse,
    summary="Process one batch now",
    description="Runs the queue processor in the request instead of waiting for the scheduler.",
    responses=_AUTH_RESPONSES,
)
async def process_queue_now(
    request: ProcessQueueRequest | None = None,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
    email_provider: EmailProvider = Depends(get_email_provider),
    sms_provider: SMSProvider = Depends(get_sms_provider),
) -> ProcessQueueResponse:
    batch_size = request.batch_size if request else settings.MESSAGE_BATCH_SIZE
    processor = QueueProcessor(db, email_provider=email_provider, sms_provider=sms_provider)
    result = await processor.process_queue(batch_size)
    logger.info(
        "Manual queue run",
        extra_data={"processed": result.processed, "failed": result.failed},
    )
    return ProcessQueueResponse(**result.__dict__)


# --- 2. Circuit breakers ---------------------------------------------------

@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Provider circuit breaker status",
    responses=_AUTH_RESPONSES,
)
async def get_circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    breakers = [get_email_circuit_breaker(), get_sms_circuit_breaker()]
    return [CircuitBreakerStatusResponse(**cb.snapshot()) for cb in breakers]


@router.post(
    "/circuit-breakers/{service}/reset",
    response_model=CircuitBreakerStatusResponse,
    summary="Close a provider circuit breaker",
    responses={**_AUTH_RESPONSES, 404: {"description": "Unknown provider"}},
)
async def reset_circuit_breaker(
    service: str,
    _: None = Depends(require_admin_api_key),
) -> CircuitBreakerStatusResponse:
    """Close the breaker once the provider is known to be back, instead of waiting out the timeout."""
    breakers = {cb.service_name: cb for cb in (get_email_circuit_breaker(), get_sms_circuit_breaker())}
    breaker = breakers.get(service)
    if breaker is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider '{service}'",
        )

    breaker.reset()
    logger.info("Circuit breaker reset by admin", extra_data={"service": service})
    return CircuitBreakerStatusResponse(**breaker.snapshot())


# --- 3. Provider self-tests --------------------------------------------------

@router.post(
    "/test/email",
    response_model=ProviderTestResponse,
    summary="Send a test email",
    responses=_AUTH_RESPONSES,
)
async def send_test_email(
    request: TestEmailRequest,
    _: None = Depends(require_admin_api_key),
    email_provider: EmailProvider = Depends(get_email_provider),
) -> ProviderTestResponse:
    response = await email_provider.test_email_configuration(request.to)
    return ProviderTestResponse(
        success=response.success,
        provider=response.provider,
        message_id=response.message_id,
        error=response.error,
    )


@router.post(
    "/test/sms",
    response_model=ProviderTestResponse,
    summary="Send a test SMS",
    responses=_AUTH_RESPONSES,
)
async def send_test_sms(
    request: TestSMSRequest,
    _: None = Depends(require_admin_api_key),
    sms_provider: SMSProvider = Depends(get_sms_provider),
) -> ProviderTestResponse:
    response = await sms_provider.test_sms_configuration(request.to)
    return ProviderTestResponse(
        success=response.success,
        provider=response.provider,
        message_id=response.message_id,
        error=response.error,
    )
