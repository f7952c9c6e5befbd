"""
Celery Tasks for Message Delivery

Beat triggers process_message_queue periodically; the archive and cleanup
tasks keep the queue and the delivery log within their retention windows.
Each task runs the async services on its own event loop with a fresh
database session.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import asdict

from notifier.workers.celery_app import celery_app
from notifier.core.config import settings
from notifier.core.logging import get_logger, set_correlation_id
from notifier.db.database import get_task_session
from notifier.domain.services.message_queue import MessageQueueStore
from notifier.domain.services.message_service import MessageService, SendMessageParams
from notifier.domain.services.providers.email_provider import EmailProvider
from notifier.domain.services.providers.sms_provider import SMSProvider
from notifier.domain.services.queue_processor import QueueProcessor

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="notifier.workers.tasks.process_message_queue")
def process_message_queue(batch_size: int | None = None):
    """
    Deliver one batch of due messages.
    Safe to run in several workers at once.
    """

    async def _process():
        async with get_task_session() as db:
            processor = QueueProcessor(db)
            result = await processor.process_queue(batch_size or settings.MESSAGE_BATCH_SIZE)
            return asdict(result)

    return run_async(_process())


@celery_app.task(name="notifier.workers.tasks.send_templated_message")
def send_templated_message(params: dict):
    """Queue a templated message from another service (fire and forget)"""

    async def _send():
        async with get_task_session() as db:
            service = MessageService(db)
            result = await service.send_message(SendMessageParams(**params))
            return asdict(result)

    return run_async(_send())


@celery_app.task(name="notifier.workers.tasks.archive_sent_messages")
def archive_sent_messages(days: int | None = None):
    """Move finished messages into the delivery log"""

    async def _archive():
        async with get_task_session() as db:
            archived = await MessageQueueStore(db).archive_sent_messages(
                days or settings.ARCHIVE_AFTER_DAYS
            )
            return {"archived": archived}

    return run_async(_archive())


@celery_app.task(name="notifier.workers.tasks.cleanup_delivery_logs")
def cleanup_delivery_logs(days: int | None = None):
    """Delete delivery logs past the retention window"""

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await MessageQueueStore(db).cleanup_old_delivery_logs(
                days or settings.DELIVERY_LOG_RETENTION_DAYS
            )
            return {"deleted": deleted}

    return run_async(_cleanup())


@celery_app.task(name="notifier.workers.tasks.send_test_email")
def send_test_email(to: str):
    """Check the email provider configuration with a canned message"""

    async def _send():
        response = await EmailProvider().test_email_configuration(to)
        return asdict(response)

    return run_async(_send())


@celery_app.task(name="notifier.workers.tasks.send_test_sms")
def send_test_sms(to: str):
    """Check the SMS provider configuration with a canned message"""

    async def _send():
        response = await SMSProvider().test_sms_configuration(to)
        return asdict(response)

    return run_async(_send())
