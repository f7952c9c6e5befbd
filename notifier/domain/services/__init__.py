"""
Domain Services
"""
from notifier.domain.services.template_engine import TemplateEngine
from notifier.domain.services.template_repository import TemplateRepository
from notifier.domain.services.message_queue import MessageQueueStore
from notifier.domain.services.inbox_writer import InboxWriter
from notifier.domain.services.message_service import MessageService
from notifier.domain.services.queue_processor import QueueProcessor

__all__ = [
    "TemplateEngine",
    "TemplateRepository",
    "MessageQueueStore",
    "InboxWriter",
    "MessageService",
    "QueueProcessor",
]
