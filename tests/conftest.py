"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async)
- Fake provider APIs (Resend, Twilio) through httpx.MockTransport
- Test data factories (templates, queued messages)
"""
import pytest
from datetime import datetime
from typing import AsyncGenerator, Any

import httpx
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from notifier.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from notifier.core.config import settings
from notifier.db.database import Base, get_db, utcnow
from notifier.db.models.message_template import MessageTemplate
from notifier.db.models.queued_message import (
    MessageChannel,
    MessagePriority,
    MessageStatus,
    QueuedMessage,
)
from notifier.domain.services.providers.email_provider import EmailProvider
from notifier.domain.services.providers.sms_provider import SMSProvider
from notifier.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Note: no custom event_loop fixture, pytest-asyncio handles it with
# asyncio_mode=auto and asyncio_default_fixture_loop_scope=function


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Provider breakers are process-wide singletons"""
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


# ============================================================================
# Fake Provider APIs
# ============================================================================

class FakeProviderAPI:
    """
    Stand-in for a provider HTTP API.

    Records every request and answers with the configured status/body, or
    raises ``error`` to simulate a network failure.
    """

    def __init__(self, status_code: int = 200, json_body: dict[str, Any] | None = None):
        self.status_code = status_code
        self.json_body = json_body or {}
        self.error: Exception | None = None
        # Raw body sent instead of json_body when set
        self.text_body: str | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.text_body is not None:
            return httpx.Response(
                self.status_code, text=self.text_body, headers={"content-type": "text/html"}
            )
        return httpx.Response(self.status_code, json=self.json_body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def provider_settings():
    """Settings with both providers fully configured"""
    return settings.model_copy(
        update={
            "RESEND_API_KEY": "re_test_key",
            "RESEND_API_URL": "https://api.resend.test",
            "RESEND_FROM_EMAIL": "orders@shop.test",
            "RESEND_FROM_NAME": "Shop",
            "TWILIO_ACCOUNT_SID": "AC_test_sid",
            "TWILIO_AUTH_TOKEN": "test_token",
            "TWILIO_PHONE_NUMBER": "+441234000000",
            "TWILIO_API_URL": "https://api.twilio.test",
        }
    )


@pytest.fixture
def test_breaker_config() -> CircuitBreakerConfig:
    """Low threshold so tests can open a circuit quickly"""
    return CircuitBreakerConfig(
        failure_threshold=3,
        success_threshold=1,
        timeout_seconds=60.0,
    )


@pytest.fixture
def resend_api() -> FakeProviderAPI:
    return FakeProviderAPI(json_body={"id": "re_msg_123"})


@pytest.fixture
def twilio_api() -> FakeProviderAPI:
    return FakeProviderAPI(
        status_code=201,
        json_body={
            "sid": "SM123",
            "status": "queued",
            "to": "+447700900123",
            "from": "+441234000000",
            "date_created": "Wed, 05 Mar 2025 14:30:00 +0000",
            "num_segments": "1",
        },
    )


@pytest.fixture
async def email_provider(provider_settings, resend_api, test_breaker_config):
    client = resend_api.client()
    yield EmailProvider(
        config=provider_settings,
        client=client,
        circuit_breaker=CircuitBreaker("resend-test", test_breaker_config),
    )
    await client.aclose()


@pytest.fixture
async def sms_provider(provider_settings, twilio_api, test_breaker_config):
    client = twilio_api.client()
    yield SMSProvider(
        config=provider_settings,
        client=client,
        circuit_breaker=CircuitBreaker("twilio-test", test_breaker_config),
    )
    await client.aclose()


# ============================================================================
# Test Data Factories
# ============================================================================

ORDER_VARIABLES = {
    "customer_name": "John Doe",
    "order_number": "ORD-12345",
    "total_amount": 4999,
}


@pytest.fixture
def template_factory(db_session: AsyncSession):
    """Factory for creating message templates"""
    async def _create_template(
        template_key: str = "order_confirmation",
        channels: list[str] | None = None,
        user_types: list[str] | None = None,
        is_active: bool = True,
        priority: MessagePriority = MessagePriority.NORMAL,
        **fields: Any,
    ) -> MessageTemplate:
        values: dict[str, Any] = {
            "name": "Order confirmation",
            "email_subject_template": "Order {{ order_number }} confirmed",
            "email_body_template": (
                "<p>Hi {{ customer_name }}, thanks for order {{ order_number }}. "
                "Total: {{ currency(total_amount, 'GBP') }}</p>"
            ),
            "sms_body_template": "Order {{ order_number }} confirmed: {{ total_amount|currency('GBP') }}",
            "inbox_title_template": "Order {{ order_number }} confirmed",
            "inbox_body_template": "Your order total is {{ currency(total_amount, 'GBP') }}",
            "inbox_action_url": "/orders/{{ order_number }}",
            "inbox_action_label": "View order",
            "inbox_icon": "package",
            "variables": {
                "customer_name": {"type": "string", "required": True},
                "order_number": {"type": "string", "required": True},
                "total_amount": {"type": "number", "required": True},
            },
        }
        values.update(fields)
        template = MessageTemplate(
            template_key=template_key,
            channels=channels if channels is not None else ["email", "inbox"],
            user_types=user_types if user_types is not None else ["customer"],
            is_active=is_active,
            priority=priority,
            **values,
        )
        db_session.add(template)
        await db_session.commit()
        await db_session.refresh(template)
        return template

    return _create_template


@pytest.fixture
def queued_message_factory(db_session: AsyncSession):
    """Factory for inserting queue rows in any state"""
    async def _create_message(
        channel: MessageChannel | str = MessageChannel.EMAIL,
        status: MessageStatus = MessageStatus.PENDING,
        priority: MessagePriority = MessagePriority.NORMAL,
        retry_count: int = 0,
        max_retries: int = 3,
        scheduled_for: datetime | None = None,
        created_at: datetime | None = None,
        **fields: Any,
    ) -> QueuedMessage:
        now = utcnow()
        channel_value = channel.value if isinstance(channel, MessageChannel) else channel
        values: dict[str, Any] = {
            "template_key": "order_confirmation",
            "recipient_type": "customer",
            "recipient_id": "cust-1",
            "recipient_email": "john@example.com",
            "recipient_phone": "+447700900123",
            "subject": "Order ORD-12345 confirmed",
            "body": "Total: £49.99",
            "variables": dict(ORDER_VARIABLES),
            "message_metadata": {},
        }
        values.update(fields)
        message = QueuedMessage(
            channel=channel_value,
            status=status,
            priority=priority,
            retry_count=retry_count,
            max_retries=max_retries,
            scheduled_for=scheduled_for or now,
            created_at=created_at or now,
            updated_at=created_at or now,
            **values,
        )
        db_session.add(message)
        await db_session.commit()
        await db_session.refresh(message)
        return message

    return _create_message
