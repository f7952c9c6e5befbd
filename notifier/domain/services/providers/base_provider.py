"""
Base interface for delivery providers.

Every provider adapter (email, SMS) implements this interface. Adapters
never raise for expected failures (missing credentials, invalid input,
provider rejection): they return a ProviderResponse so the queue processor
handles every channel the same way.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from notifier.core.circuit_breaker import CircuitBreaker
from notifier.core.config import Settings, settings
from notifier.core.exceptions import (
    TRANSIENT_STATUS_CODES,
    ConfigurationError,
    ExternalServiceException,
    ProviderError,
    ValidationException,
)
from notifier.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProviderResponse:
    """Normalized outcome of a provider call"""
    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None
    data: dict[str, Any] | None = field(default=None)
    # False when retrying can never succeed (bad input, missing credentials)
    retryable: bool = True


class BaseProvider(ABC):
    """
    Shared plumbing for HTTP based providers.

    Subclasses implement ``_send`` and raise ValidationException,
    ConfigurationError or ProviderError; ``send`` turns those into a
    ProviderResponse.
    """

    provider_name: str = "unknown"
    error_class: type[ProviderError] = ProviderError

    def __init__(
        self,
        *,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config or settings
        self._client = client
        self._circuit_breaker = circuit_breaker or self.default_circuit_breaker()

    @abstractmethod
    def default_circuit_breaker(self) -> CircuitBreaker:
        """Circuit breaker shared by all instances of this provider"""

    @abstractmethod
    async def _send(self, params: Any) -> ProviderResponse:
        """Validate, call the provider API and build a success response"""

    def _error_message(self, response: httpx.Response) -> str:
        """Human readable error for a failed API call"""
        return f"{self.provider_name} returned status {response.status_code}"

    def _json_body(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """
        Parsed body of a successful response, {} when it is not a JSON object.

        The provider already accepted the call, so an unreadable body must not
        turn into a failure that gets the message sent again.
        """
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning(
                f"{self.provider_name} {operation} returned a non-JSON success body",
                extra_data={
                    "provider": self.provider_name,
                    "status_code": response.status_code,
                    "content_type": response.headers.get("content-type"),
                }
            )
            return {}
        return body

    async def send(self, params: Any) -> ProviderResponse:
        """Send one message. Never raises for expected failures."""
        return await self._guard("send", self._send, params)

    async def _guard(
        self,
        operation: str,
        func: Callable[..., Awaitable[ProviderResponse]],
        *args: Any,
    ) -> ProviderResponse:
        try:
            return await func(*args)
        except (ValidationException, ConfigurationError) as exc:
            logger.warning(
                f"{self.provider_name} {operation} rejected before calling provider",
                extra_data={"provider": self.provider_name, "error": exc.message}
            )
            return self._failure(exc.message, retryable=False)
        except ProviderError as exc:
            logger.error(
                f"{self.provider_name} {operation} failed",
                extra_data={
                    "provider": self.provider_name,
                    "error": exc.message,
                    "retryable": exc.retryable,
                    "details": exc.details,
                }
            )
            return self._failure(exc.message, retryable=exc.retryable)
        except ExternalServiceException as exc:
            # Circuit breaker open or timeout
            logger.warning(
                f"{self.provider_name} {operation} unavailable",
                extra_data={"provider": self.provider_name, "error": exc.message}
            )
            return self._failure(exc.message, retryable=True)

    def _failure(self, error: str, *, retryable: bool) -> ProviderResponse:
        return ProviderResponse(
            success=False,
            provider=self.provider_name,
            error=error,
            retryable=retryable,
        )

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Injected client, or a short-lived one per request"""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.config.PROVIDER_TIMEOUT_SECONDS) as client:
            yield client

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Perform one API call through the circuit breaker.

        Network errors and transient status codes raise inside the breaker
        and count as failures. Other error responses (bad recipient, bad
        credentials) are raised as non-retryable after the breaker, so they
        never open the circuit.
        """

        async def _call() -> httpx.Response:
            async with self._http_client() as client:
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.TimeoutException as exc:
                    raise self.error_class(
                        f"{operation} timed out",
                        details={"timeout": True},
                    ) from exc
                except httpx.RequestError as exc:
                    raise self.error_class(
                        f"{operation} network error: {exc}",
                        details={"network_error": True},
                    ) from exc

            if response.status_code in TRANSIENT_STATUS_CODES:
                raise self.error_class.from_response(
                    operation, response, message=self._error_message(response)
                )
            return response

        response = await self._circuit_breaker.execute(_call)
        if response.is_error:
            raise self.error_class.from_response(
                operation, response, message=self._error_message(response)
            )
        return response
