"""
Provider Circuit Breakers

One breaker per delivery provider (``resend`` for email, ``twilio`` for SMS).
After ``failure_threshold`` consecutive failed API calls the breaker opens and
sends fail fast with CircuitBreakerOpenError; the queue processor treats that
as a transient failure and reschedules the message. Once ``timeout_seconds``
have passed a limited number of trial calls go through (half-open) and
``success_threshold`` successes close the breaker again.

Only exceptions raised by the protected call count as failures, so the
adapters keep recipient validation outside ``execute``.
"""
import asyncio
import threading
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar, ParamSpec

from notifier.core.logging import get_logger
from notifier.core.exceptions import CircuitBreakerOpenError

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    # Trial calls allowed while half-open, on top of the one that moved it there
    half_open_max_calls: int = 3


@dataclass
class _Counters:
    failures: int = 0
    successes: int = 0
    trial_calls: int = 0
    opened_at: float = 0.0


class CircuitBreaker:
    """Per-provider breaker, shared by every adapter instance in the process"""

    _registry: dict[str, "CircuitBreaker"] = {}
    _registry_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._counters = _Counters()
        # Celery tasks run every batch on a new event loop, so no asyncio.Lock
        self._lock = threading.Lock()

    @classmethod
    def get_instance(
        cls, service_name: str, config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Registered breaker for ``service_name``; ``config`` applies on first use only"""
        with cls._registry_lock:
            breaker = cls._registry.get(service_name)
            if breaker is None:
                breaker = cls._registry[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def reset_all(cls) -> None:
        with cls._registry_lock:
            cls._registry.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def _move_to(self, state: CircuitState) -> None:
        """Caller holds the lock"""
        previous, self._state = self._state, state
        if state is CircuitState.OPEN:
            self._counters.opened_at = time.monotonic()
        elif state is CircuitState.HALF_OPEN:
            self._counters.successes = 0
            self._counters.trial_calls = 0
        else:
            self._counters = _Counters()

        log = logger.warning if state is CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.service_name}' {previous.value} -> {state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": previous.value,
                "new_state": state.value,
            },
        )

    def trip(self) -> None:
        """Open the breaker now, e.g. while a provider is known to be down"""
        with self._lock:
            self._move_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Close the breaker and forget past failures"""
        with self._lock:
            self._move_to(CircuitState.CLOSED)

    async def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._counters.successes += 1
                if self._counters.successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
            else:
                self._counters.failures = 0

    async def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._counters.failures += 1
            logger.warning(
                f"Call to '{self.service_name}' failed",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._counters.failures,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                },
            )
            if self._state is CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif (
                self._state is CircuitState.CLOSED
                and self._counters.failures >= self.config.failure_threshold
            ):
                self._move_to(CircuitState.OPEN)

    async def can_execute(self) -> bool:
        """Whether a call may go through now; may move an expired open breaker to half-open"""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._move_to(CircuitState.HALF_OPEN)
                return True
            if self._counters.trial_calls >= self.config.half_open_max_calls:
                return False
            self._counters.trial_calls += 1
            return True

    def get_retry_after(self) -> float:
        """Seconds left before an open breaker allows a trial call (0 when not open)"""
        if self._state is not CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - self._counters.opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = asdict(self._counters)
            return {
                "service": self.service_name,
                "state": self._state.value,
                "failure_count": counters["failures"],
                "success_count": counters["successes"],
                "half_open_calls": counters["trial_calls"],
                "retry_after_seconds": round(self.get_retry_after(), 1),
            }

    async def execute(
        self,
        func: Callable[P, Awaitable[T]] | Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """
        Run ``func`` under the breaker.

        Raises:
            CircuitBreakerOpenError: the breaker is open or out of trial calls
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            await self.record_failure(e)
            raise

        await self.record_success()
        return result


_PROVIDER_BREAKER_CONFIG = CircuitBreakerConfig(
    failure_threshold=5,
    success_threshold=2,
    timeout_seconds=60.0,
)


def get_email_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance("resend", _PROVIDER_BREAKER_CONFIG)


def get_sms_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance("twilio", _PROVIDER_BREAKER_CONFIG)
