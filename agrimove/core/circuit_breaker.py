"""
Circuit Breaker

Guards calls to the catalog store and the WhatsApp provider so a failing
dependency is skipped quickly instead of stalling every conversation turn.
"""
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar, ParamSpec
from dataclasses import dataclass
from functools import wraps

from agrimove.core.logging import get_logger
from agrimove.core.exceptions import CircuitBreakerOpenError

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float = 0.0
    half_open_calls: int = 0


class CircuitBreaker:
    """
    Per-service circuit breaker.

    CLOSED counts consecutive failures and opens at the threshold. OPEN
    rejects calls with CircuitBreakerOpenError until the timeout elapses,
    then HALF_OPEN lets a few probe calls through; enough successes close
    the circuit again and any failure reopens it.

    ``exclude`` lists exception types that propagate without counting as
    a failure (e.g. "not found" style errors that say nothing about health).
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitBreakerState()
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create the breaker for a service"""
        if service_name not in cls._instances:
            with cls._instances_lock:
                if service_name not in cls._instances:
                    cls._instances[service_name] = cls(service_name, config)
        return cls._instances[service_name]

    @classmethod
    def reset_all(cls) -> None:
        """Forget every breaker (tests)"""
        with cls._instances_lock:
            cls._instances.clear()

    @classmethod
    def snapshot(cls) -> dict[str, dict[str, Any]]:
        """State of every known breaker, for the diagnostics endpoint"""
        with cls._instances_lock:
            breakers = list(cls._instances.values())
        return {cb.service_name: cb.describe() for cb in breakers}

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_closed(self) -> bool:
        return self._state.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state.state == CircuitState.HALF_OPEN

    def describe(self) -> dict[str, Any]:
        return {
            "state": self._state.state.value,
            "failure_count": self._state.failure_count,
            "failure_threshold": self.config.failure_threshold,
            "retry_after_seconds": round(self.get_retry_after(), 2),
        }

    def _should_attempt_reset(self) -> bool:
        if self._state.state != CircuitState.OPEN:
            return False
        elapsed = self._clock() - self._state.last_failure_time
        return elapsed >= self.config.timeout_seconds

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state.state
        self._state.state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._state.half_open_calls = 0
            self._state.success_count = 0
        elif new_state == CircuitState.CLOSED:
            self._state.failure_count = 0
            self._state.success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value
            }
        )

    def record_success(self) -> None:
        with self._lock:
            if self._state.state == CircuitState.HALF_OPEN:
                self._state.success_count += 1
                if self._state.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state.state == CircuitState.CLOSED:
                self._state.failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._state.failure_count += 1
            self._state.last_failure_time = self._clock()

            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._state.failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None
                }
            )

            if self._state.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state.failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def can_execute(self) -> bool:
        with self._lock:
            if self._state.state == CircuitState.CLOSED:
                return True

            if self._state.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._state.half_open_calls += 1
                    return True
                return False

            if self._state.half_open_calls < self.config.half_open_max_calls:
                self._state.half_open_calls += 1
                return True
            return False

    def get_retry_after(self) -> float:
        if self._state.state != CircuitState.OPEN:
            return 0.0
        elapsed = self._clock() - self._state.last_failure_time
        return max(0.0, self.config.timeout_seconds - elapsed)

    async def execute(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        exclude: tuple[type[BaseException], ...] = (),
        **kwargs: P.kwargs
    ) -> T:
        """
        Await ``func`` under breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = await func(*args, **kwargs)
        except exclude:
            self.record_success()
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


def circuit_breaker(
    service_name: str,
    config: CircuitBreakerConfig | None = None
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Decorator form for async callables.

    Usage:
        @circuit_breaker("catalog")
        async def load_produce() -> list[Produce]:
            ...
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            cb = CircuitBreaker.get_instance(service_name, config)
            return await cb.execute(func, *args, **kwargs)

        return wrapper

    return decorator


def get_catalog_circuit_breaker() -> CircuitBreaker:
    """Breaker for the catalog/order store"""
    return CircuitBreaker.get_instance(
        "catalog",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=1,
            timeout_seconds=15.0
        )
    )


def get_whatsapp_circuit_breaker() -> CircuitBreaker:
    """Breaker for the WhatsApp (Twilio) API"""
    return CircuitBreaker.get_instance(
        "whatsapp",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=30.0
        )
    )
