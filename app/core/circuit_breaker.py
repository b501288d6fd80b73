"""
Circuit Breaker for the AI service

Keeps a failing AI provider from adding its full timeout to every inbound
message: after repeated failures calls are rejected immediately until the
cool-down elapses, then a few probe calls decide whether to close again.
"""
import time
from enum import Enum
from typing import Awaitable, Callable, TypeVar, ParamSpec
from dataclasses import dataclass, field

from app.core.logging import get_logger
from app.core.exceptions import CircuitBreakerOpenError, ErrorCode, SoftAIFailure

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5         # Failures before opening
    success_threshold: int = 2         # Successes in half-open to close
    timeout_seconds: float = 30.0      # Time before trying half-open
    half_open_max_calls: int = 3       # Max calls in half-open state
    # שגיאות שלא מעידות על שירות תקול (למשל תשובה לא תקינה) לא נספרות
    is_failure: Callable[[Exception], bool] = field(default=lambda e: True)


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

    All bookkeeping happens between awaits on a single event loop, so the
    state needs no lock.
    """

    _instances: dict[str, "CircuitBreaker"] = {}

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

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create circuit breaker instance for a service"""
        if service_name not in cls._instances:
            cls._instances[service_name] = cls(service_name, config)
        return cls._instances[service_name]

    @classmethod
    def reset_all(cls) -> None:
        """Reset all circuit breakers (for testing)"""
        cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def is_open(self) -> bool:
        return self._state.state == CircuitState.OPEN

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state.state
        self._state.state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._state.half_open_calls = 0
            self._state.success_count = 0

        if new_state == CircuitState.CLOSED:
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
        if self._state.state == CircuitState.HALF_OPEN:
            self._state.success_count += 1
            if self._state.success_count >= self.config.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state.state == CircuitState.CLOSED:
            self._state.failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
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

        # כל כשלון ב-half-open מחזיר ל-open
        if self._state.state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._state.failure_count >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    def can_execute(self) -> bool:
        if self._state.state == CircuitState.CLOSED:
            return True

        if self._state.state == CircuitState.OPEN:
            elapsed = self._clock() - self._state.last_failure_time
            if elapsed >= self.config.timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN)
                self._state.half_open_calls += 1
                return True
            return False

        if self._state.half_open_calls < self.config.half_open_max_calls:
            self._state.half_open_calls += 1
            return True
        return False

    def get_retry_after(self) -> float:
        """Get seconds until circuit might close"""
        if self._state.state != CircuitState.OPEN:
            return 0.0
        remaining = self.config.timeout_seconds - (self._clock() - self._state.last_failure_time)
        return max(0.0, remaining)

    async def execute(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Await ``func`` under circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.config.is_failure(e):
                self.record_failure(e)
            raise

        self.record_success()
        return result


def _counts_against_ai_service(error: Exception) -> bool:
    """The service answered but the output was unusable: not an outage"""
    if isinstance(error, SoftAIFailure):
        return error.error_code != ErrorCode.AI_PARSE_ERROR
    return True


def get_ai_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the external AI service"""
    return CircuitBreaker.get_instance(
        "ai_service",
        CircuitBreakerConfig(
            failure_threshold=5,
            success_threshold=2,
            timeout_seconds=30.0,
            is_failure=_counts_against_ai_service,
        )
    )
