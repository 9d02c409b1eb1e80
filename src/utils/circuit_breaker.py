"""Circuit breaker for remote collaborators that fail repeatedly."""

import time
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog

from utils.logging import get_logger


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float) -> None:
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry after {retry_after:.1f}s")
        self.name = name
        self.retry_after = retry_after


class CircuitBreaker:
    """Circuit breaker to prevent hammering a failing service."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Union[type[BaseException], tuple[type[BaseException], ...]] = Exception,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Name of the protected service (used in logs and errors)
            failure_threshold: Number of failures before opening circuit (default: 5)
            recovery_timeout: Seconds to wait before attempting recovery (default: 60.0)
            expected_exception: Exception type(s) that count as failures
            logger: Optional logger instance
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.logger = logger or get_logger("circuit_breaker")

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.success_count = 0  # For half-open state

    def _before_call(self) -> None:
        """Reject the call if open, or move to half-open once the recovery timeout passed."""
        if self.state != CircuitState.OPEN or self.last_failure_time is None:
            return

        elapsed = time.time() - self.last_failure_time
        if elapsed >= self.recovery_timeout:
            self.logger.debug(
                "Attempting circuit recovery",
                circuit=self.name,
                elapsed=elapsed,
                recovery_timeout=self.recovery_timeout,
            )
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
        else:
            raise CircuitBreakerOpenError(self.name, self.recovery_timeout - elapsed)

    async def call_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call async function through circuit breaker.

        Args:
            func: Async function to call
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Function result

        Raises:
            CircuitBreakerOpenError: If circuit is open
            Original exception: If function call fails
        """
        self._before_call()

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        """Handle successful call."""
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:
                self.logger.debug(
                    "Circuit breaker closed after successful recovery",
                    circuit=self.name,
                    success_count=self.success_count,
                )
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def _on_failure(self) -> None:
        """Handle failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN:
            self.logger.warning(
                "Circuit breaker reopened after recovery failure",
                circuit=self.name,
                failure_count=self.failure_count,
            )
            self.state = CircuitState.OPEN
            self.success_count = 0
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self.logger.error(
                "Circuit breaker opened due to repeated failures",
                circuit=self.name,
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
            )
            self.state = CircuitState.OPEN

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        self.success_count = 0
