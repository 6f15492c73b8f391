"""Circuit breaker guarding calls to a shared cache backend."""
import time
import threading
import functools
from typing import Any, Awaitable, Callable, Dict

import structlog

logger = structlog.get_logger()


class CircuitBreaker:
    """
    Stops calling a failing backend until it has had time to recover.

    The Redis store wraps every command in ``call_async``. While the circuit
    is open the store answers like a cold cache instead of waiting on a dead
    connection for every request.

    Circuit states:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Calls are rejected without touching the backend
    - HALF-OPEN: A probe call is let through to check recovery
    """

    STATE_CLOSED = 'closed'
    STATE_OPEN = 'open'
    STATE_HALF_OPEN = 'half-open'

    class CircuitBreakerError(Exception):
        """Exception raised when a circuit is open."""
        pass

    def __init__(self, name: str = "backend", failure_threshold: int = 5,
                 recovery_timeout: float = 60, half_open_success_threshold: int = 1,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize a new Circuit Breaker.

        Args:
            name: Name used in log events
            failure_threshold: Number of consecutive failures before opening the circuit
            recovery_timeout: Time in seconds to wait before attempting recovery
            half_open_success_threshold: Number of successful calls needed to close circuit
            clock: Time source in seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_success_threshold = half_open_success_threshold
        self._clock = clock

        self.state = self.STATE_CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self._lock = threading.RLock()

    def __call__(self, func):
        """Use as a decorator on coroutine functions that might fail."""
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.call_async(func, *args, **kwargs)
        return wrapper

    def allow_request(self) -> bool:
        """Return True if a call may go through, moving OPEN to HALF-OPEN when due."""
        with self._lock:
            if self.state != self.STATE_OPEN:
                return True
            if self._clock() - self.last_failure_time >= self.recovery_timeout:
                logger.info("circuit_breaker_half_open",
                            circuit=self.name,
                            recovery_timeout=self.recovery_timeout)
                self.state = self.STATE_HALF_OPEN
                self.success_count = 0
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self.state == self.STATE_HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.half_open_success_threshold:
                    logger.info("circuit_breaker_closed",
                                circuit=self.name,
                                success_count=self.success_count)
                    self.state = self.STATE_CLOSED
                    self.failure_count = 0
            elif self.state == self.STATE_CLOSED:
                self.failure_count = 0

    def record_failure(self, error: Exception) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == self.STATE_CLOSED and self.failure_count >= self.failure_threshold:
                logger.warning("circuit_breaker_tripped",
                               circuit=self.name,
                               failure_count=self.failure_count,
                               exception=str(error))
                self.state = self.STATE_OPEN
            elif self.state == self.STATE_HALF_OPEN:
                logger.warning("circuit_breaker_recovery_failed",
                               circuit=self.name,
                               exception=str(error))
                self.state = self.STATE_OPEN

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await the protected coroutine function with circuit breaker protection.

        Raises:
            CircuitBreakerError: If the circuit is open
            Exception: Any exception raised by the function
        """
        if not self.allow_request():
            raise self.CircuitBreakerError(
                f"Circuit '{self.name}' is open, too many failures."
            )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result

    def reset(self):
        """Reset the circuit breaker to closed state."""
        with self._lock:
            self.state = self.STATE_CLOSED
            self.failure_count = 0
            self.success_count = 0
            self.last_failure_time = 0.0
            logger.info("circuit_breaker_reset", circuit=self.name)

    def force_open(self):
        """Manually force the circuit into open state."""
        with self._lock:
            self.state = self.STATE_OPEN
            self.last_failure_time = self._clock()
            logger.warning("circuit_breaker_forced_open", circuit=self.name)

    def get_state(self) -> Dict[str, Any]:
        """Get the current state of the circuit breaker."""
        with self._lock:
            return {
                'state': self.state,
                'failure_count': self.failure_count,
                'success_count': self.success_count,
                'last_failure_time': self.last_failure_time
            }
