# reservations_service/circuit_breaker.py
from datetime import datetime, timedelta
from typing import Callable, Optional


class CircuitBreaker:
    """
    In-memory circuit breaker for calls to the person directory.

    States:
    - closed: calls go through, failures are counted
    - open: calls are refused until the reset timeout elapses
    - half_open: one trial call is let through after the timeout
    """

    def __init__(
        self,
        name: str,
        max_failures: int = 3,
        reset_timeout_seconds: int = 30,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.name = name
        self.max_failures = max_failures
        self.reset_timeout = timedelta(seconds=reset_timeout_seconds)
        self.clock = clock
        self.failure_count = 0
        self.state = "closed"  # "closed" | "open" | "half_open"
        self.opened_at: Optional[datetime] = None

    def allow_request(self) -> bool:
        if self.state != "open":
            return True
        if self.opened_at is not None and self.clock() - self.opened_at >= self.reset_timeout:
            self.state = "half_open"
            return True
        return False

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"
        self.opened_at = None

    def record_failure(self) -> None:
        """Count a failure; a failed half-open trial re-opens immediately."""
        self.failure_count += 1
        if self.state == "half_open" or self.failure_count >= self.max_failures:
            self.state = "open"
            self.opened_at = self.clock()


directory_circuit_breaker = CircuitBreaker(
    name="person_directory",
    max_failures=3,
    reset_timeout_seconds=30,
)
