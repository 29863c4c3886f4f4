"""
Retry statistics for observability
"""
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass
class RetryStatsCounters:
    """Raw counters. Monotonic until reset()."""

    total_requests: int = 0
    retried_requests: int = 0
    successful_retries: int = 0
    failed_retries: int = 0
    total_retry_attempts: int = 0


class RetryStats:
    """
    Process-wide retry counters.

    All writes are increments taken under a lock, so the counters stay
    consistent when read from another thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = RetryStatsCounters()

    def record_request(self) -> None:
        """Count one logical request."""
        with self._lock:
            self._counters.total_requests += 1

    def record_retry_attempt(self) -> None:
        """Count one re-dispatch of a request."""
        with self._lock:
            self._counters.total_retry_attempts += 1

    def record_retry(self, success: bool) -> None:
        """Count the terminal outcome of a request that was retried at least once."""
        with self._lock:
            self._counters.retried_requests += 1
            if success:
                self._counters.successful_retries += 1
            else:
                self._counters.failed_retries += 1

    @property
    def counters(self) -> RetryStatsCounters:
        """Copy of the current counters."""
        with self._lock:
            return RetryStatsCounters(**asdict(self._counters))

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus derived rates (percentages) and average attempts."""
        c = self.counters
        stats: Dict[str, Any] = asdict(c)
        stats["retry_rate"] = (
            c.retried_requests / c.total_requests * 100 if c.total_requests > 0 else 0
        )
        stats["retry_success_rate"] = (
            c.successful_retries / c.retried_requests * 100 if c.retried_requests > 0 else 0
        )
        stats["average_retry_attempts"] = (
            c.total_retry_attempts / c.retried_requests if c.retried_requests > 0 else 0
        )
        return stats

    def reset(self) -> None:
        with self._lock:
            self._counters = RetryStatsCounters()
