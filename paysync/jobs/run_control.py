"""Run control: stop conditions and limits."""
import time
import logging
from enum import Enum
from typing import Callable, Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    PAGING = "paging"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.STOPPED, RunStatus.FAILED)


@dataclass
class RunControl:
    """Controls run stopping conditions."""

    stop_after_minutes: Optional[float] = None
    max_errors: Optional[int] = None
    max_consecutive_errors: Optional[int] = None
    clock: Callable[[], float] = time.time

    # Internal state
    start_time: Optional[float] = None
    error_count: int = 0
    consecutive_errors: int = 0
    error_403_count: int = 0
    error_429_count: int = 0
    stop_requested: bool = False
    stop_reason: Optional[str] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = self.clock()

    def request_stop(self, reason: str = "stop requested") -> None:
        """Cooperative cancellation; honored before the next page or item."""
        if not self.stop_requested:
            logger.info(f"Stop requested: {reason}")
        self.stop_requested = True
        self.stop_reason = self.stop_reason or reason

    def elapsed_minutes(self) -> float:
        return (self.clock() - self.start_time) / 60

    def should_stop(self) -> tuple[bool, Optional[str]]:
        """Check if run should stop. Returns (should_stop, reason)."""
        if self.stop_requested:
            return True, self.stop_reason

        if self.stop_after_minutes and self.elapsed_minutes() >= self.stop_after_minutes:
            return True, f"Reached stop_after_minutes={self.stop_after_minutes}"

        if self.max_errors and self.error_count >= self.max_errors:
            return True, f"Reached max_errors={self.max_errors}"

        if self.max_consecutive_errors and self.consecutive_errors >= self.max_consecutive_errors:
            return True, f"Reached max_consecutive_errors={self.max_consecutive_errors}"

        return False, None

    def record_error(self, status_code: Optional[int] = None) -> None:
        """Record an error."""
        self.error_count += 1
        self.consecutive_errors += 1

        if status_code == 403:
            self.error_403_count += 1
        elif status_code == 429:
            self.error_429_count += 1

    def record_success(self) -> None:
        """Record a successful operation."""
        self.consecutive_errors = 0

    def get_summary(self) -> dict:
        """Get summary statistics."""
        return {
            "elapsed_minutes": round(self.elapsed_minutes(), 2),
            "error_count": self.error_count,
            "consecutive_errors": self.consecutive_errors,
            "error_403_count": self.error_403_count,
            "error_429_count": self.error_429_count,
            "stop_reason": self.stop_reason,
        }
