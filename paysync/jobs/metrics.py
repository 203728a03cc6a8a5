"""Progress counters, per-item outcomes and the observer contract."""
import time
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Literal, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["success", "failed", "skipped", "info"]


@dataclass
class ProgressCounters:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    current_page: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ItemOutcome(BaseModel):
    """What happened to one listed payment (or one page, for info records)."""

    page: Optional[int] = None
    identifier: str
    status: OutcomeStatus
    message: str = ""
    amount: Optional[int] = None
    paid_at: Optional[str] = None
    image_url: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class ProgressObserver(Protocol):
    """Receives every outcome together with the counters after it was applied."""

    async def on_outcome(self, outcome: ItemOutcome, counters: ProgressCounters) -> None: ...


class RecentOutcomes:
    """Keeps the latest outcomes in memory for progress polling."""

    def __init__(self, maxlen: int = 100):
        self.outcomes: deque[ItemOutcome] = deque(maxlen=maxlen)

    async def on_outcome(self, outcome: ItemOutcome, counters: ProgressCounters) -> None:
        self.outcomes.append(outcome)

    def latest(self, n: Optional[int] = None) -> list[ItemOutcome]:
        items = list(self.outcomes)
        return items if n is None else items[-n:]


class Metrics:
    """Rate and ETA over the progress counters."""

    def __init__(self, counters: ProgressCounters):
        self.counters = counters
        self.start_time = time.time()
        self.last_report_time = time.time()
        self.last_report_count = 0

    def get_rate(self) -> float:
        """Get current processing rate (items/second)."""
        elapsed = time.time() - self.start_time
        if elapsed > 0:
            return self.counters.processed / elapsed
        return 0.0

    def get_eta(self) -> float:
        """Get estimated time remaining in seconds."""
        rate = self.get_rate()
        if rate <= 0:
            return 0.0
        remaining = max(self.counters.total - self.counters.processed, 0)
        return remaining / rate

    def format_eta(self) -> str:
        """Format ETA as human-readable string."""
        eta_seconds = self.get_eta()
        if eta_seconds < 60:
            return f"{eta_seconds:.0f}s"
        elif eta_seconds < 3600:
            return f"{eta_seconds / 60:.1f}m"
        else:
            return f"{eta_seconds / 3600:.1f}h"

    def report(self) -> None:
        """Log current metrics."""
        now = time.time()
        c = self.counters
        recent_elapsed = now - self.last_report_time
        recent_processed = c.processed - self.last_report_count
        recent_rate = recent_processed / recent_elapsed if recent_elapsed > 0 else 0

        logger.info(
            f"Progress: {c.processed}/{c.total} ({c.processed*100//c.total if c.total > 0 else 0}%) | "
            f"Page: {c.current_page} | "
            f"Rate: {self.get_rate():.2f}/s (recent: {recent_rate:.2f}/s) | "
            f"ETA: {self.format_eta()} | "
            f"OK: {c.succeeded} | "
            f"Failed: {c.failed} | "
            f"Skipped: {c.skipped}"
        )

        self.last_report_time = now
        self.last_report_count = c.processed

    def get_summary(self) -> dict:
        """Get summary statistics."""
        return {
            **self.counters.to_dict(),
            "rate": self.get_rate(),
            "eta_seconds": self.get_eta(),
            "elapsed_seconds": time.time() - self.start_time,
        }
