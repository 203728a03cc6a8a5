"""Request pacing between item and page fetches."""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from paysync.config import config

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RequestPacer:
    """Fixed pauses to stay under upstream throttling; no backoff."""

    def __init__(
        self,
        item_delay_ms: Optional[tuple[int, int]] = None,
        page_delay_seconds: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        low, high = item_delay_ms or (config.ITEM_DELAY_MIN_MS, config.ITEM_DELAY_MAX_MS)
        if low < 0 or high < low:
            raise ValueError(f"invalid item delay range: {low}..{high} ms")
        self.item_delay_ms = (low, high)
        self.page_delay_seconds = (
            config.PAGE_DELAY_SECONDS if page_delay_seconds is None else page_delay_seconds
        )
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.total_slept = 0.0

    def next_item_delay(self) -> float:
        """Random delay in seconds for the next item."""
        low, high = self.item_delay_ms
        return self._rng.uniform(low, high) / 1000.0

    async def after_item(self) -> None:
        """Wait between item detail fetches."""
        await self._wait(self.next_item_delay())

    async def after_page(self) -> None:
        """Wait between list pages."""
        await self._wait(self.page_delay_seconds)

    async def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.total_slept += seconds
        await self._sleep(seconds)


class NoDelayPacer(RequestPacer):
    """Pacer that never sleeps (dry runs and tests)."""

    def __init__(self):
        super().__init__(item_delay_ms=(0, 0), page_delay_seconds=0.0)
