"""Per-item outcome log (JSONL) for after-the-fact inspection."""
import time
from pathlib import Path
from typing import Optional

import aiofiles
import orjson

from paysync.config import config
from paysync.jobs.metrics import ItemOutcome, ProgressCounters


class OutcomeLog:
    """Appends every outcome of a run to a JSONL file."""

    def __init__(self, run_id: str, account_id: str, provider: str, path: Optional[Path] = None):
        self.run_id = run_id
        self.account_id = account_id
        self.provider = provider
        self.path = Path(path or config.OUTCOME_LOG)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def _append(self, record: dict) -> None:
        line = orjson.dumps(record) + b"\n"
        async with aiofiles.open(self.path, "ab") as f:
            await f.write(line)

    async def on_outcome(self, outcome: ItemOutcome, counters: ProgressCounters) -> None:
        await self._append(
            {
                "run_id": self.run_id,
                "account_id": self.account_id,
                "provider": self.provider,
                **outcome.model_dump(),
                "processed": counters.processed,
                "total": counters.total,
            }
        )

    async def export_summary(self, status: str, summary: dict) -> None:
        """Closing record of a run."""
        await self._append(
            {
                "ts": time.time(),
                "run_id": self.run_id,
                "account_id": self.account_id,
                "provider": self.provider,
                "status": status,
                "summary": summary,
            }
        )
