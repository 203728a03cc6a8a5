"""Per-run collection session and the one-run-per-account guard."""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from paysync.errors import CollectionAlreadyRunning
from paysync.fetch.build_id import BuildIdResolver, HeaderAccessor
from paysync.fetch.client import ProxyClient
from paysync.jobs.metrics import ProgressCounters, RecentOutcomes
from paysync.jobs.run_control import RunControl, RunStatus
from paysync.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


@dataclass
class CollectionSession:
    """State owned by one run; discarded (with its build id cache) afterwards."""

    account_id: str
    adapter: ProviderAdapter
    get_headers: HeaderAccessor
    resolver: BuildIdResolver
    run_control: RunControl = field(default_factory=RunControl)
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.IDLE
    counters: ProgressCounters = field(default_factory=ProgressCounters)
    recent: RecentOutcomes = field(default_factory=RecentOutcomes)
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def create(
        cls,
        account_id: str,
        adapter: ProviderAdapter,
        get_headers: HeaderAccessor,
        proxy: ProxyClient,
        run_control: Optional[RunControl] = None,
    ) -> "CollectionSession":
        resolver = BuildIdResolver(proxy, get_headers, account_id=account_id)
        return cls(
            account_id=account_id,
            adapter=adapter,
            get_headers=get_headers,
            resolver=resolver,
            run_control=run_control or RunControl(),
        )

    @property
    def provider(self) -> str:
        return self.adapter.name

    @property
    def key(self) -> tuple[str, str]:
        return (self.account_id, self.provider)

    def progress(self) -> dict:
        """Snapshot for progress polling."""
        return {
            "run_id": self.run_id,
            "account_id": self.account_id,
            "provider": self.provider,
            "status": self.status.value,
            "counters": self.counters.to_dict(),
            "error_kind": self.error_kind,
            "error": self.error,
            "recent": [o.model_dump() for o in self.recent.latest(20)],
        }


class SessionRegistry:
    """At most one active session per (account, provider)."""

    def __init__(self):
        self._active: dict[tuple[str, str], CollectionSession] = {}
        self._last: dict[str, CollectionSession] = {}

    def acquire(self, session: CollectionSession) -> None:
        current = self._active.get(session.key)
        if current is not None and current is not session:
            raise CollectionAlreadyRunning(session.account_id, session.provider)
        self._active[session.key] = session
        self._last[session.account_id] = session
        logger.debug(f"Session {session.run_id} acquired for {session.provider}/{session.account_id}")

    def release(self, session: CollectionSession) -> None:
        if self._active.get(session.key) is session:
            del self._active[session.key]
            logger.debug(f"Session {session.run_id} released")

    @contextmanager
    def hold(self, session: CollectionSession) -> Iterator[CollectionSession]:
        self.acquire(session)
        try:
            yield session
        finally:
            self.release(session)

    def active(self, account_id: str) -> Optional[CollectionSession]:
        for (acc, _), session in self._active.items():
            if acc == account_id:
                return session
        return None

    def latest(self, account_id: str) -> Optional[CollectionSession]:
        """Active session if any, else the most recent finished one."""
        return self.active(account_id) or self._last.get(account_id)
