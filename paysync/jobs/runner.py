"""Paginated collection of provider payment history."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

import orjson

from paysync.auth.login_detector import is_login_page
from paysync.errors import CredentialsExpired, InvalidPayload, PaySyncError, UpstreamError
from paysync.fetch.client import ProxyClient
from paysync.fetch.rate_limit import RequestPacer
from paysync.jobs.metrics import ItemOutcome, Metrics, ProgressCounters, ProgressObserver
from paysync.jobs.run_control import RunStatus
from paysync.jobs.session import CollectionSession
from paysync.providers.base import ListEntry, PagingStyle
from paysync.store.payments import PaymentSink

logger = logging.getLogger(__name__)

# Progress line every N processed items
REPORT_EVERY = 20


class CollectMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class DiscoveryFailed(PaySyncError):
    """The first list page could not be fetched or read."""


@dataclass
class RunResult:
    run_id: str
    status: RunStatus
    counters: ProgressCounters
    stop_reason: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


class PaginatedCollector:
    """Walks one account's history and hands normalized payments to storage."""

    def __init__(
        self,
        session: CollectionSession,
        proxy: ProxyClient,
        sink: PaymentSink,
        mode: CollectMode = CollectMode.FULL,
        pacer: Optional[RequestPacer] = None,
        observers: Sequence[ProgressObserver] = (),
    ):
        self.session = session
        self.adapter = session.adapter
        self.proxy = proxy
        self.sink = sink
        self.mode = CollectMode(mode)
        self.pacer = pacer or RequestPacer()
        self.observers = [session.recent, *observers]
        self.counters = session.counters
        self.run_control = session.run_control
        self.metrics = Metrics(self.counters)

        self._stop_reason: Optional[str] = None
        self._stop_at_id: Optional[str] = None
        self._caught_up = False
        self._detail_build_id: Optional[str] = None

    @property
    def provider(self) -> str:
        return self.adapter.name

    def request_stop(self) -> None:
        """Ask the run to stop before its next page or item."""
        self.run_control.request_stop()

    async def run(self) -> RunResult:
        """Run the collection to completion, stop or failure."""
        s = self.session
        logger.info(
            f"[{self.provider}] run {s.run_id} for account {s.account_id} started (mode={self.mode.value})"
        )
        self._set_status(RunStatus.DISCOVERING)

        try:
            if self.mode is CollectMode.INCREMENTAL:
                self._stop_at_id = await self.sink.get_last_payment_id(s.account_id)
                logger.info(f"[{self.provider}] incremental run, last stored payment: {self._stop_at_id}")

            if self.adapter.paging_style is PagingStyle.COUNTED:
                await self._run_counted()
            else:
                await self._run_scoped()
        except CredentialsExpired as e:
            logger.error(f"[{self.provider}] {e}")
            return await self._finish(RunStatus.FAILED, "credentials_expired", str(e))
        except DiscoveryFailed as e:
            cause = e.__cause__ or e
            logger.error(f"[{self.provider}] discovery failed: {cause}")
            return await self._finish(RunStatus.FAILED, "discovery", str(cause))

        status = RunStatus.STOPPED if self._stop_reason else RunStatus.COMPLETED
        return await self._finish(status)

    # --- paging ------------------------------------------------------------

    async def _run_counted(self) -> None:
        first = self.adapter.first_page
        try:
            payload = await self._fetch_list_payload(first)
            first_entries = self.adapter.parse_list_payload(payload, first)
        except CredentialsExpired:
            raise
        except Exception as e:
            raise DiscoveryFailed(str(e)) from e

        total_pages = self.adapter.parse_total_pages(payload)
        total_items = self.adapter.parse_total_items(payload)
        self.counters.total = total_items if total_items is not None else len(first_entries) * total_pages
        logger.info(f"[{self.provider}] {total_pages} page(s), {self.counters.total} payment(s) discovered")
        self._set_status(RunStatus.PAGING)

        pages = list(range(first, first + total_pages))
        # Incremental runs always go newest first
        if self.adapter.reverse_pages and self.mode is CollectMode.FULL:
            pages.reverse()

        for index, page in enumerate(pages):
            if self._should_stop():
                break
            self.counters.current_page = page
            if index == 0 and page == first:
                entries = first_entries
            else:
                entries = await self._list_page(page)
                if entries is None:
                    continue
            await self._process_entries(entries)
            await self.pacer.after_page()

    async def _run_scoped(self) -> None:
        discovered = False
        empty_scopes = 0
        for scope in self.adapter.list_scopes():
            if self._should_stop():
                break
            page = self.adapter.first_page
            scope_has_items = False
            scope_failed = False
            while not self._should_stop():
                self.counters.current_page = page
                if not discovered:
                    try:
                        payload = await self._fetch_list_payload(page, scope)
                        entries = self.adapter.parse_list_payload(payload, page, scope)
                    except CredentialsExpired:
                        raise
                    except Exception as e:
                        raise DiscoveryFailed(str(e)) from e
                    discovered = True
                    self._set_status(RunStatus.PAGING)
                else:
                    entries = await self._list_page(page, scope)
                    if entries is None:
                        # Later pages of this scope are unknowable
                        scope_failed = True
                        break
                if not entries:
                    break
                scope_has_items = True
                self.counters.total += len(entries)
                await self._process_entries(entries)
                await self.pacer.after_page()
                page += 1

            if scope_has_items or scope_failed:
                empty_scopes = 0
                continue
            empty_scopes += 1
            logger.debug(f"[{self.provider}] scope {scope} is empty ({empty_scopes} in a row)")
            if empty_scopes > self.adapter.max_empty_scopes:
                logger.info(f"[{self.provider}] {empty_scopes} empty scopes in a row, history exhausted")
                break

    async def _list_page(self, page: int, scope: Any = None) -> Optional[list[ListEntry]]:
        """Entries of one list page, or None when the page has to be skipped."""
        try:
            payload = await self._fetch_list_payload(page, scope)
            return self.adapter.parse_list_payload(payload, page, scope)
        except CredentialsExpired:
            raise
        except Exception as e:
            self.run_control.record_error(getattr(e, "status", None))
            logger.error(f"[{self.provider}] page {page}{self._scope_label(scope)}: list fetch failed, skipping: {e}")
            self.counters.skipped += 1
            await self._emit(
                ItemOutcome(page=page, identifier=f"page:{page}", status="skipped", message=f"page skipped: {e}")
            )
            return None

    async def _fetch_list_payload(self, page: int, scope: Any = None) -> dict:
        build_id = None
        if self.adapter.list_needs_build_id:
            build_id = await self.session.resolver.resolve(self.provider)
        url = self.adapter.build_list_url(page, scope, build_id)
        logger.debug(f"[{self.provider}] list page {page}{self._scope_label(scope)}: {url}")
        return await self._fetch_json(url)

    # --- items -------------------------------------------------------------

    async def _process_entries(self, entries: list[ListEntry]) -> None:
        for entry in entries:
            if self._should_stop():
                return
            if self._stop_at_id is not None and entry.identifier == self._stop_at_id:
                self._caught_up = True
                logger.info(f"[{self.provider}] reached last stored payment {entry.identifier}")
                await self._emit(
                    ItemOutcome(
                        page=entry.page,
                        identifier=entry.identifier,
                        status="info",
                        message="reached last stored payment",
                    )
                )
                return
            await self._process_entry(entry)
            await self.pacer.after_item()

    async def _process_entry(self, entry: ListEntry) -> None:
        c = self.counters
        try:
            url = await self._detail_url(entry)
            detail = await self._fetch_json(url)
            payment = self.adapter.normalize(detail, entry)
            await self.sink.save_normalized_payment(self.session.account_id, payment)
        except CredentialsExpired:
            raise
        except Exception as e:
            c.processed += 1
            c.failed += 1
            self.run_control.record_error(getattr(e, "status", None))
            logger.error(f"[{self.provider}] page {entry.page} item {entry.identifier}: {e}")
            await self._emit(
                ItemOutcome(page=entry.page, identifier=entry.identifier, status="failed", message=str(e))
            )
            return

        c.processed += 1
        c.succeeded += 1
        self.run_control.record_success()
        await self._emit(
            ItemOutcome(
                page=entry.page,
                identifier=entry.identifier,
                status="success",
                message=payment.product_name or payment.merchant_name,
                amount=payment.total_amount,
                paid_at=payment.paid_at,
                image_url=payment.thumbnail,
            )
        )
        if c.processed % REPORT_EVERY == 0:
            self.metrics.report()

    async def _detail_url(self, entry: ListEntry) -> str:
        build_id = None
        if self.adapter.detail_needs_build_id:
            # Resolved once per session, from the first entry that gets here
            if self._detail_build_id is None:
                context = self.adapter.build_id_context(entry)
                self._detail_build_id = await self.session.resolver.resolve(self.provider, context)
            build_id = self._detail_build_id
        return self.adapter.build_detail_url(entry, build_id)

    async def _fetch_json(self, url: str) -> dict:
        """GET with fresh credentials; login pages become CredentialsExpired."""
        headers = await self.session.get_headers()
        response = await self.proxy.execute(url, "GET", headers, None)
        if is_login_page(response.body, response.final_url, self.adapter.login_markers, self.adapter.login_hosts):
            raise CredentialsExpired(self.provider, f"login page returned for {url}")
        if not response.ok:
            raise UpstreamError(response.status, url)
        try:
            data = orjson.loads(response.body)
        except orjson.JSONDecodeError as e:
            raise InvalidPayload(self.provider, url, str(e)) from e
        if not isinstance(data, dict):
            raise InvalidPayload(self.provider, url, "expected a JSON object")
        return data

    # --- bookkeeping -------------------------------------------------------

    def _should_stop(self) -> bool:
        if self._caught_up or self._stop_reason:
            return True
        should_stop, reason = self.run_control.should_stop()
        if should_stop:
            logger.warning(f"[{self.provider}] Stop condition met: {reason}")
            self._stop_reason = reason
        return should_stop

    def _set_status(self, status: RunStatus) -> None:
        self.session.status = status
        logger.debug(f"[{self.provider}] run {self.session.run_id}: {status.value}")

    @staticmethod
    def _scope_label(scope: Any) -> str:
        return "" if scope is None else f" (scope {scope})"

    async def _emit(self, outcome: ItemOutcome) -> None:
        for observer in self.observers:
            try:
                await observer.on_outcome(outcome, self.counters)
            except Exception as e:
                logger.warning(f"Progress observer {type(observer).__name__} failed: {e}")

    async def _finish(
        self,
        status: RunStatus,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> RunResult:
        s = self.session
        s.error_kind = error_kind
        s.error = error
        self._set_status(status)
        self._final_report(status)
        for observer in self.observers:
            export_summary = getattr(observer, "export_summary", None)
            if export_summary is not None:
                await export_summary(status.value, {**self.metrics.get_summary(), **self.run_control.get_summary()})
        return RunResult(
            run_id=s.run_id,
            status=status,
            counters=self.counters,
            stop_reason=self._stop_reason,
            error_kind=error_kind,
            error=error,
        )

    def _final_report(self, status: RunStatus) -> None:
        c = self.counters
        run_summary = self.run_control.get_summary()
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {self.session.run_id} ({self.provider}, account {self.session.account_id})")
        logger.info(f"Status: {status.value}" + (f" ({self._stop_reason})" if self._stop_reason else ""))
        logger.info(f"Elapsed: {run_summary['elapsed_minutes']:.2f} minutes")
        logger.info(f"Processed: {c.processed}/{c.total}")
        logger.info(f"OK: {c.succeeded}")
        logger.info(f"Failed: {c.failed}")
        logger.info(f"Skipped: {c.skipped}")
        logger.info(f"Throughput: {self.metrics.get_rate():.2f} items/s")
        logger.info("=" * 60)
