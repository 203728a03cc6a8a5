"""Operations shared by the CLI and the HTTP API."""
import logging
from typing import Optional, Sequence

from paysync.auth.login_detector import is_login_page
from paysync.fetch.client import ProxyClient
from paysync.fetch.endpoints import ProviderUrlCatalog, default_catalog
from paysync.fetch.rate_limit import RequestPacer
from paysync.jobs.metrics import ProgressObserver
from paysync.jobs.metrics_exporter import OutcomeLog
from paysync.jobs.run_control import RunControl
from paysync.jobs.runner import CollectMode, PaginatedCollector, RunResult
from paysync.jobs.session import CollectionSession, SessionRegistry
from paysync.providers.registry import get_adapter
from paysync.store.credentials import Account, SqliteCredentialStore
from paysync.store.payments import PaymentSink

logger = logging.getLogger(__name__)


async def check_credentials(
    store: SqliteCredentialStore,
    proxy: ProxyClient,
    account_id: str,
    catalog: ProviderUrlCatalog = default_catalog,
) -> dict:
    """Call the provider's lightweight authenticated endpoint with the stored headers."""
    account = await store.require_account(account_id)
    adapter = get_adapter(account.provider)
    url = catalog.test_url(account.provider)
    headers = await store.get_headers(account_id)
    response = await proxy.execute(url, "GET", headers, None)
    login = is_login_page(response.body, response.final_url, adapter.login_markers, adapter.login_hosts)
    valid = response.ok and not login
    logger.info(
        f"Credential test for {account.provider} account {account_id}: "
        f"HTTP {response.status}, {'valid' if valid else 'invalid'}"
    )
    return {
        "account_id": account_id,
        "provider": account.provider,
        "status": response.status,
        "valid": valid,
        "login_page": login,
    }


def build_collector(
    account: Account,
    store: SqliteCredentialStore,
    proxy: ProxyClient,
    sink: PaymentSink,
    mode: CollectMode = CollectMode.FULL,
    run_control: Optional[RunControl] = None,
    pacer: Optional[RequestPacer] = None,
    observers: Sequence[ProgressObserver] = (),
    outcome_log: bool = True,
) -> PaginatedCollector:
    """Fresh session (and build id cache) plus a collector for one run."""
    adapter = get_adapter(account.provider)
    session = CollectionSession.create(
        account.id,
        adapter,
        store.header_accessor(account.id),
        proxy,
        run_control=run_control,
    )
    observers = list(observers)
    if outcome_log:
        observers.append(OutcomeLog(session.run_id, account.id, account.provider))
    return PaginatedCollector(session, proxy, sink, mode=mode, pacer=pacer, observers=observers)


async def run_collection(collector: PaginatedCollector, registry: SessionRegistry) -> RunResult:
    """Run while holding the account's slot in the registry.

    Raises CollectionAlreadyRunning if another session holds the slot.
    Re-entrant for a session the caller already acquired.
    """
    with registry.hold(collector.session):
        return await collector.run()
