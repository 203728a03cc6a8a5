"""Tests for the paginated collector."""
import asyncio

from conftest import (
    COUPANG_ORDER_HTML,
    NAVER_HISTORY_HTML,
    NAVER_LOGIN_HTML,
    FakeCredentials,
    FakeProxy,
    MemorySink,
    coupang_detail_payload,
    coupang_detail_url,
    coupang_list_url,
    html_response,
    json_response,
    naver_detail_payload,
    naver_detail_url,
    naver_list_item,
    naver_list_payload,
    naver_list_url,
)
from paysync.fetch.rate_limit import NoDelayPacer
from paysync.jobs.run_control import RunControl, RunStatus
from paysync.jobs.runner import CollectMode, PaginatedCollector
from paysync.jobs.session import CollectionSession
from paysync.providers.coupang import CoupangAdapter
from paysync.providers.naver import NaverAdapter

NAVER_HTML_URL = "https://pay.naver.com/pc/history?page=1"


def naver_routes(pages: dict[int, list[str]]) -> dict:
    """List and detail routes for a naver history laid out as page -> payment ids."""
    total_items = sum(len(ids) for ids in pages.values())
    routes = {NAVER_HTML_URL: html_response(NAVER_HISTORY_HTML)}
    for page, ids in pages.items():
        payload = naver_list_payload([naver_list_item(i) for i in ids], len(pages), total_items)
        routes[naver_list_url(page)] = json_response(payload)
        for pay_id in ids:
            routes[naver_detail_url(pay_id)] = json_response(naver_detail_payload(pay_id))
    return routes


def make_collector(
    routes,
    adapter=None,
    sink=None,
    mode=CollectMode.FULL,
    credentials=None,
    run_control=None,
    observers=(),
):
    proxy = FakeProxy(routes)
    credentials = credentials or FakeCredentials()
    session = CollectionSession.create(
        "acc-1", adapter or NaverAdapter(), credentials.get_headers, proxy, run_control
    )
    collector = PaginatedCollector(
        session, proxy, sink or MemorySink(), mode=mode, pacer=NoDelayPacer(), observers=observers
    )
    return collector, proxy


class Recorder:
    """Observer that records outcomes and can act after the n-th one."""

    def __init__(self, after=None, action=None):
        self.outcomes = []
        self.after = after
        self.action = action

    async def on_outcome(self, outcome, counters):
        self.outcomes.append((outcome, counters.processed))
        if self.after is not None and len(self.outcomes) == self.after:
            self.action()


def test_reverse_page_order_and_cancellation():
    """Pages run last to first; a stop after page 2 leaves page 1 untouched."""
    routes = naver_routes({1: ["P1", "P2"], 2: ["P3", "P4"], 3: ["P5", "P6"]})
    recorder = Recorder(after=4)
    collector, proxy = make_collector(routes, observers=[recorder])
    recorder.action = collector.request_stop

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.STOPPED
    assert result.counters.total == 6
    assert result.counters.processed == 4
    assert result.counters.processed < result.counters.total
    list_calls = [u for u in proxy.urls() if "history.json" in u]
    assert list_calls == [naver_list_url(1), naver_list_url(3), naver_list_url(2)]
    detail_calls = [u.rsplit("=", 1)[1] for u in proxy.urls() if "paymentId=" in u]
    assert detail_calls == ["P5", "P6", "P3", "P4"]


def test_full_run_revisits_first_page_last():
    routes = naver_routes({1: ["P1"], 2: ["P2"]})
    sink = MemorySink()
    collector, proxy = make_collector(routes, sink=sink)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert sink.payment_ids() == ["P2", "P1"]
    assert collector.session.resolver.fetch_count == 1
    assert proxy.urls().count(NAVER_HTML_URL) == 1


def test_item_failure_is_counted_and_run_continues():
    routes = naver_routes({1: ["P1", "P2", "P3", "P4", "P5"], 2: ["P6"]})
    routes[naver_detail_url("P3")] = json_response({"error": "boom"}, status=500)
    recorder = Recorder()
    sink = MemorySink()
    collector, _ = make_collector(routes, sink=sink, observers=[recorder])

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert result.counters.succeeded == 5
    assert result.counters.failed == 1
    failed = [o for o, _ in recorder.outcomes if o.status == "failed"]
    assert len(failed) == 1
    assert failed[0].identifier == "P3"
    assert failed[0].page == 1
    assert "500" in failed[0].message
    # Page 2 first (reverse order), then every remaining item of page 1
    assert sink.payment_ids() == ["P6", "P1", "P2", "P4", "P5"]


def test_failure_on_middle_page_moves_on_to_next_page():
    routes = naver_routes({1: ["P1", "P2"], 2: ["P3", "P4"], 3: ["P5", "P6", "P7"]})
    routes[naver_detail_url("P3")] = json_response({"error": "boom"}, status=500)
    recorder = Recorder()
    sink = MemorySink()
    collector, _ = make_collector(routes, sink=sink, observers=[recorder])

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert result.counters.succeeded == 6
    assert result.counters.failed == 1
    failed = [o for o, _ in recorder.outcomes if o.status == "failed"]
    assert [(o.identifier, o.page) for o in failed] == [("P3", 2)]
    # page 1 is visited after the failing page 2
    assert sink.payment_ids() == ["P5", "P6", "P7", "P4", "P1", "P2"]


def test_save_failure_is_an_item_failure():
    routes = naver_routes({1: ["P1", "P2"]})
    sink = MemorySink(fail_ids={"P1"})
    collector, _ = make_collector(routes, sink=sink)

    result = asyncio.run(collector.run())

    assert result.counters.failed == 1
    assert result.counters.succeeded == 1
    assert sink.payment_ids() == ["P2"]


def test_first_page_failure_fails_the_run():
    routes = naver_routes({1: ["P1"]})
    routes[naver_list_url(1)] = json_response({}, status=500)
    collector, _ = make_collector(routes)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.FAILED
    assert result.error_kind == "discovery"
    assert collector.session.status is RunStatus.FAILED


def test_later_list_page_failure_is_skipped():
    routes = naver_routes({1: ["P1"], 2: ["P2"], 3: ["P3"]})
    routes[naver_list_url(2)] = json_response({}, status=502)
    sink = MemorySink()
    recorder = Recorder()
    collector, _ = make_collector(routes, sink=sink, observers=[recorder])

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert sink.payment_ids() == ["P3", "P1"]
    skipped = [o for o, _ in recorder.outcomes if o.status == "skipped"]
    assert [o.page for o in skipped] == [2]
    assert result.counters.skipped == 1
    assert result.counters.failed == 0


def test_login_page_fails_run_with_credentials_expired():
    routes = naver_routes({1: ["P1", "P2"]})
    routes[naver_detail_url("P2")] = html_response(NAVER_LOGIN_HTML)
    collector, _ = make_collector(routes)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.FAILED
    assert result.error_kind == "credentials_expired"
    assert result.counters.succeeded == 1


def test_expired_session_during_build_id_lookup():
    routes = naver_routes({1: ["P1"]})
    routes[NAVER_HTML_URL] = html_response("", final_url="https://nid.naver.com/nidlogin.login")
    collector, _ = make_collector(routes)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.FAILED
    assert result.error_kind == "credentials_expired"


def test_incremental_stops_at_last_stored_payment():
    routes = naver_routes({1: ["P1", "P2"], 2: ["P3", "P4"], 3: ["P5", "P6"]})
    sink = MemorySink(last_payment_id="P3")
    collector, proxy = make_collector(routes, sink=sink, mode=CollectMode.INCREMENTAL)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert sink.payment_ids() == ["P1", "P2"]
    assert naver_list_url(3) not in proxy.urls()


def test_credential_rotation_seen_on_next_request():
    routes = naver_routes({1: ["P1", "P2"]})
    credentials = FakeCredentials(cookie="NID_AUT=old")
    recorder = Recorder(after=1, action=lambda: credentials.rotate("NID_AUT=new"))
    collector, proxy = make_collector(routes, credentials=credentials, observers=[recorder])

    asyncio.run(collector.run())

    headers_by_url = {url: headers for url, headers in proxy.calls}
    assert headers_by_url[naver_detail_url("P1")]["Cookie"] == "NID_AUT=old"
    assert headers_by_url[naver_detail_url("P2")]["Cookie"] == "NID_AUT=new"


def test_max_errors_stops_run():
    routes = naver_routes({1: ["P1", "P2", "P3", "P4"]})
    for pay_id in ["P1", "P2"]:
        routes[naver_detail_url(pay_id)] = json_response({}, status=500)
    collector, _ = make_collector(routes, run_control=RunControl(max_errors=2))

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.STOPPED
    assert result.counters.processed == 2
    assert "max_errors" in result.stop_reason


def test_total_falls_back_to_page_size_times_pages():
    routes = naver_routes({1: ["P1", "P2"], 2: ["P3", "P4"]})
    routes[naver_list_url(1)] = json_response(
        naver_list_payload([naver_list_item("P1"), naver_list_item("P2")], total_page=2)
    )
    collector, _ = make_collector(routes)

    result = asyncio.run(collector.run())

    assert result.counters.total == 4


def coupang_routes(years: dict[int, list[list[int]]], earliest: int) -> dict:
    """year -> list of pages (each a list of order ids); other years are empty."""
    routes = {}
    for year in range(max(years), earliest - 1, -1):
        pages = years.get(year, [])
        for index, ids in enumerate(pages):
            routes[coupang_list_url(year, index)] = json_response({"orderList": [{"orderId": i} for i in ids]})
            for order_id in ids:
                routes[coupang_detail_url(str(order_id))] = json_response(coupang_detail_payload(str(order_id)))
        routes[coupang_list_url(year, len(pages))] = json_response({"orderList": []})
    return routes


def test_coupang_scoped_paging():
    routes = coupang_routes({2024: [[100, 101], [102]], 2023: [[90]]}, earliest=2015)
    first_order_html = "https://mc.coupang.com/ssr/desktop/order/100"
    routes[first_order_html] = html_response(COUPANG_ORDER_HTML)
    sink = MemorySink()
    adapter = CoupangAdapter(current_year=2024, earliest_year=2015)
    collector, proxy = make_collector(routes, adapter=adapter, sink=sink)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert sink.payment_ids() == ["100", "101", "102", "90"]
    assert result.counters.total == 4
    # One build id lookup for the whole session, keyed by the first order id
    assert collector.session.resolver.fetch_count == 1
    assert "https://mc.coupang.com/ssr/desktop/order/100" in proxy.urls()
    assert coupang_detail_url("90") in proxy.urls()
    # 2022..2019 are empty; more than three empty years in a row ends the walk
    assert coupang_list_url(2019, 0) in proxy.urls()
    assert coupang_list_url(2018, 0) not in proxy.urls()


def test_coupang_empty_history_completes():
    routes = coupang_routes({2024: []}, earliest=2010)
    adapter = CoupangAdapter(current_year=2024)
    collector, _ = make_collector(routes, adapter=adapter)

    result = asyncio.run(collector.run())

    assert result.status is RunStatus.COMPLETED
    assert result.counters.total == 0
