"""Shared fakes and payload builders for the test suite."""
from types import SimpleNamespace
from typing import Callable, Optional, Union

import orjson
import pytest

from paysync.fetch.client import ProxyResponse
from paysync.parse.models import UnifiedPayment

NAVER_BUILD_ID = "nv-build-1"
COUPANG_BUILD_ID = "cp-build-1"

NAVER_HISTORY_HTML = (
    "<html><head><title>네이버페이</title>"
    '<script src="https://financial.pstatic.net/naverpay-web/prod/_next/static/'
    f'{NAVER_BUILD_ID}/_buildManifest.js"></script></head><body></body></html>'
)

COUPANG_ORDER_HTML = (
    "<html><head><title>쿠팡!</title>"
    f'<script src="/ssr/_next/static/{COUPANG_BUILD_ID}/_buildManifest.js"></script>'
    "</head><body></body></html>"
)

NAVER_LOGIN_HTML = "<html><head><title>네이버 : 로그인</title></head><body>login</body></html>"

Route = Union[ProxyResponse, Callable[[str, dict], ProxyResponse]]


def json_response(data, status: int = 200, final_url: Optional[str] = None) -> ProxyResponse:
    return ProxyResponse(status=status, body=orjson.dumps(data).decode(), final_url=final_url)


def html_response(html: str, status: int = 200, final_url: Optional[str] = None) -> ProxyResponse:
    return ProxyResponse(status=status, body=html, final_url=final_url)


class FakeProxy:
    """ProxyClient double answering from a url -> response table."""

    def __init__(self, routes: Optional[dict[str, Route]] = None):
        self.routes: dict[str, Route] = dict(routes or {})
        self.calls: list[tuple[str, dict]] = []

    def add(self, url: str, response: Route) -> None:
        self.routes[url] = response

    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]

    async def execute(self, url, method="GET", headers=None, body=None) -> ProxyResponse:
        headers = dict(headers or {})
        self.calls.append((url, headers))
        route = self.routes.get(url)
        if route is None:
            return ProxyResponse(status=404, body="not found", final_url=url)
        if callable(route):
            return route(url, headers)
        return route


class FakeCredentials:
    """Header accessor whose headers can be rotated mid-run."""

    def __init__(self, cookie: str = "NID_AUT=a1; NID_SES=s1"):
        self.headers = {"Cookie": cookie}
        self.reads = 0

    def rotate(self, cookie: str) -> None:
        self.headers = {"Cookie": cookie}

    async def get_headers(self) -> dict[str, str]:
        self.reads += 1
        return dict(self.headers)


class MemorySink:
    """PaymentSink double; raises for identifiers listed in fail_ids."""

    def __init__(self, last_payment_id: Optional[str] = None, fail_ids=()):
        self.saved: list[tuple[str, UnifiedPayment]] = []
        self.last_payment_id = last_payment_id
        self.fail_ids = set(fail_ids)

    async def save_normalized_payment(self, account_id: str, payment: UnifiedPayment) -> int:
        if payment.payment_id in self.fail_ids:
            raise RuntimeError(f"disk full while saving {payment.payment_id}")
        self.saved.append((account_id, payment))
        return len(self.saved)

    async def get_last_payment_id(self, account_id: str) -> Optional[str]:
        return self.last_payment_id

    def payment_ids(self) -> list[str]:
        return [p.payment_id for _, p in self.saved]


class FakeSupabase:
    """In-memory stand-in for the supabase Client query builder."""

    def __init__(self, fail: bool = False):
        self.tables: dict[str, list[dict]] = {}
        self.fail = fail

    def table(self, name: str) -> "FakeQuery":
        return FakeQuery(self, name)


class FakeQuery:
    def __init__(self, db: FakeSupabase, name: str):
        self.db = db
        self.name = name
        self.action = "select"
        self.columns = "*"
        self.payload = None
        self.conflict: list[str] = []
        self.filters: list[tuple[str, object]] = []
        self.order_by = None
        self.bounds = None
        self.max_rows = None

    def select(self, columns: str = "*", count=None):
        self.columns = columns
        return self

    def upsert(self, row: dict, on_conflict: str = ""):
        self.action, self.payload, self.conflict = "upsert", row, on_conflict.split(",")
        return self

    def insert(self, rows: list[dict]):
        self.action, self.payload = "insert", rows
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column: str, value):
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def range(self, start: int, end: int):
        self.bounds = (start, end)
        return self

    def limit(self, n: int):
        self.max_rows = n
        return self

    def execute(self) -> SimpleNamespace:
        if self.db.fail:
            raise ConnectionError("supabase unreachable")
        rows = self.db.tables.setdefault(self.name, [])

        if self.action == "upsert":
            key = [self.payload[c] for c in self.conflict]
            row = next((r for r in rows if [r[c] for c in self.conflict] == key), None)
            if row is None:
                row = {"id": len(rows) + 1}
                rows.append(row)
            row.update(self.payload)
            return SimpleNamespace(data=[dict(row)])
        if self.action == "insert":
            rows.extend(dict(r) for r in self.payload)
            return SimpleNamespace(data=self.payload)

        matched = [r for r in rows if all(r.get(c) == v for c, v in self.filters)]
        if self.action == "delete":
            self.db.tables[self.name] = [r for r in rows if not any(r is m for m in matched)]
            return SimpleNamespace(data=matched)

        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: r[column], reverse=desc)
        if self.bounds:
            matched = matched[self.bounds[0]: self.bounds[1] + 1]
        if self.max_rows is not None:
            matched = matched[: self.max_rows]
        data = [dict(r) for r in matched]
        # "*, child(*)" embeds child rows whose payment_id is the parent id
        if "(" in self.columns:
            child = self.columns.split(",")[1].strip().split("(")[0]
            for row in data:
                row[child] = [dict(c) for c in self.db.tables.get(child, []) if c["payment_id"] == row["id"]]
        return SimpleNamespace(data=data)


# --- payload builders --------------------------------------------------------

def naver_list_item(pay_id: str, amount: int = 10000, merchant: str = "테스트상점", date: int = 1700000000000) -> dict:
    return {
        "_id": f"ext-{pay_id}",
        "serviceType": "SIMPLE_PAYMENT",
        "status": {"name": "PURCHASE_DECIDED", "text": "구매확정", "color": "GRAY"},
        "merchantName": merchant,
        "product": {
            "name": f"상품 {pay_id}",
            "imgUrl": f"https://img.example/{pay_id}.jpg",
            "infoUrl": f"https://shop.example/{pay_id}",
            "price": amount,
            "restAmount": 0,
        },
        "date": date,
        "additionalData": {"payId": pay_id, "orderNo": f"order-{pay_id}"},
    }


def naver_list_payload(items: list[dict], total_page: int, item_count: Optional[int] = None) -> dict:
    page = {"items": items, "totalPage": total_page}
    if item_count is not None:
        page["itemCount"] = item_count
    return {
        "pageProps": {
            "dehydratedState": {"queries": [{"state": {"data": {"pages": [page]}}}]},
        }
    }


def naver_detail_payload(
    pay_id: str, amount: int = 10000, merchant: str = "테스트상점", date: int = 1700000000000
) -> dict:
    return {
        "result": {
            "payment": {"id": pay_id, "date": date},
            "merchant": {"name": merchant, "tel": "02-000-0000", "url": "https://shop.example"},
            "amount": {"totalAmount": amount, "discountAmount": 500},
            "product": {"name": f"상품 {pay_id}", "count": 1},
        }
    }


def naver_list_url(page: int, build_id: str = NAVER_BUILD_ID) -> str:
    return f"https://pay.naver.com/_next/data/{build_id}/pc/history.json?page={page}"


def naver_detail_url(pay_id: str) -> str:
    return f"https://orders.pay.naver.com/orderApi/payment/detail/naverFinancial?paymentId={pay_id}"


def coupang_list_url(year: int, page: int) -> str:
    return f"https://mc.coupang.com/ssr/api/myorders/model/page?requestYear={year}&pageIndex={page}&size=5"


def coupang_detail_url(order_id: str, build_id: str = COUPANG_BUILD_ID) -> str:
    return f"https://mc.coupang.com/ssr/_next/data/{build_id}/desktop/order/{order_id}.json?orderId={order_id}"


def coupang_detail_payload(order_id: str, paid_at: Optional[int] = None, ordered_at: int = 1700000000000) -> dict:
    payment = {"totalPayedAmount": 23800, "wowBenefit": {"instantDiscountPrice": 1000}}
    if paid_at is not None:
        payment["paidAt"] = paid_at
    return {
        "pageProps": {
            "domains": {
                "order": {
                    "entity": {
                        "entities": {
                            order_id: {
                                "orderId": int(order_id),
                                "orderedAt": ordered_at,
                                "title": "쿠팡",
                                "allCanceled": False,
                                "allReceipted": True,
                                "totalProductPrice": 24800,
                                "deliveryGroupList": [
                                    {
                                        "vendor": {"vendorName": "쿠팡", "repPhoneNum": "1577-7011"},
                                        "productList": [
                                            {
                                                "productId": 111,
                                                "productName": "생수 2L x 12",
                                                "imagePath": "https://img.coupang.example/water.jpg",
                                                "brandInfo": {"brandName": "탐사"},
                                                "quantity": 2,
                                                "unitPrice": 7900,
                                                "discountedUnitPrice": 7400,
                                                "combinedUnitPrice": 7400,
                                                "vendorItemName": "2L 12개",
                                            },
                                            {
                                                "productId": 222,
                                                "productName": "휴지 30롤",
                                                "quantity": 1,
                                                "unitPrice": 9000,
                                            },
                                        ],
                                    }
                                ],
                            }
                        }
                    }
                },
                "payment": {"entities": {order_id: payment}},
            }
        }
    }


@pytest.fixture
def fake_credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()
