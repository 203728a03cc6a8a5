"""URL builders for provider list/detail endpoints."""
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from paysync.errors import UnsupportedOperation

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Service types whose detail is keyed by order number instead of payment id
LOCAL_SERVICE_TYPES = frozenset({"LOCALPAY", "ORDER"})


@dataclass(frozen=True)
class ProviderUrlPattern:
    """URL templates for one provider. An empty string means not available."""

    list_url: str = ""
    detail_url: str = ""
    local_detail_url: str = ""


PROVIDER_URL_PATTERNS: dict[str, ProviderUrlPattern] = {
    "naver": ProviderUrlPattern(
        list_url="https://pay.naver.com/_next/data/{buildId}/pc/history.json?page={page}",
        detail_url="https://orders.pay.naver.com/orderApi/payment/detail/naverFinancial?paymentId={paymentId}",
        local_detail_url="https://orders.pay.naver.com/orderApi/orderSheet/detail/?orderNo={orderNo}",
    ),
    "coupang": ProviderUrlPattern(
        list_url="https://mc.coupang.com/ssr/api/myorders/model/page?requestYear={year}&pageIndex={page}&size=5",
        detail_url="https://mc.coupang.com/ssr/_next/data/{buildId}/desktop/order/{paymentId}.json?orderId={paymentId}",
    ),
}

# Lightweight authenticated endpoints used to check stored credentials
PROVIDER_TEST_URLS: dict[str, str] = {
    "naver": "https://pay.naver.com/web-api/timeline/random-stamp/status",
    "coupang": "https://mc.coupang.com/ssr/api/payment-receipt/cash/request-status",
}


def fill_template(template: str, values: Mapping[str, object]) -> str:
    """Literal placeholder replacement; placeholders not in the template are ignored."""
    url = template
    for name, value in values.items():
        if value is None:
            continue
        url = url.replace("{" + name + "}", str(value))
    return url


class ProviderUrlCatalog:
    """Builds provider URLs and refuses to emit unresolved placeholders."""

    def __init__(
        self,
        patterns: Optional[Mapping[str, ProviderUrlPattern]] = None,
        test_urls: Optional[Mapping[str, str]] = None,
    ):
        self.patterns = dict(PROVIDER_URL_PATTERNS if patterns is None else patterns)
        self.test_urls = dict(PROVIDER_TEST_URLS if test_urls is None else test_urls)

    def _template(self, provider: str, kind: str) -> str:
        pattern = self.patterns.get(provider)
        if pattern is None:
            raise UnsupportedOperation(provider, kind, "unknown provider")
        template = getattr(pattern, kind)
        if not template:
            raise UnsupportedOperation(provider, kind)
        return template

    def _finish(self, provider: str, kind: str, url: str) -> str:
        missing = PLACEHOLDER_RE.findall(url)
        if missing:
            raise UnsupportedOperation(
                provider, kind, f"unresolved placeholder(s): {', '.join(sorted(set(missing)))}"
            )
        return url

    def build_list_url(
        self,
        provider: str,
        page: int,
        extras: Optional[Mapping[str, object]] = None,
    ) -> str:
        """List URL for a page; templates without {page} come back unchanged for it."""
        template = self._template(provider, "list_url")
        values = {**(extras or {}), "page": page}
        return self._finish(provider, "list_url", fill_template(template, values))

    def build_detail_url(
        self,
        provider: str,
        payment_id: str,
        service_type: Optional[str] = None,
        order_no: Optional[str] = None,
        extras: Optional[Mapping[str, object]] = None,
    ) -> str:
        """Detail URL; local-variant service types with an order number use the local template."""
        if service_type in LOCAL_SERVICE_TYPES and order_no:
            kind = "local_detail_url"
            values = {**(extras or {}), "orderNo": order_no}
        else:
            kind = "detail_url"
            values = {**(extras or {}), "paymentId": payment_id}
        template = self._template(provider, kind)
        return self._finish(provider, kind, fill_template(template, values))

    def test_url(self, provider: str) -> str:
        """Endpoint used to check whether stored credentials still work."""
        url = self.test_urls.get(provider)
        if not url:
            raise UnsupportedOperation(provider, "test_url")
        return url


default_catalog = ProviderUrlCatalog()

