"""Map provider payment payloads into UnifiedPayment."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError

from paysync.errors import NormalizationError, UnsupportedOperation
from paysync.parse.models import UnifiedPayment, UnifiedPaymentItem

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds
_EPOCH_MS_THRESHOLD = 10**11

# Both providers render naive timestamps in Korea time
PROVIDER_TZ = timezone(timedelta(hours=9))

DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d %H:%M",
    "%Y.%m.%d",
    "%Y-%m-%d",
]


def first_present(*values: Any) -> Any:
    """First value that is neither None nor an empty string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Safe nested lookup: get_path(d, "a.b.0.c")."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return default
        if current is None:
            return default
    return current


def to_money(value: Any) -> Optional[int]:
    """Integer amount in the smallest currency unit, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value))
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("원", "").strip()
        if not cleaned:
            return None
        try:
            return int(round(float(cleaned)))
        except ValueError:
            return None
    return None


def _utc_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=PROVIDER_TZ)
    return moment.astimezone(timezone.utc).isoformat()


def to_iso(value: Any) -> Optional[str]:
    """UTC ISO-8601 string from epoch seconds/milliseconds or a date string.

    Everything is rendered in UTC so stored values sort chronologically as text.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return to_iso(int(text))
        try:
            return _utc_iso(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
        for fmt in DATE_FORMATS:
            try:
                return _utc_iso(datetime.strptime(text, fmt))
            except ValueError:
                continue
    return None


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _quantity(value: Any) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return max(quantity, 1)


def summarize_product_name(items: list[UnifiedPaymentItem]) -> Optional[str]:
    """Representative product name: first item plus the count of the others."""
    if not items:
        return None
    name = items[0].product_name
    if len(items) > 1:
        name = f"{name} 외 {len(items) - 1}건"
    return name


def synthesize_item(
    product_name: Optional[str],
    merchant_name: str,
    total_amount: int,
    product_count: Optional[int] = None,
    image_url: Optional[str] = None,
) -> UnifiedPaymentItem:
    """Single line item built from payment-level fields."""
    return UnifiedPaymentItem(
        line_no=1,
        product_name=product_name or merchant_name,
        image_url=image_url,
        quantity=_quantity(product_count),
        line_amount=total_amount,
    )


def _require(value: Any, provider: str, field: str, identifier: str = "") -> Any:
    if value is None:
        raise NormalizationError(provider, field, identifier)
    return value


# --- naver -------------------------------------------------------------------

def _naver_bundle_merchant(result: dict) -> Optional[str]:
    groups = result.get("productBundleGroups")
    if isinstance(groups, dict) and groups:
        first = next(iter(groups.values()))
        if isinstance(first, dict):
            return first.get("merchantName")
    return None


def normalize_naver_payment(detail: dict, listing: Optional[dict] = None) -> UnifiedPayment:
    """
    Naver Pay detail payload (naverFinancial or orderSheet) to UnifiedPayment.

    Status fields and the external id only exist in the history list entry,
    so they are taken from ``listing``.
    """
    listing = listing or {}
    result = detail.get("result") if isinstance(detail.get("result"), dict) else detail

    payment = result.get("payment") or {}
    order = result.get("order") or {}
    merchant = result.get("merchant") or {}
    amount = result.get("amount") or {}
    pay = result.get("pay") or {}
    product = result.get("product") or {}
    product_orders = result.get("productOrders") or []
    additional = listing.get("additionalData") or {}
    status = listing.get("status") or {}
    listed_product = listing.get("product") or {}

    payment_id = _str_or_none(
        first_present(payment.get("id"), order.get("orderNo"), additional.get("payId"), listing.get("_id"))
    )
    identifier = payment_id or ""
    _require(payment_id, "naver", "payment_id")

    paid_at = to_iso(first_present(payment.get("date"), order.get("orderDateTime"), listing.get("date")))
    _require(paid_at, "naver", "paid_at", identifier)

    merchant_name = first_present(
        merchant.get("name"), _naver_bundle_merchant(result), listing.get("merchantName")
    )
    _require(merchant_name, "naver", "merchant_name", identifier)

    total_amount = to_money(
        first_present(amount.get("totalAmount"), pay.get("totalInitPayAmount"), listed_product.get("price"))
    )
    _require(total_amount, "naver", "total_amount", identifier)

    items: list[UnifiedPaymentItem] = []
    if product.get("name"):
        items.append(
            UnifiedPaymentItem(
                line_no=1,
                product_name=product["name"],
                image_url=listed_product.get("imgUrl"),
                info_url=listed_product.get("infoUrl"),
                quantity=_quantity(product.get("count")),
                line_amount=total_amount,
            )
        )
    else:
        for po in product_orders:
            if not isinstance(po, dict) or not po.get("productName"):
                continue
            items.append(
                UnifiedPaymentItem(
                    line_no=len(items) + 1,
                    product_name=po["productName"],
                    image_url=po.get("productImageUrl"),
                    info_url=po.get("productUrl"),
                    quantity=_quantity(po.get("orderQuantity")),
                    unit_price=to_money(po.get("unitPrice")),
                    line_amount=to_money(first_present(po.get("orderAmount"), po.get("productAmount"))),
                    rest_amount=0,
                    memo=po.get("optionContents"),
                )
            )

    product_name = first_present(product.get("name"), summarize_product_name(items), listed_product.get("name"))
    product_count = first_present(product.get("count"), len(items) if items else None)

    if not items:
        items.append(
            synthesize_item(
                product_name, merchant_name, total_amount, product_count, listed_product.get("imgUrl")
            )
        )

    return UnifiedPayment(
        provider="naver",
        payment_id=payment_id,
        external_id=_str_or_none(listing.get("_id")),
        status_code=status.get("name"),
        status_text=status.get("text"),
        status_color=status.get("color"),
        paid_at=paid_at,
        merchant_name=merchant_name,
        merchant_tel=merchant.get("tel"),
        merchant_url=merchant.get("url"),
        merchant_image_url=merchant.get("imageUrl"),
        product_name=product_name,
        product_count=product_count,
        total_amount=total_amount,
        discount_amount=to_money(first_present(amount.get("discountAmount"), pay.get("totalDiscountAmount"))),
        rest_amount=to_money(listed_product.get("restAmount")),
        items=items,
    )


# --- coupang -----------------------------------------------------------------

def _coupang_status(order: dict) -> tuple[str, str]:
    if order.get("allCanceled"):
        return "CANCELED", "취소됨"
    if order.get("allReceipted"):
        return "RECEIPTED", "수령완료"
    return "ORDERED", "주문완료"


def normalize_coupang_payment(detail: dict, listing: Optional[dict] = None) -> UnifiedPayment:
    """
    Coupang order page data (Next.js pageProps) to UnifiedPayment.

    Coupang may only report the ordered time; paid_at then falls back to it.
    """
    listing = listing or {}
    domains = get_path(detail, "pageProps.domains") or {}
    order_id = _str_or_none(first_present(listing.get("orderId"), get_path(detail, "pageProps.orderId")))

    entities = get_path(domains, "order.entity.entities") or {}
    order = entities.get(order_id) if order_id else None
    if order is None and len(entities) == 1:
        order = next(iter(entities.values()))
    if not isinstance(order, dict):
        raise NormalizationError("coupang", "order", order_id or "")

    payment_id = _str_or_none(first_present(order.get("orderId"), order_id))
    identifier = payment_id or ""
    _require(payment_id, "coupang", "payment_id")
    payment = (get_path(domains, "payment.entities") or {}).get(payment_id) or {}

    ordered_at = to_iso(first_present(order.get("orderedAt"), listing.get("orderedAt")))
    paid_at = to_iso(payment.get("paidAt"))
    if paid_at is None:
        paid_at = ordered_at
    _require(paid_at, "coupang", "paid_at", identifier)

    groups = order.get("deliveryGroupList") or []
    first_vendor = next((g.get("vendor") for g in groups if isinstance(g, dict) and g.get("vendor")), None) or {}

    merchant_name = first_present(order.get("title"), first_vendor.get("vendorName"), listing.get("title"))
    _require(merchant_name, "coupang", "merchant_name", identifier)

    total_amount = to_money(first_present(payment.get("totalPayedAmount"), order.get("totalProductPrice")))
    _require(total_amount, "coupang", "total_amount", identifier)

    items: list[UnifiedPaymentItem] = []
    for group in groups:
        for product in (group or {}).get("productList") or []:
            if not isinstance(product, dict) or not product.get("productName"):
                continue
            quantity = _quantity(product.get("quantity"))
            # Prefer the finalized per-unit price
            unit_price = to_money(
                first_present(
                    product.get("combinedUnitPrice"),
                    product.get("discountedUnitPrice"),
                    product.get("unitPrice"),
                )
            )
            items.append(
                UnifiedPaymentItem(
                    line_no=len(items) + 1,
                    product_id=_str_or_none(product.get("productId")),
                    brand_name=get_path(product, "brandInfo.brandName"),
                    product_name=product["productName"],
                    image_url=product.get("imagePath"),
                    quantity=quantity,
                    unit_price=unit_price,
                    line_amount=unit_price * quantity if unit_price is not None else None,
                    memo=product.get("vendorItemName"),
                )
            )

    product_name = summarize_product_name(items) or order.get("title")
    product_count = len(items) if items else None
    if not items:
        items.append(synthesize_item(product_name, merchant_name, total_amount))

    status_code, status_text = _coupang_status(order)
    return UnifiedPayment(
        provider="coupang",
        payment_id=payment_id,
        external_id=payment_id,
        status_code=status_code,
        status_text=status_text,
        paid_at=paid_at,
        merchant_name=merchant_name,
        merchant_tel=first_vendor.get("repPhoneNum") or None,
        product_name=product_name,
        product_count=product_count,
        total_amount=total_amount,
        discount_amount=to_money(get_path(payment, "wowBenefit.instantDiscountPrice")),
        items=items,
    )


NORMALIZERS: dict[str, Callable[[dict, Optional[dict]], UnifiedPayment]] = {
    "naver": normalize_naver_payment,
    "coupang": normalize_coupang_payment,
}


def normalize(provider: str, detail: dict, listing: Optional[dict] = None) -> UnifiedPayment:
    """Dispatch to the provider normalizer; schema violations become NormalizationError."""
    normalizer = NORMALIZERS.get(provider)
    if normalizer is None:
        raise UnsupportedOperation(provider, "normalize")
    if not isinstance(detail, dict):
        raise NormalizationError(provider, "payload")
    try:
        return normalizer(detail, listing)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        logger.debug(f"{provider} payload failed validation: {e}")
        raise NormalizationError(provider, field) from e
