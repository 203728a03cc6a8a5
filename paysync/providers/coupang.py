"""Coupang order history adapter."""
import logging
from datetime import datetime
from typing import Any, Optional

from paysync.fetch.build_id import BUILD_ID_CONFIGS
from paysync.providers.base import ListEntry, PagingStyle, ProviderAdapter

logger = logging.getLogger(__name__)

EARLIEST_YEAR = 2010


class CoupangAdapter(ProviderAdapter):
    name = "coupang"
    paging_style = PagingStyle.SCOPED
    first_page = 0
    reverse_pages = False
    list_needs_build_id = False
    # Order detail lives behind the Next.js data route
    detail_needs_build_id = True
    max_empty_scopes = 3
    login_markers = BUILD_ID_CONFIGS["coupang"].login_markers
    login_hosts = BUILD_ID_CONFIGS["coupang"].login_hosts

    def __init__(self, catalog=None, current_year: Optional[int] = None, earliest_year: int = EARLIEST_YEAR):
        super().__init__(catalog)
        self.current_year = current_year or datetime.now().year
        self.earliest_year = earliest_year

    def list_scopes(self) -> list[Any]:
        return list(range(self.current_year, self.earliest_year - 1, -1))

    def list_extras(self, scope: Any, build_id: Optional[str]) -> dict[str, object]:
        extras = super().list_extras(scope, build_id)
        extras["year"] = scope
        return extras

    def build_id_context(self, entry: ListEntry) -> Optional[str]:
        return entry.identifier

    def parse_list_payload(self, payload: dict, page: int, scope: Any = None) -> list[ListEntry]:
        entries = []
        for order in payload.get("orderList") or []:
            if not isinstance(order, dict) or order.get("orderId") is None:
                continue
            entries.append(ListEntry(identifier=str(order["orderId"]), page=page, scope=scope, raw=order))
        return entries
