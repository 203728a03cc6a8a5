"""Provider adapter contract used by the collector."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from paysync.fetch.endpoints import ProviderUrlCatalog, default_catalog
from paysync.parse.models import UnifiedPayment
from paysync.parse.normalizer import normalize


class PagingStyle(str, Enum):
    # Page count known after the first page
    COUNTED = "counted"
    # Pages walked per scope (e.g. per year) until an empty page
    SCOPED = "scoped"


@dataclass
class ListEntry:
    """One payment as listed on a history page."""

    identifier: str
    page: int
    scope: Optional[Any] = None
    service_type: Optional[str] = None
    order_no: Optional[str] = None
    raw: dict = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Everything the collector needs to know about one provider."""

    name: str = ""
    paging_style: PagingStyle = PagingStyle.COUNTED
    first_page: int = 1
    reverse_pages: bool = False
    list_needs_build_id: bool = False
    detail_needs_build_id: bool = False
    # Consecutive empty scopes tolerated before a scoped walk ends
    max_empty_scopes: int = 3
    login_markers: tuple[str, ...] = ()
    login_hosts: tuple[str, ...] = ()

    def __init__(self, catalog: Optional[ProviderUrlCatalog] = None):
        self.catalog = catalog or default_catalog

    def list_scopes(self) -> list[Any]:
        """Scopes walked in order, newest first. Counted providers have one."""
        return [None]

    def list_extras(self, scope: Any, build_id: Optional[str]) -> dict[str, object]:
        return {"buildId": build_id} if build_id else {}

    def build_list_url(self, page: int, scope: Any = None, build_id: Optional[str] = None) -> str:
        return self.catalog.build_list_url(self.name, page, self.list_extras(scope, build_id))

    def build_detail_url(self, entry: ListEntry, build_id: Optional[str] = None) -> str:
        extras = {"buildId": build_id} if build_id else None
        return self.catalog.build_detail_url(
            self.name, entry.identifier, entry.service_type, entry.order_no, extras
        )

    def build_id_context(self, entry: ListEntry) -> Optional[str]:
        """Context key for the detail build id lookup, if the provider needs one."""
        return None

    def parse_total_pages(self, payload: dict) -> int:
        return 1

    def parse_total_items(self, payload: dict) -> Optional[int]:
        return None

    @abstractmethod
    def parse_list_payload(self, payload: dict, page: int, scope: Any = None) -> list[ListEntry]:
        """Entries listed on one history page, in provider order (newest first)."""

    def normalize(self, detail: dict, entry: ListEntry) -> UnifiedPayment:
        return normalize(self.name, detail, entry.raw)
