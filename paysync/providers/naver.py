"""Naver Pay history adapter."""
import logging
from typing import Any, Optional

from paysync.fetch.build_id import BUILD_ID_CONFIGS
from paysync.parse.normalizer import first_present, get_path
from paysync.providers.base import ListEntry, PagingStyle, ProviderAdapter

logger = logging.getLogger(__name__)

# Next.js data route: react-query cache of the history page
HISTORY_PAGE_PATH = "pageProps.dehydratedState.queries.0.state.data.pages.0"


def history_page(payload: dict) -> dict:
    page = get_path(payload, HISTORY_PAGE_PATH)
    return page if isinstance(page, dict) else {}


class NaverAdapter(ProviderAdapter):
    name = "naver"
    paging_style = PagingStyle.COUNTED
    first_page = 1
    # Oldest payments sit on the last page
    reverse_pages = True
    list_needs_build_id = True
    detail_needs_build_id = False
    login_markers = BUILD_ID_CONFIGS["naver"].login_markers
    login_hosts = BUILD_ID_CONFIGS["naver"].login_hosts

    def parse_total_pages(self, payload: dict) -> int:
        raw = history_page(payload).get("totalPage")
        try:
            total = int(raw)
        except (TypeError, ValueError):
            logger.warning(f"naver totalPage unreadable ({raw!r}), assuming 1 page")
            return 1
        return max(total, 1)

    def parse_total_items(self, payload: dict) -> Optional[int]:
        raw = history_page(payload).get("itemCount")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def parse_list_payload(self, payload: dict, page: int, scope: Any = None) -> list[ListEntry]:
        entries = []
        for item in history_page(payload).get("items") or []:
            if not isinstance(item, dict):
                continue
            additional = item.get("additionalData") or {}
            identifier = first_present(additional.get("payId"), item.get("_id"))
            if identifier is None:
                logger.debug(f"naver page {page}: entry without id skipped")
                continue
            entries.append(
                ListEntry(
                    identifier=str(identifier),
                    page=page,
                    service_type=item.get("serviceType"),
                    order_no=additional.get("orderNo"),
                    raw=item,
                )
            )
        return entries
