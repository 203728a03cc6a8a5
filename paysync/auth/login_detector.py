"""Detect provider login pages served in place of authenticated content."""
import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


def extract_title(response_html: str | None) -> str:
    """Return the document <title> text, or an empty string."""
    if not response_html:
        return ""
    node = HTMLParser(response_html).css_first("title")
    return node.text(strip=True) if node else ""


def is_login_page(
    response_html: str | None,
    final_url: Optional[str] = None,
    markers: Iterable[str] = (),
    login_hosts: Iterable[str] = (),
) -> bool:
    """
    Detect if a response is the provider's login page.
    Returns True if at least one condition is met:
    - final_url host is one of the provider's login hosts
    - a provider marker string appears in the HTML
    - a provider marker string appears in the <title>, ignoring case
    """
    # Check redirect target
    if final_url:
        host = (urlparse(final_url).hostname or "").lower()
        for login_host in login_hosts:
            if host == login_host.lower():
                logger.debug(f"Final URL host {host} is a login host")
                return True

    if not response_html:
        return False

    markers = [m for m in markers if m]
    # Raw scan first, the marker may sit outside <title> on some layouts
    for marker in markers:
        if marker in response_html:
            return True

    title = extract_title(response_html).lower()
    return any(marker.lower() in title for marker in markers) if title else False
