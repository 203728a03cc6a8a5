"""Resolve deploy-specific build identifiers embedded in provider HTML."""
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from selectolax.parser import HTMLParser

from paysync.auth.login_detector import is_login_page
from paysync.errors import (
    BuildIdNotFound,
    CredentialsExpired,
    MissingContext,
    UnsupportedOperation,
    UpstreamError,
)
from paysync.fetch.client import ProxyClient
from paysync.fetch.endpoints import PLACEHOLDER_RE, fill_template

logger = logging.getLogger(__name__)

HeaderAccessor = Callable[[], Awaitable[dict[str, str]]]

DEFAULT_CONTEXT = "default"

NEXT_BUILD_MANIFEST_RE = re.compile(r"_next/static/([^/\"']+)/_buildManifest\.js")


@dataclass(frozen=True)
class BuildIdConfig:
    """Where a provider embeds its build id, and how to recognize its login page."""

    html_url: str
    pattern: re.Pattern
    fallback_pattern: Optional[re.Pattern] = None
    login_markers: tuple[str, ...] = ()
    login_hosts: tuple[str, ...] = ()
    context_placeholder: Optional[str] = None

    @property
    def needs_context(self) -> bool:
        return self.context_placeholder is not None


BUILD_ID_CONFIGS: dict[str, BuildIdConfig] = {
    "naver": BuildIdConfig(
        html_url="https://pay.naver.com/pc/history?page=1",
        pattern=re.compile(
            r"financial\.pstatic\.net/naverpay-web/[^/]+/_next/static/([^/\"']+)/_buildManifest\.js"
        ),
        fallback_pattern=NEXT_BUILD_MANIFEST_RE,
        login_markers=("네이버 : 로그인",),
        login_hosts=("nid.naver.com",),
    ),
    "coupang": BuildIdConfig(
        html_url="https://mc.coupang.com/ssr/desktop/order/{orderId}",
        pattern=NEXT_BUILD_MANIFEST_RE,
        login_markers=("쿠팡 로그인", "Coupang Login"),
        login_hosts=("login.coupang.com",),
        context_placeholder="orderId",
    ),
}


def extract_build_id(html: str, config: BuildIdConfig) -> Optional[str]:
    """Apply the primary pattern, then the fallback one."""
    match = config.pattern.search(html)
    if not match and config.fallback_pattern is not None:
        logger.debug("Primary build id pattern failed, trying fallback")
        match = config.fallback_pattern.search(html)
    return match.group(1) if match else None


def candidate_scripts(html: str, limit: int = 10) -> list[str]:
    """Script sources that look like framework assets (diagnostics only)."""
    parser = HTMLParser(html)
    srcs = []
    for node in parser.css("script[src]"):
        src = node.attributes.get("src") or ""
        if "_next" in src or "static" in src or "build" in src:
            srcs.append(src)
        if len(srcs) >= limit:
            break
    return srcs


class BuildIdResolver:
    """Fetches and caches build ids for one collection session."""

    def __init__(
        self,
        proxy: ProxyClient,
        get_headers: HeaderAccessor,
        account_id: str = "",
        configs: Optional[dict[str, BuildIdConfig]] = None,
    ):
        self.proxy = proxy
        self.get_headers = get_headers
        self.account_id = account_id
        self.configs = BUILD_ID_CONFIGS if configs is None else configs
        self._cache: dict[tuple[str, str, str], str] = {}
        self.fetch_count = 0

    def _key(self, provider: str, context: Optional[str]) -> tuple[str, str, str]:
        return (self.account_id, provider, context or DEFAULT_CONTEXT)

    def _html_url(self, provider: str, config: BuildIdConfig, context: Optional[str]) -> str:
        if config.needs_context:
            if not context:
                raise MissingContext(provider, config.context_placeholder)
            url = fill_template(config.html_url, {config.context_placeholder: context})
        else:
            url = config.html_url
        if PLACEHOLDER_RE.search(url):
            raise UnsupportedOperation(provider, "build_id", f"unresolved placeholder in {url}")
        return url

    async def resolve(self, provider: str, context: Optional[str] = None) -> str:
        """Return the build id for provider/context, fetching the HTML page once per session."""
        key = self._key(provider, context)
        if key in self._cache:
            return self._cache[key]

        config = self.configs.get(provider)
        if config is None:
            raise UnsupportedOperation(provider, "build_id")

        html_url = self._html_url(provider, config, context)

        # Always read credentials at time of use
        headers = await self.get_headers()
        logger.info(f"[BUILD_ID] {provider}: fetching {html_url}")
        self.fetch_count += 1
        response = await self.proxy.execute(html_url, "GET", headers, None)
        logger.debug(f"[BUILD_ID] {provider}: status={response.status} bytes={len(response.body or '')}")

        if not response.ok:
            logger.error(f"[BUILD_ID] {provider}: HTML page request failed with HTTP {response.status}")
            raise UpstreamError(response.status, html_url)

        html = response.body or ""
        if is_login_page(html, response.final_url, config.login_markers, config.login_hosts):
            logger.error(f"[BUILD_ID] {provider}: redirected to login page, credentials expired")
            raise CredentialsExpired(provider, "login page returned while resolving build id")

        build_id = extract_build_id(html, config)
        if not build_id:
            logger.error(
                f"[BUILD_ID] {provider}: no build id found, candidate scripts: {candidate_scripts(html)}"
            )
            raise BuildIdNotFound(provider)

        self._cache[key] = build_id
        logger.info(f"[BUILD_ID] {provider}: resolved {build_id}")
        return build_id
