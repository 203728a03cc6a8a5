"""HTTP proxy client: the single network boundary of the pipeline."""
import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from paysync.config import config

logger = logging.getLogger(__name__)


class ProxyResponse(BaseModel):
    """Raw upstream response."""

    status: int
    body: str = ""
    final_url: Optional[str] = None
    response_headers: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ProxyClient(Protocol):
    """Executes one HTTP request and reports where redirects ended."""

    async def execute(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> ProxyResponse: ...


class HttpxProxyClient:
    """ProxyClient backed by httpx with redirect following and transport retries."""

    def __init__(self, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)
        self.client = client or httpx.AsyncClient(
            timeout=timeout or config.TIMEOUT,
            follow_redirects=True,
            limits=limits,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def execute(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> ProxyResponse:
        """Send a request with the replayed session headers."""
        request_headers = dict(headers or {})
        if not any(k.lower() == "user-agent" for k in request_headers):
            request_headers["User-Agent"] = config.USER_AGENT

        try:
            response = await self.client.request(
                method.upper(),
                url,
                headers=request_headers,
                content=body.encode("utf-8") if body is not None else None,
            )
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            logger.warning(f"Network error for {method} {url}: {e}")
            raise

        return ProxyResponse(
            status=response.status_code,
            body=response.text,
            final_url=str(response.url),
            response_headers=[f"{k}: {v}" for k, v in response.headers.multi_items()],
        )
