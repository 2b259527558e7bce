import logging
from typing import Optional, Tuple

import urllib3
from urllib3.util.retry import Retry
from urllib3 import exceptions as urllib3_exc

from .errors import FetchError
from .parsing import ParsedDocument
from .types import FetchResult, HttpClientProtocol


logger = logging.getLogger(__name__)


class HttpClient:
    def __init__(self, user_agent: str, request_timeout: float, parallelism: int, max_connections: int = 4):
        self.user_agent = user_agent
        self.timeout = urllib3.Timeout(connect=5.0, read=request_timeout)
        self.http = urllib3.PoolManager(
            num_pools=max(4, parallelism),
            maxsize=max_connections,
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,*/*;q=0.8",
                "Accept-Encoding": "gzip, deflate",
            },
            # retry policy belongs to the crawler; only redirects are followed here
            retries=Retry(connect=0, read=0, status=0, other=0, redirect=5, raise_on_status=False),
        )

    def _request_bytes(self, url: str) -> Tuple[int, str, bytes]:
        try:
            response = self.http.request(
                "GET",
                url,
                timeout=self.timeout,
                preload_content=True,
                headers={"User-Agent": self.user_agent},
            )
        except urllib3_exc.HTTPError as exc:
            logger.debug("GET %s failed: %r", url, exc)
            raise FetchError(url, exc) from exc
        return response.status, response.headers.get("Content-Type", ""), response.data or b""

    def fetch(self, url: str) -> Optional[FetchResult]:
        status, content_type, body = self._request_bytes(url)
        size_bytes = len(body)
        text = ""
        if "text/html" in (content_type or "") or "text/plain" in (content_type or ""):
            text = body.decode("utf-8", errors="ignore")
        return FetchResult(status=status, content_type=content_type or "", text=text, size_bytes=size_bytes)

    def close(self) -> None:
        self.http.clear()


class PageFetcher:
    """Turns one GET into a parsed document, or a FetchError. Never retries."""

    def __init__(self, http: HttpClientProtocol):
        self.http = http

    def fetch(self, url: str) -> Tuple[ParsedDocument, FetchResult]:
        response = self.http.fetch(url)
        if response is None:
            raise FetchError(url, "no response")
        if not 200 <= response.status < 300:
            # client errors other than throttling will not change on retry
            retryable = response.status == 429 or not 400 <= response.status < 500
            raise FetchError(url, f"HTTP status {response.status}", retryable=retryable)
        if "html" not in response.content_type or not response.text.strip():
            raise FetchError(url, f"no HTML body (content type {response.content_type!r})")
        return ParsedDocument.parse(url, response.text), response
