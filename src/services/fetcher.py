import asyncio
from dataclasses import dataclass

import httpx
import structlog

from src.core.exceptions import (
    FetchTimeoutError,
    FetchTooLargeError,
    FetchTransportError,
    RemoteClientError,
    RemoteServerError,
)
from src.services.content_sniffer import normalize_media_type

logger = structlog.get_logger()

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
ERROR_BODY_LIMIT = 100


@dataclass(frozen=True)
class FetchResult:
    content: bytes
    media_type: str


class Fetcher:
    """Single-attempt image download with a hard per-attempt deadline."""

    def __init__(
        self,
        timeout: float = 5.0,
        max_bytes: int = 20 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            )
        return self._client

    async def fetch(self, url: str) -> FetchResult:
        try:
            return await asyncio.wait_for(self._download(url), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeoutError(f"timed out after {self.timeout}s: {url}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchTransportError(str(e) or type(e).__name__) from e

    async def _download(self, url: str) -> FetchResult:
        client = self.get_http_client()
        async with client.stream("GET", url) as response:
            status = response.status_code
            if status >= 500 or status == 429:
                raise RemoteServerError(status, await _error_body(response))
            if status >= 400:
                raise RemoteClientError(status, await _error_body(response))

            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
                raise FetchTooLargeError(f"content length {content_length} exceeds {self.max_bytes}")

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_bytes:
                    raise FetchTooLargeError(f"body exceeds {self.max_bytes} bytes")
                chunks.append(chunk)

            media_type = normalize_media_type(response.headers.get("Content-Type"))
            return FetchResult(content=b"".join(chunks), media_type=media_type)

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


async def _error_body(response: httpx.Response) -> str:
    body = b""
    async for chunk in response.aiter_bytes():
        body += chunk
        if len(body) >= ERROR_BODY_LIMIT:
            break
    return body[:ERROR_BODY_LIMIT].decode("utf-8", errors="replace")
