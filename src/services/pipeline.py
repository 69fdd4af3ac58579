import asyncio
import ipaddress
from urllib.parse import urlparse

import httpx
import structlog

from src.core.exceptions import DownloadFailedError, InvalidRequestError, UploadFailedError
from src.schemas.proxy import ProxyResponse
from src.services import content_sniffer
from src.services.fetcher import Fetcher
from src.services.naming import NameGenerator
from src.services.retry import RetryPolicy
from src.services.storage import Store

logger = structlog.get_logger()


def _is_blocked_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast or ip.is_unspecified


def validate_fetch_url(raw_url: str, block_private_hosts: bool = True) -> str:
    url = raw_url.strip()
    if not url:
        raise InvalidRequestError("empty url")
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        httpx.URL(url)
    except (ValueError, httpx.InvalidURL) as e:
        raise InvalidRequestError(f"malformed url: {url[:80]}") from e
    if parsed.scheme.lower() not in ("http", "https") or not hostname:
        raise InvalidRequestError(f"malformed url: {url[:80]}")
    if block_private_hosts:
        if hostname == "localhost" or hostname.endswith(".localhost") or _is_blocked_ip(hostname):
            raise InvalidRequestError(f"blocked host: {hostname}")
    return url


class ProxyPipeline:
    """Fetch a remote image, store it under a fresh key and report its public URL."""

    def __init__(
        self,
        fetcher: Fetcher,
        retry: RetryPolicy,
        names: NameGenerator,
        store: Store,
        custom_domain: str,
        block_private_hosts: bool = True,
    ) -> None:
        self.fetcher = fetcher
        self.retry = retry
        self.names = names
        self.store = store
        self.custom_domain = custom_domain.rstrip("/")
        self.block_private_hosts = block_private_hosts

    def public_url(self, key: str) -> str:
        return f"{self.custom_domain}/{key}"

    async def ingest(self, raw_url: str) -> ProxyResponse:
        url = validate_fetch_url(raw_url, self.block_private_hosts)

        try:
            result = await self.retry.run(self.fetcher.fetch, url)
        except DownloadFailedError as e:
            logger.error("image_download_failed", url=url, attempts=e.attempts, error=str(e.last_error))
            raise UploadFailedError(url) from e

        ext, media_type = content_sniffer.resolve(result.media_type)
        key = self.names.generate_key(ext)
        await asyncio.to_thread(self.store.write, key, result.content)

        logger.info("image_ingested", url=url, key=key, media_type=media_type, size=len(result.content))
        return ProxyResponse(success=True, url=self.public_url(key), type=media_type, size=len(result.content))
