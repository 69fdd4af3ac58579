import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.core.exceptions import DownloadFailedError, FetchError, RemoteClientError
from src.services.fetcher import FetchResult

logger = structlog.get_logger()

RetryPredicate = Callable[[Exception], bool]


def retry_all(error: Exception) -> bool:
    return isinstance(error, FetchError)


def retry_transient(error: Exception) -> bool:
    return isinstance(error, FetchError) and not isinstance(error, RemoteClientError)


def linear_backoff(attempt: int) -> float:
    return float(attempt)


class RetryPolicy:
    """Bounded retries with linear backoff: sleeps ``i`` seconds after failed attempt ``i``."""

    def __init__(
        self,
        max_attempts: int = 3,
        retry_on: RetryPredicate = retry_all,
        backoff: Callable[[int], float] = linear_backoff,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.retry_on = retry_on
        self.backoff = backoff
        self._sleep = sleep

    async def run(self, fetch: Callable[[str], Awaitable[FetchResult]], url: str) -> FetchResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fetch(url)
            except FetchError as e:
                logger.warning(
                    "fetch_attempt_failed",
                    url=url,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=str(e),
                )
                if attempt >= self.max_attempts or not self.retry_on(e):
                    raise DownloadFailedError(url, attempt, e) from e
            await self._sleep(self.backoff(attempt))
