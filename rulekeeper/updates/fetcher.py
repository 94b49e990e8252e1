"""
RuleKeeper Update Fetcher

Retried HTTP retrieval of the manifest, its signature and the ruleset
database artifact.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar, Union

import aiofiles
import httpx

from .. import __version__
from .errors import EmptyDownload, TransientNetworkFailure
from .manifest import require_https

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _RetryableStatus(Exception):
    pass


class RetryingFetcher:
    """
    GETs URLs with a bounded number of attempts.

    Transport errors, HTTP 429 and 5xx responses are retried with capped
    exponential backoff. Any other non-2xx response fails immediately.
    Redirects are not followed.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 6,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize fetcher.

        Args:
            client: Shared client; one is created (and owned) when omitted
            max_attempts: Attempt budget per fetch
            base_delay: First backoff delay in seconds
            max_delay: Backoff ceiling in seconds
            timeout: Request timeout for an owned client
            sleep: Coroutine used between attempts
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": f"RuleKeeper/{__version__}"},
        )
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    def _check_status(self, response: httpx.Response, url: str, attempt: int):
        status = response.status_code
        if status == 429 or status >= 500:
            raise _RetryableStatus(f"HTTP {status}")
        if not response.is_success:
            raise TransientNetworkFailure(
                f"HTTP {status} for {url}", url=url, attempts=attempt
            )

    async def _retry(self, url: str, attempt_fn: Callable[[int], Awaitable[T]]) -> T:
        last_error: Union[Exception, None] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await attempt_fn(attempt)
            except (httpx.TransportError, _RetryableStatus) as e:
                last_error = e

            if attempt >= self.max_attempts:
                break

            delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
            logger.warning(
                f"Request for {url} failed (attempt {attempt}/{self.max_attempts}): "
                f"{last_error}. Retrying in {delay:.2f}s"
            )
            await self._sleep(delay)

        raise TransientNetworkFailure(
            f"Giving up on {url} after {self.max_attempts} attempts: {last_error}",
            url=url,
            attempts=self.max_attempts,
        )

    async def get(self, url: str) -> bytes:
        """
        Fetch a URL and return the raw response body.

        Raises:
            TransientNetworkFailure: Attempts exhausted or a non-retryable status
        """
        async def attempt_get(attempt: int) -> bytes:
            response = await self.client.get(url)
            self._check_status(response, url, attempt)
            return response.content

        body = await self._retry(url, attempt_get)
        logger.debug(f"Fetched {len(body)} bytes from {url}")
        return body

    async def download(self, url: str, dest: Union[str, Path]) -> int:
        """
        Download a file to ``dest``.

        The body is streamed into a ``.part`` sibling which is renamed over
        ``dest`` only once complete.

        Returns:
            Number of bytes written

        Raises:
            InsecureSourceURL: ``url`` is not https
            EmptyDownload: The response carried no data
            TransientNetworkFailure: Attempts exhausted or a non-retryable status
        """
        require_https(url)

        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")

        async def attempt_download(attempt: int) -> int:
            size = 0
            async with self.client.stream("GET", url) as response:
                self._check_status(response, url, attempt)
                async with aiofiles.open(part, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        await f.write(chunk)
            return size

        try:
            size = await self._retry(url, attempt_download)

            if size == 0:
                raise EmptyDownload(f"No database data received from {url}", url=url)

            os.replace(part, dest)
        finally:
            part.unlink(missing_ok=True)

        logger.info(f"Downloaded {size} bytes from {url} to {dest}")
        return size
