"""
Source fetcher.

Downloads the source asset into a workspace file with httpx, streaming the
body to disk and enforcing both a size ceiling and a wall-clock deadline.
Certificate verification is always on.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

import httpx

from mediaproc.config import Settings
from mediaproc.core.pipeline.errors import FetchError, FetchReason

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB
USER_AGENT = "mediaproc-fetcher"


class SourceFetcher:
    """Retrieves a remote resource into a local file."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_seconds = settings.fetch_timeout_seconds
        self.connect_timeout_seconds = settings.fetch_connect_timeout_seconds
        self.max_bytes = settings.max_source_bytes
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )

    async def fetch(self, source_location: str, destination: Path) -> int:
        """
        Stream ``source_location`` into ``destination``.

        Returns:
            Number of bytes written.

        Raises:
            FetchError: unreachable, non2xx, timeout or transferError.
        """
        started = time.monotonic()
        try:
            written = await asyncio.wait_for(
                self._download(source_location, destination),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                FetchReason.TIMEOUT,
                f"Download did not finish within {self.timeout_seconds:.0f}s",
            ) from e

        logger.info(
            "Fetched %d bytes from %s in %.2fs",
            written,
            source_location,
            time.monotonic() - started,
        )
        return written

    async def _download(self, source_location: str, destination: Path) -> int:
        try:
            async with self._client() as client:
                async with client.stream("GET", source_location) as response:
                    if not response.is_success:
                        raise FetchError(
                            FetchReason.NON_2XX,
                            f"Source responded with HTTP {response.status_code}",
                            details={"status_code": response.status_code},
                        )
                    self._check_declared_length(response)
                    return await self._write_body(response, destination)
        except FetchError:
            raise
        except httpx.TimeoutException as e:
            raise FetchError(FetchReason.TIMEOUT, f"Timed out fetching source: {e}") from e
        except (httpx.ConnectError, httpx.UnsupportedProtocol, httpx.TooManyRedirects) as e:
            raise FetchError(FetchReason.UNREACHABLE, f"Source unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise FetchError(FetchReason.TRANSFER_ERROR, f"Transfer failed: {e}") from e
        except OSError as e:
            raise FetchError(FetchReason.TRANSFER_ERROR, f"Could not write source to disk: {e}") from e

    def _check_declared_length(self, response: httpx.Response) -> None:
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise FetchError(
                FetchReason.TRANSFER_ERROR,
                f"Source is {declared} bytes, limit is {self.max_bytes}",
            )

    async def _write_body(self, response: httpx.Response, destination: Path) -> int:
        written = 0
        with open(destination, "wb") as f:
            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                written += len(chunk)
                if written > self.max_bytes:
                    raise FetchError(
                        FetchReason.TRANSFER_ERROR,
                        f"Source exceeds the {self.max_bytes} byte limit",
                    )
                await asyncio.to_thread(f.write, chunk)
        return written
