"""Retrieve raw calendar documents from local files or http(s) URLs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import httpx

from icalmerger.core.exceptions import (
    FetchAuthError,
    FetchError,
    FetchNetworkError,
    FetchNotFoundError,
    FetchTimeoutError,
)
from icalmerger.core.http_client import (
    build_timeout,
    get_shared_client,
    record_client_error,
    record_client_success,
)

from .models import IcsSource

logger = logging.getLogger(__name__)

FILE_URL_PREFIX = "file://"
DEFAULT_MAX_CONCURRENCY = 4


@dataclass
class FetchResult:
    """Outcome of fetching one source: either content or the error."""

    source: IcsSource
    content: Optional[bytes] = None
    error: Optional[FetchError] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.content is not None


def local_path_for(url: str) -> Path:
    """Map a file:// URL (or bare path) to a filesystem path.

    `file://./calendars/work.ics` is taken as the relative path
    `./calendars/work.ics`, matching how local mode builds its URLs.
    """
    if url.lower().startswith(FILE_URL_PREFIX):
        url = url[len(FILE_URL_PREFIX) :]
    return Path(unquote(url))


class IcsFetcher:
    """Async fetcher for calendar sources.

    Remote sources go through a pooled httpx client (shared per process unless
    one is injected); local sources are read in a worker thread.
    """

    def __init__(
        self,
        request_timeout: float = 30,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize fetcher.

        Args:
            request_timeout: Default read timeout for remote sources, in seconds
            client: Explicit client to use instead of the shared one
        """
        self.request_timeout = request_timeout
        self.client = client
        self._use_shared_client = client is None
        self._client_id = "fetcher"

    async def __aenter__(self) -> IcsFetcher:
        await self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        if self._use_shared_client:
            # Shared clients are closed on shutdown, just drop the reference
            self.client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = await get_shared_client(
                self._client_id, timeout=build_timeout(self.request_timeout)
            )
        return self.client

    @staticmethod
    def _validate_remote_url(url: str) -> bool:
        try:
            parsed = urlparse(url)
            hostname = parsed.hostname
        except ValueError:
            logger.debug("Blocked unparseable URL: %s", url)
            return False
        if parsed.scheme not in ("http", "https"):
            logger.debug("Blocked non-HTTP(S) URL: %s", url)
            return False
        if not hostname:
            logger.debug("Blocked URL with missing hostname: %s", url)
            return False
        return True

    async def fetch(self, source: IcsSource) -> bytes:
        """Return the raw bytes of `source`.

        Args:
            source: Calendar source (file://, bare path or http(s) URL)

        Returns:
            Document bytes, never empty

        Raises:
            FetchNotFoundError: Missing file or HTTP 404
            FetchAuthError: HTTP 401/403
            FetchTimeoutError: Remote source did not answer in time
            FetchNetworkError: Connection failure or other non-2xx status
            FetchError: Unreadable file, invalid URL or empty document
        """
        if source.is_local:
            content = await self._fetch_local(source)
        else:
            content = await self._fetch_remote(source)

        if not content.strip():
            raise FetchError(f"{source.name}: empty document", source_name=source.name)
        logger.debug("Fetched %s (%d bytes)", source.name, len(content))
        return content

    async def _fetch_local(self, source: IcsSource) -> bytes:
        path = local_path_for(source.url)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise FetchNotFoundError(
                f"{source.name}: file not found: {path}", source_name=source.name
            ) from e
        except (OSError, ValueError) as e:
            raise FetchError(
                f"{source.name}: cannot read {path}: {e}", source_name=source.name
            ) from e

    async def _fetch_remote(self, source: IcsSource) -> bytes:
        if not self._validate_remote_url(source.url):
            raise FetchError(
                f"{source.name}: invalid URL {source.url!r}", source_name=source.name
            )

        client = await self._ensure_client()
        headers = {**source.auth.get_headers(), **source.custom_headers}
        read_timeout = source.timeout or self.request_timeout
        try:
            response = await client.get(
                source.url, headers=headers, timeout=build_timeout(read_timeout)
            )
        except httpx.InvalidURL as e:
            raise FetchError(
                f"{source.name}: invalid URL {source.url!r}: {e}", source_name=source.name
            ) from e
        except httpx.TimeoutException as e:
            await self._record_error()
            raise FetchTimeoutError(
                f"{source.name}: request timeout after {read_timeout}s", source_name=source.name
            ) from e
        except httpx.HTTPError as e:
            await self._record_error()
            raise FetchNetworkError(
                f"{source.name}: network error: {e}", source_name=source.name
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise FetchAuthError(
                f"{source.name}: access denied (HTTP {status})",
                source_name=source.name,
                status_code=status,
            )
        if status == 404:
            raise FetchNotFoundError(
                f"{source.name}: not found (HTTP 404)", source_name=source.name, status_code=status
            )
        if not response.is_success:
            await self._record_error()
            raise FetchNetworkError(
                f"{source.name}: HTTP {status} {response.reason_phrase}",
                source_name=source.name,
                status_code=status,
            )

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.debug("Unexpected content type for %s: %s", source.name, content_type)

        if self._use_shared_client:
            await record_client_success(self._client_id)
        return response.content

    async def _record_error(self) -> None:
        if self._use_shared_client:
            await record_client_error(self._client_id)

    async def fetch_many(
        self,
        sources: Sequence[IcsSource],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> list[FetchResult]:
        """Fetch all sources concurrently; failures are captured per source.

        Returns:
            One FetchResult per source, in input order
        """
        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def _fetch_one(source: IcsSource) -> FetchResult:
            async with semaphore:
                try:
                    return FetchResult(source=source, content=await self.fetch(source))
                except FetchError as e:
                    logger.warning("Fetch failed for %s: %s", source.name, e)
                    return FetchResult(source=source, error=e)

        return list(await asyncio.gather(*(_fetch_one(source) for source in sources)))
