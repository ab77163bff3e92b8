"""
captionline.stages.download - Stream the source asset to local storage.

Bytes go to ``<name>.part`` and are renamed only once the stream ends, so a
file under its final name is a complete download and can be reused.
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from captionline.catalog.client import classify_response, classify_transport_error
from captionline.exceptions import DownloadError
from captionline.models import Item
from captionline.retry import RetryController

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class DownloadStage:
    """Fetches an item's source asset, reusing a finished local copy."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        retry: RetryController,
        timeout: float = 300.0,
    ) -> None:
        self._http = http_client
        self.retry = retry
        self.timeout = timeout

    async def _stream(self, url: str, dest: Path, label: str) -> int:
        part = dest.with_name(dest.name + ".part")
        written = 0
        try:
            async with self._http.stream("GET", url, timeout=self.timeout) as response:
                if response.is_error:
                    await response.aread()
                    error = classify_response(response, label)
                    if error is not None:
                        raise error
                with open(part, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as e:
            part.unlink(missing_ok=True)
            raise classify_transport_error(e, label) from e
        if written == 0:
            part.unlink(missing_ok=True)
            raise DownloadError(f"{label}: empty response body")
        part.replace(dest)
        return written

    async def fetch(self, item: Item, dest: Path) -> Path:
        """Download ``item.asset_url`` to ``dest`` unless already present.

        Raises:
            DownloadError: If the item has no asset URL or the body is empty
            RemoteError: Classified HTTP failure after retries
        """
        if dest.exists() and dest.stat().st_size > 0:
            logger.info("Already downloaded: %s", item.title)
            return dest
        if not item.asset_url:
            raise DownloadError(f"Item {item.id} has no downloadable asset")

        dest.parent.mkdir(parents=True, exist_ok=True)
        label = f"Download {item.title or item.id}"
        size = await self.retry.call(lambda: self._stream(item.asset_url, dest, label), label)
        logger.info("Downloaded %s (%.1f MB)", item.title, size / (1024 * 1024))
        return dest
