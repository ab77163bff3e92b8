"""
captionline.catalog.client - Async client for the video catalog REST API.

Speaks the api.video-style endpoints (auth, paginated listing, captions).
HTTP failures are translated into typed errors here so callers never
inspect status codes or message text, and every public call is routed
through the RetryController with the shared AuthSession.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from captionline.catalog.session import AuthSession, Credential
from captionline.config import CaptionlineConfig, RetrySettings
from captionline.exceptions import (
    AuthExpiredError,
    CaptionExistsError,
    FatalRemoteError,
    NotFoundError,
    RateLimitedError,
    RemoteError,
    TransientError,
)
from captionline.models import Item
from captionline.retry import RetryController, Sleeper

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=60.0, pool=None)


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("title") or payload.get("message")
        return str(detail or payload)
    return str(payload)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def classify_response(response: httpx.Response, label: str) -> RemoteError | None:
    """Map an HTTP response to a typed error, or None on success."""
    status = response.status_code
    if status < 400:
        return None
    detail = _error_detail(response)
    message = f"{label}: HTTP {status} {detail}".strip()
    if status == 401:
        return AuthExpiredError(message, status)
    if status == 429:
        return RateLimitedError(message, status, retry_after=_retry_after(response))
    if status >= 500:
        return TransientError(message, status)
    if status == 404:
        return NotFoundError(message, status)
    if status in (400, 409) and "already exists" in detail.lower():
        return CaptionExistsError(message, status)
    return FatalRemoteError(message, status)


def classify_transport_error(error: httpx.HTTPError, label: str) -> RemoteError:
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return TransientError(f"{label}: {error.__class__.__name__}: {error}")
    return FatalRemoteError(f"{label}: {error}")


class CatalogClient:
    """Catalog service client with typed errors, auth session and retries."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        http_client: httpx.AsyncClient | None = None,
        retry_settings: RetrySettings | None = None,
        page_size: int = 100,
        refresh_margin: float = 300.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.page_size = page_size
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self.session = AuthSession(self.authenticate, refresh_margin=refresh_margin)
        self.retry = RetryController.from_settings(
            retry_settings or RetrySettings(), session=self.session, sleep=sleep
        )

    @classmethod
    def from_config(
        cls,
        config: CaptionlineConfig,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> CatalogClient:
        return cls(
            base_url=config.catalog_base_url,
            api_key=config.catalog_api_key,
            http_client=http_client,
            retry_settings=config.retry,
            page_size=config.page_size,
            refresh_margin=config.token_refresh_margin,
            sleep=sleep,
        )

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _send(self, method: str, path: str, label: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, label) from e
        error = classify_response(response, label)
        if error is not None:
            raise error
        return response

    async def _authed(self, method: str, path: str, label: str, **kwargs: Any) -> httpx.Response:
        async def attempt() -> httpx.Response:
            headers = {"Authorization": f"Bearer {self.session.token}"}
            return await self._send(method, path, label, headers=headers, **kwargs)

        return await self.retry.call(attempt, label, needs_auth=True)

    async def authenticate(self) -> Credential:
        """Exchange the API key for an access token.

        Raises:
            FatalRemoteError: If no key is configured or the key is rejected
        """
        if not self.api_key:
            raise FatalRemoteError("No catalog API key configured (set CAPTIONLINE_API_KEY)")
        label = "Authenticate"
        try:
            response = await self._send(
                "POST", "/auth/api-key", label, json={"apiKey": self.api_key}
            )
        except AuthExpiredError as e:
            raise FatalRemoteError(f"Catalog rejected the API key: {e}", e.status_code) from e
        payload = response.json()
        expires_in = float(payload.get("expires_in", 3600))
        logger.info("Authenticated with catalog (token valid %.0fs)", expires_in)
        return Credential(token=payload["access_token"], expires_at=time.time() + expires_in)

    async def list_page(self, page: int) -> tuple[list[Item], int]:
        response = await self._authed(
            "GET",
            "/videos",
            f"List catalog page {page}",
            params={"currentPage": page, "pageSize": self.page_size},
        )
        payload = response.json()
        items = [Item.from_catalog(entry) for entry in payload.get("data", [])]
        pages_total = int((payload.get("pagination") or {}).get("pagesTotal", page))
        return items, pages_total

    async def list_items(self) -> list[Item]:
        """Fetch every item across all pages."""
        items: list[Item] = []
        page = 1
        while True:
            page_items, pages_total = await self.list_page(page)
            items.extend(page_items)
            logger.info("Fetched catalog page %d/%d (%d items)", page, pages_total, len(page_items))
            if page >= pages_total:
                break
            page += 1
        return items

    async def delete_item(self, item_id: str) -> None:
        await self._authed("DELETE", f"/videos/{item_id}", f"Delete item {item_id}")

    async def get_captions(self, item_id: str) -> list[dict[str, Any]]:
        response = await self._authed(
            "GET", f"/videos/{item_id}/captions", f"List captions for {item_id}"
        )
        return list(response.json().get("data", []))

    async def caption_languages(self, item_id: str) -> set[str]:
        return {c.get("srclang") for c in await self.get_captions(item_id) if c.get("srclang")}

    async def put_caption(
        self, item_id: str, language: str, content: str, filename: str | None = None
    ) -> dict[str, Any]:
        files = {
            "file": (filename or f"{item_id}_{language}.vtt", content.encode("utf-8"), "text/vtt")
        }
        response = await self._authed(
            "POST",
            f"/videos/{item_id}/captions/{language}",
            f"Upload {language.upper()} caption for {item_id}",
            files=files,
        )
        return response.json() if response.content else {}

    async def delete_caption(self, item_id: str, language: str) -> None:
        await self._authed(
            "DELETE",
            f"/videos/{item_id}/captions/{language}",
            f"Delete {language.upper()} caption for {item_id}",
        )
