"""
captionline.catalog.session - Process-wide catalog access credential.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float


Authenticator = Callable[[], Awaitable[Credential]]


class AuthSession:
    """Holds the current access token and refreshes it on demand.

    Refresh is best-effort: concurrent stages that both see a stale token
    may both re-authenticate.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        refresh_margin: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authenticator = authenticator
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._credential: Credential | None = None
        self.refresh_count = 0

    @property
    def token(self) -> str | None:
        return self._credential.token if self._credential else None

    def is_stale(self) -> bool:
        """True if there is no token or it expires within the refresh margin."""
        if self._credential is None:
            return True
        return self._clock() >= self._credential.expires_at - self.refresh_margin

    async def refresh(self) -> Credential:
        self._credential = await self._authenticator()
        self.refresh_count += 1
        logger.debug("Catalog credential refreshed (#%d)", self.refresh_count)
        return self._credential

    async def ensure_fresh(self) -> str:
        if self.is_stale():
            await self.refresh()
        assert self._credential is not None
        return self._credential.token

    def invalidate(self) -> None:
        self._credential = None
