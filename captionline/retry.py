"""
captionline.retry - Classification-aware retry/backoff controller.

Every remote call in the pipeline goes through RetryController.call().
The controller branches on the typed errors raised by the networking
layer:

- AuthExpiredError: refresh the session and retry at once. Does not use
  the attempt budget, but refreshes per call are capped.
- TransientError (including RateLimitedError): exponential backoff, one
  budget unit per attempt, the last error propagates on exhaustion.
- anything else: propagate immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from captionline.exceptions import AuthExpiredError, RateLimitedError, TransientError
from captionline.models import RetryState

if TYPE_CHECKING:
    from captionline.catalog.session import AuthSession
    from captionline.config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


class RetryController:
    """Wraps remote operations with bounded, typed retry."""

    def __init__(
        self,
        session: AuthSession | None = None,
        max_attempts: int = 3,
        base_delay: float = 30.0,
        max_delay: float = 300.0,
        max_auth_refreshes: int = 2,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.session = session
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_auth_refreshes = max_auth_refreshes
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        session: AuthSession | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> RetryController:
        return cls(
            session=session,
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            max_auth_refreshes=settings.max_auth_refreshes,
            sleep=sleep,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt: base * 2^(attempt-1), capped."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str,
        max_attempts: int | None = None,
        needs_auth: bool = False,
    ) -> T:
        """Run ``operation`` until it succeeds or its error is not retryable.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            label: Human-readable name used in log messages
            max_attempts: Override of the controller's attempt budget
            needs_auth: Check and refresh the session credential before each attempt

        Returns:
            The operation's result

        Raises:
            The last classified error once retries are exhausted, or any
            non-retryable error immediately.
        """
        state = RetryState(label=label, max_attempts=max_attempts or self.max_attempts)

        while True:
            if needs_auth and self.session is not None:
                await self.session.ensure_fresh()

            state.attempt += 1
            try:
                return await operation()
            except AuthExpiredError as e:
                state.last_error_kind = e.kind
                state.attempt -= 1
                if self.session is None or state.auth_refreshes >= self.max_auth_refreshes:
                    logger.error("%s: credential rejected, giving up", label)
                    raise
                state.auth_refreshes += 1
                logger.warning(
                    "%s: credential expired, refreshing (%d/%d)",
                    label,
                    state.auth_refreshes,
                    self.max_auth_refreshes,
                )
                await self.session.refresh()
                continue
            except TransientError as e:
                state.last_error_kind = e.kind
                if state.exhausted:
                    logger.error(
                        "%s failed after %d attempt(s) (%s): %s",
                        label,
                        state.attempt,
                        e.kind,
                        e,
                    )
                    raise
                delay = self.backoff_delay(state.attempt)
                if isinstance(e, RateLimitedError) and e.retry_after is not None:
                    delay = min(max(e.retry_after, 0.0), self.max_delay)
                state.next_delay = delay
                logger.warning(
                    "%s %s (attempt %d/%d), waiting %.1fs",
                    label,
                    "rate limited" if isinstance(e, RateLimitedError) else "failed transiently",
                    state.attempt,
                    state.max_attempts,
                    delay,
                )
                await self._sleep(delay)
