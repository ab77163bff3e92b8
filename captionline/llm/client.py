"""
captionline.llm.client - Translation service backend using litellm.

The client makes exactly one request per call and reports failures as typed
remote errors; retrying is the RetryController's job. The model is either
forced from the config or chosen at startup by probing a cost-ordered list.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from captionline.exceptions import (
    FatalRemoteError,
    RateLimitedError,
    RemoteError,
    TransientError,
)

logger = logging.getLogger(__name__)

CHECK_SYSTEM = "You are a translator. Reply with the translation only."
CHECK_PROMPT = 'Translate from English to French: "Hello, world!"'


class TranslationService(Protocol):
    """Anything that turns (system instruction, prompt) into text."""

    async def complete(self, system: str, prompt: str) -> str: ...


def classify_llm_error(error: Exception, model: str) -> RemoteError:
    """Map a litellm/provider exception to a typed remote error."""
    import litellm

    message = f"{model}: {error.__class__.__name__}: {error}"
    if isinstance(error, litellm.RateLimitError):
        return RateLimitedError(message, getattr(error, "status_code", 429))
    transient = (
        litellm.Timeout,
        litellm.APIConnectionError,
        litellm.ServiceUnavailableError,
        litellm.InternalServerError,
    )
    if isinstance(error, transient):
        return TransientError(message, getattr(error, "status_code", None))
    return FatalRemoteError(message, getattr(error, "status_code", None))


class LLMClient:
    """litellm wrapper with model selection and token accounting."""

    def __init__(
        self,
        models: list[str] | None = None,
        forced_model: str | None = None,
        timeout: float = 60.0,
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ) -> None:
        self.models = list(models or [])
        self.forced_model = forced_model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.model: str | None = forced_model
        self._token_usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    async def _acompletion(self, model: str, system: str, prompt: str) -> str:
        from captionline.exceptions import ConfigError

        try:
            import litellm
        except ImportError as e:
            raise ConfigError("litellm not installed. Install with: pip install litellm") from e

        litellm.telemetry = False

        try:
            response = await litellm.acompletion(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        except Exception as e:
            raise classify_llm_error(e, model) from e

        usage = getattr(response, "usage", None)
        if usage:
            self._token_usage["prompt_tokens"] += getattr(usage, "prompt_tokens", 0) or 0
            self._token_usage["completion_tokens"] += getattr(usage, "completion_tokens", 0) or 0
            self._token_usage["total_tokens"] += getattr(usage, "total_tokens", 0) or 0

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise TransientError(f"{model}: empty response")
        content = getattr(getattr(choices[0], "message", None), "content", None)
        if not content:
            raise TransientError(f"{model}: response has no content")
        return content.strip()

    async def initialize(self) -> str:
        """Select the model to use.

        A forced model is used as-is. Otherwise each candidate is tried in
        order and the first one that returns a real translation wins.

        Raises:
            FatalRemoteError: If no candidate model responds
        """
        if self.forced_model:
            self.model = self.forced_model
            logger.info("Using forced translation model %s", self.model)
            return self.model

        failures = []
        for candidate in self.models:
            try:
                reply = await self._acompletion(candidate, CHECK_SYSTEM, CHECK_PROMPT)
            except RemoteError as e:
                logger.warning("Translation model %s unavailable: %s", candidate, e)
                failures.append(f"{candidate} ({e.kind})")
                continue
            if reply.strip().strip('"') == "Hello, world!":
                failures.append(f"{candidate} (echoed input)")
                continue
            self.model = candidate
            logger.info("Selected translation model %s", candidate)
            return candidate

        raise FatalRemoteError(
            "No translation model available: " + (", ".join(failures) or "none configured")
        )

    async def complete(self, system: str, prompt: str) -> str:
        """Send one request to the selected model.

        Raises:
            RateLimitedError, TransientError, FatalRemoteError
        """
        if self.model is None:
            await self.initialize()
        assert self.model is not None
        return await self._acompletion(self.model, system, prompt)

    def get_token_usage(self) -> dict[str, int]:
        """Get cumulative token usage."""
        return self._token_usage.copy()


def create_client_from_config(config: Any) -> LLMClient:
    """Create an LLM client from CaptionlineConfig."""
    return LLMClient(
        models=config.translation_models,
        forced_model=config.translation_model,
        timeout=config.translation_timeout,
        temperature=config.translation_temperature,
    )
