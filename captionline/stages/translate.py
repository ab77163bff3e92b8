"""
captionline.stages.translate - Batched subtitle translation.

The source document is split into records; text units are translated in
batches of fixed size, one service call per batch, then put back at their
original positions. The stage never invents output: in strict mode a short
or malformed response is an error, and any unit that comes back empty,
untranslated or as a placeholder fails the whole stage. Lenient mode pads
short batches with placeholders and lets only those through to the
verification gate.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from captionline.exceptions import (
    TranslationCountMismatchError,
    TranslationValidationError,
)
from captionline.llm.client import TranslationService
from captionline.llm.templates import PromptTemplateManager
from captionline.models import Batch
from captionline.retry import RetryController, Sleeper
from captionline.utils import truncate
from captionline.vtt import contains_letters, parse_records, reconstruct, text_units

logger = logging.getLogger(__name__)

_NUMBERING = re.compile(r"^\s*(?:\d+\s*[.):\-]|\(\d+\))\s*")
_FENCE = re.compile(r"^\s*```")


@dataclass
class TranslationResult:
    language: str
    content: str
    units: int
    batches: int
    placeholders: int = 0


def make_placeholder(source: str, target_language: str) -> str:
    """Legacy padding line; matched by ``placeholder_pattern(target_language)``."""
    return f"[{target_language.upper()}] {source}"


def placeholder_pattern(language: str) -> re.Pattern[str]:
    """Matches the padding marker for one language, e.g. ``[FR] ...``.

    Keyed to the artifact's own language so caption annotations such as
    ``[SFX]`` or ``[MUSIC]`` are left alone.
    """
    return re.compile(rf"^\[{re.escape(language.upper())}\](?:\s|$)")


def compile_patterns(patterns: Sequence[str]) -> list[re.Pattern[str]]:
    return [re.compile(p) for p in patterns]


@dataclass(frozen=True)
class UnitProblem:
    """A translated unit that cannot be accepted as a translation."""

    position: int
    kind: str
    text: str = ""

    def __str__(self) -> str:
        if self.kind == "empty":
            return f"unit {self.position} is empty"
        if self.kind == "placeholder":
            return f"unit {self.position} is a placeholder: {truncate(self.text)!r}"
        return f"unit {self.position} is untranslated: {truncate(self.text)!r}"


def parse_batch_response(
    response: str,
    sources: list[str],
    target_language: str,
    strict: bool = True,
) -> tuple[list[str], int]:
    """Split a batch response into exactly ``len(sources)`` translations.

    Numbering such as ``1.`` or ``2)`` is stripped and blank lines and code
    fences are ignored. If at least as many numbered lines as sources are
    present, unnumbered lines (preambles, commentary) are dropped. Extra
    lines beyond the batch size are discarded.

    Returns:
        (translations, number of placeholder lines padded in)

    Raises:
        TranslationCountMismatchError: Too few lines in strict mode
    """
    expected = len(sources)
    numbered: list[str] = []
    plain: list[str] = []
    for raw in response.splitlines():
        if _FENCE.match(raw) or not raw.strip():
            continue
        match = _NUMBERING.match(raw)
        line = raw[match.end() :].strip() if match else raw.strip()
        if not line:
            continue
        plain.append(line)
        if match:
            numbered.append(line)

    lines = numbered if len(numbered) >= expected else plain

    if len(lines) < expected:
        if strict:
            raise TranslationCountMismatchError(expected, len(lines), target_language)
        missing = expected - len(lines)
        logger.warning(
            "Batch returned %d/%d lines for %s; padding %d placeholder(s)",
            len(lines),
            expected,
            target_language.upper(),
            missing,
        )
        padded = lines + [make_placeholder(s, target_language) for s in sources[len(lines) :]]
        return padded, missing

    return lines[:expected], 0


def find_disguised_failures(
    sources: list[str],
    translations: list[str],
    patterns: Sequence[re.Pattern[str]],
) -> list[UnitProblem]:
    """Find every unit that is empty, a placeholder, or a verbatim copy.

    Lines without letters (music symbols, numbers, punctuation) may
    legitimately come back unchanged.
    """
    problems = []
    for position, (source, translated) in enumerate(zip(sources, translations), start=1):
        text = translated.strip()
        if not text:
            problems.append(UnitProblem(position, "empty"))
        elif any(p.search(text) for p in patterns):
            problems.append(UnitProblem(position, "placeholder", text))
        elif text == source.strip() and contains_letters(text):
            problems.append(UnitProblem(position, "untranslated", text))
    return problems


class TranslationStage:
    """Translates a subtitle document into one target language."""

    def __init__(
        self,
        service: TranslationService,
        retry: RetryController,
        templates: PromptTemplateManager | None = None,
        batch_size: int = 10,
        strict: bool = True,
        batch_delay: float = 5.0,
        placeholder_patterns: Sequence[str] = (),
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.service = service
        self.retry = retry
        self.templates = templates or PromptTemplateManager()
        self.batch_size = batch_size
        self.strict = strict
        self.batch_delay = batch_delay
        self.patterns = compile_patterns(placeholder_patterns)
        self._sleep = sleep

    def make_batches(self, units: list[str]) -> list[Batch]:
        return [
            Batch(index=i // self.batch_size, sources=units[i : i + self.batch_size])
            for i in range(0, len(units), self.batch_size)
        ]

    async def translate_batch(
        self, batch: Batch, source_language: str, target_language: str
    ) -> int:
        """Fill ``batch.translations``; return the number of placeholders padded."""
        system, prompt = self.templates.translation_prompts(
            batch.sources, source_language, target_language
        )
        label = f"Translate batch {batch.index + 1} to {target_language.upper()}"
        response = await self.retry.call(lambda: self.service.complete(system, prompt), label)
        batch.translations, padded = parse_batch_response(
            response, batch.sources, target_language, strict=self.strict
        )
        if not batch.complete:
            raise TranslationCountMismatchError(
                len(batch.sources), len(batch.translations), target_language
            )
        return padded

    async def translate_document(
        self, content: str, source_language: str, target_language: str
    ) -> TranslationResult:
        """Translate every text unit of ``content`` and rebuild the document.

        Raises:
            TranslationCountMismatchError: A batch came back short (strict mode)
            TranslationValidationError: A unit is empty or untranslated, or
                a placeholder in strict mode
            RemoteError: The service failed after retries
        """
        records = parse_records(content)
        units = text_units(records)
        batches = self.make_batches(units)
        logger.info(
            "Translating %d subtitle lines to %s in %d batch(es)",
            len(units),
            target_language.upper(),
            len(batches),
        )

        translations: list[str] = []
        placeholders = 0
        for position, batch in enumerate(batches):
            if position > 0 and self.batch_delay > 0:
                await self._sleep(self.batch_delay)
            placeholders += await self.translate_batch(batch, source_language, target_language)
            translations.extend(batch.translations)

        if len(translations) != len(units):
            raise TranslationCountMismatchError(len(units), len(translations), target_language)

        patterns = [*self.patterns, placeholder_pattern(target_language)]
        problems = find_disguised_failures(units, translations, patterns)
        # Lenient mode only tolerates padding; the gate rejects it later.
        rejected = [p for p in problems if self.strict or p.kind != "placeholder"]
        if rejected:
            raise TranslationValidationError(
                f"{len(rejected)} bad unit(s) in {target_language.upper()} translation: "
                f"{rejected[0]}",
                [str(p) for p in rejected],
            )
        if problems:
            logger.warning(
                "%d placeholder unit(s) in %s translation (lenient mode, left for verification)",
                len(problems),
                target_language.upper(),
            )

        return TranslationResult(
            language=target_language,
            content=reconstruct(records, translations),
            units=len(units),
            batches=len(batches),
            placeholders=placeholders,
        )
