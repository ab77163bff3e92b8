"""
captionline.pipeline - Item processing and the bounded worker pool.

ItemProcessor runs the stages for one item with item-level retry.
PipelineRunner drives K lanes over a shared ordered queue of items; a lane
that finishes an item, successfully or not, immediately takes the next one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from captionline.catalog.client import CatalogClient
from captionline.catalog.source import ItemSource, select_items
from captionline.config import CaptionlineConfig
from captionline.exceptions import CaptionlineError, IncompleteItemError, ItemFailedError
from captionline.io import read_text, remove_files, write_text
from captionline.language import detect_source_language
from captionline.llm.client import TranslationService, create_client_from_config
from captionline.llm.templates import PromptTemplateManager
from captionline.models import Item, ItemFailure, ItemOutcome, RunResult, WorkSlot
from captionline.retry import RetryController, Sleeper
from captionline.stages.download import DownloadStage
from captionline.stages.extract import AudioExtractor
from captionline.stages.transcribe import Transcriber, is_valid_transcript
from captionline.stages.translate import TranslationStage
from captionline.stages.upload import UploadStage
from captionline.stages.verify import VerificationGate, VerificationReport
from captionline.utils import format_duration
from captionline.vtt import parse_records, text_units
from captionline.workspace import Workspace

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Emits run progress at most once per ``interval`` seconds."""

    def __init__(
        self,
        total: int,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        console: Any = None,
    ) -> None:
        self.total = total
        self.interval = interval
        self._clock = clock
        self.console = console
        self._last = clock()
        self.emitted = 0

    def update(self, result: RunResult, in_flight: int, force: bool = False) -> bool:
        """Report progress if the throttle allows it; return True if emitted."""
        now = self._clock()
        if not force and now - self._last < self.interval:
            return False
        self._last = now
        self.emitted += 1
        message = (
            f"Progress: {result.total}/{self.total} done "
            f"({len(result.completed)} completed, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed), {in_flight} in flight"
        )
        if self.console is not None:
            self.console.print(f"[dim]{message}[/dim]")
        else:
            logger.info(message)
        return True


class ItemProcessor:
    """Runs every stage for one item, retrying the item as a whole."""

    def __init__(
        self,
        config: CaptionlineConfig,
        workspace: Workspace,
        downloader: DownloadStage,
        extractor: AudioExtractor,
        transcriber: Transcriber,
        translator: TranslationStage,
        gate: VerificationGate,
        uploader: UploadStage | None = None,
        catalog: CatalogClient | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.config = config
        self.workspace = workspace
        self.downloader = downloader
        self.extractor = extractor
        self.transcriber = transcriber
        self.translator = translator
        self.gate = gate
        self.uploader = uploader
        self.catalog = catalog
        self._sleep = sleep
        self._translation_slots = asyncio.Semaphore(config.translation_concurrency)

    @property
    def languages(self) -> list[str]:
        return list(self.config.languages)

    def backoff_delay(self, attempt: int) -> float:
        """Pause after the given (1-based) failed attempt: base**attempt, capped."""
        return min(self.config.item_backoff_base**attempt, self.config.item_backoff_max)

    async def process(self, item: Item) -> ItemOutcome:
        """Process ``item`` with bounded item-level retries.

        Raises:
            ItemFailedError: After the last attempt fails; temp files are kept
        """
        max_attempts = self.config.item_max_attempts
        last_error: CaptionlineError | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                outcome = await self.process_once(item, attempt)
            except CaptionlineError as e:
                last_error = e
                if attempt >= max_attempts:
                    break
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s: attempt %d/%d failed (%s), retrying in %.0fs",
                    item.title or item.id,
                    attempt,
                    max_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)
                continue
            outcome.attempts = attempt
            return outcome

        reason = f"{last_error.__class__.__name__}: {last_error}"
        logger.error(
            "%s failed after %d attempt(s): %s", item.title or item.id, max_attempts, reason
        )
        raise ItemFailedError(item.id, reason, max_attempts) from last_error

    async def prepare_transcript(self, item: Item) -> Path:
        """Download, extract and transcribe, reusing a valid cached transcript."""
        transcript = self.workspace.transcript_path(item)
        if is_valid_transcript(transcript):
            logger.info("Using cached transcript for %s", item.title)
            return transcript

        video = await self.downloader.fetch(item, self.workspace.video_path(item))
        audio = await self.extractor.extract(video, self.workspace.audio_path(item))
        return await self.transcriber.transcribe(audio, self.workspace.transcript_base(item))

    async def translate_all(self, item: Item, content: str, targets: list[str]) -> None:
        """Translate ``content`` into each target, bounded by translation_concurrency.

        Every target is attempted; the first failure is raised afterwards so
        finished languages are kept for the next attempt.
        """
        source = item.source_language or self.config.default_source_language

        async def translate_one(position: int, language: str) -> None:
            async with self._translation_slots:
                if position > 0 and self.config.language_delay_seconds > 0:
                    await self._sleep(self.config.language_delay_seconds)
                result = await self.translator.translate_document(content, source, language)
                write_text(self.workspace.artifact_path(item, language), result.content)
                logger.info(
                    "Translated %s to %s (%d lines)", item.title, language.upper(), result.units
                )

        outcomes = await asyncio.gather(
            *(translate_one(i, lang) for i, lang in enumerate(targets)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def process_once(self, item: Item, attempt: int = 1) -> ItemOutcome:
        """One pass over the stages for ``item``.

        Verified artifacts short-circuit only the first attempt. A later
        attempt that finds them verified resumes at the upload step, since
        the previous attempt got past verification.
        """
        languages = self.languages

        report = self.gate.verify_item(item, languages, self.workspace)
        if report.ok and attempt == 1 and self.config.skip_existing:
            logger.info("Skipping %s: all %d languages verified", item.title, len(languages))
            return ItemOutcome(item=item, status="skipped", languages=languages)

        if not report.ok or attempt == 1:
            report = await self.produce_artifacts(item, languages)

        uploaded = await self.publish_all(item, report)

        removed = remove_files(self.workspace.temp_files(item))
        logger.debug("Removed %d temp file(s) for %s", len(removed), item.title)
        return ItemOutcome(item=item, status="completed", languages=languages, uploaded=uploaded)

    async def produce_artifacts(self, item: Item, languages: list[str]) -> VerificationReport:
        """Transcribe, translate the missing languages and verify the result.

        Raises:
            IncompleteItemError: If any required artifact fails verification
        """
        transcript = await self.prepare_transcript(item)
        content = read_text(transcript)
        item.source_language = detect_source_language(
            "\n".join(text_units(parse_records(content))),
            self.config.default_source_language,
        )
        write_text(self.workspace.artifact_path(item, item.source_language), content)
        logger.info("Detected source language %s for %s", item.source_language.upper(), item.title)

        targets = [
            lang
            for lang in languages
            if lang != item.source_language
            and not self.gate.inspect(self.workspace.artifact_path(item, lang), lang).is_valid
        ]
        await self.translate_all(item, content, targets)

        report = self.gate.verify_item(item, languages, self.workspace)
        if not report.ok:
            raise IncompleteItemError(item.id, report.problems)
        return report

    async def publish_all(self, item: Item, report: VerificationReport) -> list[str]:
        """Upload every verified artifact when uploads are enabled."""
        if self.uploader is None or not self.config.upload_captions:
            return []
        uploaded: list[str] = []
        for language, artifact in report.artifacts.items():
            await self.uploader.publish(item, artifact)
            uploaded.append(language)
        if self.catalog is not None:
            await self.gate.check_remote(item, uploaded, self.catalog)
        return uploaded


class PipelineRunner:
    """Processes items through K concurrent lanes."""

    def __init__(
        self,
        processor: ItemProcessor,
        workers: int = 3,
        reporter: ProgressReporter | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.processor = processor
        self.workers = workers
        self.reporter = reporter
        self.in_flight = 0

    async def _lane(self, slot: WorkSlot, queue: deque[Item], result: RunResult) -> None:
        while queue:
            item = queue.popleft()
            slot.item = item
            self.in_flight += 1
            result.peak_in_flight = max(result.peak_in_flight, self.in_flight)
            try:
                outcome = await self.processor.process(item)
                result.succeeded.append(outcome)
            except ItemFailedError as e:
                result.failed.append(ItemFailure(item=item, reason=e.reason, attempts=e.attempts))
            except Exception as e:
                logger.exception("Unexpected error processing %s", item.title or item.id)
                result.failed.append(ItemFailure(item=item, reason=f"{e.__class__.__name__}: {e}"))
            finally:
                self.in_flight -= 1
                slot.item = None
                slot.processed += 1
            if self.reporter is not None:
                self.reporter.update(result, self.in_flight)

    async def run(self, items: list[Item]) -> RunResult:
        """Process ``items`` in order with at most ``workers`` in flight."""
        start = time.monotonic()
        result = RunResult()
        queue = deque(items)
        slots = [WorkSlot(index=i) for i in range(min(self.workers, len(items)) or 1)]
        logger.info("Processing %d item(s) with %d worker(s)", len(items), len(slots))

        await asyncio.gather(*(self._lane(slot, queue, result) for slot in slots))

        result.elapsed_seconds = time.monotonic() - start
        if self.reporter is not None:
            self.reporter.update(result, self.in_flight, force=True)
        logger.info(
            "Run finished in %s: %d completed, %d skipped, %d failed",
            format_duration(result.elapsed_seconds),
            len(result.completed),
            len(result.skipped),
            len(result.failed),
        )
        return result

    async def run_source(
        self,
        source: ItemSource,
        last_n_days: int | None = None,
        max_items: int | None = None,
    ) -> RunResult:
        """Fetch items from ``source``, apply selection filters, and run them."""
        items = select_items(
            await source.fetch_items(), last_n_days=last_n_days, max_items=max_items
        )
        if self.reporter is not None:
            self.reporter.total = len(items)
        return await self.run(items)


def build_processor(
    config: CaptionlineConfig,
    http_client: httpx.AsyncClient,
    service: TranslationService | None = None,
    catalog: CatalogClient | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> ItemProcessor:
    """Wire every stage from the resolved configuration."""
    workspace = Workspace(config.output_dir, config.temp_dir)
    workspace.create()

    download_retry = RetryController.from_settings(config.retry, sleep=sleep)
    translation_retry = RetryController.from_settings(config.retry, sleep=sleep)

    translator = TranslationStage(
        service=service or create_client_from_config(config),
        retry=translation_retry,
        templates=PromptTemplateManager(config.prompts_dir),
        batch_size=config.translation_batch_size,
        strict=config.strict_translation,
        batch_delay=config.batch_delay_seconds,
        placeholder_patterns=config.verification.placeholder_patterns,
        sleep=sleep,
    )

    return ItemProcessor(
        config=config,
        workspace=workspace,
        downloader=DownloadStage(http_client, download_retry, timeout=config.download_timeout),
        extractor=AudioExtractor(
            config.ffmpeg_bin, config.audio_filters, timeout=config.extraction_timeout
        ),
        transcriber=Transcriber(
            config.whisper_bin,
            config.whisper_model,
            language=config.whisper_language,
            timeout=config.transcription_timeout,
            concurrency=config.transcription_concurrency,
            batch_size=config.transcription_batch_size,
            sleep=sleep,
        ),
        translator=translator,
        gate=VerificationGate(config.verification),
        uploader=UploadStage(catalog) if catalog is not None else None,
        catalog=catalog,
        sleep=sleep,
    )
