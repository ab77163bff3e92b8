"""Tests for captionline.pipeline module."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest
from conftest import SAMPLE_VTT, FakeTranscriber, FakeTranslationService, SleepRecorder

from captionline.catalog.source import StaticItemSource
from captionline.exceptions import (
    FatalRemoteError,
    ItemFailedError,
    TranscriptionTimeoutError,
    TransientError,
)
from captionline.models import Artifact, Item, ItemOutcome, RunResult
from captionline.pipeline import ItemProcessor, PipelineRunner, ProgressReporter

VALID_FR = SAMPLE_VTT.replace("Hello everyone", "Bonjour à tous")
VALID_ES = SAMPLE_VTT.replace("Hello everyone", "Hola a todos")
NUMBERED = re.compile(r"^(\d+)\. (.*)$", re.MULTILINE)


def seed_artifacts(processor: ItemProcessor, item: Item, contents: dict[str, str]) -> None:
    for language, content in contents.items():
        path = processor.workspace.artifact_path(item, language)
        path.write_text(content, encoding="utf-8")


class TestItemProcessor:
    def test_processes_item_end_to_end(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        service = FakeTranslationService()
        processor = make_processor(service=service)

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert outcome.attempts == 1
        assert item.source_language == "en"
        ws = processor.workspace
        assert ws.artifact_path(item, "en").read_text(encoding="utf-8") == SAMPLE_VTT
        assert "tr: Thank you for watching." in ws.artifact_path(item, "fr").read_text()
        assert ws.artifact_path(item, "es").exists()
        assert len(service.calls) == 2
        assert all(artifact.is_valid for artifact in item.artifacts.values())

    def test_temp_files_removed_after_success(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        processor = make_processor()
        asyncio.run(processor.process(item))
        assert not any(path.exists() for path in processor.workspace.temp_files(item))

    def test_skips_verified_item_without_stage_calls(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        service = FakeTranslationService()
        processor = make_processor(service=service)
        seed_artifacts(processor, item, {"en": SAMPLE_VTT, "fr": VALID_FR, "es": VALID_ES})

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "skipped"
        assert processor.downloader.calls == []
        assert processor.extractor.calls == []
        assert processor.transcriber.calls == []
        assert service.calls == []

    def test_invalid_existing_artifact_is_redone(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        service = FakeTranslationService()
        processor = make_processor(service=service)
        placeholder = SAMPLE_VTT.replace("Hello everyone", "[ES] Hello everyone")
        seed_artifacts(processor, item, {"en": SAMPLE_VTT, "fr": VALID_FR, "es": placeholder})

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert len(service.calls) == 1
        assert "[ES]" not in processor.workspace.artifact_path(item, "es").read_text()

    def test_cached_transcript_skips_media_stages(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        processor = make_processor()
        processor.workspace.transcript_path(item).write_text(SAMPLE_VTT, encoding="utf-8")

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert processor.downloader.calls == []
        assert processor.transcriber.calls == []

    def test_count_mismatch_is_retried_then_fails(
        self,
        make_processor: Callable[..., ItemProcessor],
        item: Item,
        sleeper: SleepRecorder,
    ) -> None:
        processor = make_processor(service=FakeTranslationService(drop=1))

        with pytest.raises(ItemFailedError) as exc_info:
            asyncio.run(processor.process(item))

        assert exc_info.value.attempts == 3
        assert "TranslationCountMismatchError" in exc_info.value.reason
        assert sleeper.delays == [2.0, 4.0]
        assert not processor.workspace.artifact_path(item, "fr").exists()

    def test_count_mismatch_recovers_on_next_attempt(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        short = "1. tr: Hello everyone and welcome to the show."
        service = FakeTranslationService(replies=[short])
        processor = make_processor(service=service)

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert outcome.attempts == 2

    def test_transcription_timeout_backs_off_then_fails(
        self,
        make_processor: Callable[..., ItemProcessor],
        item: Item,
        sleeper: SleepRecorder,
    ) -> None:
        transcriber = FakeTranscriber(error=TranscriptionTimeoutError("engine timed out"))
        processor = make_processor(transcriber=transcriber)

        with pytest.raises(ItemFailedError) as exc_info:
            asyncio.run(processor.process(item))

        assert sleeper.delays == [2.0, 4.0]
        assert len(transcriber.calls) == 3
        assert "TranscriptionTimeoutError" in exc_info.value.reason
        assert processor.workspace.video_path(item).exists()

    def test_backoff_is_capped(self, make_processor: Callable[..., ItemProcessor]) -> None:
        processor = make_processor(item_backoff_base=2, item_backoff_max=5)
        assert [processor.backoff_delay(n) for n in (1, 2, 3, 4)] == [2, 4, 5, 5]

    def test_source_language_detected_from_transcript(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        arabic = "WEBVTT\n\n00:00:00.000 --> 00:00:02.000\nمرحبا بكم في البرنامج\n"
        processor = make_processor(
            transcriber=FakeTranscriber(content=arabic), languages=["ar", "en"]
        )
        processor.config.verification.min_size_bytes = 10

        asyncio.run(processor.process(item))

        assert item.source_language == "ar"
        assert processor.workspace.artifact_path(item, "ar").read_text() == arabic
        assert "tr: مرحبا" in processor.workspace.artifact_path(item, "en").read_text()

    def test_language_pause_between_sequential_languages(
        self,
        make_processor: Callable[..., ItemProcessor],
        item: Item,
        sleeper: SleepRecorder,
    ) -> None:
        processor = make_processor(language_delay_seconds=10)
        asyncio.run(processor.process(item))
        assert sleeper.delays == [10.0]

    def test_lenient_mode_still_rejects_untranslated_output(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        processor = make_processor(service=EchoingService(), strict_translation=False)

        with pytest.raises(ItemFailedError) as exc_info:
            asyncio.run(processor.process(item))

        assert "TranslationValidationError" in exc_info.value.reason
        assert not processor.workspace.artifact_path(item, "fr").exists()


class EchoingService(FakeTranslationService):
    """Returns every numbered source line unchanged."""

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        await asyncio.sleep(0)
        return "\n".join(f"{m.group(1)}. {m.group(2)}" for m in NUMBERED.finditer(prompt))


class FakeUploader:
    """Records published languages; the first ``failures`` calls raise."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[str] = []

    async def publish(self, item: Item, artifact: Artifact) -> None:
        self.calls.append(artifact.language)
        await asyncio.sleep(0)
        if len(self.calls) <= self.failures:
            raise FatalRemoteError("forbidden", 403)


class FakeCatalog:
    def __init__(self, languages: set[str] | None = None, error: Exception | None = None):
        self.languages = languages or set()
        self.error = error
        self.lookups = 0

    async def caption_languages(self, item_id: str) -> set[str]:
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self.languages


class TestUploadStep:
    def test_publishes_every_language(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        uploader = FakeUploader()
        catalog = FakeCatalog({"en", "fr", "es"})
        processor = make_processor(uploader=uploader, catalog=catalog, upload_captions=True)

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert outcome.uploaded == ["en", "fr", "es"]
        assert uploader.calls == ["en", "fr", "es"]
        assert catalog.lookups == 1

    def test_upload_disabled_publishes_nothing(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        uploader = FakeUploader()
        processor = make_processor(uploader=uploader, upload_captions=False)
        outcome = asyncio.run(processor.process(item))
        assert outcome.uploaded == []
        assert uploader.calls == []

    def test_failing_upload_ends_in_item_failure(
        self,
        make_processor: Callable[..., ItemProcessor],
        item: Item,
        sleeper: SleepRecorder,
    ) -> None:
        uploader = FakeUploader(failures=100)
        processor = make_processor(uploader=uploader, upload_captions=True)

        with pytest.raises(ItemFailedError) as exc_info:
            asyncio.run(processor.process(item))

        assert exc_info.value.attempts == 3
        assert "FatalRemoteError" in exc_info.value.reason
        assert len(uploader.calls) == 3
        assert sleeper.delays == [2.0, 4.0]
        assert processor.workspace.transcript_path(item).exists()

    def test_upload_retry_resumes_at_upload(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        uploader = FakeUploader(failures=1)
        service = FakeTranslationService()
        processor = make_processor(service=service, uploader=uploader, upload_captions=True)

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert outcome.attempts == 2
        assert outcome.uploaded == ["en", "fr", "es"]
        assert len(processor.transcriber.calls) == 1
        assert len(service.calls) == 2

    def test_remote_check_failure_is_advisory(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        catalog = FakeCatalog(error=TransientError("catalog down", 503))
        processor = make_processor(
            uploader=FakeUploader(), catalog=catalog, upload_captions=True
        )

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "completed"
        assert catalog.lookups == 1

    def test_verified_item_is_skipped_on_first_attempt(
        self, make_processor: Callable[..., ItemProcessor], item: Item
    ) -> None:
        uploader = FakeUploader()
        processor = make_processor(uploader=uploader, upload_captions=True)
        seed_artifacts(processor, item, {"en": SAMPLE_VTT, "fr": VALID_FR, "es": VALID_ES})

        outcome = asyncio.run(processor.process(item))

        assert outcome.status == "skipped"
        assert uploader.calls == []


class StubProcessor:
    """Records concurrency and fails selected items."""

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.failures = failures or {}
        self.in_flight = 0
        self.max_seen = 0
        self.order: list[str] = []

    async def process(self, item: Item) -> ItemOutcome:
        self.in_flight += 1
        self.max_seen = max(self.max_seen, self.in_flight)
        self.order.append(item.id)
        try:
            await asyncio.sleep(0.01)
            if item.id in self.failures:
                raise self.failures[item.id]
            return ItemOutcome(item=item, status="completed", attempts=1)
        finally:
            self.in_flight -= 1


def make_items(count: int) -> list[Item]:
    return [Item(id=f"item{i}", title=f"Item {i}") for i in range(count)]


class TestPipelineRunner:
    def test_in_flight_never_exceeds_workers(self) -> None:
        processor = StubProcessor()
        runner = PipelineRunner(processor, workers=3)

        result = asyncio.run(runner.run(make_items(10)))

        assert processor.max_seen == 3
        assert result.peak_in_flight == 3
        assert len(result.completed) == 10

    def test_items_start_in_queue_order(self) -> None:
        processor = StubProcessor()
        asyncio.run(PipelineRunner(processor, workers=2).run(make_items(5)))
        assert processor.order == [f"item{i}" for i in range(5)]

    def test_failures_do_not_stop_the_pool(self) -> None:
        processor = StubProcessor(
            failures={
                "item1": ItemFailedError("item1", "DownloadError: gone", 3),
                "item2": RuntimeError("boom"),
            }
        )
        result = asyncio.run(PipelineRunner(processor, workers=2).run(make_items(6)))

        assert len(result.succeeded) == 4
        reasons = {f.item.id: f.reason for f in result.failed}
        assert reasons["item1"] == "DownloadError: gone"
        assert reasons["item2"] == "RuntimeError: boom"
        assert result.total == 6

    def test_more_workers_than_items(self) -> None:
        processor = StubProcessor()
        result = asyncio.run(PipelineRunner(processor, workers=8).run(make_items(2)))
        assert result.peak_in_flight == 2

    def test_empty_run(self) -> None:
        result = asyncio.run(PipelineRunner(StubProcessor(), workers=3).run([]))
        assert result.total == 0

    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(ValueError):
            PipelineRunner(StubProcessor(), workers=0)

    def test_run_source_applies_filters(self) -> None:
        now = datetime.now(timezone.utc)
        items = [
            Item(id="new", title="New", created_at=now - timedelta(days=1)),
            Item(id="old", title="Old", created_at=now - timedelta(days=30)),
            Item(id="newer", title="Newer", created_at=now),
        ]
        processor = StubProcessor()
        runner = PipelineRunner(processor, workers=2)

        result = asyncio.run(
            runner.run_source(StaticItemSource(items), last_n_days=7, max_items=1)
        )

        assert [o.item.id for o in result.succeeded] == ["new"]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestProgressReporter:
    def test_updates_are_throttled(self) -> None:
        clock = FakeClock()
        reporter = ProgressReporter(total=10, interval=5.0, clock=clock)
        result = RunResult()

        assert reporter.update(result, 1) is False
        clock.now = 4.9
        assert reporter.update(result, 1) is False
        clock.now = 5.0
        assert reporter.update(result, 1) is True
        clock.now = 6.0
        assert reporter.update(result, 1) is False
        assert reporter.emitted == 1

    def test_forced_update_always_emits(self) -> None:
        reporter = ProgressReporter(total=1, interval=60.0, clock=FakeClock())
        assert reporter.update(RunResult(), 0, force=True) is True

    def test_runner_emits_final_update(self) -> None:
        clock = FakeClock()
        reporter = ProgressReporter(total=4, interval=1000.0, clock=clock)
        runner = PipelineRunner(StubProcessor(), workers=2, reporter=reporter)
        asyncio.run(runner.run(make_items(4)))
        assert reporter.emitted == 1
