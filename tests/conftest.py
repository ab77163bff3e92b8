"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from captionline.config import CaptionlineConfig, RetrySettings
from captionline.models import Item
from captionline.pipeline import ItemProcessor
from captionline.retry import RetryController
from captionline.stages.translate import TranslationStage
from captionline.stages.verify import VerificationGate
from captionline.workspace import Workspace

SAMPLE_VTT = """WEBVTT

1
00:00:00.000 --> 00:00:02.500
Hello everyone and welcome to the show.

2
00:00:02.500 --> 00:00:05.000
Today we talk about rivers and water.

3
00:00:05.000 --> 00:00:07.000
Thank you for watching.
"""

_NUMBERED = re.compile(r"^(\d+)\. (.*)$", re.MULTILINE)


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeTranslationService:
    """Translates every numbered prompt line by prefixing it.

    Queued ``replies`` are returned (or raised) first; ``None`` in the queue
    falls through to the default behaviour. ``drop`` removes that many lines
    from the end of every default reply.
    """

    def __init__(self, prefix: str = "tr", drop: int = 0, replies: list[Any] | None = None):
        self.prefix = prefix
        self.drop = drop
        self.replies = list(replies or [])
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, prompt: str) -> str:
        self.calls.append((system, prompt))
        await asyncio.sleep(0)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            if reply is not None:
                return reply
        lines = [m.group(2) for m in _NUMBERED.finditer(prompt)]
        if self.drop:
            lines = lines[: -self.drop]
        return "\n".join(f"{i}. {self.prefix}: {line}" for i, line in enumerate(lines, start=1))


class FakeDownloader:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def fetch(self, item: Item, dest: Path) -> Path:
        self.calls.append(item.id)
        await asyncio.sleep(0)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"\x00video")
        return dest


class FakeExtractor:
    def __init__(self) -> None:
        self.calls: list[Path] = []

    async def extract(self, source_path: Path, output_path: Path) -> Path:
        self.calls.append(source_path)
        await asyncio.sleep(0)
        output_path.write_bytes(b"RIFF")
        return output_path


class FakeTranscriber:
    def __init__(self, content: str = SAMPLE_VTT, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[Path] = []

    async def transcribe(self, audio_path: Path, output_base: Path) -> Path:
        self.calls.append(audio_path)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        vtt_path = output_base.with_name(output_base.name + ".vtt")
        vtt_path.write_text(self.content, encoding="utf-8")
        return vtt_path


def make_config(tmp_path: Path, **overrides: Any) -> CaptionlineConfig:
    values: dict[str, Any] = {
        "output_dir": tmp_path / "output",
        "temp_dir": tmp_path / "temp",
        "languages": ["en", "fr", "es"],
        "batch_delay_seconds": 0,
        "language_delay_seconds": 0,
        "retry": RetrySettings(max_attempts=3, base_delay=1, max_delay=10),
    }
    values.update(overrides)
    return CaptionlineConfig(**values)


@pytest.fixture
def sample_vtt() -> str:
    return SAMPLE_VTT


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def item() -> Item:
    return Item(id="vi123", title="River Talk", asset_url="https://cdn.example.com/vi123.mp4")


@pytest.fixture
def config(tmp_path: Path) -> CaptionlineConfig:
    return make_config(tmp_path)


@pytest.fixture
def workspace(config: CaptionlineConfig) -> Workspace:
    ws = Workspace(config.output_dir, config.temp_dir)
    ws.create()
    return ws


@pytest.fixture
def service() -> FakeTranslationService:
    return FakeTranslationService()


@pytest.fixture
def make_processor(
    tmp_path: Path, sleeper: SleepRecorder
) -> Callable[..., ItemProcessor]:
    """Build an ItemProcessor wired to fake stages.

    The fakes stay reachable as ``processor.downloader`` etc.
    """

    def _make(
        service: FakeTranslationService | None = None,
        transcriber: FakeTranscriber | None = None,
        uploader: Any = None,
        catalog: Any = None,
        **config_overrides: Any,
    ) -> ItemProcessor:
        cfg = make_config(tmp_path, **config_overrides)
        workspace = Workspace(cfg.output_dir, cfg.temp_dir)
        workspace.create()
        translator = TranslationStage(
            service=service or FakeTranslationService(),
            retry=RetryController.from_settings(cfg.retry, sleep=sleeper),
            batch_size=cfg.translation_batch_size,
            strict=cfg.strict_translation,
            batch_delay=cfg.batch_delay_seconds,
            placeholder_patterns=cfg.verification.placeholder_patterns,
            sleep=sleeper,
        )
        return ItemProcessor(
            config=cfg,
            workspace=workspace,
            downloader=FakeDownloader(),
            extractor=FakeExtractor(),
            transcriber=transcriber or FakeTranscriber(),
            translator=translator,
            gate=VerificationGate(cfg.verification),
            uploader=uploader,
            catalog=catalog,
            sleep=sleeper,
        )

    return _make


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script standing in for an external tool."""
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_engine(tmp_path: Path) -> Path:
    """A speech-to-text engine that writes a small VTT to ``-of <base>``.vtt."""
    return write_script(
        tmp_path / "fake-whisper",
        'while [ $# -gt 0 ]; do\n'
        '  if [ "$1" = "-of" ]; then out="$2"; fi\n'
        "  shift\n"
        "done\n"
        "printf 'WEBVTT\\n\\n00:00:00.000 --> 00:00:01.000\\nHello there\\n' > \"$out.vtt\"\n",
    )
