"""
captionline.stages.transcribe - Speech-to-text via an external engine.

Invokes a whisper.cpp-compatible binary as a subprocess with a hard
timeout. A semaphore bounds how many engine processes run at once across
all in-flight items; ``transcribe_many`` instead walks a job list in
fixed-size sequential batches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from captionline.exceptions import TranscriptionError, TranscriptionTimeoutError
from captionline.io import read_text
from captionline.process import ProcessTimeout, run_process
from captionline.retry import Sleeper
from captionline.vtt import HEADER_MARKER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptionJob:
    audio_path: Path
    output_base: Path


@dataclass
class TranscriptionResult:
    job: TranscriptionJob
    vtt_path: Path | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.vtt_path is not None


def build_engine_command(
    engine_bin: str, model: str, audio_path: Path, output_base: Path, language: str
) -> list[str]:
    return [
        engine_bin,
        "-m",
        model,
        "-f",
        str(audio_path),
        "--output-vtt",
        "--language",
        language,
        "-of",
        str(output_base),
    ]


def is_valid_transcript(path: Path) -> bool:
    """True if ``path`` exists and carries the WebVTT structural marker."""
    if not path.exists() or path.stat().st_size == 0:
        return False
    return HEADER_MARKER in read_text(path)


class Transcriber:
    """Runs the speech-to-text engine with bounded concurrency."""

    def __init__(
        self,
        engine_bin: str,
        model: str,
        language: str = "auto",
        timeout: float = 1800.0,
        concurrency: int = 1,
        batch_size: int = 25,
        batch_pause: float = 2.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.engine_bin = engine_bin
        self.model = model
        self.language = language
        self.timeout = timeout
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self._slots = asyncio.Semaphore(concurrency)
        self._sleep = sleep

    async def transcribe(self, audio_path: Path, output_base: Path) -> Path:
        """Transcribe one audio file to ``<output_base>.vtt``.

        Raises:
            TranscriptionTimeoutError: If the engine overruns its timeout
            TranscriptionError: If the engine fails or its output is missing
                or lacks the WEBVTT marker
        """
        if not audio_path.exists():
            raise TranscriptionError(f"Audio file not found: {audio_path}")

        vtt_path = output_base.with_name(output_base.name + ".vtt")
        vtt_path.unlink(missing_ok=True)
        cmd = build_engine_command(
            self.engine_bin, self.model, audio_path, output_base, self.language
        )

        async with self._slots:
            try:
                result = await run_process(
                    cmd, timeout=self.timeout, description=f"transcribe {audio_path.name}"
                )
            except ProcessTimeout as e:
                vtt_path.unlink(missing_ok=True)
                raise TranscriptionTimeoutError(str(e)) from e
            except OSError as e:
                raise TranscriptionError(f"Cannot run {self.engine_bin}: {e}") from e

        if not result.ok:
            raise TranscriptionError(
                f"Engine exited with {result.returncode}: {result.stderr[-500:]}"
            )
        if not vtt_path.exists():
            raise TranscriptionError("Engine did not generate a VTT file")
        if not is_valid_transcript(vtt_path):
            vtt_path.unlink(missing_ok=True)
            raise TranscriptionError("Engine generated invalid VTT content")

        logger.debug("Transcribed %s", audio_path.name)
        return vtt_path

    async def transcribe_many(self, jobs: list[TranscriptionJob]) -> list[TranscriptionResult]:
        """Transcribe jobs in fixed-size sequential batches.

        Failures are recorded per job; they do not stop the remaining jobs.
        """
        results: list[TranscriptionResult] = []
        total_batches = (len(jobs) + self.batch_size - 1) // self.batch_size
        for start in range(0, len(jobs), self.batch_size):
            batch = jobs[start : start + self.batch_size]
            logger.info(
                "Transcription batch %d/%d (%d files)",
                start // self.batch_size + 1,
                total_batches,
                len(batch),
            )
            for job in batch:
                try:
                    path = await self.transcribe(job.audio_path, job.output_base)
                    results.append(TranscriptionResult(job=job, vtt_path=path))
                except TranscriptionError as e:
                    logger.error("Transcription failed for %s: %s", job.audio_path.name, e)
                    results.append(TranscriptionResult(job=job, error=str(e)))
            if start + self.batch_size < len(jobs):
                await self._sleep(self.batch_pause)
        return results
