"""
captionline.stages.extract - FFmpeg speech-audio extraction.

Produces a 16kHz mono PCM WAV with a speech band-pass/denoise filter
chain, the input format the speech-to-text engine expects.
"""

from __future__ import annotations

import logging
from pathlib import Path

from captionline.exceptions import ExtractionError
from captionline.process import ProcessTimeout, run_process

logger = logging.getLogger(__name__)


def build_ffmpeg_command(
    ffmpeg_bin: str, source_path: Path, output_path: Path, filters: list[str]
) -> list[str]:
    cmd = [ffmpeg_bin, "-y", "-i", str(source_path), "-vn"]
    if filters:
        cmd += ["-af", ",".join(filters)]
    cmd += [
        "-acodec",
        "pcm_s16le",
        "-ar",
        "16000",
        "-ac",
        "1",
        "-f",
        "wav",
        str(output_path),
    ]
    return cmd


class AudioExtractor:
    """Runs ffmpeg as a child process with a timeout."""

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        filters: list[str] | None = None,
        timeout: float = 600.0,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.filters = list(filters or [])
        self.timeout = timeout

    async def extract(self, source_path: Path, output_path: Path) -> Path:
        """Extract speech audio from a video file.

        Args:
            source_path: Path to source video file
            output_path: Destination WAV path

        Returns:
            ``output_path``

        Raises:
            ExtractionError: If the source is missing or FFmpeg fails, times
                out, or produces no output
        """
        if not source_path.exists():
            raise ExtractionError(f"Source file not found: {source_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = build_ffmpeg_command(self.ffmpeg_bin, source_path, output_path, self.filters)

        try:
            result = await run_process(
                cmd, timeout=self.timeout, description=f"ffmpeg {source_path.name}"
            )
        except ProcessTimeout as e:
            output_path.unlink(missing_ok=True)
            raise ExtractionError(str(e)) from e
        except OSError as e:
            raise ExtractionError(f"Cannot run {self.ffmpeg_bin}: {e}") from e

        if not result.ok:
            output_path.unlink(missing_ok=True)
            raise ExtractionError(
                f"FFmpeg extraction failed ({result.returncode}): {result.stderr[-500:]}"
            )
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ExtractionError(f"FFmpeg produced no audio for {source_path.name}")

        logger.debug("Extracted speech audio to %s", output_path)
        return output_path
