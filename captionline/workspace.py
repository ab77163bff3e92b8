"""
captionline.workspace - Output and temp directory layout.

Artifacts live in ``<output>/<slug>_<lang>.vtt``; per-item scratch files
live in ``<temp>``. Resumption relies entirely on these names.
"""

from __future__ import annotations

import re
from pathlib import Path

from captionline.models import Item

ARTIFACT_SUFFIX = ".vtt"


class Workspace:
    """Represents the output/temp directories of a run."""

    def __init__(self, output_dir: Path, temp_dir: Path) -> None:
        self.output_dir = output_dir
        self.temp_dir = temp_dir

    def create(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def artifact_path(self, item: Item, language: str) -> Path:
        return self.output_dir / f"{item.slug}_{language}{ARTIFACT_SUFFIX}"

    def video_path(self, item: Item) -> Path:
        return self.temp_dir / f"{item.slug}.mp4"

    def audio_path(self, item: Item) -> Path:
        return self.temp_dir / f"{item.slug}_speech.wav"

    def transcript_base(self, item: Item) -> Path:
        """Output base passed to the speech-to-text engine (it appends .vtt)."""
        return self.temp_dir / f"{item.slug}_speech"

    def transcript_path(self, item: Item) -> Path:
        base = self.transcript_base(item)
        return base.with_name(base.name + ARTIFACT_SUFFIX)

    def temp_files(self, item: Item) -> list[Path]:
        video = self.video_path(item)
        return [
            video,
            video.with_name(video.name + ".part"),
            self.audio_path(item),
            self.transcript_path(item),
        ]

    def existing_languages(self, item: Item) -> list[str]:
        """Languages with an artifact file on disk for ``item``."""
        if not self.output_dir.exists():
            return []
        suffix = re.escape(ARTIFACT_SUFFIX)
        pattern = re.compile(rf"^{re.escape(item.slug)}_([a-z]{{2,3}}){suffix}$")
        found = []
        for path in sorted(self.output_dir.glob(f"{item.slug}_*{ARTIFACT_SUFFIX}")):
            match = pattern.match(path.name)
            if match:
                found.append(match.group(1))
        return found
