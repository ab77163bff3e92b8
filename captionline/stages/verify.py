"""
captionline.stages.verify - The verification gate.

An item is only complete when every required language artifact passes
inspection. The checks are purely local; the optional remote comparison is
advisory and never turns a valid local result into a failure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from captionline.catalog.client import CatalogClient
from captionline.config import VerificationPolicy
from captionline.exceptions import RemoteError
from captionline.io import read_text
from captionline.models import Artifact, ArtifactState, Item
from captionline.stages.translate import placeholder_pattern
from captionline.vtt import has_header, has_substantive_text, parse_records
from captionline.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class VerificationReport:
    ok: bool
    artifacts: dict[str, Artifact] = field(default_factory=dict)
    problems: list[str] = field(default_factory=list)


class VerificationGate:
    """Inspects produced artifacts before an item is declared complete."""

    def __init__(self, policy: VerificationPolicy | None = None) -> None:
        self.policy = policy or VerificationPolicy()
        self._patterns = [re.compile(p) for p in self.policy.placeholder_patterns]

    def find_placeholder(self, content: str, language: str | None = None) -> str | None:
        """Return the first text line that matches a placeholder pattern.

        With ``language``, the padding marker for that language counts too.
        """
        patterns = list(self._patterns)
        if language is not None:
            patterns.append(placeholder_pattern(language))
        for record in parse_records(content):
            if record.is_text and any(p.search(record.text) for p in patterns):
                return record.text
        return None

    def inspect(self, path: Path, language: str) -> Artifact:
        """Check one artifact file and return it with its verdict."""
        artifact = Artifact(language=language, path=path)
        problems = artifact.problems

        if not path.exists():
            problems.append(f"{language}: missing {path.name}")
        else:
            size = path.stat().st_size
            if size < self.policy.min_size_bytes:
                problems.append(
                    f"{language}: too small ({size} bytes < {self.policy.min_size_bytes})"
                )
            try:
                content = read_text(path)
            except (OSError, UnicodeDecodeError) as e:
                problems.append(f"{language}: unreadable ({e})")
            else:
                artifact.content = content
                if self.policy.require_header and not has_header(content):
                    problems.append(f"{language}: missing WEBVTT header")
                placeholder = self.find_placeholder(content, language)
                if placeholder is not None:
                    problems.append(f"{language}: placeholder line {placeholder[:40]!r}")
                if not has_substantive_text(content):
                    problems.append(f"{language}: no subtitle text")

        artifact.state = ArtifactState.INVALID if problems else ArtifactState.VALID
        return artifact

    def verify_item(
        self, item: Item, languages: list[str], workspace: Workspace
    ) -> VerificationReport:
        """Inspect every required language artifact of ``item``.

        The item's ``artifacts`` mapping is updated with the results.
        """
        report = VerificationReport(ok=True)
        for language in languages:
            artifact = self.inspect(workspace.artifact_path(item, language), language)
            item.artifacts[language] = artifact
            report.artifacts[language] = artifact
            report.problems.extend(artifact.problems)
        report.ok = not report.problems
        return report

    async def check_remote(
        self, item: Item, languages: list[str], catalog: CatalogClient
    ) -> list[str]:
        """Compare published caption languages with ``languages``.

        Returns the languages missing remotely. Lookup failures are logged
        and reported as an empty list.
        """
        try:
            published = await catalog.caption_languages(item.id)
        except RemoteError as e:
            logger.warning("Could not check published captions for %s: %s", item.title, e)
            return []
        missing = [lang for lang in languages if lang not in published]
        if missing:
            logger.warning(
                "Captions not visible in catalog for %s: %s",
                item.title,
                ", ".join(missing),
            )
        return missing
