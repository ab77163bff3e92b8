"""
captionline.vtt - WebVTT record parsing and reconstruction.

A document is split into an ordered list of records. Text records are the
translatable units; everything else (header, blank lines, timing cues, cue
settings, block keywords, numeric cue identifiers) passes through untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

HEADER_MARKER = "WEBVTT"

_CUE_SETTINGS = re.compile(r"^(align:|line:|position:|size:|vertical:)")
_BLOCK_KEYWORDS = re.compile(r"^(NOTE|STYLE|REGION)(\s|$)")
_CUE_IDENTIFIER = re.compile(r"^\d+$")
_HAS_LETTER = re.compile(r"[^\W\d_]", re.UNICODE)


@dataclass(frozen=True)
class Record:
    """One line of a subtitle document."""

    raw: str
    is_text: bool

    @property
    def text(self) -> str:
        return self.raw.strip()


def is_text_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if stripped.startswith(HEADER_MARKER):
        return False
    if "-->" in stripped:
        return False
    if _CUE_SETTINGS.match(stripped):
        return False
    if _BLOCK_KEYWORDS.match(stripped):
        return False
    if _CUE_IDENTIFIER.match(stripped):
        return False
    return True


def parse_records(content: str) -> list[Record]:
    """Split a subtitle document into ordered records."""
    lines = content.replace("\r\n", "\n").split("\n")
    return [Record(raw=line, is_text=is_text_line(line)) for line in lines]


def text_units(records: list[Record]) -> list[str]:
    """Translatable units in document order."""
    return [r.text for r in records if r.is_text]


def reconstruct(records: list[Record], translations: list[str]) -> str:
    """Put translated units back at their original positions.

    Raises:
        ValueError: If the number of translations differs from the number of
            text records
    """
    expected = sum(1 for r in records if r.is_text)
    if len(translations) != expected:
        raise ValueError(
            f"Cannot reconstruct document: {expected} text units, {len(translations)} translations"
        )
    units = iter(translations)
    return "\n".join(next(units) if r.is_text else r.raw for r in records)


def has_header(content: str) -> bool:
    return content.lstrip("﻿").lstrip().startswith(HEADER_MARKER)


def has_substantive_text(content: str) -> bool:
    """True if at least one text line contains a letter."""
    return any(r.is_text and _HAS_LETTER.search(r.text) for r in parse_records(content))


def contains_letters(text: str) -> bool:
    return bool(_HAS_LETTER.search(text))
