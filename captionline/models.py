"""
captionline.models - Items, artifacts and run bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from captionline.utils import sanitize_filename


class ArtifactState(str, Enum):
    UNVERIFIED = "unverified"
    VALID = "valid"
    INVALID = "invalid"


class Artifact(BaseModel):
    """One language-tagged subtitle output for an item."""

    language: str
    path: Path
    content: str | None = None
    state: ArtifactState = ArtifactState.UNVERIFIED
    problems: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.state is ArtifactState.VALID


class Item(BaseModel):
    """One catalog media asset tracked through the pipeline."""

    id: str
    title: str
    asset_url: str | None = None
    created_at: datetime | None = None
    published_at: datetime | None = None
    source_language: str | None = None
    artifacts: dict[str, Artifact] = Field(default_factory=dict)

    @property
    def slug(self) -> str:
        """Deterministic file stem; every output path for the item derives from it."""
        return sanitize_filename(self.title) or sanitize_filename(self.id) or "item"

    @property
    def timestamp(self) -> datetime | None:
        return self.published_at or self.created_at

    @classmethod
    def from_catalog(cls, payload: dict[str, Any]) -> Item:
        """Build an item from a catalog listing entry."""
        assets = payload.get("assets") or {}
        return cls(
            id=str(payload.get("videoId") or payload.get("id")),
            title=payload.get("title") or "",
            asset_url=assets.get("mp4") or payload.get("asset_url"),
            created_at=payload.get("createdAt"),
            published_at=payload.get("publishedAt"),
        )


@dataclass
class Batch:
    """Ordered source lines sent in one translation request."""

    index: int
    sources: list[str]
    translations: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.sources)

    @property
    def complete(self) -> bool:
        return len(self.translations) == len(self.sources)


@dataclass
class WorkSlot:
    """One concurrency lane of the pipeline runner."""

    index: int
    item: Item | None = None
    processed: int = 0

    @property
    def idle(self) -> bool:
        return self.item is None


@dataclass
class RetryState:
    """Attempt bookkeeping for one wrapped remote operation."""

    label: str
    max_attempts: int
    attempt: int = 0
    auth_refreshes: int = 0
    last_error_kind: str | None = None
    next_delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass
class ItemOutcome:
    item: Item
    status: str
    attempts: int = 0
    languages: list[str] = field(default_factory=list)
    uploaded: list[str] = field(default_factory=list)


@dataclass
class ItemFailure:
    item: Item
    reason: str
    attempts: int = 0


@dataclass
class RunResult:
    """Aggregate result of a pipeline run."""

    succeeded: list[ItemOutcome] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)
    peak_in_flight: int = 0
    elapsed_seconds: float = 0.0

    @property
    def completed(self) -> list[ItemOutcome]:
        return [o for o in self.succeeded if o.status == "completed"]

    @property
    def skipped(self) -> list[ItemOutcome]:
        return [o for o in self.succeeded if o.status == "skipped"]

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)
