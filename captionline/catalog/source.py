"""
captionline.catalog.source - Where the pipeline gets its items from.

The runner depends only on the ItemSource protocol; production uses the
catalog, tests and local runs pass a fixed list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from captionline.catalog.client import CatalogClient
from captionline.models import Item

logger = logging.getLogger(__name__)


class ItemSource(Protocol):
    async def fetch_items(self) -> list[Item]: ...


class CatalogItemSource:
    """Items listed from the remote catalog."""

    def __init__(self, client: CatalogClient) -> None:
        self.client = client

    async def fetch_items(self) -> list[Item]:
        return await self.client.list_items()


class StaticItemSource:
    """A fixed list of items."""

    def __init__(self, items: Iterable[Item]) -> None:
        self._items = list(items)

    async def fetch_items(self) -> list[Item]:
        return list(self._items)


def select_items(
    items: list[Item],
    last_n_days: int | None = None,
    max_items: int | None = None,
    now: datetime | None = None,
) -> list[Item]:
    """Filter the catalog listing down to the items worth queueing.

    Already-processed items are not dropped here; the item processor skips
    them only after the verification gate accepts their artifacts.
    """
    selected = items

    if last_n_days is not None:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=last_n_days)
        recent = []
        for item in selected:
            stamp = item.timestamp
            if stamp is None:
                continue
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=timezone.utc)
            if stamp >= cutoff:
                recent.append(item)
        selected = recent
        logger.info("Filtered to items from the last %d days: %d", last_n_days, len(selected))

    if max_items is not None:
        selected = selected[:max_items]

    return selected
