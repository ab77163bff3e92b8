"""
captionline.stages.upload - Publish caption artifacts to the catalog.
"""

from __future__ import annotations

import logging

from captionline.catalog.client import CatalogClient
from captionline.exceptions import CaptionExistsError, NotFoundError
from captionline.io import read_text
from captionline.models import Artifact, Item

logger = logging.getLogger(__name__)


class UploadStage:
    """Uploads verified artifacts, replacing captions that already exist."""

    def __init__(self, catalog: CatalogClient) -> None:
        self.catalog = catalog

    async def publish(self, item: Item, artifact: Artifact) -> None:
        """Upload one artifact as the item's caption for its language.

        An existing caption for the language is deleted and uploaded again.
        """
        content = artifact.content if artifact.content is not None else read_text(artifact.path)
        filename = artifact.path.name
        try:
            await self.catalog.put_caption(item.id, artifact.language, content, filename)
        except CaptionExistsError:
            logger.info(
                "%s caption exists for %s, replacing", artifact.language.upper(), item.title
            )
            await self.catalog.delete_caption(item.id, artifact.language)
            await self.catalog.put_caption(item.id, artifact.language, content, filename)
        logger.info("Uploaded %s caption for %s", artifact.language.upper(), item.title)

    async def clear(self, item: Item, languages: list[str]) -> list[str]:
        """Delete the item's captions for ``languages``; return those removed."""
        removed = []
        for language in languages:
            try:
                await self.catalog.delete_caption(item.id, language)
            except NotFoundError:
                logger.debug("No %s caption on %s", language.upper(), item.title)
                continue
            removed.append(language)
        return removed
