"""Catalog service access: auth session, REST client, item sources."""

from captionline.catalog.client import CatalogClient
from captionline.catalog.session import AuthSession, Credential
from captionline.catalog.source import (
    CatalogItemSource,
    ItemSource,
    StaticItemSource,
    select_items,
)

__all__ = [
    "AuthSession",
    "CatalogClient",
    "CatalogItemSource",
    "Credential",
    "ItemSource",
    "StaticItemSource",
    "select_items",
]
