"""
Catalog collaborators: the live set of known source identifiers.

The HTTP catalog returns, per category, either plain identifiers or item
objects (``{"domain": ...}`` for websites, ``{"fileName": ...}`` for files).
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from gateway.core.logging import get_logger
from gateway.services.sources.selection import CATEGORIES, SourceSelection

logger = get_logger(__name__)

_ITEM_KEYS = ("id", "domain", "fileName", "file_name", "name")


class CatalogProvider(ABC):
    """Source of the current catalog."""

    @abstractmethod
    async def fetch(self) -> SourceSelection:
        """Return the known identifiers per category."""


class StaticCatalogProvider(CatalogProvider):
    """Fixed catalog (configuration or tests)."""

    def __init__(self, catalog: SourceSelection):
        self.catalog = catalog

    async def fetch(self) -> SourceSelection:
        return self.catalog


def _identifiers(raw: Any) -> List[str]:
    # Accept a list or the {"items": [...]} envelope
    if isinstance(raw, dict):
        raw = raw.get("items") or []
    identifiers: List[str] = []
    for item in raw or []:
        if isinstance(item, str):
            identifiers.append(item)
        elif isinstance(item, dict):
            for key in _ITEM_KEYS:
                if item.get(key):
                    identifiers.append(str(item[key]))
                    break
    return identifiers


def parse_catalog(payload: Dict[str, Any]) -> SourceSelection:
    """Parse a catalog response body into a SourceSelection."""
    sources = payload.get("dataSources", payload)
    return SourceSelection.from_mapping({name: _identifiers(sources.get(name)) for name, _ in CATEGORIES})


class HttpCatalogProvider(CatalogProvider):
    """Catalog read from an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch(self) -> SourceSelection:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.get(self.url)
        response.raise_for_status()
        catalog = parse_catalog(response.json())
        logger.debug(
            "catalog_fetched",
            websites=len(catalog.websites),
            pdfs=len(catalog.pdfs),
            documents=len(catalog.documents),
        )
        return catalog
