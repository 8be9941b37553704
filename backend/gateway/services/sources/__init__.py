"""Source filtering against the live catalog."""

from .catalog import CatalogProvider, HttpCatalogProvider, StaticCatalogProvider
from .filter import FilterResult, SourceFilterService, filter_sources, get_source_filter_service
from .selection import SourceSelection

__all__ = [
    "CatalogProvider",
    "HttpCatalogProvider",
    "StaticCatalogProvider",
    "FilterResult",
    "SourceFilterService",
    "filter_sources",
    "get_source_filter_service",
    "SourceSelection",
]
