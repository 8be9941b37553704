"""
Source filter: reconcile a client-declared source allow-list with the live catalog.

Per category (websites, pdfs, documents) only entries present in the catalog
are kept, and every rejected entry yields one warning naming it. When nothing
survives, ``validated`` is None, meaning "no filtering applied", which is
distinct from an empty selection.

When the catalog cannot be read the filter fails open: the request passes
through unvalidated with a warning saying validation was skipped.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from gateway.core.config import get_settings
from gateway.core.errors import FilterValidationFailure
from gateway.core.logging import get_logger
from gateway.core.metrics import record_source_filter_warning
from gateway.services.sources.selection import CATEGORIES, SourceSelection
from gateway.services.sources.catalog import CatalogProvider, HttpCatalogProvider

logger = get_logger(__name__)

NO_VALID_SOURCES_WARNING = (
    "No valid data sources found in knowledge base. All selected sources will be ignored."
)
SERVICE_UNAVAILABLE_WARNING = "Data source validation skipped - service not available"


@dataclass
class FilterResult:
    validated: Optional[SourceSelection]
    warnings: List[str] = field(default_factory=list)
    source_count: int = 0
    original_count: int = 0
    validation_skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validated": self.validated.to_dict() if self.validated else None,
            "warnings": list(self.warnings),
            "source_count": self.source_count,
            "original_count": self.original_count,
            "validation_skipped": self.validation_skipped,
        }


def filter_sources(requested: Optional[SourceSelection], catalog: SourceSelection) -> FilterResult:
    """
    Keep only requested entries confirmed by the catalog.

    Pure function: the same inputs always give the same result, and
    re-filtering a validated selection against the same catalog returns it
    unchanged.
    """
    if requested is None or requested.is_empty():
        return FilterResult(validated=None)

    warnings: List[str] = []
    kept: Dict[str, Tuple[str, ...]] = {}
    for name, label in CATEGORIES:
        available = set(catalog.entries(name))
        valid = []
        for entry in requested.entries(name):
            if entry in available:
                valid.append(entry)
            else:
                warnings.append(f'{label} "{entry}" not found in knowledge base')
        kept[name] = tuple(valid)

    validated = SourceSelection(**kept)
    if validated.is_empty():
        warnings.append(NO_VALID_SOURCES_WARNING)

    return FilterResult(
        validated=None if validated.is_empty() else validated,
        warnings=warnings,
        source_count=validated.count(),
        original_count=requested.count(),
    )


class SourceFilterService:
    """
    Validates source selections against the catalog collaborator.

    A missing collaborator or a failing catalog fetch never blocks the
    request: the selection passes through unvalidated with a warning.
    """

    def __init__(self, catalog_provider: Optional[CatalogProvider] = None):
        self.catalog_provider = catalog_provider

    def _fail_open(self, requested: SourceSelection, warning: str) -> FilterResult:
        record_source_filter_warning("validation_skipped")
        return FilterResult(
            validated=requested,
            warnings=[warning],
            source_count=requested.count(),
            original_count=requested.count(),
            validation_skipped=True,
        )

    async def validate(self, requested: Optional[SourceSelection]) -> FilterResult:
        if requested is None or requested.is_empty():
            return FilterResult(validated=None)

        if self.catalog_provider is None:
            logger.warning("source_filter_skipped", reason="catalog_unavailable")
            return self._fail_open(requested, SERVICE_UNAVAILABLE_WARNING)

        try:
            catalog = await self.catalog_provider.fetch()
        except Exception as e:
            failure = FilterValidationFailure(f"Data source validation failed: {e}")
            logger.warning(
                "source_filter_failed_open",
                error=str(e),
                error_type=type(e).__name__,
                requested_count=requested.count(),
            )
            return self._fail_open(requested, failure.message)

        result = filter_sources(requested, catalog)
        for warning in result.warnings:
            record_source_filter_warning("no_valid_sources" if warning == NO_VALID_SOURCES_WARNING else "rejected")
        logger.info(
            "source_filter_applied",
            requested_count=result.original_count,
            validated_count=result.source_count,
            warning_count=len(result.warnings),
        )
        return result


_source_filter_service: Optional[SourceFilterService] = None


def get_source_filter_service() -> SourceFilterService:
    """Global filter service; without CATALOG_URL validation is skipped."""
    global _source_filter_service
    if _source_filter_service is None:
        catalog_url = get_settings().catalog_url
        _source_filter_service = SourceFilterService(HttpCatalogProvider(catalog_url) if catalog_url else None)
    return _source_filter_service
