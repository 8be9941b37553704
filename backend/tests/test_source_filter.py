"""
Unit tests for source filtering against the catalog.

Tests verify:
- Unknown entries are dropped with one warning each
- No request and all-rejected requests give validated=None
- Re-filtering a validated selection is idempotent
- Catalog failures fail open with an explicit warning
- Catalog payload parsing
"""
import httpx
import pytest

from gateway.services.sources.catalog import (
    CatalogProvider,
    HttpCatalogProvider,
    StaticCatalogProvider,
    parse_catalog,
)
from gateway.services.sources.filter import (
    NO_VALID_SOURCES_WARNING,
    SERVICE_UNAVAILABLE_WARNING,
    SourceFilterService,
    filter_sources,
)
from gateway.services.sources.selection import SourceSelection

CATALOG = SourceSelection(websites=("known.com",), pdfs=("handbook.pdf",), documents=("faq.docx",))


class FailingCatalog(CatalogProvider):
    async def fetch(self):
        raise httpx.ConnectError("catalog down")


class TestFilterSources:

    def test_unknown_website_is_rejected_with_warning(self):
        result = filter_sources(SourceSelection(websites=("known.com", "unknown.com")), SourceSelection(websites=("known.com",)))

        assert result.validated == SourceSelection(websites=("known.com",))
        assert result.validated.to_dict() == {"websites": ["known.com"]}
        assert len(result.warnings) == 1
        assert "unknown.com" in result.warnings[0]
        assert result.source_count == 1
        assert result.original_count == 2

    def test_empty_request_means_no_filtering(self):
        result = filter_sources(SourceSelection(), CATALOG)

        assert result.validated is None
        assert result.warnings == []

    def test_missing_request_means_no_filtering(self):
        assert filter_sources(None, CATALOG).validated is None

    def test_all_rejected_gives_none_with_summary_warning(self):
        result = filter_sources(SourceSelection(pdfs=("missing.pdf",), documents=("gone.docx",)), CATALOG)

        assert result.validated is None
        assert result.warnings == [
            'PDF "missing.pdf" not found in knowledge base',
            'Document "gone.docx" not found in knowledge base',
            NO_VALID_SOURCES_WARNING,
        ]
        assert result.source_count == 0

    def test_categories_filtered_independently(self):
        requested = SourceSelection(
            websites=("known.com",),
            pdfs=("handbook.pdf", "other.pdf"),
            documents=("faq.docx",),
        )
        result = filter_sources(requested, CATALOG)

        assert result.validated == CATALOG
        assert result.warnings == ['PDF "other.pdf" not found in knowledge base']

    def test_refiltering_is_idempotent(self):
        requested = SourceSelection(websites=("known.com", "unknown.com"), pdfs=("handbook.pdf",))
        first = filter_sources(requested, CATALOG)
        second = filter_sources(first.validated, CATALOG)

        assert second.validated == first.validated
        assert second.warnings == []
        assert filter_sources(second.validated, CATALOG) == second

    def test_to_dict(self):
        data = filter_sources(SourceSelection(websites=("known.com", "x.com")), CATALOG).to_dict()

        assert data["validated"] == {"websites": ["known.com"]}
        assert data["validation_skipped"] is False


class TestSourceFilterService:

    @pytest.mark.asyncio
    async def test_validates_against_catalog(self):
        service = SourceFilterService(StaticCatalogProvider(CATALOG))
        result = await service.validate(SourceSelection(websites=("known.com", "unknown.com")))

        assert result.validated.websites == ("known.com",)
        assert result.validation_skipped is False

    @pytest.mark.asyncio
    async def test_without_catalog_fails_open(self):
        requested = SourceSelection(websites=("anything.com",))
        result = await SourceFilterService().validate(requested)

        assert result.validated == requested
        assert result.warnings == [SERVICE_UNAVAILABLE_WARNING]
        assert result.validation_skipped is True

    @pytest.mark.asyncio
    async def test_catalog_failure_fails_open(self):
        requested = SourceSelection(websites=("anything.com",))
        result = await SourceFilterService(FailingCatalog()).validate(requested)

        assert result.validated == requested
        assert result.validation_skipped is True
        assert result.warnings[0].startswith("Data source validation failed")

    @pytest.mark.asyncio
    async def test_empty_request_skips_catalog(self):
        result = await SourceFilterService(FailingCatalog()).validate(SourceSelection())

        assert result.validated is None
        assert result.warnings == []


class TestCatalog:

    def test_parse_plain_identifiers(self):
        catalog = parse_catalog({"websites": ["a.com"], "pdfs": ["b.pdf"], "documents": []})
        assert catalog == SourceSelection(websites=("a.com",), pdfs=("b.pdf",))

    def test_parse_item_objects_and_envelope(self):
        catalog = parse_catalog({
            "dataSources": {
                "websites": {"items": [{"domain": "a.com"}, {"domain": "b.com"}]},
                "pdfs": [{"fileName": "manual.pdf"}],
                "documents": [{"name": "notes.docx"}, {"unknown": "ignored"}],
            }
        })

        assert catalog.websites == ("a.com", "b.com")
        assert catalog.pdfs == ("manual.pdf",)
        assert catalog.documents == ("notes.docx",)

    @pytest.mark.asyncio
    async def test_http_catalog(self):
        def handler(request):
            assert request.url.path == "/catalog"
            return httpx.Response(200, json={"websites": [{"domain": "known.com"}]})

        provider = HttpCatalogProvider("http://catalog.local/catalog", transport=httpx.MockTransport(handler))
        catalog = await provider.fetch()

        assert catalog.websites == ("known.com",)

    @pytest.mark.asyncio
    async def test_http_catalog_error_raises(self):
        provider = HttpCatalogProvider(
            "http://catalog.local/catalog",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await provider.fetch()
