"""Unit tests for the upstream catalog client."""

import httpx
import pytest

from catalog_sync.config import Settings
from catalog_sync.infrastructure.catalog.client import (
    CatalogError,
    CatalogErrorKind,
    CJCatalogClient,
    classify_error,
    extract_page_items,
)


def _make_client(settings: Settings, handler) -> CJCatalogClient:
    http = httpx.Client(base_url="https://cj.test/api2.0", transport=httpx.MockTransport(handler))
    return CJCatalogClient(settings, http_client=http)


def _envelope(data, code: int = 200, result: bool = True, message: str = "Success") -> dict:
    return {"code": code, "result": result, "message": message, "data": data}


class TestClassifyError:
    def test_rate_limit_by_status_or_code(self) -> None:
        assert classify_error(429, None, "") is CatalogErrorKind.RATE_LIMITED
        assert classify_error(200, "429", "Too many requests") is CatalogErrorKind.RATE_LIMITED

    def test_removed_only_for_product_requests(self) -> None:
        assert classify_error(200, "PRODUCT_OFF_SHELF", "", product_scoped=True) is CatalogErrorKind.REMOVED
        assert classify_error(200, "1", "Product removed from shelves", product_scoped=True) is CatalogErrorKind.REMOVED
        assert classify_error(404, None, "", product_scoped=False) is CatalogErrorKind.OTHER

    def test_server_errors_are_transient(self) -> None:
        assert classify_error(503, None, "") is CatalogErrorKind.TRANSIENT

    def test_server_error_with_removal_wording_is_transient(self) -> None:
        kind = classify_error(503, "503", "Service temporarily offline", product_scoped=True)

        assert kind is CatalogErrorKind.TRANSIENT

    def test_removed_matches_envelope_code_not_http_status(self) -> None:
        assert classify_error(200, "404", "Product not found", product_scoped=True) is CatalogErrorKind.REMOVED
        assert classify_error(404, None, "Not Found", product_scoped=True) is CatalogErrorKind.OTHER

    def test_other(self) -> None:
        assert classify_error(400, "1600", "param error") is CatalogErrorKind.OTHER


class TestExtractPageItems:
    def test_list(self) -> None:
        assert extract_page_items([{"pid": "1"}, "junk"]) == [{"pid": "1"}]

    def test_content_with_product_lists(self) -> None:
        data = {"content": [{"productList": [{"pid": "1"}, {"pid": "2"}]}, {"pid": "3"}]}

        assert [i["pid"] for i in extract_page_items(data)] == ["1", "2", "3"]

    def test_list_key(self) -> None:
        assert extract_page_items({"list": [{"pid": "1"}]}) == [{"pid": "1"}]

    def test_unknown_shape(self) -> None:
        assert extract_page_items({"foo": 1}) == []
        assert extract_page_items(None) == []


class TestCJCatalogClient:
    def test_list_page_parses_totals(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json=_envelope({"list": [{"pid": "CJ1"}], "pageNum": 2, "pageSize": 10, "total": 25}),
            )

        page = _make_client(test_settings, handler).list_page(2, 10, {"keyword": "lamp", "categoryId": None})

        assert page.items == [{"pid": "CJ1"}]
        assert page.total_records == 25
        assert page.total_pages == 3
        assert seen[0].url.params["keyword"] == "lamp"
        assert "categoryId" not in seen[0].url.params

    def test_page_size_is_clamped(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_envelope([]))

        _make_client(test_settings, handler).list_page(1, 10_000)

        assert seen[0].url.params["pageSize"] == "100"

    def test_get_detail_unwraps_data(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_envelope({"pid": request.url.params["pid"]}))

        assert _make_client(test_settings, handler).get_detail("CJ9") == {"pid": "CJ9"}

    def test_removed_product(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json=_envelope(None, code=1600, result=False, message="Product is offline")
            )

        with pytest.raises(CatalogError) as exc_info:
            _make_client(test_settings, handler).get_variants("CJ9")

        assert exc_info.value.kind is CatalogErrorKind.REMOVED

    def test_http_429(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="slow down")

        with pytest.raises(CatalogError) as exc_info:
            _make_client(test_settings, handler).get_detail("CJ9")

        assert exc_info.value.kind is CatalogErrorKind.RATE_LIMITED
        assert exc_info.value.status == 429

    def test_transport_error_is_transient(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CatalogError) as exc_info:
            _make_client(test_settings, handler).list_page(1, 10)

        assert exc_info.value.kind is CatalogErrorKind.TRANSIENT
