"""HTTP client for the upstream supplier catalog (CJ) API.

Every failure leaves this module as a ``CatalogError`` tagged with a
``CatalogErrorKind``; callers branch on the kind, never on message text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx
import structlog

from catalog_sync.config import Settings
from shared.constants import CATALOG_MAX_PAGE_SIZE

logger = structlog.get_logger()

LIST_PAGE_ENDPOINT = "/v1/product/myProduct/query"
DETAIL_ENDPOINT = "/v1/product/query"
VARIANTS_ENDPOINT = "/v1/product/variant/query"

# Upstream codes that mean the product is no longer sold.
REMOVED_CODES = frozenset({"PRODUCT_OFF_SHELF", "404"})
REMOVED_PHRASES = ("removed from shelves", "off shelf", "offline")


class CatalogErrorKind(str, Enum):
    """Failure classes the sync pipeline reacts to differently."""

    RATE_LIMITED = "rate_limited"
    REMOVED = "removed"
    TRANSIENT = "transient"
    OTHER = "other"


class CatalogError(Exception):
    """Error raised by the catalog client."""

    def __init__(
        self,
        message: str,
        kind: CatalogErrorKind = CatalogErrorKind.OTHER,
        status: int | None = None,
        code: str | None = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.code = code
        self.body = body

    def __repr__(self) -> str:
        return f"CatalogError(kind={self.kind.value}, status={self.status}, code={self.code!r}, message={self.message!r})"


@dataclass
class CatalogPage:
    """One page of the upstream product listing."""

    items: list[dict[str, Any]] = field(default_factory=list)
    page_num: int = 1
    page_size: int = CATALOG_MAX_PAGE_SIZE
    total_pages: int = 0
    total_records: int = 0


class CatalogClient(Protocol):
    """Consumed interface of the upstream catalog."""

    def list_page(
        self, page_num: int, page_size: int, filters: dict[str, Any] | None = None
    ) -> CatalogPage: ...

    def get_detail(self, pid: str) -> dict[str, Any]: ...

    def get_variants(self, pid: str) -> Any: ...


def classify_error(
    status: int | None,
    code: str | None,
    message: str,
    product_scoped: bool = False,
) -> CatalogErrorKind:
    """Map an upstream failure to a CatalogErrorKind."""
    if status == 429 or code == "429":
        return CatalogErrorKind.RATE_LIMITED
    # Server failures never count as removal, whatever the message says.
    if status is not None and status >= 500:
        return CatalogErrorKind.TRANSIENT
    if product_scoped:
        # Envelope codes only; an HTTP 404 means a bad path, not a delisted product.
        if (code or "") in REMOVED_CODES:
            return CatalogErrorKind.REMOVED
        lowered = message.lower()
        if any(phrase in lowered for phrase in REMOVED_PHRASES):
            return CatalogErrorKind.REMOVED
    return CatalogErrorKind.OTHER


def extract_page_items(data: Any) -> list[dict[str, Any]]:
    """Normalize the listing shapes the upstream API has been seen to return."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if not isinstance(data, dict):
        return []

    if isinstance(data.get("content"), list):
        items: list[dict[str, Any]] = []
        for entry in data["content"]:
            if not isinstance(entry, dict):
                continue
            if isinstance(entry.get("productList"), list):
                items.extend(p for p in entry["productList"] if isinstance(p, dict))
            else:
                items.append(entry)
        return items

    for key in ("productList", "list"):
        if isinstance(data.get(key), list):
            return [item for item in data[key] if isinstance(item, dict)]
    return []


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class CJCatalogClient:
    """Synchronous httpx client for the CJ product endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self.settings = settings
        self.http = http_client or httpx.Client(
            base_url=settings.catalog_api_base_url,
            timeout=settings.catalog_api_timeout,
            headers={"CJ-Access-Token": settings.catalog_api_token},
        )

    def close(self) -> None:
        self.http.close()

    def list_page(
        self, page_num: int, page_size: int, filters: dict[str, Any] | None = None
    ) -> CatalogPage:
        size = min(CATALOG_MAX_PAGE_SIZE, max(1, page_size))
        params = {
            k: v
            for k, v in {**(filters or {}), "pageNum": page_num, "pageSize": size}.items()
            if v is not None and v != ""
        }
        data = self._request("GET", LIST_PAGE_ENDPOINT, params=params)

        # Some responses wrap the page in a second {"data": {...}} envelope.
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]

        page = CatalogPage(items=extract_page_items(data), page_num=page_num, page_size=size)
        if isinstance(data, dict):
            page.page_num = _as_int(data.get("pageNumber"), page_num)
            page.page_size = _as_int(data.get("pageSize"), size)
            page.total_records = _as_int(data.get("totalRecords", data.get("total")))
            page.total_pages = _as_int(data.get("totalPages"))
            if not page.total_pages and page.total_records:
                page.total_pages = -(-page.total_records // page.page_size)
        return page

    def get_detail(self, pid: str) -> dict[str, Any]:
        data = self._request("GET", DETAIL_ENDPOINT, params={"pid": pid}, product_scoped=True)
        if not isinstance(data, dict):
            raise CatalogError(
                f"Unexpected detail payload for {pid}", kind=CatalogErrorKind.OTHER, body=data
            )
        return data

    def get_variants(self, pid: str) -> Any:
        return self._request("GET", VARIANTS_ENDPOINT, params={"pid": pid}, product_scoped=True)

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        product_scoped: bool = False,
    ) -> Any:
        try:
            response = self.http.request(method, path, params=params)
        except httpx.TransportError as e:
            raise CatalogError(
                f"{method} {path} failed: {e}", kind=CatalogErrorKind.TRANSIENT
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        # CJ envelope: {"code": 200, "result": true, "message": "...", "data": ...}
        if isinstance(body, dict) and "code" in body and "result" in body:
            ok = bool(body.get("result")) and _as_int(body.get("code")) == 200
            message = str(body.get("message") or "")
            code = str(body.get("code"))
        else:
            ok = response.is_success
            message = response.reason_phrase or ""
            code = None

        if ok and response.is_success:
            return body.get("data") if isinstance(body, dict) and "result" in body else body

        kind = classify_error(response.status_code, code, message, product_scoped)
        logger.warning(
            "Catalog API error",
            path=path,
            status=response.status_code,
            code=code,
            kind=kind.value,
            message=message,
        )
        raise CatalogError(
            message or f"Catalog API error {response.status_code}",
            kind=kind,
            status=response.status_code,
            code=code,
            body=body,
        )
