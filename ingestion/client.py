from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from charterdesk.core.config import Settings, settings as default_settings

from .normalize import parse_capacity, parse_id

BOOKINGS_PATH = "/wp-json/wc-bookings/v1/bookings"
PRODUCTS_PATH = "/wp-json/wc/v3/products"
BOOKING_PRODUCT_PATH = "/wp-json/wc-bookings/v1/products/{product_id}"
USER_AGENT = "CharterDesk/1.0"


class UpstreamNotConfigured(RuntimeError):
    """Raised when an upstream call is attempted without URL or credentials."""


@dataclass(slots=True)
class PageSet:
    """Records gathered by :class:`PagedRecordFetcher` and how the walk ended."""

    records: list[dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    exhausted: bool = False
    failed: bool = False
    error: str | None = None

    @property
    def truncated(self) -> bool:
        return not self.exhausted


def extract_records(payload: Any) -> list[dict[str, Any]] | None:
    """Return the record list from a page payload, or ``None`` if unrecognized."""

    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        candidates = (payload.get("data"), payload.get("bookings"), payload.get("items"))
        for value in candidates:
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return None


class PagedRecordFetcher:
    """Walk a page-numbered listing endpoint with a hard page ceiling.

    Any failing page ends the walk; the records gathered so far are kept.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        path: str,
        *,
        page_size: int = 100,
        max_pages: int = 5,
        timeout: float = 4.0,
        retry_first_page: bool = False,
        base_params: Mapping[str, Any] | None = None,
    ) -> None:
        self.http = http
        self.path = path
        self.page_size = page_size
        self.max_pages = max_pages
        self.timeout = timeout
        self.retry_first_page = retry_first_page
        self.base_params = dict(base_params or {})

    def _build_params(self, query: Mapping[str, Any], page: int) -> dict[str, Any]:
        params: dict[str, Any] = dict(self.base_params)
        for key, value in query.items():
            if value is None:
                continue
            params[key] = value
        params["per_page"] = self.page_size
        params["page"] = page
        return params

    async def fetch_page(self, query: Mapping[str, Any], page: int) -> list[dict[str, Any]]:
        params = self._build_params(query, page)
        response = await self.http.get(self.path, params=params, timeout=self.timeout)
        response.raise_for_status()
        records = extract_records(response.json())
        if records is None:
            raise ValueError(f"Unexpected payload shape on {self.path} page {page}")
        return records

    async def _fetch_with_retry(
        self, query: Mapping[str, Any], page: int
    ) -> list[dict[str, Any]]:
        try:
            return await self.fetch_page(query, page)
        except (httpx.HTTPError, ValueError) as exc:
            if page != 1 or not self.retry_first_page:
                raise
            logger.warning("Retrying {} page 1 after error: {}", self.path, exc)
            return await self.fetch_page(query, page)

    async def fetch_all(self, query: Mapping[str, Any] | None = None) -> PageSet:
        query = query or {}
        result = PageSet()
        for page in range(1, self.max_pages + 1):
            try:
                batch = await self._fetch_with_retry(query, page)
            except httpx.TimeoutException as exc:
                logger.warning("Timeout on {} page {}: {}", self.path, page, exc)
                result.failed, result.error = True, f"timeout on page {page}"
                break
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Failed to fetch {} page {}: HTTP {}",
                    self.path,
                    page,
                    exc.response.status_code,
                )
                result.failed = True
                result.error = f"HTTP {exc.response.status_code} on page {page}"
                break
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Failed to fetch {} page {}: {}", self.path, page, exc)
                result.failed, result.error = True, f"{type(exc).__name__} on page {page}"
                break

            result.records.extend(batch)
            result.pages_fetched = page
            if len(batch) < self.page_size:
                result.exhausted = True
                break
        else:
            logger.warning(
                "Stopping pagination of {} after {} pages", self.path, self.max_pages
            )

        logger.info(
            "Fetched {} records from {} across {} page(s)",
            len(result.records),
            self.path,
            result.pages_fetched,
        )
        return result


class WooCommerceClient:
    """Async wrapper around the WooCommerce and WooCommerce Bookings REST endpoints."""

    def __init__(
        self,
        *,
        config: Settings | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or default_settings
        self.timeout = self.config.upstream_timeout
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=self.config.woocommerce_store_url or "",
            timeout=self.timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            auth=self._basic_auth(),
        )

    @property
    def configured(self) -> bool:
        return self.config.woocommerce_configured

    def _basic_auth(self) -> httpx.BasicAuth | None:
        if self.config.woocommerce_auth_mode != "basic" or not self.configured:
            return None
        return httpx.BasicAuth(
            self.config.woocommerce_consumer_key, self.config.woocommerce_consumer_secret
        )

    def auth_params(self) -> dict[str, str]:
        if self.config.woocommerce_auth_mode != "query" or not self.configured:
            return {}
        return {
            "consumer_key": self.config.woocommerce_consumer_key,
            "consumer_secret": self.config.woocommerce_consumer_secret,
        }

    def _require_config(self) -> None:
        if not self.configured:
            raise UpstreamNotConfigured(
                "WOOCOMMERCE_STORE_URL, WOOCOMMERCE_CONSUMER_KEY and "
                "WOOCOMMERCE_CONSUMER_SECRET must be set"
            )

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        self._require_config()
        merged = {**self.auth_params(), **(params or {})}
        response = await self.http.get(path, params=merged, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def bookings_fetcher(self) -> PagedRecordFetcher:
        return PagedRecordFetcher(
            self.http,
            BOOKINGS_PATH,
            page_size=self.config.bookings_page_size,
            max_pages=self.config.bookings_max_pages,
            timeout=self.timeout,
            retry_first_page=self.config.retry_first_page,
            base_params=self.auth_params(),
        )

    async def fetch_bookings(
        self,
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        status: str | None = None,
    ) -> PageSet:
        self._require_config()
        query = {
            "start_date_min": start_date,
            "start_date_max": end_date,
            "status": status,
        }
        logger.info("WooCommerce bookings query {}", {k: v for k, v in query.items() if v})
        return await self.bookings_fetcher().fetch_all(query)

    async def fetch_product_names(self, product_ids: Iterable[int]) -> dict[int, str]:
        """Resolve product names, falling back to one request per id."""

        ids = sorted({pid for pid in product_ids if pid})
        if not ids:
            return {}
        names: dict[int, str] = {}
        try:
            payload = await self.get_json(
                PRODUCTS_PATH,
                {"include": ",".join(str(pid) for pid in ids), "per_page": len(ids)},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Batch product lookup failed ({}); fetching individually", exc)
            payload = None
            for pid in ids:
                try:
                    product = await self.get_json(f"{PRODUCTS_PATH}/{pid}")
                except (httpx.HTTPError, ValueError) as item_exc:
                    logger.debug("Product {} lookup failed: {}", pid, item_exc)
                    continue
                if isinstance(product, dict) and product.get("name"):
                    names[pid] = str(product["name"])
        if isinstance(payload, list):
            for product in payload:
                if not isinstance(product, dict):
                    continue
                pid = parse_id(product.get("id"))
                if pid is not None and product.get("name"):
                    names[pid] = str(product["name"])
        return names

    async def fetch_product_capacity(self, product_id: int) -> int | None:
        try:
            payload = await self.get_json(BOOKING_PRODUCT_PATH.format(product_id=product_id))
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Capacity lookup for product {} failed: {}", product_id, exc)
            return None
        return parse_capacity(payload)

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "WooCommerceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


async def gather_bounded(
    keys: Iterable[Any], worker_count: int, fetch
) -> dict[Any, Any]:
    """Run ``fetch(key)`` for every key with at most ``worker_count`` in flight."""

    pending = list(dict.fromkeys(keys))
    results: dict[Any, Any] = {}
    cursor = iter(pending)

    async def worker() -> None:
        for key in cursor:
            results[key] = await fetch(key)

    workers = min(worker_count, len(pending)) or 1
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results
