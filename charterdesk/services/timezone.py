"""Discovery of the business timezone from upstream systems."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from charterdesk.core.config import FALLBACK_SITE_TZ, Settings, settings as default_settings
from ingestion.timeparse import is_valid_zone

SITE_TZ_PATH = "/wp-json/klsd/v1/site-tz"
SYSTEM_STATUS_PATH = "/wp-json/wc/v3/system_status"
WP_SETTINGS_PATH = "/wp-json/wp/v2/settings"


@dataclass(slots=True)
class TimezoneContext:
    """The currently trusted business timezone and when it was resolved."""

    timezone: str
    source: str
    ttl: float
    resolved_at: float | None = None
    resolved_wall: datetime | None = None
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        if not self.timezone:
            raise ValueError("TimezoneContext requires a non-empty timezone")

    @property
    def is_stale(self) -> bool:
        if self.resolved_at is None:
            return True
        return self.clock() - self.resolved_at >= self.ttl

    def update(self, tz: str, source: str) -> None:
        if not tz:
            raise ValueError("Refusing to store an empty timezone")
        self.timezone = tz
        self.source = source
        self.resolved_at = self.clock()
        self.resolved_wall = datetime.now(timezone.utc)


def _pick(payload: Any, *paths: tuple[str, ...]) -> str | None:
    for path in paths:
        node = payload
        for part in path:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, str) and node.strip():
            return node.strip()
    return None


class TimezoneResolver:
    """Resolve the business timezone, trying each known source in turn.

    Sources, in order: the operator override, the booking-staff plugin
    endpoint on each content site, the WooCommerce system status, the
    WordPress general settings, and finally the configured default. Every
    attempt has its own timeout and any failure just moves on to the next.
    """

    def __init__(
        self,
        *,
        config: Settings | None = None,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or default_settings
        self.timeout = self.config.timezone_request_timeout
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=self.timeout, headers={"Accept": "application/json"}
        )
        self.context = TimezoneContext(
            timezone=self.config.default_site_tz,
            source="default",
            ttl=self.config.site_tz_ttl_seconds,
            clock=clock,
        )
        self._pending: asyncio.Task | None = None

    async def _try_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self.http.get(url, params=params, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("Timezone source {} unreachable: {}", url, exc)
            return None
        if response.is_error:
            logger.debug("Timezone source {} answered HTTP {}", url, response.status_code)
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug("Timezone source {} returned malformed JSON", url)
            return None

    def _attempts(self) -> list[tuple[str, Callable[[], Awaitable[str | None]]]]:
        config = self.config
        attempts: list[tuple[str, Callable[[], Awaitable[str | None]]]] = []

        for base in config.content_base_urls:
            url = f"{base}{SITE_TZ_PATH}"

            async def plugin(url: str = url) -> str | None:
                return _pick(await self._try_json(url), ("timezone",))

            attempts.append((url, plugin))

        if config.woocommerce_configured:
            url = f"{config.woocommerce_store_url}{SYSTEM_STATUS_PATH}"

            async def system_status(url: str = url) -> str | None:
                payload = await self._try_json(
                    url,
                    {
                        "consumer_key": config.woocommerce_consumer_key,
                        "consumer_secret": config.woocommerce_consumer_secret,
                    },
                )
                return _pick(payload, ("settings", "timezone"), ("environment", "timezone"))

            attempts.append((url, system_status))

        for base in (config.wp_base_url, config.wp_url):
            if not base:
                continue
            url = f"{base}{WP_SETTINGS_PATH}"

            async def wp_settings(url: str = url) -> str | None:
                return _pick(await self._try_json(url), ("timezone_string",), ("timezone",))

            attempts.append((url, wp_settings))

        return attempts

    async def _discover(self) -> tuple[str, str]:
        for source, attempt in self._attempts():
            candidate = await attempt()
            if candidate is None:
                continue
            if not is_valid_zone(candidate):
                logger.warning("Ignoring unknown timezone '{}' from {}", candidate, source)
                continue
            return candidate, source
        if self.config.default_site_tz == FALLBACK_SITE_TZ:
            return self.config.default_site_tz, "fallback:hardcoded"
        return self.config.default_site_tz, "env:DEFAULT_SITE_TZ"

    async def _refresh(self) -> str:
        tz, source = await self._discover()
        if tz != self.context.timezone or self.context.resolved_at is None:
            logger.info("Business timezone resolved to {} via {}", tz, source)
        self.context.update(tz, source)
        return tz

    async def resolve(self) -> str:
        override = self.config.force_site_tz
        if override:
            if self.context.timezone != override or self.context.is_stale:
                self.context.update(override, "env:FORCE_SITE_TZ")
            return override

        if not self.context.is_stale:
            return self.context.timezone

        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._refresh())
        return await asyncio.shield(self._pending)

    def describe(self) -> dict[str, Any]:
        return {
            "timezone": self.context.timezone,
            "source": self.context.source,
            "resolved_at": self.context.resolved_wall,
        }

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
