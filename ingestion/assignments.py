from __future__ import annotations

from datetime import date
from typing import Any

import httpx
from loguru import logger

from charterdesk.core.config import Settings, settings as default_settings

from .client import USER_AGENT, UpstreamNotConfigured, extract_records
from .timeparse import local_day_bounds, to_utc_millis

ASSIGNED_BOOKINGS_PATH = "/wp-json/klsd/v1/assigned-bookings"


class AssignmentClient:
    """Reads staff assignments from the WordPress booking-staff plugin."""

    def __init__(
        self,
        *,
        config: Settings | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or default_settings
        self.timeout = self.config.upstream_timeout
        self._owns_http = http is None
        auth = None
        if self.config.wp_username and self.config.wp_app_password:
            auth = httpx.BasicAuth(self.config.wp_username, self.config.wp_app_password)
        self.http = http or httpx.AsyncClient(
            base_url=self.config.wordpress_base or "",
            timeout=self.timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            auth=auth,
        )

    @property
    def configured(self) -> bool:
        return self.config.wordpress_configured

    async def _get_list(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self.http.get(
            ASSIGNED_BOOKINGS_PATH, params=params, timeout=self.timeout
        )
        response.raise_for_status()
        records = extract_records(response.json())
        if records is None:
            raise ValueError("Unexpected assigned-bookings payload shape")
        return records

    async def fetch_assigned(
        self,
        subject_id: int,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        site_tz: str = "UTC",
    ) -> list[dict[str, Any]]:
        """Return raw assignment records for ``subject_id`` within the date range.

        The plugin filters on stored timestamps that are sometimes missing, so
        an empty ranged answer is retried without dates and filtered here.
        """

        if not self.configured:
            raise UpstreamNotConfigured("WP_BASE_URL (or WP_URL) must be set")

        params: dict[str, Any] = {"instructor_id": subject_id}
        if start_date:
            params["start"] = start_date.isoformat()
        if end_date:
            params["end"] = f"{end_date.isoformat()} 23:59:59"

        records = await self._get_list(params)
        if records or not (start_date or end_date):
            logger.info("Fetched {} assignments for subject {}", len(records), subject_id)
            return records

        logger.debug("Empty ranged assignment list for {}; refetching unbounded", subject_id)
        try:
            unbounded = await self._get_list({"instructor_id": subject_id})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Unbounded assignment refetch failed: {}", exc)
            return []

        min_ms = local_day_bounds(start_date, site_tz)[0] if start_date else None
        max_ms = local_day_bounds(end_date, site_tz)[1] if end_date else None
        filtered: list[dict[str, Any]] = []
        for record in unbounded:
            start_ms = to_utc_millis(record.get("start"), site_tz)
            if start_ms is None:
                continue
            if min_ms is not None and start_ms < min_ms:
                continue
            if max_ms is not None and start_ms > max_ms:
                continue
            filtered.append(record)
        logger.info(
            "Fetched {} assignments for subject {} after local filtering",
            len(filtered),
            subject_id,
        )
        return filtered

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
