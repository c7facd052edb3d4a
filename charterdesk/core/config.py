from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


FALLBACK_SITE_TZ = "America/New_York"


@dataclass(frozen=True, slots=True)
class ReconcilePolicy:
    """Thresholds used by the assignment reconciler, in milliseconds."""

    product_window_ms: int = 6 * 60 * 60 * 1000
    time_only_window_ms: int = 90 * 60 * 1000


def _strip_base_url(value: Any) -> str | None:
    if value is None:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    return candidate.rstrip("/")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    woocommerce_store_url: str | None = Field(
        default=None,
        description="Base URL of the WooCommerce store (without /wp-json)",
    )
    woocommerce_consumer_key: str | None = Field(
        default=None,
        description="WooCommerce REST API consumer key",
    )
    woocommerce_consumer_secret: str | None = Field(
        default=None,
        description="WooCommerce REST API consumer secret",
    )
    woocommerce_auth_mode: str = Field(
        default="query",
        description="How WooCommerce credentials are sent (query|basic)",
    )
    wp_base_url: str | None = Field(
        default=None,
        description="Base URL of the WordPress content site",
    )
    wp_url: str | None = Field(
        default=None,
        description="Legacy alias for the WordPress base URL",
    )
    wp_username: str | None = Field(
        default=None,
        description="WordPress service account used for assignment lookups",
    )
    wp_app_password: str | None = Field(
        default=None,
        description="WordPress application password for the service account",
    )
    force_site_tz: str | None = Field(
        default=None,
        description="Operator override for the business timezone (IANA name)",
    )
    default_site_tz: str = Field(
        default=FALLBACK_SITE_TZ,
        description="Timezone used when no upstream source resolves one",
    )
    site_tz_ttl_seconds: float = Field(
        default=60 * 60,
        description="How long a resolved business timezone is trusted before re-resolving",
        gt=0,
    )
    timezone_request_timeout: float = Field(
        default=4.0,
        description="Per-attempt timeout (seconds) for timezone discovery requests",
        gt=0,
    )
    upstream_timeout: float = Field(
        default=4.0,
        description="Per-request timeout (seconds) for booking and product requests",
        gt=0,
    )
    bookings_page_size: int = Field(
        default=100, description="Number of bookings requested per page", ge=1
    )
    bookings_max_pages: int = Field(
        default=5,
        description="Hard ceiling on pages fetched for a single booking query",
        ge=1,
    )
    retry_first_page: bool = Field(
        default=True,
        description="Retry the first bookings page once immediately when it fails",
    )
    bookings_ttl_seconds: float = Field(
        default=180, description="Cache lifetime of booking queries", gt=0
    )
    bookings_stale_grace_seconds: float = Field(
        default=600,
        description="How long an expired booking query may still be served while refreshing",
        ge=0,
    )
    availability_ttl_seconds: float = Field(
        default=600, description="Cache lifetime of availability queries", gt=0
    )
    assignments_ttl_seconds: float = Field(
        default=180, description="Cache lifetime of staff assignment lists", gt=0
    )
    product_ttl_seconds: float = Field(
        default=24 * 60 * 60,
        description="Cache lifetime of product names and capacities",
        gt=0,
    )
    product_lookup_workers: int = Field(
        default=6,
        description="Number of concurrent product metadata lookups",
        ge=1,
    )
    availability_excluded_statuses: list[str] | str = Field(
        default_factory=list,
        description="Booking statuses that do not count towards used capacity",
    )
    reconcile_product_window_minutes: float = Field(
        default=6 * 60,
        description="Window for matching an assignment by product and start time",
        ge=0,
    )
    reconcile_time_only_window_minutes: float = Field(
        default=90,
        description="Window for matching an assignment by start time alone",
        ge=0,
    )
    prefetch_enabled: bool = Field(
        default=True,
        description="Warm adjacent date windows in the background for long queries",
    )
    prefetch_min_span_days: int = Field(
        default=7,
        description="Minimum query span (days) that triggers background prefetch",
        ge=1,
    )

    @field_validator(
        "woocommerce_store_url", "wp_base_url", "wp_url", mode="before"
    )
    @classmethod
    def _normalize_base_url(cls, value: Any) -> Any:
        return _strip_base_url(value)

    @field_validator("woocommerce_auth_mode")
    @classmethod
    def _validate_auth_mode(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in {"query", "basic"}:
            raise ValueError("WOOCOMMERCE_AUTH_MODE must be either 'query' or 'basic'")
        return lowered

    @field_validator("force_site_tz", mode="before")
    @classmethod
    def _blank_override(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("default_site_tz")
    @classmethod
    def _validate_default_tz(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate:
            return FALLBACK_SITE_TZ
        try:
            ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"DEFAULT_SITE_TZ '{value}' is not a known IANA timezone") from exc
        return candidate

    @field_validator("availability_excluded_statuses", mode="after")
    @classmethod
    def _parse_statuses(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        raise ValueError(
            "AVAILABILITY_EXCLUDED_STATUSES must be a list or comma-separated string"
        )

    @property
    def woocommerce_configured(self) -> bool:
        return bool(
            self.woocommerce_store_url
            and self.woocommerce_consumer_key
            and self.woocommerce_consumer_secret
        )

    @property
    def wordpress_base(self) -> str | None:
        for candidate in (self.wp_base_url, self.wp_url, self.woocommerce_store_url):
            if candidate:
                return str(candidate)
        return None

    @property
    def wordpress_configured(self) -> bool:
        return bool(self.wordpress_base)

    @property
    def content_base_urls(self) -> tuple[str, ...]:
        """Distinct content-site bases in the order timezone discovery tries them."""

        seen: list[str] = []
        for candidate in (self.wp_base_url, self.wp_url, self.woocommerce_store_url):
            if candidate and str(candidate) not in seen:
                seen.append(str(candidate))
        return tuple(seen)

    @property
    def reconcile_policy(self) -> ReconcilePolicy:
        return ReconcilePolicy(
            product_window_ms=int(self.reconcile_product_window_minutes * 60 * 1000),
            time_only_window_ms=int(self.reconcile_time_only_window_minutes * 60 * 1000),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
