from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from charterdesk.core.config import Settings

STORE_URL = "https://shop.example"
WP_URL = "https://site.example"


class FakeClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_bookings() -> list[dict[str, object]]:
    path = Path(__file__).parent / "data" / "sample_bookings.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        _env_file=None,
        woocommerce_store_url=STORE_URL,
        woocommerce_consumer_key="ck_test",
        woocommerce_consumer_secret="cs_test",
        wp_base_url=WP_URL,
        default_site_tz="America/New_York",
        bookings_page_size=2,
        bookings_max_pages=3,
        prefetch_enabled=False,
    )
    monkeypatch.setattr("charterdesk.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("charterdesk.core.config.settings", settings)
    return settings


@pytest.fixture
def bare_settings() -> Settings:
    return Settings(_env_file=None, prefetch_enabled=False)
