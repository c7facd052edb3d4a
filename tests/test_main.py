from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from charterdesk.domain import AvailabilitySlot, CustomerSnippet, NormalizedBookingEvent
from charterdesk.main import _booking_service, app
from charterdesk.services.booking_service import AvailabilityResult, BookingsResult

NY = "America/New_York"


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_service():
    service = MagicMock()
    app.dependency_overrides[_booking_service] = lambda: service
    return service


def _event(booking_id: int) -> NormalizedBookingEvent:
    return NormalizedBookingEvent(
        booking_id=booking_id,
        product_id=77,
        order_id=None,
        title="Reef Trip",
        start_ms=1718870400000,
        end_ms=1718884800000,
        participants=3,
        status="confirmed",
        customer=CustomerSnippet(name="Ana Ruiz", email="ana@example.com"),
        display_timezone=NY,
    )


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_availability(client, mock_service):
    """Verify /availability renders slots keyed by local date."""
    slot = AvailabilitySlot(
        product_id=77,
        product_name="Reef Trip",
        start_ms=1718870400000,
        end_ms=1718884800000,
        used=5,
        total=6,
    )
    mock_service.get_availability = AsyncMock(
        return_value=AvailabilityResult(timezone=NY, slots_by_date={"2024-06-20": [slot]})
    )

    response = client.get(
        "/availability", params={"start": "2024-06-20", "end": "2024-06-21", "product_ids": "77, 78"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["timezone"] == NY
    (rendered,) = body["slots"]["2024-06-20"]
    assert rendered["start_local"] == "2024-06-20 04:00"
    assert rendered["remaining"] == 1
    mock_service.get_availability.assert_awaited_once_with(
        date(2024, 6, 20), date(2024, 6, 21), [77, 78]
    )


def test_availability_without_capacity_has_no_remaining(client, mock_service):
    slot = AvailabilitySlot(product_id=78, product_name="Night Dive", start_ms=1718904600000, end_ms=1718904600000, used=2)
    mock_service.get_availability = AsyncMock(
        return_value=AvailabilityResult(timezone=NY, slots_by_date={"2024-06-20": [slot]})
    )

    body = client.get("/availability", params={"start": "2024-06-20", "end": "2024-06-20"}).json()

    (rendered,) = body["slots"]["2024-06-20"]
    assert rendered["total"] is None
    assert rendered["remaining"] is None
    assert rendered["used"] == 2


@pytest.mark.parametrize(
    "params",
    [
        {"start": "06/20/2024", "end": "2024-06-21"},
        {"start": "2024-06-20", "end": "2024-06-21", "product_ids": "77,abc"},
    ],
)
def test_malformed_queries_are_rejected(client, mock_service, params):
    mock_service.get_availability = AsyncMock()
    response = client.get("/availability", params=params)
    assert response.status_code == 400
    mock_service.get_availability.assert_not_awaited()


def test_service_validation_error_maps_to_400(client, mock_service):
    mock_service.get_aggregated_bookings = AsyncMock(side_effect=ValueError("end_date must not be before start_date"))
    response = client.get("/bookings", params={"start": "2024-06-21", "end": "2024-06-20"})
    assert response.status_code == 400
    assert "end_date" in response.json()["detail"]


def test_bookings(client, mock_service):
    """Verify /bookings returns envelope flags alongside grouped bookings."""
    mock_service.get_aggregated_bookings = AsyncMock(
        return_value=BookingsResult(
            timezone=NY,
            partial=True,
            cached=True,
            message="Showing partial bookings (timeout on page 2)",
            events_by_date={"2024-06-20": [_event(4101)]},
        )
    )

    response = client.get("/bookings", params={"start": "2024-06-20", "end": "2024-06-20", "status": "confirmed"})

    assert response.status_code == 200
    body = response.json()
    assert body["partial"] is True
    assert body["cached"] is True
    (booking,) = body["bookings"]["2024-06-20"]
    assert booking["id"] == "wc-4101"
    assert booking["customer"]["name"] == "Ana Ruiz"
    assert booking["start_local"] == "2024-06-20 04:00"
    mock_service.get_aggregated_bookings.assert_awaited_once_with(
        date(2024, 6, 20), date(2024, 6, 20), "confirmed"
    )


def test_unavailable_source_is_not_an_error(client, mock_service):
    mock_service.get_assigned_bookings = AsyncMock(
        return_value=BookingsResult(
            timezone=NY, source_available=False, message="Assignment source not configured"
        )
    )

    response = client.get(
        "/instructor/assigned-bookings",
        params={"instructor_id": 12, "start": "2024-06-20", "end": "2024-06-20"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["source_available"] is False
    assert body["bookings"] == {}


def test_timezone(client, mock_service):
    mock_service.resolver.resolve = AsyncMock(return_value=NY)
    mock_service.resolver.describe.return_value = {
        "timezone": NY,
        "source": "fallback:hardcoded",
        "resolved_at": None,
    }

    response = client.get("/timezone")

    assert response.status_code == 200
    assert response.json()["source"] == "fallback:hardcoded"
