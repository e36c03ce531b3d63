from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pycourier._api._common import call_json
from pycourier.client import CourierClient
from pycourier.config import CourierConfig
from pycourier.exceptions import (
    CourierApiError,
    CourierConfigError,
    CourierError,
    CourierTransportError,
    RemoteRejectionError,
)
from pycourier.models.delivery import DeliveryReview, DeliveryStage, VerificationData
from pycourier.models.location import Location
from pycourier.models.payout import PayoutStatus
from pycourier.models.scan import ScanArea, ScanSettings


class _RecordingTransport:
    def __init__(self, response: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.response = response if response is not None else {"success": True}
        self.error = error
        self.requests: list[tuple[str, str, Mapping[str, Any] | None, Mapping[str, Any] | None]] = []

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.requests.append((method, endpoint, params, payload))
        if self.error is not None:
            raise self.error
        return self.response


_HERE = Location(lat=6.5244, lng=3.3792, accuracy=8)


@pytest.mark.asyncio
async def test_success_false_envelope_raises_api_error() -> None:
    transport = _RecordingTransport({"success": False, "message": "Driver is offline", "code": "DRIVER_OFFLINE"})
    with pytest.raises(CourierApiError) as exc_info:
        await call_json(transport, "GET", "/driver/orders/available")
    exc = exc_info.value
    assert not isinstance(exc, RemoteRejectionError)
    assert str(exc) == "Driver is offline"
    assert exc.code == "DRIVER_OFFLINE"
    assert exc.endpoint == "/driver/orders/available"


@pytest.mark.asyncio
async def test_rejection_flag_turns_refusals_into_remote_rejection() -> None:
    transport = _RecordingTransport({"success": False, "message": "Order already taken"})
    with pytest.raises(RemoteRejectionError, match="Order already taken"):
        await call_json(transport, "POST", "/x", rejection=True)

    transport = _RecordingTransport(error=CourierApiError("Conflict", code="409", endpoint="/x"))
    with pytest.raises(RemoteRejectionError) as exc_info:
        await call_json(transport, "POST", "/x", rejection=True)
    assert exc_info.value.code == "409"


@pytest.mark.asyncio
async def test_transport_errors_pass_through_untouched() -> None:
    transport = _RecordingTransport(error=CourierTransportError("HTTP 503", status_code=503))
    with pytest.raises(CourierTransportError) as exc_info:
        await call_json(transport, "POST", "/x", rejection=True)
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_client_requires_token_without_injected_transport() -> None:
    with pytest.raises(CourierConfigError):
        async with CourierClient(CourierConfig()):
            pass


@pytest.mark.asyncio
async def test_client_outside_context_raises() -> None:
    client = CourierClient(CourierConfig(access_token="t"))
    with pytest.raises(CourierError):
        await client.get_payout_status("p1")


@pytest.mark.asyncio
async def test_available_orders_query_and_parsing() -> None:
    transport = _RecordingTransport(
        {
            "success": True,
            "data": {
                "orders": [{"_id": "a", "priority": "high"}, {"orderRef": "no-id"}, {"_id": "b"}],
                "count": 3,
            },
        }
    )
    settings = ScanSettings(area=ScanArea.CURRENT, radius=3, vehicle_filter=["bike"])

    async with CourierClient(CourierConfig(), transport=transport) as client:
        orders = await client.get_available_orders(settings, _HERE)

    assert [o.id for o in orders] == ["a", "b"]
    method, endpoint, params, _ = transport.requests[0]
    assert (method, endpoint) == ("GET", "/driver/orders/available")
    assert params is not None
    assert params["radius"] == 3
    assert params["vehicleFilter"] == "bike"
    assert params["lat"] == 6.5244


@pytest.mark.asyncio
async def test_accept_order_posts_location_and_parses_response() -> None:
    transport = _RecordingTransport(
        {"success": True, "data": {"order": {"_id": "a", "status": "accepted"}, "user": {"_id": "u1"}}}
    )
    async with CourierClient(CourierConfig(), transport=transport) as client:
        response = await client.accept_order("a", _HERE)

    assert response.order["status"] == "accepted"
    assert response.user is not None and response.user.id == "u1"
    method, endpoint, _, payload = transport.requests[0]
    assert (method, endpoint) == ("POST", "/driver/orders/a/accept")
    assert payload == {"location": {"lat": 6.5244, "lng": 3.3792, "accuracy": 8.0}}


@pytest.mark.asyncio
async def test_accept_refusal_is_remote_rejection() -> None:
    transport = _RecordingTransport(error=CourierApiError("Order no longer available", code="410"))
    async with CourierClient(CourierConfig(), transport=transport) as client:
        with pytest.raises(RemoteRejectionError, match="no longer available"):
            await client.accept_order("a", _HERE)


@pytest.mark.asyncio
async def test_stage_calls_carry_stage_and_location() -> None:
    transport = _RecordingTransport({"success": True, "data": {"verified": True}})
    async with CourierClient(CourierConfig(), transport=transport) as client:
        await client.arrive_at_pickup("a", _HERE)
        await client.confirm_pickup("a", VerificationData(notes="sealed"), None)
        assert await client.verify_delivery_token("a", "4821", DeliveryStage.ARRIVED_DROPOFF) is True
        await client.cancel_delivery("a", "vehicle_breakdown", None, _HERE, DeliveryStage.PICKED_UP)
        await client.submit_review("a", DeliveryReview(rating=4))

    arrive, confirm, verify, cancel, review = (request[3] for request in transport.requests)
    assert arrive == {
        "orderId": "a",
        "stage": "arrived_pickup",
        "locationDetails": {"lat": 6.5244, "lng": 3.3792, "accuracy": 8.0},
    }
    assert confirm is not None and "locationDetails" not in confirm
    assert confirm["verificationData"]["notes"] == "sealed"
    assert verify == {"orderId": "a", "deliveryToken": "4821", "stage": "arrived_dropoff"}
    assert cancel is not None and cancel["reason"] == "vehicle_breakdown"
    assert "description" not in cancel
    assert cancel["stage"] == "picked_up"
    assert review is not None and review["rating"] == 4


@pytest.mark.asyncio
async def test_payout_status_defaults_payout_id() -> None:
    transport = _RecordingTransport({"success": True, "data": {"status": "processing", "amount": 5000}})
    async with CourierClient(CourierConfig(), transport=transport) as client:
        result = await client.get_payout_status("p9")

    assert result.payout_id == "p9"
    assert result.status == PayoutStatus.PROCESSING
    assert transport.requests[0][1] == "/driver/finance/payout/p9/status"


@pytest.mark.asyncio
async def test_unexpected_payload_is_api_error() -> None:
    transport = _RecordingTransport({"success": True, "data": {"earnings": "lots", "user": "nobody"}})
    async with CourierClient(CourierConfig(), transport=transport) as client:
        with pytest.raises(CourierApiError) as exc_info:
            await client.complete_delivery("a", VerificationData(), None)
    assert exc_info.value.code == "invalid_payload"
