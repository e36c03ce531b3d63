"""In-delivery stage endpoints.

Every call reports the driver's current stage and position so the
backend can audit the transition.
"""

from __future__ import annotations

from typing import Any

from pycourier._api._common import call_json, parse_model, unwrap_data
from pycourier._constants import (
    ARRIVE_DROPOFF_ENDPOINT,
    ARRIVE_PICKUP_ENDPOINT,
    CANCEL_DELIVERY_ENDPOINT,
    COMPLETE_DELIVERY_ENDPOINT,
    CONFIRM_PICKUP_ENDPOINT,
    LOCATION_LOSS_ENDPOINT,
    SUBMIT_REVIEW_ENDPOINT,
    UPDATE_LOCATION_ENDPOINT,
    VERIFY_TOKEN_ENDPOINT,
)
from pycourier._transport import Transport
from pycourier.models.delivery import CompletionResult, DeliveryReview, DeliveryStage, VerificationData
from pycourier.models.location import Location


def _stage_payload(
    order_id: str,
    stage: DeliveryStage,
    location: Location | None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"orderId": order_id, "stage": stage.value}
    if location is not None:
        payload["locationDetails"] = location.to_payload()
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


async def arrive_at_pickup(transport: Transport, order_id: str, location: Location | None) -> None:
    await call_json(
        transport,
        "POST",
        ARRIVE_PICKUP_ENDPOINT,
        payload=_stage_payload(order_id, DeliveryStage.ARRIVED_PICKUP, location),
        rejection=True,
    )


async def confirm_pickup(
    transport: Transport,
    order_id: str,
    verification: VerificationData,
    location: Location | None,
) -> None:
    await call_json(
        transport,
        "POST",
        CONFIRM_PICKUP_ENDPOINT,
        payload=_stage_payload(
            order_id,
            DeliveryStage.ARRIVED_PICKUP,
            location,
            verificationData=verification.to_payload(),
        ),
        rejection=True,
    )


async def arrive_at_dropoff(transport: Transport, order_id: str, location: Location | None) -> None:
    await call_json(
        transport,
        "POST",
        ARRIVE_DROPOFF_ENDPOINT,
        payload=_stage_payload(order_id, DeliveryStage.ARRIVED_DROPOFF, location),
        rejection=True,
    )


async def verify_delivery_token(
    transport: Transport,
    order_id: str,
    token: str,
    stage: DeliveryStage,
) -> bool:
    body = await call_json(
        transport,
        "POST",
        VERIFY_TOKEN_ENDPOINT,
        payload={"orderId": order_id, "deliveryToken": token, "stage": stage.value},
        rejection=True,
    )
    data = unwrap_data(body)
    return bool(data.get("verified", body.get("success", True)))


async def complete_delivery(
    transport: Transport,
    order_id: str,
    verification: VerificationData,
    location: Location | None,
) -> CompletionResult:
    body = await call_json(
        transport,
        "POST",
        COMPLETE_DELIVERY_ENDPOINT,
        payload=_stage_payload(
            order_id,
            DeliveryStage.ARRIVED_DROPOFF,
            location,
            verificationData=verification.to_payload(),
        ),
        rejection=True,
    )
    return parse_model(CompletionResult, unwrap_data(body), endpoint=COMPLETE_DELIVERY_ENDPOINT)


async def cancel_delivery(
    transport: Transport,
    order_id: str,
    reason: str,
    description: str | None,
    location: Location | None,
    stage: DeliveryStage,
) -> None:
    await call_json(
        transport,
        "POST",
        CANCEL_DELIVERY_ENDPOINT,
        payload=_stage_payload(order_id, stage, location, reason=reason, description=description),
        rejection=True,
    )


async def update_location(
    transport: Transport,
    order_id: str,
    location: Location,
    stage: DeliveryStage,
) -> None:
    await call_json(
        transport,
        "POST",
        UPDATE_LOCATION_ENDPOINT,
        payload=_stage_payload(order_id, stage, location),
    )


async def notify_location_loss(
    transport: Transport,
    order_id: str,
    last_location: Location | None,
    failure_count: int,
) -> None:
    payload: dict[str, Any] = {"orderId": order_id, "failureCount": failure_count}
    if last_location is not None:
        payload["lastKnownLocation"] = last_location.to_payload()
    await call_json(transport, "POST", LOCATION_LOSS_ENDPOINT, payload=payload)


async def submit_review(transport: Transport, order_id: str, review: DeliveryReview) -> None:
    await call_json(
        transport,
        "POST",
        SUBMIT_REVIEW_ENDPOINT,
        payload={"orderId": order_id, **review.model_dump(mode="json")},
        rejection=True,
    )
