"""Order discovery and acceptance endpoints.

Endpoints:
  - GET  /driver/orders/available
  - POST /driver/orders/{order_id}/accept
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pycourier._api._common import call_json, parse_model, unwrap_data
from pycourier._constants import ACCEPT_ORDER_ENDPOINT, AVAILABLE_ORDERS_ENDPOINT
from pycourier._transport import Transport
from pycourier.models.delivery import AcceptResponse
from pycourier.models.location import Location
from pycourier.models.order import DiscoveredOrder
from pycourier.models.scan import ScanSettings

_logger = logging.getLogger(__name__)


def _parse_orders(items: Any) -> list[DiscoveredOrder]:
    if not isinstance(items, list):
        return []
    orders: list[DiscoveredOrder] = []
    for item in items:
        try:
            orders.append(DiscoveredOrder.model_validate(item))
        except ValidationError:
            _logger.debug("Skipping malformed order payload", exc_info=True)
    return orders


async def fetch_available_orders(
    transport: Transport,
    settings: ScanSettings,
    origin: Location,
) -> list[DiscoveredOrder]:
    """Query offers around *origin* filtered by *settings*."""
    params = settings.to_query(origin)
    body = await call_json(transport, "GET", AVAILABLE_ORDERS_ENDPOINT, params=params)
    data = unwrap_data(body)
    orders = _parse_orders(data.get("orders"))
    _logger.debug("Fetched %d orders (reported count=%s)", len(orders), data.get("count"))
    return orders


async def accept_order(
    transport: Transport,
    order_id: str,
    location: Location,
) -> AcceptResponse:
    """Claim *order_id* for the driver at *location*.

    Raises
    ------
    RemoteRejectionError
        The backend refused (already claimed, driver not eligible, ...).
    CourierTransportError
        The request did not complete.
    """
    endpoint = ACCEPT_ORDER_ENDPOINT.format(order_id=order_id)
    body = await call_json(
        transport,
        "POST",
        endpoint,
        payload={"location": location.to_payload()},
        rejection=True,
    )
    return parse_model(AcceptResponse, unwrap_data(body), endpoint=endpoint)
