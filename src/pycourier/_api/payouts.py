"""Payout status endpoint."""

from __future__ import annotations

from pycourier._api._common import call_json, parse_model, unwrap_data
from pycourier._constants import PAYOUT_STATUS_ENDPOINT
from pycourier._transport import Transport
from pycourier.models.payout import PayoutStatusResult


async def get_payout_status(transport: Transport, payout_id: str) -> PayoutStatusResult:
    endpoint = PAYOUT_STATUS_ENDPOINT.format(payout_id=payout_id)
    body = await call_json(transport, "GET", endpoint)
    data = dict(unwrap_data(body))
    data.setdefault("payoutId", payout_id)
    return parse_model(PayoutStatusResult, data, endpoint=endpoint)
