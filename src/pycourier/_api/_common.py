"""Shared helpers for driver API endpoint modules.

This module centralizes the most repeated patterns:
- issuing a JSON request through the transport
- mapping ``success: false`` envelopes to exceptions
- turning refusals of state-changing calls into :class:`RemoteRejectionError`

It is internal to pycourier and may change at any time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pycourier._transport import Transport
from pycourier.exceptions import CourierApiError, RemoteRejectionError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _raise_for_envelope(
    *,
    endpoint: str,
    body: dict[str, Any],
    rejection: bool,
) -> None:
    if body.get("success", True) is not False:
        return
    message = str(body.get("message") or f"{endpoint} failed")
    code = str(body.get("code", ""))
    error_cls = RemoteRejectionError if rejection else CourierApiError
    raise error_cls(message, code=code, endpoint=endpoint)


async def call_json(
    transport: Transport,
    method: str,
    endpoint: str,
    *,
    params: Mapping[str, Any] | None = None,
    payload: Mapping[str, Any] | None = None,
    rejection: bool = False,
) -> dict[str, Any]:
    """Issue a request and return the decoded success envelope.

    With ``rejection=True`` every backend refusal (4xx or ``success: false``)
    surfaces as :class:`RemoteRejectionError` so callers can show the
    message verbatim. Transport errors pass through untouched.
    """
    try:
        body = await transport.request_json(method, endpoint, params=params, payload=payload)
    except RemoteRejectionError:
        raise
    except CourierApiError as exc:
        if not rejection:
            raise
        raise RemoteRejectionError(str(exc), code=exc.code, endpoint=exc.endpoint or endpoint) from exc

    _raise_for_envelope(endpoint=endpoint, body=body, rejection=rejection)
    return body


def unwrap_data(body: dict[str, Any]) -> dict[str, Any]:
    """Return ``body["data"]`` when the backend nests its payload, else *body*."""
    data = body.get("data")
    return data if isinstance(data, dict) else body


def parse_model(model: type[ModelT], data: Any, *, endpoint: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise CourierApiError(
            f"{endpoint} returned an unexpected payload: {exc.error_count()} validation error(s)",
            code="invalid_payload",
            endpoint=endpoint,
        ) from exc
