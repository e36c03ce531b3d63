"""HTTP transport for the driver API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pycourier._constants import USER_AGENT
from pycourier._redact import redact_for_log
from pycourier.config import CourierConfig
from pycourier.exceptions import CourierApiError, CourierTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        ...


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


class HttpTransport:
    """JSON-over-HTTP transport with bearer authentication.

    Network errors, timeouts, 5xx answers and undecodable bodies raise
    :class:`CourierTransportError`; 4xx answers raise
    :class:`CourierApiError` carrying the backend's message.
    """

    def __init__(self, config: CourierConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if self._config.access_token:
            headers["authorization"] = f"Bearer {self._config.access_token}"
        return headers

    async def request_json(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._config.base_url}{endpoint}"
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)

        _logger.debug("%s %s", method, url)
        if self._config.api_trace_enabled:
            _logger.debug("Request %s params=%s body=%s", endpoint, redact_for_log(params), redact_for_log(payload))

        try:
            async with self._http.request(
                method,
                url,
                params=dict(params) if params else None,
                json=dict(payload) if payload is not None else None,
                headers=self._headers(),
                timeout=timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise CourierTransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except TimeoutError as exc:
            raise CourierTransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc

        try:
            body: Any = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            if status >= 400:
                body = {}
            else:
                raise CourierTransportError(
                    f"Invalid JSON from {endpoint}: {text[:200]}",
                    status_code=status,
                    endpoint=endpoint,
                ) from exc

        if self._config.api_trace_enabled:
            _logger.debug("Response %s status=%s body=%s", endpoint, status, redact_for_log(body))

        if status >= 500:
            raise CourierTransportError(
                f"HTTP {status} from {endpoint}: {_error_message(body, text[:200])}",
                status_code=status,
                endpoint=endpoint,
            )
        if status >= 400:
            raise CourierApiError(
                _error_message(body, f"HTTP {status} from {endpoint}"),
                code=str(status),
                endpoint=endpoint,
            )

        if not isinstance(body, dict):
            raise CourierTransportError(f"Expected a JSON object from {endpoint}", status_code=status, endpoint=endpoint)
        return body
