"""Shared async HTTP client with failure classification.

Every request carries a fixed timeout. Transport and status failures are
raised as NetworkError with a stable, display-ready reason; the coordinator
turns them into Failure results and charges the retry budget. No retries
happen here: the per-region ledger decides whether a later call may try again.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from annocache.exceptions import NetworkError, ParseError
from annocache.models import FailureKind

logger = logging.getLogger(__name__)

NETWORK_OFFLINE = "Network offline"
TIMED_OUT = "Request timed out"
CONNECTION_ERROR = "Connection error"

# Checked in order: subclasses before their bases
_TRANSPORT_ERRORS: tuple[tuple[type[httpx.HTTPError], FailureKind, str], ...] = (
    (httpx.TimeoutException, FailureKind.TIMEOUT, TIMED_OUT),
    (httpx.ConnectError, FailureKind.NETWORK_OFFLINE, NETWORK_OFFLINE),
    (httpx.NetworkError, FailureKind.REMOTE_ERROR, CONNECTION_ERROR),
    (httpx.HTTPError, FailureKind.REMOTE_ERROR, CONNECTION_ERROR),
)


def classify_transport_error(error: httpx.HTTPError) -> NetworkError:
    """httpx exception → NetworkError with a user-facing reason."""
    for error_type, kind, reason in _TRANSPORT_ERRORS:
        if isinstance(error, error_type):
            return NetworkError(reason, kind)
    return NetworkError(CONNECTION_ERROR, FailureKind.REMOTE_ERROR)


class HttpFetcher:
    """Thin wrapper over httpx.AsyncClient used by every service facade."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        connect_timeout: float = 15.0,
        user_agent: str = "annocache/0.1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    # ── Public API ──

    async def get_text(
        self,
        url: str,
        *,
        params: dict | None = None,
        timeout: float | None = None,
        allow_not_found: bool = False,
    ) -> str | None:
        """GET → body text. None on 404 when allow_not_found."""
        response = await self._send("GET", url, params=params, timeout=timeout)
        if response.status_code == 404 and allow_not_found:
            return None
        self._check_status(response, url)
        return response.text

    async def get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        timeout: float | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """GET → decoded JSON. None on 404 when allow_not_found."""
        text = await self.get_text(
            url, params=params, timeout=timeout, allow_not_found=allow_not_found
        )
        if text is None:
            return None
        return _decode(text, url)

    async def post_json(self, url: str, payload: dict, *, timeout: float | None = None) -> Any:
        """POST a JSON body → decoded JSON."""
        response = await self._send("POST", url, json=payload, timeout=timeout)
        if response.status_code == 400:
            logger.warning("400 from %s: %s", url, response.text[:500])
        self._check_status(response, url)
        return _decode(response.text, url)

    # ── Internal ──

    async def _send(self, method: str, url: str, timeout: float | None = None, **kwargs) -> httpx.Response:
        extra = {} if timeout is None else {"timeout": timeout}
        try:
            logger.debug("Request: %s %s params=%s", method, url, kwargs.get("params"))
            response = await self._client.request(method, url, **kwargs, **extra)
        except httpx.HTTPError as e:
            error = classify_transport_error(e)
            logger.debug("Transport error on %s %s: %r", method, url, e)
            raise error from e
        logger.debug("Response: %s %s → %d", method, url, response.status_code)
        return response

    @staticmethod
    def _check_status(response: httpx.Response, url: str) -> None:
        if not response.is_success:
            raise NetworkError(f"API error: {response.status_code}", FailureKind.REMOTE_ERROR)


def _decode(text: str, url: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise ParseError(f"Invalid JSON from {url}: {e}") from e
