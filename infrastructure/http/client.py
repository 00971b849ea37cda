from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from domain.errors import RemoteCallError
from domain.models import RelayDescriptor


logger = logging.getLogger(__name__)

DATA_CALL_TIMEOUT = 30.0


def proxy_options(relay: Optional[RelayDescriptor]) -> Dict[str, Any]:
    """aiohttp request kwargs that route a call through `relay`."""

    if relay is None:
        return {}
    options: Dict[str, Any] = {"proxy": relay.url}
    if relay.has_auth:
        options["proxy_auth"] = aiohttp.BasicAuth(relay.username, relay.password or "")
    return options


def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error", "msg"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(payload, str) and payload:
        return payload[:300]
    return fallback


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    relay: Optional[RelayDescriptor] = None,
    headers: Optional[Mapping[str, str]] = None,
    json_body: Any = None,
    params: Optional[Mapping[str, Any]] = None,
    timeout: float = DATA_CALL_TIMEOUT,
) -> Any:
    """
    Perform one HTTP call and return the decoded JSON body.

    Transport failures and non-2xx answers are raised as
    `RemoteCallError`, carrying the status and body when there is one.
    """

    try:
        async with session.request(
            method,
            url,
            headers=dict(headers or {}),
            json=json_body,
            params=dict(params) if params else None,
            timeout=aiohttp.ClientTimeout(total=timeout),
            **proxy_options(relay),
        ) as response:
            text = await response.text()
            try:
                payload: Any = json.loads(text) if text else None
            except ValueError:
                payload = text

            if response.status >= 400:
                message = _error_message(payload, response.reason or "HTTP error")
                raise RemoteCallError(
                    f"HTTP {response.status}: {message}",
                    status=response.status,
                    payload=payload,
                )
            return payload
    except asyncio.TimeoutError:
        raise RemoteCallError(f"Request timed out after {timeout:.0f}s: {url}") from None
    except aiohttp.ClientProxyConnectionError as exc:
        raise RemoteCallError(f"Relay connection failed: {exc}") from exc
    except aiohttp.ClientError as exc:
        raise RemoteCallError(f"Network error: {exc}") from exc
