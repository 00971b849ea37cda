from __future__ import annotations

import asyncio
import logging

import aiohttp

from domain.models import RelayDescriptor
from domain.repositories import RelayHealth
from infrastructure.http.client import proxy_options


logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://icanhazip.com/"
PROBE_TIMEOUT = 10.0


class AiohttpRelayChecker:
    """
    Probes a relay with one lightweight GET routed through it.

    `check` never raises: every failure is reported as
    `RelayHealth(healthy=False, ...)`.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        probe_url: str = DEFAULT_PROBE_URL,
        timeout: float = PROBE_TIMEOUT,
    ) -> None:
        self._session = session
        self._probe_url = probe_url
        self._timeout = timeout

    async def check(self, relay: RelayDescriptor) -> RelayHealth:
        try:
            async with self._session.get(
                self._probe_url,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                **proxy_options(relay),
            ) as response:
                if response.status >= 400:
                    return RelayHealth(False, f"Probe answered HTTP {response.status}")
                await response.read()
        except asyncio.TimeoutError:
            logger.warning("Relay %s timed out after %.0fs", relay, self._timeout)
            return RelayHealth(False, f"Timed out after {self._timeout:.0f}s")
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Relay %s check failed: %s", relay, exc)
            return RelayHealth(False, str(exc) or exc.__class__.__name__)

        return RelayHealth(True, "Relay is working")
