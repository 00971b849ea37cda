from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import aiohttp

from domain.errors import RemoteCallError
from domain.models import PLATFORM_TZ, ReauthSignal
from domain.repositories import Clock


logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36"
)

# Messages a platform returns when the session was taken over elsewhere.
LOGOUT_MESSAGES = (
    "đã đăng nhập từ nơi khác",
    "vui lòng đăng nhập lại",
    "signed in elsewhere",
    "logged in from another",
)


def canonical_json(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def hmac_sha256(secret: str, message: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BasePlatformClient:
    """
    Shared plumbing for platform adapters: an aiohttp session, a signing
    secret, a clock, and the default session-invalidation classifier.
    """

    supports_ledger = False
    token_fields: tuple = ()

    def __init__(
        self,
        session: aiohttp.ClientSession,
        secret: str,
        clock: Clock = utc_now,
    ) -> None:
        self._session = session
        self._secret = secret
        self._clock = clock

    def platform_now(self) -> datetime:
        return self._clock().astimezone(PLATFORM_TZ)

    def sign(self, data: Any) -> str:
        return hmac_sha256(self._secret, canonical_json(data)).hex()

    def classify_reauth(self, error: RemoteCallError) -> Optional[ReauthSignal]:
        message = (error.message or "").lower()
        if any(marker in message for marker in LOGOUT_MESSAGES):
            return ReauthSignal.EXPLICIT_LOGOUT
        if error.status == 401 or "unauthorized" in message:
            return ReauthSignal.UNAUTHORIZED
        if error.status == 403 or "forbidden" in message:
            return ReauthSignal.FORBIDDEN
        return None

    @staticmethod
    def first_present(payload: Any, paths: Iterable[str], default: Any = None) -> Any:
        """Return the first non-empty value among dotted `paths` of `payload`."""

        for path in paths:
            value: Any = payload
            for key in path.split("."):
                if isinstance(value, dict):
                    value = value.get(key)
                elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
                    value = value[int(key)]
                else:
                    value = None
                    break
            if value not in (None, ""):
                return value
        return default

    @staticmethod
    def to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def describe(payload: Any) -> Dict[str, Any]:
        return payload if isinstance(payload, dict) else {"raw": payload}
