from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from domain.errors import CredentialError, FormatError, RelayError, RemoteCallError
from domain.models import (
    AccountHandle,
    AccountStatus,
    AccountUpdate,
    Platform,
    RelayDescriptor,
    TOKEN_SAFETY_MARGIN,
)
from domain.relay import parse_relay
from domain.repositories import (
    AccountRepository,
    Clock,
    PlatformClient,
    RelayChecker,
    TokenCall,
)


logger = logging.getLogger(__name__)

FALLBACK_TOKEN_LIFETIME = timedelta(hours=24)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    token: str
    expiry: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expiry - TOKEN_SAFETY_MARGIN


def extract_token(payload: Any, candidates: Iterable[str]) -> str:
    """
    Return the first non-empty token found at one of the dotted
    `candidates` paths (e.g. "IdToken", "data.token").
    """

    for path in candidates:
        value: Any = payload
        for key in path.split("."):
            if not isinstance(value, Mapping):
                value = None
                break
            value = value.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    raise CredentialError(
        "No token received from sign-in",
        payload=payload if isinstance(payload, dict) else None,
    )


def decode_token_expiry(token: str, now: datetime) -> datetime:
    """Read the `exp` claim of a JWT. Falls back to now + 24h."""

    parts = token.split(".")
    if len(parts) != 3:
        logger.warning("Token is not a JWT, using 24h expiry fallback")
        return now + FALLBACK_TOKEN_LIFETIME

    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        logger.warning("Could not decode token payload, using 24h expiry fallback")
        return now + FALLBACK_TOKEN_LIFETIME

    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)):
        logger.warning("No exp claim in token, using 24h expiry fallback")
        return now + FALLBACK_TOKEN_LIFETIME

    return datetime.fromtimestamp(exp, tz=timezone.utc)


class CredentialManager:
    """
    Per-account session cache backed by the account record.

    A cached token is returned without any network call while it is
    still inside its validity window. Otherwise a fresh sign-in is made
    through the account's relay and the result is written back through
    `AccountRepository.apply_update`.
    """

    def __init__(
        self,
        clients: Mapping[Platform, PlatformClient],
        account_repo: AccountRepository,
        relay_checker: RelayChecker,
        clock: Clock = utc_now,
    ) -> None:
        self._clients = clients
        self._account_repo = account_repo
        self._relay_checker = relay_checker
        self._clock = clock
        self._cache: Dict[str, Credential] = {}

    def client(self, platform: Platform) -> Optional[PlatformClient]:
        return self._clients.get(platform)

    def client_for(self, handle: AccountHandle) -> PlatformClient:
        client = self.client(handle.platform)
        if client is None:
            raise CredentialError(f"Platform {handle.platform.value} is not supported")
        return client

    def cached(self, handle: AccountHandle) -> Optional[Credential]:
        credential = self._cache.get(handle.id)
        if credential is not None:
            return credential

        snapshot = handle.snapshot
        if snapshot.access_token and snapshot.token_expiry is not None:
            return Credential(snapshot.access_token, snapshot.token_expiry)
        return None

    async def acquire(
        self,
        handle: AccountHandle,
        force_refresh: bool = False,
        relay: Optional[RelayDescriptor] = None,
    ) -> Credential:
        """
        Return a valid credential, signing in when needed.

        A `relay` passed in has already been probed by the caller and is
        used as is; otherwise the account relay is parsed and probed first.
        """

        now = self._clock()
        if not force_refresh:
            credential = self.cached(handle)
            if credential is not None and credential.is_valid(now):
                return credential

        logger.info("[%s] Signing in (forced=%s)", handle.username, force_refresh)
        try:
            credential = await self._sign_in(handle, relay)
        except (FormatError, RelayError) as exc:
            self._account_repo.apply_update(
                handle.id, AccountUpdate(status=AccountStatus.RELAY_ERROR)
            )
            raise CredentialError(f"Sign-in aborted: {exc.message}") from exc
        except CredentialError:
            self._mark_failed(handle)
            raise
        except RemoteCallError as exc:
            self._mark_failed(handle)
            raise CredentialError.wrap(exc, "Sign-in failed") from exc

        self._cache[handle.id] = credential
        self._account_repo.apply_update(
            handle.id,
            AccountUpdate(
                access_token=credential.token,
                token_expiry=credential.expiry,
                status=AccountStatus.ACTIVE,
                last_login=self._clock(),
            ),
        )
        logger.info(
            "[%s] Token refreshed, expires at %s",
            handle.username,
            credential.expiry.isoformat(),
        )
        return credential

    def invalidate(self, handle: AccountHandle) -> None:
        self._cache.pop(handle.id, None)
        self._account_repo.apply_update(
            handle.id, AccountUpdate(access_token=None, token_expiry=None)
        )

    async def _sign_in(
        self, handle: AccountHandle, relay: Optional[RelayDescriptor]
    ) -> Credential:
        client = self.client_for(handle)
        if relay is None and handle.snapshot.relay:
            relay = parse_relay(handle.snapshot.relay)
            health = await self._relay_checker.check(relay)
            if not health.healthy:
                raise RelayError(f"Relay {relay} is not working: {health.detail}")

        payload = await client.sign_in(handle, relay)
        token = extract_token(payload, client.token_fields)
        return Credential(token, decode_token_expiry(token, self._clock()))

    def _mark_failed(self, handle: AccountHandle) -> None:
        self._cache.pop(handle.id, None)
        self._account_repo.apply_update(
            handle.id, AccountUpdate(status=AccountStatus.INACTIVE)
        )


async def request_with_reauth(
    credentials: CredentialManager,
    handle: AccountHandle,
    call: TokenCall,
    relay: Optional[RelayDescriptor] = None,
) -> Any:
    """
    Run `call(token)`; if the platform says the session was invalidated,
    drop the token and retry exactly once with a freshly signed-in one.

    Any other failure, and any failure of the retry, propagates unchanged.
    `relay` is the already probed relay of the account, if any.
    """

    client = credentials.client_for(handle)
    credential = await credentials.acquire(handle, relay=relay)
    try:
        return await call(credential.token)
    except RemoteCallError as exc:
        signal = client.classify_reauth(exc)
        if signal is None:
            raise
        logger.info(
            "[%s] Session invalidated (%s), signing in again",
            handle.username,
            signal.value,
        )

    credentials.invalidate(handle)
    credential = await credentials.acquire(handle, force_refresh=True, relay=relay)
    return await call(credential.token)
