from __future__ import annotations

import logging
from typing import Optional

from domain.errors import FormatError, RelayError
from domain.models import AccountHandle, AccountStatus, AccountUpdate, RelayDescriptor
from domain.relay import parse_relay
from domain.repositories import AccountRepository, RelayChecker


logger = logging.getLogger(__name__)


async def ensure_relay(
    handle: AccountHandle,
    checker: RelayChecker,
    account_repo: AccountRepository,
) -> Optional[RelayDescriptor]:
    """
    Parse and probe the account's relay before it is spent on a call.

    Returns None for accounts without a relay. A malformed or unhealthy
    relay marks the account `relay_error` and raises.
    """

    raw = handle.snapshot.relay
    if not raw:
        return None

    try:
        relay = parse_relay(raw)
    except FormatError:
        account_repo.apply_update(handle.id, AccountUpdate(status=AccountStatus.RELAY_ERROR))
        raise

    health = await checker.check(relay)
    if not health.healthy:
        logger.warning("[%s] Relay %s unhealthy: %s", handle.username, relay, health.detail)
        account_repo.apply_update(handle.id, AccountUpdate(status=AccountStatus.RELAY_ERROR))
        raise RelayError(f"Relay {relay} is not working", details=health.detail)

    return relay
