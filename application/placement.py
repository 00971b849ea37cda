from __future__ import annotations

import logging
from typing import List

from domain.errors import FormatError, RelayError, WagerError
from domain.models import (
    AccountHandle,
    OrderReceipt,
    PlacementOutcome,
    PlacementStatus,
    WagerRequest,
)
from domain.repositories import AccountRepository, RelayChecker

from .credentials import CredentialManager, request_with_reauth
from .relay_guard import ensure_relay


logger = logging.getLogger(__name__)


class AccountPlacer:
    """
    Per-account execution pipeline: verify the relay, build the
    platform ticket for the assigned items, and place it through the
    reauth policy.

    Every failure is returned as a `PlacementOutcome`; nothing is raised
    for platform, relay or credential errors.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        relay_checker: RelayChecker,
        account_repo: AccountRepository,
    ) -> None:
        self._credentials = credentials
        self._relay_checker = relay_checker
        self._account_repo = account_repo

    async def place(
        self,
        handle: AccountHandle,
        request: WagerRequest,
        items: List[str],
    ) -> PlacementOutcome:
        outcome = PlacementOutcome(
            account_id=handle.id,
            username=handle.username,
            assigned_items=list(items),
            status=PlacementStatus.FAILED,
        )

        try:
            relay = await ensure_relay(handle, self._relay_checker, self._account_repo)
        except FormatError as exc:
            outcome.status = PlacementStatus.RELAY_ERROR
            outcome.error = "Relay format error"
            outcome.details = exc.message
            return outcome
        except RelayError as exc:
            outcome.status = PlacementStatus.RELAY_ERROR
            outcome.error = "Relay error"
            outcome.details = exc.details or exc.message
            return outcome

        try:
            client = self._credentials.client_for(handle)
            ticket = client.build_ticket(request, items)

            async def place_with(token: str) -> OrderReceipt:
                return await client.place_order(handle, ticket, token, relay)

            receipt: OrderReceipt = await request_with_reauth(
                self._credentials, handle, place_with, relay=relay
            )
        except WagerError as exc:
            logger.error("[%s] Placement failed: %s", handle.username, exc.message)
            outcome.error = exc.message
            outcome.details = exc.details
            return outcome

        outcome.status = PlacementStatus.SUCCESS
        outcome.order_code = receipt.order_code
        outcome.details = receipt.details
        return outcome
