from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from domain.errors import FormatError, RelayError, WagerError
from domain.models import (
    Account,
    AccountHandle,
    AccountStatus,
    AccountUpdate,
    Platform,
)
from domain.repositories import AccountRepository, Clock, RelayChecker

from .credentials import CredentialManager, request_with_reauth, utc_now
from .orchestrator import Sleep, run_in_batches
from .relay_guard import ensure_relay


logger = logging.getLogger(__name__)


@dataclass
class AccountCheckConfig:
    batch_size: int = 10
    batch_pause: float = 0.5
    refresh_window: timedelta = timedelta(hours=4)
    refresh_pause: float = 1.0


@dataclass
class AccountCheck:
    account_id: str
    username: str
    status: AccountStatus
    balance: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is AccountStatus.ACTIVE and self.error is None


def summarize_checks(checks: List[AccountCheck]) -> Dict[str, int]:
    relay_errors = sum(1 for c in checks if c.status is AccountStatus.RELAY_ERROR)
    success = sum(1 for c in checks if c.ok)
    return {
        "total": len(checks),
        "success": success,
        "failed": len(checks) - success - relay_errors,
        "relay_error": relay_errors,
    }


@dataclass
class RefreshReport:
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class AccountChecker:
    """Balance checks and proactive token refresh for an owner's accounts."""

    def __init__(
        self,
        credentials: CredentialManager,
        relay_checker: RelayChecker,
        account_repo: AccountRepository,
        config: Optional[AccountCheckConfig] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ) -> None:
        self._credentials = credentials
        self._relay_checker = relay_checker
        self._account_repo = account_repo
        self._config = config or AccountCheckConfig()
        self._sleep = sleep
        self._clock = clock

    async def check_accounts(
        self,
        owner_id: str,
        account_ids: Optional[Sequence[str]] = None,
        platform: Optional[Platform] = None,
    ) -> List[AccountCheck]:
        accounts = self._account_repo.list_accounts(owner_id, platform=platform)
        if account_ids is not None:
            wanted = set(account_ids)
            accounts = [a for a in accounts if a.id in wanted]

        def crashed(index: int, exc: Exception) -> AccountCheck:
            account = accounts[index]
            return AccountCheck(
                account_id=account.id,
                username=account.username,
                status=account.status,
                error=str(exc),
            )

        results = await run_in_batches(
            [functools.partial(self.check_account, a) for a in accounts],
            self._config.batch_size,
            self._config.batch_pause,
            self._sleep,
            on_error=crashed,
        )

        healthy = sum(1 for r in results if r.ok)
        logger.info("Checked %d accounts, %d healthy", len(results), healthy)
        return results

    async def check_account(self, account: Account) -> AccountCheck:
        handle = AccountHandle.of(account)
        check = AccountCheck(
            account_id=account.id,
            username=account.username,
            status=account.status,
        )

        try:
            relay = await ensure_relay(handle, self._relay_checker, self._account_repo)
        except (FormatError, RelayError) as exc:
            check.status = AccountStatus.RELAY_ERROR
            check.error = exc.message
            self._account_repo.apply_update(
                account.id, AccountUpdate(last_check=self._clock())
            )
            return check

        try:
            client = self._credentials.client_for(handle)

            async def balance_with(token: str) -> float:
                return await client.fetch_balance(handle, token, relay)

            balance = await request_with_reauth(
                self._credentials, handle, balance_with, relay=relay
            )
        except WagerError as exc:
            logger.warning("[%s] Balance check failed: %s", account.username, exc.message)
            refreshed = self._account_repo.get_by_id(account.id)
            check.status = refreshed.status if refreshed else AccountStatus.INACTIVE
            check.error = exc.message
            self._account_repo.apply_update(
                account.id, AccountUpdate(last_check=self._clock())
            )
            return check

        check.status = AccountStatus.ACTIVE
        check.balance = balance
        self._account_repo.apply_update(
            account.id,
            AccountUpdate(
                status=AccountStatus.ACTIVE,
                balance=balance,
                last_check=self._clock(),
            ),
        )
        return check

    async def refresh_expiring_tokens(
        self,
        owner_id: str,
        platform: Optional[Platform] = None,
        within: Optional[timedelta] = None,
    ) -> RefreshReport:
        """Sign in again for accounts whose token expires within the window."""

        horizon = self._clock() + (within or self._config.refresh_window)
        report = RefreshReport()
        candidates = [
            a
            for a in self._account_repo.list_accounts(
                owner_id, platform=platform, status=AccountStatus.ACTIVE
            )
            if a.token_expiry is None or a.token_expiry <= horizon
        ]
        if not candidates:
            return report

        logger.info("Refreshing %d expiring tokens", len(candidates))
        for index, account in enumerate(candidates):
            try:
                await self._credentials.acquire(AccountHandle.of(account), force_refresh=True)
                report.refreshed.append(account.username)
            except WagerError as exc:
                logger.error("[%s] Token refresh failed: %s", account.username, exc.message)
                report.failed.append(account.username)
            if index < len(candidates) - 1:
                await self._sleep(self._config.refresh_pause)
        return report
