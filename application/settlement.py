from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple

from domain.errors import ReconciliationError, WagerError
from domain.models import (
    PLATFORM_TZ,
    AccountHandle,
    AccountResult,
    AccountUsage,
    BetRecord,
    ChannelResult,
    OverallStatus,
    PlacementStatus,
    ResultStatus,
    Settlement,
)
from domain.repositories import (
    AccountRepository,
    BetRecordRepository,
    Clock,
    RelayChecker,
)

from .credentials import CredentialManager, request_with_reauth, utc_now
from .relay_guard import ensure_relay


logger = logging.getLogger(__name__)


def _default_cutoffs() -> Dict[str, Tuple[int, int]]:
    return {
        "north": (18, 30),
        "north1": (18, 30),
        "north2": (18, 30),
        "central": (17, 30),
        "south": (16, 30),
    }


@dataclass
class SettlementConfig:
    """Daily draw-result cutoffs (hour, minute) per region, on platform time."""

    cutoffs: Dict[str, Tuple[int, int]] = field(default_factory=_default_cutoffs)
    tz: tzinfo = PLATFORM_TZ
    eligible: Tuple[OverallStatus, ...] = (
        OverallStatus.COMPLETED,
        OverallStatus.PARTIAL_SUCCESS,
    )


@dataclass
class ReconcileSummary:
    checked: int = 0
    updated: int = 0


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def is_due(record: BetRecord, now: datetime, config: SettlementConfig) -> bool:
    """
    A record is due once its region's cutoff has passed on the bet date,
    or whenever the bet date is before today.
    """

    if record.bet_date is None:
        return False

    local_now = now.astimezone(config.tz)
    bet_day = record.bet_date.astimezone(config.tz).date()
    today = local_now.date()

    if bet_day > today:
        return False
    if bet_day < today:
        return True

    cutoff = config.cutoffs.get(record.region)
    if cutoff is None:
        return False
    hour, minute = cutoff
    return local_now >= datetime.combine(bet_day, time(hour, minute), tzinfo=config.tz)


def match_rows(rows: List[Dict[str, Any]], order_code: str) -> List[Dict[str, Any]]:
    target = order_code.strip().upper()
    return [
        row
        for row in rows
        if row.get("orderCode") and str(row["orderCode"]).strip().upper() == target
    ]


def summarize_account(usage: AccountUsage, rows: List[Dict[str, Any]]) -> AccountResult:
    """Fold the ledger rows of one order into an `AccountResult`."""

    order_code = usage.order_code
    matching = match_rows(rows, order_code) if order_code else []
    if not matching:
        return AccountResult(
            account_id=usage.account_id,
            username=usage.username,
            order_code=order_code,
            status=ResultStatus.NOT_FOUND,
        )

    total_win_loss = 0.0
    total_stake = 0.0
    has_win = False
    winning_numbers: List[str] = []
    by_channel: Dict[str, List[str]] = {}
    channels: Dict[str, ChannelResult] = {}
    details: List[Dict[str, Any]] = []

    for row in matching:
        win_loss = _as_float(row.get("memberWinLoss"))
        stake = _as_float(row.get("stake"))
        numbers = _as_list(row.get("numbers"))
        row_channels = _as_list(row.get("channels"))
        channel_wins = _as_list(row.get("channelWin"))
        row_status = row.get("status") or "UNKNOWN"

        total_win_loss += win_loss
        total_stake += stake

        if row_status == "WIN":
            winning_numbers.extend(numbers)
            for channel in row_channels:
                by_channel.setdefault(channel, []).extend(numbers)

        for channel in row_channels:
            result = channels.setdefault(channel, ChannelResult())
            result.stake += stake
            result.win_loss += win_loss
            if channel in channel_wins:
                result.status = ResultStatus.WIN
                result.winning_numbers = _unique(result.winning_numbers + numbers)
                has_win = True
            result.numbers = _unique(result.numbers + numbers)

        details.append(
            {
                "numbers": numbers,
                "channels": row_channels,
                "channelWin": channel_wins,
                "status": row_status,
                "stake": stake,
                "winLoss": win_loss,
                "betType": row.get("betType") or "",
                "betTypeChild": row.get("betTypeChild") or "",
                "isWinning": row_status == "WIN",
            }
        )

        if row_status == "WIN" or win_loss > 0:
            has_win = True

    return AccountResult(
        account_id=usage.account_id,
        username=usage.username,
        order_code=order_code,
        status=outcome_status(has_win, total_win_loss),
        total_win_loss=total_win_loss,
        total_stake=total_stake,
        record_count=len(matching),
        winning_numbers=_unique(winning_numbers),
        winning_numbers_by_channel={k: _unique(v) for k, v in by_channel.items()},
        channel_results=channels,
        win_details=details,
    )


def outcome_status(has_win: bool, net: float) -> ResultStatus:
    if has_win and net > 0:
        return ResultStatus.WIN
    if net == 0:
        return ResultStatus.DRAW
    return ResultStatus.LOSS


def aggregate(
    record: BetRecord,
    results: List[AccountResult],
    checked_at: datetime,
) -> Settlement:
    total_win_loss = 0.0
    total_stake = 0.0
    has_any_win = False
    processed = 0
    winning_numbers: List[str] = []
    by_channel: Dict[str, List[str]] = {}
    channels: Dict[str, ChannelResult] = {}

    for result in results:
        if not result.found:
            continue
        processed += 1
        total_win_loss += result.total_win_loss
        total_stake += result.total_stake
        if result.status is ResultStatus.WIN:
            has_any_win = True

        winning_numbers.extend(result.winning_numbers)
        for channel, numbers in result.winning_numbers_by_channel.items():
            by_channel.setdefault(channel, []).extend(numbers)

        for channel, partial in result.channel_results.items():
            merged = channels.setdefault(channel, ChannelResult())
            merged.stake += partial.stake
            merged.win_loss += partial.win_loss
            merged.numbers = _unique(merged.numbers + partial.numbers)
            if partial.status is ResultStatus.WIN:
                merged.status = ResultStatus.WIN
                merged.winning_numbers = _unique(
                    merged.winning_numbers + partial.winning_numbers
                )
                has_any_win = True
            merged.accounts.append(result.username)

    return Settlement(
        checked=True,
        status=outcome_status(has_any_win, total_win_loss),
        total_win_amount=total_win_loss,
        total_stake=total_stake,
        winning_numbers=_unique(winning_numbers),
        winning_numbers_by_channel={k: _unique(v) for k, v in by_channel.items()},
        channel_results=channels,
        account_results=results,
        processed_accounts=processed,
        total_accounts=sum(1 for u in record.usages if u.status is PlacementStatus.SUCCESS),
        checked_at=checked_at,
    )


class SettlementReconciler:
    """
    Matches placed orders against each account's remote ledger and
    stores the aggregated outcome on the bet record, once.
    """

    def __init__(
        self,
        bet_repo: BetRecordRepository,
        account_repo: AccountRepository,
        credentials: CredentialManager,
        relay_checker: RelayChecker,
        config: Optional[SettlementConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._bet_repo = bet_repo
        self._account_repo = account_repo
        self._credentials = credentials
        self._relay_checker = relay_checker
        self._config = config or SettlementConfig()
        self._clock = clock

    def find_due(self) -> List[BetRecord]:
        now = self._clock()
        due = []
        for record in self._bet_repo.find_unsettled(list(self._config.eligible)):
            client = self._credentials.client(record.platform)
            if client is None or not client.supports_ledger:
                continue
            if is_due(record, now, self._config):
                due.append(record)
        return due

    async def reconcile_due(self) -> ReconcileSummary:
        records = self.find_due()
        summary = ReconcileSummary(checked=len(records))
        if not records:
            logger.info("No bets need settlement")
            return summary

        logger.info("Found %d bets needing settlement", len(records))
        for record in records:
            try:
                if await self.reconcile(record):
                    summary.updated += 1
            except Exception:
                logger.exception("[%s] Settlement failed", record.order_code)
        return summary

    async def reconcile(self, record: BetRecord) -> bool:
        if record.settlement.checked:
            logger.info("[%s] Already settled", record.order_code)
            return False

        bet_day = (record.bet_date or self._clock()).astimezone(self._config.tz).date()
        results = []
        for usage in record.usages:
            if usage.status is not PlacementStatus.SUCCESS:
                continue
            results.append(await self._account_result(usage, bet_day))

        settlement = aggregate(record, results, self._clock())
        stored = self._bet_repo.save_settlement(record.order_code, settlement)
        if stored:
            record.settlement = settlement
            logger.info(
                "[%s] Settled: %s, win/loss %.0f on stake %.0f (%d/%d accounts)",
                record.order_code,
                settlement.status.value,
                settlement.total_win_amount,
                settlement.total_stake,
                settlement.processed_accounts,
                settlement.total_accounts,
            )
        return stored

    async def _account_result(self, usage: AccountUsage, day: date) -> AccountResult:
        try:
            account = self._account_repo.get_by_id(usage.account_id)
            if account is None:
                raise ReconciliationError(f"Account {usage.account_id} not found")
            handle = AccountHandle.of(account)

            rows = await self.fetch_ledger(handle, day)
            result = summarize_account(usage, rows)
            if result.status is ResultStatus.NOT_FOUND:
                logger.info(
                    "[%s] No ledger rows for order %s", usage.username, usage.order_code
                )
            return result
        except Exception as exc:
            message = exc.message if isinstance(exc, WagerError) else str(exc)
            logger.error("[%s] Ledger check failed: %s", usage.username, message)
            return AccountResult(
                account_id=usage.account_id,
                username=usage.username,
                order_code=usage.order_code,
                status=ResultStatus.ERROR,
                error=message,
            )

    async def fetch_ledger(self, handle: AccountHandle, day: date) -> List[Dict[str, Any]]:
        relay = await ensure_relay(handle, self._relay_checker, self._account_repo)
        client = self._credentials.client_for(handle)

        async def fetch(token: str) -> List[Dict[str, Any]]:
            return await client.fetch_ledger(handle, day, token, relay)

        return await request_with_reauth(self._credentials, handle, fetch, relay=relay)
