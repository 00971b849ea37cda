from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from domain.models import (
    AccountHandle,
    AccountStatus,
    AccountUsage,
    BetRecord,
    DistributionPolicy,
    PlacementOutcome,
    PlacementStatus,
    Platform,
    WagerRequest,
)
from domain.repositories import (
    AccountRepository,
    BetRecordFilter,
    BetRecordRepository,
    Clock,
    Page,
    PlatformClient,
)

from .credentials import utc_now
from .orchestrator import RetryOrchestrator, RetryResult, RoundTrace
from .settlement import ReconcileSummary, SettlementReconciler


logger = logging.getLogger(__name__)

ORDER_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class WagerContext:
    """
    Collaborators needed by the facade functions below.

    Interfaces build one of these at startup and never touch the
    concrete repositories or platform clients directly.
    """

    account_repo: AccountRepository
    bet_repo: BetRecordRepository
    clients: Mapping[Platform, PlatformClient]
    orchestrator: RetryOrchestrator
    reconciler: SettlementReconciler
    clock: Clock = utc_now


@dataclass
class SubmissionSummary:
    total: int = 0
    success: int = 0
    failed: int = 0
    relay_error: int = 0
    accounts_available: int = 0
    accounts_used: int = 0


@dataclass
class RetryInfo:
    rounds: int
    success_rate: float
    original_items: List[str]
    placed_items: List[str]
    remaining_items: List[str]
    trace: List[RoundTrace] = field(default_factory=list)


@dataclass
class SubmitResult:
    """
    Result of a submission. Always returned, never raised: a submission
    that could not start carries `error_message` and no outcomes.
    """

    success: bool
    error_message: Optional[str] = None
    outcomes: List[PlacementOutcome] = field(default_factory=list)
    summary: SubmissionSummary = field(default_factory=SubmissionSummary)
    retry_info: Optional[RetryInfo] = None
    order_code: Optional[str] = None
    total_stake: float = 0


@dataclass
class WagerPreview:
    """What a submission would cost, computed before any remote call."""

    success: bool
    error_message: Optional[str] = None
    bet_type: str = ""
    stake_per_account: float = 0
    expected_total: float = 0
    accounts_available: int = 0
    accounts_to_use: int = 0


def generate_order_code(clock: Clock = utc_now, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    millis = int(clock().timestamp() * 1000)
    suffix = "".join(rng.choice(ORDER_CODE_ALPHABET) for _ in range(6))
    return f"BET{millis}{suffix}"


def _validate_request(request: WagerRequest) -> Optional[str]:
    if not request.items:
        return "No items to place."
    if request.stake <= 0:
        return "Stake must be greater than zero."
    if not request.channels:
        return "At least one channel is required."
    if request.worker_count < 1:
        return "Worker count must be at least one."
    return None


def _active_handles(ctx: WagerContext, owner_id: str, platform: Platform) -> List[AccountHandle]:
    accounts = ctx.account_repo.list_accounts(
        owner_id, platform=platform, status=AccountStatus.ACTIVE
    )
    return [AccountHandle.of(a) for a in accounts]


def preview_wager(ctx: WagerContext, owner_id: str, request: WagerRequest) -> WagerPreview:
    error = _validate_request(request)
    if error:
        return WagerPreview(success=False, error_message=error)

    client = ctx.clients.get(request.platform)
    if client is None:
        return WagerPreview(
            success=False,
            error_message=f"Platform {request.platform.value} is not supported.",
        )

    pool = _active_handles(ctx, owner_id, request.platform)
    to_use = min(request.worker_count, len(pool))
    bet_type = client.normalize_bet_type(request.bet_type)
    full = client.calculate_total_stake(
        bet_type, len(request.items), request.stake, len(request.channels)
    )
    expected = full * to_use if request.policy is DistributionPolicy.ALL else full

    return WagerPreview(
        success=bool(pool),
        error_message=None if pool else "No active accounts for this platform.",
        bet_type=bet_type,
        stake_per_account=full,
        expected_total=expected,
        accounts_available=len(pool),
        accounts_to_use=to_use,
    )


async def submit_wager(
    ctx: WagerContext,
    owner_id: str,
    request: WagerRequest,
) -> SubmitResult:
    """
    Place `request` across the owner's active accounts on its platform.

    - The first `worker_count` accounts start; the rest of the pool is
      used to refill rounds under `equal`/`random`.
    - A `BetRecord` is persisted only when at least one account
      succeeded, holding only the successful usages.
    """

    error = _validate_request(request)
    if error:
        return SubmitResult(success=False, error_message=error)

    client = ctx.clients.get(request.platform)
    if client is None:
        return SubmitResult(
            success=False,
            error_message=f"Platform {request.platform.value} is not supported.",
        )

    pool = _active_handles(ctx, owner_id, request.platform)
    if not pool:
        return SubmitResult(
            success=False,
            error_message="No active accounts for this platform.",
        )

    initial = pool[: request.worker_count]
    try:
        retry = await ctx.orchestrator.run(request, initial, pool)
    except Exception as exc:
        logger.exception("Submission aborted")
        return SubmitResult(success=False, error_message=f"Submission failed: {exc}")

    summary = _summarize(retry, len(pool))
    result = SubmitResult(
        success=bool(retry.successes),
        outcomes=retry.outcomes,
        summary=summary,
        retry_info=None if request.policy is DistributionPolicy.ALL else _retry_info(retry),
    )
    if not retry.successes:
        result.error_message = "No account placed the order."
        return result

    record = _build_record(ctx, owner_id, request, client, retry)
    try:
        ctx.bet_repo.create(record)
    except Exception as exc:
        logger.exception("[%s] Could not persist bet record", record.order_code)
        result.error_message = f"Placed but not saved: {exc}"
    else:
        result.order_code = record.order_code
    result.total_stake = record.total_stake

    logger.info(
        "[%s] Submission done: %d/%d accounts succeeded",
        record.order_code,
        summary.success,
        summary.total,
    )
    return result


def _summarize(retry: RetryResult, available: int) -> SubmissionSummary:
    outcomes = retry.outcomes
    return SubmissionSummary(
        total=len(outcomes),
        success=sum(1 for o in outcomes if o.status is PlacementStatus.SUCCESS),
        failed=sum(1 for o in outcomes if o.status is PlacementStatus.FAILED),
        relay_error=sum(1 for o in outcomes if o.status is PlacementStatus.RELAY_ERROR),
        accounts_available=available,
        accounts_used=len({o.account_id for o in outcomes}),
    )


def _retry_info(retry: RetryResult) -> RetryInfo:
    return RetryInfo(
        rounds=retry.rounds,
        success_rate=retry.success_rate,
        original_items=retry.original_items,
        placed_items=retry.placed_items,
        remaining_items=retry.remaining,
        trace=retry.trace,
    )


def _build_record(
    ctx: WagerContext,
    owner_id: str,
    request: WagerRequest,
    client: PlatformClient,
    retry: RetryResult,
) -> BetRecord:
    bet_type = client.normalize_bet_type(request.bet_type)
    usages = []
    for outcome in retry.successes:
        response: Dict[str, Any] = {}
        if isinstance(outcome.details, dict):
            response.update(outcome.details)
        response["orderCode"] = outcome.order_code
        usages.append(
            AccountUsage(
                account_id=outcome.account_id,
                username=outcome.username,
                items=list(outcome.assigned_items),
                stake_amount=client.calculate_total_stake(
                    bet_type,
                    len(outcome.assigned_items),
                    request.stake,
                    len(request.channels),
                ),
                status=PlacementStatus.SUCCESS,
                response=response,
            )
        )

    now = ctx.clock()
    record = BetRecord(
        order_code=retry.successes[0].order_code or generate_order_code(ctx.clock),
        owner_id=owner_id,
        platform=request.platform,
        bet_type=bet_type,
        bet_type_display=request.bet_type,
        region=request.region,
        channels=list(request.channels),
        numbers=retry.placed_items,
        stake=request.stake,
        total_stake=sum(u.stake_amount for u in usages),
        policy=request.policy,
        usages=usages,
        bet_date=now,
        created_at=now,
    )
    record.update_statistics()
    return record


async def reconcile_due(ctx: WagerContext) -> ReconcileSummary:
    """Settle every due record; never raises."""

    try:
        return await ctx.reconciler.reconcile_due()
    except Exception:
        logger.exception("Settlement pass failed")
        return ReconcileSummary()


async def list_bet_history(
    ctx: WagerContext,
    owner_id: str,
    filters: Optional[BetRecordFilter] = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    await reconcile_due(ctx)
    return ctx.bet_repo.find(owner_id, filters, page=max(page, 1), limit=limit)


async def get_bet(ctx: WagerContext, owner_id: str, order_code: str) -> Optional[BetRecord]:
    await reconcile_due(ctx)
    return ctx.bet_repo.get_by_order_code(order_code, owner_id=owner_id)


def format_bet_summary(record: BetRecord) -> str:
    """Short multi-line description of a bet and its settlement."""

    lines = [
        f"{record.order_code} [{record.status.value}]",
        f"{record.platform.value} {record.bet_type_display} {record.region} "
        f"{', '.join(record.channels)}",
        f"Numbers: {' '.join(record.numbers)}",
        f"Stake: {record.stake:g} x {len(record.numbers)} | total {record.total_stake:g}",
        f"Accounts: {record.successful_bets}/{record.accounts_used}",
    ]

    settlement = record.settlement
    if not settlement.checked:
        lines.append("Result: pending")
        return "\n".join(lines)

    lines.append(
        f"Result: {settlement.status.value} {settlement.total_win_amount:+g} "
        f"({settlement.processed_accounts}/{settlement.total_accounts} accounts found)"
    )
    if settlement.winning_numbers:
        lines.append(f"Winning numbers: {' '.join(settlement.winning_numbers)}")
    for channel, result in settlement.channel_results.items():
        lines.append(
            f"  {channel}: {result.status.value} {result.win_loss:+g} on {result.stake:g}"
        )
    return "\n".join(lines)
