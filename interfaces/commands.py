from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence, Tuple

from application.account_checks import AccountCheck, RefreshReport, summarize_checks
from application.distribution import split_items
from application.services import SubmitResult, WagerPreview, format_bet_summary
from domain.models import (
    BetRecord,
    DistributionPolicy,
    OverallStatus,
    Platform,
    WagerRequest,
)
from domain.repositories import BetRecordFilter, Page


BET_USAGE = (
    "bet <platform> <bet-type> <region> <channels> <stake> <items...> "
    "[policy=equal|random|all] [workers=N]"
)


def parse_wager(args: Sequence[str]) -> WagerRequest:
    """
    Parse chat arguments into a `WagerRequest`.

    Example: `sgd666 bao-lo south tp-hcm,dong-thap 10 12 34 56 policy=random workers=3`

    Raises ValueError with a message fit to show to the operator.
    """

    options = {}
    positional: List[str] = []
    for arg in args:
        if "=" in arg:
            key, _, value = arg.partition("=")
            options[key.strip().lower()] = value.strip()
        else:
            positional.append(arg)

    if len(positional) < 6:
        raise ValueError(f"Usage: {BET_USAGE}")

    platform_raw, bet_type, region, channels_raw, stake_raw = positional[:5]

    try:
        platform = Platform(platform_raw.lower())
    except ValueError:
        names = ", ".join(p.value for p in Platform)
        raise ValueError(f"Unknown platform {platform_raw}. Use one of: {names}") from None

    try:
        stake = float(stake_raw)
    except ValueError:
        raise ValueError("Stake must be a number.") from None

    try:
        policy = DistributionPolicy(options.get("policy", "equal").lower())
    except ValueError:
        raise ValueError("Policy must be one of: all, equal, random.") from None

    try:
        workers = int(options.get("workers", "1"))
    except ValueError:
        raise ValueError("Workers must be a whole number.") from None

    channels = [c for c in channels_raw.split(",") if c.strip()]
    items = split_items(" ".join(positional[5:]))

    return WagerRequest(
        platform=platform,
        bet_type=bet_type,
        region=region.lower(),
        channels=channels,
        items=items,
        stake=stake,
        policy=policy,
        worker_count=workers,
    )


def parse_history(args: Sequence[str]) -> Tuple[BetRecordFilter, int]:
    """
    `history [page] [status] [code=...] [platform=...] [region=...]
    [type=...] [from=YYYY-MM-DD] [to=YYYY-MM-DD]`
    """

    filters = BetRecordFilter()
    page = 1
    for arg in args:
        if arg.isdigit():
            page = int(arg)
            continue

        key, sep, value = arg.partition("=")
        if not sep:
            key, value = "status", arg
        key = key.lower()
        try:
            if key == "status":
                filters.status = OverallStatus(value.lower())
            elif key == "platform":
                filters.platform = Platform(value.lower())
            elif key == "code":
                filters.order_code = value
            elif key == "region":
                filters.region = value.lower()
            elif key == "type":
                filters.bet_type = value.upper()
            elif key == "from":
                filters.start_date = date.fromisoformat(value)
            elif key == "to":
                filters.end_date = date.fromisoformat(value)
            else:
                raise ValueError(f"Unknown filter {key}.")
        except ValueError as exc:
            raise ValueError(f"Bad filter {arg}: {exc}") from None
    return filters, page


def format_preview(request: WagerRequest, preview: WagerPreview) -> str:
    lines = [
        f"Platform: {request.platform.value}",
        f"Bet type: {request.bet_type} ({preview.bet_type})",
        f"Region: {request.region} | Channels: {', '.join(request.channels)}",
        f"Items ({len(request.items)}): {' '.join(request.items)}",
        f"Stake: {request.stake:g} | Policy: {request.policy.value}",
        f"Accounts: {preview.accounts_to_use} of {preview.accounts_available} active",
        f"Expected total: {preview.expected_total:g}",
    ]
    return "\n".join(lines)


def format_submit_result(result: SubmitResult) -> str:
    summary = result.summary
    lines = []
    if result.order_code:
        lines.append(f"Order {result.order_code} saved, total stake {result.total_stake:g}")
    if result.error_message:
        lines.append(result.error_message)

    if summary.total:
        lines.append(
            f"Accounts: {summary.success} ok, {summary.failed} failed, "
            f"{summary.relay_error} relay errors "
            f"({summary.accounts_used}/{summary.accounts_available} used)"
        )
    for outcome in result.outcomes:
        mark = "ok" if outcome.success else outcome.status.value
        line = f"  {outcome.username}: {mark} [{' '.join(outcome.assigned_items)}]"
        if outcome.error:
            line += f" {outcome.error}"
        lines.append(line)

    info = result.retry_info
    if info is not None:
        lines.append(f"Rounds: {info.rounds}, placed {info.success_rate:.0%} of items")
        if info.remaining_items:
            lines.append(f"Not placed: {' '.join(info.remaining_items)}")
    return "\n".join(lines)


def format_page(page: Page) -> str:
    if not page.items:
        return "No bets found."

    lines = [f"Page {page.page}/{page.total_pages} ({page.total} bets)"]
    for record in page.items:
        result = record.settlement.status.value if record.settlement.checked else "pending"
        lines.append(
            f"{record.order_code} {record.platform.value} {record.bet_type_display} "
            f"{record.total_stake:g} {record.status.value} {result}"
        )
    return "\n".join(lines)


def format_bet(record: Optional[BetRecord]) -> str:
    if record is None:
        return "Bet not found."
    return format_bet_summary(record)


def format_checks(checks: List[AccountCheck]) -> str:
    if not checks:
        return "No accounts."

    counts = summarize_checks(checks)
    lines = [
        f"{counts['total']} accounts: {counts['success']} ok, "
        f"{counts['failed']} failed, {counts['relay_error']} relay errors"
    ]
    for check in checks:
        if check.ok:
            lines.append(f"  {check.username}: {check.balance:g}")
        else:
            lines.append(f"  {check.username}: {check.status.value} {check.error or ''}".rstrip())
    return "\n".join(lines)


def format_refresh(report: RefreshReport) -> str:
    if not report.refreshed and not report.failed:
        return "No tokens close to expiry."
    lines = [f"Refreshed: {len(report.refreshed)}"]
    if report.failed:
        lines.append(f"Failed: {', '.join(report.failed)}")
    return "\n".join(lines)
