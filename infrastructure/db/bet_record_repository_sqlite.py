from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from domain.models import (
    PLATFORM_TZ,
    AccountResult,
    AccountUsage,
    BetRecord,
    ChannelResult,
    DistributionPolicy,
    OverallStatus,
    PlacementStatus,
    Platform,
    ResultStatus,
    Settlement,
)
from domain.repositories import BetRecordFilter, BetRecordRepository, Page


COLUMNS = (
    "order_code, owner_id, platform, bet_type, bet_type_display, region, "
    "channels, numbers, stake, total_stake, policy, usages, status, "
    "accounts_used, successful_bets, failed_bets, settlement, bet_date, created_at"
)


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _load_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return _dump_time(value)
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def _channel_from_dict(data: Dict[str, Any]) -> ChannelResult:
    return ChannelResult(
        stake=data.get("stake", 0),
        win_loss=data.get("win_loss", 0),
        numbers=data.get("numbers", []),
        status=ResultStatus(data.get("status", ResultStatus.LOSS.value)),
        winning_numbers=data.get("winning_numbers", []),
        accounts=data.get("accounts", []),
    )


def _channels_from_dict(data: Dict[str, Any]) -> Dict[str, ChannelResult]:
    return {name: _channel_from_dict(value) for name, value in data.items()}


def _account_result_from_dict(data: Dict[str, Any]) -> AccountResult:
    return AccountResult(
        account_id=data["account_id"],
        username=data["username"],
        order_code=data.get("order_code"),
        status=ResultStatus(data["status"]),
        total_win_loss=data.get("total_win_loss", 0),
        total_stake=data.get("total_stake", 0),
        record_count=data.get("record_count", 0),
        winning_numbers=data.get("winning_numbers", []),
        winning_numbers_by_channel=data.get("winning_numbers_by_channel", {}),
        channel_results=_channels_from_dict(data.get("channel_results", {})),
        win_details=data.get("win_details", []),
        error=data.get("error"),
    )


def settlement_from_dict(data: Dict[str, Any]) -> Settlement:
    return Settlement(
        checked=bool(data.get("checked")),
        status=ResultStatus(data.get("status", ResultStatus.LOSS.value)),
        total_win_amount=data.get("total_win_amount", 0),
        total_stake=data.get("total_stake", 0),
        winning_numbers=data.get("winning_numbers", []),
        winning_numbers_by_channel=data.get("winning_numbers_by_channel", {}),
        channel_results=_channels_from_dict(data.get("channel_results", {})),
        account_results=[
            _account_result_from_dict(item) for item in data.get("account_results", [])
        ],
        processed_accounts=data.get("processed_accounts", 0),
        total_accounts=data.get("total_accounts", 0),
        checked_at=_load_time(data.get("checked_at")),
    )


def _usage_from_dict(data: Dict[str, Any]) -> AccountUsage:
    return AccountUsage(
        account_id=data["account_id"],
        username=data["username"],
        items=data.get("items", []),
        stake_amount=data.get("stake_amount", 0),
        status=PlacementStatus(data["status"]),
        response=data.get("response") or {},
        error=data.get("error"),
    )


class SqliteBetRecordRepository(BetRecordRepository):
    """
    SQLite-backed implementation of `BetRecordRepository`.

    Usages and the settlement are embedded as JSON columns. `checked`
    mirrors `settlement.checked` so that the settle-once update can be a
    single conditional statement.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS bet_records (
                    order_code TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    bet_type TEXT NOT NULL,
                    bet_type_display TEXT NOT NULL,
                    region TEXT NOT NULL,
                    channels TEXT NOT NULL,
                    numbers TEXT NOT NULL,
                    stake REAL NOT NULL,
                    total_stake REAL NOT NULL,
                    policy TEXT NOT NULL,
                    usages TEXT NOT NULL,
                    status TEXT NOT NULL,
                    accounts_used INTEGER NOT NULL DEFAULT 0,
                    successful_bets INTEGER NOT NULL DEFAULT 0,
                    failed_bets INTEGER NOT NULL DEFAULT 0,
                    settlement TEXT NOT NULL,
                    checked INTEGER NOT NULL DEFAULT 0,
                    bet_date TEXT,
                    bet_day TEXT,
                    created_at TEXT
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_bet_records_owner "
                "ON bet_records (owner_id, created_at)"
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> BetRecord:
        return BetRecord(
            order_code=row[0],
            owner_id=str(row[1]),
            platform=Platform(row[2]),
            bet_type=row[3],
            bet_type_display=row[4],
            region=row[5],
            channels=json.loads(row[6]),
            numbers=json.loads(row[7]),
            stake=float(row[8]),
            total_stake=float(row[9]),
            policy=DistributionPolicy(row[10]),
            usages=[_usage_from_dict(item) for item in json.loads(row[11])],
            status=OverallStatus(row[12]),
            accounts_used=row[13],
            successful_bets=row[14],
            failed_bets=row[15],
            settlement=settlement_from_dict(json.loads(row[16])),
            bet_date=_load_time(row[17]),
            created_at=_load_time(row[18]),
        )

    def create(self, record: BetRecord) -> None:
        bet_day = None
        if record.bet_date is not None:
            bet_day = record.bet_date.astimezone(PLATFORM_TZ).date().isoformat()

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO bet_records ({COLUMNS}, checked, bet_day)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.order_code,
                    record.owner_id,
                    record.platform.value,
                    record.bet_type,
                    record.bet_type_display,
                    record.region,
                    _dumps(record.channels),
                    _dumps(record.numbers),
                    record.stake,
                    record.total_stake,
                    record.policy.value,
                    _dumps([asdict(u) for u in record.usages]),
                    record.status.value,
                    record.accounts_used,
                    record.successful_bets,
                    record.failed_bets,
                    _dumps(asdict(record.settlement)),
                    _dump_time(record.bet_date),
                    _dump_time(record.created_at),
                    int(record.settlement.checked),
                    bet_day,
                ),
            )
            conn.commit()

    def get_by_order_code(
        self,
        order_code: str,
        owner_id: Optional[str] = None,
    ) -> Optional[BetRecord]:
        query = f"SELECT {COLUMNS} FROM bet_records WHERE order_code = ?"
        params: list = [order_code]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def find(
        self,
        owner_id: str,
        filters: Optional[BetRecordFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        filters = filters or BetRecordFilter()
        where = ["owner_id = ?"]
        params: list = [owner_id]

        if filters.status is not None:
            where.append("status = ?")
            params.append(filters.status.value)
        if filters.platform is not None:
            where.append("platform = ?")
            params.append(filters.platform.value)
        if filters.order_code:
            where.append("instr(UPPER(order_code), ?) > 0")
            params.append(filters.order_code.strip().upper())
        if filters.region:
            where.append("region = ?")
            params.append(filters.region)
        if filters.bet_type:
            where.append("bet_type = ?")
            params.append(filters.bet_type)
        if filters.start_date is not None:
            where.append("bet_day >= ?")
            params.append(filters.start_date.isoformat())
        if filters.end_date is not None:
            where.append("bet_day <= ?")
            params.append(filters.end_date.isoformat())

        clause = " AND ".join(where)
        offset = (page - 1) * limit

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) FROM bet_records WHERE {clause}", params)
            total = cur.fetchone()[0]
            cur.execute(
                f"""
                SELECT {COLUMNS} FROM bet_records
                WHERE {clause}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            )
            items = [self._to_domain(row) for row in cur.fetchall()]

        return Page(items=items, total=total, page=page, limit=limit)

    def find_unsettled(self, statuses: List[OverallStatus]) -> List[BetRecord]:
        if not statuses:
            return []
        marks = ", ".join("?" for _ in statuses)
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT {COLUMNS} FROM bet_records
                WHERE checked = 0 AND status IN ({marks})
                ORDER BY bet_date DESC
                """,
                [s.value for s in statuses],
            )
            return [self._to_domain(row) for row in cur.fetchall()]

    def save_settlement(self, order_code: str, settlement: Settlement) -> bool:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE bet_records
                SET settlement = ?, checked = 1
                WHERE order_code = ? AND checked = 0
                """,
                (_dumps(asdict(settlement)), order_code),
            )
            conn.commit()
            return cur.rowcount == 1
