from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional

from domain.models import Account, AccountStatus, AccountUpdate, Platform
from domain.repositories import AccountRepository


COLUMNS = (
    "id, owner_id, platform, username, password, relay, access_token, "
    "token_expiry, status, balance, last_login, last_check"
)


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _load_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteAccountRepository(AccountRepository):
    """
    SQLite-backed implementation of `AccountRepository`.

    Manages the `accounts` table: one row per platform login, with the
    cached session token and the last known status and balance.
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
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    username TEXT NOT NULL,
                    password TEXT NOT NULL,
                    relay TEXT,
                    access_token TEXT,
                    token_expiry TEXT,
                    status TEXT NOT NULL DEFAULT 'active',
                    balance REAL NOT NULL DEFAULT 0,
                    last_login TEXT,
                    last_check TEXT,
                    UNIQUE (platform, username)
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Account:
        return Account(
            id=str(row[0]),
            owner_id=str(row[1]),
            platform=Platform(row[2]),
            username=row[3],
            password=row[4],
            relay=row[5],
            access_token=row[6],
            token_expiry=_load_time(row[7]),
            status=AccountStatus(row[8]),
            balance=float(row[9]),
            last_login=_load_time(row[10]),
            last_check=_load_time(row[11]),
        )

    def get_by_id(self, account_id: str) -> Optional[Account]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT {COLUMNS} FROM accounts WHERE id = ?", (account_id,))
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def list_accounts(
        self,
        owner_id: str,
        platform: Optional[Platform] = None,
        status: Optional[AccountStatus] = None,
    ) -> List[Account]:
        query = f"SELECT {COLUMNS} FROM accounts WHERE owner_id = ?"
        params: list = [owner_id]
        if platform is not None:
            query += " AND platform = ?"
            params.append(platform.value)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY rowid"

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            return [self._to_domain(row) for row in cur.fetchall()]

    def apply_update(self, account_id: str, update: AccountUpdate) -> None:
        changes = update.changes()
        if not changes:
            return

        values = []
        for name, value in changes.items():
            if isinstance(value, datetime):
                value = _dump_time(value)
            elif isinstance(value, AccountStatus):
                value = value.value
            values.append(value)

        assignments = ", ".join(f"{name} = ?" for name in changes)
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE accounts SET {assignments} WHERE id = ?",
                (*values, account_id),
            )
            conn.commit()

    def create_account(self, account: Account) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO accounts ({COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.id,
                    account.owner_id,
                    account.platform.value,
                    account.username,
                    account.password,
                    account.relay,
                    account.access_token,
                    _dump_time(account.token_expiry),
                    account.status.value,
                    account.balance,
                    _dump_time(account.last_login),
                    _dump_time(account.last_check),
                ),
            )
            conn.commit()
