from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from .errors import RemoteCallError
from .models import (
    Account,
    AccountHandle,
    AccountStatus,
    AccountUpdate,
    BetRecord,
    OrderReceipt,
    OrderTicket,
    OverallStatus,
    Platform,
    ReauthSignal,
    RelayDescriptor,
    Settlement,
    WagerRequest,
)


class AccountRepository(Protocol):
    """
    Read/update contract of the account-management collaborator.

    The core never creates or deletes accounts in normal operation;
    `create_account` exists for that collaborator and for tests.
    """

    def get_by_id(self, account_id: str) -> Optional[Account]:
        ...

    def list_accounts(
        self,
        owner_id: str,
        platform: Optional[Platform] = None,
        status: Optional[AccountStatus] = None,
    ) -> List[Account]:
        """Return accounts in insertion order, optionally filtered."""

        ...

    def apply_update(self, account_id: str, update: AccountUpdate) -> None:
        """Persist only the fields set on `update`."""

        ...

    def create_account(self, account: Account) -> None:
        ...


@dataclass
class BetRecordFilter:
    status: Optional[OverallStatus] = None
    platform: Optional[Platform] = None
    order_code: Optional[str] = None
    region: Optional[str] = None
    bet_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class Page:
    items: List[BetRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


class BetRecordRepository(Protocol):
    """Persistence contract for `BetRecord`."""

    def create(self, record: BetRecord) -> None:
        ...

    def get_by_order_code(
        self,
        order_code: str,
        owner_id: Optional[str] = None,
    ) -> Optional[BetRecord]:
        ...

    def find(
        self,
        owner_id: str,
        filters: Optional[BetRecordFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """
        Return records newest first. `order_code` matches as a
        case-insensitive substring; `end_date` is inclusive.
        """

        ...

    def find_unsettled(self, statuses: List[OverallStatus]) -> List[BetRecord]:
        """Return records with an unchecked settlement, newest bet date first."""

        ...

    def save_settlement(self, order_code: str, settlement: Settlement) -> bool:
        """
        Store `settlement` only if the record is still unchecked.

        Returns False when the record was already settled.
        """

        ...


class RelayChecker(Protocol):
    async def check(self, relay: RelayDescriptor) -> "RelayHealth":
        ...


@dataclass
class RelayHealth:
    healthy: bool
    detail: str


TokenCall = Callable[[str], Awaitable[Any]]


class PlatformClient(Protocol):
    """
    Adapter for one remote platform.

    Every method that talks to the platform takes the bearer token
    explicitly so that the caller can wrap it in the reauth policy.
    """

    platform: Platform
    supports_ledger: bool
    # Ordered candidate paths (dotted) for the token in a sign-in response.
    token_fields: Tuple[str, ...]

    def normalize_bet_type(self, bet_type: str) -> str:
        ...

    def calculate_total_stake(
        self,
        bet_type: str,
        item_count: int,
        stake: float,
        channel_count: int,
    ) -> float:
        """`bet_type` is the normalised bet type."""

        ...

    def build_ticket(self, request: WagerRequest, items: List[str]) -> OrderTicket:
        ...

    def validate(self, ticket: OrderTicket) -> List[str]:
        ...

    async def sign_in(
        self,
        account: AccountHandle,
        relay: Optional[RelayDescriptor],
    ) -> Dict[str, Any]:
        ...

    async def place_order(
        self,
        account: AccountHandle,
        ticket: OrderTicket,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> OrderReceipt:
        ...

    async def fetch_balance(
        self,
        account: AccountHandle,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> float:
        ...

    async def fetch_ledger(
        self,
        account: AccountHandle,
        day: date,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> List[Dict[str, Any]]:
        ...

    def classify_reauth(self, error: RemoteCallError) -> Optional[ReauthSignal]:
        ...


Clock = Callable[[], datetime]
