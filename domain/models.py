from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


TOKEN_SAFETY_MARGIN = timedelta(minutes=5)

# Draws, order dates and ledgers are all on Vietnam time.
PLATFORM_TZ = timezone(timedelta(hours=7))


class Platform(str, Enum):
    SGD666 = "sgd666"
    ONE789 = "one789"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    RELAY_ERROR = "relay_error"


class DistributionPolicy(str, Enum):
    ALL = "all"
    EQUAL = "equal"
    RANDOM = "random"


class PlacementStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RELAY_ERROR = "relay_error"


class OverallStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class ResultStatus(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    DRAW = "DRAW"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"


class ReauthSignal(str, Enum):
    """Reasons a remote platform reports the session as invalidated."""

    EXPLICIT_LOGOUT = "explicit_logout"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class RelayDescriptor:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def has_auth(self) -> bool:
        return self.username is not None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class Account:
    """
    One login on a remote betting platform.

    Accounts are owned by the account-management collaborator; the core
    only reads them and applies field-level updates (token, expiry,
    status, balance, last check time).
    """

    id: str
    owner_id: str
    platform: Platform
    username: str
    password: str
    relay: Optional[str] = None
    access_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    status: AccountStatus = AccountStatus.ACTIVE
    balance: float = 0
    last_login: Optional[datetime] = None
    last_check: Optional[datetime] = None

    def is_token_valid(self, now: datetime) -> bool:
        if not self.access_token or self.token_expiry is None:
            return False
        return now < self.token_expiry - TOKEN_SAFETY_MARGIN


@dataclass(frozen=True)
class AccountHandle:
    """
    Value passed into worker tasks instead of a shared mutable `Account`.

    `snapshot` is a private copy taken when the handle was created; any
    change must go back through `AccountRepository.apply_update`.
    """

    id: str
    snapshot: Account

    @classmethod
    def of(cls, account: Account) -> "AccountHandle":
        return cls(id=account.id, snapshot=replace(account))

    @property
    def username(self) -> str:
        return self.snapshot.username

    @property
    def platform(self) -> Platform:
        return self.snapshot.platform


_UNSET: Any = object()


@dataclass
class AccountUpdate:
    """
    Field-level update for an account. Fields left at the sentinel value
    are not touched; `None` is a real value (e.g. clearing a token).
    """

    access_token: Any = _UNSET
    token_expiry: Any = _UNSET
    status: Any = _UNSET
    balance: Any = _UNSET
    last_login: Any = _UNSET
    last_check: Any = _UNSET

    def changes(self) -> Dict[str, Any]:
        return {
            name: value
            for name, value in self.__dict__.items()
            if value is not _UNSET
        }

    def apply_to(self, account: Account) -> Account:
        return replace(account, **self.changes())


@dataclass
class WagerRequest:
    """Input of one submission. Consumed once, never persisted directly."""

    platform: Platform
    bet_type: str
    region: str
    channels: List[str]
    items: List[str]
    stake: float
    policy: DistributionPolicy = DistributionPolicy.EQUAL
    worker_count: int = 1


@dataclass
class OrderTicket:
    """
    Platform-normalised order for one account.

    `total_stake` is the declared total; adapters that expose a stake
    formula refuse tickets whose declared total differs from it.
    """

    platform: Platform
    bet_type: str
    region: str
    channels: List[str]
    items: List[str]
    stake: float
    total_stake: float


@dataclass
class OrderReceipt:
    order_code: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlacementOutcome:
    """Result of one account's placement attempt within a round."""

    account_id: str
    username: str
    assigned_items: List[str]
    status: PlacementStatus
    order_code: Optional[str] = None
    details: Any = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is PlacementStatus.SUCCESS


@dataclass
class AccountUsage:
    account_id: str
    username: str
    items: List[str]
    stake_amount: float
    status: PlacementStatus
    response: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def order_code(self) -> Optional[str]:
        code = self.response.get("orderCode") or self.response.get("order_code")
        return str(code) if code else None


@dataclass
class ChannelResult:
    stake: float = 0
    win_loss: float = 0
    numbers: List[str] = field(default_factory=list)
    status: ResultStatus = ResultStatus.LOSS
    winning_numbers: List[str] = field(default_factory=list)
    accounts: List[str] = field(default_factory=list)


@dataclass
class AccountResult:
    account_id: str
    username: str
    order_code: Optional[str]
    status: ResultStatus
    total_win_loss: float = 0
    total_stake: float = 0
    record_count: int = 0
    winning_numbers: List[str] = field(default_factory=list)
    winning_numbers_by_channel: Dict[str, List[str]] = field(default_factory=dict)
    channel_results: Dict[str, ChannelResult] = field(default_factory=dict)
    win_details: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status not in (ResultStatus.NOT_FOUND, ResultStatus.ERROR)


@dataclass
class Settlement:
    checked: bool = False
    status: ResultStatus = ResultStatus.LOSS
    total_win_amount: float = 0
    total_stake: float = 0
    winning_numbers: List[str] = field(default_factory=list)
    winning_numbers_by_channel: Dict[str, List[str]] = field(default_factory=dict)
    channel_results: Dict[str, ChannelResult] = field(default_factory=dict)
    account_results: List[AccountResult] = field(default_factory=list)
    processed_accounts: int = 0
    total_accounts: int = 0
    checked_at: Optional[datetime] = None


@dataclass
class BetRecord:
    """
    Durable outcome of one submission.

    Only successful placements are stored in `usages`, so a record with
    zero successes is never created.
    """

    order_code: str
    owner_id: str
    platform: Platform
    bet_type: str
    bet_type_display: str
    region: str
    channels: List[str]
    numbers: List[str]
    stake: float
    total_stake: float
    policy: DistributionPolicy
    usages: List[AccountUsage] = field(default_factory=list)
    status: OverallStatus = OverallStatus.PENDING
    accounts_used: int = 0
    successful_bets: int = 0
    failed_bets: int = 0
    settlement: Settlement = field(default_factory=Settlement)
    bet_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def update_statistics(self) -> None:
        self.accounts_used = len(self.usages)
        self.successful_bets = sum(
            1 for u in self.usages if u.status is PlacementStatus.SUCCESS
        )
        self.failed_bets = sum(
            1 for u in self.usages if u.status is not PlacementStatus.SUCCESS
        )

        if self.successful_bets == self.accounts_used:
            self.status = OverallStatus.COMPLETED
        elif self.successful_bets > 0:
            self.status = OverallStatus.PARTIAL_SUCCESS
        elif self.failed_bets == self.accounts_used:
            self.status = OverallStatus.FAILED
