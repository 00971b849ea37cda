from __future__ import annotations

import logging
import secrets
from datetime import date
from typing import Any, Dict, List, Optional

from domain.errors import OrderError, ReconciliationError, RemoteCallError
from domain.models import (
    AccountHandle,
    OrderReceipt,
    OrderTicket,
    Platform,
    RelayDescriptor,
    WagerRequest,
)
from infrastructure.http.client import request_json
from infrastructure.platforms.base import (
    USER_AGENT,
    BasePlatformClient,
    b64,
    canonical_json,
)


logger = logging.getLogger(__name__)

API_BASE = "https://api.sgd6666.asia/api/v1"
SITE_ORIGIN = "https://sgd6666.asia"
LEDGER_PAGE_SIZE = 50
LEDGER_MAX_PAGES = 20

BET_TYPES = {
    "bao-lo": "ALL_LOT",
    "dau-duoi": "FIRST_LAST",
    "duoi": "LAST",
    "dau": "FIRST",
    "da": "KICK_STRAIGHT",
    "7-lo": "SEVEN_LOT",
    "7-lo-dau": "SEVEN_LOT_FIRST",
    "7-lo-duoi": "SEVEN_LOT_LAST",
    "7-lo-giua": "SEVEN_LOT_BETWEEN",
    "giai-7": "PRIZE_SEVEN",
    "giai-6": "PRIZE_SIX",
    "giai-5": "PRIZE_FIVE",
    "giai-4": "PRIZE_FOUR",
    "giai-3": "PRIZE_THREE",
    "giai-2": "PRIZE_TWO",
    "giai-1": "PRIZE_ONE",
}

STATIONS = {
    # North
    "mb1": "mb1",
    "mb2": "mb2",
    "ha-noi": "hanoi",
    "quang-ninh": "quangninh",
    "bac-ninh": "bacninh",
    "hai-phong": "haiphong",
    "nam-dinh": "namdinh",
    "thai-binh": "thaibinh",
    # South
    "tp-hcm": "thanhpho",
    "dong-thap": "dongthap",
    "ca-mau": "camau",
    "ben-tre": "bentre",
    "vung-tau": "vungtau",
    "bac-lieu": "baclieu",
    "can-tho": "cantho",
    "soc-trang": "soctrang",
    "tay-ninh": "tayninh",
    "an-giang": "angiang",
    "binh-thuan": "binhthuan",
    "vinh-long": "vinhlong",
    "tra-vinh": "travinh",
    "long-an": "longan",
    "binh-phuoc": "binhphuoc",
    "hau-giang": "haugiang",
    "tien-giang": "tiengiang",
    "kien-giang": "kiengiang",
    "da-lat": "dalat",
    # Central
    "thua-thien-hue": "thuathienhue",
    "phu-yen": "phuyen",
    "dak-lak": "daklak",
    "quang-nam": "quangnam",
    "da-nang": "danang",
    "khanh-hoa": "khanhhoa",
    "binh-dinh": "binhdinh",
    "quang-tri": "quangtri",
    "ninh-thuan": "ninhthuan",
    "quang-binh": "quangbinh",
    "gia-lai": "gialai",
    "quang-ngai": "quangngai",
    "dak-nong": "daknong",
    "kon-tum": "kontum",
}

REGIONS = {"north": "NORTH", "central": "CENTRAL", "south": "SOUTH"}

SEVEN_LOT_TYPES = {"SEVEN_LOT", "SEVEN_LOT_FIRST", "SEVEN_LOT_LAST", "SEVEN_LOT_BETWEEN"}


def bet_type_multiplier(bet_type: str, item_count: int) -> int:
    if bet_type == "ALL_LOT":
        return 18
    if bet_type == "FIRST_LAST":
        return 2
    if bet_type == "KICK_STRAIGHT":
        return 18 * (item_count - 1)
    if bet_type in SEVEN_LOT_TYPES:
        return 7
    return 1


class Sgd666Client(BasePlatformClient):
    """
    SGD666 adapter.

    Orders are two-phase: a signed create call returns an order code,
    which must then be confirmed with an explicit PATCH. The order only
    counts as placed once the confirmation reports code 200.
    """

    platform = Platform.SGD666
    supports_ledger = True
    token_fields = ("token", "accessToken", "access_token", "data.token")

    def normalize_bet_type(self, bet_type: str) -> str:
        if bet_type in BET_TYPES.values():
            return bet_type
        return BET_TYPES.get(bet_type, "LAST")

    def normalize_channels(self, channels: List[str]) -> List[str]:
        mapped = []
        for channel in channels:
            value = STATIONS.get(channel)
            if value is None:
                logger.warning("Unknown station %s, using it as is", channel)
                value = channel.lower()
            mapped.append(value)
        return mapped

    def normalize_region(self, region: str) -> str:
        return REGIONS.get(region, "CENTRAL")

    def calculate_total_stake(
        self,
        bet_type: str,
        item_count: int,
        stake: float,
        channel_count: int,
    ) -> float:
        return item_count * stake * bet_type_multiplier(bet_type, item_count) * channel_count

    def build_ticket(self, request: WagerRequest, items: List[str]) -> OrderTicket:
        bet_type = self.normalize_bet_type(request.bet_type)
        channels = self.normalize_channels(request.channels)
        return OrderTicket(
            platform=self.platform,
            bet_type=bet_type,
            region=self.normalize_region(request.region),
            channels=channels,
            items=list(items),
            stake=request.stake,
            total_stake=self.calculate_total_stake(
                bet_type, len(items), request.stake, len(channels)
            ),
        )

    def validate(self, ticket: OrderTicket) -> List[str]:
        errors = []
        if not ticket.items:
            errors.append("Item list is empty")
        if not ticket.total_stake or ticket.total_stake <= 0:
            errors.append("Total stake must be greater than 0")
        if not ticket.stake or ticket.stake <= 0:
            errors.append("Stake per item must be greater than 0")
        if not ticket.channels:
            errors.append("At least one channel is required")

        expected = self.calculate_total_stake(
            ticket.bet_type, len(ticket.items), ticket.stake, len(ticket.channels)
        )
        if ticket.total_stake != expected:
            errors.append(
                f"Total stake mismatch. Expected: {expected:g}, declared: {ticket.total_stake:g}"
            )
        return errors

    def encode(self, data: Any) -> str:
        """
        Wrap `data` in the platform's `hash` envelope: the canonical JSON
        body plus an HMAC over a random nonce and that body, base64 encoded.
        """

        nonce = secrets.token_hex(16)
        body = canonical_json(data)
        envelope = {"iv": nonce, "hash": self.sign({"iv": nonce, "data": body}), "data": body}
        return b64(canonical_json(envelope).encode("utf-8"))

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "accept": "application/json, text/plain, */*",
            "accept-language": "vi",
            "content-type": "application/json",
            "origin": SITE_ORIGIN,
            "referer": f"{SITE_ORIGIN}/",
            "user-agent": USER_AGENT,
        }
        if token:
            headers["token"] = f"Bearer {token}"
        return headers

    async def sign_in(
        self,
        account: AccountHandle,
        relay: Optional[RelayDescriptor],
    ) -> Dict[str, Any]:
        payload = {
            "userName": account.snapshot.username,
            "password": account.snapshot.password,
            "origin": "member",
        }
        response = await request_json(
            self._session,
            "POST",
            f"{API_BASE}/authentication/sign-in",
            relay=relay,
            headers=self._headers(),
            json_body={"hash": self.encode(payload)},
        )
        return self.describe(response)

    async def place_order(
        self,
        account: AccountHandle,
        ticket: OrderTicket,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> OrderReceipt:
        errors = self.validate(ticket)
        if errors:
            raise OrderError(f"Invalid bet data: {', '.join(errors)}", details=errors)

        order = [
            {
                "stake": ticket.total_stake,
                "region": ticket.region,
                "channels": ticket.channels,
                "betType": [ticket.bet_type],
                "betTypeChild": "TWO_NUMBERS",
                "numbers": ticket.items,
                "stakePerBet": f"{ticket.stake:g}",
                "date": self.platform_now().strftime("%d/%m/%Y"),
                "confirm": False,
                "site": "member",
            }
        ]

        try:
            created = await request_json(
                self._session,
                "POST",
                f"{API_BASE}/app/loto/order",
                relay=relay,
                headers=self._headers(token),
                json_body={"hash": self.encode(order)},
            )
        except RemoteCallError as exc:
            raise OrderError.wrap(exc, "Order creation failed") from exc

        order_code = self.first_present(created, ("orderCode", "data.orderCode"))
        if not order_code:
            raise OrderError("Order response has no orderCode", payload=created)

        logger.info("[%s] Confirming order %s", account.username, order_code)
        try:
            confirmed = await request_json(
                self._session,
                "PATCH",
                f"{API_BASE}/app/loto/order/{order_code}",
                relay=relay,
                headers=self._headers(token),
                json_body={"confirm": True, "orderCode": order_code},
            )
        except RemoteCallError as exc:
            raise OrderError.wrap(exc, f"Order {order_code} confirmation failed") from exc

        if self.first_present(confirmed, ("data.code",)) != 200:
            raise OrderError(f"Order {order_code} confirmation failed", payload=confirmed)

        logger.info("[%s] Order %s confirmed", account.username, order_code)
        return OrderReceipt(
            order_code=str(order_code),
            details={
                "numbers": ticket.items,
                "totalStake": ticket.total_stake,
                "stakePerBet": ticket.stake,
                "region": ticket.region,
                "channels": ticket.channels,
                "betType": ticket.bet_type,
            },
        )

    async def fetch_balance(
        self,
        account: AccountHandle,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> float:
        details = await request_json(
            self._session,
            "GET",
            f"{API_BASE}/app/account/details",
            relay=relay,
            headers=self._headers(token),
        )
        return self.to_float(self.first_present(details, ("data.plInfo.credit",), 0))

    async def fetch_ledger(
        self,
        account: AccountHandle,
        day: date,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> List[Dict[str, Any]]:
        day_str = day.strftime("%d/%m/%Y")
        rows: List[Dict[str, Any]] = []

        for page in range(LEDGER_MAX_PAGES):
            body = await request_json(
                self._session,
                "GET",
                f"{API_BASE}/app/statement/details",
                relay=relay,
                headers=self._headers(token),
                params={
                    "start": day_str,
                    "end": day_str,
                    "page": page,
                    "limit": LEDGER_PAGE_SIZE,
                },
            )
            batch = self._ledger_rows(body)
            rows.extend(batch)
            if len(batch) < LEDGER_PAGE_SIZE:
                break

        logger.info("[%s] Ledger for %s: %d rows", account.username, day_str, len(rows))
        return rows

    @staticmethod
    def _ledger_rows(body: Any) -> List[Dict[str, Any]]:
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict):
            data = data.get("data")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ReconciliationError("Malformed ledger response", payload=body)
        return [row for row in data if isinstance(row, dict)]
