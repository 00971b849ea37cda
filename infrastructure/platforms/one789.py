from __future__ import annotations

import logging
import re
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
    hmac_sha256,
)


logger = logging.getLogger(__name__)

AUTH_BASE = "https://id.lotusapi.com"
PLAY_URL = "https://lotto.lotusapi.com/game-play/player/play"
SITE_ORIGIN = "https://b2one789.net"
USER_POOL_ID = "ap-southeast-1_rz3gbsuS3"
ENCODED_DATA_VERSION = "JS20171115"

BET_TYPES = {
    # North 1
    "de": 0,
    "de-dau": 21,
    "de-giai1": 22,
    "de-dau-giai1": 23,
    "de-thanh-tai": 24,
    "de-dau-than-tai": 25,
    "lo-xien": 1,
    "lo-truot": 6,
    "lo-dau": 29,
    # North 2 and South
    "2d-dau": 7,
    "2d-duoi": 8,
    "2d-18lo": 15,
    "2d-18lo-dau": 30,
    "2d-dau-mb2": 7,
    "3d-dau": 10,
    "3d-duoi": 11,
    "3d-17lo": 17,
    "3d-7lo": 18,
    "3d-23lo-mb2": 12,
    "4d-duoi": 13,
    "4d-16lo": 19,
}

ALIASES = {7: 128, 8: 256, 9: 512, 10: 1024, 15: 2048, 16: 4096, 30: 2048}

REGIONS = ("north1", "north2", "south")

# Southern stations by weekday (Monday == 0); game type is 2 + position.
SOUTH_STATIONS_BY_WEEKDAY = {
    0: ["tp-hcm", "dong-thap", "ca-mau"],
    1: ["ben-tre", "vung-tau", "bac-lieu"],
    2: ["dong-nai", "can-tho", "soc-trang"],
    3: ["tay-ninh", "an-giang", "binh-thuan"],
    4: ["vinh-long", "binh-duong", "tra-vinh"],
    5: ["tp-hcm", "long-an", "binh-phuoc", "hau-giang"],
    6: ["tien-giang", "kien-giang", "da-lat"],
}


class One789Client(BasePlatformClient):
    """
    ONE789 adapter.

    Orders are a single signed call; the platform answers with a list of
    tickets whose first entry carries the transaction id.
    """

    platform = Platform.ONE789
    supports_ledger = False
    token_fields = ("IdToken", "idToken", "idtoken", "id_token", "data.IdToken")

    def normalize_bet_type(self, bet_type: str) -> str:
        if bet_type.isdigit():
            return bet_type
        return str(BET_TYPES.get(bet_type, 0))

    def calculate_total_stake(
        self,
        bet_type: str,
        item_count: int,
        stake: float,
        channel_count: int,
    ) -> float:
        return item_count * stake * max(channel_count, 1)

    def build_ticket(self, request: WagerRequest, items: List[str]) -> OrderTicket:
        bet_type = self.normalize_bet_type(request.bet_type)
        return OrderTicket(
            platform=self.platform,
            bet_type=bet_type,
            region=request.region,
            channels=list(request.channels),
            items=list(items),
            stake=request.stake,
            total_stake=self.calculate_total_stake(
                bet_type, len(items), request.stake, len(request.channels)
            ),
        )

    def validate(self, ticket: OrderTicket) -> List[str]:
        errors = []
        if not ticket.items:
            errors.append("Item list is empty")
        if not ticket.stake or ticket.stake <= 0:
            errors.append("Stake per item must be greater than 0")
        if not ticket.total_stake or ticket.total_stake <= 0:
            errors.append("Total stake must be greater than 0")
        if ticket.region not in REGIONS:
            errors.append(f"Invalid region: {ticket.region}")
        if not ticket.channels:
            errors.append("At least one channel is required")

        width = self.item_width(int(ticket.bet_type))
        pattern = re.compile(rf"^\d{{{width}}}$")
        for item in ticket.items:
            if not pattern.match(item):
                errors.append(f"Item {item} is not a {width}-digit number")
        return errors

    @staticmethod
    def item_width(bet_type: int) -> int:
        if bet_type in (13, 19):
            return 4
        if bet_type in (10, 11, 12, 17, 18):
            return 3
        return 2

    def game_type(self, station: str, region: str) -> int:
        if region == "north1":
            return 0
        if region == "north2":
            return 1
        stations = SOUTH_STATIONS_BY_WEEKDAY.get(self.platform_now().weekday(), [])
        return 2 + stations.index(station) if station in stations else 2

    def build_payload(self, ticket: OrderTicket) -> Dict[str, Any]:
        bet_type = int(ticket.bet_type)
        tickets = []
        for station in ticket.channels:
            entry: Dict[str, Any] = {
                "GameType": self.game_type(station, ticket.region),
                "BetType": bet_type,
                "Items": [
                    {"Numbers": [item], "Point": ticket.stake, "Price": 0}
                    for item in ticket.items
                ],
            }
            if bet_type in ALIASES:
                entry["Additional"] = {
                    "Row": 0,
                    "Alias": ALIASES[bet_type],
                    "Reverse": False,
                }
            tickets.append(entry)

        return {
            "Term": self.platform_now().strftime("%Y-%m-%d"),
            "IgnorePrice": True,
            "Tickets": tickets,
        }

    def encoded_data(self, username: str) -> str:
        now_ms = int(self._clock().timestamp() * 1000)
        context = {
            "UserAgent": USER_AGENT,
            "DeviceId": f"{secrets.token_hex(10)}:{now_ms}",
            "DeviceLanguage": "vi-VN",
            "DevicePlatform": "Win32",
            "ClientTimezone": "07:00",
        }
        payload = {
            "contextData": context,
            "username": username,
            "userPoolId": USER_POOL_ID,
            "timestamp": now_ms,
        }
        message = "|".join(
            [username, USER_POOL_ID, str(now_ms), canonical_json(context)]
        )
        envelope = {
            "payload": canonical_json(payload),
            "signature": b64(hmac_sha256(self._secret, message)),
            "version": ENCODED_DATA_VERSION,
        }
        return b64(canonical_json(envelope).encode("utf-8"))

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "accept": "application/json, text/plain, */*",
            "accept-language": "vi-VN,vi;q=0.9,en-US;q=0.6,en;q=0.5",
            "content-type": "application/json",
            "origin": SITE_ORIGIN,
            "referer": f"{SITE_ORIGIN}/",
            "user-agent": USER_AGENT,
        }
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def sign_in(
        self,
        account: AccountHandle,
        relay: Optional[RelayDescriptor],
    ) -> Dict[str, Any]:
        response = await request_json(
            self._session,
            "POST",
            f"{AUTH_BASE}/auth/sign-in",
            relay=relay,
            headers=self._headers(),
            json_body={
                "Username": account.snapshot.username,
                "Password": account.snapshot.password,
                "EncodedData": self.encoded_data(account.snapshot.username),
                "VisitorId": secrets.token_hex(16),
            },
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

        payload = self.build_payload(ticket)
        headers = self._headers(token)
        headers["x-signature"] = self.sign(payload)

        try:
            response = await request_json(
                self._session,
                "POST",
                PLAY_URL,
                relay=relay,
                headers=headers,
                json_body=payload,
            )
        except RemoteCallError as exc:
            raise OrderError.wrap(exc, "Order failed") from exc

        if not response:
            raise OrderError("Empty response from ONE789", payload=response)

        order_code = self.first_present(response, ("0.Tx", "0.orderId", "0.id"))
        if not order_code:
            order_code = f"ONE789_{int(self._clock().timestamp() * 1000)}_{account.username}"

        logger.info("[%s] ONE789 order %s placed", account.username, order_code)
        return OrderReceipt(
            order_code=str(order_code),
            details={"payload": payload, "response": response},
        )

    async def fetch_balance(
        self,
        account: AccountHandle,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> float:
        profile = await request_json(
            self._session,
            "GET",
            f"{AUTH_BASE}/users/profile",
            relay=relay,
            headers=self._headers(token),
        )
        return self.to_float(
            self.first_present(
                profile,
                ("Balance", "balance", "data.Balance", "data.balance"),
                0,
            )
        )

    async def fetch_ledger(
        self,
        account: AccountHandle,
        day: date,
        token: str,
        relay: Optional[RelayDescriptor],
    ) -> List[Dict[str, Any]]:
        raise ReconciliationError("ONE789 does not expose a transaction ledger")
