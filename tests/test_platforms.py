import json
import unittest
from datetime import date

from domain.errors import OrderError, ReconciliationError, RemoteCallError
from domain.models import (
    AccountHandle,
    OrderTicket,
    Platform,
    ReauthSignal,
    WagerRequest,
)
from infrastructure.platforms.one789 import One789Client
from infrastructure.platforms.sgd666 import Sgd666Client, bet_type_multiplier

from fakes import FixedClock, make_account


class FakeResponse:
    def __init__(self, status: int, body):
        self.status = status
        self.reason = "OK" if status < 400 else "Error"
        self._body = body

    async def text(self):
        return json.dumps(self._body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued (status, body) answers and records each request."""

    def __init__(self, answers=()):
        self.answers = list(answers)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if not self.answers:
            raise AssertionError(f"Unexpected request {method} {url}")
        status, body = self.answers.pop(0)
        return FakeResponse(status, body)


def _ticket(**overrides) -> OrderTicket:
    values = dict(
        platform=Platform.SGD666,
        bet_type="ALL_LOT",
        region="SOUTH",
        channels=["thanhpho", "dongthap"],
        items=["12", "34"],
        stake=10,
        total_stake=720,
    )
    values.update(overrides)
    return OrderTicket(**values)


class Sgd666StakeTests(unittest.TestCase):
    def setUp(self):
        self.client = Sgd666Client(FakeSession(), "secret", clock=FixedClock())

    def test_multipliers(self):
        self.assertEqual(bet_type_multiplier("ALL_LOT", 3), 18)
        self.assertEqual(bet_type_multiplier("FIRST_LAST", 3), 2)
        self.assertEqual(bet_type_multiplier("KICK_STRAIGHT", 3), 36)
        self.assertEqual(bet_type_multiplier("SEVEN_LOT_LAST", 3), 7)
        self.assertEqual(bet_type_multiplier("LAST", 3), 1)

    def test_total_stake(self):
        self.assertEqual(self.client.calculate_total_stake("ALL_LOT", 2, 10, 2), 720)

    def test_declared_total_mismatch_is_rejected(self):
        errors = self.client.validate(_ticket(total_stake=700))

        self.assertEqual(len(errors), 1)
        self.assertIn("Expected: 720", errors[0])

    def test_build_ticket_normalises(self):
        request = WagerRequest(
            platform=Platform.SGD666,
            bet_type="bao-lo",
            region="south",
            channels=["tp-hcm"],
            items=["12", "34"],
            stake=5,
        )
        ticket = self.client.build_ticket(request, ["12"])

        self.assertEqual(ticket.bet_type, "ALL_LOT")
        self.assertEqual(ticket.region, "SOUTH")
        self.assertEqual(ticket.channels, ["thanhpho"])
        self.assertEqual(ticket.items, ["12"])
        self.assertEqual(ticket.total_stake, 90)
        self.assertEqual(self.client.validate(ticket), [])

    def test_unknown_values_fall_back(self):
        self.assertEqual(self.client.normalize_bet_type("nope"), "LAST")
        self.assertEqual(self.client.normalize_region("nowhere"), "CENTRAL")

    def test_classify_reauth(self):
        cases = [
            (RemoteCallError("HTTP 400: Tài khoản đã đăng nhập từ nơi khác", status=400),
             ReauthSignal.EXPLICIT_LOGOUT),
            (RemoteCallError("HTTP 401: nope", status=401), ReauthSignal.UNAUTHORIZED),
            (RemoteCallError("Forbidden resource"), ReauthSignal.FORBIDDEN),
            (RemoteCallError("HTTP 500: boom", status=500), None),
        ]
        for error, expected in cases:
            with self.subTest(message=error.message):
                self.assertEqual(self.client.classify_reauth(error), expected)


class Sgd666CallTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.handle = AccountHandle.of(make_account("1"))

    async def test_mismatched_ticket_fails_before_any_request(self):
        session = FakeSession()
        client = Sgd666Client(session, "secret", clock=FixedClock())

        with self.assertRaises(OrderError) as caught:
            await client.place_order(self.handle, _ticket(total_stake=700), "tok", None)

        self.assertIn("Total stake mismatch", caught.exception.message)
        self.assertEqual(session.requests, [])

    async def test_order_is_created_then_confirmed(self):
        session = FakeSession(
            [
                (200, {"data": {"orderCode": "SGD123"}}),
                (200, {"data": {"code": 200}}),
            ]
        )
        client = Sgd666Client(session, "secret", clock=FixedClock())

        receipt = await client.place_order(self.handle, _ticket(), "tok", None)

        self.assertEqual(receipt.order_code, "SGD123")
        self.assertEqual([r[0] for r in session.requests], ["POST", "PATCH"])
        self.assertTrue(session.requests[1][1].endswith("/app/loto/order/SGD123"))
        self.assertEqual(
            session.requests[1][2]["json"], {"confirm": True, "orderCode": "SGD123"}
        )

    async def test_unconfirmed_order_fails(self):
        session = FakeSession(
            [
                (200, {"orderCode": "SGD123"}),
                (200, {"data": {"code": 400, "message": "closed"}}),
            ]
        )
        client = Sgd666Client(session, "secret", clock=FixedClock())

        with self.assertRaises(OrderError):
            await client.place_order(self.handle, _ticket(), "tok", None)

    async def test_http_error_keeps_status(self):
        session = FakeSession([(401, {"message": "Unauthorized"})])
        client = Sgd666Client(session, "secret", clock=FixedClock())

        with self.assertRaises(OrderError) as caught:
            await client.place_order(self.handle, _ticket(), "tok", None)

        self.assertEqual(caught.exception.status, 401)
        self.assertEqual(client.classify_reauth(caught.exception), ReauthSignal.UNAUTHORIZED)

    async def test_ledger_pages_until_short_page(self):
        full = [{"orderCode": f"O{i}"} for i in range(50)]
        session = FakeSession(
            [
                (200, {"data": {"data": full}}),
                (200, {"data": {"data": [{"orderCode": "LAST"}]}}),
            ]
        )
        client = Sgd666Client(session, "secret", clock=FixedClock())

        rows = await client.fetch_ledger(self.handle, date(2024, 5, 10), "tok", None)

        self.assertEqual(len(rows), 51)
        self.assertEqual(len(session.requests), 2)
        self.assertEqual(session.requests[0][2]["params"]["start"], "10/05/2024")

    async def test_malformed_ledger(self):
        session = FakeSession([(200, {"data": "oops"})])
        client = Sgd666Client(session, "secret", clock=FixedClock())

        with self.assertRaises(ReconciliationError):
            await client.fetch_ledger(self.handle, date(2024, 5, 10), "tok", None)

    async def test_balance(self):
        session = FakeSession([(200, {"data": {"plInfo": {"credit": "1500.5"}}})])
        client = Sgd666Client(session, "secret", clock=FixedClock())

        self.assertEqual(await client.fetch_balance(self.handle, "tok", None), 1500.5)


class One789Tests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.handle = AccountHandle.of(make_account("1", platform=Platform.ONE789))

    def _ticket(self, **overrides):
        values = dict(
            platform=Platform.ONE789,
            bet_type="0",
            region="north1",
            channels=["mb"],
            items=["12", "34"],
            stake=10,
            total_stake=20,
        )
        values.update(overrides)
        return OrderTicket(**values)

    def test_stake_and_bet_types(self):
        client = One789Client(FakeSession(), "secret", clock=FixedClock())

        self.assertEqual(client.normalize_bet_type("3d-dau"), "10")
        self.assertEqual(client.calculate_total_stake("0", 3, 10, 2), 60)
        self.assertEqual(client.calculate_total_stake("0", 3, 10, 0), 30)

    def test_validate_digit_width_and_region(self):
        client = One789Client(FakeSession(), "secret", clock=FixedClock())

        errors = client.validate(self._ticket(bet_type="10", region="central"))

        self.assertIn("Invalid region: central", errors)
        self.assertTrue(any("3-digit" in e for e in errors))

    async def test_single_signed_call(self):
        session = FakeSession([(200, [{"Tx": "TX99"}])])
        client = One789Client(session, "secret", clock=FixedClock())

        receipt = await client.place_order(self.handle, self._ticket(), "tok", None)

        self.assertEqual(receipt.order_code, "TX99")
        self.assertEqual(len(session.requests), 1)
        headers = session.requests[0][2]["headers"]
        self.assertIn("x-signature", headers)
        self.assertEqual(headers["authorization"], "Bearer tok")

    async def test_ledger_is_not_available(self):
        client = One789Client(FakeSession(), "secret", clock=FixedClock())

        self.assertFalse(client.supports_ledger)
        with self.assertRaises(ReconciliationError):
            await client.fetch_ledger(self.handle, date(2024, 5, 10), "tok", None)


if __name__ == "__main__":
    unittest.main()
