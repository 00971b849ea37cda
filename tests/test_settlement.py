import unittest
from datetime import datetime, timedelta

from application.credentials import CredentialManager
from application.settlement import (
    SettlementConfig,
    SettlementReconciler,
    is_due,
    summarize_account,
)
from domain.errors import ReconciliationError
from domain.models import (
    PLATFORM_TZ,
    AccountUsage,
    BetRecord,
    DistributionPolicy,
    PlacementStatus,
    Platform,
    ResultStatus,
    Settlement,
)

from fakes import (
    NOW,
    FakePlatformClient,
    FakeRelayChecker,
    FixedClock,
    InMemoryAccountRepository,
    InMemoryBetRecordRepository,
    make_account,
)


def _usage(account_id: str, order_code: str) -> AccountUsage:
    return AccountUsage(
        account_id=account_id,
        username=f"user-{account_id}",
        items=["12"],
        stake_amount=100,
        status=PlacementStatus.SUCCESS,
        response={"orderCode": order_code},
    )


def _record(order_code="BET1", usages=None, platform=Platform.SGD666, region="south"):
    record = BetRecord(
        order_code=order_code,
        owner_id="owner",
        platform=platform,
        bet_type="LAST",
        bet_type_display="duoi",
        region=region,
        channels=["tp-hcm"],
        numbers=["12"],
        stake=100,
        total_stake=100,
        policy=DistributionPolicy.EQUAL,
        usages=usages if usages is not None else [_usage("1", "ORD-1")],
        bet_date=NOW - timedelta(days=1),
        created_at=NOW - timedelta(days=1),
    )
    record.update_statistics()
    return record


def _row(order_code, win_loss, stake=100, status="LOSS", channels=("thanhpho",), wins=()):
    return {
        "orderCode": order_code,
        "memberWinLoss": win_loss,
        "stake": stake,
        "status": status,
        "numbers": ["12"],
        "channels": list(channels),
        "channelWin": list(wins),
        "betType": "LAST",
    }


class IsDueTests(unittest.TestCase):
    def setUp(self):
        self.config = SettlementConfig()

    def _at(self, day, hour, minute):
        return datetime(2024, 5, day, hour, minute, tzinfo=PLATFORM_TZ)

    def test_region_cutoffs(self):
        record = _record()
        record.bet_date = self._at(10, 9, 0)

        self.assertFalse(is_due(record, self._at(10, 16, 29), self.config))
        self.assertTrue(is_due(record, self._at(10, 16, 30), self.config))

        record.region = "north"
        self.assertFalse(is_due(record, self._at(10, 18, 0), self.config))
        self.assertTrue(is_due(record, self._at(10, 18, 45), self.config))

    def test_past_and_future_days(self):
        record = _record(region="unknown")
        record.bet_date = self._at(9, 9, 0)
        self.assertTrue(is_due(record, self._at(10, 8, 0), self.config))

        record.bet_date = self._at(11, 9, 0)
        self.assertFalse(is_due(record, self._at(10, 23, 0), self.config))

        record.bet_date = self._at(10, 9, 0)
        self.assertFalse(is_due(record, self._at(10, 23, 0), self.config))


class SummarizeAccountTests(unittest.TestCase):
    def test_matches_order_code_case_insensitively(self):
        rows = [
            _row(" ord-1 ", 500, status="WIN", wins=["thanhpho"]),
            _row("ORD-2", -100),
        ]

        result = summarize_account(_usage("1", "ORD-1"), rows)

        self.assertEqual(result.status, ResultStatus.WIN)
        self.assertEqual(result.record_count, 1)
        self.assertEqual(result.total_win_loss, 500)
        self.assertEqual(result.winning_numbers, ["12"])
        self.assertEqual(result.channel_results["thanhpho"].status, ResultStatus.WIN)

    def test_no_matching_rows(self):
        result = summarize_account(_usage("1", "ORD-1"), [_row("OTHER", 500, status="WIN")])

        self.assertEqual(result.status, ResultStatus.NOT_FOUND)
        self.assertFalse(result.found)

    def test_draw_and_loss(self):
        even = [_row("ORD-1", 100), _row("ORD-1", -100)]
        self.assertEqual(summarize_account(_usage("1", "ORD-1"), even).status, ResultStatus.DRAW)

        lost = [_row("ORD-1", -100)]
        result = summarize_account(_usage("1", "ORD-1"), lost)
        self.assertEqual(result.status, ResultStatus.LOSS)
        self.assertEqual(result.winning_numbers, [])
        self.assertEqual(result.channel_results["thanhpho"].status, ResultStatus.LOSS)


class ReconcilerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.accounts = InMemoryAccountRepository(
            [make_account("1"), make_account("2"), make_account("3", platform=Platform.ONE789)]
        )
        self.bets = InMemoryBetRecordRepository()
        self.client = FakePlatformClient()
        self.one789 = FakePlatformClient(platform=Platform.ONE789, supports_ledger=False)
        relays = FakeRelayChecker()
        clock = FixedClock()
        credentials = CredentialManager(
            {Platform.SGD666: self.client, Platform.ONE789: self.one789},
            self.accounts,
            relays,
            clock=clock,
        )
        self.reconciler = SettlementReconciler(
            self.bets, self.accounts, credentials, relays, clock=clock
        )

    async def test_missing_ledger_rows_never_win(self):
        self.bets.create(_record())
        self.client.ledgers["user-1"] = [_row("SOMETHING-ELSE", 900, status="WIN")]

        summary = await self.reconciler.reconcile_due()

        self.assertEqual((summary.checked, summary.updated), (1, 1))
        settlement = self.bets.get_by_order_code("BET1").settlement
        self.assertTrue(settlement.checked)
        self.assertNotEqual(settlement.status, ResultStatus.WIN)
        self.assertEqual(settlement.account_results[0].status, ResultStatus.NOT_FOUND)
        self.assertEqual(settlement.processed_accounts, 0)
        self.assertEqual(settlement.total_accounts, 1)

    async def test_aggregates_accounts(self):
        self.bets.create(_record(usages=[_usage("1", "ORD-1"), _usage("2", "ORD-2")]))
        self.client.ledgers["user-1"] = [_row("ORD-1", -100)]
        self.client.ledgers["user-2"] = [
            _row("ORD-2", 900, status="WIN", channels=["thanhpho", "dongthap"], wins=["dongthap"])
        ]

        await self.reconciler.reconcile_due()

        settlement = self.bets.get_by_order_code("BET1").settlement
        self.assertEqual(settlement.status, ResultStatus.WIN)
        self.assertEqual(settlement.total_win_amount, 800)
        self.assertEqual(settlement.total_stake, 200)
        self.assertEqual(settlement.processed_accounts, 2)
        self.assertEqual(settlement.winning_numbers, ["12"])
        self.assertEqual(settlement.channel_results["dongthap"].status, ResultStatus.WIN)
        self.assertEqual(settlement.channel_results["thanhpho"].status, ResultStatus.LOSS)
        self.assertEqual(settlement.channel_results["thanhpho"].accounts, ["user-1", "user-2"])

    async def test_one_failing_account_does_not_block_others(self):
        self.bets.create(_record(usages=[_usage("1", "ORD-1"), _usage("2", "ORD-2")]))
        self.client.ledgers["user-1"] = ReconciliationError("Malformed ledger response")
        self.client.ledgers["user-2"] = [_row("ORD-2", -100)]

        await self.reconciler.reconcile_due()

        settlement = self.bets.get_by_order_code("BET1").settlement
        statuses = [r.status for r in settlement.account_results]
        self.assertEqual(statuses, [ResultStatus.ERROR, ResultStatus.LOSS])
        self.assertEqual(settlement.account_results[0].error, "Malformed ledger response")
        self.assertEqual(settlement.processed_accounts, 1)
        self.assertEqual(settlement.status, ResultStatus.LOSS)

    async def test_one_failing_bet_does_not_block_others(self):
        self.bets.create(_record("BET1", usages=[_usage("1", "ORD-1")]))
        self.bets.create(_record("BET2", usages=[_usage("2", "ORD-2")]))
        self.client.ledgers["user-1"] = [_row("ORD-1", -100)]
        self.client.ledgers["user-2"] = [_row("ORD-2", -100)]
        save = self.bets.save_settlement

        def save_or_fail(order_code, settlement):
            if order_code == "BET1":
                raise RuntimeError("database is locked")
            return save(order_code, settlement)

        self.bets.save_settlement = save_or_fail

        summary = await self.reconciler.reconcile_due()

        self.assertEqual((summary.checked, summary.updated), (2, 1))
        self.assertFalse(self.bets.get_by_order_code("BET1").settlement.checked)
        self.assertTrue(self.bets.get_by_order_code("BET2").settlement.checked)

    async def test_settles_only_once(self):
        self.bets.create(_record())
        self.client.ledgers["user-1"] = [_row("ORD-1", -100)]

        first = await self.reconciler.reconcile_due()
        second = await self.reconciler.reconcile_due()

        self.assertEqual(first.updated, 1)
        self.assertEqual(second.checked, 0)
        self.assertEqual(len(self.client.ledger_calls), 1)
        self.assertFalse(self.bets.save_settlement("BET1", Settlement(checked=True)))

    async def test_stale_copy_is_not_settled_twice(self):
        self.bets.create(_record())
        self.client.ledgers["user-1"] = [_row("ORD-1", -100)]
        eligible = list(SettlementConfig().eligible)
        first_copy = self.bets.find_unsettled(eligible)[0]
        second_copy = self.bets.find_unsettled(eligible)[0]

        self.assertTrue(await self.reconciler.reconcile(first_copy))
        self.assertFalse(await self.reconciler.reconcile(second_copy))
        self.assertEqual(
            self.bets.get_by_order_code("BET1").settlement.checked_at, NOW
        )

    async def test_platform_without_ledger_is_skipped(self):
        self.bets.create(_record(usages=[_usage("3", "TX1")], platform=Platform.ONE789))

        summary = await self.reconciler.reconcile_due()

        self.assertEqual(summary.checked, 0)
        self.assertEqual(self.one789.ledger_calls, [])

    async def test_not_yet_due(self):
        record = _record()
        record.bet_date = NOW
        self.bets.create(record)

        summary = await self.reconciler.reconcile_due()

        self.assertEqual(summary.checked, 0)


if __name__ == "__main__":
    unittest.main()
