import os
import tempfile
import unittest
from datetime import date, timedelta

from domain.models import (
    AccountStatus,
    AccountUpdate,
    ChannelResult,
    OverallStatus,
    Platform,
    ResultStatus,
    Settlement,
)
from domain.repositories import BetRecordFilter
from infrastructure.db.account_repository_sqlite import SqliteAccountRepository
from infrastructure.db.bet_record_repository_sqlite import SqliteBetRecordRepository

from fakes import NOW, make_account
from test_settlement import _record, _usage


class SqliteTestCase(unittest.TestCase):
    def setUp(self):
        handle, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(handle)

    def tearDown(self):
        os.remove(self.db_path)


class SqliteAccountRepositoryTests(SqliteTestCase):
    def setUp(self):
        super().setUp()
        self.repo = SqliteAccountRepository(self.db_path)
        for account_id in ("b", "a", "c"):
            self.repo.create_account(make_account(account_id, relay="h:1"))
        self.repo.create_account(make_account("d", platform=Platform.ONE789))

    def test_list_keeps_insertion_order_and_filters(self):
        accounts = self.repo.list_accounts("owner", platform=Platform.SGD666)

        self.assertEqual([a.id for a in accounts], ["b", "a", "c"])
        self.assertEqual(accounts[0].relay, "h:1")
        self.assertEqual(len(self.repo.list_accounts("owner")), 4)
        self.assertEqual(self.repo.list_accounts("other"), [])

    def test_apply_update_touches_only_given_fields(self):
        self.repo.apply_update(
            "a",
            AccountUpdate(access_token="tok", token_expiry=NOW, status=AccountStatus.INACTIVE),
        )
        account = self.repo.get_by_id("a")

        self.assertEqual(account.access_token, "tok")
        self.assertEqual(account.token_expiry, NOW)
        self.assertEqual(account.status, AccountStatus.INACTIVE)
        self.assertEqual(account.balance, 0)
        self.assertEqual(
            [a.id for a in self.repo.list_accounts("owner", status=AccountStatus.ACTIVE)],
            ["b", "c", "d"],
        )

        self.repo.apply_update("a", AccountUpdate(access_token=None, balance=12.5))
        account = self.repo.get_by_id("a")
        self.assertIsNone(account.access_token)
        self.assertEqual(account.token_expiry, NOW)
        self.assertEqual(account.balance, 12.5)

    def test_missing_account(self):
        self.assertIsNone(self.repo.get_by_id("zzz"))


class SqliteBetRecordRepositoryTests(SqliteTestCase):
    def setUp(self):
        super().setUp()
        self.repo = SqliteBetRecordRepository(self.db_path)

    def _store(self, order_code, days_ago=0, **overrides):
        record = _record(order_code=order_code, **overrides)
        record.bet_date = NOW - timedelta(days=days_ago)
        record.created_at = record.bet_date
        self.repo.create(record)
        return record

    def test_round_trip(self):
        original = self._store("BET1", usages=[_usage("1", "ORD-1"), _usage("2", "ORD-2")])

        loaded = self.repo.get_by_order_code("BET1", owner_id="owner")

        self.assertEqual(loaded, original)
        self.assertEqual(loaded.usages[1].order_code, "ORD-2")
        self.assertIsNone(self.repo.get_by_order_code("BET1", owner_id="intruder"))

    def test_find_filters_and_pages(self):
        self._store("BET-A", days_ago=3)
        self._store("BET-B", days_ago=2, platform=Platform.ONE789)
        self._store("XYZ-C", days_ago=1)

        page = self.repo.find("owner", page=1, limit=2)
        self.assertEqual([r.order_code for r in page.items], ["XYZ-C", "BET-B"])
        self.assertEqual((page.total, page.total_pages), (3, 2))

        page = self.repo.find("owner", page=2, limit=2)
        self.assertEqual([r.order_code for r in page.items], ["BET-A"])

        found = self.repo.find("owner", BetRecordFilter(order_code="bet-"))
        self.assertEqual([r.order_code for r in found.items], ["BET-B", "BET-A"])

        found = self.repo.find("owner", BetRecordFilter(platform=Platform.ONE789))
        self.assertEqual([r.order_code for r in found.items], ["BET-B"])

        day = (NOW - timedelta(days=2)).date()
        found = self.repo.find("owner", BetRecordFilter(start_date=day, end_date=day))
        self.assertEqual([r.order_code for r in found.items], ["BET-B"])

        found = self.repo.find("owner", BetRecordFilter(end_date=date(2000, 1, 1)))
        self.assertEqual(found.total, 0)

    def test_settlement_is_stored_once(self):
        self._store("BET1")
        self.assertEqual(
            [r.order_code for r in self.repo.find_unsettled([OverallStatus.COMPLETED])],
            ["BET1"],
        )

        settlement = Settlement(
            checked=True,
            status=ResultStatus.WIN,
            total_win_amount=450,
            total_stake=100,
            winning_numbers=["12"],
            channel_results={"thanhpho": ChannelResult(stake=100, status=ResultStatus.WIN)},
            checked_at=NOW,
        )

        self.assertTrue(self.repo.save_settlement("BET1", settlement))
        self.assertFalse(self.repo.save_settlement("BET1", Settlement(checked=True)))
        self.assertEqual(self.repo.find_unsettled([OverallStatus.COMPLETED]), [])

        stored = self.repo.get_by_order_code("BET1").settlement
        self.assertEqual(stored, settlement)
        self.assertEqual(stored.channel_results["thanhpho"].status, ResultStatus.WIN)


if __name__ == "__main__":
    unittest.main()
