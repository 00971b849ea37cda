import unittest

from application.credentials import CredentialManager
from application.orchestrator import RetryConfig, RetryOrchestrator, run_in_batches
from application.placement import AccountPlacer
from domain.errors import RemoteCallError
from domain.models import (
    AccountHandle,
    AccountStatus,
    DistributionPolicy,
    PlacementOutcome,
    PlacementStatus,
    Platform,
    WagerRequest,
)

from fakes import (
    FakePlatformClient,
    FakeRelayChecker,
    FixedClock,
    InMemoryAccountRepository,
    make_account,
    no_sleep,
)


def _request(items, policy=DistributionPolicy.EQUAL, workers=1):
    return WagerRequest(
        platform=Platform.SGD666,
        bet_type="duoi",
        region="south",
        channels=["tp-hcm"],
        items=list(items),
        stake=10,
        policy=policy,
        worker_count=workers,
    )


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    def build(self, accounts, config=None):
        self.accounts = InMemoryAccountRepository(accounts)
        self.client = FakePlatformClient()
        self.relays = FakeRelayChecker()
        credentials = CredentialManager(
            {Platform.SGD666: self.client}, self.accounts, self.relays, clock=FixedClock()
        )
        self.placer = AccountPlacer(credentials, self.relays, self.accounts)
        self.orchestrator = RetryOrchestrator(
            self.placer, config or RetryConfig(batch_pause=0, round_pause=0), sleep=no_sleep
        )
        self.handles = [AccountHandle.of(a) for a in accounts]


class PlacementTests(OrchestratorTestCase):
    async def test_bad_relay_format_is_a_relay_error(self):
        self.build([make_account("1", relay="not-a-relay")])

        outcome = await self.placer.place(
            self.handles[0], _request(["12"]), ["12"]
        )

        self.assertEqual(outcome.status, PlacementStatus.RELAY_ERROR)
        self.assertEqual(outcome.error, "Relay format error")
        self.assertEqual(self.accounts.get_by_id("1").status, AccountStatus.RELAY_ERROR)
        self.assertEqual(self.client.placed, [])

    async def test_unhealthy_relay_is_a_relay_error(self):
        self.build([make_account("1", relay="dead:8080")])
        self.relays.unhealthy_hosts.add("dead")

        outcome = await self.placer.place(
            self.handles[0], _request(["12"]), ["12"]
        )

        self.assertEqual(outcome.status, PlacementStatus.RELAY_ERROR)
        self.assertEqual(outcome.details, "connection refused")

    async def test_relay_is_probed_once_per_placement(self):
        self.build([make_account("1", relay="10.0.0.1:8080")])
        # Any probe after the first one would be refused.
        original_check = self.relays.check

        async def check_then_fail(relay):
            health = await original_check(relay)
            self.relays.unhealthy_hosts.add(relay.host)
            return health

        self.relays.check = check_then_fail

        outcome = await self.placer.place(
            self.handles[0], _request(["12"]), ["12"]
        )

        self.assertTrue(outcome.success)
        self.assertEqual(len(self.relays.checked), 1)
        self.assertEqual(self.client.sign_ins, ["user-1"])
        self.assertEqual(self.accounts.get_by_id("1").status, AccountStatus.ACTIVE)

    async def test_reauth_then_success(self):
        self.build([make_account("1")])
        self.client.place_errors["user-1"] = [RemoteCallError("HTTP 401: x", status=401)]

        outcome = await self.placer.place(
            self.handles[0], _request(["12"]), ["12"]
        )

        self.assertTrue(outcome.success)
        self.assertEqual(len(self.client.sign_ins), 2)
        self.assertEqual(len(self.client.placed), 2)

    async def test_rejected_order_is_failed(self):
        self.build([make_account("1")])
        self.client.failing_users.add("user-1")

        outcome = await self.placer.place(
            self.handles[0], _request(["12"]), ["12"]
        )

        self.assertEqual(outcome.status, PlacementStatus.FAILED)
        self.assertEqual(outcome.error, "Order rejected")


class RetryOrchestratorTests(OrchestratorTestCase):
    async def test_all_succeed_in_one_round(self):
        self.build([make_account(str(i)) for i in range(1, 4)])
        items = ["01", "02", "03", "04", "05", "06", "07"]

        result = await self.orchestrator.run(
            _request(items, workers=3), self.handles, self.handles
        )

        self.assertEqual(result.rounds, 1)
        self.assertEqual(result.remaining, [])
        self.assertEqual(result.success_rate, 1.0)
        self.assertEqual(
            [len(o.assigned_items) for o in result.successes], [3, 3, 1]
        )

    async def test_failed_items_move_to_fresh_accounts(self):
        self.build([make_account(str(i)) for i in range(1, 6)])
        self.client.failing_users.add("user-2")
        items = ["01", "02", "03", "04"]

        result = await self.orchestrator.run(
            _request(items, workers=2), self.handles[:2], self.handles
        )

        self.assertEqual(result.remaining, [])
        self.assertEqual(result.rounds, 2)
        self.assertEqual(result.trace[0].remaining_before, 4)
        self.assertEqual(result.trace[1].remaining_before, 2)
        self.assertCountEqual(result.placed_items, items)

        tried = [o.account_id for o in result.outcomes]
        self.assertEqual(len(tried), len(set(tried)))
        self.assertNotIn("2", [o.account_id for o in result.successes])

    async def test_remaining_never_grows_and_accounts_run_out(self):
        self.build([make_account(str(i)) for i in range(1, 4)])
        self.client.failing_users.update({"user-1", "user-2", "user-3"})
        items = ["01", "02", "03"]

        result = await self.orchestrator.run(
            _request(items, workers=1), self.handles[:1], self.handles
        )

        before = [t.remaining_before for t in result.trace]
        self.assertEqual(before, sorted(before, reverse=True))
        self.assertEqual(result.remaining, items)
        self.assertEqual(len(self.client.placed), 3)
        self.assertEqual(result.successes, [])

    async def test_max_rounds(self):
        self.build([make_account(str(i)) for i in range(1, 6)])
        self.client.failing_users.update({f"user-{i}" for i in range(1, 6)})

        result = await self.orchestrator.run(
            _request(["01"], workers=1), self.handles[:1], self.handles
        )
        self.assertEqual(result.rounds, 5)

        self.build(
            [make_account(str(i)) for i in range(1, 6)],
            config=RetryConfig(batch_pause=0, round_pause=0, max_rounds=2),
        )
        self.client.failing_users.update({f"user-{i}" for i in range(1, 6)})
        result = await self.orchestrator.run(
            _request(["01"], workers=1), self.handles[:1], self.handles
        )
        self.assertEqual(result.rounds, 2)

    async def test_all_policy_is_single_round(self):
        self.build([make_account(str(i)) for i in range(1, 4)])
        self.client.failing_users.add("user-2")
        items = ["01", "02"]

        result = await self.orchestrator.run(
            _request(items, policy=DistributionPolicy.ALL, workers=2),
            self.handles[:2],
            self.handles,
        )

        self.assertEqual(result.rounds, 1)
        self.assertEqual(len(result.outcomes), 2)
        self.assertEqual(result.remaining, [])
        for username, placed_items, _ in self.client.placed:
            self.assertEqual(placed_items, items)


class RunInBatchesTests(unittest.IsolatedAsyncioTestCase):
    async def test_crashed_job_becomes_fallback(self):
        pauses = []

        async def sleep(seconds):
            pauses.append(seconds)

        def ok(name):
            async def job():
                return PlacementOutcome(name, name, ["1"], PlacementStatus.SUCCESS)

            return job

        async def boom():
            raise RuntimeError("worker died")

        def crashed(index, exc):
            name = "abc"[index]
            return PlacementOutcome(
                name,
                name,
                ["1"],
                PlacementStatus.FAILED,
                error="Worker task failed",
                details=str(exc),
            )

        results = await run_in_batches(
            [ok("a"), boom, ok("c")], 2, 0.5, sleep, on_error=crashed
        )

        self.assertEqual([r.account_id for r in results], ["a", "b", "c"])
        self.assertEqual(results[1].error, "Worker task failed")
        self.assertEqual(results[1].details, "worker died")
        self.assertEqual(pauses, [0.5])

    async def test_crash_propagates_without_handler(self):
        async def boom():
            raise RuntimeError("worker died")

        with self.assertRaises(RuntimeError):
            await run_in_batches([boom], 5, 0, no_sleep)


if __name__ == "__main__":
    unittest.main()
