from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, TypeVar

from domain.models import (
    AccountHandle,
    DistributionPolicy,
    PlacementOutcome,
    PlacementStatus,
    WagerRequest,
)

from .distribution import distribute
from .placement import AccountPlacer


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

T = TypeVar("T")


@dataclass
class RetryConfig:
    batch_size: int = 5
    batch_pause: float = 1.0
    round_pause: float = 2.0
    max_rounds: int = 5


@dataclass
class RoundTrace:
    round: int
    workers: int
    remaining_before: int
    placed: int
    succeeded: int
    failed: int


@dataclass
class RetryResult:
    """
    Outcome of one submission.

    `successes` holds only successful per-account outcomes; `outcomes`
    holds every attempt in the order it resolved.
    """

    original_items: List[str]
    successes: List[PlacementOutcome] = field(default_factory=list)
    outcomes: List[PlacementOutcome] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)
    rounds: int = 0
    trace: List[RoundTrace] = field(default_factory=list)

    @property
    def placed_items(self) -> List[str]:
        seen: Dict[str, None] = {}
        for outcome in self.successes:
            for item in outcome.assigned_items:
                seen.setdefault(item, None)
        return list(seen)

    @property
    def success_rate(self) -> float:
        if not self.original_items:
            return 0.0
        return len(self.placed_items) / len(set(self.original_items))


async def run_in_batches(
    jobs: Sequence[Callable[[], Awaitable[T]]],
    batch_size: int,
    pause: float,
    sleep: Sleep = asyncio.sleep,
    on_error: Optional[Callable[[int, Exception], T]] = None,
) -> List[T]:
    """
    Run `jobs` with at most `batch_size` in flight, one batch after the
    other with `pause` seconds in between.

    A job that raises is replaced by `on_error(index, exc)`; without
    `on_error` the exception propagates.
    """

    results: List[T] = []
    for start in range(0, len(jobs), batch_size):
        batch = jobs[start : start + batch_size]
        settled = await asyncio.gather(*(job() for job in batch), return_exceptions=True)

        for offset, value in enumerate(settled):
            if isinstance(value, BaseException):
                if on_error is None or not isinstance(value, Exception):
                    raise value
                logger.error("Batch job crashed: %r", value)
                results.append(on_error(start + offset, value))
            else:
                results.append(value)

        if start + batch_size < len(jobs):
            await sleep(pause)
    return results


class RetryOrchestrator:
    """
    Drives one submission across rounds.

    `equal`/`random` re-distribute the still-unplaced items over fresh
    accounts each round; every account is tried at most once per
    submission. `all` is a single round with the full list per account.
    """

    def __init__(
        self,
        placer: AccountPlacer,
        config: Optional[RetryConfig] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._placer = placer
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def run(
        self,
        request: WagerRequest,
        initial: Sequence[AccountHandle],
        pool: Sequence[AccountHandle],
    ) -> RetryResult:
        items = list(request.items)
        result = RetryResult(original_items=items)

        if request.policy is DistributionPolicy.ALL:
            outcomes = await self._run_round(request, items, initial)
            result.rounds = 1
            result.outcomes = outcomes
            result.successes = [o for o in outcomes if o.success]
            result.remaining = [] if result.successes else items
            placed = len(items) if result.successes else 0
            result.trace.append(self._trace(1, outcomes, len(items), placed))
            return result

        remaining = items
        available: List[AccountHandle] = list(initial)
        used: Set[str] = set()

        logger.info(
            "Starting %s placement: %d items, %d accounts",
            request.policy.value,
            len(remaining),
            len(available),
        )

        while remaining and result.rounds < self._config.max_rounds:
            if not available:
                available = [h for h in pool if h.id not in used]
                if not available:
                    logger.info("No unused accounts left, stopping")
                    break
                logger.info("Refilled %d accounts from the pool", len(available))

            result.rounds += 1
            outcomes = await self._run_round(request, remaining, available)
            if not outcomes:
                logger.info("No account received items, stopping")
                break

            placed: Set[str] = set()
            for outcome in outcomes:
                used.add(outcome.account_id)
                if outcome.success:
                    placed.update(outcome.assigned_items)

            result.outcomes.extend(outcomes)
            result.successes.extend(o for o in outcomes if o.success)
            result.trace.append(
                self._trace(result.rounds, outcomes, len(remaining), len(placed))
            )

            remaining = [item for item in remaining if item not in placed]
            available = [h for h in available if h.id not in used]

            logger.info(
                "Round %d: placed %d items, %d remaining, %d accounts available",
                result.rounds,
                len(placed),
                len(remaining),
                len(available),
            )

            if remaining and result.rounds < self._config.max_rounds:
                await self._sleep(self._config.round_pause)

        result.remaining = remaining
        return result

    async def _run_round(
        self,
        request: WagerRequest,
        items: List[str],
        workers: Sequence[AccountHandle],
    ) -> List[PlacementOutcome]:
        assignment = distribute(
            items, [w.id for w in workers], request.policy, rng=self._rng
        )
        assigned = [w for w in workers if assignment.get(w.id)]

        jobs = []
        fallbacks = []
        for handle in assigned:
            handle_items = assignment[handle.id]
            jobs.append(self._job(handle, request, handle_items))
            fallbacks.append(
                PlacementOutcome(
                    account_id=handle.id,
                    username=handle.username,
                    assigned_items=handle_items,
                    status=PlacementStatus.FAILED,
                )
            )

        def crashed(index: int, exc: Exception) -> PlacementOutcome:
            fallback = fallbacks[index]
            fallback.error = "Worker task failed"
            fallback.details = str(exc)
            return fallback

        return await run_in_batches(
            jobs,
            self._config.batch_size,
            self._config.batch_pause,
            self._sleep,
            on_error=crashed,
        )

    def _job(
        self,
        handle: AccountHandle,
        request: WagerRequest,
        items: List[str],
    ) -> Callable[[], Awaitable[PlacementOutcome]]:
        async def job() -> PlacementOutcome:
            return await self._placer.place(handle, request, items)

        return job

    @staticmethod
    def _trace(
        number: int,
        outcomes: List[PlacementOutcome],
        remaining_before: int,
        placed: int,
    ) -> RoundTrace:
        succeeded = sum(1 for o in outcomes if o.success)
        return RoundTrace(
            round=number,
            workers=len(outcomes),
            remaining_before=remaining_before,
            placed=placed,
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
        )
