from __future__ import annotations

import math
import random
from typing import Dict, List, Optional, Sequence

from domain.models import DistributionPolicy


def split_items(raw: str) -> List[str]:
    """Split a free-form item list ("12, 34 56") into items."""

    return [part for part in raw.replace(",", " ").split() if part.strip()]


def distribute(
    items: Sequence[str],
    worker_ids: Sequence[str],
    policy: DistributionPolicy,
    rng: Optional[random.Random] = None,
) -> Dict[str, List[str]]:
    """
    Assign items to workers.

    - `all`: every worker receives the full list.
    - `equal`: contiguous ceil-sized chunks in original order.
    - `random`: as `equal`, after a uniform shuffle.

    Under `equal`/`random` only the first `min(workers, items)` workers
    are considered and a worker whose slice is empty is left out of the
    result. Absence from the map means "not used", not an error.
    """

    if policy is DistributionPolicy.ALL:
        return {worker_id: list(items) for worker_id in worker_ids}

    ordered = list(items)
    if policy is DistributionPolicy.RANDOM:
        _shuffle(ordered, rng or random.Random())

    return _chunk(ordered, worker_ids)


def _shuffle(values: List[str], rng: random.Random) -> None:
    # Fisher-Yates
    for i in range(len(values) - 1, 0, -1):
        j = rng.randint(0, i)
        values[i], values[j] = values[j], values[i]


def _chunk(items: List[str], worker_ids: Sequence[str]) -> Dict[str, List[str]]:
    if not items or not worker_ids:
        return {}

    used = list(worker_ids[: min(len(worker_ids), len(items))])
    per_worker = math.ceil(len(items) / len(used))

    assignment: Dict[str, List[str]] = {}
    for index, worker_id in enumerate(used):
        chunk = items[index * per_worker : (index + 1) * per_worker]
        if chunk:
            assignment[worker_id] = chunk
    return assignment
