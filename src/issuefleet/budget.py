"""Run-wide spend tracking and the pre-flight budget gate."""

from __future__ import annotations

import math
from dataclasses import dataclass

from issuefleet import log
from issuefleet.errors import BudgetExceeded


@dataclass
class BudgetState:
    ceiling: float
    spent: float
    remaining: float
    task_count: int
    average_cost: float


@dataclass
class CostStatistics:
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    p90: float = 0.0
    total: float = 0.0


class BudgetTracker:
    """Tracks realized per-task costs against a fixed ceiling.

    Spend only grows; :meth:`can_afford` must be called before work starts
    and :meth:`record_cost` only after it finishes with a real cost.

    *per_task_cap* is the hard spending limit handed to each agent run; when
    set, no estimate exceeds it.
    """

    def __init__(self, ceiling: float, per_task_cap: float | None = None) -> None:
        if ceiling < 0:
            raise ValueError(f"Budget ceiling cannot be negative: {ceiling}")
        self.ceiling = ceiling
        self.per_task_cap = per_task_cap
        self._spent = 0.0
        self._history: list[float] = []

    @property
    def spent(self) -> float:
        return self._spent

    @property
    def remaining(self) -> float:
        return max(0.0, self.ceiling - self._spent)

    @property
    def history(self) -> list[float]:
        return list(self._history)

    def get_state(self) -> BudgetState:
        n = len(self._history)
        return BudgetState(
            ceiling=self.ceiling,
            spent=self._spent,
            remaining=self.remaining,
            task_count=n,
            average_cost=sum(self._history) / n if n else 0.0,
        )

    def can_afford(self, estimated_cost: float, task_id: int | None = None) -> bool:
        """Return ``True`` or raise :class:`BudgetExceeded`.

        Spending exactly up to the ceiling is allowed. A zero estimate is
        always affordable, even once spend has passed the ceiling.
        """
        if estimated_cost <= 0:
            return True
        if self._spent + estimated_cost > self.ceiling:
            exc = BudgetExceeded(self._spent, self.ceiling, estimated_cost, task_id)
            log.error(str(exc))
            raise exc
        return True

    def record_cost(self, actual_cost: float) -> None:
        """Record the real cost of a finished task."""
        self._spent += actual_cost
        self._history.append(actual_cost)
        log.debug(f"Recorded cost ${actual_cost:.4f} (spent ${self._spent:.2f} of ${self.ceiling:.2f})")

    def record_overhead(self, cost: float) -> None:
        """Add spend that is not a task cost, such as planning."""
        self._spent += cost
        log.debug(f"Recorded overhead ${cost:.4f} (spent ${self._spent:.2f} of ${self.ceiling:.2f})")

    def estimate_next_task_cost(self) -> float:
        """Conservative estimate of the next task's cost.

        No history gives the whole ceiling, one or two samples give the
        mean, and three or more give the 90th percentile.
        """
        n = len(self._history)
        if n == 0:
            estimate = self.ceiling
        elif n < 3:
            estimate = sum(self._history) / n
        else:
            estimate = sorted(self._history)[math.ceil(n * 0.9) - 1]
        if self.per_task_cap is not None:
            estimate = min(estimate, self.per_task_cap)
        return estimate

    def can_afford_tasks(self, count: int) -> bool:
        return self._spent + self.estimate_next_task_cost() * count <= self.ceiling

    def affordable_task_count(self, limit: int) -> int:
        """Largest ``n <= limit`` for which :meth:`can_afford_tasks` holds."""
        n = 0
        while n < limit and self.can_afford_tasks(n + 1):
            n += 1
        return n

    def get_statistics(self) -> CostStatistics:
        n = len(self._history)
        if n == 0:
            return CostStatistics()
        ordered = sorted(self._history)
        mid = n // 2
        median = ordered[mid] if n % 2 else (ordered[mid - 1] + ordered[mid]) / 2
        total = sum(ordered)
        return CostStatistics(
            min=ordered[0],
            max=ordered[-1],
            mean=total / n,
            median=median,
            p90=ordered[math.ceil(n * 0.9) - 1],
            total=total,
        )

    def reset(self) -> None:
        self._spent = 0.0
        self._history.clear()
