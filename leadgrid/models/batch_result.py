from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any

"""Batch execution result models.

ItemOutcome is the per-item sentinel the batch executor produces instead of
letting an exception escape. BatchResult aggregates one executor run and
JobSummary is what a bulk job (import / enrichment / verification) reports
back to its caller.
"""

__all__ = [
    "ItemOutcome",
    "BatchProgress",
    "GroupMetrics",
    "BatchResult",
    "JobSummary",
    "BatchStatsAccumulator",
]


@dataclass(frozen=True)
class ItemOutcome:
    """Outcome of a single work item."""
    index: int  # 入力シーケンス上の位置
    ok: bool
    value: Any = None
    error: BaseException | None = None

    @staticmethod
    def success(index: int, value: Any = None) -> ItemOutcome:
        return ItemOutcome(index=index, ok=True, value=value)

    @staticmethod
    def failure(index: int, error: BaseException) -> ItemOutcome:
        return ItemOutcome(index=index, ok=False, error=error)


@dataclass(frozen=True)
class BatchProgress:
    done: int
    total: int


@dataclass(frozen=True)
class GroupMetrics:
    """Timing for one completed group."""
    group_index: int
    group_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class BatchResult:
    attempted: int
    succeeded: int
    failed: int
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @staticmethod
    def from_outcomes(outcomes: list[ItemOutcome]) -> BatchResult:
        ordered = sorted(outcomes, key=lambda o: o.index)
        succeeded = sum(1 for o in ordered if o.ok)
        return BatchResult(
            attempted=len(ordered),
            succeeded=succeeded,
            failed=len(ordered) - succeeded,
            outcomes=ordered,
        )


@dataclass(frozen=True)
class JobSummary:
    """Final report of a bulk job."""
    job: str  # import / enrich / verify
    total: int
    succeeded: int
    failed: int
    elapsed_seconds: float = 0.0
    total_groups: int = 0
    avg_group_seconds: float = 0.0
    p95_group_seconds: float = 0.0

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0

    @property
    def message(self) -> str:
        verb, noun = _JOB_WORDING.get(self.job, ("Processed", "rows"))
        if self.failed:
            return f"{verb} {self.succeeded} of {self.total} {noun}, {self.failed} failed"
        return f"{verb} {self.total} {noun}"


_JOB_WORDING: dict[str, tuple[str, str]] = {
    "import": ("Imported", "rows"),
    "enrich": ("Enriched", "rows"),
    "verify": ("Verified", "emails"),
}


class BatchStatsAccumulator:
    """Collects group timings and summarises them as (count, mean, p95)."""

    def __init__(self) -> None:
        self.group_times: list[float] = []

    def add(self, metrics: GroupMetrics) -> None:
        self.group_times.append(metrics.elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        if not self.group_times:
            return (0, 0.0, 0.0)

        total_groups = len(self.group_times)
        avg_group_seconds = statistics.mean(self.group_times)

        if total_groups == 1:
            p95_group_seconds = self.group_times[0]
        else:
            p95_group_seconds = statistics.quantiles(
                self.group_times, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return (total_groups, avg_group_seconds, p95_group_seconds)
