from __future__ import annotations

from ..models.batch_result import BatchResult, BatchStatsAccumulator, JobSummary

"""Job summary building and SUMMARY line rendering.

Format:
SUMMARY job={job} total={total} succeeded={succeeded} failed={failed} elapsed_sec={elapsed}
"""

__all__ = [
    "build_job_summary",
    "render_summary_line",
    "format_seconds",
]


def build_job_summary(
    job: str,
    result: BatchResult,
    elapsed_seconds: float,
    stats: BatchStatsAccumulator | None = None,
) -> JobSummary:
    total_groups, avg_group, p95_group = stats.get_stats() if stats is not None else (0, 0.0, 0.0)
    return JobSummary(
        job=job,
        total=result.attempted,
        succeeded=result.succeeded,
        failed=result.failed,
        elapsed_seconds=elapsed_seconds,
        total_groups=total_groups,
        avg_group_seconds=avg_group,
        p95_group_seconds=p95_group,
    )


def format_seconds(value: float) -> str:
    """Plain decimal without exponent; integral values print without a fraction.

    >>> format_seconds(0)
    '0'
    >>> format_seconds(2.0)
    '2'
    >>> format_seconds(0.000123)
    '0.000123'
    >>> format_seconds(1.23456)
    '1.235'
    """
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # 指数表記を避ける
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(summary: JobSummary) -> str:
    """Render the SUMMARY line for a finished job.

    >>> render_summary_line(JobSummary(job="import", total=12, succeeded=10, failed=2, elapsed_seconds=1.5))
    'SUMMARY job=import total=12 succeeded=10 failed=2 elapsed_sec=1.5'
    """
    return (
        f"SUMMARY job={summary.job} "
        f"total={summary.total} "
        f"succeeded={summary.succeeded} "
        f"failed={summary.failed} "
        f"elapsed_sec={format_seconds(summary.elapsed_seconds)}"
    )
