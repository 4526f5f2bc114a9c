from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.batch_result import BatchProgress

"""Progress display for bulk jobs with tqdm (TTY only).

One bar per job, driven by the batch executor's BatchProgress(done, total)
callbacks. The job size is often unknown when the bar is opened (rows are
selected or read later), so the bar resizes itself on the first report.
Without a TTY (CI, pipes, captured output) no bar is created.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """tqdm bar for one bulk job; pass `tracker.update_to` as `on_progress`."""

    def __init__(self, total: int = 0, *, description: str = "Processing", unit: str = "row") -> None:
        self.total = total
        self.description = description
        self.done = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit=unit,
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )

    def _resize(self, total: int) -> None:
        self.total = total
        if self.pbar is not None:
            self.pbar.reset(total=total)
            self.pbar.update(self.done)

    def update_to(self, progress: BatchProgress) -> None:
        """Advance to `progress.done`; never moves backwards."""
        if progress.total != self.total:
            self._resize(progress.total)
        delta = progress.done - self.done
        if delta <= 0:
            return
        self.done = progress.done
        if self.pbar is not None:
            self.pbar.update(delta)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
