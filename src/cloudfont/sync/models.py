"""
Sync data models -- progress and results of a synchronization run.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SyncProgress(BaseModel):
    """Progress of the current (or last) synchronization run."""

    total: int = 0
    completed: int = 0
    current: str = ""
    percentage: int = 0

    def advanced(self) -> "SyncProgress":
        """Copy with one more item completed and percentage recomputed."""
        completed = min(self.completed + 1, self.total)
        return self.model_copy(update={
            "completed": completed,
            "percentage": percentage_of(completed, self.total),
        })


class SyncFailure(BaseModel):
    """One font that could not be synchronized."""

    item_label: str
    error: str


class SyncResult(BaseModel):
    """Aggregate outcome of a synchronization run."""

    success_count: int = 0
    failed_count: int = 0
    errors: list[SyncFailure] = Field(default_factory=list)
    cancelled: bool = False

    def record_failure(self, item_label: str, exc: BaseException) -> None:
        self.failed_count += 1
        self.errors.append(SyncFailure(item_label=item_label, error=str(exc) or type(exc).__name__))


def percentage_of(completed: int, total: int) -> int:
    """``completed / total * 100`` rounded half up, 0 for an empty run."""
    if total <= 0:
        return 0
    return int(completed * 100 / total + 0.5)
