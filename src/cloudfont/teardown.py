"""
Always-continue teardown.

Cleanup is total-effort: every step runs even when an earlier one
fails, and nothing escapes. Failures are collected so callers can log
or report them.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger("cloudfont.teardown")


class TeardownFailure(BaseModel):
    """One step that raised during teardown."""

    step: str
    error: str


class TeardownReport(BaseModel):
    """What happened during a teardown pass."""

    completed: list[str] = Field(default_factory=list)
    failures: list[TeardownFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether every step finished without raising."""
        return not self.failures

    def record_failure(self, step: str, exc: BaseException) -> None:
        self.failures.append(TeardownFailure(step=step, error=str(exc) or type(exc).__name__))

    def merge(self, other: "TeardownReport") -> None:
        self.completed.extend(other.completed)
        self.failures.extend(other.failures)


def run_all(
    steps: Iterable[tuple[str, Callable[[], object]]],
    report: Optional[TeardownReport] = None,
    log: Optional[logging.Logger] = None,
) -> TeardownReport:
    """Run every step, logging and collecting failures.

    Args:
        steps: ``(name, callable)`` pairs, run in order.
        report: Existing report to append to.
        log: Logger for failures. Defaults to this module's logger.

    Returns:
        TeardownReport listing completed and failed steps.
    """
    report = report if report is not None else TeardownReport()
    log = log or logger

    for name, step in steps:
        try:
            step()
        except Exception as exc:
            log.error("Teardown step %s failed: %s", name, exc)
            report.record_failure(name, exc)
        else:
            report.completed.append(name)

    return report
