"""Ordered steps with compensating actions.

A multi-step lifecycle operation is written as a list of ``Step`` objects.
``run_steps`` executes them in order; if step N raises, the compensations of
steps 1..N-1 run in reverse order and the original exception is re-raised.
Compensation is best-effort: a failing compensation is logged and attached to
the original exception as a note, never raised in its place.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger


@dataclass(frozen=True)
class Step:
    name: str
    action: Callable[[], Any]
    compensate: Callable[[], Any] | None = None


def run_steps(steps: Sequence[Step]) -> list[Any]:
    """Run *steps* in order and return their results.

    Re-raises the first failure after compensating the completed steps.
    """
    completed: list[Step] = []
    results: list[Any] = []
    for step in steps:
        try:
            results.append(step.action())
        except Exception as exc:
            logger.debug("Step '{}' failed, compensating {} completed step(s)", step.name, len(completed))
            _compensate(completed, exc)
            raise
        completed.append(step)
    return results


def _compensate(completed: list[Step], original: Exception) -> None:
    for step in reversed(completed):
        if step.compensate is None:
            continue
        try:
            step.compensate()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Rollback of '{}' failed: {}", step.name, exc)
            original.add_note(f"rollback of '{step.name}' also failed: {exc}")
        else:
            logger.info("Rolled back '{}'", step.name)
