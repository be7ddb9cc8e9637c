"""
core/saga.py -- Ordered multi-step writes with compensating actions.

A Saga runs a list of steps in order. Each step may register a compensation
callback. If a step raises, the compensations of every completed step run in
reverse order:

  - all compensations succeed -> the original failure is re-raised as
    AppError(failure_message), leaving no partial state behind.
  - any compensation fails    -> PartialFailureError naming the failed step
    and every compensation that did not run cleanly.

Usage:
    saga = Saga("vendor_approval", failure_message="Vendor approval failed")
    saga.step("assign_role", lambda: provider.add_role(uid, "Vendor"),
              compensate=lambda _: provider.remove_role(uid, "Vendor"))
    results = saga.run()

A step's return value is passed to its compensation, so a step that creates a
record can hand the created id to the callback that deletes it.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/,
vendors/, or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from core.errors import AppError, PartialFailureError

logger = logging.getLogger("storefront.saga")


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensate: Optional[Callable[[Any], None]] = None


class Saga:
    def __init__(self, name: str, failure_message: str = "Operation failed") -> None:
        self.name = name
        self.failure_message = failure_message
        self._steps: list[SagaStep] = []

    def step(
        self,
        name: str,
        action: Callable[[], Any],
        compensate: Optional[Callable[[Any], None]] = None,
    ) -> "Saga":
        self._steps.append(SagaStep(name, action, compensate))
        return self

    def run(self) -> dict[str, Any]:
        """Execute every step; return {step_name: result}.

        AppError raised by a step keeps its status and message after rollback
        so callers still see e.g. a 400 from the identity provider.
        """
        completed: list[tuple[SagaStep, Any]] = []
        results: dict[str, Any] = {}
        for step in self._steps:
            try:
                result = step.action()
            except Exception as exc:
                logger.error("Saga %s: step %s failed: %s", self.name, step.name, exc)
                failed_compensations = self._rollback(completed)
                if failed_compensations:
                    raise PartialFailureError(
                        f"{self.failure_message}; system left partially updated",
                        details={
                            "saga": self.name,
                            "failedStep": step.name,
                            "failedCompensations": failed_compensations,
                        },
                    ) from exc
                if isinstance(exc, AppError):
                    raise
                raise AppError(self.failure_message, details={"failedStep": step.name}) from exc
            completed.append((step, result))
            results[step.name] = result
        return results

    def _rollback(self, completed: list[tuple[SagaStep, Any]]) -> list[str]:
        failed: list[str] = []
        for step, result in reversed(completed):
            if step.compensate is None:
                continue
            try:
                step.compensate(result)
                logger.info("Saga %s: compensated %s", self.name, step.name)
            except Exception:
                logger.exception("Saga %s: compensation for %s failed", self.name, step.name)
                failed.append(step.name)
        return failed
