"""
Ordered steps with compensations.

A `Saga` runs its steps strictly in order, passing a shared context dict.
When a step raises, the compensations of the steps that already completed run
in reverse order and the original error is re-raised wrapped in `SagaFailed`.
A failing compensation is logged and does not stop the remaining ones.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger("eventdesk.registration")

Context = Dict[str, Any]


@dataclass(frozen=True)
class Step:
    name: str
    action: Callable[[Context], Any]
    compensation: Optional[Callable[[Context], None]] = None


class SagaFailed(Exception):
    def __init__(self, step: str, cause: BaseException, compensated: Sequence[str], compensation_errors: Sequence[str]):
        super().__init__(f"step '{step}' failed: {cause.__class__.__name__}")
        self.step = step
        self.cause = cause
        self.compensated = list(compensated)
        self.compensation_errors = list(compensation_errors)


@dataclass
class Saga:
    steps: List[Step] = field(default_factory=list)

    def add(self, name: str, action: Callable[[Context], Any], compensation: Optional[Callable[[Context], None]] = None) -> "Saga":
        self.steps.append(Step(name, action, compensation))
        return self

    def run(self, context: Optional[Context] = None) -> Context:
        """Run all steps; the return value of each action is stored under its name."""
        ctx: Context = context if context is not None else {}
        done: List[Step] = []
        for step in self.steps:
            try:
                ctx[step.name] = step.action(ctx)
            except Exception as exc:
                compensated, errors = self._compensate(done, ctx)
                raise SagaFailed(step.name, exc, compensated, errors) from exc
            done.append(step)
        return ctx

    @staticmethod
    def _compensate(done: List[Step], ctx: Context) -> tuple[List[str], List[str]]:
        compensated: List[str] = []
        errors: List[str] = []
        for step in reversed(done):
            if step.compensation is None:
                continue
            try:
                step.compensation(ctx)
                compensated.append(step.name)
            except Exception as exc:
                logger.error("Compensation for step %s failed: %s", step.name, exc.__class__.__name__)
                errors.append(step.name)
        return compensated, errors


__all__ = ["Step", "Saga", "SagaFailed"]
