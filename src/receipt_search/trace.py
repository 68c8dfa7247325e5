"""
Append-only trace of the decisions made while answering one search request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TraceStep:
    """One recorded decision: which stage ran, what it concluded."""

    stage: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "message": self.message, "data": dict(self.data)}


@dataclass(frozen=True)
class SearchTrace:
    """
    Immutable debug trace threaded through matcher and router calls.

    ``record`` never mutates; it returns a new trace with the step appended,
    so a trace handed to a callee cannot be altered behind the caller's back.
    """

    steps: tuple[TraceStep, ...] = ()

    def record(self, stage: str, message: str, **data: Any) -> SearchTrace:
        return SearchTrace(steps=self.steps + (TraceStep(stage, message, data),))

    def stages(self) -> list[str]:
        return [step.stage for step in self.steps]

    def to_list(self) -> list[dict[str, Any]]:
        return [step.to_dict() for step in self.steps]

    def __len__(self) -> int:
        return len(self.steps)
