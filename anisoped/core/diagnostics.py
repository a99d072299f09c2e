"""Recoverable anomalies reported by a simulation run."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import IntEnum, auto


class DiagnosticKind(IntEnum):
    NEGATIVE_TRAVEL_TIME = auto()    # arrival earlier than the gate correction allows
    ZERO_ARRIVAL_FRACTION = auto()   # arriving fragment without people
    TRAPPED_FRAGMENT = auto()        # people on a link with no way on for their route
    UNDELIVERED_DEMAND = auto()      # people still inside when the time limit is reached


@dataclass(frozen=True)
class Diagnostic:
    """One anomaly, tied to the time step and group where it occurred."""
    kind: DiagnosticKind
    step: int
    group_id: int
    link_id: int | None = None
    value: float = 0.0
    message: str = ""

    def __str__(self) -> str:
        where = f", link {self.link_id}" if self.link_id is not None else ""
        return (
            f"[{self.kind.name}] step {self.step}, group {self.group_id}"
            f"{where}: {self.message}"
        )


def summarize(diagnostics: list[Diagnostic]) -> dict[str, int]:
    """Count diagnostics per kind name."""
    return dict(Counter(d.kind.name for d in diagnostics))
