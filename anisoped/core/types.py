"""Type aliases, enumerations and fixed tables for anisoped."""

from __future__ import annotations

from enum import IntEnum, auto
from typing import NewType

import numpy as np

# --- Identifiers (semantic ints) ---
CellID = NewType("CellID", int)
LinkID = NewType("LinkID", int)
NodeID = NewType("NodeID", int)
RouteID = NewType("RouteID", int)
GroupID = NewType("GroupID", int)

# Name of the external cell used as link origin (source) or destination (sink).
NONE_CELL = "none"

# --- Enumerations ---

class FunDiagKind(IntEnum):
    WEIDMANN = auto()
    DRAKE = auto()
    SBFD = auto()
    ZERO = auto()

    @property
    def label(self) -> str:
        return "SbFD" if self is FunDiagKind.SBFD else self.name.title()

    @classmethod
    def parse(cls, name: str | "FunDiagKind") -> "FunDiagKind":
        """Parse ``"Weidmann"``, ``"Drake"``, ``"SbFD"`` or ``"Zero"``."""
        if isinstance(name, FunDiagKind):
            return name
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown fundamental diagram '{name}'. "
                f"Available: {[k.label for k in cls]}"
            ) from None


class CalibrationMode(IntEnum):
    MEAN_TRAVEL_TIME = auto()
    AGGREGATED_TRAVEL_TIMES = auto()
    TRAVEL_TIME_DISTRIBUTION = auto()

    @classmethod
    def parse(cls, name: str | "CalibrationMode") -> "CalibrationMode":
        """Parse a mode name, e.g. ``"meantraveltime"`` or ``"mean_travel_time"``."""
        if isinstance(name, CalibrationMode):
            return name
        key = str(name).strip().lower().replace("_", "").replace("-", "")
        for mode in cls:
            if mode.name.lower().replace("_", "") == key:
                return mode
        raise ValueError(
            f"Unknown calibration mode '{name}'. "
            f"Available: {[m.name.lower() for m in cls]}"
        )


# --- Link orientation ---
# Angle (degrees) of a link going from the side ``orig`` to the side ``dest``
# of its cell.  Pairs missing here are invalid orientations.
LINK_ANGLES: dict[tuple[str, str], float] = {
    ("N", "E"): 315.0,
    ("N", "S"): 270.0,
    ("N", "W"): 225.0,
    ("E", "N"): 135.0,
    ("E", "W"): 180.0,
    ("E", "S"): 225.0,
    ("S", "E"): 45.0,
    ("S", "N"): 90.0,
    ("S", "W"): 135.0,
    ("W", "S"): 315.0,
    ("W", "E"): 0.0,
    ("W", "N"): 45.0,
}

# --- NumPy dtypes ---
FLOAT = np.float64
INT = np.int64
