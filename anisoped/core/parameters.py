"""Model parameters and numerical settings.

``Parameters`` holds the quantities a calibration estimates (free-flow speed,
fundamental-diagram shape parameters, route-choice weight) together with the
CFL factor.  ``NumericConfig`` holds the fixed tolerances and tables the
simulation needs.  Both are immutable and passed explicitly.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from typing import Sequence

import numpy as np

from .errors import ConfigurationError
from .types import FLOAT, LINK_ANGLES, FunDiagKind

# Shape parameter names (with units) per fundamental diagram.
SHAPE_PARAM_NAMES: dict[FunDiagKind, tuple[str, ...]] = {
    FunDiagKind.WEIDMANN: ("gamma", "kj"),
    FunDiagKind.DRAKE: ("theta",),
    FunDiagKind.SBFD: ("theta", "beta"),
    FunDiagKind.ZERO: (),
}

SHAPE_PARAM_UNITS: dict[str, str] = {
    "gamma": "1/m^2",
    "kj": "1/m^2",
    "theta": "m^4",
    "beta": "m^2",
}


@dataclass(frozen=True)
class NumericConfig:
    """Fixed numerical settings of a simulation run."""
    abs_tol: float = 1e-6              # accumulation below this counts as empty
    solver_tol: float = 1e-6           # root-finder absolute tolerance
    solver_max_eval: int = 1000        # root-finder evaluation cap
    max_travel_time: int = 1000        # horizon after last departure (intervals)
    gate_correction: int = 2           # intervals spent in source/sink gate cells
    split_cutoff: float = 1e-14        # split fractions below this are zeroed
    weidmann_bracket: tuple[float, float] = (1.0, 100.0)
    unreachable_potential: float = sys.float_info.max
    excluded_potential: float = 1e10
    link_angles: dict[tuple[str, str], float] = field(
        default_factory=lambda: dict(LINK_ANGLES)
    )


DEFAULT_NUMERICS = NumericConfig()


@dataclass(frozen=True)
class Parameters:
    """Simulation parameters.

    Parameters
    ----------
    fun_diag : FunDiagKind
        Fundamental diagram used by every cell.
    vf : float
        Free-flow walking speed (m/s).
    shape : tuple[float, ...]
        Shape parameters of the fundamental diagram, ordered as in
        ``SHAPE_PARAM_NAMES``.
    mu : float
        Logit route-choice weight.
    cfl : float
        CFL factor in (0, 1]; ``delta_t = cfl * min_link_length / vf``.
    """
    fun_diag: FunDiagKind
    vf: float
    shape: tuple[float, ...] = ()
    mu: float = 1.0
    cfl: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "fun_diag", FunDiagKind.parse(self.fun_diag))
        object.__setattr__(self, "shape", tuple(float(s) for s in self.shape))
        expected = SHAPE_PARAM_NAMES[self.fun_diag]
        if len(self.shape) != len(expected):
            raise ConfigurationError(
                f"{self.fun_diag.label} expects {len(expected)} shape "
                f"parameter(s) {list(expected)}, got {len(self.shape)}"
            )
        if not 0.0 < self.cfl <= 1.0:
            raise ConfigurationError(
                f"CFL factor must be in (0, 1], got {self.cfl}"
            )
        if not self.vf > 0.0:
            raise ConfigurationError(
                f"Free-flow speed must be positive, got {self.vf}"
            )

    # -- calibration vector ----------------------------------------------

    @property
    def names(self) -> list[str]:
        """Names of the entries of ``to_vector()``."""
        return ["vf", *SHAPE_PARAM_NAMES[self.fun_diag], "mu"]

    def to_vector(self) -> np.ndarray:
        """Flat vector ``[vf, *shape, mu]``."""
        return np.array([self.vf, *self.shape, self.mu], dtype=FLOAT)

    def with_vector(self, x: Sequence[float]) -> Parameters:
        """Return a copy with ``[vf, *shape, mu]`` taken from ``x``."""
        x = [float(v) for v in x]
        if len(x) != len(self.names):
            raise ConfigurationError(
                f"Parameter vector must have {len(self.names)} entries "
                f"{self.names}, got {len(x)}"
            )
        return replace(self, vf=x[0], shape=tuple(x[1:-1]), mu=x[-1])

    @property
    def shape_dict(self) -> dict[str, float]:
        return dict(zip(SHAPE_PARAM_NAMES[self.fun_diag], self.shape))

    def to_dict(self) -> dict:
        return {
            "fun_diag": self.fun_diag.label,
            "vf": self.vf,
            "shape": self.shape_dict,
            "mu": self.mu,
            "cfl": self.cfl,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Parameters:
        """Build from ``{"fun_diag", "vf", "shape", "mu", "cfl"}``.

        ``shape`` may be a list in canonical order or a name → value mapping.
        """
        kind = FunDiagKind.parse(d["fun_diag"])
        shape = d.get("shape", ())
        if isinstance(shape, dict):
            names = SHAPE_PARAM_NAMES[kind]
            missing = [n for n in names if n not in shape]
            if missing:
                raise ConfigurationError(
                    f"Missing shape parameter(s) {missing} for {kind.label}"
                )
            shape = tuple(shape[n] for n in names)
        return cls(
            fun_diag=kind,
            vf=float(d["vf"]),
            shape=tuple(shape),
            mu=float(d.get("mu", 1.0)),
            cfl=float(d.get("cfl", 1.0)),
        )


@dataclass(frozen=True)
class ParameterRange:
    """Box bounds on the calibration vector ``[vf, *shape, mu]``."""
    lower: tuple[float, ...]
    upper: tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "lower", tuple(float(v) for v in self.lower))
        object.__setattr__(self, "upper", tuple(float(v) for v in self.upper))
        if len(self.lower) != len(self.upper):
            raise ConfigurationError(
                "Parameter range bounds must have the same length"
            )
        for lo, hi in zip(self.lower, self.upper):
            if lo > hi:
                raise ConfigurationError(
                    f"Parameter range lower bound {lo} exceeds upper bound {hi}"
                )

    @property
    def bounds(self) -> list[tuple[float, float]]:
        return list(zip(self.lower, self.upper))

    def contains(self, x: Sequence[float]) -> bool:
        x = np.asarray(x, dtype=FLOAT)
        return bool(
            np.all(x >= np.asarray(self.lower)) and np.all(x <= np.asarray(self.upper))
        )

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        """Draw one point uniformly from the box."""
        return rng.uniform(np.asarray(self.lower), np.asarray(self.upper))

    @classmethod
    def from_dict(cls, d: dict, params: Parameters) -> ParameterRange:
        """Build from a name → ``[min, max]`` mapping covering ``params.names``."""
        missing = [n for n in params.names if n not in d]
        if missing:
            raise ConfigurationError(f"Missing parameter range(s) for {missing}")
        lower = tuple(d[n][0] for n in params.names)
        upper = tuple(d[n][1] for n in params.names)
        return cls(lower=lower, upper=upper)

    def to_dict(self, params: Parameters) -> dict:
        return {
            n: [lo, hi] for n, lo, hi in zip(params.names, self.lower, self.upper)
        }
