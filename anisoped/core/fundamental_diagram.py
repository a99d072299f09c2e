"""Fundamental diagrams: accumulation → non-dimensional walking speed.

A ``FundamentalDiagram`` is attached to one cell.  It knows the angles of
the streams (link orientations) present in the cell and, given the
accumulation on each stream, returns per stream

* the velocity, normalised by the free-flow speed,
* the critical accumulation (the flow-maximising accumulation of that
  stream with the other streams held fixed),
* the critical velocity (velocity at the critical accumulation).

Four variants exist (``FunDiagKind``) and are created through
``make_fundamental_diagram``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Callable, Sequence

import numpy as np
from scipy import optimize

from .errors import FundamentalDiagramError
from .parameters import DEFAULT_NUMERICS, NumericConfig, SHAPE_PARAM_NAMES
from .types import FLOAT, FunDiagKind


def bisect_root(
    f: Callable[[float], float],
    a: float,
    b: float,
    tol: float = 1e-6,
    max_eval: int = 1000,
) -> float:
    """Bounded bisection for a root of ``f`` on ``[a, b]``.

    Never raises on numerical grounds:

    * if the evaluation cap is reached, the current midpoint estimate is
      returned;
    * if ``f(a)`` and ``f(b)`` have the same sign, the bracket end with the
      smaller ``|f|`` is returned.
    """
    fa, fb = f(a), f(b)
    if fa == 0.0:
        return float(a)
    if fb == 0.0:
        return float(b)
    if np.sign(fa) == np.sign(fb) or not (np.isfinite(fa) and np.isfinite(fb)):
        return float(a) if abs(fa) <= abs(fb) else float(b)
    root, _ = optimize.bisect(
        f, a, b, xtol=tol, maxiter=max_eval, full_output=True, disp=False,
    )
    return float(root)


class FundamentalDiagram(ABC):
    """Per-cell fundamental diagram.

    Parameters
    ----------
    angles : sequence of float
        Angle in degrees of each stream present in the cell.
    area : float
        Cell area in m^2.  ``inf`` for source and sink gates.
    shape : sequence of float
        Shape parameters, see ``SHAPE_PARAM_NAMES``.
    numerics : NumericConfig, optional
    """

    kind: FunDiagKind

    def __init__(
        self,
        angles: Sequence[float],
        area: float,
        shape: Sequence[float] = (),
        numerics: NumericConfig | None = None,
    ) -> None:
        self.angles = np.asarray(angles, dtype=FLOAT)
        self.area = float(area)
        self.shape = tuple(float(s) for s in shape)
        self.numerics = numerics or DEFAULT_NUMERICS
        expected = SHAPE_PARAM_NAMES[self.kind]
        if len(self.shape) != len(expected):
            raise FundamentalDiagramError(
                f"{self.kind.label} expects shape parameters {list(expected)}, "
                f"got {list(self.shape)}"
            )

    @property
    def n_streams(self) -> int:
        return len(self.angles)

    @property
    def is_gate(self) -> bool:
        """Infinite-area cells (source/sink gates) never congest."""
        return math.isinf(self.area)

    # -- variant interface ---------------------------------------------------

    @abstractmethod
    def velocity(self, acc: np.ndarray) -> np.ndarray:
        """Velocity of every stream for accumulations ``acc`` (finite area)."""

    @abstractmethod
    def critical_accumulation(self, acc: np.ndarray, i: int) -> float:
        """Critical accumulation of stream ``i`` with the others fixed."""

    @abstractmethod
    def critical_values(self) -> tuple[float, float]:
        """Critical density (1/m^2) and velocity of an isotropic single stream."""

    # -- evaluation ----------------------------------------------------------

    def evaluate(
        self, acc: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(velocity, critical_acc, critical_vel)`` per stream.

        Raises
        ------
        FundamentalDiagramError
            If a critical accumulation is infinite or a critical velocity is
            NaN on a finite cell.
        """
        acc = np.asarray(acc, dtype=FLOAT)
        n = self.n_streams
        if self.is_gate:
            return (
                np.ones(n, dtype=FLOAT),
                np.full(n, np.inf, dtype=FLOAT),
                np.ones(n, dtype=FLOAT),
            )

        vel = self.velocity(acc)
        crit_acc = np.empty(n, dtype=FLOAT)
        crit_vel = np.empty(n, dtype=FLOAT)
        for i in range(n):
            c = self.critical_accumulation(acc, i)
            at_crit = acc.copy()
            at_crit[i] = c
            with np.errstate(invalid="ignore", over="ignore"):
                cv = float(self.velocity(at_crit)[i])
            if math.isinf(c) or math.isnan(c) or math.isnan(cv):
                raise FundamentalDiagramError(
                    f"{self.kind.label} diagram with shape parameters "
                    f"{list(self.shape)} gives critical accumulation {c} and "
                    f"critical velocity {cv} (area {self.area} m^2)"
                )
            crit_acc[i] = c
            crit_vel[i] = cv
        return vel, crit_acc, crit_vel

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(streams={self.n_streams}, "
            f"area={self.area}, shape={list(self.shape)})"
        )


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

class WeidmannDiagram(FundamentalDiagram):
    """Weidmann (1993): ``v = 1 - exp(-gamma (A/N - 1/kj))``, isotropic.

    Zero above the jam density ``kj`` and equal to the free-flow limit 1 in
    an empty cell.
    """

    kind = FunDiagKind.WEIDMANN

    @property
    def gamma(self) -> float:
        return self.shape[0]

    @property
    def kj(self) -> float:
        return self.shape[1]

    def _speed(self, total: float) -> float:
        if total == 0.0:
            return 1.0
        if total / self.area > self.kj:
            return 0.0
        return 1.0 - math.exp(-self.gamma * (self.area / total - 1.0 / self.kj))

    def velocity(self, acc: np.ndarray) -> np.ndarray:
        return np.full(len(acc), self._speed(float(acc.sum())), dtype=FLOAT)

    def critical_accumulation(self, acc: np.ndarray, i: int) -> float:
        others = float(acc.sum() - acc[i])
        gamma, kj, area = self.gamma, self.kj, self.area

        # d(x * v(others + x)) / dx = 0
        def flow_derivative(x: float) -> float:
            total = others + x
            if total == 0.0:
                return math.inf
            return 1.0 - (1.0 + x * gamma * area / total ** 2) * math.exp(
                -gamma * (area / total - 1.0 / kj)
            )

        lo, hi = self.numerics.weidmann_bracket
        crit = bisect_root(
            flow_derivative, lo, hi,
            tol=self.numerics.solver_tol, max_eval=self.numerics.solver_max_eval,
        )
        return min(crit, kj * area)

    def _density_speed(self, k: float) -> float:
        if k < self.kj:
            return 1.0 - math.exp(-self.gamma * (1.0 / k - 1.0 / self.kj))
        return 0.0

    def critical_values(self) -> tuple[float, float]:
        xj = self.gamma / self.kj
        x_crit = bisect_root(
            lambda x: 1.0 - (1.0 + x) * math.exp(xj - x), 0.0, self.kj,
            tol=self.numerics.solver_tol, max_eval=self.numerics.solver_max_eval,
        )
        k_crit = self.gamma / x_crit
        return k_crit, self._density_speed(k_crit)


class DrakeDiagram(FundamentalDiagram):
    """Drake et al. (1967): ``v = exp(-theta (N/A)^2)``, isotropic."""

    kind = FunDiagKind.DRAKE

    @property
    def theta(self) -> float:
        return self.shape[0]

    def _congestion(self, total: float) -> float:
        return math.exp(-self.theta * (total / self.area) ** 2)

    def velocity(self, acc: np.ndarray) -> np.ndarray:
        return np.full(len(acc), self._congestion(float(acc.sum())), dtype=FLOAT)

    def critical_accumulation(self, acc: np.ndarray, i: int) -> float:
        others = float(acc.sum() - acc[i])
        with np.errstate(divide="ignore"):
            half_area_sq = np.divide(self.area ** 2, 2.0 * self.theta)
        return float(-others / 2.0 + np.sqrt((others / 2.0) ** 2 + half_area_sq))

    def critical_values(self) -> tuple[float, float]:
        with np.errstate(divide="ignore"):
            k_crit = float(np.sqrt(np.divide(1.0, 2.0 * self.theta)))
        return k_crit, math.exp(-0.5)


class SbFDDiagram(DrakeDiagram):
    """Stream-based diagram: Drake term times pairwise stream interaction.

    ``v_l = exp(-theta (N/A)^2) * prod_{m != l} exp(-beta (1 - cos phi_lm) N_m / A)``
    where ``phi_lm`` is the intersection angle of streams ``l`` and ``m``.
    """

    kind = FunDiagKind.SBFD

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        phi = np.abs(self.angles[:, None] - self.angles[None, :]) % 360.0
        # (1 - cos) of the intersection angle; zero on the diagonal
        self._interaction = 1.0 - np.cos(np.radians(phi))
        np.fill_diagonal(self._interaction, 0.0)

    @property
    def beta(self) -> float:
        return self.shape[1]

    def velocity(self, acc: np.ndarray) -> np.ndarray:
        conflict = np.exp(-self.beta * (self._interaction @ acc) / self.area)
        return conflict * self._congestion(float(acc.sum()))


class ZeroDiagram(FundamentalDiagram):
    """No congestion: velocity 1 and infinite critical accumulation."""

    kind = FunDiagKind.ZERO

    def velocity(self, acc: np.ndarray) -> np.ndarray:
        return np.ones(len(acc), dtype=FLOAT)

    def critical_accumulation(self, acc: np.ndarray, i: int) -> float:
        return math.inf

    def critical_values(self) -> tuple[float, float]:
        return math.inf, 1.0

    def evaluate(
        self, acc: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        n = self.n_streams
        return (
            np.ones(n, dtype=FLOAT),
            np.full(n, np.inf, dtype=FLOAT),
            np.ones(n, dtype=FLOAT),
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_DIAGRAMS: dict[FunDiagKind, type[FundamentalDiagram]] = {
    FunDiagKind.WEIDMANN: WeidmannDiagram,
    FunDiagKind.DRAKE: DrakeDiagram,
    FunDiagKind.SBFD: SbFDDiagram,
    FunDiagKind.ZERO: ZeroDiagram,
}


def make_fundamental_diagram(
    kind: FunDiagKind | str,
    angles: Sequence[float],
    area: float,
    shape: Sequence[float] = (),
    numerics: NumericConfig | None = None,
) -> FundamentalDiagram:
    """Create the fundamental diagram of ``kind`` for one cell."""
    cls = _DIAGRAMS[FunDiagKind.parse(kind)]
    return cls(angles, area, shape, numerics)
