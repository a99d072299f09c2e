"""Finite-difference derivatives and post-calibration statistics.

The Hessian of the log-likelihood at the optimum gives the Cramér-Rao
lower bound ``-H^-1`` on the covariance of the estimates, from which the
standard errors and the correlation matrix follow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
from scipy import linalg

from ..core.types import FLOAT

logger = logging.getLogger(__name__)

DEFAULT_STEP = 1e-4


def _positive_step(x: np.ndarray, i: int, step: float) -> float:
    """Halve ``step`` until ``x[i] - step`` stays positive."""
    while x[i] - step <= 0.0:
        step *= 0.5
    return step


def finite_difference_gradient(
    f: Callable[[np.ndarray], float],
    x: Sequence[float],
    step: float = DEFAULT_STEP,
) -> np.ndarray:
    """Central-difference gradient of ``f`` at ``x``.

    The step is halved per coordinate until the lower point remains
    positive, since every model parameter is strictly positive.  A reduced
    step carries over to the following coordinates.
    """
    x = np.asarray(x, dtype=FLOAT)
    grad = np.zeros(len(x), dtype=FLOAT)
    for i in range(len(x)):
        step = _positive_step(x, i, step)
        lo, hi = x.copy(), x.copy()
        lo[i] -= step
        hi[i] += step
        grad[i] = (f(hi) - f(lo)) / (2.0 * step)
    return grad


def finite_difference_hessian(
    f: Callable[[np.ndarray], float],
    x: Sequence[float],
    step: float = DEFAULT_STEP,
) -> np.ndarray:
    """Central-difference Hessian of ``f`` at ``x``.

    Row ``i`` is the difference of the gradients at ``x -/+ step * e_i``.
    The result is not symmetrised.
    """
    x = np.asarray(x, dtype=FLOAT)
    n = len(x)
    hess = np.zeros((n, n), dtype=FLOAT)
    for i in range(n):
        step = _positive_step(x, i, step)
        lo, hi = x.copy(), x.copy()
        lo[i] -= step
        hi[i] += step
        df_lo = finite_difference_gradient(f, lo, step)
        df_hi = finite_difference_gradient(f, hi, step)
        hess[i] = (df_hi - df_lo) / (2.0 * step)
    return hess


@dataclass
class CalibrationStatistics:
    """Second-order statistics of a log-likelihood optimum.

    ``cramer_rao``, ``std_errors`` and ``correlation`` are ``None`` when the
    Hessian could not be inverted (``inversion_failed``).
    """
    params: np.ndarray
    hessian: np.ndarray
    eigenvalues: np.ndarray
    complex_eigenvalues: bool
    cramer_rao: np.ndarray | None = None
    std_errors: np.ndarray | None = None
    correlation: np.ndarray | None = None

    @property
    def inversion_failed(self) -> bool:
        return self.cramer_rao is None

    @classmethod
    def from_hessian(cls, params: Sequence[float], hessian: np.ndarray) -> CalibrationStatistics:
        hessian = np.asarray(hessian, dtype=FLOAT)
        params = np.asarray(params, dtype=FLOAT)
        if not np.all(np.isfinite(hessian)):
            logger.warning("Hessian has non-finite entries; statistics omitted")
            return cls(
                params=params,
                hessian=hessian,
                eigenvalues=np.full(len(hessian), np.nan),
                complex_eigenvalues=False,
            )
        eig = linalg.eigvals(hessian)
        stats = cls(
            params=params,
            hessian=hessian,
            eigenvalues=eig.real,
            complex_eigenvalues=bool(np.any(np.abs(eig.imag) > 0.0)),
        )
        try:
            cramer_rao = -linalg.inv(hessian)
        except linalg.LinAlgError:
            logger.warning("Inversion of Hessian failed; statistics omitted")
            return stats

        std = np.sqrt(np.abs(np.diag(cramer_rao)))
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = cramer_rao / np.outer(std, std)
        stats.cramer_rao = cramer_rao
        stats.std_errors = std
        stats.correlation = corr
        return stats

    @classmethod
    def compute(
        cls,
        log_likelihood: Callable[[np.ndarray], float],
        params: Sequence[float],
        step: float = DEFAULT_STEP,
    ) -> CalibrationStatistics:
        """Hessian of ``log_likelihood`` at ``params`` and derived statistics."""
        hess = finite_difference_hessian(log_likelihood, params, step)
        return cls.from_hessian(params, hess)

    def to_dict(self, names: Sequence[str] | None = None) -> dict:
        names = list(names) if names is not None else [
            f"x{i}" for i in range(len(self.params))
        ]

        def matrix(m):
            return None if m is None else m.tolist()

        return {
            "names": names,
            "params": self.params.tolist(),
            "hessian": self.hessian.tolist(),
            "eigenvalues": self.eigenvalues.tolist(),
            "complex_eigenvalues": self.complex_eigenvalues,
            "inversion_failed": self.inversion_failed,
            "cramer_rao": matrix(self.cramer_rao),
            "std_errors": None if self.std_errors is None else self.std_errors.tolist(),
            "correlation": matrix(self.correlation),
        }
