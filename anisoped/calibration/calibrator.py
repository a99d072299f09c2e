"""Maximum-likelihood calibration of the model parameters.

The calibration vector is ``[vf, *shape, mu]`` (see ``Parameters.names``).
Every evaluation simulates the scenario from scratch with a fresh engine, so
evaluations are independent of each other.

Usage::

    scenario = from_json("case.json")
    calibrator = Calibrator(scenario)
    best = calibrator.calibrate_multistart(n_runs=5, rng=np.random.default_rng(0))
    stats = calibrator.statistics(best)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import optimize

from ..core.demand import Group, Pedestrian
from ..core.errors import CalibrationError, ConfigurationError, ConservationError
from ..core.parameters import NumericConfig, Parameters
from ..core.types import FLOAT, CalibrationMode
from ..networks.from_dict import Scenario
from .statistics import DEFAULT_STEP, CalibrationStatistics

logger = logging.getLogger(__name__)

MAX_EVALUATIONS = 1500
MAX_DRAWS = 100
MAX_RESTARTS = 10


@dataclass
class CalibrationResult:
    """Outcome of one local optimisation."""
    params: Parameters
    log_likelihood: float
    x0: np.ndarray
    n_evaluations: int
    success: bool
    message: str = ""

    @property
    def x(self) -> np.ndarray:
        return self.params.to_vector()

    def to_dict(self) -> dict:
        return {
            "params": self.params.to_dict(),
            "log_likelihood": self.log_likelihood,
            "x0": self.x0.tolist(),
            "n_evaluations": self.n_evaluations,
            "success": self.success,
            "message": self.message,
        }


class Calibrator:
    """Calibrate a scenario against its observed pedestrians.

    Parameters
    ----------
    scenario : Scenario
        Must carry observed pedestrians; multistart calibration also needs
        ``scenario.param_range``.
    mode : CalibrationMode or str, optional
        Defaults to ``scenario.calibration_mode``.
    agg_period : float, optional
        Aggregation period (s); defaults to ``scenario.agg_period``.
    numerics : NumericConfig, optional
    max_evaluations : int
        Objective evaluations per local optimisation.
    """

    def __init__(
        self,
        scenario: Scenario,
        mode: CalibrationMode | str | None = None,
        agg_period: float | None = None,
        numerics: NumericConfig | None = None,
        max_evaluations: int = MAX_EVALUATIONS,
    ) -> None:
        if not scenario.pedestrians:
            raise ConfigurationError(
                f"Scenario '{scenario.name}' has no observed pedestrians to calibrate on"
            )
        self.scenario = scenario
        self.mode = CalibrationMode.parse(
            mode if mode is not None else scenario.calibration_mode
        )
        self.agg_period = agg_period if agg_period is not None else scenario.agg_period
        if self.mode == CalibrationMode.AGGREGATED_TRAVEL_TIMES and self.agg_period is None:
            raise ConfigurationError(
                "Aggregated travel-time calibration needs an aggregation period"
            )
        self.numerics = numerics
        self.max_evaluations = max_evaluations
        self.n_evaluations = 0
        self.history: list[CalibrationResult] = []

    @property
    def bounds(self) -> list[tuple[float, float]] | None:
        rng = self.scenario.param_range
        return rng.bounds if rng is not None else None

    # -- objective -------------------------------------------------------------

    def evaluate(self, x: Sequence[float]) -> float:
        """Log-likelihood at ``x``; ``-inf`` for infeasible parameters.

        Parameters are infeasible when they are rejected by the model (e.g. a
        non-positive speed or a fundamental diagram without critical point)
        or when the log-likelihood is NaN.
        """
        self.n_evaluations += 1
        try:
            params = self.scenario.params.with_vector(x)
            engine = self.scenario.engine(params, self.numerics)
            engine.simulate()
            ll = engine.log_likelihood(self.mode, self.agg_period)
        except ValueError as exc:
            logger.debug("Infeasible parameters %s: %s", list(x), exc)
            return -math.inf
        if math.isnan(ll):
            return -math.inf
        return ll

    def objective(self, x: Sequence[float]) -> float:
        """Negative log-likelihood, minimised by the optimiser."""
        return -self.evaluate(x)

    # -- optimisation ----------------------------------------------------------

    def calibrate(self, x0: Sequence[float]) -> CalibrationResult:
        """Bounded Powell search for the log-likelihood maximum near ``x0``."""
        x0 = np.asarray(x0, dtype=FLOAT)
        start = self.n_evaluations
        res = optimize.minimize(
            self.objective,
            x0,
            method="Powell",
            bounds=self.bounds,
            options={"maxfev": self.max_evaluations, "xtol": 1e-3},
        )
        ll = -float(res.fun)
        result = CalibrationResult(
            params=self.scenario.params.with_vector(res.x),
            log_likelihood=ll,
            x0=x0,
            n_evaluations=self.n_evaluations - start,
            success=bool(res.success) and math.isfinite(ll),
            message=str(res.message),
        )
        self.history.append(result)
        logger.info(
            "Calibration from %s: log-likelihood %.4f at %s (%d evaluations)",
            np.round(x0, 4).tolist(), ll, np.round(result.x, 4).tolist(),
            result.n_evaluations,
        )
        return result

    def calibrate_from_default(self) -> CalibrationResult:
        """Local optimum starting from the scenario's parameters.

        Raises
        ------
        ConfigurationError
            The scenario's parameters give an invalid log-likelihood.
        """
        x0 = self.scenario.params.to_vector()
        if not math.isfinite(self.evaluate(x0)):
            raise ConfigurationError("Default parameters yield invalid log-likelihood")
        return self.calibrate(x0)

    def draw_feasible(self, rng: np.random.Generator, max_draws: int = MAX_DRAWS) -> np.ndarray:
        """Uniform draw from the parameter range with a finite log-likelihood."""
        if self.scenario.param_range is None:
            raise ConfigurationError(
                f"Scenario '{self.scenario.name}' has no parameter range to draw from"
            )
        for _ in range(max_draws):
            x = self.scenario.param_range.sample(rng)
            if math.isfinite(self.evaluate(x)):
                return x
        raise ConfigurationError(
            f"No feasible starting point found in {max_draws} draws"
        )

    def calibrate_multistart(
        self,
        n_runs: int,
        rng: np.random.Generator | None = None,
        max_restarts: int = MAX_RESTARTS,
    ) -> CalibrationResult:
        """Best of ``n_runs`` local optimisations from random feasible starts.

        A run that fails with a conservation error is redrawn, at most
        ``max_restarts`` times per run.

        Raises
        ------
        CalibrationError
            A run still fails after ``max_restarts`` redraws.
        """
        if n_runs < 1:
            raise ValueError(f"n_runs must be positive, got {n_runs}")
        rng = rng if rng is not None else np.random.default_rng()
        best: CalibrationResult | None = None
        for run in range(n_runs):
            for _ in range(max_restarts + 1):
                try:
                    result = self.calibrate(self.draw_feasible(rng))
                    break
                except ConservationError as exc:
                    logger.warning("Calibration run raised %s; run redone", exc)
            else:
                raise CalibrationError(
                    f"Calibration run {run + 1} failed after {max_restarts} restarts"
                )
            logger.info("Calib %d/%d: log-likelihood %.4f", run + 1, n_runs,
                        result.log_likelihood)
            if best is None or result.log_likelihood >= best.log_likelihood:
                best = result
        return best

    def statistics(
        self, result: CalibrationResult, step: float = DEFAULT_STEP
    ) -> CalibrationStatistics:
        """Hessian-based statistics at a calibration optimum."""
        logger.info("Computing Hessian at %s", np.round(result.x, 4).tolist())
        return CalibrationStatistics.compute(self.evaluate, result.x, step)


# ---------------------------------------------------------------------------
# Travel-time distributions per route
# ---------------------------------------------------------------------------

TT_DIST_COLUMNS = ["route", "interval", "travel_time", "num_obs", "num_sim"]


def route_travel_time_distribution(
    pedestrians: Sequence[Pedestrian],
    groups: Sequence[Group],
    delta_t: float,
) -> pd.DataFrame:
    """Observed counts vs simulated people per route and travel-time interval.

    Every route seen in the observations or the simulation gets one row per
    interval between its shortest and longest travel time.
    """
    obs: dict[str, dict[int, float]] = {}
    for p in pedestrians:
        k = int(math.floor(p.travel_time / delta_t))
        hist = obs.setdefault(p.route, {})
        hist[k] = hist.get(k, 0.0) + 1.0

    sim: dict[str, dict[int, float]] = {}
    for g in groups:
        hist = sim.setdefault(g.route, {})
        for k, people in g.arrivals.items():
            hist[k] = hist.get(k, 0.0) + people

    rows = []
    for route in dict.fromkeys([*obs, *sim]):
        o, s = obs.get(route, {}), sim.get(route, {})
        keys = [*o, *s]
        if not keys:
            continue
        for k in range(min(keys), max(keys) + 1):
            rows.append((route, k, k * delta_t, o.get(k, 0.0), s.get(k, 0.0)))
    return pd.DataFrame(rows, columns=TT_DIST_COLUMNS)
