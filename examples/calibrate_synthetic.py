"""Recover the free-flow speed of a crossing from synthetic observations."""

import logging

import numpy as np

from anisoped.calibration.calibrator import Calibrator
from anisoped.core.demand import Pedestrian
from anisoped.core.parameters import ParameterRange
from anisoped.core.types import CalibrationMode
from anisoped.networks.crossing import create_crossing

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")

# Ground truth run
scenario = create_crossing(n_departures=8, group_size=3.0)
truth = scenario.engine().simulate()
rng = np.random.default_rng(7)

# One observed pedestrian per simulated person, noisy travel time
pedestrians = []
for g in truth.groups:
    for _ in range(int(g.size)):
        dep = (g.dep_time + rng.uniform()) * truth.delta_t
        tt = g.stats.mean + rng.normal(0.0, 0.3)
        pedestrians.append(Pedestrian(g.route, dep, tt))

scenario.demand = None
scenario.pedestrians = pedestrians
scenario.param_range = ParameterRange((0.8, 0.05, 0.01, 0.5), (2.0, 1.0, 0.5, 5.0))

calibrator = Calibrator(scenario, mode=CalibrationMode.MEAN_TRAVEL_TIME)
best = calibrator.calibrate_from_default()
stats = calibrator.statistics(best)

print(f"log-likelihood {best.log_likelihood:.3f} after {best.n_evaluations} evaluations")
for i, name in enumerate(best.params.names):
    se = "n/a" if stats.inversion_failed else f"{stats.std_errors[i]:.4f}"
    print(f"  {name:>6s} = {best.x[i]:.4f}  (std err {se})")
