"""Tabular output of simulation runs.

All writers produce CSV through pandas; an optional first line starting with
``#`` carries run-level values such as the log-likelihood.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Sequence

import pandas as pd

from ..core.demand import Group
from ..core.engine import SimulationEngine, SimulationResult
from ..core.likelihood import aggregated_table, pedestrian_table
from ..core.types import CalibrationMode

logger = logging.getLogger(__name__)


def travel_time_distribution_frame(
    groups: Sequence[Group], delta_t: float
) -> pd.DataFrame:
    """One row per (group, travel time) with the people arrived."""
    rows = [
        (int(g.group_id), g.route, g.size, g.dep_time, tt, people)
        for g in groups
        for tt, people in g.distribution(delta_t)
    ]
    return pd.DataFrame(
        rows,
        columns=["group_id", "route", "group_size", "dep_time",
                 "travel_time", "frag_size"],
    )


def travel_time_frame(groups: Sequence[Group], delta_t: float) -> pd.DataFrame:
    """Mean and standard deviation of travel time and relative loss per group."""
    rows = []
    for g in groups:
        stats = g.stats or g.compute_travel_time_stats(delta_t)
        rows.append((int(g.group_id), g.route, g.size, g.dep_time,
                     stats.mean, stats.std, stats.rel_loss))
    return pd.DataFrame(
        rows,
        columns=["group_id", "route", "group_size", "dep_time",
                 "mean_travel_time", "std_travel_time", "rel_loss"],
    )


def _write(df: pd.DataFrame, path: str | Path, header: str | None = None) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        if header:
            f.write(f"# {header}\n")
        df.to_csv(f, index=False)
    logger.debug("Wrote %d rows to %s", len(df), path)
    return path


def write_travel_times(
    result: SimulationResult, out_dir: str | Path, prefix: str = ""
) -> list[Path]:
    """Write the travel-time distribution and the per-group summary."""
    out_dir = Path(out_dir)
    return [
        _write(travel_time_distribution_frame(result.groups, result.delta_t),
               out_dir / f"{prefix}travel_time_distribution.csv"),
        _write(travel_time_frame(result.groups, result.delta_t),
               out_dir / f"{prefix}travel_time_mean.csv"),
    ]


def write_demand(groups: Sequence[Group], path: str | Path) -> Path:
    """Write the aggregate demand the groups were built from."""
    df = pd.DataFrame(
        [(g.route, g.dep_time, g.size) for g in groups],
        columns=["route", "dep_time", "size"],
    )
    return _write(df, path)


def write_aggregated_table(
    engine: SimulationEngine, path: str | Path, agg_period: float
) -> Path:
    """Observed vs simulated mean travel time per route and period."""
    df = aggregated_table(engine.pedestrians, engine.groups, engine.delta_t, agg_period)
    ll = engine.log_likelihood(CalibrationMode.AGGREGATED_TRAVEL_TIMES, agg_period)
    return _write(df, path, header=f"log_likelihood={ll:.6f}")


def write_disaggregate_table(
    engine: SimulationEngine,
    path: str | Path,
    mode: CalibrationMode | str = CalibrationMode.TRAVEL_TIME_DISTRIBUTION,
    agg_period: float | None = None,
) -> Path:
    """Observed vs simulated travel time of every pedestrian."""
    df = pedestrian_table(engine.pedestrians, engine.groups, engine.delta_t)
    ll = engine.log_likelihood(mode, agg_period)
    return _write(df.drop(columns=["group_id"]), path,
                  header=f"log_likelihood={ll:.6f}")


def write_system_state(frames: Sequence[dict], path: str | Path) -> Path:
    """Per-step link state recorded by ``viz.recorder.Recorder``."""
    rows = []
    for frame in frames:
        for lid, (acc, vel, inflow, outflow) in enumerate(zip(
            frame["link_acc"], frame["link_vel"],
            frame["link_inflow"], frame["link_outflow"],
        )):
            rows.append((frame["step"], lid, acc, vel, inflow, outflow))
    df = pd.DataFrame(
        rows, columns=["step", "link_id", "acc", "vel", "inflow", "outflow"],
    )
    return _write(df, path)


def write_route_travel_time_distribution(engine: SimulationEngine, path: str | Path) -> Path:
    """Observed vs simulated travel-time histogram per route."""
    from ..calibration.calibrator import route_travel_time_distribution

    df = route_travel_time_distribution(engine.pedestrians, engine.groups, engine.delta_t)
    return _write(df, path, header=f"delta_t={engine.delta_t:.6f}")


def write_calibration(result, stats, path: str | Path) -> Path:
    """Calibration optimum and, if given, its Hessian statistics as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {"result": result.to_dict()}
    if stats is not None:
        data["statistics"] = stats.to_dict(result.params.names)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.debug("Wrote calibration to %s", path)
    return path
