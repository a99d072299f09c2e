"""Log-likelihood of observed pedestrian travel times.

Three scoring modes (``CalibrationMode``):

* ``MEAN_TRAVEL_TIME``: Gaussian likelihood of every observed travel time
  around the simulated mean of its group.
* ``AGGREGATED_TRAVEL_TIMES``: Gaussian likelihood of mean observed travel
  times per (route, aggregation period) around the mean simulated travel
  time of the same pedestrians, weighted by the number of pedestrians.
* ``TRAVEL_TIME_DISTRIBUTION``: sum of log simulated probabilities of the
  observed travel-time intervals.

NaN and infinite values are returned as computed.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
import pandas as pd

from .demand import Group, Pedestrian
from .types import CalibrationMode


def group_lookup(groups: Sequence[Group]) -> dict[tuple[str, int], Group]:
    """Map (route, departure interval) to its group (first one wins)."""
    lookup: dict[tuple[str, int], Group] = {}
    for g in groups:
        lookup.setdefault((g.route, g.dep_time), g)
    return lookup


def _match(
    ped: Pedestrian, lookup: dict[tuple[str, int], Group], delta_t: float
) -> Group:
    key = (ped.route, ped.dep_interval(delta_t))
    try:
        return lookup[key]
    except KeyError:
        raise ValueError(
            f"No simulated group for pedestrian on route '{ped.route}' "
            f"departing at {ped.dep_time}s (interval {key[1]})"
        ) from None


def pedestrian_table(
    pedestrians: Sequence[Pedestrian],
    groups: Sequence[Group],
    delta_t: float,
) -> pd.DataFrame:
    """Observed vs simulated travel time of every pedestrian.

    Columns: ``route``, ``dep_time``, ``travel_time_obs``,
    ``travel_time_sim``, ``travel_time_std_sim``, ``group_id``.
    """
    lookup = group_lookup(groups)
    rows = []
    for ped in pedestrians:
        g = _match(ped, lookup, delta_t)
        stats = g.stats or g.compute_travel_time_stats(delta_t)
        rows.append({
            "route": ped.route,
            "dep_time": ped.dep_time,
            "travel_time_obs": ped.travel_time,
            "travel_time_sim": stats.mean,
            "travel_time_std_sim": stats.std,
            "group_id": int(g.group_id),
        })
    return pd.DataFrame(
        rows,
        columns=["route", "dep_time", "travel_time_obs", "travel_time_sim",
                 "travel_time_std_sim", "group_id"],
    )


def _gaussian(n: float, squared_error: float) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(-n / 2.0 * (1.0 + np.log(2.0 * math.pi / n * squared_error)))


def aggregated_table(
    pedestrians: Sequence[Pedestrian],
    groups: Sequence[Group],
    delta_t: float,
    agg_period: float,
) -> pd.DataFrame:
    """Mean observed and simulated travel time per (route, aggregation period).

    Rows keep the order of first appearance.  Columns: ``route``,
    ``dep_time_int``, ``num_people``, ``travel_time_obs``, ``travel_time_sim``.
    """
    if not agg_period > 0.0:
        raise ValueError(f"Aggregation period must be positive, got {agg_period}")
    df = pedestrian_table(pedestrians, groups, delta_t)
    df["dep_time_int"] = np.floor(df["dep_time"] / agg_period).astype(int)
    agg = (
        df.groupby(["route", "dep_time_int"], sort=False)
        .agg(
            num_people=("travel_time_obs", "size"),
            travel_time_obs=("travel_time_obs", "mean"),
            travel_time_sim=("travel_time_sim", lambda s: s.sum(skipna=False) / len(s)),
        )
        .reset_index()
    )
    return agg


def log_likelihood(
    mode: CalibrationMode | str,
    pedestrians: Sequence[Pedestrian],
    groups: Sequence[Group],
    delta_t: float,
    agg_period: float | None = None,
) -> float:
    """Log-likelihood of ``pedestrians`` under the simulated ``groups``.

    Raises
    ------
    ValueError
        No pedestrians, a pedestrian without simulated group, or a missing
        aggregation period for ``AGGREGATED_TRAVEL_TIMES``.
    """
    mode = CalibrationMode.parse(mode)
    if len(pedestrians) == 0:
        raise ValueError("Log-likelihood needs observed pedestrians")
    n = float(len(pedestrians))

    if mode == CalibrationMode.MEAN_TRAVEL_TIME:
        df = pedestrian_table(pedestrians, groups, delta_t)
        sse = float(((df["travel_time_obs"] - df["travel_time_sim"]) ** 2).sum(skipna=False))
        return _gaussian(n, sse)

    if mode == CalibrationMode.AGGREGATED_TRAVEL_TIMES:
        if agg_period is None:
            raise ValueError("Aggregated travel-time mode needs an aggregation period")
        agg = aggregated_table(pedestrians, groups, delta_t, agg_period)
        sse = float((agg["num_people"]
                     * (agg["travel_time_obs"] - agg["travel_time_sim"]) ** 2).sum(skipna=False))
        return _gaussian(n, sse)

    lookup = group_lookup(groups)
    probs = np.array(
        [_match(p, lookup, delta_t).travel_time_probability(p.travel_time, delta_t)
         for p in pedestrians],
        dtype=float,
    )
    with np.errstate(divide="ignore"):
        return float(np.log(probs).sum())
