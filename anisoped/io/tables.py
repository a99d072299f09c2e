"""CSV tables of aggregate demand and observed pedestrians.

Demand table columns: ``route``, ``dep_time`` (interval), ``size``.
Pedestrian table columns: ``route``, ``dep_time`` (s), ``travel_time`` (s).
The camel-case headers ``routeName``, ``depTime``, ``numPeople`` and
``travelTime`` are accepted as well.  Lines starting with ``#`` are skipped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pandas as pd

from ..core.demand import DemandEntry, Pedestrian
from ..core.errors import ConfigurationError

_ALIASES = {
    "routename": "route",
    "route_name": "route",
    "deptime": "dep_time",
    "numpeople": "size",
    "num_people": "size",
    "traveltime": "travel_time",
    "traveltimeobs": "travel_time",
}


def _read(path: str | Path, required: Sequence[str]) -> pd.DataFrame:
    df = pd.read_csv(path, comment="#", skipinitialspace=True)
    df.columns = [
        _ALIASES.get(c.strip().lower(), c.strip().lower()) for c in df.columns
    ]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ConfigurationError(
            f"{path}: missing column(s) {missing}, found {list(df.columns)}"
        )
    df["route"] = df["route"].astype(str).str.strip()
    return df


def read_demand_table(path: str | Path) -> list[DemandEntry]:
    """Read an aggregate demand table."""
    df = _read(path, ["route", "dep_time", "size"])
    return [
        DemandEntry(route=row.route, dep_time=int(row.dep_time), size=float(row.size))
        for row in df.itertuples(index=False)
    ]


def read_pedestrian_table(path: str | Path) -> list[Pedestrian]:
    """Read a disaggregate table of observed pedestrians."""
    df = _read(path, ["route", "dep_time", "travel_time"])
    return [
        Pedestrian(route=row.route, dep_time=float(row.dep_time),
                   travel_time=float(row.travel_time))
        for row in df.itertuples(index=False)
    ]


def demand_frame(demand: Sequence[DemandEntry]) -> pd.DataFrame:
    return pd.DataFrame(
        [(d.route, d.dep_time, d.size) for d in demand],
        columns=["route", "dep_time", "size"],
    )


def pedestrian_frame(pedestrians: Sequence[Pedestrian]) -> pd.DataFrame:
    return pd.DataFrame(
        [(p.route, p.dep_time, p.travel_time) for p in pedestrians],
        columns=["route", "dep_time", "travel_time"],
    )


def write_demand_table(demand: Sequence[DemandEntry], path: str | Path) -> None:
    demand_frame(demand).to_csv(path, index=False)


def write_pedestrian_table(pedestrians: Sequence[Pedestrian], path: str | Path) -> None:
    pedestrian_frame(pedestrians).to_csv(path, index=False)
