"""Demand for the pedestrian CTM.

``DemandEntry`` is one row of an aggregate demand table (route, departure
interval, number of people).  ``Pedestrian`` is one row of a disaggregate
observation table (route, departure time and observed travel time in
seconds).  A ``Group`` is the simulated counterpart of a demand entry and
collects the arrival histogram of its people; a ``Fragment`` is the part of
a group currently on one link.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .diagnostics import Diagnostic, DiagnosticKind
from .errors import ConfigurationError
from .types import GroupID, LinkID, RouteID


@dataclass
class DemandEntry:
    """People of one route leaving in one departure interval."""
    route: str
    dep_time: int          # departure interval
    size: float            # number of people


@dataclass
class Pedestrian:
    """One observed pedestrian."""
    route: str
    dep_time: float        # seconds
    travel_time: float     # observed travel time, seconds

    def dep_interval(self, delta_t: float) -> int:
        return int(math.floor(self.dep_time / delta_t))

    def aggregation_interval(self, period: float) -> int:
        return int(math.floor(self.dep_time / period))


@dataclass
class Fragment:
    """The part of a group currently on one link."""
    group_id: GroupID
    link_id: LinkID
    size: float
    send_cap: dict[LinkID, float] = field(default_factory=dict)


def aggregate_pedestrians(
    pedestrians: Iterable[Pedestrian], delta_t: float
) -> list[DemandEntry]:
    """Group pedestrians by (route, departure interval).

    Entries keep the order in which their first pedestrian appears.
    """
    entries: dict[tuple[str, int], DemandEntry] = {}
    for ped in pedestrians:
        key = (ped.route, ped.dep_interval(delta_t))
        if key in entries:
            entries[key].size += 1.0
        else:
            entries[key] = DemandEntry(route=key[0], dep_time=key[1], size=1.0)
    return list(entries.values())


@dataclass
class TravelTimeStats:
    mean: float            # seconds, NaN if nobody arrived
    std: float             # seconds, NaN if nobody arrived
    rel_loss: float        # arrived / departed


class Group:
    """Simulated demand unit with its arrival histogram.

    Parameters
    ----------
    group_id : GroupID
    route : str
        Route name.
    route_id : RouteID
        Index of the route in the compiled network.
    dep_time : int
        Departure interval.
    size : float
        Number of people.
    """

    def __init__(
        self,
        group_id: GroupID,
        route: str,
        route_id: RouteID,
        dep_time: int,
        size: float,
    ) -> None:
        self.group_id = group_id
        self.route = route
        self.route_id = route_id
        self.dep_time = int(dep_time)
        self.size = float(size)
        # travel time (intervals) -> people arrived
        self.arrivals: dict[int, float] = {}
        self.stats: TravelTimeStats | None = None

    @property
    def survived(self) -> float:
        return float(sum(self.arrivals.values()))

    def add_travel_time(
        self, arrival_step: int, size: float, gate_correction: int = 2,
        link_id: int | None = None,
    ) -> Diagnostic | None:
        """Record ``size`` people arriving at ``arrival_step``.

        The travel time excludes the ``gate_correction`` intervals spent in
        the source and sink gates.  Nothing is recorded and a diagnostic is
        returned if that travel time is negative or ``size`` is not positive.
        """
        tt = arrival_step - self.dep_time - gate_correction
        if tt < 0:
            return Diagnostic(
                kind=DiagnosticKind.NEGATIVE_TRAVEL_TIME,
                step=arrival_step,
                group_id=int(self.group_id),
                link_id=link_id,
                value=float(tt),
                message=f"travel time {tt} intervals for {size:.4g} people",
            )
        if not size > 0.0:
            return Diagnostic(
                kind=DiagnosticKind.ZERO_ARRIVAL_FRACTION,
                step=arrival_step,
                group_id=int(self.group_id),
                link_id=link_id,
                value=float(size),
                message=f"arrival of {size} people",
            )
        self.arrivals[tt] = self.arrivals.get(tt, 0.0) + float(size)
        return None

    def compute_travel_time_stats(self, delta_t: float) -> TravelTimeStats:
        """Mean and standard deviation of travel time (s) and relative loss."""
        survived = self.survived
        rel_loss = survived / self.size if self.size > 0 else math.nan
        if survived <= 0.0:
            self.stats = TravelTimeStats(math.nan, math.nan, rel_loss)
            return self.stats
        first = sum(f * tt * delta_t for tt, f in self.arrivals.items()) / survived
        second = sum(f * (tt * delta_t) ** 2 for tt, f in self.arrivals.items()) / survived
        std = math.sqrt(max(second - first ** 2, 0.0))
        self.stats = TravelTimeStats(first, std, rel_loss)
        return self.stats

    def travel_time_probability(self, travel_time: float, delta_t: float) -> float:
        """Simulated probability of the interval containing ``travel_time`` (s).

        Intervals without arrivals get the smallest positive float so that
        their log stays finite.
        """
        tt = int(math.floor(travel_time / delta_t))
        if tt in self.arrivals and self.arrivals[tt] > 0.0:
            return self.arrivals[tt] / self.size
        return math.ulp(0.0)

    def distribution(self, delta_t: float) -> list[tuple[float, float]]:
        """``(travel_time_s, people)`` pairs in increasing travel time."""
        return [(tt * delta_t, f) for tt, f in sorted(self.arrivals.items())]

    def demand_row(self) -> DemandEntry:
        return DemandEntry(route=self.route, dep_time=self.dep_time, size=self.size)

    def reset(self) -> None:
        self.arrivals.clear()
        self.stats = None

    def __repr__(self) -> str:
        return (
            f"Group(id={self.group_id}, route={self.route!r}, "
            f"dep={self.dep_time}, size={self.size:g})"
        )


def build_groups(
    entries: Sequence[DemandEntry], route_index: dict[str, RouteID]
) -> list[Group]:
    """Create groups ``0..n-1`` from demand entries.

    Raises
    ------
    ConfigurationError
        Unknown route or negative departure interval or size.
    """
    groups = []
    for i, entry in enumerate(entries):
        if entry.route not in route_index:
            raise ConfigurationError(
                f"Demand references unknown route '{entry.route}'"
            )
        if entry.dep_time < 0:
            raise ConfigurationError(
                f"Demand for route '{entry.route}' departs at negative "
                f"interval {entry.dep_time}"
            )
        if entry.size < 0:
            raise ConfigurationError(
                f"Demand for route '{entry.route}' has negative size {entry.size}"
            )
        groups.append(Group(
            group_id=GroupID(i),
            route=entry.route,
            route_id=route_index[entry.route],
            dep_time=entry.dep_time,
            size=entry.size,
        ))
    return groups
