"""SimulationEngine: the pedestrian CTM step loop.

Orchestrates the fundamental diagrams, the potential field and the flow
model to advance one run from its initial demand to clearance.  One step:

1. load groups departing now onto their route's source link,
2. update accumulation, velocity and critical values of every cell,
3. recompute route potentials and split fractions,
4. reset the per-step flow counters,
5. allocate sending capacity to fragments,
6. propagate people (supply-rationed),
7. drain sink links and record travel times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum, auto
from typing import Iterator, Sequence

import numpy as np

from .demand import (
    DemandEntry,
    Fragment,
    Group,
    Pedestrian,
    aggregate_pedestrians,
    build_groups,
)
from .diagnostics import Diagnostic, DiagnosticKind, summarize
from .flow_model import AnisotropicCTMFlowModel, FlowModel, FlowResult
from .likelihood import log_likelihood, pedestrian_table
from .network import CompiledNetwork, Network
from .parameters import DEFAULT_NUMERICS, NumericConfig, Parameters
from .potential import PotentialField, compute_potential_field
from .types import FLOAT, INT, CalibrationMode, GroupID, LinkID

logger = logging.getLogger(__name__)


class RunStatus(IntEnum):
    INITIALIZED = auto()
    RUNNING = auto()
    CONVERGED = auto()
    TIME_LIMIT_EXCEEDED = auto()


@dataclass
class SimState:
    """Snapshot of the simulation state after the last step."""
    frag: np.ndarray               # people per (link, group)
    acc: np.ndarray                # people per link
    vel: np.ndarray                # non-dimensional velocity per link
    crit_acc: np.ndarray
    crit_vel: np.ndarray
    sending: np.ndarray
    receiving: np.ndarray
    cand_inflow: np.ndarray
    inflow: np.ndarray
    outflow: np.ndarray
    potential: PotentialField | None = None
    flow: FlowResult | None = None
    step: int = 0                  # number of completed steps
    total_entered: float = 0.0
    total_exited: float = 0.0
    total_dust: float = 0.0        # removed as numerical residue

    @property
    def total_accumulation(self) -> float:
        return float(self.acc.sum())

    def __repr__(self) -> str:
        return (
            f"SimState(step={self.step}, {self.frag.shape[0]} links, "
            f"{self.frag.shape[1]} groups, acc={self.total_accumulation:.3f}, "
            f"entered={self.total_entered:.1f}, exited={self.total_exited:.1f})"
        )


@dataclass
class SimulationResult:
    """Outcome of ``SimulationEngine.simulate``."""
    status: RunStatus
    steps: int
    delta_t: float
    groups: list[Group]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    total_entered: float = 0.0
    total_exited: float = 0.0
    total_dust: float = 0.0

    @property
    def total_delivered(self) -> float:
        """People recorded in arrival histograms."""
        return float(sum(g.survived for g in self.groups))

    @property
    def total_demand(self) -> float:
        return float(sum(g.size for g in self.groups))

    def diagnostics_of(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    def __repr__(self) -> str:
        return (
            f"SimulationResult({self.status.name}, steps={self.steps}, "
            f"groups={len(self.groups)}, delivered={self.total_delivered:.1f}/"
            f"{self.total_demand:.1f}, diagnostics={summarize(self.diagnostics)})"
        )


class SimulationEngine:
    """Main pedestrian CTM simulation engine.

    Parameters
    ----------
    network : Network
        The logical network (compiled for ``params``).
    params : Parameters
        Fundamental diagram, free-flow speed, route-choice weight, CFL.
    demand : list[DemandEntry], optional
        Aggregate demand.  If omitted, it is derived from ``pedestrians``.
    pedestrians : list[Pedestrian], optional
        Observed pedestrians, needed for log-likelihood evaluation.
    flow_model : FlowModel, optional
        Defaults to ``AnisotropicCTMFlowModel``.
    numerics : NumericConfig, optional
    """

    def __init__(
        self,
        network: Network,
        params: Parameters,
        demand: Sequence[DemandEntry] | None = None,
        pedestrians: Sequence[Pedestrian] | None = None,
        flow_model: FlowModel | None = None,
        numerics: NumericConfig | None = None,
    ) -> None:
        self.network = network
        self.params = params
        self.demand = list(demand) if demand is not None else None
        self.pedestrians = list(pedestrians or [])
        self.flow_model = flow_model or AnisotropicCTMFlowModel()
        self.numerics = numerics or DEFAULT_NUMERICS
        self._build()
        self.reset()

    # -- construction --------------------------------------------------------

    def _build(self) -> None:
        """Compile the network and create the groups for ``self.params``."""
        self.net: CompiledNetwork = self.network.compile(self.params, self.numerics)
        if self.demand is not None:
            entries = self.demand
        else:
            entries = aggregate_pedestrians(self.pedestrians, self.net.delta_t)
        self.groups = build_groups(entries, self.net.route_index)
        self.group_route = np.array([g.route_id for g in self.groups], dtype=INT)
        self._departures: dict[int, list[Group]] = {}
        for g in self.groups:
            self._departures.setdefault(g.dep_time, []).append(g)
        self.last_departure = max((g.dep_time for g in self.groups), default=-1)
        self.horizon = self.last_departure + self.numerics.max_travel_time
        logger.debug(
            "Built %r with %d groups (last departure %d)",
            self.net, len(self.groups), self.last_departure,
        )

    def update_params(self, params: Parameters | Sequence[float]) -> None:
        """Rebuild network and demand in place for new parameters.

        ``params`` is either a ``Parameters`` or a calibration vector
        ``[vf, *shape, mu]``.
        """
        if not isinstance(params, Parameters):
            params = self.params.with_vector(params)
        self.params = params
        self._build()
        self.reset()

    def with_params(self, params: Parameters | Sequence[float]) -> SimulationEngine:
        """Independent engine for the same scenario under new parameters."""
        if not isinstance(params, Parameters):
            params = self.params.with_vector(params)
        return SimulationEngine(
            network=self.network,
            params=params,
            demand=self.demand,
            pedestrians=self.pedestrians,
            flow_model=type(self.flow_model)(),
            numerics=self.numerics,
        )

    def reset(self) -> SimState:
        """Reset the simulation to time zero."""
        n_links = self.net.n_links
        self.state = SimState(
            frag=np.zeros((n_links, len(self.groups)), dtype=FLOAT),
            acc=np.zeros(n_links, dtype=FLOAT),
            vel=np.ones(n_links, dtype=FLOAT),
            crit_acc=np.full(n_links, np.inf, dtype=FLOAT),
            crit_vel=np.ones(n_links, dtype=FLOAT),
            sending=np.zeros(n_links, dtype=FLOAT),
            receiving=np.zeros(n_links, dtype=FLOAT),
            cand_inflow=np.zeros(n_links, dtype=FLOAT),
            inflow=np.zeros(n_links, dtype=FLOAT),
            outflow=np.zeros(n_links, dtype=FLOAT),
        )
        for g in self.groups:
            g.reset()
        self.diagnostics: list[Diagnostic] = []
        self._trapped_seen: set[tuple[int, int]] = set()
        self.status = RunStatus.INITIALIZED
        return self.state

    # -- stepping ------------------------------------------------------------

    def _update_cells(self) -> None:
        s, net = self.state, self.net
        stream_acc = np.bincount(net.link_stream, weights=s.acc,
                                 minlength=net.n_streams)
        stream_vel = np.ones(net.n_streams, dtype=FLOAT)
        stream_crit_acc = np.full(net.n_streams, np.inf, dtype=FLOAT)
        stream_crit_vel = np.ones(net.n_streams, dtype=FLOAT)
        for c, fd in enumerate(net.fun_diags):
            sl = net.cell_streams(c)
            if sl.start == sl.stop:
                continue
            v, ca, cv = fd.evaluate(stream_acc[sl])
            stream_vel[sl] = v
            stream_crit_acc[sl] = ca
            stream_crit_vel[sl] = cv
        s.vel = stream_vel[net.link_stream]
        s.crit_acc = stream_crit_acc[net.link_stream]
        s.crit_vel = stream_crit_vel[net.link_stream]

    def _load_sources(self, t: int) -> None:
        s = self.state
        for g in self._departures.get(t, []):
            s.frag[self.net.route_source_link[g.route_id], g.group_id] += g.size
            s.total_entered += g.size

    def _report_trapped(self, t: int, flow: FlowResult) -> None:
        links, cols = np.nonzero(flow.trapped)
        for l, c in zip(links, cols):
            g = int(flow.active[c])
            key = (int(l), g)
            if key in self._trapped_seen:
                continue
            self._trapped_seen.add(key)
            diag = Diagnostic(
                kind=DiagnosticKind.TRAPPED_FRAGMENT,
                step=t,
                group_id=g,
                link_id=int(l),
                value=float(self.state.frag[l, g]),
                message=(
                    f"no feasible downstream link for route "
                    f"'{self.groups[g].route}'"
                ),
            )
            self.diagnostics.append(diag)
            logger.debug("%s", diag)

    def _drain_sinks(self, t: int) -> None:
        s = self.state
        gate = self.numerics.gate_correction
        for l in np.flatnonzero(self.net.is_sink):
            for g in np.flatnonzero(s.frag[l] > 0.0):
                size = float(s.frag[l, g])
                diag = self.groups[g].add_travel_time(t, size, gate, link_id=int(l))
                if diag is not None:
                    self.diagnostics.append(diag)
                    logger.debug("%s", diag)
                s.total_exited += size
            s.frag[l, :] = 0.0

    def step(self) -> SimState:
        """Advance the simulation by one interval.

        Returns the updated SimState.
        """
        s = self.state
        net = self.net
        t = s.step
        if self.status == RunStatus.INITIALIZED:
            self.status = RunStatus.RUNNING

        # 1. Departures
        self._load_sources(t)

        # 2. Cell speeds and critical values
        s.acc = s.frag.sum(axis=1)
        self._update_cells()

        # 3. Route potentials and splits
        s.potential = compute_potential_field(net, s.vel, self.params.mu)

        # 4.-5. Capacities and sending allocations
        s.sending = self.flow_model.compute_sending_capacity(
            s.acc, s.vel, s.crit_acc, s.crit_vel, net)
        s.receiving = self.flow_model.compute_receiving_capacity(
            s.acc, s.vel, s.crit_acc, s.crit_vel, net)
        flow = self.flow_model.compute_flow(
            s.frag, s.acc, s.sending, s.receiving,
            s.potential.split, self.group_route, net,
        )
        s.flow = flow
        s.cand_inflow = flow.cand_inflow
        s.inflow = flow.inflow
        s.outflow = flow.outflow
        if flow.trapped.any():
            self._report_trapped(t, flow)

        # 6. Propagation
        s.total_dust += self.flow_model.apply(s.frag, flow, net)

        # 7. Sinks
        self._drain_sinks(t)

        s.acc = s.frag.sum(axis=1)
        s.step += 1
        return s

    def iterate(self) -> Iterator[SimState]:
        """Step until clearance or the time limit, yielding after each step.

        The run has cleared once the network holds less than ``abs_tol``
        people after the last departure.
        """
        tol = self.numerics.abs_tol
        while self.state.step <= self.horizon:
            t = self.state.step
            yield self.step()
            if self.state.total_accumulation < tol and t > self.last_departure:
                self.status = RunStatus.CONVERGED
                return
        self.status = RunStatus.TIME_LIMIT_EXCEEDED
        self._report_undelivered()

    def _report_undelivered(self) -> None:
        s = self.state
        inside = s.frag.sum(axis=0)
        for g in np.flatnonzero(inside >= self.numerics.abs_tol):
            diag = Diagnostic(
                kind=DiagnosticKind.UNDELIVERED_DEMAND,
                step=s.step,
                group_id=int(g),
                value=float(inside[g]),
                message=(
                    f"{inside[g]:.4g} people of route '{self.groups[g].route}' "
                    f"still inside at the time limit"
                ),
            )
            self.diagnostics.append(diag)
            logger.debug("%s", diag)

    def simulate(self) -> SimulationResult:
        """Run from time zero until clearance or the time limit."""
        self.reset()
        for _ in self.iterate():
            pass
        return self.finish()

    def finish(self) -> SimulationResult:
        """Compute group travel-time statistics and collect the result."""
        for g in self.groups:
            g.compute_travel_time_stats(self.net.delta_t)

        result = SimulationResult(
            status=self.status,
            steps=self.state.step,
            delta_t=self.net.delta_t,
            groups=self.groups,
            diagnostics=list(self.diagnostics),
            total_entered=self.state.total_entered,
            total_exited=self.state.total_exited,
            total_dust=self.state.total_dust,
        )
        logger.info(
            "Simulation %s after %d steps: %.1f of %.1f people delivered",
            self.status.name, result.steps, result.total_delivered,
            result.total_demand,
        )
        if self.diagnostics:
            logger.warning("Simulation diagnostics: %s", summarize(self.diagnostics))
        return result

    # --- Convenience accessors ---

    @property
    def delta_t(self) -> float:
        return self.net.delta_t

    @property
    def time(self) -> float:
        """Simulated time in seconds."""
        return self.state.step * self.net.delta_t

    def get_link_accumulation(self, link_id: LinkID) -> float:
        return float(self.state.acc[link_id])

    def get_link_velocity(self, link_id: LinkID) -> float:
        """Non-dimensional velocity of the last step."""
        return float(self.state.vel[link_id])

    def get_link_flows(self, link_id: LinkID) -> tuple[float, float]:
        """Total (inflow, outflow) of the last step."""
        return float(self.state.inflow[link_id]), float(self.state.outflow[link_id])

    def get_cell_accumulation(self, cell: str) -> float:
        idx = self.net.cell_index[cell]
        return float(self.state.acc[self.net.link_cell == idx].sum())

    def get_cell_accumulations(self) -> np.ndarray:
        return np.bincount(self.net.link_cell, weights=self.state.acc,
                           minlength=self.net.n_cells)

    def get_node_potential(self, route: str, node_id: int) -> float:
        """Potential of the last step, NaN if undefined."""
        if self.state.potential is None:
            return float("nan")
        return float(self.state.potential.potential[self.net.route_id(route), node_id])

    def get_route_split(self, route: str, link_id: LinkID) -> float:
        """Split fraction into ``link_id`` of the last step, NaN if infeasible."""
        if self.state.potential is None:
            return float("nan")
        return float(self.state.potential.split[self.net.route_id(route), link_id])

    def get_fragments(self, link_id: LinkID) -> dict[GroupID, Fragment]:
        """Fragments currently on a link, with their last sending allocation."""
        s, net = self.state, self.net
        frags: dict[GroupID, Fragment] = {}
        conns = np.flatnonzero(net.conn_from == link_id)
        for g in np.flatnonzero(s.frag[link_id] > 0.0):
            frag = Fragment(
                group_id=GroupID(int(g)),
                link_id=link_id,
                size=float(s.frag[link_id, g]),
            )
            if s.flow is not None:
                cols = np.flatnonzero(s.flow.active == g)
                if len(cols):
                    for c in conns:
                        cap = float(s.flow.alloc[c, cols[0]])
                        if cap > 0.0:
                            frag.send_cap[LinkID(int(net.conn_to[c]))] = cap
            frags[GroupID(int(g))] = frag
        return frags

    def get_total_accumulation(self) -> float:
        """Total people in the network."""
        return self.state.total_accumulation

    def get_network_metrics(self) -> dict:
        """Return a dict of network-wide metrics.

        Keys: ``time``, ``step``, ``total_accumulation``, ``total_entered``,
        ``total_exited``, ``total_dust``, ``active_groups``.
        """
        s = self.state
        return {
            "time": self.time,
            "step": s.step,
            "total_accumulation": s.total_accumulation,
            "total_entered": s.total_entered,
            "total_exited": s.total_exited,
            "total_dust": s.total_dust,
            "active_groups": int((s.frag > 0.0).any(axis=0).sum()),
        }

    # --- Observations ---

    def log_likelihood(
        self,
        mode: CalibrationMode | str = CalibrationMode.TRAVEL_TIME_DISTRIBUTION,
        agg_period: float | None = None,
    ) -> float:
        """Log-likelihood of the observed pedestrians after ``simulate()``."""
        return log_likelihood(
            mode, self.pedestrians, self.groups, self.net.delta_t, agg_period,
        )

    def observed_travel_times(self) -> np.ndarray:
        return np.array([p.travel_time for p in self.pedestrians], dtype=FLOAT)

    def pedestrian_travel_time_mean(self) -> np.ndarray:
        """Simulated mean travel time (s) of every observed pedestrian."""
        return pedestrian_table(
            self.pedestrians, self.groups, self.net.delta_t
        )["travel_time_sim"].to_numpy(dtype=FLOAT)

    def pedestrian_travel_time_std(self) -> np.ndarray:
        """Simulated travel-time standard deviation (s) of every pedestrian."""
        return pedestrian_table(
            self.pedestrians, self.groups, self.net.delta_t
        )["travel_time_std_sim"].to_numpy(dtype=FLOAT)


def simulate(
    network: Network,
    params: Parameters,
    demand: Sequence[DemandEntry] | None = None,
    pedestrians: Sequence[Pedestrian] | None = None,
    numerics: NumericConfig | None = None,
) -> SimulationResult:
    """Build a fresh engine and run it once."""
    engine = SimulationEngine(network, params, demand=demand,
                              pedestrians=pedestrians, numerics=numerics)
    return engine.simulate()
