"""Tests for the simulation engine: round trip, conservation, termination."""

import math

import numpy as np
import pytest

from anisoped.core.demand import DemandEntry, Pedestrian
from anisoped.core.diagnostics import DiagnosticKind
from anisoped.core.engine import RunStatus, SimulationEngine, simulate
from anisoped.core.network import Network
from anisoped.core.parameters import NumericConfig, Parameters
from anisoped.core.potential import link_weights
from anisoped.core.types import NONE_CELL, FunDiagKind, LinkID
from anisoped.networks.corridor import create_corridor, create_corridor_network
from anisoped.networks.crossing import create_crossing


def _zero_params(vf=1.0, mu=1.0):
    return Parameters(FunDiagKind.ZERO, vf=vf, mu=mu, cfl=1.0)


def _make_round_trip_engine(size=2.0, **kwargs) -> SimulationEngine:
    """Unidirectional 3-cell corridor without congestion, one group at t=0."""
    net = create_corridor_network(3, bidirectional=False)
    return SimulationEngine(
        network=net,
        params=_zero_params(**kwargs),
        demand=[DemandEntry("WE", 0, size)],
    )


def _make_shortcut_network() -> Network:
    """Source gate leading straight into the sink gate."""
    net = Network()
    net.add_cell("G_W", "west")
    net.add_cell("G_E", "east")
    net.add_link("G_W", NONE_CELL, "G_E", "W", "E", length=1.0)
    net.add_link("G_E", "G_W", NONE_CELL, "W", "E", length=1.0)
    net.add_route("WE", ["west", "east"])
    return net


def _make_dead_end_network() -> Network:
    net = Network()
    net.add_cell("G_W", "west")
    net.add_cell("C1", "mid", 4.0)
    net.add_cell("C2", "mid", 4.0)
    net.add_cell("G_E", "east")
    net.add_link("G_W", NONE_CELL, "C1", "W", "E", length=2.0)
    net.add_link("C1", "G_W", "C2", "W", "E", length=2.0)
    net.add_link("G_E", "C2", NONE_CELL, "W", "E", length=2.0)
    net.add_route("WE", ["west", "mid", "east"])
    return net


class TestRoundTrip:
    def test_single_group(self):
        """One group crosses three cells in one interval net of the gates."""
        engine = _make_round_trip_engine(vf=1.0)
        result = engine.simulate()

        assert result.status == RunStatus.CONVERGED
        assert result.steps == 4
        group = result.groups[0]
        assert group.arrivals == {1: pytest.approx(2.0)}
        stats = group.stats
        assert stats.mean == pytest.approx(engine.delta_t)
        assert stats.std == pytest.approx(0.0, abs=1e-9)
        assert stats.rel_loss == pytest.approx(1.0)
        assert result.total_delivered == pytest.approx(2.0)
        assert result.diagnostics == []

    def test_delta_t_from_free_flow_speed(self):
        engine = _make_round_trip_engine(vf=1.34)
        assert engine.delta_t == pytest.approx(2.0 / 1.34)
        result = engine.simulate()
        assert result.groups[0].stats.mean == pytest.approx(2.0 / 1.34)

    def test_people_move_one_link_per_step(self):
        engine = _make_round_trip_engine()
        engine.reset()
        for t in range(3):
            engine.step()
            assert engine.get_link_accumulation(LinkID(t + 1)) == pytest.approx(2.0)
            assert engine.get_total_accumulation() == pytest.approx(2.0)
        engine.step()
        assert engine.get_total_accumulation() == pytest.approx(0.0)

    def test_module_simulate(self):
        result = simulate(
            create_corridor_network(3, bidirectional=False),
            _zero_params(),
            demand=[DemandEntry("WE", 0, 1.0), DemandEntry("WE", 2, 1.0)],
        )
        assert result.status == RunStatus.CONVERGED
        assert [g.arrivals for g in result.groups] == [
            {1: pytest.approx(1.0)}, {1: pytest.approx(1.0)}
        ]


class TestConservation:
    def test_crossing_conserves_people(self):
        scenario = create_crossing(n_departures=5, group_size=2.0)
        engine = scenario.engine()
        engine.reset()
        for state in engine.iterate():
            inside = state.frag.sum()
            assert state.total_entered == pytest.approx(
                inside + state.total_exited + state.total_dust, abs=1e-9)
            assert np.all(state.frag >= 0.0)
        result = engine.finish()
        assert result.status == RunStatus.CONVERGED
        assert abs(result.total_dust) < 1e-3
        assert result.total_delivered == pytest.approx(result.total_demand, rel=1e-4)

    def test_crossing_everyone_reaches_own_exit(self):
        scenario = create_crossing(n_departures=3, group_size=2.0)
        result = scenario.engine().simulate()
        for g in result.groups:
            assert g.stats.rel_loss == pytest.approx(1.0, rel=1e-4)
            assert g.stats.mean > 0.0

    def test_congestion_slows_travel(self):
        light = create_corridor(n_departures=1, group_size=1.0).engine().simulate()
        heavy = create_corridor(n_departures=1, group_size=40.0).engine().simulate()
        mean = lambda res: np.mean([g.stats.mean for g in res.groups])
        assert mean(heavy) > mean(light)


class TestTermination:
    def test_empty_demand_converges_immediately(self):
        engine = SimulationEngine(create_corridor_network(2), _zero_params(), demand=[])
        result = engine.simulate()
        assert result.status == RunStatus.CONVERGED
        assert result.steps == 1

    def test_time_limit(self):
        engine = SimulationEngine(
            create_corridor_network(3, bidirectional=False),
            _zero_params(),
            demand=[DemandEntry("WE", 0, 1.0)],
            numerics=NumericConfig(max_travel_time=2),
        )
        result = engine.simulate()
        assert result.status == RunStatus.TIME_LIMIT_EXCEEDED
        assert result.steps == 3
        assert result.groups[0].stats.rel_loss == 0.0
        assert math.isnan(result.groups[0].stats.mean)
        undelivered = result.diagnostics_of(DiagnosticKind.UNDELIVERED_DEMAND)
        assert len(undelivered) == 1
        assert undelivered[0].group_id == 0
        assert undelivered[0].value == pytest.approx(1.0)

    def test_gridlock_reports_undelivered_demand(self):
        """Heavy counterflow in a short corridor jams and never clears."""
        result = create_corridor(n_departures=10, group_size=5.0).engine().simulate()
        assert result.status == RunStatus.TIME_LIMIT_EXCEEDED
        undelivered = result.diagnostics_of(DiagnosticKind.UNDELIVERED_DEMAND)
        assert undelivered
        inside = sum(d.value for d in undelivered)
        assert result.total_delivered + inside + result.total_dust == pytest.approx(
            result.total_demand, abs=1e-4)

    def test_trapped_fragment_reported_once(self):
        engine = SimulationEngine(
            _make_dead_end_network(),
            _zero_params(),
            demand=[DemandEntry("WE", 0, 1.0)],
            numerics=NumericConfig(max_travel_time=5),
        )
        result = engine.simulate()
        assert result.status == RunStatus.TIME_LIMIT_EXCEEDED
        trapped = result.diagnostics_of(DiagnosticKind.TRAPPED_FRAGMENT)
        assert len(trapped) == 1
        assert trapped[0].link_id == 0
        assert engine.get_link_accumulation(LinkID(0)) == pytest.approx(1.0)


class TestDiagnostics:
    def test_negative_travel_time(self):
        """Arrivals before the gate correction are reported, not recorded."""
        engine = SimulationEngine(
            _make_shortcut_network(), _zero_params(),
            demand=[DemandEntry("WE", 0, 3.0)],
        )
        result = engine.simulate()
        negative = result.diagnostics_of(DiagnosticKind.NEGATIVE_TRAVEL_TIME)
        assert len(negative) == 1
        assert negative[0].value == -2.0
        assert result.groups[0].arrivals == {}
        assert result.total_exited == pytest.approx(3.0)
        assert result.status == RunStatus.CONVERGED


class TestEngineState:
    def test_update_params_is_idempotent(self):
        scenario = create_corridor(n_departures=3)
        engine = scenario.engine()
        first = engine.simulate()
        first_means = [g.stats.mean for g in first.groups]
        engine.update_params(scenario.params.to_vector())
        second = engine.simulate()
        assert [g.stats.mean for g in second.groups] == pytest.approx(first_means)

    def test_update_params_changes_time_step(self):
        engine = _make_round_trip_engine(vf=1.0)
        engine.update_params([2.0, 1.0])
        assert engine.params.vf == 2.0
        assert engine.delta_t == pytest.approx(1.0)
        assert engine.state.step == 0

    def test_with_params_leaves_original(self):
        engine = _make_round_trip_engine(vf=1.0)
        other = engine.with_params([2.0, 1.0])
        assert other.delta_t == pytest.approx(1.0)
        assert engine.delta_t == pytest.approx(2.0)

    def test_demand_from_pedestrians(self):
        peds = [Pedestrian("WE", 0.1, 2.0), Pedestrian("WE", 0.5, 2.1),
                Pedestrian("WE", 2.5, 2.0)]
        engine = SimulationEngine(
            create_corridor_network(3, bidirectional=False), _zero_params(vf=1.0),
            pedestrians=peds,
        )
        # delta_t = 2 s: two pedestrians in interval 0, one in interval 1
        assert [(g.dep_time, g.size) for g in engine.groups] == [(0, 2.0), (1, 1.0)]

    def test_accessors(self):
        engine = _make_round_trip_engine()
        engine.reset()
        engine.step()
        assert engine.get_cell_accumulation("C1") == pytest.approx(2.0)
        assert engine.get_cell_accumulations().sum() == pytest.approx(2.0)
        assert engine.get_node_potential("WE", 0) == pytest.approx(5.0)
        assert engine.get_route_split("WE", LinkID(0)) == pytest.approx(1.0)
        frags = engine.get_fragments(LinkID(1))
        assert list(frags) == [0]
        assert frags[0].size == pytest.approx(2.0)
        metrics = engine.get_network_metrics()
        assert metrics["step"] == 1
        assert metrics["active_groups"] == 1
        assert metrics["total_entered"] == pytest.approx(2.0)


CROSSING_PARAMS = {
    "sbfd": Parameters(FunDiagKind.SBFD, vf=1.34, shape=(0.29, 0.1), mu=2.0, cfl=0.9),
    "weidmann": Parameters(FunDiagKind.WEIDMANN, vf=1.34, shape=(1.913, 5.4), mu=2.0, cfl=0.9),
    "drake": Parameters(FunDiagKind.DRAKE, vf=1.34, shape=(0.29,), mu=2.0, cfl=0.9),
}


class TestRunProperties:
    """Invariants checked after every step of full crossing runs."""

    @pytest.fixture(params=sorted(CROSSING_PARAMS))
    def engine(self, request):
        scenario = create_crossing(n_departures=5, group_size=2.0,
                                   params=CROSSING_PARAMS[request.param])
        engine = scenario.engine()
        engine.reset()
        return engine

    def test_capacities_respected(self, engine):
        for state in engine.iterate():
            assert np.all(state.inflow <= state.receiving + 1e-9)
            assert np.all(state.outflow <= state.sending + 1e-9)
            assert np.all(state.frag >= 0.0)
        assert engine.status == RunStatus.CONVERGED

    def test_potentials_form_shortest_path_tree(self, engine):
        net = engine.net
        excluded = net.numerics.excluded_potential
        orig, dest = net.link_orig_node, net.link_dest_node
        for state in engine.iterate():
            weights = link_weights(net, state.vel)
            for r in range(net.n_routes):
                pot = state.potential.potential[r]
                target = net.route_dest_node[r]
                both = ~np.isnan(pot[orig]) & ~np.isnan(pot[dest])
                free = both & ~(net.is_source_sink_node[orig] & (orig != target))
                # no link offers a shortcut
                with np.errstate(over="ignore"):
                    via = pot[dest] + weights
                    bound = via * (1 + 1e-12)
                assert np.all(pot[orig[free]] <= bound[free])
                # every reached node has a tight out-link
                for u in np.flatnonzero(pot < excluded):
                    if u == target:
                        continue
                    out = free & (orig == u)
                    assert via[out].min() == pytest.approx(pot[u], rel=1e-12)

    def test_splits_sum_to_one(self, engine):
        net = engine.net
        for state in engine.iterate():
            split = state.potential.split
            for r in range(net.n_routes):
                usable = ~np.isnan(split[r])
                total = np.zeros(net.n_nodes)
                np.add.at(total, net.link_orig_node[usable], split[r][usable])
                nodes = np.unique(net.link_orig_node[usable])
                np.testing.assert_allclose(total[nodes], 1.0, atol=1e-12)
