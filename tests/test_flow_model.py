"""Tests for link capacities and fragment propagation."""

import numpy as np
import pytest

from anisoped.core.errors import ConservationError
from anisoped.core.flow_model import AnisotropicCTMFlowModel, FlowResult
from anisoped.core.parameters import Parameters
from anisoped.core.potential import compute_potential_field
from anisoped.core.types import FunDiagKind
from anisoped.networks.corridor import create_corridor_network


def _make_corridor(bidirectional=False, fun_diag=FunDiagKind.DRAKE, cfl=1.0):
    shape = (0.29,) if fun_diag == FunDiagKind.DRAKE else ()
    params = Parameters(fun_diag, vf=1.34, shape=shape, mu=1.0, cfl=cfl)
    return create_corridor_network(3, bidirectional=bidirectional).compile(params)


def _capacities(model, cnet, acc):
    """Evaluate the cell diagrams for ``acc`` and return all link capacities."""
    vel = np.ones(cnet.n_links)
    crit_acc = np.full(cnet.n_links, np.inf)
    crit_vel = np.ones(cnet.n_links)
    for c, fd in enumerate(cnet.fun_diags):
        links = np.flatnonzero(cnet.link_cell == c)
        if len(links) == 0:
            continue
        v, ca, cv = fd.evaluate(acc[links])
        vel[links], crit_acc[links], crit_vel[links] = v, ca, cv
    sending = model.compute_sending_capacity(acc, vel, crit_acc, crit_vel, cnet)
    receiving = model.compute_receiving_capacity(acc, vel, crit_acc, crit_vel, cnet)
    return vel, sending, receiving


class TestCapacity:
    def test_free_flow_sends_everything(self):
        """Empty-ish cells with cfl 1 send their whole accumulation."""
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO)
        model = AnisotropicCTMFlowModel()
        acc = np.array([3.0, 2.0, 0.0, 1.0, 0.0])
        _, sending, receiving = _capacities(model, cnet, acc)
        np.testing.assert_allclose(sending, acc)
        assert np.all(np.isinf(receiving))

    def test_congested_link_sends_critical_capacity(self):
        cnet = _make_corridor()
        model = AnisotropicCTMFlowModel()
        crit = 4.0 / np.sqrt(2 * 0.29)
        acc = np.array([0.0, 2.0 * crit, 0.5 * crit, 0.0, 0.0])
        vel, sending, receiving = _capacities(model, cnet, acc)
        crit_cap = crit * np.exp(-0.5)
        # congested: sends at capacity, receives its hydrodynamic flow
        assert sending[1] == pytest.approx(crit_cap)
        assert receiving[1] == pytest.approx(acc[1] * vel[1])
        # free: sends its hydrodynamic flow, receives at capacity
        assert sending[2] == pytest.approx(acc[2] * vel[2])
        assert receiving[2] == pytest.approx(crit_cap)

    def test_cfl_and_length_scale_capacity(self):
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO, cfl=0.5)
        model = AnisotropicCTMFlowModel()
        acc = np.array([4.0, 0.0, 0.0, 0.0, 0.0])
        _, sending, _ = _capacities(model, cnet, acc)
        assert sending[0] == pytest.approx(2.0)


class TestPropagation:
    def _step(self, cnet, frag, group_route=None):
        model = AnisotropicCTMFlowModel()
        acc = frag.sum(axis=1)
        vel, sending, receiving = _capacities(model, cnet, acc)
        pf = compute_potential_field(cnet, vel)
        if group_route is None:
            group_route = np.zeros(frag.shape[1], dtype=int)
        flow = model.compute_flow(frag, acc, sending, receiving, pf.split,
                                  group_route, cnet)
        return model, flow, sending, receiving

    def test_flows_respect_capacities(self):
        cnet = _make_corridor()
        frag = np.zeros((cnet.n_links, 2))
        frag[0, 0] = 30.0
        frag[1, 0] = 10.0
        frag[1, 1] = 8.0
        frag[2, 1] = 12.0
        _, flow, sending, receiving = self._step(cnet, frag)
        assert np.all(flow.outflow <= sending + 1e-9)
        assert np.all(flow.inflow <= receiving + 1e-9)

    def test_apply_conserves_people(self):
        cnet = _make_corridor()
        frag = np.zeros((cnet.n_links, 2))
        frag[0, 0] = 30.0
        frag[1, 1] = 8.0
        frag[2, 0] = 5.0
        model, flow, _, _ = self._step(cnet, frag)
        before = frag.sum()
        model.apply(frag, flow, cnet)
        assert frag.sum() == pytest.approx(before)
        assert np.all(frag >= 0.0)

    def test_inactive_groups_untouched(self):
        """Groups without people are not part of the propagation."""
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO)
        frag = np.zeros((cnet.n_links, 3))
        frag[0, 1] = 2.0
        _, flow, _, _ = self._step(cnet, frag)
        np.testing.assert_array_equal(flow.active, [1])
        assert flow.transfer.shape == (len(cnet.conn_from), 1)

    def test_split_by_route(self):
        """People split over both directions according to the route split."""
        cnet = _make_corridor(bidirectional=True, fun_diag=FunDiagKind.ZERO)
        frag = np.zeros((cnet.n_links, 1))
        frag[2, 0] = 1.0            # C1 heading east
        model, flow, _, _ = self._step(cnet, frag, np.array([cnet.route_id("WE")]))
        model.apply(frag, flow, cnet)
        # onwards to C2 (link 4) or back through C1 (link 3)
        assert frag[4, 0] + frag[3, 0] == pytest.approx(1.0)
        assert frag[4, 0] > frag[3, 0] > 0.0

    def test_negative_sending_raises(self):
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO)
        model = AnisotropicCTMFlowModel()
        frag = np.zeros((cnet.n_links, 1))
        frag[0, 0] = 1.0
        sending = np.array([-1.0, 0.0, 0.0, 0.0, 0.0])
        split = np.ones((1, cnet.n_links))
        with pytest.raises(ConservationError):
            model.compute_flow(frag, frag.sum(axis=1), sending,
                               np.full(cnet.n_links, np.inf), split,
                               np.zeros(1, dtype=int), cnet)

    def test_overdrawn_fragment_raises(self):
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO)
        n_conn = len(cnet.conn_from)
        frag = np.zeros((cnet.n_links, 1))
        frag[0, 0] = 1.0
        transfer = np.zeros((n_conn, 1))
        transfer[0, 0] = 2.0
        flow = FlowResult(
            alloc=transfer.copy(),
            transfer=transfer,
            active=np.array([0]),
            cand_inflow=np.zeros(cnet.n_links),
            inflow=np.zeros(cnet.n_links),
            outflow=np.zeros(cnet.n_links),
            trapped=np.zeros((cnet.n_links, 1), dtype=bool),
        )
        with pytest.raises(ConservationError):
            AnisotropicCTMFlowModel().apply(frag, flow, cnet)

    def test_residue_is_cleared_and_reported(self):
        cnet = _make_corridor(fun_diag=FunDiagKind.ZERO)
        n_conn = len(cnet.conn_from)
        frag = np.zeros((cnet.n_links, 1))
        frag[0, 0] = 1.0
        transfer = np.zeros((n_conn, 1))
        transfer[0, 0] = 1.0 - 5e-7
        flow = FlowResult(
            alloc=transfer.copy(),
            transfer=transfer,
            active=np.array([0]),
            cand_inflow=np.zeros(cnet.n_links),
            inflow=np.zeros(cnet.n_links),
            outflow=np.zeros(cnet.n_links),
            trapped=np.zeros((cnet.n_links, 1), dtype=bool),
        )
        removed = AnisotropicCTMFlowModel().apply(frag, flow, cnet)
        assert removed == pytest.approx(5e-7)
        assert frag[0, 0] == 0.0
        assert frag.sum() + removed == pytest.approx(1.0)

    def test_apply_without_residue_removes_nothing(self):
        cnet = _make_corridor()
        frag = np.zeros((cnet.n_links, 1))
        frag[0, 0] = 3.0
        model, flow, _, _ = self._step(cnet, frag)
        assert model.apply(frag, flow, cnet) == pytest.approx(0.0, abs=1e-12)
