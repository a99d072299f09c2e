"""Flow models for the pedestrian CTM.

``FlowModel`` is the abstract base class.  ``AnisotropicCTMFlowModel``
implements link capacities from the per-stream fundamental diagrams and the
demand-proportional, supply-rationed redistribution of fragments.

Fragments are held as a dense ``(n_links, n_groups)`` array: entry
``[l, g]`` is the number of people of group ``g`` on link ``l``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from .errors import ConservationError
from .network import CompiledNetwork
from .types import FLOAT, INT


@dataclass
class FlowResult:
    """Outcome of one propagation pass."""
    alloc: np.ndarray           # shape (n_conn, n_active), requested sending
    transfer: np.ndarray        # shape (n_conn, n_active), people moved
    active: np.ndarray          # int, group columns involved
    cand_inflow: np.ndarray     # shape (n_links,), requested inflow
    inflow: np.ndarray          # shape (n_links,), accepted inflow
    outflow: np.ndarray         # shape (n_links,)
    trapped: np.ndarray         # bool, shape (n_links, n_active)


class FlowModel(ABC):
    """Abstract flow model interface."""

    @abstractmethod
    def compute_sending_capacity(
        self,
        acc: np.ndarray,
        vel: np.ndarray,
        crit_acc: np.ndarray,
        crit_vel: np.ndarray,
        net: CompiledNetwork,
    ) -> np.ndarray:
        """People each link can *send* downstream in one interval."""

    @abstractmethod
    def compute_receiving_capacity(
        self,
        acc: np.ndarray,
        vel: np.ndarray,
        crit_acc: np.ndarray,
        crit_vel: np.ndarray,
        net: CompiledNetwork,
    ) -> np.ndarray:
        """People each link can *receive* from upstream in one interval."""

    @abstractmethod
    def compute_flow(
        self,
        frag: np.ndarray,
        acc: np.ndarray,
        sending: np.ndarray,
        receiving: np.ndarray,
        split: np.ndarray,
        group_route: np.ndarray,
        net: CompiledNetwork,
    ) -> FlowResult:
        """Compute the people moved across every link connection.

        Parameters
        ----------
        frag : ndarray, shape (n_links, n_groups)
        split : ndarray, shape (n_routes, n_links)
            Route split fractions, NaN where infeasible.
        group_route : ndarray, shape (n_groups,)
            Route index of every group.
        """

    @abstractmethod
    def apply(
        self, frag: np.ndarray, flow: FlowResult, net: CompiledNetwork
    ) -> float:
        """Move ``flow.transfer`` in ``frag`` (in place).

        Returns the number of people removed as numerical residue.
        """


class AnisotropicCTMFlowModel(FlowModel):
    """CTM with a unimodal, per-stream fundamental diagram.

    hydrodynamic flow:  H = cfl / rel_length * acc * vel
    critical capacity:  C = cfl / rel_length * crit_acc * crit_vel
    sending:            H if acc <= crit_acc else C
    receiving:          C if acc <= crit_acc else H
    """

    def _flows(self, acc, vel, crit_acc, crit_vel, net):
        factor = net.params.cfl / net.rel_length
        hydro = factor * acc * vel
        with np.errstate(invalid="ignore"):
            crit_cap = factor * crit_acc * crit_vel
        return hydro, crit_cap

    def compute_sending_capacity(self, acc, vel, crit_acc, crit_vel, net):
        hydro, crit_cap = self._flows(acc, vel, crit_acc, crit_vel, net)
        return np.where(acc <= crit_acc, hydro, crit_cap)

    def compute_receiving_capacity(self, acc, vel, crit_acc, crit_vel, net):
        hydro, crit_cap = self._flows(acc, vel, crit_acc, crit_vel, net)
        return np.where(acc <= crit_acc, crit_cap, hydro)

    def compute_flow(
        self,
        frag: np.ndarray,
        acc: np.ndarray,
        sending: np.ndarray,
        receiving: np.ndarray,
        split: np.ndarray,
        group_route: np.ndarray,
        net: CompiledNetwork,
    ) -> FlowResult:
        n_links = net.n_links
        if (sending < -net.numerics.abs_tol).any():
            bad = np.flatnonzero(sending < -net.numerics.abs_tol)
            raise ConservationError(
                f"Negative sending capacity on links {bad.tolist()}"
            )

        # Only groups with people in the network take part
        active = np.flatnonzero((frag > 0.0).any(axis=0))
        sub = frag[:, active]

        # 1. Demand-proportional share of each link's sending capacity
        share = np.zeros(n_links, dtype=FLOAT)
        occupied = acc > 0.0
        share[occupied] = sending[occupied] / acc[occupied]
        frag_flow = np.minimum(sub, sub * share[:, None])

        # 2. Split over downstream links by route
        conn_split = split[group_route[active]][:, net.conn_to].T   # (n_conn, n_active)
        conn_feasible = ~np.isnan(conn_split)
        alloc = frag_flow[net.conn_from] * np.where(conn_feasible, conn_split, 0.0)

        # People on a link with no feasible way on for their route
        has_exit = np.zeros(sub.shape, dtype=INT)
        np.add.at(has_exit, net.conn_from, conn_feasible.astype(INT))
        trapped = (sub > 0.0) & (has_exit == 0) & ~net.is_sink[:, None]

        # 3. Supply rationing per target link
        cand_inflow = np.zeros(n_links, dtype=FLOAT)
        np.add.at(cand_inflow, net.conn_to, alloc.sum(axis=1))
        ratio = np.ones(n_links, dtype=FLOAT)
        over = cand_inflow > receiving
        ratio[over] = receiving[over] / cand_inflow[over]
        transfer = alloc * ratio[net.conn_to][:, None]

        moved = transfer.sum(axis=1)
        inflow = np.zeros(n_links, dtype=FLOAT)
        outflow = np.zeros(n_links, dtype=FLOAT)
        np.add.at(inflow, net.conn_to, moved)
        np.add.at(outflow, net.conn_from, moved)

        return FlowResult(
            alloc=alloc,
            transfer=transfer,
            active=active,
            cand_inflow=cand_inflow,
            inflow=inflow,
            outflow=outflow,
            trapped=trapped,
        )

    def apply(
        self, frag: np.ndarray, flow: FlowResult, net: CompiledNetwork
    ) -> float:
        """Subtract all outgoing transfers first, then add incoming ones.

        A sending fragment left within ``abs_tol`` of zero is removed; the
        (signed) amount removed this way is returned.

        Raises
        ------
        ConservationError
            If a fragment would become negative beyond ``abs_tol``.
        """
        tol = net.numerics.abs_tol
        cols = flow.active
        sub = frag[:, cols]

        out = np.zeros_like(sub)
        np.add.at(out, net.conn_from, flow.transfer)
        sub -= out
        if (sub < -tol).any():
            links, groups = np.nonzero(sub < -tol)
            raise ConservationError(
                f"Negative fragment size {sub[links[0], groups[0]]:.3g} "
                f"on link {int(links[0])} for group {int(cols[groups[0]])}"
            )
        dust = (out > 0.0) & (sub <= tol)
        removed = float(sub[dust].sum())
        sub[dust] = 0.0

        np.add.at(sub, net.conn_to, flow.transfer)
        frag[:, cols] = sub
        return removed
