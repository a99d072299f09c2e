"""Route potentials and logit route split.

For every route the potential of a node is its minimum non-dimensional
travel time to the route's destination node, obtained with Dijkstra on the
reversed link graph (edge weight ``rel_length / velocity``) restricted to the
nodes of the route.  Split fractions then distribute the people leaving a
node over its out-links with a multinomial logit on the potentials of the
links' destination nodes.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field

import numpy as np

from .network import CompiledNetwork
from .types import FLOAT

logger = logging.getLogger(__name__)


@dataclass
class PotentialField:
    """Potentials and split fractions of all routes for one time step.

    ``potential[r, v]`` is NaN where node ``v`` carries no potential for route
    ``r``.  The destination node of every sink link other than the route's
    own destination, in or outside the route, holds ``excluded_potential``.
    ``split[r, l]`` is NaN where link ``l`` is not an option for route
    ``r`` (its origin node has no split or its destination node no potential).
    ``dead_ends[r]`` lists nodes whose every feasible out-link leads to an
    unreachable or excluded node.
    """
    potential: np.ndarray          # shape (n_routes, n_nodes)
    split: np.ndarray              # shape (n_routes, n_links)
    dead_ends: list[np.ndarray] = field(default_factory=list)

    def defined(self, route: int) -> np.ndarray:
        return ~np.isnan(self.potential[route])


def link_weights(net: CompiledNetwork, velocity: np.ndarray) -> np.ndarray:
    """Non-dimensional travel time of every link; ``inf`` at zero velocity."""
    with np.errstate(divide="ignore"):
        return net.rel_length / velocity


def compute_route_potential(
    net: CompiledNetwork, route: int, weights: np.ndarray
) -> np.ndarray:
    """Dijkstra from the destination of ``route`` over reversed links.

    Nodes of the route start at the unreachable sentinel.  Destination nodes
    of sink links other than this route's destination are pinned to the
    excluded potential and never relaxed.  Equal potentials are settled in
    increasing node index order.
    """
    num = net.numerics
    dest = int(net.route_dest_node[route])
    pot = np.full(net.n_nodes, np.nan, dtype=FLOAT)
    in_route = net.route_node_mask[route]
    pot[in_route] = num.unreachable_potential

    pinned = net.is_source_sink_node.copy()
    pinned[dest] = False
    pot[pinned] = num.excluded_potential

    pot[dest] = 0.0
    settled = pinned.copy()
    heap: list[tuple[float, int]] = [(0.0, dest)]
    while heap:
        p, v = heapq.heappop(heap)
        if settled[v]:
            continue
        settled[v] = True
        for link, u in net.node_in_orig[v]:
            if settled[u] or not in_route[u]:
                continue
            cand = p + weights[link]
            if cand < pot[u]:
                pot[u] = cand
                heapq.heappush(heap, (cand, int(u)))
    return pot


def compute_split(
    net: CompiledNetwork, potential: np.ndarray, mu: float
) -> tuple[np.ndarray, np.ndarray]:
    """Logit split fractions for one route.

    Returns ``(split, dead_end_nodes)``.  ``split`` has length ``n_links``;
    infeasible links are NaN, fractions below the cut-off are exactly 0.
    """
    num = net.numerics
    n_nodes = net.n_nodes
    orig = net.link_orig_node
    p_dest = potential[net.link_dest_node]
    feasible = ~np.isnan(p_dest) & ~np.isnan(potential[orig])

    # Minimum destination potential per origin node, for a stable exponent
    node_min = np.full(n_nodes, np.inf, dtype=FLOAT)
    np.minimum.at(node_min, orig[feasible], p_dest[feasible])
    reachable = node_min < num.excluded_potential
    dead_ends = np.flatnonzero(np.isfinite(node_min) & ~reachable)

    usable = feasible & reachable[orig]
    weights = np.zeros(net.n_links, dtype=FLOAT)
    with np.errstate(over="ignore", invalid="ignore"):
        weights[usable] = np.exp(
            -mu * (p_dest[usable] - node_min[orig[usable]])
        )
    denom = np.zeros(n_nodes, dtype=FLOAT)
    np.add.at(denom, orig[usable], weights[usable])

    split = np.full(net.n_links, np.nan, dtype=FLOAT)
    split[usable] = weights[usable] / denom[orig[usable]]
    split[usable & (split < num.split_cutoff)] = 0.0
    return split, dead_ends


def compute_potential_field(
    net: CompiledNetwork, velocity: np.ndarray, mu: float | None = None
) -> PotentialField:
    """Potentials and splits of all routes for link velocities ``velocity``."""
    mu = net.params.mu if mu is None else mu
    weights = link_weights(net, velocity)
    potential = np.empty((net.n_routes, net.n_nodes), dtype=FLOAT)
    split = np.empty((net.n_routes, net.n_links), dtype=FLOAT)
    dead_ends: list[np.ndarray] = []
    for r in range(net.n_routes):
        potential[r] = compute_route_potential(net, r, weights)
        split[r], dead = compute_split(net, potential[r], mu)
        dead_ends.append(dead)
    return PotentialField(potential=potential, split=split, dead_ends=dead_ends)
