"""Pedestrian crossing generator: two perpendicular corridors.

Plus-shaped layout: the arms and the crossing fill a 3x3 block of square
cells, with one gate cell beyond the end of each arm::

              G_N
              A_N
    G_W  A_W  X   A_E  G_E
              A_S
              G_S

The arms ``A_*`` and the crossing ``X`` form the zone ``center``; the gates
form the zones ``north``, ``south``, ``east`` and ``west``.  Every link is
bidirectional, so the crossing cell carries four streams.
"""

from __future__ import annotations

import math

from ..core.demand import DemandEntry
from ..core.network import Network
from ..core.parameters import Parameters
from ..core.types import NONE_CELL, FunDiagKind
from .from_dict import Scenario

ROUTES = {
    "WE": ["west", "center", "east"],
    "EW": ["east", "center", "west"],
    "NS": ["north", "center", "south"],
    "SN": ["south", "center", "north"],
}


def create_crossing_network(cell_size: float = 3.0) -> Network:
    """Create the crossing network with the four through routes."""
    net = Network()
    a = cell_size

    def square(col: int, row: int) -> list[tuple[float, float]]:
        x0, y0 = col * a, row * a
        return [(x0, y0), (x0 + a, y0), (x0 + a, y0 + a), (x0, y0 + a)]

    area = a * a
    net.add_cell("G_W", "west", math.inf, square(0, 2))
    net.add_cell("A_W", "center", area, square(1, 2))
    net.add_cell("X", "center", area, square(2, 2))
    net.add_cell("A_E", "center", area, square(3, 2))
    net.add_cell("G_E", "east", math.inf, square(4, 2))
    net.add_cell("G_N", "north", math.inf, square(2, 4))
    net.add_cell("A_N", "center", area, square(2, 3))
    net.add_cell("A_S", "center", area, square(2, 1))
    net.add_cell("G_S", "south", math.inf, square(2, 0))

    east_west = ["G_W", "A_W", "X", "A_E", "G_E"]
    north_south = ["G_N", "A_N", "X", "A_S", "G_S"]
    for chain, (orig_dir, dest_dir) in ((east_west, ("W", "E")),
                                        (north_south, ("N", "S"))):
        for i, name in enumerate(chain):
            orig = chain[i - 1] if i > 0 else NONE_CELL
            dest = chain[i + 1] if i < len(chain) - 1 else NONE_CELL
            net.add_link(name, orig, dest, orig_dir, dest_dir, length=a,
                         bidirectional=True)

    for name, zones in ROUTES.items():
        net.add_route(name, zones)
    return net


def create_crossing(
    cell_size: float = 3.0,
    n_departures: int = 20,
    group_size: float = 3.0,
    params: Parameters | None = None,
) -> Scenario:
    """Crossing scenario with the same demand on all four routes."""
    net = create_crossing_network(cell_size)
    demand = [
        DemandEntry(route=route, dep_time=t, size=group_size)
        for t in range(n_departures)
        for route in ROUTES
    ]
    params = params or Parameters(FunDiagKind.SBFD, vf=1.34, shape=(0.29, 0.1),
                                  mu=2.0, cfl=0.9)
    return Scenario(network=net, params=params, demand=demand, name="crossing")
