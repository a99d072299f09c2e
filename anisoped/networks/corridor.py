"""Straight corridor generator.

Layout (west to east)::

    G_W | C1 | C2 | ... | Cn | G_E

``G_W`` and ``G_E`` are gates of infinite area in the zones ``west`` and
``east``; the real cells ``C1..Cn`` form the zone ``corridor``.
"""

from __future__ import annotations

import math

from ..core.demand import DemandEntry
from ..core.network import Network
from ..core.parameters import Parameters
from ..core.types import NONE_CELL, FunDiagKind
from .from_dict import Scenario


def create_corridor_network(
    n_cells: int = 3,
    cell_length: float = 2.0,
    cell_width: float = 2.0,
    bidirectional: bool = True,
) -> Network:
    """Create the corridor network.

    With ``bidirectional=True`` every link has a reversed twin and both the
    ``WE`` and the ``EW`` route exist; otherwise only ``WE``.
    """
    if n_cells < 1:
        raise ValueError(f"Corridor needs at least one cell, got {n_cells}")
    net = Network()
    names = ["G_W"] + [f"C{i}" for i in range(1, n_cells + 1)] + ["G_E"]

    def rect(i: int) -> list[tuple[float, float]]:
        x0 = (i - 1) * cell_length
        return [(x0, 0.0), (x0 + cell_length, 0.0),
                (x0 + cell_length, cell_width), (x0, cell_width)]

    net.add_cell("G_W", zone="west", area=math.inf, polygon=rect(0))
    for i in range(1, n_cells + 1):
        net.add_cell(f"C{i}", zone="corridor", area=cell_length * cell_width,
                     polygon=rect(i))
    net.add_cell("G_E", zone="east", area=math.inf, polygon=rect(n_cells + 1))

    for i, name in enumerate(names):
        orig = names[i - 1] if i > 0 else NONE_CELL
        dest = names[i + 1] if i < len(names) - 1 else NONE_CELL
        net.add_link(name, orig, dest, "W", "E", length=cell_length,
                     bidirectional=bidirectional)

    net.add_route("WE", ["west", "corridor", "east"])
    if bidirectional:
        net.add_route("EW", ["east", "corridor", "west"])
    return net


def create_corridor(
    n_cells: int = 3,
    cell_length: float = 2.0,
    cell_width: float = 2.0,
    bidirectional: bool = True,
    n_departures: int = 10,
    group_size: float = 2.0,
    params: Parameters | None = None,
) -> Scenario:
    """Corridor scenario with ``n_departures`` groups per route."""
    net = create_corridor_network(n_cells, cell_length, cell_width, bidirectional)
    demand = [
        DemandEntry(route=route, dep_time=t, size=group_size)
        for t in range(n_departures)
        for route in net.routes
    ]
    params = params or Parameters(FunDiagKind.DRAKE, vf=1.34, shape=(0.29,),
                                  mu=2.0, cfl=0.9)
    return Scenario(network=net, params=params, demand=demand, name="corridor")
