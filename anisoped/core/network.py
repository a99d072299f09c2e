"""Network topology: Cell, Link, Route, Node and Network.

The ``Network`` object holds the *logical* scenario: named cells, directed
links inside cells and named routes.  Calling ``network.compile(params)``
produces a ``CompiledNetwork`` with dense indices and the flat NumPy arrays
the simulation loop works on.  Compiling is a pure function of the network,
the parameters and the numeric settings, so a parameter update is a fresh
compile.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .errors import ConfigurationError, InvalidOrientationError
from .fundamental_diagram import FundamentalDiagram, make_fundamental_diagram
from .parameters import DEFAULT_NUMERICS, NumericConfig, Parameters
from .types import FLOAT, INT, NONE_CELL, CellID, LinkID, NodeID, RouteID

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logical topology dataclasses
# ---------------------------------------------------------------------------

@dataclass
class Cell:
    """A zone-tagged walkable area.  ``area=inf`` marks a source/sink gate."""
    name: str
    zone: str
    area: float = math.inf           # m^2
    polygon: list[tuple[float, float]] = field(default_factory=list)


@dataclass
class Link:
    """A directed flow channel inside ``cell`` from ``orig_cell`` to ``dest_cell``.

    ``orig_cell == "none"`` marks a source link and ``dest_cell == "none"`` a
    sink link.  ``length=None`` stands for the shortest link length of the
    network.
    """
    link_id: LinkID
    cell: str
    orig_cell: str
    dest_cell: str
    orig_dir: str
    dest_dir: str
    length: float | None = None      # metres

    @property
    def orientation(self) -> tuple[str, str]:
        return (self.orig_dir, self.dest_dir)

    @property
    def is_sink(self) -> bool:
        return self.dest_cell == NONE_CELL

    @property
    def is_source(self) -> bool:
        return self.orig_cell == NONE_CELL


@dataclass
class Route:
    """An ordered sequence of zones from origin to destination."""
    name: str
    zones: list[str]


@dataclass
class Node:
    """Vertex joining two adjacent cells (one may be ``"none"``)."""
    node_id: NodeID
    cells: frozenset[str]
    zones: frozenset[str]
    in_links: list[LinkID] = field(default_factory=list)
    out_links: list[LinkID] = field(default_factory=list)


# ---------------------------------------------------------------------------
# CompiledNetwork – dense indices and flat arrays
# ---------------------------------------------------------------------------

@dataclass
class CompiledNetwork:
    """Frozen network for one parameter set.

    Link-level arrays have length ``n_links``, node-level arrays ``n_nodes``,
    route-level arrays ``n_routes``.  Each distinct (cell, orientation) pair
    is a *stream*; the fundamental diagrams work on stream accumulations.
    """
    params: Parameters
    numerics: NumericConfig
    delta_t: float                  # seconds per interval
    min_length: float               # metres

    # --- cells ---
    cell_names: list[str]
    cell_zone: list[str]
    cell_area: np.ndarray           # m^2, inf for gates
    cell_polygon: list[list[tuple[float, float]]]
    fun_diags: list[FundamentalDiagram]
    cell_index: dict[str, CellID]

    # --- streams (cell, orientation) ---
    stream_cell: np.ndarray         # int, shape (n_streams,)
    stream_angle: np.ndarray        # degrees
    cell_stream_offset: np.ndarray  # int, shape (n_cells + 1,)

    # --- links ---
    links: list[Link]
    link_cell: np.ndarray           # int, containing cell
    link_stream: np.ndarray         # int, stream of the link
    link_length: np.ndarray         # metres
    rel_length: np.ndarray          # length / min_length
    link_orig_node: np.ndarray      # int
    link_dest_node: np.ndarray      # int
    is_sink: np.ndarray             # bool

    # --- link-to-link connections through nodes ---
    conn_from: np.ndarray           # int, upstream link
    conn_to: np.ndarray             # int, downstream link

    # --- nodes ---
    nodes: list[Node]
    node_in_orig: list[np.ndarray]  # per node: (in_link, orig_node) pairs
    is_source_sink_node: np.ndarray # bool, destination nodes of sink links

    # --- routes ---
    route_names: list[str]
    route_index: dict[str, RouteID]
    route_zones: list[list[str]]
    route_source_link: np.ndarray   # int
    route_sink_link: np.ndarray     # int
    route_orig_node: np.ndarray     # int
    route_dest_node: np.ndarray     # int
    route_node_mask: np.ndarray     # bool, shape (n_routes, n_nodes)

    @property
    def n_cells(self) -> int:
        return len(self.cell_names)

    @property
    def n_links(self) -> int:
        return len(self.links)

    @property
    def n_nodes(self) -> int:
        return len(self.nodes)

    @property
    def n_routes(self) -> int:
        return len(self.route_names)

    @property
    def n_streams(self) -> int:
        return len(self.stream_cell)

    def cell_streams(self, cell: int) -> slice:
        return slice(int(self.cell_stream_offset[cell]),
                     int(self.cell_stream_offset[cell + 1]))

    def route_id(self, name: str) -> RouteID:
        try:
            return self.route_index[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown route '{name}'. Available: {self.route_names}"
            ) from None

    def __repr__(self) -> str:
        return (
            f"CompiledNetwork({self.n_cells} cells, {self.n_links} links, "
            f"{self.n_nodes} nodes, {self.n_routes} routes, "
            f"delta_t={self.delta_t:.4g}s)"
        )


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

class Network:
    """Mutable network builder.  Call ``compile(params)`` to freeze."""

    def __init__(self) -> None:
        self.cells: dict[str, Cell] = {}
        self.links: dict[LinkID, Link] = {}
        self.routes: dict[str, Route] = {}
        self._next_link_id = 0

    # -- builder helpers -----------------------------------------------------

    def add_cell(
        self,
        name: str,
        zone: str,
        area: float = math.inf,
        polygon: Sequence[tuple[float, float]] | None = None,
    ) -> Cell:
        """Add a cell.  Gates (sources and sinks) have infinite area."""
        if name == NONE_CELL:
            raise ConfigurationError(f"Cell name '{NONE_CELL}' is reserved")
        if name in self.cells:
            raise ConfigurationError(f"Duplicate cell '{name}'")
        if not area > 0.0:
            raise ConfigurationError(
                f"Cell '{name}' must have a positive area, got {area}"
            )
        cell = Cell(
            name=name,
            zone=zone,
            area=float(area),
            polygon=[(float(x), float(y)) for x, y in (polygon or [])],
        )
        self.cells[name] = cell
        return cell

    def add_link(
        self,
        cell: str,
        orig_cell: str,
        dest_cell: str,
        orig_dir: str,
        dest_dir: str,
        length: float | None = None,
        bidirectional: bool = False,
    ) -> Link:
        """Add a directed link; ``bidirectional`` also adds the reversed link.

        The reversed link swaps origin and destination cells as well as the
        orientation.  Returns the forward link.
        """
        if length is not None and not length > 0.0:
            raise ConfigurationError(
                f"Link in cell '{cell}' must have a positive length, got {length}"
            )
        link = self._new_link(cell, orig_cell, dest_cell, orig_dir, dest_dir, length)
        if bidirectional:
            self._new_link(cell, dest_cell, orig_cell, dest_dir, orig_dir, length)
        return link

    def _new_link(self, cell, orig_cell, dest_cell, orig_dir, dest_dir, length) -> Link:
        lid = LinkID(self._next_link_id)
        self._next_link_id += 1
        link = Link(
            link_id=lid,
            cell=cell,
            orig_cell=orig_cell,
            dest_cell=dest_cell,
            orig_dir=str(orig_dir).upper(),
            dest_dir=str(dest_dir).upper(),
            length=None if length is None else float(length),
        )
        self.links[lid] = link
        return link

    def add_route(self, name: str, zones: Sequence[str]) -> Route:
        """Add a route through ``zones`` (origin zone first)."""
        if name in self.routes:
            raise ConfigurationError(f"Duplicate route '{name}'")
        if len(zones) < 1:
            raise ConfigurationError(f"Route '{name}' has no zones")
        route = Route(name=name, zones=list(zones))
        self.routes[name] = route
        return route

    @property
    def zones(self) -> set[str]:
        return {c.zone for c in self.cells.values()}

    def validate(self, numerics: NumericConfig | None = None) -> None:
        """Check references and orientations.

        Raises
        ------
        ConfigurationError
            Unknown cell or zone names, or a network without finite lengths.
        InvalidOrientationError
            Orientation pair absent from the angle table.
        """
        numerics = numerics or DEFAULT_NUMERICS
        if not self.links:
            raise ConfigurationError("Network has no links")
        for link in self.links.values():
            if link.cell not in self.cells:
                raise ConfigurationError(
                    f"Link {link.link_id} lies in unknown cell '{link.cell}'"
                )
            for end in (link.orig_cell, link.dest_cell):
                if end != NONE_CELL and end not in self.cells:
                    raise ConfigurationError(
                        f"Link {link.link_id} references unknown cell '{end}'"
                    )
            if link.orientation not in numerics.link_angles:
                raise InvalidOrientationError(
                    f"Link {link.link_id} in cell '{link.cell}' has invalid "
                    f"orientation {link.orig_dir}->{link.dest_dir}"
                )
        if all(link.length is None for link in self.links.values()):
            raise ConfigurationError(
                "At least one link needs an explicit length"
            )
        zones = self.zones
        for route in self.routes.values():
            unknown = [z for z in route.zones if z not in zones]
            if unknown:
                raise ConfigurationError(
                    f"Route '{route.name}' references unknown zone(s) {unknown}"
                )

    # -- compile to flat arrays ----------------------------------------------

    def compile(
        self,
        params: Parameters,
        numerics: NumericConfig | None = None,
    ) -> CompiledNetwork:
        """Compile the logical network for one parameter set.

        Parameters
        ----------
        params : Parameters
            Free-flow speed, CFL factor and fundamental diagram.
        numerics : NumericConfig, optional
            Tolerances and the orientation angle table.
        """
        numerics = numerics or DEFAULT_NUMERICS
        self.validate(numerics)

        # Cells
        cell_names = list(self.cells)
        cell_index = {name: CellID(i) for i, name in enumerate(cell_names)}
        cells = [self.cells[n] for n in cell_names]

        # Links in id order, lengths relative to the shortest one
        links = [self.links[k] for k in sorted(self.links)]
        if [l.link_id for l in links] != list(range(len(links))):
            raise ConfigurationError("Link ids must be 0..n_links-1")
        min_length = min(l.length for l in links if l.length is not None)
        link_length = np.array(
            [min_length if l.length is None else l.length for l in links],
            dtype=FLOAT,
        )
        rel_length = link_length / min_length
        delta_t = params.cfl * min_length / params.vf
        if not delta_t > 0.0:
            raise ConfigurationError(f"Time step must be positive, got {delta_t}")

        # Streams: distinct orientations per cell, in order of appearance
        cell_orients: list[list[tuple[str, str]]] = [[] for _ in cells]
        for l in links:
            orients = cell_orients[cell_index[l.cell]]
            if l.orientation not in orients:
                orients.append(l.orientation)
        offsets = np.zeros(len(cells) + 1, dtype=INT)
        offsets[1:] = np.cumsum([len(o) for o in cell_orients])
        stream_cell = np.repeat(np.arange(len(cells), dtype=INT),
                                [len(o) for o in cell_orients])
        stream_angle = np.array(
            [numerics.link_angles[o] for orients in cell_orients for o in orients],
            dtype=FLOAT,
        )
        link_cell = np.array([cell_index[l.cell] for l in links], dtype=INT)
        link_stream = np.array(
            [offsets[cell_index[l.cell]] + cell_orients[cell_index[l.cell]].index(l.orientation)
             for l in links],
            dtype=INT,
        )

        fun_diags = [
            make_fundamental_diagram(
                params.fun_diag,
                stream_angle[offsets[i]:offsets[i + 1]],
                c.area,
                params.shape,
                numerics,
            )
            for i, c in enumerate(cells)
        ]

        # Nodes: one per unordered pair of adjacent cells
        node_of: dict[frozenset[str], NodeID] = {}
        nodes: list[Node] = []

        def node_for(a: str, b: str) -> NodeID:
            key = frozenset((a, b))
            if key not in node_of:
                nid = NodeID(len(nodes))
                zones = frozenset(
                    self.cells[c].zone for c in key if c != NONE_CELL
                )
                node_of[key] = nid
                nodes.append(Node(node_id=nid, cells=key, zones=zones))
            return node_of[key]

        link_orig_node = np.empty(len(links), dtype=INT)
        link_dest_node = np.empty(len(links), dtype=INT)
        for l in links:
            o = node_for(l.orig_cell, l.cell)
            d = node_for(l.cell, l.dest_cell)
            link_orig_node[l.link_id] = o
            link_dest_node[l.link_id] = d
            nodes[o].out_links.append(l.link_id)
            nodes[d].in_links.append(l.link_id)
        n_nodes = len(nodes)

        node_in_orig = [
            np.array([(lid, link_orig_node[lid]) for lid in node.in_links],
                     dtype=INT).reshape(-1, 2)
            for node in nodes
        ]

        # Connections: link l feeds link m when l ends where m starts.
        # Sink links only drain.
        conn_from: list[int] = []
        conn_to: list[int] = []
        for l in links:
            if l.is_sink:
                continue
            for m in nodes[link_dest_node[l.link_id]].out_links:
                conn_from.append(l.link_id)
                conn_to.append(m)

        is_sink = np.array([l.is_sink for l in links], dtype=bool)
        is_source_sink_node = np.zeros(n_nodes, dtype=bool)
        is_source_sink_node[link_dest_node[is_sink]] = True

        # Routes
        route_names = list(self.routes)
        n_routes = len(route_names)
        route_source_link = np.empty(n_routes, dtype=INT)
        route_sink_link = np.empty(n_routes, dtype=INT)
        route_node_mask = np.zeros((n_routes, n_nodes), dtype=bool)
        link_zone = [self.cells[l.cell].zone for l in links]
        for r, name in enumerate(route_names):
            route = self.routes[name]
            zone_set = set(route.zones)
            for node in nodes:
                if node.zones & zone_set:
                    route_node_mask[r, node.node_id] = True
            sources = [l.link_id for l in links
                       if l.is_source and link_zone[l.link_id] == route.zones[0]]
            sinks = [l.link_id for l in links
                     if l.is_sink and link_zone[l.link_id] == route.zones[-1]]
            if not sources:
                raise ConfigurationError(
                    f"Route '{name}': no source link in origin zone "
                    f"'{route.zones[0]}'"
                )
            if not sinks:
                raise ConfigurationError(
                    f"Route '{name}': no sink link in destination zone "
                    f"'{route.zones[-1]}'"
                )
            route_source_link[r] = min(sources)
            route_sink_link[r] = min(sinks)

        net = CompiledNetwork(
            params=params,
            numerics=numerics,
            delta_t=float(delta_t),
            min_length=float(min_length),
            cell_names=cell_names,
            cell_zone=[c.zone for c in cells],
            cell_area=np.array([c.area for c in cells], dtype=FLOAT),
            cell_polygon=[list(c.polygon) for c in cells],
            fun_diags=fun_diags,
            cell_index=cell_index,
            stream_cell=stream_cell,
            stream_angle=stream_angle,
            cell_stream_offset=offsets,
            links=links,
            link_cell=link_cell,
            link_stream=link_stream,
            link_length=link_length,
            rel_length=rel_length,
            link_orig_node=link_orig_node,
            link_dest_node=link_dest_node,
            is_sink=is_sink,
            conn_from=np.array(conn_from, dtype=INT),
            conn_to=np.array(conn_to, dtype=INT),
            nodes=nodes,
            node_in_orig=node_in_orig,
            is_source_sink_node=is_source_sink_node,
            route_names=route_names,
            route_index={n: RouteID(i) for i, n in enumerate(route_names)},
            route_zones=[list(self.routes[n].zones) for n in route_names],
            route_source_link=route_source_link,
            route_sink_link=route_sink_link,
            route_orig_node=link_orig_node[route_source_link],
            route_dest_node=link_dest_node[route_sink_link],
            route_node_mask=route_node_mask,
        )
        logger.debug("Compiled %r", net)
        return net
