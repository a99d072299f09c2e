"""Per-step recording of link and cell state.

A recording holds the static layout once plus one frame per simulated
interval, so a run can be plotted, written out as a system-state table or
replayed without simulating again.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import numpy as np

from ..core.engine import SimulationEngine, SimulationResult

DIGITS = 6


def _as_list(values) -> list[float]:
    return np.round(np.asarray(values, dtype=float), DIGITS).tolist()


@dataclass
class Frame:
    """Link and cell state after one interval."""
    time: float
    step: int
    link_acc: list[float]
    link_vel: list[float]
    link_inflow: list[float]
    link_outflow: list[float]
    cell_acc: list[float]
    metrics: dict[str, float]


class Recorder:
    """Collects a ``Frame`` after every step of an engine.

    Usage::

        recorder = Recorder(engine)
        result = recorder.run()
        recorder.save("replay.json")

    or, to interleave other work with the steps::

        engine.reset()
        for _ in engine.iterate():
            recorder.capture()
        result = engine.finish()
    """

    def __init__(self, engine: SimulationEngine) -> None:
        self.engine = engine
        self.frames: list[Frame] = []
        self._layout: dict[str, Any] | None = None

    def capture(self) -> Frame:
        """Append the engine's current state as a frame."""
        engine = self.engine
        s = engine.state
        frame = Frame(
            time=round(engine.time, 4),
            step=s.step,
            link_acc=_as_list(s.acc),
            link_vel=_as_list(s.vel),
            link_inflow=_as_list(s.inflow),
            link_outflow=_as_list(s.outflow),
            cell_acc=_as_list(engine.get_cell_accumulations()),
            metrics={k: round(float(v), 4)
                     for k, v in engine.get_network_metrics().items()},
        )
        self.frames.append(frame)
        return frame

    def run(self) -> SimulationResult:
        """Simulate from time zero, capturing every step."""
        self.frames.clear()
        self.engine.reset()
        for _ in self.engine.iterate():
            self.capture()
        return self.engine.finish()

    def cell_series(self, cell: str) -> np.ndarray:
        """Accumulation of one cell over the recorded frames."""
        idx = self.engine.net.cell_index[cell]
        return np.array([f.cell_acc[idx] for f in self.frames], dtype=float)

    # -- layout ----------------------------------------------------------------

    def get_topology(self) -> dict[str, Any]:
        """Cells, links and routes of the compiled network (cached)."""
        if self._layout is None:
            self._layout = self._build_layout()
        return self._layout

    def _build_layout(self) -> dict[str, Any]:
        net = self.engine.net
        cells = [
            {
                "name": name,
                "zone": net.cell_zone[i],
                "area": None if math.isinf(net.cell_area[i]) else float(net.cell_area[i]),
                "polygon": [list(p) for p in net.cell_polygon[i]],
            }
            for i, name in enumerate(net.cell_names)
        ]
        links = []
        for link in net.links:
            lid = int(link.link_id)
            links.append({
                "id": lid,
                "cell": link.cell,
                "orig": link.orig_cell,
                "dest": link.dest_cell,
                "orientation": f"{link.orig_dir}->{link.dest_dir}",
                "length": float(net.link_length[lid]),
                "orig_node": int(net.link_orig_node[lid]),
                "dest_node": int(net.link_dest_node[lid]),
            })
        routes = [{"name": n, "zones": list(z)}
                  for n, z in zip(net.route_names, net.route_zones)]
        return {"cells": cells, "links": links, "routes": routes,
                "delta_t": net.delta_t}

    # -- persistence -------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "topology": self.get_topology(),
            "frames": [asdict(f) for f in self.frames],
        }

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict()))

    @staticmethod
    def load(path: str | Path) -> dict[str, Any]:
        """Read a saved recording back as plain dicts."""
        return json.loads(Path(path).read_text())
