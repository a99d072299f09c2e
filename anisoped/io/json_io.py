"""JSON export/import for scenarios.

Enables reproducible scenario sharing without code dependencies.  Every
directed link is written as its own record, so link ids survive a round
trip even for links created as bidirectional pairs.
"""

from __future__ import annotations

import json
import math
from pathlib import Path

from ..core.network import Network
from ..networks.from_dict import Scenario, from_dict


def network_to_dict(network: Network) -> dict:
    """Serialize the cells, links and routes of a Network."""
    cells = []
    for cell in network.cells.values():
        cells.append({
            "name": cell.name,
            "zone": cell.zone,
            "area": "inf" if math.isinf(cell.area) else cell.area,
            "polygon": [list(p) for p in cell.polygon],
        })

    links = []
    for lid in sorted(network.links):
        link = network.links[lid]
        links.append({
            "id": int(lid),
            "cell": link.cell,
            "orig": link.orig_cell,
            "dest": link.dest_cell,
            "orig_dir": link.orig_dir,
            "dest_dir": link.dest_dir,
            "length": "MIN" if link.length is None else link.length,
        })

    routes = [
        {"name": r.name, "zones": list(r.zones)} for r in network.routes.values()
    ]
    return {"cells": cells, "links": links, "routes": routes}


def scenario_to_dict(scenario: Scenario) -> dict:
    """Serialize a Scenario to a plain dict accepted by ``from_dict``."""
    result = {
        "version": 1,
        "name": scenario.name,
        "parameters": scenario.params.to_dict(),
        **network_to_dict(scenario.network),
        "calibration": {"mode": scenario.calibration_mode.name.lower()},
    }
    if scenario.agg_period is not None:
        result["calibration"]["agg_period"] = scenario.agg_period
    if scenario.param_range is not None:
        result["parameter_range"] = scenario.param_range.to_dict(scenario.params)
    if scenario.demand is not None:
        result["demand"] = [
            {"route": d.route, "dep_time": int(d.dep_time), "size": d.size}
            for d in scenario.demand
        ]
    if scenario.pedestrians:
        result["pedestrians"] = [
            {"route": p.route, "dep_time": p.dep_time, "travel_time": p.travel_time}
            for p in scenario.pedestrians
        ]
    return result


def dict_to_scenario(data: dict) -> Scenario:
    """Deserialize a Scenario from a dict."""
    return from_dict(data)


def save_scenario(path: str | Path, scenario: Scenario) -> None:
    """Save a scenario to a JSON file."""
    data = scenario_to_dict(scenario)
    Path(path).write_text(json.dumps(data, indent=2))


def load_scenario(path: str | Path) -> Scenario:
    """Load a scenario from a JSON file."""
    data = json.loads(Path(path).read_text())
    return from_dict(data, base_dir=Path(path).parent)
