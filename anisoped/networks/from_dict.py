"""Build a Scenario from a JSON/YAML dictionary specification."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.demand import DemandEntry, Pedestrian
from ..core.engine import SimulationEngine
from ..core.errors import ConfigurationError
from ..core.network import Network
from ..core.parameters import NumericConfig, ParameterRange, Parameters
from ..core.types import CalibrationMode


@dataclass
class Scenario:
    """Everything needed to run or calibrate one case."""
    network: Network
    params: Parameters
    demand: list[DemandEntry] | None = None
    pedestrians: list[Pedestrian] = field(default_factory=list)
    param_range: ParameterRange | None = None
    calibration_mode: CalibrationMode = CalibrationMode.TRAVEL_TIME_DISTRIBUTION
    agg_period: float | None = None
    name: str = "scenario"

    def engine(
        self,
        params: Parameters | None = None,
        numerics: NumericConfig | None = None,
    ) -> SimulationEngine:
        """Fresh engine for this scenario (optionally with other parameters)."""
        return SimulationEngine(
            network=self.network,
            params=params or self.params,
            demand=self.demand,
            pedestrians=self.pedestrians,
            numerics=numerics,
        )


def _parse_area(value: Any) -> float:
    if value is None:
        return math.inf
    if isinstance(value, str):
        if value.strip().lower() in ("inf", "infinity", "none"):
            return math.inf
        return float(value)
    return float(value)


def _parse_length(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().upper() == "MIN":
        return None
    return float(value)


def network_from_dict(spec: dict[str, Any]) -> Network:
    """Build the Network part of a scenario dictionary."""
    net = Network()

    # Cells
    for c in spec.get("cells", []):
        net.add_cell(
            c["name"],
            zone=c.get("zone", c["name"]),
            area=_parse_area(c.get("area")),
            polygon=[tuple(p) for p in c.get("polygon", [])],
        )

    # Links
    for l in spec.get("links", []):
        net.add_link(
            cell=l["cell"],
            orig_cell=l["orig"],
            dest_cell=l["dest"],
            orig_dir=l["orig_dir"],
            dest_dir=l["dest_dir"],
            length=_parse_length(l.get("length")),
            bidirectional=bool(l.get("bidirectional", False)),
        )

    # Routes
    for r in spec.get("routes", []):
        net.add_route(r["name"], r["zones"])

    return net


def from_dict(spec: dict[str, Any], base_dir: str | Path | None = None) -> Scenario:
    """Build a Scenario from a dictionary specification.

    Expected format::

        {
            "name": "crossing",
            "parameters": {
                "fun_diag": "SbFD", "vf": 1.34,
                "shape": {"theta": 0.29, "beta": 0.1},
                "mu": 2.0, "cfl": 0.9
            },
            "parameter_range": {"vf": [1.0, 2.0], "theta": [0.01, 1.0], ...},
            "calibration": {"mode": "traveltimedistribution", "agg_period": 60},
            "cells": [
                {"name": "G1", "zone": "west", "area": "inf"},
                {"name": "C1", "zone": "center", "area": 12.0,
                 "polygon": [[0, 0], [4, 0], [4, 3], [0, 3]]},
                ...
            ],
            "links": [
                {"cell": "C1", "orig": "G1", "dest": "C2",
                 "orig_dir": "W", "dest_dir": "E", "length": 4.0,
                 "bidirectional": true},
                ...
            ],
            "routes": [{"name": "WE", "zones": ["west", "center", "east"]}],
            "demand": [{"route": "WE", "dep_time": 0, "size": 10}],
            "pedestrians": [{"route": "WE", "dep_time": 0.4, "travel_time": 9.1}]
        }

    ``demand`` and ``pedestrians`` may instead be given as CSV files with
    ``demand_file`` / ``pedestrian_file`` (paths relative to ``base_dir``).
    Link lengths of ``"MIN"`` or ``null`` stand for the shortest link.
    """
    from ..io.tables import read_demand_table, read_pedestrian_table

    base = Path(base_dir) if base_dir is not None else Path(".")
    if "parameters" not in spec:
        raise ConfigurationError("Scenario needs a 'parameters' section")
    params = Parameters.from_dict(spec["parameters"])
    network = network_from_dict(spec)

    demand: list[DemandEntry] | None = None
    if "demand" in spec:
        demand = [
            DemandEntry(route=d["route"], dep_time=int(d["dep_time"]),
                        size=float(d["size"]))
            for d in spec["demand"]
        ]
    elif "demand_file" in spec:
        demand = read_demand_table(base / spec["demand_file"])

    pedestrians: list[Pedestrian] = []
    if "pedestrians" in spec:
        pedestrians = [
            Pedestrian(route=p["route"], dep_time=float(p["dep_time"]),
                       travel_time=float(p.get("travel_time", math.nan)))
            for p in spec["pedestrians"]
        ]
    elif "pedestrian_file" in spec:
        pedestrians = read_pedestrian_table(base / spec["pedestrian_file"])

    param_range = None
    if "parameter_range" in spec:
        param_range = ParameterRange.from_dict(spec["parameter_range"], params)

    calib = spec.get("calibration", {})
    mode = CalibrationMode.parse(calib.get("mode", "traveltimedistribution"))
    agg_period = calib.get("agg_period")

    return Scenario(
        network=network,
        params=params,
        demand=demand,
        pedestrians=pedestrians,
        param_range=param_range,
        calibration_mode=mode,
        agg_period=None if agg_period is None else float(agg_period),
        name=spec.get("name", "scenario"),
    )


def from_json(path: str | Path) -> Scenario:
    """Load a scenario from a JSON file."""
    with open(path) as f:
        spec = json.load(f)
    return from_dict(spec, base_dir=Path(path).parent)


def from_yaml(path: str | Path) -> Scenario:
    """Load a scenario from a YAML file (requires PyYAML)."""
    import yaml
    with open(path) as f:
        spec = yaml.safe_load(f)
    return from_dict(spec, base_dir=Path(path).parent)
