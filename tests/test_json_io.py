"""Tests for scenario export/import round-trip and dict-defined scenarios."""

import json
import math

import pytest

from anisoped.core.errors import ConfigurationError
from anisoped.core.parameters import ParameterRange
from anisoped.core.types import CalibrationMode
from anisoped.io.json_io import load_scenario, network_to_dict, save_scenario, scenario_to_dict
from anisoped.networks.crossing import create_crossing
from anisoped.networks.from_dict import from_dict, from_json, from_yaml


def _make_spec(**extra) -> dict:
    spec = {
        "name": "mini",
        "parameters": {"fun_diag": "Zero", "vf": 1.0, "mu": 1.0, "cfl": 1.0},
        "cells": [
            {"name": "G_W", "zone": "west", "area": "inf"},
            {"name": "C1", "zone": "mid", "area": 4.0},
            {"name": "C2", "zone": "mid", "area": 4.0},
            {"name": "G_E", "zone": "east"},
        ],
        "links": [
            {"cell": "G_W", "orig": "none", "dest": "C1",
             "orig_dir": "W", "dest_dir": "E", "length": "MIN"},
            {"cell": "C1", "orig": "G_W", "dest": "C2",
             "orig_dir": "W", "dest_dir": "E", "length": 2.0},
            {"cell": "C2", "orig": "C1", "dest": "G_E",
             "orig_dir": "W", "dest_dir": "E", "length": 2.0},
            {"cell": "G_E", "orig": "C2", "dest": "none",
             "orig_dir": "W", "dest_dir": "E", "length": 2.0},
        ],
        "routes": [{"name": "WE", "zones": ["west", "mid", "east"]}],
    }
    spec.update(extra)
    return spec


class TestJsonRoundTrip:
    """Export then import must reproduce the simulation."""

    def test_crossing_round_trip(self, tmp_path):
        scenario = create_crossing(n_departures=2, group_size=2.0)
        path = tmp_path / "crossing.json"
        save_scenario(path, scenario)
        loaded = load_scenario(path)

        assert loaded.name == "crossing"
        assert loaded.params == scenario.params
        assert sorted(loaded.network.links) == sorted(scenario.network.links)

        first = scenario.engine().simulate()
        second = loaded.engine().simulate()
        assert second.steps == first.steps
        assert [g.stats.mean for g in second.groups] == pytest.approx(
            [g.stats.mean for g in first.groups]
        )

    def test_dict_is_json_serializable(self):
        data = scenario_to_dict(create_crossing(n_departures=1))
        text = json.dumps(data)
        assert json.loads(text)["version"] == 1

    def test_gates_written_as_inf(self):
        data = network_to_dict(create_crossing(n_departures=1).network)
        areas = {c["name"]: c["area"] for c in data["cells"]}
        assert areas["G_W"] == "inf"
        assert areas["X"] == pytest.approx(9.0)

    def test_range_and_pedestrians_survive(self, tmp_path):
        spec = _make_spec(
            parameter_range={"vf": [0.5, 3.0], "mu": [0.1, 5.0]},
            pedestrians=[{"route": "WE", "dep_time": 0.3, "travel_time": 2.0}],
            calibration={"mode": "aggregated_travel_times", "agg_period": 60},
        )
        path = tmp_path / "mini.json"
        save_scenario(path, from_dict(spec))
        loaded = load_scenario(path)
        assert loaded.param_range == ParameterRange((0.5, 0.1), (3.0, 5.0))
        assert loaded.pedestrians[0].travel_time == 2.0
        assert loaded.calibration_mode == CalibrationMode.AGGREGATED_TRAVEL_TIMES
        assert loaded.agg_period == 60.0
        assert loaded.demand is None


class TestFromDict:
    def test_min_length(self):
        scenario = from_dict(_make_spec(demand=[{"route": "WE", "dep_time": 0, "size": 1}]))
        engine = scenario.engine()
        assert engine.net.link_length[0] == pytest.approx(2.0)
        assert math.isinf(scenario.network.cells["G_E"].area)
        result = engine.simulate()
        assert result.groups[0].arrivals == {0: pytest.approx(1.0)}

    def test_missing_parameters(self):
        spec = _make_spec()
        del spec["parameters"]
        with pytest.raises(ConfigurationError):
            from_dict(spec)

    def test_incomplete_range(self):
        with pytest.raises(ConfigurationError):
            from_dict(_make_spec(parameter_range={"vf": [0.5, 3.0]}))

    def test_demand_file(self, tmp_path):
        (tmp_path / "demand.csv").write_text("routeName,depTime,numPeople\nWE,0,3\n")
        spec = _make_spec(demand_file="demand.csv")
        (tmp_path / "mini.json").write_text(json.dumps(spec))
        scenario = from_json(tmp_path / "mini.json")
        assert scenario.demand[0].size == 3.0

    def test_from_yaml(self, tmp_path):
        yaml = pytest.importorskip("yaml")
        path = tmp_path / "mini.yaml"
        path.write_text(yaml.safe_dump(_make_spec()))
        scenario = from_yaml(path)
        assert scenario.name == "mini"
        assert list(scenario.network.routes) == ["WE"]
