"""Tests for the command-line interface."""

import json

import pandas as pd
import pytest

from anisoped.__main__ import build_parser, load, main
from anisoped.core.demand import Pedestrian
from anisoped.io.json_io import save_scenario
from anisoped.networks.corridor import create_corridor


def _save_observed_corridor(path):
    """Corridor scenario with observations generated from its own run."""
    scenario = create_corridor(n_cells=2, n_departures=2, group_size=1.0)
    result = scenario.engine().simulate()
    scenario.pedestrians = [
        Pedestrian(g.route, g.dep_time * result.delta_t + 0.1, g.stats.mean + 0.2)
        for g in result.groups
    ]
    scenario.demand = None
    save_scenario(path, scenario)


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_calibrate_defaults(self):
        args = build_parser().parse_args(["calibrate", "case.json"])
        assert args.runs == 1
        assert args.seed is None
        assert not args.statistics


class TestCommands:
    def test_load_registered(self):
        assert load("crossing-v0").name == "crossing"

    def test_simulate(self, tmp_path, capsys):
        record = tmp_path / "replay.json"
        code = main(["simulate", "corridor-v0", "--output", str(tmp_path),
                     "--record", str(record)])
        assert code == 0
        assert "CONVERGED" in capsys.readouterr().out
        assert (tmp_path / "travel_time_mean.csv").exists()
        assert (tmp_path / "demand.csv").exists()
        assert len(json.loads(record.read_text())["frames"]) > 0
        state = pd.read_csv(tmp_path / "system_state.csv")
        assert state["step"].min() == 1

    def test_unknown_scenario(self, capsys):
        assert main(["simulate", "nowhere-v0"]) == 1
        assert "Unknown scenario" in capsys.readouterr().err

    def test_calibrate_from_default(self, tmp_path, capsys):
        path = tmp_path / "observed.json"
        _save_observed_corridor(path)
        out = tmp_path / "out"
        code = main(["calibrate", str(path), "--runs", "0", "--mode",
                     "mean_travel_time", "--output", str(out)])
        assert code == 0
        assert "log-likelihood" in capsys.readouterr().out
        data = json.loads((out / "calibration.json").read_text())
        assert data["result"]["params"]["fun_diag"] == "Drake"
        assert (out / "calibrated_disaggregate.csv").exists()

    def test_calibrate_without_observations(self, capsys):
        assert main(["calibrate", "corridor-v0", "--runs", "0"]) == 1
        assert "no observed pedestrians" in capsys.readouterr().err

    def test_list(self, capsys):
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "corridor-v0" in out
        assert "crossing-v0" in out
