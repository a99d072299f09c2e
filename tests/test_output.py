"""Tests for CSV/JSON output, the state recorder and plotting."""

import json

import numpy as np
import pandas as pd
import pytest

from anisoped.calibration.calibrator import CalibrationResult
from anisoped.calibration.statistics import CalibrationStatistics
from anisoped.core.demand import DemandEntry, Pedestrian
from anisoped.core.engine import SimulationEngine
from anisoped.core.parameters import Parameters
from anisoped.core.types import FunDiagKind
from anisoped.io.output import (
    travel_time_frame,
    write_calibration,
    write_demand,
    write_disaggregate_table,
    write_route_travel_time_distribution,
    write_system_state,
    write_travel_times,
)
from anisoped.networks.corridor import create_corridor_network
from anisoped.viz.recorder import Recorder


def _make_engine(pedestrians=None) -> SimulationEngine:
    """Uncongested one-way corridor, delta_t = 2 s."""
    return SimulationEngine(
        network=create_corridor_network(3, bidirectional=False),
        params=Parameters(FunDiagKind.ZERO, vf=1.0, mu=1.0, cfl=1.0),
        demand=None if pedestrians else [DemandEntry("WE", 0, 2.0)],
        pedestrians=pedestrians,
    )


class TestWriters:
    def test_travel_times(self, tmp_path):
        result = _make_engine().simulate()
        dist_path, mean_path = write_travel_times(result, tmp_path)
        dist = pd.read_csv(dist_path)
        assert dist[["travel_time", "frag_size"]].values.tolist() == [[2.0, 2.0]]
        mean = pd.read_csv(mean_path)
        assert mean["mean_travel_time"].tolist() == pytest.approx([2.0])
        assert mean["rel_loss"].tolist() == pytest.approx([1.0])

    def test_travel_time_frame_without_arrivals(self):
        engine = _make_engine()
        df = travel_time_frame(engine.groups, engine.delta_t)
        assert np.isnan(df["mean_travel_time"][0])

    def test_demand(self, tmp_path):
        engine = _make_engine()
        path = write_demand(engine.groups, tmp_path / "sub" / "demand.csv")
        assert pd.read_csv(path).values.tolist() == [["WE", 0, 2.0]]

    def test_disaggregate_header(self, tmp_path):
        engine = _make_engine([Pedestrian("WE", 0.5, 2.5), Pedestrian("WE", 1.0, 3.5)])
        engine.simulate()
        path = write_disaggregate_table(engine, tmp_path / "disagg.csv")
        first = path.read_text().splitlines()[0]
        assert first.startswith("# log_likelihood=")
        df = pd.read_csv(path, comment="#")
        assert len(df) == 2
        assert "group_id" not in df.columns

    def test_route_travel_time_distribution(self, tmp_path):
        engine = _make_engine([Pedestrian("WE", 0.5, 2.5), Pedestrian("WE", 1.0, 4.5)])
        engine.simulate()
        path = write_route_travel_time_distribution(engine, tmp_path / "rtt.csv")
        df = pd.read_csv(path, comment="#")
        assert df["interval"].tolist() == [1, 2]
        assert df["num_obs"].tolist() == [1.0, 1.0]
        assert df["num_sim"].tolist() == pytest.approx([2.0, 0.0])

    def test_calibration_json(self, tmp_path):
        params = Parameters(FunDiagKind.ZERO, vf=1.2, mu=1.0, cfl=1.0)
        result = CalibrationResult(params, -3.5, np.array([1.0, 1.0]), 42, True)
        stats = CalibrationStatistics.from_hessian(result.x, np.diag([-2.0, -4.0]))
        path = write_calibration(result, stats, tmp_path / "calibration.json")
        data = json.loads(path.read_text())
        assert data["result"]["log_likelihood"] == -3.5
        assert data["statistics"]["names"] == ["vf", "mu"]

        path = write_calibration(result, None, tmp_path / "plain.json")
        assert "statistics" not in json.loads(path.read_text())


class TestRecorder:
    def test_run_captures_every_step(self):
        recorder = Recorder(_make_engine())
        result = recorder.run()
        assert len(recorder.frames) == result.steps == 4
        assert [f.step for f in recorder.frames] == [1, 2, 3, 4]
        assert recorder.frames[0].link_acc[1] == pytest.approx(2.0)
        assert recorder.frames[-1].metrics["total_exited"] == pytest.approx(2.0)

    def test_cell_series(self):
        recorder = Recorder(_make_engine())
        recorder.run()
        np.testing.assert_allclose(recorder.cell_series("C2"), [0.0, 2.0, 0.0, 0.0])

    def test_topology(self):
        topo = Recorder(_make_engine()).get_topology()
        assert len(topo["cells"]) == 5
        assert topo["cells"][0]["area"] is None
        assert topo["links"][0]["orientation"] == "W->E"
        assert topo["routes"] == [{"name": "WE", "zones": ["west", "corridor", "east"]}]

    def test_save_load(self, tmp_path):
        recorder = Recorder(_make_engine())
        recorder.run()
        path = tmp_path / "replay.json"
        recorder.save(path)
        data = Recorder.load(path)
        assert len(data["frames"]) == 4
        assert data["topology"]["delta_t"] == pytest.approx(2.0)

    def test_system_state(self, tmp_path):
        recorder = Recorder(_make_engine())
        recorder.run()
        path = write_system_state(recorder.to_dict()["frames"], tmp_path / "state.csv")
        df = pd.read_csv(path)
        assert len(df) == 20
        assert list(df.columns) == ["step", "link_id", "acc", "vel", "inflow", "outflow"]


class TestPlot:
    def test_plots_render(self):
        pytest.importorskip("matplotlib")
        import matplotlib
        matplotlib.use("Agg")
        from anisoped.networks.crossing import create_crossing
        from anisoped.viz.plot import cell_densities, plot_cells, plot_fundamental_diagram

        engine = create_crossing(n_departures=2).engine()
        engine.reset()
        engine.step()
        engine.step()
        dens = cell_densities(engine)
        assert dens[engine.net.cell_index["G_W"]] == 0.0
        assert plot_cells(engine, annotate=True) is not None
        center = engine.net.fun_diags[engine.net.cell_index["X"]]
        assert plot_fundamental_diagram(center) is not None
