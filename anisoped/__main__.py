"""Command-line interface.

Usage::

    python -m anisoped simulate corridor-v0 --output out/ --record replay.json
    python -m anisoped calibrate case.json --runs 5 --seed 1 --output out/
    python -m anisoped list

``SCENARIO`` is either a registered scenario name or a JSON/YAML scenario
file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from .calibration.calibrator import Calibrator
from .core.errors import CalibrationError, ConfigurationError
from .core.types import CalibrationMode
from .io.output import (
    write_aggregated_table,
    write_calibration,
    write_demand,
    write_disaggregate_table,
    write_route_travel_time_distribution,
    write_system_state,
    write_travel_times,
)
from .networks.from_dict import Scenario, from_json, from_yaml
from .networks.scenarios import describe_scenarios, get_scenario, list_scenarios

logger = logging.getLogger("anisoped")


def load(name: str) -> Scenario:
    """Load a scenario file or build a registered scenario."""
    path = Path(name)
    if path.suffix.lower() in (".yaml", ".yml"):
        return from_yaml(path)
    if path.suffix.lower() == ".json":
        return from_json(path)
    return get_scenario(name)()


def _write_observations(engine, scenario: Scenario, out: Path, prefix: str) -> None:
    if not engine.pedestrians:
        return
    write_disaggregate_table(engine, out / f"{prefix}disaggregate.csv",
                             scenario.calibration_mode, scenario.agg_period)
    write_route_travel_time_distribution(engine, out / f"{prefix}route_travel_times.csv")
    if scenario.agg_period is not None:
        write_aggregated_table(engine, out / f"{prefix}aggregated.csv",
                               scenario.agg_period)


def cmd_simulate(args: argparse.Namespace) -> int:
    scenario = load(args.scenario)
    engine = scenario.engine()
    if args.record:
        from .viz.recorder import Recorder

        recorder = Recorder(engine)
        result = recorder.run()
        recorder.save(args.record)
    else:
        recorder = None
        result = engine.simulate()

    print(result)
    if engine.pedestrians:
        ll = engine.log_likelihood(scenario.calibration_mode, scenario.agg_period)
        print(f"log-likelihood ({scenario.calibration_mode.name}): {ll:.6f}")

    if args.output:
        out = Path(args.output)
        write_travel_times(result, out)
        write_demand(result.groups, out / "demand.csv")
        _write_observations(engine, scenario, out, "")
        if recorder is not None:
            frames = recorder.to_dict()["frames"]
            write_system_state(frames, out / "system_state.csv")
        logger.info("Output written to %s", out)
    return 0


def cmd_calibrate(args: argparse.Namespace) -> int:
    scenario = load(args.scenario)
    mode = CalibrationMode.parse(args.mode) if args.mode else None
    calibrator = Calibrator(scenario, mode=mode)
    if args.runs > 0:
        rng = np.random.default_rng(args.seed)
        best = calibrator.calibrate_multistart(args.runs, rng)
    else:
        best = calibrator.calibrate_from_default()

    print(f"log-likelihood: {best.log_likelihood:.6f}")
    for name, value in zip(best.params.names, best.x):
        print(f"  {name:>6s} = {value:.6f}")

    stats = calibrator.statistics(best) if args.statistics else None
    if stats is not None and not stats.inversion_failed:
        for name, se in zip(best.params.names, stats.std_errors):
            print(f"  std err {name:>6s} = {se:.6f}")

    if args.output:
        out = Path(args.output)
        write_calibration(best, stats, out / "calibration.json")
        engine = scenario.engine(best.params)
        result = engine.simulate()
        write_travel_times(result, out, prefix="calibrated_")
        _write_observations(engine, scenario, out, "calibrated_")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    for name, desc in describe_scenarios().items():
        print(f"{name:<16s} {desc}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anisoped",
        description="Anisotropic pedestrian cell transmission model",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase log verbosity (-v info, -vv debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    scenario_help = ("Scenario file (.json/.yaml) or registered name: "
                     + ", ".join(list_scenarios()))

    sim = sub.add_parser("simulate", help="Run one simulation")
    sim.add_argument("scenario", help=scenario_help)
    sim.add_argument("--output", default=None, help="Directory for CSV output")
    sim.add_argument("--record", default=None,
                     help="Path of a JSON recording of every step")
    sim.set_defaults(func=cmd_simulate)

    lst = sub.add_parser("list", help="List the registered scenarios")
    lst.set_defaults(func=cmd_list)

    cal = sub.add_parser("calibrate", help="Maximum-likelihood calibration")
    cal.add_argument("scenario", help=scenario_help)
    cal.add_argument("--runs", type=int, default=1,
                     help="Random-start runs; 0 starts from the scenario parameters")
    cal.add_argument("--seed", type=int, default=None, help="Random seed")
    cal.add_argument("--mode", default=None,
                     help="Calibration mode (default: from the scenario)")
    cal.add_argument("--statistics", action="store_true",
                     help="Compute Hessian statistics at the optimum")
    cal.add_argument("--output", default=None, help="Directory for output")
    cal.set_defaults(func=cmd_calibrate)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level,
                        format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    try:
        return args.func(args)
    except (ConfigurationError, CalibrationError, KeyError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
