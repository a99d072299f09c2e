"""anisoped: anisotropic pedestrian cell transmission model with calibration."""

from __future__ import annotations

from typing import Any

from .calibration.calibrator import CalibrationResult, Calibrator
from .core.demand import DemandEntry, Group, Pedestrian
from .core.engine import RunStatus, SimulationEngine, SimulationResult, simulate
from .core.errors import (
    CalibrationError,
    ConfigurationError,
    ConservationError,
    FundamentalDiagramError,
    InvalidOrientationError,
)
from .core.flow_model import AnisotropicCTMFlowModel, FlowModel
from .core.network import Network
from .core.parameters import NumericConfig, ParameterRange, Parameters
from .core.types import CalibrationMode, FunDiagKind
from .networks.from_dict import Scenario, from_dict, from_json, from_yaml

__version__ = "0.1.0"


def make(scenario: str = "corridor-v0", **scenario_kwargs: Any) -> SimulationEngine:
    """Create an engine for a registered scenario.

    Usage::

        import anisoped
        engine = anisoped.make("crossing-v0")
        result = engine.simulate()

    Parameters
    ----------
    scenario : str
        Registered scenario name.
    **scenario_kwargs
        Extra kwargs passed to the scenario factory.
    """
    from .networks.scenarios import get_scenario

    factory = get_scenario(scenario)
    return factory(**scenario_kwargs).engine()
