"""Registry of built-in scenario factories.

A factory takes keyword arguments (sizes, demand, parameters) and returns a
``Scenario``.  Registered names end in a version suffix such as ``-v0``.
"""

from __future__ import annotations

from typing import Callable

from .from_dict import Scenario

ScenarioFactory = Callable[..., Scenario]

_SCENARIO_REGISTRY: dict[str, ScenarioFactory] = {}


def register_scenario(name: str):
    """Decorator to register a scenario factory under ``name``."""
    def wrapper(fn: ScenarioFactory) -> ScenarioFactory:
        _SCENARIO_REGISTRY[name] = fn
        return fn
    return wrapper


def get_scenario(name: str) -> ScenarioFactory:
    if name not in _SCENARIO_REGISTRY:
        raise KeyError(f"Unknown scenario: {name!r}. "
                       f"Available: {list_scenarios()}")
    return _SCENARIO_REGISTRY[name]


def list_scenarios() -> list[str]:
    return sorted(_SCENARIO_REGISTRY)


def describe_scenarios() -> dict[str, str]:
    """First docstring line of every registered factory."""
    return {
        name: (_SCENARIO_REGISTRY[name].__doc__ or "").strip().split("\n")[0]
        for name in list_scenarios()
    }


from .corridor import create_corridor
from .crossing import create_crossing

register_scenario("corridor-v0")(create_corridor)
register_scenario("crossing-v0")(create_crossing)
