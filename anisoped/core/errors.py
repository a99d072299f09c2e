"""Exception types raised by the simulator.

Construction problems are ``ConfigurationError`` (a ``ValueError``) and abort
before any simulation step runs.  ``ConservationError`` signals a broken
internal invariant during propagation.  Anomalies that a run survives are not
exceptions; see ``anisoped.core.diagnostics.Diagnostic``.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid scenario, parameter or network definition."""


class InvalidOrientationError(ConfigurationError):
    """Link orientation pair not present in the angle table."""


class FundamentalDiagramError(ConfigurationError):
    """Critical accumulation or velocity could not be determined."""


class ConservationError(RuntimeError):
    """Negative accumulation or flow beyond numerical tolerance."""


class CalibrationError(RuntimeError):
    """Calibration could not complete a run."""
