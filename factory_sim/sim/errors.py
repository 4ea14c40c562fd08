from __future__ import annotations

"""
File: factory_sim/sim/errors.py
Purpose: Exception types raised by the simulation core.
"""


class ConfigurationError(ValueError):
    """Scenario, map, or world configuration that the engine cannot honor."""


class ScenarioStateError(ConfigurationError):
    """Control command issued in a run state that does not accept it."""
