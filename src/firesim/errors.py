"""Exception types raised by the fire solver."""

from __future__ import annotations


class FireSimulationError(Exception):
    """Base class for every solver error."""


class ConfigurationError(FireSimulationError, ValueError):
    """Rejected extent or configuration; raised before any state changes."""


class SimulationNotReady(FireSimulationError):
    """Fields were sampled before the solver produced a physics frame."""


class DependencyError(FireSimulationError, RuntimeError):
    """A dispatch declared buffers or thread groups inconsistently.

    This is a programming-contract violation (stale handle, read/write
    aliasing, unknown kernel) and is never recovered from.
    """


__all__ = [
    "FireSimulationError",
    "ConfigurationError",
    "SimulationNotReady",
    "DependencyError",
]
