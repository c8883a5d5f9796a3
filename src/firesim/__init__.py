"""Grid-based real-time fire and smoke solver.

The public surface is :class:`FireSimulation` driven by a host once per
frame, the frozen :class:`FireSimulationConfig`, and the compute backend
interface it records dispatches into.
"""

from .backend import BufferHandle, CommandGraph, ComputeBackend, GridFormat, NumpyBackend
from .config import FireSimulationConfig
from .errors import ConfigurationError, DependencyError, FireSimulationError, SimulationNotReady
from .host import FireSimulatorVolume, SimulationWorker, TickChannel
from .resolution import GridSpace, derive_grid_spaces, derive_resolution
from .simulation import FireSimulation, SimulationState, TickReport

__all__ = [
    "BufferHandle",
    "CommandGraph",
    "ComputeBackend",
    "GridFormat",
    "NumpyBackend",
    "FireSimulationConfig",
    "ConfigurationError",
    "DependencyError",
    "FireSimulationError",
    "SimulationNotReady",
    "FireSimulatorVolume",
    "SimulationWorker",
    "TickChannel",
    "GridSpace",
    "derive_grid_spaces",
    "derive_resolution",
    "FireSimulation",
    "SimulationState",
    "TickReport",
]
