"""Numerical stages of a simulation tick.

Each stage records its dispatches (and the swaps of the fields it writes)
on the backend through a :class:`StageContext`; none of them executes work
directly.
"""

from .base import Stage, StageContext
from .advection import AdvectionStage
from .forces import ForceReactionStage
from .vorticity import VorticityConfinementStage
from .projection import PressureProjectionStage

__all__ = [
    "Stage",
    "StageContext",
    "AdvectionStage",
    "ForceReactionStage",
    "VorticityConfinementStage",
    "PressureProjectionStage",
]
