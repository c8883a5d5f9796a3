# -*- coding: utf-8 -*-
"""Per-tick configuration snapshot for the fire solver.

The host hands a fresh :class:`FireSimulationConfig` to every
``initialize``/``tick`` call. Instances are frozen so a stage can never
mutate the parameters another stage reads later in the same tick.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
import math
import numbers
from typing import Any, Mapping, Tuple

from .errors import ConfigurationError

Vec3 = Tuple[float, float, float]
Vec4 = Tuple[float, float, float, float]


@dataclass(frozen=True)
class FireSimulationConfig:
    # Grid
    cell_size: float = 10.0              # world units per velocity cell
    max_resolution: int = 128
    fluid_resolution_scale: int = 2
    num_pressure_iterations: int = 8

    # Fluid advection, per channel (density, temperature, reaction, vapor)
    fluid_dissipation: Vec4 = (0.001, 0.0, 0.03, 0.03)
    fluid_decay: Vec4 = (0.0, 0.2, 0.0, 0.0)

    # Velocity advection & buoyancy
    dissipation: Vec3 = (0.02, 0.02, 0.02)
    buoyancy: float = 1.0
    density_weight: float = 0.1
    ambient_temperature: float = 20.0
    up: Vec3 = (0.0, 0.0, 1.0)

    # Extinguishment
    reaction_amount: float = 0.2
    vapor_cooling: float = 50.0
    vapor_extinguish: float = 0.1
    reaction_extinguish: float = 0.15
    temperature_distribution: Vec3 = (0.0, 0.0, 0.0)

    # Turbulence
    vorticity_strength: float = 12.0

    # ------------------------------------------------------------------
    def validate(self) -> "FireSimulationConfig":
        """Raise :class:`ConfigurationError` for values the solver cannot use."""
        if not _finite(self.cell_size) or self.cell_size <= 0.0:
            raise ConfigurationError(f"cell_size must be > 0, got {self.cell_size!r}")
        if not _is_int(self.max_resolution) or self.max_resolution <= 0:
            raise ConfigurationError(f"max_resolution must be a positive int, got {self.max_resolution!r}")
        if not _is_int(self.fluid_resolution_scale) or self.fluid_resolution_scale < 1:
            raise ConfigurationError(
                f"fluid_resolution_scale must be an int >= 1, got {self.fluid_resolution_scale!r}"
            )
        if not _is_int(self.num_pressure_iterations) or self.num_pressure_iterations < 0:
            raise ConfigurationError(
                f"num_pressure_iterations must be an int >= 0, got {self.num_pressure_iterations!r}"
            )
        for name, size in (
            ("fluid_dissipation", 4),
            ("fluid_decay", 4),
            ("dissipation", 3),
            ("up", 3),
            ("temperature_distribution", 3),
        ):
            vec = getattr(self, name)
            if not isinstance(vec, (tuple, list)) or len(vec) != size or not all(_finite(v) for v in vec):
                raise ConfigurationError(f"{name} must hold {size} finite values, got {vec!r}")
        for name in (
            "buoyancy", "density_weight", "ambient_temperature", "reaction_amount",
            "vapor_cooling", "vapor_extinguish", "reaction_extinguish", "vorticity_strength",
        ):
            if not _finite(getattr(self, name)):
                raise ConfigurationError(f"{name} must be finite, got {getattr(self, name)!r}")
        return self

    @property
    def resolution_key(self) -> tuple:
        """Fields that change grid resolutions when they change."""
        return (float(self.cell_size), int(self.max_resolution), int(self.fluid_resolution_scale))

    def with_changes(self, **changes: Any) -> "FireSimulationConfig":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FireSimulationConfig":
        """Build a config from a plain mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        kwargs = {}
        for key, value in data.items():
            if isinstance(value, (list, tuple)):
                value = tuple(float(v) for v in value)
            kwargs[key] = value
        return cls(**kwargs).validate()


def _finite(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _is_int(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


__all__ = ["FireSimulationConfig", "Vec3", "Vec4"]
