# -*- coding: utf-8 -*-
"""Grid resolution derivation for the velocity and fluid spaces.

A physical volume extent and a target cell size become two integer grid
resolutions. The dominant axis is snapped to a small set of tile-aligned
sizes (and capped), the remaining axes follow its aspect ratio and are
snapped independently. Quantizing this way keeps every dispatch a whole
number of 8x8x8 tiles and avoids reallocating grids when a volume is
resized by a few units.
"""
from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence, Tuple

from .config import FireSimulationConfig
from .errors import ConfigurationError

Int3 = Tuple[int, int, int]

# Kernel tile size; every dispatch is a whole number of these groups.
THREAD_COUNT: Int3 = (8, 8, 8)

# Allowed per-axis resolutions, ascending.
SNAP_RESOLUTIONS: Tuple[int, ...] = (8, 16, 32, 64, 128)


@dataclass(frozen=True)
class GridSpace:
    """Resolution metadata for one grid space."""

    resolution: Int3

    @property
    def bounds(self) -> Int3:
        return tuple(n - 1 for n in self.resolution)  # type: ignore[return-value]

    @property
    def reciprocal_size(self) -> Tuple[float, float, float]:
        return tuple(1.0 / n for n in self.resolution)  # type: ignore[return-value]

    @property
    def thread_group_count(self) -> Int3:
        return thread_groups_for(self.resolution)

    @property
    def cell_count(self) -> int:
        nx, ny, nz = self.resolution
        return nx * ny * nz

    def scaled(self, factor: int) -> "GridSpace":
        return GridSpace(tuple(n * int(factor) for n in self.resolution))  # type: ignore[arg-type]


def thread_groups_for(resolution: Sequence[int], tile: Int3 = THREAD_COUNT) -> Int3:
    return tuple(-(-int(n) // t) for n, t in zip(resolution, tile))  # type: ignore[return-value]


def snap_nearest(value: float, candidates: Sequence[int] = SNAP_RESOLUTIONS) -> int:
    """Nearest candidate to ``value``; ties go to the larger candidate.

    Values outside the candidate range clamp to its ends.
    """
    best = candidates[0]
    best_dist = abs(value - best)
    for cand in candidates[1:]:
        dist = abs(value - cand)
        if dist <= best_dist:
            best, best_dist = cand, dist
    return int(best)


def dominant_axis(raw: Sequence[float]) -> int:
    """Index of the largest component; ties resolve X > Y > Z."""
    axis = 0
    for i in (1, 2):
        if raw[i] > raw[axis]:
            axis = i
    return axis


def derive_resolution(size: Sequence[float], cell_size: float, max_resolution: int) -> Int3:
    """Velocity-space resolution for a volume of ``size`` world units."""
    size = _check_extent(size)
    if not math.isfinite(float(cell_size)) or cell_size <= 0.0:
        raise ConfigurationError(f"cell_size must be > 0, got {cell_size!r}")
    if int(max_resolution) <= 0:
        raise ConfigurationError(f"max_resolution must be > 0, got {max_resolution!r}")

    raw = [s / float(cell_size) for s in size]
    dom = dominant_axis(raw)
    if not (0.0 < raw[dom] < math.inf):
        raise ConfigurationError(
            f"extent {size!r} over cell_size {cell_size!r} gives no usable cell count"
        )

    capped = [s for s in SNAP_RESOLUTIONS if s <= int(max_resolution)] or [SNAP_RESOLUTIONS[0]]
    dom_res = snap_nearest(raw[dom], capped)

    res = [0, 0, 0]
    res[dom] = dom_res
    for axis in range(3):
        if axis == dom:
            continue
        res[axis] = snap_nearest(raw[axis] / raw[dom] * dom_res)
    return tuple(res)  # type: ignore[return-value]


def derive_grid_spaces(size: Sequence[float], config: FireSimulationConfig) -> Tuple[GridSpace, GridSpace]:
    """Return ``(velocity_space, fluid_space)`` for an extent and config."""
    config.validate()
    velocity = GridSpace(derive_resolution(size, config.cell_size, config.max_resolution))
    return velocity, velocity.scaled(config.fluid_resolution_scale)


def _check_extent(size: Sequence[float]) -> Tuple[float, float, float]:
    try:
        vals = tuple(float(s) for s in size)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"volume extent must be three numbers, got {size!r}") from exc
    if len(vals) != 3:
        raise ConfigurationError(f"volume extent must have 3 axes, got {len(vals)}")
    for axis, s in zip("XYZ", vals):
        if not math.isfinite(s) or s <= 0.0:
            raise ConfigurationError(f"volume extent {axis} must be > 0, got {s!r}")
    return vals  # type: ignore[return-value]


__all__ = [
    "THREAD_COUNT",
    "SNAP_RESOLUTIONS",
    "GridSpace",
    "thread_groups_for",
    "snap_nearest",
    "dominant_axis",
    "derive_resolution",
    "derive_grid_spaces",
]
