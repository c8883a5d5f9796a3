# -*- coding: utf-8 -*-
"""Pipeline orchestrator for the fire solver.

:class:`FireSimulation` sequences the stages once per tick::

    advect fluid -> advect velocity -> buoyancy -> extinguish
      -> vorticity -> confinement -> divergence -> pressure x N -> projection

State machine
-------------
``UNINITIALIZED``
    After construction, ``initialize`` or a resize. The next tick allocates
    and clears every grid and runs no physics.
``INITIALIZED``
    Steady state; ticks run the full stage sequence.
``CLEARING``
    Entered on the tick after ``request_reset``; that tick clears every
    grid (obstacles back to open) instead of running physics, then returns
    to ``INITIALIZED``.

Ticks are all-or-nothing: stages only record dispatches, and if recording
fails the pending graph is discarded before anything executes. A tick
while the host reports not-ready, or before ``initialize``, records
nothing at all.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .backend import CommandGraph, ComputeBackend, NumpyBackend
from .buffers import GridBufferSet
from .config import FireSimulationConfig
from .debug import dbg, describe_grid, is_enabled
from .errors import ConfigurationError, SimulationNotReady
from .resolution import GridSpace, derive_grid_spaces
from .stages import (
    AdvectionStage,
    ForceReactionStage,
    PressureProjectionStage,
    Stage,
    StageContext,
    VorticityConfinementStage,
)

ReadinessFn = Callable[[], bool]


class SimulationState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLEARING = "clearing"


@dataclass(frozen=True)
class TickReport:
    """What a tick did: ``skipped``, ``allocate``, ``clear`` or ``physics``."""

    kind: str
    dt: float
    passes: int = 0
    frame: int = 0


TickListener = Callable[[TickReport, Optional[CommandGraph]], None]


def default_pipeline() -> List[Stage]:
    return [
        AdvectionStage(),
        ForceReactionStage(),
        VorticityConfinementStage(),
        PressureProjectionStage(),
    ]


class FireSimulation:
    """Grid fire/smoke solver driven one tick at a time by a host."""

    def __init__(
        self,
        backend: Optional[ComputeBackend] = None,
        *,
        readiness: Optional[ReadinessFn] = None,
        stages: Optional[Sequence[Stage]] = None,
    ) -> None:
        self.backend = backend if backend is not None else NumpyBackend()
        self.readiness = readiness
        self.stages: List[Stage] = list(stages) if stages is not None else default_pipeline()
        self.state = SimulationState.UNINITIALIZED
        self.extent: Optional[Tuple[float, float, float]] = None
        self.config: Optional[FireSimulationConfig] = None
        self.velocity_space: Optional[GridSpace] = None
        self.fluid_space: Optional[GridSpace] = None
        self.world_to_grid: Tuple[float, float, float] = (1.0, 1.0, 1.0)
        self.buffers: Optional[GridBufferSet] = None
        self.physics_frames = 0
        self.ticks = 0
        self._reset_requested = False
        self._listeners: List[TickListener] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self, volume_extent: Sequence[float], config: FireSimulationConfig) -> None:
        """(Re)derive resolutions and grid metadata.

        Invalid extents or configs raise :class:`ConfigurationError` before
        anything changes. Calling again with an extent/config that yields
        the same resolutions keeps the existing grids.
        """
        velocity_space, fluid_space = derive_grid_spaces(volume_extent, config)
        extent = tuple(float(s) for s in volume_extent)
        with self._lock:
            self._apply_spaces(extent, config, velocity_space, fluid_space)

    def deinitialize(self) -> None:
        """Release every grid; the next ``initialize`` starts from scratch."""
        with self._lock:
            if self.buffers is not None:
                self.backend.discard()
                self.buffers.release()
            self.buffers = None
            self.velocity_space = self.fluid_space = None
            self.state = SimulationState.UNINITIALIZED
            self.physics_frames = 0
            self._reset_requested = False
            if is_enabled():
                dbg("sim").debug("deinitialized")

    def request_reset(self) -> None:
        """Clear every grid on the next tick instead of stepping."""
        with self._lock:
            self._reset_requested = True

    @property
    def reset_pending(self) -> bool:
        return self._reset_requested

    def add_tick_listener(self, fn: TickListener) -> None:
        """Call ``fn(report, graph)`` when the backend completes a tick."""
        self._listeners.append(fn)

    def _apply_spaces(
        self,
        extent: Tuple[float, float, float],
        config: FireSimulationConfig,
        velocity_space: GridSpace,
        fluid_space: GridSpace,
    ) -> None:
        self.extent = extent
        self.config = config
        self.world_to_grid = tuple(n / s for n, s in zip(velocity_space.resolution, extent))  # type: ignore[assignment]
        if (
            self.buffers is not None
            and velocity_space == self.velocity_space
            and fluid_space == self.fluid_space
        ):
            return
        if self.buffers is not None:
            self.backend.discard()
            self.buffers.release()
        self.velocity_space = velocity_space
        self.fluid_space = fluid_space
        self.buffers = GridBufferSet(self.backend, velocity_space, fluid_space)
        self.state = SimulationState.UNINITIALIZED
        self.physics_frames = 0
        if is_enabled():
            dbg("sim").debug(
                f"grid spaces: velocity={velocity_space.resolution} fluid={fluid_space.resolution} "
                f"world_to_grid={tuple(round(w, 6) for w in self.world_to_grid)}"
            )

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------
    def tick(self, delta_time: float, config: Optional[FireSimulationConfig] = None) -> TickReport:
        """Run one simulation step (or the allocation/clear tick in its place)."""
        dt = float(delta_time)
        if not math.isfinite(dt) or dt < 0.0:
            raise ConfigurationError(f"delta_time must be finite and >= 0, got {delta_time!r}")
        if config is not None:
            config.validate()

        with self._lock:
            self.ticks += 1
            if self.readiness is not None and not self.readiness():
                return self._skip(dt, "host not ready")
            if self.buffers is None or self.extent is None:
                return self._skip(dt, "tick before initialize")

            if config is not None and config != self.config:
                if config.resolution_key != self.config.resolution_key:
                    vs, fs = derive_grid_spaces(self.extent, config)
                    self._apply_spaces(self.extent, config, vs, fs)
                else:
                    self.config = config
            config = self.config
            buffers = self.buffers

            try:
                if self.state is SimulationState.UNINITIALIZED or not buffers.allocated:
                    kind = "allocate"
                    buffers.ensure_allocated()
                    self._reset_requested = False
                elif self._reset_requested:
                    kind = "clear"
                    self.state = SimulationState.CLEARING
                    buffers.clear_all()
                else:
                    kind = "physics"
                    ctx = StageContext(self.backend, buffers, self.world_to_grid, config.fluid_resolution_scale)
                    for stage in self.stages:
                        stage.run(ctx, dt, config)
            except Exception:
                self.backend.discard()
                buffers.release_transients()
                if self.state is SimulationState.CLEARING:
                    self.state = SimulationState.INITIALIZED
                raise

            graph_holder: List[CommandGraph] = []
            passes = self.backend.submit(on_complete=graph_holder.append)
            buffers.release_transients()

            if kind == "physics":
                self.physics_frames += 1
            else:
                self.physics_frames = 0
                self._reset_requested = False
            self.state = SimulationState.INITIALIZED

            report = TickReport(kind=kind, dt=dt, passes=passes, frame=self.ticks)
            if is_enabled():
                dbg("sim").debug(f"tick {self.ticks}: {kind} dt={dt:.6g} passes={passes}")
                if kind == "physics":
                    fluid = self.backend.read_view(buffers.fluid.current)
                    dbg("sim").debug(f"fluid {describe_grid(fluid)}")
            graph = graph_holder[0] if graph_holder else None
            for fn in list(self._listeners):
                fn(report, graph)
            return report

    def _skip(self, dt: float, reason: str) -> TickReport:
        if is_enabled():
            dbg("sim").debug(f"tick {self.ticks} skipped: {reason}")
        report = TickReport(kind="skipped", dt=dt, frame=self.ticks)
        for fn in list(self._listeners):
            fn(report, None)
        return report

    # ------------------------------------------------------------------
    # External edits
    # ------------------------------------------------------------------
    def set_obstacles(self, mask: np.ndarray) -> None:
        """Upload a velocity-space obstacle mask (non-zero = solid)."""
        with self._lock:
            buffers = self._require_allocated()
            mask = np.asarray(mask)
            if mask.shape != tuple(buffers.velocity_space.resolution):
                raise ConfigurationError(
                    f"obstacle mask shape {mask.shape} != velocity resolution {buffers.velocity_space.resolution}"
                )
            self.backend.dispatch(
                "write_obstacles",
                {"mask": mask.copy()},
                buffers.velocity_space.thread_group_count,
                reads={},
                writes={"output": buffers.obstacles},
                label="write_obstacles",
            )
            self.backend.submit()

    def add_fluid_source(
        self,
        center: Sequence[float],
        radius: float,
        amount: Sequence[float] = (1.0, 100.0, 1.0, 0.0),
    ) -> None:
        """Splat ``amount`` (density, temperature, reaction, vapor) into a sphere.

        ``center`` and ``radius`` are in local world units; the volume spans
        ``[0, extent]`` on each axis.
        """
        if len(amount) != 4:
            raise ConfigurationError(f"amount must have 4 channels, got {len(amount)}")
        with self._lock:
            buffers = self._require_allocated()
            scale = self.config.fluid_resolution_scale
            w2g = np.asarray(self.world_to_grid, dtype=np.float64)
            center_f = np.asarray(center, dtype=np.float64) * w2g * scale - 0.5
            radius_f = float(radius) * float(w2g.mean()) * scale
            self.backend.dispatch(
                "splat_fluid",
                {
                    "center": tuple(center_f),
                    "radius": radius_f,
                    "amount": tuple(float(a) for a in amount),
                    "scale": scale,
                },
                buffers.fluid_space.thread_group_count,
                reads={"fluid_in": buffers.fluid.current, "obstacles_in": buffers.obstacles},
                writes={"output": buffers.fluid.alternate},
                label="splat_fluid",
            )
            buffers.fluid.swap()
            self.backend.submit()

    def _require_allocated(self) -> GridBufferSet:
        if self.buffers is None or not self.buffers.allocated or self.state is SimulationState.UNINITIALIZED:
            raise SimulationNotReady("grids are not allocated yet; run a tick first")
        return self.buffers

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------
    def fields(self) -> Dict[str, np.ndarray]:
        """Read-only views of the current velocity, fluid and pressure grids."""
        with self._lock:
            if self.buffers is None or not self.buffers.allocated or self.physics_frames == 0:
                raise SimulationNotReady("no physics frame since allocation or reset")
            handles = self.buffers.current_handles()
            return {name: self.backend.read_view(h) for name, h in handles.items() if name != "obstacles"}

    @property
    def velocity_resolution(self) -> Optional[Tuple[int, int, int]]:
        return None if self.velocity_space is None else self.velocity_space.resolution

    @property
    def fluid_resolution(self) -> Optional[Tuple[int, int, int]]:
        return None if self.fluid_space is None else self.fluid_space.resolution


__all__ = [
    "FireSimulation",
    "SimulationState",
    "TickReport",
    "TickListener",
    "default_pipeline",
]
