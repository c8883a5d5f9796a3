# -*- coding: utf-8 -*-
"""Grid buffer ownership for the fire solver.

:class:`GridBufferSet` owns every persistent grid the solver uses and the
per-tick scratch it borrows from the backend arena:

========== ======== ============= ========================================
field      space    format        buffering
========== ======== ============= ========================================
velocity   velocity RGB32F        double (current / alternate)
fluid      fluid    RGBA32F       double
pressure   velocity R32F          double (Jacobi ping-pong)
divergence velocity R32F          single, recomputed each tick
vorticity  velocity RGB32F        single, recomputed each tick
obstacles  velocity R32F          single, static mask
phi0/phi1  fluid    RGBA32F       transient, released after each tick
========== ======== ============= ========================================
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from .backend import BufferHandle, ComputeBackend, GridFormat
from .debug import dbg, is_enabled
from .errors import DependencyError
from .resolution import GridSpace


def clear_kernel_for(fmt: GridFormat) -> str:
    return "clear_float" if fmt is GridFormat.R32F else "clear_float4"


@dataclass
class DoubleBuffer:
    """Current/alternate pair for one field.

    Stages read ``current`` and write ``alternate``; :meth:`swap` makes the
    freshly written data current. Handles never change identity, the swap is
    recorded on the backend and exchanges the storage behind them.
    """

    name: str
    current: BufferHandle
    alternate: BufferHandle
    backend: ComputeBackend
    swaps: int = 0

    def swap(self) -> None:
        self.backend.swap(self.current, self.alternate)
        self.swaps += 1

    def handles(self) -> Tuple[BufferHandle, BufferHandle]:
        return self.current, self.alternate


class GridBufferSet:
    """Persistent grids plus transient scratch for one pair of grid spaces."""

    def __init__(self, backend: ComputeBackend, velocity_space: GridSpace, fluid_space: GridSpace) -> None:
        self.backend = backend
        self.velocity_space = velocity_space
        self.fluid_space = fluid_space
        self.velocity: Optional[DoubleBuffer] = None
        self.fluid: Optional[DoubleBuffer] = None
        self.pressure: Optional[DoubleBuffer] = None
        self.divergence: Optional[BufferHandle] = None
        self.vorticity: Optional[BufferHandle] = None
        self.obstacles: Optional[BufferHandle] = None
        self._transients: List[BufferHandle] = []

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------
    @property
    def allocated(self) -> bool:
        return all(
            x is not None
            for x in (self.velocity, self.fluid, self.pressure, self.divergence, self.vorticity, self.obstacles)
        )

    def ensure_allocated(self) -> bool:
        """Allocate missing grids and record clears for them.

        Returns True when anything was allocated. Arena storage can be
        reused from a previous simulation, so every new grid is cleared
        before any stage reads it.
        """
        fresh: List[Tuple[BufferHandle, GridSpace]] = []

        def single(name: str, space: GridSpace, fmt: GridFormat) -> BufferHandle:
            h = self.backend.allocate_grid(space.resolution, fmt, name)
            fresh.append((h, space))
            return h

        def double(name: str, space: GridSpace, fmt: GridFormat) -> DoubleBuffer:
            return DoubleBuffer(
                name,
                single(f"{name}.current", space, fmt),
                single(f"{name}.alternate", space, fmt),
                self.backend,
            )

        vs, fs = self.velocity_space, self.fluid_space
        if self.obstacles is None:
            self.obstacles = single("obstacles", vs, GridFormat.R32F)
        if self.velocity is None:
            self.velocity = double("velocity", vs, GridFormat.RGB32F)
        if self.fluid is None:
            self.fluid = double("fluid", fs, GridFormat.RGBA32F)
        if self.pressure is None:
            self.pressure = double("pressure", vs, GridFormat.R32F)
        if self.divergence is None:
            self.divergence = single("divergence", vs, GridFormat.R32F)
        if self.vorticity is None:
            self.vorticity = single("vorticity", vs, GridFormat.RGB32F)

        for h, space in fresh:
            self._clear(h, space)
        if fresh and is_enabled():
            dbg("buffers").debug(
                f"allocated {len(fresh)} grids velocity={vs.resolution} fluid={fs.resolution}"
            )
        return bool(fresh)

    def clear_all(self) -> None:
        """Record clears for every persistent grid; obstacles become open."""
        if not self.allocated:
            raise DependencyError("clear_all before allocation")
        for h, space in self.persistent():
            self._clear(h, space)
        if is_enabled():
            dbg("buffers").debug("cleared all grids")

    def persistent(self) -> Iterator[Tuple[BufferHandle, GridSpace]]:
        vs, fs = self.velocity_space, self.fluid_space
        if self.obstacles is not None:
            yield self.obstacles, vs
        for db, space in ((self.velocity, vs), (self.fluid, fs), (self.pressure, vs)):
            if db is not None:
                yield db.current, space
                yield db.alternate, space
        for h in (self.divergence, self.vorticity):
            if h is not None:
                yield h, vs

    def _clear(self, handle: BufferHandle, space: GridSpace) -> None:
        self.backend.dispatch(
            clear_kernel_for(handle.format),
            {"value": 0.0},
            space.thread_group_count,
            reads={},
            writes={"output": handle},
            label=f"clear:{handle.name}",
        )

    # ------------------------------------------------------------------
    # Transients
    # ------------------------------------------------------------------
    def transient(self, name: str, space: GridSpace, fmt: GridFormat) -> BufferHandle:
        """Borrow scratch storage from the arena for the current tick."""
        h = self.backend.allocate_grid(space.resolution, fmt, name)
        self._transients.append(h)
        return h

    def release_transients(self) -> None:
        while self._transients:
            self.backend.release(self._transients.pop())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def release(self) -> None:
        """Return every grid to the backend arena."""
        self.release_transients()
        for h, _ in list(self.persistent()):
            self.backend.release(h)
        self.velocity = self.fluid = self.pressure = None
        self.divergence = self.vorticity = self.obstacles = None
        if is_enabled():
            dbg("buffers").debug("released all grids")

    def current_handles(self) -> Dict[str, BufferHandle]:
        """Handles the renderer may sample."""
        if not self.allocated:
            raise DependencyError("grids are not allocated")
        return {
            "velocity": self.velocity.current,
            "fluid": self.fluid.current,
            "pressure": self.pressure.current,
            "obstacles": self.obstacles,
        }


__all__ = ["DoubleBuffer", "GridBufferSet", "clear_kernel_for"]
