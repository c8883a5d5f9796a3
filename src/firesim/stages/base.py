# -*- coding: utf-8 -*-
"""Shared plumbing for stages."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Tuple

from ..backend import BufferHandle, ComputeBackend, Pass
from ..buffers import GridBufferSet
from ..config import FireSimulationConfig
from ..debug import dbg, is_enabled
from ..resolution import GridSpace


@dataclass(frozen=True)
class StageContext:
    """What a stage needs to record one tick's worth of dispatches."""

    backend: ComputeBackend
    buffers: GridBufferSet
    world_to_grid: Tuple[float, float, float]
    scale: int

    @property
    def velocity_space(self) -> GridSpace:
        return self.buffers.velocity_space

    @property
    def fluid_space(self) -> GridSpace:
        return self.buffers.fluid_space

    def dispatch(
        self,
        kernel_id: str,
        params: Mapping[str, Any],
        space: GridSpace,
        reads: Mapping[str, BufferHandle],
        writes: Mapping[str, BufferHandle],
        *,
        label: str = "",
    ) -> Pass:
        return self.backend.dispatch(kernel_id, params, space.thread_group_count, reads, writes, label=label)


class Stage:
    """A group of dispatches run once per tick."""

    name = "stage"

    def run(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def log(self, msg: str) -> None:
        if is_enabled():
            dbg(f"stage.{self.name}").debug(msg)


__all__ = ["Stage", "StageContext"]
