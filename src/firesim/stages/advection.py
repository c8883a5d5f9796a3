# -*- coding: utf-8 -*-
"""Advection of fluid data (MacCormack) and velocity (semi-Lagrangian).

Fluid data carries the visible detail, so it gets the second-order scheme:

1. forward trace of the previous field        -> phi1
2. backward trace of phi1                     -> phi0
3. phi1 + (previous - phi0) / 2, limited to the neighbourhood of the
   forward trace, then dissipation and decay  -> fluid.alternate

Velocity is traced once; the projection stage damps what the cheaper
scheme leaves behind. Both fluid passes sample the pre-advection velocity:
the velocity swap is recorded after them, so the backend orders it after
their reads.
"""
from __future__ import annotations

from ..backend import GridFormat
from ..config import FireSimulationConfig
from .base import Stage, StageContext


class AdvectionStage(Stage):
    name = "advection"

    def run(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        self.advect_fluid(ctx, dt, config)
        self.advect_velocity(ctx, dt, config)

    def advect_fluid(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        b = ctx.buffers
        fs = ctx.fluid_space
        phi1 = b.transient("phi1", fs, GridFormat.RGBA32F)
        phi0 = b.transient("phi0", fs, GridFormat.RGBA32F)
        trace = {
            "dt": float(dt),
            "scale": ctx.scale,
            "world_to_grid": ctx.world_to_grid,
        }
        ctx.dispatch(
            "prepare_fluid_advection",
            dict(trace, forward=1.0),
            fs,
            reads={"velocity_in": b.velocity.current, "phi_in": b.fluid.current, "obstacles_in": b.obstacles},
            writes={"output": phi1},
            label="prepare_fluid_advection:forward",
        )
        ctx.dispatch(
            "prepare_fluid_advection",
            dict(trace, forward=-1.0),
            fs,
            reads={"velocity_in": b.velocity.current, "phi_in": phi1, "obstacles_in": b.obstacles},
            writes={"output": phi0},
            label="prepare_fluid_advection:backward",
        )
        ctx.dispatch(
            "advect_fluid",
            dict(
                trace,
                dissipation=tuple(config.fluid_dissipation),
                decay=tuple(config.fluid_decay),
            ),
            fs,
            reads={
                "velocity_in": b.velocity.current,
                "fluid_in": b.fluid.current,
                "phi0": phi0,
                "phi1": phi1,
                "obstacles_in": b.obstacles,
            },
            writes={"output": b.fluid.alternate},
            label="advect_fluid",
        )
        b.fluid.swap()
        self.log(f"fluid: dt={dt:.6g} res={fs.resolution} scale={ctx.scale}")

    def advect_velocity(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "advect_velocity",
            {
                "dt": float(dt),
                "world_to_grid": ctx.world_to_grid,
                "dissipation": tuple(config.dissipation),
            },
            ctx.velocity_space,
            reads={"velocity_in": b.velocity.current, "obstacles_in": b.obstacles},
            writes={"output": b.velocity.alternate},
            label="advect_velocity",
        )
        b.velocity.swap()
        self.log(f"velocity: dt={dt:.6g} dissipation={tuple(config.dissipation)}")


__all__ = ["AdvectionStage"]
