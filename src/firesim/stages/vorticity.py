# -*- coding: utf-8 -*-
"""Vorticity confinement: give back the swirl advection smears out."""
from __future__ import annotations

from ..config import FireSimulationConfig
from .base import Stage, StageContext


class VorticityConfinementStage(Stage):
    name = "vorticity"

    def run(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        self.calculate_vorticity(ctx)
        self.update_confinement(ctx, dt, config)

    def calculate_vorticity(self, ctx: StageContext) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "vorticity",
            {},
            ctx.velocity_space,
            reads={"velocity_in": b.velocity.current},
            writes={"output": b.vorticity},
            label="vorticity",
        )

    def update_confinement(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "confinement",
            {"dt": float(dt), "strength": float(config.vorticity_strength)},
            ctx.velocity_space,
            reads={"velocity_in": b.velocity.current, "vorticity_in": b.vorticity, "obstacles_in": b.obstacles},
            writes={"output": b.velocity.alternate},
            label="confinement",
        )
        b.velocity.swap()
        self.log(f"confinement: strength={config.vorticity_strength}")


__all__ = ["VorticityConfinementStage"]
