# -*- coding: utf-8 -*-
"""Buoyancy and combustion/extinguishment."""
from __future__ import annotations

from ..config import FireSimulationConfig
from .base import Stage, StageContext


class ForceReactionStage(Stage):
    name = "forces"

    def run(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        self.apply_buoyancy(ctx, dt, config)
        self.handle_extinguish(ctx, dt, config)

    def apply_buoyancy(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "buoyancy",
            {
                "dt": float(dt),
                "scale": ctx.scale,
                "buoyancy": float(config.buoyancy),
                "weight": float(config.density_weight),
                "ambient_temperature": float(config.ambient_temperature),
                "up": tuple(config.up),
            },
            ctx.velocity_space,
            reads={"velocity_in": b.velocity.current, "fluid_in": b.fluid.current, "obstacles_in": b.obstacles},
            writes={"output": b.velocity.alternate},
            label="buoyancy",
        )
        b.velocity.swap()
        self.log(f"buoyancy: {config.buoyancy} weight={config.density_weight} ambient={config.ambient_temperature}")

    def handle_extinguish(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "extinguish",
            {
                "dt": float(dt),
                "scale": ctx.scale,
                "amount": float(config.reaction_amount),
                "extinguishment": (
                    float(config.vapor_cooling),
                    float(config.vapor_extinguish),
                    float(config.reaction_extinguish),
                ),
                "temperature_distribution": tuple(config.temperature_distribution),
            },
            ctx.fluid_space,
            reads={"fluid_in": b.fluid.current, "obstacles_in": b.obstacles},
            writes={"output": b.fluid.alternate},
            label="extinguish",
        )
        b.fluid.swap()
        self.log(f"extinguish: amount={config.reaction_amount}")


__all__ = ["ForceReactionStage"]
