# -*- coding: utf-8 -*-
"""Pressure projection: divergence, Jacobi solve, gradient subtraction.

The Poisson right-hand side is ``divergence / dt`` and the projection
subtracts ``dt * grad(p)``, so at ``dt == 0`` velocity is left alone while
the Jacobi sweeps still relax the pressure field. With zero iterations the
pressure buffer is neither read nor written and projection only enforces
zero velocity inside solids.
"""
from __future__ import annotations

from ..config import FireSimulationConfig
from .base import Stage, StageContext


class PressureProjectionStage(Stage):
    name = "projection"

    def run(self, ctx: StageContext, dt: float, config: FireSimulationConfig) -> None:
        iterations = int(config.num_pressure_iterations)
        self.calculate_divergence(ctx)
        for _ in range(iterations):
            self.solve_pressure(ctx, dt)
        self.do_projection(ctx, dt, use_pressure=iterations > 0)
        self.log(f"projection: dt={dt:.6g} iterations={iterations}")

    def calculate_divergence(self, ctx: StageContext) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "divergence",
            {},
            ctx.velocity_space,
            reads={"velocity_in": b.velocity.current, "obstacles_in": b.obstacles},
            writes={"output": b.divergence},
            label="divergence",
        )

    def solve_pressure(self, ctx: StageContext, dt: float) -> None:
        b = ctx.buffers
        ctx.dispatch(
            "pressure",
            {"rhs_scale": 1.0 / dt if dt > 0.0 else 0.0},
            ctx.velocity_space,
            reads={"pressure_in": b.pressure.current, "divergence_in": b.divergence, "obstacles_in": b.obstacles},
            writes={"output": b.pressure.alternate},
            label="pressure",
        )
        b.pressure.swap()

    def do_projection(self, ctx: StageContext, dt: float, *, use_pressure: bool) -> None:
        b = ctx.buffers
        reads = {"velocity_in": b.velocity.current, "obstacles_in": b.obstacles}
        if use_pressure:
            reads["pressure_in"] = b.pressure.current
        ctx.dispatch(
            "projection",
            {"dt": float(dt)},
            ctx.velocity_space,
            reads=reads,
            writes={"output": b.velocity.alternate},
            label="projection",
        )
        b.velocity.swap()


__all__ = ["PressureProjectionStage"]
