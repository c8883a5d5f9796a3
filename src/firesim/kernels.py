# -*- coding: utf-8 -*-
"""Per-texel kernels for the fire solver.

Every kernel has the signature ``kernel(params, inputs, outputs)`` where
``inputs`` and ``outputs`` map binding names to numpy arrays. Kernels read
only their inputs and write only their outputs (in place); the backend
guarantees the two never alias.

Conventions
-----------
- Grids are ``(nx, ny, nz)`` for scalars and ``(nx, ny, nz, c)`` for vectors.
- Positions are in index space of the grid being sampled: cell ``i`` sits at
  coordinate ``i``. The velocity cell centre ``i`` maps to fluid coordinate
  ``(i + 0.5) * S - 0.5`` and back.
- Sampling is trilinear with clamp-to-edge addressing.
- Finite differences are central with edge-replicated neighbours; solid
  neighbours are substituted per kernel (zero velocity, centre pressure).
- Solid cells (obstacle mask non-zero) are written as zero by every kernel
  that produces velocity or fluid data.

References (informal)
---------------------
- Stam (1999) "Stable Fluids"
- Selle et al. (2008) "An Unconditionally Stable MacCormack Method"
- Fedkiw, Stam, Jensen (2001) "Visual Simulation of Smoke"
- Crane, Llamas, Tariq (2007) "Real-Time Simulation and Rendering of 3D
  Fluids", GPU Gems 3
"""
from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np

KernelFn = Callable[[Mapping[str, Any], Mapping[str, np.ndarray], Mapping[str, np.ndarray]], None]

KERNELS: Dict[str, KernelFn] = {}

# Guards the normalisation in vorticity confinement.
CONFINEMENT_EPS = 1e-5


def kernel(kernel_id: str) -> Callable[[KernelFn], KernelFn]:
    """Register ``fn`` under ``kernel_id``."""

    def deco(fn: KernelFn) -> KernelFn:
        if kernel_id in KERNELS:
            raise ValueError(f"kernel {kernel_id!r} registered twice")
        KERNELS[kernel_id] = fn
        return fn

    return deco


# ---------------------------------------------------------------------------
# Sampling helpers
# ---------------------------------------------------------------------------
def cell_coords(resolution: Tuple[int, int, int]) -> np.ndarray:
    """Index-space coordinates of every cell, shape ``(nx, ny, nz, 3)``."""
    return np.stack(np.meshgrid(*(np.arange(n, dtype=np.float64) for n in resolution), indexing="ij"), axis=-1)


def solid_mask(obstacles: np.ndarray) -> np.ndarray:
    return obstacles != 0


def upsample_mask(mask: np.ndarray, scale: int) -> np.ndarray:
    """Nearest-neighbour upsample of a velocity-space mask to fluid space."""
    if scale == 1:
        return mask
    return mask.repeat(scale, axis=0).repeat(scale, axis=1).repeat(scale, axis=2)


def _corners(shape3: Tuple[int, ...], pos: np.ndarray):
    n = np.asarray(shape3, dtype=np.int64)
    x = np.clip(pos, 0.0, n - 1)
    i0 = np.minimum(np.floor(x).astype(np.int64), n - 1)
    i1 = np.minimum(i0 + 1, n - 1)
    return i0, i1, x - i0


def trilinear(F: np.ndarray, pos: np.ndarray, solid: Optional[np.ndarray] = None) -> np.ndarray:
    """Trilinear sample of ``F`` at index-space ``pos`` (..., 3).

    With ``solid`` given, solid corners get zero weight and the remaining
    weights are renormalised; a sample surrounded only by solids is zero.
    A position exactly on a cell returns that cell's value unchanged.
    """
    i0, i1, t = _corners(F.shape[:3], pos)
    vector = F.ndim == 4
    acc = np.zeros(pos.shape[:-1] + F.shape[3:], dtype=np.float64)
    wsum = np.zeros(pos.shape[:-1], dtype=np.float64) if solid is not None else None
    for cx, cy, cz in itertools.product((0, 1), repeat=3):
        ix = i1[..., 0] if cx else i0[..., 0]
        iy = i1[..., 1] if cy else i0[..., 1]
        iz = i1[..., 2] if cz else i0[..., 2]
        w = (t[..., 0] if cx else 1.0 - t[..., 0])
        w = w * (t[..., 1] if cy else 1.0 - t[..., 1])
        w = w * (t[..., 2] if cz else 1.0 - t[..., 2])
        if solid is not None:
            w = w * ~solid[ix, iy, iz]
            wsum += w
        acc += (w[..., None] if vector else w) * F[ix, iy, iz]
    if solid is not None:
        safe = np.where(wsum > 0.0, wsum, 1.0)
        acc = acc / (safe[..., None] if vector else safe)
        empty = wsum <= 0.0
        acc[empty] = 0.0
    return acc


def corner_bounds(F: np.ndarray, pos: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Min and max of the eight cells surrounding each sample position."""
    i0, i1, _ = _corners(F.shape[:3], pos)
    lo = hi = None
    for cx, cy, cz in itertools.product((0, 1), repeat=3):
        v = F[
            i1[..., 0] if cx else i0[..., 0],
            i1[..., 1] if cy else i0[..., 1],
            i1[..., 2] if cz else i0[..., 2],
        ]
        lo = v if lo is None else np.minimum(lo, v)
        hi = v if hi is None else np.maximum(hi, v)
    return lo, hi


def neighbors(F: np.ndarray, axis: int) -> Tuple[np.ndarray, np.ndarray]:
    """``(F[i+1], F[i-1])`` along ``axis`` with edge-replicated borders."""
    pad = [(0, 0)] * F.ndim
    pad[axis] = (1, 1)
    P = np.pad(F, pad, mode="edge")
    hi = [slice(None)] * F.ndim
    lo = [slice(None)] * F.ndim
    hi[axis] = slice(2, None)
    lo[axis] = slice(0, -2)
    return P[tuple(hi)], P[tuple(lo)]


def central_difference(F: np.ndarray, axis: int) -> np.ndarray:
    plus, minus = neighbors(F, axis)
    return 0.5 * (plus - minus)


def curl(v: np.ndarray) -> np.ndarray:
    """Central-difference curl of a ``(nx, ny, nz, 3)`` field."""
    d = [[central_difference(v[..., c], axis) for axis in range(3)] for c in range(3)]
    # d[c][a] = d v_c / d x_a
    return np.stack(
        [
            d[2][1] - d[1][2],
            d[0][2] - d[2][0],
            d[1][0] - d[0][1],
        ],
        axis=-1,
    )


def divergence_of(v: np.ndarray, solid: Optional[np.ndarray] = None) -> np.ndarray:
    """Central-difference divergence; solid neighbours contribute zero velocity."""
    div = np.zeros(v.shape[:3], dtype=np.float64)
    for axis in range(3):
        vp, vm = neighbors(v[..., axis], axis)
        if solid is not None:
            sp, sm = neighbors(solid, axis)
            vp = np.where(sp, 0.0, vp)
            vm = np.where(sm, 0.0, vm)
        div += 0.5 * (vp - vm)
    if solid is not None:
        div[solid] = 0.0
    return div


def _velocity_to_fluid(resolution, scale: int) -> np.ndarray:
    return (cell_coords(resolution) + 0.5) * scale - 0.5


def _fluid_to_velocity(resolution, scale: int) -> np.ndarray:
    return (cell_coords(resolution) + 0.5) / scale - 0.5


# ---------------------------------------------------------------------------
# Clears and uploads
# ---------------------------------------------------------------------------
@kernel("clear_float")
def clear_float(params, inputs, outputs) -> None:
    outputs["output"][...] = float(params.get("value", 0.0))


@kernel("clear_float4")
def clear_float4(params, inputs, outputs) -> None:
    outputs["output"][...] = float(params.get("value", 0.0))


@kernel("write_obstacles")
def write_obstacles(params, inputs, outputs) -> None:
    out = outputs["output"]
    mask = np.asarray(params["mask"])
    if mask.shape != out.shape:
        raise ValueError(f"obstacle mask shape {mask.shape} != grid {out.shape}")
    out[...] = (mask != 0).astype(out.dtype)


@kernel("splat_fluid")
def splat_fluid(params, inputs, outputs) -> None:
    """Add ``amount`` with a cone falloff around ``center`` (fluid index space)."""
    fluid = inputs["fluid_in"]
    out = outputs["output"]
    scale = int(params["scale"])
    solid = upsample_mask(solid_mask(inputs["obstacles_in"]), scale)
    radius = max(float(params["radius"]), 1e-6)
    r = np.linalg.norm(cell_coords(fluid.shape[:3]) - np.asarray(params["center"], dtype=np.float64), axis=-1)
    w = np.maximum(0.0, 1.0 - r / radius)
    res = fluid + w[..., None] * np.asarray(params["amount"], dtype=np.float64)
    res[solid] = 0.0
    out[...] = res


# ---------------------------------------------------------------------------
# Advection
# ---------------------------------------------------------------------------
@kernel("prepare_fluid_advection")
def prepare_fluid_advection(params, inputs, outputs) -> None:
    """One semi-Lagrangian trace of ``phi_in`` through the velocity field.

    ``forward=+1`` traces backward in time (the ordinary advection step);
    ``forward=-1`` traces forward in time, used for the MacCormack
    error estimate.
    """
    phi = inputs["phi_in"]
    vel = inputs["velocity_in"]
    out = outputs["output"]
    scale = int(params["scale"])
    res = phi.shape[:3]
    solid = upsample_mask(solid_mask(inputs["obstacles_in"]), scale)

    v = trilinear(vel, _fluid_to_velocity(res, scale))
    step = float(params["forward"]) * float(params["dt"]) * scale * np.asarray(params["world_to_grid"])
    src = cell_coords(res) - v * step
    val = trilinear(phi, src, solid)
    val[solid] = 0.0
    out[...] = val


@kernel("advect_fluid")
def advect_fluid(params, inputs, outputs) -> None:
    """MacCormack correction, limiter, dissipation and decay for fluid data."""
    fluid = inputs["fluid_in"]
    phi0 = inputs["phi0"]
    phi1 = inputs["phi1"]
    vel = inputs["velocity_in"]
    out = outputs["output"]
    scale = int(params["scale"])
    dt = float(params["dt"])
    res = fluid.shape[:3]
    solid = upsample_mask(solid_mask(inputs["obstacles_in"]), scale)

    v = trilinear(vel, _fluid_to_velocity(res, scale))
    src = cell_coords(res) - v * (dt * scale * np.asarray(params["world_to_grid"]))
    lo, hi = corner_bounds(fluid, src)

    corrected = phi1 + 0.5 * (fluid.astype(np.float64) - phi0)
    corrected = np.clip(corrected, lo, hi)

    dissipation = np.asarray(params["dissipation"], dtype=np.float64)
    decay = np.asarray(params["decay"], dtype=np.float64)
    corrected = corrected / (1.0 + dissipation * dt) * np.exp(-decay * dt)
    corrected[solid] = 0.0
    out[...] = corrected


@kernel("advect_velocity")
def advect_velocity(params, inputs, outputs) -> None:
    vel = inputs["velocity_in"]
    out = outputs["output"]
    dt = float(params["dt"])
    solid = solid_mask(inputs["obstacles_in"])

    src = cell_coords(vel.shape[:3]) - vel * (dt * np.asarray(params["world_to_grid"]))
    res = trilinear(vel, src, solid)
    res = res / (1.0 + np.asarray(params["dissipation"], dtype=np.float64) * dt)
    res[solid] = 0.0
    out[...] = res


# ---------------------------------------------------------------------------
# Forces and reaction
# ---------------------------------------------------------------------------
@kernel("buoyancy")
def buoyancy(params, inputs, outputs) -> None:
    """Hot cells rise, dense cells sink; quiescent ambient air is untouched."""
    vel = inputs["velocity_in"]
    fluid = inputs["fluid_in"]
    out = outputs["output"]
    dt = float(params["dt"])
    scale = int(params["scale"])
    solid = solid_mask(inputs["obstacles_in"])

    sample = trilinear(fluid, _velocity_to_fluid(vel.shape[:3], scale))
    density = sample[..., 0]
    temperature = sample[..., 1]
    ambient = float(params["ambient_temperature"])
    lift = float(params["buoyancy"]) * (temperature - ambient) - float(params["weight"]) * density
    lift = np.where(temperature > ambient, lift, 0.0)

    res = vel + (dt * lift)[..., None] * np.asarray(params["up"], dtype=np.float64)
    res[solid] = 0.0
    out[...] = res


@kernel("extinguish")
def extinguish(params, inputs, outputs) -> None:
    """Consume reaction, cool by vapor and release heat along the reaction curve."""
    fluid = inputs["fluid_in"].astype(np.float64)
    out = outputs["output"]
    dt = float(params["dt"])
    scale = int(params["scale"])
    solid = upsample_mask(solid_mask(inputs["obstacles_in"]), scale)
    vapor_cooling, vapor_extinguish, reaction_extinguish = (float(x) for x in params["extinguishment"])
    d0, d1, d2 = (float(x) for x in params["temperature_distribution"])

    density = fluid[..., 0]
    temperature = fluid[..., 1]
    reaction = fluid[..., 2]
    vapor = fluid[..., 3]

    burn = dt * (float(params["amount"]) + reaction_extinguish * vapor)
    heat = np.where(reaction > 0.0, d0 + d1 * reaction + d2 * reaction * reaction, 0.0)
    res = np.empty_like(fluid)
    res[..., 0] = density
    res[..., 1] = np.maximum(temperature - dt * vapor_cooling * vapor + dt * heat, 0.0)
    res[..., 2] = np.maximum(reaction - burn, 0.0)
    res[..., 3] = np.maximum(vapor - dt * vapor_extinguish * reaction, 0.0)
    res[solid] = 0.0
    out[...] = res


# ---------------------------------------------------------------------------
# Vorticity
# ---------------------------------------------------------------------------
@kernel("vorticity")
def vorticity(params, inputs, outputs) -> None:
    outputs["output"][...] = curl(inputs["velocity_in"].astype(np.float64))


@kernel("confinement")
def confinement(params, inputs, outputs) -> None:
    vel = inputs["velocity_in"]
    omega = inputs["vorticity_in"].astype(np.float64)
    out = outputs["output"]
    solid = solid_mask(inputs["obstacles_in"])

    mag = np.linalg.norm(omega, axis=-1)
    eta = np.stack([central_difference(mag, axis) for axis in range(3)], axis=-1)
    n = eta / (np.linalg.norm(eta, axis=-1, keepdims=True) + CONFINEMENT_EPS)
    force = float(params["strength"]) * float(params["dt"]) * np.cross(n, omega)

    res = vel + force
    res[solid] = 0.0
    out[...] = res


# ---------------------------------------------------------------------------
# Pressure projection
# ---------------------------------------------------------------------------
@kernel("divergence")
def divergence(params, inputs, outputs) -> None:
    solid = solid_mask(inputs["obstacles_in"])
    outputs["output"][...] = divergence_of(inputs["velocity_in"].astype(np.float64), solid)


@kernel("pressure")
def pressure(params, inputs, outputs) -> None:
    """One Jacobi sweep of ``laplacian(p) = rhs_scale * divergence``."""
    p = inputs["pressure_in"].astype(np.float64)
    div = inputs["divergence_in"]
    solid = solid_mask(inputs["obstacles_in"])

    acc = np.zeros_like(p)
    for axis in range(3):
        pp, pm = neighbors(p, axis)
        sp, sm = neighbors(solid, axis)
        acc += np.where(sp, p, pp) + np.where(sm, p, pm)
    res = (acc - float(params["rhs_scale"]) * div) / 6.0
    res[solid] = 0.0
    outputs["output"][...] = res


@kernel("projection")
def projection(params, inputs, outputs) -> None:
    """Subtract ``dt * grad(p)``; without a pressure input only solids are zeroed."""
    vel = inputs["velocity_in"]
    solid = solid_mask(inputs["obstacles_in"])
    res = vel.astype(np.float64)

    p = inputs.get("pressure_in")
    if p is not None:
        p = p.astype(np.float64)
        dt = float(params["dt"])
        for axis in range(3):
            pp, pm = neighbors(p, axis)
            sp, sm = neighbors(solid, axis)
            grad = 0.5 * (np.where(sp, p, pp) - np.where(sm, p, pm))
            comp = res[..., axis] - dt * grad
            res[..., axis] = np.where(sp | sm, 0.0, comp)
    res[solid] = 0.0
    outputs["output"][...] = res


__all__ = [
    "KERNELS",
    "KernelFn",
    "kernel",
    "cell_coords",
    "trilinear",
    "corner_bounds",
    "neighbors",
    "central_difference",
    "curl",
    "divergence_of",
    "upsample_mask",
]
