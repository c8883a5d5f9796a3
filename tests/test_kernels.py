import numpy as np
import pytest

from firesim import kernels as K


N = 8


def _zeros(channels=None):
    shape = (N, N, N) if channels is None else (N, N, N, channels)
    return np.zeros(shape, dtype=np.float32)


def test_registry_holds_every_pipeline_kernel():
    expected = {
        "clear_float", "clear_float4", "write_obstacles", "splat_fluid",
        "prepare_fluid_advection", "advect_fluid", "advect_velocity",
        "buoyancy", "extinguish", "vorticity", "confinement",
        "divergence", "pressure", "projection",
    }
    assert expected <= set(K.KERNELS)


def test_trilinear_exact_on_cells_and_linear_between():
    rng = np.random.default_rng(0)
    F = rng.random((N, N, N, 4))
    pos = K.cell_coords((N, N, N))
    assert np.array_equal(K.trilinear(F, pos), F)

    mid = np.array([[2.5, 3.0, 4.0]])
    expected = 0.5 * (F[2, 3, 4] + F[3, 3, 4])
    assert np.allclose(K.trilinear(F, mid)[0], expected)


def test_trilinear_clamps_to_edge():
    F = np.arange(N, dtype=np.float64)[:, None, None] * np.ones((N, N, N))
    out = K.trilinear(F, np.array([[-3.0, 1.0, 1.0], [N + 5.0, 1.0, 1.0]]))
    assert out.tolist() == [0.0, float(N - 1)]


def test_trilinear_ignores_solid_corners():
    F = np.ones((N, N, N))
    F[3] = 100.0
    solid = np.zeros((N, N, N), dtype=bool)
    solid[3] = True
    out = K.trilinear(F, np.array([[2.5, 1.0, 1.0], [3.0, 1.0, 1.0]]), solid)
    # open neighbour only; all-solid neighbourhood gives zero
    assert out.tolist() == [1.0, 0.0]


def test_curl_of_rigid_rotation():
    p = K.cell_coords((N, N, N))
    v = np.stack([-p[..., 1], p[..., 0], np.zeros_like(p[..., 0])], axis=-1)
    w = K.curl(v)
    inner = w[1:-1, 1:-1, 1:-1]
    assert np.allclose(inner[..., 2], 2.0)
    assert np.allclose(inner[..., :2], 0.0)


def test_divergence_of_linear_field_and_solid_neighbours():
    p = K.cell_coords((N, N, N))
    v = np.zeros((N, N, N, 3))
    v[..., 0] = p[..., 0]
    div = K.divergence_of(v)
    assert np.allclose(div[1:-1], 1.0)

    solid = np.zeros((N, N, N), dtype=bool)
    solid[5] = True
    div = K.divergence_of(v, solid)
    assert np.all(div[5] == 0.0)
    # x+ neighbour is solid: 0.5 * (0 - 3)
    assert np.allclose(div[4], -1.5)


def test_extinguish_reaction_curve():
    fluid = _zeros(4)
    fluid[...] = (2.0, 100.0, 1.0, 0.5)
    out = _zeros(4)
    K.KERNELS["extinguish"](
        {
            "dt": 0.1,
            "scale": 1,
            "amount": 0.2,
            "extinguishment": (50.0, 0.1, 0.15),
            "temperature_distribution": (1.0, 2.0, 3.0),
        },
        {"fluid_in": fluid, "obstacles_in": _zeros()},
        {"output": out},
    )
    d, t, r, v = out[0, 0, 0]
    assert d == pytest.approx(2.0)
    assert r == pytest.approx(1.0 - 0.1 * (0.2 + 0.15 * 0.5))
    assert v == pytest.approx(0.5 - 0.1 * 0.1 * 1.0)
    assert t == pytest.approx(100.0 - 0.1 * 50.0 * 0.5 + 0.1 * 6.0, rel=1e-6)


def test_extinguish_never_goes_negative():
    fluid = _zeros(4)
    fluid[...] = (0.0, 1.0, 0.01, 10.0)
    out = _zeros(4)
    K.KERNELS["extinguish"](
        {"dt": 1.0, "scale": 1, "amount": 5.0, "extinguishment": (50.0, 10.0, 1.0),
         "temperature_distribution": (0.0, 0.0, 0.0)},
        {"fluid_in": fluid, "obstacles_in": _zeros()},
        {"output": out},
    )
    assert np.all(out >= 0.0)
    assert np.all(out[..., 2] == 0.0)


def _buoyancy(temperature, density=2.0):
    fluid = _zeros(4)
    fluid[..., 0] = density
    fluid[..., 1] = temperature
    out = _zeros(3)
    K.KERNELS["buoyancy"](
        {"dt": 0.5, "scale": 1, "buoyancy": 1.0, "weight": 0.1,
         "ambient_temperature": 20.0, "up": (0.0, 0.0, 1.0)},
        {"velocity_in": _zeros(3), "fluid_in": fluid, "obstacles_in": _zeros()},
        {"output": out},
    )
    return out


def test_buoyancy_lifts_hot_cells_only():
    hot = _buoyancy(30.0)
    assert np.allclose(hot[..., 2], 0.5 * (10.0 - 0.2))
    assert np.all(hot[..., :2] == 0.0)
    cold = _buoyancy(10.0)
    assert np.all(cold == 0.0)


def test_maccormack_shifts_by_whole_cells():
    rng = np.random.default_rng(1)
    fluid = rng.random((N, N, N, 4)).astype(np.float32)
    vel = _zeros(3)
    vel[..., 0] = 1.0
    obstacles = _zeros()
    trace = {"dt": 1.0, "scale": 1, "world_to_grid": (1.0, 1.0, 1.0)}
    phi1, phi0, out = _zeros(4), _zeros(4), _zeros(4)
    K.KERNELS["prepare_fluid_advection"](
        dict(trace, forward=1.0),
        {"velocity_in": vel, "phi_in": fluid, "obstacles_in": obstacles},
        {"output": phi1},
    )
    K.KERNELS["prepare_fluid_advection"](
        dict(trace, forward=-1.0),
        {"velocity_in": vel, "phi_in": phi1, "obstacles_in": obstacles},
        {"output": phi0},
    )
    K.KERNELS["advect_fluid"](
        dict(trace, dissipation=(0.0,) * 4, decay=(0.0,) * 4),
        {"velocity_in": vel, "fluid_in": fluid, "phi0": phi0, "phi1": phi1, "obstacles_in": obstacles},
        {"output": out},
    )
    assert np.allclose(out[1:-1], fluid[:-2], atol=1e-6)


def test_advect_fluid_applies_dissipation_and_decay():
    fluid = _zeros(4)
    fluid[...] = 1.0
    vel = _zeros(3)
    out = _zeros(4)
    dt = 0.5
    K.KERNELS["advect_fluid"](
        {"dt": dt, "scale": 1, "world_to_grid": (1.0, 1.0, 1.0),
         "dissipation": (1.0, 0.0, 0.0, 0.0), "decay": (0.0, 2.0, 0.0, 0.0)},
        {"velocity_in": vel, "fluid_in": fluid, "phi0": fluid, "phi1": fluid, "obstacles_in": _zeros()},
        {"output": out},
    )
    assert np.allclose(out[..., 0], 1.0 / 1.5)
    assert np.allclose(out[..., 1], np.exp(-1.0))
    assert np.allclose(out[..., 2:], 1.0)


def test_pressure_keeps_uniform_field_and_zeroes_solids():
    p = np.full((N, N, N), 3.0, dtype=np.float32)
    obstacles = _zeros()
    obstacles[2, 2, 2] = 1.0
    out = _zeros()
    K.KERNELS["pressure"](
        {"rhs_scale": 1.0},
        {"pressure_in": p, "divergence_in": _zeros(), "obstacles_in": obstacles},
        {"output": out},
    )
    assert out[2, 2, 2] == 0.0
    out[2, 2, 2] = 3.0
    assert np.allclose(out, 3.0)


def test_projection_zeroes_components_facing_solids():
    vel = np.ones((N, N, N, 3), dtype=np.float32)
    obstacles = _zeros()
    obstacles[4, 4, 4] = 1.0
    out = _zeros(3)
    K.KERNELS["projection"](
        {"dt": 1.0},
        {"velocity_in": vel, "obstacles_in": obstacles, "pressure_in": _zeros()},
        {"output": out},
    )
    assert np.all(out[4, 4, 4] == 0.0)
    assert out[3, 4, 4].tolist() == [0.0, 1.0, 1.0]
    assert out[4, 5, 4].tolist() == [1.0, 0.0, 1.0]
    assert np.all(out[0, 0, 0] == 1.0)


def test_projection_without_pressure_only_masks_solids():
    vel = np.ones((N, N, N, 3), dtype=np.float32)
    obstacles = _zeros()
    obstacles[4, 4, 4] = 1.0
    out = _zeros(3)
    K.KERNELS["projection"]({"dt": 1.0}, {"velocity_in": vel, "obstacles_in": obstacles}, {"output": out})
    assert np.all(out[4, 4, 4] == 0.0)
    assert np.all(out[3, 4, 4] == 1.0)


def test_confinement_zero_strength_is_identity():
    rng = np.random.default_rng(2)
    vel = rng.standard_normal((N, N, N, 3)).astype(np.float32)
    w = K.curl(vel.astype(np.float64)).astype(np.float32)
    out = _zeros(3)
    K.KERNELS["confinement"](
        {"dt": 1.0, "strength": 0.0},
        {"velocity_in": vel, "vorticity_in": w, "obstacles_in": _zeros()},
        {"output": out},
    )
    assert np.array_equal(out, vel)


def _gaussian_vortex(n=16, sigma=4.0):
    """Swirl about the z axis through the grid centre, constant along z."""
    idx = np.arange(n, dtype=np.float64) - (n - 1) / 2.0
    x, y, _ = np.meshgrid(idx, idx, idx, indexing="ij")
    g = np.exp(-(x * x + y * y) / (sigma * sigma))
    vel = np.stack([-y * g, x * g, np.zeros_like(g)], axis=-1).astype(np.float32)
    return vel, x, y


def test_confinement_force_is_n_cross_omega():
    vel, x, y = _gaussian_vortex()
    n = vel.shape[0]
    omega = K.curl(vel.astype(np.float64)).astype(np.float32)
    out = np.zeros_like(vel)
    strength, dt = 2.0, 0.1
    K.KERNELS["confinement"](
        {"dt": dt, "strength": strength},
        {"velocity_in": vel, "vorticity_in": omega, "obstacles_in": np.zeros((n, n, n), np.float32)},
        {"output": out},
    )

    w = omega.astype(np.float64)
    mag = np.linalg.norm(w, axis=-1)
    eta = np.stack([K.central_difference(mag, a) for a in range(3)], axis=-1)
    normal = eta / (np.linalg.norm(eta, axis=-1, keepdims=True) + K.CONFINEMENT_EPS)
    expected = vel + strength * dt * np.cross(normal, w)
    assert np.allclose(out, expected, atol=1e-6)

    # inside the core |omega| falls off outward, so the push co-rotates
    r = np.hypot(x, y)
    core = (r < 2.5) & (r > 0.0)
    phi_hat = np.stack([-y, x], axis=-1) / np.where(r > 0.0, r, 1.0)[..., None]
    push = np.sum((out - vel)[..., :2] * phi_hat, axis=-1)
    assert np.all(push[core] > 0.0)

    # and the swirl at the core gets stronger
    before = K.curl(vel.astype(np.float64))[..., 2]
    after = K.curl(out.astype(np.float64))[..., 2]
    inner = r < 1.0
    assert after[inner].mean() > before[inner].mean()


def test_advect_velocity_shifts_by_one_cell():
    vel = _zeros(3)
    vel[..., 0] = 1.0
    vel[..., 1] = np.arange(N, dtype=np.float32)[:, None, None]
    out = _zeros(3)
    K.KERNELS["advect_velocity"](
        {"dt": 1.0, "world_to_grid": (1.0, 1.0, 1.0), "dissipation": (0.0, 0.0, 0.0)},
        {"velocity_in": vel, "obstacles_in": _zeros()},
        {"output": out},
    )
    expected = [0.0] + list(range(N - 1))
    assert np.allclose(out[:, 3, 3, 1], expected)
    assert np.allclose(out[..., 0], 1.0)
    assert np.all(out[..., 2] == 0.0)


def test_advect_velocity_divides_by_dissipation_per_axis():
    vel = _zeros(3)
    vel[..., 0] = 1.0
    vel[..., 1] = np.arange(N, dtype=np.float32)[:, None, None]
    out = _zeros(3)
    K.KERNELS["advect_velocity"](
        {"dt": 1.0, "world_to_grid": (1.0, 1.0, 1.0), "dissipation": (0.5, 0.25, 0.0)},
        {"velocity_in": vel, "obstacles_in": _zeros()},
        {"output": out},
    )
    assert np.allclose(out[..., 0], 1.0 / 1.5)
    shifted = np.array([0.0] + list(range(N - 1)))
    assert np.allclose(out[:, 3, 3, 1], shifted / 1.25)


def test_maccormack_trace_scales_into_fluid_space():
    # velocity 1 world unit/s, world_to_grid 0.5, S=2: one fluid cell per tick
    rng = np.random.default_rng(3)
    nf = 2 * N
    fluid = rng.random((nf, nf, nf, 4)).astype(np.float32)
    vel = _zeros(3)
    vel[..., 0] = 1.0
    obstacles = _zeros()
    trace = {"dt": 1.0, "scale": 2, "world_to_grid": (0.5, 0.5, 0.5)}
    shape = (nf, nf, nf, 4)
    phi1, phi0, out = (np.zeros(shape, np.float32) for _ in range(3))
    K.KERNELS["prepare_fluid_advection"](
        dict(trace, forward=1.0),
        {"velocity_in": vel, "phi_in": fluid, "obstacles_in": obstacles},
        {"output": phi1},
    )
    assert np.allclose(phi1[1:], fluid[:-1], atol=1e-6)
    K.KERNELS["prepare_fluid_advection"](
        dict(trace, forward=-1.0),
        {"velocity_in": vel, "phi_in": phi1, "obstacles_in": obstacles},
        {"output": phi0},
    )
    K.KERNELS["advect_fluid"](
        dict(trace, dissipation=(0.0,) * 4, decay=(0.0,) * 4),
        {"velocity_in": vel, "fluid_in": fluid, "phi0": phi0, "phi1": phi1, "obstacles_in": obstacles},
        {"output": out},
    )
    assert np.allclose(out[1:-1], fluid[:-2], atol=1e-6)


def test_splat_fluid_adds_cone_at_center():
    out = _zeros(4)
    K.KERNELS["splat_fluid"](
        {"center": (4.0, 4.0, 4.0), "radius": 2.0, "amount": (1.0, 10.0, 1.0, 0.0), "scale": 1},
        {"fluid_in": _zeros(4), "obstacles_in": _zeros()},
        {"output": out},
    )
    assert out[4, 4, 4].tolist() == [1.0, 10.0, 1.0, 0.0]
    assert out[5, 4, 4, 1] == pytest.approx(5.0)
    assert np.all(out[0, 0, 0] == 0.0)
