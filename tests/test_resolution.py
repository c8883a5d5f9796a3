import pytest

from firesim.config import FireSimulationConfig
from firesim.errors import ConfigurationError
from firesim.resolution import (
    SNAP_RESOLUTIONS,
    GridSpace,
    derive_grid_spaces,
    derive_resolution,
    dominant_axis,
    snap_nearest,
    thread_groups_for,
)


def test_cube_snaps_up_to_128_and_fluid_doubles():
    vel, fluid = derive_grid_spaces((1000, 1000, 1000), FireSimulationConfig())
    assert vel.resolution == (128, 128, 128)
    assert fluid.resolution == (256, 256, 256)
    assert vel.thread_group_count == (16, 16, 16)
    assert fluid.thread_group_count == (32, 32, 32)


def test_flat_box_scales_minor_axes_from_dominant():
    # raw (100, 50, 25): X snaps to 128, Y -> 64, Z -> 32
    assert derive_resolution((1000, 500, 250), 10.0, 128) == (128, 64, 32)


def test_max_resolution_caps_only_the_dominant_axis():
    # raw (100, 100, 12.5): X capped to 64, Z -> 8
    assert derive_resolution((1000, 1000, 125), 10.0, 64) == (64, 64, 8)
    # a cap below the smallest snap value falls back to the smallest
    assert derive_resolution((1000, 1000, 1000), 10.0, 4) == (8, 8, 8)


def test_resolutions_always_from_snap_set():
    for size in [(1, 1, 1), (5000, 5, 5), (37, 900, 410), (1e6, 1e6, 1e6)]:
        res = derive_resolution(size, 10.0, 128)
        assert all(n in SNAP_RESOLUTIONS for n in res)


def test_dominant_axis_ties_prefer_x_then_y():
    assert dominant_axis((4.0, 4.0, 4.0)) == 0
    assert dominant_axis((1.0, 4.0, 4.0)) == 1
    assert dominant_axis((1.0, 2.0, 4.0)) == 2


def test_snap_nearest_ties_snap_up_and_clamps():
    assert snap_nearest(24) == 32
    assert snap_nearest(23.9) == 16
    assert snap_nearest(0.5) == 8
    assert snap_nearest(10_000) == 128


def test_grid_space_metadata():
    space = GridSpace((16, 8, 32))
    assert space.bounds == (15, 7, 31)
    assert space.reciprocal_size == pytest.approx((1 / 16, 1 / 8, 1 / 32))
    assert space.cell_count == 16 * 8 * 32
    assert space.scaled(2).resolution == (32, 16, 64)
    assert thread_groups_for((9, 8, 1)) == (2, 1, 1)


@pytest.mark.parametrize(
    "size",
    [(0, 10, 10), (10, -1, 10), (10, 10, float("nan")), (10, 10), "abc"],
)
def test_invalid_extent_rejected(size):
    with pytest.raises(ConfigurationError):
        derive_resolution(size, 10.0, 128)


def test_cell_counts_that_underflow_to_zero_are_rejected():
    with pytest.raises(ConfigurationError, match="no usable cell count"):
        derive_resolution((1e-200, 1e-200, 1e-200), 1e200, 128)


def test_invalid_cell_size_rejected():
    with pytest.raises(ConfigurationError):
        derive_resolution((10, 10, 10), 0.0, 128)
    with pytest.raises(ConfigurationError):
        derive_grid_spaces((10, 10, 10), FireSimulationConfig(fluid_resolution_scale=0))
