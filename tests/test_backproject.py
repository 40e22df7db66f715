from __future__ import annotations

import numpy as np
import pytest

from procam_calib.calibration.backproject import (
    backproject_corner,
    backproject_corners,
    interpolate_depth,
)
from procam_calib.core.errors import DegenerateGeometryError
from procam_calib.core.models import DepthFrame


def test_interpolation_matches_reference_scheme() -> None:
    depth = np.arange(16, dtype=np.float64).reshape(4, 4) * 10.0 + 500.0
    px, py = 1.25, 2.5
    d11, d21, d22 = depth[2, 1], depth[2, 2], depth[3, 2]
    ix1 = 0.75 * d11 + 0.25 * d21
    ix2 = 0.75 * d21 + 0.25 * d22
    expected = 0.5 * ix1 + 0.5 * ix2
    assert interpolate_depth(depth, px, py) == pytest.approx(expected)


def test_interpolation_ignores_lower_left_sample() -> None:
    depth = np.full((4, 4), 800.0)
    other = depth.copy()
    other[2, 1] = 900.0  # (x1, y2) for a corner at (1.4, 1.7)
    assert interpolate_depth(depth, 1.4, 1.7) == interpolate_depth(other, 1.4, 1.7)


def test_integer_corner_reads_exact_sample() -> None:
    depth = np.random.default_rng(1).uniform(500, 1500, size=(6, 6))
    assert interpolate_depth(depth, 2.0, 3.0) == pytest.approx(depth[3, 2])


def test_interpolated_depth_bounded_by_neighbours() -> None:
    rng = np.random.default_rng(7)
    depth = rng.uniform(500.0, 1500.0, size=(40, 50))
    for px, py in rng.uniform([0, 0], [48.99, 38.99], size=(200, 2)):
        x1, y1 = int(np.floor(px)), int(np.floor(py))
        window = depth[y1:y1 + 2, x1:x1 + 2]
        z = interpolate_depth(depth, px, py)
        assert window.min() - 1e-9 <= z <= window.max() + 1e-9


def test_backproject_corner_returns_pixel_and_depth() -> None:
    frame = DepthFrame(np.full((10, 10), 1200.0))
    p = backproject_corner(frame, 3.5, 4.25, depth_min=100, depth_max=2000)
    assert p is not None
    np.testing.assert_allclose(p, [3.5, 4.25, 1200.0])


def test_out_of_range_sample_invalidates_corner() -> None:
    depth = np.full((10, 10), 1200.0)
    depth[5, 3] = 0.0  # (x1, y2) of corner (3.5, 4.25); checked although not interpolated
    p = backproject_corner(DepthFrame(depth), 3.5, 4.25, depth_min=100, depth_max=2000)
    assert p is None


def test_one_bad_corner_marks_frame_incomplete() -> None:
    depth = np.full((20, 20), 1000.0)
    depth[10, 10] = 5000.0
    corners = np.array([[2.5, 2.5], [10.2, 10.2], [15.5, 15.5]])
    result = backproject_corners(corners, DepthFrame(depth), depth_min=500, depth_max=2000)
    assert not result.depth_complete
    assert "corner 1" in result.reason


def test_all_valid_corners_complete() -> None:
    depth = np.full((20, 20), 1000.0)
    corners = np.array([[2.5, 2.5], [10.2, 10.2], [15.5, 15.5]])
    result = backproject_corners(corners, DepthFrame(depth), depth_min=500, depth_max=2000)
    assert result.depth_complete
    assert result.points.shape == (3, 3)
    np.testing.assert_allclose(result.points[:, 2], 1000.0)


def test_corner_on_frame_edge_is_degenerate() -> None:
    frame = DepthFrame(np.full((10, 10), 1000.0))
    with pytest.raises(DegenerateGeometryError):
        backproject_corner(frame, 9.0, 4.0, depth_min=0, depth_max=2000)
    result = backproject_corners(np.array([[9.0, 4.0]]), frame, depth_min=0, depth_max=2000)
    assert not result.depth_complete
    assert "neighbourhood" in result.reason


def test_non_finite_corner_is_degenerate() -> None:
    frame = DepthFrame(np.full((10, 10), 1000.0))
    with pytest.raises(DegenerateGeometryError):
        backproject_corner(frame, float("nan"), 4.0, depth_min=0, depth_max=2000)
