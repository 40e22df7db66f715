from __future__ import annotations

import numpy as np
import pytest

from procam_calib.core.models import BoardGeometry, CalibrationConfig, DepthFrame, Measurement


def test_default_board_corners_inside_rectangle() -> None:
    board = BoardGeometry()
    pts = board.board_points()
    assert board.pattern_size == (6, 4)
    assert pts.shape == (24, 2)
    assert np.all(pts[:, 0] > board.x) and np.all(pts[:, 0] < board.x + board.width)
    assert np.all(pts[:, 1] > board.y) and np.all(pts[:, 1] < board.y + board.height)


def test_board_points_row_major() -> None:
    board = BoardGeometry(squares_x=4, squares_y=3, x=0.0, y=0.0, width=0.8, height=0.6)
    pts = board.board_points()
    np.testing.assert_allclose(pts[:3, 1], 0.2)
    np.testing.assert_allclose(pts[:3, 0], [0.2, 0.4, 0.6])
    np.testing.assert_allclose(pts[3], [0.2, 0.4])


def test_move_and_resize_stay_on_display() -> None:
    board = BoardGeometry()
    moved = board.moved_to(0.9, -0.2)
    assert moved.x == pytest.approx(1.0 - board.width)
    assert moved.y == 0.0
    grown = moved.resized(2.0, 0.5)
    assert grown.x + grown.width == pytest.approx(1.0)
    assert grown.height == 0.5
    assert board.x != moved.x  # source board untouched


def test_board_rejects_too_few_squares() -> None:
    with pytest.raises(ValueError):
        BoardGeometry(squares_x=1)


def test_config_from_partial_dict() -> None:
    cfg = CalibrationConfig.from_dict({"num_stability_frames": "3", "depth_max": 4000})
    assert cfg.num_stability_frames == 3
    assert cfg.depth_max == 4000.0
    assert cfg.planar_threshold == 0.95
    assert cfg.to_dict()["variance_threshold_z"] == 1.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"num_stability_frames": 0},
        {"measurement_pause_length": -1.0},
        {"depth_min": 10.0, "depth_max": 5.0},
        {"variance_threshold_xy": -0.1},
    ],
)
def test_config_validate_rejects(overrides) -> None:
    with pytest.raises(ValueError):
        CalibrationConfig(**overrides).validate()


def test_measurement_is_read_only_and_checked() -> None:
    m = Measurement(cam_points=[[1.0, 2.0, 3.0]], board_points=[[0.5, 0.5]])
    assert len(m) == 1
    with pytest.raises(ValueError):
        m.cam_points[0, 0] = 9.0
    with pytest.raises(ValueError):
        Measurement(cam_points=np.zeros((2, 3)), board_points=np.zeros((3, 2)))


def test_depth_frame_ignores_non_finite_max() -> None:
    depth = np.array([[1.0, np.nan], [3.0, 2.0]])
    frame = DepthFrame(depth)
    assert (frame.width, frame.height) == (2, 2)
    assert frame.max_depth() == 3.0
    with pytest.raises(ValueError):
        DepthFrame(np.zeros(4))
