from __future__ import annotations

import numpy as np
import pytest

from procam_calib.camera.base import DepthCameraBase
from procam_calib.core.models import BoardGeometry, DepthFrame


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeDetector:
    """Returns preset corners instead of looking at the image."""

    def __init__(self, corners: np.ndarray | None, found: bool = True) -> None:
        self.corners = corners
        self.found = found
        self.calls = 0

    def detect(self, gray, pattern_size):
        self.calls += 1
        if not self.found or self.corners is None:
            return False, np.zeros((0, 2))
        return True, np.array(self.corners, dtype=np.float64)


class StaticCamera(DepthCameraBase):
    def __init__(self, depth: np.ndarray) -> None:
        self.depth = depth
        self.new_frame = True

    def start(self) -> None:
        pass

    def update(self) -> None:
        pass

    def is_frame_new(self) -> bool:
        return self.new_frame

    def color_frame(self) -> np.ndarray:
        h, w = self.depth.shape
        return np.zeros((h, w, 3), dtype=np.uint8)

    def depth_frame(self) -> DepthFrame:
        return DepthFrame(self.depth)

    def stop(self) -> None:
        pass


def grid_corners(board: BoardGeometry, origin=(100.3, 80.6), step=(20.0, 18.0)) -> np.ndarray:
    cols, rows = board.pattern_size
    return np.array(
        [(origin[0] + i * step[0], origin[1] + j * step[1]) for j in range(rows) for i in range(cols)],
        dtype=np.float64,
    )


def plane_depth(width: int = 320, height: int = 240, a: float = 0.5, b: float = 0.2, c: float = 1000.0) -> np.ndarray:
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    return a * xs + b * ys + c


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def board() -> BoardGeometry:
    return BoardGeometry(squares_x=7, squares_y=5)
