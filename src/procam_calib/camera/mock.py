"""Mock depth cameras: recorded frames from disk, or a synthetic projected board."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import itertools
from typing import Optional

import numpy as np
from PIL import Image

from procam_calib.calibration.checkerboard import _require_cv2, render_board
from procam_calib.camera.base import DepthCameraBase
from procam_calib.core.models import BoardGeometry, DepthFrame


class MockDepthCamera(DepthCameraBase):
    """
    Cycle through recorded frame pairs in data_dir.

    Each pair is NAME.png (color) and NAME.npy (float depth, same size).
    """

    def __init__(self, data_dir: str = "mock_data") -> None:
        self.data_dir = Path(data_dir)
        self._iter = None
        self._pairs: list[tuple[Path, Path]] = []
        self._color: Optional[np.ndarray] = None
        self._depth: Optional[DepthFrame] = None

    def start(self) -> None:
        if not self.data_dir.exists():
            raise RuntimeError(f"Mock data dir not found: {self.data_dir}")
        images = sorted(p for p in self.data_dir.iterdir() if p.suffix.lower() in {".png", ".jpg", ".jpeg"})
        self._pairs = [(p, p.with_suffix(".npy")) for p in images if p.with_suffix(".npy").exists()]
        if not self._pairs:
            raise RuntimeError(f"No color/depth pairs in {self.data_dir}")
        self._iter = itertools.cycle(self._pairs)

    def update(self) -> None:
        if self._iter is None:
            raise RuntimeError("MockDepthCamera not started")
        color_path, depth_path = next(self._iter)
        self._color = np.array(Image.open(color_path).convert("RGB"), dtype=np.uint8)
        self._depth = DepthFrame(np.load(depth_path).astype(np.float64))

    def color_frame(self) -> np.ndarray:
        if self._color is None:
            raise RuntimeError("No frame yet; call update() first")
        return self._color

    def depth_frame(self) -> DepthFrame:
        if self._depth is None:
            raise RuntimeError("No frame yet; call update() first")
        return self._depth

    def stop(self) -> None:
        self._iter = None
        self._pairs = []


@dataclass(slots=True)
class SyntheticPose:
    """
    Board placement given by its depth plane z = a*x + b*y + c over camera pixels.

    Where the board lands in the image follows from the camera matrix, see
    SyntheticDepthCamera.display_to_pixel.
    """
    plane: tuple[float, float, float] = (0.2, 0.2, 1500.0)


def default_camera_matrix(width: int, height: int) -> np.ndarray:
    """Ground-truth 2x4 map from (x, y, z, 1) camera points to display fractions."""
    return np.array(
        [
            [1.0 / (1.25 * width), 0.0, 0.00005, -0.05],
            [0.0, 1.0 / (1.25 * height), -0.00004, 0.05],
        ],
        dtype=np.float64,
    )


def default_poses() -> list[SyntheticPose]:
    """
    A few tilts and depths.

    x and y slopes are equal so the 2x2 depth lookup lands exactly on the plane.
    """
    return [
        SyntheticPose(plane=(0.2, 0.2, 1200.0)),
        SyntheticPose(plane=(-0.3, -0.3, 1600.0)),
        SyntheticPose(plane=(0.1, 0.1, 2000.0)),
    ]


class SyntheticDepthCamera(DepthCameraBase):
    """
    Renders the projected chessboard into a camera view with a planar depth map.

    All poses share one camera matrix, so the accepted measurements are
    fitted exactly by it. Each pose is held for frames_per_pose updates so
    the stability window can fill; depth_noise adds Gaussian noise to the
    depth map.
    """

    def __init__(
        self,
        board: Optional[BoardGeometry] = None,
        width: int = 640,
        height: int = 480,
        projector_size: tuple[int, int] = (1024, 768),
        poses: Optional[list[SyntheticPose]] = None,
        camera_matrix: Optional[np.ndarray] = None,
        frames_per_pose: int = 20,
        depth_noise: float = 0.0,
        seed: int = 0,
        fps: float = 30.0,
    ) -> None:
        self.board = board or BoardGeometry()
        self.width = int(width)
        self.height = int(height)
        self.projector_size = (int(projector_size[0]), int(projector_size[1]))
        self.poses = list(poses or default_poses())
        if camera_matrix is None:
            camera_matrix = default_camera_matrix(self.width, self.height)
        self.camera_matrix = np.asarray(camera_matrix, dtype=np.float64).reshape(2, 4)
        self.frames_per_pose = int(frames_per_pose)
        self.depth_noise = float(depth_noise)
        self.seed = int(seed)
        self.fps = float(fps)
        self._frame_index = -1
        self._rng: Optional[np.random.Generator] = None
        self._pattern: Optional[np.ndarray] = None

    def start(self) -> None:
        self._rng = np.random.default_rng(self.seed)
        self._pattern = render_board(self.board, *self.projector_size)
        self._frame_index = -1

    def update(self) -> None:
        if self._rng is None:
            raise RuntimeError("SyntheticDepthCamera not started")
        self._frame_index += 1

    def timestamp(self) -> float:
        """Simulated capture time in seconds of the current frame."""
        return max(self._frame_index, 0) / self.fps

    @property
    def pose(self) -> SyntheticPose:
        idx = max(self._frame_index, 0) // max(int(self.frames_per_pose), 1)
        return self.poses[idx % len(self.poses)]

    def display_to_pixel(self, pose: Optional[SyntheticPose] = None) -> np.ndarray:
        """
        2x3 affine from display fractions (u, v, 1) to camera pixels.

        On the plane z = a*x + b*y + c the camera matrix reduces to a 2x2
        linear map of (x, y) plus an offset; this inverts it.
        """
        a, b, c = (pose or self.pose).plane
        m = self.camera_matrix
        linear = m[:, :2] + np.outer(m[:, 2], [a, b])
        offset = m[:, 2] * c + m[:, 3]
        inv = np.linalg.inv(linear)
        return np.hstack([inv, (-inv @ offset)[:, None]])

    def expected_corners(self) -> np.ndarray:
        """Camera-pixel positions of the interior corners for the current pose."""
        pts = self.board.board_points()
        homog = np.hstack([pts, np.ones((pts.shape[0], 1))])
        return homog @ self.display_to_pixel().T

    def color_frame(self) -> np.ndarray:
        if self._pattern is None:
            raise RuntimeError("SyntheticDepthCamera not started")
        cv = _require_cv2()
        proj_w, proj_h = self.projector_size
        scale = np.diag([1.0 / proj_w, 1.0 / proj_h, 1.0])
        m = self.display_to_pixel() @ scale
        gray = cv.warpAffine(
            self._pattern,
            m,
            (int(self.width), int(self.height)),
            flags=cv.INTER_LINEAR,
            borderValue=90,
        )
        return np.stack([gray, gray, gray], axis=2)

    def depth_frame(self) -> DepthFrame:
        if self._rng is None:
            raise RuntimeError("SyntheticDepthCamera not started")
        a, b, c = self.pose.plane
        ys, xs = np.mgrid[0:self.height, 0:self.width].astype(np.float64)
        depth = a * xs + b * ys + c
        if self.depth_noise > 0:
            depth = depth + self._rng.normal(0.0, self.depth_noise, size=depth.shape)
        return DepthFrame(depth)

    def stop(self) -> None:
        self._rng = None
        self._pattern = None
