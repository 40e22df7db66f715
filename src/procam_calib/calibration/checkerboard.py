"""Chessboard corner detection and projector pattern rendering."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import numpy as np
from PIL import Image

from procam_calib.core.models import BoardGeometry

try:
    import cv2
except Exception as exc:  # pragma: no cover - hard fail on systems without OpenCV
    cv2 = None
    _cv2_import_error = exc
else:
    _cv2_import_error = None


def _require_cv2() -> Any:
    if cv2 is None:
        raise RuntimeError(
            "OpenCV is required for chessboard detection. "
            f"Import error: {_cv2_import_error}"
        )
    return cv2


def to_gray_u8(image: np.ndarray) -> np.ndarray:
    """Convert RGB/gray image to uint8 gray."""
    if image.ndim == 2:
        return image.astype(np.uint8)
    if image.ndim == 3 and image.shape[2] >= 3:
        f = image.astype(np.float32)
        gray = 0.299 * f[:, :, 0] + 0.587 * f[:, :, 1] + 0.114 * f[:, :, 2]
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)
    raise ValueError("Unsupported image shape for grayscale conversion")


class CornerDetectorLike(Protocol):
    def detect(self, gray: np.ndarray, pattern_size: tuple[int, int]) -> tuple[bool, np.ndarray]:
        ...


class CornerDetector:
    """
    OpenCV chessboard detector with sub-pixel refinement.

    Corners come back as an (n, 2) float array in row-major order.
    """

    def __init__(self, subpix_window: int = 5, subpix_iters: int = 30, subpix_eps: float = 0.1) -> None:
        self.subpix_window = int(subpix_window)
        self.subpix_iters = int(subpix_iters)
        self.subpix_eps = float(subpix_eps)

    def detect(self, gray: np.ndarray, pattern_size: tuple[int, int]) -> tuple[bool, np.ndarray]:
        cv = _require_cv2()
        gray = to_gray_u8(gray)
        size = (int(pattern_size[0]), int(pattern_size[1]))
        flags = cv.CALIB_CB_ADAPTIVE_THRESH | cv.CALIB_CB_FAST_CHECK
        found, corners = cv.findChessboardCorners(gray, size, flags=flags)
        if not found or corners is None:
            return False, np.zeros((0, 2), dtype=np.float64)
        criteria = (
            cv.TERM_CRITERIA_EPS + cv.TERM_CRITERIA_MAX_ITER,
            self.subpix_iters,
            self.subpix_eps,
        )
        win = (self.subpix_window, self.subpix_window)
        corners = cv.cornerSubPix(gray, corners, win, (-1, -1), criteria)
        return True, corners.reshape(-1, 2).astype(np.float64)


def render_board(board: BoardGeometry, width: int, height: int, brightness: int = 255) -> np.ndarray:
    """
    Render the chessboard pattern for a width x height projector image.

    Background is `brightness`; dark squares sit where (x + y) is even.
    """
    img = np.full((int(height), int(width)), int(brightness), dtype=np.uint8)
    sq_w = board.width / board.squares_x
    sq_h = board.height / board.squares_y
    for sx in range(board.squares_x):
        for sy in range(board.squares_y):
            if (sx + sy) % 2 != 0:
                continue
            x0 = int(round((board.x + sx * sq_w) * width))
            y0 = int(round((board.y + sy * sq_h) * height))
            x1 = int(round((board.x + (sx + 1) * sq_w) * width))
            y1 = int(round((board.y + (sy + 1) * sq_h) * height))
            img[y0:y1, x0:x1] = 0
    return img


def save_image(path: Path, image: np.ndarray) -> None:
    Image.fromarray(image.astype(np.uint8)).save(path)
