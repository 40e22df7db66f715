"""Fuse sub-pixel corner positions with the depth map into 3D camera-space points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from procam_calib.core.errors import DegenerateGeometryError
from procam_calib.core.models import DepthFrame


@dataclass(slots=True)
class BackprojectionResult:
    points: np.ndarray  # (n, 3): px, py, interpolated depth
    depth_complete: bool
    reason: Optional[str] = None


def _neighbourhood(depth: np.ndarray, px: float, py: float) -> tuple[int, int, int, int]:
    if not (np.isfinite(px) and np.isfinite(py)):
        raise DegenerateGeometryError(f"Non-finite corner coordinate ({px}, {py})")
    x1 = int(np.floor(px))
    y1 = int(np.floor(py))
    x2 = x1 + 1
    y2 = y1 + 1
    h, w = depth.shape
    if x1 < 0 or y1 < 0 or x2 >= w or y2 >= h:
        raise DegenerateGeometryError(
            f"Corner ({px:.2f}, {py:.2f}) has no 2x2 depth neighbourhood in a {w}x{h} frame"
        )
    return x1, y1, x2, y2


def neighbour_samples(depth: np.ndarray, px: float, py: float) -> np.ndarray:
    """Depth at (x1,y1), (x2,y1), (x1,y2), (x2,y2)."""
    x1, y1, x2, y2 = _neighbourhood(depth, px, py)
    return np.array(
        [depth[y1, x1], depth[y1, x2], depth[y2, x1], depth[y2, x2]],
        dtype=np.float64,
    )


def interpolate_depth(depth: np.ndarray, px: float, py: float) -> float:
    """
    Bilinear-style depth lookup at a fractional pixel position.

    The second x-pass reads column x2 on rows y1 and y2, not row y2 from
    x1 to x2. The (x1, y2) sample is range-checked but never weighted.
    """
    x1, y1, x2, y2 = _neighbourhood(depth, px, py)
    d11 = float(depth[y1, x1])
    d21 = float(depth[y1, x2])
    d22 = float(depth[y2, x2])

    # x2 - x1 and y2 - y1 are always 1
    ix1 = (x2 - px) * d11 + (px - x1) * d21
    ix2 = (x2 - px) * d21 + (px - x1) * d22
    return (y2 - py) * ix1 + (py - y1) * ix2


def backproject_corner(
    frame: DepthFrame,
    px: float,
    py: float,
    depth_min: float,
    depth_max: float,
) -> Optional[np.ndarray]:
    """
    Return (px, py, z) or None when any neighbouring depth sample is out of range.

    Raises DegenerateGeometryError when the corner has no full neighbourhood.
    """
    samples = neighbour_samples(frame.depth, px, py)
    if not np.all((samples >= depth_min) & (samples <= depth_max)):
        return None
    z = interpolate_depth(frame.depth, px, py)
    return np.array([px, py, z], dtype=np.float64)


def backproject_corners(
    corners: np.ndarray,
    frame: DepthFrame,
    depth_min: float,
    depth_max: float,
) -> BackprojectionResult:
    """
    Back-project every detected corner of one frame.

    Stops at the first invalid corner: one bad corner makes the whole
    frame depth-incomplete.
    """
    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    points = np.zeros((corners.shape[0], 3), dtype=np.float64)
    for i, (px, py) in enumerate(corners):
        try:
            p = backproject_corner(frame, float(px), float(py), depth_min, depth_max)
        except DegenerateGeometryError as exc:
            return BackprojectionResult(points=points[:i], depth_complete=False, reason=str(exc))
        if p is None:
            return BackprojectionResult(
                points=points[:i],
                depth_complete=False,
                reason=f"depth out of range near corner {i}",
            )
        points[i] = p
    if corners.shape[0] == 0:
        return BackprojectionResult(points=points, depth_complete=False, reason="no corners")
    return BackprojectionResult(points=points, depth_complete=True)
