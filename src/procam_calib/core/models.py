"""
Core data models for calibration sessions, frames and solve results.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field, replace
from typing import Any, Dict, Optional, Tuple

import numpy as np


@dataclass(frozen=True, slots=True)
class BoardGeometry:
    """
    Chessboard shown by the projector.

    The rectangle is given in display-space fractions ([0, 1] on both axes).
    """
    squares_x: int = 7
    squares_y: int = 5
    x: float = (1.0 - 0.9 * 0.75) / 2.0
    y: float = (1.0 - 0.9 * 5.0 / 7.0) / 2.0
    width: float = 0.9 * 0.75
    height: float = 0.9 * 5.0 / 7.0

    def __post_init__(self) -> None:
        if self.squares_x < 2 or self.squares_y < 2:
            raise ValueError("Board needs at least 2 squares per axis")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Board rectangle must have positive size")

    @property
    def pattern_size(self) -> Tuple[int, int]:
        """Interior corner counts (cols, rows) as expected by the detector."""
        return (self.squares_x - 1, self.squares_y - 1)

    @property
    def corner_count(self) -> int:
        cols, rows = self.pattern_size
        return cols * rows

    def board_points(self) -> np.ndarray:
        """
        Display-space coordinates of the interior corners, shape (n, 2).

        Row-major like the detector output: y is the outer loop.
        """
        cols, rows = self.pattern_size
        step_x = self.width / self.squares_x
        step_y = self.height / self.squares_y
        points = [
            (self.x + (i + 1) * step_x, self.y + (j + 1) * step_y)
            for j in range(rows)
            for i in range(cols)
        ]
        return np.asarray(points, dtype=np.float64)

    def moved_to(self, x: float, y: float) -> "BoardGeometry":
        return replace(
            self,
            x=float(np.clip(x, 0.0, 1.0 - self.width)),
            y=float(np.clip(y, 0.0, 1.0 - self.height)),
        )

    def resized(self, width: float, height: float) -> "BoardGeometry":
        width = float(np.clip(width, 1e-3, 1.0 - self.x))
        height = float(np.clip(height, 1e-3, 1.0 - self.y))
        return replace(self, width=width, height=height)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DepthFrame:
    """One depth map borrowed from the camera for a single update cycle."""
    depth: np.ndarray

    def __post_init__(self) -> None:
        if self.depth.ndim != 2:
            raise ValueError(f"Depth frame must be 2D, got shape {self.depth.shape}")

    @property
    def width(self) -> int:
        return int(self.depth.shape[1])

    @property
    def height(self) -> int:
        return int(self.depth.shape[0])

    def max_depth(self) -> float:
        finite = self.depth[np.isfinite(self.depth)]
        return float(finite.max()) if finite.size else 0.0


@dataclass(slots=True)
class CalibrationConfig:
    """
    Acceptance parameters for the measurement pipeline.

    measurement_pause_length is in milliseconds. Depth bounds are in the
    camera's native depth units.
    """
    num_stability_frames: int = 5
    measurement_pause_length: float = 1000.0
    depth_min: float = 1.0
    depth_max: float = 10000.0
    use_planar_condition: bool = True
    planar_threshold: float = 0.95
    variance_threshold_xy: float = 1.0
    variance_threshold_z: float = 1.0

    def validate(self) -> None:
        if int(self.num_stability_frames) < 1:
            raise ValueError("num_stability_frames must be >= 1")
        if self.measurement_pause_length < 0:
            raise ValueError("measurement_pause_length must be >= 0")
        if self.depth_min > self.depth_max:
            raise ValueError("depth_min must not exceed depth_max")
        if self.variance_threshold_xy < 0 or self.variance_threshold_z < 0:
            raise ValueError("variance thresholds must be >= 0")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "CalibrationConfig":
        defaults = cls()
        return cls(
            num_stability_frames=int(cfg.get("num_stability_frames", defaults.num_stability_frames)),
            measurement_pause_length=float(cfg.get("measurement_pause_length", defaults.measurement_pause_length)),
            depth_min=float(cfg.get("depth_min", defaults.depth_min)),
            depth_max=float(cfg.get("depth_max", defaults.depth_max)),
            use_planar_condition=bool(cfg.get("use_planar_condition", defaults.use_planar_condition)),
            planar_threshold=float(cfg.get("planar_threshold", defaults.planar_threshold)),
            variance_threshold_xy=float(cfg.get("variance_threshold_xy", defaults.variance_threshold_xy)),
            variance_threshold_z=float(cfg.get("variance_threshold_z", defaults.variance_threshold_z)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True, eq=False)
class Measurement:
    """Mean camera-space corners of one stable window and the matching board points."""
    cam_points: np.ndarray
    board_points: np.ndarray

    def __post_init__(self) -> None:
        cam = np.asarray(self.cam_points, dtype=np.float64).reshape(-1, 3)
        board = np.asarray(self.board_points, dtype=np.float64).reshape(-1, 2)
        if cam.shape[0] != board.shape[0]:
            raise ValueError(
                f"Measurement needs matching point counts, got {cam.shape[0]} camera "
                f"and {board.shape[0]} board points"
            )
        cam.setflags(write=False)
        board.setflags(write=False)
        object.__setattr__(self, "cam_points", cam)
        object.__setattr__(self, "board_points", board)

    def __len__(self) -> int:
        return int(self.cam_points.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cam_points": self.cam_points.tolist(),
            "board_points": self.board_points.tolist(),
        }


@dataclass(frozen=True, slots=True, eq=False)
class FrameEvaluationResult:
    """
    Outcome of one update cycle.

    Flags are cumulative: a stage is only evaluated when every earlier one
    passed, so e.g. planar is False whenever depth_complete is False.
    """
    paused: bool = False
    detected: bool = False
    depth_complete: bool = False
    planar: bool = False
    enough_frames: bool = False
    variance_ok: bool = False
    accepted: bool = False
    corner_count: int = 0
    plane_r2: Optional[float] = None
    num_ok_frames: int = 0
    max_variance_xy: Optional[float] = None
    max_variance_z: Optional[float] = None
    reason: Optional[str] = None
    points: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))

    @property
    def frame_ok(self) -> bool:
        return self.detected and self.depth_complete and self.planar

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paused": self.paused,
            "detected": self.detected,
            "depth_complete": self.depth_complete,
            "planar": self.planar,
            "enough_frames": self.enough_frames,
            "variance_ok": self.variance_ok,
            "accepted": self.accepted,
            "corner_count": int(self.corner_count),
            "plane_r2": self.plane_r2,
            "num_ok_frames": int(self.num_ok_frames),
            "max_variance_xy": self.max_variance_xy,
            "max_variance_z": self.max_variance_z,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True, eq=False)
class SolveResult:
    """Fitted camera-to-projector matrix and its quality metrics."""
    matrix: np.ndarray
    params: np.ndarray
    rms: float
    errors: np.ndarray
    point_count: int
    converged: bool
    status: int
    message: str
    nfev: int
    cost: float

    def project(self, cam_points: np.ndarray) -> np.ndarray:
        """Map (n, 3) camera-space points to (n, 2) projector-space points."""
        pts = np.asarray(cam_points, dtype=np.float64).reshape(-1, 3)
        homog = np.hstack([pts, np.ones((pts.shape[0], 1))])
        return homog @ self.matrix[:2].T

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matrix": self.matrix.tolist(),
            "params": self.params.tolist(),
            "rms": float(self.rms),
            "point_count": int(self.point_count),
            "converged": bool(self.converged),
            "status": int(self.status),
            "message": self.message,
            "nfev": int(self.nfev),
            "cost": float(self.cost),
        }
