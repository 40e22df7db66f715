"""Measurement acquisition and reprojection solving."""

from .backproject import BackprojectionResult, backproject_corner, backproject_corners, interpolate_depth
from .checkerboard import CornerDetector, render_board, to_gray_u8
from .planarity import PlaneFit, fit_plane, is_planar
from .session import CalibrationSession, status_lines
from .solver import SolveWorker, calculate_reprojection_transform, solve_store
from .stability import RingBuffer, StabilityAccumulator, StabilityResult, window_variance

__all__ = [
    "BackprojectionResult",
    "backproject_corner",
    "backproject_corners",
    "interpolate_depth",
    "CornerDetector",
    "render_board",
    "to_gray_u8",
    "PlaneFit",
    "fit_plane",
    "is_planar",
    "CalibrationSession",
    "status_lines",
    "SolveWorker",
    "calculate_reprojection_transform",
    "solve_store",
    "RingBuffer",
    "StabilityAccumulator",
    "StabilityResult",
    "window_variance",
]
