"""Calibration session: per-frame acquisition pipeline and measurement bookkeeping."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from procam_calib.calibration.backproject import backproject_corners
from procam_calib.calibration.checkerboard import CornerDetector, CornerDetectorLike, to_gray_u8
from procam_calib.calibration.planarity import fit_plane, is_planar
from procam_calib.calibration.solver import SolveWorker, solve_store
from procam_calib.calibration.stability import StabilityAccumulator
from procam_calib.camera.base import DepthCameraBase
from procam_calib.core.logging import get_logger
from procam_calib.core.models import (
    BoardGeometry,
    CalibrationConfig,
    DepthFrame,
    FrameEvaluationResult,
    SolveResult,
)
from procam_calib.io.measurement_store import MeasurementStore


class CalibrationSession:
    """
    Runs detect -> back-project -> planarity -> stability for each frame and
    appends accepted measurements to the store.

    Each update returns a FrameEvaluationResult; nothing on the per-frame
    path raises for bad frames, they simply produce no measurement.
    """

    def __init__(
        self,
        camera: Optional[DepthCameraBase],
        store: Optional[MeasurementStore],
        config: Optional[CalibrationConfig] = None,
        board: Optional[BoardGeometry] = None,
        detector: Optional[CornerDetectorLike] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.log = logger or get_logger()
        if camera is None:
            self.log.warning("A camera providing both color and depth frames is required")
            raise ValueError("CalibrationSession needs a depth camera")
        if store is None:
            self.log.warning("A measurement store is required")
            raise ValueError("CalibrationSession needs a measurement store")

        self.camera = camera
        self.store = store
        self.config = config or CalibrationConfig()
        self.config.validate()
        self.board = board or BoardGeometry()
        self.detector = detector or CornerDetector()
        self.accumulator = StabilityAccumulator.from_config(self.config, clock=clock)

        self.ref_max_depth: Optional[float] = None
        self.last_result = FrameEvaluationResult()
        self._finalized = False
        self.log.debug("Calibration session created with %s", self.config.to_dict())

    @property
    def finalized(self) -> bool:
        return self._finalized

    def set_board(self, board: BoardGeometry) -> None:
        """Change the displayed board; frames gathered for the old layout are dropped."""
        self.board = board
        self.accumulator.reset()

    def update(self, force: bool = False) -> FrameEvaluationResult:
        """Evaluate the camera's current frame pair unless it was already seen."""
        if not force and not self.camera.is_frame_new():
            return self.last_result
        depth = self.camera.depth_frame()
        if self.ref_max_depth is None:
            self.ref_max_depth = depth.max_depth()
        return self.evaluate_frame(self.camera.color_frame(), depth)

    def evaluate_frame(self, color: np.ndarray, depth: DepthFrame) -> FrameEvaluationResult:
        cfg = self.config
        paused = self.accumulator.in_pause()
        detected = depth_complete = planar = False
        plane_r2: Optional[float] = None
        reason: Optional[str] = None
        points = np.zeros((0, 3), dtype=np.float64)
        corner_count = 0

        if paused:
            reason = "pausing before next measurement"
        else:
            found, corners = self.detector.detect(to_gray_u8(color), self.board.pattern_size)
            corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
            corner_count = int(corners.shape[0])
            detected = bool(found) and corner_count > 0
            if not detected:
                reason = "chessboard not detected"
            else:
                bp = backproject_corners(corners, depth, cfg.depth_min, cfg.depth_max)
                depth_complete = bp.depth_complete
                if not depth_complete:
                    reason = f"depth data incomplete: {bp.reason}"
                else:
                    points = bp.points
                    fit = fit_plane(points)
                    plane_r2 = fit.r2
                    planar = is_planar(fit, cfg.use_planar_condition, cfg.planar_threshold)
                    if not planar:
                        if fit.degenerate:
                            reason = "plane fit degenerate (constant depth)"
                        elif not fit.solved:
                            reason = "plane fit unsolvable"
                        else:
                            reason = f"chessboard not planar (R^2 = {plane_r2:.4f})"

        frame_ok = detected and depth_complete and planar
        stab = self.accumulator.push(points if frame_ok else None, self.board)

        accepted = False
        if stab.measurement is not None:
            self.store.add_measurement(stab.measurement.cam_points, stab.measurement.board_points)
            accepted = True
            self.log.info(
                "Measurement accepted (%d corners, var xy %.4f, var z %.4f); %d stored",
                len(stab.measurement), stab.max_variance_xy, stab.max_variance_z, len(self.store),
            )

        result = FrameEvaluationResult(
            paused=paused,
            detected=detected,
            depth_complete=depth_complete,
            planar=planar,
            enough_frames=stab.enough_frames,
            variance_ok=stab.variance_ok,
            accepted=accepted,
            corner_count=corner_count,
            plane_r2=plane_r2,
            num_ok_frames=stab.num_ok_frames,
            max_variance_xy=stab.max_variance_xy,
            max_variance_z=stab.max_variance_z,
            reason=reason or stab.reason,
            points=points,
        )
        if not accepted and result.reason:
            self.log.debug("Frame not accepted: %s", result.reason)
        self.last_result = result
        return result

    def status_lines(self, result: Optional[FrameEvaluationResult] = None) -> list[str]:
        return status_lines(result or self.last_result, self.config, len(self.store))

    def _require_editable(self) -> None:
        if self._finalized:
            raise RuntimeError("Calibration is finalized; unfinalize() before editing measurements")

    def delete_last_measurement(self) -> bool:
        self._require_editable()
        return self.store.delete_last_measurement()

    def clear(self) -> None:
        self._require_editable()
        self.store.clear()
        self.accumulator.reset()

    def save_measurements(self, path: Path) -> Path:
        out = self.store.save(path)
        self.log.info("Saved %d measurements to %s", len(self.store), out)
        return out

    def load_measurements(self, path: Path) -> int:
        self._require_editable()
        count = self.store.load(path)
        self.log.info("Loaded %d measurements from %s", count, path)
        return count

    def finalize(self) -> None:
        self._finalized = True

    def unfinalize(self) -> None:
        self._finalized = False

    def solve(self, max_nfev: Optional[int] = None) -> SolveResult:
        return solve_store(self.store, max_nfev=max_nfev, logger=self.log)

    def solve_async(self, max_nfev: Optional[int] = None) -> SolveWorker:
        return SolveWorker(self.store, max_nfev=max_nfev, logger=self.log).start()


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.4f}"


def status_lines(result: FrameEvaluationResult, config: CalibrationConfig, measurement_count: int) -> list[str]:
    """Human-readable status of the last frame, most specific stage last."""
    lines = [f"Valid measurements: {measurement_count}"]
    lines.append(
        f"Planar threshold {config.planar_threshold}, variance threshold XY "
        f"{config.variance_threshold_xy} Z {config.variance_threshold_z}."
    )
    if result.paused:
        lines.append("Pausing before next measurement...")
        return lines
    if not result.detected:
        lines.append("Chess board not detected.")
        return lines
    lines.append("Chess board detected.")
    if not result.depth_complete:
        lines.append("Depth data for chess board is incomplete.")
        return lines
    lines.append("Depth data complete.")
    if not result.planar:
        lines.append(f"Chessboard is not planar (R^2 = {_fmt(result.plane_r2)}).")
        return lines
    lines.append(f"Chessboard is planar (R^2 = {_fmt(result.plane_r2)}).")
    lines.append(f"Values for {result.num_ok_frames}/{config.num_stability_frames} frames")
    if not result.enough_frames:
        return lines
    variance = (
        f"(xy {_fmt(result.max_variance_xy)} ({config.variance_threshold_xy}), "
        f"z {_fmt(result.max_variance_z)} ({config.variance_threshold_z}))."
    )
    if result.variance_ok:
        lines.append(f"Variance OK {variance}")
    else:
        lines.append(f"Variance too high {variance}")
    return lines
