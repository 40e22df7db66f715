"""Levenberg-Marquardt fit of the camera-to-projector affine matrix."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import least_squares

from procam_calib.core.errors import (
    DegenerateGeometryError,
    InsufficientDataError,
    SolveCancelledError,
)
from procam_calib.core.logging import get_logger
from procam_calib.core.models import SolveResult
from procam_calib.io.measurement_store import MeasurementStore

N_PARAMS = 8
RESIDUALS_PER_POINT = 3

# Two free rows of the 3x4 model; the homogeneous row is appended below.
INITIAL_PARAMS = np.array(
    [
        0.5, 0.5, 0.5, 0.1,
        0.5, 0.5, 0.5, 0.1,
    ],
    dtype=np.float64,
)
AFFINE_ROW = np.array([[0.0, 0.0, 0.0, 1.0]], dtype=np.float64)


def flatten_measurements(
    cam_sets: Sequence[np.ndarray],
    board_sets: Sequence[np.ndarray],
) -> tuple[np.ndarray, np.ndarray]:
    """Concatenate per-measurement point sets into (n, 3) and (n, 2) arrays."""
    if len(cam_sets) != len(board_sets):
        raise ValueError(
            f"Got {len(cam_sets)} camera point sets but {len(board_sets)} board point sets"
        )
    cam_list = [np.asarray(c, dtype=np.float64).reshape(-1, 3) for c in cam_sets]
    board_list = [np.asarray(b, dtype=np.float64).reshape(-1, 2) for b in board_sets]
    for i, (c, b) in enumerate(zip(cam_list, board_list)):
        if c.shape[0] != b.shape[0]:
            raise ValueError(f"Measurement {i} has {c.shape[0]} camera points and {b.shape[0]} board points")
    cam = np.concatenate(cam_list, axis=0) if cam_list else np.zeros((0, 3))
    board = np.concatenate(board_list, axis=0) if board_list else np.zeros((0, 2))
    return cam, board


def model_matrix(params: np.ndarray) -> np.ndarray:
    """3x4 model: the two fitted rows plus (0, 0, 0, 1)."""
    return np.vstack([np.asarray(params, dtype=np.float64).reshape(2, 4), AFFINE_ROW])


def params_to_matrix(params: np.ndarray) -> np.ndarray:
    """4x4 camera matrix; the third row is zero, the last row is homogeneous."""
    matrix = np.zeros((4, 4), dtype=np.float64)
    matrix[:2] = np.asarray(params, dtype=np.float64).reshape(2, 4)
    matrix[3, 3] = 1.0
    return matrix


def reprojection_residuals(
    params: np.ndarray,
    cam_h: np.ndarray,
    board_h: np.ndarray,
    cancel_event: Optional[threading.Event] = None,
) -> np.ndarray:
    """
    Residual vector [b0-u, b1-v, b2-1] per point, interleaved.

    The third component is always zero with the fixed (0, 0, 0, 1) row but
    still counts toward the residual total.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise SolveCancelledError("Solve cancelled")
    b = cam_h @ model_matrix(params).T
    return (b - board_h).ravel()


def reprojection_errors(matrix: np.ndarray, cam: np.ndarray, board: np.ndarray) -> np.ndarray:
    """Euclidean 2D distance between projected camera points and board points."""
    homog = np.hstack([cam, np.ones((cam.shape[0], 1))])
    projected = homog @ matrix[:2].T
    return np.sqrt(np.sum((projected - board) ** 2, axis=1))


def calculate_reprojection_transform(
    cam_sets: Sequence[np.ndarray],
    board_sets: Sequence[np.ndarray],
    *,
    initial_params: Optional[np.ndarray] = None,
    max_nfev: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> SolveResult:
    """
    Fit the matrix mapping homogeneous camera points to board points.

    Raises InsufficientDataError without data, SolveCancelledError when
    cancel_event is set mid-solve and DegenerateGeometryError when the fit
    yields non-finite values. A solve that stops on max_nfev still returns
    its best parameters with converged=False.
    """
    log = logger or get_logger()
    cam, board = flatten_measurements(cam_sets, board_sets)
    count = int(cam.shape[0])
    if count == 0:
        raise InsufficientDataError("No measurements to solve from")
    if count * RESIDUALS_PER_POINT < N_PARAMS:
        raise InsufficientDataError(
            f"Need at least {int(np.ceil(N_PARAMS / RESIDUALS_PER_POINT))} points, got {count}"
        )
    if not (np.all(np.isfinite(cam)) and np.all(np.isfinite(board))):
        raise DegenerateGeometryError("Measurements contain non-finite values")

    cam_h = np.hstack([cam, np.ones((count, 1))])
    board_h = np.hstack([board, np.ones((count, 1))])
    x0 = INITIAL_PARAMS.copy() if initial_params is None else np.asarray(initial_params, dtype=np.float64).reshape(N_PARAMS)

    sol = least_squares(
        reprojection_residuals,
        x0,
        args=(cam_h, board_h, cancel_event),
        method="lm",
        xtol=1e-12,
        ftol=1e-12,
        gtol=1e-12,
        max_nfev=max_nfev,
    )
    params = np.asarray(sol.x, dtype=np.float64)
    if not np.all(np.isfinite(params)):
        raise DegenerateGeometryError("Solver produced non-finite parameters")

    matrix = params_to_matrix(params)
    errors = reprojection_errors(matrix, cam, board)
    rms = float(np.sqrt(np.sum(errors ** 2) / count))
    if not np.isfinite(rms):
        raise DegenerateGeometryError("Reprojection error is not finite")

    if log.isEnabledFor(logging.DEBUG):
        projected = cam_h @ matrix[:2].T
        for c, b, p, e in zip(cam, board, projected, errors):
            log.debug("reprojection: cam=%s board=%s projected=%s error=%.6f", c, b, p, e)

    converged = bool(sol.status > 0)
    log.info("Calculated transformation:\n%s", matrix)
    log.info(
        "Calculated RMS reprojection error: %.6f over %d points (converged=%s, nfev=%d)",
        rms, count, converged, sol.nfev,
    )
    if not converged:
        log.warning("Solver stopped without converging: %s", sol.message)

    return SolveResult(
        matrix=matrix,
        params=params,
        rms=rms,
        errors=errors,
        point_count=count,
        converged=converged,
        status=int(sol.status),
        message=str(sol.message),
        nfev=int(sol.nfev),
        cost=float(sol.cost),
    )


def solve_store(store: MeasurementStore, **kwargs) -> SolveResult:
    """Solve over a consistent snapshot of the store."""
    cam_sets, board_sets = store.snapshot()
    return calculate_reprojection_transform(cam_sets, board_sets, **kwargs)


class SolveWorker:
    """
    Runs one solve on a background thread over a snapshot of the store.

    The snapshot is taken in start(), so measurements added afterwards are
    not part of this solve. cancel() stops the optimizer at its next
    residual evaluation; the store is never touched by the worker.
    """

    def __init__(
        self,
        store: MeasurementStore,
        max_nfev: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.max_nfev = max_nfev
        self.log = logger or get_logger()

        self._cancel = threading.Event()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[SolveResult] = None
        self._error: Optional[BaseException] = None

    def start(self) -> "SolveWorker":
        if self._thread is not None:
            raise RuntimeError("Solve already started")
        cam_sets, board_sets = self.store.snapshot()
        self._thread = threading.Thread(
            target=self._run, args=(cam_sets, board_sets), daemon=True
        )
        self._thread.start()
        return self

    def _run(self, cam_sets, board_sets) -> None:
        try:
            self._result = calculate_reprojection_transform(
                cam_sets,
                board_sets,
                max_nfev=self.max_nfev,
                cancel_event=self._cancel,
                logger=self.log,
            )
        except SolveCancelledError as exc:
            self.log.info("Solve cancelled")
            self._error = exc
        except Exception as exc:
            self.log.error("Solve failed: %s", exc)
            self._error = exc
        finally:
            self._done.set()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        if self._thread is None:
            raise RuntimeError("Solve not started")
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> SolveResult:
        """Block for the outcome; re-raises the solve's failure if it had one."""
        if not self.wait(timeout):
            raise TimeoutError("Solve still running")
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise RuntimeError("Solve finished without a result")
        return self._result
