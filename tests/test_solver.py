from __future__ import annotations

import threading

import numpy as np
import pytest

from procam_calib.calibration.solver import (
    SolveWorker,
    calculate_reprojection_transform,
    reprojection_residuals,
    solve_store,
)
from procam_calib.core.errors import InsufficientDataError, SolveCancelledError
from procam_calib.io.measurement_store import MeasurementStore

TRUE_PARAMS = np.array(
    [
        [0.0020, 0.0001, 0.00005, 0.10],
        [0.0002, 0.0015, -0.00003, 0.20],
    ]
)


def _synthetic_sets(n_sets: int = 3, n_points: int = 24, noise: float = 0.0, seed: int = 3):
    rng = np.random.default_rng(seed)
    cam_sets, board_sets = [], []
    for _ in range(n_sets):
        cam = np.column_stack(
            [
                rng.uniform(0, 640, n_points),
                rng.uniform(0, 480, n_points),
                rng.uniform(800, 2000, n_points),
            ]
        )
        board = np.hstack([cam, np.ones((n_points, 1))]) @ TRUE_PARAMS.T
        board = board + rng.normal(0.0, noise, size=board.shape) if noise else board
        cam_sets.append(cam)
        board_sets.append(board)
    return cam_sets, board_sets


def test_recovers_known_affine_matrix() -> None:
    cam_sets, board_sets = _synthetic_sets()
    result = calculate_reprojection_transform(cam_sets, board_sets)
    np.testing.assert_allclose(result.params.reshape(2, 4), TRUE_PARAMS, rtol=1e-5, atol=1e-9)
    assert result.rms == pytest.approx(0.0, abs=1e-8)
    assert result.converged
    assert result.point_count == 72


def test_matrix_layout() -> None:
    cam_sets, board_sets = _synthetic_sets()
    m = calculate_reprojection_transform(cam_sets, board_sets).matrix
    assert m.shape == (4, 4)
    np.testing.assert_array_equal(m[2], [0.0, 0.0, 0.0, 0.0])
    np.testing.assert_array_equal(m[3], [0.0, 0.0, 0.0, 1.0])


def test_rms_is_root_mean_square_of_errors() -> None:
    cam_sets, board_sets = _synthetic_sets(noise=0.01)
    result = calculate_reprojection_transform(cam_sets, board_sets)
    assert result.rms > 0
    assert result.rms == pytest.approx(float(np.sqrt(np.mean(result.errors ** 2))))
    cam = np.concatenate(cam_sets)
    board = np.concatenate(board_sets)
    np.testing.assert_allclose(
        np.linalg.norm(result.project(cam) - board, axis=1), result.errors, atol=1e-12
    )


def test_three_residuals_per_point() -> None:
    cam_h = np.array([[1.0, 2.0, 3.0, 1.0], [4.0, 5.0, 6.0, 1.0]])
    board_h = np.array([[0.5, 0.5, 1.0], [0.1, 0.2, 1.0]])
    params = np.zeros(8)
    res = reprojection_residuals(params, cam_h, board_h)
    assert res.shape == (6,)
    np.testing.assert_allclose(res, [-0.5, -0.5, 0.0, -0.1, -0.2, 0.0])


def test_empty_data_is_insufficient() -> None:
    with pytest.raises(InsufficientDataError):
        calculate_reprojection_transform([], [])
    with pytest.raises(InsufficientDataError):
        solve_store(MeasurementStore())


def test_too_few_points_is_insufficient() -> None:
    cam_sets, board_sets = _synthetic_sets(n_sets=1, n_points=2)
    with pytest.raises(InsufficientDataError):
        calculate_reprojection_transform(cam_sets, board_sets)


def test_mismatched_sets_rejected() -> None:
    cam_sets, board_sets = _synthetic_sets()
    with pytest.raises(ValueError):
        calculate_reprojection_transform(cam_sets, board_sets[:2])
    board_sets[1] = board_sets[1][:-1]
    with pytest.raises(ValueError):
        calculate_reprojection_transform(cam_sets, board_sets)


def test_iteration_limit_reports_non_convergence() -> None:
    cam_sets, board_sets = _synthetic_sets()
    result = calculate_reprojection_transform(cam_sets, board_sets, max_nfev=1)
    assert not result.converged
    assert result.status == 0
    assert np.all(np.isfinite(result.params))


def test_cancel_event_stops_solve() -> None:
    cam_sets, board_sets = _synthetic_sets()
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SolveCancelledError):
        calculate_reprojection_transform(cam_sets, board_sets, cancel_event=cancel)


def _filled_store() -> MeasurementStore:
    store = MeasurementStore()
    for cam, board in zip(*_synthetic_sets()):
        store.add_measurement(cam, board)
    return store


def test_worker_solves_snapshot() -> None:
    store = _filled_store()
    worker = SolveWorker(store).start()
    extra_cam, extra_board = _synthetic_sets(n_sets=1, seed=9)
    store.add_measurement(extra_cam[0], extra_board[0])
    result = worker.result(timeout=30)
    assert result.point_count == 72
    assert not worker.running
    assert len(store) == 4


def test_worker_cancel_leaves_store_intact() -> None:
    store = _filled_store()
    worker = SolveWorker(store)
    worker.cancel()
    worker.start()
    with pytest.raises(SolveCancelledError):
        worker.result(timeout=30)
    assert len(store) == 3


def test_worker_surfaces_insufficient_data() -> None:
    worker = SolveWorker(MeasurementStore()).start()
    with pytest.raises(InsufficientDataError):
        worker.result(timeout=30)


def test_worker_without_result_raises(monkeypatch) -> None:
    monkeypatch.setattr(
        "procam_calib.calibration.solver.calculate_reprojection_transform",
        lambda *args, **kwargs: None,
    )
    worker = SolveWorker(_filled_store()).start()
    with pytest.raises(RuntimeError, match="without a result"):
        worker.result(timeout=30)
