"""CLI commands for board rendering, synthetic acquisition and solving."""

from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

from procam_calib.calibration.checkerboard import render_board, save_image
from procam_calib.calibration.session import CalibrationSession
from procam_calib.calibration.solver import solve_store
from procam_calib.camera.mock import MockDepthCamera, SyntheticDepthCamera
from procam_calib.core.errors import CalibrationError
from procam_calib.core.logging import setup_logging
from procam_calib.core.models import BoardGeometry, CalibrationConfig, SolveResult
from procam_calib.io.measurement_store import MeasurementStore


def _load_config(path: str = "config/default.yaml") -> dict:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    import yaml
    return yaml.safe_load(cfg_path.read_text()) or {}


def _calibration_config(cfg: dict) -> CalibrationConfig:
    return CalibrationConfig.from_dict(cfg.get("calibration", {}) or {})


def _board_geometry(cfg: dict) -> BoardGeometry:
    board_cfg: Dict[str, Any] = cfg.get("board", {}) or {}
    defaults = BoardGeometry()
    return BoardGeometry(
        squares_x=int(board_cfg.get("squares_x", defaults.squares_x)),
        squares_y=int(board_cfg.get("squares_y", defaults.squares_y)),
        x=float(board_cfg.get("x", defaults.x)),
        y=float(board_cfg.get("y", defaults.y)),
        width=float(board_cfg.get("width", defaults.width)),
        height=float(board_cfg.get("height", defaults.height)),
    )


def _print_result(result: SolveResult) -> None:
    print("[SOLVE] matrix:")
    for row in result.matrix:
        print("   " + " ".join(f"{v: .6f}" for v in row))
    print(f"[SOLVE] rms={result.rms:.6f} points={result.point_count} converged={result.converged} nfev={result.nfev}")
    if not result.converged:
        print(f"[SOLVE] warning: {result.message}")


def _write_result(path: Path, result: SolveResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), indent=2))
    print(f"[SOLVE] wrote {path}")


def cmd_board(args) -> int:
    cfg = _load_config(args.config)
    board = _board_geometry(cfg)
    proj_cfg = cfg.get("projector", {}) or {}
    width = int(proj_cfg.get("width", 1024) if args.width is None else args.width)
    height = int(proj_cfg.get("height", 768) if args.height is None else args.height)
    img = render_board(board, width, height, brightness=int(args.brightness))
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    save_image(out, img)
    print(f"[BOARD] {board.squares_x}x{board.squares_y} squares, {board.corner_count} corners -> {out}")
    return 0


def cmd_acquire(args) -> int:
    cfg = _load_config(args.config)
    board = _board_geometry(cfg)
    config = _calibration_config(cfg)
    cam_cfg = cfg.get("camera", {}) or {}
    cam_type = str(args.camera or cam_cfg.get("type", "synthetic"))
    clock = time.monotonic
    if cam_type == "synthetic":
        camera = SyntheticDepthCamera(
            board=board,
            frames_per_pose=int(cam_cfg.get("frames_per_pose", 20)),
            depth_noise=float(cam_cfg.get("depth_noise", 0.0)),
            seed=int(cam_cfg.get("seed", 0)),
        )
        # Pauses are measured in simulated frame time.
        clock = camera.timestamp
    elif cam_type == "mock":
        camera = MockDepthCamera(data_dir=cam_cfg.get("mock_data", "mock_data"))
    else:
        raise SystemExit("camera.type must be synthetic or mock")

    store = MeasurementStore()
    session = CalibrationSession(camera=camera, store=store, config=config, board=board, clock=clock)
    camera.start()
    try:
        for i in range(int(args.frames)):
            camera.update()
            result = session.update()
            if result.accepted:
                print(f"[ACQUIRE] frame {i}: measurement {len(store)} accepted")
    finally:
        camera.stop()

    print(f"[ACQUIRE] {len(store)} measurements from {args.frames} frames")
    if args.out:
        session.save_measurements(Path(args.out))
    if len(store) == 0:
        return 1
    try:
        result = session.solve(max_nfev=args.max_nfev)
    except CalibrationError as exc:
        print(f"[SOLVE] failed: {exc}")
        return 2
    _print_result(result)
    if args.result:
        _write_result(Path(args.result), result)
    return 0


def cmd_solve(args) -> int:
    store = MeasurementStore()
    count = store.load(Path(args.measurements))
    print(f"[SOLVE] loaded {count} measurements from {args.measurements}")
    try:
        result = solve_store(store, max_nfev=args.max_nfev)
    except CalibrationError as exc:
        print(f"[SOLVE] failed: {exc}")
        return 2
    _print_result(result)
    if args.out:
        _write_result(Path(args.out), result)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="procam_calib")
    ap.add_argument("--config", type=str, default="config/default.yaml")
    ap.add_argument("--verbose", action="store_true")
    sub = ap.add_subparsers(dest="cmd", required=True)

    board = sub.add_parser("board", help="render the chessboard projector image")
    board.add_argument("--out", type=str, default="board.png")
    board.add_argument("--width", type=int, default=None)
    board.add_argument("--height", type=int, default=None)
    board.add_argument("--brightness", type=int, default=255)
    board.set_defaults(func=cmd_board)

    acquire = sub.add_parser("acquire", help="collect measurements from a mock camera and solve")
    acquire.add_argument("--camera", type=str, default=None, choices=["synthetic", "mock"])
    acquire.add_argument("--frames", type=int, default=200)
    acquire.add_argument("--out", type=str, default=None, help="save measurements json")
    acquire.add_argument("--result", type=str, default=None, help="save solve result json")
    acquire.add_argument("--max-nfev", type=int, default=None)
    acquire.set_defaults(func=cmd_acquire)

    solve = sub.add_parser("solve", help="fit the camera matrix from saved measurements")
    solve.add_argument("--measurements", type=str, required=True)
    solve.add_argument("--out", type=str, default=None)
    solve.add_argument("--max-nfev", type=int, default=None)
    solve.set_defaults(func=cmd_solve)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    return int(args.func(args))
