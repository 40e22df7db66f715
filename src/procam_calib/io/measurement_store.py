"""In-memory store of accepted measurements with JSON save/load."""

from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List

import numpy as np

from procam_calib.core.models import Measurement


class MeasurementStore:
    """
    Ordered list of accepted measurements.

    All access goes through a lock; readers get copies, so a solve can
    work on a snapshot while the pipeline keeps appending.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._measurements: List[Measurement] = []

    def add_measurement(self, cam_points: np.ndarray, board_points: np.ndarray) -> Measurement:
        measurement = Measurement(cam_points=cam_points, board_points=board_points)
        with self._lock:
            self._measurements.append(measurement)
        return measurement

    def get_cam_points(self) -> list[np.ndarray]:
        with self._lock:
            return [m.cam_points.copy() for m in self._measurements]

    def get_projector_points(self) -> list[np.ndarray]:
        with self._lock:
            return [m.board_points.copy() for m in self._measurements]

    def snapshot(self) -> tuple[list[np.ndarray], list[np.ndarray]]:
        """Camera and projector point sets copied under one lock acquisition."""
        with self._lock:
            cam = [m.cam_points.copy() for m in self._measurements]
            board = [m.board_points.copy() for m in self._measurements]
        return cam, board

    def delete_last_measurement(self) -> bool:
        with self._lock:
            if not self._measurements:
                return False
            self._measurements.pop()
            return True

    def clear(self) -> None:
        with self._lock:
            self._measurements.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._measurements)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "saved_at": datetime.now().isoformat(),
                "measurements": [m.to_dict() for m in self._measurements],
            }

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
        return path

    def load(self, path: Path) -> int:
        """Replace the contents with the measurements saved at path."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Measurement file not found: {path}")
        payload = json.loads(path.read_text())
        loaded = [
            Measurement(
                cam_points=np.asarray(m["cam_points"], dtype=np.float64),
                board_points=np.asarray(m["board_points"], dtype=np.float64),
            )
            for m in payload.get("measurements", [])
        ]
        with self._lock:
            self._measurements = loaded
        return len(loaded)
