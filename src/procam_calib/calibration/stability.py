"""Temporal consensus gate over the last N candidate frames."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, List, Optional, TypeVar

import numpy as np

from procam_calib.core.errors import DegenerateGeometryError
from procam_calib.core.models import BoardGeometry, CalibrationConfig, Measurement

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity circular container; the oldest item is overwritten first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("RingBuffer capacity must be >= 1")
        self.capacity = int(capacity)
        self._slots: List[Optional[T]] = [None] * self.capacity
        self._cursor = -1
        self._count = 0

    def push(self, item: T) -> None:
        self._cursor = (self._cursor + 1) % self.capacity
        self._slots[self._cursor] = item
        self._count = min(self._count + 1, self.capacity)

    def is_full(self) -> bool:
        return self._count == self.capacity

    def clear(self) -> None:
        self._slots = [None] * self.capacity
        self._cursor = -1
        self._count = 0

    def latest(self) -> Optional[T]:
        if self._count == 0:
            return None
        return self._slots[self._cursor]

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[T]:
        """Iterate oldest to newest."""
        if self._count < self.capacity:
            order = range(self._count)
        else:
            start = self._cursor + 1
            order = [(start + k) % self.capacity for k in range(self.capacity)]
        for idx in order:
            yield self._slots[idx]  # type: ignore[misc]


@dataclass(slots=True)
class StabilityResult:
    enough_frames: bool = False
    num_ok_frames: int = 0
    variance_ok: bool = False
    max_variance_xy: Optional[float] = None
    max_variance_z: Optional[float] = None
    measurement: Optional[Measurement] = None
    reason: Optional[str] = None


def window_variance(window: np.ndarray) -> tuple[np.ndarray, float, float]:
    """
    Per-corner mean and worst-case variance of a (N, n, 3) window.

    The z variance is depth-normalised: each squared deviation is divided
    by the raw depth sample, so noisier far-away corners are tolerated more.
    Returns (mean_points, max_variance_xy, max_variance_z).
    """
    window = np.asarray(window, dtype=np.float64)
    if window.ndim != 3 or window.shape[2] != 3 or window.shape[0] == 0:
        raise ValueError(f"Expected a (N, n, 3) window, got shape {window.shape}")
    z = window[:, :, 2]
    if np.any(z <= 0):
        raise DegenerateGeometryError("Depth-normalised variance undefined for non-positive depth samples")

    mean = window.mean(axis=0)
    sq_dev = (window - mean[None, :, :]) ** 2
    var_xy = sq_dev[:, :, :2].mean(axis=0)
    var_z = (sq_dev[:, :, 2] / z).mean(axis=0)
    return mean, float(var_xy.max(initial=0.0)), float(var_z.max(initial=0.0))


class StabilityAccumulator:
    """
    Accepts a measurement once N consecutive good frames agree closely.

    Every update pushes one slot (an empty array for failed frames), so a
    single bad or differently-sized frame breaks the run. After an
    acceptance the window is emptied and a pause starts, during which
    frames are treated as not found.
    """

    def __init__(
        self,
        num_frames: int,
        variance_threshold_xy: float,
        variance_threshold_z: float,
        pause_length_ms: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.num_frames = int(num_frames)
        self.variance_threshold_xy = float(variance_threshold_xy)
        self.variance_threshold_z = float(variance_threshold_z)
        self.pause_length_ms = float(pause_length_ms)
        self._clock = clock
        self._buffer: RingBuffer[np.ndarray] = RingBuffer(self.num_frames)
        self._paused = False
        self._pause_started = 0.0

    @classmethod
    def from_config(cls, config: CalibrationConfig, clock: Callable[[], float] = time.monotonic) -> "StabilityAccumulator":
        return cls(
            num_frames=config.num_stability_frames,
            variance_threshold_xy=config.variance_threshold_xy,
            variance_threshold_z=config.variance_threshold_z,
            pause_length_ms=config.measurement_pause_length,
            clock=clock,
        )

    @property
    def buffer(self) -> RingBuffer[np.ndarray]:
        return self._buffer

    def in_pause(self) -> bool:
        """True while the post-acceptance pause is running; ends it once expired."""
        if self._paused and (self._clock() - self._pause_started) * 1000.0 > self.pause_length_ms:
            self._paused = False
        return self._paused

    def start_pause(self) -> None:
        self._paused = True
        self._pause_started = self._clock()

    def reset(self) -> None:
        self._buffer.clear()
        self._paused = False

    def _count_matching(self, corner_count: int) -> int:
        # Slots never written hold no corners, so they never match.
        return sum(1 for slot in self._buffer if slot.shape[0] == corner_count)

    def push(self, points: Optional[np.ndarray], board: BoardGeometry) -> StabilityResult:
        """
        Record this frame's corners (None or empty for a failed frame) and
        evaluate the window.
        """
        if points is None:
            current = np.zeros((0, 3), dtype=np.float64)
        else:
            current = np.asarray(points, dtype=np.float64).reshape(-1, 3).copy()
        self._buffer.push(current)

        if current.shape[0] == 0:
            return StabilityResult()

        num_ok = self._count_matching(current.shape[0])
        if num_ok != self.num_frames:
            return StabilityResult(num_ok_frames=num_ok, reason=f"stable for {num_ok}/{self.num_frames} frames")

        window = np.stack(list(self._buffer), axis=0)
        try:
            mean, max_xy, max_z = window_variance(window)
        except DegenerateGeometryError as exc:
            return StabilityResult(enough_frames=True, num_ok_frames=num_ok, reason=str(exc))

        result = StabilityResult(
            enough_frames=True,
            num_ok_frames=num_ok,
            max_variance_xy=max_xy,
            max_variance_z=max_z,
        )
        if not (max_xy < self.variance_threshold_xy and max_z < self.variance_threshold_z):
            result.reason = "variance too high"
            return result

        result.variance_ok = True
        board_points = board.board_points()
        if board_points.shape[0] != mean.shape[0]:
            result.reason = (
                f"detected {mean.shape[0]} corners but board has {board_points.shape[0]}"
            )
            return result

        result.measurement = Measurement(cam_points=mean, board_points=board_points)
        self._buffer.clear()
        self.start_pause()
        return result
