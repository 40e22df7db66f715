"""Depth camera base interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
import numpy as np

from procam_calib.core.models import DepthFrame


class DepthCameraBase(ABC):
    """Abstract color+depth camera; color and depth frames are pixel-aligned."""

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def update(self) -> None:
        """Advance to the latest available frame pair."""
        pass

    def is_frame_new(self) -> bool:
        """Whether the last update() produced a frame not seen before."""
        return True

    @abstractmethod
    def color_frame(self) -> np.ndarray:
        """Current uint8 RGB frame, shape (H, W, 3)."""
        pass

    @abstractmethod
    def depth_frame(self) -> DepthFrame:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass
