"""Typed failures raised by the calibration numerics."""

from __future__ import annotations


class CalibrationError(RuntimeError):
    """Base class for calibration failures."""


class InsufficientDataError(CalibrationError, ValueError):
    """Not enough measurements to run the requested computation."""


class DegenerateGeometryError(CalibrationError, ValueError):
    """Input geometry makes the computation undefined (zero span, zero depth, ...)."""


class SolveCancelledError(CalibrationError):
    """A running solve was cancelled by the caller."""
