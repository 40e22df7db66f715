"""Least-squares plane fit z = a*x + b*y + c and its goodness of fit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(slots=True)
class PlaneFit:
    """Plane coefficients (a, b, c) and coefficient of determination."""
    coeffs: Optional[np.ndarray]
    r2: Optional[float]
    solved: bool
    degenerate: bool = False


def fit_plane(points: np.ndarray) -> PlaneFit:
    """
    Fit z = a*x + b*y + c through the normal equations.

    r2 is None when the system is singular or when every z is identical
    (total sum of squares is zero up to rounding, R^2 undefined).
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]
    n = float(pts.shape[0])

    sum_x, sum_y, sum_z = x.sum(), y.sum(), z.sum()
    sum_x2, sum_y2, sum_xy = (x * x).sum(), (y * y).sum(), (x * y).sum()
    sum_xz, sum_yz = (x * z).sum(), (y * z).sum()

    lhs = np.array(
        [
            [sum_x2, sum_xy, sum_x],
            [sum_xy, sum_y2, sum_y],
            [sum_x, sum_y, n],
        ],
        dtype=np.float64,
    )
    rhs = np.array([sum_xz, sum_yz, sum_z], dtype=np.float64)

    try:
        coeffs = np.linalg.solve(lhs, rhs)
    except np.linalg.LinAlgError:
        return PlaneFit(coeffs=None, r2=None, solved=False)
    if not np.all(np.isfinite(coeffs)):
        return PlaneFit(coeffs=None, r2=None, solved=False)

    fitted = coeffs[0] * x + coeffs[1] * y + coeffs[2]
    ss_res = float(np.sum((z - fitted) ** 2))
    mean_z = sum_z / n
    ss_tot = float(np.sum((z - mean_z) ** 2))
    # Rounding leaves a tiny non-zero spread when all z are equal.
    if ss_tot <= np.finfo(np.float64).eps * n * max(1.0, mean_z ** 2):
        return PlaneFit(coeffs=coeffs, r2=None, solved=True, degenerate=True)
    return PlaneFit(coeffs=coeffs, r2=1.0 - ss_res / ss_tot, solved=True)


def is_planar(fit: PlaneFit, use_planar_condition: bool, planar_threshold: float) -> bool:
    if not use_planar_condition:
        return True
    if not fit.solved or fit.r2 is None:
        return False
    return fit.r2 > planar_threshold
