from __future__ import annotations

from typing import Literal

import numpy as np

from plenocal.errors import GeometryError
from plenocal.meta import CheckerSize


Quadrant = Literal["top_left", "top_right", "bottom_left", "bottom_right", "ambiguous"]


def ideal_checker(checker_size: CheckerSize, spacing: tuple[float, float]) -> np.ndarray:
    """
    Ideal board corners (N,3) on the z=0 plane.

    Ordering is row-major: index `r * cols + c` holds `(c * sx, r * sy, 0)`.
    Canonicalized detections use the same ordering.
    """
    cols, rows = int(checker_size.cols), int(checker_size.rows)
    sx, sy = float(spacing[0]), float(spacing[1])
    xx, yy = np.meshgrid(sx * np.arange(cols, dtype=np.float64), sy * np.arange(rows, dtype=np.float64))
    return np.stack([xx.reshape(-1), yy.reshape(-1), np.zeros(cols * rows, dtype=np.float64)], axis=1)


def _quadrant(p: np.ndarray, centroid: np.ndarray) -> Quadrant:
    left = p[0] < centroid[0]
    right = p[0] > centroid[0]
    top = p[1] < centroid[1]
    bottom = p[1] > centroid[1]
    if left and top:
        return "top_left"
    if right and top:
        return "top_right"
    if left and bottom:
        return "bottom_left"
    if right and bottom:
        return "bottom_right"
    return "ambiguous"


def corner_quadrant(corners: np.ndarray) -> Quadrant:
    """Quadrant of the first corner relative to the centroid (image y axis points down)."""
    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    return _quadrant(corners[0], corners.mean(axis=0))


def is_top_left(corners: np.ndarray) -> bool:
    return corner_quadrant(corners) == "top_left"


def canonicalize_corners(corners: np.ndarray, checker_size: CheckerSize) -> np.ndarray:
    """
    Reindex a detected corner set so that point 0 is the top-left corner and the
    ordering matches `ideal_checker`.

    Supported detector layouts, keyed by where the first point lands:

    - top-left: already canonical, grid (rows, cols).
    - top-right: grid (cols, rows) rotated by 90 deg; reverse the slow axis, transpose.
    - bottom-left: grid (cols, rows) rotated by -90 deg; reverse the fast axis, transpose.
    - bottom-right: grid (rows, cols) rotated by 180 deg; reverse both axes.

    Raises GeometryError when the count is wrong or when the reindexed set still
    does not start in the top-left quadrant.
    """
    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    cols, rows = int(checker_size.cols), int(checker_size.rows)
    if corners.shape[0] != cols * rows:
        raise GeometryError(f"expected {cols * rows} corners, got {corners.shape[0]}")
    if not np.all(np.isfinite(corners)):
        raise GeometryError("non-finite corner coordinates")

    centroid = corners.mean(axis=0)
    quadrant = _quadrant(corners[0], centroid)

    if quadrant == "top_left":
        out = corners.copy()
    elif quadrant == "top_right":
        grid = corners.reshape(cols, rows, 2)
        out = grid[::-1, :, :].transpose(1, 0, 2).reshape(-1, 2)
    elif quadrant == "bottom_left":
        grid = corners.reshape(cols, rows, 2)
        out = grid[:, ::-1, :].transpose(1, 0, 2).reshape(-1, 2)
    elif quadrant == "bottom_right":
        grid = corners.reshape(rows, cols, 2)
        out = grid[::-1, ::-1, :].reshape(-1, 2)
    else:
        raise GeometryError("first corner lies on a centroid axis; cannot resolve orientation")

    if _quadrant(out[0], centroid) != "top_left":
        raise GeometryError(f"unexpected point order from corner detector (first point {quadrant})")
    return np.ascontiguousarray(out)
