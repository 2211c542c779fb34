from __future__ import annotations

from typing import Iterable

import numpy as np

from plenocal.errors import DegenerateHomographyError, InsufficientDataError
from plenocal.meta import LightFieldSize


def compute_homography(corners: np.ndarray, ideal_xy: np.ndarray) -> np.ndarray:
    """
    Plane -> image homography H (3,3) with `corners ~ H @ [x, y, 1]`.

    Normalized DLT least squares (no RANSAC: detections are complete grids).
    """
    import cv2  # type: ignore

    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    ideal_xy = np.asarray(ideal_xy, dtype=np.float64).reshape(-1, 2)
    if corners.shape[0] != ideal_xy.shape[0]:
        raise ValueError("corners and ideal_xy must have the same length")
    if corners.shape[0] < 4:
        raise ValueError("need >= 4 correspondences for a homography")

    H, _mask = cv2.findHomography(ideal_xy, corners, method=0)
    if H is None:
        raise DegenerateHomographyError("homography solve failed (degenerate correspondences)")
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    if not np.all(np.isfinite(H)):
        raise DegenerateHomographyError("homography has non-finite entries")
    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]
    return H


def apply_homography(H: np.ndarray, xy: np.ndarray) -> np.ndarray:
    xy = np.asarray(xy, dtype=np.float64).reshape(-1, 2)
    ph = np.concatenate([xy, np.ones((xy.shape[0], 1), dtype=np.float64)], axis=1)
    uvw = (np.asarray(H, dtype=np.float64) @ ph.T).T
    return uvw[:, :2] / uvw[:, 2:3]


def principal_point_init(lf_size: LightFieldSize) -> np.ndarray:
    """Sub-aperture image center in 0-based pixel coordinates."""
    return np.array([(lf_size.width_px - 1) / 2.0, (lf_size.height_px - 1) / 2.0], dtype=np.float64)


def vanishing_points(H: np.ndarray, principal_point: np.ndarray) -> np.ndarray:
    """
    Unit vanishing directions (4,3): horizontal, vertical and both diagonals,
    taken from H recentered on the principal point.
    """
    cx, cy = (float(v) for v in np.asarray(principal_point, dtype=np.float64).reshape(2))
    recenter = np.array([[1.0, 0.0, -cx], [0.0, 1.0, -cy], [0.0, 0.0, 1.0]], dtype=np.float64)
    Hc = recenter @ np.asarray(H, dtype=np.float64).reshape(3, 3)
    h1 = Hc[:, 0]
    h2 = Hc[:, 1]
    V = np.stack([h1, h2, h1 + h2, h1 - h2], axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        return V / np.linalg.norm(V, axis=1, keepdims=True)


def focal_constraint_rows(H: np.ndarray, principal_point: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Two orthogonality constraints per homography on (1/fx^2, 1/fy^2):

      a_h a_v / fx^2 + b_h b_v / fy^2 = -c_h c_v
      a_d1 a_d2 / fx^2 + b_d1 b_d2 / fy^2 = -c_d1 c_d2
    """
    V = vanishing_points(H, principal_point)
    A = np.array(
        [
            [V[0, 0] * V[1, 0], V[0, 1] * V[1, 1]],
            [V[2, 0] * V[3, 0], V[2, 1] * V[3, 1]],
        ],
        dtype=np.float64,
    )
    b = -np.array([V[0, 2] * V[1, 2], V[2, 2] * V[3, 2]], dtype=np.float64)
    return A, b


def estimate_focal_length(
    homographies: Iterable[np.ndarray],
    principal_point: np.ndarray,
) -> tuple[np.ndarray, dict[str, float]]:
    """
    Global least-squares focal length shared by all views.

    With a single focal length f the stacked system reduces to
    rowsum(A) = f^2 b, so f = sqrt(b . rowsum(A) / b . b). Homographies producing
    NaN rows are dropped. Returns (f, f) and diagnostics.
    """
    A_parts: list[np.ndarray] = []
    b_parts: list[np.ndarray] = []
    n_total = 0
    n_dropped = 0
    for H in homographies:
        n_total += 1
        A, b = focal_constraint_rows(H, principal_point)
        if np.any(np.isnan(A)) or np.any(np.isnan(b)):
            n_dropped += 1
            continue
        A_parts.append(A)
        b_parts.append(b)

    if not A_parts:
        raise InsufficientDataError("no valid homography rows for focal length solve")

    A_all = np.concatenate(A_parts, axis=0)
    b_all = np.concatenate(b_parts, axis=0)
    denom = float(b_all @ b_all)
    num = float(b_all @ A_all.sum(axis=1))
    if not np.isfinite(num) or not np.isfinite(denom) or denom <= 0.0 or num <= 0.0:
        raise InsufficientDataError(
            "focal length solve is degenerate (fronto-parallel or inconsistent homographies)"
        )
    f = float(np.sqrt(num / denom))
    diag = {
        "n_homographies": float(n_total),
        "n_dropped_nan": float(n_dropped),
        "n_rows": float(A_all.shape[0]),
    }
    return np.array([f, f], dtype=np.float64), diag
