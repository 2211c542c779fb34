from __future__ import annotations

from typing import Sequence

import numpy as np

from plenocal.errors import InsufficientDataError
from plenocal.meta import LightFieldSize


def central_index(lf_size: LightFieldSize, *, index_base: int = 0) -> np.ndarray:
    """
    Center of the 4D sampling grid as (i, j, k, l): sub-aperture column, sub-aperture
    row, pixel x, pixel y. `index_base=1` matches 1-based sample indices.
    """
    n = np.array([lf_size.n_s, lf_size.n_t, lf_size.width_px, lf_size.height_px], dtype=np.float64)
    return (n - 1.0) / 2.0 + float(index_base)


def recenter_intrinsics(H: np.ndarray, lf_size: LightFieldSize, *, index_base: int = 0) -> np.ndarray:
    """Set the offset column so that the central sample index maps to the zero ray."""
    H = np.array(H, dtype=np.float64).reshape(5, 5)
    center = np.concatenate([central_index(lf_size, index_base=index_base), [1.0]])
    H[:4, 4] = 0.0
    offset = -H @ center
    H[:4, 4] = offset[:4]
    return H


def index_to_ray(H: np.ndarray, ijkl: np.ndarray) -> np.ndarray:
    """Map sample indices (...,4) to rays (s, t, u, v) (...,4)."""
    ijkl = np.asarray(ijkl, dtype=np.float64)
    homog = np.concatenate([ijkl, np.ones(ijkl.shape[:-1] + (1,), dtype=np.float64)], axis=-1)
    out = homog @ np.asarray(H, dtype=np.float64).reshape(5, 5).T
    return out[..., :4] / out[..., 4:5]


def assemble_intrinsics(
    focal: np.ndarray,
    baselines: Sequence[float],
    lf_size: LightFieldSize,
    *,
    index_base: int = 0,
) -> np.ndarray:
    """
    Initial 5x5 light-field intrinsics.

    Spatial slopes (s per i, t per j) spread the mean baseline across the
    sub-aperture grid; angular slopes (u per k, v per l) are 1/f.
    """
    baselines = np.asarray(list(baselines), dtype=np.float64).reshape(-1)
    if baselines.size == 0:
        raise InsufficientDataError("no superposes available for the baseline estimate")
    focal = np.asarray(focal, dtype=np.float64).reshape(2)
    if not np.all(np.isfinite(focal)) or np.any(focal <= 0.0):
        raise InsufficientDataError("focal length estimate must be finite and > 0")

    mean_baseline = float(np.mean(baselines))
    spatial = []
    for n in (lf_size.n_s, lf_size.n_t):
        # A single view along an axis gives no spatial sampling there.
        spatial.append(mean_baseline / (n - 1) if n > 1 else 0.0)

    H = np.eye(5, dtype=np.float64)
    H[0, 0] = spatial[0]
    H[1, 1] = spatial[1]
    H[2, 2] = 1.0 / focal[0]
    H[3, 3] = 1.0 / focal[1]
    return recenter_intrinsics(H, lf_size, index_base=index_base)
