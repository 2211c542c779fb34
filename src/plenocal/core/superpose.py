from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import numpy as np

from plenocal.core.extrinsics import Pose
from plenocal.errors import InsufficientDataError


ObservationKey = tuple[int, int, int]  # (placement, t, s)


@dataclass(frozen=True)
class SuperPose:
    """One board placement seen by all sub-aperture views."""

    placement: int
    pose: Pose
    baseline: float  # estimated diameter of the sub-aperture camera array
    n_views: int

    def as_vector(self) -> np.ndarray:
        """(tx, ty, tz, rx, ry, rz)."""
        return np.concatenate([np.asarray(self.pose.tvec).reshape(3), np.asarray(self.pose.rvec).reshape(3)]).astype(np.float64)


def median_rotation(rvecs: np.ndarray) -> np.ndarray:
    """
    Component-wise median of Rodrigues vectors.

    Only meaningful when all rotations are nearly identical, which holds for the
    sub-aperture views of one placement (baseline << distance to the board).
    """
    rvecs = np.asarray(rvecs, dtype=np.float64).reshape(-1, 3)
    return np.median(rvecs, axis=0)


def baseline_estimate(tvecs: np.ndarray, center: np.ndarray) -> float:
    """
    Diameter of the camera array from the spread of translations around `center`.

    Points uniform on a disk of radius R sit at a mean distance 2R/3 from its
    center, hence diameter = 2 * 3/2 * mean distance.
    """
    tvecs = np.asarray(tvecs, dtype=np.float64).reshape(-1, 3)
    d = np.linalg.norm(tvecs - np.asarray(center, dtype=np.float64).reshape(1, 3), axis=1)
    return float(2.0 * 1.5 * np.mean(d))


def aggregate_superpose(placement: int, poses: Iterable[Pose]) -> SuperPose:
    poses = list(poses)
    if not poses:
        raise InsufficientDataError(f"placement {placement} has no valid sub-aperture poses")
    rvecs = np.stack([np.asarray(p.rvec, dtype=np.float64).reshape(3) for p in poses], axis=0)
    tvecs = np.stack([np.asarray(p.tvec, dtype=np.float64).reshape(3) for p in poses], axis=0)
    t_med = np.median(tvecs, axis=0)
    return SuperPose(
        placement=int(placement),
        pose=Pose(rvec=median_rotation(rvecs), tvec=t_med),
        baseline=baseline_estimate(tvecs, t_med),
        n_views=len(poses),
    )


def aggregate_superposes(poses: Mapping[ObservationKey, Pose]) -> list[SuperPose]:
    """Group sub-aperture poses by placement; placements without poses are omitted."""
    by_placement: dict[int, list[Pose]] = {}
    for key in sorted(poses):
        by_placement.setdefault(int(key[0]), []).append(poses[key])
    return [aggregate_superpose(placement, group) for placement, group in sorted(by_placement.items())]
