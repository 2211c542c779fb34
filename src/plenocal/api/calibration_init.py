from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Literal, Sequence, TypeVar

import numpy as np

from plenocal.core.checkerboard import canonicalize_corners, ideal_checker
from plenocal.core.extrinsics import Pose, estimate_pose
from plenocal.core.homography import compute_homography, estimate_focal_length, principal_point_init
from plenocal.core.intrinsics import assemble_intrinsics
from plenocal.core.superpose import ObservationKey, SuperPose, aggregate_superposes
from plenocal.errors import (
    DegenerateHomographyError,
    GeometryError,
    InsufficientDataError,
    PoseEstimationError,
)
from plenocal.meta import CalibrationOptions, LightFieldSize


Stage = Literal["validate", "canonicalize", "homography", "pose"]

# One placement: a (n_t, n_s) grid of detections, None/empty when nothing was found.
PlacementCorners = Sequence[Sequence["np.ndarray | None"]]

_T = TypeVar("_T")
_R = TypeVar("_R")


@dataclass(frozen=True)
class SkippedObservation:
    key: ObservationKey
    stage: Stage
    reason: str


@dataclass
class CalibrationInit:
    """Everything the refinement stage needs, plus bookkeeping of skipped views."""

    lf_size: LightFieldSize
    ideal_checker: np.ndarray  # (N,3)
    checker_obs: dict[ObservationKey, np.ndarray]  # canonical corners (N,2)
    principal_point: np.ndarray  # (2,)
    focal_init: np.ndarray  # (2,)
    homographies: dict[ObservationKey, np.ndarray]
    poses: dict[ObservationKey, Pose]
    superposes: list[SuperPose]
    intrinsics: np.ndarray  # (5,5)
    distortion: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))
    skipped: list[SkippedObservation] = field(default_factory=list)
    valid_counts: list[int] = field(default_factory=list)
    diagnostics: dict[str, float] = field(default_factory=dict)

    def est_cam_poses(self) -> np.ndarray:
        """(P,6) superposes as (tx, ty, tz, rx, ry, rz)."""
        if not self.superposes:
            return np.zeros((0, 6), dtype=np.float64)
        return np.stack([sp.as_vector() for sp in self.superposes], axis=0)


def _map(fn: Callable[[_T], _R], items: Iterable[_T], max_workers: int) -> list[_R]:
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=int(max_workers)) as executor:
        return list(executor.map(fn, items))


def _observations(checker_corners: Sequence[PlacementCorners]) -> list[tuple[ObservationKey, np.ndarray | None]]:
    out: list[tuple[ObservationKey, np.ndarray | None]] = []
    for p, grid in enumerate(checker_corners):
        for t, row in enumerate(grid):
            for s, corners in enumerate(row):
                if corners is None:
                    out.append(((p, t, s), None))
                else:
                    out.append(((p, t, s), np.asarray(corners, dtype=np.float64).reshape(-1, 2)))
    return out


def initialize_calibration(
    checker_corners: Sequence[PlacementCorners],
    lf_size: LightFieldSize,
    options: CalibrationOptions,
) -> CalibrationInit:
    """
    Initial light-field intrinsics and per-placement board poses from detected corners.

    Two passes separated by global reductions:

    1. per view: corner count check, canonical ordering, homography;
       then the focal length is solved from all homographies at once;
    2. per view: direct pose + refinement using that focal length;
       then poses are merged per placement and the intrinsics assembled.

    Per-view failures are recorded in `skipped`. A failed global reduction raises
    InsufficientDataError.
    """
    n_corners = options.checker_size.n_corners
    ideal = ideal_checker(options.checker_size, options.checker_spacing)
    ideal_xy = ideal[:, :2]
    workers = int(options.max_workers)

    observations = _observations(checker_corners)
    skipped: list[SkippedObservation] = []
    valid_counts = [0] * len(checker_corners)

    # Pass 1: canonical corners + homographies.
    def first_pass(item: tuple[ObservationKey, np.ndarray | None]):
        key, corners = item
        if corners is None or corners.shape[0] != n_corners:
            n = 0 if corners is None else int(corners.shape[0])
            return key, None, None, SkippedObservation(key, "validate", f"expected {n_corners} corners, got {n}")
        try:
            canon = canonicalize_corners(corners, options.checker_size)
        except GeometryError as e:
            return key, None, None, SkippedObservation(key, "canonicalize", str(e))
        try:
            H = compute_homography(canon, ideal_xy)
        except DegenerateHomographyError as e:
            return key, canon, None, SkippedObservation(key, "homography", str(e))
        return key, canon, H, None

    checker_obs: dict[ObservationKey, np.ndarray] = {}
    homographies: dict[ObservationKey, np.ndarray] = {}
    for key, canon, H, skip in _map(first_pass, observations, workers):
        if skip is not None:
            skipped.append(skip)
            # Count detections with the right size as valid even if a later step drops them.
            if skip.stage == "validate":
                continue
        valid_counts[key[0]] += 1
        if canon is not None and H is not None:
            checker_obs[key] = canon
            homographies[key] = H

    if not homographies:
        raise InsufficientDataError("no valid checkerboard observations (all views skipped)")

    pp = principal_point_init(lf_size)
    focal, focal_diag = estimate_focal_length((homographies[k] for k in sorted(homographies)), pp)

    # Pass 2: poses.
    def second_pass(key: ObservationKey):
        try:
            pose, diag = estimate_pose(
                checker_obs[key],
                ideal,
                focal,
                pp,
                max_iters=options.refine_max_iters,
                cond_max=options.refine_cond_max,
            )
        except PoseEstimationError as e:
            return key, None, None, SkippedObservation(key, "pose", str(e))
        return key, pose, diag, None

    poses: dict[ObservationKey, Pose] = {}
    init_rms: list[float] = []
    final_rms: list[float] = []
    n_refine_skipped = 0
    for key, pose, diag, skip in _map(second_pass, sorted(checker_obs), workers):
        if skip is not None:
            skipped.append(skip)
            continue
        poses[key] = pose
        init_rms.append(diag["init_rms_px"])
        final_rms.append(diag["final_rms_px"])
        n_refine_skipped += int(diag["refine_skipped"])

    superposes = aggregate_superposes(poses)
    if not superposes:
        raise InsufficientDataError("no superposes: every pose estimate failed")

    intrinsics = assemble_intrinsics(focal, [sp.baseline for sp in superposes], lf_size)

    diagnostics: dict[str, float] = {
        "n_observations": float(len(observations)),
        "n_valid": float(sum(valid_counts)),
        "n_homographies": float(len(homographies)),
        "n_poses": float(len(poses)),
        "n_superposes": float(len(superposes)),
        "n_skipped": float(len(skipped)),
        "n_refine_skipped": float(n_refine_skipped),
        "focal_init_px": float(focal[0]),
        "pose_init_rms_px": float(np.mean(init_rms)) if init_rms else float("nan"),
        "pose_final_rms_px": float(np.mean(final_rms)) if final_rms else float("nan"),
        "mean_baseline": float(np.mean([sp.baseline for sp in superposes])),
    }
    diagnostics.update({f"focal_{k}": v for k, v in focal_diag.items()})

    return CalibrationInit(
        lf_size=lf_size,
        ideal_checker=ideal,
        checker_obs=checker_obs,
        principal_point=pp,
        focal_init=focal,
        homographies=homographies,
        poses=poses,
        superposes=superposes,
        intrinsics=intrinsics,
        skipped=sorted(skipped, key=lambda s: s.key),
        valid_counts=valid_counts,
        diagnostics=diagnostics,
    )
