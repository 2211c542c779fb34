from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Mapping

import numpy as np

from plenocal.core.checkerboard import ideal_checker
from plenocal.core.extrinsics import Pose, project_points
from plenocal.core.superpose import ObservationKey
from plenocal.meta import CheckerSize, LightFieldSize


Layout = Literal["top_left", "top_right", "bottom_left", "bottom_right"]


@dataclass(frozen=True)
class SyntheticLightField:
    """
    Corner detections of a checkerboard seen by a grid of pinhole sub-aperture
    cameras sharing focal length, principal point and orientation.
    """

    checker_corners: list[list[list[np.ndarray | None]]]  # [placement][t][s] -> (N,2)
    lf_size: LightFieldSize
    checker_size: CheckerSize
    checker_spacing: tuple[float, float]
    focal_px: float
    principal_point: np.ndarray  # (2,)
    placement_poses: list[Pose]  # pose of the central camera of the array
    camera_centers: np.ndarray  # (n_t, n_s, 3) in the central camera frame
    sub_poses: dict[ObservationKey, Pose]


def detector_layout(canonical: np.ndarray, checker_size: CheckerSize, layout: Layout) -> np.ndarray:
    """
    Re-order canonical corners the way a detector may return them.

    The inverse of each case is what `canonicalize_corners` applies.
    """
    G = np.asarray(canonical, dtype=np.float64).reshape(int(checker_size.rows), int(checker_size.cols), 2)
    if layout == "top_left":
        D = G
    elif layout == "top_right":
        D = G[:, ::-1, :].transpose(1, 0, 2)
    elif layout == "bottom_left":
        D = G[::-1, :, :].transpose(1, 0, 2)
    elif layout == "bottom_right":
        D = G[::-1, ::-1, :]
    else:
        raise ValueError(f"unknown layout: {layout}")
    return np.ascontiguousarray(D.reshape(-1, 2))


def _rot_x(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[1, 0, 0], [0, ca, -sa], [0, sa, ca]], dtype=np.float64)


def _rot_y(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, 0, sa], [0, 1, 0], [-sa, 0, ca]], dtype=np.float64)


def random_board_pose(
    rng: np.random.Generator,
    *,
    board_center: np.ndarray,
    tz: float,
    tilt_min: float = 0.15,
    tilt_max: float = 0.35,
    lateral: float = 0.0,
) -> Pose:
    """Board centered near the optical axis at depth `tz`, tilted about x and y."""
    from scipy.spatial.transform import Rotation as R  # type: ignore

    tilt_x = float(rng.uniform(tilt_min, tilt_max) * rng.choice([-1.0, 1.0]))
    tilt_y = float(rng.uniform(tilt_min, tilt_max) * rng.choice([-1.0, 1.0]))
    Rm = _rot_y(tilt_y) @ _rot_x(tilt_x)
    offset = np.array([rng.uniform(-lateral, lateral), rng.uniform(-lateral, lateral), tz], dtype=np.float64)
    t = offset - Rm @ np.asarray(board_center, dtype=np.float64).reshape(3)
    return Pose(rvec=R.from_matrix(Rm).as_rotvec(), tvec=t)


def make_synthetic_lightfield(
    *,
    checker_size: CheckerSize = CheckerSize(cols=10, rows=7),
    checker_spacing: tuple[float, float] = (30.0, 30.0),
    n_placements: int = 2,
    n_t: int = 3,
    n_s: int = 3,
    width_px: int = 100,
    height_px: int = 80,
    focal_px: float = 50.0,
    aperture_pitch: float = 1.0,
    tz_nominal: float | None = None,
    noise_std_px: float = 0.0,
    placement_poses: list[Pose] | None = None,
    layouts: Mapping[ObservationKey, Layout] | None = None,
    missing: Iterable[ObservationKey] = (),
    seed: int = 0,
) -> SyntheticLightField:
    """
    Render corner sets for `n_placements` board placements and an (n_t, n_s) grid
    of sub-aperture cameras spaced by `aperture_pitch` in the camera x/y plane.

    Sub-aperture (t, s) sits at ((s - cs) * pitch, (t - ct) * pitch, 0) relative to
    the central view, so its board pose is (rvec, tvec - center).
    """
    rng = np.random.default_rng(seed)
    lf_size = LightFieldSize(n_t=int(n_t), n_s=int(n_s), height_px=int(height_px), width_px=int(width_px))
    ideal = ideal_checker(checker_size, checker_spacing)
    board_center = 0.5 * (ideal.min(axis=0) + ideal.max(axis=0))
    board_w = float(ideal[:, 0].max() - ideal[:, 0].min())
    if tz_nominal is None:
        # Board spans roughly 60% of the image width.
        tz_nominal = float(focal_px) * board_w / (0.6 * float(width_px))

    if placement_poses is None:
        placement_poses = [
            random_board_pose(
                rng,
                board_center=board_center,
                tz=float(tz_nominal) * float(rng.uniform(0.9, 1.1)),
                lateral=0.05 * board_w,
            )
            for _ in range(int(n_placements))
        ]

    pp = np.array([(width_px - 1) / 2.0, (height_px - 1) / 2.0], dtype=np.float64)
    focal = np.array([focal_px, focal_px], dtype=np.float64)
    tt, ss = np.meshgrid(np.arange(n_t, dtype=np.float64), np.arange(n_s, dtype=np.float64), indexing="ij")
    centers = np.stack(
        [
            (ss - (n_s - 1) / 2.0) * float(aperture_pitch),
            (tt - (n_t - 1) / 2.0) * float(aperture_pitch),
            np.zeros_like(tt),
        ],
        axis=-1,
    )

    layouts = dict(layouts or {})
    missing_keys = {tuple(int(v) for v in k) for k in missing}
    corners_all: list[list[list[np.ndarray | None]]] = []
    sub_poses: dict[ObservationKey, Pose] = {}
    for p, ref in enumerate(placement_poses):
        grid: list[list[np.ndarray | None]] = []
        for t in range(int(n_t)):
            row: list[np.ndarray | None] = []
            for s in range(int(n_s)):
                key = (p, t, s)
                pose = Pose(rvec=np.asarray(ref.rvec, dtype=np.float64).copy(), tvec=np.asarray(ref.tvec) - centers[t, s])
                sub_poses[key] = pose
                if key in missing_keys:
                    row.append(None)
                    continue
                uv = project_points(ideal, pose, focal, pp)
                if noise_std_px > 0:
                    uv = uv + rng.normal(0.0, float(noise_std_px), size=uv.shape)
                row.append(detector_layout(uv, checker_size, layouts.get(key, "top_left")))
            grid.append(row)
        corners_all.append(grid)

    return SyntheticLightField(
        checker_corners=corners_all,
        lf_size=lf_size,
        checker_size=checker_size,
        checker_spacing=(float(checker_spacing[0]), float(checker_spacing[1])),
        focal_px=float(focal_px),
        principal_point=pp,
        placement_poses=list(placement_poses),
        camera_centers=centers,
        sub_poses=sub_poses,
    )
