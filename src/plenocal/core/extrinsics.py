from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from plenocal.core.homography import compute_homography
from plenocal.errors import DegenerateHomographyError, PoseEstimationError


@dataclass(frozen=True)
class Pose:
    """Board -> camera transform, X_cam = R(rvec) @ X_board + tvec."""

    rvec: np.ndarray  # (3,) Rodrigues
    tvec: np.ndarray  # (3,)

    def rotation_matrix(self) -> np.ndarray:
        from scipy.spatial.transform import Rotation as R  # type: ignore

        return R.from_rotvec(np.asarray(self.rvec, dtype=np.float64).reshape(3)).as_matrix()

    def as_vector(self) -> np.ndarray:
        return np.concatenate([np.asarray(self.rvec, dtype=np.float64).reshape(3), np.asarray(self.tvec, dtype=np.float64).reshape(3)])

    @classmethod
    def from_vector(cls, p: np.ndarray) -> Pose:
        p = np.asarray(p, dtype=np.float64).reshape(6)
        return cls(rvec=p[:3].copy(), tvec=p[3:].copy())


def camera_matrix(focal: np.ndarray, principal_point: np.ndarray) -> np.ndarray:
    fx, fy = (float(v) for v in np.asarray(focal, dtype=np.float64).reshape(2))
    cx, cy = (float(v) for v in np.asarray(principal_point, dtype=np.float64).reshape(2))
    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def project_points(
    points_3d: np.ndarray,
    pose: Pose,
    focal: np.ndarray,
    principal_point: np.ndarray,
) -> np.ndarray:
    """Zero-distortion pinhole projection. Points behind the camera map to NaN."""
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
    fx, fy = (float(v) for v in np.asarray(focal, dtype=np.float64).reshape(2))
    cx, cy = (float(v) for v in np.asarray(principal_point, dtype=np.float64).reshape(2))

    P_cam = points_3d @ pose.rotation_matrix().T + np.asarray(pose.tvec, dtype=np.float64).reshape(1, 3)
    Z = P_cam[:, 2]
    uv = np.full((points_3d.shape[0], 2), np.nan, dtype=np.float64)
    good = np.isfinite(Z) & (Z > 1e-12)
    uv[good, 0] = fx * P_cam[good, 0] / Z[good] + cx
    uv[good, 1] = fy * P_cam[good, 1] / Z[good] + cy
    return uv


def reprojection_rms(
    corners: np.ndarray,
    points_3d: np.ndarray,
    pose: Pose,
    focal: np.ndarray,
    principal_point: np.ndarray,
) -> float:
    uv = project_points(points_3d, pose, focal, principal_point)
    e = np.linalg.norm(uv - np.asarray(corners, dtype=np.float64).reshape(-1, 2), axis=1)
    return float(np.sqrt(np.mean(e * e))) if e.size else float("nan")


def compute_extrinsic_init(
    corners: np.ndarray,
    points_3d: np.ndarray,
    focal: np.ndarray,
    principal_point: np.ndarray,
) -> Pose:
    """
    Direct pose from the plane -> normalized-image homography.

    The columns of H ~ [r1 r2 t] are scaled to unit-norm rotation columns, the
    rotation is completed with r1 x r2 and projected onto SO(3) by SVD.
    """
    from scipy.spatial.transform import Rotation as R  # type: ignore

    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
    if np.max(np.abs(points_3d[:, 2])) > 1e-9:
        raise ValueError("direct pose init expects planar board points (z == 0)")

    K = camera_matrix(focal, principal_point)
    xn = (corners - K[:2, 2]) / np.array([K[0, 0], K[1, 1]], dtype=np.float64)
    try:
        H = compute_homography(xn, points_3d[:, :2])
    except DegenerateHomographyError as e:
        raise PoseEstimationError(f"pose init failed: {e}") from e

    h1, h2, h3 = H[:, 0], H[:, 1], H[:, 2]
    norm = 0.5 * (np.linalg.norm(h1) + np.linalg.norm(h2))
    if not np.isfinite(norm) or norm < 1e-12:
        raise PoseEstimationError("pose init failed: singular homography scale")
    s = 1.0 / norm
    r1 = s * h1
    r2 = s * h2
    t = s * h3
    # The homography sign is arbitrary; keep the board in front of the camera.
    if t[2] < 0:
        r1, r2, t = -r1, -r2, -t

    U, _S, Vt = np.linalg.svd(np.column_stack([r1, r2, np.cross(r1, r2)]))
    Rm = U @ Vt
    if np.linalg.det(Rm) < 0:
        U[:, 2] *= -1.0
        Rm = U @ Vt

    rvec = R.from_matrix(Rm).as_rotvec()
    if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(t))):
        raise PoseEstimationError("pose init produced non-finite values")
    return Pose(rvec=rvec, tvec=np.asarray(t, dtype=np.float64).reshape(3))


def _scaled_condition(J: np.ndarray) -> float:
    # Column-normalized so that mixing radians and board units does not count as ill-conditioning.
    if not np.all(np.isfinite(J)):
        return float("inf")
    norms = np.linalg.norm(J, axis=0)
    if np.any(norms < 1e-15):
        return float("inf")
    return float(np.linalg.cond(J / norms))


def compute_extrinsic_refine(
    pose0: Pose,
    corners: np.ndarray,
    points_3d: np.ndarray,
    focal: np.ndarray,
    principal_point: np.ndarray,
    *,
    max_iters: int = 20,
    cond_max: float = 1e6,
) -> tuple[Pose, dict[str, float]]:
    """
    Nonlinear least-squares refinement of one pose on pixel reprojection error.

    Bounded by `max_iters` residual evaluations. When the final Jacobian is worse
    conditioned than `cond_max`, the step is discarded and `pose0` is returned.
    """
    from scipy.optimize import least_squares  # type: ignore

    corners = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)

    def fun(p: np.ndarray) -> np.ndarray:
        uv = project_points(points_3d, Pose.from_vector(p), focal, principal_point)
        return (uv - corners).reshape(-1)

    p0 = pose0.as_vector()
    r0 = fun(p0)
    if not np.all(np.isfinite(r0)):
        raise PoseEstimationError("initial pose puts board points behind the camera")
    init_rms = float(np.sqrt(np.mean(np.sum(r0.reshape(-1, 2) ** 2, axis=1))))

    try:
        sol = least_squares(fun, p0, method="trf", x_scale="jac", max_nfev=int(max_iters))
    except ValueError as e:
        raise PoseEstimationError(f"pose refinement failed: {e}") from e

    if not np.all(np.isfinite(sol.x)) or not np.all(np.isfinite(sol.fun)):
        raise PoseEstimationError("pose refinement diverged")

    cond = _scaled_condition(np.asarray(sol.jac, dtype=np.float64))
    skipped = not np.isfinite(cond) or cond > float(cond_max)
    if skipped:
        pose = pose0
        final_rms = init_rms
    else:
        pose = Pose.from_vector(sol.x)
        final_rms = float(np.sqrt(np.mean(np.sum(sol.fun.reshape(-1, 2) ** 2, axis=1))))

    diag = {
        "init_rms_px": init_rms,
        "final_rms_px": final_rms,
        "opt_nfev": float(sol.nfev),
        "opt_cond": cond,
        "refine_skipped": float(skipped),
    }
    return pose, diag


def estimate_pose(
    corners: np.ndarray,
    points_3d: np.ndarray,
    focal: np.ndarray,
    principal_point: np.ndarray,
    *,
    max_iters: int = 20,
    cond_max: float = 1e6,
) -> tuple[Pose, dict[str, float]]:
    pose0 = compute_extrinsic_init(corners, points_3d, focal, principal_point)
    return compute_extrinsic_refine(
        pose0,
        corners,
        points_3d,
        focal,
        principal_point,
        max_iters=max_iters,
        cond_max=cond_max,
    )
