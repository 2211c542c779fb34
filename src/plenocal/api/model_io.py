from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from plenocal.api.calibration_init import CalibrationInit
from plenocal.meta import CalibrationOptions, LightFieldSize


CALINFO_SCHEMA = "plenocal.calinfo.v0"
CHECKER_INFO_SCHEMA = "plenocal.checker_info.v0"


@dataclass(frozen=True)
class CalInfoRecord:
    intrinsics: np.ndarray  # (5,5)
    distortion: np.ndarray  # (0,) until a distortion model is fitted
    cam_poses: np.ndarray  # (P,6) tx,ty,tz,rx,ry,rz
    focal_init: np.ndarray  # (2,)
    principal_point: np.ndarray  # (2,)
    lf_size: LightFieldSize
    options: dict[str, Any]
    generated_by: dict[str, Any]
    camera_info: dict[str, Any]  # camera / lenslet grid / decode metadata, {} when absent


def find_corner_files(input_path: Path, pattern: str) -> list[Path]:
    """Recursive search; paths are returned relative to `input_path`, sorted."""
    input_path = Path(input_path)
    if not input_path.is_dir():
        raise FileNotFoundError(f"Missing input folder {input_path}")
    return sorted(p.relative_to(input_path) for p in input_path.rglob(pattern) if p.is_file())


def save_checker_corners(
    path: Path,
    checker_corners: Sequence[Sequence[np.ndarray | None]],
    lf_size: LightFieldSize,
    camera_info: dict[str, Any] | None = None,
) -> Path:
    """
    Store one image's (n_t, n_s) grid of detections.

    Points are concatenated in (t, s) raster order into `xy` (M,2); `counts`
    (n_t, n_s) gives each view's corner count (0 = no detection).
    `camera_info` (camera, lenslet grid and decode settings of the source image)
    is stored as a JSON string.
    """
    path = Path(path)
    n_t = len(checker_corners)
    n_s = len(checker_corners[0]) if n_t else 0
    counts = np.zeros((n_t, n_s), dtype=np.int32)
    parts: list[np.ndarray] = []
    for t, row in enumerate(checker_corners):
        if len(row) != n_s:
            raise ValueError("checker_corners rows must all have the same length")
        for s, corners in enumerate(row):
            if corners is None:
                continue
            xy = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
            counts[t, s] = xy.shape[0]
            parts.append(xy)
    xy_all = np.concatenate(parts, axis=0) if parts else np.zeros((0, 2), dtype=np.float64)

    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        xy=xy_all,
        counts=counts,
        lf_size=np.asarray(lf_size.as_tuple(), dtype=np.int64),
        camera_info=np.asarray(json.dumps(camera_info or {}, sort_keys=True)),
    )
    return path


def _camera_info_from_npz(data: Any) -> dict[str, Any]:
    if "camera_info" not in data:
        return {}
    info = json.loads(str(data["camera_info"]))
    if not isinstance(info, dict):
        raise ValueError("camera_info must be a JSON object")
    return info


def load_checker_corners(path: Path) -> tuple[list[list[np.ndarray | None]], LightFieldSize, dict[str, Any]]:
    """Returns (grid, lf_size, camera_info); undetected views are None."""
    with np.load(str(path)) as data:
        for k in ("xy", "counts", "lf_size"):
            if k not in data:
                raise ValueError(f"{path} missing key: {k}")
        xy = np.asarray(data["xy"], dtype=np.float64).reshape(-1, 2)
        counts = np.asarray(data["counts"], dtype=np.int64)
        lf_size = LightFieldSize.from_sequence(np.asarray(data["lf_size"]).tolist())
        camera_info = _camera_info_from_npz(data)

    if counts.ndim != 2 or int(counts.sum()) != xy.shape[0]:
        raise ValueError(f"{path} counts do not match the stored points")
    if counts.shape != (lf_size.n_t, lf_size.n_s):
        raise ValueError(f"{path} counts shape {counts.shape} != sub-aperture grid {(lf_size.n_t, lf_size.n_s)}")

    grid: list[list[np.ndarray | None]] = []
    offset = 0
    for t in range(counts.shape[0]):
        row: list[np.ndarray | None] = []
        for s in range(counts.shape[1]):
            n = int(counts[t, s])
            row.append(xy[offset : offset + n].copy() if n > 0 else None)
            offset += n
        grid.append(row)
    return grid, lf_size, camera_info


def save_calibration_init(
    out_dir: Path,
    result: CalibrationInit,
    options: CalibrationOptions,
    file_list: Sequence[Path | str] = (),
    camera_info: dict[str, Any] | None = None,
) -> tuple[Path, Path]:
    """
    Write the checkerboard info (canonical corners + ideal board) as NPZ and the
    initial camera model as JSON. Returns (checker_info_path, cal_info_path).

    `camera_info` is copied into both files unchanged.
    """
    camera_info = dict(camera_info or {})
    from plenocal import __version__

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    generated_by = {
        "module": "plenocal.api.calibration_init",
        "time": datetime.now().strftime("%d%b%Y_%H%M%S"),
        "version": __version__,
    }

    keys = sorted(result.checker_obs)
    n = result.ideal_checker.shape[0]
    checker_path = out_dir / options.checker_info_fname
    np.savez_compressed(
        checker_path,
        schema_version=np.asarray(CHECKER_INFO_SCHEMA),
        obs_keys=np.asarray(keys, dtype=np.int32).reshape(-1, 3),
        obs_xy=np.asarray([result.checker_obs[k] for k in keys], dtype=np.float64).reshape(-1, n, 2),
        ideal_checker=np.asarray(result.ideal_checker, dtype=np.float64),
        lf_size=np.asarray(result.lf_size.as_tuple(), dtype=np.int64),
        camera_info=np.asarray(json.dumps(camera_info, sort_keys=True)),
    )

    meta: dict[str, Any] = {
        "schema_version": CALINFO_SCHEMA,
        "generated_by": generated_by,
        "lf_size": list(result.lf_size.as_tuple()),
        "intrinsics": np.asarray(result.intrinsics, dtype=np.float64).tolist(),
        "distortion": np.asarray(result.distortion, dtype=np.float64).reshape(-1).tolist(),
        "cam_poses": result.est_cam_poses().tolist(),
        "focal_init": np.asarray(result.focal_init, dtype=np.float64).tolist(),
        "principal_point": np.asarray(result.principal_point, dtype=np.float64).tolist(),
        "superposes": [
            {"placement": sp.placement, "baseline": sp.baseline, "n_views": sp.n_views} for sp in result.superposes
        ],
        "valid_counts": [int(c) for c in result.valid_counts],
        "skipped": [{"key": list(s.key), "stage": s.stage, "reason": s.reason} for s in result.skipped],
        "file_list": [str(f) for f in file_list],
        "options": options.to_dict(),
        "camera_info": camera_info,
        "diagnostics": {k: float(v) for k, v in result.diagnostics.items()},
    }
    cal_path = out_dir / options.cal_info_fname
    cal_path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return checker_path, cal_path


def _to_float_matrix(x: Any, shape: tuple[int, ...]) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    x = x.reshape(shape)
    if not np.all(np.isfinite(x)):
        raise ValueError("non-finite values")
    return x


def load_calibration_init(path: Path) -> CalInfoRecord:
    meta = json.loads(Path(path).read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != CALINFO_SCHEMA:
        raise ValueError("unsupported calibration info schema")
    return CalInfoRecord(
        intrinsics=_to_float_matrix(meta["intrinsics"], (5, 5)),
        distortion=np.asarray(meta.get("distortion", []), dtype=np.float64).reshape(-1),
        cam_poses=_to_float_matrix(meta["cam_poses"], (-1, 6)),
        focal_init=_to_float_matrix(meta["focal_init"], (2,)),
        principal_point=_to_float_matrix(meta["principal_point"], (2,)),
        lf_size=LightFieldSize.from_sequence(meta["lf_size"]),
        options=dict(meta.get("options", {})),
        generated_by=dict(meta.get("generated_by", {})),
        camera_info=dict(meta.get("camera_info", {})),
    )
