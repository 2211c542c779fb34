from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Sequence

from plenocal.errors import OptionsValidationError


@dataclass(frozen=True)
class CheckerSize:
    cols: int
    rows: int

    @property
    def n_corners(self) -> int:
        return int(self.cols) * int(self.rows)


@dataclass(frozen=True)
class LightFieldSize:
    """
    Sampling grid of a decoded light field.

    `n_t`, `n_s` index the sub-aperture grid (rows, columns); `height_px`,
    `width_px` are the size of each sub-aperture image.
    """

    n_t: int
    n_s: int
    height_px: int
    width_px: int

    @classmethod
    def from_sequence(cls, size: Sequence[int]) -> LightFieldSize:
        """Build from a light-field array shape ordered (T, S, V, U, ...)."""
        _require(len(size) >= 4, "light-field size needs at least 4 entries (n_t, n_s, height, width)")
        n_t, n_s, h, w = (int(v) for v in list(size)[:4])
        _require(n_t >= 1 and n_s >= 1, "sub-aperture grid must be at least 1x1")
        _require(h > 0 and w > 0, "sub-aperture image size must be > 0")
        return cls(n_t=n_t, n_s=n_s, height_px=h, width_px=w)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.n_t, self.n_s, self.height_px, self.width_px)


@dataclass(frozen=True)
class CalibrationOptions:
    checker_size: CheckerSize
    checker_spacing: tuple[float, float]
    save_result: bool = True
    checker_corners_pattern: str = "*__CheckerCorners.npz"
    checker_info_fname: str = "CheckerboardCorners.npz"
    cal_info_fname: str = "CalInfo.json"
    force_redo_init: bool = False
    refine_max_iters: int = 20
    refine_cond_max: float = 1e6
    max_workers: int = 1

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["checker_size"] = [self.checker_size.cols, self.checker_size.rows]
        d["checker_spacing"] = list(self.checker_spacing)
        return d


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise OptionsValidationError(msg)


def load_calibration_options(path: Path) -> CalibrationOptions:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_calibration_options(data)


def parse_calibration_options(data: dict[str, Any]) -> CalibrationOptions:
    size = data.get("checker_size")
    _require(isinstance(size, (list, tuple)) and len(size) == 2, "checker_size must be [cols, rows]")
    cols, rows = int(size[0]), int(size[1])
    _require(cols >= 2 and rows >= 2, "checker_size values must be >= 2")

    spacing = data.get("checker_spacing")
    _require(isinstance(spacing, (list, tuple)) and len(spacing) == 2, "checker_spacing must be [sx, sy]")
    sx, sy = float(spacing[0]), float(spacing[1])
    _require(sx > 0.0 and sy > 0.0, "checker_spacing values must be > 0")

    refine_max_iters = int(data.get("refine_max_iters", 20))
    _require(refine_max_iters >= 1, "refine_max_iters must be >= 1")
    refine_cond_max = float(data.get("refine_cond_max", 1e6))
    _require(refine_cond_max > 1.0, "refine_cond_max must be > 1")
    max_workers = int(data.get("max_workers", 1))
    _require(max_workers >= 1, "max_workers must be >= 1")

    pattern = str(data.get("checker_corners_pattern", "*__CheckerCorners.npz"))
    _require("*" in pattern, "checker_corners_pattern must contain a '*' wildcard")

    return CalibrationOptions(
        checker_size=CheckerSize(cols=cols, rows=rows),
        checker_spacing=(sx, sy),
        save_result=bool(data.get("save_result", True)),
        checker_corners_pattern=pattern,
        checker_info_fname=str(data.get("checker_info_fname", "CheckerboardCorners.npz")),
        cal_info_fname=str(data.get("cal_info_fname", "CalInfo.json")),
        force_redo_init=bool(data.get("force_redo_init", False)),
        refine_max_iters=refine_max_iters,
        refine_cond_max=refine_cond_max,
        max_workers=max_workers,
    )
