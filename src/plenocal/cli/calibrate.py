from __future__ import annotations

import json
from pathlib import Path

import numpy as np

from plenocal.api.calibration_init import CalibrationInit, initialize_calibration
from plenocal.api.model_io import find_corner_files, load_checker_corners, save_calibration_init
from plenocal.meta import CalibrationOptions


def run_calibration_init(input_path: Path, options: CalibrationOptions) -> CalibrationInit | None:
    """
    Discover corner files under `input_path`, initialize the calibration and save it.

    Returns None when a previous result exists and `options.force_redo_init` is false.
    """
    input_path = Path(input_path)
    print("\n===Initializing calibration process===")
    cal_info_path = input_path / options.cal_info_fname
    if not options.force_redo_init and cal_info_path.exists():
        print(f" ---File {cal_info_path} already exists, skipping---")
        return None

    print(f"\n===Locating checkerboard corner files in {input_path}===")
    file_list = find_corner_files(input_path, options.checker_corners_pattern)
    if not file_list:
        raise FileNotFoundError(f"No files matching {options.checker_corners_pattern} under {input_path}")
    print("Found :")
    for f in file_list:
        print(f"  {f}")

    checker_corners = []
    lf_size = None
    camera_info: dict = {}
    for i, rel in enumerate(file_list):
        grid, cur_size, cur_info = load_checker_corners(input_path / rel)
        # Metadata of the last file is carried into the result.
        camera_info = cur_info
        if lf_size is None:
            lf_size = cur_size
        elif cur_size != lf_size:
            raise ValueError(f"{rel} light-field size {cur_size.as_tuple()} != {lf_size.as_tuple()}")
        n_ok = sum(1 for row in grid for c in row if c is not None and c.shape[0] == options.checker_size.n_corners)
        print(f"---{rel.name} [{i + 1:3d} / {len(file_list):3d}]: {n_ok} / {lf_size.n_t * lf_size.n_s} valid.")
        checker_corners.append(grid)
    if lf_size is None:
        raise AssertionError("no corner files were loaded")

    result = initialize_calibration(checker_corners, lf_size, options)

    fx, fy = (float(v) for v in result.focal_init)
    print(f"Init focal length est: {fx:.2f}, {fy:.2f}")
    for skip in result.skipped:
        print(f"  skipped {skip.key} at {skip.stage}: {skip.reason}")
    print("\nInitializing estimate of camera intrinsics to:")
    with np.printoptions(precision=6, suppress=True):
        print(result.intrinsics)
    print(json.dumps(result.diagnostics, sort_keys=True))

    if options.save_result:
        checker_path, cal_path = save_calibration_init(
            input_path, result, options, file_list, camera_info=camera_info
        )
        print(f"\nSaving to {checker_path}...")
        print(f"Saving to {cal_path}...")
    print(" ---Calibration initialization done---")
    return result
