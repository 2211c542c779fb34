from __future__ import annotations

import argparse
import json
from pathlib import Path

from plenocal.api.model_io import save_checker_corners
from plenocal.cli.calibrate import run_calibration_init
from plenocal.errors import InsufficientDataError, OptionsValidationError
from plenocal.meta import CheckerSize, load_calibration_options, parse_calibration_options
from plenocal.sim.synthetic import make_synthetic_lightfield


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="plenocal")
    sub = parser.add_subparsers(dest="cmd", required=True)

    init = sub.add_parser(
        "init",
        help="Initial light-field intrinsics and board poses from checkerboard corner files.",
    )
    init.add_argument("input_path", type=Path)
    init.add_argument("--options", type=Path, default=None, help="JSON file with calibration options.")
    init.add_argument("--checker-size", type=int, nargs=2, metavar=("COLS", "ROWS"), default=None)
    init.add_argument("--checker-spacing", type=float, nargs=2, metavar=("SX", "SY"), default=None)
    init.add_argument("--force", action="store_true", help="Overwrite an existing calibration info file.")
    init.add_argument("--dry-run", action="store_true", help="Do not save results.")
    init.add_argument("--workers", type=int, default=None, help="Thread workers for per-view steps.")
    init.add_argument("--refine-iters", type=int, default=None, help="Pose refinement iteration cap.")

    gen = sub.add_parser("generate-synthetic", help="Write synthetic light-field checkerboard corner files.")
    gen.add_argument("--out", type=Path, required=True)
    gen.add_argument("--placements", type=int, default=2)
    gen.add_argument("--grid", type=int, nargs=2, metavar=("N_T", "N_S"), default=(3, 3))
    gen.add_argument("--image-size", type=int, nargs=2, metavar=("WIDTH", "HEIGHT"), default=(100, 80))
    gen.add_argument("--checker-size", type=int, nargs=2, metavar=("COLS", "ROWS"), default=(10, 7))
    gen.add_argument("--checker-spacing", type=float, nargs=2, metavar=("SX", "SY"), default=(30.0, 30.0))
    gen.add_argument("--focal-px", type=float, default=50.0)
    gen.add_argument("--aperture-pitch", type=float, default=1.0, help="Spacing between sub-aperture cameras.")
    gen.add_argument("--noise-std", type=float, default=0.0, help="Corner noise (pixels).")
    gen.add_argument("--seed", type=int, default=0)

    args = parser.parse_args(argv)

    if args.cmd == "init":
        data = {}
        if args.options is not None:
            data = load_calibration_options(args.options).to_dict()
        if args.checker_size is not None:
            data["checker_size"] = list(args.checker_size)
        if args.checker_spacing is not None:
            data["checker_spacing"] = list(args.checker_spacing)
        if args.force:
            data["force_redo_init"] = True
        if args.dry_run:
            data["save_result"] = False
        if args.workers is not None:
            data["max_workers"] = args.workers
        if args.refine_iters is not None:
            data["refine_max_iters"] = args.refine_iters
        try:
            options = parse_calibration_options(data)
        except OptionsValidationError as e:
            parser.error(str(e))
        try:
            run_calibration_init(args.input_path, options)
        except InsufficientDataError as e:
            print(f"Calibration initialization failed: {e}")
            return 2
        except (FileNotFoundError, ValueError) as e:
            print(f"Cannot initialize calibration from {args.input_path}: {e}")
            return 2
        return 0

    if args.cmd == "generate-synthetic":
        synth = make_synthetic_lightfield(
            checker_size=CheckerSize(cols=args.checker_size[0], rows=args.checker_size[1]),
            checker_spacing=(args.checker_spacing[0], args.checker_spacing[1]),
            n_placements=args.placements,
            n_t=args.grid[0],
            n_s=args.grid[1],
            width_px=args.image_size[0],
            height_px=args.image_size[1],
            focal_px=args.focal_px,
            aperture_pitch=args.aperture_pitch,
            noise_std_px=args.noise_std,
            seed=args.seed,
        )
        camera_info = {
            "camera_model": "synthetic_pinhole_lattice",
            "aperture_pitch": float(args.aperture_pitch),
            "seed": int(args.seed),
        }
        for p, grid in enumerate(synth.checker_corners):
            path = save_checker_corners(
                args.out / f"placement_{p:04d}__CheckerCorners.npz", grid, synth.lf_size, camera_info=camera_info
            )
            print(f"Wrote {path}")
        truth = {
            "focal_px": synth.focal_px,
            "principal_point": synth.principal_point.tolist(),
            "placement_poses": [p.as_vector().tolist() for p in synth.placement_poses],
        }
        (args.out / "ground_truth.json").write_text(json.dumps(truth, indent=2, sort_keys=True), encoding="utf-8")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
