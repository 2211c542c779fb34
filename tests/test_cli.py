from __future__ import annotations

import json
from pathlib import Path

import pytest

from plenocal.cli.main import main


def test_cli_generate_then_init(tmp_path: Path, capsys) -> None:
    out = tmp_path / "synth"
    assert main(["generate-synthetic", "--out", str(out), "--placements", "2", "--seed", "4"]) == 0
    assert (out / "ground_truth.json").exists()

    rc = main(["init", str(out), "--checker-size", "10", "7", "--checker-spacing", "30", "30", "--workers", "2"])
    assert rc == 0
    assert "Init focal length est:" in capsys.readouterr().out

    meta = json.loads((out / "CalInfo.json").read_text(encoding="utf-8"))
    assert len(meta["cam_poses"]) == 2
    assert meta["options"]["max_workers"] == 2


def test_cli_init_requires_checker_geometry(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        main(["init", str(tmp_path)])


def test_cli_init_reports_insufficient_data(tmp_path: Path, capsys) -> None:
    out = tmp_path / "synth"
    main(["generate-synthetic", "--out", str(out), "--placements", "1"])
    # Wrong board size: every view fails the corner count check.
    rc = main(["init", str(out), "--checker-size", "9", "7", "--checker-spacing", "30", "30"])
    assert rc == 2
    assert "no valid checkerboard observations" in capsys.readouterr().out


def test_cli_init_reports_missing_corner_files(tmp_path: Path, capsys) -> None:
    args = ["--checker-size", "10", "7", "--checker-spacing", "30", "30"]
    assert main(["init", str(tmp_path / "nowhere"), *args]) == 2
    assert main(["init", str(tmp_path), *args]) == 2
    assert "No files matching" in capsys.readouterr().out


def test_cli_init_reports_mismatched_light_field_sizes(tmp_path: Path, capsys) -> None:
    main(["generate-synthetic", "--out", str(tmp_path / "a"), "--placements", "1", "--grid", "3", "3"])
    main(["generate-synthetic", "--out", str(tmp_path / "b"), "--placements", "1", "--grid", "2", "2"])
    rc = main(["init", str(tmp_path), "--checker-size", "10", "7", "--checker-spacing", "30", "30"])
    assert rc == 2
    assert "light-field size" in capsys.readouterr().out
    assert not (tmp_path / "CalInfo.json").exists()


def test_cli_synthetic_camera_info_reaches_cal_info(tmp_path: Path) -> None:
    main(["generate-synthetic", "--out", str(tmp_path), "--placements", "2", "--seed", "7"])
    main(["init", str(tmp_path), "--checker-size", "10", "7", "--checker-spacing", "30", "30"])
    meta = json.loads((tmp_path / "CalInfo.json").read_text(encoding="utf-8"))
    assert meta["camera_info"]["camera_model"] == "synthetic_pinhole_lattice"
    assert meta["camera_info"]["seed"] == 7
