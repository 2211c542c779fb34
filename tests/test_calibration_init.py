from __future__ import annotations

import numpy as np
import pytest

from plenocal.api.calibration_init import initialize_calibration
from plenocal.core.checkerboard import is_top_left
from plenocal.core.intrinsics import central_index, index_to_ray
from plenocal.errors import DegenerateHomographyError, InsufficientDataError, PoseEstimationError
from plenocal.meta import CheckerSize, parse_calibration_options
from plenocal.sim.synthetic import make_synthetic_lightfield


SIZE = CheckerSize(cols=10, rows=7)


def _options(**extra):
    return parse_calibration_options({"checker_size": [10, 7], "checker_spacing": [30.0, 30.0], **extra})


def _expected_baseline_3x3(pitch: float) -> float:
    # Mean distance to the center of a 3x3 lattice: 4 edge neighbours, 4 diagonals, 1 center.
    return 3.0 * (4.0 * pitch + 4.0 * np.sqrt(2.0) * pitch) / 9.0


def test_end_to_end_two_placements_3x3():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, n_t=3, n_s=3, focal_px=50.0, seed=11)
    res = initialize_calibration(synth.checker_corners, synth.lf_size, _options())

    assert res.skipped == []
    assert res.valid_counts == [9, 9]
    assert len(res.homographies) == 18
    assert len(res.poses) == 18
    assert abs(res.focal_init[0] - 50.0) / 50.0 < 0.01
    assert res.focal_init[0] == res.focal_init[1]

    assert len(res.superposes) == 2
    for sp, truth in zip(res.superposes, synth.placement_poses, strict=True):
        assert np.linalg.norm(sp.pose.tvec - truth.tvec) < 0.01
        assert np.allclose(sp.pose.rvec, truth.rvec, atol=1e-4)

    baseline = _expected_baseline_3x3(1.0)
    expected = [baseline / 2.0, baseline / 2.0, 1.0 / 50.0, 1.0 / 50.0]
    for got, want in zip(np.diag(res.intrinsics)[:4], expected, strict=True):
        assert abs(got - want) / want < 0.01
    assert res.intrinsics[4, 4] == 1.0

    assert np.allclose(index_to_ray(res.intrinsics, central_index(res.lf_size)), 0.0, atol=1e-9)
    assert res.distortion.size == 0
    assert res.est_cam_poses().shape == (2, 6)
    assert res.diagnostics["pose_final_rms_px"] < 1e-3


def test_rotated_detections_are_canonicalized():
    layouts = {(0, 0, 0): "top_right", (0, 1, 2): "bottom_left", (1, 2, 1): "bottom_right"}
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, layouts=layouts, seed=2)
    reference = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, seed=2)

    res = initialize_calibration(synth.checker_corners, synth.lf_size, _options())
    assert res.skipped == []
    for key in layouts:
        assert is_top_left(res.checker_obs[key])
        t, s = key[1], key[2]
        assert np.array_equal(res.checker_obs[key], reference.checker_corners[key[0]][t][s])


def test_invalid_views_are_skipped_and_counted():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, missing=[(0, 1, 1), (1, 0, 2)], seed=5)
    corners = synth.checker_corners
    corners[1][2][2] = corners[1][2][2][:-3]

    res = initialize_calibration(corners, synth.lf_size, _options())
    assert [s.key for s in res.skipped] == [(0, 1, 1), (1, 0, 2), (1, 2, 2)]
    assert all(s.stage == "validate" for s in res.skipped)
    assert res.valid_counts == [8, 7]
    assert len(res.homographies) == 15
    assert [sp.n_views for sp in res.superposes] == [8, 7]
    assert res.diagnostics["n_skipped"] == 3.0


def test_placement_without_valid_views_has_no_superpose():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=3, n_t=2, n_s=2, seed=8)
    corners = synth.checker_corners
    corners[1] = [[None, None], [None, None]]

    res = initialize_calibration(corners, synth.lf_size, _options())
    assert [sp.placement for sp in res.superposes] == [0, 2]
    assert res.valid_counts == [4, 0, 4]
    assert res.est_cam_poses().shape == (2, 6)


def test_geometry_failure_is_local():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=1, seed=9)
    corners = synth.checker_corners
    g = corners[0][1][0].reshape(SIZE.rows, SIZE.cols, 2)
    corners[0][1][0] = g[:, ::-1, :].reshape(-1, 2)  # mirrored order cannot be canonicalized

    res = initialize_calibration(corners, synth.lf_size, _options())
    assert [(s.key, s.stage) for s in res.skipped] == [((0, 1, 0), "canonicalize")]
    assert (0, 1, 0) not in res.checker_obs
    assert res.valid_counts == [9]
    assert res.superposes[0].n_views == 8


def test_parallel_workers_match_serial():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, noise_std_px=0.05, seed=3)
    serial = initialize_calibration(synth.checker_corners, synth.lf_size, _options())
    parallel = initialize_calibration(synth.checker_corners, synth.lf_size, _options(max_workers=4))
    assert np.allclose(serial.focal_init, parallel.focal_init)
    assert np.allclose(serial.intrinsics, parallel.intrinsics)
    assert np.allclose(serial.est_cam_poses(), parallel.est_cam_poses())


def test_noisy_corners_still_give_close_focal():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=4, noise_std_px=0.02, seed=21)
    res = initialize_calibration(synth.checker_corners, synth.lf_size, _options())
    assert abs(res.focal_init[0] - 50.0) / 50.0 < 0.1


def test_no_valid_views_raises():
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=1, n_t=1, n_s=2, missing=[(0, 0, 0), (0, 0, 1)])
    with pytest.raises(InsufficientDataError, match="no valid checkerboard observations"):
        initialize_calibration(synth.checker_corners, synth.lf_size, _options())


def _matches_any(corners, views) -> bool:
    return any(v is not None and np.array_equal(corners, v) for v in views)


def test_degenerate_homography_is_skipped_per_view(monkeypatch):
    import plenocal.api.calibration_init as ci

    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, seed=12)
    bad = synth.checker_corners[0][2][1]
    real = ci.compute_homography

    def fake(corners, ideal_xy):
        if np.array_equal(corners, bad):
            raise DegenerateHomographyError("homography is degenerate")
        return real(corners, ideal_xy)

    monkeypatch.setattr(ci, "compute_homography", fake)
    res = initialize_calibration(synth.checker_corners, synth.lf_size, _options())

    assert [(s.key, s.stage) for s in res.skipped] == [((0, 2, 1), "homography")]
    assert (0, 2, 1) not in res.homographies
    assert (0, 2, 1) not in res.checker_obs
    assert res.valid_counts == [9, 9]
    assert [sp.n_views for sp in res.superposes] == [8, 9]
    assert abs(res.focal_init[0] - 50.0) / 50.0 < 0.01


def test_pose_failures_drop_placement(monkeypatch):
    import plenocal.api.calibration_init as ci

    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=2, seed=13)
    failing = [c for row in synth.checker_corners[1] for c in row]
    real = ci.estimate_pose

    def fake(corners, *args, **kwargs):
        if _matches_any(corners, failing):
            raise PoseEstimationError("non-finite pose")
        return real(corners, *args, **kwargs)

    monkeypatch.setattr(ci, "estimate_pose", fake)
    res = initialize_calibration(synth.checker_corners, synth.lf_size, _options())

    assert [sp.placement for sp in res.superposes] == [0]
    assert len(res.skipped) == 9
    assert all(s.stage == "pose" and s.key[0] == 1 for s in res.skipped)
    assert res.valid_counts == [9, 9]
    assert len(res.homographies) == 18
    assert res.est_cam_poses().shape == (1, 6)


def test_all_pose_failures_raise(monkeypatch):
    import plenocal.api.calibration_init as ci

    def fake(*args, **kwargs):
        raise PoseEstimationError("non-finite pose")

    monkeypatch.setattr(ci, "estimate_pose", fake)
    synth = make_synthetic_lightfield(checker_size=SIZE, n_placements=1, seed=14)
    with pytest.raises(InsufficientDataError, match="no superposes"):
        initialize_calibration(synth.checker_corners, synth.lf_size, _options())
