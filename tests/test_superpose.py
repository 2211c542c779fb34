import numpy as np
import pytest

from plenocal.core.extrinsics import Pose
from plenocal.core.superpose import (
    SuperPose,
    aggregate_superpose,
    aggregate_superposes,
    baseline_estimate,
    median_rotation,
)
from plenocal.errors import InsufficientDataError


def _perturbed(truth: Pose, n: int, sigma_r: float, sigma_t: float, seed: int) -> list[Pose]:
    rng = np.random.default_rng(seed)
    return [
        Pose(rvec=truth.rvec + rng.normal(0.0, sigma_r, size=3), tvec=truth.tvec + rng.normal(0.0, sigma_t, size=3))
        for _ in range(n)
    ]


def test_median_of_perturbed_subposes_matches_truth():
    truth = Pose(rvec=np.array([0.2, -0.1, 0.05]), tvec=np.array([-120.0, -80.0, 400.0]))
    sp = aggregate_superpose(3, _perturbed(truth, 81, sigma_r=1e-4, sigma_t=1e-3, seed=0))
    assert sp.placement == 3
    assert sp.n_views == 81
    assert np.allclose(sp.pose.rvec, truth.rvec, atol=1e-4)
    assert np.allclose(sp.pose.tvec, truth.tvec, atol=1e-3)


def test_median_rotation_is_componentwise():
    rvecs = np.array([[0.0, 1.0, 2.0], [10.0, -1.0, 2.5], [1.0, 0.0, 100.0]])
    assert np.allclose(median_rotation(rvecs), [1.0, 0.0, 2.5])


def test_baseline_matches_uniform_disk_diameter():
    rng = np.random.default_rng(1)
    radius = 5.0
    n = 20000
    r = radius * np.sqrt(rng.uniform(0.0, 1.0, size=n))
    theta = rng.uniform(-np.pi, np.pi, size=n)
    center = np.array([3.0, -2.0, 500.0])
    tvecs = center + np.stack([r * np.cos(theta), r * np.sin(theta), np.zeros(n)], axis=1)

    assert baseline_estimate(tvecs, center) == pytest.approx(2.0 * radius, rel=0.02)
    sp = aggregate_superpose(0, [Pose(rvec=np.zeros(3), tvec=t) for t in tvecs])
    assert sp.baseline == pytest.approx(2.0 * radius, rel=0.03)


def test_baseline_of_identical_poses_is_zero():
    pose = Pose(rvec=np.zeros(3), tvec=np.array([1.0, 2.0, 3.0]))
    assert aggregate_superpose(0, [pose, pose, pose]).baseline == 0.0


def test_aggregate_groups_by_placement_and_skips_empty_ones():
    a = Pose(rvec=np.zeros(3), tvec=np.array([0.0, 0.0, 100.0]))
    b = Pose(rvec=np.full(3, 0.1), tvec=np.array([5.0, 0.0, 200.0]))
    poses = {
        (2, 0, 0): b,
        (0, 0, 0): a,
        (0, 0, 1): a,
        (2, 1, 1): b,
    }
    sps = aggregate_superposes(poses)
    assert [sp.placement for sp in sps] == [0, 2]
    assert [sp.n_views for sp in sps] == [2, 2]
    assert np.allclose(sps[1].pose.tvec, b.tvec)
    assert aggregate_superposes({}) == []


def test_aggregate_without_poses_raises():
    with pytest.raises(InsufficientDataError):
        aggregate_superpose(0, [])


def test_superpose_vector_is_translation_first():
    sp = SuperPose(placement=0, pose=Pose(rvec=np.array([1.0, 2.0, 3.0]), tvec=np.array([4.0, 5.0, 6.0])), baseline=0.0, n_views=1)
    assert np.allclose(sp.as_vector(), [4.0, 5.0, 6.0, 1.0, 2.0, 3.0])
