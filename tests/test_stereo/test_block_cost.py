"""Tests for block matching costs and the cost volume."""

import pytest
import torch

from epistereo.config import StereoParameters
from epistereo.stereo.cost import (
    MAX_COST,
    build_cost_volume,
    compute_cost,
    compute_ncc,
    compute_sad,
)
from epistereo.stereo.epipolar import EpipolarGeometry


def _centers(device):
    rows = torch.arange(2, 18, device=device).view(-1, 1)
    cols = torch.arange(2, 28, device=device).view(1, -1)
    return rows, cols


class TestComputeSAD:
    """Tests for compute_sad."""

    def test_identical_blocks_zero(self, device):
        """Identical images give zero cost."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 255.0
        centers = _centers(device)
        cost = compute_sad(image, image.clone(), centers, centers, 3)
        assert cost.shape == (16, 26)
        assert torch.allclose(cost, torch.zeros_like(cost))

    def test_constant_offset(self, device):
        """A brightness offset appears as the mean absolute difference."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 200.0
        centers = _centers(device)
        cost = compute_sad(image, image + 10.0, centers, centers, 3)
        assert torch.allclose(cost, torch.full_like(cost, 10.0), atol=1e-4)

    def test_shifted_centers(self, device):
        """Block centers in the second image can differ from the first."""
        torch.manual_seed(0)
        image1 = torch.rand(20, 30, device=device) * 255.0
        image2 = torch.roll(image1, shifts=-4, dims=1)
        rows, cols = _centers(device)
        cost = compute_sad(image1, image2, (rows, cols[:, 4:]), (rows, cols[:, 4:] - 4), 3)
        assert torch.allclose(cost, torch.zeros_like(cost))


class TestComputeNCC:
    """Tests for compute_ncc."""

    def test_identical_blocks_zero(self, device):
        """Perfect correlation gives zero cost."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 255.0
        centers = _centers(device)
        cost = compute_ncc(image, image.clone(), centers, centers, 3)
        assert torch.allclose(cost, torch.zeros_like(cost), atol=1e-3)

    def test_gain_and_offset_invariant(self, device):
        """NCC ignores linear intensity changes."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 100.0
        centers = _centers(device)
        cost = compute_ncc(image, 2.0 * image + 20.0, centers, centers, 3)
        assert torch.allclose(cost, torch.zeros_like(cost), atol=1e-3)

    def test_anti_correlated(self, device):
        """Inverted images give the maximum cost."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 255.0
        centers = _centers(device)
        cost = compute_ncc(image, 255.0 - image, centers, centers, 3)
        assert torch.allclose(cost, torch.full_like(cost, MAX_COST), atol=1e-3)

    def test_flat_block_uncorrelated(self, device):
        """Untextured blocks get the uncorrelated cost."""
        torch.manual_seed(0)
        image = torch.rand(20, 30, device=device) * 255.0
        flat = torch.full_like(image, 128.0)
        centers = _centers(device)
        cost = compute_ncc(image, flat, centers, centers, 3)
        assert torch.allclose(cost, torch.full_like(cost, MAX_COST / 2.0))


def test_compute_cost_dispatch(device):
    """compute_cost routes to the named function."""
    torch.manual_seed(0)
    image1 = torch.rand(20, 30, device=device) * 255.0
    image2 = torch.rand(20, 30, device=device) * 255.0
    centers = _centers(device)
    torch.testing.assert_close(
        compute_cost(image1, image2, centers, centers, 3, "sad"),
        compute_sad(image1, image2, centers, centers, 3),
    )
    torch.testing.assert_close(
        compute_cost(image1, image2, centers, centers, 3, "ncc"),
        compute_ncc(image1, image2, centers, centers, 3),
    )


def test_compute_cost_unknown():
    """Unknown cost functions are rejected."""
    image = torch.zeros(10, 10)
    centers = (torch.tensor([5]), torch.tensor([5]))
    with pytest.raises(ValueError, match="Unknown cost function"):
        compute_cost(image, image, centers, centers, 3, "census")


class TestBuildCostVolume:
    """Tests for build_cost_volume."""

    @pytest.mark.parametrize("cost_function", ["sad", "ncc"])
    def test_minimum_at_true_shift(
        self, pinhole_camera, lateral_pose, stereo_params, shifted_pair, cost_function, device
    ):
        """For a pure shift the direct cost is minimal at the shift."""
        stereo_params.cost_function = cost_function
        params = stereo_params.initialize()
        geometry = EpipolarGeometry(pinhole_camera, pinhole_camera, params, device)
        geometry.set_transformation(lateral_pose)

        image1 = torch.from_numpy(shifted_pair[0]).float().to(device)
        image2 = torch.from_numpy(shifted_pair[1]).float().to(device)
        cost = build_cost_volume(image1, image2, geometry, params)

        assert cost.shape == (38, 40, 16)
        assert cost.dtype == torch.float32
        assert torch.allclose(cost[..., 10], torch.zeros_like(cost[..., 10]), atol=1e-3)
        assert (cost.argmin(dim=-1) == 10).all()

    def test_invalid_samples_max_cost(self, pinhole_camera, lateral_pose, shifted_pair):
        """Hypotheses outside the second image cost MAX_COST."""
        params = StereoParameters(
            disp_max=16, block_size=3, image_width=160, image_height=120
        ).initialize()
        geometry = EpipolarGeometry(pinhole_camera, pinhole_camera, params)
        geometry.set_transformation(lateral_pose)

        image1 = torch.from_numpy(shifted_pair[0]).float()
        image2 = torch.from_numpy(shifted_pair[1]).float()
        cost = build_cost_volume(image1, image2, geometry, params)

        invalid = ~geometry.sample_valid
        assert invalid.any()
        assert (cost[invalid] == MAX_COST).all()
        assert (cost[geometry.sample_valid] <= MAX_COST).all()
