"""Tests for the Enhanced Unified Camera Model."""

import pytest
import torch

from epistereo.camera import CameraModel, EnhancedCamera


@pytest.fixture
def fisheye() -> EnhancedCamera:
    """Wide-angle EUCM camera (alpha > 0.5)."""
    return EnhancedCamera(640, 480, [0.6, 1.1, 250.0, 260.0, 320.0, 240.0])


class TestEnhancedCamera:
    """Tests for EnhancedCamera."""

    def test_satisfies_protocol(self, fisheye):
        """EnhancedCamera implements the CameraModel protocol."""
        assert isinstance(fisheye, CameraModel)

    def test_round_trip(self, fisheye, device):
        """project(unproject(p)) == p over the whole image."""
        v, u = torch.meshgrid(
            torch.arange(0, 480, 20, dtype=torch.float64, device=device),
            torch.arange(0, 640, 20, dtype=torch.float64, device=device),
            indexing="ij",
        )
        pixels = torch.stack([u, v], dim=-1).reshape(-1, 2)

        rays, valid = fisheye.unproject(pixels)
        assert valid.all()
        torch.testing.assert_close(
            torch.linalg.norm(rays, dim=-1),
            torch.ones(pixels.shape[0], dtype=torch.float64, device=device),
        )

        projected, valid = fisheye.project(rays * 3.0)
        assert valid.all()
        torch.testing.assert_close(projected, pixels, atol=1e-8, rtol=0)

    def test_pinhole_special_case(self):
        """alpha = 0 reduces to the pinhole model."""
        camera = EnhancedCamera(160, 120, [0.0, 1.0, 100.0, 100.0, 80.0, 60.0])
        points = torch.tensor([[0.2, -0.1, 2.0], [1.0, 1.0, 4.0]], dtype=torch.float64)
        pixels, valid = camera.project(points)

        expected = torch.stack(
            [100.0 * points[:, 0] / points[:, 2] + 80.0, 100.0 * points[:, 1] / points[:, 2] + 60.0],
            dim=-1,
        )
        assert valid.all()
        torch.testing.assert_close(pixels, expected)

    def test_pinhole_behind_camera_invalid(self):
        """A pinhole camera cannot see points with z <= 0."""
        camera = EnhancedCamera(160, 120, [0.0, 1.0, 100.0, 100.0, 80.0, 60.0])
        points = torch.tensor([[0.0, 0.0, -1.0], [1.0, 0.0, 0.0]], dtype=torch.float64)
        pixels, valid = camera.project(points)
        assert not valid.any()
        assert torch.isnan(pixels).all()

    def test_wide_angle_sees_sideways(self, fisheye):
        """alpha > 0.5 covers points at 90 degrees off-axis."""
        pixels, valid = fisheye.project(torch.tensor([[1.0, 0.0, 0.0]], dtype=torch.float64))
        assert valid.all()
        assert pixels[0, 0] > 320.0

    def test_point_behind_invalid(self, fisheye):
        """Points straight behind the camera are outside the valid region."""
        _, valid = fisheye.project(torch.tensor([[0.0, 0.0, -1.0]], dtype=torch.float64))
        assert not valid.any()

    def test_unproject_outside_fov(self):
        """Pixels beyond the model's image circle do not back-project."""
        camera = EnhancedCamera(640, 480, [0.6, 1.0, 70.0, 70.0, 320.0, 240.0])
        rays, valid = camera.unproject(torch.tensor([[320.0 + 70.0 * 2.5, 240.0]], dtype=torch.float64))
        assert not valid.any()
        assert torch.isnan(rays).all()

    def test_bounds(self, fisheye):
        """alpha is bounded to [0, 1]; the rest are positive or free."""
        lower, upper = fisheye.bounds()
        assert lower.shape == (6,)
        assert lower[0] == 0.0 and upper[0] == 1.0
        assert (lower[1:4] > 0).all()
        assert torch.isinf(upper[1:]).all()

    def test_clone_is_independent(self, fisheye):
        """Clones are equal but do not share parameter storage."""
        clone = fisheye.clone()
        assert clone is not fisheye
        torch.testing.assert_close(clone.params, fisheye.params)
        clone.params[0] = 0.1
        assert fisheye.params[0] == pytest.approx(0.6)

    @pytest.mark.parametrize(
        "params",
        [
            [1.5, 1.0, 100.0, 100.0, 80.0, 60.0],
            [0.5, 0.0, 100.0, 100.0, 80.0, 60.0],
            [0.5, 1.0, -100.0, 100.0, 80.0, 60.0],
            [0.5, 1.0, 100.0],
        ],
    )
    def test_invalid_parameters(self, params):
        """Out-of-bound or missing parameters are rejected."""
        with pytest.raises(ValueError):
            EnhancedCamera(160, 120, params)

    def test_invalid_size(self):
        """The image size must be positive."""
        with pytest.raises(ValueError, match="Image size"):
            EnhancedCamera(0, 120, [0.5, 1.0, 100.0, 100.0, 80.0, 60.0])
