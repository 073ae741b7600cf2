"""Tests for triangulation and disparity-derived products."""

import math

import pytest
import torch

from epistereo.config import INVALID_DISPARITY
from epistereo.geometry import Transformation
from epistereo.stereo.disparity import upsample_disparity
from epistereo.stereo.epipolar import EpipolarGeometry
from epistereo.stereo.reconstruction import (
    compute_disparity_from_distance,
    compute_distance,
    compute_point_cloud,
    generate_plane,
    triangulate,
    triangulate_rays,
)


@pytest.fixture
def geometry(pinhole_camera, lateral_pose, stereo_params):
    geometry = EpipolarGeometry(pinhole_camera, pinhole_camera, stereo_params.initialize())
    geometry.set_transformation(lateral_pose)
    return geometry


class TestTriangulateRays:
    """Tests for triangulate_rays."""

    def test_intersecting_rays(self, device):
        """Rays through a common point recover it."""
        target = torch.tensor([[1.0, 2.0, 3.0]], dtype=torch.float64, device=device)
        o1 = torch.zeros(1, 3, dtype=torch.float64, device=device)
        o2 = torch.tensor([[5.0, 0.0, 0.0]], dtype=torch.float64, device=device)
        d1 = (target - o1) / torch.linalg.norm(target - o1)
        d2 = (target - o2) / torch.linalg.norm(target - o2)

        points, valid = triangulate_rays(o1, d1, o2, d2)

        assert valid.all()
        torch.testing.assert_close(points, target)

    def test_skew_rays_midpoint(self):
        """Skew rays give the midpoint of their common perpendicular."""
        o1 = torch.tensor([[0.0, 0.0, 0.0]], dtype=torch.float64)
        d1 = torch.tensor([[0.0, 0.0, 1.0]], dtype=torch.float64)
        o2 = torch.tensor([[1.0, 0.2, 0.0]], dtype=torch.float64)
        d2 = torch.tensor([[-1.0, 0.0, 1.0]], dtype=torch.float64) / math.sqrt(2.0)

        points, valid = triangulate_rays(o1, d1, o2, d2)

        assert valid.all()
        torch.testing.assert_close(points, torch.tensor([[0.0, 0.1, 1.0]], dtype=torch.float64))

    def test_parallel_rays_invalid(self):
        """Parallel rays do not triangulate."""
        d = torch.tensor([[0.0, 0.0, 1.0]], dtype=torch.float64)
        points, valid = triangulate_rays(
            torch.zeros(1, 3, dtype=torch.float64), d, torch.tensor([[1.0, 0.0, 0.0]], dtype=torch.float64), d
        )
        assert not valid.any()
        assert torch.isnan(points).all()

    def test_behind_camera_invalid(self):
        """Diverging rays meet behind the origins and are rejected."""
        o1 = torch.zeros(1, 3, dtype=torch.float64)
        o2 = torch.tensor([[1.0, 0.0, 0.0]], dtype=torch.float64)
        d1 = torch.tensor([[-0.5, 0.0, 1.0]], dtype=torch.float64)
        d2 = torch.tensor([[0.5, 0.0, 1.0]], dtype=torch.float64)
        _, valid = triangulate_rays(o1, d1, o2, d2)
        assert not valid.any()


def test_triangulate_pixels(pinhole_camera, lateral_pose):
    """A 10-pixel shift with fu = 100 and baseline 0.1 is depth 1."""
    pixels1 = torch.tensor([[80.0, 60.0], [120.0, 30.0]], dtype=torch.float64)
    pixels2 = pixels1 - torch.tensor([10.0, 0.0], dtype=torch.float64)

    points, valid = triangulate(pinhole_camera, pinhole_camera, lateral_pose, pixels1, pixels2)

    assert valid.all()
    torch.testing.assert_close(points[:, 2], torch.ones(2, dtype=torch.float64))
    torch.testing.assert_close(points[0], torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64))


class TestDistance:
    """Tests for compute_distance and compute_point_cloud."""

    def test_constant_disparity_is_plane(self, geometry):
        """Disparity 10 everywhere triangulates onto the plane z = 1."""
        small = torch.full(geometry.small_shape, 10, dtype=torch.uint8)
        disparity = upsample_disparity(small, geometry.params)

        points = compute_point_cloud(geometry, disparity)
        assert points.shape[0] == int((disparity != INVALID_DISPARITY).sum())
        torch.testing.assert_close(points[:, 2], torch.ones_like(points[:, 2]), atol=1e-5, rtol=0)

        distance = compute_distance(geometry, disparity)
        valid = disparity != INVALID_DISPARITY
        assert torch.isnan(distance[~valid]).all()
        assert (distance[valid] >= 1.0 - 1e-5).all()

        # at a cell center the distance is the length of the ray scaled to z = 1
        p = geometry.params
        u, v = p.u_big(5), p.v_big(7)
        ray = geometry.cell_rays[7, 5]
        assert distance[v, u].item() == pytest.approx((ray / ray[2]).norm().item(), rel=1e-5)

    def test_invalid_disparity_is_nan(self, geometry):
        """Sentinel pixels have no distance."""
        disparity = torch.full(
            (geometry.params.image_height, geometry.params.image_width),
            INVALID_DISPARITY,
            dtype=torch.uint8,
        )
        assert torch.isnan(compute_distance(geometry, disparity)).all()
        assert compute_point_cloud(geometry, disparity).shape == (0, 3)

    def test_degenerate_pose_all_nan(self, pinhole_camera, stereo_params):
        """Without a baseline nothing can be triangulated."""
        geometry = EpipolarGeometry(pinhole_camera, pinhole_camera, stereo_params.initialize())
        geometry.set_transformation(Transformation())
        disparity = torch.zeros(120, 160, dtype=torch.uint8)
        assert torch.isnan(compute_distance(geometry, disparity)).all()


class TestGeneratePlane:
    """Tests for generate_plane and compute_disparity_from_distance."""

    def test_fronto_parallel_plane(self, geometry):
        """A plane at z = 1 has distance |ray| / z along each ray."""
        distance = generate_plane(geometry, Transformation([0.0, 0.0, 1.0]))
        p = geometry.params

        assert distance.shape == (120, 160)
        roi = distance[p.v0 : p.v_max, p.u0 : p.u_max]
        assert torch.isfinite(roi).all()
        assert torch.isnan(distance[:, : p.u0]).all()
        assert distance[60, 80].item() == pytest.approx(1.0)

    def test_plane_behind_camera(self, geometry):
        """A plane behind the camera is never hit."""
        distance = generate_plane(geometry, Transformation([0.0, 0.0, -1.0]))
        assert torch.isnan(distance).all()

    def test_polygon(self, geometry):
        """Only rays landing inside the polygon are valid."""
        square = [[-0.1, -0.1], [0.1, -0.1], [0.1, 0.1], [-0.1, 0.1]]
        distance = generate_plane(geometry, Transformation([0.0, 0.0, 1.0]), polygon=square)

        # |x| < 0.1 at z = 1 is |u - 80| < 10
        assert torch.isfinite(distance[60, 80])
        assert torch.isfinite(distance[55, 75])
        assert torch.isnan(distance[60, 95])
        assert torch.isnan(distance[40, 80])

    def test_analytic_disparity(self, geometry):
        """The plane at z = 1 is 10 steps along every epipolar curve."""
        distance = generate_plane(geometry, Transformation([0.0, 0.0, 1.0]))
        disparity = compute_disparity_from_distance(geometry, distance)
        assert disparity.shape == geometry.small_shape
        assert (disparity == 10).all()

    def test_analytic_disparity_out_of_range(self, geometry):
        """A plane closer than the disparity range allows is invalid."""
        distance = generate_plane(geometry, Transformation([0.0, 0.0, 0.2]))
        disparity = compute_disparity_from_distance(geometry, distance)
        assert (disparity == INVALID_DISPARITY).all()
