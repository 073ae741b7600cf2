"""Triangulation and derived products of disparity maps."""

import logging
from collections.abc import Sequence

import torch

from ..camera.protocol import CameraModel
from ..config import INVALID_DISPARITY
from ..geometry import Transformation
from .epipolar import EpipolarGeometry

logger = logging.getLogger(__name__)

# maximum distance (pixels) between a projected point and the nearest curve sample
MAX_SAMPLE_DISTANCE = 1.5


def triangulate_rays(
    origins1: torch.Tensor,
    dirs1: torch.Tensor,
    origins2: torch.Tensor,
    dirs2: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Vectorized closest-approach triangulation for pairs of rays.

    Finds the ray parameters l1, l2 minimizing
    |o1 + l1 * d1 - (o2 + l2 * d2)|^2 and returns the midpoint of the two
    closest points.

    Args:
        origins1: Ray origins for the first set, shape (M, 3).
        dirs1: Ray directions for the first set, shape (M, 3).
        origins2: Ray origins for the second set, shape (M, 3).
        dirs2: Ray directions for the second set, shape (M, 3).

    Returns:
        points: Triangulated 3D points, shape (M, 3). NaN where invalid.
        valid: Boolean mask, shape (M,). False for nearly parallel rays and
            for points behind either ray origin.
    """
    a = (dirs1 * dirs1).sum(dim=-1)
    b = (dirs1 * dirs2).sum(dim=-1)
    c = (dirs2 * dirs2).sum(dim=-1)
    w = origins1 - origins2
    d = (dirs1 * w).sum(dim=-1)
    e = (dirs2 * w).sum(dim=-1)

    denom = a * c - b * b
    valid = denom > 1e-12 * a * c
    denom = torch.where(valid, denom, torch.ones_like(denom))

    l1 = (b * e - c * d) / denom
    l2 = (a * e - b * d) / denom
    valid &= (l1 > 0) & (l2 > 0)

    closest1 = origins1 + l1.unsqueeze(-1) * dirs1
    closest2 = origins2 + l2.unsqueeze(-1) * dirs2
    points = 0.5 * (closest1 + closest2)
    points = torch.where(
        valid.unsqueeze(-1), points, torch.full_like(points, float("nan"))
    )
    return points, valid


def triangulate(
    camera1: CameraModel,
    camera2: CameraModel,
    transformation: Transformation,
    pixels1: torch.Tensor,
    pixels2: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Triangulate matched pixels of a camera pair.

    Args:
        camera1: Model of the first camera.
        camera2: Model of the second camera.
        transformation: Pose of camera 2 in camera 1's frame.
        pixels1: Pixels (u, v) in the first image, shape (M, 2).
        pixels2: Matching pixels in the second image, shape (M, 2).

    Returns:
        points: 3D points in camera 1's frame, shape (M, 3), float64.
        valid: Boolean mask, shape (M,).
    """
    rays1, valid1 = camera1.unproject(pixels1.double())
    rays2, valid2 = camera2.unproject(pixels2.double())
    return _triangulate_in_frame1(rays1, valid1, rays2, valid2, transformation)


def _triangulate_in_frame1(
    rays1: torch.Tensor,
    valid1: torch.Tensor,
    rays2: torch.Tensor,
    valid2: torch.Tensor,
    transformation: Transformation,
) -> tuple[torch.Tensor, torch.Tensor]:
    dirs2 = transformation.rotate(rays2)
    origins1 = torch.zeros_like(rays1)
    origins2 = transformation.trans.to(rays1.dtype).expand_as(dirs2)
    points, valid = triangulate_rays(origins1, rays1, origins2, dirs2)
    valid &= valid1 & valid2
    points = torch.where(
        valid.unsqueeze(-1), points, torch.full_like(points, float("nan"))
    )
    return points, valid


def _triangulate_disparity(
    geometry: EpipolarGeometry,
    disparity: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
    """Triangulate every valid pixel of a disparity image.

    Returns:
        rows, cols: Full-resolution coordinates of the triangulated pixels.
        points: 3D points in camera 1's frame, shape (K, 3), float64.
        valid: Boolean mask, shape (K,).
    """
    p = geometry.params
    Hs, Ws = geometry.small_shape
    disparity = disparity.to(geometry.device)

    region = torch.zeros_like(disparity, dtype=torch.bool)
    region[p.v0 : p.v0 + Hs * p.block_size, p.u0 : p.u0 + Ws * p.block_size] = True
    candidates = region & (disparity.long() < p.disp_max)

    rows, cols = torch.nonzero(candidates, as_tuple=True)
    cell_rows = torch.div(rows - p.v0, p.block_size, rounding_mode="floor")
    cell_cols = torch.div(cols - p.u0, p.block_size, rounding_mode="floor")
    d = disparity[rows, cols].long()

    sample_ok = geometry.sample_valid[cell_rows, cell_cols, d]
    matched = geometry.samples[cell_rows, cell_cols, d].double()
    rays1 = geometry.cell_rays[cell_rows, cell_cols]
    rays2, valid2 = geometry.camera2.unproject(matched)

    points, valid = _triangulate_in_frame1(
        rays1, sample_ok, rays2, valid2, geometry.transformation
    )
    return rows, cols, points, valid


def compute_distance(
    geometry: EpipolarGeometry,
    disparity: torch.Tensor,
) -> torch.Tensor:
    """Convert a disparity image to a distance map.

    Each valid pixel is matched to the sample of its cell's epipolar curve
    at its disparity; the cell-center ray and the matched ray are
    triangulated and the distance from camera 1's center is stored.

    Args:
        geometry: Epipolar geometry of the pose the disparity was computed for.
        disparity: Disparity image, shape (H, W), uint8.

    Returns:
        Distance map, shape (H, W), float32. NaN for invalid pixels.
    """
    distance = torch.full(
        disparity.shape, float("nan"), dtype=torch.float32, device=geometry.device
    )
    if not geometry.epipole_defined:
        return distance

    rows, cols, points, valid = _triangulate_disparity(geometry, disparity)
    values = torch.linalg.norm(points, dim=-1).float()
    distance[rows[valid], cols[valid]] = values[valid]
    return distance


def compute_point_cloud(
    geometry: EpipolarGeometry,
    disparity: torch.Tensor,
) -> torch.Tensor:
    """Triangulated points of all valid pixels of a disparity image.

    Args:
        geometry: Epipolar geometry of the pose the disparity was computed for.
        disparity: Disparity image, shape (H, W), uint8.

    Returns:
        Points in camera 1's frame, shape (K, 3), float32.
    """
    if not geometry.epipole_defined:
        return torch.zeros(0, 3, device=geometry.device)
    _, _, points, valid = _triangulate_disparity(geometry, disparity)
    return points[valid].float()


def _points_in_polygon(points: torch.Tensor, polygon: torch.Tensor) -> torch.Tensor:
    """Even-odd test of 2D points (N, 2) against a polygon (P, 2)."""
    x, y = points[:, 0:1], points[:, 1:2]
    x1, y1 = polygon[:, 0], polygon[:, 1]
    x2, y2 = torch.roll(x1, -1), torch.roll(y1, -1)

    crosses = (y1 > y) != (y2 > y)
    dy = torch.where(y2 == y1, torch.ones_like(y1), y2 - y1)
    x_cross = x1 + (y - y1) * (x2 - x1) / dy
    hits = crosses & (x < x_cross)
    return (hits.sum(dim=1) % 2) == 1


def generate_plane(
    geometry: EpipolarGeometry,
    plane_pose: Transformation,
    polygon: Sequence[Sequence[float]] | torch.Tensor | None = None,
) -> torch.Tensor:
    """Distance map of a synthetic plane seen by the first camera.

    The plane is z = 0 of the frame ``plane_pose`` (its pose in camera 1's
    frame). Intended for validation: the result can be compared with the
    output of ``compute_distance``.

    Args:
        geometry: Epipolar geometry (only the pose-independent rays are used).
        plane_pose: Pose of the plane frame in camera 1's frame.
        polygon: Optional polygon in plane coordinates, shape (P, 2). Pixels
            whose intersection falls outside it are invalid.

    Returns:
        Distance map, shape (image_height, image_width), float32. NaN outside
        the region of interest, outside the polygon, and where the ray does
        not hit the plane in front of the camera.
    """
    p = geometry.params
    plane_pose = plane_pose.to(geometry.device)
    normal = plane_pose.rotation_matrix()[:, 2]
    origin = plane_pose.trans

    rays = geometry.reconst
    facing = rays @ normal
    hit = geometry.reconst_valid & (facing.abs() > 1e-9)
    depth = torch.dot(normal, origin) / torch.where(hit, facing, torch.ones_like(facing))
    hit &= depth > 0

    if polygon is not None:
        polygon = torch.as_tensor(polygon, dtype=rays.dtype, device=geometry.device)
        H, W = hit.shape
        points = plane_pose.inverse_transform(depth.unsqueeze(-1) * rays)
        inside = _points_in_polygon(points[..., :2].reshape(-1, 2), polygon)
        hit &= inside.reshape(H, W)

    distance = torch.full(
        (p.image_height, p.image_width),
        float("nan"),
        dtype=torch.float32,
        device=geometry.device,
    )
    roi = torch.where(hit, depth, torch.full_like(depth, float("nan"))).float()
    distance[p.v0 : p.v_max, p.u0 : p.u_max] = roi
    return distance


def compute_disparity_from_distance(
    geometry: EpipolarGeometry,
    distance: torch.Tensor,
) -> torch.Tensor:
    """Analytic disparity of every cell for a known distance map.

    The 3D point at the cell center's distance is projected into the second
    image and matched to the nearest sample of the cell's epipolar curve.

    Args:
        geometry: Epipolar geometry for the current pose.
        distance: Per-cell distance map, shape (small_height, small_width),
            or a full-resolution map (image_height, image_width) sampled at
            the cell centers. NaN where unknown.

    Returns:
        Small disparity grid, shape (small_height, small_width), uint8.
        INVALID_DISPARITY where the distance is unknown, the point does not
        project, or no sample lies within MAX_SAMPLE_DISTANCE pixels.
    """
    p = geometry.params
    Hs, Ws = geometry.small_shape
    invalid = torch.full(
        (Hs, Ws), INVALID_DISPARITY, dtype=torch.uint8, device=geometry.device
    )
    if not geometry.epipole_defined:
        return invalid

    distance = distance.to(geometry.device)
    if tuple(distance.shape) == (Hs, Ws):
        cell_distance = distance.double()
    else:
        rows = geometry.cell_rows + p.v0
        cols = geometry.cell_cols + p.u0
        cell_distance = distance[rows][:, cols].double()

    points = cell_distance.unsqueeze(-1) * geometry.cell_rays
    projected, valid = geometry.camera2.project(
        geometry.transformation.inverse_transform(points).reshape(-1, 3)
    )
    projected = projected.reshape(Hs, Ws, 1, 2)
    valid = valid.reshape(Hs, Ws) & torch.isfinite(cell_distance)

    gap = torch.linalg.norm(geometry.samples.double() - projected, dim=-1)
    gap = torch.where(geometry.sample_valid, gap, torch.full_like(gap, float("inf")))
    gap = torch.nan_to_num(gap, nan=float("inf"))
    best_gap, best = gap.min(dim=-1)

    valid &= best_gap <= MAX_SAMPLE_DISTANCE
    return torch.where(valid, best.to(torch.uint8), invalid)
