"""Synthetic textured-plane stereo pairs for validation."""

import logging

import cv2
import numpy as np
import torch
from numpy.typing import NDArray

from .camera.protocol import CameraModel
from .geometry import Transformation

logger = logging.getLogger(__name__)


def make_texture(size: int = 512, cell_size: int = 4, seed: int = 0) -> NDArray[np.uint8]:
    """Generate a value-noise texture.

    Random values on a coarse lattice with spacing ``cell_size`` are
    interpolated bilinearly and mixed with a finer octave, giving blob-like
    structure at every scale the block matcher looks at.

    Args:
        size: Texture edge length in texels.
        cell_size: Lattice spacing of the coarse octave in texels.
        seed: Random seed.

    Returns:
        Texture, shape (size, size), uint8.
    """
    if size <= 0 or cell_size <= 0:
        raise ValueError(f"size and cell_size must be positive, got {size}, {cell_size}")

    rng = np.random.default_rng(seed)
    texture = np.zeros((size, size), dtype=np.float32)
    for spacing, weight in ((cell_size, 0.7), (max(cell_size // 2, 1), 0.3)):
        lattice = rng.random((size // spacing + 2, size // spacing + 2)).astype(np.float32)
        octave = cv2.resize(
            lattice,
            (lattice.shape[1] * spacing, lattice.shape[0] * spacing),
            interpolation=cv2.INTER_LINEAR,
        )
        texture += weight * octave[:size, :size]

    lo, hi = texture.min(), texture.max()
    texture = (texture - lo) / max(hi - lo, 1e-6)
    return np.round(texture * 255.0).astype(np.uint8)


def render_plane_view(
    camera: CameraModel,
    T_world_camera: Transformation,
    T_world_plane: Transformation,
    texture: NDArray[np.uint8],
    texture_extent: float,
) -> NDArray[np.uint8]:
    """Render a textured plane seen by a camera.

    The plane is z = 0 of the plane frame; the texture covers the square
    [-extent / 2, extent / 2]^2 of that plane. Each pixel's ray is
    intersected with the plane and the texture is sampled bilinearly at the
    intersection.

    Args:
        camera: Camera model.
        T_world_camera: Pose of the camera in the world frame.
        T_world_plane: Pose of the plane frame in the world frame.
        texture: Texture, shape (S, S), uint8.
        texture_extent: Edge length of the textured square in world units.

    Returns:
        Image, shape (camera.height, camera.width), uint8. Pixels that miss
        the plane or the textured square are 0.
    """
    H, W = camera.height, camera.width
    v, u = torch.meshgrid(
        torch.arange(H, dtype=torch.float64),
        torch.arange(W, dtype=torch.float64),
        indexing="ij",
    )
    pixels = torch.stack([u, v], dim=-1).reshape(-1, 2)
    rays, valid = camera.unproject(pixels)

    # rays and camera center in the plane frame
    dirs = T_world_plane.inverse_rotate(T_world_camera.rotate(rays))
    origin = T_world_plane.inverse_transform(T_world_camera.trans)

    dz = dirs[:, 2]
    hit = valid & (dz.abs() > 1e-12)
    depth = -origin[2] / torch.where(hit, dz, torch.ones_like(dz))
    hit &= depth > 0

    points = origin + depth.unsqueeze(-1) * dirs
    size = texture.shape[0]
    scale = (size - 1) / texture_extent
    map_x = ((points[:, 0] + texture_extent / 2.0) * scale).reshape(H, W)
    map_y = ((points[:, 1] + texture_extent / 2.0) * scale).reshape(H, W)

    map_x = torch.where(hit.reshape(H, W), map_x, torch.full_like(map_x, -1.0))
    map_y = torch.where(hit.reshape(H, W), map_y, torch.full_like(map_y, -1.0))

    image = cv2.remap(
        texture,
        map_x.numpy().astype(np.float32),
        map_y.numpy().astype(np.float32),
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
    logger.debug(
        "Rendered plane view: %.1f%% of pixels hit the plane",
        100.0 * hit.double().mean().item(),
    )
    return image


def render_plane_pair(
    camera1: CameraModel,
    camera2: CameraModel,
    transformation: Transformation,
    plane_distance: float,
    texture: NDArray[np.uint8] | None = None,
    texture_extent: float = 8.0,
) -> tuple[NDArray[np.uint8], NDArray[np.uint8], Transformation]:
    """Render a stereo pair of a fronto-parallel textured plane.

    Camera 1's frame is the world frame; the plane is z = plane_distance.

    Args:
        camera1: Model of the first camera.
        camera2: Model of the second camera.
        transformation: Pose of camera 2 in camera 1's frame.
        plane_distance: Distance of the plane along camera 1's optical axis.
        texture: Plane texture. If None, ``make_texture()`` is used.
        texture_extent: Edge length of the textured square in world units.

    Returns:
        image1: View of the first camera, uint8.
        image2: View of the second camera, uint8.
        plane_pose: Pose of the plane frame in camera 1's frame.
    """
    if texture is None:
        texture = make_texture()

    plane_pose = Transformation([0.0, 0.0, plane_distance], [0.0, 0.0, 0.0])
    identity = Transformation()
    image1 = render_plane_view(camera1, identity, plane_pose, texture, texture_extent)
    image2 = render_plane_view(camera2, transformation, plane_pose, texture, texture_extent)
    return image1, image2, plane_pose
