"""Image, disparity, distance and point-cloud I/O."""

import logging
from pathlib import Path

import cv2
import numpy as np
import open3d as o3d
import torch

logger = logging.getLogger(__name__)


def load_grayscale(path: str | Path) -> np.ndarray:
    """Read an image as single-channel 8-bit.

    Args:
        path: Image file path (any format OpenCV reads).

    Returns:
        Image, shape (H, W), uint8.

    Raises:
        FileNotFoundError: If the file does not exist or cannot be decoded.
    """
    path = Path(path)
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return image


def save_disparity_image(disparity: torch.Tensor | np.ndarray, path: str | Path) -> None:
    """Write a uint8 disparity image (255 = invalid) losslessly.

    Args:
        disparity: Disparity image, shape (H, W), uint8.
        path: Output file path (should end with .png).
    """
    if isinstance(disparity, torch.Tensor):
        disparity = disparity.cpu().numpy()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), disparity.astype(np.uint8)):
        raise OSError(f"Could not write disparity image: {path}")


def save_distance_map(distance: torch.Tensor | np.ndarray, path: str | Path) -> None:
    """Save a distance map to an .npz file.

    Args:
        distance: Per-pixel distance from camera 1, shape (H, W), float32.
            NaN for invalid pixels.
        path: Output file path (should end with .npz).
    """
    if isinstance(distance, torch.Tensor):
        distance = distance.cpu().numpy()
    np.savez(path, distance=distance.astype(np.float32))


def load_distance_map(path: str | Path, device: str = "cpu") -> torch.Tensor:
    """Load a distance map from an .npz file.

    Args:
        path: Path to .npz file.
        device: Device to place the loaded tensor on.

    Returns:
        Distance map, shape (H, W), float32.
    """
    data = np.load(path)
    return torch.from_numpy(data["distance"]).to(device)


def save_point_cloud(points: torch.Tensor | np.ndarray, path: str | Path) -> None:
    """Save points (N, 3) to a binary PLY file."""
    if isinstance(points, torch.Tensor):
        points = points.cpu().numpy()
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points.astype(np.float64))
    o3d.io.write_point_cloud(str(path), pcd, write_ascii=False)
    logger.debug("Wrote %d points to %s", len(points), path)


def load_point_cloud(path: str | Path) -> np.ndarray:
    """Load the points of a PLY file, shape (N, 3), float64."""
    pcd = o3d.io.read_point_cloud(str(path))
    return np.asarray(pcd.points)
