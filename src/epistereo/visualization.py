"""Disparity, distance and epipolar-curve rendering."""

from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import torch

from .config import INVALID_DISPARITY


def _to_numpy(array: torch.Tensor | np.ndarray) -> np.ndarray:
    if isinstance(array, torch.Tensor):
        return array.cpu().numpy()
    return array


def render_disparity(
    disparity: torch.Tensor | np.ndarray,
    output_path: str | Path,
    disp_max: int | None = None,
    dpi: int = 150,
) -> None:
    """Render a disparity image with a colorbar; invalid pixels are gray.

    Args:
        disparity: Disparity image, shape (H, W), uint8. 255 = invalid.
        output_path: Path to save the PNG image.
        disp_max: Colormap maximum. If None, auto from valid data.
        dpi: Output resolution.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    disparity = _to_numpy(disparity).astype(np.float32)
    disparity[disparity == INVALID_DISPARITY] = np.nan

    fig, ax = plt.subplots(1, 1, figsize=(8, 6))
    cmap = plt.cm.magma.copy()
    cmap.set_bad(color="0.8")

    vmax = disp_max
    valid = disparity[np.isfinite(disparity)]
    if vmax is None and len(valid) > 0:
        vmax = float(valid.max())

    im = ax.imshow(disparity, cmap=cmap, vmin=0, vmax=vmax)
    cbar = fig.colorbar(im, ax=ax, shrink=0.8)
    cbar.set_label("Disparity (steps along the epipolar curve)")
    ax.set_title("Disparity")
    ax.axis("off")

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    plt.close(fig)


def render_distance(
    distance: torch.Tensor | np.ndarray,
    output_path: str | Path,
    vmin: float | None = None,
    vmax: float | None = None,
    dpi: int = 150,
) -> None:
    """Render a distance map with a colorbar; NaN pixels are gray.

    Args:
        distance: Distance map, shape (H, W), float32. NaN for invalid pixels.
        output_path: Path to save the PNG image.
        vmin: Colormap minimum. If None, auto from valid data.
        vmax: Colormap maximum. If None, auto from valid data.
        dpi: Output resolution.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    distance = _to_numpy(distance)

    fig, ax = plt.subplots(1, 1, figsize=(8, 6))
    cmap = plt.cm.viridis.copy()
    cmap.set_bad(color="0.8")

    valid = distance[np.isfinite(distance)]
    if vmin is None and len(valid) > 0:
        vmin = float(valid.min())
    if vmax is None and len(valid) > 0:
        vmax = float(valid.max())

    im = ax.imshow(distance, cmap=cmap, vmin=vmin, vmax=vmax)
    cbar = fig.colorbar(im, ax=ax, shrink=0.8)
    cbar.set_label("Distance from camera 1")
    ax.set_title("Distance")
    ax.axis("off")

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    plt.close(fig)


def render_epipolar_curve(
    image1: torch.Tensor | np.ndarray,
    traced: torch.Tensor | np.ndarray,
    pixel: tuple[int, int],
    output_path: str | Path,
    dpi: int = 150,
) -> None:
    """Side-by-side view of a first-image pixel and its traced epipolar curve.

    Args:
        image1: First image, shape (H, W), uint8.
        traced: Second image with the curve drawn, from
            ``EnhancedStereo.trace_epipolar_curve``.
        pixel: The (u, v) pixel of the first image.
        output_path: Path to save the PNG image.
        dpi: Output resolution.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    axes[0].imshow(_to_numpy(image1), cmap="gray", vmin=0, vmax=255)
    axes[0].plot(pixel[0], pixel[1], "r+", markersize=12)
    axes[0].set_title(f"Image 1, pixel ({pixel[0]}, {pixel[1]})")
    axes[1].imshow(_to_numpy(traced), cmap="gray", vmin=0, vmax=255)
    axes[1].set_title("Image 2, epipolar curve")
    for ax in axes:
        ax.axis("off")

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    plt.close(fig)
