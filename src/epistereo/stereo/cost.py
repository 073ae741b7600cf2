"""Photometric cost volume along epipolar curves."""

import torch
from torch.profiler import record_function

from ..config import StereoParameters
from .epipolar import EpipolarGeometry

# cost assigned to hypotheses that cannot be evaluated
MAX_COST = 255.0


def _block_offsets(block_size: int) -> range:
    half = block_size // 2
    return range(-half, block_size - half)


def compute_sad(
    image1: torch.Tensor,
    image2: torch.Tensor,
    centers1: tuple[torch.Tensor, torch.Tensor],
    centers2: tuple[torch.Tensor, torch.Tensor],
    block_size: int,
) -> torch.Tensor:
    """Mean absolute difference between blocks of two images.

    Args:
        image1: First image, shape (H, W), float32 in [0, 255].
        image2: Second image, shape (H, W), float32 in [0, 255].
        centers1: (rows, cols) of the block centers in image1, broadcastable
            against centers2.
        centers2: (rows, cols) of the block centers in image2.
        block_size: Block edge length.

    Returns:
        Cost, broadcast shape of the centers, float32 in [0, 255].
    """
    v1, u1 = centers1
    v2, u2 = centers2
    total = None
    for dy in _block_offsets(block_size):
        for dx in _block_offsets(block_size):
            diff = (image1[v1 + dy, u1 + dx] - image2[v2 + dy, u2 + dx]).abs()
            total = diff if total is None else total + diff
    return total / float(block_size * block_size)


def compute_ncc(
    image1: torch.Tensor,
    image2: torch.Tensor,
    centers1: tuple[torch.Tensor, torch.Tensor],
    centers2: tuple[torch.Tensor, torch.Tensor],
    block_size: int,
) -> torch.Tensor:
    """Zero-mean normalized cross-correlation cost between blocks.

    Cost = (1 - NCC) * 127.5, so 0 = perfect match, 127.5 = uncorrelated,
    255 = anti-correlated. Blocks without texture (zero variance) get the
    uncorrelated cost.

    Args:
        image1: First image, shape (H, W), float32 in [0, 255].
        image2: Second image, shape (H, W), float32 in [0, 255].
        centers1: (rows, cols) of the block centers in image1.
        centers2: (rows, cols) of the block centers in image2.
        block_size: Block edge length.

    Returns:
        Cost, broadcast shape of the centers, float32 in [0, 255].
    """
    v1, u1 = centers1
    v2, u2 = centers2
    n = float(block_size * block_size)
    sum_a = sum_b = sum_aa = sum_bb = sum_ab = 0.0
    for dy in _block_offsets(block_size):
        for dx in _block_offsets(block_size):
            a = image1[v1 + dy, u1 + dx].double()
            b = image2[v2 + dy, u2 + dx].double()
            sum_a = sum_a + a
            sum_b = sum_b + b
            sum_aa = sum_aa + a * a
            sum_bb = sum_bb + b * b
            sum_ab = sum_ab + a * b

    covar = sum_ab - sum_a * sum_b / n
    var_a = (sum_aa - sum_a * sum_a / n).clamp(min=0.0)
    var_b = (sum_bb - sum_b * sum_b / n).clamp(min=0.0)
    denom = torch.sqrt(var_a * var_b)

    textured = denom > 1e-6
    ncc = torch.where(textured, covar / denom.clamp(min=1e-6), torch.zeros_like(denom))
    cost = (1.0 - ncc.clamp(-1.0, 1.0)) * (MAX_COST / 2.0)
    return cost.float()


def compute_cost(
    image1: torch.Tensor,
    image2: torch.Tensor,
    centers1: tuple[torch.Tensor, torch.Tensor],
    centers2: tuple[torch.Tensor, torch.Tensor],
    block_size: int,
    cost_function: str = "sad",
) -> torch.Tensor:
    """Block matching cost, dispatched on the cost function name.

    Raises:
        ValueError: If cost_function is not "sad" or "ncc".
    """
    match cost_function:
        case "sad":
            return compute_sad(image1, image2, centers1, centers2, block_size)
        case "ncc":
            return compute_ncc(image1, image2, centers1, centers2, block_size)
        case _:
            raise ValueError(
                f"Unknown cost function: {cost_function!r}. Expected 'sad' or 'ncc'."
            )


def build_cost_volume(
    image1: torch.Tensor,
    image2: torch.Tensor,
    geometry: EpipolarGeometry,
    params: StereoParameters,
) -> torch.Tensor:
    """Build the cost volume of the reduced grid.

    For every cell and disparity hypothesis d, compares the block of image1
    centered at the cell center with the block of image2 centered at the
    d-th rasterized pixel of the cell's epipolar curve.

    Args:
        image1: First image, shape (H, W), float32 in [0, 255].
        image2: Second image, shape (H, W), float32 in [0, 255].
        geometry: Epipolar geometry with samples for the current pose.
        params: Initialized stereo parameters.

    Returns:
        Cost volume, shape (small_height, small_width, disp_max), float32.
        Invalid hypotheses hold MAX_COST.
    """
    with record_function("build_cost_volume"), torch.no_grad():
        H, W = image2.shape
        lo = params.half_block_size
        hi = params.block_size - 1 - lo

        rows1 = (geometry.cell_rows + params.v0).view(-1, 1, 1)
        cols1 = (geometry.cell_cols + params.u0).view(1, -1, 1)

        # clamped so that invalid samples never read outside image2
        cols2 = geometry.samples[..., 0].clamp(lo, W - 1 - hi)
        rows2 = geometry.samples[..., 1].clamp(lo, H - 1 - hi)

        cost = compute_cost(
            image1,
            image2,
            (rows1, cols1),
            (rows2, cols2),
            params.block_size,
            params.cost_function,
        )
        return torch.where(
            geometry.sample_valid, cost, torch.full_like(cost, MAX_COST)
        )
