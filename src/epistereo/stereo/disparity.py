"""Winner-take-all disparity selection and upsampling."""

import torch
from torch.profiler import record_function

from ..config import INVALID_DISPARITY, StereoParameters


def combine_tableaus(
    cost: torch.Tensor,
    tableaus: dict[str, torch.Tensor],
) -> torch.Tensor:
    """Aggregate score of every cell and hypothesis.

    Each directional recurrence already contains the direct cost once, so
    the sum of the tableaus counts it once per direction; all but one copy
    are removed.

    Args:
        cost: Cost volume, shape (H, W, D).
        tableaus: Directional tableaus, each shape (H, W, D).

    Returns:
        Aggregated score, shape (H, W, D).
    """
    total = sum(tableaus.values())
    return total - (len(tableaus) - 1) * cost


def select_disparity(
    cost: torch.Tensor,
    tableaus: dict[str, torch.Tensor],
    sample_valid: torch.Tensor,
) -> torch.Tensor:
    """Pick the minimizing disparity of every cell.

    Ties go to the smallest index, the at-infinity end of the curve. Cells
    without any valid hypothesis, or whose winner is an invalid hypothesis,
    get INVALID_DISPARITY.

    Args:
        cost: Cost volume, shape (H, W, D).
        tableaus: Directional tableaus, each shape (H, W, D).
        sample_valid: Validity of each hypothesis, shape (H, W, D).

    Returns:
        Small disparity grid, shape (H, W), uint8.
    """
    with record_function("select_disparity"):
        score = combine_tableaus(cost, tableaus)
        best = torch.argmin(score, dim=-1)

        winner_valid = sample_valid.gather(-1, best.unsqueeze(-1)).squeeze(-1)
        best = torch.where(winner_valid, best, torch.full_like(best, INVALID_DISPARITY))
        return best.to(torch.uint8)


def upsample_disparity(
    small_disparity: torch.Tensor,
    params: StereoParameters,
    pixel_valid: torch.Tensor | None = None,
) -> torch.Tensor:
    """Replicate cell disparities to full resolution.

    Every pixel of a cell's block footprint inherits the cell's value. Pixels
    outside the region of interest keep INVALID_DISPARITY, as do pixels with
    an invalid back-projection.

    Args:
        small_disparity: Small disparity grid, shape (small_height, small_width), uint8.
        params: Initialized stereo parameters.
        pixel_valid: Optional validity of the ROI pixels, shape
            (v_max - v0, u_max - u0).

    Returns:
        Disparity image, shape (image_height, image_width), uint8.
    """
    p = params
    disparity = torch.full(
        (p.image_height, p.image_width),
        INVALID_DISPARITY,
        dtype=torch.uint8,
        device=small_disparity.device,
    )

    footprint = small_disparity.repeat_interleave(p.block_size, dim=0).repeat_interleave(
        p.block_size, dim=1
    )
    fh, fw = footprint.shape

    if pixel_valid is not None:
        footprint = torch.where(
            pixel_valid[:fh, :fw],
            footprint,
            torch.full_like(footprint, INVALID_DISPARITY),
        )

    disparity[p.v0 : p.v0 + fh, p.u0 : p.u0 + fw] = footprint
    return disparity
