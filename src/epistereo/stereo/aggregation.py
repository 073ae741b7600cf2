"""Scanline dynamic-programming cost aggregation."""

import logging
from concurrent.futures import ThreadPoolExecutor

import torch
from torch.profiler import record_function

logger = logging.getLogger(__name__)

# scan directions: name -> (cell axis of the scan, reversed)
DIRECTIONS = {
    "left": (1, False),  # left to right
    "right": (1, True),  # right to left
    "top": (0, False),  # top to bottom
    "bottom": (0, True),  # bottom to top
}


def dynamic_step(
    prev: torch.Tensor,
    cost: torch.Tensor,
    lambda_step: float,
    lambda_jump: float,
) -> torch.Tensor:
    """One step of the smoothness recurrence for a batch of cells.

    out[d] = cost[d] + min_d'(prev[d'] + penalty(d, d')) - min_d'(prev[d'])

    with penalty 0 for d' = d, lambda_step for |d - d'| = 1 and lambda_jump
    otherwise. Subtracting the previous minimum keeps the values bounded
    without changing the arg-min.

    Args:
        prev: Accumulated cost of the previous cells, shape (N, D).
        cost: Direct cost of the current cells, shape (N, D).
        lambda_step: Penalty for a one-step disparity change.
        lambda_jump: Penalty for larger changes (>= lambda_step).

    Returns:
        Accumulated cost of the current cells, shape (N, D).
    """
    floor = prev.min(dim=-1, keepdim=True).values
    best = torch.minimum(prev, floor + lambda_jump)
    if prev.shape[-1] > 1:
        best[:, 1:] = torch.minimum(best[:, 1:], prev[:, :-1] + lambda_step)
        best[:, :-1] = torch.minimum(best[:, :-1], prev[:, 1:] + lambda_step)
    return cost + best - floor


def aggregate_direction(
    cost: torch.Tensor,
    direction: str,
    lambda_step: float,
    lambda_jump: float,
) -> torch.Tensor:
    """Run one scanline pass over the reduced grid.

    All scan lines of the pass are processed together; cells along a scan
    line are visited strictly in order.

    Args:
        cost: Cost volume, shape (H, W, D), float32. Read only.
        direction: "left" (left to right), "right" (right to left),
            "top" (top to bottom) or "bottom" (bottom to top).
        lambda_step: Penalty for a one-step disparity change.
        lambda_jump: Penalty for larger changes.

    Returns:
        Tableau of accumulated costs, shape (H, W, D), float32.

    Raises:
        ValueError: If direction is unknown.
    """
    if direction not in DIRECTIONS:
        raise ValueError(
            f"Unknown scan direction: {direction!r}. Expected one of {list(DIRECTIONS)}"
        )
    axis, reverse = DIRECTIONS[direction]

    with record_function(f"dp_{direction}"):
        tableau = torch.empty_like(cost)
        length = cost.shape[axis]
        order = range(length - 1, -1, -1) if reverse else range(length)

        prev = None
        for i in order:
            current = cost.select(axis, i)
            if prev is None:
                out = current.clone()
            else:
                out = dynamic_step(prev, current, lambda_step, lambda_jump)
            tableau.select(axis, i).copy_(out)
            prev = out
        return tableau


def aggregate_costs(
    cost: torch.Tensor,
    lambda_step: float,
    lambda_jump: float,
    num_workers: int = 1,
) -> dict[str, torch.Tensor]:
    """Run the four scanline passes.

    The passes only read the cost volume and each writes its own tableau, so
    with ``num_workers > 1`` they run on a thread pool.

    Args:
        cost: Cost volume, shape (H, W, D), float32.
        lambda_step: Penalty for a one-step disparity change.
        lambda_jump: Penalty for larger changes.
        num_workers: Number of worker threads (1 = sequential).

    Returns:
        Dict mapping direction name ("left", "right", "top", "bottom") to its
        tableau, shape (H, W, D).
    """
    with torch.no_grad():
        if num_workers <= 1:
            return {
                direction: aggregate_direction(cost, direction, lambda_step, lambda_jump)
                for direction in DIRECTIONS
            }

        with ThreadPoolExecutor(max_workers=min(num_workers, len(DIRECTIONS))) as executor:
            futures = {
                direction: executor.submit(
                    aggregate_direction, cost, direction, lambda_step, lambda_jump
                )
                for direction in DIRECTIONS
            }
            return {direction: future.result() for direction, future in futures.items()}
