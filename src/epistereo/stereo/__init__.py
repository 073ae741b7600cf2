"""Generalized block-matching stereo along epipolar curves."""

from .aggregation import aggregate_costs, aggregate_direction, dynamic_step
from .cost import MAX_COST, build_cost_volume, compute_cost, compute_ncc, compute_sad
from .disparity import combine_tableaus, select_disparity, upsample_disparity
from .engine import EnhancedStereo
from .epipolar import EpipolarGeometry, make_pixel_grid
from .reconstruction import (
    compute_disparity_from_distance,
    compute_distance,
    compute_point_cloud,
    generate_plane,
    triangulate,
    triangulate_rays,
)

__all__ = [
    "EnhancedStereo",
    "EpipolarGeometry",
    "make_pixel_grid",
    "MAX_COST",
    "compute_sad",
    "compute_ncc",
    "compute_cost",
    "build_cost_volume",
    "dynamic_step",
    "aggregate_direction",
    "aggregate_costs",
    "combine_tableaus",
    "select_disparity",
    "upsample_disparity",
    "triangulate_rays",
    "triangulate",
    "compute_distance",
    "compute_point_cloud",
    "generate_plane",
    "compute_disparity_from_distance",
]
