"""Tests for image, disparity, distance and point-cloud I/O."""

import numpy as np
import pytest
import torch

from epistereo.io import (
    load_distance_map,
    load_grayscale,
    load_point_cloud,
    save_disparity_image,
    save_distance_map,
    save_point_cloud,
)


def test_disparity_image_round_trip(tmp_path):
    """Disparity PNGs are lossless, including the invalid value."""
    disparity = torch.randint(0, 48, (30, 40), dtype=torch.uint8)
    disparity[:5] = 255
    path = tmp_path / "nested" / "disparity.png"

    save_disparity_image(disparity, path)

    np.testing.assert_array_equal(load_grayscale(path), disparity.numpy())


def test_distance_map_round_trip(tmp_path):
    """Distance maps keep their values and NaNs."""
    distance = torch.rand(12, 16) * 5.0
    distance[0, :4] = float("nan")
    path = tmp_path / "distance.npz"

    save_distance_map(distance, path)
    loaded = load_distance_map(path)

    assert loaded.dtype == torch.float32
    np.testing.assert_array_equal(loaded.numpy(), distance.numpy())


def test_point_cloud_round_trip(tmp_path):
    """Points survive a binary PLY round trip."""
    points = torch.rand(100, 3)
    path = tmp_path / "points.ply"

    save_point_cloud(points, path)

    np.testing.assert_allclose(load_point_cloud(path), points.numpy(), atol=1e-6)


def test_missing_image(tmp_path):
    """Unreadable images raise FileNotFoundError."""
    with pytest.raises(FileNotFoundError, match="Could not read image"):
        load_grayscale(tmp_path / "missing.png")
