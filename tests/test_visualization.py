"""Tests for disparity, distance and epipolar-curve rendering."""

import numpy as np
import torch

from epistereo.visualization import render_disparity, render_distance, render_epipolar_curve


def test_render_disparity(tmp_path):
    """A disparity image with invalid pixels renders to PNG."""
    disparity = torch.randint(0, 16, (40, 50), dtype=torch.uint8)
    disparity[:10] = 255
    path = tmp_path / "viz" / "disparity.png"

    render_disparity(disparity, path, disp_max=16)

    assert path.exists()
    assert path.stat().st_size > 0


def test_render_all_invalid_disparity(tmp_path):
    """An all-invalid disparity image still renders."""
    path = tmp_path / "disparity.png"
    render_disparity(np.full((20, 20), 255, dtype=np.uint8), path)
    assert path.exists()


def test_render_distance(tmp_path):
    """A distance map with NaNs renders to PNG."""
    distance = torch.rand(40, 50) + 1.0
    distance[:, :5] = float("nan")
    path = tmp_path / "distance.png"

    render_distance(distance, path)

    assert path.exists()


def test_render_epipolar_curve(tmp_path):
    """The pixel and its curve are rendered side by side."""
    image1 = np.full((40, 50), 100, dtype=np.uint8)
    traced = image1.copy()
    traced[20, 10:30] = 255
    path = tmp_path / "curve.png"

    render_epipolar_curve(image1, traced, (25, 20), path)

    assert path.exists()
