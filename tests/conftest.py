"""Shared pytest fixtures for EpiStereo tests."""

import numpy as np
import pytest
import torch

from epistereo.camera import EnhancedCamera
from epistereo.config import StereoParameters
from epistereo.geometry import Transformation

# Small pinhole rig: 160x120 images, 10 px disparity for a point at depth 1
IMAGE_WIDTH = 160
IMAGE_HEIGHT = 120
PINHOLE_PARAMS = [0.0, 1.0, 100.0, 100.0, 80.0, 60.0]
BASELINE = 0.1
SHIFT = 10


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


@pytest.fixture
def pinhole_camera() -> EnhancedCamera:
    """Pinhole camera (EUCM with alpha = 0), fu = fv = 100."""
    return EnhancedCamera(IMAGE_WIDTH, IMAGE_HEIGHT, PINHOLE_PARAMS)


@pytest.fixture
def lateral_pose() -> Transformation:
    """Camera 2 shifted by BASELINE along camera 1's x axis."""
    return Transformation([BASELINE, 0.0, 0.0], [0.0, 0.0, 0.0])


@pytest.fixture
def stereo_params() -> StereoParameters:
    """Parameters whose ROI keeps all hypotheses inside the second image."""
    return StereoParameters(
        disp_max=16,
        block_size=3,
        u_margin=16,
        v_margin=0,
        image_width=IMAGE_WIDTH,
        image_height=IMAGE_HEIGHT,
    )


@pytest.fixture
def shifted_pair() -> tuple[np.ndarray, np.ndarray]:
    """Random image and its copy shifted left by SHIFT pixels.

    For the pinhole rig this is a fronto-parallel plane at depth 1.
    """
    rng = np.random.default_rng(42)
    image1 = rng.integers(0, 256, size=(IMAGE_HEIGHT, IMAGE_WIDTH), dtype=np.uint8)
    image2 = np.zeros_like(image1)
    image2[:, :-SHIFT] = image1[:, SHIFT:]
    return image1, image2
