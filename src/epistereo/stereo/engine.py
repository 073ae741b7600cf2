"""EnhancedStereo: generalized block-matching stereo for arbitrary cameras."""

import logging
import time

import numpy as np
import torch
from torch.profiler import record_function

from ..camera.protocol import CameraModel
from ..config import INVALID_DISPARITY, StereoParameters
from ..curves import trace_curves
from ..geometry import Transformation
from .aggregation import aggregate_costs
from .cost import build_cost_volume
from .disparity import select_disparity, upsample_disparity
from .epipolar import EpipolarGeometry
from .reconstruction import (
    compute_distance,
    compute_point_cloud,
    generate_plane,
    triangulate,
)

logger = logging.getLogger(__name__)


class EnhancedStereo:
    """Dense stereo matching along epipolar curves of a calibrated camera pair.

    The cameras can follow any model implementing ``CameraModel`` (fisheye
    and wide-angle lenses included); the images are never rectified.
    Disparity is the step index along the epipolar curve of each
    reduced-grid cell, 0 being the projection at infinity.

    Pose-independent buffers are computed once. ``set_transformation()``
    recomputes only what depends on the relative pose, and a new image pair
    never triggers any geometry recomputation.

    Args:
        transformation: Pose of camera 2 in camera 1's frame.
        camera1: Model of the first camera (cloned).
        camera2: Model of the second camera (cloned).
        params: Stereo parameters. A copy is initialized; the caller's
            instance is left untouched.
        device: Device for all buffers and computations.
        num_workers: Worker threads for the four aggregation passes.

    Raises:
        ConfigurationError: If the parameters describe an empty region of
            interest or no image size.
        ValueError: If a camera's image size differs from the parameters'.
    """

    def __init__(
        self,
        transformation: Transformation,
        camera1: CameraModel,
        camera2: CameraModel,
        params: StereoParameters,
        device: str | torch.device = "cpu",
        num_workers: int = 4,
    ) -> None:
        self.params = params.model_copy(deep=True).initialize()
        self.device = torch.device(device)
        self.num_workers = num_workers

        self.camera1 = camera1.clone()
        self.camera2 = camera2.clone()
        expected = (self.params.image_width, self.params.image_height)
        for name, camera in (("camera1", self.camera1), ("camera2", self.camera2)):
            if (camera.width, camera.height) != expected:
                raise ValueError(
                    f"{name} image size {camera.width}x{camera.height} does not "
                    f"match stereo parameters {expected[0]}x{expected[1]}"
                )

        self.cost_volume: torch.Tensor | None = None
        self.tableaus: dict[str, torch.Tensor] = {}
        self.small_disparity: torch.Tensor | None = None

        start = time.perf_counter()
        self.geometry = EpipolarGeometry(
            self.camera1, self.camera2, self.params, device=self.device
        )
        self.set_transformation(transformation)
        logger.debug(
            "Engine set up in %.3f s: %dx%d cells, %d hypotheses",
            time.perf_counter() - start,
            self.params.small_width,
            self.params.small_height,
            self.params.disp_max,
        )

    @property
    def transformation(self) -> Transformation:
        """Current pose of camera 2 in camera 1's frame."""
        return self.geometry.transformation

    def set_transformation(self, transformation: Transformation) -> None:
        """Change the relative pose (pose-dependent buffers only)."""
        with record_function("set_transformation"):
            self.geometry.set_transformation(transformation)

    def _prepare_image(self, image: np.ndarray | torch.Tensor, name: str) -> torch.Tensor:
        """Convert a single-channel 8-bit image to a float32 tensor on the device."""
        if isinstance(image, np.ndarray):
            image = torch.from_numpy(np.ascontiguousarray(image))
        if image.dim() != 2:
            raise ValueError(
                f"{name} must be a single-channel (H, W) image, got shape "
                f"{tuple(image.shape)}"
            )
        expected = (self.params.image_height, self.params.image_width)
        if tuple(image.shape) != expected:
            raise ValueError(
                f"{name} shape {tuple(image.shape)} does not match the expected "
                f"(height, width) {expected}"
            )
        return image.to(self.device, dtype=torch.float32)

    def _invalid_disparity(self) -> torch.Tensor:
        return torch.full(
            (self.params.image_height, self.params.image_width),
            INVALID_DISPARITY,
            dtype=torch.uint8,
            device=self.device,
        )

    @torch.no_grad()
    def compute_stereo(
        self,
        image1: np.ndarray | torch.Tensor,
        image2: np.ndarray | torch.Tensor,
    ) -> torch.Tensor:
        """Compute the disparity image of a stereo pair.

        Args:
            image1: Image of the first camera, shape (H, W), uint8.
            image2: Image of the second camera, shape (H, W), uint8.

        Returns:
            Disparity image, shape (H, W), uint8. INVALID_DISPARITY (255)
            outside the region of interest and wherever no valid match exists.

        Raises:
            ValueError: If an image is not single-channel or its size differs
                from the configured image size.
        """
        img1 = self._prepare_image(image1, "image1")
        img2 = self._prepare_image(image2, "image2")

        if not self.geometry.epipole_defined:
            logger.warning("Epipole undefined for the current pose, disparity is invalid")
            self.cost_volume = None
            self.tableaus = {}
            self.small_disparity = torch.full(
                self.geometry.small_shape,
                INVALID_DISPARITY,
                dtype=torch.uint8,
                device=self.device,
            )
            return self._invalid_disparity()

        p = self.params

        start = time.perf_counter()
        self.cost_volume = build_cost_volume(img1, img2, self.geometry, p)
        t_cost = time.perf_counter()

        self.tableaus = aggregate_costs(
            self.cost_volume, p.lambda_step, p.lambda_jump, self.num_workers
        )
        t_dp = time.perf_counter()

        self.small_disparity = select_disparity(
            self.cost_volume, self.tableaus, self.geometry.sample_valid
        )
        with record_function("upsample_disparity"):
            disparity = upsample_disparity(
                self.small_disparity, p, self.geometry.reconst_valid
            )
        t_end = time.perf_counter()

        logger.debug(
            "Stereo timings: cost %.3f s, aggregation %.3f s, selection %.3f s",
            t_cost - start,
            t_dp - t_cost,
            t_end - t_dp,
        )
        return disparity

    def trace_epipolar_curve(
        self,
        pixel: tuple[int, int],
        image: np.ndarray | torch.Tensor,
        value: int = 0,
    ) -> torch.Tensor:
        """Draw the epipolar curve of a first-image pixel on a copy of ``image``.

        The curve of the reduced-grid cell containing ``pixel`` is drawn for
        ``disp_max`` steps, starting at the at-infinity end.

        Args:
            pixel: Full-resolution pixel (u, v) of the first image.
            image: Second image, shape (H, W), uint8.
            value: Intensity of the drawn pixels.

        Returns:
            Copy of the image with the curve drawn, shape (H, W), uint8.

        Raises:
            ValueError: If the pixel is outside the region of interest.
        """
        img = self._prepare_image(image, "image").to(torch.uint8).clone()
        u, v = pixel
        row, col = self.params.v_small(v), self.params.u_small(u)
        Hs, Ws = self.geometry.small_shape
        if not (0 <= row < Hs and 0 <= col < Ws) or u < self.params.u0 or v < self.params.v0:
            raise ValueError(f"Pixel ({u}, {v}) is outside the region of interest")

        if not self.geometry.cell_valid[row, col]:
            logger.warning("No epipolar curve for pixel (%d, %d)", u, v)
            return img

        curve = self.geometry.curves[row, col].unsqueeze(0)
        pixels, _, _ = trace_curves(curve, self.params.disp_max)
        pixels = pixels[0]
        inside = (
            (pixels[:, 0] >= 0)
            & (pixels[:, 0] < img.shape[1])
            & (pixels[:, 1] >= 0)
            & (pixels[:, 1] < img.shape[0])
        )
        pixels = pixels[inside]
        img[pixels[:, 1], pixels[:, 0]] = value
        return img

    def triangulate(
        self, x1: float, y1: float, x2: float, y2: float
    ) -> tuple[torch.Tensor, bool]:
        """Triangulate one correspondence (x1, y1) <-> (x2, y2).

        Returns:
            point: 3D point in camera 1's frame, shape (3,). NaN if invalid.
            valid: Whether the rays converge in front of both cameras.
        """
        pixels1 = torch.tensor([[x1, y1]], dtype=torch.float64, device=self.device)
        pixels2 = torch.tensor([[x2, y2]], dtype=torch.float64, device=self.device)
        points, valid = triangulate(
            self.camera1, self.camera2, self.transformation, pixels1, pixels2
        )
        return points[0], bool(valid[0])

    def compute_distance(self, disparity: torch.Tensor) -> torch.Tensor:
        """Distance map (H, W) float32 of a disparity image, NaN where invalid."""
        with record_function("compute_distance"):
            return compute_distance(self.geometry, disparity)

    def compute_point_cloud(self, disparity: torch.Tensor) -> torch.Tensor:
        """Points (K, 3) in camera 1's frame for every valid disparity pixel."""
        return compute_point_cloud(self.geometry, disparity)

    def generate_plane(
        self,
        plane_pose: Transformation,
        polygon: torch.Tensor | list | None = None,
    ) -> torch.Tensor:
        """Synthetic distance map of the plane z = 0 of ``plane_pose``."""
        return generate_plane(self.geometry, plane_pose, polygon)

    def __repr__(self) -> str:
        p = self.params
        return (
            f"EnhancedStereo({p.image_width}x{p.image_height}, "
            f"cells={p.small_width}x{p.small_height}, disp_max={p.disp_max}, "
            f"block_size={p.block_size}, device={self.device})"
        )
