"""Epipolar geometry precomputation for non-rectified stereo."""

import logging
from collections import Counter

import torch
from torch.profiler import record_function

from ..camera.protocol import CameraModel
from ..config import StereoParameters
from ..curves import fit_epipolar_curves, trace_curves
from ..geometry import Transformation

logger = logging.getLogger(__name__)

# below this baseline length (in pose units) the epipole is undefined
MIN_BASELINE = 1e-9


def make_pixel_grid(
    u0: int,
    v0: int,
    u_max: int,
    v_max: int,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Create a grid of pixel coordinates covering [u0, u_max) x [v0, v_max).

    Args:
        u0: First column.
        v0: First row.
        u_max: Column bound (exclusive).
        v_max: Row bound (exclusive).
        device: Device for the output tensor.

    Returns:
        Pixel coordinates (u, v), shape (H, W, 2), float64 with
        H = v_max - v0 and W = u_max - u0.
    """
    v, u = torch.meshgrid(
        torch.arange(v0, v_max, device=device, dtype=torch.float64),
        torch.arange(u0, u_max, device=device, dtype=torch.float64),
        indexing="ij",
    )
    return torch.stack([u, v], dim=-1)


class EpipolarGeometry:
    """Pose-independent and pose-dependent buffers of a camera pair.

    ``compute_reconstructed()`` back-projects the region of interest once.
    Everything derived from the relative pose (rotated rays, epipole,
    at-infinity projections, epipolar curves and their rasterized samples)
    is recomputed by ``set_transformation()``. ``recompute_counts`` records
    how often each stage ran.

    Args:
        camera1: Model of the first camera.
        camera2: Model of the second camera.
        params: Initialized stereo parameters.
        device: Device for all buffers.
    """

    def __init__(
        self,
        camera1: CameraModel,
        camera2: CameraModel,
        params: StereoParameters,
        device: str | torch.device = "cpu",
    ) -> None:
        self.camera1 = camera1
        self.camera2 = camera2
        self.params = params
        self.device = torch.device(device)
        self.recompute_counts: Counter[str] = Counter()

        self.transformation: Transformation | None = None
        self.epipole_defined = False
        self.epipole_visible = False

        # cell centers relative to the ROI origin
        p = params
        self.cell_rows = (
            torch.arange(p.small_height, device=self.device) * p.block_size
            + p.half_block_size
        )
        self.cell_cols = (
            torch.arange(p.small_width, device=self.device) * p.block_size
            + p.half_block_size
        )

        self.compute_reconstructed()

    @property
    def roi_shape(self) -> tuple[int, int]:
        """(rows, cols) of the full-resolution region of interest."""
        return (
            self.params.v_max - self.params.v0,
            self.params.u_max - self.params.u0,
        )

    @property
    def small_shape(self) -> tuple[int, int]:
        """(rows, cols) of the reduced grid."""
        return self.params.small_height, self.params.small_width

    def cell_values(self, roi_buffer: torch.Tensor) -> torch.Tensor:
        """Pick the cell-center entries of a (ROI_H, ROI_W, ...) buffer."""
        return roi_buffer[self.cell_rows][:, self.cell_cols]

    def compute_reconstructed(self) -> None:
        """Back-project every ROI pixel of the first image (pose independent)."""
        with record_function("compute_reconstructed"):
            p = self.params
            pixels = make_pixel_grid(p.u0, p.v0, p.u_max, p.v_max, device=self.device)
            H, W = pixels.shape[:2]

            rays, valid = self.camera1.unproject(pixels.reshape(-1, 2))
            self.reconst = rays.reshape(H, W, 3)
            self.reconst_valid = valid.reshape(H, W)
            self.cell_rays = self.cell_values(self.reconst)
            self.recompute_counts["reconstructed"] += 1

        logger.debug(
            "Back-projected %d ROI pixels, %.1f%% inside the field of view",
            H * W,
            100.0 * self.reconst_valid.float().mean().item(),
        )

    def set_transformation(self, transformation: Transformation) -> None:
        """Set the pose of camera 2 in camera 1's frame.

        Only the pose-dependent buffers are recomputed.
        """
        self.transformation = transformation.to(self.device)
        self.compute_rotated()
        self.compute_epipole()
        self.compute_pinf()
        self.compute_epipolar_curves()
        self.compute_samples()

    def compute_rotated(self) -> None:
        """Rotate the back-projected rays into camera 2's frame."""
        self.reconst_rot = self.transformation.inverse_rotate(self.reconst)
        self.recompute_counts["rotated"] += 1

    def compute_epipole(self) -> None:
        """Project camera 1's center into the second image."""
        t = self.transformation.trans
        baseline = torch.linalg.norm(t).item()
        # camera 1's center expressed in camera 2's frame
        center = self.transformation.inverse_transform(torch.zeros_like(t))

        self.epipole_defined = baseline >= MIN_BASELINE
        if self.epipole_defined:
            self.baseline_dir = center / baseline
            epipole, visible = self.camera2.project(center.unsqueeze(0))
            self.epipole = epipole[0]
            self.epipole_visible = bool(visible[0])
        else:
            logger.warning(
                "Baseline length %.3g is below %.0e: epipole undefined, "
                "disparity is invalid for this pose",
                baseline,
                MIN_BASELINE,
            )
            self.baseline_dir = torch.full_like(t, float("nan"))
            self.epipole = torch.full((2,), float("nan"), dtype=t.dtype, device=t.device)
            self.epipole_visible = False
        self.recompute_counts["epipole"] += 1

    def compute_pinf(self) -> None:
        """Project every rotated ray into the second image as if at infinity."""
        H, W = self.roi_shape
        pinf, valid = self.camera2.project(self.reconst_rot.reshape(-1, 3))
        self.pinf = pinf.reshape(H, W, 2)
        self.pinf_valid = valid.reshape(H, W) & self.reconst_valid
        self.recompute_counts["pinf"] += 1

    def compute_epipolar_curves(self) -> None:
        """Fit one epipolar curve per reduced-grid cell."""
        with record_function("compute_epipolar_curves"):
            Hs, Ws = self.small_shape
            rays = self.cell_values(self.reconst_rot).reshape(-1, 3)
            valid = self.cell_values(self.pinf_valid).reshape(-1)

            if self.epipole_defined:
                span = 2.0 * (self.params.disp_max + self.params.block_size)
                curves, valid = fit_epipolar_curves(
                    rays, valid, self.baseline_dir, self.camera2, span
                )
            else:
                curves = torch.full(
                    (rays.shape[0], 3, 2), float("nan"), dtype=rays.dtype, device=self.device
                )
                valid = torch.zeros_like(valid)

            self.curves = curves.reshape(Hs, Ws, 3, 2)
            self.cell_valid = valid.reshape(Hs, Ws)
            self.recompute_counts["curves"] += 1

        logger.debug(
            "Fitted %d epipolar curves, %d valid",
            Hs * Ws,
            int(self.cell_valid.sum().item()),
        )

    def compute_samples(self) -> None:
        """Rasterize every cell's curve at each disparity hypothesis.

        A sample is valid when its cell is valid, it lies within the fitted
        span of the curve, and the whole matching block around it is inside
        the second image.
        """
        with record_function("compute_samples"):
            p = self.params
            Hs, Ws = self.small_shape

            pixels, s, _ = trace_curves(self.curves.reshape(-1, 3, 2), p.disp_max)
            pixels = pixels.reshape(Hs, Ws, p.disp_max, 2)
            s = s.reshape(Hs, Ws, p.disp_max)

            lo = p.half_block_size
            hi = p.block_size - 1 - p.half_block_size
            u, v = pixels[..., 0], pixels[..., 1]
            inside = (
                (u - lo >= 0)
                & (u + hi < self.camera2.width)
                & (v - lo >= 0)
                & (v + hi < self.camera2.height)
            )
            self.samples = pixels
            self.sample_valid = (
                self.cell_valid.unsqueeze(-1) & (s <= 1.0 + 1e-9) & inside
            )
            self.recompute_counts["samples"] += 1

    def cell_index(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Reduced-grid (row, col) of full-resolution pixels (u, v), shape (N, 2)."""
        p = self.params
        cols = torch.div(pixels[:, 0] - p.u0, p.block_size, rounding_mode="floor")
        rows = torch.div(pixels[:, 1] - p.v0, p.block_size, rounding_mode="floor")
        return rows.long(), cols.long()
