"""Enhanced Unified Camera Model (EUCM) for wide-angle and fisheye lenses."""

import math
from collections.abc import Sequence

import torch

# parameter order: alpha, beta, fu, fv, u0, v0
PARAM_NAMES = ("alpha", "beta", "fu", "fv", "u0", "v0")
PARAM_LOWER = (0.0, 1e-6, 1e-6, 1e-6, -math.inf, -math.inf)
PARAM_UPPER = (1.0, math.inf, math.inf, math.inf, math.inf, math.inf)

_EPS = 1e-9


class EnhancedCamera:
    """Enhanced Unified Camera Model.

    A point X = (x, y, z) is projected as::

        rho = sqrt(beta * (x^2 + y^2) + z^2)
        d = alpha * rho + (1 - alpha) * z
        u = fu * x / d + u0
        v = fv * y / d + v0

    alpha = 0 reduces to the pinhole model; alpha > 0.5 covers fields of view
    beyond 180 degrees. Implements the CameraModel protocol.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.
        params: Intrinsics [alpha, beta, fu, fv, u0, v0].

    Raises:
        ValueError: If the image size is not positive or a parameter is out
            of bounds.
    """

    def __init__(
        self,
        width: int,
        height: int,
        params: torch.Tensor | Sequence[float],
    ) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {width}x{height}")

        params = torch.as_tensor(params, dtype=torch.float64).reshape(-1)
        if params.numel() != len(PARAM_NAMES):
            raise ValueError(
                f"EUCM expects {len(PARAM_NAMES)} parameters {PARAM_NAMES}, "
                f"got {params.numel()}"
            )

        for name, value, lo, hi in zip(
            PARAM_NAMES, params.tolist(), PARAM_LOWER, PARAM_UPPER
        ):
            if not lo <= value <= hi:
                raise ValueError(f"EUCM {name}={value} outside [{lo}, {hi}]")

        self.width = int(width)
        self.height = int(height)
        self.params = params
        self.alpha, self.beta, self.fu, self.fv, self.u0, self.v0 = params.tolist()

        # projection is defined for z > -w * rho
        if self.alpha <= 0.5:
            self.w = self.alpha / (1.0 - self.alpha)
        else:
            self.w = (1.0 - self.alpha) / self.alpha

    def project(self, points: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Project 3D points in the camera frame to pixel coordinates.

        Args:
            points: 3D points, shape (N, 3).

        Returns:
            pixels: Pixel coordinates (u, v), shape (N, 2). NaN where invalid.
            valid: Boolean validity mask, shape (N,).
        """
        x, y, z = points[..., 0], points[..., 1], points[..., 2]
        rho = torch.sqrt(self.beta * (x * x + y * y) + z * z)
        denom = self.alpha * rho + (1.0 - self.alpha) * z

        valid = (denom > _EPS) & (z > -self.w * rho)
        denom = torch.where(valid, denom, torch.ones_like(denom))

        u = self.fu * x / denom + self.u0
        v = self.fv * y / denom + self.v0
        pixels = torch.stack([u, v], dim=-1)
        pixels = torch.where(
            valid.unsqueeze(-1), pixels, torch.full_like(pixels, float("nan"))
        )
        return pixels, valid

    def unproject(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Back-project pixel coordinates to unit rays.

        Args:
            pixels: Pixel coordinates (u, v), shape (N, 2).

        Returns:
            rays: Unit ray directions, shape (N, 3). NaN where invalid.
            valid: Boolean validity mask, shape (N,). False for pixels outside
                the model's field of view.
        """
        mx = (pixels[..., 0] - self.u0) / self.fu
        my = (pixels[..., 1] - self.v0) / self.fv
        r2 = mx * mx + my * my

        radicand = 1.0 - (2.0 * self.alpha - 1.0) * self.beta * r2
        denom = self.alpha * torch.sqrt(radicand.clamp(min=0.0)) + (1.0 - self.alpha)
        valid = (radicand >= 0.0) & (denom > _EPS)
        denom = torch.where(valid, denom, torch.ones_like(denom))

        mz = (1.0 - self.beta * self.alpha**2 * r2) / denom
        rays = torch.stack([mx, my, mz], dim=-1)
        rays = rays / torch.linalg.norm(rays, dim=-1, keepdim=True)
        rays = torch.where(
            valid.unsqueeze(-1), rays, torch.full_like(rays, float("nan"))
        )
        return rays, valid

    def bounds(self) -> tuple[torch.Tensor, torch.Tensor]:
        """Lower and upper bounds of [alpha, beta, fu, fv, u0, v0]."""
        return (
            torch.tensor(PARAM_LOWER, dtype=torch.float64),
            torch.tensor(PARAM_UPPER, dtype=torch.float64),
        )

    def clone(self) -> "EnhancedCamera":
        """Independent copy of this model."""
        return EnhancedCamera(self.width, self.height, self.params.clone())

    def __repr__(self) -> str:
        values = ", ".join(
            f"{name}={value:.4g}" for name, value in zip(PARAM_NAMES, self.params.tolist())
        )
        return f"EnhancedCamera({self.width}x{self.height}, {values})"
