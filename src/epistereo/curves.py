"""Epipolar curve fitting and rasterization."""

import torch

from .camera.protocol import CameraModel

# angular offset used to measure the image-space speed at the at-infinity end
SPEED_PROBE = 1e-3
# times a curve span is halved when its projections fall outside the model
MAX_SPAN_HALVINGS = 4
NEWTON_ITERATIONS = 3

_EPS = 1e-12


def fit_epipolar_curves(
    rays: torch.Tensor,
    ray_valid: torch.Tensor,
    baseline_dir: torch.Tensor,
    camera: CameraModel,
    span_pixels: float,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Fit quadratic epipolar curves in the second image.

    Every ray X (expressed in camera 2's frame) spans, together with the
    direction c toward camera 1's center, the epipolar plane. Rotating X
    toward c along the plane's great circle sweeps the depth hypotheses from
    infinity (theta = 0) to zero depth (theta = angle(X, c), the epipole).
    The projection of the sweep through ``camera`` is approximated by::

        p(s) = c0 + c1 * s + c2 * s^2,    s in [0, 1]

    interpolating the at-infinity projection (s = 0), the projection at the
    end of the angular span (s = 1) and at its middle (s = 0.5). The span is
    chosen to cover about ``span_pixels`` pixels and never passes the epipole.

    Args:
        rays: Unit rays in camera 2's frame, shape (N, 3), float64.
        ray_valid: Validity of each ray, shape (N,).
        baseline_dir: Unit direction of camera 1's center in camera 2's
            frame, shape (3,).
        camera: Model of camera 2.
        span_pixels: Approximate curve length to cover, in pixels.

    Returns:
        coefficients: Curve coefficients [c0, c1, c2], shape (N, 3, 2).
            NaN for invalid curves.
        valid: Boolean mask, shape (N,). False for invalid rays, rays
            parallel to the baseline and curves that cannot be projected.
    """
    X = rays
    c = baseline_dir.to(X.dtype).expand_as(X)

    cos_end = (X * c).sum(dim=-1).clamp(-1.0, 1.0)
    e = c - cos_end.unsqueeze(-1) * X
    sin_end = torch.linalg.norm(e, dim=-1)
    e = e / sin_end.clamp(min=_EPS).unsqueeze(-1)
    theta_end = torch.atan2(sin_end, cos_end)

    valid = ray_valid & (sin_end > 1e-9)

    def direction(theta: torch.Tensor) -> torch.Tensor:
        return torch.cos(theta).unsqueeze(-1) * X + torch.sin(theta).unsqueeze(-1) * e

    p0, valid0 = camera.project(X)
    probe = torch.full_like(theta_end, SPEED_PROBE)
    p_probe, valid_probe = camera.project(direction(probe))
    speed = torch.linalg.norm(p_probe - p0, dim=-1) / SPEED_PROBE
    valid &= valid0 & valid_probe & (speed > 1e-9)

    span = torch.minimum(theta_end, span_pixels / speed.clamp(min=1e-9))
    for _ in range(MAX_SPAN_HALVINGS + 1):
        p_mid, valid_mid = camera.project(direction(span / 2.0))
        p_end, valid_end = camera.project(direction(span))
        projected = valid_mid & valid_end
        failed = valid & ~projected
        if not failed.any():
            break
        span = torch.where(failed, span / 2.0, span)
    valid &= projected

    c0 = p0
    c1 = 4.0 * p_mid - 3.0 * p0 - p_end
    c2 = 2.0 * p0 + 2.0 * p_end - 4.0 * p_mid
    coefficients = torch.stack([c0, c1, c2], dim=1)
    coefficients = torch.where(
        valid[:, None, None], coefficients, torch.full_like(coefficients, float("nan"))
    )
    return coefficients, valid


def evaluate_curves(coefficients: torch.Tensor, s: torch.Tensor) -> torch.Tensor:
    """Evaluate p(s) for curves (N, 3, 2) at parameters (N,) -> (N, 2)."""
    s = s.unsqueeze(-1)
    return coefficients[:, 0] + coefficients[:, 1] * s + coefficients[:, 2] * s * s


class CurveRasterizer:
    """Enumerate the integer pixels of many quadratic curves in lockstep.

    Each ``step()`` moves every curve exactly one pixel along its locally
    dominant axis in the direction of increasing parameter (from the
    at-infinity end toward the epipole); the other coordinate follows the
    curve and is rounded, so consecutive pixels are 8-connected.
    Negative offsets walk backward from the starting point.

    Args:
        coefficients: Curve coefficients [c0, c1, c2], shape (N, 3, 2).
        start: Starting parameter, a float or a tensor of shape (N,).
    """

    def __init__(
        self, coefficients: torch.Tensor, start: float | torch.Tensor = 0.0
    ) -> None:
        self.coefficients = coefficients
        self.valid = torch.isfinite(coefficients).all(dim=2).all(dim=1)

        n = coefficients.shape[0]
        self.param = torch.as_tensor(
            start, dtype=coefficients.dtype, device=coefficients.device
        ).expand(n).clone()
        self._update_pixels()

    def _update_pixels(self) -> None:
        points = evaluate_curves(self.coefficients, self.param)
        points = torch.where(self.valid.unsqueeze(-1), points, torch.zeros_like(points))
        self.pixels = torch.round(points).long()

    def _advance(self, sense: int) -> None:
        a0, a1, a2 = self.coefficients.unbind(dim=1)
        s = self.param

        derivative = a1 + 2.0 * a2 * s.unsqueeze(-1)
        axis = torch.argmax(derivative.abs(), dim=-1, keepdim=True)
        a0 = a0.gather(1, axis).squeeze(1)
        a1 = a1.gather(1, axis).squeeze(1)
        a2 = a2.gather(1, axis).squeeze(1)
        slope = derivative.gather(1, axis).squeeze(1)

        # one pixel along the dominant axis, in the sense of the parameter
        target = a0 + a1 * s + a2 * s * s + sense * torch.sign(slope)
        s_new = s + sense / slope.abs().clamp(min=_EPS)
        for _ in range(NEWTON_ITERATIONS):
            residual = a0 + a1 * s_new + a2 * s_new * s_new - target
            d_residual = a1 + 2.0 * a2 * s_new
            d_residual = torch.where(
                d_residual.abs() > _EPS, d_residual, torch.full_like(d_residual, _EPS)
            )
            s_new = s_new - residual / d_residual

        self.param = torch.where(self.valid, s_new, s)
        self._update_pixels()

    def step(self) -> None:
        """Advance every curve by one pixel."""
        self._advance(1)

    def steps(self, count: int) -> None:
        """Advance by ``count`` pixels (backward when negative)."""
        sense = 1 if count >= 0 else -1
        for _ in range(abs(count)):
            self._advance(sense)


def trace_curves(
    coefficients: torch.Tensor, count: int, offset: int = 0
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Rasterize ``count`` consecutive pixels of every curve.

    Args:
        coefficients: Curve coefficients, shape (N, 3, 2).
        count: Number of pixels per curve.
        offset: Index of the first pixel relative to the curve start.

    Returns:
        pixels: Integer pixel coordinates (u, v), shape (N, count, 2), int64.
        params: Curve parameter of each pixel, shape (N, count).
        valid: Curve validity, shape (N,).
    """
    rasterizer = CurveRasterizer(coefficients)
    rasterizer.steps(offset)

    pixels = []
    params = []
    for i in range(count):
        if i > 0:
            rasterizer.step()
        pixels.append(rasterizer.pixels)
        params.append(rasterizer.param)

    return torch.stack(pixels, dim=1), torch.stack(params, dim=1), rasterizer.valid
