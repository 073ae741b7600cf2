"""Rigid transformations parametrized by translation and rotation vector."""

import math
from collections.abc import Sequence

import torch


def _skew(v: torch.Tensor) -> torch.Tensor:
    """Cross-product matrix [v]x, shape (3, 3)."""
    zero = torch.zeros((), dtype=v.dtype, device=v.device)
    return torch.stack(
        [
            torch.stack([zero, -v[2], v[1]]),
            torch.stack([v[2], zero, -v[0]]),
            torch.stack([-v[1], v[0], zero]),
        ]
    )


def rotation_vector_to_matrix(rvec: torch.Tensor) -> torch.Tensor:
    """Convert a rotation vector (axis * angle) to a rotation matrix.

    Args:
        rvec: Rotation vector, shape (3,).

    Returns:
        Rotation matrix, shape (3, 3), same dtype as rvec.
    """
    identity = torch.eye(3, dtype=rvec.dtype, device=rvec.device)
    theta = torch.linalg.norm(rvec)
    if theta < 1e-12:
        # first-order expansion
        return identity + _skew(rvec)
    K = _skew(rvec / theta)
    return identity + torch.sin(theta) * K + (1.0 - torch.cos(theta)) * (K @ K)


def rotation_matrix_to_vector(R: torch.Tensor) -> torch.Tensor:
    """Convert a rotation matrix to a rotation vector (logarithm map).

    Args:
        R: Rotation matrix, shape (3, 3).

    Returns:
        Rotation vector, shape (3,), angle in [0, pi].
    """
    cos_theta = ((torch.trace(R) - 1.0) / 2.0).clamp(-1.0, 1.0)
    theta = torch.arccos(cos_theta)
    vee = torch.stack([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    if theta < 1e-6:
        return vee / 2.0

    if math.pi - theta.item() < 1e-4:
        # sin(theta) ~ 0: recover the axis from R + I = 2 k k^T
        B = (R + torch.eye(3, dtype=R.dtype, device=R.device)) / 2.0
        col = torch.argmax(torch.diagonal(B))
        axis = B[:, col] / torch.sqrt(B[col, col].clamp(min=1e-12))
        axis = axis / torch.linalg.norm(axis)
        # keep the sign consistent with the antisymmetric part when available
        if torch.dot(axis, vee) < 0:
            axis = -axis
        return axis * theta

    return vee * (theta / (2.0 * torch.sin(theta)))


class Transformation:
    """Rigid 3D transformation (pose) with translation and rotation vector.

    Represents the pose of a frame B in a frame A: a point expressed in B maps
    to A as ``X_a = R @ X_b + t``. For a stereo pair the engine uses the pose
    of camera 2 in camera 1's frame, so ``inverse_transform`` moves points
    from camera 1's frame to camera 2's frame.

    Args:
        trans: Translation, shape (3,) or a sequence of 3 floats.
        rot: Rotation vector (axis * angle), shape (3,) or 3 floats.
        dtype: Floating point type of the stored tensors.
        device: Device of the stored tensors.
    """

    def __init__(
        self,
        trans: torch.Tensor | Sequence[float] = (0.0, 0.0, 0.0),
        rot: torch.Tensor | Sequence[float] = (0.0, 0.0, 0.0),
        dtype: torch.dtype = torch.float64,
        device: str | torch.device = "cpu",
    ) -> None:
        self.trans = torch.as_tensor(trans, dtype=dtype, device=device).reshape(3)
        self.rot = torch.as_tensor(rot, dtype=dtype, device=device).reshape(3)
        self._R = rotation_vector_to_matrix(self.rot)

    @classmethod
    def from_params(
        cls, params: Sequence[float], device: str | torch.device = "cpu"
    ) -> "Transformation":
        """Build a transformation from [tx, ty, tz, rx, ry, rz]."""
        if len(params) != 6:
            raise ValueError(f"Expected 6 pose parameters, got {len(params)}")
        return cls(params[:3], params[3:], device=device)

    @classmethod
    def from_matrix(
        cls, R: torch.Tensor, t: torch.Tensor
    ) -> "Transformation":
        """Build a transformation from a rotation matrix and a translation."""
        return cls(t, rotation_matrix_to_vector(R), dtype=R.dtype, device=R.device)

    def to_params(self) -> list[float]:
        """Pose as [tx, ty, tz, rx, ry, rz]."""
        return self.trans.tolist() + self.rot.tolist()

    def to(self, device: str | torch.device) -> "Transformation":
        """Copy of this transformation on another device."""
        return Transformation(self.trans, self.rot, self.trans.dtype, device)

    def rotation_matrix(self) -> torch.Tensor:
        """Rotation matrix, shape (3, 3)."""
        return self._R

    def rotate(self, points: torch.Tensor) -> torch.Tensor:
        """Apply the rotation to points of shape (..., 3)."""
        return points @ self._R.T.to(points.dtype)

    def inverse_rotate(self, points: torch.Tensor) -> torch.Tensor:
        """Apply the inverse rotation to points of shape (..., 3)."""
        return points @ self._R.to(points.dtype)

    def transform(self, points: torch.Tensor) -> torch.Tensor:
        """Map points (..., 3) from frame B to frame A."""
        return self.rotate(points) + self.trans.to(points.dtype)

    def inverse_transform(self, points: torch.Tensor) -> torch.Tensor:
        """Map points (..., 3) from frame A to frame B."""
        return self.inverse_rotate(points - self.trans.to(points.dtype))

    def inverse(self) -> "Transformation":
        """Pose of frame A in frame B."""
        return Transformation(
            -(self._R.T @ self.trans), -self.rot, self.trans.dtype, self.trans.device
        )

    def __mul__(self, other: "Transformation") -> "Transformation":
        """Compose poses: (A<-B) * (B<-C) = (A<-C)."""
        R = self._R @ other._R
        t = self._R @ other.trans + self.trans
        return Transformation.from_matrix(R, t)

    def __repr__(self) -> str:
        t = ", ".join(f"{x:.4g}" for x in self.trans.tolist())
        r = ", ".join(f"{x:.4g}" for x in self.rot.tolist())
        return f"Transformation(trans=[{t}], rot=[{r}])"
