"""Protocol definition for camera models."""

from typing import Protocol, runtime_checkable

import torch


@runtime_checkable
class CameraModel(Protocol):
    """Protocol for central camera projection models.

    Defines the interface for mapping between 3D points in the camera frame
    and 2D pixel coordinates. Implementations handle different lens models
    (pinhole, fisheye, omnidirectional) while the stereo engine only relies
    on this capability set.

    Both mapping methods are batched (N points/pixels in, N results out) and
    device-agnostic (output tensors are on the same device as the input).
    The engine keeps its own copies obtained through ``clone()``.
    """

    width: int
    height: int

    def project(self, points: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Project 3D points in the camera frame to pixel coordinates.

        Args:
            points: 3D points, shape (N, 3).

        Returns:
            pixels: Pixel coordinates (u, v), shape (N, 2).
            valid: Boolean validity mask, shape (N,). False for points outside
                the model's field of view. Invalid entries in pixels are
                undefined (may be NaN or arbitrary values).
        """
        ...

    def unproject(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Back-project pixel coordinates to unit rays in the camera frame.

        Args:
            pixels: Pixel coordinates (u, v), shape (N, 2).

        Returns:
            rays: Unit ray directions, shape (N, 3).
            valid: Boolean validity mask, shape (N,).
        """
        ...

    def bounds(self) -> tuple[torch.Tensor, torch.Tensor]:
        """Lower and upper bounds of the intrinsic parameters."""
        ...

    def clone(self) -> "CameraModel":
        """Independent copy of this model."""
        ...
