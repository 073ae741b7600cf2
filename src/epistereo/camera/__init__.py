"""Camera models for generalized stereo geometry."""

from .eucm import EnhancedCamera
from .protocol import CameraModel

__all__ = ["CameraModel", "EnhancedCamera"]
