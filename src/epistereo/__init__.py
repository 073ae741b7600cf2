"""Dense stereo along epipolar curves for fisheye and wide-angle cameras."""

from .camera import CameraModel, EnhancedCamera
from .config import (
    INVALID_DISPARITY,
    CameraConfig,
    ConfigurationError,
    ImagePairConfig,
    RuntimeConfig,
    StereoConfig,
    StereoParameters,
)
from .curves import CurveRasterizer, fit_epipolar_curves, trace_curves
from .geometry import Transformation
from .io import (
    load_distance_map,
    load_grayscale,
    load_point_cloud,
    save_disparity_image,
    save_distance_map,
    save_point_cloud,
)
from .pipeline import process_pair, run_pipeline, setup_engine
from .stereo import (
    EnhancedStereo,
    EpipolarGeometry,
    compute_disparity_from_distance,
    triangulate,
    triangulate_rays,
)

__version__ = "0.1.0"

__all__ = [
    "StereoParameters",
    "StereoConfig",
    "CameraConfig",
    "ImagePairConfig",
    "RuntimeConfig",
    "ConfigurationError",
    "INVALID_DISPARITY",
    "CameraModel",
    "EnhancedCamera",
    "Transformation",
    "CurveRasterizer",
    "fit_epipolar_curves",
    "trace_curves",
    "EnhancedStereo",
    "EpipolarGeometry",
    "triangulate_rays",
    "triangulate",
    "compute_disparity_from_distance",
    "load_grayscale",
    "save_disparity_image",
    "save_distance_map",
    "load_distance_map",
    "save_point_cloud",
    "load_point_cloud",
    "setup_engine",
    "process_pair",
    "run_pipeline",
]
