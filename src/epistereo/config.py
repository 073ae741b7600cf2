"""Configuration management for EpiStereo."""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Disparity value reserved for invalid / unmatched pixels
INVALID_DISPARITY = 255

VALID_VIZ_STAGES = ["disparity", "distance", "curves"]


class ConfigurationError(ValueError):
    """Raised when stereo parameters are used in an inconsistent state."""


def _derived_field(name: str, doc: str) -> property:
    def getter(self: "StereoParameters") -> int:
        if self._derived is None:
            raise ConfigurationError(
                f"StereoParameters.{name} is not available: call initialize() "
                "after configuring or modifying the parameters"
            )
        return self._derived[name]

    return property(getter, doc=doc)


class StereoParameters(BaseModel):
    """Configuration of the generalized block-matching stereo.

    Base fields are set by the user. Derived fields (ROI bounds in full
    resolution and the reduced-grid size) become readable only after
    ``initialize()``; assigning any base field invalidates them again.

    Attributes:
        disp_max: Number of disparity hypotheses (steps along the epipolar curve).
        block_size: Matching window size and downsampling factor.
        u_margin: Horizontal offset of the region of interest.
        v_margin: Vertical offset of the region of interest.
        width: Width of the region of interest (-1 = up to the image border).
        height: Height of the region of interest (-1 = up to the image border).
        lambda_step: Smoothness penalty for a one-step disparity change.
        lambda_jump: Smoothness penalty for larger disparity changes.
        image_width: Full image width in pixels.
        image_height: Full image height in pixels.
        cost_function: Block matching cost ("sad" or "ncc").
    """

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    disp_max: int = 48
    block_size: int = 3
    u_margin: int = 0
    v_margin: int = 0
    width: int = -1
    height: int = -1
    lambda_step: int = 5
    lambda_jump: int = 32
    image_width: int = 0
    image_height: int = 0
    cost_function: Literal["sad", "ncc"] = "sad"

    _derived: dict[str, int] | None = None

    @field_validator("disp_max")
    @classmethod
    def validate_disp_max(cls, v: int) -> int:
        """Validate that the disparity range is positive and leaves room for the sentinel."""
        if v <= 0 or v >= INVALID_DISPARITY:
            raise ValueError(
                f"disp_max must be in [1, {INVALID_DISPARITY - 1}], got {v}"
            )
        return v

    @field_validator("block_size")
    @classmethod
    def validate_block_size(cls, v: int) -> int:
        """Validate that block_size is positive."""
        if v <= 0:
            raise ValueError(f"block_size must be positive, got {v}")
        return v

    @field_validator("u_margin", "v_margin", "lambda_step", "lambda_jump")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate that margins and penalties are non-negative."""
        if v < 0:
            raise ValueError(f"value must be non-negative, got {v}")
        return v

    @field_validator("image_width", "image_height")
    @classmethod
    def validate_image_size(cls, v: int) -> int:
        """Validate that the image size is not negative (0 = not set yet)."""
        if v < 0:
            raise ValueError(f"image size must be non-negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_penalties(self) -> "StereoParameters":
        """The jump penalty must not be cheaper than a single step."""
        if self.lambda_jump < self.lambda_step:
            raise ValueError(
                f"lambda_jump ({self.lambda_jump}) must be >= "
                f"lambda_step ({self.lambda_step})"
            )
        return self

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "StereoParameters":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in StereoParameters (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in type(self).model_fields:
            super().__setattr__(name, value)
            return

        previous = self.__dict__[name]
        try:
            super().__setattr__(name, value)
        except ValidationError:
            # a failing model validator runs after the new value is stored
            self.__dict__[name] = previous
            raise
        self._derived = None

    @property
    def initialized(self) -> bool:
        """Whether the derived fields are consistent with the base fields."""
        return self._derived is not None

    def initialize(self) -> "StereoParameters":
        """Compute the derived fields from the base fields.

        Must be called before use and again after any base field changes.

        Returns:
            Self for method chaining.

        Raises:
            ConfigurationError: If the image size is not set, the jump penalty
                is below the step penalty, or the region of interest holds no
                complete block.
        """
        if self.lambda_jump < self.lambda_step:
            raise ConfigurationError(
                f"lambda_jump ({self.lambda_jump}) must be >= "
                f"lambda_step ({self.lambda_step})"
            )
        if self.image_width <= 0 or self.image_height <= 0:
            raise ConfigurationError(
                "image_width and image_height must be set before initialize(), "
                f"got {self.image_width}x{self.image_height}"
            )

        u0 = self.u_margin + self.block_size
        v0 = self.v_margin + self.block_size

        if self.width > 0:
            u_max = min(u0 + self.width, self.image_width - self.block_size)
        else:
            u_max = self.image_width - self.u_margin - self.block_size

        if self.height > 0:
            v_max = min(v0 + self.height, self.image_height - self.block_size)
        else:
            v_max = self.image_height - self.v_margin - self.block_size

        small_width = (u_max - u0) // self.block_size
        small_height = (v_max - v0) // self.block_size
        if small_width <= 0 or small_height <= 0:
            raise ConfigurationError(
                f"Region of interest [{u0}, {u_max}) x [{v0}, {v_max}) holds no "
                f"complete {self.block_size}x{self.block_size} block"
            )

        self._derived = {
            "u0": u0,
            "v0": v0,
            "u_max": u_max,
            "v_max": v_max,
            "small_width": small_width,
            "small_height": small_height,
            "half_block_size": self.block_size // 2,
        }
        return self

    u0 = _derived_field("u0", "First ROI column in full resolution.")
    v0 = _derived_field("v0", "First ROI row in full resolution.")
    u_max = _derived_field("u_max", "ROI column bound (exclusive).")
    v_max = _derived_field("v_max", "ROI row bound (exclusive).")
    small_width = _derived_field("small_width", "Reduced grid width.")
    small_height = _derived_field("small_height", "Reduced grid height.")
    half_block_size = _derived_field("half_block_size", "block_size // 2.")

    # image to reduced grid
    def u_small(self, u: int) -> int:
        return (u - self.u0) // self.block_size

    def v_small(self, v: int) -> int:
        return (v - self.v0) // self.block_size

    # reduced grid to image (cell centers)
    def u_big(self, u: int) -> int:
        return u * self.block_size + self.half_block_size + self.u0

    def v_big(self, v: int) -> int:
        return v * self.block_size + self.half_block_size + self.v0


class CameraConfig(BaseModel):
    """Enhanced Unified Camera Model intrinsics.

    Attributes:
        alpha: EUCM alpha in [0, 1] (0 = pinhole).
        beta: EUCM beta, positive.
        fu: Horizontal focal length (pixels).
        fv: Vertical focal length (pixels).
        u0: Principal point column (pixels).
        v0: Principal point row (pixels).
        width: Image width (pixels).
        height: Image height (pixels).
    """

    model_config = ConfigDict(extra="allow")

    alpha: float = 0.6
    beta: float = 1.0
    fu: float = 250.0
    fv: float = 250.0
    u0: float = 320.0
    v0: float = 240.0
    width: int = 640
    height: int = 480

    @field_validator("alpha")
    @classmethod
    def validate_alpha(cls, v: float) -> float:
        """Validate that alpha is in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"alpha must be in [0, 1], got {v}")
        return v

    @field_validator("beta", "fu", "fv")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate that beta and focal lengths are positive."""
        if v <= 0:
            raise ValueError(f"value must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "CameraConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in CameraConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    def to_params(self) -> list[float]:
        """Intrinsics as [alpha, beta, fu, fv, u0, v0]."""
        return [self.alpha, self.beta, self.fu, self.fv, self.u0, self.v0]


class ImagePairConfig(BaseModel):
    """Paths of one stereo image pair.

    Attributes:
        image1: Image taken by the first camera.
        image2: Image taken by the second camera.
    """

    image1: str
    image2: str


class RuntimeConfig(BaseModel):
    """Configuration for runtime settings (device + outputs + visualization).

    Attributes:
        device: PyTorch device string.
        num_workers: Worker threads for the four DP passes (1 = sequential).
        save_distance: Save the triangulated distance map (.npz).
        save_point_cloud: Save the triangulated point cloud (.ply).
        viz_enabled: Master switch for all visualization.
        viz_stages: List of visualization stages to run (empty = all).
        quiet: Suppress progress output.
    """

    model_config = ConfigDict(extra="allow")

    device: Literal["cpu", "cuda"] = "cpu"
    num_workers: int = 4
    save_distance: bool = True
    save_point_cloud: bool = False
    viz_enabled: bool = False
    viz_stages: list[str] = Field(default_factory=list)
    quiet: bool = False

    @field_validator("num_workers")
    @classmethod
    def validate_num_workers(cls, v: int) -> int:
        """Validate that num_workers is positive."""
        if v < 1:
            raise ValueError(f"num_workers must be >= 1, got {v}")
        return v

    @field_validator("viz_stages")
    @classmethod
    def validate_viz_stages(cls, v: list[str]) -> list[str]:
        """Validate that all viz_stages are valid."""
        for stage in v:
            if stage not in VALID_VIZ_STAGES:
                raise ValueError(
                    f"Invalid visualization stage: {stage!r}. "
                    f"Valid stages: {VALID_VIZ_STAGES}"
                )
        return v

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "RuntimeConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in RuntimeConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class StereoConfig(BaseModel):
    """Top-level configuration for the EpiStereo pipeline.

    Attributes:
        output_dir: Root output directory.
        image_pairs: Image pairs to process, in order.
        camera1: Intrinsics of the first camera.
        camera2: Intrinsics of the second camera.
        pose: Pose of camera 2 in camera 1's frame as
            [tx, ty, tz, rx, ry, rz] (translation + rotation vector).
        stereo: Stereo matching parameters.
        runtime: Runtime configuration.
    """

    model_config = ConfigDict(extra="allow")

    output_dir: str = ""
    image_pairs: list[ImagePairConfig] = Field(default_factory=list)
    camera1: CameraConfig = Field(default_factory=CameraConfig)
    camera2: CameraConfig = Field(default_factory=CameraConfig)
    pose: list[float] = Field(default_factory=lambda: [0.1, 0.0, 0.0, 0.0, 0.0, 0.0])
    stereo: StereoParameters = Field(default_factory=StereoParameters)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @field_validator("pose")
    @classmethod
    def validate_pose(cls, v: list[float]) -> list[float]:
        """Validate that the pose has six parameters."""
        if len(v) != 6:
            raise ValueError(f"pose must have 6 values [t, rotation vector], got {len(v)}")
        return v

    @model_validator(mode="after")
    def check_image_sizes(self) -> "StereoConfig":
        """Fill the stereo image size from the cameras and check consistency."""
        if (self.camera1.width, self.camera1.height) != (
            self.camera2.width,
            self.camera2.height,
        ):
            raise ValueError(
                "camera1 and camera2 must have the same image size, got "
                f"{self.camera1.width}x{self.camera1.height} and "
                f"{self.camera2.width}x{self.camera2.height}"
            )

        if self.stereo.image_width == 0 and self.stereo.image_height == 0:
            logger.info(
                "Using camera image size %dx%d for stereo parameters",
                self.camera1.width,
                self.camera1.height,
            )
            stereo = self.stereo.model_copy(deep=True)
            stereo.image_width = self.camera1.width
            stereo.image_height = self.camera1.height
            self.stereo = stereo
        elif (self.stereo.image_width, self.stereo.image_height) != (
            self.camera1.width,
            self.camera1.height,
        ):
            raise ValueError(
                "stereo image size "
                f"{self.stereo.image_width}x{self.stereo.image_height} does not "
                f"match the camera image size {self.camera1.width}x{self.camera1.height}"
            )

        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in StereoConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "StereoConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        """Log INFO messages about sections using defaults.

        Args:
            data: Configuration dictionary.
        """
        for section in ["camera1", "camera2", "pose", "stereo", "runtime"]:
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        loc = err["loc"]
        path_parts = []
        for part in loc:
            if isinstance(part, int) and path_parts:
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        msg = err["msg"]
        lines.append(f"  {path}: {msg}")

    return "\n".join(lines)
