"""Command-line interface for the EpiStereo pipeline."""

import argparse
import logging
import sys
from pathlib import Path

import cv2

from epistereo.config import ImagePairConfig, StereoConfig


def _configure_logging(verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Silence noisy third-party loggers
    for name in ("matplotlib", "PIL", "open3d"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _load_config(config_path: Path) -> StereoConfig:
    """Load a config file or exit with an error message."""
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        return StereoConfig.from_yaml(config_path)
    except Exception as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)


def init_config(config_path: Path, output_dir: str) -> StereoConfig:
    """Write a configuration with all defaults to ``config_path``.

    Args:
        config_path: Path where the config YAML will be saved.
        output_dir: Output directory recorded in the config.

    Returns:
        The generated StereoConfig.
    """
    config = StereoConfig(output_dir=output_dir)
    config.to_yaml(config_path)
    print(f"Config saved to {config_path}")
    print("Edit camera1, camera2, pose and image_pairs before running.")
    return config


def run_command(
    config_path: Path, verbose: bool = False, device: str | None = None
) -> None:
    """Execute the stereo pipeline from a config file.

    Args:
        config_path: Path to the config YAML file.
        verbose: If True, set logging to DEBUG level.
        device: Optional device override (replaces config.runtime.device).
    """
    _configure_logging(verbose)
    config = _load_config(config_path)

    if device is not None:
        try:
            config.runtime.device = device
            config = StereoConfig.model_validate(config.model_dump())
        except ValueError as e:
            print(f"Error: Invalid configuration: {e}", file=sys.stderr)
            sys.exit(1)

    if not config.image_pairs:
        print("Error: No image_pairs in configuration", file=sys.stderr)
        sys.exit(1)

    from epistereo.pipeline import run_pipeline

    run_pipeline(config)


def trace_command(config_path: Path, pixel: tuple[int, int], output: Path, pair: int = 0) -> None:
    """Draw the epipolar curve of a first-image pixel on the second image.

    Args:
        config_path: Path to the config YAML file.
        pixel: Pixel (u, v) of the first image.
        output: Output PNG path.
        pair: Index of the image pair to use.
    """
    _configure_logging()
    config = _load_config(config_path)

    if not 0 <= pair < len(config.image_pairs):
        print(
            f"Error: Pair {pair} out of range (config has "
            f"{len(config.image_pairs)} pairs)",
            file=sys.stderr,
        )
        sys.exit(1)

    from epistereo.io import load_grayscale
    from epistereo.pipeline import setup_engine

    engine = setup_engine(config)
    image2 = load_grayscale(config.image_pairs[pair].image2)
    try:
        traced = engine.trace_epipolar_curve(pixel, image2, value=255)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(output), traced.cpu().numpy())
    print(f"Epipolar curve of pixel {pixel} written to {output}")


def synthetic_command(
    output_dir: Path, distance: float = 2.0, seed: int = 0
) -> StereoConfig:
    """Render a textured-plane stereo pair and a config to process it.

    Writes ``image1.png``, ``image2.png``, ``ground_truth_distance.npz`` and
    ``config.yaml`` (outputs go to ``output_dir/output``).

    Args:
        output_dir: Directory for the generated files.
        distance: Distance of the plane along camera 1's optical axis.
        seed: Texture random seed.

    Returns:
        The generated StereoConfig.
    """
    _configure_logging()

    from epistereo.io import save_distance_map
    from epistereo.pipeline import setup_engine
    from epistereo.synthetic import make_texture, render_plane_pair

    output_dir.mkdir(parents=True, exist_ok=True)
    image1_path = output_dir / "image1.png"
    image2_path = output_dir / "image2.png"

    config = StereoConfig(
        output_dir=str(output_dir / "output"),
        image_pairs=[ImagePairConfig(image1=str(image1_path), image2=str(image2_path))],
    )
    engine = setup_engine(config)

    image1, image2, plane_pose = render_plane_pair(
        engine.camera1,
        engine.camera2,
        engine.transformation,
        distance,
        texture=make_texture(seed=seed),
    )
    cv2.imwrite(str(image1_path), image1)
    cv2.imwrite(str(image2_path), image2)
    save_distance_map(
        engine.generate_plane(plane_pose), output_dir / "ground_truth_distance.npz"
    )

    config.to_yaml(output_dir / "config.yaml")
    print(f"Synthetic pair written to {output_dir}")
    return config


def main() -> None:
    """Main entry point for the EpiStereo CLI."""
    parser = argparse.ArgumentParser(
        prog="epistereo",
        description="Dense stereo along epipolar curves for fisheye and wide-angle cameras.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default config file",
    )
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )
    init_parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory recorded in the config (default: output)",
    )

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run stereo on all image pairs of a config",
    )
    run_parser.add_argument(
        "config",
        type=Path,
        help="Path to config YAML file",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    run_parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Override device (e.g., 'cpu' or 'cuda')",
    )

    # trace subcommand
    trace_parser = subparsers.add_parser(
        "trace",
        help="Draw the epipolar curve of a pixel on the second image",
    )
    trace_parser.add_argument(
        "config",
        type=Path,
        help="Path to config YAML file",
    )
    trace_parser.add_argument(
        "--pixel",
        type=int,
        nargs=2,
        metavar=("U", "V"),
        required=True,
        help="Pixel of the first image",
    )
    trace_parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Output PNG path",
    )
    trace_parser.add_argument(
        "--pair",
        type=int,
        default=0,
        help="Image pair index (default: 0)",
    )

    # synthetic subcommand
    synthetic_parser = subparsers.add_parser(
        "synthetic",
        help="Render a synthetic textured-plane stereo pair",
    )
    synthetic_parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Directory for images and config",
    )
    synthetic_parser.add_argument(
        "--distance",
        type=float,
        default=2.0,
        help="Plane distance along the optical axis (default: 2.0)",
    )
    synthetic_parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Texture random seed (default: 0)",
    )

    args = parser.parse_args()

    if args.command == "init":
        init_config(config_path=args.config, output_dir=args.output_dir)
    elif args.command == "run":
        run_command(
            config_path=args.config,
            verbose=args.verbose,
            device=args.device,
        )
    elif args.command == "trace":
        trace_command(
            config_path=args.config,
            pixel=tuple(args.pixel),
            output=args.output,
            pair=args.pair,
        )
    elif args.command == "synthetic":
        synthetic_command(
            output_dir=args.output_dir,
            distance=args.distance,
            seed=args.seed,
        )
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
