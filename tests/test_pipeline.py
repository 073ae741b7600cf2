"""Tests for config-driven batch processing."""

from pathlib import Path

import cv2
import numpy as np
import pytest

from epistereo.config import CameraConfig, ImagePairConfig, RuntimeConfig, StereoConfig, StereoParameters
from epistereo.io import load_distance_map, load_point_cloud
from epistereo.pipeline import process_pair, run_pipeline, setup_engine


def _write_pair(directory: Path, image1: np.ndarray, image2: np.ndarray, name: str) -> ImagePairConfig:
    path1 = directory / f"{name}_1.png"
    path2 = directory / f"{name}_2.png"
    cv2.imwrite(str(path1), image1)
    cv2.imwrite(str(path2), image2)
    return ImagePairConfig(image1=str(path1), image2=str(path2))


@pytest.fixture
def pinhole_config(tmp_path: Path) -> StereoConfig:
    """Config of the 160x120 pinhole rig with a 0.1 lateral baseline."""
    camera = CameraConfig(alpha=0.0, beta=1.0, fu=100.0, fv=100.0, u0=80.0, v0=60.0, width=160, height=120)
    return StereoConfig(
        output_dir=str(tmp_path / "output"),
        camera1=camera,
        camera2=camera.model_copy(),
        pose=[0.1, 0.0, 0.0, 0.0, 0.0, 0.0],
        stereo=StereoParameters(disp_max=16, block_size=3, u_margin=16),
        runtime=RuntimeConfig(num_workers=1, quiet=True),
    )


def test_setup_engine(pinhole_config):
    """The engine follows the configured cameras and parameters."""
    engine = setup_engine(pinhole_config)
    assert engine.params.image_width == 160
    assert engine.params.small_width == 40
    assert engine.transformation.trans.tolist() == [0.1, 0.0, 0.0]


class TestProcessPair:
    """Tests for process_pair outputs."""

    def test_default_outputs(self, pinhole_config, shifted_pair):
        """Disparity and distance are written; the point cloud is off by default."""
        engine = setup_engine(pinhole_config)
        process_pair(0, *shifted_pair, engine, pinhole_config)

        pair_dir = Path(pinhole_config.output_dir) / "pair_000000"
        disparity = cv2.imread(str(pair_dir / "disparity.png"), cv2.IMREAD_GRAYSCALE)
        assert disparity.shape == (120, 160)
        assert (disparity[3:117, 19:139] == 10).all()
        assert disparity[0, 0] == 255

        distance = load_distance_map(pair_dir / "distance.npz")
        assert distance[60, 80].item() == pytest.approx(1.0, abs=1e-3)
        assert not (pair_dir / "points.ply").exists()
        assert not (pair_dir / "viz").exists()

    def test_point_cloud(self, pinhole_config, shifted_pair):
        """The point cloud holds one point per valid pixel."""
        pinhole_config.runtime.save_point_cloud = True
        pinhole_config.runtime.save_distance = False
        engine = setup_engine(pinhole_config)
        process_pair(2, *shifted_pair, engine, pinhole_config)

        pair_dir = Path(pinhole_config.output_dir) / "pair_000002"
        points = load_point_cloud(pair_dir / "points.ply")
        assert points.shape == (114 * 120, 3)
        np.testing.assert_allclose(points[:, 2], 1.0, atol=1e-4)
        assert not (pair_dir / "distance.npz").exists()

    def test_selected_viz_stages(self, pinhole_config, shifted_pair):
        """Only the selected visualization stages are rendered."""
        pinhole_config.runtime.viz_enabled = True
        pinhole_config.runtime.viz_stages = ["disparity", "curves"]
        engine = setup_engine(pinhole_config)
        process_pair(0, *shifted_pair, engine, pinhole_config)

        viz_dir = Path(pinhole_config.output_dir) / "pair_000000" / "viz"
        assert (viz_dir / "disparity.png").exists()
        assert (viz_dir / "curve.png").exists()
        assert not (viz_dir / "distance.png").exists()


def test_run_pipeline_skips_failed_pair(pinhole_config, shifted_pair, tmp_path, caplog):
    """A pair that cannot be read is logged and the others still run."""
    good = _write_pair(tmp_path, *shifted_pair, "good")
    missing = ImagePairConfig(image1=str(tmp_path / "nope1.png"), image2=str(tmp_path / "nope2.png"))
    pinhole_config.image_pairs = [good, missing, good]

    run_pipeline(pinhole_config)

    output = Path(pinhole_config.output_dir)
    assert (output / "pair_000000" / "disparity.png").exists()
    assert not (output / "pair_000001").exists()
    assert (output / "pair_000002" / "disparity.png").exists()
    assert "Pair 1: processing failed" in caplog.text
