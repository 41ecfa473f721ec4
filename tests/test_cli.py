"""Tests for the command line interface."""

from __future__ import annotations

import csv

import numpy as np
import pytest
from typer.testing import CliRunner

from gait_vision.cli import app
from gait_vision.core import config as config_module
from gait_vision.pipeline.extractors.pose import save_pose_sequence
from gait_vision.pipeline.extractor import GaitDiagnostics
from gait_vision.pipeline.features import GaitFeatures
from gait_vision.report.export import write_feature_csv

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cli(temp_dir, monkeypatch):
    """Run every command from an empty directory with fresh global settings."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.setattr(config_module, "_settings", None)
    for var in ("GAIT_VISION_MODELS_DIR", "GAIT_VISION_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


class TestConfigCommands:
    """Tests for config subcommands."""

    def test_init_and_show(self, temp_dir):
        path = temp_dir / "cfg" / "settings.yaml"

        result = runner.invoke(app, ["config", "init", "--path", str(path)])

        assert result.exit_code == 0
        assert path.exists()

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "extraction:" in result.output
        assert "scoring:" in result.output

    def test_init_refuses_overwrite(self, temp_dir):
        path = temp_dir / "settings.yaml"
        path.write_text("extraction: {}\n")

        result = runner.invoke(app, ["config", "init", "--path", str(path)], input="n\n")

        assert result.exit_code != 0
        assert path.read_text() == "extraction: {}\n"

    def test_init_force(self, temp_dir):
        path = temp_dir / "settings.yaml"
        path.write_text("extraction: {}\n")

        result = runner.invoke(app, ["config", "init", "--path", str(path), "--force"])

        assert result.exit_code == 0
        assert "pipeline:" in path.read_text()


class TestExtractCommand:
    """Tests for feature extraction from saved poses."""

    def test_extract_walking(self, temp_dir, walking_sequence):
        poses = save_pose_sequence(walking_sequence, temp_dir / "walk.json")
        output = temp_dir / "features.csv"

        result = runner.invoke(
            app, ["extract", str(poses), "--no-score", "--output", str(output), "--participant", "P01"]
        )

        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        with open(output, newline="") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["participant_id"] == "P01"
        assert rows[0]["video_name"] == "walk.json"
        assert rows[0]["quality_flag"] == "OK"

    def test_extract_missing_file(self, temp_dir):
        result = runner.invoke(app, ["extract", str(temp_dir / "missing.json")])
        assert result.exit_code == 1


class TestAnalyzeCommand:
    """Tests for the analyze command."""

    def test_missing_video(self, temp_dir):
        result = runner.invoke(app, ["analyze", str(temp_dir / "missing.mp4")])

        assert result.exit_code == 1
        assert "Video not found" in result.output


class TestModelCommands:
    """Tests for model subcommands."""

    def test_list(self, models_dir):
        result = runner.invoke(app, ["models", "list", "--dir", str(models_dir)])

        assert result.exit_code == 0
        assert result.output.count("loaded") == 3

    def test_list_empty_dir(self, temp_dir):
        result = runner.invoke(app, ["models", "list", "--dir", str(temp_dir)])

        assert result.exit_code == 0
        assert "loaded" not in result.output

    def test_fit(self, temp_dir):
        table = temp_dir / "features.csv"
        rng = np.random.default_rng(3)
        diag = GaitDiagnostics(
            video_id="v",
            fps_detected=30.0,
            duration_s=5.0,
            num_frames_total=150,
            num_frames_valid=150,
            valid_frame_rate=1.0,
        )
        for i in range(6):
            features = GaitFeatures.from_array(rng.normal(1.0, 0.2, size=16))
            write_feature_csv(table, diag, features, None, f"P{i}", "v.mp4", append=True)

        out_dir = temp_dir / "models"
        result = runner.invoke(app, ["models", "fit", str(table), "--output-dir", str(out_dir)])

        assert result.exit_code == 0, result.output
        assert (out_dir / "AE-4D-normal.json").exists()
        assert (out_dir / "PCA-4.json").exists()
        assert not (out_dir / "Ridge.json").exists()

    def test_fit_missing_table(self, temp_dir):
        result = runner.invoke(app, ["models", "fit", str(temp_dir / "none.csv")])
        assert result.exit_code == 1
