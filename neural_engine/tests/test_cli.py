"""Tests for the command-line interface."""

import tempfile
from pathlib import Path

import pytest
import yaml

from ..cli.run import main
from ..core import TensorIO

QUICK = ["--src-shape", "48", "32", "--weight-shape", "32", "16"]


def _args(command, *extra):
    # --log-level belongs to the top-level parser
    return ["--log-level", "WARNING", command] + QUICK + list(extra)


def test_run_quick_mode():
    assert main(_args("run")) == 0
    assert main(_args("run", "--output-dtype", "u8", "--append-op", "gelu_tanh")) == 0
    assert main(_args("run", "--output-dtype", "fp32", "--append-op", "sum", "--iterations", "2")) == 0
    assert main(_args("run", "--src1-perm", "1,0", "--input-dtype", "s8", "--num-workers", "2")) == 0


def test_calibrate_then_static_run():
    """A calibrated range drives a static run."""
    with tempfile.TemporaryDirectory() as tmpdir:
        calibration = str(Path(tmpdir) / "dst.safetensors")
        assert main(_args("calibrate", "--output", calibration)) == 0

        tensors = TensorIO.load(calibration)
        assert set(tensors) == {"dst_min", "dst_scale"}

        assert main(_args("run", "--mode", "static", "--calibration", calibration)) == 0


def test_run_from_config_file():
    config_data = {
        "case": {
            "src_shape": [40, 24],
            "weight_shape": [24, 8],
            "output_dtype": "u8",
            "append_op": "gelu_erf",
            "seed": 3,
        },
        "allocator": {"reuse": True},
        "run": {"mode": "static", "iterations": 2},
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "case.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(config_data, f)

        assert main(["--log-level", "WARNING", "run", "--config", str(config_path)]) == 0


def test_config_file_overrides_and_save():
    """Command-line options override the config file and the resolved config is saved."""
    config_data = {
        "case": {"src_shape": [32, 16], "weight_shape": [16, 8], "seed": 1},
        "engine": {"num_workers": 1},
        "run": {"mode": "dynamic", "iterations": 2},
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "case.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(config_data, f)

        calibration = str(Path(tmpdir) / "dst.safetensors")
        calibrate_args = ["--log-level", "WARNING", "calibrate", "--config", str(config_path)]
        assert main(calibrate_args + ["--output", calibration]) == 0

        saved_path = Path(tmpdir) / "resolved.yaml"
        run_args = ["--log-level", "WARNING", "run", "--config", str(config_path)]
        run_args += ["--iterations", "3", "--num-workers", "2", "--calibration", calibration]
        assert main(run_args + ["--save-config", str(saved_path)]) == 0

        with open(saved_path, "r", encoding="utf-8") as f:
            resolved = yaml.safe_load(f)

    assert resolved["run"]["iterations"] == 3
    assert resolved["run"]["mode"] == "static"
    assert resolved["run"]["calibration"] == calibration
    assert resolved["engine"] == {"matmul": "torch", "num_workers": 2}
    assert resolved["case"]["src_shape"] == [32, 16]


def test_failures_exit_non_zero():
    assert main([]) == 1
    # Quick mode needs both shapes
    assert main(["--log-level", "ERROR", "run", "--src-shape", "4", "4"]) == 1
    # Disagreeing contraction dimension
    assert main(["--log-level", "ERROR", "run", "--src-shape", "4", "4", "--weight-shape", "5", "2"]) == 1
    # Unknown engine
    assert main(_args("run", "--engine", "missing")) == 1
    # fp32 output has no range to calibrate
    with tempfile.TemporaryDirectory() as tmpdir:
        output = str(Path(tmpdir) / "dst.safetensors")
        assert main(_args("calibrate", "--output-dtype", "fp32", "--output", output)) == 1


def test_argument_errors():
    with pytest.raises(SystemExit):
        main(["run"])
    with pytest.raises(SystemExit):
        main(["run", "--src-shape", "4", "4", "--output-dtype", "s32"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
