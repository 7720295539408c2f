"""Tests for configuration parser."""

import os
import tempfile
from pathlib import Path

import pytest
import yaml

from ..core import ConfigurationError
from ..core.config_parser import ConfigParser


def _case(**overrides):
    case = {"src_shape": [64, 32], "weight_shape": [32, 16]}
    case.update(overrides)
    return {"case": case}


def test_load_fills_defaults():
    """Optional sections and keys get their defaults."""
    config = ConfigParser().load_from_dict(_case())

    assert config["case"]["input_dtype"] == "u8"
    assert config["case"]["output_dtype"] == "s8"
    assert config["case"]["src1_perm"] == "0,1"
    assert config["engine"]["matmul"] == "torch"
    assert config["engine"]["num_workers"] is None
    assert config["allocator"]["reuse"] is True
    assert config["run"]["mode"] == "dynamic"
    assert config["run"]["iterations"] == 1


def test_load_yaml_file():
    """Configs load from YAML and save back."""
    config_data = _case(output_dtype="u8", append_op="gelu_tanh")
    config_data["run"] = {"mode": "static", "iterations": 3}

    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "case.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(config_data, f)

        parser = ConfigParser(str(config_path))
        config = parser.load()
        assert config["case"]["append_op"] == "gelu_tanh"
        assert config["run"]["iterations"] == 3

        saved_path = Path(tmpdir) / "saved.yaml"
        parser.save(str(saved_path))
        reloaded = ConfigParser().load(str(saved_path))
        assert reloaded == config


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        ConfigParser().load("/nonexistent/config.yaml")


def test_variable_substitution():
    """Test environment variable and config reference substitution."""
    os.environ["TEST_CALIBRATION_PATH"] = "/test/calib.safetensors"

    config_data = _case(output_dtype="u8")
    config_data["run"] = {"mode": "static", "calibration": "${TEST_CALIBRATION_PATH}"}
    config_data["note"] = "output ${config.case.output_dtype}"

    parser = ConfigParser()
    parser.config = config_data
    config = parser._substitute_variables(config_data)

    assert config["run"]["calibration"] == "/test/calib.safetensors"
    assert config["note"] == "output u8"


@pytest.mark.parametrize(
    "config_data",
    [
        {},
        {"engine": {"matmul": "torch"}},
        _case(src_shape=[64]),
        _case(src_shape=[0, 32]),
        _case(input_dtype="fp32"),
        _case(output_dtype="s32"),
        _case(src1_perm="1,1"),
        dict(_case(), run={"mode": "lazy"}),
        dict(_case(), run={"iterations": 0}),
        dict(_case(), allocator={"max_bytes": -1}),
    ],
)
def test_invalid_configs(config_data):
    """Invalid configurations raise ConfigurationError, a ValueError."""
    with pytest.raises(ConfigurationError):
        ConfigParser().load_from_dict(config_data)
    with pytest.raises(ValueError):
        ConfigParser().load_from_dict(config_data)


def test_get_set_merge():
    """Test getting, setting and merging config values."""
    parser = ConfigParser()
    parser.load_from_dict(_case())

    assert parser.get("case.src_shape") == [64, 32]
    assert parser.get("nonexistent.key", "default") == "default"

    parser.set("run.iterations", 5)
    assert parser.config["run"]["iterations"] == 5

    parser.merge({"engine": {"num_workers": 2}})
    assert parser.get("engine.num_workers") == 2
    assert parser.get("engine.matmul") == "torch"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
