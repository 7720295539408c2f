"""
Configuration parser for operator runs.

Supports YAML configuration files with:
- Variable substitution
- Defaults for optional sections
- Validation
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from .conf import DType
from .errors import ConfigurationError

VALID_INPUT_DTYPES = [DType.U8, DType.S8]
VALID_OUTPUT_DTYPES = [DType.FP32, DType.S8, DType.U8]
VALID_MODES = ["static", "dynamic"]
VALID_PERMS = ["0,1", "1,0"]


class ConfigParser:
    """Parse and validate run configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize parser.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config: Dict[str, Any] = {}

    def load(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file

        Returns:
            Parsed configuration dictionary
        """
        if config_path:
            self.config_path = Path(config_path)

        if not self.config_path or not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            self.config = yaml.safe_load(f)

        self.config = self._substitute_variables(self.config)
        self.validate()

        return self.config

    def load_from_dict(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Load configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            Validated configuration
        """
        self.config = config_dict
        self.config = self._substitute_variables(self.config)
        self.validate()
        return self.config

    def _substitute_variables(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR} with environment variables or config values.
        """
        if isinstance(config, dict):
            return {k: self._substitute_variables(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_variables(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_string(config)
        else:
            return config

    def _substitute_string(self, value: str) -> str:
        """
        Substitute variables in string.

        Supports:
        - ${ENV_VAR}: Environment variable
        - ${config.path.to.value}: Config value reference
        """
        pattern = r"\$\{([^}]+)\}"

        def replacer(match):
            var_name = match.group(1)

            if var_name in os.environ:
                return os.environ[var_name]

            if var_name.startswith("config."):
                path = var_name[7:].split(".")
                try:
                    result = self.config
                    for key in path:
                        result = result[key]
                    return str(result)
                except (KeyError, TypeError):
                    logger.warning(f"Config reference not found: {var_name}")
                    return match.group(0)

            logger.warning(f"Variable not found: {var_name}")
            return match.group(0)

        return re.sub(pattern, replacer, value)

    def validate(self) -> bool:
        """
        Validate configuration structure and fill in defaults.

        Returns:
            True if valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not self.config:
            raise ConfigurationError("Empty configuration")

        if "case" not in self.config:
            raise ConfigurationError("Missing required key: case")

        self._validate_case()
        self._validate_engine()
        self._validate_allocator()
        self._validate_run()

        logger.info("Configuration validation passed")
        return True

    def _validate_case(self):
        """Validate operand shapes and dtypes."""
        case = self.config["case"]

        for key in ("src_shape", "weight_shape"):
            if key not in case:
                raise ConfigurationError(f"case.{key} is required")
            shape = case[key]
            if not isinstance(shape, (list, tuple)) or len(shape) != 2:
                raise ConfigurationError(f"case.{key} must be a 2D shape, got {shape}")
            if any(int(d) <= 0 for d in shape):
                raise ConfigurationError(f"case.{key} must be positive, got {shape}")

        case.setdefault("input_dtype", DType.U8)
        case.setdefault("output_dtype", DType.S8)
        case.setdefault("append_op", "")
        case.setdefault("src1_perm", "0,1")
        case.setdefault("seed", 0)

        if case["input_dtype"] not in VALID_INPUT_DTYPES:
            raise ConfigurationError(
                f"Invalid case.input_dtype: {case['input_dtype']}. "
                f"Valid: {VALID_INPUT_DTYPES}"
            )
        if case["output_dtype"] not in VALID_OUTPUT_DTYPES:
            raise ConfigurationError(
                f"Invalid case.output_dtype: {case['output_dtype']}. "
                f"Valid: {VALID_OUTPUT_DTYPES}"
            )
        if case["src1_perm"] not in VALID_PERMS:
            raise ConfigurationError(
                f"Invalid case.src1_perm: {case['src1_perm']}. Valid: {VALID_PERMS}"
            )

    def _validate_engine(self):
        engine = self.config.setdefault("engine", {})
        engine.setdefault("matmul", "torch")
        engine.setdefault("num_workers", None)

    def _validate_allocator(self):
        allocator = self.config.setdefault("allocator", {})
        allocator.setdefault("max_bytes", None)
        allocator.setdefault("reuse", True)
        if allocator["max_bytes"] is not None and int(allocator["max_bytes"]) <= 0:
            raise ConfigurationError("allocator.max_bytes must be positive")

    def _validate_run(self):
        run = self.config.setdefault("run", {})
        run.setdefault("mode", "dynamic")
        run.setdefault("iterations", 1)
        run.setdefault("calibration", None)

        if run["mode"] not in VALID_MODES:
            raise ConfigurationError(
                f"Invalid run.mode: {run['mode']}. Valid: {VALID_MODES}"
            )
        if int(run["iterations"]) < 1:
            raise ConfigurationError("run.iterations must be at least 1")

        # Calibration only feeds static output ranges
        if run["calibration"] and run["mode"] != "static":
            logger.warning("run.calibration is ignored in dynamic mode")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get config value by dot-separated path.

        Args:
            key_path: Dot-separated key path (e.g., "case.output_dtype")
            default: Default value if not found

        Returns:
            Config value or default
        """
        keys = key_path.split(".")
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any):
        """
        Set config value by dot-separated path.
        """
        keys = key_path.split(".")
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def merge(self, other_config: Dict[str, Any]):
        """
        Merge another configuration into this one.
        """
        self.config = self._deep_merge(self.config, other_config)

    @staticmethod
    def _deep_merge(base: Dict, update: Dict) -> Dict:
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigParser._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self, output_path: str):
        """
        Save configuration to file.

        Args:
            output_path: Path to save config
        """
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.dump(self.config, f, default_flow_style=False, allow_unicode=True)

        logger.info(f"Configuration saved to: {output_path}")

    def __repr__(self) -> str:
        return (
            f"ConfigParser(output_dtype={self.get('case.output_dtype')}, "
            f"mode={self.get('run.mode')})"
        )
