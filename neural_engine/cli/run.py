"""
Main CLI entry point for running and calibrating the inner-product operator.

Supports both YAML config and command-line arguments.
"""

import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from tqdm import tqdm

from ..core.allocator import MemoryAllocator
from ..core.conf import DType
from ..core.config_parser import (
    VALID_INPUT_DTYPES,
    VALID_MODES,
    VALID_OUTPUT_DTYPES,
    VALID_PERMS,
    ConfigParser,
)
from ..core.errors import ConfigurationError
from ..core.registry import MATMUL_ENGINE_REGISTRY, OPERATOR_REGISTRY
from ..core.tensor_io import TensorIO
from ..ops.template import Operator
from ..quantization.ranges import Scale
from ..utils.case_builder import InnerProductCase, build_case
from ..utils.compare import compare_data, max_abs_error

LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"]


@dataclass
class RunResult:
    matched: bool
    max_error: float
    seconds_per_iteration: float
    iterations: int


class OperatorRunner:
    """Builds a case from a run configuration and drives the operator through it."""

    def __init__(self, config: Dict):
        """
        Initialize runner.

        Args:
            config: Validated configuration dictionary
        """
        self.config = config
        allocator_config = config["allocator"]
        self.allocator = MemoryAllocator(
            max_bytes=allocator_config["max_bytes"],
            reuse=allocator_config["reuse"],
        )
        self._init_engine()

    def _init_engine(self):
        engine_config = self.config["engine"]
        name = engine_config["matmul"]
        if name not in MATMUL_ENGINE_REGISTRY:
            raise ConfigurationError(
                f"Unsupported matmul engine: {name}. "
                f"Available: {MATMUL_ENGINE_REGISTRY.list()}"
            )
        self.engine = MATMUL_ENGINE_REGISTRY.get(name)()
        self.num_workers = engine_config["num_workers"]
        logger.info(f"Initialized engine: {self.engine}")

    def _load_calibration(self) -> Optional[Scale]:
        path = self.config["run"]["calibration"]
        if not path or self.config["run"]["mode"] != "static":
            return None
        tensors = TensorIO.load(path, self.allocator)
        for key in ("dst_min", "dst_scale"):
            if key not in tensors:
                raise ConfigurationError(f"Calibration file {path} has no {key}")
        return Scale.from_tensors(
            tensors["dst_min"], tensors["dst_scale"], self.config["case"]["output_dtype"]
        )

    def build(self, mode: Optional[str] = None, static_scale: Optional[Scale] = None) -> InnerProductCase:
        case_config = self.config["case"]
        return build_case(
            src_shape=case_config["src_shape"],
            weight_shape=case_config["weight_shape"],
            input_dtype=case_config["input_dtype"],
            output_dtype=case_config["output_dtype"],
            append_op=case_config["append_op"],
            mode=mode or self.config["run"]["mode"],
            src1_perm=case_config["src1_perm"],
            seed=int(case_config["seed"]),
            allocator=self.allocator,
            engine=self.engine,
            num_workers=self.num_workers,
            static_scale=static_scale,
        )

    def _create_operator(self, case: InnerProductCase) -> Operator:
        operator_class = OPERATOR_REGISTRY.get(case.conf.type)
        return operator_class(
            case.conf,
            allocator=self.allocator,
            engine=self.engine,
            num_workers=self.num_workers,
        )

    def run(self) -> RunResult:
        """
        Execute the configured case and compare against its reference.

        Returns:
            RunResult
        """
        iterations = int(self.config["run"]["iterations"])
        case = self.build(static_scale=self._load_calibration())
        operator = self._create_operator(case)

        logger.info(f"[Step 1/3] Preparing {operator}")
        operator.prepare(case.inputs, case.outputs)
        operator.reshape(case.inputs, case.outputs)

        logger.info(f"[Step 2/3] Running {iterations} iteration(s)")
        start = time.perf_counter()
        for _ in tqdm(range(iterations), desc="forward", leave=False):
            operator.forward(case.inputs, case.outputs)
        elapsed = (time.perf_counter() - start) / iterations

        logger.info("[Step 3/3] Comparing against reference")
        dst = case.outputs[0]
        matched = compare_data(dst, case.expected, case.tolerance)
        result = RunResult(
            matched=matched,
            max_error=max_abs_error(dst, case.expected),
            seconds_per_iteration=elapsed,
            iterations=iterations,
        )
        operator.release()

        logger.info(
            f"{'MATCHED' if matched else 'MISMATCHED'}: max error {result.max_error:.6g} "
            f"(tolerance {case.tolerance}), {elapsed * 1000:.3f} ms/iteration"
        )
        return result

    def calibrate(self, output_file: str) -> Path:
        """
        Run once in dynamic mode and save the emitted output range.

        Returns:
            Path of the saved calibration file
        """
        if self.config["case"]["output_dtype"] == DType.FP32:
            raise ConfigurationError("Calibration needs an integer output_dtype")

        case = self.build(mode="dynamic")
        operator = self._create_operator(case)
        operator.run(case.inputs, case.outputs)
        dst_min, dst_scale = case.outputs[1], case.outputs[2]
        logger.info(
            f"Calibrated output range: min={dst_min.data().item():.6g}, "
            f"scale={dst_scale.data().item():.6g}"
        )
        saved = TensorIO.save({"dst_min": dst_min, "dst_scale": dst_scale}, output_file)
        operator.release()
        return saved

    def close(self):
        self.allocator.close()


def build_config_from_args(args: argparse.Namespace) -> Dict:
    """
    Build configuration from command-line arguments.

    Args:
        args: Parsed command-line arguments

    Returns:
        Configuration dictionary
    """
    config = {
        "case": {
            "src_shape": args.src_shape,
            "weight_shape": args.weight_shape,
            "input_dtype": args.input_dtype,
            "output_dtype": args.output_dtype,
            "append_op": args.append_op,
            "src1_perm": args.src1_perm,
            "seed": args.seed,
        },
        "engine": {
            "matmul": args.engine or "torch",
            "num_workers": args.num_workers,
        },
        "run": {
            "mode": args.mode,
            "iterations": args.iterations or 1,
        },
    }
    if getattr(args, "calibration", None):
        config["run"]["calibration"] = args.calibration
    return config


def build_overrides_from_args(args: argparse.Namespace) -> Dict:
    """
    Collect command-line values that override a config file.

    Only options given explicitly are returned.
    """
    overrides: Dict = {}
    if args.engine is not None:
        overrides.setdefault("engine", {})["matmul"] = args.engine
    if args.num_workers is not None:
        overrides.setdefault("engine", {})["num_workers"] = args.num_workers
    if args.iterations is not None:
        overrides.setdefault("run", {})["iterations"] = args.iterations
    return overrides


def _add_case_arguments(parser: argparse.ArgumentParser):
    # Config file OR command-line args
    config_group = parser.add_mutually_exclusive_group(required=True)
    config_group.add_argument(
        "--config",
        type=str,
        help="Path to YAML configuration file",
    )
    config_group.add_argument(
        "--src-shape",
        type=int,
        nargs=2,
        metavar=("M", "K"),
        help="Activation shape (for quick mode)",
    )
    parser.add_argument(
        "--weight-shape",
        type=int,
        nargs=2,
        metavar=("K", "N"),
        help="Logical weight shape (required in quick mode)",
    )
    parser.add_argument(
        "--input-dtype",
        type=str,
        choices=VALID_INPUT_DTYPES,
        default=DType.U8,
        help="Activation dtype (default: u8)",
    )
    parser.add_argument(
        "--output-dtype",
        type=str,
        choices=VALID_OUTPUT_DTYPES,
        default=DType.S8,
        help="Output dtype (default: s8)",
    )
    parser.add_argument(
        "--append-op",
        type=str,
        default="",
        help="Fused epilogue: sum, gelu_tanh or gelu_erf (default: none)",
    )
    parser.add_argument(
        "--src1-perm",
        type=str,
        choices=VALID_PERMS,
        default="0,1",
        help="Weight storage order (default: 0,1)",
    )
    parser.add_argument("--seed", type=int, default=0, help="Operand seed (default: 0)")
    parser.add_argument(
        "--mode",
        type=str,
        choices=VALID_MODES,
        default="dynamic",
        help="Output range mode (default: dynamic)",
    )
    parser.add_argument(
        "--engine",
        type=str,
        default=None,
        help="Matmul engine (default: torch, or the config file value)",
    )
    parser.add_argument(
        "--num-workers",
        type=int,
        default=None,
        help="Worker pool size (default: NEURAL_ENGINE_NUM_WORKERS or CPU count)",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Forward iterations (default: 1, or the config file value)",
    )
    parser.add_argument(
        "--save-config",
        type=str,
        help="Write the resolved configuration to this YAML file",
    )


def _load_config(args: argparse.Namespace) -> Dict:
    config_parser = ConfigParser()
    if args.config:
        config_parser.load(args.config)
        overrides = build_overrides_from_args(args)
        if overrides:
            logger.info(f"Applying command-line overrides: {overrides}")
            config_parser.merge(overrides)
        if getattr(args, "calibration", None):
            # A calibration file only feeds static runs
            config_parser.set("run.mode", "static")
            config_parser.set("run.calibration", args.calibration)
        config_parser.validate()
    else:
        if not args.weight_shape:
            raise ConfigurationError("--weight-shape is required in quick mode")
        config_parser.load_from_dict(build_config_from_args(args))

    if args.save_config:
        config_parser.save(args.save_config)
    return config_parser.config


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Neural Engine - run the int8 inner-product operator against a float reference",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Using config file
  neural-engine run --config configs/u8s8_dynamic.yaml

  # Config file with command-line overrides, saving the resolved config
  neural-engine run --config configs/u8s8_dynamic.yaml --iterations 10 \\
    --save-config resolved.yaml

  # Quick mode from command line
  neural-engine run --src-shape 3840 256 --weight-shape 256 1024 \\
    --output-dtype u8 --append-op gelu_tanh

  # Static mode with a saved output range
  neural-engine calibrate --src-shape 3840 1024 --weight-shape 1024 256 \\
    --output calib/dst.safetensors
  neural-engine run --src-shape 3840 1024 --weight-shape 1024 256 \\
    --mode static --calibration calib/dst.safetensors
        """,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=LOG_LEVELS,
        default="INFO",
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run the operator and compare")
    _add_case_arguments(run_parser)
    run_parser.add_argument(
        "--calibration",
        type=str,
        help="Safetensors file with dst_min/dst_scale for static mode",
    )

    calibrate_parser = subparsers.add_parser(
        "calibrate", help="Save a dynamic output range for static runs"
    )
    _add_case_arguments(calibrate_parser)
    calibrate_parser.add_argument(
        "--output",
        type=str,
        required=True,
        help="Destination safetensors file",
    )

    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = _load_config(args)
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        return 1

    runner = None
    try:
        runner = OperatorRunner(config)
        if args.command == "run":
            result = runner.run()
            return 0 if result.matched else 1
        saved = runner.calibrate(args.output)
        logger.info(f"Calibration saved to: {saved}")
        return 0
    except Exception as e:
        logger.exception(f"{args.command} failed: {e}")
        return 1
    finally:
        if runner is not None:
            runner.close()


if __name__ == "__main__":
    sys.exit(main())
