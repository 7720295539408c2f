"""
Synthetic inner-product cases with a float32 reference.

A case quantizes seeded random operands the way a calibrated graph would
(per-tensor activation, per-channel weight), runs the delegated engine on the
unquantized operands to get the reference result, and derives the expected
output from it.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import torch
from loguru import logger

from ..core.allocator import MemoryAllocator
from ..core.conf import AttrConfig, DType, OperatorConfig, TensorConfig
from ..core.errors import ConfigurationError, ShapeMismatch
from ..core.tensor import Tensor
from ..ops.matmul_engine import MatmulEngine, PostOp, TorchMatmulEngine
from ..quantization.codec import get_quantizer, quantize_tensor
from ..quantization.ranges import Scale

DEFAULT_LOW = -10.0
DEFAULT_HIGH = 10.0


@dataclass
class InnerProductCase:
    """Operands, configuration and expected result of one operator run."""

    conf: OperatorConfig
    inputs: List[Tensor]
    outputs: List[Tensor]
    reference: Tensor
    expected: Tensor
    reference_scale: Optional[Scale] = None

    @property
    def tolerance(self) -> float:
        return 0.03 if self.expected.dtype == DType.FP32 else 2


def make_fp32_tensor(
    config: TensorConfig,
    generator: torch.Generator,
    low: float = DEFAULT_LOW,
    high: float = DEFAULT_HIGH,
    allocator: Optional[MemoryAllocator] = None,
) -> Tensor:
    """Uniform random fp32 tensor in [low, high) with a life of 1."""
    low = max(low, torch.finfo(torch.float32).min + 1)
    tensor = Tensor(config, allocator)
    tensor.add_tensor_life(1)
    data = tensor.mutable_data()
    data.uniform_(low, high, generator=generator)
    return tensor


def append_op_post_ops(append_op: str) -> Sequence[PostOp]:
    if append_op in ("", "none"):
        return ()
    if append_op == "sum":
        return (PostOp.sum(),)
    return (PostOp.eltwise(append_op),)


def _new_tensor(name, shape, dtype, allocator) -> Tensor:
    tensor = Tensor(TensorConfig(name, shape, dtype), allocator)
    tensor.add_tensor_life(1)
    return tensor


def _range_outputs(allocator) -> List[Tensor]:
    return [
        _new_tensor("dst_min", (1,), DType.FP32, allocator),
        _new_tensor("dst_scale", (1,), DType.FP32, allocator),
    ]


def build_case(
    src_shape: Sequence[int],
    weight_shape: Sequence[int],
    input_dtype: str = DType.U8,
    output_dtype: str = DType.S8,
    append_op: str = "",
    mode: str = "dynamic",
    src1_perm: str = "0,1",
    seed: int = 0,
    allocator: Optional[MemoryAllocator] = None,
    engine: Optional[MatmulEngine] = None,
    num_workers: Optional[int] = None,
    static_scale: Optional[Scale] = None,
) -> InnerProductCase:
    """
    Build an ``innerproduct`` case.

    Args:
        src_shape: Activation shape [M, K]
        weight_shape: Logical weight shape [K, N]
        input_dtype: u8 or s8 activation
        output_dtype: fp32, s8 or u8
        append_op: "", "sum" or an activation name
        mode: static or dynamic output range; an fp32 output only gets unwritten range outputs
        src1_perm: "0,1" stores the weight K x N, "1,0" stores it N x K
        seed: Seed of the operand generator
        allocator: Buffer source for every created tensor
        engine: Engine computing the reference; the torch engine when None
        num_workers: Worker pool size for per-channel quantization
        static_scale: Output scale fed as static input instead of the reference scale

    Returns:
        InnerProductCase
    """
    m, k = (int(d) for d in src_shape)
    weight_k, n = (int(d) for d in weight_shape)
    if k != weight_k:
        raise ShapeMismatch(f"src {list(src_shape)} and weight {list(weight_shape)} disagree on K")
    if mode not in ("static", "dynamic"):
        raise ConfigurationError(f"Invalid mode: {mode}")
    if src1_perm not in ("0,1", "1,0"):
        raise ConfigurationError(f"Invalid src1_perm: {src1_perm}")
    engine = engine or TorchMatmulEngine()
    generator = torch.Generator().manual_seed(seed)
    transpose_weight = src1_perm == "1,0"

    src_fp32 = make_fp32_tensor(TensorConfig("src_fp32", (m, k)), generator, allocator=allocator)
    src, src_min, src_scale = quantize_tensor(
        src_fp32, TensorConfig("src", (m, k), input_dtype), allocator=allocator
    )

    weight_fp32 = make_fp32_tensor(
        TensorConfig("weight_fp32", (k, n)), generator, allocator=allocator
    )
    if transpose_weight:
        stored = Tensor.from_torch(
            "weight_fp32_t", weight_fp32.data().t().contiguous(), allocator=allocator
        )
        weight_config, channel_axis = TensorConfig("weight", (n, k), DType.S8), 0
    else:
        stored = weight_fp32
        weight_config, channel_axis = TensorConfig("weight", (k, n), DType.S8), -1
    weight, weight_min, weight_scale = quantize_tensor(
        stored,
        weight_config,
        per_channel=True,
        channel_axis=channel_axis,
        allocator=allocator,
        num_workers=num_workers,
    )

    bias = make_fp32_tensor(TensorConfig("bias", (n,)), generator, allocator=allocator)
    post = None
    if append_op == "sum":
        post = make_fp32_tensor(TensorConfig("post", (m, n)), generator, allocator=allocator)

    reference = _new_tensor("dst_fp32", (m, n), DType.FP32, allocator)
    reference_data = reference.mutable_data()
    if post is not None:
        reference_data.copy_(post.data())
    engine.execute(
        src_fp32.data(),
        weight_fp32.data(),
        reference_data,
        bias=bias.data(),
        post_ops=append_op_post_ops(append_op),
    )

    inputs = [src, weight, bias]
    if post is not None:
        inputs.append(post)
    inputs += [src_min, src_scale, weight_min, weight_scale]
    dst = _new_tensor("dst", (m, n), output_dtype, allocator)
    outputs = [dst]

    reference_scale = None
    if output_dtype == DType.FP32:
        # Range outputs ride along in dynamic mode and stay unwritten
        if mode == "dynamic":
            outputs += _range_outputs(allocator)
        expected = reference
    else:
        quantizer = get_quantizer(output_dtype)
        reference_scale = quantizer.compute_scale(reference_data)
        applied = reference_scale
        if mode == "static":
            applied = static_scale if static_scale is not None else reference_scale
            inputs += list(applied.to_tensors("dst", allocator))
        else:
            outputs += _range_outputs(allocator)
        expected = Tensor.from_torch(
            "dst_expected",
            quantizer.quantize_values(reference_data, applied),
            dtype=output_dtype,
            allocator=allocator,
        )

    attrs = {"output_dtype": output_dtype, "src1_perm": src1_perm}
    if append_op:
        attrs["append_op"] = append_op
    conf = OperatorConfig(
        name="innerproduct",
        type="innerproduct",
        inputs=tuple(TensorConfig(t.name, t.shape, t.dtype) for t in inputs),
        outputs=tuple(TensorConfig(t.name, t.shape, t.dtype) for t in outputs),
        attrs=AttrConfig(attrs),
    )
    logger.debug(
        f"Built case src={[m, k]} weight={[k, n]} {input_dtype}->{output_dtype} "
        f"append_op={append_op or 'none'} mode={mode}"
    )
    return InnerProductCase(
        conf=conf,
        inputs=inputs,
        outputs=outputs,
        reference=reference,
        expected=expected,
        reference_scale=reference_scale,
    )
