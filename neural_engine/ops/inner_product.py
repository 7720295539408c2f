"""
Integer-quantized inner product with a fused epilogue.

Operand order::

    inputs:  src, weight, bias, [post], src_min, src_scale,
             weight_min, weight_scale, [dst_min, dst_scale]
    outputs: dst, [dst_min, dst_scale]

``post`` is present when ``append_op`` is ``sum``. An integer output takes
its range either as the two trailing inputs (static) or emits it as the two
trailing outputs (dynamic). An fp32 output is not re-quantized: range
tensors configured alongside it are accepted and left untouched.

The matmul runs on the stored integers. The activation zero point is folded
into the bias and the result is brought back to the float domain through the
output scales ``1 / (src_scale * weight_scale)`` before the epilogue.
"""

from typing import Optional, Sequence

import torch
from loguru import logger

from ..core.allocator import MemoryAllocator
from ..core.conf import DType, OperatorConfig, TensorConfig
from ..core.errors import ConfigurationError, ShapeMismatch
from ..core.registry import ACTIVATION_REGISTRY, MATMUL_ENGINE_REGISTRY, OPERATOR_REGISTRY
from ..core.tensor import Tensor
from ..quantization.bias import rebias, weight_compensation
from ..quantization.codec import dequantize_tensor
from ..quantization.ranges import Scale
from ..quantization.requantize import OutputRequantizer, RequantizeMode
from .matmul_engine import MatmulEngine, PostOp
from .template import Operator

RECOGNIZED_ATTRS = ("output_dtype", "src1_perm", "append_op")
NO_APPEND_OP = ("", "none")
SUM_APPEND_OP = "sum"
OUTPUT_DTYPES = (DType.FP32, DType.S8, DType.U8)
SRC_DTYPES = (DType.U8, DType.S8)


@OPERATOR_REGISTRY.register("innerproduct")
class InnerProductOperator(Operator):
    """u8/s8 x s8 inner product with bias, residual sum or activation fused."""

    def __init__(
        self,
        conf: OperatorConfig,
        allocator: Optional[MemoryAllocator] = None,
        engine: Optional[MatmulEngine] = None,
        num_workers: Optional[int] = None,
        vectorized: Optional[bool] = None,
    ):
        """
        Args:
            conf: Operator configuration
            allocator: Buffer source for the accumulator scratch tensor
            engine: Matmul primitive; the registered ``torch`` engine when None
            num_workers: Worker pool size for channel loops
            vectorized: Force the output quantizer's vectorized or blocked path
        """
        super().__init__(conf, allocator)
        self.engine = engine if engine is not None else MATMUL_ENGINE_REGISTRY.get("torch")()
        self.num_workers = num_workers
        self.vectorized = vectorized

        self.output_dtype: Optional[str] = None
        self.transpose_weight = False
        self.append_op = ""
        self.mode = RequantizeMode.NONE
        self.post_ops: Sequence[PostOp] = ()
        self.requantizer: Optional[OutputRequantizer] = None

        self._post_index: Optional[int] = None
        self._range_index = 0
        self._compensation: Optional[torch.Tensor] = None
        self._accumulator: Optional[Tensor] = None

    def _parse_attrs(self):
        unknown = [key for key in self.attrs if key not in RECOGNIZED_ATTRS]
        if unknown:
            logger.debug(f"{self.name}: ignoring attributes {unknown}")

        if "output_dtype" not in self.attrs:
            raise ConfigurationError(f"{self.name}: output_dtype is required")
        output_dtype = self.attrs["output_dtype"]
        if output_dtype not in OUTPUT_DTYPES:
            raise ConfigurationError(
                f"{self.name}: invalid output_dtype {output_dtype}. Valid: {list(OUTPUT_DTYPES)}"
            )

        perm = self.attrs.get("src1_perm", "").replace(" ", "")
        if perm in ("", "0,1"):
            transpose_weight = False
        elif perm == "1,0":
            transpose_weight = True
        else:
            raise ConfigurationError(f"{self.name}: invalid src1_perm {perm}")

        append_op = self.attrs.get("append_op", "").strip()
        if append_op in NO_APPEND_OP:
            append_op = ""
        elif append_op != SUM_APPEND_OP and append_op not in ACTIVATION_REGISTRY:
            raise ConfigurationError(
                f"{self.name}: unknown append_op {append_op}. "
                f"Valid: {[SUM_APPEND_OP] + ACTIVATION_REGISTRY.list()}"
            )

        self.output_dtype = output_dtype
        self.transpose_weight = transpose_weight
        self.append_op = append_op

    def _resolve_mode(self, num_inputs: int, num_outputs: int):
        base_inputs = 8 if self.append_op == SUM_APPEND_OP else 7
        if num_inputs not in (base_inputs, base_inputs + 2):
            raise ConfigurationError(
                f"{self.name}: expected {base_inputs} or {base_inputs + 2} inputs, "
                f"configured {num_inputs}"
            )
        if num_outputs not in (1, 3):
            raise ConfigurationError(
                f"{self.name}: expected 1 or 3 outputs, configured {num_outputs}"
            )
        static_inputs = num_inputs == base_inputs + 2
        dynamic_outputs = num_outputs == 3

        if static_inputs and dynamic_outputs:
            raise ConfigurationError(
                f"{self.name}: both static output range inputs and dynamic range outputs given"
            )
        if self.output_dtype == DType.FP32:
            if static_inputs or dynamic_outputs:
                logger.debug(f"{self.name}: fp32 output, output range tensors are left untouched")
            mode = RequantizeMode.NONE
        elif static_inputs:
            mode = RequantizeMode.STATIC
        elif dynamic_outputs:
            mode = RequantizeMode.DYNAMIC
        else:
            raise ConfigurationError(
                f"{self.name}: {self.output_dtype} output needs either static range "
                f"inputs or dynamic range outputs"
            )

        self.mode = mode
        self._post_index = 3 if self.append_op == SUM_APPEND_OP else None
        self._range_index = base_inputs - 4

    def _check_dtypes(self, inputs: Sequence[Tensor], outputs: Sequence[Tensor]):
        expected = [(inputs[0], SRC_DTYPES), (inputs[1], (DType.S8,))]
        expected += [(tensor, (DType.FP32,)) for tensor in inputs[2:]]
        expected.append((outputs[0], (self.output_dtype,)))
        expected += [(tensor, (DType.FP32,)) for tensor in outputs[1:]]
        for tensor, dtypes in expected:
            if tensor.dtype not in dtypes:
                raise ConfigurationError(
                    f"{self.name}: {tensor.name} is {tensor.dtype}, expected one of {list(dtypes)}"
                )

    def _prepare(self, inputs, outputs):
        self._parse_attrs()
        self._resolve_mode(len(self.conf.inputs), len(self.conf.outputs))
        self._check_dtypes(inputs, outputs)

        if self.append_op == SUM_APPEND_OP:
            self.post_ops = (PostOp.sum(),)
        elif self.append_op:
            self.post_ops = (PostOp.eltwise(self.append_op),)
        else:
            self.post_ops = ()

        self.requantizer = OutputRequantizer(
            self.output_dtype, self.mode, self.num_workers, self.vectorized
        )
        logger.info(
            f"{self.name}: output={self.output_dtype}, mode={self.mode}, "
            f"append_op={self.append_op or 'none'}, transpose_weight={self.transpose_weight}"
        )

    def _src_ranges(self, inputs):
        i = self._range_index
        return inputs[i], inputs[i + 1]

    def _weight_ranges(self, inputs):
        i = self._range_index + 2
        return inputs[i], inputs[i + 1]

    def _dst_ranges(self, inputs):
        i = self._range_index + 4
        return inputs[i], inputs[i + 1]

    def _reshape(self, inputs, outputs):
        src, weight, bias = inputs[0], inputs[1], inputs[2]
        if len(src.shape) != 2 or len(weight.shape) != 2:
            raise ShapeMismatch(
                f"{self.name}: src and weight must be 2D, got "
                f"{list(src.shape)} and {list(weight.shape)}"
            )
        m, k = src.shape
        if self.transpose_weight:
            n, weight_k = weight.shape
        else:
            weight_k, n = weight.shape
        if k != weight_k:
            raise ShapeMismatch(
                f"{self.name}: src {list(src.shape)} and weight {list(weight.shape)} "
                f"disagree on the contraction dimension"
            )
        if bias.size() != n:
            raise ShapeMismatch(f"{self.name}: bias has {bias.size()} entries, expected {n}")
        if self._post_index is not None:
            post = inputs[self._post_index]
            if post.shape != (m, n):
                raise ShapeMismatch(
                    f"{self.name}: residual {post.name} is {list(post.shape)}, expected {[m, n]}"
                )

        for tensor in self._src_ranges(inputs):
            if tensor.size() != 1:
                raise ShapeMismatch(f"{self.name}: {tensor.name} must hold a single value")
        weight_min, weight_scale = self._weight_ranges(inputs)
        if weight_min.size() != weight_scale.size() or weight_scale.size() not in (1, n):
            raise ShapeMismatch(
                f"{self.name}: weight range of length {weight_scale.size()} for {n} channels"
            )
        if self.mode == RequantizeMode.STATIC:
            for tensor in self._dst_ranges(inputs):
                if tensor.size() != 1:
                    raise ShapeMismatch(f"{self.name}: {tensor.name} must hold a single value")

        outputs[0].set_shape((m, n))
        if self.mode == RequantizeMode.DYNAMIC:
            outputs[1].set_shape((1,))
            outputs[2].set_shape((1,))

        # Weight is a constant operand: its column sums are fixed for this shape
        weight_scales = Scale.from_tensors(weight_min, weight_scale, DType.S8)
        channel_axis = 0 if self.transpose_weight else -1
        weight_fp32 = dequantize_tensor(weight, weight_scales, channel_axis)
        self._compensation = weight_compensation(
            weight_fp32, self.transpose_weight, self.num_workers
        )

    def _allocate(self, inputs, outputs):
        super()._allocate(inputs, outputs)
        if self.output_dtype == DType.FP32:
            return
        shape = outputs[0].shape
        if self._accumulator is not None and self._accumulator.shape != shape:
            self._release_accumulator()
        if self._accumulator is None:
            self._accumulator = Tensor(
                TensorConfig(f"{self.name}_accumulator", shape, DType.FP32), self.allocator
            )
            self._accumulator.add_tensor_life(1)
        self._accumulator.mutable_data()

    def _forward(self, inputs, outputs):
        src, weight, bias = inputs[0], inputs[1], inputs[2]
        dst = outputs[0]

        src_scales = Scale.from_tensors(*self._src_ranges(inputs), src.dtype)
        weight_scales = Scale.from_tensors(*self._weight_ranges(inputs), DType.S8)
        bias_out = rebias(
            bias.data(),
            self._compensation,
            weight_scales.value,
            src_scales.zero_point,
            src_scales.value,
        )
        output_scales = 1.0 / (src_scales.value * weight_scales.value)

        if self.output_dtype == DType.FP32:
            accumulator = dst.mutable_data()
        else:
            accumulator = self._accumulator.mutable_data()
        if self._post_index is not None:
            accumulator.copy_(inputs[self._post_index].data())

        self.engine.execute(
            src.data(),
            weight.data(),
            accumulator,
            bias=bias_out,
            output_scales=output_scales,
            post_ops=self.post_ops,
            transpose_weight=self.transpose_weight,
        )

        if self.mode == RequantizeMode.NONE:
            return
        static_scale = None
        if self.mode == RequantizeMode.STATIC:
            static_scale = Scale.from_tensors(*self._dst_ranges(inputs), self.output_dtype)
        applied = self.requantizer.requantize(accumulator, dst, static_scale)
        if self.mode == RequantizeMode.DYNAMIC:
            applied.write_tensors(outputs[1], outputs[2])

    def _release_accumulator(self):
        if self._accumulator is not None and self._accumulator.life > 0:
            self._accumulator.unref_data()
        self._accumulator = None

    def release(self):
        self._release_accumulator()
        self._compensation = None
        super().release()
