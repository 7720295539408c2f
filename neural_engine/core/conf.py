"""
Declarative descriptors for tensors and operators.

A TensorConfig describes a tensor before any buffer exists. An OperatorConfig
binds an operator type to its ordered input/output TensorConfigs and an
immutable attribute mapping.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, List, Mapping, Optional, Tuple

import torch

from .errors import ConfigurationError


class DType:
    """Element type tags and their torch counterparts."""

    FP32 = "fp32"
    S8 = "s8"
    U8 = "u8"
    S32 = "s32"

    _TORCH = {
        FP32: torch.float32,
        S8: torch.int8,
        U8: torch.uint8,
        S32: torch.int32,
    }

    # Representable range of the quantized integer types
    _QRANGE = {
        S8: (-128, 127),
        U8: (0, 255),
    }

    @classmethod
    def all(cls) -> List[str]:
        return list(cls._TORCH.keys())

    @classmethod
    def validate(cls, dtype: str) -> str:
        if dtype not in cls._TORCH:
            raise ConfigurationError(
                f"Unknown dtype: {dtype}. Valid: {cls.all()}"
            )
        return dtype

    @classmethod
    def to_torch(cls, dtype: str) -> torch.dtype:
        return cls._TORCH[cls.validate(dtype)]

    @classmethod
    def qrange(cls, dtype: str) -> Tuple[int, int]:
        if dtype not in cls._QRANGE:
            raise ConfigurationError(f"{dtype} is not a quantized dtype")
        return cls._QRANGE[dtype]


@dataclass(frozen=True)
class TensorConfig:
    """Name, shape and element type of a tensor."""

    name: str
    shape: Tuple[int, ...] = ()
    dtype: str = DType.FP32

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))
        DType.validate(self.dtype)

    @property
    def numel(self) -> int:
        n = 1
        for d in self.shape:
            n *= d
        return n

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TensorConfig":
        if "name" not in data:
            raise ConfigurationError(f"Tensor config without a name: {dict(data)}")
        return cls(
            name=data["name"],
            shape=tuple(data.get("shape", ())),
            dtype=data.get("dtype", DType.FP32),
        )


class AttrConfig(Mapping):
    """Read-only string attribute mapping of an operator instance."""

    def __init__(self, attrs: Optional[Mapping[str, Any]] = None):
        self._attrs = MappingProxyType(
            {str(k): "" if v is None else str(v) for k, v in (attrs or {}).items()}
        )

    def __getitem__(self, key: str) -> str:
        return self._attrs[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._attrs)

    def __len__(self) -> int:
        return len(self._attrs)

    def __repr__(self) -> str:
        return f"AttrConfig({dict(self._attrs)})"


@dataclass(frozen=True)
class OperatorConfig:
    """Operator type, ordered operand descriptors and attributes."""

    name: str
    type: str
    inputs: Tuple[TensorConfig, ...] = ()
    outputs: Tuple[TensorConfig, ...] = ()
    attrs: AttrConfig = field(default_factory=AttrConfig)

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        if not isinstance(self.attrs, AttrConfig):
            object.__setattr__(self, "attrs", AttrConfig(self.attrs))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperatorConfig":
        """
        Build an operator config from a plain dictionary (e.g. parsed YAML).

        Args:
            data: Mapping with ``name``, ``type``, ``inputs``, ``outputs`` and ``attrs``

        Returns:
            OperatorConfig
        """
        for key in ("name", "type"):
            if key not in data:
                raise ConfigurationError(f"operator.{key} is required")
        return cls(
            name=data["name"],
            type=data["type"],
            inputs=tuple(TensorConfig.from_dict(t) for t in data.get("inputs", [])),
            outputs=tuple(TensorConfig.from_dict(t) for t in data.get("outputs", [])),
            attrs=AttrConfig(data.get("attrs", {})),
        )
