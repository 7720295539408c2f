"""
Tensor persistence in safetensors files.

Used to keep offline calibration (static output ranges) and pre-quantized
operands between runs.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import torch
from loguru import logger
from safetensors import safe_open
from safetensors import torch as st
from tqdm import tqdm

from .allocator import MemoryAllocator
from .tensor import Tensor

METADATA_KEY = "neural_engine.dtypes"


class TensorIO:
    """Save and load named Tensors."""

    @staticmethod
    def save(
        tensors: Union[Dict[str, Tensor], Iterable[Tensor]],
        output_file: Union[str, Path],
    ) -> Path:
        """
        Save tensors to one safetensors file.

        Args:
            tensors: Tensors keyed by name, or an iterable of tensors (keyed by their names)
            output_file: Destination path; parent directories are created

        Returns:
            Path of the saved file
        """
        if not isinstance(tensors, dict):
            tensors = {tensor.name: tensor for tensor in tensors}

        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            name: tensor.data().contiguous().clone() for name, tensor in tensors.items()
        }
        dtypes = {name: tensor.dtype for name, tensor in tensors.items()}
        st.save_file(payload, str(output_file), metadata={METADATA_KEY: json.dumps(dtypes)})

        total_size = sum(t.numel() * t.element_size() for t in payload.values())
        logger.info(f"Saved {len(payload)} tensors to: {output_file} ({total_size} bytes)")
        return output_file

    @staticmethod
    def load(
        path: Union[str, Path],
        allocator: Optional[MemoryAllocator] = None,
    ) -> Dict[str, Tensor]:
        """
        Load tensors from a file or every safetensors file in a directory.

        Each loaded tensor has a life of 1.
        """
        path = Path(path)

        if path.is_file():
            return TensorIO._load_single_file(path, allocator)
        elif path.is_dir():
            return TensorIO._load_directory(path, allocator)
        else:
            raise ValueError(f"Invalid path: {path}")

    @staticmethod
    def _load_single_file(
        file_path: Path,
        allocator: Optional[MemoryAllocator],
    ) -> Dict[str, Tensor]:
        if file_path.suffix != ".safetensors":
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        logger.info(f"Loading tensors from: {file_path}")
        tensors = {}
        with safe_open(str(file_path), framework="pt") as f:
            metadata = f.metadata() or {}
            dtypes = json.loads(metadata.get(METADATA_KEY, "{}"))
            for key in tqdm(f.keys(), desc=f"Loading {file_path.name}", leave=False):
                values: torch.Tensor = f.get_tensor(key)
                tensors[key] = Tensor.from_torch(
                    key, values, dtype=dtypes.get(key), allocator=allocator
                )
        return tensors

    @staticmethod
    def _load_directory(
        dir_path: Path,
        allocator: Optional[MemoryAllocator],
    ) -> Dict[str, Tensor]:
        files: List[Path] = sorted(dir_path.glob("*.safetensors"))
        if not files:
            raise ValueError(f"No safetensors files found in: {dir_path}")

        merged = {}
        for file_path in files:
            tensors = TensorIO._load_single_file(file_path, allocator)

            duplicate_keys = set(tensors.keys()) & set(merged.keys())
            if duplicate_keys:
                raise ValueError(
                    f"Duplicate keys found in {file_path.name}: {duplicate_keys}"
                )
            merged.update(tensors)

        logger.info(f"Loaded {len(merged)} total tensors from {len(files)} files")
        return merged
