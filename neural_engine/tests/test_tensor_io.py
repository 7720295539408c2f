"""Tests for tensor I/O operations."""

import tempfile
from pathlib import Path

import pytest
import torch
from safetensors import torch as st

from ..core import DType, Tensor, TensorIO


def _tensors():
    return {
        "dst_min": Tensor.from_torch("dst_min", torch.tensor([-1.5])),
        "dst_scale": Tensor.from_torch("dst_scale", torch.tensor([42.0])),
        "weight": Tensor.from_torch("weight", torch.tensor([[1, -2], [3, -4]], dtype=torch.int8)),
    }


def test_save_and_load_single_file():
    """Saved tensors load back with values and dtype tags."""
    tensors = _tensors()

    with tempfile.TemporaryDirectory() as tmpdir:
        saved = TensorIO.save(tensors, Path(tmpdir) / "calib" / "dst.safetensors")
        assert saved.exists()

        loaded = TensorIO.load(saved)

    assert set(loaded) == set(tensors)
    for name, tensor in tensors.items():
        assert loaded[name].dtype == tensor.dtype
        assert loaded[name].life == 1
        assert torch.equal(loaded[name].data(), tensor.data())


def test_save_iterable():
    """An iterable of tensors is keyed by tensor names."""
    with tempfile.TemporaryDirectory() as tmpdir:
        saved = TensorIO.save(list(_tensors().values()), Path(tmpdir) / "all.safetensors")
        loaded = TensorIO.load(saved)
    assert loaded["weight"].dtype == DType.S8


def test_load_directory():
    """Every safetensors file in a directory is merged."""
    tensors = _tensors()

    with tempfile.TemporaryDirectory() as tmpdir:
        TensorIO.save({"dst_min": tensors["dst_min"]}, Path(tmpdir) / "a.safetensors")
        TensorIO.save({"dst_scale": tensors["dst_scale"]}, Path(tmpdir) / "b.safetensors")
        loaded = TensorIO.load(tmpdir)

    assert set(loaded) == {"dst_min", "dst_scale"}


def test_load_without_metadata():
    """Files written by other tools fall back to the torch dtype."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "plain.safetensors"
        st.save_file({"x": torch.ones(3, dtype=torch.uint8)}, str(path))
        loaded = TensorIO.load(path)

    assert loaded["x"].dtype == DType.U8


def test_load_errors():
    tensors = _tensors()

    with tempfile.TemporaryDirectory() as tmpdir:
        TensorIO.save({"dst_min": tensors["dst_min"]}, Path(tmpdir) / "a.safetensors")
        TensorIO.save({"dst_min": tensors["dst_min"]}, Path(tmpdir) / "b.safetensors")
        with pytest.raises(ValueError):
            TensorIO.load(tmpdir)

        other = Path(tmpdir) / "weights.bin"
        other.write_bytes(b"")
        with pytest.raises(ValueError):
            TensorIO.load(other)

        with pytest.raises(ValueError):
            TensorIO.load(Path(tmpdir) / "missing")

        empty = Path(tmpdir) / "empty"
        empty.mkdir()
        with pytest.raises(ValueError):
            TensorIO.load(empty)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
