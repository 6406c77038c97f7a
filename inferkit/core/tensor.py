"""
inferkit :: Tensor

Boundary type between the generation layer and the inference runtime.

A Tensor is a flat buffer + shape + dtype. Only two dtypes cross the
boundary in this library:
  - float32: logits, hidden states, KV-cache entries
  - int64:   input ids, attention masks, position ids

INL - 2025
"""

from typing import Sequence, Tuple

import numpy as np

from inferkit.core.exceptions import TensorConversionError


FLOAT32 = "float32"
INT64 = "int64"

_NUMPY_DTYPES = {FLOAT32: np.float32, INT64: np.int64}


class Tensor:
    """
    Immutable named-dtype tensor.

    Data is copied on construction and on every conversion out, so a
    Tensor handed to a session cannot be mutated behind its back.
    """

    __slots__ = ("_data", "_shape", "_dtype")

    def __init__(self, data: np.ndarray, shape: Sequence[int], dtype: str):
        if dtype not in _NUMPY_DTYPES:
            raise TensorConversionError(f"Unsupported tensor dtype: {dtype}")
        shape = tuple(int(d) for d in shape)
        flat = np.array(data, dtype=_NUMPY_DTYPES[dtype]).reshape(-1)
        _validate_shape(flat.size, shape)
        flat.setflags(write=False)
        self._data = flat
        self._shape = shape
        self._dtype = dtype

    @staticmethod
    def from_floats(data, shape: Sequence[int]) -> "Tensor":
        return Tensor(np.asarray(data, dtype=np.float32), shape, FLOAT32)

    @staticmethod
    def from_longs(data, shape: Sequence[int]) -> "Tensor":
        return Tensor(np.asarray(data, dtype=np.int64), shape, INT64)

    @staticmethod
    def from_numpy(array: np.ndarray) -> "Tensor":
        """Wrap a numpy array, keeping its shape. float16/float64 become float32."""
        array = np.asarray(array)
        if np.issubdtype(array.dtype, np.floating):
            return Tensor(array, array.shape, FLOAT32)
        if np.issubdtype(array.dtype, np.integer):
            return Tensor(array, array.shape, INT64)
        raise TensorConversionError(f"Unsupported numpy dtype: {array.dtype}")

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def dtype(self) -> str:
        return self._dtype

    @property
    def size(self) -> int:
        return int(self._data.size)

    def slice(self, axis: int, index: int) -> "Tensor":
        """
        Select one index along `axis`, dropping that axis.

        Negative indices count from the end: slice(1, -1) on a
        (batch, seq, vocab) logits tensor yields the last position.
        """
        ndim = len(self._shape)
        if not 0 <= axis < ndim:
            raise TensorConversionError(f"Axis {axis} out of range for shape {self._shape}")
        dim = self._shape[axis]
        if index < 0:
            index += dim
        if not 0 <= index < dim:
            raise TensorConversionError(
                f"Index {index} out of range for axis {axis} of shape {self._shape}"
            )
        picked = np.take(self._data.reshape(self._shape), index, axis=axis)
        return Tensor(picked, picked.shape, self._dtype)

    def to_floats(self) -> np.ndarray:
        if self._dtype != FLOAT32:
            raise TensorConversionError(f"Cannot convert {self._dtype} tensor to {FLOAT32}")
        return self._data.copy()

    def to_longs(self) -> np.ndarray:
        if self._dtype != INT64:
            raise TensorConversionError(f"Cannot convert {self._dtype} tensor to {INT64}")
        return self._data.copy()

    def to_numpy(self) -> np.ndarray:
        """Shaped copy of the data."""
        return self._data.reshape(self._shape).copy()

    def __repr__(self) -> str:
        return f"Tensor(dtype={self._dtype}, shape={list(self._shape)})"


def _validate_shape(data_length: int, shape: Tuple[int, ...]):
    expected = 1
    for dim in shape:
        if dim < 0:
            raise TensorConversionError(f"Negative dimension in shape {list(shape)}")
        expected *= dim
    if data_length != expected:
        raise TensorConversionError(
            f"Data length {data_length} does not match shape {list(shape)} "
            f"(expected {expected} elements)"
        )
