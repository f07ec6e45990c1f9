# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Shape-checked tensor buffers used at the session boundary."""

from __future__ import annotations

from typing import Sequence

import numpy as np

# ONNX element type strings -> numpy dtypes
_ONNX_DTYPES: dict[str, np.dtype] = {
    "tensor(float)": np.dtype(np.float32),
    "tensor(float16)": np.dtype(np.float16),
    "tensor(double)": np.dtype(np.float64),
    "tensor(int32)": np.dtype(np.int32),
    "tensor(int64)": np.dtype(np.int64),
    "tensor(int8)": np.dtype(np.int8),
    "tensor(uint8)": np.dtype(np.uint8),
    "tensor(bool)": np.dtype(np.bool_),
}


def numpy_dtype(element_type: str) -> np.dtype:
    """Map an ONNX element type string such as ``"tensor(int32)"`` to numpy."""
    try:
        return _ONNX_DTYPES[element_type]
    except KeyError:
        raise ValueError(f"Unsupported tensor element type: {element_type}") from None


class TensorBuffer:
    """A fixed-shape, fixed-dtype contiguous buffer.

    The element count of *data* is checked against *shape* when the buffer
    is built; after that neither shape nor dtype can change.

    Parameters
    ----------
    data:
        Values to copy in.  Any array-like with ``prod(shape)`` elements.
    shape:
        Concrete tensor shape.
    dtype:
        Element type of the buffer.
    """

    __slots__ = ("_array",)

    def __init__(self, data, shape: Sequence[int], dtype) -> None:
        shape = tuple(int(d) for d in shape)
        if any(d < 0 for d in shape):
            raise ValueError(f"Tensor shape must be concrete, got {shape}")
        array = np.array(data, dtype=dtype, order="C")
        expected = int(np.prod(shape)) if shape else 1
        if array.size != expected:
            raise ValueError(
                f"Buffer holds {array.size} elements but shape {shape} "
                f"requires {expected}."
            )
        array = array.reshape(shape)
        array.flags.writeable = False
        self._array = array

    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, shape: Sequence[int], dtype) -> "TensorBuffer":
        return cls(np.zeros(tuple(shape), dtype=dtype), shape, dtype)

    @classmethod
    def from_tokens(
        cls,
        token_ids: Sequence[int],
        length: int,
        pad_id: int = 0,
        dtype=np.int32,
    ) -> "TensorBuffer":
        """Build a ``(1, length)`` token buffer.

        Longer sequences keep their first *length* tokens; shorter ones are
        right-padded with *pad_id*.
        """
        ids = np.full(length, pad_id, dtype=dtype)
        n = min(len(token_ids), length)
        ids[:n] = np.asarray(token_ids[:n], dtype=dtype)
        return cls(ids, (1, length), dtype)

    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, ...]:
        return self._array.shape

    @property
    def dtype(self) -> np.dtype:
        return self._array.dtype

    @property
    def array(self) -> np.ndarray:
        """Read-only numpy view of the buffer."""
        return self._array

    def __len__(self) -> int:
        return self._array.size

    def __repr__(self) -> str:
        return f"TensorBuffer(shape={self.shape}, dtype={self.dtype})"
