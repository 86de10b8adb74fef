from __future__ import annotations

"""Resizable array with amortized growth along the Time axis.

Axis 0 is the Time axis: rows are appended at the tail and the backing buffer
doubles its capacity when full, so folding N intervals one batch at a time
costs O(N) copies overall. Axis 1 (Depth, when present) can be widened
explicitly; new slots take the fill value. Shrinking is only allowed at the
tail (``truncate``).
"""

from typing import Any, Tuple

import numpy as np


class GrowableArray:
    """Array of shape ``(n,) + trailing`` backed by an over-allocated buffer."""

    def __init__(
        self,
        trailing_shape: Tuple[int, ...] = (),
        *,
        dtype: Any = np.float64,
        fill: Any = np.nan,
        capacity: int = 0,
    ):
        self.dtype = np.dtype(dtype)
        self.fill = fill
        self._n = 0
        self._buf = np.full((max(int(capacity), 0),) + tuple(int(s) for s in trailing_shape), fill, dtype=self.dtype)

    def __len__(self) -> int:
        return self._n

    @property
    def shape(self) -> Tuple[int, ...]:
        return (self._n,) + self._buf.shape[1:]

    @property
    def trailing_shape(self) -> Tuple[int, ...]:
        return tuple(self._buf.shape[1:])

    @property
    def capacity(self) -> int:
        return int(self._buf.shape[0])

    def view(self) -> np.ndarray:
        """Live view of the used rows (invalidated by any resize)."""
        return self._buf[: self._n]

    def to_numpy(self) -> np.ndarray:
        return self.view().copy()

    def __getitem__(self, idx):
        return self.view()[idx]

    def __setitem__(self, idx, value) -> None:
        self.view()[idx] = value

    def reserve(self, capacity: int) -> None:
        """Ensure room for ``capacity`` rows without further reallocation."""
        if capacity <= self.capacity:
            return
        new = np.full((int(capacity),) + self._buf.shape[1:], self.fill, dtype=self.dtype)
        new[: self._n] = self._buf[: self._n]
        self._buf = new

    def resize(self, n: int) -> None:
        """Set the number of used rows; new rows hold the fill value."""
        n = int(n)
        if n < 0:
            raise ValueError("length must be non-negative")
        if n < self._n:
            self.truncate(n)
            return
        if n > self.capacity:
            self.reserve(max(n, 2 * self.capacity, 1))
        self._n = n

    def append(self, rows: np.ndarray) -> None:
        """Append rows of shape ``(k,) + trailing_shape``."""
        rows = np.asarray(rows, dtype=self.dtype)
        if rows.shape[1:] != self._buf.shape[1:]:
            raise ValueError(f"row shape {rows.shape[1:]} does not match {self._buf.shape[1:]}")
        start = self._n
        self.resize(start + rows.shape[0])
        self._buf[start : self._n] = rows

    def truncate(self, n: int) -> None:
        """Drop rows ``n..`` (tail only); freed slots are reset to the fill value."""
        n = int(n)
        if n > self._n or n < 0:
            raise ValueError(f"cannot truncate {self._n} rows to {n}")
        self._buf[n : self._n] = self.fill
        self._n = n

    def widen(self, size: int) -> None:
        """Grow axis 1 to ``size``; existing values keep their position."""
        if self._buf.ndim < 2:
            raise ValueError("1-D array has no axis to widen")
        size = int(size)
        old = self._buf.shape[1]
        if size < old:
            raise ValueError(f"axis 1 cannot shrink ({old} -> {size})")
        if size == old:
            return
        new_shape = (self._buf.shape[0], size) + self._buf.shape[2:]
        new = np.full(new_shape, self.fill, dtype=self.dtype)
        new[:, :old] = self._buf
        self._buf = new
