"""Sorted merge by key.

Every auxiliary export is joined onto the canonical stream the same way: both
are sorted by key, a source cursor advances while the source key is below the
target key, then the keys are compared for equality. :func:`match_sorted` does
this for a whole target sequence at once with ``np.searchsorted``; the result
is identical to the cursor walk, including "first source record wins" when a
source key repeats.
"""

from __future__ import annotations

from typing import Callable, Tuple

import numpy as np
import pandas as pd

from echo_integration.models.records import decode_cell_keys, encode_cell_keys


KeyFunc = Callable[[pd.DataFrame], np.ndarray]


def cell_key(df: pd.DataFrame) -> np.ndarray:
    """(interval, layer) key of every record."""
    return encode_cell_keys(df["interval"].to_numpy(), df["layer"].to_numpy())


def interval_key(df: pd.DataFrame) -> np.ndarray:
    """Interval-only key (layer ignored)."""
    return df["interval"].to_numpy(dtype=np.int64)


def match_sorted(target_keys: np.ndarray, source_keys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Locate every target key in a sorted source key sequence.

    Returns
    -------
    index:
        Position in ``source_keys`` of the first equal key, -1 where unmatched.
    matched:
        Boolean mask, True where the target key exists in the source.
    """
    t = np.asarray(target_keys, dtype=np.int64)
    s = np.asarray(source_keys, dtype=np.int64)
    if s.size > 1 and np.any(np.diff(s) < 0):
        raise ValueError("source keys must be sorted")
    if s.size == 0:
        return np.full(t.shape, -1, dtype=np.int64), np.zeros(t.shape, dtype=bool)

    pos = np.searchsorted(s, t, side="left")
    matched = pos < s.size
    matched[matched] = s[pos[matched]] == t[matched]
    index = np.where(matched, pos, -1).astype(np.int64)
    return index, matched


def take_matched(
    target: pd.DataFrame,
    source: pd.DataFrame,
    *,
    key: KeyFunc = cell_key,
    column: str = "value",
) -> Tuple[np.ndarray, np.ndarray]:
    """Source ``column`` aligned to target rows; NaN where the key is missing."""
    index, matched = match_sorted(key(target), key(source))
    out = np.full(len(target), np.nan, dtype=np.float64)
    if matched.any():
        out[matched] = source[column].to_numpy(dtype=np.float64)[index[matched]]
    return out, matched


def describe_missing(keys: np.ndarray, limit: int = 5) -> str:
    """First few missing cell keys as ``(interval, layer)`` text."""
    i, k = decode_cell_keys(np.asarray(keys)[:limit])
    pairs = ", ".join(f"({a}, {b})" for a, b in zip(i.tolist(), k.tolist()))
    more = "" if len(keys) <= limit else ", ..."
    return pairs + more
