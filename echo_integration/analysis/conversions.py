from __future__ import annotations

"""Acoustic-domain conversions.

All inputs are float arrays with NaN for missing values (sentinels were
removed by the reader). Outputs keep NaN where the input is NaN.
"""

import numpy as np


def db_to_linear(v: np.ndarray) -> np.ndarray:
    """10**(v/10); exact 0 and values >= 999 are treated as missing."""
    x = np.asarray(v, dtype=np.float64)
    with np.errstate(over="ignore"):
        out = np.asarray(np.power(10.0, x / 10.0))
    out[(x == 0.0) | (x >= 999.0)] = np.nan
    return out


def linear_to_db(x: np.ndarray) -> np.ndarray:
    """10*log10(x); non-positive values give NaN."""
    a = np.asarray(x, dtype=np.float64)
    out = np.full(a.shape, np.nan, dtype=np.float64)
    pos = np.isfinite(a) & (a > 0.0)
    out[pos] = 10.0 * np.log10(a[pos])
    return out


def percent_good(good: np.ndarray, raw: np.ndarray) -> np.ndarray:
    """floor(100 * good / raw), clamped to [0, 100].

    0 where ``raw <= 0`` or either count is missing.
    """
    g, r = np.broadcast_arrays(np.asarray(good, dtype=np.float64), np.asarray(raw, dtype=np.float64))
    out = np.zeros(g.shape, dtype=np.float64)
    ok = np.isfinite(g) & np.isfinite(r) & (r > 0.0)
    out[ok] = np.floor(100.0 * g[ok] / r[ok])
    return np.clip(out, 0.0, 100.0)


def motion_correction_percent(m: np.ndarray) -> np.ndarray:
    """Motion-correction factor in percent: 100 * 10**(m/10) - 100."""
    x = np.asarray(m, dtype=np.float64).copy()
    x[x == 0.0] = np.nan
    return 100.0 * np.power(10.0, x / 10.0) - 100.0


def cell_height(nominal: np.ndarray, good: np.ndarray, raw: np.ndarray) -> np.ndarray:
    """Effective height: nominal bin height scaled by the retained fraction."""
    h, g, r = np.broadcast_arrays(
        np.asarray(nominal, dtype=np.float64),
        np.asarray(good, dtype=np.float64),
        np.asarray(raw, dtype=np.float64),
    )
    out = np.full(h.shape, np.nan, dtype=np.float64)
    ok = np.isfinite(r) & (r > 0.0)
    out[ok] = h[ok] * g[ok] / r[ok]
    return out
