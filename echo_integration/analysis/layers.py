"""Layer summary metrics.

Mean Sv over fixed depth bands (epipelagic, upper and lower mesopelagic by
default) per interval and channel. Means are taken in the linear domain and
reported in dB. A band value needs at least ``min_layer_cells`` finite cells;
otherwise it is NaN and flagged probably bad.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

from echo_integration.analysis.conversions import linear_to_db
from echo_integration.models import fields as F
from echo_integration.models.grid import FLAG_GOOD, FLAG_PROBABLY_BAD, EchoGrid
from echo_integration.models.profile import IntegrationProfile


@dataclass(frozen=True)
class LayerSummary:
    """Band-mean Sv of one depth band, arrays of shape ``(T, C)``."""

    name: str
    top_m: float
    bottom_m: float
    sv_db: np.ndarray
    count_cells: np.ndarray
    flags: np.ndarray


def summarize_layers(grid: EchoGrid, profile: IntegrationProfile) -> Dict[str, LayerSummary]:
    sv = grid.field(F.SV)
    out: Dict[str, LayerSummary] = {}
    for name, top, bottom in profile.summary_layers:
        band = (grid.depth > top) & (grid.depth < bottom)
        cells = sv[:, band, :]
        finite = np.isfinite(cells)
        count = finite.sum(axis=1)
        total = np.where(finite, cells, 0.0).sum(axis=1)
        mean = np.full(count.shape, np.nan, dtype=np.float64)
        enough = count >= profile.min_layer_cells
        mean[enough] = total[enough] / count[enough]
        out[name] = LayerSummary(
            name=name,
            top_m=float(top),
            bottom_m=float(bottom),
            sv_db=linear_to_db(mean),
            count_cells=count.astype(np.int64),
            flags=np.where(enough, FLAG_GOOD, FLAG_PROBABLY_BAD).astype(np.int8),
        )
    return out
