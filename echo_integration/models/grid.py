from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from echo_integration.models.diagnostics import ContinuityWarning


# Quality flags
FLAG_NO_QC = 1
FLAG_GOOD = 2
FLAG_PROBABLY_BAD = 3


@dataclass(frozen=True)
class GridBounds:
    """Global data limits of a finalized grid.

    ``lon_min``/``lon_max`` follow the date-line convention: when the data
    straddle the antimeridian ``lon_min`` is the westmost positive longitude
    and ``lon_max`` the eastmost negative one, so ``lon_min > lon_max``.
    """

    time_min: Optional[np.datetime64]
    time_max: Optional[np.datetime64]
    lon_min: float
    lon_max: float
    lat_min: float
    lat_max: float
    depth_min: float
    depth_max: float

    @property
    def crosses_dateline(self) -> bool:
        return bool(np.isfinite(self.lon_min) and np.isfinite(self.lon_max) and self.lon_min > self.lon_max)


@dataclass(frozen=True)
class EchoGrid:
    """Finalized Time x Depth x Channel echo-integration grid.

    Attributes
    ----------
    time, interval, latitude, longitude:
        Per-Time arrays, shape ``(T,)``; ``time`` is ``datetime64[ms]``.
    depth:
        Per-Depth layer depth, shape ``(D,)``.
    channel, frequency_khz:
        Per-Channel name and nominal frequency, shape ``(C,)``.
    fields:
        Field name -> array of shape ``(T, D, C)``; ``background_noise`` has
        shape ``(T, C)``.
    sv_flags:
        Per-cell quality flags for ``Sv``, shape ``(T, D, C)``.
    """

    time: np.ndarray
    interval: np.ndarray
    latitude: np.ndarray
    longitude: np.ndarray
    depth: np.ndarray
    channel: Tuple[str, ...]
    frequency_khz: np.ndarray

    fields: Dict[str, np.ndarray]
    sv_flags: np.ndarray
    bounds: GridBounds

    source_files: Tuple[str, ...] = ()
    warnings: Tuple[ContinuityWarning, ...] = ()
    profile: Optional[Dict[str, Any]] = None

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (int(self.time.size), int(self.depth.size), len(self.channel))

    @property
    def axes(self) -> Dict[str, np.ndarray]:
        """Axis descriptors in dimension order."""
        return {
            "TIME": self.time,
            "DEPTH": self.depth,
            "CHANNEL": np.asarray(self.channel, dtype=object),
        }

    def field(self, name: str) -> np.ndarray:
        try:
            return self.fields[name]
        except KeyError:
            raise KeyError(f"Field {name!r} not in grid; available: {sorted(self.fields)}") from None

    def channel_index(self, name: str) -> int:
        return self.channel.index(name)
