from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd


# ---------------------------------------------------------------------------
# Export kinds
# ---------------------------------------------------------------------------

CLEAN = "clean"
RAW = "raw"
RAW_COUNT = "raw_count"
GOOD_COUNT = "good_count"
SIGNAL_NOISE = "signal_noise"
BACKGROUND = "background"
MOTION = "motion"


@dataclass(frozen=True)
class KindSpec:
    """How one export kind is normalized and keyed.

    db_sentinel:
        The exporter writes an exact sentinel (9999) for "no data".
    zero_is_missing:
        An exact zero means "not computed" rather than a measured zero.
    per_interval:
        Keyed by interval only (layer ignored).
    """

    name: str
    db_sentinel: bool
    zero_is_missing: bool = False
    per_interval: bool = False


EXPORT_KINDS: Dict[str, KindSpec] = {
    CLEAN: KindSpec(CLEAN, db_sentinel=True, zero_is_missing=True),
    RAW: KindSpec(RAW, db_sentinel=True, zero_is_missing=True),
    RAW_COUNT: KindSpec(RAW_COUNT, db_sentinel=False),
    GOOD_COUNT: KindSpec(GOOD_COUNT, db_sentinel=False),
    SIGNAL_NOISE: KindSpec(SIGNAL_NOISE, db_sentinel=True),
    BACKGROUND: KindSpec(BACKGROUND, db_sentinel=True, per_interval=True),
    MOTION: KindSpec(MOTION, db_sentinel=True, zero_is_missing=True),
    "clean_sd": KindSpec("clean_sd", db_sentinel=True),
    "clean_skew": KindSpec("clean_skew", db_sentinel=True),
    "clean_kurt": KindSpec("clean_kurt", db_sentinel=True),
    "raw_sd": KindSpec("raw_sd", db_sentinel=True),
    "raw_skew": KindSpec("raw_skew", db_sentinel=True),
    "raw_kurt": KindSpec("raw_kurt", db_sentinel=True),
}

AUXILIARY_KINDS: Tuple[str, ...] = tuple(k for k in EXPORT_KINDS if k != CLEAN)


def kind_spec(kind: str) -> KindSpec:
    try:
        return EXPORT_KINDS[kind]
    except KeyError:
        raise KeyError(f"Unknown export kind {kind!r}; known: {list(EXPORT_KINDS)}") from None


# ---------------------------------------------------------------------------
# Cell keys
# ---------------------------------------------------------------------------

# Layers per interval never reach 2**20 (a 1 m grid would need ~1000 km of water).
LAYER_BITS = 20
_LAYER_MASK = (1 << LAYER_BITS) - 1


def encode_cell_keys(interval: np.ndarray, layer: np.ndarray) -> np.ndarray:
    """Pack (interval, layer) pairs into sortable int64 keys."""
    i = np.asarray(interval, dtype=np.int64)
    k = np.asarray(layer, dtype=np.int64)
    if np.any(i < 0):
        raise ValueError("interval numbers must be non-negative")
    if np.any(k < 0) or np.any(k > _LAYER_MASK):
        raise ValueError(f"layer numbers must be in [0, {_LAYER_MASK}]")
    return (i << LAYER_BITS) | k


def decode_cell_keys(keys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of :func:`encode_cell_keys`."""
    kk = np.asarray(keys, dtype=np.int64)
    return kk >> LAYER_BITS, kk & _LAYER_MASK


# ---------------------------------------------------------------------------
# Tables and streams
# ---------------------------------------------------------------------------


STREAM_COLUMNS: Tuple[str, ...] = (
    "interval",
    "layer",
    "value",
    "timestamp",
    "latitude",
    "longitude",
    "depth",
    "height",
)


@dataclass(frozen=True)
class SourceStream:
    """Cell-key-ordered records of one (channel, file, kind) export.

    ``df`` has the columns in :data:`STREAM_COLUMNS`; ``value`` is float64 with
    NaN for every sentinel. Cell keys are unique.
    """

    source: str
    kind: str
    df: pd.DataFrame
    warnings: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return int(len(self.df))

    @property
    def is_empty(self) -> bool:
        return len(self.df) == 0

    @property
    def keys(self) -> np.ndarray:
        return encode_cell_keys(self.df["interval"].to_numpy(), self.df["layer"].to_numpy())

    def rekey(self, timestamps: np.ndarray, intervals: np.ndarray) -> SourceStream:
        """Replace interval numbers through a timestamp -> interval mapping.

        ``timestamps`` must be sorted and unique. Records whose timestamp is
        not in the mapping are dropped.
        """
        if self.is_empty:
            return self
        ref = np.asarray(timestamps).astype("datetime64[ms]").astype(np.int64)
        ts = self.df["timestamp"].to_numpy(dtype="datetime64[ms]").astype(np.int64)
        pos = np.searchsorted(ref, ts, side="left")
        hit = pos < ref.size
        hit[hit] = ref[pos[hit]] == ts[hit]

        warnings = list(self.warnings)
        n_drop = int((~hit).sum())
        if n_drop:
            warnings.append(f"{n_drop} records without matching interval timestamp dropped")

        df = self.df.loc[hit].copy()
        df["interval"] = np.asarray(intervals, dtype=np.int64)[pos[hit]]
        df = df.sort_values(["interval", "layer"], kind="mergesort")
        dup = df.duplicated(subset=["interval", "layer"], keep="first")
        if dup.any():
            warnings.append(f"{int(dup.sum())} records with repeated cell key dropped (first kept)")
            df = df[~dup]
        return SourceStream(source=self.source, kind=self.kind, df=df.reset_index(drop=True), warnings=tuple(warnings))

    def to_matrix(self) -> Tuple[np.ndarray, np.ndarray]:
        """Rebuild ``(intervals, values)`` with values shaped ``(n_intervals, n_layers)``.

        Cells absent from the stream are NaN.
        """
        if self.is_empty:
            return np.zeros(0, dtype=np.int64), np.zeros((0, 0), dtype=np.float64)
        mat = self.df.pivot(index="interval", columns="layer", values="value")
        layers = np.arange(1, int(self.df["layer"].max()) + 1)
        mat = mat.reindex(columns=layers)
        return mat.index.to_numpy(dtype=np.int64), mat.to_numpy(dtype=np.float64)


@dataclass(frozen=True)
class ExportTable:
    """One deduplicated, sentinel-normalized export file (row level).

    Arrays are indexed by row, sorted by ``timestamp``; ``values`` has shape
    ``(n_rows, samples)`` ordered shallow to deep.
    """

    source: str
    kind: str
    samples: int

    timestamp: np.ndarray  # (n_rows,) datetime64[ms]
    latitude: np.ndarray  # (n_rows,)
    longitude: np.ndarray  # (n_rows,)
    depth_start: np.ndarray  # (n_rows,)
    depth_stop: np.ndarray  # (n_rows,)
    values: np.ndarray  # (n_rows, samples)

    warnings: Tuple[str, ...] = ()

    @property
    def n_rows(self) -> int:
        return int(self.timestamp.shape[0])

    def take(self, rows: np.ndarray) -> ExportTable:
        """Subset of rows (positions), keeping order as given."""
        r = np.asarray(rows, dtype=np.int64)
        return ExportTable(
            source=self.source,
            kind=self.kind,
            samples=self.samples,
            timestamp=self.timestamp[r],
            latitude=self.latitude[r],
            longitude=self.longitude[r],
            depth_start=self.depth_start[r],
            depth_stop=self.depth_stop[r],
            values=self.values[r, :],
            warnings=self.warnings,
        )

    def to_stream(self, intervals: Optional[np.ndarray] = None) -> SourceStream:
        """Flatten every row into ``samples`` records keyed by (interval, layer).

        Parameters
        ----------
        intervals:
            Interval number per row. Rows with a negative number are dropped.
            If omitted, the local row order (0-based) is used.
        """
        n = self.n_rows
        p = int(self.samples)
        if intervals is None:
            row_interval = np.arange(n, dtype=np.int64)
        else:
            row_interval = np.asarray(intervals, dtype=np.int64)
            if row_interval.shape != (n,):
                raise ValueError(f"intervals must have shape ({n},), got {row_interval.shape}")

        keep = row_interval >= 0
        warnings = list(self.warnings)
        if not np.all(keep):
            warnings.append(f"{int((~keep).sum())} rows without interval number dropped")

        ri = row_interval[keep]
        m = int(ri.size)
        if m == 0 or p == 0:
            return SourceStream(source=self.source, kind=self.kind, df=_empty_stream_frame(), warnings=tuple(warnings))

        start = self.depth_start[keep]
        stop = self.depth_stop[keep]
        vert_res = (stop - start) / float(p)

        layer = np.tile(np.arange(1, p + 1, dtype=np.int64), m)
        vres_rep = np.repeat(vert_res, p)
        df = pd.DataFrame(
            {
                "interval": np.repeat(ri, p),
                "layer": layer,
                "value": self.values[keep, :].reshape(-1).astype(np.float64, copy=False),
                "timestamp": np.repeat(self.timestamp[keep], p),
                "latitude": np.repeat(self.latitude[keep], p),
                "longitude": np.repeat(self.longitude[keep], p),
                "depth": np.repeat(start, p) + (layer - 0.5) * vres_rep,
                "height": vres_rep,
            }
        )

        df = df.sort_values(["interval", "layer"], kind="mergesort")
        dup = df.duplicated(subset=["interval", "layer"], keep="first")
        if dup.any():
            n_dup = int(dup.sum())
            warnings.append(f"{n_dup} records with repeated cell key dropped (first kept)")
            df = df[~dup]
        df = df.reset_index(drop=True)
        return SourceStream(source=self.source, kind=self.kind, df=df, warnings=tuple(warnings))


def _empty_stream_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "interval": np.zeros(0, dtype=np.int64),
            "layer": np.zeros(0, dtype=np.int64),
            "value": np.zeros(0, dtype=np.float64),
            "timestamp": np.zeros(0, dtype="datetime64[ms]"),
            "latitude": np.zeros(0, dtype=np.float64),
            "longitude": np.zeros(0, dtype=np.float64),
            "depth": np.zeros(0, dtype=np.float64),
            "height": np.zeros(0, dtype=np.float64),
        }
    )


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelExports:
    """All exports of one channel for one survey file.

    ``interval_table`` is the normalized interval index (see
    :func:`echo_integration.ingest.intervals.read_interval_table`).
    """

    channel: str
    canonical: ExportTable
    interval_table: pd.DataFrame
    auxiliary: Dict[str, ExportTable] = field(default_factory=dict)


@dataclass(frozen=True)
class FileBatch:
    """One survey file's exports across all channels, folded atomically."""

    name: str
    channels: Dict[str, ChannelExports]

    def for_channel(self, channel: str) -> Optional[ChannelExports]:
        return self.channels.get(channel)
