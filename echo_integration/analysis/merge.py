"""Stream synchronizer / merge engine.

Joins the auxiliary exports of one channel onto its canonical stream, derives
the acoustic quantities of every cell and applies the quality gate. The
output, :class:`MergedChannel`, is what the grid assembler folds.

Rules
-----
- The canonical stream decides which cells exist. An auxiliary export either
  has the exact cell key or contributes NaN for that cell.
- Missing keys of a supplied export raise one aggregated ``missing_key``
  warning per (channel, kind). A kind not supplied at all is silently NaN.
- Background noise is keyed by interval only; the first record of an
  interval wins.
- Cells with invalid position, percent-good below ``min_good`` or depth beyond
  the channel's ``max_depth`` are dropped without warning.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from echo_integration.analysis.conversions import (
    cell_height,
    db_to_linear,
    motion_correction_percent,
    percent_good,
)
from echo_integration.analysis.sorted_merge import (
    cell_key,
    describe_missing,
    interval_key,
    match_sorted,
    take_matched,
)
from echo_integration.ingest.intervals import align_intervals
from echo_integration.models import fields as F
from echo_integration.models.diagnostics import ContinuityWarning, emit_warning
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import (
    BACKGROUND,
    GOOD_COUNT,
    MOTION,
    RAW,
    RAW_COUNT,
    SIGNAL_NOISE,
    ChannelExports,
    SourceStream,
)


logger = logging.getLogger(__name__)

RECORD_COLUMNS: Tuple[str, ...] = ("interval", "layer", "timestamp", "latitude", "longitude")


@dataclass(frozen=True)
class MergedChannel:
    """Cell-key-ordered composite records of one channel for one batch.

    Attributes
    ----------
    records:
        One row per surviving cell: ``interval``, ``layer``, ``timestamp``,
        ``latitude``, ``longitude`` and every enabled field.
    background:
        ``interval`` and ``background_noise``, one row per surviving interval.
    n_layers:
        Deepest retained layer number (0 when nothing survived).
    layer_depths:
        Depth of layers ``1..n_layers`` taken from the first record of each
        layer; NaN for layers that never appeared.
    """

    channel: str
    source: str
    records: pd.DataFrame
    background: pd.DataFrame
    n_layers: int
    layer_depths: np.ndarray
    warnings: Tuple[ContinuityWarning, ...] = ()

    @property
    def is_empty(self) -> bool:
        return len(self.records) == 0

    @property
    def interval_range(self) -> Optional[Tuple[int, int]]:
        if self.is_empty:
            return None
        iv = self.records["interval"].to_numpy()
        return int(iv.min()), int(iv.max())


def _stream_notes(stream: SourceStream, channel: str, sink: List[ContinuityWarning]) -> None:
    for note in stream.warnings:
        code = "duplicates_removed" if ("non unique" in note or "repeated" in note) else "row_mismatch"
        emit_warning(sink, logger, code, f"{stream.kind}: {note}", channel=channel, source=stream.source)


def merge_channel_streams(
    canonical: SourceStream,
    auxiliary: Mapping[str, SourceStream],
    profile: IntegrationProfile,
    *,
    channel: str,
) -> MergedChannel:
    """Merge one channel's streams into composite records.

    Parameters
    ----------
    canonical:
        Processed Sv stream keyed by true interval numbers.
    auxiliary:
        ``kind -> SourceStream``; any subset of the auxiliary kinds.
    channel:
        Configured channel name (selects ``max_depth``).
    """
    warnings: List[ContinuityWarning] = []
    _stream_notes(canonical, channel, warnings)
    for stream in auxiliary.values():
        _stream_notes(stream, channel, warnings)

    target = canonical.df
    n = len(target)

    def aux(kind: str) -> np.ndarray:
        stream = auxiliary.get(kind)
        if stream is None:
            return np.full(n, np.nan, dtype=np.float64)
        values, matched = take_matched(target, stream.df, key=cell_key)
        if not matched.all():
            missing = cell_key(target)[~matched]
            emit_warning(
                warnings,
                logger,
                "missing_key",
                f"{kind}: {missing.size} cells missing, e.g. {describe_missing(missing)}",
                channel=channel,
                source=stream.source,
                interval_range=_range(target["interval"].to_numpy()[~matched]),
            )
        return values

    raw_count = aux(RAW_COUNT)
    good_count = aux(GOOD_COUNT)

    out: Dict[str, np.ndarray] = {c: target[c].to_numpy() for c in RECORD_COLUMNS}
    out[F.MEAN_DEPTH] = target["depth"].to_numpy(dtype=np.float64)
    out[F.MEAN_HEIGHT] = cell_height(target["height"].to_numpy(dtype=np.float64), good_count, raw_count)
    out[F.SV] = db_to_linear(target["value"].to_numpy(dtype=np.float64))
    out[F.SV_UNFILT] = db_to_linear(aux(RAW))
    out[F.SV_PCNT_GOOD] = percent_good(good_count, raw_count)
    out[F.SIGNAL_NOISE] = aux(SIGNAL_NOISE)
    out[F.MOTION_CORRECTION] = motion_correction_percent(aux(MOTION))
    if profile.extended:
        for field_name, kind in F.STAT_FIELD_KIND.items():
            out[field_name] = aux(kind)

    records = pd.DataFrame(out)

    # Quality gate
    lat = records["latitude"].to_numpy(dtype=np.float64)
    depth = records[F.MEAN_DEPTH].to_numpy(dtype=np.float64)
    keep = np.isfinite(lat) & (np.abs(lat) <= 90.0)
    keep &= records[F.SV_PCNT_GOOD].to_numpy() >= profile.min_good
    keep &= ~(depth > profile.max_depth_for(channel))
    n_drop = int((~keep).sum())
    if n_drop:
        logger.debug("%s/%s: %d of %d cells dropped by quality gate", canonical.source, channel, n_drop, n)
    records = records.loc[keep].reset_index(drop=True)

    background = _background(records, auxiliary.get(BACKGROUND), channel, warnings)
    n_layers, layer_depths = _layer_depths(records)

    return MergedChannel(
        channel=channel,
        source=canonical.source,
        records=records,
        background=background,
        n_layers=n_layers,
        layer_depths=layer_depths,
        warnings=tuple(warnings),
    )


def _range(intervals: np.ndarray) -> Optional[Tuple[int, int]]:
    if intervals.size == 0:
        return None
    return int(intervals.min()), int(intervals.max())


def _background(
    records: pd.DataFrame,
    stream: Optional[SourceStream],
    channel: str,
    warnings: List[ContinuityWarning],
) -> pd.DataFrame:
    intervals = np.unique(records["interval"].to_numpy(dtype=np.int64))
    target = pd.DataFrame({"interval": intervals})
    values = np.full(intervals.size, np.nan, dtype=np.float64)
    if stream is not None and intervals.size:
        index, matched = match_sorted(interval_key(target), interval_key(stream.df))
        values[matched] = stream.df["value"].to_numpy(dtype=np.float64)[index[matched]]
        if not matched.all():
            emit_warning(
                warnings,
                logger,
                "missing_key",
                f"{BACKGROUND}: {int((~matched).sum())} intervals missing",
                channel=channel,
                source=stream.source,
                interval_range=_range(intervals[~matched]),
            )
    target[F.BACKGROUND_NOISE] = values
    return target


def _layer_depths(records: pd.DataFrame) -> Tuple[int, np.ndarray]:
    if len(records) == 0:
        return 0, np.zeros(0, dtype=np.float64)
    layers = records["layer"].to_numpy(dtype=np.int64)
    n_layers = int(layers.max())
    depths = np.full(n_layers, np.nan, dtype=np.float64)
    first = records.drop_duplicates(subset="layer", keep="first")
    depths[first["layer"].to_numpy(dtype=np.int64) - 1] = first[F.MEAN_DEPTH].to_numpy(dtype=np.float64)
    return n_layers, depths


def merge_channel(exports: ChannelExports, profile: IntegrationProfile) -> MergedChannel:
    """Align, re-key and merge every export of one channel for one batch."""
    channel = exports.channel
    alignment = align_intervals(exports.canonical, exports.interval_table, channel=channel)
    auxiliary = {kind: alignment.rekey(table) for kind, table in exports.auxiliary.items()}
    merged = merge_channel_streams(alignment.stream, auxiliary, profile, channel=channel)
    if alignment.warnings:
        merged = replace(merged, warnings=alignment.warnings + merged.warnings)
    return merged
