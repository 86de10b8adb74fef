"""Interval alignment.

The resampled exports carry no survey interval number: their first column is a
local row index. The true interval number comes from a companion interval
table exported alongside the canonical (cleaned) variable. Both tables are
reconciled on their ping timestamps:

1) millisecond timestamp for every row of both tables;
2) interval rows marked excluded (``Sv_mean == 9999`` or ``Exclude``) dropped;
3) both sorted by timestamp;
4) ordered intersection of the timestamps;
5) both truncated to the intersection, canonical rows re-keyed by the
   interval number of their matching interval row.

Row-count mismatches are reported, never fatal. An empty intersection is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from echo_integration.errors import FormatError
from echo_integration.models.diagnostics import ContinuityWarning, emit_warning
from echo_integration.models.records import ExportTable, SourceStream


logger = logging.getLogger(__name__)

INTERVAL_SENTINEL = 9999.0


@dataclass(frozen=True)
class IntervalAlignment:
    """Result of reconciling a canonical export with its interval table.

    Attributes
    ----------
    timestamps:
        Matched timestamps, sorted, ``datetime64[ms]``, shape ``(n,)``.
    intervals:
        True interval number for each matched timestamp, shape ``(n,)``.
    canonical_rows:
        Row positions of the canonical table that matched, shape ``(n,)``.
    stream:
        Canonical SourceStream keyed by true interval numbers.
    """

    source: str
    timestamps: np.ndarray
    intervals: np.ndarray
    canonical_rows: np.ndarray
    stream: SourceStream
    warnings: Tuple[ContinuityWarning, ...] = ()

    @property
    def interval_range(self) -> Tuple[int, int]:
        return int(self.intervals.min()), int(self.intervals.max())

    def rekey(self, table: ExportTable) -> SourceStream:
        """SourceStream of an auxiliary table keyed by true interval numbers."""
        return table.to_stream().rekey(self.timestamps, self.intervals)


def read_interval_table(source: Union[str, Path, pd.DataFrame]) -> pd.DataFrame:
    """Load and normalize an interval table.

    Accepted columns: ``Interval``, ``Date_M`` (yyyymmdd), ``Time_M``
    (``HH:MM:SS.fff``) and either ``Sv_mean`` (9999 = excluded) or a boolean
    ``Exclude`` column. Returns a frame with ``timestamp`` (datetime64[ms]),
    ``interval`` (int64) and ``excluded`` (bool), in file order.
    """
    if isinstance(source, pd.DataFrame):
        raw = source.copy()
        name = "<frame>"
    else:
        name = str(source)
        try:
            raw = pd.read_csv(Path(source).expanduser(), skipinitialspace=True, encoding="utf-8-sig")
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise FormatError(f"cannot read interval table ({e})", path=name) from e

    raw = raw.rename(columns=lambda c: str(c).lstrip("\ufeff").strip())
    missing = [c for c in ("Interval", "Date_M", "Time_M") if c not in raw.columns]
    if missing:
        raise FormatError(f"interval table lacks columns {missing}", path=name)

    interval = pd.to_numeric(raw["Interval"], errors="coerce")
    if interval.isna().any():
        raise FormatError("non-numeric interval number", path=name)
    if (interval < 0).any():
        raise FormatError("negative interval number (position track may start after the data)", path=name)

    if "Exclude" in raw.columns:
        excluded = raw["Exclude"].astype(bool).to_numpy()
    elif "Sv_mean" in raw.columns:
        excluded = (pd.to_numeric(raw["Sv_mean"], errors="coerce") == INTERVAL_SENTINEL).to_numpy()
    else:
        excluded = np.zeros(len(raw), dtype=bool)

    return pd.DataFrame(
        {
            "timestamp": _interval_timestamps(raw["Date_M"], raw["Time_M"], name),
            "interval": interval.to_numpy(dtype=np.int64),
            "excluded": excluded,
        }
    )


def _interval_timestamps(date: pd.Series, time: pd.Series, name: str) -> np.ndarray:
    d = date.astype(str).str.strip().str.replace("-", "", regex=False)
    t = time.astype(str).str.strip()
    parts = t.str.split(".", n=1)
    hms = parts.str[0]
    frac = parts.str[1].fillna("").str.ljust(3, "0").str.slice(0, 3)
    try:
        base = pd.to_datetime(d + " " + hms, format="%Y%m%d %H:%M:%S")
        ms = pd.to_numeric(frac, errors="raise").to_numpy(dtype=np.int64)
    except (TypeError, ValueError) as e:
        raise FormatError(f"unparsable interval date/time ({e})", path=name) from e
    return base.to_numpy(dtype="datetime64[ms]") + ms.astype("timedelta64[ms]")


def align_intervals(
    canonical: ExportTable,
    interval_table: pd.DataFrame,
    *,
    channel: Optional[str] = None,
) -> IntervalAlignment:
    """Re-key the canonical export by true interval number.

    Parameters
    ----------
    canonical:
        Canonical (cleaned) export, rows sorted by timestamp.
    interval_table:
        Output of :func:`read_interval_table`.
    channel:
        Channel name, for warning context only.
    """
    warnings: List[ContinuityWarning] = []
    src = canonical.source

    it = interval_table.loc[~interval_table["excluded"].to_numpy(dtype=bool)]
    it = it.sort_values("timestamp", kind="mergesort")
    n_it_dups = int(it["timestamp"].duplicated(keep="first").sum())
    if n_it_dups:
        it = it.loc[~it["timestamp"].duplicated(keep="first")]
        logger.info("%s: %d repeated interval timestamps ignored", src, n_it_dups)

    it_ts = it["timestamp"].to_numpy(dtype="datetime64[ms]").astype(np.int64)
    can_ts = canonical.timestamp.astype("datetime64[ms]").astype(np.int64)

    common, can_idx, it_idx = np.intersect1d(can_ts, it_ts, return_indices=True)
    if common.size == 0:
        raise FormatError(
            "no common timestamps between export and interval table",
            path=src,
            channel=channel,
            rows=(0, max(canonical.n_rows - 1, 0)),
        )

    intervals = it["interval"].to_numpy(dtype=np.int64)[it_idx]
    rng = (int(intervals.min()), int(intervals.max()))

    n_can_drop = canonical.n_rows - int(common.size)
    if n_can_drop:
        emit_warning(
            warnings,
            logger,
            "row_mismatch",
            f"mismatch between interval and export data, {n_can_drop} export rows without interval removed",
            channel=channel,
            source=src,
            interval_range=rng,
        )
    n_it_drop = len(it) - int(common.size)
    if n_it_drop:
        emit_warning(
            warnings,
            logger,
            "row_mismatch",
            f"mismatch between interval and export data, {n_it_drop} intervals without export rows removed",
            channel=channel,
            source=src,
            interval_range=rng,
        )

    stream = canonical.take(can_idx).to_stream(intervals)
    return IntervalAlignment(
        source=src,
        timestamps=common.astype("datetime64[ms]"),
        intervals=intervals,
        canonical_rows=can_idx,
        stream=stream,
        warnings=tuple(warnings),
    )
