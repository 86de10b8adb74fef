"""Incremental Time x Depth x Channel grid assembly.

One :class:`GridAssembler` lives for a whole run. Survey files are folded one
at a time as batches:

    begin_batch -> fold_channel (channel 1, 2, ...) -> commit_batch

Everything a batch writes goes to staging arrays first; the committed grid is
only modified by :meth:`GridAssembler.commit_batch`, so a batch that fails
half-way (:meth:`GridAssembler.abort_batch`) leaves no trace.

Continuity policy
-----------------
- Channel 1 sets the batch interval range [min, max].
- ``max`` before the last processed interval -> FormatError (out of order).
- ``min`` past ``last + 1`` -> ``gap`` warning, nothing is filled in.
- ``min`` at or before ``last`` -> overlap; at commit the committed slots from
  the batch's first written interval onward are replaced by the new data.
- Later channels may extend the staging tail (``time_growth``) and skip
  intervals before the batch start (``before_batch``).
- The Depth axis only grows; a layer's depth is set once, by the first record
  seen for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, Iterator, List, Optional, Set, Tuple

import numpy as np

from echo_integration.analysis.growable import GrowableArray
from echo_integration.analysis.merge import MergedChannel, merge_channel
from echo_integration.errors import FormatError
from echo_integration.models.diagnostics import ContinuityWarning, emit_warning
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import FileBatch


logger = logging.getLogger(__name__)


class _Store:
    """Per-Time axis arrays plus every field, grown together."""

    def __init__(self, field_names: Tuple[str, ...], n_depth: int, n_channels: int, capacity: int = 0):
        self.time = GrowableArray(dtype="datetime64[ms]", fill=np.datetime64("NaT", "ms"), capacity=capacity)
        self.interval = GrowableArray(dtype=np.int64, fill=-1, capacity=capacity)
        self.latitude = GrowableArray(capacity=capacity)
        self.longitude = GrowableArray(capacity=capacity)
        self.fields: Dict[str, GrowableArray] = {
            name: GrowableArray((n_depth, n_channels), capacity=capacity) for name in field_names
        }
        self.background = GrowableArray((n_channels,), capacity=capacity)
        self._n_depth = int(n_depth)

    def arrays(self) -> Iterator[GrowableArray]:
        yield self.time
        yield self.interval
        yield self.latitude
        yield self.longitude
        yield from self.fields.values()
        yield self.background

    def __len__(self) -> int:
        return len(self.time)

    @property
    def n_depth(self) -> int:
        return self._n_depth

    @property
    def capacity(self) -> int:
        return self.time.capacity

    def reserve(self, capacity: int) -> None:
        for a in self.arrays():
            a.reserve(capacity)

    def resize(self, n: int) -> None:
        for a in self.arrays():
            a.resize(n)

    def truncate(self, n: int) -> None:
        for a in self.arrays():
            a.truncate(n)

    def widen(self, n_depth: int) -> None:
        if n_depth <= self._n_depth:
            return
        for a in self.fields.values():
            a.widen(n_depth)
        self._n_depth = int(n_depth)

    def append_rows(self, other: _Store, rows: np.ndarray) -> None:
        for mine, theirs in zip(self.arrays(), other.arrays()):
            mine.append(theirs.view()[rows])


@dataclass
class _Staging:
    name: str
    store: _Store
    depth: np.ndarray
    start: Optional[int] = None
    last: Optional[int] = None
    channels: Set[int] = field(default_factory=set)
    warnings: List[ContinuityWarning] = field(default_factory=list)


@dataclass(frozen=True)
class GridSnapshot:
    """Copy of the committed grid (nothing finalized yet).

    ``fields`` arrays have shape ``(T, D, C)``, ``background`` ``(T, C)``.
    Depth slots that never received a depth hold NaN in ``depth``.
    """

    time: np.ndarray
    interval: np.ndarray
    latitude: np.ndarray
    longitude: np.ndarray
    depth: np.ndarray
    channel: Tuple[str, ...]
    frequency_khz: np.ndarray
    fields: Dict[str, np.ndarray]
    background: np.ndarray
    source_files: Tuple[str, ...] = ()
    warnings: Tuple[ContinuityWarning, ...] = ()


class GridAssembler:
    """Single writer of the run's grid."""

    def __init__(self, profile: IntegrationProfile):
        profile.validate()
        self.profile = profile
        self.field_names: Tuple[str, ...] = profile.enabled_fields
        self._committed = _Store(self.field_names, 0, profile.n_channels)
        self._depth = np.zeros(0, dtype=np.float64)
        self._staging: Optional[_Staging] = None
        self.last_interval: Optional[int] = None
        self.warnings: List[ContinuityWarning] = []
        self.source_files: List[str] = []

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def n_time(self) -> int:
        return len(self._committed)

    @property
    def n_depth(self) -> int:
        return self._committed.n_depth

    @property
    def depth(self) -> np.ndarray:
        return self._depth.copy()

    @property
    def intervals(self) -> np.ndarray:
        return self._committed.interval.to_numpy()

    @property
    def in_batch(self) -> bool:
        return self._staging is not None

    def record_warning(self, code: str, message: str, **context) -> ContinuityWarning:
        """Attach a run-level warning (e.g. a skipped batch)."""
        return emit_warning(self.warnings, logger, code, message, **context)

    # ------------------------------------------------------------------
    # Batch lifecycle
    # ------------------------------------------------------------------

    def begin_batch(self, name: str) -> None:
        if self._staging is not None:
            raise RuntimeError(f"batch {self._staging.name!r} is still open")
        store = _Store(self.field_names, self._committed.n_depth, self.profile.n_channels)
        self._staging = _Staging(name=name, store=store, depth=self._depth.copy())
        logger.debug("begin batch %s", name)

    def abort_batch(self) -> None:
        """Discard everything staged for the open batch."""
        if self._staging is None:
            return
        logger.warning("batch %s aborted; committed grid unchanged", self._staging.name)
        self._staging = None

    def fold_channel(self, channel_index: int, merged: MergedChannel) -> None:
        """Stage one channel's merged records of the open batch."""
        st = self._require_staging()
        if not 0 <= channel_index < self.profile.n_channels:
            raise IndexError(f"channel index {channel_index} out of range")
        ch = self.profile.channels[channel_index]
        st.warnings.extend(merged.warnings)
        if merged.is_empty:
            logger.info("%s/%s: no records survived merging", st.name, ch)
            return

        records = merged.records
        lo, hi = merged.interval_range
        baseline = st.start is None

        if baseline:
            self._check_sequence(st, ch, lo, hi)
            st.start, st.last = lo, hi
            if self._committed.capacity == 0:
                self._committed.reserve(hi - lo + 1)
            st.store.resize(hi - lo + 1)
        else:
            iv = records["interval"].to_numpy(dtype=np.int64)
            below = iv < st.start
            if below.any():
                emit_warning(
                    st.warnings,
                    logger,
                    "before_batch",
                    f"{int(below.sum())} cells before batch start {st.start} skipped",
                    channel=ch,
                    source=st.name,
                    interval_range=(int(iv[below].min()), int(iv[below].max())),
                )
                records = records.loc[~below]
                if len(records) == 0:
                    return
            top = int(records["interval"].max())
            n_needed = top - st.start + 1
            if n_needed > len(st.store):
                emit_warning(
                    st.warnings,
                    logger,
                    "time_growth",
                    f"channel extends batch past interval {st.start + len(st.store) - 1}",
                    channel=ch,
                    source=st.name,
                    interval_range=(st.start + len(st.store), top),
                )
                st.store.resize(n_needed)

        self._grow_depth(st, ch, merged, baseline)
        self._write(st, channel_index, records, merged)
        st.channels.add(channel_index)

    def commit_batch(self) -> None:
        """Append the staged batch to the committed grid."""
        st = self._require_staging()
        self._staging = None
        if st.start is None:
            logger.info("batch %s: nothing to commit", st.name)
            self.warnings.extend(st.warnings)
            self.source_files.append(st.name)
            return

        store = st.store
        has_pos = ~np.isnat(store.time.view()) & np.isfinite(store.latitude.view())
        keep = np.nonzero(has_pos)[0]
        n_drop = len(store) - int(keep.size)
        if n_drop:
            dropped = st.start + np.nonzero(~has_pos)[0]
            emit_warning(
                st.warnings,
                logger,
                "no_position",
                f"{n_drop} interval slots without position dropped",
                source=st.name,
                interval_range=(int(dropped.min()), int(dropped.max())),
            )

        if keep.size:
            first_written = st.start + int(keep[0])
            cut = int(np.searchsorted(self._committed.interval.view(), first_written, side="left"))
            n_trim = len(self._committed) - cut
            if n_trim > 0:
                self._committed.truncate(cut)
                logger.info(
                    "batch %s: %d overlapping intervals from %d replaced", st.name, n_trim, first_written
                )
            self._committed.widen(store.n_depth)
            self._committed.append_rows(store, keep)
            self._depth = st.depth.copy()

        self.last_interval = st.last
        self.warnings.extend(st.warnings)
        self.source_files.append(st.name)
        logger.info("batch %s: %d intervals committed, grid now %d x %d", st.name, keep.size, self.n_time, self.n_depth)

    def fold_batch(self, batch: FileBatch) -> None:
        """Align, merge and fold every channel of ``batch``, then commit."""
        self.begin_batch(batch.name)
        try:
            for c, ch in enumerate(self.profile.channels):
                exports = batch.for_channel(ch)
                if exports is None:
                    raise FormatError(f"batch {batch.name!r}: no exports for channel", channel=ch)
                self.fold_channel(c, merge_channel(exports, self.profile))
        except Exception:
            self.abort_batch()
            raise
        self.commit_batch()

    def snapshot(self) -> GridSnapshot:
        """Copy of the committed grid."""
        c = self._committed
        return GridSnapshot(
            time=c.time.to_numpy(),
            interval=c.interval.to_numpy(),
            latitude=c.latitude.to_numpy(),
            longitude=c.longitude.to_numpy(),
            depth=self._depth.copy(),
            channel=tuple(self.profile.channels),
            frequency_khz=np.asarray(self.profile.frequencies_khz, dtype=np.float64),
            fields={name: arr.to_numpy() for name, arr in c.fields.items()},
            background=c.background.to_numpy(),
            source_files=tuple(self.source_files),
            warnings=tuple(self.warnings),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_staging(self) -> _Staging:
        if self._staging is None:
            raise RuntimeError("no open batch; call begin_batch() first")
        return self._staging

    def _check_sequence(self, st: _Staging, ch: str, lo: int, hi: int) -> None:
        last = self.last_interval
        if last is None:
            return
        if hi < last:
            raise FormatError(
                f"batch {st.name!r} covers intervals {lo}-{hi}, before last processed interval {last}",
                channel=ch,
            )
        # Later channels may have committed slots past channel 1's last interval.
        held = last
        if len(self._committed):
            held = max(last, int(self._committed.interval[-1]))
        if lo > held + 1:
            emit_warning(
                st.warnings,
                logger,
                "gap",
                f"no data for intervals {held + 1}-{lo - 1}",
                channel=ch,
                source=st.name,
                interval_range=(held + 1, lo - 1),
            )
        elif lo <= held:
            logger.info("batch %s overlaps committed grid from interval %d", st.name, lo)

    def _grow_depth(self, st: _Staging, ch: str, merged: MergedChannel, baseline: bool) -> None:
        n_layers = merged.n_layers
        old = st.store.n_depth
        if n_layers > old:
            if not baseline:
                emit_warning(
                    st.warnings,
                    logger,
                    "depth_growth",
                    f"depth axis grown from {old} to {n_layers} layers",
                    channel=ch,
                    source=st.name,
                )
            else:
                logger.debug("%s/%s: depth axis %d -> %d", st.name, ch, old, n_layers)
            st.store.widen(n_layers)
            st.depth = np.concatenate([st.depth, np.full(n_layers - old, np.nan)])

        head = st.depth[:n_layers]
        unset = np.isnan(head) & np.isfinite(merged.layer_depths)
        head[unset] = merged.layer_depths[unset]

    def _write(self, st: _Staging, c: int, records, merged: MergedChannel) -> None:
        iv = records["interval"].to_numpy(dtype=np.int64)
        slot = iv - st.start
        layer = records["layer"].to_numpy(dtype=np.int64) - 1
        for name in self.field_names:
            st.store.fields[name][slot, layer, c] = records[name].to_numpy(dtype=np.float64)

        first = records.drop_duplicates(subset="interval", keep="first")
        fslot = first["interval"].to_numpy(dtype=np.int64) - st.start
        open_ = np.isnat(st.store.time[fslot])
        sel = fslot[open_]
        st.store.time[sel] = first["timestamp"].to_numpy(dtype="datetime64[ms]")[open_]
        st.store.interval[sel] = first["interval"].to_numpy(dtype=np.int64)[open_]
        st.store.latitude[sel] = first["latitude"].to_numpy(dtype=np.float64)[open_]
        st.store.longitude[sel] = first["longitude"].to_numpy(dtype=np.float64)[open_]

        bg = merged.background
        biv = bg["interval"].to_numpy(dtype=np.int64)
        inside = (biv >= st.start) & (biv < st.start + len(st.store))
        st.store.background[biv[inside] - st.start, c] = bg["background_noise"].to_numpy(dtype=np.float64)[inside]
