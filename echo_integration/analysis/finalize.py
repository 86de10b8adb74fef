from __future__ import annotations

"""Quality flags, global bounds and the immutable output grid."""

import logging
from typing import Union

import numpy as np

from echo_integration.analysis.grid_assembler import GridAssembler, GridSnapshot
from echo_integration.errors import FormatError
from echo_integration.models import fields as F
from echo_integration.models.grid import FLAG_GOOD, FLAG_NO_QC, EchoGrid, GridBounds
from echo_integration.models.profile import IntegrationProfile


logger = logging.getLogger(__name__)


def quality_flags(sv: np.ndarray, pct_good: np.ndarray, profile: IntegrationProfile) -> np.ndarray:
    """Per-cell Sv flags: good when Sv is finite, physical and well sampled."""
    sv = np.asarray(sv, dtype=np.float64)
    pct = np.asarray(pct_good, dtype=np.float64)
    flags = np.full(sv.shape, FLAG_NO_QC, dtype=np.int8)
    good = np.isfinite(sv) & (sv < profile.sv_max_valid) & (pct > profile.accept_good)
    flags[good] = FLAG_GOOD
    return flags


def longitude_bounds(longitude: np.ndarray) -> tuple:
    """(lon_min, lon_max) with the date-line convention of :class:`GridBounds`.

    Values outside [-360, 360] are ignored, the rest wrapped to [-180, 180].
    If the wrapped values span more than 350 degrees the track is taken to
    cross the antimeridian: ``lon_min`` is the smallest positive longitude and
    ``lon_max`` the largest negative one.
    """
    lon = np.asarray(longitude, dtype=np.float64)
    lon = lon[np.isfinite(lon) & (np.abs(lon) <= 360.0)]
    if lon.size == 0:
        return np.nan, np.nan
    lon = np.where(lon > 180.0, lon - 360.0, lon)
    lon = np.where(lon < -180.0, lon + 360.0, lon)
    lo, hi = float(lon.min()), float(lon.max())
    if hi - lo > 350.0:
        pos = lon[lon >= 0.0]
        neg = lon[lon < 0.0]
        if pos.size and neg.size:
            return float(pos.min()), float(neg.max())
    return lo, hi


def _finite_range(x: np.ndarray) -> tuple:
    x = np.asarray(x, dtype=np.float64)
    x = x[np.isfinite(x)]
    if x.size == 0:
        return np.nan, np.nan
    return float(x.min()), float(x.max())


def compute_bounds(
    time: np.ndarray,
    longitude: np.ndarray,
    latitude: np.ndarray,
    depth: np.ndarray,
) -> GridBounds:
    t = np.asarray(time, dtype="datetime64[ms]")
    t = t[~np.isnat(t)]
    lat = np.asarray(latitude, dtype=np.float64)
    lat = lat[np.abs(lat) <= 90.0]
    lon_min, lon_max = longitude_bounds(longitude)
    lat_min, lat_max = _finite_range(lat)
    depth_min, depth_max = _finite_range(depth)
    return GridBounds(
        time_min=t.min() if t.size else None,
        time_max=t.max() if t.size else None,
        lon_min=lon_min,
        lon_max=lon_max,
        lat_min=lat_min,
        lat_max=lat_max,
        depth_min=depth_min,
        depth_max=depth_max,
    )


def finalize_grid(source: Union[GridAssembler, GridSnapshot], profile: IntegrationProfile) -> EchoGrid:
    """Build the immutable :class:`EchoGrid` from the committed grid.

    Depth slots that never received a depth are removed. Raises
    :class:`FormatError` when no interval with a usable position was folded.
    """
    snap = source.snapshot() if isinstance(source, GridAssembler) else source
    if snap.time.size == 0:
        raise FormatError("no usable position data")

    keep = np.isfinite(snap.depth)
    n_drop = int((~keep).sum())
    if n_drop:
        logger.info("%d depth slots without depth removed", n_drop)

    fields = {name: arr[:, keep, :] for name, arr in snap.fields.items()}
    fields[F.BACKGROUND_NOISE] = snap.background
    depth = snap.depth[keep]

    sv = fields[F.SV]
    pct = fields[F.SV_PCNT_GOOD]
    flags = quality_flags(sv, pct, profile)

    bounds = compute_bounds(snap.time, snap.longitude, snap.latitude, depth)
    if bounds.crosses_dateline:
        logger.info("track crosses the antimeridian (lon %.3f .. %.3f)", bounds.lon_min, bounds.lon_max)

    grid = EchoGrid(
        time=snap.time,
        interval=snap.interval,
        latitude=snap.latitude,
        longitude=snap.longitude,
        depth=depth,
        channel=snap.channel,
        frequency_khz=snap.frequency_khz,
        fields=fields,
        sv_flags=flags,
        bounds=bounds,
        source_files=snap.source_files,
        warnings=snap.warnings,
        profile=profile.to_dict(),
    )
    logger.info("grid finalized: %d x %d x %d", *grid.shape)
    return grid
