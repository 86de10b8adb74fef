"""Tests for quality flags, bounds, finalization and layer summaries."""

from __future__ import annotations

import numpy as np
import pytest

from echo_integration.analysis.finalize import (
    compute_bounds,
    finalize_grid,
    longitude_bounds,
    quality_flags,
)
from echo_integration.analysis.grid_assembler import GridAssembler, GridSnapshot
from echo_integration.analysis.layers import summarize_layers
from echo_integration.errors import FormatError
from echo_integration.models import fields as F
from echo_integration.models.grid import FLAG_GOOD, FLAG_NO_QC, FLAG_PROBABLY_BAD
from echo_integration.models.profile import IntegrationProfile


T0 = np.datetime64("2018-08-18T00:00:00.000", "ms")


def _profile(**overrides) -> IntegrationProfile:
    return IntegrationProfile.from_frequencies([38], **overrides)


def _snapshot(
    sv: np.ndarray,
    depth: np.ndarray,
    *,
    pct: np.ndarray = None,
    longitude: np.ndarray = None,
    latitude: np.ndarray = None,
) -> GridSnapshot:
    T, D, C = sv.shape
    fields = {name: np.full(sv.shape, np.nan) for name in F.CORE_FIELDS}
    fields[F.SV] = sv
    fields[F.SV_PCNT_GOOD] = np.full(sv.shape, 80.0) if pct is None else pct
    return GridSnapshot(
        time=T0 + (np.arange(T) * 10_000).astype("timedelta64[ms]"),
        interval=np.arange(T, dtype=np.int64),
        latitude=np.full(T, -40.0) if latitude is None else latitude,
        longitude=np.full(T, 150.0) if longitude is None else longitude,
        depth=np.asarray(depth, dtype=np.float64),
        channel=tuple(f"ch{c}" for c in range(C)),
        frequency_khz=np.arange(C, dtype=np.float64) + 38.0,
        fields=fields,
        background=np.full((T, C), -130.0),
        source_files=("a",),
    )


# -----------------------------------------------------------------------
# Flags
# -----------------------------------------------------------------------


def test_quality_flags() -> None:
    sv = np.array([1e-6, 1e-6, 2.0, np.nan, 1e-6])
    pct = np.array([80.0, 40.0, 80.0, 80.0, 50.0])
    flags = quality_flags(sv, pct, _profile(accept_good=50.0))
    np.testing.assert_array_equal(flags, [FLAG_GOOD, FLAG_NO_QC, FLAG_NO_QC, FLAG_NO_QC, FLAG_NO_QC])


# -----------------------------------------------------------------------
# Bounds
# -----------------------------------------------------------------------


class TestLongitudeBounds:
    def test_plain_range(self) -> None:
        assert longitude_bounds(np.array([150.0, 151.5, 149.0])) == (149.0, 151.5)

    def test_wraps_to_pm180(self) -> None:
        assert longitude_bounds(np.array([190.0, 200.0])) == (-170.0, -160.0)

    def test_ignores_invalid(self) -> None:
        assert longitude_bounds(np.array([999.0, np.nan, 10.0, 12.0])) == (10.0, 12.0)

    def test_antimeridian(self) -> None:
        lon_min, lon_max = longitude_bounds(np.array([179.0, -179.0, 178.5, -178.0]))
        assert lon_min == 178.5
        assert lon_max == -178.0

    def test_empty(self) -> None:
        lo, hi = longitude_bounds(np.array([np.nan]))
        assert np.isnan(lo) and np.isnan(hi)


def test_compute_bounds() -> None:
    time = T0 + np.array([0, 5000, 1000], dtype="timedelta64[ms]")
    b = compute_bounds(time, np.array([179.5, -179.5, 179.9]), np.array([-10.0, 999.0, 5.0]), np.array([5.0, 15.0]))
    assert b.time_min == T0
    assert b.time_max == T0 + np.timedelta64(5000, "ms")
    assert b.crosses_dateline
    assert (b.lat_min, b.lat_max) == (-10.0, 5.0)
    assert (b.depth_min, b.depth_max) == (5.0, 15.0)


# -----------------------------------------------------------------------
# finalize_grid
# -----------------------------------------------------------------------


def test_empty_grid_raises() -> None:
    asm = GridAssembler(_profile())
    with pytest.raises(FormatError, match="no usable position data"):
        finalize_grid(asm, _profile())


def test_depth_slots_without_depth_dropped() -> None:
    sv = np.full((2, 3, 1), 1e-6)
    sv[:, 2, 0] = 1e-7
    grid = finalize_grid(_snapshot(sv, [5.0, np.nan, 15.0]), _profile())

    assert grid.shape == (2, 2, 1)
    np.testing.assert_allclose(grid.depth, [5.0, 15.0])
    np.testing.assert_allclose(grid.field(F.SV)[:, 1, 0], 1e-7)
    assert grid.sv_flags.shape == (2, 2, 1)
    assert grid.field(F.BACKGROUND_NOISE).shape == (2, 1)


def test_finalized_grid_contents() -> None:
    sv = np.full((3, 2, 1), 1e-6)
    pct = np.full((3, 2, 1), 80.0)
    pct[0, 0, 0] = 20.0
    grid = finalize_grid(
        _snapshot(sv, [5.0, 15.0], pct=pct, longitude=np.array([179.0, 179.8, -179.6])),
        _profile(),
    )

    assert grid.sv_flags[0, 0, 0] == FLAG_NO_QC
    assert grid.sv_flags[1, 0, 0] == FLAG_GOOD
    assert grid.bounds.crosses_dateline
    assert grid.bounds.lon_min == 179.0 and grid.bounds.lon_max == -179.6
    assert grid.profile["channels"] == ["38kHz"]
    assert set(grid.axes) == {"TIME", "DEPTH", "CHANNEL"}
    assert grid.source_files == ("a",)
    with pytest.raises(KeyError):
        grid.field("Sv_sd")


# -----------------------------------------------------------------------
# Layer summaries
# -----------------------------------------------------------------------


def test_layer_summaries() -> None:
    depth = np.array([10.0, 25.0, 50.0, 75.0, 100.0, 125.0, 150.0, 250.0, 300.0])
    sv = np.full((2, depth.size, 1), 1e-6)
    sv[1, 1:4, 0] = np.nan  # interval 1 keeps only 3 epipelagic cells
    grid = finalize_grid(_snapshot(sv, depth), _profile())
    out = summarize_layers(grid, _profile())

    assert set(out) == {"epipelagic", "upper_mesopelagic", "lower_mesopelagic"}
    epi = out["epipelagic"]
    np.testing.assert_array_equal(epi.count_cells[:, 0], [6, 3])
    np.testing.assert_allclose(epi.sv_db[0, 0], -60.0)
    assert np.isnan(epi.sv_db[1, 0])
    np.testing.assert_array_equal(epi.flags[:, 0], [FLAG_GOOD, FLAG_PROBABLY_BAD])

    upper = out["upper_mesopelagic"]
    np.testing.assert_array_equal(upper.count_cells[:, 0], [2, 2])
    assert np.all(np.isnan(upper.sv_db))
    assert np.all(upper.flags == FLAG_PROBABLY_BAD)

    lower = out["lower_mesopelagic"]
    np.testing.assert_array_equal(lower.count_cells[:, 0], [0, 0])


def test_layer_summary_mean_in_linear_domain() -> None:
    depth = np.array([30.0, 40.0])
    sv = np.array([[[1e-6], [1e-5]]])
    grid = finalize_grid(_snapshot(sv, depth), _profile())
    epi = summarize_layers(grid, _profile(min_layer_cells=2))["epipelagic"]
    np.testing.assert_allclose(epi.sv_db[0, 0], 10.0 * np.log10(5.5e-6))
