"""Tests for the per-channel merge engine."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from echo_integration.analysis.merge import merge_channel, merge_channel_streams
from echo_integration.ingest.intervals import read_interval_table
from echo_integration.models import fields as F
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import ChannelExports, ExportTable, SourceStream


T0 = np.datetime64("2018-08-18T08:00:00.000", "ms")
CH = "38kHz"


def _table(kind: str, values: np.ndarray, *, latitude=None, depth_stop: float = 30.0) -> ExportTable:
    n, p = values.shape
    return ExportTable(
        source=f"{kind}_38.csv",
        kind=kind,
        samples=p,
        timestamp=T0 + (np.arange(n) * 10_000).astype("timedelta64[ms]"),
        latitude=np.full(n, -45.0) if latitude is None else np.asarray(latitude, dtype=np.float64),
        longitude=np.full(n, 170.0),
        depth_start=np.zeros(n),
        depth_stop=np.full(n, depth_stop),
        values=np.asarray(values, dtype=np.float64),
    )


def _stream(kind: str, values: np.ndarray, intervals=None, **kw) -> SourceStream:
    table = _table(kind, values, **kw)
    iv = np.arange(1, table.n_rows + 1) if intervals is None else np.asarray(intervals)
    return table.to_stream(iv)


def _profile(**overrides) -> IntegrationProfile:
    return IntegrationProfile.from_frequencies([38], **overrides)


def _full_aux(n: int = 3, p: int = 3):
    return {
        "raw": _stream("raw", np.full((n, p), -59.0)),
        "raw_count": _stream("raw_count", np.full((n, p), 10.0)),
        "good_count": _stream("good_count", np.full((n, p), 8.0)),
        "signal_noise": _stream("signal_noise", np.full((n, p), 12.0)),
        "motion": _stream("motion", np.full((n, p), 10.0 * np.log10(1.1))),
    }


def test_merge_fields() -> None:
    canonical = _stream("clean", np.full((3, 3), -60.0))
    merged = merge_channel_streams(canonical, _full_aux(), _profile(), channel=CH)
    rec = merged.records

    assert len(rec) == 9
    assert merged.warnings == ()
    np.testing.assert_allclose(rec[F.SV], 1e-6)
    np.testing.assert_allclose(rec[F.SV_UNFILT], 10 ** -5.9)
    np.testing.assert_array_equal(rec[F.SV_PCNT_GOOD], 80.0)
    np.testing.assert_allclose(rec[F.MEAN_HEIGHT], 8.0)
    np.testing.assert_allclose(rec[F.MEAN_DEPTH].to_numpy()[:3], [5.0, 15.0, 25.0])
    np.testing.assert_allclose(rec[F.SIGNAL_NOISE], 12.0)
    np.testing.assert_allclose(rec[F.MOTION_CORRECTION], 10.0)
    assert merged.n_layers == 3
    np.testing.assert_allclose(merged.layer_depths, [5.0, 15.0, 25.0])
    assert merged.interval_range == (1, 3)


def test_records_in_cell_key_order() -> None:
    canonical = _stream("clean", np.full((3, 2), -60.0), intervals=[7, 5, 6])
    merged = merge_channel_streams(canonical, {}, _profile(), channel=CH)
    assert list(merged.records["interval"]) == [5, 5, 6, 6, 7, 7]
    assert list(merged.records["layer"]) == [1, 2, 1, 2, 1, 2]


def test_missing_keys_nan_and_one_warning() -> None:
    canonical = _stream("clean", np.full((3, 3), -60.0))
    aux = _full_aux()
    # raw_count export lacks interval 2
    aux["raw_count"] = _stream("raw_count", np.full((2, 3), 10.0), intervals=[1, 3])
    merged = merge_channel_streams(canonical, aux, _profile(), channel=CH)

    w = [x for x in merged.warnings if x.code == "missing_key"]
    assert len(w) == 1
    assert "raw_count" in w[0].message
    assert "3 cells missing" in w[0].message
    assert "(2, 1)" in w[0].message
    assert w[0].channel == CH
    assert w[0].interval_range == (2, 2)

    rec = merged.records.set_index(["interval", "layer"])
    assert rec.loc[(2, 1), F.SV_PCNT_GOOD] == 0.0
    assert np.isnan(rec.loc[(2, 1), F.MEAN_HEIGHT])
    assert rec.loc[(1, 1), F.SV_PCNT_GOOD] == 80.0


def test_unsupplied_kind_is_nan_without_warning() -> None:
    canonical = _stream("clean", np.full((2, 2), -60.0))
    merged = merge_channel_streams(canonical, {}, _profile(), channel=CH)

    assert merged.warnings == ()
    assert np.all(np.isnan(merged.records[F.SV_UNFILT]))
    assert np.all(np.isnan(merged.records[F.MOTION_CORRECTION]))
    assert np.all(merged.records[F.SV_PCNT_GOOD] == 0.0)


def test_background_once_per_interval() -> None:
    canonical = _stream("clean", np.full((3, 3), -60.0))
    bg_vals = np.array([[-130.0, -120.0, -110.0], [-131.0, -121.0, -111.0], [-132.0, -122.0, -112.0]])
    aux = {"background": _stream("background", bg_vals)}
    merged = merge_channel_streams(canonical, aux, _profile(), channel=CH)

    bg = merged.background
    assert list(bg["interval"]) == [1, 2, 3]
    np.testing.assert_allclose(bg[F.BACKGROUND_NOISE], [-130.0, -131.0, -132.0])


def test_background_missing_interval_warns() -> None:
    canonical = _stream("clean", np.full((3, 1), -60.0))
    aux = {"background": _stream("background", np.array([[-130.0], [-132.0]]), intervals=[1, 3])}
    merged = merge_channel_streams(canonical, aux, _profile(), channel=CH)

    assert np.isnan(merged.background[F.BACKGROUND_NOISE].to_numpy()[1])
    assert [w.code for w in merged.warnings] == ["missing_key"]


class TestQualityGate:
    def test_invalid_position_dropped(self) -> None:
        canonical = _stream("clean", np.full((3, 2), -60.0), latitude=[-45.0, 999.0, np.nan])
        merged = merge_channel_streams(canonical, {}, _profile(), channel=CH)
        assert list(merged.records["interval"].unique()) == [1]

    def test_min_good_drops_cells(self) -> None:
        canonical = _stream("clean", np.full((2, 2), -60.0))
        aux = {
            "raw_count": _stream("raw_count", np.full((2, 2), 10.0)),
            "good_count": _stream("good_count", np.array([[1.0, 8.0], [5.0, 8.0]])),
        }
        merged = merge_channel_streams(canonical, aux, _profile(min_good=50.0), channel=CH)
        keys = list(zip(merged.records["interval"], merged.records["layer"]))
        assert keys == [(1, 2), (2, 1), (2, 2)]

    def test_max_depth_drops_deep_layers(self) -> None:
        canonical = _stream("clean", np.full((2, 3), -60.0), depth_stop=30.0)
        merged = merge_channel_streams(canonical, {}, _profile(max_depth_m=20.0), channel=CH)
        assert merged.n_layers == 2
        assert merged.records["layer"].max() == 2

    def test_per_channel_max_depth(self) -> None:
        profile = IntegrationProfile.from_frequencies([38, 120], max_depth_m=[1200.0, 10.0])
        canonical = _stream("clean", np.full((1, 3), -60.0), depth_stop=30.0)
        assert merge_channel_streams(canonical, {}, profile, channel="38kHz").n_layers == 3
        assert merge_channel_streams(canonical, {}, profile, channel="120kHz").n_layers == 1

    def test_all_dropped_is_empty(self) -> None:
        canonical = _stream("clean", np.full((2, 2), -60.0), latitude=[999.0, 999.0])
        merged = merge_channel_streams(canonical, {}, _profile(), channel=CH)
        assert merged.is_empty
        assert merged.interval_range is None
        assert merged.n_layers == 0


def test_extended_fields_only_when_enabled() -> None:
    canonical = _stream("clean", np.full((1, 2), -60.0))
    aux = {"clean_sd": _stream("clean_sd", np.full((1, 2), 3.0))}

    plain = merge_channel_streams(canonical, aux, _profile(), channel=CH)
    assert F.SV_SD not in plain.records.columns

    ext = merge_channel_streams(canonical, aux, _profile(extended=True), channel=CH)
    np.testing.assert_allclose(ext.records[F.SV_SD], 3.0)
    assert np.all(np.isnan(ext.records[F.SV_UNFILT_KURT]))


def test_merge_channel_aligns_and_rekeys() -> None:
    clean = _table("clean", np.full((3, 2), -60.0))
    raw_count = _table("raw_count", np.full((3, 2), 10.0))
    good_count = _table("good_count", np.full((3, 2), 4.0))
    t = pd.Timestamp("2018-08-18 08:00:00") + pd.to_timedelta([0, 10, 20], unit="s")
    intervals = read_interval_table(
        pd.DataFrame(
            {
                "Interval": [50, 51, 52],
                "Date_M": t.strftime("%Y%m%d"),
                "Time_M": t.strftime("%H:%M:%S.000"),
                "Sv_mean": [-70.0, -70.0, -70.0],
            }
        )
    )
    exports = ChannelExports(
        channel=CH,
        canonical=clean,
        interval_table=intervals,
        auxiliary={"raw_count": raw_count, "good_count": good_count},
    )
    merged = merge_channel(exports, _profile())

    assert merged.interval_range == (50, 52)
    np.testing.assert_array_equal(merged.records[F.SV_PCNT_GOOD], 40.0)
    assert merged.warnings == ()


def test_merge_channel_unknown_channel_rejected() -> None:
    canonical = _stream("clean", np.full((1, 1), -60.0))
    with pytest.raises(KeyError):
        merge_channel_streams(canonical, {}, _profile(), channel="200kHz")
