"""Tests for IntegrationProfile."""

from __future__ import annotations

import dataclasses
import json

import pytest

from echo_integration.models.fields import CORE_FIELDS, EXTENDED_FIELDS
from echo_integration.models.profile import IntegrationProfile


# -----------------------------------------------------------------------
# Basic construction
# -----------------------------------------------------------------------


def test_profile_defaults() -> None:
    p = IntegrationProfile(channels=("38kHz",), frequencies_khz=(38.0,))
    assert p.max_depth_m == 1200.0
    assert p.min_good == 0.0
    assert p.accept_good == 50.0
    assert p.min_layer_cells == 5
    assert p.extended is False
    assert p.sv_max_valid == 1.0
    assert p.invalid_below == -998.0
    assert p.db_sentinel == 9999.0
    assert [name for name, _, _ in p.summary_layers] == [
        "epipelagic",
        "upper_mesopelagic",
        "lower_mesopelagic",
    ]


def test_from_frequencies_names_channels() -> None:
    p = IntegrationProfile.from_frequencies([18, 38, 120.5], min_good=10)
    assert p.channels == ("18kHz", "38kHz", "120.5kHz")
    assert p.frequencies_khz == (18.0, 38.0, 120.5)
    assert p.n_channels == 3
    assert p.min_good == 10


def test_frozen() -> None:
    p = IntegrationProfile.from_frequencies([38])
    with pytest.raises(dataclasses.FrozenInstanceError):
        p.min_good = 5.0  # type: ignore[misc]


def test_replace_override() -> None:
    p = IntegrationProfile.from_frequencies([38])
    q = dataclasses.replace(p, extended=True)
    assert q.extended and not p.extended
    assert q.enabled_fields == CORE_FIELDS + EXTENDED_FIELDS
    assert p.enabled_fields == CORE_FIELDS


# -----------------------------------------------------------------------
# Derived
# -----------------------------------------------------------------------


def test_max_depth_scalar_and_per_channel() -> None:
    p = IntegrationProfile.from_frequencies([38, 120], max_depth_m=800.0)
    assert p.max_depth_for(1) == 800.0
    q = IntegrationProfile.from_frequencies([38, 120], max_depth_m=[1000.0, 300.0])
    assert q.max_depth_for("38kHz") == 1000.0
    assert q.max_depth_for("120kHz") == 300.0


def test_unknown_channel() -> None:
    p = IntegrationProfile.from_frequencies([38])
    with pytest.raises(KeyError):
        p.channel_index("70kHz")


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(channels=(), frequencies_khz=()),
        dict(channels=("a", "a"), frequencies_khz=(1.0, 2.0)),
        dict(channels=("a",), frequencies_khz=(1.0, 2.0)),
        dict(channels=("a", "b"), frequencies_khz=(1.0, 2.0), max_depth_m=(100.0,)),
        dict(channels=("a",), frequencies_khz=(1.0,), min_good=120.0),
        dict(channels=("a",), frequencies_khz=(1.0,), accept_good=-1.0),
        dict(channels=("a",), frequencies_khz=(1.0,), summary_layers=(("x", 200.0, 100.0),)),
    ],
)
def test_validate_rejects(kwargs) -> None:
    with pytest.raises(ValueError):
        IntegrationProfile(**kwargs).validate()


# -----------------------------------------------------------------------
# Serialization
# -----------------------------------------------------------------------


def test_dict_round_trip_through_json() -> None:
    p = IntegrationProfile.from_frequencies([38, 120], max_depth_m=[1000.0, 300.0], extended=True)
    d = json.loads(json.dumps(p.to_dict()))
    assert d["channels"] == ["38kHz", "120kHz"]
    assert IntegrationProfile.from_dict(d) == p


def test_dict_round_trip_scalar_depth() -> None:
    p = IntegrationProfile.from_frequencies([38])
    assert IntegrationProfile.from_dict(p.to_dict()) == p
