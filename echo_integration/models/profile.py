"""Integration profile -- bundles all grid-assembly configuration.

An IntegrationProfile groups every parameter that affects the assembled grid
into one frozen dataclass.  It can be:

- Constructed from a list of frequencies (``from_frequencies``)
- Overridden field-by-field via ``dataclasses.replace()``
- Serialized to/from a dict for JSON provenance
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Sequence, Tuple, Union

from echo_integration.models.fields import CORE_FIELDS, EXTENDED_FIELDS


@dataclass(frozen=True)
class IntegrationProfile:
    """Frozen configuration for the grid-assembly engine.

    Required fields
    ---------------
    channels : tuple of str
        Channel names in processing order (e.g. ``("38kHz", "120kHz")``).
        Channel 1 establishes the Time/Depth baseline of every batch.
    frequencies_khz : tuple of float
        Nominal frequency per channel, same length as ``channels``.

    Optional fields (sensible defaults)
    ------------------------------------
    max_depth_m : float or tuple of float
        Depth cutoff. A scalar applies to every channel; a tuple gives one
        value per channel. Cells deeper than the cutoff are dropped.
    min_good : float
        Minimum percent-good for a cell to be written at all.
    accept_good : float
        Percent-good above which a written cell may be flagged good.
    min_layer_cells : int
        Minimum number of finite cells for a layer summary value.
    extended : bool
        Keep the higher-order statistic fields (sd/skew/kurt).
    sv_max_valid : float
        Upper bound (linear Sv) of the valid physical range used for flags.
    invalid_below : float
        Export values strictly below this are missing.
    db_sentinel : float
        Exact value the exporter writes for "no data" in dB exports.
    summary_layers : tuple of (name, top_m, bottom_m)
        Depth bands for the layer summary metrics.
    """

    channels: Tuple[str, ...]
    frequencies_khz: Tuple[float, ...]

    max_depth_m: Union[float, Tuple[float, ...]] = 1200.0
    min_good: float = 0.0
    accept_good: float = 50.0
    min_layer_cells: int = 5
    extended: bool = False

    sv_max_valid: float = 1.0
    invalid_below: float = -998.0
    db_sentinel: float = 9999.0

    summary_layers: Tuple[Tuple[str, float, float], ...] = (
        ("epipelagic", 20.0, 200.0),
        ("upper_mesopelagic", 200.0, 400.0),
        ("lower_mesopelagic", 400.0, 800.0),
    )

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_frequencies(cls, frequencies_khz: Sequence[float], **overrides: Any) -> IntegrationProfile:
        """Build a profile naming channels after their frequency.

        Example::

            profile = IntegrationProfile.from_frequencies([38, 120], min_good=10)
            profile.channels  # ("38kHz", "120kHz")
        """
        freqs = tuple(float(f) for f in frequencies_khz)
        names = tuple(f"{f:g}kHz" for f in freqs)
        base: Dict[str, Any] = dict(channels=names, frequencies_khz=freqs)
        base.update(overrides)
        return cls.from_dict(base)

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def n_channels(self) -> int:
        return len(self.channels)

    def max_depth_for(self, channel: Union[int, str]) -> float:
        """Depth cutoff for a channel (index or name)."""
        idx = self.channel_index(channel) if isinstance(channel, str) else int(channel)
        if isinstance(self.max_depth_m, tuple):
            return float(self.max_depth_m[idx])
        return float(self.max_depth_m)

    def channel_index(self, channel: str) -> int:
        try:
            return self.channels.index(channel)
        except ValueError:
            raise KeyError(f"Unknown channel {channel!r}; configured: {list(self.channels)}") from None

    @property
    def enabled_fields(self) -> Tuple[str, ...]:
        """Per-cell grid fields kept for this run (core + optional extended)."""
        if self.extended:
            return CORE_FIELDS + EXTENDED_FIELDS
        return CORE_FIELDS

    def validate(self) -> None:
        """Raise ValueError for inconsistent settings."""
        if not self.channels:
            raise ValueError("At least one channel is required.")
        if len(set(self.channels)) != len(self.channels):
            raise ValueError(f"Duplicate channel names: {list(self.channels)}")
        if len(self.frequencies_khz) != len(self.channels):
            raise ValueError(
                f"frequencies_khz has {len(self.frequencies_khz)} entries for {len(self.channels)} channels"
            )
        if isinstance(self.max_depth_m, tuple) and len(self.max_depth_m) != len(self.channels):
            raise ValueError(
                f"max_depth_m has {len(self.max_depth_m)} entries for {len(self.channels)} channels"
            )
        if not (0.0 <= self.min_good <= 100.0):
            raise ValueError(f"min_good must be in [0, 100], got {self.min_good}")
        if not (0.0 <= self.accept_good <= 100.0):
            raise ValueError(f"accept_good must be in [0, 100], got {self.accept_good}")
        for name, top, bottom in self.summary_layers:
            if not top < bottom:
                raise ValueError(f"summary layer {name!r}: top {top} must be above bottom {bottom}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict (tuples become lists)."""
        d = asdict(self)
        d["channels"] = list(d["channels"])
        d["frequencies_khz"] = list(d["frequencies_khz"])
        if isinstance(d["max_depth_m"], tuple):
            d["max_depth_m"] = list(d["max_depth_m"])
        d["summary_layers"] = [list(x) for x in d["summary_layers"]]
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> IntegrationProfile:
        """Reconstruct from a dict (e.g. loaded from JSON)."""
        d = dict(d)  # shallow copy
        for key in ("channels", "frequencies_khz"):
            if key in d and not isinstance(d[key], tuple):
                d[key] = tuple(d[key])
        if "max_depth_m" in d and isinstance(d["max_depth_m"], list):
            d["max_depth_m"] = tuple(float(x) for x in d["max_depth_m"])
        if "summary_layers" in d:
            d["summary_layers"] = tuple(
                (str(name), float(top), float(bottom)) for name, top, bottom in d["summary_layers"]
            )
        return cls(**d)

