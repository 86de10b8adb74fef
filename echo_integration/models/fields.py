"""Grid field registry.

Every per-cell field of the grid is named here once. The core set is always
present; the extended set (higher-order statistics) is only kept when the
profile enables it. Field names follow the exported variable names.
"""

from __future__ import annotations

from typing import Dict, Tuple


SV = "Sv"
SV_UNFILT = "Sv_unfilt"
SV_PCNT_GOOD = "Sv_pcnt_good"
SIGNAL_NOISE = "signal_noise"
MOTION_CORRECTION = "motion_correction_factor"
MEAN_HEIGHT = "mean_height"
MEAN_DEPTH = "mean_depth"

SV_SD = "Sv_sd"
SV_SKEW = "Sv_skew"
SV_KURT = "Sv_kurt"
SV_UNFILT_SD = "Sv_unfilt_sd"
SV_UNFILT_SKEW = "Sv_unfilt_skew"
SV_UNFILT_KURT = "Sv_unfilt_kurt"

# Time x Channel only
BACKGROUND_NOISE = "background_noise"

CORE_FIELDS: Tuple[str, ...] = (
    MEAN_HEIGHT,
    MEAN_DEPTH,
    SV,
    SV_UNFILT,
    SV_PCNT_GOOD,
    SIGNAL_NOISE,
    MOTION_CORRECTION,
)

EXTENDED_FIELDS: Tuple[str, ...] = (
    SV_SD,
    SV_SKEW,
    SV_KURT,
    SV_UNFILT_SD,
    SV_UNFILT_SKEW,
    SV_UNFILT_KURT,
)

# Export kind feeding each statistic field (extended set only).
STAT_FIELD_KIND: Dict[str, str] = {
    SV_SD: "clean_sd",
    SV_SKEW: "clean_skew",
    SV_KURT: "clean_kurt",
    SV_UNFILT_SD: "raw_sd",
    SV_UNFILT_SKEW: "raw_skew",
    SV_UNFILT_KURT: "raw_kurt",
}
