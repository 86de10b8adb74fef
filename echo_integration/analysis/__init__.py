"""Analysis package - merge, grid assembly and finalization.

Design principle:
  - Ingest produces sentinel-free :class:`~echo_integration.models.records.ExportTable`
    objects and interval-keyed streams.
  - Analysis joins streams per channel, folds them into the growing grid one
    survey file at a time, and finalizes an immutable
    :class:`~echo_integration.models.grid.EchoGrid`.

No cell is ever written twice for the same interval: overlapping survey files
are resolved in favour of the newer file.
"""

from .sorted_merge import cell_key, interval_key, match_sorted
from .conversions import cell_height, db_to_linear, motion_correction_percent, percent_good
from .merge import MergedChannel, merge_channel, merge_channel_streams
from .growable import GrowableArray
from .grid_assembler import GridAssembler, GridSnapshot
from .finalize import compute_bounds, finalize_grid, quality_flags
from .layers import LayerSummary, summarize_layers
from .pipeline import assemble_grid

__all__ = [
    "cell_key",
    "interval_key",
    "match_sorted",
    "cell_height",
    "db_to_linear",
    "motion_correction_percent",
    "percent_good",
    "MergedChannel",
    "merge_channel",
    "merge_channel_streams",
    "GrowableArray",
    "GridAssembler",
    "GridSnapshot",
    "compute_bounds",
    "finalize_grid",
    "quality_flags",
    "LayerSummary",
    "summarize_layers",
    "assemble_grid",
]
