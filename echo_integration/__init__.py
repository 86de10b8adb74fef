"""Echo Integration -- fusion of resampled acoustic exports into a Time x Depth x Channel grid.

This package provides tools for:
- Reading row-oriented echo-integration exports (one file per channel and variable)
- Re-keying exports by survey interval number through interval tables
- Merging auxiliary variables onto the processed Sv stream per cell
- Folding survey files one at a time into a growing grid, trimming overlaps
- Quality flags, global bounds and depth-band summaries on the final grid

Key principles:
- Sentinels become NaN at the reader; nothing downstream compares against them
- A survey file is folded all-or-nothing
- Every continuity problem is reported, never silently repaired

Main subpackages:
- ingest: Export readers, interval alignment, batch loading
- analysis: Sorted merge, conversions, grid assembly, finalization
- models: Data models (ExportTable, SourceStream, EchoGrid, IntegrationProfile)
"""

__all__ = []
