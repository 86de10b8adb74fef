"""Ingest package - export readers and interval alignment.

This package handles:
- Reading resampled echo-integration exports (*.csv), one per channel and kind
- Reading interval tables and re-keying exports by true interval number
- Bundling one survey file's exports into a FileBatch

Key classes:
- ExportReader: Reads row-oriented exports into ExportTable objects
- IntervalAlignment: Timestamp intersection of an export and its interval table

Design principle:
- Sentinels are converted to NaN here; nothing downstream sees them
- Malformed input raises FormatError, never a partial table
"""

from .export_reader import ExportReader, ExportReaderConfig
from .intervals import IntervalAlignment, align_intervals, read_interval_table
from .batch import load_file_batch

__all__ = [
    "ExportReader",
    "ExportReaderConfig",
    "IntervalAlignment",
    "align_intervals",
    "read_interval_table",
    "load_file_batch",
]
