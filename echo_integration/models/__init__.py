from .diagnostics import ContinuityWarning
from .grid import EchoGrid, GridBounds, FLAG_GOOD, FLAG_NO_QC, FLAG_PROBABLY_BAD
from .profile import IntegrationProfile
from .records import ChannelExports, ExportTable, FileBatch, SourceStream

__all__ = [
    "ContinuityWarning",
    "EchoGrid",
    "GridBounds",
    "FLAG_GOOD",
    "FLAG_NO_QC",
    "FLAG_PROBABLY_BAD",
    "IntegrationProfile",
    "ChannelExports",
    "ExportTable",
    "FileBatch",
    "SourceStream",
]
