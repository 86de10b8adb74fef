"""Fatal error type for the echo-integration engine.

Malformed exports, empty timestamp intersections and out-of-order batches are
raised as :class:`FormatError`. It derives from ``ValueError`` so callers that
already guard reader calls with ``except ValueError`` keep working.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union


class FormatError(ValueError):
    """Raised when an export (or a sequence of exports) cannot be folded.

    The optional context is rendered into the message so that a failing run
    reports the offending file, channel and row range.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Union[str, Path]] = None,
        channel: Optional[str] = None,
        rows: Optional[Tuple[int, int]] = None,
    ) -> None:
        self.path = str(path) if path is not None else None
        self.channel = channel
        self.rows = rows

        ctx = []
        if self.path:
            ctx.append(f"file={self.path}")
        if channel:
            ctx.append(f"channel={channel}")
        if rows is not None:
            ctx.append(f"rows={rows[0]}-{rows[1]}")
        full = message if not ctx else f"{message} [{', '.join(ctx)}]"
        super().__init__(full)
        self.reason = message
