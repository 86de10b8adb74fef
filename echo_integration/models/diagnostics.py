from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class ContinuityWarning:
    """Non-fatal finding raised while aligning, merging or folding streams.

    Attributes
    ----------
    code:
        Short machine-readable tag (``gap``, ``missing_key``, ``row_mismatch``,
        ``duplicates_removed``, ``time_growth``, ``depth_growth``,
        ``before_batch``, ``no_position``, ``batch_skipped``).
    message:
        Human-readable description.
    channel, source:
        Context: channel name and export/batch name, when known.
    interval_range:
        Inclusive (first, last) interval range the warning refers to.
    """

    code: str
    message: str
    channel: Optional[str] = None
    source: Optional[str] = None
    interval_range: Optional[Tuple[int, int]] = None

    def __str__(self) -> str:
        ctx = []
        if self.source:
            ctx.append(str(self.source))
        if self.channel:
            ctx.append(f"channel={self.channel}")
        if self.interval_range is not None:
            ctx.append(f"intervals={self.interval_range[0]}-{self.interval_range[1]}")
        if not ctx:
            return f"[{self.code}] {self.message}"
        return f"[{self.code}] {self.message} ({', '.join(ctx)})"


def emit_warning(
    sink: List[ContinuityWarning],
    logger: logging.Logger,
    code: str,
    message: str,
    *,
    channel: Optional[str] = None,
    source: Optional[str] = None,
    interval_range: Optional[Tuple[int, int]] = None,
) -> ContinuityWarning:
    """Record a warning on ``sink`` and log it at WARNING level."""
    w = ContinuityWarning(
        code=code,
        message=message,
        channel=channel,
        source=source,
        interval_range=None if interval_range is None else (int(interval_range[0]), int(interval_range[1])),
    )
    sink.append(w)
    logger.warning("%s", w)
    return w
