from __future__ import annotations

import logging
from typing import Iterable

from echo_integration.analysis.finalize import finalize_grid
from echo_integration.analysis.grid_assembler import GridAssembler
from echo_integration.errors import FormatError
from echo_integration.models.grid import EchoGrid
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import FileBatch


logger = logging.getLogger(__name__)


def assemble_grid(
    batches: Iterable[FileBatch],
    profile: IntegrationProfile,
    *,
    skip_failed: bool = False,
) -> EchoGrid:
    """Fold every batch in order and finalize the grid.

    A batch raising :class:`FormatError` is aborted. With ``skip_failed`` the
    run continues without it (the error is kept as a ``batch_skipped``
    warning); otherwise the error propagates.
    """
    assembler = GridAssembler(profile)
    for batch in batches:
        try:
            assembler.fold_batch(batch)
        except FormatError as e:
            if not skip_failed:
                raise
            logger.error("batch %s skipped: %s", batch.name, e)
            assembler.record_warning("batch_skipped", str(e), source=batch.name)
    return finalize_grid(assembler, profile)
