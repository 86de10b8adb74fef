from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from echo_integration.errors import FormatError
from echo_integration.ingest.export_reader import ExportReader, ExportReaderConfig
from echo_integration.ingest.intervals import read_interval_table
from echo_integration.models.fields import STAT_FIELD_KIND
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import AUXILIARY_KINDS, CLEAN, ChannelExports, ExportTable, FileBatch


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def wanted_kinds(profile: IntegrationProfile) -> tuple:
    """Auxiliary export kinds read for this profile (statistics only when extended)."""
    stats = set(STAT_FIELD_KIND.values())
    return tuple(k for k in AUXILIARY_KINDS if profile.extended or k not in stats)


def load_file_batch(
    name: str,
    channel_paths: Mapping[str, Mapping[str, PathLike]],
    interval_paths: Mapping[str, PathLike],
    profile: IntegrationProfile,
    reader: Optional[ExportReader] = None,
) -> FileBatch:
    """Read every export of one survey file for every configured channel.

    Parameters
    ----------
    name:
        Batch name (usually the survey file stem), used in warnings.
    channel_paths:
        ``channel -> {kind -> csv path}``. The ``clean`` kind is required for
        every configured channel; other kinds may be absent.
    interval_paths:
        ``channel -> interval table path``.
    """
    reader = reader or ExportReader(ExportReaderConfig.from_profile(profile))
    kinds = wanted_kinds(profile)

    channels: Dict[str, ChannelExports] = {}
    for channel in profile.channels:
        paths = channel_paths.get(channel, {})
        if CLEAN not in paths:
            raise FormatError(f"batch {name!r}: no canonical export", channel=channel)
        if channel not in interval_paths:
            raise FormatError(f"batch {name!r}: no interval table", channel=channel)

        canonical = reader.read(paths[CLEAN], CLEAN)
        intervals = read_interval_table(interval_paths[channel])

        auxiliary: Dict[str, ExportTable] = {}
        for kind in kinds:
            if kind in paths:
                auxiliary[kind] = reader.read(paths[kind], kind)
        skipped = sorted(set(paths) - set(kinds) - {CLEAN})
        if skipped:
            logger.debug("%s/%s: exports not used by this profile: %s", name, channel, skipped)

        channels[channel] = ChannelExports(
            channel=channel,
            canonical=canonical,
            interval_table=intervals,
            auxiliary=auxiliary,
        )
        logger.info("%s/%s: %d rows, %d auxiliary exports", name, channel, canonical.n_rows, len(auxiliary))

    return FileBatch(name=name, channels=channels)
