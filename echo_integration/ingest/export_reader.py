from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from echo_integration.errors import FormatError
from echo_integration.models.profile import IntegrationProfile
from echo_integration.models.records import ExportTable, kind_spec


logger = logging.getLogger(__name__)

# Identification columns that must precede the payload. Exporters may add
# others (Distance_gps, Range_start, ...); they are ignored.
REQUIRED_ID_COLUMNS: Tuple[str, ...] = (
    "Ping_date",
    "Ping_time",
    "Ping_milliseconds",
    "Latitude",
    "Longitude",
    "Depth_start",
    "Depth_stop",
    "Sample_count",
)
_KNOWN_ID_COLUMNS = set(REQUIRED_ID_COLUMNS) | {
    "Distance_gps",
    "Distance_vl",
    "Range_start",
    "Range_stop",
}


@dataclass(frozen=True)
class ExportReaderConfig:
    """
    Normalization rules for row-oriented exports.

    invalid_below:
      Values strictly below this threshold are missing (exporters write -999
      or -9.9e37 for empty cells).
    db_sentinel:
      Exact value meaning "no data" in dB exports.
    """
    invalid_below: float = -998.0
    db_sentinel: float = 9999.0

    @classmethod
    def from_profile(cls, profile: IntegrationProfile) -> ExportReaderConfig:
        return cls(invalid_below=float(profile.invalid_below), db_sentinel=float(profile.db_sentinel))


class ExportReader:
    """
    STRICT reader for resampled echo-integration exports (*.csv).

    Contract:
      - One row per interval: id columns, then ``Sample_count`` payload values
        ordered shallow to deep.
      - ``Sample_count`` is constant across the file and equals the payload width.
      - Exact duplicate rows (ignoring the leading row index) are removed, first kept.
      - Sentinels become NaN here; nothing downstream compares against sentinels.
      - Rows are returned sorted by timestamp (stable).
    """

    def __init__(self, config: Optional[ExportReaderConfig] = None):
        self.config = config or ExportReaderConfig()

    def read(self, file_path: Union[str, Path], kind: str) -> ExportTable:
        path = Path(file_path).expanduser()
        kind_spec(kind)
        df = self._load_csv(path)
        return self.read_frame(df, kind, source=str(path))

    def read_frame(self, df: pd.DataFrame, kind: str, *, source: str = "<frame>") -> ExportTable:
        spec = kind_spec(kind)
        warnings: List[str] = []

        df = df.rename(columns=lambda c: str(c).lstrip("\ufeff").strip())
        missing = [c for c in REQUIRED_ID_COLUMNS if c not in df.columns]
        if missing:
            raise FormatError(f"missing id columns {missing}", path=source)

        # Leading row index does not take part in duplicate detection.
        first = df.columns[0]
        compare_cols = list(df.columns[1:]) if first not in _KNOWN_ID_COLUMNS else list(df.columns)
        n_before = len(df)
        df = df.loc[~df.duplicated(subset=compare_cols, keep="first")]
        n_dup = n_before - len(df)
        if n_dup:
            warnings.append(f"{n_dup} non unique rows removed")
            logger.info("%s: %d non unique rows removed", source, n_dup)

        n_id = list(df.columns).index("Sample_count") + 1
        payload = df.iloc[:, n_id:]
        if len(df) == 0:
            return _empty_table(source, kind, payload.shape[1], warnings)

        counts = pd.to_numeric(df["Sample_count"], errors="coerce").to_numpy()
        if not np.all(np.isfinite(counts)):
            raise FormatError("non-numeric Sample_count", path=source)
        p = int(counts[0])
        bad = np.nonzero(counts != p)[0]
        if bad.size:
            raise FormatError(
                f"Sample_count changes within file (first row has {p})",
                path=source,
                rows=(int(bad[0]), int(bad[-1])),
            )

        # A trailing delimiter yields empty columns past the payload.
        while payload.shape[1] > p and payload.iloc[:, -1].isna().all():
            payload = payload.iloc[:, :-1]
        if payload.shape[1] != p:
            raise FormatError(f"payload has {payload.shape[1]} columns, Sample_count says {p}", path=source)

        try:
            values = payload.apply(pd.to_numeric, errors="raise").to_numpy(dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise FormatError(f"non-numeric payload value ({e})", path=source) from e
        short = np.nonzero(np.isnan(values).any(axis=1))[0]
        if short.size:
            raise FormatError(
                f"{short.size} rows shorter than Sample_count={p}",
                path=source,
                rows=(int(short[0]), int(short[-1])),
            )

        values = self._normalize(values, spec.db_sentinel, spec.zero_is_missing)
        timestamp = _build_timestamps(df, source)

        order = np.argsort(timestamp, kind="stable")

        def num(col: str) -> np.ndarray:
            return pd.to_numeric(df[col], errors="coerce").to_numpy(dtype=np.float64)[order]

        return ExportTable(
            source=source,
            kind=kind,
            samples=p,
            timestamp=timestamp[order],
            latitude=num("Latitude"),
            longitude=num("Longitude"),
            depth_start=num("Depth_start"),
            depth_stop=num("Depth_stop"),
            values=values[order, :],
            warnings=tuple(warnings),
        )

    def _normalize(self, values: np.ndarray, db_sentinel: bool, zero_is_missing: bool) -> np.ndarray:
        out = values.copy()
        out[out < self.config.invalid_below] = np.nan
        if db_sentinel:
            out[out == self.config.db_sentinel] = np.nan
        if zero_is_missing:
            out[out == 0.0] = np.nan
        return out

    def _load_csv(self, path: Path) -> pd.DataFrame:
        """
        Load a CSV whose header may name only the id columns.

        Policy:
          - header names come from the first line (BOM stripped)
          - data rows may be wider than the header (payload columns)
          - rows wider than the first data row are a format error
        """
        try:
            with open(path, "r", encoding="utf-8-sig", newline="") as f:
                header = f.readline()
        except OSError as e:
            raise FormatError(f"cannot open export ({e})", path=path) from e
        names = [h.strip() for h in header.strip().split(",")]
        if not names or names == [""]:
            raise FormatError("empty export (no header)", path=path)

        try:
            body = pd.read_csv(path, header=None, skiprows=1, encoding="utf-8-sig", skipinitialspace=True)
        except pd.errors.EmptyDataError:
            body = pd.DataFrame(columns=range(len(names)))
        except pd.errors.ParserError as e:
            raise FormatError(f"row shape mismatch ({e})", path=path) from e

        if body.shape[1] < len(names):
            raise FormatError(f"data rows have {body.shape[1]} columns, header names {len(names)}", path=path)
        cols = list(names) + [f"v{k}" for k in range(body.shape[1] - len(names))]
        body.columns = cols
        return body


def _build_timestamps(df: pd.DataFrame, source: str) -> np.ndarray:
    """Millisecond timestamps from Ping_date + Ping_time + Ping_milliseconds."""
    date = df["Ping_date"].astype(str).str.strip()
    compact = date.str.fullmatch(r"\d{8}")
    date = date.where(~compact, date.str.slice(0, 4) + "-" + date.str.slice(4, 6) + "-" + date.str.slice(6, 8))
    # Sub-second part comes from Ping_milliseconds only.
    hms = df["Ping_time"].astype(str).str.strip().str.split(".").str[0]
    ms = pd.to_numeric(df["Ping_milliseconds"], errors="coerce").fillna(0.0)
    try:
        ts = pd.to_datetime(date + " " + hms, format="%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError) as e:
        raise FormatError(f"unparsable ping date/time ({e})", path=source) from e
    offset = np.floor(ms.to_numpy(dtype=np.float64)).astype(np.int64).astype("timedelta64[ms]")
    return ts.to_numpy(dtype="datetime64[ms]") + offset


def _empty_table(source: str, kind: str, samples: int, warnings: List[str]) -> ExportTable:
    z = np.zeros(0, dtype=np.float64)
    return ExportTable(
        source=source,
        kind=kind,
        samples=int(samples),
        timestamp=np.zeros(0, dtype="datetime64[ms]"),
        latitude=z,
        longitude=z,
        depth_start=z,
        depth_stop=z,
        values=np.zeros((0, int(samples)), dtype=np.float64),
        warnings=tuple(warnings),
    )
