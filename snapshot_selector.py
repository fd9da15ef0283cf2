"""
Name Resolver – choose which bulk snapshot describes the entity tree on a report's export date.

Policy: the latest snapshot on or before the reference date, unless a snapshot at most
`forward_tolerance_days` after it is strictly closer. No qualifying snapshot -> None;
the caller records a missing_bulk_snapshot issue.
"""

import logging
import re
from datetime import date
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel

from normalize import to_date

logger = logging.getLogger(__name__)

DEFAULT_FORWARD_TOLERANCE_DAYS = 7

_COVERAGE_RANGE = re.compile(r"(\d{8})-(\d{8})")
_EXPORT_TIMESTAMP = re.compile(r"-(\d{13,})\.xlsx$", re.IGNORECASE)


def pick_snapshot_date(
    reference_date: Any,
    available_dates: Iterable[Any],
    forward_tolerance_days: int = DEFAULT_FORWARD_TOLERANCE_DAYS,
) -> Optional[date]:
    ref = to_date(reference_date)
    candidates = sorted({d for d in (to_date(v) for v in available_dates) if d is not None})
    if ref is None or not candidates:
        return None

    before = [d for d in candidates if d <= ref]
    chosen_before = before[-1] if before else None
    after = [d for d in candidates if 0 < (d - ref).days <= forward_tolerance_days]
    chosen_after = after[0] if after else None

    if chosen_before and chosen_after:
        # Ties go to the earlier snapshot
        if (chosen_after - ref).days < (ref - chosen_before).days:
            chosen = chosen_after
        else:
            chosen = chosen_before
    else:
        chosen = chosen_before or chosen_after
    logger.debug("snapshot for %s: %s (before=%s, after=%s)", ref, chosen, chosen_before, chosen_after)
    return chosen


# ---------------------------------------------------------------------------
# Bulk file metadata (which export file becomes the snapshot for a date)
# ---------------------------------------------------------------------------

# Library entry points for the bulk-file loader that fills the bulk_* tables;
# no job in this project reads export files itself.

class BulkFileMeta(BaseModel):
    filename: str
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    export_timestamp_ms: Optional[int] = None
    snapshot_date: Optional[date] = None
    mtime_ms: Optional[float] = None


def _yyyymmdd(value: str) -> Optional[date]:
    try:
        return date(int(value[:4]), int(value[4:6]), int(value[6:8]))
    except ValueError:
        return None


def parse_bulk_filename_meta(filename: str, mtime_ms: Optional[float] = None) -> BulkFileMeta:
    """Read the coverage range (YYYYMMDD-YYYYMMDD) and export timestamp from a bulk file name.
    The snapshot date is the end of the coverage range."""
    range_match = _COVERAGE_RANGE.search(filename)
    coverage_start = _yyyymmdd(range_match.group(1)) if range_match else None
    coverage_end = _yyyymmdd(range_match.group(2)) if range_match else None
    export_match = _EXPORT_TIMESTAMP.search(filename)
    return BulkFileMeta(
        filename=filename,
        coverage_start=coverage_start,
        coverage_end=coverage_end,
        export_timestamp_ms=int(export_match.group(1)) if export_match else None,
        snapshot_date=coverage_end,
        mtime_ms=mtime_ms,
    )


def select_best_bulk_file(files_meta: List[BulkFileMeta], for_date: Any) -> Optional[BulkFileMeta]:
    """Prefer files whose coverage contains the date; among those, newest export timestamp,
    then latest snapshot date, then latest file mtime."""
    if not files_meta:
        return None
    d = to_date(for_date)
    covering = [
        m for m in files_meta
        if d is not None and m.coverage_start and m.coverage_end and m.coverage_start <= d <= m.coverage_end
    ]
    candidates = covering or files_meta

    def sort_key(m: BulkFileMeta):
        return (
            m.export_timestamp_ms if m.export_timestamp_ms is not None else -1,
            m.snapshot_date or date.min,
            m.mtime_ms if m.mtime_ms is not None else -1,
        )

    return max(candidates, key=sort_key)
