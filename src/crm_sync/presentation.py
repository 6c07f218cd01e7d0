"""
Post-batch presentation pass: sort rows and recolor them.

Both passes are pure functions of current record contents and are safe
to re-run any number of times.
"""

import logging
from datetime import date
from typing import Sequence, Tuple

from src.crm_sync.base import RecordStore
from src.crm_sync.models import STATUS_SCHEDULED, CRMRecord, HighlightState
from src.utils.date_utils import parse_display_date, parse_display_time

logger = logging.getLogger(__name__)

# Same-organization contacts end up next to each other in time order
SORT_SPEC = ("meeting_date", "meeting_time", "organization")

TRUTHY_FLAGS = {"yes", "true", "y", "1"}


def _field_key(record: CRMRecord, field_name: str) -> Tuple:
    """
    Ascending key for one field. Empty values sort after filled ones.

    Dates and times are compared chronologically; anything unparseable
    falls back to case-insensitive text after the parsed values.
    """
    value = record.get(field_name).strip()
    if not value:
        return (2, "")
    if field_name == "meeting_date":
        parsed = parse_display_date(value)
        return (0, parsed) if parsed else (1, value.lower())
    if field_name == "meeting_time":
        parsed = parse_display_time(value)
        return (0, parsed) if parsed else (1, value.lower())
    return (0, value.lower())


def record_sort_key(record: CRMRecord, spec: Sequence[str] = SORT_SPEC) -> Tuple:
    return tuple(_field_key(record, field_name) for field_name in spec)


def sort_records(records: Sequence[CRMRecord], spec: Sequence[str] = SORT_SPEC) -> list:
    """Stable sort of ``records`` by ``spec``."""
    return sorted(records, key=lambda record: record_sort_key(record, spec))


def is_flag_set(value: str) -> bool:
    return (value or "").strip().lower() in TRUTHY_FLAGS


def highlight_state(record: CRMRecord, today: date) -> HighlightState:
    """Colour a row purely from its own fields."""
    scheduled = record.meeting_status.strip() == STATUS_SCHEDULED
    if scheduled and is_flag_set(record.needs_response):
        return HighlightState.NEEDS_RESPONSE
    if scheduled:
        meeting_date = parse_display_date(record.meeting_date)
        if meeting_date is not None and meeting_date >= today:
            return HighlightState.UPCOMING
    return HighlightState.DEFAULT


async def sort_and_highlight(store: RecordStore, today: date) -> int:
    """
    Sort the whole store, then recolor every row.

    Row indices change during the sort, so records are re-read before
    recoloring. Per-row recolor failures are logged and do not stop the pass.

    Returns:
        Number of rows recolored
    """
    await store.sort_records(SORT_SPEC)
    logger.info("Sorted records by meeting date, time and organization")

    recolored = 0
    for record in await store.read_all_records():
        state = highlight_state(record, today)
        try:
            await store.recolor_record(record.row_index, state)
            recolored += 1
        except Exception as e:
            logger.error(f"Could not recolor row {record.row_index}: {str(e)}")
    logger.info(f"Recolored {recolored} row(s)")
    return recolored
