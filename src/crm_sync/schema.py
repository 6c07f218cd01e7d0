"""
Schema discovery for a store whose column layout is not fixed.

Binds canonical record fields to header cells by alias matching. Fields are
considered in the declared priority order of ``FIELD_ALIASES``; for each
field the first unclaimed header cell whose trimmed, lower-cased text
contains an alias (or is contained in one) is bound. A bound field and a
claimed cell are never reconsidered. Cells nobody claims stay unmapped and
their values are carried through every read and write untouched.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from src.crm_sync.models import CRMRecord

logger = logging.getLogger(__name__)

# Declared priority order. Fields whose aliases are broad ("meeting", "date",
# "meet") come after the narrower fields they would otherwise steal from.
FIELD_ALIASES: List[Tuple[str, List[str]]] = [
    ("email", ["email", "email address", "e-mail"]),
    ("name", ["name", "investor name", "investor", "contact name", "full name"]),
    ("organization", ["company", "fund", "firm", "organization", "org"]),
    ("location", ["location", "city", "hq", "headquarters", "based in"]),
    ("about", ["about", "bio", "description", "background"]),
    ("needs_response", ["needs response", "awaiting response", "pending response", "response needed"]),
    ("last_contact_date", ["last contact", "last contacted", "last email", "last touch"]),
    ("calendar_link", ["calendar link", "calendar", "cal link", "event link", "gcal", "google calendar"]),
    ("attributed_member", ["with", "meeting with", "attendee", "attendees"]),
    ("meeting_status", ["meeting status", "status", "stage", "meeting stage"]),
    ("meeting_time", ["meeting time", "time", "start time", "meeting start"]),
    ("meeting_date", ["meeting date", "date", "next meeting", "scheduled date", "meeting"]),
    ("meet_link", ["meet link", "meeting link", "video link", "zoom", "google meet", "meet"]),
    ("notes", ["notes", "note", "comments", "summary", "context"]),
]

CANONICAL_FIELDS = [name for name, _ in FIELD_ALIASES]


def _normalize_header(header: str) -> str:
    return (header or "").strip().lower()


def _matches(header: str, aliases: Sequence[str]) -> bool:
    if not header:
        return False
    return any(alias in header or header in alias for alias in aliases)


def column_letter(index: int) -> str:
    """Convert a 0-based column index to an A1 column label (0 → A, 26 → AA)."""
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


class FieldMap:
    """
    Deterministic canonical-field ↔ column-index mapping for one header row.

    Attributes:
        headers: Header row exactly as read
        columns: Canonical field name → 0-based column index
    """

    def __init__(self, headers: Sequence[str], columns: Dict[str, int]):
        self.headers = list(headers)
        self.columns = dict(columns)

    @property
    def width(self) -> int:
        return len(self.headers)

    def has(self, field_name: str) -> bool:
        return field_name in self.columns

    def index(self, field_name: str) -> Optional[int]:
        return self.columns.get(field_name)

    def header_for(self, field_name: str) -> Optional[str]:
        index = self.index(field_name)
        return self.headers[index] if index is not None else None

    @property
    def unmapped_indices(self) -> List[int]:
        claimed = set(self.columns.values())
        return [i for i in range(self.width) if i not in claimed]

    def to_record(self, row: Sequence[str], row_index: int) -> CRMRecord:
        """Build a record from a raw row, keeping the full row in ``raw``."""
        raw = [str(cell) if cell is not None else "" for cell in row]
        raw += [""] * (self.width - len(raw))
        record = CRMRecord(row_index=row_index, raw=raw)
        for field_name, index in self.columns.items():
            value = raw[index] if index < len(raw) else ""
            if field_name == "email":
                value = value.strip().lower()
            setattr(record, field_name, value)
        return record

    def to_row(self, fields: Dict[str, str], base_row: Optional[Sequence[str]] = None) -> List[str]:
        """
        Render ``fields`` into a full row.

        Cells for unmapped columns, and for mapped fields not present in
        ``fields``, are copied from ``base_row``. Fields without a bound
        column are dropped.
        """
        row = list(base_row or [])
        row += [""] * (self.width - len(row))
        for field_name, value in fields.items():
            index = self.index(field_name)
            if index is None:
                continue
            row[index] = "" if value is None else str(value)
        return row

    def __repr__(self) -> str:
        return f"FieldMap({self.columns!r})"


def discover(header_row: Sequence[str]) -> FieldMap:
    """
    Build the field map for ``header_row``.

    Deterministic for a given header row and alias priority order.
    """
    normalized = [_normalize_header(header) for header in header_row]
    claimed = set()
    columns: Dict[str, int] = {}

    for field_name, aliases in FIELD_ALIASES:
        for index, header in enumerate(normalized):
            if index in claimed:
                continue
            if _matches(header, aliases):
                columns[field_name] = index
                claimed.add(index)
                logger.debug(f"Mapped \"{header_row[index]}\" (col {index}) -> {field_name}")
                break

    for field_name in ("email", "name"):
        if field_name not in columns:
            logger.warning(f"No column found for '{field_name}'; dependent lookups are disabled")

    unmapped = [header_row[i] for i in range(len(header_row)) if i not in claimed]
    logger.info(
        f"Discovered {len(columns)} mapped column(s) from {len(header_row)} header(s)"
        + (f"; preserving unmapped: {', '.join(unmapped)}" if unmapped else "")
    )
    return FieldMap(header_row, columns)


def field_for_label(label: str, field_map: Optional[FieldMap] = None) -> Optional[str]:
    """
    Resolve a user-supplied column label ("status", "Meeting Date") to a canonical field.

    Exact canonical names and exact header text win; otherwise the alias
    rules of ``discover`` apply in priority order.
    """
    normalized = _normalize_header(label).replace("_", " ")
    if not normalized:
        return None
    for field_name in CANONICAL_FIELDS:
        if normalized == field_name.replace("_", " "):
            return field_name
    if field_map is not None:
        for field_name, index in field_map.columns.items():
            if _normalize_header(field_map.headers[index]) == normalized:
                return field_name
    for field_name, aliases in FIELD_ALIASES:
        if _matches(normalized, aliases):
            return field_name
    return None
