"""
Dedup / match resolver.

Locates the existing record a counterpart belongs to. Records are scanned
top to bottom, and the first rule to succeed wins:

1. exact email match (only when the store has an email column)
2. every token of a two-or-more-word display name appears in the record name
3. the email local part, read as a name, overlaps the record name

Rules 2 and 3 catch people writing from a new address who were already
entered under a known name. Two different people sharing a common name
will be merged by them.
"""

import logging
import re
from typing import Optional, Sequence

from src.crm_sync.models import CRMRecord
from src.crm_sync.schema import FieldMap

logger = logging.getLogger(__name__)

LOCAL_PART_SEPARATORS = re.compile(r"[._\-]")


def normalize_name(name: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join((name or "").lower().split())


def local_part_name(email: str) -> str:
    """Derive a pseudo-name from an address: ``jane.doe@x.com`` → ``jane doe``."""
    local = (email or "").lower().split("@")[0]
    return normalize_name(LOCAL_PART_SEPARATORS.sub(" ", local))


def _match_by_email(email: str, records: Sequence[CRMRecord]) -> Optional[CRMRecord]:
    for record in records:
        if record.email and record.email == email:
            return record
    return None


def _match_by_name_tokens(display_name: str, records: Sequence[CRMRecord]) -> Optional[CRMRecord]:
    tokens = normalize_name(display_name).split()
    if len(tokens) < 2:
        return None
    for record in records:
        record_name = normalize_name(record.name)
        if record_name and all(token in record_name for token in tokens):
            return record
    return None


def _match_by_local_part(email: str, records: Sequence[CRMRecord]) -> Optional[CRMRecord]:
    pseudo_name = local_part_name(email)
    if not pseudo_name:
        return None
    for record in records:
        record_name = normalize_name(record.name)
        if record_name and (pseudo_name in record_name or record_name in pseudo_name):
            return record
    return None


def resolve(
    candidate_email: str,
    candidate_display_name: str,
    existing_records: Sequence[CRMRecord],
    field_map: Optional[FieldMap] = None
) -> Optional[CRMRecord]:
    """
    Resolve a counterpart to an existing record, or None when it is new.

    Args:
        candidate_email: Counterpart address
        candidate_display_name: Best display name known for the counterpart
        existing_records: Records in store order
        field_map: Discovered schema; when given, rules whose column is not
            bound are skipped

    Returns:
        The matching record or None
    """
    email = (candidate_email or "").strip().lower()
    email_bound = field_map.has("email") if field_map is not None else True
    name_bound = field_map.has("name") if field_map is not None else True

    if email and email_bound:
        match = _match_by_email(email, existing_records)
        if match:
            return match

    if not name_bound:
        return None

    match = _match_by_name_tokens(candidate_display_name, existing_records)
    if match:
        logger.info(f"Matched \"{candidate_display_name}\" to row {match.row_index} by name")
        return match

    if email:
        match = _match_by_local_part(email, existing_records)
        if match:
            logger.info(f"Matched address local part to row {match.row_index} ({match.name})")
            return match

    return None
