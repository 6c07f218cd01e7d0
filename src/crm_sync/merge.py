"""
Field merge and status derivation.

Reconciles one counterpart's classifier signal and calendar signal with the
record it resolved to (if any) and produces the write-set for the store.

Precedence rules:
- A future, non-cancelled next meeting on the calendar always wins: the
  status becomes Scheduled and every meeting field comes from the event.
- Otherwise a non-cancelled past meeting marks the record Completed, but
  only when the classifier gave no status or the "New Contact" sentinel.
  A concrete classifier status is never downgraded by a past meeting.
- Existing organization values and note history are never overwritten.
"""

import logging
from datetime import date, datetime
from typing import Dict, Optional, Sequence

from src.crm_sync.grouping import participant_addresses
from src.crm_sync.models import (
    ALL_MEMBERS,
    STATUS_COMPLETED,
    STATUS_FOLLOW_UP,
    STATUS_NEW_CONTACT,
    STATUS_SCHEDULED,
    CalendarEvent,
    CalendarSignal,
    ClassificationSignal,
    CRMRecord,
    Direction,
    MeetingFacts,
    MergeAction,
    MergeResult,
    NormalizedMessage,
    SkipReason,
)
from src.utils.date_utils import format_meeting_date, format_meeting_time

logger = logging.getLogger(__name__)

DEFAULT_NOTE = "- Initial contact via email"


def facts_from_event(status: str, event: CalendarEvent, needs_response: bool) -> MeetingFacts:
    """Meeting fields taken entirely from a calendar event."""
    return MeetingFacts(
        status=status,
        meeting_date=format_meeting_date(event.start),
        meeting_time=format_meeting_time(event.start),
        join_link=event.join_link or "",
        detail_link=event.detail_link or "",
        needs_response=needs_response,
    )


def derive_meeting_facts(
    signal: ClassificationSignal,
    calendar: Optional[CalendarSignal],
    now: datetime
) -> MeetingFacts:
    """Apply the calendar-over-classifier precedence rules."""
    facts = MeetingFacts(
        status=(signal.meeting_status or "").strip(),
        meeting_date=format_meeting_date(signal.meeting_date) if signal.meeting_date else "",
    )
    if calendar is None:
        return facts

    next_meeting = calendar.next_meeting
    last_meeting = calendar.last_meeting

    if next_meeting and not next_meeting.cancelled and next_meeting.start > now:
        return facts_from_event(STATUS_SCHEDULED, next_meeting, next_meeting.needs_response)

    if last_meeting and not last_meeting.cancelled and facts.status in ("", STATUS_NEW_CONTACT):
        return facts_from_event(STATUS_COMPLETED, last_meeting, False)

    return facts


def attribute_member(messages: Sequence[NormalizedMessage], roster: Dict[str, str]) -> str:
    """
    Pick the roster member a counterpart's conversation belongs to.

    Args:
        messages: The counterpart's messages this cycle
        roster: Member address (lowercase) → member display name

    Returns:
        The single member involved, or ``ALL_MEMBERS`` when none or several are
    """
    participants = set(participant_addresses(messages))
    members = []
    for address, member in roster.items():
        if address.lower() in participants and member not in members:
            members.append(member)
    if len(members) == 1:
        return members[0]
    return ALL_MEMBERS


def _contains_entries(existing_notes: str, note: str) -> bool:
    history = [line.strip() for line in existing_notes.splitlines()]
    entries = [line.strip() for line in note.splitlines() if line.strip()]
    if not entries:
        return False
    span = len(entries)
    return any(history[i:i + span] == entries for i in range(len(history) - span + 1))


def append_note(existing_notes: str, note: str) -> Optional[str]:
    """
    Return the note history with ``note`` appended, or None if nothing changes.

    A note is not appended again when its lines already appear as whole,
    consecutive entries of the history. A note that only shares a prefix with
    an existing entry is still new.
    """
    note = (note or "").strip()
    if not note:
        return None
    existing_notes = existing_notes or ""
    if _contains_entries(existing_notes, note):
        return None
    if not existing_notes.strip():
        return note
    return f"{existing_notes.rstrip()}\n{note}"


def counterpart_display_name(messages: Sequence[NormalizedMessage], counterpart: str) -> str:
    """Best display name for the counterpart from its own messages."""
    for message in reversed(messages):
        if message.direction == Direction.INBOUND and message.sender_address.lower() == counterpart:
            if message.sender_display_name:
                return message.sender_display_name
    return counterpart.split("@")[0]


def merge_counterpart(
    signal: Optional[ClassificationSignal],
    calendar: Optional[CalendarSignal],
    existing: Optional[CRMRecord],
    *,
    counterpart: str,
    messages: Sequence[NormalizedMessage],
    roster: Dict[str, str],
    today: date,
    now: datetime,
    require_target_category: bool = True,
    thread_summary: Optional[str] = None
) -> MergeResult:
    """
    Compute the write-set for one counterpart.

    Args:
        signal: Classifier output, or None when it could not be parsed
        calendar: Calendar facts for the counterpart, if available
        existing: Record the counterpart resolved to, or None for a new contact
        counterpart: Counterpart address (lowercase)
        messages: The counterpart's messages this cycle, oldest first
        roster: Member address → member name, for attribution
        today: Date written as the last contact date
        now: Reference instant deciding whether a meeting is in the future
        require_target_category: Skip counterparts outside the target category
        thread_summary: Thread-level summary, used instead of the single
            message note when more than one message arrived this cycle

    Returns:
        MergeResult describing a Skip, an Update of ``existing`` or a Create
    """
    label = existing.name if existing and existing.name else counterpart

    if signal is None:
        logger.info(f"Skipping {label}: analysis failed")
        return MergeResult.skip(SkipReason.ANALYSIS_FAILED, label)
    if not signal.relevant:
        logger.info(f"Skipping {label}: not relevant")
        return MergeResult.skip(SkipReason.NOT_RELEVANT, label)
    if require_target_category and not signal.is_target_category:
        logger.info(f"Skipping {label}: outside target category")
        return MergeResult.skip(SkipReason.NOT_TARGET_CATEGORY, label)

    facts = derive_meeting_facts(signal, calendar, now)

    notes = (signal.note_text or "").strip()
    if len(messages) > 1 and thread_summary and thread_summary.strip():
        notes = thread_summary.strip()

    attributed = attribute_member(messages, roster)
    last_contact = today.isoformat()
    needs_response = "Yes" if facts.needs_response else "No"

    if existing is not None:
        fields: Dict[str, str] = {
            "last_contact_date": last_contact,
            "attributed_member": attributed,
            "needs_response": needs_response,
        }
        if facts.status:
            fields["meeting_status"] = facts.status
        if facts.meeting_date:
            fields["meeting_date"] = facts.meeting_date
        if facts.meeting_time:
            fields["meeting_time"] = facts.meeting_time
        if facts.detail_link:
            fields["calendar_link"] = facts.detail_link
        if facts.join_link:
            fields["meet_link"] = facts.join_link
        if signal.organization and not existing.organization.strip():
            fields["organization"] = signal.organization.strip()
        if not existing.email:
            fields["email"] = counterpart

        updated_notes = append_note(existing.notes, notes)
        if updated_notes is not None:
            fields["notes"] = updated_notes

        return MergeResult(
            action=MergeAction.UPDATE,
            row_index=existing.row_index,
            fields=fields,
            label=label,
        )

    name = (signal.display_name or "").strip() or counterpart_display_name(messages, counterpart)
    fields = {
        "name": name,
        "email": counterpart,
        "organization": (signal.organization or "").strip(),
        "meeting_status": facts.status or STATUS_FOLLOW_UP,
        "meeting_date": facts.meeting_date,
        "meeting_time": facts.meeting_time,
        "last_contact_date": last_contact,
        "attributed_member": attributed,
        "calendar_link": facts.detail_link,
        "meet_link": facts.join_link,
        "needs_response": needs_response,
        "notes": notes or DEFAULT_NOTE,
    }
    return MergeResult(action=MergeAction.CREATE, fields=fields, label=name)
