"""
Tests for field merge and status derivation.
"""

from datetime import date

import pytest

from src.crm_sync.merge import (
    DEFAULT_NOTE,
    append_note,
    attribute_member,
    derive_meeting_facts,
    merge_counterpart,
)
from src.crm_sync.models import (
    ALL_MEMBERS,
    CalendarSignal,
    ClassificationSignal,
    CRMRecord,
    MeetingFacts,
    MergeAction,
    SkipReason,
)
from tests.fakes import BASE_TIME, ME, PARTNER, days, investor_signal, make_message, meeting

NOW = BASE_TIME
TODAY = date(2025, 1, 10)
ROSTER = {ME: "Alex", PARTNER: "Blake"}

FUTURE = meeting(NOW + days(3))
PAST = meeting(NOW - days(5))


class TestStatusPrecedence:
    """Calendar truth versus classifier hints."""

    @pytest.mark.parametrize("classifier_status,next_meeting,last_meeting,expected", [
        ("", None, None, ""),
        ("New Contact", None, None, "New Contact"),
        ("", FUTURE, None, "Scheduled"),
        ("", None, PAST, "Completed"),
        ("New Contact", None, PAST, "Completed"),
        ("Follow-up", None, PAST, "Follow-up"),
        ("Follow-up", FUTURE, PAST, "Scheduled"),
        ("Completed", FUTURE, None, "Scheduled"),
    ])
    def test_truth_table(self, classifier_status, next_meeting, last_meeting, expected):
        signal = investor_signal(status=classifier_status)
        calendar = CalendarSignal(next_meeting=next_meeting, last_meeting=last_meeting)
        assert derive_meeting_facts(signal, calendar, NOW).status == expected

    def test_scheduled_takes_every_meeting_field_from_the_event(self):
        signal = investor_signal(status="Follow-up", meeting_date="2025-02-01")
        event = meeting(NOW.replace(hour=14, minute=30) + days(1), needs_response=True)
        facts = derive_meeting_facts(signal, CalendarSignal(next_meeting=event), NOW)
        assert facts.meeting_date == "11 Jan 2025"
        assert facts.meeting_time == "2:30 PM"
        assert facts.join_link == event.join_link
        assert facts.detail_link == event.detail_link
        assert facts.needs_response is True

    def test_cancelled_next_meeting_is_ignored(self):
        signal = investor_signal(status="Follow-up")
        calendar = CalendarSignal(next_meeting=meeting(NOW + days(2), cancelled=True))
        assert derive_meeting_facts(signal, calendar, NOW).status == "Follow-up"

    def test_classifier_date_is_formatted_when_calendar_is_silent(self):
        signal = investor_signal(status="Follow-up", meeting_date="2025-01-15")
        assert derive_meeting_facts(signal, None, NOW).meeting_date == "15 Jan 2025"

    def test_completed_facts_compare_by_value(self):
        event = meeting(NOW.replace(hour=10, minute=0) - days(5))
        facts = derive_meeting_facts(investor_signal(status=""), CalendarSignal(last_meeting=event), NOW)
        assert facts == MeetingFacts(
            status="Completed",
            meeting_date="5 Jan 2025",
            meeting_time="10:00 AM",
            join_link=event.join_link,
            detail_link=event.detail_link,
            needs_response=False,
        )

    def test_silent_calendar_leaves_event_fields_empty(self):
        facts = derive_meeting_facts(investor_signal(status="Follow-up"), None, NOW)
        assert facts == MeetingFacts(status="Follow-up")


class TestAttribution:

    def test_single_member(self):
        messages = [make_message("m1", "vc@fund.com", ME)]
        assert attribute_member(messages, ROSTER) == "Alex"

    def test_several_members_collapse_to_all(self):
        messages = [make_message("m1", "vc@fund.com", f"{ME}, {PARTNER}")]
        assert attribute_member(messages, ROSTER) == ALL_MEMBERS

    def test_no_member_collapses_to_all(self):
        messages = [make_message("m1", "vc@fund.com", "someone@else.com")]
        assert attribute_member(messages, ROSTER) == ALL_MEMBERS


class TestNotes:

    def test_append_on_new_line(self):
        assert append_note("- first", "- second") == "- first\n- second"

    def test_existing_note_not_duplicated(self):
        assert append_note("- first\n- second", "- second") is None

    def test_prefix_of_existing_entry_is_still_appended(self):
        assert append_note("- Sent deck to partners", "- Sent deck") == "- Sent deck to partners\n- Sent deck"

    def test_note_inside_longer_entry_is_still_appended(self):
        assert append_note("- Call with Jane re: intro", "intro") == "- Call with Jane re: intro\nintro"

    def test_multi_line_note_already_present_is_not_duplicated(self):
        existing = "- Met at demo day\n- Sent deck\n- Asked for data room"
        assert append_note(existing, "- Sent deck\n  - Asked for data room") is None

    def test_multi_line_note_with_new_entry_is_appended(self):
        existing = "- Met at demo day\n- Sent deck"
        assert append_note(existing, "- Sent deck\n- Asked for data room") == (
            "- Met at demo day\n- Sent deck\n- Sent deck\n- Asked for data room"
        )

    def test_empty_note_is_no_change(self):
        assert append_note("- first", "  ") is None

    def test_first_note(self):
        assert append_note("", "- first") == "- first"


class TestMergeCounterpart:

    @pytest.fixture
    def messages(self):
        """One inbound message from the counterpart to the first roster member."""
        return [make_message("m1", "jane@fund.vc", ME, sender_name="Jane Doe")]

    def merge(self, signal, existing, messages, calendar=None, **kwargs):
        return merge_counterpart(
            signal, calendar, existing,
            counterpart="jane@fund.vc", messages=messages, roster=ROSTER,
            today=TODAY, now=NOW, **kwargs
        )

    def test_unparseable_signal_skips(self, messages):
        result = self.merge(None, None, messages)
        assert result.action == MergeAction.SKIP
        assert result.reason == SkipReason.ANALYSIS_FAILED

    def test_irrelevant_signal_skips(self, messages):
        signal = ClassificationSignal(relevant=False, is_target_category=True)
        assert self.merge(signal, None, messages).reason == SkipReason.NOT_RELEVANT

    def test_outside_target_category_skips(self, messages):
        signal = ClassificationSignal(relevant=True, is_target_category=False)
        assert self.merge(signal, None, messages).reason == SkipReason.NOT_TARGET_CATEGORY

    def test_target_category_requirement_can_be_disabled(self, messages):
        signal = ClassificationSignal(relevant=True, is_target_category=False, display_name="Jane Doe")
        result = self.merge(signal, None, messages, require_target_category=False)
        assert result.action == MergeAction.CREATE

    def test_create_defaults(self, messages):
        signal = investor_signal(organization="Fund VC", note="")
        result = self.merge(signal, None, messages)
        assert result.action == MergeAction.CREATE
        assert result.fields["name"] == "Jane Doe"
        assert result.fields["email"] == "jane@fund.vc"
        assert result.fields["organization"] == "Fund VC"
        assert result.fields["meeting_status"] == "Follow-up"
        assert result.fields["last_contact_date"] == "2025-01-10"
        assert result.fields["attributed_member"] == "Alex"
        assert result.fields["needs_response"] == "No"
        assert result.fields["notes"] == DEFAULT_NOTE

    def test_update_never_overwrites_organization(self, messages):
        existing = CRMRecord(row_index=4, name="Jane Doe", email="jane@fund.vc", organization="Acme")
        result = self.merge(investor_signal(organization="Other"), existing, messages)
        assert result.action == MergeAction.UPDATE
        assert result.row_index == 4
        assert "organization" not in result.fields

    def test_update_fills_empty_organization(self, messages):
        existing = CRMRecord(row_index=4, name="Jane Doe", email="jane@fund.vc")
        result = self.merge(investor_signal(organization="Fund VC"), existing, messages)
        assert result.fields["organization"] == "Fund VC"

    def test_update_appends_note_once(self, messages):
        existing = CRMRecord(row_index=4, name="Jane Doe", email="jane@fund.vc", notes="- Intro call requested")
        result = self.merge(investor_signal(note="- Intro call requested"), existing, messages)
        assert "notes" not in result.fields

        result = self.merge(investor_signal(note="- Sent deck"), existing, messages)
        assert result.fields["notes"] == "- Intro call requested\n- Sent deck"

    def test_update_omits_empty_meeting_fields(self, messages):
        existing = CRMRecord(row_index=4, name="Jane Doe", email="jane@fund.vc", meeting_status="Scheduled")
        result = self.merge(investor_signal(status=""), existing, messages)
        assert "meeting_status" not in result.fields
        assert "meeting_date" not in result.fields
        assert "meet_link" not in result.fields

    def test_update_fills_missing_email(self, messages):
        existing = CRMRecord(row_index=4, name="Jane Doe", email="")
        result = self.merge(investor_signal(), existing, messages)
        assert result.fields["email"] == "jane@fund.vc"

    def test_thread_summary_replaces_note_for_several_messages(self):
        messages = [
            make_message("m1", "jane@fund.vc", ME, timestamp=NOW - days(1)),
            make_message("m2", "jane@fund.vc", ME, timestamp=NOW),
        ]
        result = self.merge(investor_signal(note="- single note"), None, messages,
                            thread_summary="Jane asked for the deck and a call.")
        assert result.fields["notes"] == "Jane asked for the deck and a call."

    def test_needs_response_from_scheduled_event(self, messages):
        calendar = CalendarSignal(next_meeting=meeting(NOW + days(2), needs_response=True))
        result = self.merge(investor_signal(), None, messages, calendar=calendar)
        assert result.fields["meeting_status"] == "Scheduled"
        assert result.fields["needs_response"] == "Yes"
