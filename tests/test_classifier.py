"""
Tests for GroqClassifier response parsing and request building.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.crm_sync.analyzers.classifier import GroqClassifier, extract_json_object, parse_classification
from src.crm_sync.errors import ClassificationParseError
from src.crm_sync.models import CRMRecord
from tests.fakes import ME, make_message


def classification_json(**overrides):
    data = {
        "contactName": "Jane Doe",
        "organization": "Fund VC",
        "meetingStatus": "Scheduled",
        "meetingDate": "2025-01-14",
        "noteSummary": "- Intro call booked",
        "isTargetCategory": True,
        "isRelevant": True,
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.fixture
def groq_client():
    client = MagicMock()
    client.complete_text = AsyncMock()
    return client


@pytest.fixture
def classifier(groq_client):
    return GroqClassifier(groq_client, target_category="venture capital investor")


class TestParsing:

    def test_full_response(self):
        signal = parse_classification(classification_json())

        assert signal.relevant is True
        assert signal.is_target_category is True
        assert signal.display_name == "Jane Doe"
        assert signal.organization == "Fund VC"
        assert signal.meeting_status == "Scheduled"
        assert signal.meeting_date == "2025-01-14"
        assert signal.note_text == "- Intro call booked"

    def test_prose_and_fences_around_json(self):
        raw = "Here is the result:\n```json\n" + classification_json(organization=None) + "\n```"
        signal = parse_classification(raw)
        assert signal.organization == ""
        assert signal.display_name == "Jane Doe"

    def test_string_booleans_and_placeholder_values(self):
        signal = parse_classification(classification_json(
            isRelevant="yes", isTargetCategory="false", meetingStatus="null", meetingDate="N/A"
        ))
        assert signal.relevant is True
        assert signal.is_target_category is False
        assert signal.meeting_status == ""
        assert signal.meeting_date == ""

    def test_note_list_is_joined(self):
        signal = parse_classification(classification_json(noteSummary=["- One", "- Two"]))
        assert signal.note_text == "- One\n- Two"

    @pytest.mark.parametrize("raw", [
        "",
        "I could not decide.",
        "{not json}",
        json.dumps({"contactName": "Jane"}),
    ])
    def test_unusable_output_raises(self, raw):
        with pytest.raises(ClassificationParseError):
            parse_classification(raw)

    def test_parse_error_keeps_raw_output(self):
        with pytest.raises(ClassificationParseError) as excinfo:
            extract_json_object("no braces here")
        assert excinfo.value.raw_output == "no braces here"


class TestClassify:

    @pytest.mark.asyncio
    async def test_classify_uses_json_mode_and_existing_record(self, classifier, groq_client):
        groq_client.complete_text.return_value = classification_json()
        message = make_message("m1", "jane@fund.vc", ME, sender_name="Jane Doe", body="Let's meet Tuesday")
        existing = CRMRecord(row_index=5, name="Jane Doe", organization="Fund VC", notes="- Met at demo day")

        signal = await classifier.classify(message, existing)

        assert signal.meeting_status == "Scheduled"
        kwargs = groq_client.complete_text.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "llama-3.3-70b-versatile"
        prompt = groq_client.complete_text.await_args.args[0][1]["content"]
        assert "Let's meet Tuesday" in prompt
        assert "- Met at demo day" in prompt
        assert "INCOMING" in prompt

    @pytest.mark.asyncio
    async def test_new_contact_prompt(self, classifier, groq_client):
        groq_client.complete_text.return_value = classification_json()
        message = make_message("m1", ME, "jane@fund.vc")

        await classifier.classify(message)

        prompt = groq_client.complete_text.await_args.args[0][1]["content"]
        assert "NEW contact" in prompt
        assert "OUTGOING" in prompt

    @pytest.mark.asyncio
    async def test_unparseable_response_raises(self, classifier, groq_client):
        groq_client.complete_text.return_value = "Sorry, I can't help with that."
        with pytest.raises(ClassificationParseError):
            await classifier.classify(make_message("m1", "jane@fund.vc", ME))

    @pytest.mark.asyncio
    async def test_model_override(self, groq_client):
        groq_client.complete_text.return_value = classification_json()
        classifier = GroqClassifier(groq_client, model="llama-3.1-8b-instant")

        await classifier.classify(make_message("m1", "jane@fund.vc", ME))

        assert groq_client.complete_text.await_args.kwargs["model"] == "llama-3.1-8b-instant"


class TestAssistantRequests:

    @pytest.mark.asyncio
    async def test_summarize_thread_truncates_bodies(self, classifier, groq_client):
        groq_client.complete_text.return_value = "Jane asked for the deck."
        messages = [
            make_message("m1", "jane@fund.vc", ME, body="x" * 600),
            make_message("m2", ME, "jane@fund.vc", body="Here it is"),
        ]

        summary = await classifier.summarize_thread(messages)

        assert summary == "Jane asked for the deck."
        prompt = groq_client.complete_text.await_args.args[0][0]["content"]
        assert "x" * 500 in prompt
        assert "x" * 501 not in prompt
        assert "Here it is" in prompt

    @pytest.mark.asyncio
    async def test_summarize_empty_thread(self, classifier, groq_client):
        assert await classifier.summarize_thread([]) is None
        groq_client.complete_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_research_fields_drops_unknown_values(self, classifier, groq_client):
        groq_client.complete_text.return_value = json.dumps({
            "location": "San Francisco", "about": None, "unrequested": "value"
        })
        record = CRMRecord(row_index=2, name="Jane Doe", email="jane@fund.vc")

        values = await classifier.research_fields(record, ["location", "about"])

        assert values == {"location": "San Francisco"}

    @pytest.mark.asyncio
    async def test_redo_fields_passes_guidance(self, classifier, groq_client):
        groq_client.complete_text.return_value = json.dumps({"notes": "- Shorter note"})
        record = CRMRecord(row_index=2, name="Jane Doe", notes="- A very long note")

        values = await classifier.redo_fields(record, ["notes"], guidance="keep it under ten words")

        assert values == {"notes": "- Shorter note"}
        prompt = groq_client.complete_text.await_args.args[0][1]["content"]
        assert "keep it under ten words" in prompt

    @pytest.mark.asyncio
    async def test_answer_question_includes_records(self, classifier, groq_client):
        groq_client.complete_text.return_value = "Jane Doe at Fund VC."
        records = [CRMRecord(row_index=2, name="Jane Doe", organization="Fund VC")]

        answer = await classifier.answer_question(records, "Who works at Fund VC?")

        assert answer == "Jane Doe at Fund VC."
        prompt = groq_client.complete_text.await_args.args[0][0]["content"]
        assert "Jane Doe" in prompt
        assert "Who works at Fund VC?" in prompt
