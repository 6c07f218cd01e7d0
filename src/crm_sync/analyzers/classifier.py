"""
GroqClassifier: Contact Classification Service

Turns the latest message with a counterpart into a structured
ClassificationSignal using a Groq-hosted model in JSON mode. Also serves
the maintenance commands (free-text questions about the CRM, filling
empty fields, regenerating fields) from the same client.

The model output is advisory. Meeting facts it extracts are overridden by
calendar data in the merge step, and output that cannot be parsed as JSON
raises ClassificationParseError so the counterpart is skipped instead of
written with guessed values.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from src.config.analyzer_config import CLASSIFIER_CONFIG
from src.crm_sync.base import Classifier
from src.crm_sync.errors import ClassificationParseError
from src.crm_sync.models import ClassificationSignal, CRMRecord, Direction, NormalizedMessage
from src.integrations.groq.client_wrapper import EnhancedGroqClient

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
TRUE_STRINGS = {"true", "yes", "y", "1"}

# Record fields the model may be asked to research or rewrite
DESCRIBED_FIELDS = {
    "name": "full name of the person",
    "organization": "firm, fund or company they work at",
    "location": "city or region the person or firm is based in",
    "about": "one-sentence description of the person or firm",
    "meeting_status": "one of: Scheduled, Completed, Follow-up",
    "meeting_date": "meeting date formatted like 11 Jan 2025",
    "notes": "short factual bullet points, one per line, each starting with '- '",
}


def extract_json_object(raw_output: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of a model response.

    Tolerates surrounding prose and markdown fences.

    Raises:
        ClassificationParseError: no object found or it is not valid JSON
    """
    match = JSON_OBJECT_PATTERN.search(raw_output or "")
    if not match:
        raise ClassificationParseError("No JSON object in model output", raw_output or "")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ClassificationParseError(f"Invalid JSON in model output: {e}", raw_output) from e
    if not isinstance(parsed, dict):
        raise ClassificationParseError("Model output is not a JSON object", raw_output)
    return parsed


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value or "").strip().lower() in TRUE_STRINGS


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(item).strip() for item in value if str(item).strip())
    text = str(value).strip()
    return "" if text.lower() in ("null", "none", "n/a") else text


def parse_classification(raw_output: str) -> ClassificationSignal:
    """Map the classifier's JSON contract onto a ClassificationSignal."""
    data = extract_json_object(raw_output)
    if "isRelevant" not in data:
        raise ClassificationParseError("Missing isRelevant in model output", raw_output)
    return ClassificationSignal(
        relevant=_as_bool(data.get("isRelevant")),
        is_target_category=_as_bool(data.get("isTargetCategory")),
        display_name=_as_text(data.get("contactName")),
        organization=_as_text(data.get("organization")),
        meeting_status=_as_text(data.get("meetingStatus")),
        meeting_date=_as_text(data.get("meetingDate")),
        note_text=_as_text(data.get("noteSummary")),
    )


def _record_context(record: CRMRecord) -> str:
    return (
        f"- Name: {record.name}\n"
        f"- Organization: {record.organization}\n"
        f"- Current Meeting Status: {record.meeting_status}\n"
        f"- Current Meeting Date: {record.meeting_date}\n"
        f"- Existing Notes: {record.notes}"
    )


class GroqClassifier(Classifier):
    """
    Classifier backed by Groq chat completions.

    Attributes:
        client: Retrying Groq client
        target_category: Kind of contact the CRM tracks, e.g. "venture capital investor"
        model: Model name for every request
    """

    def __init__(self, client: EnhancedGroqClient, target_category: str = "venture capital investor",
                 model: Optional[str] = None, config: Optional[Dict] = None):
        self.client = client
        self.target_category = target_category
        self.config = config or CLASSIFIER_CONFIG
        self.model_config = dict(self.config["classifier"]["model"])
        self.model = model or self.model_config["name"]
        logger.debug(f"GroqClassifier initialized with model {self.model} for '{target_category}'")

    def _construct_classification_prompt(self, message: NormalizedMessage,
                                         existing: Optional[CRMRecord]) -> str:
        max_chars = self.config["classifier"]["content_processing"]["max_body_chars"]
        direction = (
            "INCOMING (from the contact)" if message.direction == Direction.INBOUND
            else "OUTGOING (to the contact)"
        )
        existing_context = (
            f"EXISTING CRM RECORD:\n{_record_context(existing)}"
            if existing is not None
            else "This is a NEW contact not currently in the CRM."
        )
        return f"""Analyze this email for a CRM that tracks each {self.target_category} we are in contact with.

EMAIL DETAILS:
- From: {message.sender_display_name} <{message.sender_address}>
- To: {message.recipient_header}
- Subject: {message.subject}
- Date: {message.timestamp.isoformat()}
- Direction: {direction}

EMAIL BODY:
{message.body[:max_chars]}

{existing_context}

Only contacts who are a {self.target_category} belong in the CRM. Service providers,
employees, friends and other business contacts do not.

Respond with a JSON object with exactly these keys:
{{
  "contactName": "full name of the contact, or null",
  "organization": "their firm or company, or null",
  "meetingStatus": "one of Scheduled, Completed, Follow-up, or null",
  "meetingDate": "YYYY-MM-DD if a specific meeting date is mentioned, otherwise null",
  "noteSummary": "short factual bullet points of what happened, one per line, each starting with '- '",
  "isTargetCategory": true or false, whether the contact is a {self.target_category},
  "isRelevant": true or false, false for newsletters, automated mail, marketing and internal email
}}"""

    async def classify(self, message: NormalizedMessage,
                       existing: Optional[CRMRecord] = None) -> ClassificationSignal:
        """
        Classify the latest message with a counterpart.

        Raises:
            ClassificationParseError: the response was not the expected JSON
            TransportError: the Groq request failed after retries
        """
        logger.info(f"Classifying message {message.id}")
        messages = [
            {"role": "system", "content": "You extract CRM facts from emails. Respond ONLY with valid JSON."},
            {"role": "user", "content": self._construct_classification_prompt(message, existing)}
        ]
        raw_output = await self.client.complete_text(
            messages,
            model=self.model,
            temperature=self.model_config["temperature"],
            max_completion_tokens=self.model_config["max_tokens"],
            max_retries=self.model_config["retry_count"],
            response_format={"type": "json_object"},
        )
        logger.debug(f"Classification output for {message.id}: {raw_output}")

        signal = parse_classification(raw_output)
        logger.info(
            f"Message {message.id}: relevant={signal.relevant}, "
            f"target_category={signal.is_target_category}, status={signal.meeting_status or '-'}"
        )
        return signal

    async def summarize_thread(self, messages: Sequence[NormalizedMessage]) -> Optional[str]:
        """Two or three sentence summary of several messages, for the notes field."""
        if not messages:
            return None

        summarizer = self.config["thread_summarizer"]
        max_chars = summarizer["max_message_chars"]
        blocks = []
        for message in messages:
            direction = "FROM" if message.direction == Direction.INBOUND else "TO"
            blocks.append(
                f"[{message.timestamp.date().isoformat()}] {direction} contact\n"
                f"Subject: {message.subject}\n"
                f"Content: {message.body[:max_chars]}"
            )
        prompt = (
            "Summarize the following email thread for a CRM note. Focus on key discussion points, "
            "commitments or next steps, meeting outcomes, and signals of interest.\n\n"
            f"EMAILS:\n{chr(10).join(blocks)}\n\n"
            "Provide a concise 2-3 sentence summary suitable for CRM notes."
        )
        model_config = summarizer["model"]
        summary = await self.client.complete_text(
            [{"role": "user", "content": prompt}],
            model=self.model,
            temperature=model_config["temperature"],
            max_completion_tokens=model_config["max_tokens"],
            max_retries=model_config["retry_count"],
        )
        return summary or None

    async def answer_question(self, records: Sequence[CRMRecord], question: str) -> str:
        """Answer a free-text question using the CRM contents as context."""
        assistant = self.config["crm_assistant"]
        limit = assistant["max_records_in_context"]
        rows = [
            {
                "name": record.name,
                "email": record.email,
                "organization": record.organization,
                "status": record.meeting_status,
                "meeting": f"{record.meeting_date} {record.meeting_time}".strip(),
                "last_contact": record.last_contact_date,
                "with": record.attributed_member,
                "notes": record.notes,
            }
            for record in list(records)[:limit]
        ]
        prompt = (
            f"You help manage a CRM of each {self.target_category} we talk to. "
            f"Here are the current records as JSON:\n{json.dumps(rows, indent=1)}\n\n"
            f"QUESTION: {question}\n\nAnswer concisely, citing contacts by name."
        )
        model_config = assistant["model"]
        return await self.client.complete_text(
            [{"role": "user", "content": prompt}],
            model=self.model,
            temperature=model_config["temperature"],
            max_completion_tokens=model_config["max_tokens"],
            max_retries=model_config["retry_count"],
        )

    async def _fields_request(self, record: CRMRecord, fields: List[str], instruction: str) -> Dict[str, str]:
        descriptions = "\n".join(
            f'  "{field_name}": {DESCRIBED_FIELDS.get(field_name, "best value for this field")}'
            for field_name in fields
        )
        prompt = (
            f"CRM RECORD:\n{_record_context(record)}\n- Email: {record.email}\n\n"
            f"{instruction}\n\n"
            f"Respond with a JSON object containing only these keys, using null when unknown:\n"
            f"{{\n{descriptions}\n}}"
        )
        model_config = self.config["crm_assistant"]["model"]
        raw_output = await self.client.complete_text(
            [
                {"role": "system", "content": "You maintain CRM records. Respond ONLY with valid JSON."},
                {"role": "user", "content": prompt}
            ],
            model=self.model,
            temperature=model_config["temperature"],
            max_completion_tokens=model_config["max_tokens"],
            max_retries=model_config["retry_count"],
            response_format={"type": "json_object"},
        )
        data = extract_json_object(raw_output)
        values = {}
        for field_name in fields:
            value = _as_text(data.get(field_name))
            if value:
                values[field_name] = value
        return values

    async def research_fields(self, record: CRMRecord, fields: List[str]) -> Dict[str, str]:
        """Propose values for empty fields of a record. Unknown fields are omitted."""
        return await self._fields_request(
            record, fields,
            f"Fill in the missing fields for this {self.target_category} from what you know."
        )

    async def redo_fields(self, record: CRMRecord, fields: List[str], guidance: str = "") -> Dict[str, str]:
        """Regenerate the given fields of a record following ``guidance``."""
        instruction = "Rewrite these fields for the record."
        if guidance:
            instruction += f" Guidance: {guidance}"
        return await self._fields_request(record, fields, instruction)
