"""
Google Gemini format parser.

Two export shapes are accepted:

- standard: {"conversations": [{conversation_id, conversation_title?,
  create_time, update_time, messages: [{author: {name}, create_time, text}]}]}
- Takeout: {id, name, created_date, updated_date,
  messages: [{creator: {name}, created_date, content}]} (single or array)
"""

import logging
from typing import Any, Dict, List, Tuple

from db.importers.base import (
    VALIDATION_SAMPLE_SIZE,
    ConversationParser,
    SourceDocument,
    ValidationOutcome,
    map_role,
)
from db.importers.errors import StructureError
from db.models.records import ChatType

logger = logging.getLogger(__name__)

STANDARD = "standard"
TAKEOUT = "takeout"
MAX_ID_LENGTH = 255

# Field names per export shape
_FIELDS = {
    STANDARD: {
        "id": "conversation_id",
        "title": "conversation_title",
        "created": "create_time",
        "updated": "update_time",
        "author": "author",
        "message_time": "create_time",
        "text": "text",
    },
    TAKEOUT: {
        "id": "id",
        "title": "name",
        "created": "created_date",
        "updated": "updated_date",
        "author": "creator",
        "message_time": "created_date",
        "text": "content",
    },
}


def is_standard_format(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("conversations"), list)
        and len(data["conversations"]) > 0
        and isinstance(data["conversations"][0], dict)
        and data["conversations"][0].get("conversation_id") is not None
    )


def is_takeout_format(data: Any) -> bool:
    items = data if isinstance(data, list) else [data]
    if not items or not isinstance(items[0], dict):
        return False
    first = items[0]
    messages = first.get("messages")
    return (
        (first.get("id") is not None or first.get("name") is not None)
        and isinstance(messages, list)
        and len(messages) > 0
        and isinstance(messages[0], dict)
        and messages[0].get("creator") is not None
    )


class GeminiParser(ConversationParser):
    """Parser for Gemini standard and Google Takeout exports."""

    format_name = "gemini"
    source_app = "Google Gemini"
    assistant_label = "Gemini"
    chat_type = ChatType.LLM
    default_title = "Untitled Gemini Chat"

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        if not doc.is_json:
            return ValidationOutcome.fail(f"Invalid JSON: {doc.json_error}")

        try:
            units = self._split(doc.data)
        except StructureError as e:
            return ValidationOutcome.fail(e.message)

        issue = self.validation.check_conversation_count(len(units))
        if issue is not None:
            return ValidationOutcome.fail(issue.message)

        for i, (shape, conv) in enumerate(units[:VALIDATION_SAMPLE_SIZE]):
            try:
                self._validate_structure(shape, conv)
            except StructureError as e:
                return ValidationOutcome.fail(f"Conversation {i}: {e.message}")

        return ValidationOutcome.ok()

    def confidence(self, doc: SourceDocument) -> int:
        data = doc.data
        if data is None:
            return 0

        score = 0

        if isinstance(data, dict):
            conversations = data.get("conversations")
            if isinstance(conversations, list):
                score += 40
                first = conversations[0] if conversations and isinstance(conversations[0], dict) else {}
                if first.get("conversation_id"):
                    score += 20
                if first.get("messages"):
                    score += 20

            messages = data.get("messages")
            if data.get("id") and isinstance(messages, list):
                score += 30
                if messages and isinstance(messages[0], dict) and messages[0].get("creator"):
                    score += 20
                if data.get("created_date"):
                    score += 10

        elif isinstance(data, list) and data and isinstance(data[0], dict):
            messages = data[0].get("messages")
            if isinstance(messages, list) and messages and isinstance(messages[0], dict) \
                    and messages[0].get("creator"):
                score += 40

        return min(score, 100)

    def resolve_author(self, raw: Any) -> str:
        if isinstance(raw, str):
            normalized = raw.strip().lower()
            if "gemini" in normalized or "bard" in normalized:
                return self.assistant_label
        return map_role(raw, self.assistant_label, self.validation, self.assistant_roles)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _split(data: Any) -> List[Tuple[str, Dict]]:
        if is_standard_format(data):
            return [(STANDARD, conv) for conv in data["conversations"]]
        if is_takeout_format(data):
            items = data if isinstance(data, list) else [data]
            return [(TAKEOUT, conv) for conv in items]
        raise StructureError("Not a valid Gemini format")

    def _validate_structure(self, shape: str, data: Any) -> None:
        if not isinstance(data, dict):
            raise StructureError("Invalid conversation object")

        fields = _FIELDS[shape]

        conversation_id = data.get(fields["id"])
        if not conversation_id or not isinstance(conversation_id, str):
            raise StructureError(f"Missing or invalid {fields['id']}", field=fields["id"])
        if len(conversation_id) > MAX_ID_LENGTH:
            raise StructureError(f"{fields['id']} too long", field=fields["id"],
                                 limit=MAX_ID_LENGTH, actual=len(conversation_id))

        for key in (fields["created"], fields["updated"]):
            if not data.get(key) or not isinstance(data.get(key), str):
                raise StructureError(f"Missing or invalid {key}", field=key)

        messages = data.get("messages")
        if not isinstance(messages, list):
            raise StructureError("Missing or invalid messages array", field="messages")

        self._check_raw_messages(messages)

    def _load_units(self, doc: SourceDocument) -> List[Any]:
        if not doc.is_json:
            raise StructureError(f"Invalid JSON: {doc.json_error}")
        return self._split(doc.data)

    def _unit_label(self, unit: Any, index: int) -> str:
        shape, conv = unit
        if isinstance(conv, dict):
            value = conv.get(_FIELDS[shape]["id"])
            if isinstance(value, str) and value.strip():
                return value.strip()[:64]
        return f"#{index + 1}"

    def _parse_unit(self, unit, index, doc, stats):
        shape, conv = unit
        self._validate_structure(shape, conv)
        fields = _FIELDS[shape]

        conversation_id = self._clean_id(conv[fields["id"]])
        if not conversation_id:
            raise StructureError(f"Missing or invalid {fields['id']}", field=fields["id"])

        messages = []
        for raw in conv["messages"]:
            if not isinstance(raw, dict):
                stats.skipped += 1
                continue

            author = raw.get(fields["author"])
            name = author.get("name") if isinstance(author, dict) else None
            if not isinstance(name, str) or not name.strip():
                stats.skipped += 1
                continue

            text = raw.get(fields["text"])
            if not isinstance(text, str):
                stats.skipped += 1
                continue

            built = self._message(conversation_id, name, text, raw.get(fields["message_time"]), stats)
            if built is not None:
                messages.append(built)

        conversation = self._conversation(
            conversation_id,
            conv.get(fields["title"]),
            messages,
            created=conv.get(fields["created"]),
            updated=conv.get(fields["updated"]),
        )
        return conversation, messages

