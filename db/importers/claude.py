"""
Claude format parser.

Claude stores conversations as objects with a uuid and a chat_messages
list; each message has a sender, text (or content blocks), created_at
and optionally an index and attachments.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from db.importers.base import (
    VALIDATION_SAMPLE_SIZE,
    ConversationParser,
    SourceDocument,
    ValidationOutcome,
)
from db.importers.errors import StructureError
from db.models.records import ChatType

logger = logging.getLogger(__name__)

MAX_UUID_LENGTH = 255
MAX_NAME_LENGTH = 1000
MAX_ATTACHMENT_CONTENT = 10000

# Using DOTALL so . matches newlines inside code blocks, and . for the
# apostrophe (either ASCII or Unicode curly quote)
_ARTIFACT_PLACEHOLDERS = [
    re.compile(r"```[^`]*?This block is not supported on your current device yet\..*?```",
               re.IGNORECASE | re.DOTALL),
    re.compile(r"```[^`]*?Viewing artifacts created via the Analysis Tool web feature preview "
               r"isn.t yet supported on mobile\..*?```", re.IGNORECASE | re.DOTALL),
    re.compile(r"This block is not supported on your current device yet\.", re.IGNORECASE),
    re.compile(r"Viewing artifacts created via the Analysis Tool web feature preview "
               r"isn.t yet supported on mobile\.", re.IGNORECASE),
]
_EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")


def clean_artifact_placeholders(text: str) -> str:
    """
    Remove Claude artifact placeholder messages from message text.

    Claude.ai shows placeholder messages when artifacts can't be displayed,
    but the actual artifact content is in the attachments.
    """
    cleaned_text = text
    for pattern in _ARTIFACT_PLACEHOLDERS:
        cleaned_text = pattern.sub("", cleaned_text)

    cleaned_text = _EXTRA_NEWLINES_RE.sub("\n\n", cleaned_text)
    return cleaned_text.strip()


class ClaudeParser(ConversationParser):
    """Parser for Claude JSON exports (single conversation or array)."""

    format_name = "claude"
    source_app = "Claude"
    assistant_label = "Claude"
    chat_type = ChatType.LLM
    default_title = "Untitled Claude Chat"
    assistant_roles = frozenset({"claude"})
    id_fields = ("uuid",)

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        if not doc.is_json:
            return ValidationOutcome.fail(f"Invalid JSON: {doc.json_error}")

        conversations = doc.items()
        if not conversations:
            return ValidationOutcome.fail("No conversations found")

        issue = self.validation.check_conversation_count(len(conversations))
        if issue is not None:
            return ValidationOutcome.fail(issue.message)

        for i, conv in enumerate(conversations[:VALIDATION_SAMPLE_SIZE]):
            try:
                self._validate_structure(conv)
            except StructureError as e:
                return ValidationOutcome.fail(f"Conversation {i}: {e.message}")

        return ValidationOutcome.ok()

    def confidence(self, doc: SourceDocument) -> int:
        conversations = doc.items()
        if not conversations or not isinstance(conversations[0], dict):
            return 0

        data = conversations[0]
        score = 0

        if data.get("uuid"):
            score += 25
        if data.get("chat_messages"):
            score += 30
        if data.get("created_at") and data.get("updated_at"):
            score += 15

        chat_messages = data.get("chat_messages")
        if isinstance(chat_messages, list) and chat_messages and isinstance(chat_messages[0], dict):
            first = chat_messages[0]
            if first.get("sender") in ("human", "assistant"):
                score += 20
            if isinstance(first.get("index"), int) and not isinstance(first.get("index"), bool):
                score += 10

        return min(score, 100)

    def _validate_structure(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise StructureError("Invalid conversation object")

        uuid = data.get("uuid")
        if not uuid or not isinstance(uuid, str):
            raise StructureError("Missing or invalid uuid", field="uuid")
        if len(uuid) > MAX_UUID_LENGTH:
            raise StructureError("uuid too long", field="uuid",
                                 limit=MAX_UUID_LENGTH, actual=len(uuid))

        name = data.get("name")
        if name and (not isinstance(name, str) or len(name) > MAX_NAME_LENGTH):
            raise StructureError("Invalid name field", field="name")

        for key in ("created_at", "updated_at"):
            if not data.get(key) or not isinstance(data.get(key), str):
                raise StructureError(f"Missing or invalid {key}", field=key)

        chat_messages = data.get("chat_messages")
        if not isinstance(chat_messages, list):
            raise StructureError("Missing or invalid chat_messages array", field="chat_messages")

        self._check_raw_messages(chat_messages)

    def _load_units(self, doc: SourceDocument) -> List[Any]:
        return self._load_json_units(doc)

    def _parse_unit(self, unit, index, doc, stats):
        self._validate_structure(unit)
        conversation_id = self._clean_id(unit["uuid"])
        if not conversation_id:
            raise StructureError("Missing or invalid uuid", field="uuid")

        messages = []
        for raw in self._ordered(unit["chat_messages"]):
            sender = raw.get("sender")
            if not isinstance(sender, str) or not sender.strip():
                stats.skipped += 1
                continue

            text = self._message_text(raw)
            if text is None:
                stats.skipped += 1
                continue

            built = self._message(conversation_id, sender, text, raw.get("created_at"), stats)
            if built is not None:
                messages.append(built)

        name = unit.get("name") or unit.get("summary")
        conversation = self._conversation(
            conversation_id,
            name,
            messages,
            created=unit.get("created_at"),
            updated=unit.get("updated_at"),
        )
        return conversation, messages

    @staticmethod
    def _ordered(chat_messages: List) -> List[Dict]:
        """Message dicts ordered by their index field (position when absent)."""
        keyed = []
        for position, raw in enumerate(chat_messages):
            if not isinstance(raw, dict):
                continue
            order = raw.get("index")
            if not isinstance(order, (int, float)) or isinstance(order, bool) or order < 0:
                order = position
            keyed.append((order, position, raw))
        keyed.sort(key=lambda item: (item[0], item[1]))
        return [raw for _, _, raw in keyed]

    def _message_text(self, raw: Dict) -> Optional[str]:
        text = raw.get("text")
        if not isinstance(text, str) or not text.strip():
            blocks = raw.get("content")
            if isinstance(blocks, list):
                text = "\n".join(
                    block["text"] for block in blocks
                    if isinstance(block, dict) and isinstance(block.get("text"), str)
                )
        if not isinstance(text, str):
            text = ""

        text = clean_artifact_placeholders(text)
        text = self._append_attachments(text, raw.get("attachments"))
        return text if text.strip() else None

    def _append_attachments(self, content: str, attachments: Any) -> str:
        if not isinstance(attachments, list):
            return content

        for attachment in attachments:
            if not isinstance(attachment, dict):
                continue

            file_name = self.validation.sanitize_field(attachment.get("file_name"), 255) or "unknown"
            file_type = self.validation.sanitize_field(attachment.get("file_type"), 100) or "unknown"
            content += f"\n\n[Attachment: {file_name} ({file_type})]"

            extracted = self.validation.sanitize_field(attachment.get("extracted_content"))
            if extracted and len(extracted) < MAX_ATTACHMENT_CONTENT:
                content += f"\nExtracted content:\n{extracted}"

        return content.strip()
