"""
ChatGPT format parser.

ChatGPT stores conversations as a dict of nodes keyed by node ID, with
parent-child relationships and message content. Every node carrying a
message is flattened; system messages are skipped.
"""

import logging
from typing import Any, Dict, List, Optional

from db.importers.base import ConversationParser, SourceDocument, ValidationOutcome
from db.importers.errors import StructureError
from db.models.records import ChatType

logger = logging.getLogger(__name__)


class ChatGPTParser(ConversationParser):
    """Parser for ChatGPT JSON exports (single conversation or array)."""

    format_name = "chatgpt"
    source_app = "ChatGPT"
    assistant_label = "ChatGPT"
    chat_type = ChatType.LLM
    default_title = "Untitled ChatGPT Chat"
    assistant_roles = frozenset({"chatgpt", "gpt"})
    id_fields = ("conversation_id", "id")

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        if not doc.is_json:
            return ValidationOutcome.fail(f"Invalid JSON: {doc.json_error}")

        conversations = doc.items()
        if not conversations:
            return ValidationOutcome.fail("No conversations found")

        issue = self.validation.check_conversation_count(len(conversations))
        if issue is not None:
            return ValidationOutcome.fail(issue.message)

        for conv in conversations:
            if not isinstance(conv, dict):
                return ValidationOutcome.fail("Invalid conversation object")

            conversation_id = conv.get("conversation_id") or conv.get("id")
            if not conversation_id or not isinstance(conversation_id, str):
                return ValidationOutcome.fail("Missing or invalid conversation_id")

            title = conv.get("title")
            if title is not None and not isinstance(title, str):
                return ValidationOutcome.fail("Invalid title")

            if not isinstance(conv.get("mapping"), dict):
                return ValidationOutcome.fail("Missing or invalid mapping")

        return ValidationOutcome.ok()

    def confidence(self, doc: SourceDocument) -> int:
        conversations = doc.items()
        if not conversations or not isinstance(conversations[0], dict):
            return 0

        data = conversations[0]
        score = 0

        if data.get("conversation_id"):
            score += 30
        if data.get("mapping"):
            score += 30
        if data.get("title"):
            score += 10

        mapping = data.get("mapping")
        if isinstance(mapping, dict) and mapping:
            node = self._first_message_node(mapping)
            message = node.get("message") if node else None
            if isinstance(message, dict):
                author = message.get("author")
                if isinstance(author, dict) and author.get("role"):
                    score += 20
                content = message.get("content")
                if isinstance(content, dict) and "parts" in content:
                    score += 10

        return min(score, 100)

    def _load_units(self, doc: SourceDocument) -> List[Any]:
        return self._load_json_units(doc)

    def _parse_unit(self, unit, index, doc, stats):
        if not isinstance(unit, dict):
            raise StructureError("Invalid conversation object")

        conversation_id = self._clean_id(unit.get("conversation_id") or unit.get("id"))
        if not conversation_id:
            raise StructureError("Missing or invalid conversation_id", field="conversation_id")

        mapping = unit.get("mapping")
        if not isinstance(mapping, dict):
            raise StructureError("Missing or invalid mapping", field="mapping")

        self._check_ceiling(len(mapping), self.validation.config.max_nodes, "mapping nodes")

        message_nodes = [
            node["message"] for node in mapping.values()
            if isinstance(node, dict) and isinstance(node.get("message"), dict)
        ]
        self._check_raw_messages(message_nodes)

        messages = []
        for message in message_nodes:
            author = message.get("author")
            role = author.get("role") if isinstance(author, dict) else None
            if role == "system":
                continue

            content_data = message.get("content")
            if not isinstance(content_data, dict):
                content_data = {}

            built = self._message(
                conversation_id,
                role,
                self._extract_text(content_data),
                message.get("create_time"),
                stats,
                code_hint=content_data.get("content_type") == "code",
            )
            if built is not None:
                messages.append(built)

        conversation = self._conversation(
            conversation_id,
            unit.get("title"),
            messages,
            created=unit.get("create_time"),
            updated=unit.get("update_time"),
        )
        return conversation, messages

    @staticmethod
    def _extract_text(content_data: Dict) -> Optional[str]:
        """Join the string parts of a message; code messages carry a 'text' field."""
        parts = content_data.get("parts")
        if isinstance(parts, list):
            texts = [part for part in parts if isinstance(part, str)]
            if texts:
                return "\n".join(texts)

        text = content_data.get("text")
        if isinstance(text, str):
            return text
        return None

    @staticmethod
    def _first_message_node(mapping: Dict) -> Optional[Dict]:
        for node in mapping.values():
            if isinstance(node, dict) and isinstance(node.get("message"), dict):
                return node
        return None
