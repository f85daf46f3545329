"""
Qwen (Alibaba) format parser.

Handles JSON exports (conversation_id/session_id plus one of messages,
chat_history or dialogue) and plain text logs. A text log becomes a
single conversation.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from db.importers.base import (
    VALIDATION_SAMPLE_SIZE,
    ConversationParser,
    SourceDocument,
    ValidationOutcome,
    derive_id,
)
from db.importers.errors import StructureError
from db.models.records import ChatType

logger = logging.getLogger(__name__)

JSON_UNIT = "json"
LOG_UNIT = "log"
LOG_TITLE = "Qwen Text Log Import"
LOG_SAMPLE_LINES = 10

MESSAGE_LIST_FIELDS = ("messages", "chat_history", "dialogue")
ROLE_FIELDS = ("role", "sender", "author")
CONTENT_FIELDS = ("content", "text", "message")
TIME_FIELDS = ("timestamp", "time", "created_at")

_ROLE = r"(user|assistant|human|qwen|ai|用户|人类|助手|通义千问|千问)"
_DATETIME = r"(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})"

# Tried in order; groups are normalized to (timestamp, role, content)
_LOG_PATTERNS: List[Tuple[re.Pattern, Tuple[int, int, int]]] = [
    # 2024-01-15 10:30:00 user: message
    (re.compile(rf"^{_DATETIME}\s+{_ROLE}\s*[:：]\s*(.*)$", re.IGNORECASE), (1, 2, 3)),
    # [2024-01-15 10:30:00] user: message
    (re.compile(rf"^\[{_DATETIME}\]\s*{_ROLE}\s*[:：]\s*(.*)$", re.IGNORECASE), (1, 2, 3)),
    # user (2024-01-15 10:30:00): message
    (re.compile(rf"^{_ROLE}\s*\(([^)]+)\)\s*[:：]\s*(.*)$", re.IGNORECASE), (2, 1, 3)),
    # user: 2024-01-15 10:30:00 message
    (re.compile(rf"^{_ROLE}\s*[:：]\s*{_DATETIME}\s+(.*)$", re.IGNORECASE), (2, 1, 3)),
]
_CJK_RE = re.compile(r"[一-鿿]")


@dataclass
class LogEntry:
    timestamp: str
    role: str
    content: str


def parse_log_line(line: str) -> Optional[LogEntry]:
    """Match a line against the text-log patterns; None for continuation lines."""
    for pattern, (ts_group, role_group, content_group) in _LOG_PATTERNS:
        match = pattern.match(line)
        if match:
            return LogEntry(
                timestamp=match.group(ts_group).strip(),
                role=match.group(role_group).lower(),
                content=match.group(content_group),
            )
    return None


def parse_log_lines(lines: List[str]) -> List[LogEntry]:
    """Group lines into entries; unmatched lines continue the previous entry."""
    entries: List[LogEntry] = []
    current: Optional[LogEntry] = None

    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue

        parsed = parse_log_line(trimmed)
        if parsed is not None:
            if current is not None and current.content.strip():
                entries.append(current)
            current = parsed
        elif current is not None:
            current.content = f"{current.content}\n{trimmed}"

    if current is not None and current.content.strip():
        entries.append(current)

    return entries


def _first_field(data: Dict, names: Tuple[str, ...]) -> Any:
    for name in names:
        value = data.get(name)
        if value:
            return value
    return None


def _has_message_structure(message: Any) -> bool:
    return (
        isinstance(message, dict)
        and bool(_first_field(message, ROLE_FIELDS))
        and bool(_first_field(message, CONTENT_FIELDS))
    )


def has_qwen_structure(data: Any) -> bool:
    """Qwen id/message fields plus at least one role+content message."""
    if not isinstance(data, dict):
        return False

    has_fields = any(data.get(name) for name in ("conversation_id", "session_id") + MESSAGE_LIST_FIELDS)
    has_messages = any(
        isinstance(data.get(name), list) and any(_has_message_structure(m) for m in data[name])
        for name in MESSAGE_LIST_FIELDS
    )
    return has_fields and has_messages


class QwenParser(ConversationParser):
    """Parser for Qwen JSON exports and text logs."""

    format_name = "qwen"
    source_app = "Qwen"
    assistant_label = "Qwen"
    chat_type = ChatType.LLM
    default_title = "Untitled Qwen Chat"
    assistant_roles = frozenset({"qwen", "system", "通义千问", "千问"})
    id_fields = ("conversation_id", "session_id")

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        if self._is_json_format(doc):
            conversations = doc.items()
            issue = self.validation.check_conversation_count(len(conversations))
            if issue is not None:
                return ValidationOutcome.fail(issue.message)

            for i, conv in enumerate(conversations[:VALIDATION_SAMPLE_SIZE]):
                try:
                    self._validate_structure(conv)
                except StructureError as e:
                    return ValidationOutcome.fail(f"Conversation {i}: {e.message}")
            return ValidationOutcome.ok()

        if self._is_log_format(doc):
            issue = self.validation.check_count(len(doc.lines), self.validation.config.max_messages,
                                                "lines")
            if issue is not None:
                return ValidationOutcome.fail(issue.message)
            return ValidationOutcome.ok()

        return ValidationOutcome.fail("Not a valid Qwen format")

    def confidence(self, doc: SourceDocument) -> int:
        if doc.is_json:
            return self._json_confidence(doc)
        return self._log_confidence(doc)

    def _json_confidence(self, doc: SourceDocument) -> int:
        items = doc.items()
        if not items or not isinstance(items[0], dict):
            return 0

        data = items[0]
        score = 0

        if data.get("conversation_id") or data.get("session_id"):
            score += 25
        if any(data.get(name) for name in MESSAGE_LIST_FIELDS):
            score += 30

        messages = _first_field(data, MESSAGE_LIST_FIELDS)
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            first = messages[0]
            if first.get("role") or first.get("sender"):
                score += 20
            if _first_field(first, CONTENT_FIELDS):
                score += 15

        if _CJK_RE.search(doc.text):
            score += 10

        return min(score, 100)

    def _log_confidence(self, doc: SourceDocument) -> int:
        lines = doc.lines
        if len(lines) < 2:
            return 0

        sample = lines[:LOG_SAMPLE_LINES]
        matching = sum(1 for line in sample if parse_log_line(line.strip()) is not None)
        if not matching:
            return 0

        score = min(int(matching / len(sample) * 80), 80)
        if _CJK_RE.search(doc.text):
            score += 15
        return min(score, 100)

    # ------------------------------------------------------------------
    # Detection helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_json_format(doc: SourceDocument) -> bool:
        if not doc.is_json:
            return False
        return any(has_qwen_structure(item) for item in doc.items())

    @staticmethod
    def _is_log_format(doc: SourceDocument) -> bool:
        lines = doc.lines
        if len(lines) < 2:
            return False
        return any(parse_log_line(line.strip()) is not None for line in lines[:LOG_SAMPLE_LINES])

    def _validate_structure(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise StructureError("Invalid conversation object")

        lists = [data.get(name) for name in MESSAGE_LIST_FIELDS if isinstance(data.get(name), list)]
        if not lists:
            raise StructureError("Missing or invalid messages array", field="messages")

        self._check_ceiling(sum(len(items) for items in lists),
                            self.validation.config.max_messages, "messages")

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _load_units(self, doc: SourceDocument) -> List[Any]:
        if doc.is_json:
            return [(JSON_UNIT, item) for item in doc.items()]

        if self._is_log_format(doc):
            self._check_ceiling(len(doc.lines), self.validation.config.max_messages, "lines")
            return [(LOG_UNIT, doc.lines)]

        raise StructureError("Unrecognized Qwen format")

    def _unit_label(self, unit: Any, index: int) -> str:
        kind, data = unit
        if kind == LOG_UNIT:
            return "text log"
        return super()._unit_label(data, index)

    def _parse_unit(self, unit, index, doc, stats):
        kind, data = unit
        if kind == LOG_UNIT:
            return self._parse_log(data, doc, stats)
        return self._parse_json_conversation(data, stats)

    def _parse_json_conversation(self, data: Any, stats):
        self._validate_structure(data)

        conversation_id = self._clean_id(data.get("conversation_id") or data.get("session_id"))
        if not conversation_id:
            canonical = json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
            conversation_id = derive_id("qwen", canonical)

        raw_messages = _first_field(data, MESSAGE_LIST_FIELDS)
        if not isinstance(raw_messages, list):
            raw_messages = []

        created = data.get("created_time")
        messages = []
        for raw in raw_messages:
            if not _has_message_structure(raw):
                stats.skipped += 1
                continue

            role = _first_field(raw, ROLE_FIELDS)
            content = _first_field(raw, CONTENT_FIELDS)
            if not isinstance(role, str) or not isinstance(content, str):
                stats.skipped += 1
                continue

            timestamp = _first_field(raw, TIME_FIELDS)
            if timestamp is None:
                timestamp = created

            built = self._message(conversation_id, role, content, timestamp, stats)
            if built is not None:
                messages.append(built)

        conversation = self._conversation(
            conversation_id,
            data.get("title") or data.get("name"),
            messages,
            created=created,
            updated=data.get("updated_time"),
        )
        return conversation, messages

    def _parse_log(self, lines: List[str], doc: SourceDocument, stats):
        entries = parse_log_lines(lines)
        if not entries:
            raise StructureError("No valid log entries found")

        conversation_id = derive_id("qwen-textlog", doc.text)
        messages = []
        for entry in entries:
            built = self._message(conversation_id, entry.role, entry.content, entry.timestamp, stats)
            if built is not None:
                messages.append(built)

        conversation = self._conversation(conversation_id, LOG_TITLE, messages)
        return conversation, messages
