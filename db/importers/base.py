"""
Shared building blocks for the format parsers.

Provides the parser base class together with the helpers every format
needs: timestamp normalization, role mapping, content classification,
encoding repair, deterministic id derivation and cancellation.
"""

import hashlib
import json
import logging
import math
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

from db.importers.errors import ImportCancelledError, StructureError
from db.importers.validation import ValidationService
from db.models.records import ChatMessage, ChatType, ContentType, ConversationRecord
from db.security.crypto import CryptoService
from db.security.sanitizer import ContentSanitizer

logger = logging.getLogger(__name__)

MS_THRESHOLD = 1e10
MAX_ID_LENGTH = 255
MAX_DISPLAY_NAME_LENGTH = 500
MAX_AUTHOR_LENGTH = 50
USER_LABEL = "User"
UNKNOWN_AUTHOR = "Unknown"
VALIDATION_SAMPLE_SIZE = 10

USER_ROLES: FrozenSet[str] = frozenset({
    "user", "human", "person", "you", "me",
    "用户", "人类",
    "usuario", "usuário", "utilisateur", "benutzer", "nutzer", "utente", "utilizador", "gebruiker",
})
ASSISTANT_ROLES: FrozenSet[str] = frozenset({
    "assistant", "ai", "bot", "model", "chatbot",
    "助手",
    "asistente", "assistente", "assistent", "assistant virtuel",
})


# ----------------------------------------------------------------------
# Timestamps
# ----------------------------------------------------------------------

_FRACTION_RE = re.compile(r"\.(\d+)")
# "+0000", "+01" and " +01:00" offsets, which fromisoformat only accepts from 3.11
_OFFSET_RE = re.compile(r"(\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?)\s*([+-])(\d{2}):?(\d{2})?$")


def parse_timestamp(value: Any) -> Optional[int]:
    """
    Normalize a raw timestamp to integer Unix seconds.

    Accepts Unix seconds, Unix milliseconds (magnitude > 1e10), numeric
    strings and ISO-8601 strings (with or without fraction and offset;
    a trailing 'Z' means UTC and naive values are treated as UTC).

    Returns:
        Unix seconds, or None when the value cannot be interpreted.
        Range checks are left to ValidationService.check_timestamp.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_number(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        return _from_iso(text)
    if text.lstrip("+-").isdigit():
        return _from_number(int(text))
    return _from_number(number)


def _from_number(value) -> Optional[int]:
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if abs(value) > MS_THRESHOLD:
            value = value / 1000
        return int(math.floor(value))

    if abs(value) > MS_THRESHOLD:
        return value // 1000
    return int(value)


def _from_iso(text: str) -> Optional[int]:
    normalized = text
    if normalized[-1] in ("Z", "z"):
        normalized = normalized[:-1] + "+00:00"
    # fromisoformat wants at most microsecond precision
    normalized = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
    normalized = _OFFSET_RE.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}:{m.group(4) or '00'}", normalized
    )

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    try:
        return int(parsed.timestamp())
    except (OverflowError, ValueError):
        return None


# ----------------------------------------------------------------------
# Roles and content
# ----------------------------------------------------------------------

def map_role(raw: Any, assistant_label: str, validation: ValidationService,
             extra_assistant_roles: Iterable[str] = ()) -> str:
    """
    Canonicalize an author/role value.

    Known user synonyms map to 'User', known assistant synonyms (plus the
    format-specific extras) map to assistant_label, anything else is kept
    as a sanitized literal of at most 50 characters.
    """
    if not isinstance(raw, str):
        return UNKNOWN_AUTHOR

    normalized = raw.strip().lower()
    if normalized in USER_ROLES:
        return USER_LABEL
    if normalized in ASSISTANT_ROLES or normalized in extra_assistant_roles:
        return assistant_label

    return sanitize_label(raw, validation)


def sanitize_label(raw: Any, validation: ValidationService, max_length: int = MAX_AUTHOR_LENGTH) -> str:
    """Sanitized literal author name, 'Unknown' when nothing survives."""
    label = validation.sanitize_field(raw, max_length)
    return label or UNKNOWN_AUTHOR


_CODE_FENCE_RE = re.compile(r"```")
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_CODE_LINE_RE = re.compile(
    r"^\s*(?:"
    r"def\s+\w+\s*\("
    r"|class\s+\w+\s*[:({]"
    r"|function\s*\w*\s*\("
    r"|(?:const|let|var)\s+[A-Za-z_$][\w$]*\s*="
    r"|import\s+[\w.{*][\w.,{} *]*(?:\s+from\s+\S+)?;?\s*$"
    r"|from\s+[\w.]+\s+import\s"
    r"|return\b[^\n]*;\s*$"
    r"|package\s+[\w.]+;?\s*$"
    r"|#include\s*[<\"]"
    r"|(?:public|private|protected)\s+(?:static\s+)?\w+[\w<>\[\]]*\s+\w+"
    r"|fn\s+\w+\s*[(<]"
    r"|func\s+(?:\(\w+\s+\*?\w+\)\s*)?\w+\s*\("
    r"|(?:SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP)\s"
    r")",
    re.MULTILINE,
)
_CODE_PUNCTUATION = frozenset("{}[]();=<>")
PUNCTUATION_DENSITY = 0.10
PUNCTUATION_MIN_LENGTH = 40
INDENT_MIN_LINES = 3


def classify_content(content: str, code_hint: bool = False) -> ContentType:
    """
    Classify message content as text or code.

    Code when the source says so, when fenced or inline code markers are
    present, when a line starts with a language construct, when code
    punctuation makes up at least 10% of 40+ characters, or when at least
    half of 3+ lines are indented.
    """
    if code_hint:
        return ContentType.CODE
    if not content:
        return ContentType.TEXT

    if _CODE_FENCE_RE.search(content) or _INLINE_CODE_RE.search(content):
        return ContentType.CODE

    if _CODE_LINE_RE.search(content):
        return ContentType.CODE

    if len(content) >= PUNCTUATION_MIN_LENGTH:
        punctuation = sum(1 for ch in content if ch in _CODE_PUNCTUATION)
        if punctuation / len(content) >= PUNCTUATION_DENSITY:
            return ContentType.CODE

    lines = [line for line in content.split("\n") if line.strip()]
    if len(lines) >= INDENT_MIN_LINES:
        indented = sum(1 for line in lines if line.startswith(("    ", "\t")))
        if indented * 2 >= len(lines):
            return ContentType.CODE

    return ContentType.TEXT


# ----------------------------------------------------------------------
# Encoding repair
# ----------------------------------------------------------------------

BOM = "\ufeff"
_MOJIBAKE_MARKERS = ("Ã", "â€", "Â")
_MOJIBAKE_SOURCE_CHARS = (
    "áéíóúàèìòùâêîôûäëöüñçãõåæøœßÿ"
    "ÉÓÚÀÈÌÒÙÂÊÎÔÛÄËÖÜÑÇÃÕÅÆØ"
    "‘’‚“„–—…•€™°±·"
)


def _build_mojibake_table() -> List[Tuple[str, str]]:
    table = {}
    for ch in _MOJIBAKE_SOURCE_CHARS:
        try:
            broken = ch.encode("utf-8").decode("cp1252")
        except UnicodeDecodeError:
            continue
        if broken != ch:
            table[broken] = ch
    # Longest sequences first so a prefix never shadows a longer match
    return sorted(table.items(), key=lambda item: len(item[0]), reverse=True)


MOJIBAKE_TABLE = _build_mojibake_table()


def repair_encoding(text: str) -> Tuple[str, bool]:
    """
    Strip a leading BOM and undo common UTF-8-read-as-cp1252 mojibake.

    Returns:
        Tuple of (repaired_text, changed)
    """
    if not isinstance(text, str):
        return "", False

    repaired = text[1:] if text.startswith(BOM) else text

    if any(marker in repaired for marker in _MOJIBAKE_MARKERS):
        for broken, fixed in MOJIBAKE_TABLE:
            if broken in repaired:
                repaired = repaired.replace(broken, fixed)

    return repaired, repaired != text


def derive_id(prefix: str, *parts: Any) -> str:
    """Deterministic id for sources that carry none."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(str(part).encode("utf-8", "surrogatepass"))
        digest.update(b"\x1f")
    return f"{prefix}-{digest.hexdigest()[:32]}"


# ----------------------------------------------------------------------
# Parse inputs and outputs
# ----------------------------------------------------------------------

_UNSET = object()


class SourceDocument:
    """
    Raw import content with a cached JSON decode.

    Detection runs five formats over the same content; the decode happens
    at most once per document.
    """

    def __init__(self, text: str, source_name: Optional[str] = None):
        self.text = text if isinstance(text, str) else ""
        self.source_name = source_name
        self._data = _UNSET
        self._json_error: Optional[str] = None
        self._lines: Optional[List[str]] = None

    @property
    def data(self) -> Any:
        """Decoded JSON value, or None when the content is not JSON."""
        self._decode()
        return self._data

    def _decode(self) -> None:
        if self._data is not _UNSET:
            return
        stripped = self.text.strip()
        if stripped[:1] not in ("{", "["):
            self._data = None
            self._json_error = "Content is not a JSON object or array"
            return
        try:
            self._data = json.loads(stripped)
        except (ValueError, RecursionError) as e:
            self._data = None
            self._json_error = str(e)

    @property
    def is_json(self) -> bool:
        return self.data is not None

    @property
    def json_error(self) -> Optional[str]:
        self._decode()
        return self._json_error

    @property
    def lines(self) -> List[str]:
        """Non-blank lines with line endings removed."""
        if self._lines is None:
            self._lines = [
                line.rstrip("\r") for line in self.text.split("\n") if line.strip()
            ]
        return self._lines

    def items(self) -> List[Any]:
        """The decoded JSON as a list (a single object becomes a one-item list)."""
        data = self.data
        if isinstance(data, list):
            return data
        if data is None:
            return []
        return [data]


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of a strict structural check."""

    is_valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationOutcome":
        return cls(True)

    @classmethod
    def fail(cls, error: str) -> "ValidationOutcome":
        return cls(False, error)

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass
class ParseResult:
    """Records and diagnostics produced from one source document."""

    conversations: List[ConversationRecord] = field(default_factory=list)
    messages: List[ChatMessage] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class CancellationToken:
    """Cooperative cancellation flag shared between the caller and workers."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelledError()


@dataclass
class _ConversationStats:
    skipped: int = 0
    suspicious_timestamps: int = 0
    active_content: int = 0
    duplicates: int = 0


# ----------------------------------------------------------------------
# Parser base class
# ----------------------------------------------------------------------

class ConversationParser:
    """
    Base class for format parsers.

    Subclasses provide validate() and confidence() for detection, plus
    _load_units() (split the document into raw conversations, raising
    StructureError for file-level problems) and _parse_unit() (turn one
    raw conversation into records via _message() and _conversation()).
    """

    format_name = "unknown"
    source_app = "Unknown"
    assistant_label = "Assistant"
    chat_type = ChatType.LLM
    default_title = "Untitled Chat"
    assistant_roles: FrozenSet[str] = frozenset()
    id_fields: Tuple[str, ...] = ()

    def __init__(self, crypto: CryptoService, validation: ValidationService = None,
                 sanitizer: ContentSanitizer = None):
        self.crypto = crypto
        self.validation = validation or ValidationService()
        self.sanitizer = sanitizer or ContentSanitizer()

    # ------------------------------------------------------------------
    # Capability set
    # ------------------------------------------------------------------

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        """Strict structural check used for primary detection."""
        raise NotImplementedError

    def confidence(self, doc: SourceDocument) -> int:
        """Heuristic 0-100 score used for fallback detection."""
        raise NotImplementedError

    def parse(self, doc: SourceDocument, cancel: CancellationToken = None) -> ParseResult:
        """
        Parse a document into canonical records.

        Recoverable problems are recorded on the result. A cancelled token
        raises ImportCancelledError between conversations.
        """
        result = ParseResult()

        try:
            units = self._load_units(doc)
            self._check_ceiling(len(units), self.validation.config.max_conversations,
                                "conversations")
        except StructureError as e:
            message = f"{self.source_app} parsing failed: {e.message}"
            logger.warning(message)
            result.errors.append(message)
            return result

        total_messages = 0
        for index, unit in enumerate(units):
            if cancel is not None:
                cancel.raise_if_cancelled()

            stats = _ConversationStats()
            try:
                conversation, messages = self._parse_unit(unit, index, doc, stats)
            except StructureError as e:
                label = self._unit_label(unit, index)
                logger.warning(f"Skipping {self.source_app} conversation {label}: {e.message}")
                result.errors.append(f"Failed to parse conversation {label}: {e.message}")
                continue

            messages = self._unique_messages(messages, stats)
            total_messages += len(messages)
            if total_messages > self.validation.config.max_messages:
                issue = self.validation.check_message_count(total_messages)
                message = f"{self.source_app} parsing failed: {issue.message}"
                logger.warning(message)
                return ParseResult(errors=result.errors + [message])

            result.conversations.append(conversation)
            result.messages.extend(messages)
            result.warnings.extend(self._stats_warnings(conversation.id, stats))

        logger.info(
            f"Parsed {len(result.conversations)} {self.source_app} conversations "
            f"({len(result.messages)} messages, {len(result.errors)} errors)"
        )
        return result

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _load_units(self, doc: SourceDocument) -> List[Any]:
        raise NotImplementedError

    def _parse_unit(self, unit: Any, index: int, doc: SourceDocument,
                    stats: _ConversationStats) -> Tuple[ConversationRecord, List[ChatMessage]]:
        raise NotImplementedError

    def resolve_author(self, raw: Any) -> str:
        return map_role(raw, self.assistant_label, self.validation, self.assistant_roles)

    def _unit_label(self, unit: Any, index: int) -> str:
        if isinstance(unit, dict):
            for key in self.id_fields:
                value = unit.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()[:64]
        return f"#{index + 1}"

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _load_json_units(self, doc: SourceDocument) -> List[Any]:
        if not doc.is_json:
            raise StructureError(f"Invalid JSON: {doc.json_error}")
        return doc.items()

    def _check_ceiling(self, count: int, ceiling: int, label: str) -> None:
        issue = self.validation.check_count(count, ceiling, label)
        if issue is not None:
            raise StructureError(issue.message, field=issue.field,
                                 limit=issue.limit, actual=issue.actual)

    def _check_raw_messages(self, raw_messages: list) -> None:
        """Ceiling on raw message entries in one conversation, checked before extraction."""
        self._check_ceiling(len(raw_messages), self.validation.config.max_messages, "messages")

    def _clean_id(self, raw: Any) -> Optional[str]:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            raw = str(raw)
        cleaned = self.validation.sanitize_field(raw, MAX_ID_LENGTH)
        return cleaned or None

    def _clean_title(self, raw: Any) -> str:
        title = self.validation.sanitize_field(raw, MAX_DISPLAY_NAME_LENGTH)
        title, _ = self.sanitizer.strip_active_content(title)
        return title.strip() or self.default_title

    def _clean_content(self, raw: Any, stats: _ConversationStats) -> str:
        content = self.validation.sanitize_field(raw, self.validation.config.max_content_length)
        if not content:
            return ""
        content, dangerous = self.sanitizer.strip_active_content(content)
        if dangerous:
            stats.active_content += 1
        return content.strip()

    def _valid_bound(self, raw: Any) -> Optional[int]:
        timestamp = parse_timestamp(raw)
        if timestamp is None:
            return None
        issue = self.validation.check_timestamp(timestamp)
        if issue is not None and issue.blocking:
            return None
        return timestamp

    def _message(self, conversation_id: str, raw_author: Any, raw_content: Any,
                 raw_timestamp: Any, stats: _ConversationStats,
                 code_hint: bool = False) -> Optional[ChatMessage]:
        """Build one canonical message, or None when it must be skipped."""
        timestamp = parse_timestamp(raw_timestamp)
        if timestamp is None:
            stats.skipped += 1
            logger.debug(f"Skipping message in {conversation_id}: unreadable timestamp {raw_timestamp!r}")
            return None

        issue = self.validation.check_timestamp(timestamp)
        if issue is not None:
            if issue.blocking:
                stats.skipped += 1
                logger.debug(f"Skipping message in {conversation_id}: {issue.message}")
                return None
            stats.suspicious_timestamps += 1

        content = self._clean_content(raw_content, stats)
        if not content:
            stats.skipped += 1
            logger.debug(f"Skipping empty message in {conversation_id}")
            return None

        return ChatMessage(
            message_id=self.crypto.hash_id(content, timestamp),
            conversation_id=conversation_id,
            timestamp_utc=timestamp,
            author=self.resolve_author(raw_author),
            content=content,
            content_type=classify_content(content, code_hint),
        )

    def _conversation(self, conversation_id: str, title: Any, messages: List[ChatMessage],
                      created: Any = None, updated: Any = None) -> ConversationRecord:
        """Build the conversation record; messages are sorted in place."""
        if not messages:
            raise StructureError("No valid messages found in conversation")

        ceiling = self.validation.config.max_messages_per_conversation
        if len(messages) > ceiling:
            raise StructureError(
                f"Conversation too large ({len(messages)} messages, max: {ceiling})",
                field="messages", limit=ceiling, actual=len(messages),
            )

        messages.sort(key=lambda m: m.timestamp_utc)
        start_time = messages[0].timestamp_utc
        end_time = messages[-1].timestamp_utc

        created_ts = self._valid_bound(created)
        if created_ts is not None:
            start_time = min(start_time, created_ts)
        updated_ts = self._valid_bound(updated)
        if updated_ts is not None:
            end_time = max(end_time, updated_ts)

        return ConversationRecord(
            id=conversation_id,
            source_app=self.source_app,
            chat_type=self.chat_type,
            display_name=self._clean_title(title),
            start_time=start_time,
            end_time=end_time,
        )

    @staticmethod
    def _unique_messages(messages: List[ChatMessage], stats: _ConversationStats) -> List[ChatMessage]:
        """Keep the first message per message_id (same content at the same second)."""
        seen = set()
        unique = []
        for message in messages:
            if message.message_id in seen:
                stats.duplicates += 1
                continue
            seen.add(message.message_id)
            unique.append(message)
        return unique

    def _stats_warnings(self, conversation_id: str, stats: _ConversationStats) -> List[str]:
        warnings = []
        if stats.active_content:
            warnings.append(
                f"Removed active content from {stats.active_content} message(s) "
                f"in conversation {conversation_id}"
            )
        if stats.duplicates:
            warnings.append(
                f"Dropped {stats.duplicates} duplicate message(s) in conversation {conversation_id}"
            )
        if stats.suspicious_timestamps:
            warnings.append(
                f"{stats.suspicious_timestamps} message(s) in conversation {conversation_id} "
                f"have timestamps before 2000"
            )
        if stats.skipped:
            logger.debug(f"Skipped {stats.skipped} message(s) in conversation {conversation_id}")
        return warnings
