"""
WhatsApp-style text log parser.

WhatsApp message formats:
- [14/06/2025, 11:24] Jane: Hello
- [14/06/2025, 11:24:05 PM] Jane: Hello
- 14/06/2025, 11:24 - Jane: Hello

Lines that match neither pattern continue the previous message. Dates are
read day-first, falling back to month-first when the day-first reading is
not a valid date. Times carry no zone and are taken as UTC.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from db.importers.base import (
    ConversationParser,
    SourceDocument,
    ValidationOutcome,
    derive_id,
    sanitize_label,
)
from db.importers.errors import StructureError
from db.models.records import ChatType

logger = logging.getLogger(__name__)

SAMPLE_LINES = 10
MAX_PARTICIPANTS_IN_TITLE = 5

_STAMP = r"\d{1,2}/\d{1,2}/\d{2,4},?\s*\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AP]\.?\s?M\.?)?"
# Pattern 1: [14/06/2025, 11:24] Jane: message
_BRACKET_RE = re.compile(rf"^\[({_STAMP})\]\s*([^:]+?):\s?(.*)$", re.IGNORECASE)
# Pattern 2: 14/06/2025, 11:24 - Jane: message
_DASH_RE = re.compile(rf"^({_STAMP})\s*-\s*([^:]+?):\s?(.*)$", re.IGNORECASE)
_STAMP_PARTS_RE = re.compile(
    r"(\d{1,2})/(\d{1,2})/(\d{2,4}),?\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AP])?\.?\s?(?:M\.?)?",
    re.IGNORECASE,
)
# Direction marks some exports put in front of lines
_DIRECTION_MARKS = "\u200e\u200f"


@dataclass
class LogMessage:
    stamp: str
    author: str
    lines: List[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "\n".join(self.lines)


def match_line(line: str) -> Optional[re.Match]:
    cleaned = line.strip().lstrip(_DIRECTION_MARKS)
    return _BRACKET_RE.match(cleaned) or _DASH_RE.match(cleaned)


def parse_log_datetime(stamp: str) -> Optional[int]:
    """
    Convert a WhatsApp date-time stamp to Unix seconds.

    Two-digit years are taken as 20xx. 12-hour clock markers are honored.
    """
    match = _STAMP_PARTS_RE.search(stamp)
    if not match:
        return None

    first, second, year, hour, minute, second_of_minute, meridiem = match.groups()
    year = int(year)
    if year < 100:
        year += 2000
    hour = int(hour)
    if meridiem:
        if hour > 12:
            return None
        if meridiem.upper() == "P" and hour != 12:
            hour += 12
        elif meridiem.upper() == "A" and hour == 12:
            hour = 0

    for day, month in ((int(first), int(second)), (int(second), int(first))):
        try:
            parsed = datetime(year, month, day, hour, int(minute), int(second_of_minute or 0),
                              tzinfo=timezone.utc)
        except ValueError:
            continue
        return int(parsed.timestamp())

    return None


def group_messages(lines: List[str]) -> List[LogMessage]:
    """Group raw lines into messages; continuation lines append to the previous one."""
    messages: List[LogMessage] = []
    current: Optional[LogMessage] = None

    for line in lines:
        match = match_line(line)
        if match:
            current = LogMessage(stamp=match.group(1), author=match.group(2).strip())
            if match.group(3):
                current.lines.append(match.group(3))
            messages.append(current)
        elif current is not None and line.strip():
            current.lines.append(line.rstrip())

    return messages


class WhatsAppParser(ConversationParser):
    """Parser for WhatsApp chat exports (plain text)."""

    format_name = "whatsapp"
    source_app = "WhatsApp"
    assistant_label = "WhatsApp"
    chat_type = ChatType.HUMAN
    default_title = "WhatsApp Chat"

    def validate(self, doc: SourceDocument) -> ValidationOutcome:
        if doc.is_json:
            return ValidationOutcome.fail("Not a WhatsApp text log (content is JSON)")

        lines = doc.lines
        if not lines:
            return ValidationOutcome.fail("Empty chat log")

        if not any(match_line(line) for line in lines[:SAMPLE_LINES]):
            return ValidationOutcome.fail("Not a valid WhatsApp chat log")

        issue = self.validation.check_count(len(lines), self.validation.config.max_messages, "lines")
        if issue is not None:
            return ValidationOutcome.fail(issue.message)

        return ValidationOutcome.ok()

    def confidence(self, doc: SourceDocument) -> int:
        if doc.is_json:
            return 0

        sample = doc.lines[:SAMPLE_LINES]
        if not sample:
            return 0

        matching = sum(1 for line in sample if match_line(line))
        if not matching:
            return 0

        score = int(matching / len(sample) * 80)
        if match_line(sample[0]):
            score += 10
        return min(score, 100)

    def resolve_author(self, raw) -> str:
        return sanitize_label(raw, self.validation)

    def _load_units(self, doc: SourceDocument) -> List:
        if doc.is_json or not doc.lines:
            raise StructureError("Not a valid WhatsApp chat log")
        self._check_ceiling(len(doc.lines), self.validation.config.max_messages, "lines")
        return [doc.lines]

    def _unit_label(self, unit, index: int) -> str:
        return "chat log"

    def _parse_unit(self, unit, index, doc, stats):
        grouped = group_messages(unit)
        if not grouped:
            raise StructureError("No valid chat lines found")
        self._check_raw_messages(grouped)

        conversation_id = derive_id("whatsapp", doc.text)
        messages = []
        for entry in grouped:
            timestamp = parse_log_datetime(entry.stamp)
            if timestamp is None:
                stats.skipped += 1
                logger.debug(f"Skipping WhatsApp line with unreadable date {entry.stamp!r}")
                continue

            built = self._message(conversation_id, entry.author, entry.content, timestamp, stats)
            if built is not None:
                messages.append(built)

        conversation = self._conversation(conversation_id, self._title(doc, messages), messages)
        return conversation, messages

    def _title(self, doc: SourceDocument, messages) -> str:
        if doc.source_name:
            stem = os.path.splitext(os.path.basename(doc.source_name))[0]
            if stem:
                return self.sanitizer.sanitize_filename(stem)

        participants = []
        for message in messages:
            if message.author not in participants:
                participants.append(message.author)
        if not participants:
            return self.default_title

        shown = ", ".join(participants[:MAX_PARTICIPANTS_IN_TITLE])
        if len(participants) > MAX_PARTICIPANTS_IN_TITLE:
            shown += f" and {len(participants) - MAX_PARTICIPANTS_IN_TITLE} others"
        return f"Chat with {shown}"
