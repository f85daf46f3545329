"""
Format-agnostic validation for imports.

Ceilings (size, counts, content length), encoding anomaly detection,
timestamp sanity checks and generic field sanitization. Check methods
return an ImportIssue or None; they never raise.
"""

import logging
import time
import unicodedata
from dataclasses import dataclass, asdict, replace
from typing import Optional, Union

import config
from db.importers.errors import ErrorKind, ImportIssue, Severity
from db.security.sanitizer import CONTROL_CHARS_RE as DANGEROUS_CONTROL_CHARS_RE, LONE_SURROGATES_RE

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "\ufffd"
YEAR_2000 = 946684800  # 2000-01-01 00:00:00 UTC
ONE_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ValidationConfig:
    """Ceilings and policy knobs for import validation."""

    max_file_size: int = config.MAX_FILE_SIZE
    max_conversations: int = config.MAX_CONVERSATIONS
    max_messages: int = config.MAX_MESSAGES_PER_FILE
    max_messages_per_conversation: int = config.MAX_MESSAGES_PER_CONVERSATION
    max_nodes: int = config.MAX_MAPPING_NODES
    max_content_length: int = config.MAX_CONTENT_LENGTH
    control_char_threshold: int = config.CONTROL_CHAR_THRESHOLD
    enable_fallback_detection: bool = config.ENABLE_FALLBACK_DETECTION
    fallback_confidence_threshold: int = config.FALLBACK_CONFIDENCE_THRESHOLD

    def to_dict(self) -> dict:
        return asdict(self)


class ValidationService:
    """Centralized validation for all file imports."""

    def __init__(self, validation_config: Optional[ValidationConfig] = None):
        self.config = validation_config or ValidationConfig()

    def update_config(self, **changes) -> None:
        """Replace selected configuration values."""
        self.config = replace(self.config, **changes)

    # ------------------------------------------------------------------
    # File-level checks
    # ------------------------------------------------------------------

    def check_size(self, content: Union[str, bytes], file: str = None) -> Optional[ImportIssue]:
        """Empty or oversized content is a hard failure."""
        size = len(content) if content is not None else 0

        if size == 0:
            return self._issue(ErrorKind.VALIDATION, Severity.HIGH,
                               "Empty file provided", file, field="size")

        if size > self.config.max_file_size:
            return self._issue(
                ErrorKind.VALIDATION, Severity.HIGH,
                f"File too large: {size} bytes (max: {self.config.max_file_size})",
                file, field="size", limit=self.config.max_file_size, actual=size,
            )

        return None

    def check_encoding(self, content: str, file: str = None) -> Optional[ImportIssue]:
        """Flag decode-failure markers and excessive dangerous control characters."""
        if not isinstance(content, str):
            return self._issue(ErrorKind.ENCODING, Severity.HIGH,
                               "Encoding validation failed: content is not text", file)

        if REPLACEMENT_CHAR in content:
            return self._issue(
                ErrorKind.ENCODING, Severity.MEDIUM,
                "File contains invalid UTF-8 sequences (replacement characters detected)",
                file,
            )

        count = 0
        threshold = self.config.control_char_threshold
        for _ in DANGEROUS_CONTROL_CHARS_RE.finditer(content):
            count += 1
            if count > threshold:
                break
        if count > threshold:
            total = len(DANGEROUS_CONTROL_CHARS_RE.findall(content))
            return self._issue(
                ErrorKind.ENCODING, Severity.MEDIUM,
                f"File contains {total} potentially dangerous control characters",
                file, field="control_chars", limit=threshold, actual=total,
            )

        return None

    # ------------------------------------------------------------------
    # Counts and lengths
    # ------------------------------------------------------------------

    def check_count(self, count: int, ceiling: int, label: str = "items",
                    file: str = None) -> Optional[ImportIssue]:
        """Generic ceiling check."""
        if count > ceiling:
            return self._issue(
                ErrorKind.VALIDATION, Severity.HIGH,
                f"Too many {label}: {count} (max: {ceiling})",
                file, field=label, limit=ceiling, actual=count,
            )
        return None

    def check_conversation_count(self, count: int, file: str = None) -> Optional[ImportIssue]:
        return self.check_count(count, self.config.max_conversations, "conversations", file)

    def check_message_count(self, count: int, file: str = None) -> Optional[ImportIssue]:
        return self.check_count(count, self.config.max_messages, "messages", file)

    def check_content_length(self, content: str, file: str = None) -> Optional[ImportIssue]:
        length = len(content) if isinstance(content, str) else 0
        if length > self.config.max_content_length:
            return self._issue(
                ErrorKind.VALIDATION, Severity.MEDIUM,
                f"Content too long: {length} chars (max: {self.config.max_content_length})",
                file, field="content", limit=self.config.max_content_length, actual=length,
            )
        return None

    # ------------------------------------------------------------------
    # Timestamps
    # ------------------------------------------------------------------

    def check_timestamp(self, timestamp: int, file: str = None,
                        now: Optional[float] = None) -> Optional[ImportIssue]:
        """
        Validate timestamp is within reasonable bounds.

        Negative or more than one day in the future is rejected; anything
        before 2000-01-01 only produces a low-severity warning.
        """
        now = time.time() if now is None else now

        if timestamp < 0:
            return self._issue(ErrorKind.VALIDATION, Severity.HIGH,
                               f"Invalid timestamp: {timestamp} (negative value)",
                               file, field="timestamp", actual=timestamp)

        if timestamp > now + ONE_DAY:
            return self._issue(ErrorKind.VALIDATION, Severity.HIGH,
                               f"Invalid timestamp: {timestamp} (too far in future)",
                               file, field="timestamp", actual=timestamp)

        if timestamp < YEAR_2000:
            return self._issue(ErrorKind.VALIDATION, Severity.LOW,
                               f"Suspicious timestamp: {timestamp} (before year 2000)",
                               file, field="timestamp", actual=timestamp)

        return None

    # ------------------------------------------------------------------
    # Sanitization
    # ------------------------------------------------------------------

    def sanitize_field(self, value, max_length: Optional[int] = None) -> str:
        """
        Sanitize a string field with security checks.

        Removes dangerous control characters and unpaired surrogates,
        NFC-normalizes, trims and truncates.
        """
        if not isinstance(value, str):
            return ""

        sanitized = DANGEROUS_CONTROL_CHARS_RE.sub("", value)
        sanitized = LONE_SURROGATES_RE.sub("", sanitized)

        try:
            sanitized = unicodedata.normalize("NFC", sanitized)
        except (ValueError, TypeError) as e:
            logger.debug(f"Unicode normalization failed, keeping original text: {e}")

        sanitized = sanitized.strip()

        if max_length is not None and len(sanitized) > max_length:
            sanitized = sanitized[:max_length].rstrip()

        return sanitized

    @staticmethod
    def _issue(kind: ErrorKind, severity: Severity, message: str, file: str = None,
               **fields) -> ImportIssue:
        return ImportIssue(kind=kind, severity=severity, message=message, file=file, **fields)
