"""
Data classes for structured import operation results.

An ImportResult is produced per file and aggregated per batch; it carries
the canonical records that were accepted, the error and warning strings
recorded along the way, and counters describing the run.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from db.models.records import ChatMessage, ConversationRecord


@dataclass
class ImportMetadata:
    """Counters describing an import run."""

    total_files_processed: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    total_conversations: int = 0
    total_messages: int = 0
    processing_time_ms: int = 0
    detected_formats: Dict[str, int] = field(default_factory=dict)
    """Number of files per detected format."""

    parser_fallbacks: int = 0
    """Files whose format was chosen by confidence fallback."""

    def to_dict(self):
        return {
            "total_files_processed": self.total_files_processed,
            "successful_imports": self.successful_imports,
            "failed_imports": self.failed_imports,
            "total_conversations": self.total_conversations,
            "total_messages": self.total_messages,
            "processing_time_ms": self.processing_time_ms,
            "detected_formats": dict(self.detected_formats),
            "parser_fallbacks": self.parser_fallbacks,
        }


@dataclass
class ImportResult:
    """Result of importing one file or a batch of files."""

    conversations: List[ConversationRecord] = field(default_factory=list)
    """Conversations accepted (and persisted, when a store is configured)."""

    messages: List[ChatMessage] = field(default_factory=list)
    """Messages belonging to the accepted conversations."""

    errors: List[str] = field(default_factory=list)
    """Error messages from the import process."""

    warnings: List[str] = field(default_factory=list)
    """Non-fatal findings (encoding anomalies, fallback detection, removed content)."""

    metadata: ImportMetadata = field(default_factory=ImportMetadata)

    @property
    def succeeded(self) -> bool:
        return self.metadata.successful_imports > 0

    def absorb(self, other: "ImportResult", prefix: Optional[str] = None) -> None:
        """
        Fold a per-file result into this aggregate.

        Args:
            other: Result of a single file
            prefix: Prepended to the other result's errors and warnings as "prefix: ..."
        """
        self.conversations.extend(other.conversations)
        self.messages.extend(other.messages)
        if prefix:
            self.errors.extend(f"{prefix}: {e}" for e in other.errors)
            self.warnings.extend(f"{prefix}: {w}" for w in other.warnings)
        else:
            self.errors.extend(other.errors)
            self.warnings.extend(other.warnings)

        meta, other_meta = self.metadata, other.metadata
        if other_meta.successful_imports > 0:
            meta.successful_imports += 1
        else:
            meta.failed_imports += 1
        meta.total_conversations += other_meta.total_conversations
        meta.total_messages += other_meta.total_messages
        meta.parser_fallbacks += other_meta.parser_fallbacks
        for fmt, count in other_meta.detected_formats.items():
            meta.detected_formats[fmt] = meta.detected_formats.get(fmt, 0) + count

    def __str__(self) -> str:
        """Return a user-friendly summary of the import result."""
        meta = self.metadata
        if meta.total_conversations == 0 and not self.errors:
            return "No conversations to import"

        parts = []
        if meta.total_conversations > 0:
            parts.append(f"✅ Imported {meta.total_conversations} conversations "
                         f"({meta.total_messages} messages)")
        if meta.failed_imports > 0:
            parts.append(f"❌ {meta.failed_imports} of {meta.total_files_processed} files failed")
        if self.warnings:
            parts.append(f"⚠️ {len(self.warnings)} warnings")

        result = " | ".join(parts) if parts else "Import completed"

        if meta.detected_formats:
            formats = ", ".join(sorted(meta.detected_formats))
            result = f"{result} ({formats} format)"

        return result

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "conversations": [c.to_dict() for c in self.conversations],
            "messages": [m.to_dict() for m in self.messages],
            "errors": self.errors,
            "warnings": self.warnings,
            "metadata": self.metadata.to_dict(),
            "summary": str(self),
        }
