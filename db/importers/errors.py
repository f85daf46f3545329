"""
Error taxonomy for the import pipeline and the encryption layer.

Recoverable problems are reported as ImportIssue values and end up as
strings in the batch result. Conditions that stop a unit of work are
raised as ArchiveImportError subclasses; each carries the ErrorKind it
belongs to so the orchestrator can render it uniformly.
"""

import dataclasses
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of error categories."""

    VALIDATION = "validation"
    PARSING = "parsing"
    ENCODING = "encoding"
    SECURITY = "security"
    DATABASE = "database"
    CRYPTO = "crypto"


class Severity(str, Enum):
    """How serious an issue is. Only LOW issues are non-blocking."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ImportIssue:
    """A single validation/parsing finding.

    Attributes:
        kind: Error category
        severity: How serious the finding is
        message: Human-readable description
        file: Source file the issue belongs to (if known)
        field: Name of the offending field or ceiling (if any)
        limit: Configured ceiling that was breached (if any)
        actual: Observed value that breached the ceiling (if any)
    """

    kind: ErrorKind
    severity: Severity
    message: str
    file: Optional[str] = None
    field: Optional[str] = None
    limit: Optional[int] = None
    actual: Optional[int] = None
    created_at: float = dataclasses.field(default_factory=time.time, compare=False)

    @property
    def blocking(self) -> bool:
        """True when the issue must reject the item it was raised for."""
        return self.severity is not Severity.LOW

    def __str__(self) -> str:
        if self.file:
            return f"{self.file}: {self.message}"
        return self.message


class ArchiveImportError(Exception):
    """Base exception for import and storage errors."""

    kind: ErrorKind = ErrorKind.PARSING

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__.strip().splitlines()[0]
        super().__init__(self.message)


class FormatDetectionError(ArchiveImportError):
    """
    Raised when a file format cannot be reliably detected.

    Attributes:
        message: User-friendly error message (dynamically constructed)
        confidence: Best confidence score observed during fallback
        available_formats: List of format names that ARE available
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = None, confidence: int = 0,
                 available_formats: list = None):
        self.confidence = confidence
        self.available_formats = available_formats or []

        if message is None:
            formats_str = ", ".join(self.available_formats) if self.available_formats else "no parsers registered"
            message = (
                f"Could not detect file format. "
                f"Supported formats: {formats_str}. "
                f"Please ensure your file is a valid export from one of these sources."
            )

        super().__init__(message)


class StructureError(ArchiveImportError):
    """Conversation structure is invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = None, field: str = None,
                 limit: int = None, actual: int = None):
        self.field = field
        self.limit = limit
        self.actual = actual
        super().__init__(message)


class ExtractionError(ArchiveImportError):
    """
    Raised when message extraction from a detected format fails.

    Attributes:
        format_name: The format being extracted from
        original_error: The underlying exception (for logging/debugging)
    """

    kind = ErrorKind.PARSING

    def __init__(self, format_name: str, message: str = None, original_error: Exception = None):
        self.format_name = format_name
        self.original_error = original_error

        if message is None:
            message = f"Failed to extract messages from {format_name} format"
            if original_error:
                message += f": {str(original_error)}"

        super().__init__(message)


class ImportCancelledError(ArchiveImportError):
    """Import was cancelled before completion."""

    kind = ErrorKind.PARSING


class StorageError(ArchiveImportError):
    """Encrypted store operation failed."""

    kind = ErrorKind.DATABASE


class CryptoError(ArchiveImportError):
    """Cryptographic operation failed."""

    kind = ErrorKind.CRYPTO


class DecryptionError(CryptoError):
    """Decryption failed - invalid data or key."""


class EncryptionNotInitializedError(CryptoError):
    """Encryption not initialized."""


class InvalidPasswordError(CryptoError):
    """Password does not match the stored encryption key."""


def get_user_friendly_error_message(error: Exception, available_formats: list = None) -> str:
    """
    Convert an import error to a user-friendly message for the batch result.

    Args:
        error: An exception from the import system
        available_formats: List of currently available parser formats

    Returns:
        A user-friendly error message
    """
    available_formats = available_formats or []

    if isinstance(error, FormatDetectionError):
        if error.message:
            return error.message
        formats_str = ", ".join(available_formats) if available_formats else "no parsers registered"
        return (
            f"Could not detect file format. "
            f"Supported formats: {formats_str}. "
            f"Please ensure your file is a valid export."
        )

    elif isinstance(error, ImportCancelledError):
        return "Import cancelled"

    elif isinstance(error, CryptoError):
        return f"Encryption error: {error.message}"

    elif isinstance(error, StorageError):
        return f"Database error: {error.message}"

    elif isinstance(error, ArchiveImportError):
        return error.message

    else:
        # Generic fallback for non-import errors
        return f"Import failed: {str(error)}"
