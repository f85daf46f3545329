"""
Unit tests for the import error taxonomy.
"""

from db.importers.errors import (
    ArchiveImportError,
    DecryptionError,
    ErrorKind,
    ExtractionError,
    FormatDetectionError,
    ImportCancelledError,
    ImportIssue,
    Severity,
    StorageError,
    get_user_friendly_error_message,
)


class TestImportIssue:
    """Test the issue dataclass."""

    def test_fields_and_rendering(self):
        issue = ImportIssue(kind=ErrorKind.VALIDATION, severity=Severity.HIGH,
                            message="Too many messages: 11 (max: 10)", file="chat.json",
                            field="messages", limit=10, actual=11)

        assert issue.field == "messages"
        assert issue.blocking is True
        assert str(issue) == "chat.json: Too many messages: 11 (max: 10)"
        assert issue.created_at > 0

    def test_low_severity_is_not_blocking(self):
        issue = ImportIssue(kind=ErrorKind.VALIDATION, severity=Severity.LOW, message="old")
        assert issue.blocking is False
        assert str(issue) == "old"

    def test_created_at_ignored_in_equality(self):
        first = ImportIssue(kind=ErrorKind.ENCODING, severity=Severity.MEDIUM, message="x")
        second = ImportIssue(kind=ErrorKind.ENCODING, severity=Severity.MEDIUM, message="x",
                             created_at=first.created_at + 5)
        assert first == second


class TestErrorMessages:
    """Test user-friendly rendering of exceptions."""

    def test_default_message_from_docstring(self):
        assert ImportCancelledError().message == "Import was cancelled before completion."

    def test_kinds(self):
        assert FormatDetectionError().kind is ErrorKind.VALIDATION
        assert StorageError().kind is ErrorKind.DATABASE
        assert DecryptionError().kind is ErrorKind.CRYPTO

    def test_format_detection_lists_formats(self):
        error = FormatDetectionError(available_formats=["chatgpt", "claude"])
        message = get_user_friendly_error_message(error)
        assert "Supported formats: chatgpt, claude." in message

    def test_rendering_by_type(self):
        assert get_user_friendly_error_message(ImportCancelledError()) == "Import cancelled"
        assert get_user_friendly_error_message(StorageError("disk full")) == "Database error: disk full"
        assert get_user_friendly_error_message(DecryptionError("bad tag")) == "Encryption error: bad tag"
        assert get_user_friendly_error_message(ArchiveImportError("odd")) == "odd"
        assert get_user_friendly_error_message(RuntimeError("boom")) == "Import failed: boom"

    def test_extraction_error_wraps_cause(self):
        error = ExtractionError("qwen", original_error=ValueError("bad line"))
        assert error.message == "Failed to extract messages from qwen format: bad line"
