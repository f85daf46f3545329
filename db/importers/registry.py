"""
Format detection and parser registry.

The set of formats is closed: each FileFormat member maps to one parser
class. Detection tries strict validators in a fixed priority order and
falls back to heuristic confidence scores when none passes.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from db.importers.base import CancellationToken, ConversationParser, ParseResult, SourceDocument
from db.importers.chatgpt import ChatGPTParser
from db.importers.claude import ClaudeParser
from db.importers.errors import ArchiveImportError, ExtractionError, FormatDetectionError
from db.importers.gemini import GeminiParser
from db.importers.metadata import DEFAULT_METADATA, ExtractorMetadata
from db.importers.qwen import QwenParser
from db.importers.validation import ValidationService
from db.importers.whatsapp import WhatsAppParser
from db.security.crypto import CryptoService
from db.security.sanitizer import ContentSanitizer

logger = logging.getLogger(__name__)


class FileFormat(str, Enum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    QWEN = "qwen"
    WHATSAPP = "whatsapp"
    UNKNOWN = "unknown"


# Detection order; earlier formats win ties
PRIORITY: Tuple[FileFormat, ...] = (
    FileFormat.CHATGPT,
    FileFormat.CLAUDE,
    FileFormat.GEMINI,
    FileFormat.QWEN,
    FileFormat.WHATSAPP,
)

PARSER_CLASSES = {
    FileFormat.CHATGPT: ChatGPTParser,
    FileFormat.CLAUDE: ClaudeParser,
    FileFormat.GEMINI: GeminiParser,
    FileFormat.QWEN: QwenParser,
    FileFormat.WHATSAPP: WhatsAppParser,
}


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of format detection."""

    is_valid: bool
    file_type: FileFormat
    confidence: int = 0
    fallback_attempted: bool = False
    error: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "file_type": self.file_type.value,
            "confidence": self.confidence,
            "fallback_attempted": self.fallback_attempted,
            "error": self.error,
            "warning": self.warning,
        }


class ParserRegistry:
    """
    Dispatches content to the right format parser.

    All parsers share the crypto, validation and sanitizer services given
    here; nothing is looked up globally.
    """

    def __init__(self, crypto: CryptoService, validation: ValidationService = None,
                 sanitizer: ContentSanitizer = None):
        self.crypto = crypto
        self.validation = validation or ValidationService()
        self.sanitizer = sanitizer or ContentSanitizer()
        self._parsers: Dict[FileFormat, ConversationParser] = {
            fmt: parser_class(crypto, self.validation, self.sanitizer)
            for fmt, parser_class in PARSER_CLASSES.items()
        }

    def get_parser(self, fmt: Union[FileFormat, str]) -> Optional[ConversationParser]:
        try:
            return self._parsers.get(FileFormat(fmt))
        except ValueError:
            return None

    def available_formats(self) -> List[str]:
        return [fmt.value for fmt in PRIORITY]

    def metadata(self, fmt: Union[FileFormat, str]) -> Optional[ExtractorMetadata]:
        try:
            return DEFAULT_METADATA.get(FileFormat(fmt).value)
        except ValueError:
            return None

    def detect(self, content: Union[str, SourceDocument]) -> DetectionResult:
        """
        Detect the format of imported chat content.

        Strict validators run in priority order and the first to pass wins.
        Otherwise, when fallback is enabled, the highest confidence score
        wins if it is strictly above the configured threshold.
        """
        doc = content if isinstance(content, SourceDocument) else SourceDocument(content)

        for fmt in PRIORITY:
            parser = self._parsers[fmt]
            outcome = parser.validate(doc)
            if outcome.is_valid:
                confidence = parser.confidence(doc)
                logger.debug(f"Detected {fmt.value} format (confidence: {confidence})")
                return DetectionResult(is_valid=True, file_type=fmt, confidence=confidence)
            logger.debug(f"{fmt.value} validation failed: {outcome.error}")

        config = self.validation.config
        if not config.enable_fallback_detection:
            return DetectionResult(
                is_valid=False,
                file_type=FileFormat.UNKNOWN,
                error="No compatible parser found for file format",
            )

        best_format, best_confidence = FileFormat.UNKNOWN, 0
        for fmt in PRIORITY:
            confidence = self._parsers[fmt].confidence(doc)
            if confidence > best_confidence:
                best_format, best_confidence = fmt, confidence

        if best_confidence > config.fallback_confidence_threshold:
            warning = (
                f"Format detection uncertain, using {best_format.value} parser "
                f"(confidence: {best_confidence}%)"
            )
            logger.warning(warning)
            return DetectionResult(
                is_valid=True,
                file_type=best_format,
                confidence=best_confidence,
                fallback_attempted=True,
                warning=warning,
            )

        return DetectionResult(
            is_valid=False,
            file_type=FileFormat.UNKNOWN,
            confidence=best_confidence,
            fallback_attempted=True,
            error="Unable to determine file format with sufficient confidence",
        )

    def parse(self, content: Union[str, SourceDocument],
              cancel: CancellationToken = None) -> Tuple[DetectionResult, ParseResult]:
        """
        Detect the format and parse in one step.

        Raises:
            FormatDetectionError: No format could be detected.
            ImportCancelledError: The cancel token fired mid-parse.
            ExtractionError: The parser failed unexpectedly.
        """
        doc = content if isinstance(content, SourceDocument) else SourceDocument(content)
        detection = self.detect(doc)
        if not detection.is_valid:
            raise FormatDetectionError(
                confidence=detection.confidence,
                available_formats=self.available_formats(),
            )

        format_name = detection.file_type.value
        try:
            result = self._parsers[detection.file_type].parse(doc, cancel=cancel)
        except ArchiveImportError:
            raise
        except Exception as e:
            logger.error(f"{format_name} parser crashed: {e}", exc_info=True)
            raise ExtractionError(format_name, original_error=e) from e

        if detection.warning:
            result.warnings.insert(0, detection.warning)
        return detection, result
