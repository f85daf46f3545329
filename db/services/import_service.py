"""
Service for importing chat exports into the encrypted archive.

Handles:
- Size and encoding checks before any parsing
- BOM and mojibake repair
- Format detection (strict validators, then confidence fallback)
- Parsing into canonical conversations and messages
- Encrypted persistence, one transaction per conversation
- Batch import of many files on a worker pool with cooperative cancellation

Per-file problems never abort a batch; they are recorded in the
ImportResult. Only infrastructure failures (no session key) propagate.
A result always lists exactly the conversations that reached the store.
"""

import logging
import os
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from config import IMPORT_MAX_WORKERS
from db.importers.base import CancellationToken, SourceDocument, repair_encoding
from db.importers.errors import (
    EncryptionNotInitializedError,
    FormatDetectionError,
    ImportCancelledError,
    StorageError,
    get_user_friendly_error_message,
)
from db.importers.registry import ParserRegistry
from db.importers.validation import ValidationService
from db.models.import_result import ImportResult
from db.models.records import ChatMessage
from db.services.encrypted_store import EncryptedStore

logger = logging.getLogger(__name__)


class ConversationImportService:
    """Service for importing conversations from supported chat exports."""

    def __init__(self, registry: ParserRegistry, validation: ValidationService = None,
                 store: EncryptedStore = None, max_workers: int = IMPORT_MAX_WORKERS):
        """
        Args:
            registry: Parser registry used for detection and parsing
            validation: Validation service; defaults to the registry's
            store: Encrypted store; when None, results are returned but not persisted
            max_workers: Default size of the worker pool for import_files
        """
        self.registry = registry
        self.validation = validation or registry.validation
        self.store = store
        self.max_workers = max(1, max_workers)

    # ------------------------------------------------------------------
    # Single document
    # ------------------------------------------------------------------

    def import_content(self, content: str, source_name: str = None,
                       cancel: CancellationToken = None) -> ImportResult:
        """
        Import one document already held in memory.

        Args:
            content: Decoded file content
            source_name: File name or path, used for titles and messages
            cancel: Optional cancellation token

        Returns:
            ImportResult for this single file

        Raises:
            EncryptionNotInitializedError: A store is configured but locked.
        """
        started = time.monotonic()
        result = ImportResult()
        result.metadata.total_files_processed = 1

        try:
            self._import_into(result, content, source_name, cancel)
        except EncryptionNotInitializedError:
            raise
        except ImportCancelledError as e:
            logger.info(f"Import of {source_name or 'content'} cancelled")
            result.errors.append(get_user_friendly_error_message(e))
        except FormatDetectionError as e:
            logger.warning(f"Format detection failed for {source_name or 'content'}")
            result.errors.append(get_user_friendly_error_message(e, self.registry.available_formats()))
        except Exception as e:
            logger.error(f"Import of {source_name or 'content'} failed: {e}")
            result.errors.append(get_user_friendly_error_message(e, self.registry.available_formats()))

        if result.conversations:
            result.metadata.successful_imports = 1
        else:
            result.metadata.failed_imports = 1
        result.metadata.total_conversations = len(result.conversations)
        result.metadata.total_messages = len(result.messages)
        result.metadata.processing_time_ms = int((time.monotonic() - started) * 1000)
        return result

    def _import_into(self, result: ImportResult, content: str, source_name: Optional[str],
                     cancel: Optional[CancellationToken]) -> None:
        size_issue = self.validation.check_size(content, source_name)
        if size_issue is not None:
            result.errors.append(size_issue.message)
            return

        if self.store is not None:
            self.store.crypto.require_initialized()

        text, repaired = repair_encoding(content)
        if repaired:
            result.warnings.append("Repaired text encoding (byte order mark or mis-decoded characters)")

        encoding_issue = self.validation.check_encoding(text, source_name)
        if encoding_issue is not None:
            result.warnings.append(encoding_issue.message)

        if cancel is not None:
            cancel.raise_if_cancelled()

        doc = SourceDocument(text, source_name=source_name)
        detection, parsed = self.registry.parse(doc, cancel=cancel)

        fmt = detection.file_type.value
        result.metadata.detected_formats[fmt] = result.metadata.detected_formats.get(fmt, 0) + 1
        if detection.fallback_attempted:
            result.metadata.parser_fallbacks += 1

        result.errors.extend(parsed.errors)
        result.warnings.extend(parsed.warnings)

        if cancel is not None:
            cancel.raise_if_cancelled()

        if self.store is None:
            result.conversations.extend(parsed.conversations)
            result.messages.extend(parsed.messages)
            return

        by_conversation: Dict[str, List[ChatMessage]] = defaultdict(list)
        for message in parsed.messages:
            by_conversation[message.conversation_id].append(message)

        for conversation in parsed.conversations:
            messages = by_conversation.get(conversation.id, [])
            try:
                self.store.save_conversation(conversation, messages)
            except StorageError as e:
                result.errors.append(
                    f"Failed to save conversation {conversation.id}: "
                    f"{get_user_friendly_error_message(e)}"
                )
                continue
            result.conversations.append(conversation)
            result.messages.extend(messages)

        logger.info(
            f"Imported {len(result.conversations)} {fmt} conversations "
            f"from {source_name or 'content'}"
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def import_file(self, path: str, cancel: CancellationToken = None) -> ImportResult:
        """
        Read, decode and import a single file.

        Undecodable bytes are replaced with U+FFFD and reported by the
        encoding check; a file that cannot be read becomes a recorded error.
        """
        try:
            with open(path, 'rb') as f:
                raw = f.read()
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            result = ImportResult()
            result.metadata.total_files_processed = 1
            result.metadata.failed_imports = 1
            result.errors.append(f"Failed to read file: {e.strerror or e}")
            return result

        size_issue = self.validation.check_size(raw, path)
        if size_issue is not None:
            result = ImportResult()
            result.metadata.total_files_processed = 1
            result.metadata.failed_imports = 1
            result.errors.append(size_issue.message)
            return result

        text = raw.decode('utf-8-sig', errors='replace')
        return self.import_content(text, source_name=os.path.basename(path), cancel=cancel)

    def import_files(self, paths: List[str], max_workers: int = None,
                     cancel: CancellationToken = None) -> ImportResult:
        """
        Import many files concurrently and aggregate the results.

        Errors and warnings are prefixed with the file path. When a file hits
        an infrastructure failure the remaining work is cancelled and the
        failure is re-raised.

        Args:
            paths: Files to import
            max_workers: Worker pool size; defaults to the service setting
            cancel: Optional cancellation token shared by all workers

        Returns:
            Aggregated ImportResult
        """
        started = time.monotonic()
        cancel = cancel or CancellationToken()
        workers = max(1, min(max_workers or self.max_workers, len(paths) or 1))

        aggregate = ImportResult()
        aggregate.metadata.total_files_processed = len(paths)
        logger.info(f"Starting import of {len(paths)} files with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self.import_file, path, cancel) for path in paths]
            try:
                for path, future in zip(paths, futures):
                    aggregate.absorb(future.result(), prefix=path)
            except Exception:
                cancel.cancel()
                for future in futures:
                    future.cancel()
                logger.error("Batch import aborted; remaining files cancelled")
                raise

        aggregate.metadata.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Batch import finished: {aggregate}")
        return aggregate
