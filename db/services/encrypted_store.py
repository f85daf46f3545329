"""
Encrypted persistence for canonical conversations and messages.

Sensitive fields (display names, tags, authors, message content) are
encrypted with the session key before they reach the database; ids,
timestamps and enums stay in clear for sorting and paging. The KDF salt
and a key verification token live in the app_metadata table.
"""

import json
import logging
import threading
from typing import Callable, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import KEY_CHECK_METADATA_KEY, SALT_METADATA_KEY
from db.database import build_session_factory, create_tables, get_session
from db.importers.errors import (
    CryptoError,
    DecryptionError,
    EncryptionNotInitializedError,
    InvalidPasswordError,
    StorageError,
)
from db.models.models import Conversation, Message
from db.models.records import ChatMessage, ChatType, ContentType, ConversationRecord
from db.repositories.unit_of_work import UnitOfWork
from db.security.crypto import CryptoService

logger = logging.getLogger(__name__)

KEY_CHECK_PLAINTEXT = "chat-archive-key-check-v1"


class EncryptedStore:
    """Encrypt-on-write / decrypt-on-read access to the archive."""

    def __init__(self, crypto: CryptoService, engine: Optional[Engine] = None,
                 session_factory: Optional[Callable[[], Session]] = None):
        self.crypto = crypto
        self.engine = engine
        if session_factory is None:
            session_factory = build_session_factory(engine) if engine is not None else get_session
        self._session_factory = session_factory
        # SQLite allows a single writer at a time
        self._write_lock = threading.Lock()

    def _unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(session_factory=self._session_factory)

    def create_schema(self) -> None:
        """Create the archive tables if they do not exist."""
        create_tables(self.engine)

    # ------------------------------------------------------------------
    # Key lifecycle
    # ------------------------------------------------------------------

    def unlock(self, password: str) -> bool:
        """
        Derive the session key from the password and the persisted salt.

        On first use a fresh salt is generated and persisted together with
        an encrypted verification token.

        Returns:
            True when a new salt was created, False when an existing one was used.

        Raises:
            InvalidPasswordError: The password does not match the archive.
            StorageError: The metadata could not be read or written.
        """
        try:
            with self._unit_of_work() as uow:
                salt_hex = uow.metadata.get_value(SALT_METADATA_KEY)
                token = uow.metadata.get_value(KEY_CHECK_METADATA_KEY)

                if salt_hex is None:
                    salt = self.crypto.initialize(password)
                    uow.metadata.set_value(SALT_METADATA_KEY, salt.hex())
                    uow.metadata.set_value(KEY_CHECK_METADATA_KEY, self.crypto.encrypt(KEY_CHECK_PLAINTEXT))
                    logger.info("Created new encryption salt for archive")
                    return True

                self.crypto.initialize_with_salt(password, salt_hex)

                if token is None:
                    uow.metadata.set_value(KEY_CHECK_METADATA_KEY, self.crypto.encrypt(KEY_CHECK_PLAINTEXT))
                    logger.info("Stored missing key verification token")
                    return False

                self._verify_token(token)
                logger.info("Archive unlocked")
                return False

        except SQLAlchemyError as e:
            self.crypto.clear()
            logger.error(f"Failed to unlock archive: {e}")
            raise StorageError(f"Failed to access encryption metadata: {e}") from e
        except Exception:
            self.crypto.clear()
            raise

    def _verify_token(self, token: str) -> None:
        try:
            plaintext = self.crypto.decrypt(token)
        except DecryptionError as e:
            raise InvalidPasswordError() from e

        if not CryptoService.constant_time_equals(plaintext, KEY_CHECK_PLAINTEXT):
            raise InvalidPasswordError()

    def lock(self) -> None:
        """Wipe the session key."""
        self.crypto.clear()
        logger.info("Archive locked")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_conversation(self, conversation: ConversationRecord, messages: List[ChatMessage]) -> int:
        """
        Persist one conversation and its messages in a single transaction.

        Existing rows with the same ids are replaced.

        Returns:
            Number of messages written.

        Raises:
            EncryptionNotInitializedError: No session key.
            StorageError: A field could not be encrypted, or the transaction
                failed and was rolled back.
        """
        self.crypto.require_initialized()

        stray = [m.message_id for m in messages if m.conversation_id != conversation.id]
        if stray:
            raise StorageError(
                f"{len(stray)} message(s) do not belong to conversation {conversation.id}"
            )

        # Encrypt before the transaction opens
        try:
            conversation_row, message_rows = self._encrypt_rows(conversation, messages)
        except EncryptionNotInitializedError:
            raise
        except CryptoError as e:
            logger.error(f"Failed to encrypt conversation {conversation.id}: {e.message}")
            raise StorageError(f"Failed to encrypt conversation {conversation.id}: {e.message}") from e

        try:
            with self._write_lock, self._unit_of_work() as uow:
                uow.conversations.upsert(conversation_row)
                uow.messages.upsert_many(message_rows)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")
            raise StorageError(f"Failed to save conversation {conversation.id}: {e}") from e

        logger.debug(f"Saved conversation {conversation.id} with {len(message_rows)} messages")
        return len(message_rows)

    def _encrypt_rows(self, conversation: ConversationRecord,
                      messages: List[ChatMessage]) -> Tuple[Conversation, List[Message]]:
        conversation_row = Conversation(
            id=conversation.id,
            source_app=conversation.source_app,
            chat_type=conversation.chat_type.value,
            display_name=self.crypto.encrypt(conversation.display_name),
            start_time=conversation.start_time,
            end_time=conversation.end_time,
            tags=self.crypto.encrypt(json.dumps(list(conversation.tags))),
        )
        message_rows = [
            Message(
                message_id=message.message_id,
                conversation_id=message.conversation_id,
                timestamp_utc=message.timestamp_utc,
                author=self.crypto.encrypt(message.author),
                content=self.crypto.encrypt(message.content),
                content_type=message.content_type.value,
            )
            for message in messages
        ]
        return conversation_row, message_rows

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_conversations(self, sort_by: str = 'end_time', limit: Optional[int] = 50,
                          offset: int = 0) -> List[ConversationRecord]:
        """Get a page of conversations, newest first, with fields decrypted."""
        self.crypto.require_initialized()
        with self._unit_of_work() as uow:
            rows = uow.conversations.get_page(sort_by=sort_by, limit=limit, offset=offset)
            return [self._to_conversation(row) for row in rows]

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        self.crypto.require_initialized()
        with self._unit_of_work() as uow:
            row = uow.conversations.get_by_id(conversation_id)
            return self._to_conversation(row) if row else None

    def get_messages(self, conversation_id: str) -> List[ChatMessage]:
        """Get all messages of a conversation in chronological order, decrypted."""
        self.crypto.require_initialized()
        with self._unit_of_work() as uow:
            rows = uow.messages.get_by_conversation(conversation_id)
            return [self._to_message(row) for row in rows]

    def count_conversations(self) -> int:
        with self._unit_of_work() as uow:
            return uow.conversations.count()

    def count_messages(self) -> int:
        with self._unit_of_work() as uow:
            return uow.messages.count()

    def _to_conversation(self, row: Conversation) -> ConversationRecord:
        return ConversationRecord(
            id=row.id,
            source_app=row.source_app,
            chat_type=ChatType(row.chat_type),
            display_name=self.crypto.decrypt(row.display_name),
            start_time=row.start_time,
            end_time=row.end_time,
            tags=tuple(json.loads(self.crypto.decrypt(row.tags))),
        )

    def _to_message(self, row: Message) -> ChatMessage:
        return ChatMessage(
            message_id=row.message_id,
            conversation_id=row.conversation_id,
            timestamp_utc=row.timestamp_utc,
            author=self.crypto.decrypt(row.author),
            content=self.crypto.decrypt(row.content),
            content_type=ContentType(row.content_type),
        )
