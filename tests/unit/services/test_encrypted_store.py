"""
Unit tests for EncryptedStore.

Runs against an in-memory SQLite database; checks that sensitive fields
never reach the database in clear and that the key lifecycle is enforced.
"""

import pytest
from sqlalchemy import text

from conftest import BASE_TS, TEST_PASSWORD
from config import KEY_CHECK_METADATA_KEY, SALT_METADATA_KEY
from db.importers.errors import EncryptionNotInitializedError, InvalidPasswordError, StorageError
from db.models.records import ChatMessage, ChatType, ContentType, ConversationRecord
from db.repositories.unit_of_work import UnitOfWork
from db.security.crypto import CryptoService
from db.services.encrypted_store import EncryptedStore


def _conversation(conversation_id="conv-1", start=BASE_TS, end=BASE_TS + 60, name="Secret plans"):
    return ConversationRecord(
        id=conversation_id,
        source_app="ChatGPT",
        chat_type=ChatType.LLM,
        display_name=name,
        start_time=start,
        end_time=end,
        tags=("work",),
    )


def _message(conversation_id="conv-1", content="the password is swordfish", ts=BASE_TS):
    return ChatMessage(
        message_id=CryptoService.hash_id(content, ts),
        conversation_id=conversation_id,
        timestamp_utc=ts,
        author="User",
        content=content,
        content_type=ContentType.TEXT,
    )


class TestUnlock:
    """Test key setup and verification."""

    def test_first_unlock_creates_salt(self, fresh_crypto, engine):
        """Test that the first unlock persists a salt and a verification token."""
        store = EncryptedStore(fresh_crypto, engine=engine)

        assert store.unlock(TEST_PASSWORD) is True
        assert fresh_crypto.is_initialized

        with UnitOfWork(session_factory=store._session_factory) as uow:
            assert uow.metadata.get_value(SALT_METADATA_KEY) == fresh_crypto.salt.hex()
            assert uow.metadata.get_value(KEY_CHECK_METADATA_KEY)

    def test_second_unlock_reuses_salt(self, fresh_crypto, engine):
        """Test that a restart re-derives the same key from the stored salt."""
        first = EncryptedStore(fresh_crypto, engine=engine)
        first.unlock(TEST_PASSWORD)
        first.save_conversation(_conversation(), [_message()])
        salt = fresh_crypto.salt

        restarted = EncryptedStore(CryptoService(), engine=engine)
        assert restarted.unlock(TEST_PASSWORD) is False
        assert restarted.crypto.salt == salt
        assert restarted.get_messages("conv-1")[0].content == "the password is swordfish"

    def test_wrong_password_rejected(self, fresh_crypto, engine):
        """Test that a wrong password raises and leaves no key installed."""
        EncryptedStore(fresh_crypto, engine=engine).unlock(TEST_PASSWORD)

        other = CryptoService()
        with pytest.raises(InvalidPasswordError):
            EncryptedStore(other, engine=engine).unlock("not the password")
        assert not other.is_initialized

    def test_lock_clears_key(self, fresh_crypto, engine):
        store = EncryptedStore(fresh_crypto, engine=engine)
        store.unlock(TEST_PASSWORD)
        store.lock()

        assert not fresh_crypto.is_initialized
        with pytest.raises(EncryptionNotInitializedError):
            store.save_conversation(_conversation(), [_message()])


class TestPersistence:
    """Test encrypted writes and decrypted reads."""

    def test_save_and_read_back(self, store):
        store.save_conversation(_conversation(), [_message()])

        conversation = store.get_conversation("conv-1")
        assert conversation == _conversation()
        assert store.get_messages("conv-1") == [_message()]

    def test_sensitive_fields_encrypted_at_rest(self, store, engine):
        """Test that display names, tags, authors and content are not stored in clear."""
        store.save_conversation(_conversation(), [_message()])

        with engine.connect() as connection:
            name, tags, source_app = connection.execute(
                text("SELECT display_name, tags, source_app FROM conversations")
            ).one()
            author, content = connection.execute(text("SELECT author, content FROM messages")).one()

        assert "Secret plans" not in name
        assert "work" not in tags
        assert source_app == "ChatGPT"
        assert author != "User"
        assert "swordfish" not in content
        assert store.crypto.decrypt(content) == "the password is swordfish"

    def test_reimport_is_idempotent(self, store):
        """Test that saving the same records twice does not duplicate rows."""
        for _ in range(2):
            store.save_conversation(_conversation(), [_message()])

        assert store.count_conversations() == 1
        assert store.count_messages() == 1

    def test_upsert_replaces_fields(self, store):
        store.save_conversation(_conversation(), [_message()])
        store.save_conversation(_conversation(name="Renamed"), [_message()])

        assert store.get_conversation("conv-1").display_name == "Renamed"

    def test_stray_messages_rejected(self, store):
        """Test that messages from another conversation are refused."""
        with pytest.raises(StorageError):
            store.save_conversation(_conversation(), [_message(conversation_id="other")])
        assert store.count_conversations() == 0

    def test_unencodable_field_rolls_back(self, store):
        """Test that a field which cannot be encrypted fails the save and writes nothing."""
        with pytest.raises(StorageError, match="Failed to encrypt conversation conv-1"):
            store.save_conversation(_conversation(), [_message(content="broken \ud83d here")])

        assert store.count_conversations() == 0
        assert store.count_messages() == 0

    def test_messages_returned_chronologically(self, store):
        messages = [_message(content="later", ts=BASE_TS + 30), _message(content="first", ts=BASE_TS)]
        store.save_conversation(_conversation(), messages)

        assert [m.content for m in store.get_messages("conv-1")] == ["first", "later"]

    def test_missing_conversation(self, store):
        assert store.get_conversation("nope") is None
        assert store.get_messages("nope") == []


class TestPaging:
    """Test conversation listing."""

    def test_newest_first_by_end_time(self, store):
        for i in range(3):
            conversation = _conversation(conversation_id=f"conv-{i}", end=BASE_TS + 100 * (i + 1))
            store.save_conversation(conversation, [_message(conversation_id=f"conv-{i}", content=f"m{i}")])

        page = store.get_conversations(limit=2)
        assert [c.id for c in page] == ["conv-2", "conv-1"]

        rest = store.get_conversations(limit=2, offset=2)
        assert [c.id for c in rest] == ["conv-0"]

    def test_sort_by_start_time(self, store):
        store.save_conversation(_conversation("old", start=BASE_TS - 500),
                                [_message("old", content="a", ts=BASE_TS - 500)])
        store.save_conversation(_conversation("new"), [_message("new", content="b")])

        assert [c.id for c in store.get_conversations(sort_by="start_time")] == ["new", "old"]

    def test_invalid_sort_column(self, store):
        with pytest.raises(ValueError):
            store.get_conversations(sort_by="display_name")
