"""
Unit tests for ConversationImportService.

Covers single-document imports, file decoding, batch aggregation on the
worker pool, cancellation and the size ceiling.
"""

import json

import pytest

from conftest import chatgpt_conversation
from db.importers.base import CancellationToken
from db.importers.errors import EncryptionNotInitializedError, StorageError
from db.importers.validation import ValidationConfig, ValidationService
from db.models.import_result import ImportMetadata, ImportResult
from db.security.crypto import CryptoService
from db.services.encrypted_store import EncryptedStore
from db.services.import_service import ConversationImportService


class TestImportContent:
    """Test importing a single in-memory document."""

    def test_chatgpt_import_persists(self, import_service, store, chatgpt_json):
        result = import_service.import_content(chatgpt_json, source_name="conversations.json")

        assert result.errors == []
        assert result.metadata.successful_imports == 1
        assert result.metadata.failed_imports == 0
        assert result.metadata.total_conversations == 1
        assert result.metadata.total_messages == 1
        assert result.metadata.detected_formats == {"chatgpt": 1}
        assert store.count_conversations() == 1
        assert store.get_messages("c1")[0].author == "ChatGPT"

    def test_import_without_store(self, parse_only_service, whatsapp_log):
        """Test that a service without a store still returns the records."""
        result = parse_only_service.import_content(whatsapp_log)

        assert result.succeeded
        assert len(result.messages) == 3
        assert result.conversations[0].source_app == "WhatsApp"

    def test_oversized_input_rejected_before_parsing(self, registry, monkeypatch):
        """Test that input above the size ceiling never reaches a parser."""
        validation = ValidationService(ValidationConfig(max_file_size=100))
        service = ConversationImportService(registry, validation=validation)

        def fail_parse(*args, **kwargs):
            raise AssertionError("parser must not run")

        monkeypatch.setattr(registry, "parse", fail_parse)
        result = service.import_content("x" * 101)

        assert result.errors == ["File too large: 101 bytes (max: 100)"]
        assert result.metadata.failed_imports == 1
        assert result.conversations == []

    def test_empty_input_rejected(self, parse_only_service):
        result = parse_only_service.import_content("")
        assert result.errors == ["Empty file provided"]

    def test_undetectable_format(self, parse_only_service):
        result = parse_only_service.import_content("nothing recognizable here")

        assert result.metadata.failed_imports == 1
        assert result.errors[0].startswith("Could not detect file format.")

    def test_bom_and_control_characters_warned(self, parse_only_service, whatsapp_log):
        """Test that encoding repairs and anomalies become warnings, not errors."""
        content = "\ufeff" + whatsapp_log + "\x01" * 11

        result = parse_only_service.import_content(content)

        assert result.succeeded
        assert any("Repaired text encoding" in w for w in result.warnings)
        assert any("control characters" in w for w in result.warnings)

    def test_fallback_counted(self, parse_only_service):
        conv = chatgpt_conversation()
        conv["title"] = 42

        result = parse_only_service.import_content(json.dumps(conv))

        assert result.metadata.parser_fallbacks == 1
        assert result.warnings[0].startswith("Format detection uncertain")

    def test_parser_crash_recorded(self, parse_only_service, registry, chatgpt_json, monkeypatch):
        def crash(doc, cancel=None):
            raise ValueError("bad node")

        monkeypatch.setattr(registry.get_parser("chatgpt"), "parse", crash)
        result = parse_only_service.import_content(chatgpt_json)

        assert result.errors == ["Failed to extract messages from chatgpt format: bad node"]
        assert result.metadata.failed_imports == 1

    def test_unpaired_surrogate_does_not_abort_file(self, import_service, store):
        """Test that a JSON surrogate escape in one conversation leaves the others intact."""
        content = json.dumps([
            chatgpt_conversation("good", texts=("first",)),
            chatgpt_conversation("bad", texts=("broken \ud83d here",)),
            chatgpt_conversation("later", texts=("third",)),
        ])
        assert "\\ud83d" in content

        result = import_service.import_content(content)

        assert result.errors == []
        assert [c.id for c in result.conversations] == ["good", "bad", "later"]
        assert store.count_conversations() == 3
        assert store.get_messages("bad")[0].content == "broken  here"

    def test_failed_save_keeps_persisted_records(self, import_service, store, monkeypatch):
        """Test that the result lists exactly the conversations that reached the store."""
        content = json.dumps([chatgpt_conversation(conversation_id, texts=(f"text {conversation_id}",))
                              for conversation_id in ("a", "b", "c")])
        original_save = store.save_conversation

        def save(conversation, messages):
            if conversation.id == "b":
                raise StorageError("disk full")
            return original_save(conversation, messages)

        monkeypatch.setattr(store, "save_conversation", save)
        result = import_service.import_content(content)

        assert result.errors == ["Failed to save conversation b: Database error: disk full"]
        assert [c.id for c in result.conversations] == ["a", "c"]
        assert result.metadata.total_conversations == store.count_conversations() == 2
        assert result.metadata.total_messages == store.count_messages() == 2
        assert result.metadata.successful_imports == 1

    def test_cancelled_import_persists_nothing(self, import_service, store, chatgpt_json):
        token = CancellationToken()
        token.cancel()

        result = import_service.import_content(chatgpt_json, cancel=token)

        assert result.errors == ["Import cancelled"]
        assert result.conversations == []
        assert store.count_conversations() == 0

    def test_locked_store_propagates(self, registry, engine, chatgpt_json):
        """Test that a missing session key is an infrastructure failure."""
        service = ConversationImportService(registry, store=EncryptedStore(CryptoService(), engine=engine))

        with pytest.raises(EncryptionNotInitializedError):
            service.import_content(chatgpt_json)


class TestImportFiles:
    """Test file reading and batch imports."""

    def test_import_file_reads_utf8_with_bom(self, parse_only_service, tmp_path, claude_json):
        path = tmp_path / "claude.json"
        path.write_bytes(b"\xef\xbb\xbf" + claude_json.encode("utf-8"))

        result = parse_only_service.import_file(str(path))

        assert result.succeeded
        assert result.metadata.detected_formats == {"claude": 1}

    def test_undecodable_bytes_reported(self, parse_only_service, tmp_path):
        path = tmp_path / "chat.txt"
        path.write_bytes(b"[14/06/2025, 11:24] Jane: caf\xe9\n[14/06/2025, 11:25] Tom: ok")

        result = parse_only_service.import_file(str(path))

        assert result.succeeded
        assert any("invalid UTF-8" in w for w in result.warnings)

    def test_whatsapp_title_from_file_name(self, parse_only_service, tmp_path, whatsapp_log):
        path = tmp_path / "Family group.txt"
        path.write_text(whatsapp_log, encoding="utf-8")

        result = parse_only_service.import_file(str(path))
        assert result.conversations[0].display_name == "Family group"

    def test_missing_file_recorded(self, parse_only_service, tmp_path):
        result = parse_only_service.import_file(str(tmp_path / "missing.json"))

        assert result.metadata.failed_imports == 1
        assert result.errors[0].startswith("Failed to read file")

    def test_batch_aggregates_and_prefixes(self, import_service, store, tmp_path,
                                           chatgpt_json, claude_json, whatsapp_log):
        good_1 = tmp_path / "chatgpt.json"
        good_1.write_text(chatgpt_json, encoding="utf-8")
        good_2 = tmp_path / "claude.json"
        good_2.write_text(claude_json, encoding="utf-8")
        good_3 = tmp_path / "chat.txt"
        good_3.write_text(whatsapp_log, encoding="utf-8")
        bad = tmp_path / "notes.txt"
        bad.write_text("just some notes", encoding="utf-8")

        paths = [str(good_1), str(good_2), str(good_3), str(bad)]
        result = import_service.import_files(paths)

        meta = result.metadata
        assert meta.total_files_processed == 4
        assert meta.successful_imports == 3
        assert meta.failed_imports == 1
        assert meta.total_conversations == 3
        assert meta.total_messages == 1 + 2 + 3
        assert meta.detected_formats == {"chatgpt": 1, "claude": 1, "whatsapp": 1}
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"{bad}: Could not detect file format.")
        assert store.count_conversations() == 3

    def test_batch_reimport_is_idempotent(self, import_service, store, tmp_path, chatgpt_json):
        path = tmp_path / "chatgpt.json"
        path.write_text(chatgpt_json, encoding="utf-8")

        import_service.import_files([str(path), str(path)])

        assert store.count_conversations() == 1
        assert store.count_messages() == 1

    def test_cancelled_batch(self, import_service, store, tmp_path, chatgpt_json):
        path = tmp_path / "chatgpt.json"
        path.write_text(chatgpt_json, encoding="utf-8")
        token = CancellationToken()
        token.cancel()

        result = import_service.import_files([str(path)], cancel=token)

        assert result.errors == [f"{path}: Import cancelled"]
        assert store.count_conversations() == 0

    def test_batch_propagates_infrastructure_failure(self, registry, engine, tmp_path, chatgpt_json):
        path = tmp_path / "chatgpt.json"
        path.write_text(chatgpt_json, encoding="utf-8")
        service = ConversationImportService(registry, store=EncryptedStore(CryptoService(), engine=engine))

        with pytest.raises(EncryptionNotInitializedError):
            service.import_files([str(path), str(path)], max_workers=1)

    def test_empty_batch(self, parse_only_service):
        result = parse_only_service.import_files([])
        assert result.metadata.total_files_processed == 0
        assert str(result) == "No conversations to import"


class TestImportResult:
    """Test the result dataclasses."""

    def test_absorb_prefixes_and_sums(self):
        single = ImportResult(errors=["bad thing"], warnings=["odd thing"],
                              metadata=ImportMetadata(total_files_processed=1, failed_imports=1,
                                                      detected_formats={"qwen": 1}))
        batch = ImportResult()
        batch.absorb(single, prefix="a.txt")
        batch.absorb(single, prefix="b.txt")

        assert batch.errors == ["a.txt: bad thing", "b.txt: bad thing"]
        assert batch.warnings == ["a.txt: odd thing", "b.txt: odd thing"]
        assert batch.metadata.failed_imports == 2
        assert batch.metadata.detected_formats == {"qwen": 2}

    def test_to_dict_has_summary(self, parse_only_service, chatgpt_json):
        data = parse_only_service.import_content(chatgpt_json).to_dict()

        assert data["metadata"]["successful_imports"] == 1
        assert data["conversations"][0]["id"] == "c1"
        assert data["messages"][0]["content_type"] == "text"
        assert data["summary"] == "✅ Imported 1 conversations (1 messages) (chatgpt format)"
