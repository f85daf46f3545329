"""
Unit tests for the Gemini parser (standard and Google Takeout exports).
"""

import json

import pytest

from conftest import BASE_TS, gemini_standard_export, gemini_takeout_export
from db.importers.base import SourceDocument
from db.importers.gemini import GeminiParser, is_standard_format, is_takeout_format


@pytest.fixture
def parser(crypto):
    return GeminiParser(crypto)


def _doc(data):
    return SourceDocument(json.dumps(data))


class TestGeminiParsing:
    """Test suite for Gemini parsing."""

    def test_standard_export(self, parser):
        """Test the conversations wrapper shape."""
        result = parser.parse(_doc(gemini_standard_export()))

        assert result.errors == []
        conversation = result.conversations[0]
        assert conversation.id == "gem-1"
        assert conversation.display_name == "Trip planning"
        assert conversation.source_app == "Google Gemini"
        assert conversation.start_time == BASE_TS
        assert [m.author for m in result.messages] == ["User", "Gemini"]

    def test_takeout_export(self, parser):
        """Test the Takeout shape with creator/content fields."""
        result = parser.parse(_doc(gemini_takeout_export()))

        assert result.errors == []
        assert result.conversations[0].id == "takeout-1"
        assert result.conversations[0].display_name == "Bard chat"
        assert [m.author for m in result.messages] == ["User", "Gemini"]
        assert result.messages[1].content == "The article argues for shorter meetings."

    def test_missing_title_gets_default(self, parser):
        data = gemini_standard_export()
        del data["conversations"][0]["conversation_title"]

        result = parser.parse(_doc(data))
        assert result.conversations[0].display_name == "Untitled Gemini Chat"

    def test_messages_without_author_skipped(self, parser):
        """Test that malformed messages do not fail the conversation."""
        data = gemini_standard_export()
        data["conversations"][0]["messages"].append({"text": "no author", "create_time": "2023-11-14T22:15:00Z"})
        data["conversations"][0]["messages"].append({"author": {"name": "user"}, "text": 42})

        result = parser.parse(_doc(data))
        assert len(result.messages) == 2

    def test_invalid_conversation_reported(self, parser):
        data = gemini_standard_export()
        broken = dict(data["conversations"][0], conversation_id="broken")
        broken["messages"] = "nope"
        data["conversations"].insert(0, broken)

        result = parser.parse(_doc(data))

        assert [c.id for c in result.conversations] == ["gem-1"]
        assert result.errors == ["Failed to parse conversation broken: Missing or invalid messages array"]


class TestGeminiDetection:
    """Test shape detection, validation and confidence."""

    def test_shape_helpers(self):
        assert is_standard_format(gemini_standard_export())
        assert not is_standard_format(gemini_takeout_export())
        assert is_takeout_format(gemini_takeout_export())
        assert is_takeout_format(gemini_takeout_export()[0])
        assert not is_takeout_format({"id": "x", "messages": []})

    def test_validate_accepts_both_shapes(self, parser):
        assert parser.validate(_doc(gemini_standard_export())).is_valid
        assert parser.validate(_doc(gemini_takeout_export())).is_valid

    def test_validate_rejects_other_json(self, parser):
        outcome = parser.validate(_doc({"uuid": "x", "chat_messages": []}))
        assert not outcome
        assert outcome.error == "Not a valid Gemini format"

    def test_confidence(self, parser):
        assert parser.confidence(_doc(gemini_standard_export())) == 80
        assert parser.confidence(_doc(gemini_takeout_export())) == 40
        assert parser.confidence(_doc(gemini_takeout_export()[0])) == 60
