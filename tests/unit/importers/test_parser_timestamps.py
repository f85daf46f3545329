"""
Timestamp handling and determinism across all parsers.

Every format must drop a message with a negative or far-future timestamp
without losing the rest of its conversation, and must read millisecond
timestamps as seconds.
"""

import json

import pytest

from conftest import (
    BASE_TS,
    chatgpt_conversation,
    claude_conversation,
    gemini_standard_export,
    qwen_export,
)
from db.importers.base import SourceDocument
from db.importers.chatgpt import ChatGPTParser
from db.importers.claude import ClaudeParser
from db.importers.gemini import GeminiParser
from db.importers.qwen import QwenParser
from db.importers.whatsapp import WhatsAppParser

# 2100-01-01T00:00:00Z
FAR_FUTURE_TS = 4102444800

STAMPS = (
    ("keep", BASE_TS),
    ("negative", -5),
    ("future", FAR_FUTURE_TS),
    ("millis", (BASE_TS + 120) * 1000),
)


def _chatgpt(stamps):
    conv = chatgpt_conversation(texts=tuple(text for text, _ in stamps))
    for i, (_, ts) in enumerate(stamps):
        conv["mapping"][f"node-{i}"]["message"]["create_time"] = ts
    return ChatGPTParser, json.dumps([conv])


def _claude(stamps):
    conv = claude_conversation()
    conv["chat_messages"] = [
        {"uuid": f"m{i}", "sender": "human", "index": i, "text": text, "created_at": ts}
        for i, (text, ts) in enumerate(stamps)
    ]
    return ClaudeParser, json.dumps([conv])


def _gemini(stamps):
    export = gemini_standard_export()
    export["conversations"][0]["messages"] = [
        {"author": {"name": "user"}, "create_time": ts, "text": text} for text, ts in stamps
    ]
    return GeminiParser, json.dumps(export)


def _qwen(stamps):
    data = qwen_export()
    data["messages"] = [{"role": "user", "content": text, "timestamp": ts} for text, ts in stamps]
    return QwenParser, json.dumps(data, ensure_ascii=False)


@pytest.mark.parametrize("build", [_chatgpt, _claude, _gemini, _qwen],
                         ids=["chatgpt", "claude", "gemini", "qwen"])
def test_out_of_range_timestamps_drop_only_that_message(crypto, build):
    parser_class, content = build(STAMPS)

    result = parser_class(crypto).parse(SourceDocument(content))

    assert result.errors == []
    assert len(result.conversations) == 1
    assert [m.content for m in result.messages] == ["keep", "millis"]
    assert [m.timestamp_utc for m in result.messages] == [BASE_TS, BASE_TS + 120]


def test_whatsapp_out_of_range_dates_dropped(crypto):
    log = "\n".join([
        "[01/01/1969, 10:00] Jane: too old",
        "[14/06/2025, 11:24] Jane: keep",
        "[01/01/2100, 10:00] Tom: too new",
    ])

    result = WhatsAppParser(crypto).parse(SourceDocument(log))

    assert [m.content for m in result.messages] == ["keep"]
    assert result.conversations[0].start_time == result.conversations[0].end_time


@pytest.mark.parametrize("fixture_name", [
    "chatgpt_json", "claude_json", "gemini_json", "gemini_takeout_json",
    "qwen_json", "qwen_log", "whatsapp_log",
])
def test_parsing_is_deterministic(request, registry, fixture_name):
    """Test that parsing the same content twice yields identical ids and timestamps."""
    content = request.getfixturevalue(fixture_name)

    def snapshot():
        _, parsed = registry.parse(SourceDocument(content))
        return (
            [(c.id, c.start_time, c.end_time, c.display_name) for c in parsed.conversations],
            [(m.message_id, m.conversation_id, m.timestamp_utc, m.author) for m in parsed.messages],
        )

    first = snapshot()
    assert first[1]
    assert snapshot() == first
