"""
Test configuration and fixtures
"""
import json
import os
import sys

import pytest

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.database import build_engine, create_tables
from db.importers.registry import ParserRegistry
from db.importers.validation import ValidationService
from db.security.crypto import CryptoService
from db.services.encrypted_store import EncryptedStore
from db.services.import_service import ConversationImportService

TEST_PASSWORD = "correct horse battery staple"

# 2023-11-14T22:13:20Z
BASE_TS = 1700000000


@pytest.fixture(scope="session")
def crypto():
    """Initialized crypto service shared by the whole run (PBKDF2 is slow)."""
    service = CryptoService()
    service.initialize(TEST_PASSWORD)
    return service


@pytest.fixture
def fresh_crypto():
    """Uninitialized crypto service for key lifecycle tests."""
    return CryptoService()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the archive schema."""
    test_engine = build_engine("sqlite://")
    create_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def store(crypto, engine):
    """Encrypted store using the shared, already initialized key."""
    return EncryptedStore(crypto, engine=engine)


@pytest.fixture
def validation():
    return ValidationService()


@pytest.fixture
def registry(crypto, validation):
    return ParserRegistry(crypto, validation)


@pytest.fixture
def import_service(registry, store):
    """Import service that persists into the in-memory store."""
    return ConversationImportService(registry, store=store, max_workers=2)


@pytest.fixture
def parse_only_service(registry):
    """Import service without persistence."""
    return ConversationImportService(registry)


# ----------------------------------------------------------------------
# Sample exports
# ----------------------------------------------------------------------

def chatgpt_conversation(conversation_id="c1", title="T", texts=("Hello",), start=BASE_TS):
    mapping = {"root": {"id": "root", "message": None, "parent": None, "children": []}}
    for i, text in enumerate(texts):
        role = "user" if i % 2 else "assistant"
        mapping[f"node-{i}"] = {
            "id": f"node-{i}",
            "message": {
                "id": f"msg-{i}",
                "author": {"role": role},
                "create_time": start + i * 60,
                "content": {"content_type": "text", "parts": [text]},
            },
        }
    return {
        "conversation_id": conversation_id,
        "title": title,
        "create_time": start,
        "update_time": start + len(texts) * 60,
        "mapping": mapping,
    }


def claude_conversation(uuid="claude-1", name="Claude Chat", start="2023-11-14T22:13:20Z"):
    return {
        "uuid": uuid,
        "name": name,
        "created_at": start,
        "updated_at": "2023-11-14T22:20:00Z",
        "chat_messages": [
            {"uuid": "m1", "sender": "human", "index": 0,
             "text": "What is a closure?", "created_at": "2023-11-14T22:13:20Z"},
            {"uuid": "m2", "sender": "assistant", "index": 1,
             "text": "A function that captures variables from its enclosing scope.",
             "created_at": "2023-11-14T22:14:00Z"},
        ],
    }


def gemini_standard_export():
    return {
        "conversations": [
            {
                "conversation_id": "gem-1",
                "conversation_title": "Trip planning",
                "create_time": "2023-11-14T22:13:20Z",
                "update_time": "2023-11-14T22:30:00Z",
                "messages": [
                    {"author": {"name": "user"}, "create_time": "2023-11-14T22:13:20Z",
                     "text": "Plan a weekend in Lisbon"},
                    {"author": {"name": "Gemini Advanced"}, "create_time": "2023-11-14T22:14:00Z",
                     "text": "Day one: Alfama and the castle."},
                ],
            }
        ]
    }


def gemini_takeout_export():
    return [
        {
            "id": "takeout-1",
            "name": "Bard chat",
            "created_date": "2023-11-14T22:13:20Z",
            "updated_date": "2023-11-14T22:30:00Z",
            "messages": [
                {"creator": {"name": "You"}, "created_date": "2023-11-14T22:13:20Z",
                 "content": "Summarize this article"},
                {"creator": {"name": "Bard"}, "created_date": "2023-11-14T22:14:00Z",
                 "content": "The article argues for shorter meetings."},
            ],
        }
    ]


def qwen_export():
    return {
        "conversation_id": "qwen-1",
        "title": "翻译练习",
        "messages": [
            {"role": "user", "content": "请翻译：good morning", "timestamp": BASE_TS},
            {"role": "assistant", "content": "早上好", "timestamp": BASE_TS + 5},
        ],
    }


QWEN_TEXT_LOG = "\n".join([
    "2023-11-14 22:13:20 用户: 你好",
    "2023-11-14 22:13:25 助手: 你好！有什么可以帮你？",
    "第二行内容",
])

WHATSAPP_LOG = "\n".join([
    "[14/06/2025, 11:24] Jane: Hi",
    "[14/06/2025, 11:25] Tom: Hey! How are you?",
    "Still at work",
    "[14/06/2025, 11:26] Jane: Fine, thanks",
])


@pytest.fixture
def chatgpt_json():
    return json.dumps([chatgpt_conversation()])


@pytest.fixture
def claude_json():
    return json.dumps([claude_conversation()])


@pytest.fixture
def gemini_json():
    return json.dumps(gemini_standard_export())


@pytest.fixture
def gemini_takeout_json():
    return json.dumps(gemini_takeout_export())


@pytest.fixture
def qwen_json():
    return json.dumps(qwen_export(), ensure_ascii=False)


@pytest.fixture
def qwen_log():
    return QWEN_TEXT_LOG


@pytest.fixture
def whatsapp_log():
    return WHATSAPP_LOG
