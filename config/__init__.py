"""
Configuration package for the chat vault import core.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# === STORAGE ===
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///chat_vault.db")
SALT_METADATA_KEY = "encryption_salt"
KEY_CHECK_METADATA_KEY = "encryption_check"

# === ENCRYPTION ===
KDF_ITERATIONS = int(os.getenv("KDF_ITERATIONS", "100000"))

# === IMPORT CEILINGS ===
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(100 * 1024 * 1024)))  # 100 MiB
MAX_CONVERSATIONS = int(os.getenv("MAX_CONVERSATIONS", "10000"))
MAX_MESSAGES_PER_FILE = int(os.getenv("MAX_MESSAGES_PER_FILE", "100000"))
MAX_MESSAGES_PER_CONVERSATION = int(os.getenv("MAX_MESSAGES_PER_CONVERSATION", "50000"))
MAX_MAPPING_NODES = int(os.getenv("MAX_MAPPING_NODES", "100000"))
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(1024 * 1024)))  # 1 MiB per message
MAX_DISPLAY_LENGTH = int(os.getenv("MAX_DISPLAY_LENGTH", str(50 * 1024)))  # 50 KiB rendered

# === DETECTION POLICY ===
CONTROL_CHAR_THRESHOLD = int(os.getenv("CONTROL_CHAR_THRESHOLD", "10"))
FALLBACK_CONFIDENCE_THRESHOLD = int(os.getenv("FALLBACK_CONFIDENCE_THRESHOLD", "30"))
ENABLE_FALLBACK_DETECTION = os.getenv("ENABLE_FALLBACK_DETECTION", "true").lower() == "true"

# === WORKERS ===
IMPORT_MAX_WORKERS = int(os.getenv("IMPORT_MAX_WORKERS", "4"))

__all__ = [
    'DATABASE_URL',
    'SALT_METADATA_KEY',
    'KEY_CHECK_METADATA_KEY',
    'KDF_ITERATIONS',
    'MAX_FILE_SIZE',
    'MAX_CONVERSATIONS',
    'MAX_MESSAGES_PER_FILE',
    'MAX_MESSAGES_PER_CONVERSATION',
    'MAX_MAPPING_NODES',
    'MAX_CONTENT_LENGTH',
    'MAX_DISPLAY_LENGTH',
    'CONTROL_CHAR_THRESHOLD',
    'FALLBACK_CONFIDENCE_THRESHOLD',
    'ENABLE_FALLBACK_DETECTION',
    'IMPORT_MAX_WORKERS',
]
