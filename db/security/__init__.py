"""
Encryption and content sanitization services.
"""

from db.security.crypto import CryptoService, DerivedKey
from db.security.sanitizer import ContentSanitizer

__all__ = ["CryptoService", "DerivedKey", "ContentSanitizer"]
