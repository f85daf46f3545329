"""AES-256-GCM field encryption with password-derived keys.

Key derivation: PBKDF2-HMAC-SHA256, 32-byte key, >= 100,000 iterations.
The salt is random (32 bytes) and is persisted by the caller; the key
itself only ever lives in memory and is wiped by clear().

Blob format: base64(version || nonce || ciphertext+tag)
    version: 1 byte (currently 0x01)
    nonce:   12 bytes, fresh per encrypt() call
    tag:     16 bytes, appended by AESGCM
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import KDF_ITERATIONS
from db.importers.errors import CryptoError, DecryptionError, EncryptionNotInitializedError

logger = logging.getLogger(__name__)

MIN_KDF_ITERATIONS = 100_000
KEY_LENGTH = 32
SALT_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
_BLOB_VERSION = 1

KeyLike = Union[bytes, bytearray]


@dataclass(frozen=True)
class DerivedKey:
    """Result of a key derivation: the key and the salt that produced it."""

    key: bytes
    salt: bytes

    @property
    def salt_hex(self) -> str:
        return self.salt.hex()

    def __repr__(self) -> str:
        # Never leak key material into logs or tracebacks
        return f"DerivedKey(salt={self.salt_hex[:8]}..., key=<redacted>)"


class CryptoService:
    """Password-based key management and authenticated field encryption.

    One instance per process owns the session key. Pass it explicitly to
    the parsers, the encrypted store and the import service.
    """

    def __init__(self, iterations: int = KDF_ITERATIONS):
        if iterations < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"KDF iteration count must be at least {MIN_KDF_ITERATIONS} (got {iterations})"
            )
        self.iterations = iterations
        self._key: Optional[bytearray] = None
        self._salt: Optional[bytes] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Key derivation and lifecycle
    # ------------------------------------------------------------------

    def derive_key(self, password: str, salt: Optional[bytes] = None) -> DerivedKey:
        """Derive a 256-bit key from a password.

        Args:
            password: User password
            salt: Existing salt (bytes or hex string). A fresh random
                  256-bit salt is generated when omitted.

        Returns:
            DerivedKey with the key and the salt used.
        """
        if not isinstance(password, str) or not password:
            raise ValueError("Password must be a non-empty string")

        if salt is None:
            salt = os.urandom(SALT_LENGTH)
        elif isinstance(salt, str):
            try:
                salt = bytes.fromhex(salt)
            except ValueError as e:
                raise ValueError(f"Salt is not valid hex: {e}") from e

        if not salt:
            raise ValueError("Salt must not be empty")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=bytes(salt),
            iterations=self.iterations,
        )
        key = kdf.derive(password.encode("utf-8"))
        return DerivedKey(key=key, salt=bytes(salt))

    def initialize(self, password: str, salt: Optional[bytes] = None) -> bytes:
        """Derive the session key and install it.

        Args:
            password: User password
            salt: Persisted salt from a previous session, or None for first use

        Returns:
            The salt in use (persist it to re-derive the key next session).
        """
        derived = self.derive_key(password, salt)
        with self._lock:
            self._wipe()
            self._key = bytearray(derived.key)
            self._salt = derived.salt
        logger.debug("Encryption key initialized")
        return derived.salt

    def initialize_with_salt(self, password: str, existing_salt: Union[bytes, str]) -> bytes:
        """Re-derive the session key from a persisted salt (restart scenario)."""
        return self.initialize(password, existing_salt)

    @property
    def is_initialized(self) -> bool:
        with self._lock:
            return self._key is not None and self._salt is not None

    @property
    def salt(self) -> Optional[bytes]:
        with self._lock:
            return self._salt

    def clear(self) -> None:
        """Overwrite key material and forget it. Safe to call repeatedly."""
        with self._lock:
            self._wipe()
        logger.debug("Encryption key cleared")

    def _wipe(self) -> None:
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
        self._key = None
        self._salt = None

    def _resolve_key(self, key: Optional[KeyLike]) -> bytes:
        if key is not None:
            if isinstance(key, DerivedKey):
                key = key.key
            if len(key) != KEY_LENGTH:
                raise ValueError(
                    f"Encryption key must be exactly {KEY_LENGTH} bytes (got {len(key)})"
                )
            return bytes(key)

        with self._lock:
            if self._key is None:
                raise EncryptionNotInitializedError()
            return bytes(self._key)

    def require_initialized(self) -> None:
        """Raise EncryptionNotInitializedError unless a session key is installed."""
        if not self.is_initialized:
            raise EncryptionNotInitializedError()

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str, key: Optional[KeyLike] = None) -> str:
        """Encrypt a string into an opaque base64 blob.

        Args:
            plaintext: Text to encrypt
            key: Explicit 32-byte key; the session key is used when omitted

        Returns:
            Base64 blob embedding version, nonce and ciphertext+tag.

        Raises:
            EncryptionNotInitializedError: No key given and no session key.
            CryptoError: The text is not encodable as UTF-8 (unpaired surrogates).
        """
        if not isinstance(plaintext, str):
            raise TypeError(f"plaintext must be str (got {type(plaintext).__name__})")

        raw_key = self._resolve_key(key)
        try:
            data = plaintext.encode("utf-8")
        except UnicodeEncodeError as e:
            raise CryptoError(f"Cannot encrypt text that is not valid Unicode: {e.reason}") from e

        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = AESGCM(raw_key).encrypt(nonce, data, None)
        blob = bytes([_BLOB_VERSION]) + nonce + ciphertext
        return base64.b64encode(blob).decode("ascii")

    def decrypt(self, blob: str, key: Optional[KeyLike] = None) -> str:
        """Decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: Tampered data, wrong key, or malformed blob.
            EncryptionNotInitializedError: No key given and no session key.
        """
        raw_key = self._resolve_key(key)

        if not isinstance(blob, (str, bytes)):
            raise DecryptionError(f"Invalid blob type: {type(blob).__name__}")

        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Invalid blob encoding: {e}") from e

        if len(data) < 1 + NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError(
                f"Invalid blob length {len(data)} (minimum {1 + NONCE_LENGTH + TAG_LENGTH})"
            )

        if data[0] != _BLOB_VERSION:
            raise DecryptionError(f"Unsupported blob version {data[0]} (expected {_BLOB_VERSION})")

        nonce = data[1:1 + NONCE_LENGTH]
        ciphertext = data[1 + NONCE_LENGTH:]

        try:
            plaintext = AESGCM(raw_key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("Decryption failed - invalid data or key") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Decrypted payload is not UTF-8: {e}") from e

    # ------------------------------------------------------------------
    # Hashing and comparison
    # ------------------------------------------------------------------

    @staticmethod
    def hash_id(content: str, timestamp: int) -> str:
        """Deterministic content-addressed id (SHA-256 hex of content + timestamp)."""
        return hashlib.sha256(f"{content}{timestamp}".encode("utf-8", "surrogatepass")).hexdigest()

    @staticmethod
    def constant_time_equals(a: str, b: str) -> bool:
        """Compare two strings without early exit on the first mismatch."""
        a_bytes = a.encode("utf-8", "surrogatepass") if isinstance(a, str) else bytes(a)
        b_bytes = b.encode("utf-8", "surrogatepass") if isinstance(b, str) else bytes(b)
        if len(a_bytes) != len(b_bytes):
            return False
        return hmac.compare_digest(a_bytes, b_bytes)
