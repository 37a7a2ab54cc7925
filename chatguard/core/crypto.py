"""
Envelope encryption for message content at rest.

Two tiers:
- a process-wide master key (32 bytes, base64 in the environment) wraps
- one random 256-bit data key per tenant, which encrypts message bodies.

Both tiers use AES-256-GCM from the `cryptography` package. Every
ciphertext is stored as base64(nonce || sealed bytes), with a 96-bit random
nonce and the 128-bit GCM tag appended by the AEAD construction.
"""

import base64
import binascii
import logging
import os
import threading
from typing import Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigError, DecryptError, EncryptError, KeyUnwrapError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

DEFAULT_MASTER_KEY_ENV = "CHATGUARD_MASTER_KEY"


def generate_key() -> bytes:
    """Generate a random 256-bit key."""
    return AESGCM.generate_key(bit_length=256)


def generate_master_key() -> str:
    """Generate a master key in its at-rest form (base64 of 32 bytes)."""
    return base64.b64encode(generate_key()).decode("ascii")


def encrypt_bytes(plaintext: bytes, key: bytes) -> str:
    """
    Seal bytes under a 32-byte key.

    Returns:
        base64(nonce || ciphertext || tag)

    Raises:
        EncryptError: if the key is not 32 bytes
    """
    if len(key) != KEY_SIZE:
        raise EncryptError(f"invalid key size: {len(key)} bytes, expected {KEY_SIZE}")

    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_bytes(token: str, key: bytes) -> bytes:
    """
    Open a base64(nonce || ciphertext || tag) token.

    Raises:
        DecryptError: on bad key size, malformed base64, truncated input
            or failed tag verification
    """
    if len(key) != KEY_SIZE:
        raise DecryptError(f"invalid key size: {len(key)} bytes, expected {KEY_SIZE}")

    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptError(f"ciphertext is not valid base64: {e}") from e

    if len(raw) < NONCE_SIZE:
        raise DecryptError("invalid ciphertext: too short")

    nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise DecryptError("decryption failed") from e


def load_master_key(encoded: Optional[str]) -> bytes:
    """
    Decode the at-rest master key.

    Raises:
        ConfigError: if absent, not base64, or not exactly 32 bytes
    """
    if not encoded:
        raise ConfigError("master key not set")
    try:
        master_key = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError("invalid master key: not valid base64") from e
    if len(master_key) != KEY_SIZE:
        raise ConfigError(
            f"invalid master key: must decode to {KEY_SIZE} bytes, got {len(master_key)}"
        )
    return master_key


class KeyManager:
    """
    Wraps tenant data keys under the master key and encrypts message bodies.

    Unwrapped tenant keys are cached in memory, keyed by owner id, for the
    lifetime of the process. The cache lock is only held for dictionary
    access, never while decrypting.

    Usage:
        km = KeyManager.from_env()
        wrapped = km.generate_and_wrap_key()      # store with the tenant
        token = km.encrypt("hello", owner_id=1, wrapped_key=wrapped)
        km.decrypt(token, owner_id=1, wrapped_key=wrapped)
    """

    def __init__(self, master_key: bytes):
        if len(master_key) != KEY_SIZE:
            raise ConfigError(
                f"invalid master key: must be {KEY_SIZE} bytes, got {len(master_key)}"
            )
        self._master_key = master_key
        self._data_keys: Dict[object, bytes] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, env_var: str = DEFAULT_MASTER_KEY_ENV) -> "KeyManager":
        """Build a key manager from the base64 master key in `env_var`."""
        encoded = os.environ.get(env_var)
        if not encoded:
            raise ConfigError(f"master key not set in environment ({env_var})")
        return cls(load_master_key(encoded))

    def generate_and_wrap_key(self) -> str:
        """
        Generate a fresh tenant data key and wrap it under the master key.

        Returns:
            The wrapped key string to persist with the tenant record
        """
        return encrypt_bytes(generate_key(), self._master_key)

    def _open_with_master(self, wrapped_key: str) -> bytes:
        """Decrypt a wrapped data key. Not cached."""
        try:
            data_key = decrypt_bytes(wrapped_key, self._master_key)
        except DecryptError as e:
            raise KeyUnwrapError(f"failed to decrypt data key: {e}") from e
        if len(data_key) != KEY_SIZE:
            raise KeyUnwrapError(
                f"unwrapped data key has invalid size: {len(data_key)} bytes"
            )
        return data_key

    def unwrap_key(self, owner_id: object, wrapped_key: str) -> bytes:
        """
        Resolve an owner's raw data key, from cache when possible.

        Raises:
            KeyUnwrapError: on any decryption failure
        """
        with self._lock:
            cached = self._data_keys.get(owner_id)
        if cached is not None:
            return cached

        data_key = self._open_with_master(wrapped_key)

        with self._lock:
            # Another thread may have won the race; keep its key.
            data_key = self._data_keys.setdefault(owner_id, data_key)
        logger.debug(f"Cached data key for owner {owner_id}")
        return data_key

    def encrypt(self, plaintext: str, owner_id: object, wrapped_key: str) -> str:
        """Encrypt text under the owner's data key."""
        data_key = self.unwrap_key(owner_id, wrapped_key)
        return encrypt_bytes(plaintext.encode("utf-8"), data_key)

    def decrypt(self, ciphertext: str, owner_id: object, wrapped_key: str) -> str:
        """Decrypt text sealed with `encrypt` for the same owner."""
        data_key = self.unwrap_key(owner_id, wrapped_key)
        plaintext = decrypt_bytes(ciphertext, data_key)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError("decrypted content is not valid UTF-8") from e

    def cached_owners(self) -> List[object]:
        """Owner ids whose data key is currently cached."""
        with self._lock:
            return list(self._data_keys.keys())
