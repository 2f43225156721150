"""
Encryption helpers for marketplace tokens stored at rest.

Tokens are encrypted with AES-GCM using a key derived from
``TOKEN_ENCRYPTION_KEY`` via HKDF-SHA256. Ciphertexts are versioned and
prefixed so they can be told apart from legacy plain-text rows:

    ENC:v1:<base64(nonce || ciphertext || tag)>

``decrypt`` passes through values without the prefix unchanged, which lets rows
written before encryption was introduced keep working until their next refresh.
"""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache
from typing import Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from roomsync.config import TOKEN_ENCRYPTION_KEY

logger = structlog.get_logger(__name__)

_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_KEY_SIZE = 32  # AES-256


@lru_cache(maxsize=1)
def _get_key() -> bytes:
    """Derive the AES-GCM key from the configured secret."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"roomsync-token-encryption",
    )
    return hkdf.derive(str(TOKEN_ENCRYPTION_KEY).encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    """Return True if value carries the ciphertext prefix."""
    return isinstance(value, str) and value.startswith(_PREFIX)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """
    Encrypt a token for storage.

    Args:
        plaintext: Token to protect. None passes through.

    Returns:
        Versioned ciphertext string, or None
    """
    if plaintext is None:
        return None

    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(_NONCE_SIZE)
    ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
    return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    """
    Decrypt a value produced by :func:`encrypt`.

    Values without the prefix are returned unchanged (legacy plain text).
    A value that carries the prefix but cannot be decrypted yields None: the
    caller treats it like a missing token instead of sending ciphertext to the
    marketplace.

    Args:
        value: Stored column value

    Returns:
        Plain-text token, or None
    """
    if value is None:
        return None
    if not value.startswith(_PREFIX):
        return value

    try:
        raw = base64.b64decode(value[len(_PREFIX) :].encode("ascii"), validate=True)
        if len(raw) <= _NONCE_SIZE:
            raise ValueError("ciphertext too short")
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        return AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except (InvalidTag, ValueError, binascii.Error) as e:
        logger.error("token_decryption_failed", error_type=type(e).__name__)
        return None
