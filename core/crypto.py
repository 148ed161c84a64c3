"""
Authenticated envelope for payloads stored at rest.

AES-256-GCM with a fresh 96-bit nonce per call and a 128-bit tag. Tokens look
like ``v1.<nonce>.<tag>.<ciphertext>``, each part unpadded base64url, so a
token from another format is rejected instead of misparsed.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import DecryptionError

ENVELOPE_VERSION = "v1"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(part: str) -> bytes:
    try:
        raw = base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Unsupported encrypted payload format") from e
    # Non-canonical encodings (stray characters, altered padding bits) decode
    # to the same bytes; refuse them so every token edit is detected.
    if _b64encode(raw) != part:
        raise DecryptionError("Unsupported encrypted payload format")
    return raw


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
        raise ValueError(f"Encryption key must be {KEY_BYTES} bytes")


def seal(value: Any, key: bytes) -> str:
    """JSON-serialize `value` and encrypt it into a self-describing token."""
    _check_key(key)
    nonce = os.urandom(NONCE_BYTES)
    plaintext = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    # cryptography appends the tag to the ciphertext
    sealed = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return ".".join([ENVELOPE_VERSION, _b64encode(nonce), _b64encode(tag), _b64encode(ciphertext)])


def unseal(token: str, key: bytes) -> Any:
    """
    Inverse of ``seal``. Fails closed with ``DecryptionError`` on an unknown
    version, a missing part, a wrong key or any tampering.
    """
    _check_key(key)
    if not isinstance(token, str):
        raise DecryptionError("Unsupported encrypted payload format")

    parts = token.split(".")
    if len(parts) != 4:
        raise DecryptionError("Unsupported encrypted payload format")
    version, nonce_raw, tag_raw, ciphertext_raw = parts
    if version != ENVELOPE_VERSION or not nonce_raw or not tag_raw or not ciphertext_raw:
        raise DecryptionError("Unsupported encrypted payload format")

    nonce = _b64decode(nonce_raw)
    tag = _b64decode(tag_raw)
    ciphertext = _b64decode(ciphertext_raw)
    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise DecryptionError("Unsupported encrypted payload format")

    try:
        plaintext = AESGCM(bytes(key)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError("Encrypted payload failed authentication") from e

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecryptionError("Decrypted payload is not valid JSON") from e
