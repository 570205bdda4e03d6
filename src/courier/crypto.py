"""
Courier - Session keys and the message cipher.

Chat payloads are sealed with AES-256-GCM under a per-peer session key:
- 256-bit random session key, one per direction of a peer relationship
- Fresh 96-bit random nonce for every message
- 128-bit authentication tag appended by GCM
- Wire form: base64(nonce || ciphertext || tag)

Asymmetric identity keys only ever wrap these session keys, see
identity.py.
"""

import base64
import binascii
import logging
import os
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import NONCE_SIZE, SESSION_KEY_SIZE, TAG_SIZE
from .errors import CryptoError, DecryptionFailed, ErrorCode

logger = logging.getLogger(__name__)


def b64encode(data: bytes) -> str:
    """Standard base64 with padding, as text."""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict standard base64 decode; raises binascii.Error on bad input."""
    if not isinstance(text, str):
        raise binascii.Error("expected base64 text")
    return base64.b64decode(text.encode("ascii"), validate=True)


class SessionKey:
    """A symmetric AES-256-GCM key bound to one peer relationship."""

    __slots__ = ("_material",)

    def __init__(self, material: bytes):
        if len(material) != SESSION_KEY_SIZE:
            raise CryptoError(
                ErrorCode.E100_CRYPTO_ERROR,
                f"Session key must be {SESSION_KEY_SIZE} bytes",
                {"length": len(material)},
            )
        self._material = bytes(material)

    @classmethod
    def generate(cls) -> "SessionKey":
        """Fresh random 256-bit key."""
        return cls(AESGCM.generate_key(bit_length=SESSION_KEY_SIZE * 8))

    def export(self) -> bytes:
        """Raw key bytes, for wrapping."""
        return self._material

    def aead(self) -> AESGCM:
        return AESGCM(self._material)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SessionKey):
            return NotImplemented
        return secrets.compare_digest(self._material, other._material)

    def __hash__(self) -> int:
        return hash(self._material)

    def __repr__(self) -> str:
        return "SessionKey(<redacted>)"


@dataclass(frozen=True)
class EncryptedPayload:
    """One sealed chat message: the nonce plus GCM ciphertext with tag."""

    nonce: bytes
    ciphertext: bytes

    def encode(self) -> str:
        """Single transmissible blob: base64(nonce || ciphertext+tag)."""
        return b64encode(self.nonce + self.ciphertext)

    @classmethod
    def decode(cls, blob: str) -> "EncryptedPayload":
        """
        Split a wire blob into nonce and ciphertext.

        Raises:
            DecryptionFailed: If the blob is not base64 or is too short
                to hold a nonce and a tag
        """
        try:
            data = b64decode(blob)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailed("Encrypted payload is not valid base64") from e

        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailed(
                "Encrypted payload too short",
                {"length": len(data), "minimum": NONCE_SIZE + TAG_SIZE},
            )

        return cls(nonce=data[:NONCE_SIZE], ciphertext=data[NONCE_SIZE:])


def encrypt(plaintext: str, key: SessionKey) -> EncryptedPayload:
    """
    Seal a chat message with AES-256-GCM.

    A new random nonce is drawn on every call; nonces are never derived
    or counted, so two calls with the same key and text still differ.
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = key.aead().encrypt(nonce, plaintext.encode("utf-8"), None)
    return EncryptedPayload(nonce=nonce, ciphertext=ciphertext)


def decrypt(blob: str, key: SessionKey) -> str:
    """
    Open a wire blob produced by encrypt().

    Returns:
        The plaintext string

    Raises:
        DecryptionFailed: Wrong key, tampered data, truncated blob or
            non-UTF-8 plaintext. No partial output is ever returned.
    """
    payload = EncryptedPayload.decode(blob)

    try:
        plaintext = key.aead().decrypt(payload.nonce, payload.ciphertext, None)
    except InvalidTag as e:
        raise DecryptionFailed("Authentication tag did not verify") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionFailed("Decrypted payload is not UTF-8 text") from e


def generate_uid() -> str:
    """
    Generate a participant id using cryptographically secure random bytes.

    Format: 32 lowercase hexadecimal characters (128 bits).
    """
    return secrets.token_hex(16)
