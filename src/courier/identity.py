"""
Courier - Identity key management.

Each participant holds one RSA identity key pair for the lifetime of its
relay connection. The public half is published to the relay at
registration; the private half never leaves the IdentityKeyManager and
is used only to unwrap session keys that peers send us.

Wrapping uses RSA-OAEP with MGF1(SHA-256) and SHA-256, so a failed
unwrap is reported as an error rather than returning garbage bytes.
"""

import binascii
import logging
import textwrap
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .constants import (
    PEM_FOOTER,
    PEM_HEADER,
    PEM_LINE_LENGTH,
    RSA_KEY_SIZE,
    RSA_MIN_KEY_SIZE,
    RSA_PUBLIC_EXPONENT,
    SESSION_KEY_SIZE,
)
from .crypto import SessionKey, b64decode, b64encode
from .errors import CryptoError, CryptoUnavailable, ErrorCode, MalformedKey, UnwrapFailed

logger = logging.getLogger(__name__)


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


class PublicKey:
    """
    A peer's imported identity key.

    Restricted to encryption: the only operation offered is wrapping a
    session key for the key's owner.
    """

    __slots__ = ("_key",)

    def __init__(self, key: rsa.RSAPublicKey):
        self._key = key

    @property
    def key_size(self) -> int:
        return self._key.key_size

    def wrap(self, session_key: SessionKey) -> bytes:
        """Encrypt the raw session key bytes for this key's owner."""
        try:
            return self._key.encrypt(session_key.export(), _oaep())
        except ValueError as e:
            raise CryptoError(ErrorCode.E105_WRAP_FAILED, f"Failed to wrap session key: {e}") from e

    def der(self) -> bytes:
        return self._key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def encode_public_key(der: bytes) -> str:
    """PEM-style text: header, base64 body wrapped at 64 chars, footer."""
    body = "\n".join(textwrap.wrap(b64encode(der), PEM_LINE_LENGTH))
    return f"{PEM_HEADER}\n{body}\n{PEM_FOOTER}"


def import_public_key(material: str) -> PublicKey:
    """
    Parse a peer's public key text.

    Header, footer and all whitespace are stripped, the remainder is
    strictly base64 decoded and parsed as a DER SubjectPublicKeyInfo.

    Raises:
        MalformedKey: If the text is not a PEM-framed RSA public key of
            at least 2048 bits
    """
    if not isinstance(material, str):
        raise MalformedKey("Public key must be text", {"type": type(material).__name__})

    text = material.strip()
    if not text.startswith(PEM_HEADER) or not text.endswith(PEM_FOOTER):
        raise MalformedKey("Public key is missing its header or footer")

    body = "".join(text[len(PEM_HEADER) : len(text) - len(PEM_FOOTER)].split())
    if not body:
        raise MalformedKey("Public key body is empty")

    try:
        der = b64decode(body)
    except (binascii.Error, ValueError) as e:
        raise MalformedKey("Public key body is not valid base64") from e

    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise MalformedKey(f"Public key could not be parsed: {e}") from e

    if not isinstance(key, rsa.RSAPublicKey):
        raise MalformedKey("Public key is not an RSA key", {"type": type(key).__name__})

    if key.key_size < RSA_MIN_KEY_SIZE:
        raise MalformedKey(
            f"Public key is too small: {key.key_size} bits",
            {"key_size": key.key_size, "minimum": RSA_MIN_KEY_SIZE},
        )

    return PublicKey(key)


class IdentityKeyManager:
    """
    Owner of this participant's identity key pair.

    Created empty; generate_identity_key_pair() is called once at connect
    time and discard() when the connection ends.
    """

    import_public_key = staticmethod(import_public_key)

    def __init__(self, key_size: int = RSA_KEY_SIZE):
        if key_size < RSA_MIN_KEY_SIZE:
            raise CryptoUnavailable(
                f"Identity keys must be at least {RSA_MIN_KEY_SIZE} bits",
                {"key_size": key_size},
            )
        self.key_size = key_size
        self._private_key: Optional[rsa.RSAPrivateKey] = None

    @property
    def has_identity(self) -> bool:
        return self._private_key is not None

    def generate_identity_key_pair(self) -> PublicKey:
        """
        Generate a fresh RSA identity key pair, replacing any previous one.

        Returns:
            The public half, usable for wrapping

        Raises:
            CryptoUnavailable: If the provider cannot generate the key
        """
        try:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=self.key_size
            )
        except (UnsupportedAlgorithm, ValueError) as e:
            logger.error(f"Identity key generation failed: {e}")
            raise CryptoUnavailable(f"Cannot generate identity key pair: {e}") from e

        self._private_key = private_key
        logger.info(f"Generated {self.key_size}-bit identity key pair")
        return PublicKey(private_key.public_key())

    def _require_private_key(self) -> rsa.RSAPrivateKey:
        if self._private_key is None:
            raise CryptoUnavailable("No identity key pair has been generated")
        return self._private_key

    def public_key(self) -> PublicKey:
        return PublicKey(self._require_private_key().public_key())

    def export_public_key(self) -> str:
        """Public key as PEM-style text for the register frame."""
        return encode_public_key(self.public_key().der())

    def unwrap_session_key(self, wrapped: Union[bytes, str]) -> SessionKey:
        """
        Recover a session key that a peer wrapped with our public key.

        Args:
            wrapped: Raw RSA-OAEP ciphertext, or its base64 text form

        Raises:
            UnwrapFailed: Wrong recipient, corrupted ciphertext, bad base64
                or a recovered key of the wrong length
        """
        private_key = self._require_private_key()

        if isinstance(wrapped, str):
            try:
                wrapped = b64decode(wrapped)
            except (binascii.Error, ValueError) as e:
                raise UnwrapFailed("Wrapped key is not valid base64") from e

        try:
            raw = private_key.decrypt(wrapped, _oaep())
        except ValueError as e:
            raise UnwrapFailed("RSA-OAEP decryption failed") from e

        if len(raw) != SESSION_KEY_SIZE:
            raise UnwrapFailed(
                "Unwrapped key has the wrong length",
                {"length": len(raw), "expected": SESSION_KEY_SIZE},
            )

        return SessionKey(raw)

    def discard(self) -> None:
        """Drop the key pair; a new connection generates a new one."""
        if self._private_key is not None:
            logger.debug("Discarding identity key pair")
        self._private_key = None
