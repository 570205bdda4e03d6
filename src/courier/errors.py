"""
Courier - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
Courier. Each error has a unique code for logging and debugging.

Author: Courier contributors
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Courier error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_CRYPTO_UNAVAILABLE = "E101"
    E102_DECRYPTION_FAILED = "E102"
    E103_MALFORMED_KEY = "E103"
    E104_UNWRAP_FAILED = "E104"
    E105_WRAP_FAILED = "E105"

    # Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E202_CONNECTION_TIMEOUT = "E202"
    E203_CONNECTION_CLOSED = "E203"
    E204_SEND_FAILED = "E204"
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"

    # Session Errors (E300-E399)
    E300_SESSION_ERROR = "E300"
    E301_UNKNOWN_PEER = "E301"
    E302_PEER_DISABLED = "E302"
    E303_NOT_CONNECTED = "E303"
    E304_NO_PEER_SELECTED = "E304"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"

    # Relay Errors (E800-E899)
    E800_RELAY_ERROR = "E800"
    E801_RELAY_START_FAILED = "E801"


class CourierError(Exception):
    """Base exception class for all Courier errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {"code": self.code.value, "message": self.message, "details": self.details}


class CryptoError(CourierError):
    """Exception raised for cryptographic operation failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CryptoUnavailable(CryptoError):
    """The cryptographic provider could not produce an identity.

    Fatal to the session: connecting is aborted.
    """

    def __init__(
        self,
        message: str = "Cryptographic provider unavailable",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E101_CRYPTO_UNAVAILABLE, message, details)


class MalformedKey(CryptoError):
    """A peer's public key text could not be parsed into an RSA key."""

    def __init__(
        self,
        message: str = "Malformed public key",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E103_MALFORMED_KEY, message, details)


class UnwrapFailed(CryptoError):
    """A wrapped session key could not be recovered with our private key."""

    def __init__(
        self,
        message: str = "Failed to unwrap session key",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E104_UNWRAP_FAILED, message, details)


class DecryptionFailed(CryptoError):
    """A chat payload failed authenticated decryption.

    Covers both a wrong key and a tampered ciphertext; AES-GCM does not
    tell them apart.
    """

    def __init__(
        self,
        message: str = "Failed to decrypt message",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E102_DECRYPTION_FAILED, message, details)


class NetworkError(CourierError):
    """Exception raised for transport failures.

    This includes connection errors, timeouts and send failures.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Network operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ProtocolError(NetworkError):
    """A frame violated the relay wire protocol."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E206_INVALID_MESSAGE,
        message: str = "Invalid frame",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class SessionError(CourierError):
    """Exception raised for peer and session misuse.

    Unknown peers, peers whose key was rejected, sending while offline.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_SESSION_ERROR,
        message: str = "Session operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(CourierError):
    """Exception raised for configuration failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class RelayError(CourierError):
    """Exception raised for relay server failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E800_RELAY_ERROR,
        message: str = "Relay operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
