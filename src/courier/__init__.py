"""
Courier - End-to-end encrypted chat through an untrusted relay

Participants exchange RSA identity keys through the relay's presence
list, wrap a per-peer AES-256-GCM session key for each other, and send
chat payloads the relay can forward but never read.

License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    ConfigError,
    CourierError,
    CryptoError,
    CryptoUnavailable,
    DecryptionFailed,
    ErrorCode,
    MalformedKey,
    NetworkError,
    ProtocolError,
    RelayError,
    SessionError,
    UnwrapFailed,
)

__all__ = [
    "APP_NAME",
    "VERSION",
    "Config",
    "ConfigError",
    "CourierError",
    "CryptoError",
    "CryptoUnavailable",
    "DecryptionFailed",
    "ErrorCode",
    "MalformedKey",
    "NetworkError",
    "ProtocolError",
    "RelayError",
    "SessionError",
    "UnwrapFailed",
    "__license__",
    "__version__",
]
