"""
Courier - Global Constants and Configuration Values

This module defines all constants used throughout Courier.
Wire markers, key sizes and configuration defaults live here.

Author: Courier contributors
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Courier"

# Relay Constants
DEFAULT_RELAY_HOST = "127.0.0.1"
DEFAULT_RELAY_PORT = 8080

# Connection Timeouts (seconds)
CONNECTION_TIMEOUT = 10
REGISTRATION_TIMEOUT = 10

# Frame Limits
MAX_FRAME_SIZE = 256 * 1024  # 256 KB per newline-delimited JSON frame
MAX_TEXT_MESSAGE_SIZE = 16 * 1024  # characters of plaintext per chat message
MAX_USERNAME_LENGTH = 64

# Identity Keys (RSA-OAEP, key wrapping only)
RSA_KEY_SIZE = 2048
RSA_MIN_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# Public key text encoding
PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
PEM_FOOTER = "-----END PUBLIC KEY-----"
PEM_LINE_LENGTH = 64

# Session Keys (AES-256-GCM)
SESSION_KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits for GCM
TAG_SIZE = 16  # 128-bit GCM tag

# User-visible strings
FAILED_TO_DECRYPT_PLACEHOLDER = "Failed to decrypt message"
WELCOME_TEXT = "Connected to server"
CONNECTED_NOTICE = "Connected successfully! Your messages are encrypted end-to-end."
DISCONNECTED_NOTICE = "Disconnected from server"

# File Paths
DEFAULT_DATA_DIR = "~/.courier"
CONFIG_FILENAME = "config.toml"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Connection State Machine
STATE_HISTORY_SIZE = 100
