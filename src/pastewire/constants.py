"""
Pastewire - Global Constants and Configuration Values

This module defines all constants used throughout the Pastewire application.
All magic numbers and configuration defaults are centralized here.

Author: orpheus497
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Pastewire"

# Network Constants
DEFAULT_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 0  # ephemeral, chosen by the OS
LOCALHOST = "127.0.0.1"

# Connectivity Timeouts (seconds)
GATHER_TIMEOUT = 5.0  # upper bound on candidate gathering
CONNECT_TIMEOUT = 10.0
HELLO_TIMEOUT = 10.0
DIAL_RETRY_INTERVAL = 2.0
DIAL_WINDOW = 600.0  # how long the responder keeps dialing while the answer is pasted

# Message Limits
MAX_MESSAGE_SIZE = 1024 * 1024  # 1 MB frame payload
MAX_TEXT_MESSAGE_SIZE = 64 * 1024  # 64 KB of chat text
MAX_ENVELOPE_SIZE = 64 * 1024  # 64 KB of pasted JSON

# Cryptography Constants
KEY_SIZE = 32  # 256 bits for AES-256-GCM
NONCE_SIZE = 12  # 96 bits for AES-GCM
TAG_SIZE = 16  # 128-bit GCM tag
EC_CURVE_NAME = "P-256"
EC_COORDINATE_SIZE = 32
HKDF_INFO = b"pastewire-session-key-aes-256-gcm"
FINGERPRINT_LENGTH = 16  # hex chars shown to users

# Reserved wire literal meaning "sender had no key"
NO_KEY_SENTINEL = "[E2EE_ERROR: NO KEY]"
DECRYPT_FAILURE_TEMPLATE = "[MESSAGE COULD NOT BE DECRYPTED: {reason}]"

# Envelope Variants
ENVELOPE_VARIANT_KEYED = "keyed"
ENVELOPE_VARIANT_DESCRIPTOR = "descriptor"

# UI Configuration
UI_MAX_MESSAGE_HISTORY = 1000
UI_NOTIFICATION_TIMEOUT = 5  # seconds

# File Paths
DEFAULT_DATA_DIR = "~/.pastewire"
CONFIG_FILENAME = "config.toml"
LOG_FILENAME = "pastewire.log"
LOGS_DIR = "logs"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Protocol Version
PROTOCOL_VERSION = 1

# Negotiation State Machine Timeouts (seconds)
STATE_INITIATING_TIMEOUT = 15
STATE_ANSWERING_TIMEOUT = 15
STATE_HISTORY_SIZE = 100
