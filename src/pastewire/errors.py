"""
Pastewire - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the Pastewire application. Each error has a unique code for logging and
debugging, and each exception class carries a short recovery hint that the
user interfaces show next to the error.

Author: orpheus497
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Pastewire error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"
    E003_FILE_NOT_FOUND = "E003"
    E004_PERMISSION_DENIED = "E004"
    E005_OPERATION_FAILED = "E005"

    # Envelope Decode Errors (E100-E199)
    E100_DECODE_ERROR = "E100"
    E101_MALFORMED = "E101"
    E102_MISSING_FIELD = "E102"

    # Negotiation Protocol Errors (E200-E299)
    E200_PROTOCOL_ERROR = "E200"
    E201_UNEXPECTED_MESSAGE = "E201"
    E202_ALREADY_APPLIED = "E202"
    E203_NEGOTIATION_FAILED = "E203"

    # Key Agreement Errors (E300-E399)
    E300_KEY_AGREEMENT_ERROR = "E300"
    E301_NO_LOCAL_KEY_PAIR = "E301"
    E302_INVALID_REMOTE_KEY = "E302"
    E303_KEY_ALREADY_GENERATED = "E303"
    E304_KEY_DERIVATION_FAILED = "E304"

    # Cipher Errors (E400-E499)
    E400_CIPHER_ERROR = "E400"
    E401_NO_KEY = "E401"
    E402_SENTINEL = "E402"
    E403_AUTHENTICATION_FAILED = "E403"
    E404_MALFORMED_CIPHERTEXT = "E404"

    # Channel Errors (E500-E599)
    E500_CHANNEL_ERROR = "E500"
    E501_CLOSED = "E501"
    E502_NOT_OPEN = "E502"
    E503_SEND_FAILED = "E503"
    E504_CONNECT_FAILED = "E504"
    E505_HANDSHAKE_FAILED = "E505"
    E506_MESSAGE_TOO_LARGE = "E506"
    E507_INVALID_FRAME = "E507"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class PastewireError(Exception):
    """Base exception class for all Pastewire errors.

    All custom exceptions in Pastewire inherit from this class.
    Provides standardized error handling and logging.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
        hint: What the user can do about it
    """

    hint = "Restart the application"

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a Pastewire error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "hint": self.hint,
        }


class DecodeError(PastewireError):
    """Exception raised when pasted envelope text cannot be decoded.

    Covers malformed JSON and envelopes missing a required field.
    """

    hint = "Re-copy the envelope from the other side and paste it again"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_DECODE_ERROR,
        message: str = "Envelope could not be decoded",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ProtocolError(PastewireError):
    """Exception raised when an envelope arrives in the wrong negotiation phase."""

    hint = "Restart the session on both sides"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_PROTOCOL_ERROR,
        message: str = "Negotiation protocol violation",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyAgreementError(PastewireError):
    """Exception raised for key pair generation and shared key derivation failures."""

    hint = "Regenerate keys by starting a new session and exchange envelopes again"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_KEY_AGREEMENT_ERROR,
        message: str = "Key agreement failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CipherError(PastewireError):
    """Exception raised when a chat message cannot be decrypted.

    The user interfaces never show this directly, a placeholder is rendered
    in place of the message instead.
    """

    hint = "Ask the sender to resend the message"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E400_CIPHER_ERROR,
        message: str = "Message cipher operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ChannelError(PastewireError):
    """Exception raised for data channel failures.

    This includes connecting, handshaking, framing and sending on a closed
    channel. Nothing is retried automatically.
    """

    hint = "Start a new session on both sides"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E500_CHANNEL_ERROR,
        message: str = "Channel operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(PastewireError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    hint = "Fix the configuration file or remove it to use defaults"

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
