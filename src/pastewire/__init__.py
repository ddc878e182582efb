"""
Pastewire - Copy-paste negotiated peer-to-peer encrypted chat

Two peers exchange JSON envelopes by hand to set up a direct channel,
agree on a session key, and chat with every message end-to-end encrypted.

Author: orpheus497
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "orpheus497"
__license__ = "MIT"

from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    ChannelError,
    CipherError,
    ConfigError,
    DecodeError,
    ErrorCode,
    KeyAgreementError,
    PastewireError,
    ProtocolError,
)
from .session import Session, SessionEvent, SessionEventType, SessionStatus

__all__ = [
    "APP_NAME",
    "VERSION",
    "ChannelError",
    "CipherError",
    "Config",
    "ConfigError",
    "DecodeError",
    "ErrorCode",
    "KeyAgreementError",
    "PastewireError",
    "ProtocolError",
    "Session",
    "SessionEvent",
    "SessionEventType",
    "SessionStatus",
    "__author__",
    "__license__",
    "__version__",
]
