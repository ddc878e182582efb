"""
Pastewire - Message cipher.

Created by orpheus497

Authenticated encryption of chat messages with the session key:
- AES-256-GCM with a fresh random 96-bit nonce for every message
- Wire form is base64(nonce || ciphertext || tag), one token per message
- The literal NO_KEY_SENTINEL is sent instead when no key is installed yet

Decryption failures are never shown as empty messages: render() turns
them into a visible placeholder, and keeps the historical behaviour of
showing the input unchanged when no key is configured.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import DECRYPT_FAILURE_TEMPLATE, NO_KEY_SENTINEL, NONCE_SIZE, TAG_SIZE
from .crypto import SharedKey
from .errors import CipherError, ErrorCode

logger = logging.getLogger(__name__)


class DecryptStatus(Enum):
    """Outcome of decrypting one message token."""

    OK = "ok"
    NO_KEY = "no_key"
    SENTINEL = "sentinel"
    AUTHENTICATION_FAILED = "authentication_failed"
    MALFORMED = "malformed"


_STATUS_BY_CODE = {
    ErrorCode.E401_NO_KEY: DecryptStatus.NO_KEY,
    ErrorCode.E402_SENTINEL: DecryptStatus.SENTINEL,
    ErrorCode.E403_AUTHENTICATION_FAILED: DecryptStatus.AUTHENTICATION_FAILED,
    ErrorCode.E404_MALFORMED_CIPHERTEXT: DecryptStatus.MALFORMED,
}

_FAILURE_REASONS = {
    DecryptStatus.SENTINEL: "sender had no key",
    DecryptStatus.AUTHENTICATION_FAILED: "authentication failed",
    DecryptStatus.MALFORMED: "malformed ciphertext",
}


@dataclass(frozen=True)
class DisplayMessage:
    """A received message as it should be displayed."""

    text: str
    status: DecryptStatus

    @property
    def ok(self) -> bool:
        return self.status is DecryptStatus.OK

    @property
    def is_placeholder(self) -> bool:
        return self.status not in (DecryptStatus.OK, DecryptStatus.NO_KEY)


def _to_bytes(plaintext: Union[str, bytes]) -> bytes:
    if isinstance(plaintext, str):
        return plaintext.encode("utf-8")
    return plaintext


def encrypt_message(key: Optional[SharedKey], plaintext: Union[str, bytes]) -> str:
    """
    Encrypt one message.

    Returns the base64 token, or NO_KEY_SENTINEL when key is None.
    """
    if key is None:
        logger.warning("Encrypt requested without a session key, sending sentinel")
        return NO_KEY_SENTINEL

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key.key).encrypt(nonce, _to_bytes(plaintext), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_message(key: Optional[SharedKey], token: str) -> bytes:
    """
    Decrypt one message token.

    Raises:
        CipherError: E401_NO_KEY, E402_SENTINEL, E404_MALFORMED_CIPHERTEXT
            or E403_AUTHENTICATION_FAILED
    """
    if key is None:
        raise CipherError(ErrorCode.E401_NO_KEY, "No session key configured")

    if token.strip() == NO_KEY_SENTINEL:
        raise CipherError(ErrorCode.E402_SENTINEL, "Sender had no session key")

    try:
        blob = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CipherError(ErrorCode.E404_MALFORMED_CIPHERTEXT, f"Message is not valid base64: {e}")

    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise CipherError(
            ErrorCode.E404_MALFORMED_CIPHERTEXT,
            f"Message too short: {len(blob)} bytes",
        )

    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        return AESGCM(key.key).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise CipherError(ErrorCode.E403_AUTHENTICATION_FAILED, "Message authentication failed")


def render_message(key: Optional[SharedKey], token: str) -> DisplayMessage:
    """Decrypt a token for display. Never raises."""
    try:
        plaintext = decrypt_message(key, token)
    except CipherError as e:
        return _render_failure(e, token)
    return DisplayMessage(plaintext.decode("utf-8", errors="replace"), DecryptStatus.OK)


def _render_failure(error: CipherError, token: str) -> DisplayMessage:
    status = _STATUS_BY_CODE.get(error.code, DecryptStatus.MALFORMED)
    if status is DecryptStatus.NO_KEY:
        return DisplayMessage(token, status)
    logger.warning(f"Could not decrypt message: {error.message}")
    return DisplayMessage(DECRYPT_FAILURE_TEMPLATE.format(reason=_FAILURE_REASONS[status]), status)


class MessageCipher:
    """
    Session-scoped message cipher.

    Holds the current session key and, after a rotation, the previous one so
    that messages encrypted before the peer switched keys still decrypt.
    """

    def __init__(self, key: Optional[SharedKey] = None):
        self._key = key
        self._previous_key: Optional[SharedKey] = None

    @property
    def key(self) -> Optional[SharedKey]:
        return self._key

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def install_key(self, key: SharedKey) -> None:
        """Install a new key; the old one stays available for decryption."""
        if self._key is not None and self._key != key:
            self._previous_key = self._key
        self._key = key

    def clear(self) -> None:
        """Forget all key material."""
        self._key = None
        self._previous_key = None

    def encrypt(self, plaintext: Union[str, bytes]) -> str:
        return encrypt_message(self._key, plaintext)

    def decrypt(self, token: str) -> bytes:
        try:
            return decrypt_message(self._key, token)
        except CipherError as e:
            if e.code is not ErrorCode.E403_AUTHENTICATION_FAILED or self._previous_key is None:
                raise
            logger.debug("Current key failed, trying previous key")
            return decrypt_message(self._previous_key, token)

    def render(self, token: str) -> DisplayMessage:
        try:
            plaintext = self.decrypt(token)
        except CipherError as e:
            return _render_failure(e, token)
        return DisplayMessage(plaintext.decode("utf-8", errors="replace"), DecryptStatus.OK)
