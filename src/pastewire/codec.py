"""
Pastewire - Envelope codec.

Created by orpheus497

Converts the negotiation envelopes a user copies between the two peers to
and from JSON text. Two shapes exist on the wire:

Descriptor-only envelope (the raw session descriptor):
    {"type": "offer", "sdp": "<opaque text>"}

Keyed envelope (descriptor plus the sender's public key as a JWK):
    {"sdp": {"type": "offer", "sdp": "<opaque text>"}, "dhKey": {...}}

A codec is built for one variant. In strict mode it rejects the other
variant's shape; in lenient mode it accepts it and reports what it got.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union

from .constants import ENVELOPE_VARIANT_DESCRIPTOR, ENVELOPE_VARIANT_KEYED, MAX_ENVELOPE_SIZE
from .errors import DecodeError, ErrorCode

logger = logging.getLogger(__name__)


class DescriptorKind(Enum):
    """Which side of the negotiation produced a descriptor."""

    OFFER = "offer"
    ANSWER = "answer"


class EnvelopeVariant(Enum):
    """Out-of-band envelope format."""

    DESCRIPTOR_ONLY = ENVELOPE_VARIANT_DESCRIPTOR
    KEYED = ENVELOPE_VARIANT_KEYED


@dataclass(frozen=True)
class SessionDescriptor:
    """Connectivity descriptor; the sdp text is opaque to the core."""

    kind: DescriptorKind
    sdp: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.kind.value, "sdp": self.sdp}

    def fingerprint(self) -> str:
        """Stable digest used to recognise a descriptor seen before."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    def from_dict(data: Any) -> "SessionDescriptor":
        """
        Build a descriptor from its JSON object form.

        Raises:
            DecodeError: E102_MISSING_FIELD or E101_MALFORMED
        """
        if not isinstance(data, dict):
            raise DecodeError(ErrorCode.E101_MALFORMED, "Session descriptor must be a JSON object")

        for name in ("type", "sdp"):
            if name not in data:
                raise DecodeError(
                    ErrorCode.E102_MISSING_FIELD,
                    f"Session descriptor is missing '{name}'",
                    {"field": name},
                )

        try:
            kind = DescriptorKind(data["type"])
        except ValueError:
            raise DecodeError(
                ErrorCode.E101_MALFORMED,
                f"Unknown descriptor type: {data['type']!r}",
                {"field": "type"},
            )

        if not isinstance(data["sdp"], str):
            raise DecodeError(ErrorCode.E101_MALFORMED, "Descriptor 'sdp' must be text", {"field": "sdp"})

        return SessionDescriptor(kind, data["sdp"])


@dataclass(frozen=True)
class DescriptorEnvelope:
    """Envelope carrying only a descriptor, no key agreement material."""

    descriptor: SessionDescriptor

    def to_dict(self) -> Dict[str, Any]:
        return self.descriptor.to_dict()


@dataclass(frozen=True)
class KeyedEnvelope:
    """Envelope carrying a descriptor and the sender's public key (JWK)."""

    descriptor: SessionDescriptor
    public_key: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"sdp": self.descriptor.to_dict(), "dhKey": dict(self.public_key)}


Envelope = Union[DescriptorEnvelope, KeyedEnvelope]


class EnvelopeCodec:
    """
    Envelope <-> text conversion for one protocol variant.

    Attributes:
        variant: Envelope shape this build produces and expects
        strict: Reject the other variant's shape instead of accepting it
    """

    def __init__(self, variant: EnvelopeVariant = EnvelopeVariant.KEYED, strict: bool = True):
        self.variant = variant
        self.strict = strict

    def encode(self, envelope: Envelope) -> str:
        """Render an envelope as deterministic, human-readable JSON."""
        return json.dumps(envelope.to_dict(), indent=2, sort_keys=True)

    def decode(self, text: str) -> Envelope:
        """
        Parse pasted envelope text.

        Raises:
            DecodeError: E101_MALFORMED for unusable text, E102_MISSING_FIELD
                when a required member is absent
        """
        if not text or not text.strip():
            raise DecodeError(ErrorCode.E101_MALFORMED, "Envelope is empty")

        if len(text.encode("utf-8")) > MAX_ENVELOPE_SIZE:
            raise DecodeError(
                ErrorCode.E101_MALFORMED,
                f"Envelope too large: over {MAX_ENVELOPE_SIZE} bytes",
            )

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeError(ErrorCode.E101_MALFORMED, f"Envelope is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise DecodeError(ErrorCode.E101_MALFORMED, "Envelope must be a JSON object")

        if self.variant is EnvelopeVariant.KEYED:
            return self._decode_keyed(data)
        return self._decode_descriptor_only(data)

    def _decode_keyed(self, data: Dict[str, Any]) -> Envelope:
        if isinstance(data.get("sdp"), dict):
            descriptor = SessionDescriptor.from_dict(data["sdp"])
            if "dhKey" not in data:
                if self.strict:
                    raise DecodeError(
                        ErrorCode.E102_MISSING_FIELD,
                        "Envelope is missing the public key 'dhKey'",
                        {"field": "dhKey"},
                    )
                logger.warning("Envelope has no public key, falling back to in-band key agreement")
                return DescriptorEnvelope(descriptor)
            return KeyedEnvelope(descriptor, self._public_key(data["dhKey"]))

        if "type" in data:
            # descriptor-only shape
            if self.strict:
                raise DecodeError(
                    ErrorCode.E102_MISSING_FIELD,
                    "Envelope is missing the public key 'dhKey'",
                    {"field": "dhKey"},
                )
            logger.warning("Accepted descriptor-only envelope in lenient mode")
            return DescriptorEnvelope(SessionDescriptor.from_dict(data))

        if "sdp" in data:
            raise DecodeError(ErrorCode.E101_MALFORMED, "Envelope 'sdp' must be a descriptor object")

        raise DecodeError(
            ErrorCode.E102_MISSING_FIELD,
            "Envelope is missing the session descriptor 'sdp'",
            {"field": "sdp"},
        )

    def _decode_descriptor_only(self, data: Dict[str, Any]) -> Envelope:
        if isinstance(data.get("sdp"), dict):
            # keyed shape
            if self.strict:
                raise DecodeError(
                    ErrorCode.E102_MISSING_FIELD,
                    "Envelope is missing the descriptor 'type'",
                    {"field": "type"},
                )
            logger.warning("Accepted keyed envelope in lenient mode, ignoring its public key")
            return DescriptorEnvelope(SessionDescriptor.from_dict(data.get("sdp")))

        if "dhKey" in data:
            logger.debug("Ignoring stray 'dhKey' on a descriptor-only envelope")
        return DescriptorEnvelope(SessionDescriptor.from_dict(data))

    @staticmethod
    def _public_key(value: Any) -> Dict[str, Any]:
        if not isinstance(value, dict):
            raise DecodeError(ErrorCode.E101_MALFORMED, "Envelope 'dhKey' must be a JSON object", {"field": "dhKey"})
        return value
