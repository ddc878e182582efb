"""
Pastewire - Envelope codec tests.

Created by orpheus497

Tests for encoding and decoding the copy-paste negotiation envelopes.
"""

import json

import pytest

from pastewire.codec import (
    DescriptorEnvelope,
    DescriptorKind,
    EnvelopeCodec,
    EnvelopeVariant,
    KeyedEnvelope,
    SessionDescriptor,
)
from pastewire.constants import MAX_ENVELOPE_SIZE
from pastewire.crypto import generate_key_pair
from pastewire.errors import DecodeError, ErrorCode


@pytest.fixture
def offer() -> SessionDescriptor:
    return SessionDescriptor(DescriptorKind.OFFER, "v=0\na=session:abc\n")


@pytest.fixture
def jwk() -> dict:
    return generate_key_pair().to_jwk()


def _decode_error(codec: EnvelopeCodec, text: str) -> DecodeError:
    with pytest.raises(DecodeError) as exc_info:
        codec.decode(text)
    return exc_info.value


class TestKeyedCodec:
    """Test the keyed envelope variant."""

    def test_wire_shape(self, offer, jwk):
        """Test that the keyed envelope nests the descriptor next to dhKey."""
        text = EnvelopeCodec().encode(KeyedEnvelope(offer, jwk))
        data = json.loads(text)

        assert data == {"sdp": {"type": "offer", "sdp": offer.sdp}, "dhKey": jwk}

    def test_decode_preserves_fields(self, offer, jwk):
        """Test that decoding yields the same descriptor and key."""
        codec = EnvelopeCodec()
        envelope = codec.decode(codec.encode(KeyedEnvelope(offer, jwk)))

        assert isinstance(envelope, KeyedEnvelope)
        assert envelope.descriptor == offer
        assert envelope.public_key == jwk

    def test_encoding_is_deterministic(self, offer, jwk):
        """Test that the same envelope always renders to the same text."""
        codec = EnvelopeCodec()
        assert codec.encode(KeyedEnvelope(offer, jwk)) == codec.encode(KeyedEnvelope(offer, dict(jwk)))

    def test_tolerates_surrounding_whitespace(self, offer, jwk):
        """Test that pasted text with extra blank lines still decodes."""
        codec = EnvelopeCodec()
        text = "\n\n  " + codec.encode(KeyedEnvelope(offer, jwk)) + "\n  \n"
        assert codec.decode(text).descriptor == offer

    def test_missing_dh_key_strict(self, offer):
        """Test that strict mode requires dhKey."""
        error = _decode_error(EnvelopeCodec(), json.dumps({"sdp": offer.to_dict()}))
        assert error.code == ErrorCode.E102_MISSING_FIELD
        assert error.details["field"] == "dhKey"

    def test_missing_dh_key_lenient(self, offer):
        """Test that lenient mode falls back to a descriptor-only envelope."""
        envelope = EnvelopeCodec(strict=False).decode(json.dumps({"sdp": offer.to_dict()}))
        assert isinstance(envelope, DescriptorEnvelope)
        assert envelope.descriptor == offer

    def test_descriptor_only_shape_strict(self, offer):
        """Test that a bare descriptor is rejected by a strict keyed codec."""
        error = _decode_error(EnvelopeCodec(), json.dumps(offer.to_dict()))
        assert error.code == ErrorCode.E102_MISSING_FIELD

    def test_descriptor_only_shape_lenient(self, offer):
        """Test that a bare descriptor is accepted by a lenient keyed codec."""
        envelope = EnvelopeCodec(strict=False).decode(json.dumps(offer.to_dict()))
        assert isinstance(envelope, DescriptorEnvelope)

    def test_missing_sdp(self, jwk):
        """Test that an envelope without a descriptor reports the missing field."""
        error = _decode_error(EnvelopeCodec(), json.dumps({"dhKey": jwk}))
        assert error.code == ErrorCode.E102_MISSING_FIELD
        assert error.details["field"] == "sdp"

    def test_dh_key_must_be_object(self, offer):
        """Test rejection of a non-object dhKey."""
        error = _decode_error(EnvelopeCodec(), json.dumps({"sdp": offer.to_dict(), "dhKey": "abc"}))
        assert error.code == ErrorCode.E101_MALFORMED

    def test_sdp_must_be_object(self, jwk):
        """Test rejection of a keyed envelope whose sdp is a string."""
        error = _decode_error(EnvelopeCodec(), json.dumps({"sdp": "v=0", "dhKey": jwk}))
        assert error.code == ErrorCode.E101_MALFORMED


class TestDescriptorOnlyCodec:
    """Test the descriptor-only envelope variant."""

    def test_wire_shape(self, offer):
        """Test that the envelope is the raw descriptor."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY)
        assert json.loads(codec.encode(DescriptorEnvelope(offer))) == {"type": "offer", "sdp": offer.sdp}

    def test_decode(self, offer):
        """Test decoding a descriptor-only envelope."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY)
        envelope = codec.decode(codec.encode(DescriptorEnvelope(offer)))
        assert envelope == DescriptorEnvelope(offer)

    def test_keyed_shape_strict(self, offer, jwk):
        """Test that a keyed envelope is rejected in strict mode."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY)
        error = _decode_error(codec, EnvelopeCodec().encode(KeyedEnvelope(offer, jwk)))
        assert error.code == ErrorCode.E102_MISSING_FIELD

    def test_keyed_shape_lenient(self, offer, jwk):
        """Test that a keyed envelope is accepted and its key ignored in lenient mode."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY, strict=False)
        envelope = codec.decode(EnvelopeCodec().encode(KeyedEnvelope(offer, jwk)))
        assert envelope == DescriptorEnvelope(offer)

    @pytest.mark.parametrize("strict", [True, False])
    def test_stray_key_on_descriptor_shape(self, offer, jwk, strict):
        """Test that a descriptor carrying an extra dhKey still decodes as a descriptor."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY, strict=strict)
        text = json.dumps({"type": "offer", "sdp": offer.sdp, "dhKey": jwk})
        assert codec.decode(text) == DescriptorEnvelope(offer)

    def test_unknown_type(self):
        """Test rejection of a descriptor type other than offer or answer."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY)
        error = _decode_error(codec, json.dumps({"type": "pranswer", "sdp": "v=0"}))
        assert error.code == ErrorCode.E101_MALFORMED

    def test_missing_type(self):
        """Test that a descriptor without type reports the missing field."""
        codec = EnvelopeCodec(EnvelopeVariant.DESCRIPTOR_ONLY)
        error = _decode_error(codec, json.dumps({"sdp": "v=0"}))
        assert error.code == ErrorCode.E102_MISSING_FIELD
        assert error.details["field"] == "type"


class TestMalformedText:
    """Test text that is not an envelope at all."""

    @pytest.mark.parametrize("text", ["", "   \n", "not json", "{\"sdp\": ", "[1, 2, 3]", "42", "null"])
    def test_rejected_as_malformed(self, text):
        """Test that unusable text raises E101."""
        error = _decode_error(EnvelopeCodec(), text)
        assert error.code == ErrorCode.E101_MALFORMED

    def test_oversize(self):
        """Test that huge pastes are rejected before parsing."""
        text = json.dumps({"sdp": {"type": "offer", "sdp": "x" * MAX_ENVELOPE_SIZE}, "dhKey": {}})
        error = _decode_error(EnvelopeCodec(), text)
        assert error.code == ErrorCode.E101_MALFORMED


def test_descriptor_fingerprint():
    """Test that the fingerprint identifies descriptor content."""
    first = SessionDescriptor(DescriptorKind.OFFER, "v=0\n")
    same = SessionDescriptor(DescriptorKind.OFFER, "v=0\n")
    answer = SessionDescriptor(DescriptorKind.ANSWER, "v=0\n")

    assert first.fingerprint() == same.fingerprint()
    assert first.fingerprint() != answer.fingerprint()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
