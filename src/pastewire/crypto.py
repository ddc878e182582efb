"""
Pastewire - Key agreement operations.

Created by orpheus497

This module implements the session key agreement:
- Ephemeral ECDH key pair on NIST P-256, generated fresh for every session
- Public keys travel as JSON Web Keys (kty/crv/x/y) inside the pasted envelope
- The ECDH shared secret is expanded with HKDF-SHA256 into one AES-256-GCM key

Both sides derive bit-identical keys:
    derive(A.private, B.public) == derive(B.private, A.public)

All cryptographic operations use the cryptography library (Apache 2.0/BSD License).
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .constants import (
    EC_COORDINATE_SIZE,
    EC_CURVE_NAME,
    FINGERPRINT_LENGTH,
    HKDF_INFO,
    KEY_SIZE,
)
from .errors import ErrorCode, KeyAgreementError

logger = logging.getLogger(__name__)

KEY_ORIGIN_AGREEMENT = "agreement"
KEY_ORIGIN_STANDALONE = "standalone"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class SharedKey:
    """
    Symmetric AES-256-GCM session key.

    Never serialized or transmitted. The fingerprint is safe to show to
    users for out-of-band comparison; the key bytes are not exposed by repr.
    """

    def __init__(self, key: bytes, version: int = 1, origin: str = KEY_ORIGIN_AGREEMENT):
        if len(key) != KEY_SIZE:
            raise KeyAgreementError(
                ErrorCode.E304_KEY_DERIVATION_FAILED,
                f"Session key must be {KEY_SIZE} bytes, got {len(key)}",
            )
        self._key = key
        self.version = version
        self.origin = origin

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def is_shared(self) -> bool:
        """True when the key came out of a key agreement with the peer."""
        return self.origin == KEY_ORIGIN_AGREEMENT

    def fingerprint(self) -> str:
        """Short hex digest of the key for display."""
        return hashlib.sha256(b"pastewire-fingerprint" + self._key).hexdigest()[:FINGERPRINT_LENGTH]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SharedKey):
            return NotImplemented
        return hmac.compare_digest(self._key, other._key)

    def __hash__(self) -> int:
        return hash(self.fingerprint())

    def __repr__(self) -> str:
        return f"SharedKey(version={self.version}, origin={self.origin}, fingerprint={self.fingerprint()})"


class EphemeralKeyPair:
    """
    Ephemeral P-256 key pair used for exactly one key agreement.

    The private key never leaves the process; only the public half is
    exported, as a JSON Web Key.
    """

    def __init__(self, private_key: Optional[ec.EllipticCurvePrivateKey] = None):
        if private_key is None:
            self.private_key = ec.generate_private_key(ec.SECP256R1())
        else:
            self.private_key = private_key
        self.public_key = self.private_key.public_key()

    def get_public_key_bytes(self) -> bytes:
        """Get public key as an uncompressed X9.62 point."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )

    def to_jwk(self) -> Dict[str, str]:
        """Export the public key as a JSON Web Key."""
        return public_key_to_jwk(self.public_key)


def generate_key_pair() -> EphemeralKeyPair:
    """Generate a fresh P-256 key pair."""
    return EphemeralKeyPair()


def public_key_to_jwk(public_key: ec.EllipticCurvePublicKey) -> Dict[str, str]:
    """
    Export an EC public key as a JWK dictionary.

    Only the public coordinates are included; the result has the same
    members a browser's exportKey("jwk") call produces for a P-256 key.
    """
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": EC_CURVE_NAME,
        "x": _b64url_encode(numbers.x.to_bytes(EC_COORDINATE_SIZE, "big")),
        "y": _b64url_encode(numbers.y.to_bytes(EC_COORDINATE_SIZE, "big")),
    }


def public_key_from_jwk(jwk: Any) -> ec.EllipticCurvePublicKey:
    """
    Import a remote public key from a JWK dictionary.

    Raises:
        KeyAgreementError: E302_INVALID_REMOTE_KEY if the key is not a
            well-formed P-256 public key or the point is not on the curve
    """
    if not isinstance(jwk, dict):
        raise KeyAgreementError(
            ErrorCode.E302_INVALID_REMOTE_KEY,
            "Remote public key must be a JSON object",
        )

    if jwk.get("kty") != "EC" or jwk.get("crv") != EC_CURVE_NAME:
        raise KeyAgreementError(
            ErrorCode.E302_INVALID_REMOTE_KEY,
            f"Remote public key must be an EC {EC_CURVE_NAME} key",
            {"kty": jwk.get("kty"), "crv": jwk.get("crv")},
        )

    coordinates = []
    for name in ("x", "y"):
        value = jwk.get(name)
        if not isinstance(value, str):
            raise KeyAgreementError(
                ErrorCode.E302_INVALID_REMOTE_KEY,
                f"Remote public key is missing coordinate '{name}'",
            )
        try:
            raw = _b64url_decode(value)
        except (ValueError, TypeError) as e:
            raise KeyAgreementError(
                ErrorCode.E302_INVALID_REMOTE_KEY,
                f"Remote public key coordinate '{name}' is not base64url: {e}",
            )
        if len(raw) != EC_COORDINATE_SIZE:
            raise KeyAgreementError(
                ErrorCode.E302_INVALID_REMOTE_KEY,
                f"Remote public key coordinate '{name}' has wrong length {len(raw)}",
            )
        coordinates.append(int.from_bytes(raw, "big"))

    try:
        return ec.EllipticCurvePublicNumbers(coordinates[0], coordinates[1], ec.SECP256R1()).public_key()
    except ValueError as e:
        raise KeyAgreementError(
            ErrorCode.E302_INVALID_REMOTE_KEY,
            f"Remote public key is not a point on {EC_CURVE_NAME}: {e}",
        )


def derive_shared_key(
    local_private: ec.EllipticCurvePrivateKey,
    remote_public: ec.EllipticCurvePublicKey,
    version: int = 1,
) -> SharedKey:
    """
    Perform ECDH and derive the AES-256-GCM session key.

    The raw shared secret is never used directly; it is expanded with
    HKDF-SHA256 under a fixed info label that binds the algorithm.
    """
    try:
        shared_secret = local_private.exchange(ec.ECDH(), remote_public)
    except ValueError as e:
        raise KeyAgreementError(
            ErrorCode.E304_KEY_DERIVATION_FAILED,
            f"ECDH exchange failed: {e}",
        )

    key = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=HKDF_INFO,
    ).derive(shared_secret)

    return SharedKey(key, version=version, origin=KEY_ORIGIN_AGREEMENT)


class KeyAgreementEngine:
    """
    Per-session key agreement state.

    Holds the session's ephemeral key pair. generate() runs exactly once per
    session; export and derive require it to have run.
    """

    def __init__(self):
        self._key_pair: Optional[EphemeralKeyPair] = None

    @property
    def has_key_pair(self) -> bool:
        return self._key_pair is not None

    def generate(self) -> EphemeralKeyPair:
        """Generate the session's ephemeral key pair."""
        if self._key_pair is not None:
            raise KeyAgreementError(
                ErrorCode.E303_KEY_ALREADY_GENERATED,
                "Key pair already generated for this session",
            )
        self._key_pair = generate_key_pair()
        logger.debug("Generated ephemeral P-256 key pair")
        return self._key_pair

    def export_public_key(self) -> Dict[str, str]:
        """Export the local public key as a JWK."""
        return self._require_key_pair().to_jwk()

    def derive(self, remote_public_jwk: Any, version: int = 1) -> SharedKey:
        """Derive the shared session key from the remote party's JWK."""
        key_pair = self._require_key_pair()
        remote_public = public_key_from_jwk(remote_public_jwk)
        shared_key = derive_shared_key(key_pair.private_key, remote_public, version)
        logger.info(f"Derived session key v{version} ({shared_key.fingerprint()})")
        return shared_key

    @staticmethod
    def generate_symmetric() -> SharedKey:
        """
        Generate a random standalone AES-256-GCM key.

        A standalone key is not shared with anyone; two peers that each call
        this end up with different keys and cannot read each other.
        """
        return SharedKey(AESGCM.generate_key(bit_length=KEY_SIZE * 8), origin=KEY_ORIGIN_STANDALONE)

    def clear(self) -> None:
        """Drop the private key reference."""
        self._key_pair = None

    def _require_key_pair(self) -> EphemeralKeyPair:
        if self._key_pair is None:
            raise KeyAgreementError(
                ErrorCode.E301_NO_LOCAL_KEY_PAIR,
                "No local key pair, generate() must run first",
            )
        return self._key_pair
