"""
Compact ECDSA signature encoding.

JOSE serializes ECDSA signatures as ``r || s`` with each integer left-padded
to 32 bytes (64 bytes total). The non-standard ES256K-R form appends one
recovery byte (65 bytes, 87 base64url characters).
"""

from __future__ import annotations

from dataclasses import dataclass

from didjwt.codec import base64url_decode, base64url_encode
from didjwt.errors import InvalidSignatureError

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

COORDINATE_SIZE = 32
COMPACT_SIZE = 2 * COORDINATE_SIZE
RECOVERABLE_SIZE = COMPACT_SIZE + 1


def leftpad(data: bytes, size: int = COORDINATE_SIZE) -> bytes:
    """Left-pad ``data`` with zero bytes to ``size``."""
    if len(data) > size:
        raise ValueError(f"Value of {len(data)} bytes does not fit in {size} bytes")
    return data.rjust(size, b"\x00")


def int_to_bytes(value: int, size: int = COORDINATE_SIZE) -> bytes:
    return value.to_bytes(size, byteorder="big")


@dataclass(frozen=True)
class EcdsaSignature:
    """An ECDSA signature as integers plus an optional recovery bit."""

    r: int
    s: int
    recovery: int | None = None

    @property
    def compact(self) -> bytes:
        """The 64-byte ``r || s`` form, ignoring any recovery bit."""
        return int_to_bytes(self.r) + int_to_bytes(self.s)

    def with_recovery(self, recovery: int) -> EcdsaSignature:
        return EcdsaSignature(self.r, self.s, recovery)

    def normalized(self, order: int) -> EcdsaSignature:
        """Return the equivalent signature with ``s`` in the lower half of the curve order."""
        if self.s > order // 2:
            return EcdsaSignature(self.r, order - self.s)
        return EcdsaSignature(self.r, self.s, self.recovery)

    @classmethod
    def from_bytes(cls, raw: bytes) -> EcdsaSignature:
        """Parse a 64-byte compact or 65-byte recoverable signature."""
        if len(raw) not in (COMPACT_SIZE, RECOVERABLE_SIZE):
            raise InvalidSignatureError(f"wrong signature length: {len(raw)} bytes")
        r = int.from_bytes(raw[:COORDINATE_SIZE], byteorder="big")
        s = int.from_bytes(raw[COORDINATE_SIZE:COMPACT_SIZE], byteorder="big")
        recovery = None
        if len(raw) == RECOVERABLE_SIZE:
            recovery = raw[COMPACT_SIZE]
            # Ethereum-style v values
            if recovery >= 27:
                recovery -= 27
        return cls(r, s, recovery)


def to_jose(signature: EcdsaSignature, recoverable: bool = False) -> str:
    """Encode a signature into its compact base64url wire form.

    Raises:
        InvalidSignatureError: If ``recoverable`` is set but there is no
            recovery bit.
    """
    raw = signature.compact
    if recoverable:
        if signature.recovery is None:
            raise InvalidSignatureError("signature recovery param is missing")
        raw += bytes([signature.recovery])
    return base64url_encode(raw)


def from_jose(signature: str) -> EcdsaSignature:
    """Decode a compact base64url signature.

    64-byte and 65-byte forms are told apart by length alone (86 vs 87
    characters), never by algorithm name: the recovery byte is read whenever
    it is present, and a 64-byte input yields ``recovery=None`` so callers can
    try both bits.

    Raises:
        InvalidSignatureError: If the input is not base64url or has the wrong length.
    """
    try:
        raw = base64url_decode(signature)
    except ValueError as e:
        raise InvalidSignatureError(f"signature is not base64url: {e}") from e
    return EcdsaSignature.from_bytes(raw)
