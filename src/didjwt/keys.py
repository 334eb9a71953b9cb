"""
Public key extraction from DID verification methods.

Normalizes every supported key encoding (JWK, multibase/multikey, hex,
base58) to raw public key bytes tagged with the key type. Account-based
methods (``blockchainAccountId``, ``ethereumAddress``) carry no key bytes;
they can only be matched by recovering a key from a signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import base58
import multibase

from didjwt.codec import base64url_decode
from didjwt.did_resolver import PublicKeyJWK, VerificationMethod
from didjwt.errors import UnsupportedKeyEncodingError
from didjwt.signatures import leftpad


class KeyType(str, Enum):
    """Key types a verification method can resolve to."""

    SECP256K1 = "Secp256k1"
    P256 = "P-256"
    P384 = "P-384"
    ED25519 = "Ed25519"
    X25519 = "X25519"


VM_TO_KEY_TYPE: dict[str, KeyType] = {
    "Secp256k1SignatureVerificationKey2018": KeyType.SECP256K1,
    "Secp256k1VerificationKey2018": KeyType.SECP256K1,
    "EcdsaSecp256k1VerificationKey2019": KeyType.SECP256K1,
    "EcdsaPublicKeySecp256k1": KeyType.SECP256K1,
    "EcdsaSecp256k1RecoveryMethod2020": KeyType.SECP256K1,
    "EcdsaSecp256r1VerificationKey2019": KeyType.P256,
    "Ed25519VerificationKey2018": KeyType.ED25519,
    "Ed25519VerificationKey2020": KeyType.ED25519,
    "ED25519SignatureVerification": KeyType.ED25519,
    "X25519KeyAgreementKey2019": KeyType.X25519,
    "X25519KeyAgreementKey2020": KeyType.X25519,
}

# varint-encoded multicodec prefixes of public key types
MULTICODEC_PREFIXES: dict[bytes, KeyType] = {
    b"\xe7\x01": KeyType.SECP256K1,
    b"\xec\x01": KeyType.X25519,
    b"\xed\x01": KeyType.ED25519,
    b"\x80\x24": KeyType.P256,
    b"\x81\x24": KeyType.P384,
}

_JWK_CURVES = {
    "secp256k1": KeyType.SECP256K1,
    "P-256": KeyType.P256,
}

_OKP_CURVES = {
    "Ed25519": KeyType.ED25519,
    "X25519": KeyType.X25519,
}


@dataclass(frozen=True)
class PublicKeyBytes:
    """Raw public key material; ``key_bytes`` is None for account-based methods."""

    key_bytes: bytes | None
    key_type: KeyType | None

    @property
    def hex(self) -> str:
        return self.key_bytes.hex() if self.key_bytes else ""


def split_multicodec(data: bytes) -> tuple[bytes, KeyType | None]:
    """Strip a known multicodec prefix, returning the key and its type."""
    for prefix, key_type in MULTICODEC_PREFIXES.items():
        if data.startswith(prefix):
            return data[len(prefix):], key_type
    return data, None


def _from_jwk(jwk: PublicKeyJWK) -> PublicKeyBytes:
    try:
        if jwk.kty == "EC" and jwk.crv in _JWK_CURVES and jwk.x and jwk.y:
            x = leftpad(base64url_decode(jwk.x))
            y = leftpad(base64url_decode(jwk.y))
            return PublicKeyBytes(b"\x04" + x + y, _JWK_CURVES[jwk.crv])
        if jwk.kty == "OKP" and jwk.crv in _OKP_CURVES and jwk.x:
            return PublicKeyBytes(base64url_decode(jwk.x), _OKP_CURVES[jwk.crv])
    except (ValueError, TypeError) as e:
        raise UnsupportedKeyEncodingError(f"Invalid JWK coordinates: {e}") from e
    raise UnsupportedKeyEncodingError(f"Unsupported JWK key type or curve: {jwk.kty}/{jwk.crv}")


def _from_multibase(value: str, declared: KeyType | None) -> PublicKeyBytes:
    try:
        decoded = multibase.decode(value)
    except (ValueError, TypeError, KeyError) as e:
        raise UnsupportedKeyEncodingError(f"Invalid publicKeyMultibase: {e}") from e
    key_bytes, key_type = split_multicodec(decoded)
    return PublicKeyBytes(key_bytes, key_type or declared)


def extract_public_key_bytes(vm: VerificationMethod) -> PublicKeyBytes:
    """Extract public key bytes and key type from a verification method.

    Encodings are tried in the order JWK, multibase, hex, base58, then
    account identifiers.

    Raises:
        UnsupportedKeyEncodingError: If no recognized encoding is present or
            the populated one fails to decode.
    """
    declared = VM_TO_KEY_TYPE.get(vm.type)

    if vm.public_key_jwk is not None:
        return _from_jwk(vm.public_key_jwk)

    if vm.public_key_multibase:
        return _from_multibase(vm.public_key_multibase, declared)

    if vm.public_key_hex:
        value = vm.public_key_hex
        if value[:2].lower() == "0x":
            value = value[2:]
        try:
            return PublicKeyBytes(bytes.fromhex(value), declared)
        except ValueError as e:
            raise UnsupportedKeyEncodingError(f"Invalid publicKeyHex: {e}") from e

    if vm.public_key_base58:
        try:
            return PublicKeyBytes(base58.b58decode(vm.public_key_base58), declared)
        except ValueError as e:
            raise UnsupportedKeyEncodingError(f"Invalid publicKeyBase58: {e}") from e

    if vm.is_account_based:
        return PublicKeyBytes(None, declared or KeyType.SECP256K1)

    raise UnsupportedKeyEncodingError(f"No supported public key encoding in {vm.id}")
