"""
Signature verification against candidate verification methods.

Every algorithm verifier takes the signing input, the compact signature and
an ordered list of candidates, and returns the first candidate that
validates. Candidates whose key material cannot be used are skipped; when
none match, :class:`~didjwt.errors.InvalidSignatureError` is raised.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Sequence

from coincurve import PublicKey
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from didjwt.blockchains import to_ethereum_address, verify_blockchain_account_id
from didjwt.codec import base64url_decode
from didjwt.did_resolver import VerificationMethod
from didjwt.errors import InvalidSignatureError, UnsupportedAlgorithmError, UnsupportedKeyEncodingError
from didjwt.keys import KeyType, extract_public_key_bytes
from didjwt.signatures import P256_ORDER, SECP256K1_ORDER, EcdsaSignature, from_jose

CONDITIONAL_PROOF_2022 = "ConditionalProof2022"

VerifyFunction = Callable[[str, str, Sequence[VerificationMethod]], VerificationMethod]


def _candidate_key(vm: VerificationMethod) -> bytes | None:
    try:
        return extract_public_key_bytes(vm).key_bytes
    except UnsupportedKeyEncodingError:
        return None


def _invalid() -> InvalidSignatureError:
    return InvalidSignatureError("Signature invalid for JWT")


def verify_es256(data: str, signature: str, authenticators: Sequence[VerificationMethod]) -> VerificationMethod:
    """Verify an ES256 (P-256) signature."""
    sig = from_jose(signature).normalized(P256_ORDER)
    der = encode_dss_signature(sig.r, sig.s)
    message = data.encode("utf-8")

    for vm in authenticators:
        if vm.is_account_based:
            continue
        key_bytes = _candidate_key(vm)
        if not key_bytes:
            continue
        try:
            public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), key_bytes)
            public_key.verify(der, message, ec.ECDSA(hashes.SHA256()))
            return vm
        except (InvalidSignature, ValueError):
            continue
    raise _invalid()


def _secp256k1_verify(vm: VerificationMethod, der: bytes, digest: bytes) -> bool:
    key_bytes = _candidate_key(vm)
    if not key_bytes:
        return False
    try:
        return PublicKey(key_bytes).verify(der, digest, hasher=None)
    except (ValueError, TypeError):
        return False


def _verify_full_keys(
    sig: EcdsaSignature, digest: bytes, authenticators: Sequence[VerificationMethod]
) -> VerificationMethod | None:
    normalized = sig.normalized(SECP256K1_ORDER)
    der = encode_dss_signature(normalized.r, normalized.s)
    for vm in authenticators:
        if _secp256k1_verify(vm, der, digest):
            return vm
    return None


def _recover(sig: EcdsaSignature, digest: bytes) -> PublicKey | None:
    if sig.recovery is None or not 0 <= sig.recovery <= 3:
        return None
    try:
        return PublicKey.from_signature_and_message(
            sig.compact + bytes([sig.recovery]), digest, hasher=None
        )
    except (ValueError, TypeError):
        return None


def _matches_recovered(vm: VerificationMethod, recovered: PublicKey) -> bool:
    uncompressed = recovered.format(compressed=False)
    uncompressed_hex = uncompressed.hex()
    compressed_hex = recovered.format(compressed=True).hex()
    address = to_ethereum_address(uncompressed)

    key_bytes = _candidate_key(vm)
    if key_bytes and key_bytes.hex() in (uncompressed_hex, compressed_hex):
        return True
    if vm.ethereum_address and vm.ethereum_address.lower() == address:
        return True
    if vm.blockchain_account_id:
        # legacy CAIP-2 form: <address>@eip155:<chain>
        if vm.blockchain_account_id.split("@eip155")[0].lower() == address:
            return True
        if verify_blockchain_account_id(uncompressed_hex, vm.blockchain_account_id):
            return True
    return False


def _verify_by_recovery(
    sig: EcdsaSignature, digest: bytes, authenticators: Sequence[VerificationMethod]
) -> VerificationMethod | None:
    if sig.recovery is not None:
        hypotheses = [sig]
    else:
        hypotheses = [sig.with_recovery(0), sig.with_recovery(1)]

    for hypothesis in hypotheses:
        recovered = _recover(hypothesis, digest)
        if recovered is None:
            continue
        for vm in authenticators:
            if _matches_recovered(vm, recovered):
                return vm
    return None


def verify_es256k(data: str, signature: str, authenticators: Sequence[VerificationMethod]) -> VerificationMethod:
    """Verify an ES256K signature.

    Full public keys are checked first with the low-S normalized signature;
    address-only methods fall back to public key recovery.
    """
    digest = hashlib.sha256(data.encode("utf-8")).digest()
    sig = from_jose(signature)
    full_keys = [a for a in authenticators if not a.is_account_based]
    account_keys = [a for a in authenticators if a.is_account_based]

    signer = _verify_full_keys(sig, digest, full_keys)
    if signer is None and account_keys:
        signer = _verify_by_recovery(sig, digest, account_keys)
    if signer is None:
        raise _invalid()
    return signer


def verify_recoverable_es256k(
    data: str, signature: str, authenticators: Sequence[VerificationMethod]
) -> VerificationMethod:
    """Verify an ES256K-R signature.

    Full public keys use plain verification. Address-only methods require
    recovery: the encoded recovery bit when present, otherwise bits 0 and 1
    in turn, each tried against every candidate in order.
    """
    digest = hashlib.sha256(data.encode("utf-8")).digest()
    sig = from_jose(signature)
    full_keys = [a for a in authenticators if not a.is_account_based]
    account_keys = [a for a in authenticators if a.is_account_based]

    signer = _verify_full_keys(sig, digest, full_keys)
    if signer is None:
        signer = _verify_by_recovery(sig, digest, account_keys)
    if signer is None:
        raise _invalid()
    return signer


def verify_ed25519(data: str, signature: str, authenticators: Sequence[VerificationMethod]) -> VerificationMethod:
    """Verify an EdDSA signature over the raw signing input."""
    try:
        signature_bytes = base64url_decode(signature)
    except ValueError as e:
        raise InvalidSignatureError(f"signature is not base64url: {e}") from e
    message = data.encode("utf-8")

    for vm in authenticators:
        try:
            key = extract_public_key_bytes(vm)
        except UnsupportedKeyEncodingError:
            continue
        if key.key_type != KeyType.ED25519 or not key.key_bytes:
            continue
        try:
            Ed25519PublicKey.from_public_bytes(key.key_bytes).verify(signature_bytes, message)
            return vm
        except (InvalidSignature, ValueError):
            continue
    raise _invalid()


@dataclass(frozen=True)
class AlgorithmVerifier:
    """A verify function and the verification method types it accepts."""

    verify: VerifyFunction
    supported_verification_methods: tuple[str, ...]


ES256_METHODS = (
    "JsonWebKey2020",
    "Multikey",
    "EcdsaSecp256r1VerificationKey2019",
)

ES256K_METHODS = (
    "EcdsaSecp256k1VerificationKey2019",
    # equivalent to EcdsaSecp256k1VerificationKey2019 for address-based keys
    "EcdsaSecp256k1RecoveryMethod2020",
    # deprecated aliases kept for older DID documents
    "Secp256k1VerificationKey2018",
    "Secp256k1SignatureVerificationKey2018",
    "EcdsaPublicKeySecp256k1",
    "JsonWebKey2020",
    "Multikey",
    CONDITIONAL_PROOF_2022,
)

ED25519_METHODS = (
    "ED25519SignatureVerification",
    "Ed25519VerificationKey2018",
    "Ed25519VerificationKey2020",
    "JsonWebKey2020",
    "Multikey",
)

ALGORITHMS: Mapping[str, AlgorithmVerifier] = MappingProxyType(
    {
        "ES256": AlgorithmVerifier(verify_es256, ES256_METHODS),
        "ES256K": AlgorithmVerifier(verify_es256k, ES256K_METHODS),
        "ES256K-R": AlgorithmVerifier(verify_recoverable_es256k, ES256K_METHODS),
        "EdDSA": AlgorithmVerifier(verify_ed25519, ED25519_METHODS),
        # alias retained for tokens issued with the curve name as alg
        "Ed25519": AlgorithmVerifier(verify_ed25519, ED25519_METHODS),
    }
)


class SoftwareVerifier:
    """Verifier backed by the in-process algorithm table."""

    def supported_verification_methods(self, alg: str | None = None) -> list[str]:
        """Verification method types usable with ``alg`` (or with any algorithm).

        Raises:
            UnsupportedAlgorithmError: If ``alg`` is not supported.
        """
        if alg is None:
            methods: list[str] = []
            for verifier in ALGORITHMS.values():
                methods.extend(m for m in verifier.supported_verification_methods if m not in methods)
            return methods
        verifier = ALGORITHMS.get(alg)
        if verifier is None:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm {alg}")
        return list(verifier.supported_verification_methods)

    def verify(
        self,
        alg: str,
        data: str,
        signature: str,
        authenticators: Sequence[VerificationMethod],
    ) -> VerificationMethod:
        """Return the first authenticator whose key validates ``signature``.

        Raises:
            UnsupportedAlgorithmError: If ``alg`` is not supported.
            InvalidSignatureError: If no authenticator matches.
        """
        verifier = ALGORITHMS.get(alg)
        if verifier is None:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm {alg}")
        return verifier.verify(data, signature, authenticators)
