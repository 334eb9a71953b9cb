"""
Software signers for JWS algorithms.

Each factory validates a raw private key and returns a signing function;
:class:`SoftwareSigner` dispatches by algorithm name and converts ECDSA
results into the compact JOSE form.

Supported:
- ES256 (P-256 + SHA-256)
- ES256K (secp256k1 + SHA-256)
- ES256K-R (secp256k1 + SHA-256, recoverable, non-standard)
- EdDSA / Ed25519 (signs the raw input, no pre-hash)
"""

from __future__ import annotations

import hashlib
from typing import Mapping

from coincurve import PrivateKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from didjwt.codec import base64url_encode
from didjwt.errors import (
    InvalidArgumentError,
    InvalidKeyLengthError,
    RecoveryUnavailableError,
    UnsupportedAlgorithmError,
)
from didjwt.protocols import SignerFunction, maybe_await
from didjwt.signatures import (
    P256_ORDER,
    EcdsaSignature,
    from_jose,
    to_jose,
)

SUPPORTED_ALGORITHMS = ("ES256", "ES256K", "ES256K-R", "EdDSA", "Ed25519")
ECDSA_ALGORITHMS = ("ES256", "ES256K", "ES256K-R")
EDDSA_ALGORITHMS = ("EdDSA", "Ed25519")

EC_PRIVATE_KEY_SIZE = 32


def _to_bytes(data: str | bytes) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def _check_ec_key(private_key: bytes) -> None:
    if len(private_key) != EC_PRIVATE_KEY_SIZE:
        raise InvalidKeyLengthError(
            f"Invalid private key format. Expecting {EC_PRIVATE_KEY_SIZE} bytes, but got {len(private_key)}"
        )


def es256_signer(private_key: bytes) -> SignerFunction:
    """Create a P-256 + SHA-256 signing function.

    Args:
        private_key: 32-byte P-256 private scalar.

    Returns:
        A function mapping signing input to an :class:`EcdsaSignature`
        with ``s`` normalized to the lower half of the curve order.
    """
    _check_ec_key(private_key)
    try:
        key = ec.derive_private_key(int.from_bytes(private_key, "big"), ec.SECP256R1())
    except ValueError as e:
        raise InvalidKeyLengthError(f"Invalid P-256 private key: {e}") from e

    def sign(data: str | bytes) -> EcdsaSignature:
        der = key.sign(_to_bytes(data), ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return EcdsaSignature(r, s).normalized(P256_ORDER)

    return sign


def es256k_signer(private_key: bytes, recoverable: bool = False) -> SignerFunction:
    """Create a secp256k1 + SHA-256 signing function (RFC 6979 nonces).

    Args:
        private_key: 32-byte secp256k1 private key.
        recoverable: Produce the 65-byte ES256K-R form instead of returning
            an :class:`EcdsaSignature`.

    Returns:
        A function returning an :class:`EcdsaSignature` (with recovery bit),
        or a compact string when ``recoverable`` is set.
    """
    _check_ec_key(private_key)
    try:
        key = PrivateKey(private_key)
    except ValueError as e:
        raise InvalidKeyLengthError(f"Invalid secp256k1 private key: {e}") from e

    def sign(data: str | bytes) -> EcdsaSignature | str:
        digest = hashlib.sha256(_to_bytes(data)).digest()
        signature = EcdsaSignature.from_bytes(key.sign_recoverable(digest, hasher=None))
        if recoverable:
            return to_jose(signature, recoverable=True)
        return signature

    return sign


def eddsa_signer(private_key: bytes) -> SignerFunction:
    """Create an Ed25519 signing function.

    Args:
        private_key: 32-byte seed, or the 64-byte seed + public key form.

    Returns:
        A function returning the base64url signature string.
    """
    if len(private_key) not in (32, 64):
        raise InvalidKeyLengthError(
            f"Invalid private key format. Expecting 32 or 64 bytes, but got {len(private_key)}"
        )
    key = Ed25519PrivateKey.from_private_bytes(private_key[:32])

    def sign(data: str | bytes) -> str:
        return base64url_encode(key.sign(_to_bytes(data)))

    return sign


def signer_for_key(private_key: bytes, algorithm: str) -> SignerFunction:
    """Build the signing function for ``algorithm`` from a raw private key."""
    if algorithm == "ES256":
        return es256_signer(private_key)
    if algorithm == "ES256K":
        return es256k_signer(private_key)
    if algorithm == "ES256K-R":
        return es256k_signer(private_key, recoverable=True)
    if algorithm in EDDSA_ALGORITHMS:
        return eddsa_signer(private_key)
    raise UnsupportedAlgorithmError(f"Unsupported algorithm {algorithm}")


class SoftwareSigner:
    """Signs JWS input with in-process keys or caller-supplied functions."""

    supported_algorithms = SUPPORTED_ALGORITHMS

    def __init__(self, signer: SignerFunction | bytes, algorithm: str) -> None:
        """Initialize a signer for a single algorithm.

        Args:
            signer: A signing function or a raw private key.
            algorithm: JWS algorithm name.
        """
        if not algorithm:
            raise InvalidArgumentError("algorithm is required")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm {algorithm}")
        if isinstance(signer, (bytes, bytearray)):
            signer = signer_for_key(bytes(signer), algorithm)
        self._signers: dict[str, SignerFunction] = {algorithm: signer}

    @classmethod
    def from_keys(cls, private_keys: Mapping[str, bytes]) -> SoftwareSigner:
        """Create a signer holding one private key per algorithm."""
        if not private_keys:
            raise InvalidArgumentError("at least one private key is required")
        items = iter(private_keys.items())
        algorithm, key = next(items)
        instance = cls(key, algorithm)
        for algorithm, key in items:
            if algorithm not in SUPPORTED_ALGORITHMS:
                raise UnsupportedAlgorithmError(f"Unsupported algorithm {algorithm}")
            instance._signers[algorithm] = signer_for_key(key, algorithm)
        return instance

    @property
    def algorithms(self) -> list[str]:
        return list(self._signers)

    async def sign(self, data: str | bytes, algorithm: str) -> str:
        """Sign ``data`` and return the compact base64url signature.

        Raises:
            UnsupportedAlgorithmError: If no signer is configured for ``algorithm``.
            RecoveryUnavailableError: If ES256K-R is requested and the
                signature has no recovery bit.
            InvalidArgumentError: If an EdDSA signer returns an ECDSA object.
        """
        signer = self._signers.get(algorithm)
        if signer is None:
            raise UnsupportedAlgorithmError(f"{algorithm} is not supported or initialized")
        signature = await maybe_await(signer(data))

        if algorithm in ECDSA_ALGORITHMS:
            recoverable = algorithm == "ES256K-R"
            if isinstance(signature, EcdsaSignature):
                if recoverable and signature.recovery is None:
                    raise RecoveryUnavailableError(
                        "ES256K-R not supported when signer doesn't provide a recovery param"
                    )
                return to_jose(signature, recoverable)
            if recoverable and from_jose(signature).recovery is None:
                raise RecoveryUnavailableError(
                    "ES256K-R not supported when signer doesn't provide a recovery param"
                )
            return signature

        if isinstance(signature, EcdsaSignature):
            raise InvalidArgumentError(
                "expected a signer function that returns a string instead of signature object"
            )
        return signature
