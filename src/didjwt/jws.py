"""
JWS creation and signature-level verification.

These operations work on keys the caller already has; nothing here resolves
DIDs or checks claims.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence, Union

from didjwt.codec import MAX_NESTING_DEPTH, Envelope, decode_jws, encode_signing_input, inner_jwt
from didjwt.did_resolver import VerificationMethod
from didjwt.errors import InvalidEnvelopeError, InvalidSignatureError, UnsupportedAlgorithmError
from didjwt.protocols import JWTSigner, JWTVerifier, SignerFunction, is_signer, maybe_await
from didjwt.signers import SUPPORTED_ALGORITHMS, SoftwareSigner
from didjwt.verifiers import SoftwareVerifier

DEFAULT_ALG = "ES256K"

PublicKeys = Union[VerificationMethod, Sequence[VerificationMethod]]


def _as_list(pub_keys: PublicKeys) -> list[VerificationMethod]:
    if isinstance(pub_keys, VerificationMethod):
        return [pub_keys]
    return list(pub_keys)


async def create_jws(
    payload: str | Mapping[str, Any],
    signer: JWTSigner | SignerFunction,
    header: Mapping[str, Any] | None = None,
    canonicalize: bool = False,
) -> str:
    """Create a compact JWS over ``payload``.

    Args:
        payload: Claims mapping, or an already base64url-encoded payload string.
        signer: A signer object or a bare signing function.
        header: Header fields; ``alg`` defaults to ES256K.
        canonicalize: Serialize header and payload as RFC 8785 JSON.

    Returns:
        ``header.payload.signature``.

    Raises:
        UnsupportedAlgorithmError: If a bare function is given for an
            algorithm the software signer does not support.
    """
    header = dict(header or {})
    if not header.get("alg"):
        header["alg"] = DEFAULT_ALG
    algorithm = header["alg"]

    signing_input = encode_signing_input(
        header, payload if isinstance(payload, str) else dict(payload), canonicalize
    )

    if is_signer(signer):
        jwt_signer = signer
    else:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm {algorithm}")
        jwt_signer = SoftwareSigner(signer, algorithm)

    signature = await maybe_await(jwt_signer.sign(signing_input, algorithm))
    return f"{signing_input}.{signature}"


async def verify_jws_decoded(
    envelope: Envelope,
    pub_keys: PublicKeys,
    verifier: JWTVerifier | None = None,
) -> VerificationMethod:
    """Verify one decoded layer and return the matching key."""
    verifier = verifier or SoftwareVerifier()
    return await maybe_await(
        verifier.verify(envelope.header.get("alg"), envelope.signing_input, envelope.signature, _as_list(pub_keys))
    )


async def verify_jws(
    jws: str,
    pub_keys: PublicKeys,
    verifier: JWTVerifier | None = None,
) -> VerificationMethod:
    """Verify a compact JWS against known public keys.

    Returns:
        The verification method that validated the signature.

    Raises:
        MalformedEnvelopeError: If ``jws`` cannot be parsed.
        InvalidSignatureError: If none of ``pub_keys`` match.
    """
    return await verify_jws_decoded(decode_jws(jws), pub_keys, verifier)


async def verify_jwt_decoded(
    envelope: Envelope,
    pub_keys: PublicKeys,
    verifier: JWTVerifier | None = None,
    max_depth: int = MAX_NESTING_DEPTH,
) -> VerificationMethod:
    """Verify a decoded JWT, trying each nested layer in turn.

    The outer layer is tried first; on a signature mismatch the inner JWT
    (``cty: "JWT"``) is decoded and tried next. Every layer must carry the
    same ``iss`` as the outer one.

    Args:
        envelope: The outer layer, decoded without recursion.
        pub_keys: Candidate verification methods.
        verifier: Verifier to use; defaults to :class:`SoftwareVerifier`.
        max_depth: Maximum number of nested layers below the outer one.

    Returns:
        The first candidate that validates any layer.

    Raises:
        InvalidEnvelopeError: If a nested layer changes issuer or nesting is too deep.
        InvalidSignatureError: If no layer validates against any candidate.
    """
    keys = _as_list(pub_keys)
    current = envelope
    depth = 0
    while True:
        try:
            return await verify_jws_decoded(current, keys, verifier)
        except InvalidSignatureError:
            pass
        if not current.is_nested:
            break
        if depth >= max_depth:
            raise InvalidEnvelopeError(f"nested JWT exceeds maximum depth of {max_depth}")
        current = inner_jwt(current)
        depth += 1

    raise InvalidSignatureError("no matching public key found")
