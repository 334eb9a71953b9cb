"""
Authenticator resolution.

Turns an issuer DID, a JWS algorithm and an optional proof purpose into the
ordered list of verification methods that may have produced a signature.
"""

from __future__ import annotations

from typing import Sequence

from didjwt.did_resolver import (
    DIDDocument,
    RelationshipEntry,
    Resolver,
    VerificationMethod,
    resolve_did,
)
from didjwt.errors import NoSuitableKeysError, ResolutionError, UnsupportedAlgorithmError
from didjwt.log import get_logger
from didjwt.options import DIDAuthenticator
from didjwt.protocols import JWTVerifier
from didjwt.verifiers import SoftwareVerifier

logger = get_logger(__name__)


def _lookup(entry: RelationshipEntry, document: DIDDocument) -> VerificationMethod | None:
    if isinstance(entry, str):
        return document.get_verification_method(entry)
    return document.get_verification_method(entry.id) or entry


def select_authenticators(
    document: DIDDocument,
    types: Sequence[str],
    proof_purpose: str | None = None,
) -> list[VerificationMethod]:
    """Filter a DID document's keys by proof purpose and verification method type.

    When ``proof_purpose`` is given but the document has no such relationship,
    every key in the document is treated as a member (legacy documents often
    omit ``assertionMethod``). Relationship entries that reference unknown ids
    are dropped.

    Args:
        document: The resolved DID document.
        types: Verification method types accepted by the algorithm's verifier.
        proof_purpose: Verification relationship the key must belong to.

    Returns:
        Matching methods in document order.
    """
    pool = list(document.all_verification_methods)
    if proof_purpose and document.has_relationship(proof_purpose):
        candidates = []
        for entry in document.relationships[proof_purpose]:
            vm = _lookup(entry, document)
            if vm is not None:
                candidates.append(vm)
    else:
        candidates = pool
    return [vm for vm in candidates if vm.type in types]


async def resolve_authenticator(
    resolver: Resolver,
    alg: str,
    issuer: str,
    proof_purpose: str | None = None,
    verifier: JWTVerifier | None = None,
) -> DIDAuthenticator:
    """Resolve the issuer's DID document and select candidate authenticators.

    Args:
        resolver: DID resolver (sync or async).
        alg: JWS algorithm of the token being verified.
        issuer: DID or DID URL of the issuer.
        proof_purpose: Optional verification relationship to restrict keys to.
        verifier: Verifier whose supported method types drive the filtering.

    Returns:
        The candidates together with the issuer and the resolution result.

    Raises:
        UnsupportedAlgorithmError: If the verifier supports no method type for ``alg``.
        ResolutionError: If resolution failed or produced no document.
        NoSuitableKeysError: If no key survives filtering.
    """
    verifier = verifier or SoftwareVerifier()
    types = verifier.supported_verification_methods(alg)
    if not types:
        raise UnsupportedAlgorithmError(f"No supported signature types for algorithm {alg}")

    result = await resolve_did(resolver, issuer)
    if result.error or result.did_document is None:
        logger.info("did.resolution.error", issuer=issuer, error=result.error)
        raise ResolutionError(
            f"Unable to resolve DID document for {issuer}: {result.error}, {result.error_message}",
            details={"error": result.error},
        )

    authenticators = select_authenticators(result.did_document, types, proof_purpose)
    if not authenticators:
        if proof_purpose:
            raise NoSuitableKeysError(
                f"DID document for {issuer} does not have public keys suitable for {alg} "
                f"with {proof_purpose} purpose"
            )
        raise NoSuitableKeysError(f"DID document for {issuer} does not have public keys for {alg}")

    logger.debug("did.authenticators.selected", issuer=issuer, alg=alg, count=len(authenticators))
    return DIDAuthenticator(
        authenticators=tuple(authenticators),
        issuer=issuer,
        did_resolution_result=result,
    )
