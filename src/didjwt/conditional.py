"""
Proof checks for single and conditional (``ConditionalProof2022``) authenticators.

A conditional authenticator carries no key of its own. It lists conditions,
each itself a verification method, and is satisfied when enough of them
validate the token:

- ``conditionWeightedThreshold``: each distinct condition adds its weight
  once; satisfied when the total reaches ``threshold``.
- ``conditionThreshold``: the same with a weight of 1 per condition.
- ``conditionAnd`` / ``conditionOr``: all conditions / any one condition.
- ``conditionDelegated``: the referenced method (resolved from its own DID
  document) must validate the token.

A plain condition is met when any nested layer of the token verifies against
it; a conditional condition is met when the whole token verifies against it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from didjwt.codec import Envelope
from didjwt.did_resolver import DIDResolutionResult, VerificationMethod, WeightedCondition, resolve_did
from didjwt.errors import (
    InvalidArgumentError,
    InvalidEnvelopeError,
    InvalidSignatureError,
    NoSuitableKeysError,
    ResolutionError,
)
from didjwt.jws import verify_jwt_decoded
from didjwt.log import get_logger
from didjwt.options import DIDAuthenticator, JWTVerifyOptions, merge_options
from didjwt.protocols import JWTVerifier
from didjwt.verifiers import CONDITIONAL_PROOF_2022

logger = get_logger(__name__)

# (jwt, options, verifier, depth) -> verification result
NestedVerify = Callable[[str, JWTVerifyOptions, Optional[JWTVerifier], int], Awaitable[Any]]


@dataclass(frozen=True)
class ProofContext:
    """The token under verification and how to verify it again recursively."""

    jwt: str
    envelope: Envelope
    options: JWTVerifyOptions
    verifier: JWTVerifier | None
    verify_nested: NestedVerify
    depth: int = 0


async def verify_proof(ctx: ProofContext, authenticator: VerificationMethod) -> VerificationMethod:
    """Check one authenticator against the token.

    Returns:
        The authenticator that signed (for conditional methods, the
        conditional method itself).

    Raises:
        InvalidSignatureError: If the authenticator does not validate the token.
    """
    if authenticator.type == CONDITIONAL_PROOF_2022:
        return await verify_conditional_proof(ctx, authenticator)
    return await verify_jwt_decoded(
        ctx.envelope, [authenticator], ctx.verifier, ctx.options.max_nesting_depth
    )


def _weighted_conditions(authenticator: VerificationMethod) -> tuple[Sequence[WeightedCondition], int]:
    if authenticator.condition_weighted_threshold:
        if authenticator.threshold is None:
            raise InvalidEnvelopeError(f"conditionWeightedThreshold of {authenticator.id} requires a threshold")
        return authenticator.condition_weighted_threshold, authenticator.threshold
    if authenticator.condition_threshold:
        if authenticator.threshold is None:
            raise InvalidEnvelopeError(f"conditionThreshold of {authenticator.id} requires a threshold")
        return [WeightedCondition(c, 1) for c in authenticator.condition_threshold], authenticator.threshold
    if authenticator.condition_and:
        conditions = [WeightedCondition(c, 1) for c in authenticator.condition_and]
        return conditions, len(conditions)
    if authenticator.condition_or:
        return [WeightedCondition(c, 1) for c in authenticator.condition_or], 1
    return [], 0


async def verify_conditional_proof(ctx: ProofContext, authenticator: VerificationMethod) -> VerificationMethod:
    """Evaluate a ``ConditionalProof2022`` authenticator.

    Raises:
        InvalidEnvelopeError: If the method defines no condition or nesting is too deep.
        InvalidSignatureError: If the condition is not met.
    """
    if ctx.depth >= ctx.options.max_condition_depth:
        raise InvalidEnvelopeError(
            f"conditional proof {authenticator.id} exceeds maximum depth of {ctx.options.max_condition_depth}"
        )

    if authenticator.condition_delegated:
        return await _verify_delegated(ctx, authenticator)

    conditions, threshold = _weighted_conditions(authenticator)
    if not conditions:
        raise InvalidEnvelopeError(
            f"conditional proof type did not find condition for authenticator {authenticator.id}"
        )

    signers: list[str] = []
    weight = 0
    for weighted in conditions:
        condition = weighted.condition
        if condition.id in signers:
            continue
        if await _condition_met(ctx, condition):
            signers.append(condition.id)
            weight += weighted.weight
            logger.debug("jwt.condition.met", authenticator=authenticator.id, condition=condition.id, weight=weight)
            if weight >= threshold:
                return authenticator

    raise InvalidSignatureError(f"condition for authenticator {authenticator.id} is not met")


async def _condition_met(
    ctx: ProofContext,
    condition: VerificationMethod,
    resolution: DIDResolutionResult | None = None,
) -> bool:
    try:
        if condition.type == CONDITIONAL_PROOF_2022:
            await _verify_nested(ctx, condition, resolution or _resolution_result(ctx))
        else:
            await verify_jwt_decoded(ctx.envelope, [condition], ctx.verifier, ctx.options.max_nesting_depth)
    except InvalidSignatureError:
        return False
    return True


def _resolution_result(ctx: ProofContext) -> DIDResolutionResult:
    if ctx.options.did_authenticator is None:
        raise InvalidArgumentError("conditional proofs require a resolved DID authenticator")
    return ctx.options.did_authenticator.did_resolution_result


async def _verify_nested(
    ctx: ProofContext,
    condition: VerificationMethod,
    resolution: DIDResolutionResult,
) -> None:
    did_authenticator = DIDAuthenticator(
        authenticators=(condition,),
        issuer=condition.id,
        did_resolution_result=resolution,
    )
    options = merge_options(ctx.options, did_authenticator=did_authenticator)
    await ctx.verify_nested(ctx.jwt, options, ctx.verifier, ctx.depth + 1)


async def _verify_delegated(ctx: ProofContext, authenticator: VerificationMethod) -> VerificationMethod:
    delegated_url = authenticator.condition_delegated
    if ctx.options.resolver is None:
        raise InvalidArgumentError("conditionDelegated requires a DID resolver")

    result = await resolve_did(ctx.options.resolver, delegated_url)
    if result.error or result.did_document is None:
        raise ResolutionError(
            f"Unable to resolve DID document for {delegated_url}: {result.error}, {result.error_message}",
            details={"error": result.error},
        )
    delegated = result.did_document.get_verification_method(delegated_url)
    if delegated is None:
        raise NoSuitableKeysError(f"No verification method {delegated_url} found for delegated condition")

    if await _condition_met(ctx, delegated, result):
        return authenticator
    raise InvalidSignatureError(f"condition for authenticator {authenticator.id} is not met")

