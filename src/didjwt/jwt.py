"""
DID-signed JWT issuance and verification.

Verification decodes the outer layer, works out which DID the token claims
to come from, resolves that DID's authenticators, finds the key that signed
the token (unwinding nested multi-signature layers as needed), and finally
checks the temporal and audience claims.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from numbers import Real
from typing import Any, Mapping, Sequence

from didjwt.authenticators import resolve_authenticator
from didjwt.codec import Envelope, decode_single_jwt, unwrap_layers
from didjwt.conditional import ProofContext, verify_proof
from didjwt.did_resolver import DIDResolutionResult, VerificationMethod, parse_did
from didjwt.errors import (
    InvalidArgumentError,
    InvalidAudienceError,
    InvalidEnvelopeError,
    InvalidSignatureError,
    PolicyViolationError,
)
from didjwt.jws import create_jws
from didjwt.log import get_logger
from didjwt.options import (
    DIDAuthenticator,
    Issuer,
    JWTOptions,
    JWTVerifyOptions,
    JWTVerifyPolicies,
    issuers_from,
    merge_options,
)
from didjwt.protocols import JWTVerifier

logger = get_logger(__name__)

SELF_ISSUED_V2 = "https://self-issued.me/v2"
# https://identity.foundation/jwt-vc-presentation-profile/#id-token-validation
SELF_ISSUED_V2_VC_INTEROP = "https://self-issued.me/v2/openid-vc"
SELF_ISSUED_V0_1 = "https://self-issued.me"

_TIMESTAMP_CLAIMS = ("iat", "exp")


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a successful :func:`verify_jwt`; failures raise instead.

    Attributes:
        verified: Always True.
        claims: Payload of the innermost JWT layer.
        did_resolution_result: Resolution result of the issuer DID.
        issuer: The DID or DID URL the token was checked against.
        signer: The verification method that validated the signature.
        jwt: The token as given.
        policies: The policies that were applied.
    """

    verified: bool
    claims: dict[str, Any]
    did_resolution_result: DIDResolutionResult
    issuer: str
    signer: VerificationMethod
    jwt: str
    policies: JWTVerifyPolicies

    @property
    def payload(self) -> dict[str, Any]:
        return self.claims

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "payload": self.claims,
            "didResolutionResult": self.did_resolution_result.to_dict(),
            "issuer": self.issuer,
            "signer": self.signer.to_dict(),
            "jwt": self.jwt,
            "policies": self.policies.to_dict(),
        }


async def create_jwt(
    payload: Mapping[str, Any],
    options: JWTOptions,
    header: Mapping[str, Any] | None = None,
) -> str:
    """Create a signed JWT.

    ``iat`` is set to the current time and, when ``options.expires_in`` is
    given, ``exp`` to ``(nbf or iat) + expires_in``. Payload values override
    both; an explicit None drops the claim. ``iss`` is always
    ``options.issuer``.

    Args:
        payload: Claims to sign.
        options: Issuer, signer and algorithm.
        header: Extra header fields; ``typ`` defaults to ``JWT``.

    Returns:
        The compact JWT.

    Raises:
        InvalidArgumentError: If the signer or issuer is missing, or
            ``expires_in`` or ``nbf`` is not a number.
    """
    if not options.signer:
        raise InvalidArgumentError("No Signer functionality has been configured")
    if not options.issuer:
        raise InvalidArgumentError("No issuing DID has been configured")

    header = dict(header or {})
    if not header.get("typ"):
        header["typ"] = "JWT"
    if not header.get("alg") and options.alg:
        header["alg"] = options.alg

    timestamps: dict[str, Any] = {"iat": int(time.time())}
    if options.expires_in:
        if isinstance(options.expires_in, bool) or not isinstance(options.expires_in, Real):
            raise InvalidArgumentError("JWT expires_in is not a number")
        nbf = payload.get("nbf")
        if nbf is not None and (isinstance(nbf, bool) or not isinstance(nbf, Real)):
            raise InvalidArgumentError(f"JWT nbf is not a number: {nbf!r}")
        timestamps["exp"] = (nbf or timestamps["iat"]) + math.floor(options.expires_in)

    full_payload = {**timestamps, **payload, "iss": options.issuer}
    for claim in _TIMESTAMP_CLAIMS:
        if claim in full_payload and full_payload[claim] is None:
            del full_payload[claim]

    return await create_jws(full_payload, options.signer, header, options.canonicalize)


async def create_multisignature_jwt(
    payload: Mapping[str, Any],
    issuers: Sequence[Issuer | Mapping[str, Any]],
    expires_in: int | float | None = None,
    canonicalize: bool = False,
) -> str:
    """Create a JWT signed by several issuers, one nested layer each.

    The first issuer signs ``payload``; every following issuer signs
    ``{"jwt": <previous token>}`` with ``cty: "JWT"`` in its header
    (RFC 7519 section 7.1, step 5).

    Raises:
        InvalidArgumentError: If ``issuers`` is empty.
    """
    signers = issuers_from(issuers)
    if not signers:
        raise InvalidArgumentError("must provide one or more issuers")

    current: Mapping[str, Any] = payload
    jwt = ""
    for index, issuer in enumerate(signers):
        header: dict[str, Any] = {"typ": "JWT"}
        if issuer.alg:
            header["alg"] = issuer.alg
        if index != 0:
            header["cty"] = "JWT"
        options = JWTOptions(
            issuer=issuer.issuer,
            signer=issuer.signer,
            alg=issuer.alg,
            expires_in=expires_in,
            canonicalize=canonicalize,
        )
        jwt = await create_jwt(current, options, header)
        current = {"jwt": jwt}
    return jwt


def subject_did_url(envelope: Envelope, did_authenticator: DIDAuthenticator | None = None) -> str:
    """Determine which DID (URL) a JWT claims to be signed by.

    Conventions, in order: a pre-resolved authenticator's issuer, OpenID
    self-issued v2 (``sub``, or the ``kid`` DID when ``sub_jwk`` is present),
    legacy self-issued (``did``), a SIOP request (``client_id`` with
    ``scope=openid``), and finally ``iss``.

    Raises:
        InvalidEnvelopeError: If no convention yields a DID or a field the
            matched convention requires is missing.
    """
    claims = envelope.claims
    iss = claims.get("iss")
    if not iss and not claims.get("client_id"):
        raise InvalidEnvelopeError("JWT iss or client_id are required")

    if did_authenticator is not None:
        did_url = did_authenticator.issuer
    elif iss in (SELF_ISSUED_V2, SELF_ISSUED_V2_VC_INTEROP):
        if not claims.get("sub"):
            raise InvalidEnvelopeError("JWT sub is required")
        if "sub_jwk" not in claims:
            did_url = claims["sub"]
        else:
            did_url = str(envelope.header.get("kid") or "").split("#")[0]
    elif iss == SELF_ISSUED_V0_1:
        if not claims.get("did"):
            raise InvalidEnvelopeError("JWT did is required")
        did_url = claims["did"]
    elif not iss and claims.get("scope") == "openid" and claims.get("redirect_uri"):
        # https://identity.foundation/jwt-vc-presentation-profile/#self-issued-op-request-object
        did_url = claims["client_id"]
    else:
        did_url = iss

    if not did_url or not isinstance(did_url, str):
        raise InvalidEnvelopeError("No DID has been found in the JWT")
    return did_url


def _numeric_claim(claims: Mapping[str, Any], name: str) -> float | None:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidEnvelopeError(f"JWT {name} claim is not a number: {value!r}")
    return value


def check_policies(claims: Mapping[str, Any], options: JWTVerifyOptions, now: int) -> None:
    """Apply the temporal and audience checks to one set of claims.

    Raises:
        PolicyViolationError: If ``nbf``, ``iat`` or ``exp`` fail.
        InvalidAudienceError: If ``aud`` is present and does not match.
    """
    policies = options.policies
    skew = options.effective_skew
    now_skewed = now + skew

    nbf = _numeric_claim(claims, "nbf") if policies.nbf else None
    iat = _numeric_claim(claims, "iat") if policies.iat else None
    exp = _numeric_claim(claims, "exp") if policies.exp else None

    if policies.nbf and nbf:
        if nbf > now_skewed:
            raise PolicyViolationError(f"JWT not valid before nbf: {nbf}")
    elif policies.iat and iat and iat > now_skewed:
        raise PolicyViolationError(f"JWT not valid yet (issued in the future) iat: {iat}")

    if policies.exp and exp and exp <= now - skew:
        raise PolicyViolationError(f"JWT has expired: exp: {exp} < now: {now}")

    aud = claims.get("aud")
    if policies.aud and aud:
        if not options.audience and not options.callback_url:
            raise InvalidAudienceError(
                "JWT audience is required but your app address has not been configured"
            )
        audiences = aud if isinstance(aud, list) else [aud]
        accepted = {a for a in (options.audience, options.callback_url) if a}
        if not any(item in accepted for item in audiences if isinstance(item, str)):
            raise InvalidAudienceError("JWT audience does not match your DID or callback url")


async def _first_matching(ctx: ProofContext, authenticators: Sequence[VerificationMethod]) -> VerificationMethod:
    last = len(authenticators) - 1
    for index, authenticator in enumerate(authenticators):
        try:
            return await verify_proof(ctx, authenticator)
        except InvalidSignatureError:
            logger.debug("jwt.candidate.rejected", candidate=authenticator.id)
            if index == last:
                raise
    raise InvalidSignatureError(
        "JWT not valid. issuer DID document does not contain a verificationMethod that matches the signature."
    )


async def _verify_jwt(
    jwt: str,
    options: JWTVerifyOptions,
    verifier: JWTVerifier | None,
    depth: int,
) -> VerificationResult:
    if options.resolver is None:
        raise InvalidArgumentError("No DID resolver has been configured")

    envelope = decode_single_jwt(jwt)
    alg = envelope.header.get("alg")
    if not alg or not isinstance(alg, str):
        raise InvalidEnvelopeError("JWT header is missing alg")

    did_url = subject_did_url(envelope, options.did_authenticator)
    parsed = parse_did(did_url)
    if parsed is None:
        raise InvalidEnvelopeError(f"{did_url} is not a valid DID")

    did_authenticator = options.did_authenticator
    if did_authenticator is None:
        did_authenticator = await resolve_authenticator(
            options.resolver, alg, did_url, options.effective_proof_purpose, verifier
        )
        # nested conditional checks reuse the resolved document
        options = merge_options(options, did_authenticator=did_authenticator)

    ctx = ProofContext(
        jwt=jwt,
        envelope=envelope,
        options=options,
        verifier=verifier,
        verify_nested=_verify_jwt,
        depth=depth,
    )

    if parsed.did != did_url:
        authenticator = next((a for a in did_authenticator.authenticators if a.id == did_url), None)
        if authenticator is None:
            raise InvalidEnvelopeError(f"No authenticator found for did URL {did_url}")
        signer = await verify_proof(ctx, authenticator)
    else:
        signer = await _first_matching(ctx, did_authenticator.authenticators)

    layers = unwrap_layers(envelope, options.max_nesting_depth)
    now = options.policies.now if options.policies.now is not None else int(time.time())
    for layer in layers:
        check_policies(layer.claims, options, now)

    logger.info("jwt.verified", issuer=did_authenticator.issuer, signer=signer.id, layers=len(layers))
    return VerificationResult(
        verified=True,
        claims=layers[-1].claims,
        did_resolution_result=did_authenticator.did_resolution_result,
        issuer=did_authenticator.issuer,
        signer=signer,
        jwt=jwt,
        policies=options.policies,
    )


async def verify_jwt(
    jwt: str,
    options: JWTVerifyOptions,
    verifier: JWTVerifier | None = None,
) -> VerificationResult:
    """Verify a DID-signed JWT.

    Args:
        jwt: The compact JWT.
        options: Resolver, audience, proof purpose and policies.
        verifier: Custom verifier; defaults to the software verifier.

    Returns:
        The verification result; every failure raises a typed error.

    Raises:
        InvalidArgumentError: If no resolver is configured.
        MalformedEnvelopeError: If the token cannot be parsed.
        InvalidEnvelopeError: If no issuer DID can be determined or nested
            layers disagree on the issuer.
        ResolutionError: If the issuer DID does not resolve.
        NoSuitableKeysError: If the DID document has no usable keys.
        InvalidSignatureError: If no key validates the signature.
        PolicyViolationError: If ``nbf``, ``iat`` or ``exp`` checks fail.
        InvalidAudienceError: If the ``aud`` check fails.
    """
    return await _verify_jwt(jwt, options, verifier, 0)
