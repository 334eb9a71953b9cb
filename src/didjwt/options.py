"""
Issuance and verification options.

Every option has a documented default. Options objects are frozen; derive
variants with :func:`merge_options` instead of mutating a shared default.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Sequence, TypeVar, Union

from didjwt.codec import MAX_NESTING_DEPTH
from didjwt.errors import InvalidArgumentError

if TYPE_CHECKING:
    from didjwt.did_resolver import DIDResolutionResult, Resolver, VerificationMethod
    from didjwt.protocols import JWTSigner, SignerFunction

# default clock skew allowance, in seconds
NBF_SKEW = 300

# maximum nesting of conditional proof authenticators
MAX_CONDITION_DEPTH = 8

Options = TypeVar("Options", "JWTVerifyPolicies", "JWTVerifyOptions", "JWTOptions")


@dataclass(frozen=True)
class JWTVerifyPolicies:
    """Which claim checks run after a signature matches.

    Attributes:
        now: Reference time in seconds. None means the current time.
        nbf: Check ``nbf`` (and ``iat`` when ``nbf`` is absent).
        iat: Check ``iat`` when there is no ``nbf``.
        exp: Check ``exp``.
        aud: Check ``aud`` against the configured audience.
    """

    now: int | None = None
    nbf: bool = True
    iat: bool = True
    exp: bool = True
    aud: bool = True

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class DIDAuthenticator:
    """Resolved candidate keys for an issuer, reusable across nested calls."""

    authenticators: tuple[VerificationMethod, ...]
    issuer: str
    did_resolution_result: DIDResolutionResult


@dataclass(frozen=True)
class JWTVerifyOptions:
    """Options for :func:`didjwt.jwt.verify_jwt`.

    Attributes:
        resolver: DID resolver used to look up the issuer's document. Required.
        audience: Expected ``aud`` value (the verifier's own DID).
        callback_url: Accepted ``aud`` value for SIOP-style responses.
        skew_time: Clock skew allowance in seconds; negative means the default.
        proof_purpose: Verification relationship the signing key must belong to.
        auth: Legacy switch; True means ``proof_purpose="authentication"``.
        policies: Claim checks to run.
        did_authenticator: Pre-resolved authenticators; skips resolution.
        max_nesting_depth: Maximum nested JWT layers below the outer one.
        max_condition_depth: Maximum nesting of conditional proof methods.
    """

    resolver: Resolver | None = None
    audience: str | None = None
    callback_url: str | None = None
    skew_time: int = NBF_SKEW
    proof_purpose: str | None = None
    auth: bool | None = None
    policies: JWTVerifyPolicies = field(default_factory=JWTVerifyPolicies)
    did_authenticator: DIDAuthenticator | None = None
    max_nesting_depth: int = MAX_NESTING_DEPTH
    max_condition_depth: int = MAX_CONDITION_DEPTH

    @property
    def effective_skew(self) -> int:
        return self.skew_time if self.skew_time is not None and self.skew_time >= 0 else NBF_SKEW

    @property
    def effective_proof_purpose(self) -> str | None:
        """The proof purpose after applying the legacy ``auth`` switch."""
        if self.auth is True:
            return "authentication"
        if self.auth is False:
            return None
        return self.proof_purpose


@dataclass(frozen=True)
class JWTOptions:
    """Options for :func:`didjwt.jwt.create_jwt`.

    Attributes:
        issuer: The ``iss`` claim, usually a DID. Required.
        signer: Signer object or bare signing function. Required.
        alg: JWS algorithm; the header value wins when both are set.
        expires_in: Seconds from ``nbf`` (or ``iat``) until ``exp``.
        canonicalize: Serialize header and payload as RFC 8785 JSON.
    """

    issuer: str | None = None
    signer: JWTSigner | SignerFunction | None = None
    alg: str | None = None
    expires_in: int | float | None = None
    canonicalize: bool = False


@dataclass(frozen=True)
class Issuer:
    """One signer of a multi-signature JWT."""

    issuer: str
    signer: JWTSigner | SignerFunction
    alg: str | None = None


PoliciesLike = Union[JWTVerifyPolicies, Mapping[str, Any]]


def _coerce_policies(value: PoliciesLike, base: JWTVerifyPolicies) -> JWTVerifyPolicies:
    if isinstance(value, JWTVerifyPolicies):
        return value
    if isinstance(value, Mapping):
        return merge_options(base, **value)
    raise InvalidArgumentError(f"policies must be a mapping or JWTVerifyPolicies, got {type(value).__name__}")


def merge_options(base: Options, **overrides: Any) -> Options:
    """Return a copy of ``base`` with ``overrides`` applied.

    Overrides set to None keep the base value. ``policies`` may be given as
    a mapping, which is merged into the base policies.

    Raises:
        InvalidArgumentError: If an override names an unknown option.
    """
    names = {f.name for f in dataclasses.fields(base)}
    unknown = sorted(set(overrides) - names)
    if unknown:
        raise InvalidArgumentError(f"unknown option(s) for {type(base).__name__}: {', '.join(unknown)}")

    changes = {k: v for k, v in overrides.items() if v is not None}
    if "policies" in changes:
        changes["policies"] = _coerce_policies(changes["policies"], getattr(base, "policies"))
    return dataclasses.replace(base, **changes)


def verify_options(
    resolver: Resolver | None = None,
    policies: PoliciesLike | None = None,
    **overrides: Any,
) -> JWTVerifyOptions:
    """Build :class:`JWTVerifyOptions` from keyword arguments."""
    return merge_options(JWTVerifyOptions(), resolver=resolver, policies=policies, **overrides)


def issuers_from(items: Sequence[Issuer | Mapping[str, Any]]) -> list[Issuer]:
    """Accept :class:`Issuer` objects or ``{issuer, signer, alg}`` mappings."""
    result = []
    for item in items:
        if isinstance(item, Issuer):
            result.append(item)
        else:
            result.append(Issuer(issuer=item["issuer"], signer=item["signer"], alg=item.get("alg")))
    return result
