"""Capability interfaces for pluggable signers and verifiers."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Sequence, TypeVar, Union

if TYPE_CHECKING:
    from didjwt.did_resolver import VerificationMethod
    from didjwt.signatures import EcdsaSignature

T = TypeVar("T")

SignatureResult = Union["EcdsaSignature", str]

# A bare signing function: returns an ECDSA signature object or a compact
# base64url string, possibly through an awaitable.
SignerFunction = Callable[[Union[str, bytes]], Union[SignatureResult, Awaitable[SignatureResult]]]


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class JWTSigner(Protocol):
    """Signs a JWS signing input with a named algorithm."""

    def sign(self, data: str | bytes, algorithm: str) -> str | Awaitable[str]: ...


class JWTVerifier(Protocol):
    """Verifies a signature against candidate verification methods.

    ``verify`` returns the first matching method (possibly through an
    awaitable) and raises ``InvalidSignatureError`` when none match.
    """

    def verify(
        self,
        alg: str,
        data: str,
        signature: str,
        authenticators: Sequence[VerificationMethod],
    ) -> VerificationMethod | Awaitable[VerificationMethod]: ...

    def supported_verification_methods(self, alg: str | None = None) -> list[str]: ...


def is_signer(obj: Any) -> bool:
    """True if ``obj`` exposes a ``sign`` method rather than being a bare function."""
    return callable(getattr(obj, "sign", None))
