"""
Error taxonomy for DID-signed JWT issuance and verification.

Every failure raised by this package derives from :class:`DIDJWTError`.
The string form of an error is ``"<code>: <message>"`` so callers that only
see the text can still branch on the error kind.
"""

from __future__ import annotations

from typing import Any


class DIDJWTError(Exception):
    """Base exception for all didjwt errors.

    Attributes:
        code: Stable machine-readable error code.
        message: Human-readable description.
        details: Optional additional context.
    """

    code = "unknown_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{self.code}: {message}")
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(DIDJWTError):
    """Raised when a caller passes an unusable argument or configuration."""

    code = "invalid_argument"


class InvalidEnvelopeError(DIDJWTError):
    """Raised when a JWT violates a semantic rule.

    Examples are a missing issuer, a nested envelope whose ``iss`` differs
    from its wrapper, or a claim required by an issuer convention.
    """

    code = "invalid_jwt"


class MalformedEnvelopeError(InvalidEnvelopeError):
    """Raised when the compact serialization itself cannot be parsed."""

    code = "malformed_jwt"


class UnsupportedKeyEncodingError(DIDJWTError):
    """Raised when no public key bytes can be extracted from a verification method."""

    code = "unsupported_key_encoding"


class UnsupportedAlgorithmError(DIDJWTError):
    """Raised when an algorithm is not in the signer or verifier dispatch table."""

    code = "not_supported"


class ResolutionError(DIDJWTError):
    """Raised when the resolver returns an error or an empty DID document."""

    code = "resolver_error"


class NoSuitableKeysError(DIDJWTError):
    """Raised when no verification method survives purpose and type filtering."""

    code = "no_suitable_keys"


class InvalidSignatureError(DIDJWTError):
    """Raised when no candidate verification method validates the signature."""

    code = "invalid_signature"


class InvalidAudienceError(DIDJWTError):
    """Raised when the ``aud`` claim does not match the configured audience."""

    code = "invalid_audience"


class PolicyViolationError(DIDJWTError):
    """Raised when a temporal claim (``nbf``, ``iat``, ``exp``) fails its check."""

    code = "policy_violation"


class InvalidKeyLengthError(DIDJWTError):
    """Raised when a private key does not have the curve's expected length."""

    code = "bad_key"


class RecoveryUnavailableError(DIDJWTError):
    """Raised when ES256K-R is requested but the signer yields no recovery bit."""

    code = "not_supported"
