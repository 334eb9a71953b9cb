"""
Compact JWS/JWT codec.

Frames and parses the three-part ``header.payload.signature`` serialization
(RFC 7515 section 7.1) and unwraps nested JWTs (``cty: "JWT"``).
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any

import jcs

from didjwt.errors import InvalidEnvelopeError, MalformedEnvelopeError

JWS_PATTERN = re.compile(r"^([a-zA-Z0-9_-]+)\.([a-zA-Z0-9_-]+)\.([a-zA-Z0-9_-]+)$")

MAX_NESTING_DEPTH = 10


def base64url_encode(data: bytes | str) -> str:
    """Encode bytes (or a UTF-8 string) as unpadded base64url."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(data: str) -> bytes:
    """Decode base64url without padding.

    Args:
        data: Base64url encoded string.

    Returns:
        Decoded bytes.

    Raises:
        ValueError: If the input is not valid base64url.
    """
    # Add padding if needed
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    try:
        return base64.urlsafe_b64decode(data.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64url data: {e}") from e


def encode_section(data: Any, canonicalize: bool = False) -> str:
    """Serialize a header or payload section to base64url JSON.

    Args:
        data: JSON-serializable section.
        canonicalize: Use RFC 8785 canonical JSON instead of compact JSON.
    """
    if canonicalize:
        return base64url_encode(jcs.canonicalize(data))
    return base64url_encode(json.dumps(data, separators=(",", ":"), ensure_ascii=False))


def encode_signing_input(
    header: dict[str, Any],
    payload: dict[str, Any] | str,
    canonicalize: bool = False,
) -> str:
    """Build ``base64url(header) + "." + base64url(payload)``.

    A string payload is taken as already encoded.
    """
    encoded_payload = payload if isinstance(payload, str) else encode_section(payload, canonicalize)
    return f"{encode_section(header, canonicalize)}.{encoded_payload}"


@dataclass(frozen=True)
class Envelope:
    """A decoded compact envelope.

    ``payload`` is the parsed claims mapping for JWTs and the still-encoded
    payload segment for bare JWS. ``signing_input`` is always the exact
    ``header.payload`` text from the wire.
    """

    header: dict[str, Any]
    payload: dict[str, Any] | str
    signature: str
    signing_input: str

    @property
    def claims(self) -> dict[str, Any]:
        if not isinstance(self.payload, dict):
            raise InvalidEnvelopeError("JWS payload is not a claims object")
        return self.payload

    @property
    def is_nested(self) -> bool:
        return self.header.get("cty") == "JWT"

    @property
    def signature_bytes(self) -> bytes:
        return base64url_decode(self.signature)


def _decode_json_section(segment: str, name: str) -> Any:
    try:
        return json.loads(base64url_decode(segment).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedEnvelopeError(f"Unable to decode JWT {name}: {e}") from e


def decode_jws(jws: str) -> Envelope:
    """Split a compact JWS into its parts without touching the payload.

    Raises:
        MalformedEnvelopeError: If the string is not three base64url segments
            or the header is not a JSON object.
    """
    if not isinstance(jws, str):
        raise MalformedEnvelopeError("JWS must be a string")
    match = JWS_PATTERN.fullmatch(jws)
    if match is None:
        raise MalformedEnvelopeError("Incorrect format JWS")
    encoded_header, encoded_payload, signature = match.groups()
    header = _decode_json_section(encoded_header, "header")
    if not isinstance(header, dict):
        raise MalformedEnvelopeError("JWT header is not a JSON object")
    return Envelope(
        header=header,
        payload=encoded_payload,
        signature=signature,
        signing_input=f"{encoded_header}.{encoded_payload}",
    )


def decode_single_jwt(jwt: str) -> Envelope:
    """Decode one layer of a JWT, parsing the payload as claims."""
    if not jwt:
        raise MalformedEnvelopeError("no JWT passed into decode_jwt")
    jws = decode_jws(jwt)
    payload = _decode_json_section(jws.payload, "payload")
    if not isinstance(payload, dict):
        raise MalformedEnvelopeError("JWT payload is not a JSON object")
    return Envelope(
        header=jws.header,
        payload=payload,
        signature=jws.signature,
        signing_input=jws.signing_input,
    )


def inner_jwt(envelope: Envelope) -> Envelope:
    """Decode the envelope carried in ``payload.jwt`` of a nested JWT.

    Raises:
        InvalidEnvelopeError: If the inner token is missing or its ``iss``
            differs from the wrapping layer.
    """
    nested = envelope.claims.get("jwt")
    if not isinstance(nested, str):
        raise InvalidEnvelopeError("nested JWT is missing the jwt claim")
    inner = decode_single_jwt(nested)
    if inner.claims.get("iss") != envelope.claims.get("iss"):
        raise InvalidEnvelopeError("multiple issuers")
    return inner


def unwrap_layers(envelope: Envelope, max_depth: int = MAX_NESTING_DEPTH) -> list[Envelope]:
    """Return every layer of a (possibly nested) JWT, outermost first."""
    layers = [envelope]
    current = envelope
    while current.is_nested:
        if len(layers) > max_depth:
            raise InvalidEnvelopeError(f"nested JWT exceeds maximum depth of {max_depth}")
        current = inner_jwt(current)
        layers.append(current)
    return layers


def decode_jwt(jwt: str, recurse: bool = True, max_depth: int = MAX_NESTING_DEPTH) -> Envelope:
    """Decode a JWT and return the envelope.

    Args:
        jwt: Compact serialized JWT.
        recurse: Unwrap nested JWTs and return the innermost one.
        max_depth: Maximum number of nested layers below the outer one.

    Returns:
        The decoded (innermost, when recursing) envelope.

    Raises:
        MalformedEnvelopeError: On any framing, base64url or JSON failure.
        InvalidEnvelopeError: If nested layers disagree on the issuer.
    """
    envelope = decode_single_jwt(jwt)
    if recurse and envelope.is_nested:
        return unwrap_layers(envelope, max_depth)[-1]
    return envelope
