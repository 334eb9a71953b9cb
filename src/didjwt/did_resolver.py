"""
DID documents and the resolver boundary.

Parses resolved DID documents into typed verification methods and classifies
whatever a resolver returns (a W3C DID resolution result or a bare legacy
document) exactly once into a :class:`DIDResolutionResult`.
https://www.w3.org/TR/did-core/
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping, Protocol, Union
from urllib.parse import quote

import httpx

from didjwt.log import get_logger
from didjwt.protocols import maybe_await

logger = get_logger(__name__)

DID_JSON = "application/did+json"
DID_RESOLUTION_ACCEPT = 'application/ld+json;profile="https://w3id.org/did-resolution"'

PROOF_PURPOSES = (
    "authentication",
    "assertionMethod",
    "capabilityDelegation",
    "capabilityInvocation",
)

DID_URL_PATTERN = re.compile(
    r"^(?P<did>did:(?P<method>[a-z0-9]+):(?P<id>(?:[a-zA-Z0-9._\-:]|%[0-9a-fA-F]{2})+))"
    r"(?P<path>/[^?#\s]*)?"
    r"(?:\?(?P<query>[^#\s]*))?"
    r"(?:#(?P<fragment>\S*))?$"
)


@dataclass(frozen=True)
class ParsedDID:
    """Components of a DID URL."""

    did: str
    did_url: str
    method: str
    id: str
    path: str | None = None
    query: str | None = None
    fragment: str | None = None


def parse_did(did_url: str) -> ParsedDID | None:
    """Split a DID URL into its components, or return None if it is not a DID."""
    if not did_url:
        return None
    match = DID_URL_PATTERN.fullmatch(did_url)
    if match is None:
        return None
    return ParsedDID(
        did=match.group("did"),
        did_url=did_url,
        method=match.group("method"),
        id=match.group("id"),
        path=match.group("path"),
        query=match.group("query"),
        fragment=match.group("fragment"),
    )


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _int_field(data: Mapping[str, Any], key: str, default: int | None = None) -> int | None:
    if key not in data:
        return default
    value = data[key]
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


@dataclass(frozen=True)
class PublicKeyJWK:
    """Public key in JWK format (EC or OKP)."""

    kty: str
    crv: str
    x: str
    y: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PublicKeyJWK:
        """Create PublicKeyJWK from a JWK dictionary."""
        y = data.get("y")
        return cls(
            kty=_str_field(data, "kty"),
            crv=_str_field(data, "crv"),
            x=_str_field(data, "x"),
            y=y if isinstance(y, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data = {"kty": self.kty, "crv": self.crv, "x": self.x}
        if self.y is not None:
            data["y"] = self.y
        return data


@dataclass(frozen=True)
class WeightedCondition:
    """One weighted entry of a ``conditionWeightedThreshold`` list."""

    condition: VerificationMethod
    weight: int


_KEY_FIELDS = {
    "publicKeyMultibase": "public_key_multibase",
    "publicKeyHex": "public_key_hex",
    "publicKeyBase58": "public_key_base58",
    "blockchainAccountId": "blockchain_account_id",
    "ethereumAddress": "ethereum_address",
    "conditionDelegated": "condition_delegated",
}

_CONDITION_LISTS = {
    "conditionOr": "condition_or",
    "conditionAnd": "condition_and",
    "conditionThreshold": "condition_threshold",
}

_KNOWN_FIELDS = {
    "id",
    "type",
    "controller",
    "publicKeyJwk",
    "threshold",
    "conditionWeightedThreshold",
    *_KEY_FIELDS,
    *_CONDITION_LISTS,
}


def _absolute_id(value: str, base_did: str | None) -> str:
    if base_did and value.startswith("#"):
        return f"{base_did}{value}"
    return value


@dataclass(frozen=True)
class VerificationMethod:
    """DID document verification method.

    At most one key-encoding field is expected per method. Conditional
    (``ConditionalProof2022``) methods carry conditions instead of key material.
    """

    id: str
    type: str
    controller: str = ""
    public_key_jwk: PublicKeyJWK | None = None
    public_key_multibase: str | None = None
    public_key_hex: str | None = None
    public_key_base58: str | None = None
    blockchain_account_id: str | None = None
    ethereum_address: str | None = None
    threshold: int | None = None
    condition_or: tuple[VerificationMethod, ...] = ()
    condition_and: tuple[VerificationMethod, ...] = ()
    condition_threshold: tuple[VerificationMethod, ...] = ()
    condition_weighted_threshold: tuple[WeightedCondition, ...] = ()
    condition_delegated: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_account_based(self) -> bool:
        """True for methods that name an address instead of a public key."""
        return bool(self.ethereum_address or self.blockchain_account_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_did: str | None = None) -> VerificationMethod:
        """Create a VerificationMethod from its JSON form.

        Args:
            data: The verification method object.
            base_did: Document id used to absolutize relative ``#fragment`` ids.
        """
        kwargs: dict[str, Any] = {
            attr: data[key] for key, attr in _KEY_FIELDS.items() if isinstance(data.get(key), str)
        }
        if isinstance(data.get("publicKeyJwk"), Mapping):
            kwargs["public_key_jwk"] = PublicKeyJWK.from_dict(data["publicKeyJwk"])
        threshold = _int_field(data, "threshold")
        if threshold is not None:
            kwargs["threshold"] = threshold
        for key, attr in _CONDITION_LISTS.items():
            items = data.get(key)
            if isinstance(items, list):
                kwargs[attr] = tuple(
                    cls.from_dict(item, base_did) for item in items if isinstance(item, Mapping)
                )
        weighted = data.get("conditionWeightedThreshold")
        if isinstance(weighted, list):
            kwargs["condition_weighted_threshold"] = tuple(
                WeightedCondition(
                    condition=cls.from_dict(item["condition"], base_did),
                    weight=_int_field(item, "weight", 1),
                )
                for item in weighted
                if isinstance(item, Mapping)
                and isinstance(item.get("condition"), Mapping)
                and _int_field(item, "weight", 1) is not None
            )
        controller = data.get("controller", "")
        return cls(
            id=_absolute_id(str(data.get("id", "")), base_did),
            type=str(data.get("type", "")),
            controller=controller if isinstance(controller, str) else "",
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the JSON form used in DID documents."""
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.controller:
            data["controller"] = self.controller
        if self.public_key_jwk is not None:
            data["publicKeyJwk"] = self.public_key_jwk.to_dict()
        for key, attr in _KEY_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        if self.threshold is not None:
            data["threshold"] = self.threshold
        for key, attr in _CONDITION_LISTS.items():
            conditions = getattr(self, attr)
            if conditions:
                data[key] = [c.to_dict() for c in conditions]
        if self.condition_weighted_threshold:
            data["conditionWeightedThreshold"] = [
                {"condition": w.condition.to_dict(), "weight": w.weight}
                for w in self.condition_weighted_threshold
            ]
        data.update(self.extra)
        return data


RelationshipEntry = Union[str, VerificationMethod]


@dataclass(frozen=True)
class DIDDocument:
    """W3C DID Document."""

    id: str
    verification_method: tuple[VerificationMethod, ...] = ()
    public_key: tuple[VerificationMethod, ...] = ()
    relationships: Mapping[str, tuple[RelationshipEntry, ...]] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def all_verification_methods(self) -> tuple[VerificationMethod, ...]:
        """Current ``verificationMethod`` entries followed by legacy ``publicKey`` ones."""
        return self.verification_method + self.public_key

    def get_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Get a verification method by ID."""
        for vm in self.all_verification_methods:
            if vm.id == method_id:
                return vm
        return None

    def has_relationship(self, proof_purpose: str) -> bool:
        return proof_purpose in self.relationships

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DIDDocument:
        """Parse a DID Document from JSON."""
        doc_id = str(data.get("id", ""))
        base = doc_id or None

        def methods(key: str) -> tuple[VerificationMethod, ...]:
            items = data.get(key) or []
            return tuple(
                VerificationMethod.from_dict(item, base) for item in items if isinstance(item, Mapping)
            )

        relationships: dict[str, tuple[RelationshipEntry, ...]] = {}
        for purpose in PROOF_PURPOSES:
            if purpose in data:
                relationships[purpose] = _parse_verification_relationship(data.get(purpose) or [], base)

        return cls(
            id=doc_id,
            verification_method=methods("verificationMethod"),
            public_key=methods("publicKey"),
            relationships=relationships,
            raw=dict(data),
        )


def _parse_verification_relationship(
    items: list[Any], base_did: str | None
) -> tuple[RelationshipEntry, ...]:
    """Parse a verification relationship array.

    Items can be reference strings, embedded methods, or the legacy
    ``{"publicKey": id}`` wrapper, which is reduced to its reference.
    """
    result: list[RelationshipEntry] = []
    for item in items:
        if isinstance(item, str):
            result.append(_absolute_id(item, base_did))
        elif isinstance(item, Mapping):
            if isinstance(item.get("publicKey"), str):
                result.append(_absolute_id(item["publicKey"], base_did))
            elif "id" in item:
                result.append(VerificationMethod.from_dict(item, base_did))
    return tuple(result)


@dataclass(frozen=True)
class DIDResolutionResult:
    """A resolution result: the document (if any) plus resolution metadata."""

    did_document: DIDDocument | None
    did_resolution_metadata: Mapping[str, Any] = field(default_factory=dict)
    did_document_metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> str | None:
        return self.did_resolution_metadata.get("error")

    @property
    def error_message(self) -> str:
        return str(self.did_resolution_metadata.get("message") or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "didDocument": dict(self.did_document.raw) if self.did_document else None,
            "didResolutionMetadata": dict(self.did_resolution_metadata),
            "didDocumentMetadata": dict(self.did_document_metadata),
        }


@dataclass(frozen=True)
class ResolutionResult:
    """Resolver output in the W3C resolution-result shape."""

    data: Mapping[str, Any]


@dataclass(frozen=True)
class LegacyDocument:
    """Resolver output that is a bare DID document."""

    data: Mapping[str, Any]


def classify_resolver_output(raw: Mapping[str, Any]) -> ResolutionResult | LegacyDocument:
    """Tag raw resolver output by the presence of a ``didDocument`` field."""
    if "didDocument" in raw:
        return ResolutionResult(raw)
    return LegacyDocument(raw)


def normalize_resolution(raw: Any) -> DIDResolutionResult:
    """Convert whatever a resolver returned into a :class:`DIDResolutionResult`."""
    if isinstance(raw, DIDResolutionResult):
        return raw
    if isinstance(raw, DIDDocument):
        return DIDResolutionResult(did_document=raw, did_resolution_metadata={"contentType": DID_JSON})
    if not isinstance(raw, Mapping):
        return DIDResolutionResult(
            did_document=None,
            did_resolution_metadata={"error": "invalidResult", "message": "resolver returned no result"},
        )

    tagged = classify_resolver_output(raw)
    if isinstance(tagged, LegacyDocument):
        return DIDResolutionResult(
            did_document=DIDDocument.from_dict(tagged.data),
            did_resolution_metadata={"contentType": DID_JSON},
        )
    document = tagged.data.get("didDocument")
    return DIDResolutionResult(
        did_document=DIDDocument.from_dict(document) if isinstance(document, Mapping) else None,
        did_resolution_metadata=tagged.data.get("didResolutionMetadata") or {},
        did_document_metadata=tagged.data.get("didDocumentMetadata") or {},
    )


class Resolver(Protocol):
    """Anything that can resolve a DID to a resolution result or bare document."""

    def resolve(
        self, did: str, options: Mapping[str, Any] | None = None
    ) -> Any | Awaitable[Any]: ...


async def resolve_did(resolver: Resolver, did: str) -> DIDResolutionResult:
    """Call ``resolver`` (sync or async) and normalize its output."""
    raw = await maybe_await(resolver.resolve(did, {"accept": DID_JSON}))
    return normalize_resolution(raw)


class StaticResolver:
    """Resolver over an in-memory set of DID documents."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._documents: dict[str, Mapping[str, Any]] = dict(documents or {})

    def add(self, document: Mapping[str, Any]) -> None:
        """Register a document under its ``id``."""
        self._documents[document["id"]] = document

    def resolve(self, did: str, options: Mapping[str, Any] | None = None) -> dict[str, Any]:
        parsed = parse_did(did)
        key = parsed.did if parsed else did
        document = self._documents.get(key)
        if document is None:
            return {
                "didDocument": None,
                "didResolutionMetadata": {"error": "notFound", "message": f"{key} is not known"},
                "didDocumentMetadata": {},
            }
        return {
            "didDocument": document,
            "didResolutionMetadata": {"contentType": DID_JSON},
            "didDocumentMetadata": {},
        }


class UniversalResolver:
    """Method-agnostic resolver backed by a DID resolution HTTP endpoint."""

    def __init__(
        self,
        base_url: str = "https://dev.uniresolver.io",
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the resolver.

        Args:
            base_url: Root URL of the resolution service.
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._cache: dict[str, dict[str, Any]] = {}

    def _did_to_url(self, did: str) -> str:
        """Build the resolution URL for a DID.

        did:example:123 -> {base_url}/1.0/identifiers/did:example:123
        """
        return f"{self.base_url}/1.0/identifiers/{quote(did, safe=':')}"

    @staticmethod
    def _error_result(error: str, message: str) -> dict[str, Any]:
        return {
            "didDocument": None,
            "didResolutionMetadata": {"error": error, "message": message},
            "didDocumentMetadata": {},
        }

    async def resolve(
        self,
        did: str,
        options: Mapping[str, Any] | None = None,
        use_cache: bool = True,
    ) -> dict[str, Any]:
        """Resolve a DID through the HTTP endpoint.

        Transport failures are reported as resolution results with an
        ``error`` entry in ``didResolutionMetadata`` rather than raised.
        """
        parsed = parse_did(did)
        base_did = parsed.did if parsed else did

        if use_cache and base_did in self._cache:
            return self._cache[base_did]

        url = self._did_to_url(base_did)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = await client.get(
                    url,
                    headers={"Accept": f"{DID_RESOLUTION_ACCEPT}, {DID_JSON}"},
                )
                if response.status_code == 404:
                    return self._error_result("notFound", f"{base_did} was not found")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("did.resolution.failed", did=base_did, status=e.response.status_code)
            return self._error_result(
                "internalError", f"HTTP error resolving {base_did}: {e.response.status_code}"
            )
        except httpx.RequestError as e:
            logger.warning("did.resolution.failed", did=base_did, error=str(e))
            return self._error_result("internalError", f"Network error resolving {base_did}: {e}")
        except ValueError:
            return self._error_result("invalidDidDocument", f"Invalid JSON returned for {base_did}")

        if not isinstance(data, dict):
            return self._error_result("invalidDidDocument", f"Invalid resolution result for {base_did}")

        if use_cache and not (data.get("didResolutionMetadata") or {}).get("error"):
            self._cache[base_did] = data
        return data

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()
