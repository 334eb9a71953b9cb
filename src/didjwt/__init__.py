"""
didjwt - create and verify JWTs signed by DIDs.

Supports:
- ES256, ES256K, ES256K-R (recoverable) and EdDSA signatures
- Keys as JWK, multibase/multikey, hex, base58, or blockchain accounts (CAIP-10)
- Nested multi-signature JWTs and ConditionalProof2022 authenticators
- OpenID self-issued and SIOP issuer conventions
- Pluggable DID resolvers (in-memory and universal resolver over HTTP)
"""

from didjwt.authenticators import resolve_authenticator
from didjwt.codec import Envelope, decode_jws, decode_jwt
from didjwt.did_resolver import (
    DIDDocument,
    DIDResolutionResult,
    StaticResolver,
    UniversalResolver,
    VerificationMethod,
    normalize_resolution,
    parse_did,
)
from didjwt.errors import DIDJWTError
from didjwt.jws import create_jws, verify_jws, verify_jwt_decoded
from didjwt.jwt import (
    VerificationResult,
    create_jwt,
    create_multisignature_jwt,
    verify_jwt,
)
from didjwt.options import (
    Issuer,
    JWTOptions,
    JWTVerifyOptions,
    JWTVerifyPolicies,
    merge_options,
)
from didjwt.signatures import EcdsaSignature
from didjwt.signers import SoftwareSigner, eddsa_signer, es256_signer, es256k_signer
from didjwt.verifiers import SoftwareVerifier

__version__ = "0.1.0"

__all__ = [
    "create_jws",
    "create_jwt",
    "create_multisignature_jwt",
    "decode_jws",
    "decode_jwt",
    "verify_jws",
    "verify_jwt",
    "verify_jwt_decoded",
    "resolve_authenticator",
    "Envelope",
    "VerificationResult",
    "Issuer",
    "JWTOptions",
    "JWTVerifyOptions",
    "JWTVerifyPolicies",
    "merge_options",
    "DIDDocument",
    "DIDResolutionResult",
    "VerificationMethod",
    "StaticResolver",
    "UniversalResolver",
    "normalize_resolution",
    "parse_did",
    "EcdsaSignature",
    "SoftwareSigner",
    "SoftwareVerifier",
    "es256_signer",
    "es256k_signer",
    "eddsa_signer",
    "DIDJWTError",
]
