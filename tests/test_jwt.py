"""Tests for JWT issuance and verification."""

import json
import time

import base58
import pytest
from coincurve import PrivateKey

from didjwt.codec import base64url_decode, decode_jwt, decode_single_jwt, encode_signing_input
from didjwt.did_resolver import StaticResolver
from didjwt.errors import (
    InvalidArgumentError,
    InvalidAudienceError,
    InvalidEnvelopeError,
    InvalidSignatureError,
    MalformedEnvelopeError,
    NoSuitableKeysError,
    PolicyViolationError,
    ResolutionError,
    UnsupportedAlgorithmError,
)
from didjwt.jws import create_jws
from didjwt.jwt import (
    SELF_ISSUED_V0_1,
    SELF_ISSUED_V2,
    create_jwt,
    create_multisignature_jwt,
    verify_jwt,
)
from didjwt.options import Issuer, JWTOptions, JWTVerifyOptions, JWTVerifyPolicies
from didjwt.signers import SoftwareSigner, eddsa_signer, es256_signer, es256k_signer

DID = "did:example:alice"
ADDRESS = "0xf3beac30c498d9e26865f34fcaa57dbb935b0d74"
NOW = 1_700_000_000


def public_hex(private_key: bytes) -> str:
    return PrivateKey(private_key).public_key.format(compressed=False).hex()


def secp256k1_method(fragment: str, private_key: bytes) -> dict:
    return {
        "id": f"{DID}#{fragment}",
        "type": "EcdsaSecp256k1VerificationKey2019",
        "controller": DID,
        "publicKeyHex": public_hex(private_key),
    }


@pytest.fixture
def did_document(key_a, key_b):
    """Alice's document: two secp256k1 keys, the second one for authentication only."""
    return {
        "id": DID,
        "verificationMethod": [secp256k1_method("key-1", key_a), secp256k1_method("key-2", key_b)],
        "authentication": [f"{DID}#key-2"],
        "capabilityDelegation": [],
    }


@pytest.fixture
def resolver(did_document):
    return StaticResolver({DID: did_document})


@pytest.fixture
def options(resolver):
    return JWTVerifyOptions(resolver=resolver)


def fixed_options(resolver, **kwargs) -> JWTVerifyOptions:
    return JWTVerifyOptions(resolver=resolver, policies=JWTVerifyPolicies(now=NOW), **kwargs)


async def sign(private_key: bytes, payload: dict, **kwargs) -> str:
    return await create_jwt(payload, JWTOptions(issuer=DID, signer=es256k_signer(private_key), **kwargs))


class TestCreateJWT:
    """Tests for create_jwt."""

    @pytest.mark.asyncio
    async def test_header_and_claims(self, key_a):
        """Test default header fields and issuer claims."""
        before = int(time.time())
        jwt = await sign(key_a, {"hello": "world", "iss": "did:example:ignored"})
        envelope = decode_jwt(jwt)

        assert envelope.header == {"typ": "JWT", "alg": "ES256K"}
        assert envelope.claims["iss"] == DID
        assert envelope.claims["hello"] == "world"
        assert envelope.claims["iat"] >= before
        assert "exp" not in envelope.claims

    @pytest.mark.asyncio
    async def test_expires_in(self, key_a):
        """Test that exp is derived from iat."""
        envelope = decode_jwt(await sign(key_a, {}, expires_in=100.7))
        assert envelope.claims["exp"] == envelope.claims["iat"] + 100

    @pytest.mark.asyncio
    async def test_expires_in_from_nbf(self, key_a):
        """Test that exp is derived from nbf when present."""
        envelope = decode_jwt(await sign(key_a, {"nbf": NOW}, expires_in=100))
        assert envelope.claims["exp"] == NOW + 100

    @pytest.mark.asyncio
    async def test_payload_overrides_timestamps(self, key_a):
        """Test that payload values win over generated ones."""
        envelope = decode_jwt(await sign(key_a, {"iat": 5, "exp": 10}, expires_in=100))

        assert envelope.claims["iat"] == 5
        assert envelope.claims["exp"] == 10

    @pytest.mark.asyncio
    async def test_none_iat_is_dropped(self, key_a):
        """Test that an explicit None removes iat."""
        envelope = decode_jwt(await sign(key_a, {"iat": None}))
        assert "iat" not in envelope.claims

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", ["100", True, [1]])
    async def test_expires_in_not_a_number(self, key_a, expires_in):
        """Test that non-numeric expires_in is rejected."""
        with pytest.raises(InvalidArgumentError, match="not a number"):
            await sign(key_a, {}, expires_in=expires_in)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("nbf", ["now", True, [NOW]])
    async def test_nbf_not_a_number(self, key_a, nbf):
        """Test that a non-numeric nbf is rejected when computing exp."""
        with pytest.raises(InvalidArgumentError, match="nbf is not a number"):
            await sign(key_a, {"nbf": nbf}, expires_in=100)

    @pytest.mark.asyncio
    async def test_missing_signer(self):
        """Test that a signer is required."""
        with pytest.raises(InvalidArgumentError, match="Signer"):
            await create_jwt({}, JWTOptions(issuer=DID))

    @pytest.mark.asyncio
    async def test_missing_issuer(self, key_a):
        """Test that an issuer is required."""
        with pytest.raises(InvalidArgumentError, match="issuing DID"):
            await create_jwt({}, JWTOptions(signer=es256k_signer(key_a)))

    @pytest.mark.asyncio
    async def test_header_alg_wins(self, key_a):
        """Test that a header alg takes precedence over options.alg."""
        signer = SoftwareSigner.from_keys({"ES256K": key_a, "ES256K-R": key_a})
        jwt = await create_jwt({}, JWTOptions(issuer=DID, signer=signer, alg="ES256K"), {"alg": "ES256K-R"})

        assert decode_jwt(jwt).header["alg"] == "ES256K-R"

    @pytest.mark.asyncio
    async def test_canonical_serialization(self, key_a):
        """Test that canonicalize sorts keys in header and payload."""
        jwt = await sign(key_a, {"zeta": 1, "alpha": 2}, canonicalize=True)
        header, payload, _ = jwt.split(".")

        assert base64url_decode(header) == b'{"alg":"ES256K","typ":"JWT"}'
        assert list(json.loads(base64url_decode(payload))) == sorted(json.loads(base64url_decode(payload)))

    @pytest.mark.asyncio
    async def test_unsupported_algorithm(self, key_a):
        """Test a bare signing function with an unknown algorithm."""
        with pytest.raises(UnsupportedAlgorithmError):
            await sign(key_a, {}, alg="HS256")


class TestVerifyJWT:
    """Tests for verify_jwt round trips."""

    @pytest.mark.asyncio
    async def test_es256k(self, key_a, options):
        """Test a basic ES256K round trip."""
        jwt = await sign(key_a, {"hello": "world"})
        result = await verify_jwt(jwt, options)

        assert result.verified
        assert result.payload["hello"] == "world"
        assert result.issuer == DID
        assert result.signer.id == f"{DID}#key-1"
        assert result.did_resolution_result.did_document.id == DID
        assert result.jwt == jwt

    @pytest.mark.asyncio
    async def test_second_key(self, key_b, options):
        """Test that later candidates are tried."""
        result = await verify_jwt(await sign(key_b, {}), options)
        assert result.signer.id == f"{DID}#key-2"

    @pytest.mark.asyncio
    async def test_first_matching_candidate(self, key_a, key_b):
        """Test that the first validating method in document order is reported."""
        doc = {
            "id": DID,
            "verificationMethod": [
                secp256k1_method("key-0", key_b),
                secp256k1_method("key-1", key_a),
                secp256k1_method("key-1-copy", key_a),
            ],
        }
        result = await verify_jwt(await sign(key_a, {}), JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

        assert result.signer.id == f"{DID}#key-1"

    @pytest.mark.asyncio
    async def test_es256k_r_with_ethereum_address(self, key_a):
        """Test ES256K-R against an address-only method."""
        doc = {
            "id": DID,
            "publicKey": [
                {
                    "id": f"{DID}#owner",
                    "type": "EcdsaSecp256k1RecoveryMethod2020",
                    "ethereumAddress": ADDRESS,
                }
            ],
        }
        jwt = await create_jwt(
            {}, JWTOptions(issuer=DID, signer=SoftwareSigner(key_a, "ES256K-R"), alg="ES256K-R")
        )
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

        assert decode_jwt(jwt).signature_bytes[-1] in (0, 1)
        assert result.signer.id == f"{DID}#owner"

    @pytest.mark.asyncio
    async def test_es256k_with_blockchain_account(self, key_a):
        """Test plain ES256K against a CAIP-10 account method."""
        doc = {
            "id": DID,
            "verificationMethod": [
                {
                    "id": f"{DID}#controller",
                    "type": "EcdsaSecp256k1RecoveryMethod2020",
                    "blockchainAccountId": f"eip155:1:{ADDRESS}",
                }
            ],
        }
        result = await verify_jwt(await sign(key_a, {}), JWTVerifyOptions(resolver=StaticResolver({DID: doc})))
        assert result.signer.id == f"{DID}#controller"

    @pytest.mark.asyncio
    async def test_eddsa(self, ed25519_key_pair):
        """Test an EdDSA round trip."""
        seed, public_key = ed25519_key_pair
        doc = {
            "id": DID,
            "verificationMethod": [
                {
                    "id": f"{DID}#ed",
                    "type": "Ed25519VerificationKey2018",
                    "publicKeyBase58": base58.b58encode(public_key).decode(),
                }
            ],
        }
        jwt = await create_jwt({}, JWTOptions(issuer=DID, signer=eddsa_signer(seed), alg="EdDSA"))
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

        assert result.signer.id == f"{DID}#ed"

    @pytest.mark.asyncio
    async def test_es256(self, p256_key_pair):
        """Test an ES256 round trip with a JWK method."""
        private_key, jwk = p256_key_pair
        doc = {
            "id": DID,
            "verificationMethod": [{"id": f"{DID}#p256", "type": "JsonWebKey2020", "publicKeyJwk": jwk}],
        }
        jwt = await create_jwt({}, JWTOptions(issuer=DID, signer=es256_signer(private_key), alg="ES256"))
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

        assert result.signer.id == f"{DID}#p256"

    @pytest.mark.asyncio
    async def test_canonicalized(self, key_a, options):
        """Test that canonical tokens verify like any other."""
        result = await verify_jwt(await sign(key_a, {"b": 1, "a": 2}, canonicalize=True), options)
        assert result.payload["a"] == 2

    @pytest.mark.asyncio
    async def test_async_resolver(self, key_a, did_document):
        """Test a resolver whose resolve method is a coroutine."""

        class AsyncResolver:
            async def resolve(self, did, options=None):
                return {"didDocument": did_document, "didResolutionMetadata": {}, "didDocumentMetadata": {}}

        result = await verify_jwt(await sign(key_a, {}), JWTVerifyOptions(resolver=AsyncResolver()))
        assert result.verified

    @pytest.mark.asyncio
    async def test_to_dict(self, key_a, options):
        """Test that the result serializes to JSON."""
        result = await verify_jwt(await sign(key_a, {"n": 1}), options)
        data = json.loads(json.dumps(result.to_dict()))

        assert data["verified"] is True
        assert data["payload"]["n"] == 1
        assert data["signer"]["id"] == f"{DID}#key-1"
        assert data["didResolutionResult"]["didDocument"]["id"] == DID


class TestVerifyFailures:
    """Tests for verification errors."""

    @pytest.mark.asyncio
    async def test_wrong_key(self, key_c, options):
        """Test a token signed by a key the document does not hold."""
        with pytest.raises(InvalidSignatureError):
            await verify_jwt(await sign(key_c, {}), options)

    @pytest.mark.asyncio
    async def test_tampered_payload(self, key_a, options):
        """Test that a modified payload fails verification."""
        jwt = await sign(key_a, {"admin": False})
        envelope = decode_single_jwt(jwt)
        forged = encode_signing_input(envelope.header, {**envelope.claims, "admin": True})

        with pytest.raises(InvalidSignatureError):
            await verify_jwt(f"{forged}.{envelope.signature}", options)

    @pytest.mark.asyncio
    async def test_missing_resolver(self, key_a):
        """Test that a resolver is required."""
        with pytest.raises(InvalidArgumentError, match="resolver"):
            await verify_jwt(await sign(key_a, {}), JWTVerifyOptions())

    @pytest.mark.asyncio
    async def test_malformed(self, options):
        """Test a token that is not a JWT."""
        with pytest.raises(MalformedEnvelopeError):
            await verify_jwt("not-a-jwt", options)

    @pytest.mark.asyncio
    async def test_unresolvable_issuer(self, key_a):
        """Test an issuer the resolver does not know."""
        with pytest.raises(ResolutionError):
            await verify_jwt(await sign(key_a, {}), JWTVerifyOptions(resolver=StaticResolver()))

    @pytest.mark.asyncio
    async def test_missing_iss(self, key_a, options):
        """Test a token with neither iss nor client_id."""
        jws = await create_jws({"hello": "world"}, es256k_signer(key_a))
        with pytest.raises(InvalidEnvelopeError, match="iss or client_id"):
            await verify_jwt(jws, options)

    @pytest.mark.asyncio
    async def test_iss_not_a_did(self, key_a, options):
        """Test an issuer that is not a DID."""
        jwt = await create_jwt({}, JWTOptions(issuer="https://example.com", signer=es256k_signer(key_a)))
        with pytest.raises(InvalidEnvelopeError, match="not a valid DID"):
            await verify_jwt(jwt, options)

    @pytest.mark.asyncio
    async def test_unsupported_algorithm(self, options):
        """Test a token whose alg has no verifier."""

        class HmacSigner:
            def sign(self, data, algorithm):
                return "c2lnbmF0dXJl"

        jwt = await create_jws({"iss": DID}, HmacSigner(), {"alg": "HS256"})
        with pytest.raises(UnsupportedAlgorithmError):
            await verify_jwt(jwt, options)

    @pytest.mark.asyncio
    async def test_missing_alg(self, key_a, options):
        """Test a header without alg."""
        jwt = await sign(key_a, {})
        envelope = decode_single_jwt(jwt)
        header = {"typ": "JWT"}
        token = f"{encode_signing_input(header, envelope.claims)}.{envelope.signature}"

        with pytest.raises(InvalidEnvelopeError, match="alg"):
            await verify_jwt(token, options)


class TestIssuerConventions:
    """Tests for working out the signing DID."""

    @pytest.mark.asyncio
    async def test_did_url_issuer(self, key_b, resolver):
        """Test that a DID URL issuer pins the verification method."""
        jwt = await create_jwt({}, JWTOptions(issuer=f"{DID}#key-2", signer=es256k_signer(key_b)))
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

        assert result.issuer == f"{DID}#key-2"
        assert result.signer.id == f"{DID}#key-2"

    @pytest.mark.asyncio
    async def test_did_url_issuer_wrong_key(self, key_a, resolver):
        """Test that another key of the same document is not accepted."""
        jwt = await create_jwt({}, JWTOptions(issuer=f"{DID}#key-2", signer=es256k_signer(key_a)))
        with pytest.raises(InvalidSignatureError):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

    @pytest.mark.asyncio
    async def test_did_url_issuer_unknown_fragment(self, key_a, resolver):
        """Test a DID URL naming no method in the document."""
        jwt = await create_jwt({}, JWTOptions(issuer=f"{DID}#key-9", signer=es256k_signer(key_a)))
        with pytest.raises(InvalidEnvelopeError, match="No authenticator found"):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

    @pytest.mark.asyncio
    async def test_self_issued_v2(self, key_a, options):
        """Test that sub names the DID for self-issued v2 tokens."""
        jwt = await create_jwt({"sub": DID}, JWTOptions(issuer=SELF_ISSUED_V2, signer=es256k_signer(key_a)))
        result = await verify_jwt(jwt, options)

        assert result.issuer == DID

    @pytest.mark.asyncio
    async def test_self_issued_v2_sub_jwk(self, key_a, options):
        """Test that the kid DID is used when sub_jwk is present."""
        jwt = await create_jwt(
            {"sub": "thumbprint", "sub_jwk": {"kty": "EC"}},
            JWTOptions(issuer=SELF_ISSUED_V2, signer=es256k_signer(key_a)),
            {"kid": f"{DID}#key-1"},
        )
        result = await verify_jwt(jwt, options)

        assert result.issuer == DID

    @pytest.mark.asyncio
    async def test_self_issued_v2_requires_sub(self, key_a, options):
        """Test that sub is mandatory for self-issued v2."""
        jwt = await create_jwt({}, JWTOptions(issuer=SELF_ISSUED_V2, signer=es256k_signer(key_a)))
        with pytest.raises(InvalidEnvelopeError, match="sub is required"):
            await verify_jwt(jwt, options)

    @pytest.mark.asyncio
    async def test_self_issued_v0_1(self, key_a, options):
        """Test the legacy did claim."""
        jwt = await create_jwt({"did": DID}, JWTOptions(issuer=SELF_ISSUED_V0_1, signer=es256k_signer(key_a)))
        result = await verify_jwt(jwt, options)

        assert result.issuer == DID

    @pytest.mark.asyncio
    async def test_self_issued_v0_1_requires_did(self, key_a, options):
        """Test that did is mandatory for legacy self-issued tokens."""
        jwt = await create_jwt({}, JWTOptions(issuer=SELF_ISSUED_V0_1, signer=es256k_signer(key_a)))
        with pytest.raises(InvalidEnvelopeError, match="did is required"):
            await verify_jwt(jwt, options)

    @pytest.mark.asyncio
    async def test_siop_request(self, key_a, options):
        """Test a SIOP request object identified by client_id."""
        jws = await create_jws(
            {"client_id": DID, "scope": "openid", "redirect_uri": "https://rp.example.com/cb"},
            es256k_signer(key_a),
        )
        result = await verify_jwt(jws, options)

        assert result.issuer == DID


class TestProofPurpose:
    """Tests for relationship filtering during verification."""

    @pytest.mark.asyncio
    async def test_authentication_key(self, key_b, resolver):
        """Test a key listed under authentication."""
        result = await verify_jwt(
            await sign(key_b, {}), JWTVerifyOptions(resolver=resolver, proof_purpose="authentication")
        )
        assert result.signer.id == f"{DID}#key-2"

    @pytest.mark.asyncio
    async def test_key_outside_relationship(self, key_a, resolver):
        """Test that a key not in the relationship is not a candidate."""
        with pytest.raises(InvalidSignatureError):
            await verify_jwt(
                await sign(key_a, {}), JWTVerifyOptions(resolver=resolver, proof_purpose="authentication")
            )

    @pytest.mark.asyncio
    async def test_legacy_auth_flag(self, key_a, resolver):
        """Test that auth=True means the authentication purpose."""
        with pytest.raises(InvalidSignatureError):
            await verify_jwt(await sign(key_a, {}), JWTVerifyOptions(resolver=resolver, auth=True))

    @pytest.mark.asyncio
    async def test_missing_relationship_uses_all_keys(self, key_a, resolver):
        """Test that an undeclared relationship allows every key."""
        result = await verify_jwt(
            await sign(key_a, {}), JWTVerifyOptions(resolver=resolver, proof_purpose="assertionMethod")
        )
        assert result.signer.id == f"{DID}#key-1"

    @pytest.mark.asyncio
    async def test_empty_relationship(self, key_a, resolver):
        """Test a declared but empty relationship."""
        with pytest.raises(NoSuitableKeysError):
            await verify_jwt(
                await sign(key_a, {}), JWTVerifyOptions(resolver=resolver, proof_purpose="capabilityDelegation")
            )


class TestPolicies:
    """Tests for temporal and audience checks."""

    @pytest.mark.asyncio
    async def test_expired_past_skew(self, key_a, resolver):
        """Test that exp older than the skew window fails."""
        jwt = await sign(key_a, {"iat": NOW, "exp": NOW - 301})
        with pytest.raises(PolicyViolationError, match="expired"):
            await verify_jwt(jwt, fixed_options(resolver))

    @pytest.mark.asyncio
    async def test_expired_within_skew(self, key_a, resolver):
        """Test that exp inside the skew window passes."""
        jwt = await sign(key_a, {"iat": NOW, "exp": NOW - 299})
        assert (await verify_jwt(jwt, fixed_options(resolver))).verified

    @pytest.mark.asyncio
    async def test_custom_skew(self, key_a, resolver):
        """Test a zero skew."""
        jwt = await sign(key_a, {"iat": NOW, "exp": NOW})
        with pytest.raises(PolicyViolationError):
            await verify_jwt(jwt, fixed_options(resolver, skew_time=0))

    @pytest.mark.asyncio
    async def test_exp_policy_disabled(self, key_a, resolver):
        """Test that the exp check can be switched off."""
        jwt = await sign(key_a, {"iat": NOW, "exp": NOW - 1000})
        options = JWTVerifyOptions(resolver=resolver, policies=JWTVerifyPolicies(now=NOW, exp=False))

        assert (await verify_jwt(jwt, options)).verified

    @pytest.mark.asyncio
    async def test_nbf_in_future(self, key_a, resolver):
        """Test nbf beyond the skew window."""
        jwt = await sign(key_a, {"iat": NOW, "nbf": NOW + 301})
        with pytest.raises(PolicyViolationError, match="nbf"):
            await verify_jwt(jwt, fixed_options(resolver))

    @pytest.mark.asyncio
    async def test_nbf_within_skew(self, key_a, resolver):
        """Test nbf inside the skew window."""
        jwt = await sign(key_a, {"iat": NOW, "nbf": NOW + 299})
        assert (await verify_jwt(jwt, fixed_options(resolver))).verified

    @pytest.mark.asyncio
    async def test_iat_in_future(self, key_a, resolver):
        """Test iat beyond the skew window when there is no nbf."""
        jwt = await sign(key_a, {"iat": NOW + 400})
        with pytest.raises(PolicyViolationError, match="iat"):
            await verify_jwt(jwt, fixed_options(resolver))

    @pytest.mark.asyncio
    async def test_nbf_overrides_iat(self, key_a, resolver):
        """Test that iat is not checked when nbf is present."""
        jwt = await sign(key_a, {"iat": NOW + 400, "nbf": NOW - 10})
        assert (await verify_jwt(jwt, fixed_options(resolver))).verified

    @pytest.mark.asyncio
    async def test_non_numeric_claim(self, key_a, resolver):
        """Test a timestamp that is not a number."""
        jwt = await sign(key_a, {"iat": NOW, "exp": "tomorrow"})
        with pytest.raises(InvalidEnvelopeError, match="exp"):
            await verify_jwt(jwt, fixed_options(resolver))

    @pytest.mark.asyncio
    async def test_non_numeric_claim_with_policy_disabled(self, key_a, resolver):
        """Test that a claim whose check is switched off is not parsed."""
        jwt = await sign(key_a, {"iat": "yesterday", "exp": "tomorrow"})
        options = JWTVerifyOptions(
            resolver=resolver, policies=JWTVerifyPolicies(now=NOW, exp=False, iat=False)
        )

        assert (await verify_jwt(jwt, options)).verified

    @pytest.mark.asyncio
    async def test_aud_without_configured_audience(self, key_a, resolver):
        """Test that a token with aud requires a configured audience."""
        jwt = await sign(key_a, {"aud": "did:example:bob"})
        with pytest.raises(InvalidAudienceError, match="not been configured"):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

    @pytest.mark.asyncio
    async def test_aud_matches(self, key_a, resolver):
        """Test a matching audience."""
        jwt = await sign(key_a, {"aud": "did:example:bob"})
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver, audience="did:example:bob"))

        assert result.verified

    @pytest.mark.asyncio
    async def test_aud_list_matches_callback(self, key_a, resolver):
        """Test an aud list containing the callback URL."""
        jwt = await sign(key_a, {"aud": ["did:example:carol", "https://app.example.com/cb"]})
        options = JWTVerifyOptions(resolver=resolver, callback_url="https://app.example.com/cb")

        assert (await verify_jwt(jwt, options)).verified

    @pytest.mark.asyncio
    async def test_aud_mismatch(self, key_a, resolver):
        """Test an audience that does not match."""
        jwt = await sign(key_a, {"aud": "did:example:bob"})
        with pytest.raises(InvalidAudienceError, match="does not match"):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver, audience="did:example:carol"))

    @pytest.mark.asyncio
    async def test_aud_policy_disabled(self, key_a, resolver):
        """Test that the aud check can be switched off."""
        jwt = await sign(key_a, {"aud": "did:example:bob"})
        options = JWTVerifyOptions(resolver=resolver, policies=JWTVerifyPolicies(aud=False))

        assert (await verify_jwt(jwt, options)).verified


class TestMultisignature:
    """Tests for nested multi-signature JWTs."""

    @pytest.mark.asyncio
    async def test_layers(self, key_a, key_b):
        """Test the nested structure of a multi-signature JWT."""
        jwt = await create_multisignature_jwt(
            {"hello": "world"},
            [Issuer(DID, es256k_signer(key_a), "ES256K"), {"issuer": DID, "signer": es256k_signer(key_b)}],
        )
        outer = decode_jwt(jwt, recurse=False)

        assert outer.header == {"typ": "JWT", "cty": "JWT", "alg": "ES256K"}
        assert decode_jwt(outer.claims["jwt"]).header == {"typ": "JWT", "alg": "ES256K"}
        assert decode_jwt(jwt).claims["hello"] == "world"

    @pytest.mark.asyncio
    async def test_verify_inner_signer(self, key_a, key_c, did_document):
        """Test that a key matching only the inner layer still verifies."""
        jwt = await create_multisignature_jwt(
            {"hello": "world"}, [Issuer(DID, es256k_signer(key_a)), Issuer(DID, es256k_signer(key_c))]
        )
        doc = {**did_document, "verificationMethod": [secp256k1_method("key-1", key_a)]}
        result = await verify_jwt(jwt, JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

        assert result.signer.id == f"{DID}#key-1"
        assert result.payload["hello"] == "world"

    @pytest.mark.asyncio
    async def test_different_issuers(self, key_a, key_b, did_document):
        """Test that layers from different issuers are rejected."""
        bob = "did:example:bob"
        jwt = await create_multisignature_jwt(
            {}, [Issuer(DID, es256k_signer(key_a)), Issuer(bob, es256k_signer(key_b))]
        )
        bob_document = {
            "id": bob,
            "verificationMethod": [{**secp256k1_method("key-1", key_b), "id": f"{bob}#key-1"}],
        }
        resolver = StaticResolver({DID: did_document, bob: bob_document})

        with pytest.raises(InvalidEnvelopeError, match="multiple issuers"):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

    @pytest.mark.asyncio
    async def test_tampered_middle_layer(self, key_a, key_c, did_document):
        """Test that a rewritten middle layer is detected."""
        jwt = await create_multisignature_jwt(
            {},
            [
                Issuer(DID, es256k_signer(key_a)),
                Issuer(DID, es256k_signer(key_c)),
                Issuer(DID, es256k_signer(key_c)),
            ],
        )
        outer = decode_single_jwt(jwt)
        middle = decode_single_jwt(outer.claims["jwt"])
        forged_middle = f"{encode_signing_input(middle.header, {**middle.claims, 'iss': 'did:example:mallory'})}.{middle.signature}"
        forged = f"{encode_signing_input(outer.header, {**outer.claims, 'jwt': forged_middle})}.{outer.signature}"
        doc = {**did_document, "verificationMethod": [secp256k1_method("key-1", key_a)]}

        with pytest.raises(InvalidEnvelopeError, match="multiple issuers"):
            await verify_jwt(forged, JWTVerifyOptions(resolver=StaticResolver({DID: doc})))

    @pytest.mark.asyncio
    async def test_inner_layer_policies(self, key_a, key_b, resolver):
        """Test that every layer's claims are checked."""
        jwt = await create_multisignature_jwt(
            {"iat": NOW, "exp": NOW - 1000},
            [Issuer(DID, es256k_signer(key_a)), Issuer(DID, es256k_signer(key_b))],
        )
        with pytest.raises(PolicyViolationError):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))

    @pytest.mark.asyncio
    async def test_nesting_depth(self, key_a, key_b, resolver):
        """Test that nesting beyond the configured depth is rejected."""
        jwt = await create_multisignature_jwt(
            {}, [Issuer(DID, es256k_signer(key_a))] + [Issuer(DID, es256k_signer(key_b))] * 3
        )
        assert (await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver))).verified
        with pytest.raises(InvalidEnvelopeError, match="maximum depth"):
            await verify_jwt(jwt, JWTVerifyOptions(resolver=resolver, max_nesting_depth=2))

    @pytest.mark.asyncio
    async def test_no_issuers(self):
        """Test that at least one issuer is required."""
        with pytest.raises(InvalidArgumentError):
            await create_multisignature_jwt({}, [])

    @pytest.mark.asyncio
    async def test_expires_in_every_layer(self, key_a, key_b):
        """Test that expires_in applies to each layer."""
        jwt = await create_multisignature_jwt(
            {}, [Issuer(DID, es256k_signer(key_a)), Issuer(DID, es256k_signer(key_b))], expires_in=60
        )
        outer = decode_jwt(jwt, recurse=False)

        assert outer.claims["exp"] == outer.claims["iat"] + 60
        assert "exp" in decode_jwt(jwt).claims

