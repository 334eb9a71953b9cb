"""Shared fixtures for didjwt tests."""

import base64

import pytest
from coincurve import PrivateKey
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# secp256k1 key whose Ethereum address is 0xf3beac30c498d9e26865f34fcaa57dbb935b0d74
SECP256K1_KEY_A = "278a5de700e29faae8e40e366ec5012b5ec63d36ec77e8a2417154cc1d25383f"
SECP256K1_KEY_B = "0278a5de700e29faae8e40e366ec5012b5ec63d36ec77e8a241154cc1d25383f"
SECP256K1_KEY_C = "f2d1e1a4e1b7c8d9a0b1c2d3e4f5061728394a5b6c7d8e9f0a1b2c3d4e5f6071"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


@pytest.fixture
def key_a() -> bytes:
    return bytes.fromhex(SECP256K1_KEY_A)


@pytest.fixture
def key_b() -> bytes:
    return bytes.fromhex(SECP256K1_KEY_B)


@pytest.fixture
def key_c() -> bytes:
    return bytes.fromhex(SECP256K1_KEY_C)


@pytest.fixture
def secp256k1_public_hex():
    """Uncompressed public key hex of a secp256k1 private key."""

    def public_hex(private_key: bytes) -> str:
        return PrivateKey(private_key).public_key.format(compressed=False).hex()

    return public_hex


@pytest.fixture
def ed25519_key_pair():
    """Raw Ed25519 private seed and public key."""
    private_key = Ed25519PrivateKey.generate()
    return private_key.private_bytes_raw(), private_key.public_key().public_bytes_raw()


@pytest.fixture
def p256_key_pair():
    """Raw P-256 private scalar and public key JWK."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    numbers = private_key.public_key().public_numbers()
    jwk = {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url(numbers.x.to_bytes(32, "big")),
        "y": b64url(numbers.y.to_bytes(32, "big")),
    }
    return private_key.private_numbers().private_value.to_bytes(32, "big"), jwk
