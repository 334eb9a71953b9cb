"""
Blockchain address derivation and CAIP-10 account matching.

https://github.com/ChainAgnostic/CAIPs/blob/main/CAIPs/caip-10.md
"""

from __future__ import annotations

import hashlib

import base58
from coincurve import PublicKey
from Crypto.Hash import RIPEMD160, keccak

BIP122_P2PKH_VERSION = b"\x00"


def _public_key(public_key: bytes | str) -> PublicKey:
    if isinstance(public_key, str):
        public_key = bytes.fromhex(public_key[2:] if public_key.startswith("0x") else public_key)
    return PublicKey(public_key)


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def to_ethereum_address(public_key: bytes | str) -> str:
    """Derive the lowercase ``0x`` Ethereum address of a secp256k1 public key.

    Accepts compressed or uncompressed keys, as bytes or hex.
    """
    uncompressed = _public_key(public_key).format(compressed=False)
    return "0x" + keccak256(uncompressed[1:])[-20:].hex()


def to_bip122_address(public_key: bytes | str) -> str:
    """Derive the Base58Check P2PKH Bitcoin address of a secp256k1 public key."""
    compressed = _public_key(public_key).format(compressed=True)
    key_hash = RIPEMD160.new(hashlib.sha256(compressed).digest()).digest()
    return base58.b58encode_check(BIP122_P2PKH_VERSION + key_hash).decode("ascii")


def verify_blockchain_account_id(public_key: bytes | str, blockchain_account_id: str | None) -> bool:
    """Check a CAIP-10 ``namespace:reference:address`` against a public key.

    Only the ``eip155`` and ``bip122`` namespaces are understood; anything
    else never matches.
    """
    if not blockchain_account_id:
        return False
    chain = blockchain_account_id.split(":")
    if len(chain) != 3:
        return False
    namespace = chain[0]
    if namespace == "eip155":
        chain[-1] = to_ethereum_address(public_key)
    elif namespace == "bip122":
        chain[-1] = to_bip122_address(public_key)
    else:
        return False
    return ":".join(chain).lower() == blockchain_account_id.lower()
