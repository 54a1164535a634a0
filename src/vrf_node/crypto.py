"""Hashing and signing primitives shared by the registry, ledger and operator.

All hashes are keccak-256. Byte values cross module boundaries as
``0x``-prefixed hex strings so they serialize cleanly through pydantic
models and JSON transport.

Commit ids use the packed encoding the operator signs:

    keccak256(user_seed_hash ‖ operator_seed_hash ‖ owner ‖ uint256(expiration))

Signatures are EIP-191 personal messages over the raw 32 id bytes, signed
and recovered with eth-account.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import is_address, keccak, to_checksum_address

logger = logging.getLogger(__name__)

ZERO_HASH = "0x" + "00" * 32


def to_hex(data: bytes) -> str:
    """Encode bytes as a 0x-prefixed lowercase hex string."""
    return "0x" + bytes(data).hex()


def from_hex(value: str) -> bytes:
    """Decode a hex string (with or without 0x prefix).

    Raises:
        ValueError: If the string is not valid hex.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected hex string, got {type(value).__name__}")
    raw = value[2:] if value[:2] in ("0x", "0X") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise ValueError(f"Invalid hex string: {value!r}") from e


def is_bytes32(value: Any) -> bool:
    """True if *value* is a 0x-prefixed hex string of exactly 32 bytes."""
    if not isinstance(value, str) or not value.startswith("0x"):
        return False
    try:
        return len(from_hex(value)) == 32
    except ValueError:
        return False


def normalize_address(address: str) -> str:
    """Return the checksummed form of *address*.

    Raises:
        ValueError: If *address* is not a valid 20-byte address.
    """
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


def keccak_hex(data: bytes) -> str:
    return to_hex(keccak(primitive=data))


def hash_seed(seed: str) -> str:
    """Hash a hex-encoded seed (used for both user and operator seeds)."""
    return keccak_hex(from_hex(seed))


def random_seed_hex(nbytes: int = 32) -> str:
    """Generate a fresh random secret as hex."""
    return to_hex(secrets.token_bytes(nbytes))


def compute_commit_id(
    user_seed_hash: str,
    operator_seed_hash: str,
    owner: str,
    expiration: int,
) -> str:
    """Compute the deterministic commit id.

    Args:
        user_seed_hash: keccak of the requester's secret (32 bytes hex).
        operator_seed_hash: keccak of the operator's secret (32 bytes hex).
        owner: Account that will submit the commit.
        expiration: Unix timestamp after which the signature is void.

    Returns:
        The commit id as 32-byte hex.
    """
    if expiration < 0:
        raise ValueError("expiration must be non-negative")
    packed = (
        from_hex(user_seed_hash)
        + from_hex(operator_seed_hash)
        + from_hex(normalize_address(owner))
        + int(expiration).to_bytes(32, "big")
    )
    return keccak_hex(packed)


def compute_random_seed(user_seed: str, operator_seed: str, previous_block_hash: str) -> str:
    """Mix both secrets with the hash of the block preceding the reveal."""
    return keccak_hex(
        from_hex(user_seed) + from_hex(operator_seed) + from_hex(previous_block_hash)
    )


def canonical_hash(payload: dict[str, Any]) -> str:
    """keccak of the canonical (sorted, compact) JSON encoding of *payload*."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return keccak_hex(encoded.encode())


def sign_hash(digest: str, private_key: str) -> str:
    """Sign a 32-byte digest as an EIP-191 personal message."""
    signed = Account.sign_message(encode_defunct(primitive=from_hex(digest)), private_key=private_key)
    return to_hex(bytes(signed.signature))


def recover_signer(digest: str, signature: str) -> str | None:
    """Recover the checksummed signer address of *signature* over *digest*.

    Returns:
        The signer address, or None if the signature is malformed.
    """
    try:
        return Account.recover_message(
            encode_defunct(primitive=from_hex(digest)),
            signature=from_hex(signature),
        )
    except (ValueError, TypeError, BadSignature, ValidationError):
        logger.debug("Signature recovery failed for %s", digest[:12], exc_info=True)
        return None
