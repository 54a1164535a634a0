"""Tests for hashing, commit ids and signatures."""

from __future__ import annotations

import pytest
from eth_account import Account

from vrf_node.crypto import (
    compute_commit_id,
    compute_random_seed,
    from_hex,
    hash_seed,
    is_bytes32,
    keccak_hex,
    normalize_address,
    random_seed_hex,
    recover_signer,
    sign_hash,
)

OPERATOR_KEY = "0x" + "22" * 32
OWNER = Account.from_key("0x" + "33" * 32).address
USER_HASH = hash_seed("0x" + "aa" * 32)
OPERATOR_HASH = hash_seed("0x" + "bb" * 32)
EXPIRATION = 1_700_000_900


class TestHex:
    def test_is_bytes32(self):
        assert is_bytes32("0x" + "00" * 32)
        assert not is_bytes32("00" * 32)  # prefix required
        assert not is_bytes32("0x" + "00" * 31)
        assert not is_bytes32("0x" + "zz" * 32)
        assert not is_bytes32(None)

    def test_from_hex_rejects_garbage(self):
        with pytest.raises(ValueError):
            from_hex("0xnothex")

    def test_random_seed_is_32_bytes(self):
        seed = random_seed_hex()
        assert is_bytes32(seed)
        assert seed != random_seed_hex()

    def test_keccak_known_vector(self):
        # keccak256 of the empty string
        assert keccak_hex(b"") == (
            "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_normalize_address(self):
        assert normalize_address(OWNER.lower()) == OWNER
        with pytest.raises(ValueError):
            normalize_address("0x1234")


class TestCommitId:
    def test_deterministic(self):
        a = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION)
        b = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER.lower(), EXPIRATION)
        assert a == b
        assert is_bytes32(a)

    def test_every_field_changes_the_id(self):
        base = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION)
        other_owner = Account.from_key("0x" + "44" * 32).address
        variants = [
            compute_commit_id(hash_seed("0x" + "ab" * 32), OPERATOR_HASH, OWNER, EXPIRATION),
            compute_commit_id(USER_HASH, hash_seed("0x" + "bc" * 32), OWNER, EXPIRATION),
            compute_commit_id(USER_HASH, OPERATOR_HASH, other_owner, EXPIRATION),
            compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION + 1),
        ]
        assert base not in variants
        assert len(set(variants)) == 4

    def test_hash_order_matters(self):
        a = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION)
        b = compute_commit_id(OPERATOR_HASH, USER_HASH, OWNER, EXPIRATION)
        assert a != b

    def test_negative_expiration_rejected(self):
        with pytest.raises(ValueError):
            compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, -1)


class TestRandomSeed:
    def test_depends_on_previous_block_hash(self):
        user, operator = "0x" + "aa" * 32, "0x" + "bb" * 32
        a = compute_random_seed(user, operator, "0x" + "01" * 32)
        b = compute_random_seed(user, operator, "0x" + "02" * 32)
        assert a != b
        assert a == compute_random_seed(user, operator, "0x" + "01" * 32)


class TestSignatures:
    def test_sign_and_recover(self):
        digest = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION)
        signature = sign_hash(digest, OPERATOR_KEY)
        assert recover_signer(digest, signature) == Account.from_key(OPERATOR_KEY).address

    def test_other_digest_recovers_other_address(self):
        digest = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION)
        signature = sign_hash(digest, OPERATOR_KEY)
        other = compute_commit_id(USER_HASH, OPERATOR_HASH, OWNER, EXPIRATION + 1)
        assert recover_signer(other, signature) != Account.from_key(OPERATOR_KEY).address

    def test_malformed_signature_returns_none(self):
        digest = "0x" + "11" * 32
        assert recover_signer(digest, "0x1234") is None
        assert recover_signer(digest, "not hex") is None
