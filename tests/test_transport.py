"""Tests for the ledger HTTP transport and HttpLedgerClient."""

from __future__ import annotations

import pytest
from aiohttp.test_utils import TestClient, TestServer
from eth_account import Account

from vrf_node.blockchain.ledger import Ledger
from vrf_node.crypto import compute_commit_id, hash_seed, sign_hash
from vrf_node.errors import (
    DuplicateCommit,
    InvalidTransaction,
    LedgerUnavailable,
    NonceMismatch,
    TransactionReverted,
)
from vrf_node.models import Transaction
from vrf_node.network.client import HttpLedgerClient, LocalLedgerClient
from vrf_node.network.transport import LedgerTransport
from vrf_node.registry.commit_registry import COMMIT_CREATED, CommitRegistry

NOW = 1_700_000_000

ADMIN_KEY = "0x" + "11" * 32
OPERATOR_KEY = "0x" + "22" * 32
USER_KEY = "0x" + "33" * 32
ADMIN = Account.from_key(ADMIN_KEY).address
OPERATOR = Account.from_key(OPERATOR_KEY).address
USER = Account.from_key(USER_KEY).address


# ── Helpers ──────────────────────────────────────────────────────

def make_ledger() -> tuple[Ledger, str]:
    ledger = Ledger(clock=lambda: NOW)
    registry = ledger.deploy(CommitRegistry(admin=ADMIN, operator=OPERATOR))
    return ledger, registry


def commit_tx(registry: str, nonce: int = 0) -> tuple[str, Transaction]:
    user_seed = "0x" + "aa" * 32
    operator_hash = hash_seed("0x" + "bb" * 32)
    commit_id = compute_commit_id(hash_seed(user_seed), operator_hash, USER, NOW + 900)
    tx = Transaction(
        sender=USER,
        nonce=nonce,
        to=registry,
        method="commit",
        args={
            "user_seed": user_seed,
            "operator_seed_hash": operator_hash,
            "expiration": NOW + 900,
            "signature": sign_hash(commit_id, OPERATOR_KEY),
        },
    ).sign(USER_KEY)
    return commit_id, tx


@pytest.fixture
def chain():
    return make_ledger()


# ── Routes ───────────────────────────────────────────────────────

class TestRoutes:
    @pytest.mark.asyncio
    async def test_health_and_height(self, chain):
        ledger, _ = chain
        ledger.mine(2)
        transport = LedgerTransport(ledger)
        async with TestClient(TestServer(transport.app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            assert (await resp.json()) == {"status": "healthy", "height": 2}

            resp = await client.get("/chain/height")
            assert (await resp.json())["height"] == 2

    @pytest.mark.asyncio
    async def test_events_for_unsealed_block(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestClient(TestServer(transport.app)) as client:
            resp = await client.get("/chain/blocks/5/events", params={"address": registry})
            assert resp.status == 404

            resp = await client.get("/chain/blocks/abc/events")
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_malformed_transaction(self, chain):
        ledger, _ = chain
        transport = LedgerTransport(ledger)
        async with TestClient(TestServer(transport.app)) as client:
            resp = await client.post("/transactions", json={"sender": "nobody"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_contract_commit_lookup(self, chain):
        ledger, _ = chain
        transport = LedgerTransport(ledger)
        async with TestClient(TestServer(transport.app)) as client:
            resp = await client.get(f"/contracts/{'0x' + '00' * 20}/commits/{'0x' + '12' * 32}")
            assert resp.status == 404


# ── HttpLedgerClient over the transport ──────────────────────────

class TestHttpClient:
    @pytest.mark.asyncio
    async def test_commit_round_trip(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                assert await client.get_height() == 0
                assert await client.get_transaction_count(USER) == 0

                commit_id, tx = commit_tx(registry)
                receipt = await client.send_transaction(tx)
                assert receipt.succeeded
                assert receipt.block_height == 1
                assert receipt.return_value == commit_id

                events = await client.get_events(1, COMMIT_CREATED)
                assert [e.args["commit_id"] for e in events] == [commit_id]
                assert await client.get_events(0, COMMIT_CREATED) == []

                record = await client.get_commit(commit_id)
                assert record is not None
                assert record.ready_height == 2
                assert await client.get_commit("0x" + "12" * 32) is None
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_get_confirmations(self):
        ledger = Ledger(clock=lambda: NOW)
        registry = ledger.deploy(CommitRegistry(admin=ADMIN, operator=OPERATOR, confirmations=3))
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                assert await client.get_confirmations() == 3
                unknown = HttpLedgerClient(str(server.make_url("/")), "0x" + "00" * 20)
                with pytest.raises(LedgerUnavailable):
                    await unknown.get_confirmations()
                await unknown.close()
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_revert_rebuilds_registry_error(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                commit_id, first = commit_tx(registry, nonce=0)
                await client.send_transaction(first)
                _, second = commit_tx(registry, nonce=1)
                with pytest.raises(TransactionReverted) as exc:
                    await client.send_transaction(second)
                assert isinstance(exc.value.error, DuplicateCommit)
                assert exc.value.error.commit_id == commit_id
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_nonce_mismatch_maps_to_exception(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                _, tx = commit_tx(registry, nonce=3)
                with pytest.raises(NonceMismatch) as exc:
                    await client.send_transaction(tx)
                assert exc.value.expected == 0
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_bad_signature_maps_to_invalid_transaction(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                _, tx = commit_tx(registry)
                forged = tx.model_copy(update={"sender": ADMIN})
                with pytest.raises(InvalidTransaction):
                    await client.send_transaction(forged)
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_unsealed_height_raises(self, chain):
        ledger, registry = chain
        transport = LedgerTransport(ledger)
        async with TestServer(transport.app) as server:
            client = HttpLedgerClient(str(server.make_url("/")), registry)
            try:
                with pytest.raises(LedgerUnavailable):
                    await client.get_events(9, COMMIT_CREATED)
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_unreachable_ledger(self):
        client = HttpLedgerClient("http://127.0.0.1:1", "0x" + "00" * 20)
        try:
            with pytest.raises(LedgerUnavailable):
                await client.get_height()
        finally:
            await client.close()


# ── LocalLedgerClient ────────────────────────────────────────────

class TestLocalClient:
    @pytest.mark.asyncio
    async def test_matches_ledger(self, chain):
        ledger, registry = chain
        client = LocalLedgerClient(ledger, registry)
        commit_id, tx = commit_tx(registry)
        receipt = await client.send_transaction(tx)
        assert receipt.block_height == await client.get_height() == 1
        assert await client.get_transaction_count(USER) == 1
        assert (await client.get_commit(commit_id)).commit_id == commit_id
        assert await client.get_confirmations() == 1

    @pytest.mark.asyncio
    async def test_revert_raises(self, chain):
        ledger, registry = chain
        client = LocalLedgerClient(ledger, registry)
        _, tx = commit_tx(registry)
        await client.send_transaction(tx)
        _, again = commit_tx(registry, nonce=1)
        with pytest.raises(TransactionReverted):
            await client.send_transaction(again)

    @pytest.mark.asyncio
    async def test_waits_for_manual_mining(self):
        ledger = Ledger(automine=False, clock=lambda: NOW)
        registry = ledger.deploy(CommitRegistry(admin=ADMIN, operator=OPERATOR))
        client = LocalLedgerClient(ledger, registry, receipt_timeout=0.3)
        _, tx = commit_tx(registry)
        with pytest.raises(LedgerUnavailable):
            await client.send_transaction(tx)
        ledger.mine()
        assert ledger.get_receipt(tx.hash).succeeded
