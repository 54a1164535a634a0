"""Ledger clients — how the relayer talks to the ledger.

Two implementations share one async interface:

  - ``LocalLedgerClient`` drives an in-process :class:`Ledger` (tests, the
    dev ledger command, embedding).
  - ``HttpLedgerClient`` talks to a :class:`LedgerTransport` over HTTP with
    an aiohttp client session.

``send_transaction`` waits until the transaction is included and raises
``TransactionReverted`` (with the registry error rebuilt from the receipt)
when it failed. Query failures surface as exceptions and are left to the
caller's retry policy.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from aiohttp import ClientError, ClientSession, ClientTimeout

from vrf_node.blockchain.ledger import Ledger
from vrf_node.errors import (
    InvalidTransaction,
    LedgerUnavailable,
    NonceMismatch,
    TransactionReverted,
    error_from_revert,
)
from vrf_node.models import CommitRecord, LogEntry, Receipt, Transaction

logger = logging.getLogger(__name__)

# Timeout for ledger HTTP requests
LEDGER_TIMEOUT = ClientTimeout(total=30)

# How often to poll for a receipt while waiting for inclusion
RECEIPT_POLL_INTERVAL = 0.1


class LedgerClient(Protocol):
    async def get_height(self) -> int: ...

    async def get_events(self, height: int, event: str) -> list[LogEntry]: ...

    async def get_transaction_count(self, address: str) -> int: ...

    async def send_transaction(self, tx: Transaction) -> Receipt: ...

    async def get_commit(self, commit_id: str) -> CommitRecord | None: ...

    async def get_confirmations(self) -> int: ...


def check_receipt(receipt: Receipt) -> Receipt:
    """Raise ``TransactionReverted`` for a failed receipt."""
    if not receipt.succeeded:
        error = error_from_revert(receipt.error or "Reverted", receipt.error_args)
        raise TransactionReverted(receipt, error)
    return receipt


class LocalLedgerClient:
    """Client over an in-process ledger, scoped to one registry address."""

    def __init__(
        self,
        ledger: Ledger,
        registry_address: str,
        receipt_timeout: float = 30.0,
    ) -> None:
        self.ledger = ledger
        self.registry_address = registry_address
        self.receipt_timeout = receipt_timeout

    async def get_height(self) -> int:
        return self.ledger.height

    async def get_events(self, height: int, event: str) -> list[LogEntry]:
        return self.ledger.get_logs(height, event=event, address=self.registry_address)

    async def get_transaction_count(self, address: str) -> int:
        return self.ledger.get_transaction_count(address)

    async def send_transaction(self, tx: Transaction) -> Receipt:
        tx_hash = self.ledger.send_transaction(tx)
        receipt = self.ledger.get_receipt(tx_hash)
        waited = 0.0
        while receipt is None:
            if waited >= self.receipt_timeout:
                raise LedgerUnavailable(f"Timed out waiting for transaction {tx_hash[:12]}")
            await asyncio.sleep(RECEIPT_POLL_INTERVAL)
            waited += RECEIPT_POLL_INTERVAL
            receipt = self.ledger.get_receipt(tx_hash)
        return check_receipt(receipt)

    async def get_commit(self, commit_id: str) -> CommitRecord | None:
        return self.ledger.call_view(self.registry_address, "commits", commit_id=commit_id)

    async def get_confirmations(self) -> int:
        return self.ledger.call_view(self.registry_address, "get_confirmations")


class HttpLedgerClient:
    """Client over the ledger HTTP transport.

    Args:
        base_url: Ledger endpoint, e.g. ``http://127.0.0.1:8545``.
        registry_address: Address of the deployed CommitRegistry.
        session: Optional shared aiohttp session; one is created lazily
            otherwise and closed by :meth:`close`.
    """

    def __init__(
        self,
        base_url: str,
        registry_address: str,
        session: ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.registry_address = registry_address
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=LEDGER_TIMEOUT)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as resp:
                data = await resp.json()
                return resp.status, data
        except (ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise LedgerUnavailable(f"{method} {url} failed: {type(e).__name__}: {e}") from e

    async def _get(self, path: str, **kwargs: Any) -> Any:
        status, data = await self._request("GET", path, **kwargs)
        if status != 200:
            raise LedgerUnavailable(f"GET {path} returned {status}: {data}")
        return data

    async def get_height(self) -> int:
        data = await self._get("/chain/height")
        return int(data["height"])

    async def get_events(self, height: int, event: str) -> list[LogEntry]:
        data = await self._get(
            f"/chain/blocks/{height}/events",
            params={"event": event, "address": self.registry_address},
        )
        return [LogEntry.model_validate(e) for e in data["events"]]

    async def get_transaction_count(self, address: str) -> int:
        data = await self._get(f"/accounts/{address}/nonce")
        return int(data["nonce"])

    async def send_transaction(self, tx: Transaction) -> Receipt:
        status, data = await self._request(
            "POST", "/transactions", json=json.loads(tx.model_dump_json())
        )
        if status == 409:
            raise NonceMismatch(tx.sender, int(data["expected"]), tx.nonce)
        if status == 400:
            raise InvalidTransaction(data.get("error", "rejected"))
        if status != 200:
            raise LedgerUnavailable(f"POST /transactions returned {status}: {data}")
        return check_receipt(Receipt.model_validate(data["receipt"]))

    async def get_commit(self, commit_id: str) -> CommitRecord | None:
        data = await self._get(f"/contracts/{self.registry_address}/commits/{commit_id}")
        record = data.get("commit")
        return CommitRecord.model_validate(record) if record else None

    async def get_confirmations(self) -> int:
        data = await self._get(f"/contracts/{self.registry_address}/confirmations")
        return int(data["confirmations"])
