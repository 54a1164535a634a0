"""TransactionSubmitter — single writer for one signing account.

Every transaction the relayer sends for an account goes through one
asyncio queue drained by one worker. The worker owns the account's nonce:
it reads it from the ledger once, then assigns nonces locally in
submission order. Two reveals fired back to back can therefore never be
given the same nonce.

Nonce bookkeeping:
  - Included transactions consume their nonce, reverted or not
  - A ``NonceMismatch`` rejection resyncs from the ledger and retries once
  - Any other failure (ledger unreachable, timeout) leaves the nonce
    unknown; it is re-read before the next transaction
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account

from vrf_node.errors import NonceMismatch, TransactionReverted
from vrf_node.models import Receipt, Transaction
from vrf_node.network.client import LedgerClient

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """Serializes and signs transactions for one account."""

    def __init__(self, client: LedgerClient, private_key: str, to: str) -> None:
        self.client = client
        self.to = to
        self._private_key = private_key
        self.address: str = Account.from_key(private_key).address
        self._nonce: int | None = None
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self.submitted = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain())
        logger.info("Submitter started for %s", self.address[:12])

    async def stop(self) -> None:
        """Finish queued submissions, then stop the worker."""
        if not self.running or self._queue is None:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("Submitter stopped for %s (%d sent)", self.address[:12], self.submitted)

    async def submit(self, method: str, args: dict[str, Any]) -> Receipt:
        """Queue a call and wait for its receipt.

        Raises:
            TransactionReverted: Included but failed.
            LedgerError: Rejected or the ledger could not be reached.
        """
        if not self.running:
            await self.start()
        assert self._queue is not None
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((method, args, future))
        return await future

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            if item is None:
                break
            method, args, future = item
            try:
                receipt = await self._send(method, args)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(receipt)

    async def _send(self, method: str, args: dict[str, Any]) -> Receipt:
        attempts = 0
        while True:
            attempts += 1
            if self._nonce is None:
                self._nonce = await self.client.get_transaction_count(self.address)
            tx = Transaction(
                sender=self.address, nonce=self._nonce, to=self.to, method=method, args=args,
            ).sign(self._private_key)
            try:
                receipt = await self.client.send_transaction(tx)
            except NonceMismatch:
                logger.warning("Nonce %d rejected for %s, resyncing", tx.nonce, self.address[:12])
                self._nonce = None
                if attempts >= 2:
                    raise
                continue
            except TransactionReverted:
                self._nonce += 1
                self.submitted += 1
                raise
            except Exception:
                self._nonce = None
                raise
            self._nonce += 1
            self.submitted += 1
            return receipt
