"""Transport layer — serves an in-process ledger over HTTP.

Uses aiohttp for a small JSON API that :class:`HttpLedgerClient` consumes.
This is what the ``vrf-node ledger`` command runs, and it is enough for
a relayer process to watch and submit against a ledger in another process.

Routes:
  GET  /health
  GET  /chain/height
  GET  /chain/blocks/{height}/events?event=&address=
  GET  /accounts/{address}/nonce
  POST /transactions                       (waits for inclusion)
  GET  /contracts/{address}/commits/{commit_id}
  GET  /contracts/{address}/confirmations
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from vrf_node.blockchain.ledger import Ledger
from vrf_node.errors import InvalidTransaction, NonceMismatch
from vrf_node.models import Transaction

logger = logging.getLogger(__name__)

RECEIPT_POLL_INTERVAL = 0.1


class LedgerTransport:
    """HTTP front-end for a :class:`Ledger`."""

    def __init__(
        self,
        ledger: Ledger,
        host: str = "127.0.0.1",
        port: int = 8545,
        receipt_timeout: float = 30.0,
    ) -> None:
        self.ledger = ledger
        self.host = host
        self.port = port
        self.receipt_timeout = receipt_timeout
        self.app = web.Application()
        self._runner: web.AppRunner | None = None

        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/chain/height", self._handle_height)
        self.app.router.add_get("/chain/blocks/{height}/events", self._handle_events)
        self.app.router.add_get("/accounts/{address}/nonce", self._handle_nonce)
        self.app.router.add_post("/transactions", self._handle_transaction)
        self.app.router.add_get(
            "/contracts/{address}/commits/{commit_id}", self._handle_commit
        )
        self.app.router.add_get(
            "/contracts/{address}/confirmations", self._handle_confirmations
        )

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Ledger transport listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Ledger transport stopped")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "height": self.ledger.height})

    async def _handle_height(self, request: web.Request) -> web.Response:
        return web.json_response({"height": self.ledger.height})

    async def _handle_events(self, request: web.Request) -> web.Response:
        try:
            height = int(request.match_info["height"])
            logs = self.ledger.get_logs(
                height,
                event=request.query.get("event"),
                address=request.query.get("address"),
            )
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        if height > self.ledger.height:
            return web.json_response({"error": f"Block {height} not sealed yet"}, status=404)
        return web.json_response(
            {"height": height, "events": [json.loads(log.model_dump_json()) for log in logs]}
        )

    async def _handle_nonce(self, request: web.Request) -> web.Response:
        try:
            nonce = self.ledger.get_transaction_count(request.match_info["address"])
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"nonce": nonce})

    async def _handle_transaction(self, request: web.Request) -> web.Response:
        try:
            tx = Transaction.model_validate(await request.json())
            tx_hash = self.ledger.send_transaction(tx)
        except NonceMismatch as e:
            return web.json_response({"error": str(e), "expected": e.expected}, status=409)
        except (InvalidTransaction, ValidationError, json.JSONDecodeError) as e:
            return web.json_response({"error": str(e)}, status=400)

        receipt = await self._wait_for_receipt(tx_hash)
        if receipt is None:
            return web.json_response(
                {"error": "Timed out waiting for inclusion", "tx_hash": tx_hash}, status=504
            )
        return web.json_response({"receipt": json.loads(receipt.model_dump_json())})

    async def _handle_commit(self, request: web.Request) -> web.Response:
        try:
            record = self.ledger.call_view(
                request.match_info["address"],
                "commits",
                commit_id=request.match_info["commit_id"],
            )
        except InvalidTransaction as e:
            return web.json_response({"error": str(e)}, status=404)
        payload: dict[str, Any] = {
            "commit": json.loads(record.model_dump_json()) if record is not None else None
        }
        return web.json_response(payload)

    async def _handle_confirmations(self, request: web.Request) -> web.Response:
        try:
            confirmations = self.ledger.call_view(request.match_info["address"], "get_confirmations")
        except InvalidTransaction as e:
            return web.json_response({"error": str(e)}, status=404)
        return web.json_response({"confirmations": confirmations})

    async def _wait_for_receipt(self, tx_hash: str) -> Any:
        waited = 0.0
        receipt = self.ledger.get_receipt(tx_hash)
        while receipt is None and waited < self.receipt_timeout:
            await asyncio.sleep(RECEIPT_POLL_INTERVAL)
            waited += RECEIPT_POLL_INTERVAL
            receipt = self.ledger.get_receipt(tx_hash)
        return receipt
