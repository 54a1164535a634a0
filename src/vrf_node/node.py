"""VRF nodes — wiring for the relayer and the development ledger.

A relayer node:
1. Serves the commit API (operator signs tickets, keeps seeds in the cache)
2. Watches the registry for new commitments, one block at a time
3. Reveals each commitment once its confirmation depth has elapsed
4. Stops for good when the ledger stays unreachable, so an operator can
   restart it

A ledger node runs an in-process ledger with the CommitRegistry deployed,
serves it over HTTP and seals a block on a fixed interval so that heights
keep advancing without traffic.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from aiohttp import web
from eth_account import Account
from eth_keys.exceptions import ValidationError

from vrf_node.api import OperatorService, create_app
from vrf_node.blockchain.ledger import Ledger
from vrf_node.crypto import normalize_address
from vrf_node.errors import LedgerError
from vrf_node.models import Role
from vrf_node.network.client import HttpLedgerClient, LedgerClient
from vrf_node.network.transport import LedgerTransport
from vrf_node.network.watcher import LedgerEventWatcher, WatcherSignal
from vrf_node.registry.commit_registry import CommitRegistry
from vrf_node.registry.hooks import RevealHook
from vrf_node.relayer.scheduler import RevealScheduler
from vrf_node.relayer.submitter import TransactionSubmitter
from vrf_node.storage.secret_cache import SecretCache, SqliteSecretCache

logger = logging.getLogger(__name__)


@dataclass
class RelayerConfig:
    """Configuration for a relayer node."""

    ledger_url: str = "http://127.0.0.1:8545"
    registry_address: str = ""
    private_key: str = ""
    data_dir: str = "./vrf-data"
    cache_path: str = ""  # Auto-derived from data_dir if empty

    # Commit API
    host: str = "0.0.0.0"
    port: int = 8470
    serve_api: bool = True
    expiration: int = 900  # Signature validity and seed ttl, in seconds

    # Reveal timing
    confirmations: int = 1
    poll_interval: float = 1.0
    start_height: int | None = None
    max_query_attempts: int = 3

    # Reveal failures
    reveal_retry_limit: int = 0
    reveal_retry_backoff: int = 1
    preflight: bool = True

    def validate(self) -> None:
        """Raise ValueError for settings the relayer cannot run with."""
        if not self.ledger_url:
            raise ValueError("You must set a valid ledger URL.")
        if not self.private_key:
            raise ValueError("You must set a valid private key.")
        try:
            Account.from_key(self.private_key)
        except (ValueError, TypeError, ValidationError) as e:
            raise ValueError("You must set a valid private key.") from e
        try:
            normalize_address(self.registry_address)
        except ValueError as e:
            raise ValueError("You must specify a valid contract address.") from e
        if self.expiration <= 0:
            raise ValueError("You must set a valid expiration time (in seconds).")
        if self.confirmations < 0:
            raise ValueError(
                "You must specify the number of confirmations required to approve a commit."
            )
        if self.confirmations == 0:
            logger.warning("Relayer configured with 0 confirmations: reveals may land in the commit block")
        if self.max_query_attempts < 1:
            raise ValueError("max_query_attempts must be >= 1")
        if self.reveal_retry_limit < 0:
            raise ValueError("reveal_retry_limit must be >= 0")

    @property
    def resolved_cache_path(self) -> Path:
        return Path(self.cache_path) if self.cache_path else Path(self.data_dir) / "secrets.db"


@dataclass
class LedgerNodeConfig:
    """Configuration for a development ledger node."""

    host: str = "127.0.0.1"
    port: int = 8545
    data_dir: str = "./vrf-ledger"
    admin_key: str = ""
    operators: list[str] = field(default_factory=list)
    confirmations: int = 1
    block_interval: float = 2.0  # 0 disables interval mining
    automine: bool = True


class RelayerNode:
    """Commit API + watcher + scheduler for one operator account."""

    def __init__(
        self,
        config: RelayerConfig,
        client: LedgerClient | None = None,
        cache: SecretCache | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.client = client or HttpLedgerClient(config.ledger_url, config.registry_address)
        self._owns_cache = cache is None
        self.cache = cache or SqliteSecretCache(config.resolved_cache_path)

        self.submitter = TransactionSubmitter(
            self.client, config.private_key, normalize_address(config.registry_address)
        )
        self.watcher = LedgerEventWatcher(
            self.client,
            poll_interval=config.poll_interval,
            start_height=config.start_height,
            max_attempts=config.max_query_attempts,
        )
        self.scheduler = RevealScheduler(
            self.cache,
            self.submitter,
            confirmations=config.confirmations,
            client=self.client,
            preflight=config.preflight,
            retry_limit=config.reveal_retry_limit,
            retry_backoff=config.reveal_retry_backoff,
        )
        self.operator = OperatorService(config.private_key, self.cache, config.expiration)

        self.scheduler.attach(self.watcher)
        self.watcher.on(WatcherSignal.FATAL, self._on_fatal)

        self.stopped = asyncio.Event()
        self.fatal_error: str | None = None
        self._runner: web.AppRunner | None = None

    @property
    def address(self) -> str:
        return self.submitter.address

    async def start(self) -> None:
        """Start the relayer."""
        if self._owns_cache and isinstance(self.cache, SqliteSecretCache):
            self.cache.open()

        await self.submitter.start()
        await self._sync_confirmations()
        await self.watcher.start()

        if self.config.serve_api:
            self._runner = web.AppRunner(create_app(self.operator))
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.host, self.config.port)
            await site.start()

        logger.info(
            "Relayer started: operator=%s, registry=%s, confirmations=%d, api=%s",
            self.address[:12],
            self.config.registry_address[:12],
            self.scheduler.confirmations,
            f":{self.config.port}" if self.config.serve_api else "off",
        )

    async def stop(self) -> None:
        """Stop the relayer gracefully."""
        await self.watcher.stop()
        await self.submitter.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if isinstance(self.client, HttpLedgerClient):
            await self.client.close()
        if self._owns_cache and isinstance(self.cache, SqliteSecretCache):
            self.cache.close()
        self.stopped.set()
        logger.info("Relayer stopped")

    async def _sync_confirmations(self) -> None:
        """Use the confirmation depth configured on the registry."""
        try:
            confirmations = await self.client.get_confirmations()
        except LedgerError as e:
            logger.warning(
                "Could not read confirmations from the registry, using %d: %s",
                self.config.confirmations, e,
            )
            return
        if confirmations != self.config.confirmations:
            logger.warning(
                "Registry requires %d confirmations, relayer configured with %d; using %d",
                confirmations, self.config.confirmations, confirmations,
            )
        self.scheduler.confirmations = confirmations

    async def _on_fatal(self, message: str) -> None:
        self.fatal_error = message
        logger.error("Relayer needs a restart: %s", message)
        self.stopped.set()

    def status(self) -> dict[str, Any]:
        stats = self.scheduler.stats
        return {
            "operator": self.address,
            "registry": self.config.registry_address,
            "watching": self.watcher.started,
            "last_processed": self.watcher.last_processed,
            "pending_reveals": self.scheduler.pending_count,
            "revealed": stats.revealed,
            "rejected": stats.rejected,
            "failed": stats.failed,
            "dropped": stats.dropped,
            "deferred": stats.deferred,
        }


class LedgerNode:
    """Development ledger with the CommitRegistry deployed."""

    def __init__(self, config: LedgerNodeConfig, hook: RevealHook | None = None) -> None:
        if not config.admin_key:
            raise ValueError("You must set a valid admin private key.")
        self.config = config
        self.admin = Account.from_key(config.admin_key).address
        self.ledger = Ledger(data_dir=config.data_dir, automine=config.automine)
        self.registry = CommitRegistry(
            admin=self.admin,
            confirmations=config.confirmations,
            hook=hook,
        )
        for operator in config.operators:
            self.registry.grant_at_deploy(Role.OPERATOR, operator)
        self.registry_address = self.ledger.deploy(self.registry)
        self.transport = LedgerTransport(self.ledger, host=config.host, port=config.port)
        self._miner: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        chain_path = Path(self.config.data_dir) / "chain.json"
        if chain_path.exists():
            self.ledger.load()
            logger.info("Chain loaded: height %d", self.ledger.height)

        await self.transport.start()
        self._running = True
        if self.config.block_interval > 0:
            self._miner = asyncio.create_task(self._mining_loop())
        logger.info(
            "Ledger node started: registry=%s, admin=%s, operators=%d",
            self.registry_address, self.admin[:12], len(self.config.operators),
        )

    async def stop(self) -> None:
        self._running = False
        if self._miner:
            self._miner.cancel()
            try:
                await self._miner
            except asyncio.CancelledError:
                pass
            self._miner = None
        await self.transport.stop()
        self.ledger.save()
        logger.info("Ledger node stopped at height %d", self.ledger.height)

    async def _mining_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.block_interval)
            self.ledger.mine()
