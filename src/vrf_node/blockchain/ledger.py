"""Ledger — in-process append-only chain hosting contract state.

Manages the ordered sequence of blocks, executes signed transactions
against deployed contracts, and persists to disk as a JSON file.

Execution model:
  - Every transaction is checked before inclusion: known target and
    method, signature recovering to ``sender``, and the sender's next nonce.
    Rejected transactions never reach a block.
  - Included transactions run one at a time. Contract state is snapshotted
    before each one and restored if it raises, so a failed transaction
    leaves no trace besides its receipt (status 0) and the consumed nonce.
  - Post-commit hooks (``Contract.on_committed``) run only after the block
    holding a successful transaction is sealed.
  - With ``automine`` every transaction is sealed into its own block. Without
    it, transactions wait in the mempool until :meth:`Ledger.mine`.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from vrf_node.crypto import ZERO_HASH, keccak_hex, normalize_address
from vrf_node.errors import ChainError, InvalidTransaction, NonceMismatch, RegistryError
from vrf_node.models import Block, LogEntry, Receipt, Transaction

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """What a contract method sees of the ledger while it runs."""

    sender: str
    height: int
    timestamp: int
    previous_hash: str
    contract_address: str
    tx_hash: str = ""
    logs: list[LogEntry] = field(default_factory=list)

    def emit(self, event: str, **args: Any) -> None:
        self.logs.append(
            LogEntry(
                address=self.contract_address,
                event=event,
                args=args,
                block_height=self.height,
                tx_hash=self.tx_hash,
            )
        )


class Contract:
    """Base class for ledger-resident state machines.

    Subclasses list their state-changing methods in ``TRANSACTIONS`` and
    their read-only methods in ``VIEWS``. Transaction methods take an
    :class:`ExecutionContext` first; views take only their arguments.
    """

    name = "contract"
    TRANSACTIONS: frozenset[str] = frozenset()
    VIEWS: frozenset[str] = frozenset()

    def __init__(self) -> None:
        self.address = ""

    def state(self) -> dict[str, Any]:
        """Mutable state covered by snapshot/restore."""
        raise NotImplementedError

    def load_state(self, state: dict[str, Any]) -> None:
        raise NotImplementedError

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.state())

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.load_state(snapshot)

    def execute(self, ctx: ExecutionContext, method: str, args: dict[str, Any]) -> Any:
        if method not in self.TRANSACTIONS:
            raise InvalidTransaction(f"{self.name} has no transaction method {method!r}")
        return getattr(self, method)(ctx, **args)

    def view(self, method: str, args: dict[str, Any]) -> Any:
        if method not in self.VIEWS:
            raise InvalidTransaction(f"{self.name} has no view {method!r}")
        return getattr(self, method)(**args)

    def on_committed(self, logs: list[LogEntry]) -> None:
        """Called with the logs of each successful transaction once sealed."""


class Ledger:
    """Manages the block sequence and the contracts deployed on it."""

    def __init__(
        self,
        data_dir: str | Path | None = None,
        automine: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._data_dir = Path(data_dir) if data_dir else None
        self.automine = automine
        self._clock = clock
        self._time_offset = 0

        self._blocks: list[Block] = []
        self._block_index: dict[str, int] = {}  # hash -> height
        self._logs: dict[int, list[LogEntry]] = {}
        self._receipts: dict[str, Receipt] = {}
        self._nonces: dict[str, int] = {}
        self._mempool: list[Transaction] = []
        self._contracts: dict[str, Contract] = {}
        self._replaying = False

        genesis = Block(height=0, previous_hash=ZERO_HASH, timestamp=self.timestamp)
        genesis.hash = genesis.compute_hash()
        self._append(genesis)

    # ── Chain view ───────────────────────────────────────────────

    @property
    def height(self) -> int:
        """Height of the latest sealed block (genesis is 0)."""
        return self._blocks[-1].height

    @property
    def tip(self) -> Block:
        return self._blocks[-1]

    @property
    def blocks(self) -> list[Block]:
        return list(self._blocks)

    @property
    def timestamp(self) -> int:
        """Current ledger time in unix seconds."""
        return int(self._clock()) + self._time_offset

    @property
    def pending_count(self) -> int:
        return len(self._mempool)

    def get_block(self, height: int) -> Block | None:
        if 0 <= height < len(self._blocks):
            return self._blocks[height]
        return None

    def get_block_by_hash(self, block_hash: str) -> Block | None:
        idx = self._block_index.get(block_hash)
        return self._blocks[idx] if idx is not None else None

    def get_logs(
        self,
        height: int,
        event: str | None = None,
        address: str | None = None,
    ) -> list[LogEntry]:
        """Logs emitted in exactly one block, in emission order."""
        logs = self._logs.get(height, [])
        if event is not None:
            logs = [log for log in logs if log.event == event]
        if address is not None:
            address = normalize_address(address)
            logs = [log for log in logs if log.address == address]
        return list(logs)

    def get_receipt(self, tx_hash: str) -> Receipt | None:
        return self._receipts.get(tx_hash)

    def get_transaction_count(self, address: str) -> int:
        """Next nonce for *address*, counting transactions still in the mempool."""
        return self._nonces.get(normalize_address(address), 0)

    def increase_time(self, seconds: int) -> None:
        self._time_offset += int(seconds)

    # ── Contracts ────────────────────────────────────────────────

    def deploy(self, contract: Contract) -> str:
        """Register *contract* at a deterministic address and return it."""
        seed = f"{contract.name}:{len(self._contracts)}".encode()
        address = normalize_address("0x" + keccak_hex(seed)[-40:])
        contract.address = address
        self._contracts[address] = contract
        logger.info("Contract %s deployed at %s", contract.name, address)
        return address

    def contract(self, address: str) -> Contract:
        try:
            return self._contracts[normalize_address(address)]
        except (KeyError, ValueError):
            raise InvalidTransaction(f"No contract at {address}") from None

    def call_view(self, address: str, method: str, **args: Any) -> Any:
        return self.contract(address).view(method, args)

    # ── Transactions ─────────────────────────────────────────────

    def send_transaction(self, tx: Transaction) -> str:
        """Accept a signed transaction into the mempool.

        Returns:
            The transaction hash. With automine the receipt is available
            immediately through :meth:`get_receipt`.

        Raises:
            InvalidTransaction: Unknown target/method or bad signature.
            NonceMismatch: The nonce is not the sender's next one.
        """
        sender = self._check_transaction(tx)
        self._nonces[sender] = tx.nonce + 1
        self._mempool.append(tx)
        logger.debug("Transaction %s accepted (%s.%s)", tx.hash[:12], tx.to[:12], tx.method)
        if self.automine:
            self.mine()
        return tx.hash

    def mine(self, blocks: int = 1) -> list[Block]:
        """Seal *blocks* blocks; the first one takes the whole mempool."""
        sealed = []
        for _ in range(blocks):
            txs, self._mempool = self._mempool, []
            sealed.append(self._seal(txs))
        return sealed

    def _check_transaction(self, tx: Transaction) -> str:
        contract = self.contract(tx.to)
        if tx.method not in contract.TRANSACTIONS:
            raise InvalidTransaction(f"{contract.name} has no transaction method {tx.method!r}")
        try:
            sender = normalize_address(tx.sender)
        except ValueError as e:
            raise InvalidTransaction(str(e)) from e
        if tx.recover_sender() != sender:
            raise InvalidTransaction(f"Signature does not match sender {sender}")
        expected = self._nonces.get(sender, 0)
        if tx.nonce != expected:
            raise NonceMismatch(sender, expected, tx.nonce)
        return sender

    def _seal(self, txs: list[Transaction], timestamp: int | None = None) -> Block:
        tip = self.tip
        height = tip.height + 1
        if timestamp is None:
            timestamp = max(self.timestamp, tip.timestamp)

        receipts = [
            self._execute(tx, height, timestamp, tip.hash) for tx in txs
        ]
        logs: list[LogEntry] = []
        for receipt in receipts:
            for log in receipt.logs:
                log.log_index = len(logs)
                logs.append(log)

        block = Block(height=height, previous_hash=tip.hash, timestamp=timestamp, transactions=txs)
        block.hash = block.compute_hash()
        self._append(block)
        self._logs[height] = logs
        for receipt in receipts:
            self._receipts[receipt.tx_hash] = receipt

        logger.debug("Block #%d sealed (hash=%s, txs=%d)", height, block.hash[:12], len(txs))

        if not self._replaying:
            for tx, receipt in zip(txs, receipts):
                if receipt.succeeded:
                    self.contract(tx.to).on_committed(receipt.logs)
        return block

    def _execute(self, tx: Transaction, height: int, timestamp: int, previous_hash: str) -> Receipt:
        contract = self.contract(tx.to)
        ctx = ExecutionContext(
            sender=normalize_address(tx.sender),
            height=height,
            timestamp=timestamp,
            previous_hash=previous_hash,
            contract_address=contract.address,
            tx_hash=tx.hash,
        )
        snapshot = contract.snapshot()
        try:
            result = contract.execute(ctx, tx.method, tx.args)
        except RegistryError as e:
            contract.restore(snapshot)
            logger.info("Transaction %s reverted: %s%s", tx.hash[:12], e.name, e.args)
            return Receipt(
                tx_hash=tx.hash, status=0, block_height=height,
                error=e.name, error_args=list(e.args),
            )
        except Exception as e:
            # Any other failure inside a contract reverts like a registry error
            contract.restore(snapshot)
            logger.warning("Transaction %s failed: %s: %s", tx.hash[:12], type(e).__name__, e)
            return Receipt(
                tx_hash=tx.hash, status=0, block_height=height,
                error=type(e).__name__, error_args=[str(e)],
            )
        return Receipt(
            tx_hash=tx.hash, status=1, block_height=height,
            logs=ctx.logs, return_value=result,
        )

    def _append(self, block: Block) -> None:
        self._blocks.append(block)
        self._block_index[block.hash] = block.height

    # ── Persistence ──────────────────────────────────────────────

    def save(self, path: str | Path | None = None) -> None:
        """Persist the chain to a JSON file."""
        save_path = Path(path) if path else self._default_path()
        if save_path is None:
            raise ChainError("No save path specified and no data_dir configured")

        save_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "contracts": list(self._contracts),
            "blocks": [json.loads(block.model_dump_json()) for block in self._blocks],
        }
        save_path.write_text(json.dumps(data, indent=2))
        logger.info("Chain saved to %s (%d blocks)", save_path, len(self._blocks))

    def load(self, path: str | Path | None = None) -> None:
        """Load a chain file by replaying every transaction.

        The same contracts must already be deployed, in the same order, on
        this (otherwise empty) ledger. Hooks do not fire during replay.

        Raises:
            ChainError: File missing, contract layout differs, or a replayed
                block does not reproduce the stored hash.
        """
        load_path = Path(path) if path else self._default_path()
        if load_path is None or not load_path.exists():
            raise ChainError(f"Chain file not found: {load_path}")
        if self.height != 0 or self._mempool:
            raise ChainError("Chain can only be loaded into a fresh ledger")

        data = json.loads(load_path.read_text())
        if data.get("contracts", []) != list(self._contracts):
            raise ChainError("Deployed contracts do not match the chain file")

        stored = [Block.model_validate(b) for b in data["blocks"]]
        if not stored or stored[0].hash != stored[0].compute_hash():
            raise ChainError("Genesis block hash mismatch")

        self._blocks = []
        self._block_index = {}
        self._append(stored[0])
        self._replaying = True
        try:
            for block in stored[1:]:
                self._replay_block(block)
        finally:
            self._replaying = False
        logger.info("Chain loaded from %s (%d blocks)", load_path, len(self._blocks))

    def _replay_block(self, block: Block) -> None:
        if block.previous_hash != self.tip.hash:
            raise ChainError(
                f"Previous hash mismatch at block #{block.height}: "
                f"expected {self.tip.hash[:12]}, got {block.previous_hash[:12]}"
            )
        for tx in block.transactions:
            sender = self._check_transaction(tx)
            self._nonces[sender] = tx.nonce + 1

        replayed = self._seal(block.transactions, timestamp=block.timestamp)
        if replayed.hash != block.hash:
            raise ChainError(f"Block #{block.height} hash mismatch on replay")

    def _default_path(self) -> Path | None:
        if self._data_dir:
            return self._data_dir / "chain.json"
        return None
