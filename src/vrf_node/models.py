"""Ledger-facing data models.

Everything that crosses the ledger boundary (transactions, receipts, logs,
blocks, commitment records) is a pydantic model so it can round-trip
through the HTTP transport and the JSON chain file unchanged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from vrf_node.crypto import canonical_hash, recover_signer, sign_hash


class Role(str, Enum):
    """Capabilities held by accounts in the registry."""

    ADMIN = "admin"
    OPERATOR = "operator"


class CommitRecord(BaseModel):
    """A live commitment. Deleted on its single successful reveal."""

    commit_id: str
    user_seed: str = Field(description="Requester's secret, mixed into the random seed")
    user_seed_hash: str
    operator_seed_hash: str
    owner: str
    ready_height: int


class LogEntry(BaseModel):
    """An event emitted by a contract during a successful transaction."""

    address: str
    event: str
    args: dict[str, Any] = Field(default_factory=dict)
    block_height: int = 0
    tx_hash: str = ""
    log_index: int = 0


class CommitCreated(BaseModel):
    commit_id: str
    user_seed_hash: str
    operator_seed_hash: str
    owner: str
    block_height: int

    @classmethod
    def from_log(cls, log: LogEntry) -> CommitCreated:
        return cls(block_height=log.block_height, **log.args)


class SeedRevealed(BaseModel):
    commit_id: str
    operator_seed: str
    random_seed: str
    block_height: int

    @classmethod
    def from_log(cls, log: LogEntry) -> SeedRevealed:
        return cls(block_height=log.block_height, **log.args)


class Transaction(BaseModel):
    """A signed call to a contract method.

    The hash covers every field except the signature. The signature is an
    EIP-191 personal signature over that hash by ``sender``.
    """

    sender: str
    nonce: int
    to: str
    method: str
    args: dict[str, Any] = Field(default_factory=dict)
    signature: str = ""

    @property
    def hash(self) -> str:
        return canonical_hash(self.model_dump(exclude={"signature"}))

    def sign(self, private_key: str) -> Transaction:
        """Return a signed copy of this transaction."""
        return self.model_copy(update={"signature": sign_hash(self.hash, private_key)})

    def recover_sender(self) -> str | None:
        if not self.signature:
            return None
        return recover_signer(self.hash, self.signature)


class Receipt(BaseModel):
    """Outcome of an included transaction (status 1 = success, 0 = reverted)."""

    tx_hash: str
    status: int
    block_height: int
    logs: list[LogEntry] = Field(default_factory=list)
    return_value: Any = None
    error: str | None = None
    error_args: list[Any] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class Block(BaseModel):
    """A sealed ledger block."""

    height: int
    previous_hash: str
    timestamp: int
    transactions: list[Transaction] = Field(default_factory=list)
    hash: str = ""

    def compute_hash(self) -> str:
        return canonical_hash(
            {
                "height": self.height,
                "previous_hash": self.previous_hash,
                "timestamp": self.timestamp,
                "transactions": [tx.hash for tx in self.transactions],
            }
        )


class CommitTicket(BaseModel):
    """Signed operator payload handed to a requester before they commit."""

    commit_id: str
    seed_hash: str
    signature: str
    expiration: int
