"""Error hierarchy.

Registry errors reject input and are never worth retrying with identical
arguments. Ledger errors describe what happened to a transaction or to the
connection to the ledger. Registry errors survive a trip through a
transaction receipt: the receipt stores the error name and args, and
:func:`error_from_revert` rebuilds the exception on the client side.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base class for commitments rejected by the registry."""

    @property
    def name(self) -> str:
        return type(self).__name__


class DuplicateCommit(RegistryError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(commit_id)
        self.commit_id = commit_id


class ExpiredSignature(RegistryError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(commit_id)
        self.commit_id = commit_id


class InvalidSignature(RegistryError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(commit_id)
        self.commit_id = commit_id


class UnknownCommit(RegistryError):
    def __init__(self, commit_id: str) -> None:
        super().__init__(commit_id)
        self.commit_id = commit_id


class NotYetRevealable(RegistryError):
    def __init__(self, commit_id: str, ready_height: int, current_height: int) -> None:
        super().__init__(commit_id, ready_height, current_height)
        self.commit_id = commit_id
        self.ready_height = ready_height
        self.current_height = current_height


class SeedMismatch(RegistryError):
    def __init__(self, commit_id: str, stored_hash: str, supplied_seed: str) -> None:
        super().__init__(commit_id, stored_hash, supplied_seed)
        self.commit_id = commit_id
        self.stored_hash = stored_hash
        self.supplied_seed = supplied_seed


class MissingRole(RegistryError):
    def __init__(self, account: str, role: str) -> None:
        super().__init__(account, role)
        self.account = account
        self.role = role


class ContractError(RegistryError):
    """A revert whose name is not one of the known registry errors."""

    def __init__(self, error_name: str, *args: Any) -> None:
        super().__init__(error_name, *args)
        self.error_name = error_name

    @property
    def name(self) -> str:
        return self.error_name


REGISTRY_ERRORS: dict[str, type[RegistryError]] = {
    cls.__name__: cls
    for cls in (
        DuplicateCommit,
        ExpiredSignature,
        InvalidSignature,
        UnknownCommit,
        NotYetRevealable,
        SeedMismatch,
        MissingRole,
    )
}


def error_from_revert(name: str, args: list[Any] | tuple[Any, ...]) -> RegistryError:
    """Rebuild a registry error from the name/args stored in a receipt."""
    cls = REGISTRY_ERRORS.get(name)
    if cls is None:
        return ContractError(name, *args)
    try:
        return cls(*args)
    except TypeError:
        return ContractError(name, *args)


class LedgerError(Exception):
    """Raised when a ledger operation fails."""


class ChainError(LedgerError):
    """Raised when the block sequence is inconsistent (bad replay, bad height)."""


class InvalidTransaction(LedgerError):
    """Transaction rejected before inclusion (bad signature, unknown target)."""


class NonceMismatch(InvalidTransaction):
    def __init__(self, sender: str, expected: int, got: int) -> None:
        super().__init__(f"Nonce mismatch for {sender}: expected {expected}, got {got}")
        self.sender = sender
        self.expected = expected
        self.got = got


class TransactionReverted(LedgerError):
    """The transaction was included but its execution failed."""

    def __init__(self, receipt: Any, error: RegistryError | None = None) -> None:
        reason = f"{error.name}{error.args}" if error is not None else "unknown reason"
        super().__init__(f"Transaction {receipt.tx_hash[:12]} reverted: {reason}")
        self.receipt = receipt
        self.error = error


class LedgerUnavailable(LedgerError):
    """The ledger could not be reached or answered with an unexpected status."""
