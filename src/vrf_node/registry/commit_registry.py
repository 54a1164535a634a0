"""CommitRegistry — the ledger-resident commit-reveal state machine.

Each commitment moves through exactly two states: it is created by
``commit`` and destroyed by its single successful ``reveal``. There is no
"revealed" or "expired" record; absence is the terminal state.

Commit:
  1. ``commit_id = keccak(user_seed_hash ‖ operator_seed_hash ‖ sender ‖ expiration)``
  2. Reject duplicates of a live id
  3. Reject if ledger time is past ``expiration``
  4. Reject unless the signature over ``commit_id`` recovers to an operator
  5. Store with ``ready_height = height + confirmations``

Reveal (operators only):
  1. Validate existence, confirmation depth and seed (see RevealValidator)
  2. ``random_seed = keccak(user_seed ‖ operator_seed ‖ previous_block_hash)``
  3. Delete the record and emit ``SeedRevealed``

The reveal hook fires from :meth:`CommitRegistry.on_committed`, i.e. only
once the ledger has sealed the transaction. A reverted ``multi_reveal``
therefore never reaches the hook.
"""

from __future__ import annotations

import logging
from typing import Any

from vrf_node.blockchain.ledger import Contract, ExecutionContext
from vrf_node.crypto import (
    compute_commit_id,
    compute_random_seed,
    hash_seed,
    is_bytes32,
    normalize_address,
    recover_signer,
)
from vrf_node.errors import (
    DuplicateCommit,
    ExpiredSignature,
    InvalidSignature,
    MissingRole,
)
from vrf_node.models import CommitRecord, LogEntry, Role
from vrf_node.registry.hooks import NoopRevealHook, RevealHook
from vrf_node.validation.validator import RevealValidator

logger = logging.getLogger(__name__)

COMMIT_CREATED = "CommitCreated"
SEED_REVEALED = "SeedRevealed"


class CommitRegistry(Contract):
    """Commit-reveal registry with role-based access."""

    name = "CommitRegistry"
    TRANSACTIONS = frozenset({"commit", "reveal", "multi_reveal", "grant_role", "revoke_role"})
    VIEWS = frozenset({"commits", "has_role", "get_confirmations"})

    def __init__(
        self,
        admin: str,
        operator: str | None = None,
        confirmations: int = 1,
        hook: RevealHook | None = None,
    ) -> None:
        super().__init__()
        if confirmations < 0:
            raise ValueError("confirmations must be >= 0")
        if confirmations == 0:
            logger.warning(
                "CommitRegistry configured with 0 confirmations: "
                "reveals are allowed in the same block as their commit"
            )
        self._confirmations = confirmations
        self.hook: RevealHook = hook or NoopRevealHook()
        self.validator = RevealValidator()
        self._commits: dict[str, CommitRecord] = {}
        self._roles: dict[str, set[str]] = {}

        self._grant(Role.ADMIN, admin)
        if operator:
            self._grant(Role.OPERATOR, operator)

    @property
    def confirmations(self) -> int:
        return self._confirmations

    def grant_at_deploy(self, role: Role, account: str) -> None:
        """Grant *role* outside any transaction. Only valid before deployment."""
        if self.address:
            raise RuntimeError(f"{self.name} is already deployed at {self.address}")
        self._grant(Role(role), account)

    @property
    def live_count(self) -> int:
        return len(self._commits)

    # ── Contract state ───────────────────────────────────────────

    def state(self) -> dict[str, Any]:
        return {"commits": self._commits, "roles": self._roles}

    def load_state(self, state: dict[str, Any]) -> None:
        self._commits = state["commits"]
        self._roles = state["roles"]

    # ── Transactions ─────────────────────────────────────────────

    def commit(
        self,
        ctx: ExecutionContext,
        user_seed: str,
        operator_seed_hash: str,
        expiration: int,
        signature: str,
    ) -> str:
        if not is_bytes32(user_seed) or not is_bytes32(operator_seed_hash):
            raise ValueError("user_seed and operator_seed_hash must be 32-byte hex")

        user_seed_hash = hash_seed(user_seed)
        commit_id = compute_commit_id(user_seed_hash, operator_seed_hash, ctx.sender, expiration)

        if commit_id in self._commits:
            raise DuplicateCommit(commit_id)

        if ctx.timestamp > expiration:
            raise ExpiredSignature(commit_id)

        signer = recover_signer(commit_id, signature)
        if signer is None or not self._has(Role.OPERATOR, signer):
            raise InvalidSignature(commit_id)

        self._commits[commit_id] = CommitRecord(
            commit_id=commit_id,
            user_seed=user_seed,
            user_seed_hash=user_seed_hash,
            operator_seed_hash=operator_seed_hash,
            owner=ctx.sender,
            ready_height=ctx.height + self._confirmations,
        )
        ctx.emit(
            COMMIT_CREATED,
            commit_id=commit_id,
            user_seed_hash=user_seed_hash,
            operator_seed_hash=operator_seed_hash,
            owner=ctx.sender,
        )
        logger.info(
            "Commit %s created by %s (ready at #%d)",
            commit_id[:12], ctx.sender[:12], ctx.height + self._confirmations,
        )
        return commit_id

    def reveal(self, ctx: ExecutionContext, commit_id: str, operator_seed: str) -> str:
        self._require(Role.OPERATOR, ctx.sender)
        return self._reveal(ctx, commit_id, operator_seed)

    def multi_reveal(self, ctx: ExecutionContext, reveals: list[Any]) -> list[str]:
        """Reveal every entry or none.

        Entries are ``[commit_id, operator_seed]`` pairs or dicts with those
        keys. The first failure propagates and the ledger restores the
        snapshot taken before this transaction.
        """
        self._require(Role.OPERATOR, ctx.sender)
        seeds = []
        for entry in reveals:
            if isinstance(entry, dict):
                commit_id, operator_seed = entry["commit_id"], entry["operator_seed"]
            else:
                commit_id, operator_seed = entry
            seeds.append(self._reveal(ctx, commit_id, operator_seed))
        return seeds

    def grant_role(self, ctx: ExecutionContext, role: str, account: str) -> None:
        self._require(Role.ADMIN, ctx.sender)
        self._grant(Role(role), account)

    def revoke_role(self, ctx: ExecutionContext, role: str, account: str) -> None:
        self._require(Role.ADMIN, ctx.sender)
        account = normalize_address(account)
        self._roles.get(account, set()).discard(Role(role).value)
        logger.info("Role %s revoked from %s", Role(role).value, account[:12])

    # ── Views ────────────────────────────────────────────────────

    def commits(self, commit_id: str) -> CommitRecord | None:
        record = self._commits.get(commit_id)
        return record.model_copy() if record is not None else None

    def has_role(self, role: str, account: str) -> bool:
        return self._has(Role(role), account)

    def get_confirmations(self) -> int:
        return self._confirmations

    # ── Hooks ────────────────────────────────────────────────────

    def on_committed(self, logs: list[LogEntry]) -> None:
        for log in logs:
            if log.event != SEED_REVEALED:
                continue
            try:
                self.hook.on_reveal(log.args["commit_id"], log.args["random_seed"])
            except Exception:
                logger.exception("Reveal hook failed for %s", log.args["commit_id"][:12])

    # ── Internals ────────────────────────────────────────────────

    def _reveal(self, ctx: ExecutionContext, commit_id: str, operator_seed: str) -> str:
        record = self.validator.validate(
            commit_id, self._commits.get(commit_id), operator_seed, ctx.height
        )
        random_seed = compute_random_seed(record.user_seed, operator_seed, ctx.previous_hash)
        del self._commits[commit_id]
        ctx.emit(
            SEED_REVEALED,
            commit_id=commit_id,
            operator_seed=operator_seed,
            random_seed=random_seed,
        )
        logger.info("Commit %s revealed at #%d", commit_id[:12], ctx.height)
        return random_seed

    def _grant(self, role: Role, account: str) -> None:
        account = normalize_address(account)
        self._roles.setdefault(account, set()).add(role.value)
        logger.info("Role %s granted to %s", role.value, account[:12])

    def _has(self, role: Role, account: str) -> bool:
        try:
            account = normalize_address(account)
        except ValueError:
            return False
        return role.value in self._roles.get(account, set())

    def _require(self, role: Role, account: str) -> None:
        if not self._has(role, account):
            raise MissingRole(account, role.value)
