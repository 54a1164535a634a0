"""RevealValidator — checks a reveal against a stored commitment.

The checks are pure: they read a record, a height and a seed and either
pass or raise. The registry runs them inside the reveal transaction, and
the relayer runs the same checks speculatively before spending a
submission on a reveal that would revert anyway.

Check order matches the registry:
1. The commitment exists (``UnknownCommit``)
2. The confirmation depth has elapsed (``NotYetRevealable``)
3. The operator seed hashes to the committed hash (``SeedMismatch``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vrf_node.crypto import hash_seed
from vrf_node.errors import NotYetRevealable, RegistryError, SeedMismatch, UnknownCommit
from vrf_node.models import CommitRecord

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a speculative reveal check."""

    commit_id: str
    is_valid: bool = False
    error: RegistryError | None = None


class RevealValidator:
    """Stateless reveal predicates."""

    @staticmethod
    def check_exists(commit_id: str, record: CommitRecord | None) -> CommitRecord:
        if record is None:
            raise UnknownCommit(commit_id)
        return record

    @staticmethod
    def check_ready(record: CommitRecord, current_height: int) -> None:
        """Equal height is allowed; only strictly earlier heights fail."""
        if current_height < record.ready_height:
            raise NotYetRevealable(record.commit_id, record.ready_height, current_height)

    @staticmethod
    def check_seed(record: CommitRecord, operator_seed: str) -> None:
        try:
            matches = hash_seed(operator_seed) == record.operator_seed_hash
        except ValueError:
            matches = False
        if not matches:
            raise SeedMismatch(record.commit_id, record.operator_seed_hash, operator_seed)

    def validate(
        self,
        commit_id: str,
        record: CommitRecord | None,
        operator_seed: str,
        current_height: int,
    ) -> CommitRecord:
        """Run every check in order.

        Returns:
            The record, when the reveal would succeed.

        Raises:
            UnknownCommit, NotYetRevealable, SeedMismatch.
        """
        record = self.check_exists(commit_id, record)
        self.check_ready(record, current_height)
        self.check_seed(record, operator_seed)
        return record

    def evaluate(
        self,
        commit_id: str,
        record: CommitRecord | None,
        operator_seed: str,
        current_height: int,
    ) -> ValidationResult:
        """Non-raising form of :meth:`validate`."""
        try:
            self.validate(commit_id, record, operator_seed, current_height)
        except RegistryError as e:
            logger.debug("Reveal %s would fail: %s%s", commit_id[:12], e.name, e.args)
            return ValidationResult(commit_id=commit_id, error=e)
        return ValidationResult(commit_id=commit_id, is_valid=True)

    def is_revealable(
        self,
        commit_id: str,
        record: CommitRecord | None,
        operator_seed: str,
        current_height: int,
    ) -> bool:
        return self.evaluate(commit_id, record, operator_seed, current_height).is_valid
