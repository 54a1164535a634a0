"""RevealScheduler — reveals observed commitments once they are eligible.

Driven entirely by watcher signals:

  COMMIT  Look up the operator seed for the commitment. Without one the
          commitment can never be revealed and is dropped. Otherwise
          reveal now if the confirmation depth has already elapsed, or
          park it in the pending map.
  BLOCK   Reveal every pending entry whose ready height has been reached.
          An entry leaves the map before its attempt, whatever the outcome.

Submissions within one signal are awaited one after another. Failures are
logged and never raised back into the watcher. By default a failed attempt
is final. With ``retry_limit > 0``, failures that the registry did not
explicitly reject are parked again with an exponential backoff counted in
blocks.

A ``NotYetRevealable`` answer (from preflight or from the registry) is not
a failure: the entry is parked again at the ready height stored in the
record and does not use up an attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from vrf_node.errors import (
    ContractError,
    InvalidTransaction,
    NonceMismatch,
    NotYetRevealable,
    TransactionReverted,
)
from vrf_node.models import CommitCreated
from vrf_node.network.client import LedgerClient
from vrf_node.network.watcher import LedgerEventWatcher, WatcherSignal
from vrf_node.relayer.submitter import TransactionSubmitter
from vrf_node.storage.secret_cache import SecretCache
from vrf_node.validation.validator import RevealValidator

logger = logging.getLogger(__name__)


@dataclass
class PendingReveal:
    """A commitment waiting for its confirmation depth."""

    commit_id: str
    operator_seed: str
    ready_height: int
    attempts: int = 0


class RevealStatus(str, Enum):
    REVEALED = "revealed"
    DEFERRED = "deferred"  # the registry's ready height is later than expected
    REJECTED = "rejected"  # the registry refused it; retrying cannot help
    FAILED = "failed"  # transient or unknown failure


@dataclass
class SchedulerStats:
    revealed: int = 0
    rejected: int = 0
    failed: int = 0
    dropped: int = 0
    retried: int = 0
    deferred: int = 0


class RevealScheduler:
    """Owns the pending-reveal map for one operator account."""

    def __init__(
        self,
        cache: SecretCache,
        submitter: TransactionSubmitter,
        confirmations: int,
        client: LedgerClient | None = None,
        preflight: bool = False,
        retry_limit: int = 0,
        retry_backoff: int = 1,
    ) -> None:
        """
        Args:
            cache: Where the operator seeds were stored at commit time.
            submitter: Single writer for the operator account.
            confirmations: Confirmation depth configured on the registry.
            client: Ledger client used for preflight reads.
            preflight: Check each reveal with RevealValidator against the
                current record before submitting it.
            retry_limit: Extra attempts for failures the registry did not
                reject. 0 keeps the one-attempt behaviour.
            retry_backoff: Blocks to wait before the first retry; doubles
                on each further retry.
        """
        if confirmations < 0:
            raise ValueError("confirmations must be >= 0")
        self.cache = cache
        self.submitter = submitter
        self.confirmations = confirmations
        self.client = client
        self.preflight = preflight and client is not None
        self.retry_limit = retry_limit
        self.retry_backoff = max(1, retry_backoff)
        self.validator = RevealValidator()
        self.stats = SchedulerStats()
        self._pending: dict[str, PendingReveal] = {}
        self._height = 0

    @property
    def pending(self) -> dict[str, PendingReveal]:
        """Read-only view of the pending map."""
        return dict(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def current_height(self) -> int:
        return self._height

    def attach(self, watcher: LedgerEventWatcher) -> None:
        """Subscribe to a watcher's BLOCK and COMMIT signals."""
        watcher.on(WatcherSignal.BLOCK, self.on_block)
        watcher.on(WatcherSignal.COMMIT, self.on_commit)

    async def on_commit(self, event: CommitCreated) -> None:
        commit_id = event.commit_id
        operator_seed = self.cache.get(commit_id)
        if not operator_seed:
            self.stats.dropped += 1
            logger.warning("No operator seed for commit %s; it has expired or does not exist", commit_id[:12])
            return

        self._height = max(self._height, event.block_height)
        entry = PendingReveal(
            commit_id=commit_id,
            operator_seed=operator_seed,
            ready_height=event.block_height + self.confirmations,
        )
        if self._height >= entry.ready_height:
            await self._process(entry, self._height)
        else:
            self._pending[commit_id] = entry
            logger.debug("Commit %s pending until #%d", commit_id[:12], entry.ready_height)

    async def on_block(self, height: int) -> None:
        self._height = max(self._height, height)
        due = [e for e in self._pending.values() if e.ready_height <= height]
        for entry in due:
            del self._pending[entry.commit_id]
            await self._process(entry, height)

    async def _process(self, entry: PendingReveal, height: int) -> None:
        status = await self._attempt(entry, height)
        if status is RevealStatus.REVEALED:
            self.stats.revealed += 1
            return
        if status is RevealStatus.DEFERRED:
            self.stats.deferred += 1
            self._pending[entry.commit_id] = entry
            return
        if status is RevealStatus.REJECTED:
            self.stats.rejected += 1
            return

        self.stats.failed += 1
        if entry.attempts <= self.retry_limit:
            entry.ready_height = height + self.retry_backoff * 2 ** (entry.attempts - 1)
            self._pending[entry.commit_id] = entry
            self.stats.retried += 1
            logger.info(
                "Reveal of %s re-queued for #%d (attempt %d of %d)",
                entry.commit_id[:12], entry.ready_height, entry.attempts, self.retry_limit + 1,
            )

    async def _attempt(self, entry: PendingReveal, height: int) -> RevealStatus:
        entry.attempts += 1

        if self.preflight and self.client is not None:
            try:
                record = await self.client.get_commit(entry.commit_id)
            except Exception as e:
                logger.warning("Preflight read for %s failed, submitting anyway: %s", entry.commit_id[:12], e)
            else:
                result = self.validator.evaluate(entry.commit_id, record, entry.operator_seed, height)
                if isinstance(result.error, NotYetRevealable):
                    return self._defer(entry, result.error)
                if not result.is_valid:
                    logger.warning(
                        "Skipping reveal of %s: %s%s",
                        entry.commit_id[:12], result.error.name, result.error.args,
                    )
                    return RevealStatus.REJECTED

        try:
            receipt = await self.submitter.submit(
                "reveal",
                {"commit_id": entry.commit_id, "operator_seed": entry.operator_seed},
            )
        except TransactionReverted as e:
            if isinstance(e.error, NotYetRevealable):
                return self._defer(entry, e.error)
            logger.error("Commit reveal error for %s: %s", entry.commit_id[:12], e)
            if isinstance(e.error, ContractError):
                return RevealStatus.FAILED
            return RevealStatus.REJECTED
        except NonceMismatch as e:
            logger.error("Commit reveal error for %s: %s", entry.commit_id[:12], e)
            return RevealStatus.FAILED
        except InvalidTransaction as e:
            logger.error("Commit reveal error for %s: %s", entry.commit_id[:12], e)
            return RevealStatus.REJECTED
        except Exception:
            logger.exception("Commit reveal error for %s", entry.commit_id[:12])
            return RevealStatus.FAILED

        logger.info(
            "Commit %s revealed in block #%d (tx=%s)",
            entry.commit_id[:12], receipt.block_height, receipt.tx_hash[:12],
        )
        return RevealStatus.REVEALED

    def _defer(self, entry: PendingReveal, error: NotYetRevealable) -> RevealStatus:
        """Park *entry* until the ready height the registry stored for it."""
        entry.attempts -= 1
        entry.ready_height = error.ready_height
        logger.warning(
            "Commit %s not revealable before #%d (tried at #%d), re-queued",
            entry.commit_id[:12], error.ready_height, error.current_height,
        )
        return RevealStatus.DEFERRED
