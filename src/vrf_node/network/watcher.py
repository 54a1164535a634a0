"""LedgerEventWatcher — polls the ledger one block at a time.

A single cooperative loop on a fixed cadence. Each cycle:
  1. Refresh the head height if it is unknown or already consumed
  2. Pick the next unprocessed height (cursor + 1, or the start height)
  3. If that height is beyond the head, wait for the next cycle
  4. Fetch commitment events for exactly that height
  5. Signal BLOCK, then one COMMIT per event in block order
  6. Advance the cursor, even when the block had no events

Every query gets ``max_attempts`` tries, each failure signalling WARNING.
Running out of attempts stops the watcher and signals FATAL; it does not
restart on its own.

Fetching a single height per call keeps responses small and guarantees
no height is skipped while catching up. A backlog is worked through in
order rather than jumping to the head.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Coroutine

from vrf_node.models import CommitCreated, LogEntry
from vrf_node.network.client import LedgerClient
from vrf_node.registry.commit_registry import COMMIT_CREATED

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 3


class WatcherSignal(str, Enum):
    """Signals emitted by the watcher."""

    START = "start"
    STOP = "stop"
    BLOCK = "block"  # (height)
    COMMIT = "commit"  # (CommitCreated)
    WARNING = "warning"  # (message, error)
    FATAL = "fatal"  # (message)


Handler = Callable[..., Coroutine[Any, Any, None]]


class LedgerEventWatcher:
    """Watches the registry for ``CommitCreated`` events."""

    def __init__(
        self,
        client: LedgerClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        start_height: int | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        event: str = COMMIT_CREATED,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.event = event
        self._start_height = start_height
        self._last_processed: int | None = None
        self._head: int | None = None
        self._handlers: dict[WatcherSignal, list[Handler]] = {}
        self._running = False
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self._running

    @property
    def start_height(self) -> int | None:
        return self._start_height

    @property
    def last_processed(self) -> int | None:
        return self._last_processed

    @property
    def head_height(self) -> int | None:
        return self._head

    def on(self, signal: WatcherSignal, handler: Handler) -> None:
        """Register an async handler for *signal*."""
        self._handlers.setdefault(signal, []).append(handler)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Watcher started (start height %s, every %.1fs)",
            self._start_height if self._start_height is not None else "head",
            self.poll_interval,
        )
        await self._emit(WatcherSignal.START)

    async def stop(self, error: str | None = None) -> None:
        """Stop after the current cycle; *error* is signalled as FATAL."""
        if not self._running:
            return
        self._running = False
        self._wake.set()

        if error is not None:
            logger.error("Watcher stopped: %s", error)
            await self._emit(WatcherSignal.FATAL, error)
        await self._emit(WatcherSignal.STOP)

        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task
        self._task = None
        logger.info("Watcher stopped at height %s", self._last_processed)

    async def _run(self) -> None:
        while self._running:
            await self.poll()
            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def poll(self) -> int | None:
        """Run one cycle.

        Returns:
            The height processed in this cycle, or None if there was no new
            block (or the watcher gave up).
        """
        if self._head is None or self._next_height() > self._head:
            head = await self._query_height()
            if head is None:
                await self.stop("Too many errors trying to get the block height")
                return None
            self._head = head

        height = self._next_height()
        if height > self._head:
            return None
        if height < self._head:
            logger.debug("Watcher is %d blocks behind head", self._head - height)

        events = await self._query_events(height)
        if events is None:
            await self.stop(f"Too many errors trying to get the events from block {height}")
            return None

        await self._emit(WatcherSignal.BLOCK, height)
        for log in events:
            await self._emit(WatcherSignal.COMMIT, CommitCreated.from_log(log))

        self._last_processed = height
        logger.debug("Block %d handled, %d events found", height, len(events))
        return height

    def _next_height(self) -> int:
        if self._last_processed is not None:
            return self._last_processed + 1
        if self._start_height is None:
            # First run without a configured start: begin at the head
            self._start_height = self._head if self._head is not None else 0
        return self._start_height

    async def _query_height(self) -> int | None:
        errors = 0
        while errors < self.max_attempts:
            try:
                return await self.client.get_height()
            except Exception as e:
                errors += 1
                logger.warning("Can't get the block height (attempt %d): %s", errors, e)
                await self._emit(WatcherSignal.WARNING, "Can't get the block height", e)
        return None

    async def _query_events(self, height: int) -> list[LogEntry] | None:
        errors = 0
        while errors < self.max_attempts:
            try:
                return await self.client.get_events(height, self.event)
            except Exception as e:
                errors += 1
                logger.warning(
                    "Can't get the events from block %d (attempt %d): %s", height, errors, e
                )
                await self._emit(
                    WatcherSignal.WARNING, f"Can't get the events from block {height}", e
                )
        return None

    async def _emit(self, signal: WatcherSignal, *args: Any) -> None:
        for handler in self._handlers.get(signal, []):
            try:
                await handler(*args)
            except Exception:
                logger.exception("Watcher %s handler failed", signal.value)
