"""Tests for LedgerEventWatcher — cursor, ordering and failure handling."""

from __future__ import annotations

import asyncio

import pytest

from vrf_node.errors import LedgerUnavailable
from vrf_node.models import CommitCreated, LogEntry
from vrf_node.network.watcher import LedgerEventWatcher, WatcherSignal
from vrf_node.registry.commit_registry import COMMIT_CREATED


# ── Helpers ──────────────────────────────────────────────────────

class FakeClient:
    """Ledger client with a scripted head and per-height events."""

    def __init__(self, head: int = 0) -> None:
        self.head = head
        self.events: dict[int, list[LogEntry]] = {}
        self.height_failures = 0
        self.event_failures = 0
        self.height_calls = 0
        self.event_calls: list[int] = []

    async def get_height(self) -> int:
        self.height_calls += 1
        if self.height_failures:
            self.height_failures -= 1
            raise LedgerUnavailable("connection refused")
        return self.head

    async def get_events(self, height: int, event: str) -> list[LogEntry]:
        assert event == COMMIT_CREATED
        self.event_calls.append(height)
        if self.event_failures:
            self.event_failures -= 1
            raise LedgerUnavailable("connection refused")
        return self.events.get(height, [])


def make_log(height: int, index: int = 0) -> LogEntry:
    return LogEntry(
        address="0x" + "01" * 20,
        event=COMMIT_CREATED,
        args={
            "commit_id": "0x" + f"{height:02x}{index:02x}" * 16,
            "user_seed_hash": "0x" + "aa" * 32,
            "operator_seed_hash": "0x" + "bb" * 32,
            "owner": "0x" + "33" * 20,
        },
        block_height=height,
        log_index=index,
    )


def record_signals(watcher: LedgerEventWatcher) -> list[tuple]:
    seen: list[tuple] = []

    def recorder(signal):
        async def handler(*args):
            seen.append((signal, *args))
        return handler

    for signal in WatcherSignal:
        watcher.on(signal, recorder(signal))
    return seen


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ── Cursor ───────────────────────────────────────────────────────

class TestCursor:
    @pytest.mark.asyncio
    async def test_defaults_to_head(self):
        client = FakeClient(head=5)
        watcher = LedgerEventWatcher(client)
        assert await watcher.poll() == 5
        assert watcher.start_height == 5
        assert client.event_calls == [5]

    @pytest.mark.asyncio
    async def test_no_new_block(self):
        client = FakeClient(head=5)
        watcher = LedgerEventWatcher(client)
        await watcher.poll()
        assert await watcher.poll() is None
        assert watcher.last_processed == 5
        assert client.event_calls == [5]

    @pytest.mark.asyncio
    async def test_catch_up_one_height_per_call(self):
        client = FakeClient(head=5)
        watcher = LedgerEventWatcher(client, start_height=2)
        processed = [await watcher.poll() for _ in range(5)]
        assert processed == [2, 3, 4, 5, None]
        assert client.event_calls == [2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_head_queried_only_when_consumed(self):
        client = FakeClient(head=4)
        watcher = LedgerEventWatcher(client, start_height=1)
        for _ in range(4):
            await watcher.poll()
        assert client.height_calls == 1

    @pytest.mark.asyncio
    async def test_start_height_above_head_waits(self):
        client = FakeClient(head=3)
        watcher = LedgerEventWatcher(client, start_height=6)
        assert await watcher.poll() is None
        assert client.event_calls == []

        client.head = 6
        assert await watcher.poll() == 6
        assert watcher.last_processed == 6

    @pytest.mark.asyncio
    async def test_new_blocks_picked_up(self):
        client = FakeClient(head=1)
        watcher = LedgerEventWatcher(client)
        await watcher.poll()
        client.head = 3
        assert await watcher.poll() == 2
        assert await watcher.poll() == 3


# ── Signals ──────────────────────────────────────────────────────

class TestSignals:
    @pytest.mark.asyncio
    async def test_block_before_commits_in_log_order(self):
        client = FakeClient(head=7)
        client.events[7] = [make_log(7, 0), make_log(7, 1)]
        watcher = LedgerEventWatcher(client)
        seen = record_signals(watcher)

        await watcher.poll()

        assert [s[0] for s in seen] == [
            WatcherSignal.BLOCK, WatcherSignal.COMMIT, WatcherSignal.COMMIT,
        ]
        assert seen[0][1] == 7
        first, second = seen[1][1], seen[2][1]
        assert isinstance(first, CommitCreated)
        assert first.block_height == 7
        assert first.commit_id == make_log(7, 0).args["commit_id"]
        assert second.commit_id == make_log(7, 1).args["commit_id"]

    @pytest.mark.asyncio
    async def test_block_signalled_for_empty_heights(self):
        client = FakeClient(head=3)
        watcher = LedgerEventWatcher(client, start_height=1)
        seen = record_signals(watcher)
        for _ in range(3):
            await watcher.poll()
        assert seen == [(WatcherSignal.BLOCK, 1), (WatcherSignal.BLOCK, 2), (WatcherSignal.BLOCK, 3)]

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_processing(self):
        client = FakeClient(head=2)
        watcher = LedgerEventWatcher(client, start_height=1)

        async def broken(height):
            raise RuntimeError("handler bug")

        watcher.on(WatcherSignal.BLOCK, broken)
        assert await watcher.poll() == 1
        assert await watcher.poll() == 2


# ── Failures ─────────────────────────────────────────────────────

class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_failures_warn_and_recover(self):
        client = FakeClient(head=3)
        client.event_failures = 2
        watcher = LedgerEventWatcher(client, max_attempts=3)
        seen = record_signals(watcher)

        assert await watcher.poll() == 3
        warnings = [s for s in seen if s[0] is WatcherSignal.WARNING]
        assert len(warnings) == 2
        assert isinstance(warnings[0][2], LedgerUnavailable)
        assert client.event_calls == [3, 3, 3]

    @pytest.mark.asyncio
    async def test_height_failures_stop_watcher(self):
        client = FakeClient(head=3)
        client.height_failures = 3
        watcher = LedgerEventWatcher(client, poll_interval=0.01, max_attempts=3)
        seen = record_signals(watcher)

        await watcher.start()
        await wait_for(lambda: not watcher.started)

        kinds = [s[0] for s in seen]
        assert kinds.count(WatcherSignal.WARNING) == 3
        assert WatcherSignal.FATAL in kinds
        assert kinds[-1] is WatcherSignal.STOP
        fatal = next(s for s in seen if s[0] is WatcherSignal.FATAL)
        assert "block height" in fatal[1]
        assert client.height_calls == 3

    @pytest.mark.asyncio
    async def test_event_failures_stop_without_advancing(self):
        client = FakeClient(head=3)
        client.event_failures = 3
        watcher = LedgerEventWatcher(client, poll_interval=0.01, start_height=2)
        seen = record_signals(watcher)

        await watcher.start()
        await wait_for(lambda: not watcher.started)

        assert watcher.last_processed is None
        assert not any(s[0] is WatcherSignal.BLOCK for s in seen)
        fatal = next(s for s in seen if s[0] is WatcherSignal.FATAL)
        assert "block 2" in fatal[1]


# ── Lifecycle ────────────────────────────────────────────────────

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        client = FakeClient(head=2)
        watcher = LedgerEventWatcher(client, poll_interval=0.01)
        seen = record_signals(watcher)

        await watcher.start()
        assert watcher.started
        await wait_for(lambda: watcher.last_processed == 2)

        client.head = 4
        await wait_for(lambda: watcher.last_processed == 4)

        await watcher.stop()
        assert not watcher.started
        kinds = [s[0] for s in seen]
        assert kinds[0] is WatcherSignal.START
        assert kinds[-1] is WatcherSignal.STOP
        assert WatcherSignal.FATAL not in kinds

    @pytest.mark.asyncio
    async def test_stop_when_not_started_is_noop(self):
        watcher = LedgerEventWatcher(FakeClient())
        await watcher.stop()
        assert not watcher.started
