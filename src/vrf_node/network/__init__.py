"""Networking layer — ledger clients, HTTP transport and the event watcher."""

from vrf_node.network.client import HttpLedgerClient, LedgerClient, LocalLedgerClient
from vrf_node.network.transport import LedgerTransport
from vrf_node.network.watcher import LedgerEventWatcher, WatcherSignal

__all__ = [
    "HttpLedgerClient",
    "LedgerClient",
    "LocalLedgerClient",
    "LedgerTransport",
    "LedgerEventWatcher",
    "WatcherSignal",
]
