"""CommitRegistry contract and its reveal hooks."""

from vrf_node.registry.commit_registry import COMMIT_CREATED, SEED_REVEALED, CommitRegistry
from vrf_node.registry.hooks import CallbackRevealHook, NoopRevealHook, RevealHook

__all__ = [
    "COMMIT_CREATED",
    "SEED_REVEALED",
    "CommitRegistry",
    "CallbackRevealHook",
    "NoopRevealHook",
    "RevealHook",
]
