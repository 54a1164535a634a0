"""Post-reveal extension point.

The registry hands every random seed it produces to exactly one hook,
after the reveal transaction has been sealed. What the seed is used for is
up to the hook.
"""

from __future__ import annotations

from typing import Callable, Protocol


class RevealHook(Protocol):
    def on_reveal(self, commit_id: str, random_seed: str) -> None: ...


class NoopRevealHook:
    """Default hook: does nothing."""

    def on_reveal(self, commit_id: str, random_seed: str) -> None:
        return None


class CallbackRevealHook:
    """Adapts a plain callable to the hook interface."""

    def __init__(self, callback: Callable[[str, str], None]) -> None:
        self._callback = callback

    def on_reveal(self, commit_id: str, random_seed: str) -> None:
        self._callback(commit_id, random_seed)
