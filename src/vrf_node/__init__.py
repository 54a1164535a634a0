"""Commit-reveal random seed generation: registry, relayer and dev ledger."""

__version__ = "0.1.0"
