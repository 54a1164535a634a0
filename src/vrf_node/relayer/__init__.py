"""Relayer — reveal scheduling and transaction submission."""

from vrf_node.relayer.scheduler import PendingReveal, RevealScheduler, RevealStatus
from vrf_node.relayer.submitter import TransactionSubmitter

__all__ = ["PendingReveal", "RevealScheduler", "RevealStatus", "TransactionSubmitter"]
