"""In-process ledger and contract host."""

from vrf_node.blockchain.ledger import Contract, ExecutionContext, Ledger

__all__ = ["Contract", "ExecutionContext", "Ledger"]
