"""Reveal validation shared by the registry and the relayer."""

from vrf_node.validation.validator import RevealValidator, ValidationResult

__all__ = ["RevealValidator", "ValidationResult"]
