"""
Generic reconciliation engine.

- Reconciler: converges desired objects against actual objects
- Strategy: per-kind callbacks that parameterize the Reconciler
- describe_diff: human-readable pending change descriptions
"""

from vitess_operator.reconciler.diff import describe_diff
from vitess_operator.reconciler.object import (
    Reconciler,
    has_matching_labels,
    set_controller_reference,
)
from vitess_operator.reconciler.strategy import Strategy

__all__ = [
    "Reconciler",
    "Strategy",
    "describe_diff",
    "has_matching_labels",
    "set_controller_reference",
]
