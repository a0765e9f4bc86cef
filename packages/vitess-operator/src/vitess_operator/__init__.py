"""
Vitess Operator Core

Reconciliation and replication control for Vitess clusters. This package
provides:

- Reconciler: declarative convergence of desired objects with Strategy hooks
- Rollout and drain annotation state machines
- ShardReplicationController: primary election, repair and planned reparents
- ConnPool: shared topology connections
- Partitioning helpers for key ranges
- CLI infrastructure: Typer-based command structure
"""

__version__ = "0.1.0"

from vitess_operator.drain import DrainState
from vitess_operator.partitioning import KeyRange, equal_key_ranges, equal_shard_names
from vitess_operator.reconciler import Reconciler, Strategy
from vitess_operator.replication import ShardReplicationController
from vitess_operator.results import Result, ResultBuilder
from vitess_operator.rollout import RolloutPolicy
from vitess_operator.toposerver import Conn, ConnPool

__all__ = [
    "__version__",
    # Reconciliation
    "Reconciler",
    "Strategy",
    "Result",
    "ResultBuilder",
    "RolloutPolicy",
    # Drain
    "DrainState",
    # Replication
    "ShardReplicationController",
    # Topology
    "Conn",
    "ConnPool",
    # Partitioning
    "KeyRange",
    "equal_key_ranges",
    "equal_shard_names",
]
