"""
Shard replication management.

- ShardReplicationController: runs every replication pass for a shard
- init_shard_primary / init_restored_shard: first primary election
- tablet_externally_reparent: external datastore primary declaration
- repair_replication: read-only primary and misdirected replica repair
- reconcile_drain: drain answers and planned reparents
- reconcile_rollout: one-at-a-time tablet restarts
"""

from vitess_operator.replication.controller import ShardReplicationController
from vitess_operator.replication.drain import candidate_primary, reconcile_drain
from vitess_operator.replication.external_reparent import tablet_externally_reparent
from vitess_operator.replication.init_restored_shard import (
    elect_initial_shard_primary,
    init_restored_shard,
)
from vitess_operator.replication.init_shard_primary import init_shard_primary
from vitess_operator.replication.position import Position, decode_position
from vitess_operator.replication.repair import can_repair_replication, repair_replication
from vitess_operator.replication.rollout import reconcile_rollout

__all__ = [
    "Position",
    "ShardReplicationController",
    "can_repair_replication",
    "candidate_primary",
    "decode_position",
    "elect_initial_shard_primary",
    "init_restored_shard",
    "init_shard_primary",
    "reconcile_drain",
    "reconcile_rollout",
    "repair_replication",
    "tablet_externally_reparent",
]
