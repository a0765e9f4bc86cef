"""
Topology server access.

- ConnPool / Conn: shared, reference-counted topology connections
- prune_shards: removal of shard records that are no longer desired
"""

from vitess_operator.toposerver.connpool import Conn, ConnPool
from vitess_operator.toposerver.prune import delete_shards, prune_shards, shards_to_prune

__all__ = [
    "Conn",
    "ConnPool",
    "delete_shards",
    "prune_shards",
    "shards_to_prune",
]
