"""
Error types raised by implementations of the vitess protocols.

Callers branch on these types instead of on implementation-specific
exceptions:
- NotFoundError: object store record does not exist
- ConflictError: optimistic concurrency or precondition failure
- NoNodeError: topology record does not exist
- PartialResultError: a fan-out read returned only some results
- NotReplicaError: tablet has no replication configured
- LockLostError: a held shard lock is no longer valid

Per project patterns, exceptions store context in attributes and carry a
descriptive message.
"""

from typing import Any


class NotFoundError(Exception):
    """
    Raised when an object does not exist in the store.

    Attributes:
        kind: Kind that was requested.
        key: Key that was requested, rendered "namespace/name".
    """

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


class ConflictError(Exception):
    """
    Raised when a write lost an optimistic concurrency race.

    Covers stale resourceVersion on update, uid precondition mismatch on
    delete, and create of an already existing name.
    """

    def __init__(self, kind: str, key: str, reason: str = "") -> None:
        self.kind = kind
        self.key = key
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"conflict writing {kind} {key}{detail}")


class NoNodeError(Exception):
    """Raised when a topology record does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"node doesn't exist: {path}")


class PartialResultError(Exception):
    """
    Raised by fan-out topology reads that could only read some records.

    Attributes:
        partial: The records that were read successfully.
    """

    def __init__(self, message: str, partial: dict[str, Any]) -> None:
        self.partial = partial
        super().__init__(message)


class NotReplicaError(Exception):
    """Raised by replication status calls on a tablet that never had replication configured."""

    def __init__(self, tablet: str) -> None:
        self.tablet = tablet
        super().__init__(f"tablet {tablet} is not configured as a replica")


class LockLostError(Exception):
    """Raised by ShardLock.check() when the distributed lock is no longer held."""

    def __init__(self, keyspace: str, shard: str) -> None:
        self.keyspace = keyspace
        self.shard = shard
        super().__init__(f"lost lock on shard {keyspace}/{shard}")
