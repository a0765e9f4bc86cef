"""
Exception classes raised by the operator core.

- NameCollisionError: an object exists under our name but isn't ours
- AlreadyOwnedError: an object is controlled by a different owner
- InvalidDrainStateError: drain annotations are in an impossible combination
- ReplicationError: a replication precondition failed and needs a human
- ProgrammingError: a code path that must never be reached was reached

Transient failures (timeouts, conflicts, lost locks) are not wrapped; they
propagate as-is and are turned into requeues by the controllers.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vitess_operator.drain import DrainState


class NameCollisionError(Exception):
    """
    Raised when a wanted object exists but lacks our label fingerprint.

    This is never retried automatically: something else owns the name.

    Attributes:
        kind: Object kind.
        key: Object key, rendered "namespace/name".
    """

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(
            f"can't reconcile {kind} {key}: "
            f"an object with that name exists but does not have our labels"
        )


class AlreadyOwnedError(Exception):
    """Raised when stamping a controller reference on an object another controller owns."""

    def __init__(self, key: str, owner: str) -> None:
        self.key = key
        self.owner = owner
        super().__init__(f"{key} is already controlled by {owner}")


class InvalidDrainStateError(Exception):
    """
    Raised when drain annotations are inconsistent.

    Attributes:
        state: The best-effort state the annotations were read as.
    """

    def __init__(self, state: "DrainState", reason: str) -> None:
        self.state = state
        super().__init__(reason)


class ReplicationError(Exception):
    """
    Raised when shard topology is in a state the operator refuses to auto-resolve.

    Examples: two tablets claiming primary, a replica ahead of the primary,
    a primary already recorded in a shard we're trying to initialize.
    """

    def __init__(self, keyspace: str, shard: str, reason: str) -> None:
        self.keyspace = keyspace
        self.shard = shard
        self.reason = reason
        super().__init__(f"shard {keyspace}/{shard}: {reason}")


class ProgrammingError(Exception):
    """Raised on internal invariant violations. Never retried."""
