"""
Protocol definitions for the vitess operator.

This package provides the Protocol definitions and shared record types that
the operator core depends on. It has zero dependencies on other vitess-*
packages and no third-party dependencies.

Key protocols:
- ObjectStoreProtocol: Desired/actual object storage
- EventRecorderProtocol: Human-readable events on objects
- TopoServerProtocol: Topology records and per-shard locks
- TabletManagerClientProtocol: Per-tablet RPCs
- WranglerProtocol: Reparent orchestration
- TopoBackendProtocol: Pluggable source of the above

Key types:
- Object, ObjectKey, ObjectMeta, OwnerReference, OrphanStatus
- Tablet, TabletAlias, TabletType, ShardInfo
- ReplicationStatus, QueryResult, ConnParams
"""

from vitess_protocols.errors import (
    ConflictError,
    LockLostError,
    NoNodeError,
    NotFoundError,
    NotReplicaError,
    PartialResultError,
)
from vitess_protocols.store import EventRecorderProtocol, ObjectStoreProtocol
from vitess_protocols.topo import (
    ShardLock,
    TabletManagerClientProtocol,
    TopoBackendProtocol,
    TopoServerProtocol,
    WranglerProtocol,
)
from vitess_protocols.types import (
    ConditionStatus,
    ConnParams,
    Object,
    ObjectKey,
    ObjectMeta,
    OrphanStatus,
    OwnerReference,
    QueryResult,
    ReplicationStatus,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletType,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    # Protocols
    "ObjectStoreProtocol",
    "EventRecorderProtocol",
    "TopoServerProtocol",
    "TabletManagerClientProtocol",
    "WranglerProtocol",
    "TopoBackendProtocol",
    "ShardLock",
    # Errors
    "NotFoundError",
    "ConflictError",
    "NoNodeError",
    "PartialResultError",
    "NotReplicaError",
    "LockLostError",
    # Data types
    "Object",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "OrphanStatus",
    "WatchEvent",
    "WatchEventType",
    "ConditionStatus",
    "Tablet",
    "TabletAlias",
    "TabletType",
    "ShardInfo",
    "ReplicationStatus",
    "QueryResult",
    "ConnParams",
]
