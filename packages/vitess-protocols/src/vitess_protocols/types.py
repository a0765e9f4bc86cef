"""
Generic types shared by the vitess operator packages.

This module defines the data structures exchanged between the operator core
and its external collaborators:

- Object store records (ObjectKey, ObjectMeta, OwnerReference, Object)
- Topology records (TabletAlias, TabletType, Tablet, ShardInfo)
- Tablet manager results (ReplicationStatus, QueryResult)
- Lockserver connection parameters (ConnParams)

All types use @dataclass. Objects are mutable on purpose: strategies and
annotation helpers edit copies in place, and the engine compares copies to
decide whether a write is needed.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# =============================================================================
# Object store records
# =============================================================================


@dataclass(frozen=True)
class ObjectKey:
    """
    Stable identity of an object in the store.

    Attributes:
        namespace: Namespace the object lives in.
        name: Object name, unique within (kind, namespace).
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    """
    Reference from a dependent object to the object that owns it.

    Only one owner reference per object may have controller=True.
    """

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


@dataclass
class ObjectMeta:
    """
    Metadata common to every stored object.

    Attributes:
        name: Object name.
        namespace: Object namespace.
        uid: Identity version. Changes when an object is deleted and recreated
            under the same name, so it is used as a delete precondition.
        resource_version: Optimistic concurrency token for updates.
        generation: Incremented by the store on every spec change.
        labels: Ownership fingerprint and selector labels.
        annotations: Free-form metadata (rollout and drain state live here).
        owner_references: Owners of this object.
        deletion_timestamp: Set once deletion has been requested.
    """

    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    deletion_timestamp: str | None = None


@dataclass
class Object:
    """
    A generic stored object of any kind.

    The engine never interprets spec or status; only strategies and the
    controllers that own a kind do.
    """

    kind: str
    api_version: str = "v1"
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    def deepcopy(self) -> "Object":
        return copy.deepcopy(self)


@dataclass
class OrphanStatus:
    """
    Why an unwanted object was left in place instead of being deleted.

    Attributes:
        reason: Short CamelCase reason code.
        message: Human-readable explanation.
    """

    reason: str
    message: str


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """A change notification delivered by ObjectStoreProtocol.watch()."""

    type: WatchEventType
    object: Object


class ConditionStatus(str, Enum):
    """Tri-state condition value."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# =============================================================================
# Topology records
# =============================================================================


class TabletType(str, Enum):
    """
    Serving role of a tablet.

    PRIMARY also parses from its legacy name "master".
    """

    UNKNOWN = "unknown"
    PRIMARY = "primary"
    REPLICA = "replica"
    RDONLY = "rdonly"
    SPARE = "spare"
    EXPERIMENTAL = "experimental"
    BACKUP = "backup"
    RESTORE = "restore"
    DRAINED = "drained"

    @classmethod
    def parse(cls, value: str) -> "TabletType":
        """Parse a tablet type name, case-insensitively."""
        name = value.strip().lower()
        if name == "master":
            return cls.PRIMARY
        if name == "batch":
            return cls.RDONLY
        if not name:
            return cls.UNKNOWN
        return cls(name)


@dataclass(frozen=True, order=True)
class TabletAlias:
    """
    Globally unique tablet identity: the cell it lives in plus a numeric uid.

    Rendered as "<cell>-<uid zero-padded to 10 digits>".
    """

    cell: str
    uid: int

    def __str__(self) -> str:
        return f"{self.cell}-{self.uid:010d}"

    @classmethod
    def parse(cls, value: str) -> "TabletAlias":
        """
        Parse "<cell>-<uid>".

        Raises:
            ValueError: If the string has no uid suffix.
        """
        cell, sep, uid = value.rpartition("-")
        if not sep or not cell or not uid.isdigit():
            raise ValueError(f"invalid tablet alias: {value!r}")
        return cls(cell=cell, uid=int(uid))


@dataclass
class Tablet:
    """
    A tablet record as stored in the topology service.

    Attributes:
        alias: Tablet identity.
        keyspace: Keyspace this tablet serves.
        shard: Shard name (e.g. "-80").
        type: Current serving type.
        hostname: Host running vttablet.
        mysql_hostname: Host of the backing MySQL.
        mysql_port: Port of the backing MySQL.
        db_name_override: Explicit database name, if any.
    """

    alias: TabletAlias
    keyspace: str
    shard: str
    type: TabletType = TabletType.UNKNOWN
    hostname: str = ""
    mysql_hostname: str = ""
    mysql_port: int = 0
    db_name_override: str = ""

    @property
    def mysql_addr(self) -> str:
        return f"{self.mysql_hostname}:{self.mysql_port}"

    @property
    def db_name(self) -> str:
        if self.db_name_override:
            return self.db_name_override
        return f"vt_{self.keyspace}"


@dataclass
class ShardInfo:
    """
    A shard record as stored in the topology service.

    Attributes:
        keyspace: Keyspace name.
        name: Shard name.
        primary_alias: The tablet currently recorded as primary, if any.
        primary_term_start_time: When the current primary term began.
        is_primary_serving: Whether the primary serves traffic.
    """

    keyspace: str
    name: str
    primary_alias: TabletAlias | None = None
    primary_term_start_time: datetime | None = None
    is_primary_serving: bool = False

    def has_primary(self) -> bool:
        return self.primary_alias is not None


# =============================================================================
# Tablet manager results
# =============================================================================


@dataclass
class ReplicationStatus:
    """
    Replication status of one tablet's MySQL.

    Attributes:
        position: Encoded replication position (GTID set).
        source_host: Host the tablet replicates from.
        source_port: Port the tablet replicates from.
        io_thread_running: Whether the IO thread runs.
        sql_thread_running: Whether the SQL thread runs.
    """

    position: str = ""
    source_host: str = ""
    source_port: int = 0
    io_thread_running: bool = False
    sql_thread_running: bool = False

    @property
    def source_addr(self) -> str:
        return f"{self.source_host}:{self.source_port}"


@dataclass
class QueryResult:
    """Rows returned by ExecuteFetchAsDba, every value rendered as a string."""

    rows: list[list[str]] = field(default_factory=list)


# =============================================================================
# Lockserver connection parameters
# =============================================================================


@dataclass(frozen=True)
class ConnParams:
    """
    Parameters identifying one topology service connection.

    Frozen so it can key the connection pool map.

    Attributes:
        implementation: Topo plugin name (e.g. "etcd2", "k8s").
        address: Server address(es).
        root_path: Root path of this cluster's records.
    """

    implementation: str
    address: str
    root_path: str

    def __str__(self) -> str:
        return f"{self.implementation}://{self.address}{self.root_path}"
