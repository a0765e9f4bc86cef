"""
Topology, tablet manager and wrangler protocol definitions.

These protocols describe the RPC surface the shard replication controller
needs from Vitess. They are deliberately opaque: nothing here prescribes a
wire protocol. A TopoBackendProtocol implementation is loaded as a plugin
at startup and supplies the concrete clients.

- TopoServerProtocol: versioned shard/tablet records plus per-shard locks
- TabletManagerClientProtocol: RPCs to a single tablet
- WranglerProtocol: multi-step reparent orchestration
- TopoBackendProtocol: opens topo connections and builds wranglers
"""

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol, runtime_checkable

from vitess_protocols.types import (
    ConnParams,
    QueryResult,
    ReplicationStatus,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletType,
)


@runtime_checkable
class ShardLock(Protocol):
    """A held distributed lock on one shard."""

    def check(self) -> None:
        """
        Verify the lock is still held.

        Raises:
            LockLostError: If the lock expired or was taken by someone else.
        """
        ...


@runtime_checkable
class TopoServerProtocol(Protocol):
    """
    Protocol for a connection to the topology (metadata/locking) service.

    Connections are shared by the ConnPool; callers must not close them.
    """

    async def get_shard(self, keyspace: str, shard: str) -> ShardInfo:
        """
        Read a shard record.

        Raises:
            NoNodeError: If the shard record does not exist.
        """
        ...

    async def update_shard_fields(
        self, keyspace: str, shard: str, update: Callable[[ShardInfo], None]
    ) -> ShardInfo:
        """Read-modify-write a shard record with compare-and-swap retries."""
        ...

    def lock_shard(
        self, keyspace: str, shard: str, action: str
    ) -> AbstractAsyncContextManager[ShardLock]:
        """Acquire the distributed lock on a shard for the duration of a block."""
        ...

    async def get_tablet_map_for_shard(
        self, keyspace: str, shard: str, cells: list[str] | None = None
    ) -> dict[str, Tablet]:
        """
        Read every tablet record of a shard, keyed by alias string.

        Args:
            cells: Restrict to tablets in these cells. None means all cells.

        Raises:
            PartialResultError: If some tablet records could not be read.
                The records that were read are on the exception.
        """
        ...

    async def get_tablet(self, alias: TabletAlias) -> Tablet:
        """Read a single tablet record."""
        ...

    async def get_cell_info_names(self) -> list[str]:
        """List registered cells."""
        ...

    async def get_shard_names(self, keyspace: str) -> list[str]:
        """List shard names of a keyspace."""
        ...

    async def delete_shard(self, keyspace: str, shard: str, recursive: bool = False) -> None:
        """Delete a shard record."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


@runtime_checkable
class TabletManagerClientProtocol(Protocol):
    """Protocol for tablet manager RPCs against a single tablet."""

    async def replication_status(self, tablet: Tablet) -> ReplicationStatus:
        """
        Return replication status.

        Raises:
            NotReplicaError: If replication was never configured.
        """
        ...

    async def primary_position(self, tablet: Tablet) -> str:
        """Return the tablet's current executed position as a primary would report it."""
        ...

    async def promote_replica(self, tablet: Tablet) -> str:
        """Promote a replica to primary and return its position."""
        ...

    async def set_replication_source(
        self,
        tablet: Tablet,
        parent: TabletAlias,
        time_created_ns: int = 0,
        wait_position: str = "",
        force_start_replication: bool = False,
    ) -> None:
        """Point a tablet's replication at a new source."""
        ...

    async def set_read_write(self, tablet: Tablet) -> None:
        """Make the tablet's MySQL writable."""
        ...

    async def change_type(self, tablet: Tablet, tablet_type: TabletType) -> None:
        """Change a tablet's serving type."""
        ...

    async def execute_fetch_as_dba(
        self, tablet: Tablet, query: str, max_rows: int = 100
    ) -> QueryResult:
        """Run a query with DBA privileges and return its rows."""
        ...


@runtime_checkable
class WranglerProtocol(Protocol):
    """
    Protocol for multi-step reparent orchestration.

    Attributes:
        topo: Topology connection used by the wrangler.
        tmc: Tablet manager client used by the wrangler.
    """

    topo: TopoServerProtocol
    tmc: TabletManagerClientProtocol

    async def init_shard_primary(
        self,
        keyspace: str,
        shard: str,
        primary_alias: TabletAlias,
        force: bool,
        wait_replicas_timeout: float,
    ) -> None:
        """Initialize replication in a fresh shard with the given primary."""
        ...

    async def planned_reparent_shard(
        self,
        keyspace: str,
        shard: str,
        new_primary: TabletAlias,
        wait_replicas_timeout: float,
    ) -> None:
        """Gracefully move the primary role to new_primary."""
        ...

    async def tablet_externally_reparented(self, alias: TabletAlias) -> None:
        """Record that alias became primary outside of Vitess' control."""
        ...

    async def change_tablet_type(self, alias: TabletAlias, tablet_type: TabletType) -> None:
        """Change the type of a tablet identified by alias."""
        ...


@runtime_checkable
class TopoBackendProtocol(Protocol):
    """
    Protocol for the pluggable topology backend.

    The operator loads one implementation at startup (see the run command's
    --topo-backend option) and uses it to open pooled connections and to
    build wranglers on top of them.
    """

    async def open(self, params: ConnParams) -> TopoServerProtocol:
        """Open a new topology connection."""
        ...

    def wrangler(self, topo: TopoServerProtocol) -> WranglerProtocol:
        """Build a wrangler that uses the given topology connection."""
        ...
