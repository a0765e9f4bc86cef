"""
In-memory fakes of the store, topology and tablet manager protocols.

The fakes keep just enough state to drive the replication passes through
the scenarios they handle in production: a fresh shard, a restored shard,
a restarted primary, a drain. Every mutating call is recorded so tests
can assert on what the operator did.
"""

import asyncio
import copy
import itertools
from contextlib import asynccontextmanager

from vitess_protocols import (
    ConflictError,
    ConnParams,
    LockLostError,
    NoNodeError,
    NotFoundError,
    NotReplicaError,
    Object,
    ObjectKey,
    ObjectMeta,
    OwnerReference,
    PartialResultError,
    QueryResult,
    ReplicationStatus,
    ShardInfo,
    Tablet,
    TabletAlias,
    TabletType,
    WatchEvent,
    WatchEventType,
)

NAMESPACE = "default"
CLUSTER = "example"
KEYSPACE = "commerce"
SHARD = "-"
CELL = "zone1"
UUID = "3e11fa47-71ca-11e1-9e33-c80aa9429562"


def position(last: int, uuid: str = UUID) -> str:
    """A MySQL56 GTID set with transactions 1..last of one server."""
    return f"MySQL56/{uuid}:1-{last}"


# =============================================================================
# Object store
# =============================================================================


class FakeObjectStore:
    """Dict-backed ObjectStoreProtocol with resourceVersion and uid checks."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, ObjectKey], Object] = {}
        self.deleted: list[tuple[str, ObjectKey]] = []
        self.updates: list[Object] = []
        self.fail_updates: Exception | None = None
        self.fail_lists: Exception | None = None
        self._ids = itertools.count(1)
        self._events: asyncio.Queue[WatchEvent] | None = None

    def _next(self) -> str:
        return str(next(self._ids))

    def add(self, obj: Object) -> Object:
        """Seed an object, assigning identity fields the store owns."""
        obj = copy.deepcopy(obj)
        obj.metadata.uid = obj.metadata.uid or f"uid-{self._next()}"
        obj.metadata.resource_version = self._next()
        obj.metadata.generation = obj.metadata.generation or 1
        self.objects[(obj.kind, obj.key)] = obj
        return copy.deepcopy(obj)

    def peek(self, kind: str, key: ObjectKey) -> Object:
        return self.objects[(kind, key)]

    async def get(self, kind: str, key: ObjectKey) -> Object:
        try:
            return copy.deepcopy(self.objects[(kind, key)])
        except KeyError:
            raise NotFoundError(kind, str(key)) from None

    async def list(self, kind: str, namespace: str, selector: dict[str, str]) -> list[Object]:
        if self.fail_lists is not None:
            raise self.fail_lists
        return [
            copy.deepcopy(obj)
            for (k, key), obj in sorted(self.objects.items(), key=lambda item: str(item[0][1]))
            if k == kind
            and (not namespace or key.namespace == namespace)
            and all(obj.labels.get(lk) == lv for lk, lv in selector.items())
        ]

    async def create(self, obj: Object) -> Object:
        if (obj.kind, obj.key) in self.objects:
            raise ConflictError(obj.kind, str(obj.key), "already exists")
        created = self.add(obj)
        self._notify(WatchEventType.ADDED, created)
        return created

    async def update(self, obj: Object) -> Object:
        if self.fail_updates is not None:
            raise self.fail_updates
        current = self.objects.get((obj.kind, obj.key))
        if current is None:
            raise NotFoundError(obj.kind, str(obj.key))
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(obj.kind, str(obj.key), "stale resourceVersion")
        stored = copy.deepcopy(obj)
        stored.metadata.resource_version = self._next()
        if stored.spec != current.spec:
            stored.metadata.generation = current.metadata.generation + 1
        self.objects[(obj.kind, obj.key)] = stored
        self.updates.append(copy.deepcopy(stored))
        self._notify(WatchEventType.MODIFIED, stored)
        return copy.deepcopy(stored)

    async def delete(
        self,
        kind: str,
        key: ObjectKey,
        precondition_uid: str | None = None,
        propagation: str = "Background",
    ) -> None:
        current = self.objects.get((kind, key))
        if current is None:
            raise NotFoundError(kind, str(key))
        if precondition_uid and precondition_uid != current.metadata.uid:
            raise ConflictError(kind, str(key), "uid precondition failed")
        del self.objects[(kind, key)]
        self.deleted.append((kind, key))
        self._notify(WatchEventType.DELETED, current)

    async def watch(self, kind: str, namespace: str, selector: dict[str, str]):
        self._events = asyncio.Queue()
        for obj in await self.list(kind, namespace, selector):
            yield WatchEvent(WatchEventType.ADDED, obj)
        while True:
            event = await self._events.get()
            if event.object.kind == kind:
                yield event

    def _notify(self, event_type: WatchEventType, obj: Object) -> None:
        if self._events is not None:
            self._events.put_nowait(WatchEvent(event_type, copy.deepcopy(obj)))


class RecordingSink:
    """EventRecorderProtocol that keeps every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    def event(self, obj: Object, event_type: str, reason: str, message: str) -> None:
        self.events.append((event_type, reason, message))

    def reasons(self) -> list[str]:
        return [reason for _, reason, _ in self.events]

    def messages(self, reason: str) -> list[str]:
        return [message for _, r, message in self.events if r == reason]


# =============================================================================
# Topology
# =============================================================================


class FakeLock:
    def __init__(self) -> None:
        self.lost = False
        self.checks = 0

    def check(self) -> None:
        self.checks += 1
        if self.lost:
            raise LockLostError(KEYSPACE, SHARD)


class FakeTopo:
    """TopoServerProtocol over dicts of shard and tablet records."""

    def __init__(self) -> None:
        self.shards: dict[tuple[str, str], ShardInfo] = {}
        self.tablets: dict[str, Tablet] = {}
        self.locks: list[str] = []
        self.lock = FakeLock()
        self.unreadable: set[str] = set()
        self.fail_get_shard: Exception | None = None
        self.fail_liveness: Exception | None = None
        self.closed = False
        self.deleted_shards: list[str] = []

    def add_shard(self, keyspace: str = KEYSPACE, name: str = SHARD, primary: str | None = None):
        info = ShardInfo(keyspace, name)
        if primary:
            info.primary_alias = TabletAlias.parse(primary)
        self.shards[(keyspace, name)] = info
        return info

    def add_tablet(self, alias: str, tablet_type: TabletType, keyspace: str = KEYSPACE) -> Tablet:
        parsed = TabletAlias.parse(alias)
        tablet = Tablet(
            alias=parsed,
            keyspace=keyspace,
            shard=SHARD,
            type=tablet_type,
            hostname=f"{alias}.vttablet",
            mysql_hostname=f"{alias}.mysql",
            mysql_port=3306,
        )
        self.tablets[str(parsed)] = tablet
        return tablet

    @asynccontextmanager
    async def lock_shard(self, keyspace: str, shard: str, action: str):
        self.locks.append(action)
        yield self.lock

    async def get_shard(self, keyspace: str, shard: str) -> ShardInfo:
        if self.fail_get_shard is not None:
            raise self.fail_get_shard
        try:
            return copy.deepcopy(self.shards[(keyspace, shard)])
        except KeyError:
            raise NoNodeError(f"/keyspaces/{keyspace}/shards/{shard}") from None

    async def update_shard_fields(self, keyspace: str, shard: str, update) -> ShardInfo:
        info = self.shards[(keyspace, shard)]
        update(info)
        return copy.deepcopy(info)

    async def get_tablet_map_for_shard(self, keyspace: str, shard: str, cells=None):
        tablets = {
            alias: copy.deepcopy(t)
            for alias, t in self.tablets.items()
            if t.keyspace == keyspace
            and t.shard == shard
            and (cells is None or t.alias.cell in cells)
        }
        if self.unreadable & tablets.keys():
            partial = {a: t for a, t in tablets.items() if a not in self.unreadable}
            raise PartialResultError("some tablets could not be read", partial)
        return tablets

    async def get_tablet(self, alias: TabletAlias) -> Tablet:
        try:
            return copy.deepcopy(self.tablets[str(alias)])
        except KeyError:
            raise NoNodeError(f"/tablets/{alias}") from None

    async def get_cell_info_names(self) -> list[str]:
        if self.fail_liveness is not None:
            raise self.fail_liveness
        return [CELL]

    async def get_shard_names(self, keyspace: str) -> list[str]:
        return [name for (ks, name) in self.shards if ks == keyspace]

    async def delete_shard(self, keyspace: str, shard: str, recursive: bool = False) -> None:
        if (keyspace, shard) not in self.shards:
            raise NoNodeError(f"/keyspaces/{keyspace}/shards/{shard}")
        del self.shards[(keyspace, shard)]
        self.deleted_shards.append(shard)

    async def close(self) -> None:
        self.closed = True

    def set_primary(self, alias: TabletAlias) -> None:
        for info in self.shards.values():
            old = info.primary_alias
            if old is not None and str(old) in self.tablets:
                self.tablets[str(old)].type = TabletType.REPLICA
            info.primary_alias = alias
        self.tablets[str(alias)].type = TabletType.PRIMARY


# =============================================================================
# Tablet manager
# =============================================================================


class FakeTabletManager:
    """
    TabletManagerClientProtocol answering from per-tablet state.

    Tablets without an entry in replication raise NotReplicaError, like a
    MySQL that never had replication configured. primary_position() reports
    the executed GTID set: the positions entry if there is one, else the
    replication position. An Exception in replication makes the tablet
    unreachable for both calls.
    """

    def __init__(self) -> None:
        self.replication: dict[str, ReplicationStatus | Exception] = {}
        self.positions: dict[str, str] = {}
        self.databases: dict[str, list[str]] = {}
        self.read_only: dict[str, bool] = {}
        self.calls: list[tuple] = []
        self.fail_set_source: set[str] = set()

    def replicate(self, alias: str, source: Tablet, pos: str = "") -> None:
        self.replication[alias] = ReplicationStatus(
            position=pos,
            source_host=source.mysql_hostname,
            source_port=source.mysql_port,
            io_thread_running=True,
            sql_thread_running=True,
        )

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def replication_status(self, tablet: Tablet) -> ReplicationStatus:
        alias = str(tablet.alias)
        status = self.replication.get(alias)
        if status is None:
            raise NotReplicaError(alias)
        if isinstance(status, Exception):
            raise status
        return copy.deepcopy(status)

    async def primary_position(self, tablet: Tablet) -> str:
        alias = str(tablet.alias)
        status = self.replication.get(alias)
        if isinstance(status, Exception):
            raise status
        if alias in self.positions:
            return self.positions[alias]
        return status.position if status is not None else ""

    async def promote_replica(self, tablet: Tablet) -> str:
        self.calls.append(("promote_replica", str(tablet.alias)))
        return self.positions.get(str(tablet.alias), "")

    async def set_replication_source(
        self,
        tablet: Tablet,
        parent: TabletAlias,
        time_created_ns: int = 0,
        wait_position: str = "",
        force_start_replication: bool = False,
    ) -> None:
        alias = str(tablet.alias)
        self.calls.append(("set_replication_source", alias, str(parent), force_start_replication))
        if alias in self.fail_set_source:
            raise RuntimeError(f"tablet {alias} unreachable")

    async def set_read_write(self, tablet: Tablet) -> None:
        self.calls.append(("set_read_write", str(tablet.alias)))
        self.read_only[str(tablet.alias)] = False

    async def change_type(self, tablet: Tablet, tablet_type: TabletType) -> None:
        self.calls.append(("change_type", str(tablet.alias), tablet_type))

    async def execute_fetch_as_dba(self, tablet: Tablet, query: str, max_rows: int = 100) -> QueryResult:
        alias = str(tablet.alias)
        if query.startswith("SHOW DATABASES"):
            names = ["information_schema", "mysql", *self.databases.get(alias, [])]
            return QueryResult(rows=[[name] for name in names])
        if "read_only" in query:
            value = "ON" if self.read_only.get(alias, False) else "OFF"
            return QueryResult(rows=[["read_only", value]])
        raise AssertionError(f"unexpected query {query!r}")


class FakeWrangler:
    """WranglerProtocol that records reparents and applies them to FakeTopo."""

    def __init__(self, topo: FakeTopo, tmc: FakeTabletManager) -> None:
        self.topo = topo
        self.tmc = tmc
        self.calls: list[tuple] = []
        self.fail: Exception | None = None

    async def init_shard_primary(self, keyspace, shard, primary_alias, force, wait_replicas_timeout):
        self.calls.append(("init_shard_primary", str(primary_alias), force))
        if self.fail is not None:
            raise self.fail
        self.topo.set_primary(primary_alias)

    async def planned_reparent_shard(self, keyspace, shard, new_primary, wait_replicas_timeout):
        self.calls.append(("planned_reparent_shard", str(new_primary)))
        if self.fail is not None:
            raise self.fail
        self.topo.set_primary(new_primary)

    async def tablet_externally_reparented(self, alias):
        self.calls.append(("tablet_externally_reparented", str(alias)))
        if self.fail is not None:
            raise self.fail

    async def change_tablet_type(self, alias, tablet_type):
        self.calls.append(("change_tablet_type", str(alias), tablet_type))


class FakeBackend:
    """TopoBackendProtocol handing out one shared FakeTopo."""

    def __init__(self, topo: FakeTopo, tmc: FakeTabletManager) -> None:
        self.topo = topo
        self.tmc = tmc
        self.opened: list[ConnParams] = []
        self.fail: Exception | None = None
        self.wranglers: list[FakeWrangler] = []

    async def open(self, params: ConnParams) -> FakeTopo:
        self.opened.append(params)
        if self.fail is not None:
            raise self.fail
        return self.topo

    def wrangler(self, topo: FakeTopo) -> FakeWrangler:
        wr = FakeWrangler(topo, self.tmc)
        self.wranglers.append(wr)
        return wr


# =============================================================================
# Object builders
# =============================================================================


def tablet_status(
    tablet_type: str = "replica",
    running: str = "True",
    ready: str = "True",
    available: str = "True",
    pool_type: str = "replica",
) -> dict:
    return {
        "poolType": pool_type,
        "type": tablet_type,
        "running": running,
        "ready": ready,
        "available": available,
    }


def make_shard(
    tablets: dict[str, dict] | None = None,
    has_master: str = "False",
    master_alias: str = "",
    has_initial_backup: str = "Unknown",
    backups: bool = False,
    external: bool = False,
    recover_restarted_master: bool = True,
    annotations: dict[str, str] | None = None,
    generation: int = 1,
    observed_generation: int = 1,
) -> Object:
    """A VitessShard object for keyspace commerce, shard "-", in cell zone1."""
    pool: dict = {"cell": CELL, "type": "replica", "replicas": 2}
    if backups:
        pool["backupLocationName"] = "default"
    if external:
        pool = {
            "cell": CELL,
            "type": "externalmaster",
            "replicas": 1,
            "externalDatastore": {"host": "db.example.com", "port": 3306, "database": KEYSPACE},
        }
    spec = {
        "name": SHARD,
        "keyRange": {},
        "tabletPools": [pool],
        "backupLocations": [{"name": "default"}] if backups else [],
        "replication": {"recoverRestartedMaster": recover_restarted_master},
        "globalLockserver": {"implementation": "etcd2", "address": "etcd:2379", "rootPath": "/vitess/global"},
        "zoneMap": {CELL: "us-east-1a"},
    }
    status = {
        "observedGeneration": observed_generation,
        "tablets": tablets or {},
        "hasMaster": has_master,
        "masterAlias": master_alias,
        "hasInitialBackup": has_initial_backup,
    }
    return Object(
        kind="VitessShard",
        api_version="planetscale.com/v2",
        metadata=ObjectMeta(
            name=f"{CLUSTER}-{KEYSPACE}-x-x",
            namespace=NAMESPACE,
            uid="shard-uid",
            generation=generation,
            labels={
                "planetscale.com/cluster": CLUSTER,
                "planetscale.com/keyspace": KEYSPACE,
            },
            annotations=dict(annotations or {}),
        ),
        spec=spec,
        status=status,
    )


def make_pod(
    alias: str,
    ready: bool = True,
    annotations: dict[str, str] | None = None,
    pool_type: str = "replica",
    owner: str | None = f"{CLUSTER}-{KEYSPACE}-x-x",
) -> Object:
    """A tablet Pod labeled for keyspace commerce, shard "-"."""
    parsed = TabletAlias.parse(alias)
    refs = []
    if owner:
        refs.append(
            OwnerReference(api_version="planetscale.com/v2", kind="VitessShard", name=owner, uid="shard-uid")
        )
    return Object(
        kind="Pod",
        metadata=ObjectMeta(
            name=f"{CLUSTER}-vttablet-{parsed.cell}-{parsed.uid:010d}",
            namespace=NAMESPACE,
            labels={
                "planetscale.com/component": "vttablet",
                "planetscale.com/cluster": CLUSTER,
                "planetscale.com/keyspace": KEYSPACE,
                "planetscale.com/shard": "x-x",
                "planetscale.com/cell": parsed.cell,
                "planetscale.com/tablet-uid": str(parsed.uid),
                "planetscale.com/tablet-type": pool_type,
            },
            annotations=dict(annotations or {}),
            owner_references=refs,
        ),
        spec={"restartPolicy": "Always"},
        status={
            "phase": "Running",
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        },
    )
