"""
VitessShard custom resource model.

The shard replication controller reads VitessShard objects from the store as
generic Objects. This module parses their spec/status dicts into Pydantic
models, like the API response types elsewhere in the operator:

- Field names follow Python style; aliases match the camelCase resource
- Unknown fields are ignored, so newer resource versions still parse
- Status condition values are tri-state strings ("True"/"False"/"Unknown")

Only the fields the operator core reads are modeled. The cluster schema and
its defaulting rules are owned elsewhere.
"""

from pydantic import BaseModel, ConfigDict, Field

from vitess_operator import podutil
from vitess_operator.partitioning import KeyRange
from vitess_protocols import ConditionStatus, ConnParams, Object, TabletAlias

KIND = "VitessShard"
API_VERSION = "planetscale.com/v2"

REPLICA_POOL = "replica"
RDONLY_POOL = "rdonly"
EXTERNAL_PRIMARY_POOL = podutil.EXTERNAL_PRIMARY_POOL
EXTERNAL_REPLICA_POOL = "externalreplica"
EXTERNAL_RDONLY_POOL = "externalrdonly"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KeyRangeSpec(_Model):
    start: str = ""
    end: str = ""

    def to_key_range(self) -> KeyRange:
        return KeyRange(bytes.fromhex(self.start), bytes.fromhex(self.end))


class LockserverSpec(_Model):
    implementation: str = ""
    address: str = ""
    root_path: str = Field("", alias="rootPath")

    def conn_params(self) -> ConnParams:
        return ConnParams(self.implementation, self.address, self.root_path)


class ExternalDatastoreSpec(_Model):
    host: str = ""
    port: int = 3306
    database: str = ""


class TabletPoolSpec(_Model):
    cell: str
    type: str
    replicas: int = 0
    data_volume_claim_template: dict | None = Field(None, alias="dataVolumeClaimTemplate")
    external_datastore: ExternalDatastoreSpec | None = Field(None, alias="externalDatastore")
    backup_location_name: str = Field("", alias="backupLocationName")


class BackupLocationSpec(_Model):
    name: str = ""


class ReplicationSpec(_Model):
    initialize_master: bool = Field(False, alias="initializeMaster")
    initialize_backup: bool = Field(True, alias="initializeBackup")
    recover_restarted_master: bool = Field(True, alias="recoverRestartedMaster")


class VitessShardSpec(_Model):
    """Desired state of a shard."""

    name: str
    key_range: KeyRangeSpec = Field(default_factory=KeyRangeSpec, alias="keyRange")
    database_name: str = Field("", alias="databaseName")
    tablet_pools: list[TabletPoolSpec] = Field(default_factory=list, alias="tabletPools")
    backup_locations: list[BackupLocationSpec] = Field(
        default_factory=list, alias="backupLocations"
    )
    replication: ReplicationSpec = Field(default_factory=ReplicationSpec)
    global_lockserver: LockserverSpec = Field(
        default_factory=LockserverSpec, alias="globalLockserver"
    )
    zone_map: dict[str, str] = Field(default_factory=dict, alias="zoneMap")

    def using_external_datastore(self) -> bool:
        return any(p.external_datastore is not None for p in self.tablet_pools)

    def backups_enabled(self) -> bool:
        default_location = any(loc.name == "" for loc in self.backup_locations)
        return any(p.backup_location_name or default_location for p in self.tablet_pools)

    def cells(self) -> list[str]:
        return sorted({p.cell for p in self.tablet_pools})

    def cell_in_cluster(self, cell: str) -> bool:
        return cell in self.zone_map


class TabletStatus(_Model):
    """Observed state of one tablet, as projected by the shard controller."""

    pool_type: str = Field("", alias="poolType")
    index: int = 0
    running: ConditionStatus = ConditionStatus.UNKNOWN
    ready: ConditionStatus = ConditionStatus.UNKNOWN
    available: ConditionStatus = ConditionStatus.UNKNOWN
    data_volume_bound: ConditionStatus = Field(ConditionStatus.UNKNOWN, alias="dataVolumeBound")
    type: str = ""
    pending_changes: str = Field("", alias="pendingChanges")


class VitessShardStatus(_Model):
    """Observed state of a shard."""

    observed_generation: int = Field(0, alias="observedGeneration")
    tablets: dict[str, TabletStatus] = Field(default_factory=dict)
    master_alias: str = Field("", alias="masterAlias")
    has_master: ConditionStatus = Field(ConditionStatus.UNKNOWN, alias="hasMaster")
    has_initial_backup: ConditionStatus = Field(
        ConditionStatus.UNKNOWN, alias="hasInitialBackup"
    )
    serving_writes: ConditionStatus = Field(ConditionStatus.UNKNOWN, alias="servingWrites")


class VitessShard:
    """
    A VitessShard object with its spec and status parsed.

    Attributes:
        obj: The underlying Object (used for events and writes).
        spec: Parsed spec.
        status: Parsed status.
    """

    def __init__(self, obj: Object) -> None:
        self.obj = obj
        self.spec = VitessShardSpec.model_validate(obj.spec)
        self.status = VitessShardStatus.model_validate(obj.status)

    @property
    def cluster(self) -> str:
        return self.obj.labels.get(podutil.CLUSTER_LABEL, "")

    @property
    def keyspace(self) -> str:
        return self.obj.labels.get(podutil.KEYSPACE_LABEL, "")

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def generation(self) -> int:
        return self.obj.metadata.generation

    def key_range(self) -> KeyRange:
        return self.spec.key_range.to_key_range()

    def tablet_selector(self) -> dict[str, str]:
        return podutil.tablet_selector(self.cluster, self.keyspace, self.key_range().safe_name())

    def tablet_aliases(self) -> list[TabletAlias]:
        """
        Aliases of the tablets listed in status, sorted.

        Raises:
            ValueError: If a status key isn't a valid tablet alias.
        """
        return sorted(TabletAlias.parse(name) for name in self.status.tablets)

    def __repr__(self) -> str:
        return f"VitessShard({self.keyspace}/{self.name})"
