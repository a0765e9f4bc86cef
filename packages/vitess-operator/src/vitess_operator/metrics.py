"""Prometheus metrics for the vitess operator."""

from prometheus_client import Counter, Gauge, Histogram

NAMESPACE = "vitess_operator"

RESULT_SUCCESS = "success"
RESULT_ERROR = "error"

LATENCY_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]


def result_label(err: BaseException | None) -> str:
    """Map an outcome to the "result" label value."""
    return RESULT_ERROR if err is not None else RESULT_SUCCESS


# Reconciliation engine metrics
RECONCILE_COUNT = Counter(
    f"{NAMESPACE}_reconciler_reconcile_count",
    "Reconciliation attempts for an object",
    ["kind", "owner_kind", "result"],
)

CREATE_COUNT = Counter(
    f"{NAMESPACE}_reconciler_create_count",
    "Object creation attempts",
    ["kind", "owner_kind", "result"],
)

UPDATE_COUNT = Counter(
    f"{NAMESPACE}_reconciler_update_count",
    "Object update attempts",
    ["kind", "owner_kind", "result"],
)

DELETE_COUNT = Counter(
    f"{NAMESPACE}_reconciler_delete_count",
    "Object deletion attempts",
    ["kind", "owner_kind", "result"],
)

EVICTED_POD_COUNT = Counter(
    f"{NAMESPACE}_reconciler_evicted_pod_count",
    "Evicted Pods deleted so their names can be reused",
    ["owner_kind"],
)

# Topology connection pool metrics
TOPO_CACHE_HITS = Counter(
    f"{NAMESPACE}_toposerver_cache_hits",
    "Topo connection requests served by an existing connection",
)

TOPO_CACHE_MISSES = Counter(
    f"{NAMESPACE}_toposerver_cache_misses",
    "Topo connection requests that started a new connection",
)

TOPO_OPEN_LATENCY = Histogram(
    f"{NAMESPACE}_toposerver_open_latency_seconds",
    "Latency of ConnPool.open() in seconds",
    buckets=LATENCY_BUCKETS,
)

TOPO_CONNECT_SUCCESSES = Counter(
    f"{NAMESPACE}_toposerver_connect_successes",
    "Successful topo connection attempts",
)

TOPO_CONNECT_ERRORS = Counter(
    f"{NAMESPACE}_toposerver_connect_errors",
    "Failed topo connection attempts",
)

TOPO_CONNECT_LATENCY = Histogram(
    f"{NAMESPACE}_toposerver_connect_latency_seconds",
    "Latency of establishing a topo connection in seconds",
    buckets=LATENCY_BUCKETS,
)

TOPO_CHECK_SUCCESSES = Counter(
    f"{NAMESPACE}_toposerver_check_successes",
    "Successful topo connection liveness checks",
)

TOPO_CHECK_ERRORS = Counter(
    f"{NAMESPACE}_toposerver_check_errors",
    "Failed topo connection liveness checks",
)

TOPO_DISCONNECTS = Counter(
    f"{NAMESPACE}_toposerver_disconnects",
    "Topo connections closed by the pool",
    ["reason"],  # "idle" or "dead"
)

TOPO_CONN_COUNT = Gauge(
    f"{NAMESPACE}_toposerver_conn_count",
    "Topo connections held by the pool",
    ["state"],  # "active" or "dead"
)

TOPO_CONN_REF_COUNT = Gauge(
    f"{NAMESPACE}_toposerver_conn_ref_count",
    "Outstanding references to pooled topo connections",
    ["state"],
)

# Shard replication metrics
_SHARD_LABELS = ["cluster", "keyspace", "shard", "result"]

SHARD_RECONCILE_COUNT = Counter(
    f"{NAMESPACE}_shard_replication_reconcile_count",
    "Reconciliation attempts for a VitessShard",
    _SHARD_LABELS,
)

PLANNED_REPARENT_COUNT = Counter(
    f"{NAMESPACE}_shard_replication_planned_reparent_count",
    "PlannedReparentShard attempts for a VitessShard",
    _SHARD_LABELS,
)

RECOVER_RESTARTED_PRIMARY_COUNT = Counter(
    f"{NAMESPACE}_shard_replication_recover_restarted_master_count",
    "RecoverRestartedMaster attempts for a VitessShard",
    _SHARD_LABELS,
)

REPARENT_TABLET_COUNT = Counter(
    f"{NAMESPACE}_shard_replication_reparent_tablet_count",
    "ReparentTablet attempts for a VitessShard",
    _SHARD_LABELS,
)


def record_reconcile(kind: str, owner_kind: str, err: BaseException | None) -> None:
    """Record the outcome of one object reconcile."""
    RECONCILE_COUNT.labels(kind=kind, owner_kind=owner_kind, result=result_label(err)).inc()


def record_write(
    counter: Counter, kind: str, owner_kind: str, err: BaseException | None
) -> None:
    """Record the outcome of a create, update or delete."""
    counter.labels(kind=kind, owner_kind=owner_kind, result=result_label(err)).inc()


def record_shard_event(
    counter: Counter,
    cluster: str,
    keyspace: str,
    shard: str,
    err: BaseException | None,
) -> None:
    """Record a shard replication outcome on one of the shard counters."""
    counter.labels(
        cluster=cluster, keyspace=keyspace, shard=shard, result=result_label(err)
    ).inc()


def set_conn_gauges(
    active: int, active_refs: int, dead: int, dead_refs: int
) -> None:
    """Publish pool occupancy after a sweep."""
    TOPO_CONN_COUNT.labels(state="active").set(active)
    TOPO_CONN_REF_COUNT.labels(state="active").set(active_refs)
    TOPO_CONN_COUNT.labels(state="dead").set(dead)
    TOPO_CONN_REF_COUNT.labels(state="dead").set(dead_refs)
