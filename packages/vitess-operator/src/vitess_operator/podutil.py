"""
Helpers for reading tablet Pods.

Pods are plain Objects here; these helpers know where Kubernetes keeps the
few fields the operator reads, and which labels identify a tablet.
"""

from vitess_protocols import Object, TabletAlias

COMPONENT_LABEL = "planetscale.com/component"
CLUSTER_LABEL = "planetscale.com/cluster"
KEYSPACE_LABEL = "planetscale.com/keyspace"
SHARD_LABEL = "planetscale.com/shard"
CELL_LABEL = "planetscale.com/cell"
TABLET_UID_LABEL = "planetscale.com/tablet-uid"
TABLET_TYPE_LABEL = "planetscale.com/tablet-type"
TABLET_INDEX_LABEL = "planetscale.com/tablet-index"

VTTABLET_COMPONENT = "vttablet"
EXTERNAL_PRIMARY_POOL = "externalmaster"


def is_evicted(obj: Object) -> bool:
    """
    Whether obj is a Pod that was evicted by its Node.

    Such a Pod should have been restarted but instead entered the permanent
    Failed phase.
    """
    if obj.kind != "Pod":
        return False
    restart_policy = obj.spec.get("restartPolicy", "Always")
    phase = obj.status.get("phase", "")
    return restart_policy in ("Always", "OnFailure") and phase == "Failed"


def is_ready(obj: Object) -> bool:
    """Whether the Pod's Ready condition is True."""
    for condition in obj.status.get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def is_running(obj: Object) -> bool:
    return obj.status.get("phase") == "Running"


def tablet_alias(obj: Object) -> TabletAlias:
    """
    Tablet alias of a tablet Pod, from its cell and uid labels.

    Raises:
        ValueError: If the labels are missing or malformed.
    """
    cell = obj.labels.get(CELL_LABEL, "")
    uid = obj.labels.get(TABLET_UID_LABEL, "")
    if not cell or not uid.isdigit():
        raise ValueError(f"Pod {obj.key} is missing tablet alias labels")
    return TabletAlias(cell=cell, uid=int(uid))


def tablet_selector(cluster: str, keyspace: str, shard_safe_name: str) -> dict[str, str]:
    """Label selector matching every tablet Pod of one shard."""
    return {
        COMPONENT_LABEL: VTTABLET_COMPONENT,
        CLUSTER_LABEL: cluster,
        KEYSPACE_LABEL: keyspace,
        SHARD_LABEL: shard_safe_name,
    }
