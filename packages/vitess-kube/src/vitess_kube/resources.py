"""
REST paths of the kinds the operator reads and writes.

Kubernetes addresses collections by group, version and plural name rather
than by kind, so every kind the operator touches is registered here.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Resource:
    """
    REST location of one kind.

    Attributes:
        api_version: "v1" for the core group, "group/version" otherwise.
        plural: Lowercase plural name used in paths.
    """

    api_version: str
    plural: str

    def collection_path(self, namespace: str) -> str:
        prefix = "/api/v1" if self.api_version == "v1" else f"/apis/{self.api_version}"
        if not namespace:
            return f"{prefix}/{self.plural}"
        return f"{prefix}/namespaces/{namespace}/{self.plural}"

    def object_path(self, namespace: str, name: str) -> str:
        return f"{self.collection_path(namespace)}/{name}"


RESOURCES: dict[str, Resource] = {
    "Pod": Resource("v1", "pods"),
    "Service": Resource("v1", "services"),
    "PersistentVolumeClaim": Resource("v1", "persistentvolumeclaims"),
    "Event": Resource("v1", "events"),
    "Deployment": Resource("apps/v1", "deployments"),
    "PodDisruptionBudget": Resource("policy/v1", "poddisruptionbudgets"),
    "VitessCluster": Resource("planetscale.com/v2", "vitessclusters"),
    "VitessCell": Resource("planetscale.com/v2", "vitesscells"),
    "VitessKeyspace": Resource("planetscale.com/v2", "vitesskeyspaces"),
    "VitessShard": Resource("planetscale.com/v2", "vitessshards"),
    "VitessBackupStorage": Resource("planetscale.com/v2", "vitessbackupstorages"),
    "EtcdLockserver": Resource("planetscale.com/v2", "etcdlockservers"),
}


def resource_for(kind: str) -> Resource:
    """
    Look up the REST location of a kind.

    Raises:
        ValueError: If the kind is not registered.
    """
    try:
        return RESOURCES[kind]
    except KeyError:
        raise ValueError(
            f"Unknown kind '{kind}'. Known kinds: {', '.join(sorted(RESOURCES))}"
        ) from None


def label_selector(selector: dict[str, str] | None) -> str:
    """Render an equality label selector ("k1=v1,k2=v2")."""
    if not selector:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))
