"""
Kubernetes API Pydantic response types.

This module provides Pydantic models for parsing Kubernetes REST responses:
- Single objects (any kind): apiVersion, kind, metadata, spec, status
- Lists: items plus list metadata (resourceVersion for watches)
- Watch events: one JSON document per line of a watch stream
- Status: the error body returned with 4xx/5xx responses

These are API response types for external data validation. Internal types
(Object, ObjectMeta, ...) are dataclasses in vitess_protocols.types; the
to_object()/from_object() helpers convert between the two.

Notes:
- Field names are camelCase on the wire; models use aliases
- Unknown fields are ignored; spec and status stay untyped dicts
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vitess_protocols import Object, ObjectMeta, OwnerReference, WatchEvent, WatchEventType


class _KubeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# Objects
# =============================================================================


class KubeOwnerReference(_KubeModel):
    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = Field(False, alias="blockOwnerDeletion")


class KubeObjectMeta(_KubeModel):
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = Field("", alias="resourceVersion")
    generation: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[KubeOwnerReference] = Field(
        default_factory=list, alias="ownerReferences"
    )
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")


class KubeObject(_KubeModel):
    """
    Any Kubernetes object.

    Example response:
    {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "x", "namespace": "default", "resourceVersion": "42"},
        "spec": {...},
        "status": {...}
    }
    """

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = ""
    metadata: KubeObjectMeta = Field(default_factory=KubeObjectMeta)
    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    def to_object(self, kind: str = "") -> Object:
        """Convert to the generic Object. List items omit kind, so pass it in."""
        meta = self.metadata
        return Object(
            kind=self.kind or kind,
            api_version=self.api_version,
            metadata=ObjectMeta(
                name=meta.name,
                namespace=meta.namespace,
                uid=meta.uid,
                resource_version=meta.resource_version,
                generation=meta.generation,
                labels=dict(meta.labels),
                annotations=dict(meta.annotations),
                owner_references=[
                    OwnerReference(
                        api_version=ref.api_version,
                        kind=ref.kind,
                        name=ref.name,
                        uid=ref.uid,
                        controller=ref.controller,
                        block_owner_deletion=ref.block_owner_deletion,
                    )
                    for ref in meta.owner_references
                ],
                deletion_timestamp=meta.deletion_timestamp,
            ),
            spec=self.spec,
            status=self.status,
        )


def from_object(obj: Object) -> dict[str, Any]:
    """Render an Object as a Kubernetes request body."""
    meta = obj.metadata
    metadata: dict[str, Any] = {
        "name": meta.name,
        "namespace": meta.namespace,
        "labels": dict(meta.labels),
        "annotations": dict(meta.annotations),
    }
    if meta.uid:
        metadata["uid"] = meta.uid
    if meta.resource_version:
        metadata["resourceVersion"] = meta.resource_version
    if meta.owner_references:
        metadata["ownerReferences"] = [
            {
                "apiVersion": ref.api_version,
                "kind": ref.kind,
                "name": ref.name,
                "uid": ref.uid,
                "controller": ref.controller,
                "blockOwnerDeletion": ref.block_owner_deletion,
            }
            for ref in meta.owner_references
        ]
    body: dict[str, Any] = {
        "apiVersion": obj.api_version,
        "kind": obj.kind,
        "metadata": metadata,
    }
    if obj.spec:
        body["spec"] = obj.spec
    if obj.status:
        body["status"] = obj.status
    return body


# =============================================================================
# Lists and watches
# =============================================================================


class KubeListMeta(_KubeModel):
    resource_version: str = Field("", alias="resourceVersion")


class KubeList(_KubeModel):
    """
    Response from a collection GET.

    Example response:
    {"kind": "PodList", "metadata": {"resourceVersion": "100"}, "items": [...]}
    """

    kind: str = ""
    metadata: KubeListMeta = Field(default_factory=KubeListMeta)
    items: list[KubeObject] = Field(default_factory=list)


class KubeWatchEvent(_KubeModel):
    """
    One line of a watch stream.

    Example:
    {"type": "MODIFIED", "object": {"kind": "Pod", ...}}
    """

    type: str
    object: dict[str, Any]

    def to_watch_event(self, kind: str) -> WatchEvent | None:
        """Convert to a WatchEvent; BOOKMARK and ERROR events return None."""
        try:
            event_type = WatchEventType(self.type)
        except ValueError:
            return None
        return WatchEvent(
            type=event_type, object=KubeObject.model_validate(self.object).to_object(kind)
        )


# =============================================================================
# Errors
# =============================================================================


class KubeStatus(_KubeModel):
    """
    Error body returned with failed requests.

    Example response:
    {"kind": "Status", "status": "Failure", "reason": "Conflict", "code": 409,
     "message": "the object has been modified"}
    """

    status: str = ""
    reason: str = ""
    message: str = ""
    code: int = 0
