"""
Object store and event recorder protocol definitions.

The ObjectStoreProtocol is the only path by which the operator reads and
writes desired/actual objects. Reads may be served from an eventually
consistent cache; writes are strongly consistent and use optimistic
concurrency:
- update() fails with ConflictError if resource_version is stale
- delete() fails with ConflictError if precondition_uid does not match

The EventRecorderProtocol surfaces human-readable events attached to an
object, the way operators observe what the controllers are doing.
"""

from typing import AsyncIterator, Protocol, runtime_checkable

from vitess_protocols.types import Object, ObjectKey, WatchEvent


@runtime_checkable
class ObjectStoreProtocol(Protocol):
    """
    Protocol for an object store.

    Implementations include the Kubernetes REST adapter (vitess-kube) and
    in-memory fakes used by tests.
    """

    async def get(self, kind: str, key: ObjectKey) -> Object:
        """
        Get an object by key.

        Raises:
            NotFoundError: If no object with that key exists.
        """
        ...

    async def list(
        self, kind: str, namespace: str, selector: dict[str, str]
    ) -> list[Object]:
        """List objects in a namespace whose labels contain every selector pair."""
        ...

    async def create(self, obj: Object) -> Object:
        """
        Create an object.

        Raises:
            ConflictError: If an object with that key already exists.
        """
        ...

    async def update(self, obj: Object) -> Object:
        """
        Update an object, guarded by its resource_version.

        Raises:
            NotFoundError: If the object no longer exists.
            ConflictError: If the object changed since it was read.
        """
        ...

    async def delete(
        self,
        kind: str,
        key: ObjectKey,
        precondition_uid: str | None = None,
        propagation: str = "Background",
    ) -> None:
        """
        Delete an object.

        Args:
            kind: Object kind.
            key: Object key.
            precondition_uid: If set, only delete the object with this uid.
            propagation: Dependent deletion policy ("Background" cascades
                asynchronously).

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If the uid precondition does not match.
        """
        ...

    def watch(
        self, kind: str, namespace: str, selector: dict[str, str]
    ) -> AsyncIterator[WatchEvent]:
        """Stream change notifications for matching objects."""
        ...


@runtime_checkable
class EventRecorderProtocol(Protocol):
    """
    Protocol for recording events against an object.

    event() must not block; implementations that talk to a remote service
    queue the event and deliver it in the background.
    """

    def event(self, obj: Object, event_type: str, reason: str, message: str) -> None:
        """
        Record an event.

        Args:
            obj: Object the event is about.
            event_type: "Normal" or "Warning".
            reason: Short CamelCase reason code.
            message: Human-readable message.
        """
        ...
