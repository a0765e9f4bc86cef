"""
Per-kind reconcile strategy.

A Strategy parameterizes the Reconciler for one object kind. It is a bundle
of plain functions supplied by the owning controller; it holds no mutable
state, so one Strategy can be shared by any number of concurrent reconciles.

Every callback receives the object key and an object to inspect or edit in
place. Callbacks must be deterministic: given the same inputs they must make
the same edits, otherwise the Reconciler sees a diff on every pass.
"""

from dataclasses import dataclass
from typing import Callable

from vitess_protocols import Object, ObjectKey, OrphanStatus

NewFunc = Callable[[ObjectKey], Object]
UpdateFunc = Callable[[ObjectKey, Object], None]
StatusFunc = Callable[[ObjectKey, Object], None]
PrepareForTurndownFunc = Callable[[ObjectKey, Object], OrphanStatus | None]
OrphanStatusFunc = Callable[[ObjectKey, Object, OrphanStatus], None]


@dataclass(frozen=True)
class Strategy:
    """
    Callbacks that describe how to converge one kind of object.

    Attributes:
        kind: Object kind managed by this strategy (e.g. "Pod", "Service").
        new: Build the desired object from scratch. Required for wanted objects.
        update_in_place: Apply changes that are always safe to apply immediately.
        update_rolling_in_place: Apply changes that are safe in place but must
            wait for a rollout release.
        update_recreate: Apply changes that require deleting and recreating
            the object, immediately.
        update_rolling_recreate: Apply changes that require deleting and
            recreating the object, after a rollout release.
        status: Observe the current object (e.g. to project its state into the
            owner's status). Must not modify the object.
        prepare_for_turndown: Called before deleting an unwanted object.
            Return an OrphanStatus to veto deletion; edits to the object are
            still written.
        orphan_status: Record that an unwanted object was left in place.
    """

    kind: str
    new: NewFunc | None = None
    update_in_place: UpdateFunc | None = None
    update_rolling_in_place: UpdateFunc | None = None
    update_recreate: UpdateFunc | None = None
    update_rolling_recreate: UpdateFunc | None = None
    status: StatusFunc | None = None
    prepare_for_turndown: PrepareForTurndownFunc | None = None
    orphan_status: OrphanStatusFunc | None = None
