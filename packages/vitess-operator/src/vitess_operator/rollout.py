"""
Rollout scheduling annotations.

Disruptive changes (tier 2 rolling in-place updates and tier 3 rolling
recreates) are not applied until an object is released. The state lives in
annotations on the object itself, which is the only contract between the
operator and an external rollout tool:

- rollout.planetscale.com/scheduled: present while a change is pending;
  the value describes the pending change
- rollout.planetscale.com/released: present once the change may be applied
- rollout.planetscale.com/cascade: ask the owner to release its children

Only the presence of released/cascade matters, never their value. These
helpers only mutate annotations; the reconciler makes every decision.
"""

from enum import Enum

from vitess_protocols import Object, ObjectStoreProtocol

ANNOTATION_PREFIX = "rollout.planetscale.com"
SCHEDULED_ANNOTATION = f"{ANNOTATION_PREFIX}/scheduled"
RELEASED_ANNOTATION = f"{ANNOTATION_PREFIX}/released"
CASCADE_ANNOTATION = f"{ANNOTATION_PREFIX}/cascade"


class RolloutPolicy(str, Enum):
    """
    How disruptive changes are released.

    IMMEDIATE: every object behaves as if it were released.
    EXTERNAL: changes wait for the released annotation.
    """

    IMMEDIATE = "immediate"
    EXTERNAL = "external"


def schedule(obj: Object, message: str) -> None:
    """Mark a change as pending, described by message."""
    obj.annotations[SCHEDULED_ANNOTATION] = message


def unschedule(obj: Object) -> None:
    """Clear a pending change. A release only ever applies to one change."""
    obj.annotations.pop(SCHEDULED_ANNOTATION, None)
    obj.annotations.pop(RELEASED_ANNOTATION, None)


def scheduled(obj: Object) -> bool:
    return SCHEDULED_ANNOTATION in obj.annotations


def release(obj: Object) -> None:
    obj.annotations[RELEASED_ANNOTATION] = "true"


def unrelease(obj: Object) -> None:
    obj.annotations.pop(RELEASED_ANNOTATION, None)


def released(obj: Object) -> bool:
    return RELEASED_ANNOTATION in obj.annotations


def cascade(obj: Object) -> None:
    obj.annotations[CASCADE_ANNOTATION] = "true"


def uncascade(obj: Object) -> None:
    obj.annotations.pop(CASCADE_ANNOTATION, None)


def cascading(obj: Object) -> bool:
    return CASCADE_ANNOTATION in obj.annotations


async def release_scheduled(store: ObjectStoreProtocol, objects: list[Object]) -> list[Object]:
    """
    Release every scheduled, not yet released object.

    This is what an external rollout tool does. Objects without a pending
    change are left alone so a release never applies to a future change.

    Returns:
        The objects that were released.
    """
    done = []
    for obj in objects:
        if not scheduled(obj) or released(obj):
            continue
        updated = obj.deepcopy()
        release(updated)
        done.append(await store.update(updated))
    return done
