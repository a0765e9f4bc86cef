"""
Generic, kind-agnostic object reconciliation.

The Reconciler converges one actual object (read from the store) toward the
desired state expressed by a Strategy. It is called once per desired object
on every relevant event, and once per owner for object sets.

Updates are split into three tiers:
1. update_in_place: always safe, applied immediately
2. update_rolling_in_place: applied in place once the object is released
3. update_recreate / update_rolling_recreate: need delete + recreate; the
   rolling variant also waits for release (and for a drain, if the kind
   supports one)

Until an object is released, the pending tier 2/3 change is recorded on the
object as a rollout "scheduled" annotation describing the diff.

Writes are guarded by optimistic concurrency: updates carry the
resource_version that was read, and deletes carry the uid as a precondition,
so a racing reconcile fails instead of clobbering. Failures surface as
events on the owner plus an exception; the caller requeues.
"""

import logging

from vitess_operator import drain, metrics, rollout
from vitess_operator.errors import AlreadyOwnedError, NameCollisionError
from vitess_operator.events import Recorder
from vitess_operator.podutil import is_evicted
from vitess_operator.reconciler.diff import describe_diff
from vitess_operator.reconciler.strategy import Strategy
from vitess_operator.rollout import RolloutPolicy
from vitess_protocols import (
    NotFoundError,
    Object,
    ObjectKey,
    ObjectStoreProtocol,
    OwnerReference,
)

logger = logging.getLogger(__name__)

PROPAGATION_BACKGROUND = "Background"


def has_matching_labels(obj: Object, labels: dict[str, str]) -> bool:
    """Whether obj carries every expected label (its ownership fingerprint)."""
    return all(obj.labels.get(k) == v for k, v in labels.items())


def set_controller_reference(owner: Object, obj: Object) -> None:
    """
    Make owner the controlling owner of obj.

    Raises:
        AlreadyOwnedError: If a different object already controls obj.
    """
    ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )
    refs = obj.metadata.owner_references
    for existing in refs:
        if existing.controller and existing.uid != owner.metadata.uid:
            raise AlreadyOwnedError(str(obj.key), f"{existing.kind} {existing.name}")
    for i, existing in enumerate(refs):
        if existing.uid == owner.metadata.uid:
            # Replace in place so the list order (and equality) is stable.
            refs[i] = ref
            return
    refs.append(ref)


class Reconciler:
    """
    Converges objects of any kind toward their desired state.

    Example:
        reconciler = Reconciler(store, recorder)
        await reconciler.reconcile_object(
            owner=shard,
            key=ObjectKey("vitess", "tablet-zone1-0000000101"),
            labels={"planetscale.com/cluster": "example"},
            wanted=True,
            strategy=tablet_pod_strategy,
        )
    """

    def __init__(
        self,
        store: ObjectStoreProtocol,
        recorder: Recorder,
        rollout_policy: RolloutPolicy = RolloutPolicy.EXTERNAL,
    ) -> None:
        self.store = store
        self.recorder = recorder
        self.rollout_policy = rollout_policy

    async def reconcile_object(
        self,
        owner: Object,
        key: ObjectKey,
        labels: dict[str, str],
        wanted: bool,
        strategy: Strategy,
    ) -> None:
        """
        Reconcile a single object.

        Args:
            owner: Object that owns (or should own) the reconciled object.
                Events are recorded against it.
            key: Key of the reconciled object.
            labels: Labels the object must carry to be considered ours.
            wanted: Whether the object should exist.
            strategy: Callbacks for this kind.

        Raises:
            NameCollisionError: If a wanted object exists without our labels.
            Exception: Any store error; the caller should requeue.
        """
        try:
            await self._reconcile_object(owner, key, labels, wanted, strategy)
        except Exception as err:
            metrics.record_reconcile(strategy.kind, owner.kind, err)
            raise
        metrics.record_reconcile(strategy.kind, owner.kind, None)

    async def reconcile_object_set(
        self,
        owner: Object,
        keys: list[ObjectKey],
        labels: dict[str, str],
        strategy: Strategy,
    ) -> None:
        """
        Reconcile a named set of objects of one kind.

        Every key is reconciled as wanted first, each independently. Only
        then are existing objects matching labels (in the owner's namespace)
        listed, and every one not in keys is reconciled as unwanted. A shrink
        of the desired set therefore never races ahead of creating a member
        that is still desired.

        Raises:
            Exception: The first error encountered, after every object was tried.
        """
        first_error: Exception | None = None
        wanted = set(keys)

        for key in keys:
            try:
                await self.reconcile_object(owner, key, labels, True, strategy)
            except Exception as err:
                first_error = first_error or err

        try:
            existing = await self.store.list(
                strategy.kind, owner.metadata.namespace, labels
            )
        except Exception as err:
            self.recorder.warning(
                owner, "ListFailed", f"failed to list {strategy.kind} objects: {err}"
            )
            raise first_error or err

        for obj in existing:
            if obj.key in wanted:
                continue
            try:
                await self.reconcile_object(owner, obj.key, labels, False, strategy)
            except Exception as err:
                first_error = first_error or err

        if first_error is not None:
            raise first_error

    async def _reconcile_object(
        self,
        owner: Object,
        key: ObjectKey,
        labels: dict[str, str],
        wanted: bool,
        strategy: Strategy,
    ) -> None:
        kind = strategy.kind
        desc = f"{kind} {key.name}"

        # Reads come from a possibly stale cache; everything below is
        # idempotent, and any inconsistency surfaces as a write conflict.
        try:
            cur: Object | None = await self.store.get(kind, key)
        except NotFoundError:
            cur = None
        except Exception as err:
            self.recorder.warning(owner, "GetFailed", f"failed to get {desc}: {err}")
            raise

        if cur is not None and is_evicted(cur):
            # Evicted Pods stay around as Failed tombstones. We use stable
            # names, so the tombstone must go before the name can be reused.
            await self._delete(owner, cur, strategy, what=f"evicted Pod {key.name}", missing_ok=True)
            metrics.EVICTED_POD_COUNT.labels(owner_kind=owner.kind).inc()
            cur = None

        if not wanted:
            await self._turndown(owner, key, labels, cur, strategy)
            return

        if cur is None:
            await self._create(owner, key, strategy)
            return

        await self._update(owner, key, labels, cur, strategy)

    async def _turndown(
        self,
        owner: Object,
        key: ObjectKey,
        labels: dict[str, str],
        cur: Object | None,
        strategy: Strategy,
    ) -> None:
        if cur is None or cur.metadata.deletion_timestamp:
            return

        desc = f"{strategy.kind} {cur.metadata.name}"
        if not has_matching_labels(cur, labels):
            self.recorder.warning(
                owner,
                "NameCollision",
                f"not deleting unwanted {desc} because its labels don't match ours",
            )
            return

        if strategy.prepare_for_turndown is not None:
            new = cur.deepcopy()
            orphan = strategy.prepare_for_turndown(key, new)
            if orphan is not None:
                # Not a failure: we wait, and get requeued when state changes.
                self.recorder.warning(
                    owner,
                    "TurndownBlocked",
                    f"refusing to delete unwanted {desc}: {orphan.message}",
                )
                if strategy.orphan_status is not None:
                    strategy.orphan_status(key, cur, orphan)
                await self._update_in_place(owner, key, strategy, cur, new)
                return

        await self._delete(owner, cur, strategy)

    async def _create(self, owner: Object, key: ObjectKey, strategy: Strategy) -> None:
        desc = f"{strategy.kind} {key.name}"
        if strategy.new is None:
            raise ValueError(f"strategy for {strategy.kind} has no new() callback")

        new = strategy.new(key)
        new.metadata.namespace = key.namespace
        new.metadata.name = key.name
        try:
            set_controller_reference(owner, new)
            await self.store.create(new)
        except Exception as err:
            metrics.record_write(metrics.CREATE_COUNT, strategy.kind, owner.kind, err)
            self.recorder.warning(owner, "CreateFailed", f"failed to create {desc}: {err}")
            raise
        metrics.record_write(metrics.CREATE_COUNT, strategy.kind, owner.kind, None)
        self.recorder.normal(owner, "Created", f"created {desc}")

    async def _update(
        self,
        owner: Object,
        key: ObjectKey,
        labels: dict[str, str],
        cur: Object,
        strategy: Strategy,
    ) -> None:
        if not has_matching_labels(cur, labels):
            err = NameCollisionError(strategy.kind, str(key))
            self.recorder.warning(owner, "NameCollision", str(err))
            raise err

        if strategy.status is not None:
            strategy.status(key, cur)

        if cur.metadata.deletion_timestamp:
            return

        # Tier 1: always safe.
        in_place = cur.deepcopy()
        if strategy.update_in_place is not None:
            strategy.update_in_place(key, in_place)

        # Tier 3, immediate: recreate now, and let the next pass build it anew.
        if strategy.update_recreate is not None:
            recreate = in_place.deepcopy()
            strategy.update_recreate(key, recreate)
            if recreate != in_place:
                await self._delete(owner, cur, strategy)
                return

        if self._released(cur):
            # Tier 2 applies now.
            if strategy.update_rolling_in_place is not None:
                strategy.update_rolling_in_place(key, in_place)
            if strategy.update_rolling_recreate is not None:
                recreate = in_place.deepcopy()
                strategy.update_rolling_recreate(key, recreate)
                if recreate != in_place:
                    # Recreating makes the in-place edits moot.
                    await self._drain_and_delete(owner, key, strategy, cur, in_place, recreate)
                    return
            rollout.unschedule(in_place)
            await self._update_in_place(owner, key, strategy, cur, in_place)
            return

        # Not released: apply tier 1, and record whether tier 2/3 is pending.
        pending = in_place.deepcopy()
        if strategy.update_rolling_in_place is not None:
            strategy.update_rolling_in_place(key, pending)
        if strategy.update_rolling_recreate is not None:
            strategy.update_rolling_recreate(key, pending)

        if pending == in_place:
            rollout.unschedule(in_place)
        else:
            rollout.schedule(in_place, describe_diff(in_place, pending))
        await self._update_in_place(owner, key, strategy, cur, in_place)

    def _released(self, obj: Object) -> bool:
        if self.rollout_policy == RolloutPolicy.IMMEDIATE:
            return True
        return rollout.released(obj)

    async def _drain_and_delete(
        self,
        owner: Object,
        key: ObjectKey,
        strategy: Strategy,
        cur: Object,
        in_place: Object,
        recreate: Object,
    ) -> None:
        if drain.supported(cur) and not drain.finished(cur):
            # Can't delete yet. Ask for a drain, keep the recreate pending,
            # and at least apply the in-place changes.
            drain.start(in_place, "rolling update")
            rollout.schedule(in_place, describe_diff(in_place, recreate))
            await self._update_in_place(owner, key, strategy, cur, in_place)
            return
        await self._delete(owner, cur, strategy)

    async def _update_in_place(
        self,
        owner: Object,
        key: ObjectKey,
        strategy: Strategy,
        cur: Object,
        new: Object,
    ) -> None:
        desc = f"{strategy.kind} {new.metadata.name}"
        try:
            set_controller_reference(owner, new)
        except AlreadyOwnedError as err:
            self.recorder.warning(owner, "UpdateFailed", f"failed to update {desc}: {err}")
            raise

        if new == cur:
            return

        logger.info("Updating %s %s in place:\n%s", strategy.kind, key, describe_diff(cur, new))
        try:
            await self.store.update(new)
        except Exception as err:
            metrics.record_write(metrics.UPDATE_COUNT, strategy.kind, owner.kind, err)
            self.recorder.warning(owner, "UpdateFailed", f"failed to update {desc}: {err}")
            raise
        metrics.record_write(metrics.UPDATE_COUNT, strategy.kind, owner.kind, None)
        self.recorder.normal(owner, "Updated", f"updated {desc}")

    async def _delete(
        self,
        owner: Object,
        cur: Object,
        strategy: Strategy,
        what: str | None = None,
        missing_ok: bool = False,
    ) -> None:
        desc = what or f"{strategy.kind} {cur.metadata.name}"
        try:
            await self.store.delete(
                cur.kind or strategy.kind,
                cur.key,
                precondition_uid=cur.metadata.uid,
                propagation=PROPAGATION_BACKGROUND,
            )
        except Exception as err:
            if missing_ok and isinstance(err, NotFoundError):
                logger.debug("%s is already gone", desc)
                return
            metrics.record_write(metrics.DELETE_COUNT, strategy.kind, owner.kind, err)
            self.recorder.warning(owner, "DeleteFailed", f"failed to delete {desc}: {err}")
            raise
        metrics.record_write(metrics.DELETE_COUNT, strategy.kind, owner.kind, None)
        self.recorder.normal(owner, "Deleted", f"deleted {desc}")
