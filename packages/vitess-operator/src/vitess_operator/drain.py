"""
Drain protocol annotations and state machine.

A drain is a request to retire a stateful unit (a tablet Pod) safely. An
external drain tool and the shard replication controller cooperate through
annotations on the unit:

- drain.planetscale.com/supported: the unit's kind participates at all
- drain.planetscale.com/started: set by the drain tool; value is the reason
- drain.planetscale.com/acknowledged: set by the controller (UTC timestamp)
- drain.planetscale.com/finished: set by the controller once the unit may
  be deleted (UTC timestamp)

States move NotDraining -> Draining -> Acknowledged -> Finished. The only
backwards move is the abort path: when the drain tool removes "started",
the controller clears acknowledged/finished, resetting to NotDraining.

At most one unit per shard is Finished at any time: state_transitions()
never finishes a unit while another is Finished or still Draining.
"""

from datetime import datetime, timezone
from enum import IntEnum

from vitess_operator.errors import InvalidDrainStateError
from vitess_protocols import Object

ANNOTATION_PREFIX = "drain.planetscale.com"
SUPPORTED_ANNOTATION = f"{ANNOTATION_PREFIX}/supported"
STARTED_ANNOTATION = f"{ANNOTATION_PREFIX}/started"
ACKNOWLEDGED_ANNOTATION = f"{ANNOTATION_PREFIX}/acknowledged"
FINISHED_ANNOTATION = f"{ANNOTATION_PREFIX}/finished"


class DrainState(IntEnum):
    """Drain progress of one unit, ordered from idle to done."""

    NOT_DRAINING = 0
    DRAINING = 1
    ACKNOWLEDGED = 2
    FINISHED = 3

    def __str__(self) -> str:
        return _STATE_NAMES[self]


_STATE_NAMES = {
    DrainState.NOT_DRAINING: "NotDraining",
    DrainState.DRAINING: "Draining",
    DrainState.ACKNOWLEDGED: "DrainingAcknowledged",
    DrainState.FINISHED: "DrainingFinished",
}


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def supported(obj: Object) -> bool:
    return SUPPORTED_ANNOTATION in obj.annotations


def set_supported(obj: Object) -> None:
    obj.annotations[SUPPORTED_ANNOTATION] = "ensure that the tablet shuts down gracefully"


def start(obj: Object, message: str) -> None:
    """Request a drain. Called by the drain tool, never by the controller."""
    obj.annotations[STARTED_ANNOTATION] = message


def started(obj: Object) -> bool:
    return STARTED_ANNOTATION in obj.annotations


def stop(obj: Object) -> None:
    """Withdraw a drain request (abort)."""
    obj.annotations.pop(STARTED_ANNOTATION, None)


def acknowledge(obj: Object) -> None:
    obj.annotations[ACKNOWLEDGED_ANNOTATION] = _now()


def acknowledged(obj: Object) -> bool:
    return ACKNOWLEDGED_ANNOTATION in obj.annotations


def unacknowledge(obj: Object) -> None:
    obj.annotations.pop(ACKNOWLEDGED_ANNOTATION, None)


def finish(obj: Object) -> None:
    obj.annotations[FINISHED_ANNOTATION] = _now()


def finished(obj: Object) -> bool:
    return FINISHED_ANNOTATION in obj.annotations


def unfinish(obj: Object) -> None:
    obj.annotations.pop(FINISHED_ANNOTATION, None)


def get_state(obj: Object) -> DrainState:
    """
    Read the drain state of a unit.

    Raises:
        InvalidDrainStateError: If the unit is finished without having been
            acknowledged. The error's state attribute is FINISHED, since
            the unit may already be getting deleted.
    """
    if finished(obj):
        if not acknowledged(obj):
            raise InvalidDrainStateError(
                DrainState.FINISHED,
                f"{obj.metadata.name} is marked finished but was never acknowledged",
            )
        return DrainState.FINISHED
    if acknowledged(obj):
        return DrainState.ACKNOWLEDGED
    if started(obj):
        return DrainState.DRAINING
    return DrainState.NOT_DRAINING


def state_transitions(states: dict[str, DrainState]) -> dict[str, DrainState]:
    """
    Compute the next state of every unit in one group.

    Rules:
    - every Draining unit becomes Acknowledged, and any Draining unit blocks
      finishing on this pass (it may change which unit should finish)
    - nothing is finished while some unit is already Finished
    - otherwise the first Acknowledged unit by name becomes Finished

    Args:
        states: Current state per unit name.

    Returns:
        Only the units whose state changes, mapped to their new state.
    """
    transitions: dict[str, DrainState] = {}
    can_finish = True
    for name, state in states.items():
        if state == DrainState.DRAINING:
            transitions[name] = DrainState.ACKNOWLEDGED
            can_finish = False
        elif state == DrainState.FINISHED:
            can_finish = False

    if can_finish:
        for name in sorted(states):
            if states[name] == DrainState.ACKNOWLEDGED:
                transitions[name] = DrainState.FINISHED
                break

    return transitions
