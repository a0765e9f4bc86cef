"""
Controller runtime: work queue, resync and the reconcile loop.
"""

from vitess_operator.controller.loop import ControllerLoop, Watch, own_key
from vitess_operator.controller.queue import ShutDownError, WorkQueue
from vitess_operator.controller.resync import Resync

__all__ = [
    "ControllerLoop",
    "Resync",
    "ShutDownError",
    "Watch",
    "WorkQueue",
    "own_key",
]
