"""
Periodic resync of reconciled keys.

Watches can miss changes, and some state (topology, tablet replication)
never produces watch events at all. Each reconcile therefore asks for the
same key to be reconciled again after a resync period. The period is
jittered by +/-25% so that keys reconciled together don't stay in lockstep.
"""

import random

from vitess_operator.controller.queue import WorkQueue

JITTER_FRACTION = 0.25


class Resync:
    """
    Schedules periodic re-adds of keys to a work queue.

    Example:
        resync = Resync(queue, period=30.0)
        resync.enqueue(key)  # key is added back in 22.5s to 37.5s
    """

    def __init__(
        self,
        queue: WorkQueue,
        period: float,
        jitter: float = JITTER_FRACTION,
        rng: random.Random | None = None,
    ) -> None:
        self.queue = queue
        self.period = period
        self.jitter = jitter
        self._rng = rng or random.Random()

    def next_delay(self) -> float:
        spread = self.period * self.jitter
        return self.period + self._rng.uniform(-spread, spread)

    def enqueue(self, key) -> None:
        """Schedule key for another reconcile after a jittered period."""
        if self.period <= 0:
            return
        self.queue.add_after(key, self.next_delay())
