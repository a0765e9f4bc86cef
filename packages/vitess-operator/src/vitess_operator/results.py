"""
Reconcile results and a builder for merging them.

A reconcile pass is made of several independent steps. Each step reports a
Result; the builder merges them so that:
- the first error wins (later errors are logged by the step itself)
- any step asking to requeue makes the pass requeue
- the soonest requested requeue delay wins

Example:
    builder = ResultBuilder()
    builder.merge(await step_one())
    builder.merge(await step_two())
    return builder.result()
"""

from dataclasses import dataclass


@dataclass
class Result:
    """
    Outcome of a reconcile pass.

    Attributes:
        requeue: Reconcile the same key again (with backoff).
        requeue_after: Reconcile again after this many seconds (0 = not requested).
        error: First error encountered, if any.
    """

    requeue: bool = False
    requeue_after: float = 0.0
    error: BaseException | None = None


class ResultBuilder:
    """Accumulates step outcomes into one Result."""

    def __init__(self) -> None:
        self._result = Result()

    def error(self, err: BaseException) -> Result:
        """Record an error, keeping the first one seen."""
        if self._result.error is None:
            self._result.error = err
        return self.result()

    def requeue(self) -> Result:
        self._result.requeue = True
        return self.result()

    def requeue_after(self, delay: float) -> Result:
        """Request a requeue, keeping the sooner of any two delays."""
        current = self._result.requeue_after
        if current == 0 or delay < current:
            self._result.requeue_after = delay
        return self.result()

    def merge(self, other: Result) -> Result:
        if other.error is not None:
            self.error(other.error)
        if other.requeue:
            self.requeue()
        if other.requeue_after:
            self.requeue_after(other.requeue_after)
        return self.result()

    def result(self) -> Result:
        return Result(
            requeue=self._result.requeue,
            requeue_after=self._result.requeue_after,
            error=self._result.error,
        )
