"""
Event recording helpers.

Recorder wraps any EventRecorderProtocol sink and mirrors every event into
the module logger, so events stay visible even when the sink drops them.
"""

import logging

from vitess_protocols import EventRecorderProtocol, Object

logger = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"


class Recorder:
    """
    Records events against objects.

    Example:
        recorder = Recorder(KubeEventRecorder(...))
        recorder.warning(shard, "DrainBlocked", f"no candidate for {alias}")
    """

    def __init__(self, sink: EventRecorderProtocol) -> None:
        self.sink = sink

    def event(self, obj: Object, event_type: str, reason: str, message: str) -> None:
        level = logging.WARNING if event_type == WARNING else logging.INFO
        logger.log(level, "%s %s: %s: %s", obj.kind, obj.key, reason, message)
        self.sink.event(obj, event_type, reason, message)

    def normal(self, obj: Object, reason: str, message: str) -> None:
        self.event(obj, NORMAL, reason, message)

    def warning(self, obj: Object, reason: str, message: str) -> None:
        self.event(obj, WARNING, reason, message)


class LogSink:
    """Event sink that only logs. Used when events should not be persisted."""

    def event(self, obj: Object, event_type: str, reason: str, message: str) -> None:
        pass
