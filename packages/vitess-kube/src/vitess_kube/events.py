"""
Kubernetes Event recorder.

KubeEventRecorder implements EventRecorderProtocol by posting core/v1
Events. event() never blocks the reconcile that calls it: events are
queued and posted by run() in the background. Events are best-effort;
when the queue is full or a post fails, the event is logged and dropped.
"""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from vitess_kube.resources import resource_for
from vitess_protocols import Object

logger = logging.getLogger(__name__)

DEFAULT_COMPONENT = "vitess-operator"
DEFAULT_QUEUE_SIZE = 1000


class KubeEventRecorder:
    """
    Posts Events about objects to the Kubernetes API.

    Example:
        recorder = KubeEventRecorder(http)
        task = asyncio.create_task(recorder.run(shutdown))
        recorder.event(shard, "Warning", "DrainBlocked", "no candidate")
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        component: str = DEFAULT_COMPONENT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.http = http
        self.component = component
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=queue_size)

    def event(self, obj: Object, event_type: str, reason: str, message: str) -> None:
        """Queue an event for posting."""
        try:
            self._queue.put_nowait(self.build_event(obj, event_type, reason, message))
        except asyncio.QueueFull:
            logger.warning("event queue full, dropping %s event on %s %s", reason, obj.kind, obj.key)

    def build_event(self, obj: Object, event_type: str, reason: str, message: str) -> dict:
        """Render the Event body for one event."""
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "generateName": f"{obj.metadata.name}.",
                "namespace": obj.metadata.namespace,
            },
            "involvedObject": {
                "apiVersion": obj.api_version,
                "kind": obj.kind,
                "name": obj.metadata.name,
                "namespace": obj.metadata.namespace,
                "uid": obj.metadata.uid,
                "resourceVersion": obj.metadata.resource_version,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }

    async def run(self, shutdown: asyncio.Event) -> None:
        """Post queued events until shutdown, then flush what's left."""
        while not shutdown.is_set():
            try:
                body = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self._post(body)
        await self.flush()

    async def flush(self) -> None:
        """Post every queued event now."""
        while not self._queue.empty():
            await self._post(self._queue.get_nowait())

    def pending(self) -> int:
        return self._queue.qsize()

    async def _post(self, body: dict) -> None:
        path = resource_for("Event").collection_path(body["metadata"]["namespace"])
        try:
            response = await self.http.post(path, json=body)
            response.raise_for_status()
        except httpx.HTTPError as err:
            logger.warning("failed to post %s event: %s", body["reason"], err)
