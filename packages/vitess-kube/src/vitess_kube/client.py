"""
Kubernetes object store.

This module provides KubeObjectStore, an ObjectStoreProtocol implementation
over the Kubernetes REST API.

KubeObjectStore receives an injected httpx.AsyncClient with base_url set to
the API server (and auth headers configured). Error responses are mapped to
the protocol's error types:
- 404 Not Found -> NotFoundError
- 409 Conflict (stale resourceVersion, uid precondition, already exists)
  -> ConflictError
- anything else -> httpx.HTTPStatusError

Kubernetes API documentation:
- https://kubernetes.io/docs/reference/using-api/api-concepts/
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from vitess_kube.resources import label_selector, resource_for
from vitess_kube.types import KubeList, KubeObject, KubeStatus, KubeWatchEvent, from_object
from vitess_protocols import (
    ConflictError,
    NotFoundError,
    Object,
    ObjectKey,
    WatchEvent,
    WatchEventType,
)

logger = logging.getLogger(__name__)


@dataclass
class KubeObjectStore:
    """
    Kubernetes REST object store with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to the API server.

    Example:
        async with httpx.AsyncClient(base_url="https://kubernetes.default.svc") as http:
            store = KubeObjectStore(http=http)
            pods = await store.list("Pod", "default", {"planetscale.com/component": "vttablet"})
    """

    http: httpx.AsyncClient

    async def get(self, kind: str, key: ObjectKey) -> Object:
        """
        Get an object by key.

        Raises:
            NotFoundError: If no object with that key exists.
        """
        path = resource_for(kind).object_path(key.namespace, key.name)
        response = await self.http.get(path)
        _raise_for_status(response, kind, str(key))
        return KubeObject.model_validate(response.json()).to_object(kind)

    async def list(
        self, kind: str, namespace: str, selector: dict[str, str] | None = None
    ) -> list[Object]:
        """List objects in a namespace whose labels match every selector pair."""
        objects, _ = await self._list(kind, namespace, selector)
        return objects

    async def create(self, obj: Object) -> Object:
        """
        Create an object.

        Raises:
            ConflictError: If an object with that key already exists.
        """
        path = resource_for(obj.kind).collection_path(obj.metadata.namespace)
        response = await self.http.post(path, json=from_object(obj))
        _raise_for_status(response, obj.kind, str(obj.key))
        return KubeObject.model_validate(response.json()).to_object(obj.kind)

    async def update(self, obj: Object) -> Object:
        """
        Replace an object, guarded by its resourceVersion.

        Raises:
            NotFoundError: If the object no longer exists.
            ConflictError: If the object changed since it was read.
        """
        path = resource_for(obj.kind).object_path(obj.metadata.namespace, obj.metadata.name)
        response = await self.http.put(path, json=from_object(obj))
        _raise_for_status(response, obj.kind, str(obj.key))
        return KubeObject.model_validate(response.json()).to_object(obj.kind)

    async def delete(
        self,
        kind: str,
        key: ObjectKey,
        precondition_uid: str | None = None,
        propagation: str = "Background",
    ) -> None:
        """
        Delete an object.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If the uid precondition does not match.
        """
        body: dict = {
            "apiVersion": "v1",
            "kind": "DeleteOptions",
            "propagationPolicy": propagation,
        }
        if precondition_uid:
            body["preconditions"] = {"uid": precondition_uid}
        path = resource_for(kind).object_path(key.namespace, key.name)
        # httpx's delete() takes no body.
        response = await self.http.request("DELETE", path, json=body)
        _raise_for_status(response, kind, str(key))

    async def watch(
        self, kind: str, namespace: str, selector: dict[str, str] | None = None
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream change notifications.

        Existing objects are delivered first as ADDED events, then changes
        from the list's resourceVersion onward. The stream ends when the
        server closes it or the resourceVersion expires; callers restart it.
        """
        objects, resource_version = await self._list(kind, namespace, selector)
        for obj in objects:
            yield WatchEvent(type=WatchEventType.ADDED, object=obj)

        params = {"watch": "true", "resourceVersion": resource_version}
        selector_str = label_selector(selector)
        if selector_str:
            params["labelSelector"] = selector_str
        path = resource_for(kind).collection_path(namespace)

        async with self.http.stream("GET", path, params=params, timeout=None) as response:
            if response.is_error:
                await response.aread()
                _raise_for_status(response, kind, path)
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                raw = KubeWatchEvent.model_validate_json(line)
                if raw.type == "ERROR":
                    # Usually 410 Gone: our resourceVersion is too old.
                    status = KubeStatus.model_validate(raw.object)
                    logger.info("watch on %s ended: %s", kind, status.message or status.reason)
                    return
                event = raw.to_watch_event(kind)
                if event is not None:
                    yield event

    async def _list(
        self, kind: str, namespace: str, selector: dict[str, str] | None
    ) -> tuple[list[Object], str]:
        params = {}
        selector_str = label_selector(selector)
        if selector_str:
            params["labelSelector"] = selector_str
        path = resource_for(kind).collection_path(namespace)
        response = await self.http.get(path, params=params)
        _raise_for_status(response, kind, path)
        data = KubeList.model_validate(response.json())
        return [item.to_object(kind) for item in data.items], data.metadata.resource_version


def _raise_for_status(response: httpx.Response, kind: str, key: str) -> None:
    if response.status_code == 404:
        raise NotFoundError(kind, key)
    if response.status_code == 409:
        raise ConflictError(kind, key, _status_message(response))
    response.raise_for_status()


def _status_message(response: httpx.Response) -> str:
    try:
        return KubeStatus.model_validate(response.json()).message
    except ValueError:
        return response.text
