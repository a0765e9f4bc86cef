"""
Kubernetes adapter for the vitess operator.

This package implements the operator's object store and event recorder
protocols over the Kubernetes REST API:

- KubeObjectStore: ObjectStoreProtocol over httpx
- KubeEventRecorder: EventRecorderProtocol posting core/v1 Events
- create_kube_store: factory wiring both to one authenticated client
"""

from vitess_kube.client import KubeObjectStore
from vitess_kube.events import KubeEventRecorder
from vitess_kube.factory import create_kube_store
from vitess_kube.resources import RESOURCES, Resource, label_selector, resource_for
from vitess_kube.types import KubeList, KubeObject, KubeStatus, KubeWatchEvent, from_object

__all__ = [
    "KubeEventRecorder",
    "KubeList",
    "KubeObject",
    "KubeObjectStore",
    "KubeStatus",
    "KubeWatchEvent",
    "RESOURCES",
    "Resource",
    "create_kube_store",
    "from_object",
    "label_selector",
    "resource_for",
]
