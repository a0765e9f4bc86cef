"""
Factory function for creating the Kubernetes store and event recorder.

This module lets the operator CLI build its Kubernetes collaborators
without importing vitess-kube internals.
"""

from pathlib import Path

import httpx

from vitess_kube.client import KubeObjectStore
from vitess_kube.events import KubeEventRecorder


def create_kube_store(
    api_url: str,
    token: str | None = None,
    token_path: str | None = None,
    ca_path: str | None = None,
    http: httpx.AsyncClient | None = None,
) -> tuple[KubeObjectStore, KubeEventRecorder]:
    """
    Create a Kubernetes object store and event recorder sharing one client.

    Args:
        api_url: API server URL (e.g., "https://kubernetes.default.svc").
        token: Bearer token. Read from token_path if not given.
        token_path: File holding the bearer token (service account mount).
        ca_path: CA bundle used to verify the API server.
        http: Optional pre-configured httpx client. If None, a new client
            is created with a 10s timeout.

    Returns:
        Tuple of (KubeObjectStore, KubeEventRecorder).

    Example:
        store, recorder = create_kube_store(
            api_url="https://kubernetes.default.svc",
            token_path="/var/run/secrets/kubernetes.io/serviceaccount/token",
        )
    """
    if http is None:
        if token is None and token_path and Path(token_path).exists():
            token = Path(token_path).read_text().strip()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        verify: str | bool = ca_path if ca_path and Path(ca_path).exists() else True
        http = httpx.AsyncClient(base_url=api_url, headers=headers, verify=verify, timeout=10.0)

    return KubeObjectStore(http=http), KubeEventRecorder(http)
