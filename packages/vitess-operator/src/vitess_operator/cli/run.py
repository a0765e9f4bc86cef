"""Operator daemon CLI command.

This module provides the CLI command for running the operator:
- run: Start the shard replication controller

Wiring:
- Settings come from VITESS_OPERATOR_* environment variables; options override them
- The Kubernetes store and event recorder come from the vitess-kube factory
- The topology backend is a "module:callable" plugin
- Metrics are served by prometheus_client's HTTP server
"""

import asyncio
import logging

import typer
from prometheus_client import start_http_server
from rich.logging import RichHandler

from vitess_operator.cli.backend_factory import load_topo_backend
from vitess_operator.config import Settings
from vitess_operator.controller import ControllerLoop, Resync, Watch, WorkQueue
from vitess_operator.events import Recorder
from vitess_operator.podutil import COMPONENT_LABEL, KEYSPACE_LABEL, VTTABLET_COMPONENT
from vitess_operator.replication import ShardReplicationController
from vitess_operator.shard import KIND
from vitess_operator.toposerver import ConnPool
from vitess_protocols import ObjectKey

run_app = typer.Typer(help="Run the vitess operator")

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "vitessshard-replication"


def setup_logging(level: str) -> None:
    """Send log records to a rich console handler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


@run_app.command("run")
def run_operator(
    namespace: str = typer.Option(
        None, "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE", help="Namespace to watch"
    ),
    topo_backend: str = typer.Option(
        None,
        "--topo-backend",
        envvar="VITESS_OPERATOR_TOPO_BACKEND",
        help="Topology backend plugin as module:callable",
    ),
    kube_api_url: str = typer.Option(
        None, "--kube-api", envvar="VITESS_OPERATOR_KUBE_API_URL", help="Kubernetes API URL"
    ),
    max_concurrent: int = typer.Option(
        None,
        "--max-concurrent-reconciles",
        envvar="VITESS_OPERATOR_MAX_CONCURRENT_RECONCILES",
        help="Shards reconciled concurrently",
    ),
    metrics_port: int = typer.Option(
        None, "--metrics-port", envvar="VITESS_OPERATOR_METRICS_PORT", help="Prometheus port"
    ),
    log_level: str = typer.Option(
        None, "--log-level", envvar="VITESS_OPERATOR_LOG_LEVEL", help="Log level"
    ),
) -> None:
    """
    Run the shard replication controller.

    Watches VitessShards in the namespace and keeps their replication
    healthy. Runs until interrupted with Ctrl+C.

    Environment variables:
        VITESS_OPERATOR_NAMESPACE: Namespace to watch
        VITESS_OPERATOR_TOPO_BACKEND: Topology backend plugin
        VITESS_OPERATOR_KUBE_API_URL: Kubernetes API URL
        VITESS_OPERATOR_RESYNC_PERIOD_SECONDS: Periodic resync period
    """
    overrides = {
        "namespace": namespace,
        "topo_backend": topo_backend,
        "kube_api_url": kube_api_url,
        "max_concurrent_reconciles": max_concurrent,
        "metrics_port": metrics_port,
        "log_level": log_level,
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    setup_logging(settings.log_level)

    if not settings.topo_backend:
        print("Error: no topology backend configured (--topo-backend)")
        raise typer.Exit(1)
    try:
        backend = load_topo_backend(settings.topo_backend)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    print(f"Starting vitess operator in namespace: {settings.namespace}")
    print(f"  Kubernetes API: {settings.kube_api_url}")
    print(f"  Topology backend: {settings.topo_backend}")
    print(f"  Workers: {settings.max_concurrent_reconciles}")
    print(f"  Metrics: :{settings.metrics_port}")
    print()
    print("Press Ctrl+C to stop")
    print()

    start_http_server(settings.metrics_port)
    asyncio.run(_run(settings, backend))


async def _run(settings: Settings, backend) -> None:
    # Lazy import so the CLI's other commands don't need the Kubernetes adapter loaded.
    from vitess_kube import create_kube_store

    store, kube_recorder = create_kube_store(
        api_url=settings.kube_api_url,
        token_path=settings.kube_token_path,
        ca_path=settings.kube_ca_path,
    )
    pool = ConnPool(opener=backend.open)
    queue = WorkQueue()
    controller = ShardReplicationController(
        store=store,
        pool=pool,
        backend=backend,
        recorder=Recorder(kube_recorder),
        resync=Resync(queue, settings.resync_period_seconds),
    )
    loop = ControllerLoop(
        name=CONTROLLER_NAME,
        reconcile=controller.reconcile,
        store=store,
        watches=[
            Watch(kind=KIND, namespace=settings.namespace),
            # Tablet Pod changes (readiness, drain requests) affect their shard.
            Watch(
                kind="Pod",
                namespace=settings.namespace,
                selector={COMPONENT_LABEL: VTTABLET_COMPONENT},
                map_keys=_shard_keys_for_pod,
            ),
        ],
        queue=queue,
        max_concurrent=settings.max_concurrent_reconciles,
    )

    shutdown = asyncio.Event()
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(kube_recorder.run(shutdown))
            tg.create_task(pool.run_gc(shutdown))
            try:
                await loop.run()
            finally:
                shutdown.set()
    finally:
        await pool.close_all()
        await store.http.aclose()
        logger.info("operator stopped")


def _shard_keys_for_pod(pod):
    """
    Map a tablet Pod to the VitessShard that owns it.

    Tablet Pods are owned by their VitessShard through a controller
    reference, so the owner name is the shard object's name.
    """
    for ref in pod.metadata.owner_references:
        if ref.controller and ref.kind == KIND:
            return [ObjectKey(pod.metadata.namespace, ref.name)]
    if KEYSPACE_LABEL in pod.labels:
        logger.debug("tablet Pod %s has no VitessShard owner", pod.key)
    return []
