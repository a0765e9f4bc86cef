"""Drain CLI commands.

This module provides CLI commands for requesting and inspecting drains:
- start: Ask the operator to drain a tablet Pod
- abort: Withdraw a drain request
- status: Show the drain state of tablet Pods

A drain is requested through Pod annotations; the shard replication
controller acknowledges it, moves the primary away if needed and marks it
finished. These commands only edit and read the annotations.
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from vitess_operator import drain
from vitess_operator.config import Settings
from vitess_operator.errors import InvalidDrainStateError
from vitess_operator.podutil import COMPONENT_LABEL, VTTABLET_COMPONENT, tablet_alias
from vitess_protocols import NotFoundError, ObjectKey

drain_app = typer.Typer(help="Request and inspect tablet drains")


def _kube_store(settings: Settings):
    from vitess_kube import create_kube_store

    store, _ = create_kube_store(
        api_url=settings.kube_api_url,
        token_path=settings.kube_token_path,
        ca_path=settings.kube_ca_path,
    )
    return store


async def _edit_pod(namespace: str, name: str, edit) -> str:
    store = _kube_store(Settings(namespace=namespace))
    try:
        try:
            pod = await store.get("Pod", ObjectKey(namespace, name))
        except NotFoundError:
            return f"Pod {namespace}/{name} not found"
        updated = pod.deepcopy()
        edit(updated)
        if updated.annotations == pod.annotations:
            return f"Pod {namespace}/{name} already {_state_name(pod)}"
        updated = await store.update(updated)
        return f"Pod {namespace}/{name} is now {_state_name(updated)}"
    finally:
        await store.http.aclose()


def _state_name(pod) -> str:
    try:
        return str(drain.get_state(pod))
    except InvalidDrainStateError:
        return "Invalid"


@drain_app.command("start")
def start(
    pod: str = typer.Argument(..., help="Tablet Pod name"),
    namespace: str = typer.Option("default", "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE"),
    message: str = typer.Option("requested from CLI", "--message", "-m", help="Reason for the drain"),
) -> None:
    """Request a drain of POD."""

    def _start(obj) -> None:
        if not drain.started(obj):
            drain.start(obj, message)

    print(asyncio.run(_edit_pod(namespace, pod, _start)))


@drain_app.command("abort")
def abort(
    pod: str = typer.Argument(..., help="Tablet Pod name"),
    namespace: str = typer.Option("default", "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE"),
) -> None:
    """Withdraw the drain request on POD."""
    print(asyncio.run(_edit_pod(namespace, pod, drain.stop)))


@drain_app.command("status")
def status(
    namespace: str = typer.Option("default", "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the drain state of every tablet Pod in the namespace."""

    async def _list():
        store = _kube_store(Settings(namespace=namespace))
        try:
            return await store.list("Pod", namespace, {COMPONENT_LABEL: VTTABLET_COMPONENT})
        finally:
            await store.http.aclose()

    pods = sorted(asyncio.run(_list()), key=lambda p: p.metadata.name)

    rows = []
    for pod in pods:
        try:
            alias = str(tablet_alias(pod))
        except ValueError:
            alias = "-"
        rows.append(
            {
                "pod": pod.metadata.name,
                "tablet": alias,
                "state": _state_name(pod),
                "supported": drain.supported(pod),
            }
        )

    if json_output:
        print(json.dumps(rows, indent=2))
        return

    console = Console()
    table = Table(title=f"Drains in {namespace}")
    table.add_column("Pod", style="cyan")
    table.add_column("Tablet")
    table.add_column("State", style="green")
    table.add_column("Supported", justify="center")
    for row in rows:
        table.add_row(row["pod"], row["tablet"], row["state"], "yes" if row["supported"] else "[red]no[/red]")
    console.print(table)
