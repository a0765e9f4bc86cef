"""Rollout CLI commands.

This module provides CLI commands acting as the external rollout tool:
- pending: List objects with a scheduled, unreleased change
- release: Release scheduled changes so the operator applies them
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from vitess_operator import rollout
from vitess_operator.config import Settings
from vitess_operator.shard import KIND

rollout_app = typer.Typer(help="Release scheduled rolling changes")


def _kube_store(namespace: str):
    from vitess_kube import create_kube_store

    settings = Settings(namespace=namespace)
    store, _ = create_kube_store(
        api_url=settings.kube_api_url,
        token_path=settings.kube_token_path,
        ca_path=settings.kube_ca_path,
    )
    return store


@rollout_app.command("pending")
def pending(
    kind: str = typer.Option(KIND, "--kind", help="Kind to inspect"),
    namespace: str = typer.Option("default", "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE"),
) -> None:
    """List objects whose changes wait for release."""

    async def _list():
        store = _kube_store(namespace)
        try:
            return await store.list(kind, namespace, {})
        finally:
            await store.http.aclose()

    objects = [o for o in asyncio.run(_list()) if rollout.scheduled(o)]
    if not objects:
        print("No scheduled changes")
        return

    console = Console()
    table = Table(title=f"Scheduled {kind} changes")
    table.add_column("Name", style="cyan")
    table.add_column("Released", justify="center")
    table.add_column("Change")
    for obj in sorted(objects, key=lambda o: o.metadata.name):
        table.add_row(
            obj.metadata.name,
            "[green]yes[/green]" if rollout.released(obj) else "no",
            obj.annotations.get(rollout.SCHEDULED_ANNOTATION, ""),
        )
    console.print(table)


@rollout_app.command("release")
def release(
    names: list[str] = typer.Argument(None, help="Objects to release (default: all scheduled)"),
    kind: str = typer.Option(KIND, "--kind", help="Kind to release"),
    namespace: str = typer.Option("default", "--namespace", "-n", envvar="VITESS_OPERATOR_NAMESPACE"),
) -> None:
    """Release scheduled changes on NAMES, or on every scheduled object."""

    async def _release():
        store = _kube_store(namespace)
        try:
            objects = await store.list(kind, namespace, {})
            if names:
                wanted = set(names)
                objects = [o for o in objects if o.metadata.name in wanted]
            return await rollout.release_scheduled(store, objects)
        finally:
            await store.http.aclose()

    released = asyncio.run(_release())
    if not released:
        print("Nothing to release")
        return
    for obj in released:
        print(f"Released {obj.kind} {obj.key}")
