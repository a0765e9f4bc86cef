"""Shard layout CLI commands.

This module provides CLI commands for shard layout and topology cleanup:
- equal: Show the key ranges of an equal N-way split
- prune: Remove shard records of a keyspace that are no longer wanted
"""

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from vitess_operator.cli.backend_factory import load_topo_backend
from vitess_operator.events import LogSink, Recorder
from vitess_operator.partitioning import equal_key_ranges
from vitess_operator.toposerver import delete_shards, shards_to_prune
from vitess_protocols import ConnParams, Object, ObjectMeta

shards_app = typer.Typer(help="Inspect and clean up shard layouts")


@shards_app.command("equal")
def equal(
    parts: int = typer.Argument(..., help="Number of shards"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the key ranges of an equal split into PARTS shards."""
    ranges = equal_key_ranges(parts)

    if json_output:
        data = [
            {"name": kr.name(), "safe_name": kr.safe_name(), "start": kr.start.hex(), "end": kr.end.hex()}
            for kr in ranges
        ]
        print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(title=f"{parts}-way split")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Shard", style="green")
    table.add_column("Safe Name")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    for i, kr in enumerate(ranges):
        table.add_row(str(i), kr.name(), kr.safe_name(), kr.start.hex() or "-", kr.end.hex() or "-")
    console.print(table)


@shards_app.command("prune")
def prune(
    keyspace: str = typer.Argument(..., help="Keyspace to clean up"),
    keep: list[str] = typer.Option([], "--keep", "-k", help="Shard to keep (repeatable)"),
    implementation: str = typer.Option(
        "etcd2", "--topo-implementation", envvar="VITESS_OPERATOR_TOPO_IMPLEMENTATION"
    ),
    address: str = typer.Option(..., "--topo-address", envvar="VITESS_OPERATOR_TOPO_ADDRESS"),
    root_path: str = typer.Option(..., "--topo-root", envvar="VITESS_OPERATOR_TOPO_ROOT"),
    topo_backend: str = typer.Option(
        ..., "--topo-backend", envvar="VITESS_OPERATOR_TOPO_BACKEND", help="module:callable"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list what would be removed"),
) -> None:
    """Remove shard records of KEYSPACE that aren't in --keep."""
    try:
        backend = load_topo_backend(topo_backend)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    params = ConnParams(implementation=implementation, address=address, root_path=root_path)

    async def _prune() -> int:
        topo = await backend.open(params)
        try:
            current = await topo.get_shard_names(keyspace)
            candidates = shards_to_prune(current, set(keep), {})
            if not candidates:
                print(f"Nothing to prune in keyspace {keyspace}")
                return 0
            for name in candidates:
                print(f"{'Would remove' if dry_run else 'Removing'} {keyspace}/{name}")
            if dry_run:
                return 0
            event_obj = Object(kind="VitessKeyspace", metadata=ObjectMeta(name=keyspace))
            result = await delete_shards(topo, Recorder(LogSink()), event_obj, keyspace, candidates)
            return 1 if result.requeue or result.requeue_after else 0
        finally:
            await topo.close()

    code = asyncio.run(_prune())
    if code:
        print("Some shards could not be removed")
        raise typer.Exit(code)
