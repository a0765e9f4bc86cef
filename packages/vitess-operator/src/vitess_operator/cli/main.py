"""Vitess operator CLI."""

import typer

from vitess_operator.cli.drain import drain_app
from vitess_operator.cli.rollout import rollout_app
from vitess_operator.cli.run import run_app
from vitess_operator.cli.shards import shards_app

app = typer.Typer(
    name="vitess-operator",
    help="Kubernetes operator for Vitess clusters",
    no_args_is_help=True,
)

# Add command groups
app.add_typer(run_app, name="operator")
app.add_typer(shards_app, name="shards")
app.add_typer(drain_app, name="drain")
app.add_typer(rollout_app, name="rollout")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
