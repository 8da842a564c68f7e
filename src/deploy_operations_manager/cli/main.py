"""Main CLI entry point using Typer."""

from __future__ import annotations

import typer
from rich.console import Console

from deploy_operations_manager import __version__
from deploy_operations_manager.cli.commands import deploy
from deploy_operations_manager.logging.config import configure_logging

app = typer.Typer(
    name="kdeploy",
    help="Deploy manifests to a Kubernetes cluster and track their rollout.",
    add_completion=True,
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"kdeploy version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show deploy progress.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Write console logs as JSON lines.",
    ),
) -> None:
    """kdeploy - predeploy, deploy, verify and prune Kubernetes resources."""
    configure_logging(verbose=verbose, debug=debug, json_output=json_logs)


# Register subcommands
app.command()(deploy.deploy)
app.command()(deploy.discover)


if __name__ == "__main__":
    app()
