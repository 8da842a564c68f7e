"""Shared options and error handling for kdeploy commands."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from deploy_operations_manager.integrations.kubernetes.exceptions import (
    DeployCancelledError,
    DeploymentFailedError,
    FatalDeploymentError,
    KubernetesAuthError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

# Shared console instance
console = Console()


# =============================================================================
# Common Typer Option Annotations
# =============================================================================

NamespaceOption = Annotated[
    str | None,
    typer.Option(
        "--namespace",
        "-n",
        help="Target namespace (defaults to config or 'default')",
    ),
]

ContextOption = Annotated[
    str | None,
    typer.Option(
        "--context",
        "-c",
        help="Kubeconfig context to deploy to (defaults to config or current context)",
    ),
]

LabelSelectorOption = Annotated[
    str | None,
    typer.Option(
        "--selector",
        "-l",
        help="Label selector limiting which live resources may be pruned",
    ),
]


# =============================================================================
# Error Handling
# =============================================================================


def handle_k8s_error(error: KubernetesError) -> None:
    """Report a deploy error and exit.

    Args:
        error: The error to report.

    Raises:
        typer.Exit: Always exits with code 1.
    """
    if isinstance(error, KubernetesConnectionError):
        console.print("[red]Error:[/red] Cannot connect to Kubernetes cluster")
        console.print(f"  {error.message}")
        if error.original_error:
            console.print(f"  Cause: {error.original_error}")
        console.print(
            "\n[dim]Hint: Check that your kubeconfig is valid and the context exists.[/dim]"
        )

    elif isinstance(error, KubernetesAuthError):
        console.print("[red]Error:[/red] Authentication/authorization failed")
        console.print(f"  {error.message}")
        console.print("\n[dim]Hint: Check RBAC permissions for the kinds being deployed.[/dim]")

    elif isinstance(error, FatalDeploymentError):
        console.print("[red]Error:[/red] Invalid deploy configuration")
        console.print(f"  {error}")

    elif isinstance(error, DeploymentFailedError):
        console.print(f"[red]Deploy failed:[/red] {error.phase} phase did not succeed")
        for resource in error.failed_resources:
            console.print(f"  - {resource}")
        console.print("\n[dim]Run with --verbose to see each resource's status.[/dim]")

    elif isinstance(error, DeployCancelledError):
        console.print(f"[yellow]{error.message}[/yellow]")
        console.print("[dim]Changes already sent to the cluster were not rolled back.[/dim]")

    elif isinstance(error, KubernetesValidationError):
        console.print("[red]Error:[/red] Manifest rejected by the API server")
        console.print(f"  {error.message}")
        if error.validation_errors:
            console.print("\n  Field errors:")
            for field, err in error.validation_errors.items():
                console.print(f"    - {field}: {err}")

    elif isinstance(error, KubernetesTimeoutError):
        console.print("[red]Error:[/red] API request timed out")
        console.print(f"  {error.message}")
        console.print("\n[dim]Hint: Raise the cluster timeout in your deploy config.[/dim]")

    else:
        console.print(f"[red]Error:[/red] {error.message}")
        if error.status_code:
            console.print(f"  HTTP Status: {error.status_code}")

    raise typer.Exit(1)
