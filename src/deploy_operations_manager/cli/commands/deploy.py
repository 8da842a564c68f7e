"""Deploy and discover commands."""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.table import Table

from deploy_operations_manager.cli.commands.base import (
    ContextOption,
    LabelSelectorOption,
    NamespaceOption,
    console,
    handle_k8s_error,
)
from deploy_operations_manager.integrations.kubernetes.config import DeployPluginConfig
from deploy_operations_manager.integrations.kubernetes.exceptions import KubernetesError
from deploy_operations_manager.services.kubernetes.deploy_manager import (
    DeployManager,
    DeployResult,
)
from deploy_operations_manager.services.kubernetes.discovery import (
    ApiDiscoveryManager,
    DiscoveryOutcome,
    DiscoveryResult,
    DiscoverySession,
)
from deploy_operations_manager.services.kubernetes.manifest_manager import ManifestManager
from deploy_operations_manager.services.kubernetes.registry import (
    ResourceTypeRegistry,
    descriptor_summary,
)
from deploy_operations_manager.services.kubernetes.resource import ResourceStatus

logger = structlog.get_logger()

STATUS_STYLES = {
    ResourceStatus.SUCCEEDED: "green",
    ResourceStatus.UNMONITORED: "yellow",
    ResourceStatus.FAILED: "red",
    ResourceStatus.TIMED_OUT: "red",
}

ManifestPathArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to a YAML file or directory of manifests",
        exists=True,
        resolve_path=True,
    ),
]

PruneOption = Annotated[
    bool | None,
    typer.Option(
        "--prune/--no-prune",
        help="Delete prunable resources that are no longer in the manifests",
        show_default=False,
    ),
]

VerifyOption = Annotated[
    bool | None,
    typer.Option(
        "--verify/--no-verify",
        help="Wait for every resource to reach a verdict",
        show_default=False,
    ),
]


def _discover(
    session: DiscoverySession,
    registry: ResourceTypeRegistry,
    plugin_config: DeployPluginConfig,
) -> DiscoveryResult:
    result = ApiDiscoveryManager(
        session,
        registry,
        retry_attempts=plugin_config.defaults.discovery_retry_attempts,
        backoff=plugin_config.defaults.discovery_backoff,
    ).discover()
    if result.outcome is DiscoveryOutcome.DEGRADED:
        console.print(
            "[yellow]Warning:[/yellow] CustomResourceDefinitions could not be listed; "
            "custom resources will be deployed without status or prune support"
        )
    return result


@contextmanager
def _cancel_on_signal(manager: DeployManager) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative cancel of the running deploy."""

    def _handler(signum: int, frame: Any) -> None:
        logger.warning("deploy_interrupted", signal=signal.Signals(signum).name)
        manager.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def deploy(
    path: ManifestPathArgument,
    namespace: NamespaceOption = None,
    context: ContextOption = None,
    selector: LabelSelectorOption = None,
    prune: PruneOption = None,
    verify: VerifyOption = None,
) -> None:
    """Deploy manifests, wait for them to roll out and prune leftovers.

    Predeploy kinds (CRDs, ConfigMaps, Secrets, ... and custom kinds that opt
    in) are applied and confirmed before everything else.

    Examples:
        kdeploy deploy ./manifests/ -n production
        kdeploy deploy app.yaml --context staging --no-prune
        kdeploy deploy ./manifests/ -l app=web --no-verify
    """
    plugin_config = DeployPluginConfig.from_env()
    defaults = plugin_config.defaults

    try:
        manifest_manager = ManifestManager()
        manifests = manifest_manager.load_manifests(path)
        if not manifests:
            console.print("[yellow]No manifests found[/yellow]")
            return

        invalid = [v for v in manifest_manager.validate_manifests(manifests) if not v.valid]
        if invalid:
            console.print("[red]Validation errors:[/red]")
            for v in invalid:
                for err in v.errors:
                    console.print(f"  {v.resource} ({v.file}): {err}")
            raise typer.Exit(1)

        with DiscoverySession(plugin_config, context=context) as session:
            registry = ResourceTypeRegistry()
            _discover(session, registry, plugin_config)

            manager = DeployManager(
                session.client,
                registry,
                namespace=namespace,
                selector=selector or plugin_config.selector,
                default_timeout=defaults.resource_timeout,
                poll_interval=defaults.poll_interval,
                max_workers=defaults.max_workers,
                field_manager=defaults.field_manager,
            )
            with _cancel_on_signal(manager):
                result = manager.run(
                    manifests,
                    prune=defaults.prune if prune is None else prune,
                    verify=defaults.verify_result if verify is None else verify,
                )

        _print_deploy_result(result)

    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except KubernetesError as e:
        handle_k8s_error(e)


def discover(context: ContextOption = None) -> None:
    """Show the resource types known for a cluster and how they deploy.

    Examples:
        kdeploy discover
        kdeploy discover --context staging
    """
    plugin_config = DeployPluginConfig.from_env()
    try:
        with DiscoverySession(plugin_config, context=context) as session:
            registry = ResourceTypeRegistry()
            result = _discover(session, registry, plugin_config)
    except KubernetesError as e:
        handle_k8s_error(e)
        return

    table = Table(title=f"Resource Types ({result.outcome})")
    table.add_column("Kind", style="cyan", no_wrap=True)
    table.add_column("API Version", style="white")
    table.add_column("Predeploy", style="white")
    table.add_column("Prunable", style="white")
    table.add_column("Dependencies", style="dim")
    table.add_column("Success Rule", style="dim")
    table.add_column("Source", style="dim")

    for descriptor in sorted(registry, key=lambda d: d.kind):
        if descriptor.group_version is None:
            continue
        row = descriptor_summary(descriptor)
        table.add_row(
            row["kind"],
            row["group_version"],
            "[green]Yes[/green]" if row["predeploy"] else "No",
            "[green]Yes[/green]" if row["prunable"] else "No",
            row["dependencies"],
            row["success_rule"],
            "static" if row["static"] else "custom",
        )

    console.print(table)
    console.print(
        f"\n[dim]{len(result.kinds)} served kind(s), "
        f"{len(result.custom_kinds)} custom resource type(s)[/dim]"
    )


def _print_deploy_result(result: DeployResult) -> None:
    """Print resource verdicts and pruned resources as Rich tables."""
    table = Table(title="Deploy Results")
    table.add_column("Phase", style="white")
    table.add_column("Resource", style="cyan")
    table.add_column("Namespace", style="white")
    table.add_column("Status", style="white")

    for phase, instances in (("predeploy", result.predeploy), ("main", result.main)):
        for instance in instances:
            style = STATUS_STYLES.get(instance.status, "white")
            table.add_row(
                phase,
                instance.id,
                instance.namespace or "",
                f"[{style}]{instance.status}[/{style}]",
            )
    console.print(table)

    if result.prune is not None:
        if result.prune.pruned:
            console.print(f"\n[bold]Pruned {len(result.prune.pruned)} resource(s):[/bold]")
            for resource in result.prune.pruned:
                console.print(f"  - {resource}")
        if result.prune.failed:
            console.print(
                f"\n[yellow]Could not prune {len(result.prune.failed)} item(s):[/yellow]"
            )
            for resource in result.prune.failed:
                console.print(f"  - {resource}")

    console.print(f"\n[green]Deployed {len(result.resources)} resource(s)[/green]")
