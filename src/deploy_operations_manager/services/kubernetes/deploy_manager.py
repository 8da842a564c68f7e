"""Deploy orchestration.

A deploy run goes through three strictly ordered phases:

1. predeploy: kinds flagged ``predeploy`` plus everything reachable through
   their ``predeploy_dependencies``, applied one kind group at a time and
   confirmed before moving on;
2. main: every remaining resource;
3. prune: prunable live resources absent from the manifest set.

Within a group every resource is polled concurrently; the group is done when
each resource has reached a terminal state. Any failed or timed-out resource
stops the run before the next group is applied.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deploy_operations_manager.integrations.kubernetes.exceptions import (
    DeployCancelledError,
    DeploymentFailedError,
    KubernetesError,
)
from deploy_operations_manager.services.kubernetes.base import K8sBaseManager
from deploy_operations_manager.services.kubernetes.generator import (
    default_resource_type,
    resource_type_from_crd,
)
from deploy_operations_manager.services.kubernetes.manifest_manager import SOURCE_FILE_KEY
from deploy_operations_manager.services.kubernetes.prune_manager import PruneManager, PruneResult
from deploy_operations_manager.services.kubernetes.resource import (
    DEFAULT_TIMEOUT,
    ResourceInstance,
    ResourceStatus,
)

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient
    from deploy_operations_manager.services.kubernetes.registry import ResourceTypeRegistry

CRD_KIND = "CustomResourceDefinition"
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_WORKERS = 8

# Keys added by manifest loading that must never reach the API server
INTERNAL_MANIFEST_KEYS = (SOURCE_FILE_KEY,)


@dataclass
class DeployResult:
    """Outcome of a successful deploy run."""

    predeploy: list[ResourceInstance] = field(default_factory=list)
    main: list[ResourceInstance] = field(default_factory=list)
    prune: PruneResult | None = None

    @property
    def resources(self) -> list[ResourceInstance]:
        return [*self.predeploy, *self.main]

    @property
    def success(self) -> bool:
        return all(
            r.status in (ResourceStatus.SUCCEEDED, ResourceStatus.UNMONITORED)
            for r in self.resources
        )


class DeployManager(K8sBaseManager):
    """Applies manifests in predeploy/main phases and monitors their rollout."""

    _entity_name = "deploy"

    def __init__(
        self,
        client: KubernetesClient,
        registry: ResourceTypeRegistry,
        *,
        namespace: str | None = None,
        selector: str | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS,
        field_manager: str | None = "kdeploy",
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the deploy manager.

        Args:
            client: Kubernetes API client instance.
            registry: Resource type registry, already populated by discovery.
            namespace: Target namespace; defaults to the client's namespace.
            selector: Label selector scoping pruning.
            default_timeout: Per-resource timeout for kinds without their own.
            poll_interval: Seconds between polling rounds.
            max_workers: Upper bound on concurrent status polls.
            field_manager: Field manager used to recognise pruneable objects.
            cancel_event: Set to cancel the run.
            sleep: Wait between polling rounds; defaults to waiting on the
                cancel event so cancellation interrupts the wait.
            clock: Monotonic time source for resource timeouts.
        """
        super().__init__(client)
        self._registry = registry
        self._namespace = self._resolve_namespace(namespace)
        self._selector = selector
        self._default_timeout = default_timeout
        self._poll_interval = poll_interval
        self._max_workers = max_workers
        self._cancel_event = cancel_event or threading.Event()
        self._sleep = sleep or self._cancel_event.wait
        self._clock = clock
        self._pruner = PruneManager(
            client, registry, field_manager=field_manager, cancel_event=self._cancel_event
        )

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    def run(
        self,
        manifests: list[dict[str, Any]],
        *,
        prune: bool = True,
        verify: bool = True,
    ) -> DeployResult:
        """Deploy a manifest set.

        Args:
            manifests: Parsed manifests, in file order.
            prune: Delete prunable resources absent from ``manifests``.
            verify: Poll resources to a verdict; otherwise mark them unmonitored.

        Raises:
            DeploymentFailedError: If any phase ends with failed resources.
            DeployCancelledError: If the run is cancelled.
            FatalDeploymentError: If a CRD manifest has invalid deploy metadata.
        """
        self._check_cancelled()
        self.register_manifest_types(manifests)
        instances = self.build_instances(manifests)
        predeploy_groups, main = self.partition(instances)

        result = DeployResult()
        if predeploy_groups:
            self._log.info(
                "Predeploying priority resources",
                count=sum(len(g) for g in predeploy_groups),
            )
            for group in predeploy_groups:
                self._deploy_phase("predeploy", group, verify=verify)
                result.predeploy.extend(group)

        self._log.info("Deploying all resources", count=len(main))
        self._deploy_phase("main", main, verify=verify)
        result.main.extend(main)

        if prune:
            self._check_cancelled()
            result.prune = self._pruner.prune(instances, self._namespace, self._selector)

        self._log.info("deploy_succeeded", resources=len(instances))
        return result

    def cancel(self) -> None:
        """Stop the run at the next apply, poll or delete."""
        self._cancel_event.set()

    # -----------------------------------------------------------------------
    # Planning
    # -----------------------------------------------------------------------

    def register_manifest_types(self, manifests: list[dict[str, Any]]) -> None:
        """Register the kinds defined by CRD manifests in this deploy.

        Lets instances of a new CRD resolve in the same run.

        Raises:
            FatalDeploymentError: If a CRD manifest has invalid deploy metadata.
        """
        for manifest in manifests:
            if manifest.get("kind") == CRD_KIND:
                descriptor = self._registry.register(resource_type_from_crd(manifest))
                self._log.debug("registered_manifest_type", kind=descriptor.kind)

    def build_instances(self, manifests: list[dict[str, Any]]) -> list[ResourceInstance]:
        """Create a tracked instance per manifest, resolving each kind."""
        instances = []
        for manifest in manifests:
            kind = manifest.get("kind", "")
            descriptor = self._registry.get(kind)
            if descriptor is None:
                descriptor = self._registry.register(
                    default_resource_type(kind, manifest.get("apiVersion", ""))
                )
                self._log.debug("generated_default_type", kind=kind)
            namespace = manifest.get("metadata", {}).get("namespace") or self._namespace
            instances.append(
                ResourceInstance(
                    manifest,
                    descriptor,
                    namespace,
                    default_timeout=self._default_timeout,
                    clock=self._clock,
                )
            )
        return instances

    def partition(
        self, instances: list[ResourceInstance]
    ) -> tuple[list[list[ResourceInstance]], list[ResourceInstance]]:
        """Split instances into ordered predeploy groups and the main phase."""
        predeploy_kinds = self._registry.predeploy_kinds()
        groups = [[i for i in instances if i.kind == kind] for kind in predeploy_kinds]
        predeploy = set(predeploy_kinds)
        main = [i for i in instances if i.kind not in predeploy]
        return [g for g in groups if g], main

    # -----------------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------------

    def _deploy_phase(self, phase: str, instances: list[ResourceInstance], *, verify: bool) -> None:
        if not instances:
            return

        apply_failures = []
        for instance in instances:
            self._check_cancelled()
            if not self._apply(instance):
                apply_failures.append(instance.id)
        if apply_failures:
            raise DeploymentFailedError(
                phase,
                apply_failures,
                message=f"Failed to apply {phase} resources: {', '.join(apply_failures)}",
            )

        if not verify:
            for instance in instances:
                instance.mark_unmonitored()
            return

        self._poll(instances)

        failed = [
            i for i in instances if i.status in (ResourceStatus.FAILED, ResourceStatus.TIMED_OUT)
        ]
        for instance in failed:
            self._log.error(
                "resource_deploy_failed",
                resource=instance.id,
                status=str(instance.status),
                message=instance.failure_message(),
            )
        if failed:
            raise DeploymentFailedError(phase, [i.id for i in failed])

    def _apply(self, instance: ResourceInstance) -> bool:
        self._log.info(f"Deploying {instance.id}", namespace=instance.namespace)
        body = {k: v for k, v in instance.manifest.items() if k not in INTERNAL_MANIFEST_KEYS}
        try:
            self._client.apply_manifest(body, instance.namespace)
        except KubernetesError as e:
            self._log.error("resource_apply_failed", resource=instance.id, error=str(e))
            return False
        return True

    def _poll(self, instances: list[ResourceInstance]) -> None:
        pending = [i for i in instances if not i.terminal]
        for instance in pending:
            instance.start_deploy_clock()

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(pending) or 1)) as executor:
            while pending:
                self._check_cancelled()
                list(executor.map(lambda i: i.sync(self._client), pending))
                for instance in pending:
                    if instance.terminal:
                        self._log.info(instance.pretty_status())
                pending = [i for i in pending if not i.terminal]
                if pending:
                    self._log.debug(
                        "waiting_for_resources", pending=[i.pretty_status() for i in pending]
                    )
                    self._sleep(self._poll_interval)

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            self._log.warning("deploy_cancelled")
            raise DeployCancelledError()
