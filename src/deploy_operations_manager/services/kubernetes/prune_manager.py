"""Pruning of resources that left the desired set.

Only kinds whose descriptor is ``prunable`` are ever listed or deleted, and
only objects written by this tool's field manager are considered. Failures
are isolated per kind and per object.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from deploy_operations_manager.integrations.kubernetes.exceptions import (
    DeployCancelledError,
    KubernetesError,
)
from deploy_operations_manager.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient
    from deploy_operations_manager.services.kubernetes.registry import (
        ResourceTypeRegistry,
        TypeDescriptor,
    )
    from deploy_operations_manager.services.kubernetes.resource import ResourceInstance


@dataclass
class PruneResult:
    """Outcome of a prune pass."""

    pruned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class PruneManager(K8sBaseManager):
    """Deletes prunable resources absent from the desired set."""

    _entity_name = "prune"

    def __init__(
        self,
        client: KubernetesClient,
        registry: ResourceTypeRegistry,
        *,
        field_manager: str | None = "kdeploy",
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize the prune manager.

        Args:
            client: Kubernetes API client instance.
            registry: Registry deciding which kinds are prunable.
            field_manager: Only objects with this manager in ``managedFields``
                are pruned; None disables the check.
            cancel_event: When set, no further deletes are issued.
        """
        super().__init__(client)
        self._registry = registry
        self._field_manager = field_manager
        self._cancel_event = cancel_event or threading.Event()

    def prune(
        self,
        desired: Iterable[ResourceInstance],
        namespace: str | None = None,
        selector: str | None = None,
    ) -> PruneResult:
        """Delete live prunable resources that are not desired.

        Args:
            desired: Resources in the current deploy.
            namespace: Namespace to prune in.
            selector: Optional label selector limiting the live listing.

        Raises:
            DeployCancelledError: If the run is cancelled mid-prune.
        """
        namespace = self._resolve_namespace(namespace)
        desired = list(desired)
        namespaced = {(i.kind, i.namespace, i.name) for i in desired}
        cluster_scoped = {(i.kind, i.name) for i in desired}

        result = PruneResult()
        pruned_objects: list[tuple[str, str]] = []

        for descriptor in self._registry.prunable_types():
            for obj in self._list_live(descriptor, namespace, selector, result):
                metadata = obj.get("metadata") or {}
                name = metadata.get("name", "")
                obj_namespace = metadata.get("namespace")
                if obj_namespace is None:
                    is_desired = (descriptor.kind, name) in cluster_scoped
                else:
                    is_desired = (descriptor.kind, obj_namespace, name) in namespaced
                if is_desired or not self._is_managed(obj):
                    continue

                if self._cancel_event.is_set():
                    self._log.warning("prune_cancelled", pruned=len(result.pruned))
                    raise DeployCancelledError("Deploy cancelled during pruning")

                resource_id = f"{descriptor.kind}/{name}"
                api_version = obj.get("apiVersion") or self._api_version(descriptor)
                if self._client.delete_object(api_version, descriptor.kind, obj_namespace, name):
                    result.pruned.append(resource_id)
                    pruned_objects.append((descriptor.kind, name))
                else:
                    result.failed.append(resource_id)

        if pruned_objects:
            summary = ", ".join(f'{kind.lower()} "{name}"' for kind, name in pruned_objects)
            self._log.info(f"The following resources were pruned: {summary}")
        self._log.info("pruned_resources", pruned=len(result.pruned), failed=len(result.failed))
        return result

    def _list_live(
        self,
        descriptor: TypeDescriptor,
        namespace: str,
        selector: str | None,
        result: PruneResult,
    ) -> list[dict[str, Any]]:
        try:
            return self._client.list_objects(
                self._api_version(descriptor), descriptor.kind, namespace, selector
            )
        except KubernetesError as e:
            self._log.warning("prune_listing_failed", kind=descriptor.kind, error=str(e))
            result.failed.append(descriptor.kind)
            return []

    @staticmethod
    def _api_version(descriptor: TypeDescriptor) -> str:
        return descriptor.group_version.api_version if descriptor.group_version else ""

    def _is_managed(self, obj: dict[str, Any]) -> bool:
        if self._field_manager is None:
            return True
        managed_fields = (obj.get("metadata") or {}).get("managedFields") or []
        return any(entry.get("manager") == self._field_manager for entry in managed_fields)
