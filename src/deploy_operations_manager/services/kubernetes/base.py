"""Base manager for deploy services.

Provides shared infrastructure for the discovery, deploy and prune managers:
client access and namespace resolution.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()


class K8sBaseManager:
    """Base class for deploy service managers.

    Subclasses set ``_entity_name`` for structured log context.

    Example:
        >>> class PruneManager(K8sBaseManager):
        ...     _entity_name = "prune"
    """

    _entity_name: str = ""

    def __init__(self, client: KubernetesClient) -> None:
        """Initialize the manager.

        Args:
            client: Kubernetes API client instance.
        """
        self._client = client
        self._log = logger.bind(entity=self._entity_name)

    def _resolve_namespace(self, namespace: str | None) -> str:
        """Resolve namespace, falling back to the client default."""
        return namespace or self._client.default_namespace
