"""Kubernetes integration - API client, configuration models and errors."""

from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient
from deploy_operations_manager.integrations.kubernetes.config import (
    ClusterConfig,
    DeployDefaultsConfig,
    DeployPluginConfig,
)
from deploy_operations_manager.integrations.kubernetes.exceptions import (
    DeployCancelledError,
    DeploymentFailedError,
    FatalDeploymentError,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

__all__ = [
    "ClusterConfig",
    "DeployCancelledError",
    "DeployDefaultsConfig",
    "DeployPluginConfig",
    "DeploymentFailedError",
    "FatalDeploymentError",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
]
