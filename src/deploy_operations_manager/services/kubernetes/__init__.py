"""Deploy service module.

Discovery, resource type registry, status tracking, deploy orchestration and
pruning for one cluster context.
"""

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
from deploy_operations_manager.services.kubernetes.prune_manager import PruneManager, PruneResult
from deploy_operations_manager.services.kubernetes.registry import (
    GroupVersion,
    ResourceTypeRegistry,
    SuccessRule,
    TypeDescriptor,
)
from deploy_operations_manager.services.kubernetes.resource import (
    ResourceInstance,
    ResourceStatus,
)

__all__ = [
    "ApiDiscoveryManager",
    "DeployManager",
    "DeployResult",
    "DiscoveryOutcome",
    "DiscoveryResult",
    "DiscoverySession",
    "GroupVersion",
    "ManifestManager",
    "PruneManager",
    "PruneResult",
    "ResourceInstance",
    "ResourceStatus",
    "ResourceTypeRegistry",
    "SuccessRule",
    "TypeDescriptor",
]
