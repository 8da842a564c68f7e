"""API discovery.

Walks the cluster's API surface to learn where each kind is served and turns
CustomResourceDefinitions into resource type descriptors.

Precedence is fixed by visiting order, never by arrival time: the core group
first, then each named group with its preferred version ahead of the others.
The first GroupVersion recorded for a kind wins.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from packaging.version import Version
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient
from deploy_operations_manager.integrations.kubernetes.exceptions import KubernetesError
from deploy_operations_manager.services.kubernetes.base import K8sBaseManager
from deploy_operations_manager.services.kubernetes.generator import resource_type_from_crd
from deploy_operations_manager.services.kubernetes.registry import CORE_GROUP, GroupVersion

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.config import DeployPluginConfig
    from deploy_operations_manager.services.kubernetes.registry import ResourceTypeRegistry

logger = structlog.get_logger()

T = TypeVar("T")

CRD_MIN_SERVER_VERSION = Version("1.7.0")
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BACKOFF = 10.0


class DiscoveryOutcome(StrEnum):
    """How a discovery pass ended."""

    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass
class DiscoveryResult:
    """Result of a discovery pass.

    ``DEGRADED`` means CRD listing exhausted its retries and custom resource
    types are unavailable for this run. ``SKIPPED`` means the server is too
    old to serve CRDs.
    """

    outcome: DiscoveryOutcome
    kinds: dict[str, GroupVersion] = field(default_factory=dict)
    custom_kinds: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.outcome is DiscoveryOutcome.DEGRADED


class DiscoverySession:
    """Discovery state for one run against one cluster context.

    Owns the memoized client (which in turn memoizes its API group handles)
    and the memoized kind → GroupVersion map. Build a new session per run or
    call :meth:`reset` to rediscover; sessions are never shared between
    contexts.
    """

    def __init__(
        self,
        plugin_config: DeployPluginConfig,
        context: str | None = None,
        client_factory: Callable[..., KubernetesClient] = KubernetesClient,
    ) -> None:
        self._config = plugin_config
        self.context = context or plugin_config.get_active_context()
        self._client_factory = client_factory
        self._client: KubernetesClient | None = None
        self.kinds: dict[str, GroupVersion] | None = None

    @property
    def client(self) -> KubernetesClient:
        """The client for this session's context, created on first use."""
        if self._client is None:
            self._client = self._client_factory(self._config, context=self.context)
        return self._client

    def reset(self) -> None:
        """Drop the memoized client and kind map."""
        if self._client is not None:
            self._client.close()
        self._client = None
        self.kinds = None

    def __enter__(self) -> DiscoverySession:
        return self

    def __exit__(self, *args: Any) -> None:
        self.reset()


class ApiDiscoveryManager(K8sBaseManager):
    """Populates a :class:`ResourceTypeRegistry` from the cluster's API surface."""

    _entity_name = "discovery"

    def __init__(
        self,
        session: DiscoverySession,
        registry: ResourceTypeRegistry,
        *,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(session.client)
        self._session = session
        self._registry = registry
        self._retry_attempts = retry_attempts
        self._backoff = backoff
        self._sleep = sleep

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    def discover(self, server_version: Version | None = None) -> DiscoveryResult:
        """Run a full discovery pass.

        Core and group discovery errors propagate. CRD listing is retried and,
        once retries are exhausted, the pass degrades instead of failing.

        Args:
            server_version: Cluster version; fetched from the cluster when None.

        Raises:
            KubernetesError: If core or named group discovery fails.
            FatalDeploymentError: If a CRD carries invalid deploy metadata.
        """
        self._log.info("discovering_resource_types", context=self._session.context)
        kinds = self.discover_groups()

        if server_version is None:
            server_version = self._client.get_server_version()

        if server_version < CRD_MIN_SERVER_VERSION:
            self._log.info("crd_discovery_skipped", server_version=str(server_version))
            return DiscoveryResult(outcome=DiscoveryOutcome.SKIPPED, kinds=kinds)

        try:
            crds = self._with_retries(self._client.list_custom_resource_definitions)
        except KubernetesError as e:
            self._log.warning("Unable to discover CustomResourceDefinitions", error=str(e))
            return DiscoveryResult(outcome=DiscoveryOutcome.DEGRADED, kinds=kinds, error=str(e))

        custom_kinds = self.register_crds(crds)
        return DiscoveryResult(
            outcome=DiscoveryOutcome.SUCCEEDED, kinds=kinds, custom_kinds=custom_kinds
        )

    # -----------------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------------

    def discover_kinds(self) -> dict[str, GroupVersion]:
        """Map every served kind to the GroupVersion that should serve it.

        Memoized on the session.
        """
        if self._session.kinds is not None:
            return self._session.kinds

        kinds: dict[str, GroupVersion] = {}

        # At the top level there is the core group (everything below /api/v1)
        core = GroupVersion(group=CORE_GROUP, version="v1")
        for resource in self._client.get_core_resources().get("resources") or []:
            kinds.setdefault(resource["kind"], core)

        # ...and the named groups (at path /apis/$NAME/$VERSION)
        for group in self._client.get_api_groups().get("groups") or []:
            for group_version in self._ordered_group_versions(group):
                listing = self._client.get_group_version_resources(group_version)
                gv = GroupVersion.from_api_version(group_version)
                for resource in listing.get("resources") or []:
                    kinds.setdefault(resource["kind"], gv)

        self._log.debug("discovered_kinds", count=len(kinds))
        self._session.kinds = kinds
        return kinds

    @staticmethod
    def _ordered_group_versions(group: dict[str, Any]) -> list[str]:
        """Preferred version first, then the rest in listed order."""
        preferred = (group.get("preferredVersion") or {}).get("groupVersion")
        versions = [v["groupVersion"] for v in group.get("versions") or []]
        if preferred is None:
            return versions
        return [preferred, *(v for v in versions if v != preferred)]

    def discover_groups(self) -> dict[str, GroupVersion]:
        """Discover kinds and fill in GroupVersions for static kinds.

        A static kind that already declares a GroupVersion keeps it.
        """
        kinds = self.discover_kinds()
        attached = [
            kind
            for kind, group_version in kinds.items()
            if self._registry.is_static(kind)
            and self._registry.attach_group_version(kind, group_version)
        ]
        self._log.debug("attached_group_versions", count=len(attached))
        return kinds

    # -----------------------------------------------------------------------
    # Custom resources
    # -----------------------------------------------------------------------

    def register_crds(self, crds: list[dict[str, Any]]) -> list[str]:
        """Generate and register a descriptor per CRD, replacing older ones.

        Raises:
            FatalDeploymentError: If a CRD carries invalid deploy metadata.
        """
        registered: list[str] = []
        for crd in crds:
            descriptor = self._registry.register(resource_type_from_crd(crd))
            registered.append(descriptor.kind)
            self._log.debug(
                "registered_custom_resource",
                kind=descriptor.kind,
                group_version=str(descriptor.group_version),
                predeploy=descriptor.predeploy,
                prunable=descriptor.prunable,
            )
        self._log.info("discovered_custom_resources", count=len(registered))
        return registered

    def _with_retries(self, fn: Callable[[], T]) -> T:
        """Call ``fn``, retrying cluster API errors with a fixed backoff.

        Raises:
            KubernetesError: The last error once attempts are exhausted.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(KubernetesError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_fixed(self._backoff),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(fn)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self._log.warning(
            "Retrying to discover CustomResourceDefinitions",
            attempt=retry_state.attempt_number,
            error=str(error),
        )
