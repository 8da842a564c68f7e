"""Kubernetes API client wrapper.

Wraps the official kubernetes Python client for a single cluster context.
Each instance owns its own ``ApiClient`` (built with
``config.new_client_from_config`` rather than the process-global default
configuration) so two clients pointed at different contexts never share
state. API group handles are created lazily and memoized per instance.

All discovery endpoints return plain JSON-shaped dicts (camelCase keys, as
served by the API server) so that callers do not depend on SDK model classes.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import structlog
from packaging.version import Version

from deploy_operations_manager.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import (
        ApiClient,
        ApiextensionsV1Api,
        ApisApi,
        CoreV1Api,
        CustomObjectsApi,
        VersionApi,
    )
    from kubernetes.dynamic import DynamicClient

    from deploy_operations_manager.integrations.kubernetes.config import DeployPluginConfig

logger = structlog.get_logger()

SERVER_VERSION_PATTERN = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")


class KubernetesClient:
    """Single-context Kubernetes API client.

    Provides the calls the deploy core needs:
    - API discovery listings (core group, named groups, group versions)
    - CustomResourceDefinition listing
    - Generic object get/apply/delete/list by apiVersion and kind
    - Cluster server version

    Example:
        ```python
        config = DeployPluginConfig.from_env()
        with KubernetesClient(config) as client:
            groups = client.get_api_groups()
        ```
    """

    def __init__(self, plugin_config: DeployPluginConfig, context: str | None = None) -> None:
        """Initialize Kubernetes client from plugin config.

        Args:
            plugin_config: Complete deploy configuration.
            context: Explicit kubeconfig context; overrides the configured one.
        """
        self._config = plugin_config
        self._requested_context = context
        self._current_context: str | None = None
        self._field_manager = plugin_config.defaults.field_manager
        self._request_timeout = plugin_config.get_active_timeout()

        self._api_client: ApiClient | None = None
        self._core_v1: CoreV1Api | None = None
        self._apis_api: ApisApi | None = None
        self._custom_objects: CustomObjectsApi | None = None
        self._apiextensions_v1: ApiextensionsV1Api | None = None
        self._version_api: VersionApi | None = None
        self._dynamic: DynamicClient | None = None

        self._load_config()

        logger.info(
            "Kubernetes client initialized",
            context=self._current_context,
            default_namespace=plugin_config.get_active_namespace(),
        )

    def _load_config(self) -> None:
        """Build an ApiClient from kubeconfig, falling back to in-cluster config."""
        from kubernetes import client, config
        from kubernetes.config import ConfigException

        active_context = self._requested_context or self._config.get_active_context()
        cluster_cfg = self._config.get_active_cluster()
        kubeconfig_path = cluster_cfg.kubeconfig if cluster_cfg else None

        try:
            self._api_client = config.new_client_from_config(
                config_file=kubeconfig_path,
                context=active_context,
            )
            self._current_context = active_context
            logger.debug(
                "loaded_kubeconfig",
                context=active_context,
                kubeconfig=kubeconfig_path,
            )
        except ConfigException:
            try:
                configuration = client.Configuration()
                config.load_incluster_config(client_configuration=configuration)
                self._api_client = client.ApiClient(configuration)
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config")
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

        self._invalidate_api_cache()

    def _invalidate_api_cache(self) -> None:
        """Clear cached API group instances."""
        self._core_v1 = None
        self._apis_api = None
        self._custom_objects = None
        self._apiextensions_v1 = None
        self._version_api = None
        self._dynamic = None

    # =========================================================================
    # Lazy API Group Accessors
    # =========================================================================

    @property
    def api_client(self) -> ApiClient:
        """Get the underlying ApiClient bound to this context."""
        if self._api_client is None:
            raise KubernetesConnectionError(message="Kubernetes client is closed")
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance (the ``/api/v1`` surface)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self.api_client)
        return self._core_v1

    @property
    def apis_api(self) -> ApisApi:
        """Get ApisApi instance (the ``/apis`` group listing)."""
        if self._apis_api is None:
            from kubernetes.client import ApisApi

            self._apis_api = ApisApi(self.api_client)
        return self._apis_api

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance (per group/version resource listings)."""
        if self._custom_objects is None:
            from kubernetes.client import CustomObjectsApi

            self._custom_objects = CustomObjectsApi(self.api_client)
        return self._custom_objects

    @property
    def apiextensions_v1(self) -> ApiextensionsV1Api:
        """Get ApiextensionsV1Api instance (CustomResourceDefinitions)."""
        if self._apiextensions_v1 is None:
            from kubernetes.client import ApiextensionsV1Api

            self._apiextensions_v1 = ApiextensionsV1Api(self.api_client)
        return self._apiextensions_v1

    @property
    def version_api(self) -> VersionApi:
        """Get VersionApi instance for cluster version info."""
        if self._version_api is None:
            from kubernetes.client import VersionApi

            self._version_api = VersionApi(self.api_client)
        return self._version_api

    @property
    def dynamic(self) -> DynamicClient:
        """Get a DynamicClient for kind-agnostic object access."""
        if self._dynamic is None:
            from kubernetes.dynamic import DynamicClient

            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes ApiException to a custom exception.

        Args:
            e: The original ApiException.
            resource_type: Type of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException
        from urllib3.exceptions import TimeoutError as RequestTimeoutError

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, (TimeoutError, RequestTimeoutError)):
            return KubernetesTimeoutError(message=f"Request timed out: {e}")

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        status = e.status

        if status in (401, 403):
            return KubernetesAuthError(
                message=e.reason or "Authentication/authorization failed",
                status_code=status,
                reason=e.reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            return KubernetesValidationError(
                message=e.reason or "Validation failed",
                status_code=status,
            )

        return KubernetesError(
            message=e.reason or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    def _serialize(self, obj: Any) -> Any:
        """Convert an SDK model into the JSON shape served by the API."""
        return self.api_client.sanitize_for_serialization(obj)

    # =========================================================================
    # Discovery Endpoints
    # =========================================================================

    def get_core_resources(self) -> dict[str, Any]:
        """List resources served under ``/api/v1``.

        Returns:
            ``{"resources": [{"kind": ..., ...}, ...]}``
        """
        try:
            response = self.core_v1.get_api_resources(_request_timeout=self._request_timeout)
        except Exception as e:
            raise self.translate_api_exception(e, resource_type="APIResourceList") from e
        return self._serialize(response)

    def get_api_groups(self) -> dict[str, Any]:
        """List named API groups served under ``/apis``.

        Returns:
            ``{"groups": [{"preferredVersion": {"groupVersion": ...},
            "versions": [{"groupVersion": ...}, ...]}, ...]}``
        """
        try:
            response = self.apis_api.get_api_versions(_request_timeout=self._request_timeout)
        except Exception as e:
            raise self.translate_api_exception(e, resource_type="APIGroupList") from e
        return self._serialize(response)

    def get_group_version_resources(self, group_version: str) -> dict[str, Any]:
        """List resources served under ``/apis/{group_version}``.

        Args:
            group_version: A ``group/version`` string such as ``apps/v1``.

        Returns:
            ``{"resources": [{"kind": ..., ...}, ...]}``
        """
        group, _, version = group_version.rpartition("/")
        try:
            response = self.custom_objects.get_api_resources(
                group, version, _request_timeout=self._request_timeout
            )
        except Exception as e:
            raise self.translate_api_exception(
                e, resource_type="APIResourceList", resource_name=group_version
            ) from e
        return self._serialize(response)

    def list_custom_resource_definitions(self) -> list[dict[str, Any]]:
        """List CustomResourceDefinitions registered in the cluster.

        The v1 API lists served versions under ``spec.versions``; the storage
        version is copied to ``spec.version`` so every item exposes
        ``spec.group``, ``spec.version``, ``spec.names.kind`` and
        ``metadata.annotations``.
        """
        try:
            response = self.apiextensions_v1.list_custom_resource_definition(
                _request_timeout=self._request_timeout
            )
        except Exception as e:
            raise self.translate_api_exception(
                e, resource_type="CustomResourceDefinition"
            ) from e

        items: list[dict[str, Any]] = self._serialize(response).get("items") or []
        for item in items:
            spec = item.setdefault("spec", {})
            if not spec.get("version"):
                spec["version"] = crd_storage_version(spec.get("versions") or [])
            item.setdefault("metadata", {}).setdefault("annotations", {})
        return items

    def get_server_version(self) -> Version:
        """Get the Kubernetes server version.

        Provider suffixes such as ``+`` in the minor version or
        ``-gke.100`` in the git version are ignored.

        Raises:
            KubernetesConnectionError: If the cluster is unreachable.
        """
        try:
            info = self.version_api.get_code(_request_timeout=self._request_timeout)
        except Exception as e:
            raise KubernetesConnectionError(
                message="Failed to get cluster version",
                original_error=e,
            ) from e

        match = SERVER_VERSION_PATTERN.match(getattr(info, "git_version", "") or "")
        if match:
            major, minor, patch = match.groups()
            return Version(f"{major}.{minor}.{patch or 0}")
        major = re.sub(r"\D", "", str(info.major)) or "0"
        minor = re.sub(r"\D", "", str(info.minor)) or "0"
        return Version(f"{major}.{minor}.0")

    # =========================================================================
    # Object Operations
    # =========================================================================

    def _resource_api(self, api_version: str, kind: str) -> Any:
        """Resolve the dynamic resource for an apiVersion/kind pair."""
        return self.dynamic.resources.get(api_version=api_version, kind=kind)

    @staticmethod
    def _scoped_namespace(resource_api: Any, namespace: str | None) -> str | None:
        """Drop the namespace for cluster-scoped kinds."""
        return namespace if getattr(resource_api, "namespaced", True) else None

    def get_object(
        self,
        api_version: str,
        kind: str,
        namespace: str | None,
        name: str,
    ) -> tuple[bool, Any]:
        """Fetch a single object.

        Never raises: any failure (including not found) is reported as
        ``(False, error_message)``.

        Returns:
            ``(True, object_dict)`` on success, ``(False, error_message)`` otherwise.
        """
        try:
            resource_api = self._resource_api(api_version, kind)
            obj = resource_api.get(
                name=name,
                namespace=self._scoped_namespace(resource_api, namespace),
                _request_timeout=self._request_timeout,
            )
        except Exception as e:
            logger.debug(
                "object_get_failed", kind=kind, name=name, namespace=namespace, error=str(e)
            )
            return False, str(e)
        return True, obj.to_dict()

    def get_raw_status(
        self,
        api_version: str,
        kind: str,
        namespace: str | None,
        name: str,
    ) -> dict[str, Any]:
        """Fetch the raw document for an object, for status evaluation.

        Raises:
            KubernetesError: If the object cannot be fetched.
        """
        try:
            resource_api = self._resource_api(api_version, kind)
            obj = resource_api.get(
                name=name,
                namespace=self._scoped_namespace(resource_api, namespace),
                _request_timeout=self._request_timeout,
            )
        except Exception as e:
            raise self.translate_api_exception(e, kind, name, namespace) from e
        return obj.to_dict()

    def apply_manifest(self, manifest: dict[str, Any], namespace: str | None) -> dict[str, Any]:
        """Server-side apply a manifest.

        Raises:
            KubernetesError: If the API server rejects the manifest.
        """
        kind = manifest.get("kind", "")
        name = manifest.get("metadata", {}).get("name", "")
        try:
            resource_api = self._resource_api(manifest.get("apiVersion", ""), kind)
            result = resource_api.server_side_apply(
                body=manifest,
                namespace=self._scoped_namespace(resource_api, namespace),
                field_manager=self._field_manager,
                force_conflicts=True,
                _request_timeout=self._request_timeout,
            )
        except Exception as e:
            raise self.translate_api_exception(e, kind, name, namespace) from e
        return result.to_dict() if hasattr(result, "to_dict") else dict(result or {})

    def delete_object(
        self,
        api_version: str,
        kind: str,
        namespace: str | None,
        name: str,
    ) -> bool:
        """Delete a single object.

        Returns:
            True if the API server accepted the deletion.
        """
        try:
            resource_api = self._resource_api(api_version, kind)
            resource_api.delete(
                name=name,
                namespace=self._scoped_namespace(resource_api, namespace),
                _request_timeout=self._request_timeout,
            )
        except Exception as e:
            logger.warning(
                "object_delete_failed", kind=kind, name=name, namespace=namespace, error=str(e)
            )
            return False
        return True

    def list_objects(
        self,
        api_version: str,
        kind: str,
        namespace: str | None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List objects of one kind.

        Raises:
            KubernetesError: If the listing fails.
        """
        try:
            resource_api = self._resource_api(api_version, kind)
            kwargs: dict[str, Any] = {
                "namespace": self._scoped_namespace(resource_api, namespace),
                "_request_timeout": self._request_timeout,
            }
            if label_selector:
                kwargs["label_selector"] = label_selector
            result = resource_api.get(**kwargs)
        except Exception as e:
            raise self.translate_api_exception(e, kind, namespace=namespace) from e
        return list(result.to_dict().get("items") or [])

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def current_context(self) -> str:
        """Get the context this client is bound to."""
        return self._current_context or "unknown"

    @property
    def default_namespace(self) -> str:
        """Get the default namespace from config."""
        return self._config.get_active_namespace()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release resources."""
        self._invalidate_api_cache()
        if self._api_client is not None:
            self._api_client.close()
            self._api_client = None
        logger.debug("Kubernetes client closed")

    def __enter__(self) -> KubernetesClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()


def crd_storage_version(versions: list[dict[str, Any]]) -> str:
    """Pick the storage version from a v1 CRD ``spec.versions`` list."""
    for version in versions:
        if version.get("storage"):
            return str(version.get("name", ""))
    for version in versions:
        if version.get("served"):
            return str(version.get("name", ""))
    return str(versions[0].get("name", "")) if versions else ""
