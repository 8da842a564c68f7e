"""Exceptions raised by the deploy client and services.

Everything derives from :class:`KubernetesError` so the CLI can report any
failure through one handler.
"""

from __future__ import annotations

from typing import Any


class KubernetesError(Exception):
    """Base exception for cluster and deploy errors.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code from Kubernetes API (if applicable).
        resource_type: Kind involved (e.g., "ConfigMap", "Widget").
        resource_name: Name of the resource involved.
        namespace: Namespace of the resource, None for cluster-scoped kinds.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        """Initialize KubernetesError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code from Kubernetes API.
            resource_type: Type of resource involved.
            resource_name: Name of the resource involved.
            namespace: Namespace of the resource.
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.namespace = namespace

    def __str__(self) -> str:
        """Return string representation of the error."""
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.resource_type and self.resource_name:
            loc = f"[{self.resource_type}/{self.resource_name}"
            if self.namespace:
                loc += f" in {self.namespace}"
            loc += "]"
            parts.append(loc)
        return " ".join(parts)


class KubernetesConnectionError(KubernetesError):
    """Raised when no usable cluster connection can be built.

    Covers a missing or broken kubeconfig, an unknown context and an
    unreachable API server.
    """

    def __init__(
        self,
        message: str = "Failed to connect to Kubernetes cluster",
        original_error: Exception | None = None,
    ) -> None:
        """Initialize KubernetesConnectionError.

        Args:
            message: Human-readable error message.
            original_error: The original exception that caused this error.
        """
        super().__init__(message=message)
        self.original_error = original_error


class KubernetesAuthError(KubernetesError):
    """Raised on 401/403 responses, typically an RBAC denial for a kind being deployed."""

    def __init__(
        self,
        message: str = "Kubernetes authentication/authorization failed",
        status_code: int | None = 401,
        reason: str | None = None,
    ) -> None:
        """Initialize KubernetesAuthError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code (usually 401 or 403).
            reason: Kubernetes API reason string.
        """
        super().__init__(message=message, status_code=status_code)
        self.reason = reason


class KubernetesNotFoundError(KubernetesError):
    """Raised on a 404 response from the API server."""

    def __init__(
        self,
        message: str = "Kubernetes resource not found",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        """Initialize KubernetesNotFoundError.

        Args:
            message: Human-readable error message.
            resource_type: Type of resource (e.g., "Pod", "Deployment").
            resource_name: Name of the resource.
            namespace: Namespace of the resource.
        """
        if resource_type and resource_name:
            message = f"{resource_type} '{resource_name}' not found"
            if namespace:
                message += f" in namespace '{namespace}'"
        super().__init__(
            message=message,
            status_code=404,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesValidationError(KubernetesError):
    """Raised when the API server rejects a manifest as invalid (400/422)."""

    def __init__(
        self,
        message: str = "Invalid resource specification",
        validation_errors: dict[str, Any] | None = None,
        status_code: int | None = 422,
    ) -> None:
        """Initialize KubernetesValidationError.

        Args:
            message: Human-readable error message.
            validation_errors: Specific field validation errors.
            status_code: HTTP status code (usually 400 or 422).
        """
        super().__init__(message=message, status_code=status_code)
        self.validation_errors = validation_errors or {}


class KubernetesConflictError(KubernetesError):
    """Raised on a 409 response from the API server."""

    def __init__(
        self,
        message: str = "Resource conflict",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        """Initialize KubernetesConflictError.

        Args:
            message: Human-readable error message.
            resource_type: Type of resource.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.
        """
        if resource_type and resource_name:
            message = f"{resource_type} '{resource_name}' already exists"
            if namespace:
                message += f" in namespace '{namespace}'"
        super().__init__(
            message=message,
            status_code=409,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesTimeoutError(KubernetesError):
    """Raised when a single API request exceeds the cluster request timeout.

    Resource rollout timeouts are not errors; they surface as the
    ``TimedOut`` resource status instead.
    """

    def __init__(
        self,
        message: str = "Kubernetes operation timed out",
        timeout_seconds: int | None = None,
    ) -> None:
        """Initialize KubernetesTimeoutError.

        Args:
            message: Human-readable error message.
            timeout_seconds: The timeout value that was exceeded.
        """
        if timeout_seconds:
            message = f"{message} (after {timeout_seconds}s)"
        super().__init__(message=message)
        self.timeout_seconds = timeout_seconds


class FatalDeploymentError(KubernetesError):
    """Exception raised when deploy configuration is unusable.

    This is never retried. The typical source is a CustomResourceDefinition
    whose deploy-metadata annotation does not decode to a JSON object, or
    whose ``status-field`` is not a valid JSONPath expression.
    """

    def __init__(
        self,
        message: str = "Fatal deployment error",
        resource_type: str | None = None,
        resource_name: str | None = None,
    ) -> None:
        """Initialize FatalDeploymentError.

        Args:
            message: Human-readable error message.
            resource_type: Kind whose configuration is invalid.
            resource_name: Name of the offending resource.
        """
        super().__init__(
            message=message,
            resource_type=resource_type,
            resource_name=resource_name,
        )


class DeploymentFailedError(KubernetesError):
    """Exception raised when a deploy phase ends with failed resources.

    Attributes:
        phase: Name of the phase that failed ("predeploy" or "main").
        failed_resources: Identifiers of resources that failed or timed out.
    """

    def __init__(
        self,
        phase: str,
        failed_resources: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize DeploymentFailedError.

        Args:
            phase: Name of the phase that failed.
            failed_resources: Identifiers of the failing resources.
            message: Optional override for the generated message.
        """
        self.phase = phase
        self.failed_resources = failed_resources or []
        if message is None:
            message = f"{phase.capitalize()} phase failed"
            if self.failed_resources:
                message += f": {', '.join(self.failed_resources)}"
        super().__init__(message=message)


class DeployCancelledError(KubernetesError):
    """Exception raised when a running deploy is cancelled.

    Mutations already sent to the cluster are not rolled back.
    """

    def __init__(self, message: str = "Deploy cancelled") -> None:
        """Initialize DeployCancelledError.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message=message)
