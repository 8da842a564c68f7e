"""Resource instance status tracking.

Every resource in a deploy is a :class:`ResourceInstance` carrying its kind's
:class:`TypeDescriptor`. Kind-specific behaviour (how success is judged,
which timeout message applies) is read from the descriptor rather than from
per-kind subclasses.

State machine::

    Unknown ──> Created ──> Succeeded | Failed | TimedOut
       └──────> Unmonitored
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from deploy_operations_manager.integrations.kubernetes.exceptions import KubernetesError

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient
    from deploy_operations_manager.services.kubernetes.registry import TypeDescriptor

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0

UNUSUAL_FAILURE_MESSAGE = (
    "It is very unusual for this resource type to fail to deploy. Please try the deploy again. "
    "If that new deploy also fails, contact your cluster administrator."
)

STANDARD_TIMEOUT_MESSAGE = (
    "Kubernetes will continue to attempt to deploy this resource in the cluster, but at this "
    "point it is considered unlikely that it will succeed.\n"
    "If you have reason to believe it will succeed, retry the deploy to continue to monitor "
    "the rollout."
)


class ResourceStatus(StrEnum):
    """Observed state of a resource during a deploy."""

    UNKNOWN = "Unknown"
    CREATED = "Created"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"
    UNMONITORED = "Unmonitored"

    @property
    def terminal(self) -> bool:
        """Whether polling stops in this state."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ResourceStatus.SUCCEEDED,
        ResourceStatus.FAILED,
        ResourceStatus.TIMED_OUT,
        ResourceStatus.UNMONITORED,
    }
)


class ResourceInstance:
    """A (kind, namespace, name) being deployed and monitored in one run.

    ``sync`` is the only method that talks to the cluster. It performs one
    existence check and, for kinds with status rules, one more fetch of the
    raw document; nothing is cached between calls.
    """

    def __init__(
        self,
        manifest: dict[str, Any],
        descriptor: TypeDescriptor,
        namespace: str | None,
        *,
        default_timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a resource instance.

        Args:
            manifest: The manifest being deployed.
            descriptor: Deploy behaviour for the manifest's kind.
            namespace: Target namespace (None for cluster-scoped kinds).
            default_timeout: Timeout used when the descriptor declares none.
            clock: Monotonic time source.
        """
        self.manifest = manifest
        self.descriptor = descriptor
        self.kind: str = manifest.get("kind", descriptor.kind)
        self.name: str = manifest.get("metadata", {}).get("name", "")
        self.namespace = namespace
        self.api_version: str = manifest.get("apiVersion") or (
            descriptor.group_version.api_version if descriptor.group_version else ""
        )

        self.found = False
        self.status = ResourceStatus.UNKNOWN
        self.raw_status_document: dict[str, Any] | None = None

        self._default_timeout = default_timeout
        self._clock = clock
        self._deploy_started_at: float | None = None

    def __repr__(self) -> str:
        return f"<ResourceInstance {self.id} status={self.status}>"

    @property
    def id(self) -> str:
        """``Kind/name`` identifier."""
        return f"{self.kind}/{self.name}"

    @property
    def identity(self) -> tuple[str, str | None, str]:
        """``(kind, namespace, name)`` key used for pruning."""
        return (self.kind, self.namespace, self.name)

    @property
    def timeout(self) -> float:
        """Seconds this resource may take to reach a terminal state."""
        if self.descriptor.timeout is not None:
            return self.descriptor.timeout
        return self._default_timeout

    @property
    def timeout_message(self) -> str:
        """Diagnostic shown when the resource times out.

        Built-in kinds with status rules get the standard message; generated
        kinds and existence-only kinds get the generic one.
        """
        if self.descriptor.timeout_message:
            return self.descriptor.timeout_message
        if self.descriptor.static and self.descriptor.has_status_rule:
            return STANDARD_TIMEOUT_MESSAGE
        return UNUSUAL_FAILURE_MESSAGE

    # -----------------------------------------------------------------------
    # Verdicts
    # -----------------------------------------------------------------------

    def exists(self) -> bool:
        """Whether the last poll found the resource."""
        return self.found

    def deploy_succeeded(self) -> bool:
        """Whether the resource has reached its success criterion."""
        if self.descriptor.success_rule is None:
            return self.found
        return self.found and self.descriptor.success_rule.evaluate(self.raw_status_document)

    def deploy_failed(self) -> bool:
        """Whether the resource reports failure. Existence-only kinds never fail."""
        rule = self.descriptor.failure_rule
        if rule is None or not self.found:
            return False
        return rule.evaluate(self.raw_status_document)

    def deploy_timed_out(self) -> bool:
        """Whether this resource's own clock has run out."""
        if self._deploy_started_at is None:
            return False
        return self._clock() - self._deploy_started_at > self.timeout

    @property
    def terminal(self) -> bool:
        """Whether polling for this resource is over."""
        return self.status.terminal

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def start_deploy_clock(self) -> None:
        """Start the timeout clock if it is not already running."""
        if self._deploy_started_at is None:
            self._deploy_started_at = self._clock()

    def mark_unmonitored(self) -> None:
        """Record that the resource was applied without being monitored."""
        self.status = ResourceStatus.UNMONITORED

    def sync(self, client: KubernetesClient) -> ResourceStatus:
        """Poll the cluster once and update the observed state.

        Transport errors count as "not found" for this cycle.
        """
        if self.terminal:
            return self.status
        self.start_deploy_clock()

        found, raw = client.get_object(self.api_version, self.kind, self.namespace, self.name)
        self.found = found
        if not found:
            self.status = ResourceStatus.UNKNOWN
            self.raw_status_document = None
        else:
            self.status = ResourceStatus.CREATED
            if self.descriptor.success_rule is None and self.descriptor.failure_rule is None:
                self.raw_status_document = raw if isinstance(raw, dict) else None
            else:
                self.raw_status_document = self._fetch_status(client)

        if self.deploy_succeeded():
            self.status = ResourceStatus.SUCCEEDED
        elif self.deploy_failed():
            self.status = ResourceStatus.FAILED
        elif self.deploy_timed_out():
            self.status = ResourceStatus.TIMED_OUT
            logger.warning(
                "resource_timed_out",
                resource=self.id,
                namespace=self.namespace,
                timeout=self.timeout,
            )
        return self.status

    def _fetch_status(self, client: KubernetesClient) -> dict[str, Any] | None:
        try:
            return client.get_raw_status(self.api_version, self.kind, self.namespace, self.name)
        except KubernetesError as e:
            logger.debug("status_fetch_failed", resource=self.id, error=str(e))
            return None

    # -----------------------------------------------------------------------
    # Reporting
    # -----------------------------------------------------------------------

    def pretty_status(self) -> str:
        """One-line human readable status."""
        if self.status is ResourceStatus.TIMED_OUT:
            return f"{self.id}: Timed out after {self.timeout:g}s"
        rule = self.descriptor.success_rule
        if rule is not None and self.status is ResourceStatus.CREATED:
            current = rule.current_value(self.raw_status_document)
            return f"{self.id}: {self.status} ({rule.status_field}={current!r})"
        return f"{self.id}: {self.status}"

    def failure_message(self) -> str | None:
        """Diagnostic for a failed or timed-out resource."""
        if self.status is ResourceStatus.TIMED_OUT:
            return self.timeout_message
        if self.status is ResourceStatus.FAILED:
            rule = self.descriptor.failure_rule
            if rule is not None:
                return f"{rule.status_field} reported {rule.expected_value!r}"
            return "Resource reported failure"
        return None
