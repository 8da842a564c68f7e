"""Resource type registry.

Holds one :class:`TypeDescriptor` per resource kind. Descriptors are plain
data: deploy ordering (predeploy), pruning eligibility, declared predeploy
dependencies and optional status rules that a single generic evaluator
interprets for every kind. Statically known kinds are built in; kinds backed
by CustomResourceDefinitions are added at runtime by discovery.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any

import structlog

logger = structlog.get_logger()

CORE_GROUP = "core"

# Predeploy kinds are applied in this order; kinds not listed (typically
# custom resources) follow in dependency order.
PREDEPLOY_SEQUENCE = (
    "CustomResourceDefinition",
    "ResourceQuota",
    "NetworkPolicy",
    "ConfigMap",
    "PersistentVolumeClaim",
    "ServiceAccount",
    "Role",
    "RoleBinding",
    "Secret",
    "Pod",
)

# A CRD is usable once the API server reports it Established.
ESTABLISHED_PATH = '$.status.conditions[?type = "Established"].status'


@lru_cache(maxsize=256)
def _compile_path(path: str) -> Any:
    from jsonpath_ng.ext import parse

    return parse(path)


@dataclass(frozen=True)
class GroupVersion:
    """An API group/version pair. ``group == "core"`` is the ``/api/v1`` surface."""

    group: str
    version: str

    @classmethod
    def from_api_version(cls, api_version: str) -> GroupVersion:
        """Parse a manifest ``apiVersion`` such as ``apps/v1`` or ``v1``."""
        group, _, version = api_version.rpartition("/")
        return cls(group=group or CORE_GROUP, version=version)

    @property
    def api_version(self) -> str:
        """Render as a manifest ``apiVersion``."""
        if self.group in (CORE_GROUP, ""):
            return self.version
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        return self.api_version


@dataclass(frozen=True)
class SuccessRule:
    """A status path and the literal value it must equal.

    ``status_field`` is a JSONPath expression evaluated against the raw object
    document; the first match is compared to ``expected_value`` with ``==``.
    """

    status_field: str
    expected_value: Any

    def validate(self) -> None:
        """Compile ``status_field``; the parser error propagates when it is malformed."""
        _compile_path(self.status_field)

    def current_value(self, document: Any) -> Any:
        """Return the first value at ``status_field``, or None."""
        if document is None:
            return None
        matches = _compile_path(self.status_field).find(document)
        return matches[0].value if matches else None

    def evaluate(self, document: Any) -> bool:
        """Check whether the document satisfies the rule."""
        return bool(self.current_value(document) == self.expected_value)


@dataclass(frozen=True)
class TypeDescriptor:
    """Deploy behaviour for one resource kind."""

    kind: str
    group_version: GroupVersion | None = None
    predeploy: bool = False
    prunable: bool = False
    predeploy_dependencies: tuple[str, ...] = ()
    success_rule: SuccessRule | None = None
    failure_rule: SuccessRule | None = None
    timeout: float | None = None
    timeout_message: str | None = None
    static: bool = False

    @property
    def has_status_rule(self) -> bool:
        """Whether success is judged by status rather than existence."""
        return self.success_rule is not None


@dataclass(frozen=True)
class _Static:
    kind: str
    predeploy: bool = False
    prunable: bool = True
    success: tuple[str, Any] | None = None
    failure: tuple[str, Any] | None = None
    timeout: float | None = None


_STATIC_TABLE = (
    _Static(
        "CustomResourceDefinition",
        predeploy=True,
        prunable=False,
        success=(ESTABLISHED_PATH, "True"),
    ),
    _Static("ResourceQuota", predeploy=True),
    _Static("NetworkPolicy", predeploy=True),
    _Static("ConfigMap", predeploy=True),
    _Static(
        "PersistentVolumeClaim",
        predeploy=True,
        success=("$.status.phase", "Bound"),
        failure=("$.status.phase", "Lost"),
        timeout=300,
    ),
    _Static("ServiceAccount", predeploy=True),
    _Static("Role", predeploy=True),
    _Static("RoleBinding", predeploy=True),
    _Static("Secret", predeploy=True),
    _Static(
        "Pod",
        predeploy=True,
        success=("$.status.phase", "Succeeded"),
        failure=("$.status.phase", "Failed"),
        timeout=600,
    ),
    _Static("Service"),
    _Static("Deployment"),
    _Static("StatefulSet"),
    _Static("DaemonSet"),
    _Static("ReplicaSet", prunable=False),
    _Static("Job"),
    _Static("CronJob"),
    _Static("Ingress"),
    _Static("PodDisruptionBudget"),
    _Static("HorizontalPodAutoscaler"),
    _Static("PodTemplate"),
    _Static("Namespace", prunable=False),
)


def _build_static(entry: _Static) -> TypeDescriptor:
    return TypeDescriptor(
        kind=entry.kind,
        predeploy=entry.predeploy,
        prunable=entry.prunable,
        success_rule=SuccessRule(*entry.success) if entry.success else None,
        failure_rule=SuccessRule(*entry.failure) if entry.failure else None,
        timeout=entry.timeout,
        static=True,
    )


STATIC_RESOURCE_TYPES: tuple[TypeDescriptor, ...] = tuple(_build_static(e) for e in _STATIC_TABLE)


class ResourceTypeRegistry:
    """Kind → :class:`TypeDescriptor` map shared by discovery and deploy.

    Writes happen during discovery and manifest resolution and are guarded by
    a lock; once polling starts the registry is only read.

    Static descriptors always win over runtime-generated ones for the same
    kind, and a static descriptor's GroupVersion is only ever filled in, never
    replaced.
    """

    def __init__(self, static_types: Iterable[TypeDescriptor] = STATIC_RESOURCE_TYPES) -> None:
        self._types: dict[str, TypeDescriptor] = {t.kind: t for t in static_types}
        self._lock = threading.Lock()
        self._log = logger.bind(entity="resource_type_registry")

    def __contains__(self, kind: object) -> bool:
        return kind in self._types

    def __len__(self) -> int:
        return len(self._types)

    def __iter__(self) -> Iterator[TypeDescriptor]:
        return iter(list(self._types.values()))

    def get(self, kind: str) -> TypeDescriptor | None:
        """Look up the descriptor for a kind."""
        return self._types.get(kind)

    def is_static(self, kind: str) -> bool:
        """Whether the kind is built in rather than discovered."""
        descriptor = self._types.get(kind)
        return bool(descriptor and descriptor.static)

    def register(self, descriptor: TypeDescriptor) -> TypeDescriptor:
        """Add or replace a runtime descriptor.

        Returns:
            The descriptor now registered for the kind.
        """
        with self._lock:
            existing = self._types.get(descriptor.kind)
            if existing is not None and existing.static and not descriptor.static:
                self._log.debug("static_type_kept", kind=descriptor.kind)
                return existing
            if existing is not None:
                self._log.debug("resource_type_replaced", kind=descriptor.kind)
            self._types[descriptor.kind] = descriptor
            return descriptor

    def attach_group_version(self, kind: str, group_version: GroupVersion) -> bool:
        """Give a registered kind a GroupVersion unless it already has one.

        Returns:
            True if the descriptor was updated.
        """
        with self._lock:
            existing = self._types.get(kind)
            if existing is None or existing.group_version is not None:
                return False
            self._types[kind] = replace(existing, group_version=group_version)
            return True

    def prunable_types(self) -> list[TypeDescriptor]:
        """Descriptors eligible for pruning that know where they are served."""
        return [t for t in self if t.prunable and t.group_version is not None]

    def predeploy_kinds(self) -> list[str]:
        """All kinds deployed in the predeploy phase, in apply order.

        Starts from every predeploy kind and follows ``predeploy_dependencies``
        transitively; a dependency is predeploy even if its own descriptor is
        not flagged. Kinds in :data:`PREDEPLOY_SEQUENCE` come first, then the
        rest with each kind's dependencies ahead of it.
        """
        ordered: list[str] = []
        visiting: set[str] = set()

        def visit(kind: str) -> None:
            if kind in ordered or kind in visiting:
                return
            visiting.add(kind)
            descriptor = self._types.get(kind)
            for dependency in descriptor.predeploy_dependencies if descriptor else ():
                visit(dependency)
            visiting.discard(kind)
            ordered.append(kind)

        for descriptor in self:
            if descriptor.predeploy:
                visit(descriptor.kind)

        sequenced = [k for k in PREDEPLOY_SEQUENCE if k in ordered]
        return sequenced + [k for k in ordered if k not in PREDEPLOY_SEQUENCE]


def descriptor_summary(descriptor: TypeDescriptor) -> dict[str, Any]:
    """Flatten a descriptor for display."""
    return {
        "kind": descriptor.kind,
        "group_version": str(descriptor.group_version) if descriptor.group_version else "",
        "predeploy": descriptor.predeploy,
        "prunable": descriptor.prunable,
        "dependencies": ", ".join(descriptor.predeploy_dependencies),
        "success_rule": (
            f"{descriptor.success_rule.status_field} == {descriptor.success_rule.expected_value!r}"
            if descriptor.success_rule
            else ""
        ),
        "static": descriptor.static,
    }

