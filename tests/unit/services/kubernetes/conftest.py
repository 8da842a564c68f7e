"""Shared fixtures for deploy service tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from deploy_operations_manager.services.kubernetes.registry import ResourceTypeRegistry


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Create a mock deploy client.

    Objects are reported missing and listings empty unless a test says
    otherwise.
    """
    mock_client = MagicMock()
    mock_client.default_namespace = "default"
    mock_client.get_object.return_value = (False, "not found")
    mock_client.list_objects.return_value = []
    mock_client.delete_object.return_value = True
    return mock_client


@pytest.fixture
def registry() -> ResourceTypeRegistry:
    """A registry holding only the built-in kinds."""
    return ResourceTypeRegistry()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


def make_manifest(
    kind: str,
    name: str,
    api_version: str = "v1",
    namespace: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal manifest dict."""
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata, **extra}


def make_crd(
    kind: str,
    group: str = "stable.example.io",
    version: str = "v1",
    metadata: str | None = None,
) -> dict[str, Any]:
    """Build a v1 CustomResourceDefinition document."""
    annotations = {}
    if metadata is not None:
        annotations["kubernetes-deploy.shopify.io/metadata"] = metadata
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{kind.lower()}s.{group}", "annotations": annotations},
        "spec": {
            "group": group,
            "names": {"kind": kind, "plural": f"{kind.lower()}s"},
            "scope": "Namespaced",
            "versions": [{"name": version, "served": True, "storage": True}],
        },
    }


@pytest.fixture
def manifest_factory() -> Any:
    """Return the manifest builder."""
    return make_manifest


@pytest.fixture
def crd_factory() -> Any:
    """Return the CustomResourceDefinition builder."""
    return make_crd
