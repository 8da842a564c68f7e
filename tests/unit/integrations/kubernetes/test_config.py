"""Unit tests for deploy configuration models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from deploy_operations_manager.integrations.kubernetes.config import (
    ClusterConfig,
    DeployDefaultsConfig,
    DeployPluginConfig,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestClusterConfig:
    """Test ClusterConfig Pydantic model."""

    def test_default_values(self) -> None:
        config = ClusterConfig()
        assert config.context == ""
        assert config.namespace == "default"
        assert config.timeout == 300
        assert config.kubeconfig == str(Path("~/.kube/config").expanduser())

    def test_kubeconfig_path_expansion(self) -> None:
        """Test that tilde in kubeconfig path is expanded."""
        config = ClusterConfig(kubeconfig="~/custom/config")
        assert "~" not in config.kubeconfig

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_timeout_must_be_positive(self, timeout: int) -> None:
        with pytest.raises(ValidationError, match="timeout must be positive"):
            ClusterConfig(timeout=timeout)

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            ClusterConfig(token="abc")  # type: ignore[call-arg]


@pytest.mark.unit
@pytest.mark.kubernetes
class TestDeployDefaultsConfig:
    """Test DeployDefaultsConfig Pydantic model."""

    def test_default_values(self) -> None:
        config = DeployDefaultsConfig()
        assert config.resource_timeout == 30
        assert config.poll_interval == 2.0
        assert config.discovery_retry_attempts == 3
        assert config.discovery_backoff == 10.0
        assert config.prune is True
        assert config.verify_result is True
        assert config.field_manager == "kdeploy"

    @pytest.mark.parametrize("field", ["resource_timeout", "max_workers"])
    def test_positive_fields(self, field: str) -> None:
        with pytest.raises(ValidationError, match="value must be positive"):
            DeployDefaultsConfig(**{field: 0})

    def test_retry_attempts_at_least_one(self) -> None:
        with pytest.raises(ValidationError, match="at least 1"):
            DeployDefaultsConfig(discovery_retry_attempts=0)

    def test_zero_backoff_allowed(self) -> None:
        assert DeployDefaultsConfig(discovery_backoff=0).discovery_backoff == 0

    def test_negative_poll_interval(self) -> None:
        with pytest.raises(ValidationError, match="non-negative"):
            DeployDefaultsConfig(poll_interval=-1)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestDeployPluginConfig:
    """Test DeployPluginConfig accessors."""

    def test_get_active_context_no_clusters(self) -> None:
        assert DeployPluginConfig().get_active_context() is None

    def test_get_active_context_with_active_cluster_name(self) -> None:
        config = DeployPluginConfig(
            clusters={"prod": ClusterConfig(context="prod-context")},
            active_cluster="prod",
        )
        assert config.get_active_context() == "prod-context"

    def test_get_active_context_with_raw_context(self) -> None:
        config = DeployPluginConfig(active_cluster="minikube")
        assert config.get_active_context() == "minikube"

    def test_get_active_context_first_cluster(self) -> None:
        config = DeployPluginConfig(
            clusters={"a": ClusterConfig(context="ctx-a"), "b": ClusterConfig(context="ctx-b")}
        )
        assert config.get_active_context() == "ctx-a"

    def test_namespace_and_timeout_follow_active_cluster(self) -> None:
        config = DeployPluginConfig(
            clusters={
                "dev": ClusterConfig(namespace="dev", timeout=30),
                "prod": ClusterConfig(namespace="prod", timeout=90),
            },
            active_cluster="prod",
        )
        assert config.get_active_namespace() == "prod"
        assert config.get_active_timeout() == 90

    def test_defaults_without_clusters(self) -> None:
        config = DeployPluginConfig()
        assert config.get_active_cluster() is None
        assert config.get_active_namespace() == "default"
        assert config.get_active_timeout() == 300


@pytest.mark.unit
@pytest.mark.kubernetes
class TestFromEnv:
    """Test DeployPluginConfig.from_env."""

    def test_from_env_empty(self) -> None:
        config = DeployPluginConfig.from_env()
        assert config.clusters == {}
        assert config.active_cluster is None
        assert config.selector is None
        assert config.defaults.prune is True

    def test_context_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_CONTEXT", "staging")
        assert DeployPluginConfig.from_env().get_active_context() == "staging"

    def test_namespace_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_NAMESPACE", "apps")
        assert DeployPluginConfig.from_env().get_active_namespace() == "apps"

    def test_namespace_override_keeps_context(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_CONTEXT", "staging")
        monkeypatch.setenv("KDEPLOY_NAMESPACE", "apps")

        config = DeployPluginConfig.from_env()

        assert config.get_active_context() == "staging"
        assert config.get_active_namespace() == "apps"

    def test_kubeconfig_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_KUBECONFIG", "/etc/kube/config")

        cluster = DeployPluginConfig.from_env().get_active_cluster()

        assert cluster is not None
        assert cluster.kubeconfig == "/etc/kube/config"

    def test_timeout_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_TIMEOUT", "120")
        assert DeployPluginConfig.from_env().defaults.resource_timeout == 120

    @pytest.mark.parametrize(("value", "prune"), [("1", False), ("true", False), ("0", True)])
    def test_no_prune(self, monkeypatch: pytest.MonkeyPatch, value: str, prune: bool) -> None:
        monkeypatch.setenv("KDEPLOY_NO_PRUNE", value)
        assert DeployPluginConfig.from_env().defaults.prune is prune

    def test_selector(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_SELECTOR", "app=web")
        assert DeployPluginConfig.from_env().selector == "app=web"

    def test_env_overrides_base_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KDEPLOY_TIMEOUT", "60")
        base = {
            "clusters": {"prod": {"context": "prod-ctx", "namespace": "prod"}},
            "active_cluster": "prod",
            "defaults": {"resource_timeout": 10, "poll_interval": 1.0},
        }

        config = DeployPluginConfig.from_env(base)

        assert config.get_active_context() == "prod-ctx"
        assert config.defaults.resource_timeout == 60
        assert config.defaults.poll_interval == 1.0
