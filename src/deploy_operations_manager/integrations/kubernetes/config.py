"""Deploy configuration models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

FALSE_ENV_VALUES = {"0", "false", "no", "off"}


class ClusterConfig(BaseModel):
    """Configuration for a single Kubernetes cluster context."""

    model_config = ConfigDict(extra="forbid")

    context: str = ""
    kubeconfig: str = "~/.kube/config"
    namespace: str = "default"
    timeout: int = 300

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("kubeconfig")
    @classmethod
    def validate_kubeconfig(cls, v: str) -> str:
        """Expand ~ in kubeconfig path."""
        return str(Path(v).expanduser())


class DeployDefaultsConfig(BaseModel):
    """Default settings for a deploy run.

    ``resource_timeout`` is the fallback per-resource timeout for kinds that
    do not declare their own. ``discovery_retry_attempts`` and
    ``discovery_backoff`` bound CustomResourceDefinition discovery retries.
    """

    model_config = ConfigDict(extra="forbid")

    resource_timeout: int = 30
    poll_interval: float = 2.0
    discovery_retry_attempts: int = 3
    discovery_backoff: float = 10.0
    max_workers: int = 8
    prune: bool = True
    verify_result: bool = True
    field_manager: str = "kdeploy"

    @field_validator("resource_timeout", "max_workers")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate integer settings are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("discovery_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate at least one discovery attempt is made."""
        if v < 1:
            raise ValueError("discovery_retry_attempts must be at least 1")
        return v

    @field_validator("poll_interval", "discovery_backoff")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate durations are non-negative."""
        if v < 0:
            raise ValueError("duration must be non-negative")
        return v


class DeployPluginConfig(BaseModel):
    """Complete deploy configuration."""

    model_config = ConfigDict(extra="forbid")

    clusters: dict[str, ClusterConfig] = {}
    active_cluster: str | None = None
    defaults: DeployDefaultsConfig = DeployDefaultsConfig()
    selector: str | None = None

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> DeployPluginConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            KDEPLOY_CONTEXT: Override active Kubernetes context
            KDEPLOY_NAMESPACE: Override target namespace
            KDEPLOY_KUBECONFIG: Override kubeconfig path
            KDEPLOY_TIMEOUT: Default per-resource timeout in seconds
            KDEPLOY_NO_PRUNE: Disable pruning when set to a truthy value
            KDEPLOY_SELECTOR: Label selector scoping the deploy and prune
        """
        config_dict = base_config.copy() if base_config else {}

        if "defaults" not in config_dict:
            config_dict["defaults"] = {}
        if "clusters" not in config_dict:
            config_dict["clusters"] = {}

        if kubeconfig := os.environ.get("KDEPLOY_KUBECONFIG"):
            config_dict.setdefault("_kubeconfig_override", kubeconfig)

        if context := os.environ.get("KDEPLOY_CONTEXT"):
            config_dict["active_cluster"] = context

        if namespace := os.environ.get("KDEPLOY_NAMESPACE"):
            config_dict.setdefault("_namespace_override", namespace)

        if timeout := os.environ.get("KDEPLOY_TIMEOUT"):
            config_dict["defaults"]["resource_timeout"] = int(timeout)

        if no_prune := os.environ.get("KDEPLOY_NO_PRUNE"):
            config_dict["defaults"]["prune"] = no_prune.lower() in FALSE_ENV_VALUES

        if selector := os.environ.get("KDEPLOY_SELECTOR"):
            config_dict["selector"] = selector

        kubeconfig_override = config_dict.pop("_kubeconfig_override", None)
        namespace_override = config_dict.pop("_namespace_override", None)

        instance = cls.model_validate(config_dict)

        # A bare context from the environment still needs somewhere to hang
        # kubeconfig/namespace overrides.
        if (kubeconfig_override or namespace_override) and not instance.clusters:
            name = instance.active_cluster or "default"
            instance.clusters[name] = ClusterConfig(context=instance.active_cluster or "")
            instance.active_cluster = name

        if kubeconfig_override:
            for cluster_cfg in instance.clusters.values():
                cluster_cfg.kubeconfig = str(Path(kubeconfig_override).expanduser())

        if namespace_override:
            for cluster_cfg in instance.clusters.values():
                cluster_cfg.namespace = namespace_override

        return instance

    def get_active_context(self) -> str | None:
        """Get the active cluster context name.

        Returns the active_cluster if set, or the context from the first
        configured cluster, or None if no clusters are configured.
        """
        if self.active_cluster:
            if cluster := self.clusters.get(self.active_cluster):
                return cluster.context or None
            return self.active_cluster
        if self.clusters:
            first = next(iter(self.clusters.values()))
            return first.context or None
        return None

    def get_active_cluster(self) -> ClusterConfig | None:
        """Get the configuration block for the active cluster, if any."""
        if self.active_cluster and self.active_cluster in self.clusters:
            return self.clusters[self.active_cluster]
        if self.clusters:
            return next(iter(self.clusters.values()))
        return None

    def get_active_namespace(self) -> str:
        """Get the target namespace for the active cluster."""
        cluster = self.get_active_cluster()
        return cluster.namespace if cluster else "default"

    def get_active_timeout(self) -> int:
        """Get the API request timeout for the active cluster."""
        cluster = self.get_active_cluster()
        return cluster.timeout if cluster else ClusterConfig().timeout
