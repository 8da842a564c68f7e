"""Tests for the deploy and discover commands."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from deploy_operations_manager.cli.main import app
from deploy_operations_manager.integrations.kubernetes.exceptions import (
    DeployCancelledError,
    DeploymentFailedError,
    FatalDeploymentError,
    KubernetesConnectionError,
)
from deploy_operations_manager.services.kubernetes.deploy_manager import DeployResult
from deploy_operations_manager.services.kubernetes.discovery import (
    DiscoveryOutcome,
    DiscoveryResult,
)
from deploy_operations_manager.services.kubernetes.prune_manager import PruneResult
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

COMMANDS = "deploy_operations_manager.cli.commands.deploy"


def _instance(kind: str, name: str, status: ResourceStatus) -> ResourceInstance:
    manifest = {"apiVersion": "v1", "kind": kind, "metadata": {"name": name}}
    instance = ResourceInstance(manifest, TypeDescriptor(kind=kind), "default")
    instance.status = status
    return instance


def _discovery_factory(outcome: DiscoveryOutcome = DiscoveryOutcome.SUCCEEDED) -> Any:
    """Stand-in for ApiDiscoveryManager that fills the registry it is given."""

    def factory(session: Any, registry: ResourceTypeRegistry, **kwargs: Any) -> MagicMock:
        registry.attach_group_version("ConfigMap", GroupVersion("core", "v1"))
        registry.register(
            TypeDescriptor(
                kind="Widget",
                group_version=GroupVersion("stable.example.io", "v1"),
                prunable=True,
                success_rule=SuccessRule("$.status.phase", "Ready"),
            )
        )
        manager = MagicMock()
        manager.discover.return_value = DiscoveryResult(
            outcome=outcome,
            kinds={"ConfigMap": GroupVersion("core", "v1")},
            custom_kinds=["Widget"],
        )
        return manager

    return factory


@pytest.fixture(autouse=True)
def mock_configure_logging() -> Iterator[MagicMock]:
    with patch("deploy_operations_manager.cli.main.configure_logging") as mocked:
        yield mocked


@pytest.fixture
def mock_session() -> Iterator[MagicMock]:
    with patch(f"{COMMANDS}.DiscoverySession") as mocked:
        yield mocked


@pytest.fixture
def mock_discovery() -> Iterator[MagicMock]:
    with patch(f"{COMMANDS}.ApiDiscoveryManager", side_effect=_discovery_factory()) as mocked:
        yield mocked


@pytest.fixture
def mock_deploy_manager() -> Iterator[MagicMock]:
    with patch(f"{COMMANDS}.DeployManager") as mocked:
        mocked.return_value.run.return_value = DeployResult(
            predeploy=[_instance("ConfigMap", "app-config", ResourceStatus.SUCCEEDED)],
            main=[
                _instance("Deployment", "web", ResourceStatus.SUCCEEDED),
                _instance("Service", "web", ResourceStatus.SUCCEEDED),
            ],
            prune=PruneResult(pruned=["Widget/old"]),
        )
        yield mocked


@pytest.mark.unit
class TestDeployCommand:
    """Tests for kdeploy deploy."""

    def test_deploy_success(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 0, result.stdout
        assert "Deployed 3 resource(s)" in result.stdout
        assert "Widget/old" in result.stdout

        manifests = mock_deploy_manager.return_value.run.call_args.args[0]
        assert [m["kind"] for m in manifests] == ["ConfigMap", "Deployment", "Service"]
        assert mock_deploy_manager.return_value.run.call_args.kwargs == {
            "prune": True,
            "verify": True,
        }

    def test_options_reach_manager(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        result = cli_runner.invoke(
            app,
            [
                "deploy",
                str(manifest_dir),
                "-n",
                "apps",
                "-c",
                "staging",
                "-l",
                "app=web",
                "--no-prune",
                "--no-verify",
            ],
        )

        assert result.exit_code == 0, result.stdout
        assert mock_session.call_args.kwargs["context"] == "staging"
        kwargs = mock_deploy_manager.call_args.kwargs
        assert kwargs["namespace"] == "apps"
        assert kwargs["selector"] == "app=web"
        assert kwargs["field_manager"] == "kdeploy"
        assert mock_deploy_manager.return_value.run.call_args.kwargs == {
            "prune": False,
            "verify": False,
        }

    def test_env_disables_prune(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("KDEPLOY_NO_PRUNE", "1")

        cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert mock_deploy_manager.return_value.run.call_args.kwargs["prune"] is False

    def test_degraded_discovery_warns(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        with patch(
            f"{COMMANDS}.ApiDiscoveryManager",
            side_effect=_discovery_factory(DiscoveryOutcome.DEGRADED),
        ):
            result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 0
        assert "could not be listed" in result.stdout

    def test_failed_phase_exits_non_zero(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        mock_deploy_manager.return_value.run.side_effect = DeploymentFailedError(
            "predeploy", ["Pod/migrate"]
        )

        result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 1
        assert "predeploy phase did not succeed" in result.stdout
        assert "Pod/migrate" in result.stdout

    def test_fatal_error_exits_non_zero(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        mock_deploy_manager.return_value.run.side_effect = FatalDeploymentError(
            "Invalid metadata content", resource_type="Widget"
        )

        result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 1
        assert "Invalid deploy configuration" in result.stdout

    def test_cancelled(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
        mock_discovery: MagicMock,
        mock_deploy_manager: MagicMock,
    ) -> None:
        mock_deploy_manager.return_value.run.side_effect = DeployCancelledError()

        result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 1
        assert "Deploy cancelled" in result.stdout

    def test_connection_error(
        self,
        cli_runner: CliRunner,
        manifest_dir: Path,
        mock_session: MagicMock,
    ) -> None:
        mock_session.return_value.__enter__.side_effect = KubernetesConnectionError()

        result = cli_runner.invoke(app, ["deploy", str(manifest_dir)])

        assert result.exit_code == 1
        assert "Cannot connect to Kubernetes cluster" in result.stdout

    def test_invalid_manifest(
        self, cli_runner: CliRunner, tmp_path: Path, mock_session: MagicMock
    ) -> None:
        (tmp_path / "bad.yaml").write_text("apiVersion: v1\nkind: ConfigMap\nmetadata: {}\n")

        result = cli_runner.invoke(app, ["deploy", str(tmp_path)])

        assert result.exit_code == 1
        assert "Validation errors" in result.stdout
        assert "metadata.name" in result.stdout
        mock_session.assert_not_called()

    def test_unparseable_manifest(
        self, cli_runner: CliRunner, tmp_path: Path, mock_session: MagicMock
    ) -> None:
        (tmp_path / "bad.yaml").write_text("kind: [unclosed\n")

        result = cli_runner.invoke(app, ["deploy", str(tmp_path)])

        assert result.exit_code == 1
        assert "Failed to parse YAML file" in result.stdout

    def test_empty_directory(
        self, cli_runner: CliRunner, tmp_path: Path, mock_session: MagicMock
    ) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()

        result = cli_runner.invoke(app, ["deploy", str(empty)])

        assert result.exit_code == 0
        assert "No manifests found" in result.stdout
        mock_session.assert_not_called()

    def test_missing_path(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(app, ["deploy", str(tmp_path / "missing")])
        assert result.exit_code == 2


@pytest.mark.unit
class TestDiscoverCommand:
    """Tests for kdeploy discover."""

    def test_lists_kinds(
        self, cli_runner: CliRunner, mock_session: MagicMock, mock_discovery: MagicMock
    ) -> None:
        result = cli_runner.invoke(app, ["discover"])

        assert result.exit_code == 0, result.stdout
        assert "Resource Types (succeeded)" in result.stdout
        assert "ConfigMap" in result.stdout
        assert "Widget" in result.stdout
        assert "1 served kind(s), 1 custom resource type(s)" in result.stdout

    def test_connection_error(self, cli_runner: CliRunner, mock_session: MagicMock) -> None:
        mock_session.return_value.__enter__.side_effect = KubernetesConnectionError()

        result = cli_runner.invoke(app, ["discover"])

        assert result.exit_code == 1
