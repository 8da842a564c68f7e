"""Shared pytest fixtures for deploy_operations_manager tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from deploy_operations_manager.cli.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def manifest_dir(tmp_path: Path) -> Path:
    """A directory holding a small manifest set."""
    (tmp_path / "config.yaml").write_text(
        """
apiVersion: v1
kind: ConfigMap
metadata:
  name: app-config
data:
  key: value
"""
    )
    (tmp_path / "web.yml").write_text(
        """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
---
apiVersion: v1
kind: Service
metadata:
  name: web
"""
    )
    return tmp_path


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clear KDEPLOY_ variables and keep log files inside the test directory."""
    for key in list(os.environ.keys()):
        if key.startswith("KDEPLOY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(
        "deploy_operations_manager.logging.config.LOG_DIR", tmp_path / "logs"
    )


@pytest.fixture
def cli_app() -> typer.Typer:
    """Return the CLI app for testing."""
    return app
