"""Kubernetes deploy orchestration with runtime resource discovery."""

__version__ = "0.1.0"
