"""Deploy manifest loading.

Reads the manifest set for a deploy from a single file, a multi-document file
or a directory tree, and checks each document client-side before anything is
sent to the cluster.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from deploy_operations_manager.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from deploy_operations_manager.integrations.kubernetes.client import KubernetesClient

YAML_EXTENSIONS = (".yaml", ".yml")
REQUIRED_MANIFEST_FIELDS = ("apiVersion", "kind", "metadata")
SOURCE_FILE_KEY = "_source_file"


@dataclass
class ValidationResult:
    """Client-side check of a single manifest."""

    file: str
    resource: str
    valid: bool
    errors: list[str] = field(default_factory=list)


class ManifestManager(K8sBaseManager):
    """Loads and validates the manifests making up a deploy."""

    _entity_name: str = "manifest"

    def __init__(self, client: KubernetesClient | None = None) -> None:
        # Loading and validation never touch the cluster
        super().__init__(client)  # type: ignore[arg-type]

    def load_manifests(self, path: Path) -> list[dict[str, Any]]:
        """Load manifests from a file or directory.

        Directories are scanned recursively for ``*.yaml`` / ``*.yml`` files in
        sorted path order, so the manifest order is stable between runs. Each
        manifest records the file it came from under ``_source_file``.

        Args:
            path: Path to a YAML file or a directory of manifests.

        Returns:
            Parsed manifest dictionaries in file order.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If a YAML file cannot be parsed.
        """
        if not path.exists():
            raise FileNotFoundError(f"Manifest path not found: {path}")

        if path.is_file():
            manifests = self._load_file(path)
        elif path.is_dir():
            yaml_files = self._collect_yaml_files(path)
            if not yaml_files:
                self._log.warning("no_yaml_files_found", directory=str(path))
                return []
            manifests = []
            for yaml_file in yaml_files:
                manifests.extend(self._load_file(yaml_file))
        else:
            raise FileNotFoundError(f"Path is neither a file nor a directory: {path}")

        self._log.debug("loaded_manifests", count=len(manifests), path=str(path))
        return manifests

    def _load_file(self, file_path: Path) -> list[dict[str, Any]]:
        from ruamel.yaml import YAML
        from ruamel.yaml.error import YAMLError

        yaml = YAML(typ="safe")
        try:
            documents = list(yaml.load_all(file_path.read_text(encoding="utf-8")))
        except YAMLError as e:
            raise ValueError(f"Failed to parse YAML file {file_path}: {e}") from e

        manifests: list[dict[str, Any]] = []
        for doc in documents:
            if doc is None:
                continue
            if not isinstance(doc, dict):
                self._log.warning(
                    "skipping_non_dict_document",
                    file=str(file_path),
                    type=type(doc).__name__,
                )
                continue
            doc[SOURCE_FILE_KEY] = str(file_path)
            manifests.append(doc)
        return manifests

    @staticmethod
    def _collect_yaml_files(directory: Path) -> list[Path]:
        files: list[Path] = []
        for ext in YAML_EXTENSIONS:
            files.extend(directory.rglob(f"*{ext}"))
        return sorted(files)

    def validate_manifests(self, manifests: list[dict[str, Any]]) -> list[ValidationResult]:
        """Check required fields on every manifest.

        Requires ``apiVersion``, ``kind``, ``metadata`` and ``metadata.name``,
        the minimum needed to resolve a kind and track an instance.
        """
        results = [self._validate_single(manifest) for manifest in manifests]
        self._log.debug(
            "validated_manifests",
            total=len(results),
            valid=sum(1 for r in results if r.valid),
        )
        return results

    def _validate_single(self, manifest: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []

        for req_field in REQUIRED_MANIFEST_FIELDS:
            if req_field not in manifest:
                errors.append(f"Missing required field: {req_field}")

        for str_field in ("apiVersion", "kind"):
            value = manifest.get(str_field)
            if value is not None and not isinstance(value, str):
                errors.append(f"{str_field} must be a string, got {type(value).__name__}")

        metadata = manifest.get("metadata")
        if isinstance(metadata, dict):
            if "name" not in metadata:
                errors.append("Missing required field: metadata.name")
            elif not isinstance(metadata["name"], str):
                errors.append("metadata.name must be a string")
        elif metadata is not None:
            errors.append(f"metadata must be a dict, got {type(metadata).__name__}")

        return ValidationResult(
            file=manifest.get(SOURCE_FILE_KEY, ""),
            resource=resource_identifier(manifest),
            valid=not errors,
            errors=errors,
        )


def resource_identifier(manifest: dict[str, Any]) -> str:
    """Return a ``Kind/name`` identifier for a manifest."""
    kind = manifest.get("kind", "Unknown")
    metadata = manifest.get("metadata")
    name = metadata.get("name", "unnamed") if isinstance(metadata, dict) else "unnamed"
    return f"{kind}/{name}"
