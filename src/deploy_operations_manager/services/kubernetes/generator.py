"""Resource type generation from CustomResourceDefinition metadata.

A CRD opts into deploy behaviour through a JSON document stored in the
``kubernetes-deploy.shopify.io/metadata`` annotation::

    {
        "prunable": true,
        "predeploy": true,
        "predeploy-dependencies": ["Secret"],
        "status-field": "$.status.phase",
        "status-success": "Ready"
    }

Every field is optional. The document must decode to a JSON object; any
other shape aborts the deploy with :class:`FatalDeploymentError`.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from deploy_operations_manager.integrations.kubernetes.client import crd_storage_version
from deploy_operations_manager.integrations.kubernetes.exceptions import FatalDeploymentError
from deploy_operations_manager.services.kubernetes.registry import (
    GroupVersion,
    SuccessRule,
    TypeDescriptor,
)

logger = structlog.get_logger()

DEPLOY_METADATA_ANNOTATION = "kubernetes-deploy.shopify.io/metadata"

TRUE_VALUES = frozenset({True, 1, "1", "t", "T", "true", "TRUE"})


def parse_bool(value: Any) -> bool:
    """Interpret a boolean-ish metadata value.

    Only members of :data:`TRUE_VALUES` are true; everything else, including
    None, floats and unhashable values, is false.
    """
    if isinstance(value, float):
        return False
    try:
        return value in TRUE_VALUES
    except TypeError:
        return False


class DeployMetadata(BaseModel):
    """Decoded deploy-metadata annotation."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    prunable: bool = False
    predeploy: bool = False
    predeploy_dependencies: list[str] | None = Field(
        default=None, alias="predeploy-dependencies"
    )
    status_field: str | None = Field(default=None, alias="status-field")
    status_success: str | None = Field(default=None, alias="status-success")

    @field_validator("prunable", "predeploy", mode="before")
    @classmethod
    def validate_truthy(cls, v: Any) -> bool:
        """Apply the permissive truthy parsing."""
        return parse_bool(v)

    @field_validator("status_success", mode="before")
    @classmethod
    def validate_status_success(cls, v: Any) -> str | None:
        """Compare against the literal as a string."""
        if v is None:
            return None
        return v if isinstance(v, str) else json.dumps(v)

    @property
    def success_rule(self) -> SuccessRule | None:
        """The success rule, when both halves are present."""
        if self.status_field and self.status_success is not None:
            return SuccessRule(status_field=self.status_field, expected_value=self.status_success)
        return None

    @classmethod
    def from_annotations(
        cls, annotations: dict[str, Any] | None, kind: str | None = None
    ) -> DeployMetadata:
        """Decode the metadata annotation.

        Fields of the wrong type are ignored and keep their defaults.

        Raises:
            FatalDeploymentError: If the value is not a JSON object.
        """
        raw = (annotations or {}).get(DEPLOY_METADATA_ANNOTATION)
        if raw is None:
            raw = "{}"

        if isinstance(raw, str):
            try:
                metadata = json.loads(raw)
            except json.JSONDecodeError as e:
                raise FatalDeploymentError(
                    message=f"Invalid metadata content: {raw} ({e.msg})",
                    resource_type=kind,
                ) from e
        else:
            metadata = raw

        if not isinstance(metadata, dict):
            raise FatalDeploymentError(
                message=f"Invalid metadata content: {json.dumps(metadata)}",
                resource_type=kind,
            )

        try:
            return cls.model_validate(metadata)
        except ValidationError as e:
            # Malformed fields fall back to their defaults
            invalid = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            logger.warning(
                "invalid_deploy_metadata_fields", kind=kind, fields=sorted(invalid)
            )
            return cls.model_validate({k: v for k, v in metadata.items() if k not in invalid})


def generate_resource_type(
    group: str,
    version: str,
    kind: str,
    annotations: dict[str, Any] | None,
) -> TypeDescriptor:
    """Build the descriptor for a discovered custom resource kind.

    Raises:
        FatalDeploymentError: If the metadata is not a JSON object or its
            ``status-field`` is not a valid JSONPath expression.
    """
    from jsonpath_ng.exceptions import JSONPathError

    metadata = DeployMetadata.from_annotations(annotations, kind=kind)
    success_rule = metadata.success_rule
    if success_rule is not None:
        try:
            success_rule.validate()
        except JSONPathError as e:
            path = success_rule.status_field
            raise FatalDeploymentError(
                message=f"Invalid metadata content: status-field {path!r} ({e})",
                resource_type=kind,
            ) from e
    return TypeDescriptor(
        kind=kind,
        group_version=GroupVersion(group=group, version=version),
        predeploy=metadata.predeploy,
        prunable=metadata.prunable,
        predeploy_dependencies=tuple(metadata.predeploy_dependencies or ()),
        success_rule=success_rule,
    )


def resource_type_from_crd(crd: dict[str, Any]) -> TypeDescriptor:
    """Build the descriptor described by a CustomResourceDefinition document.

    Accepts live CRDs from the API as well as CRD manifests; for the v1 schema
    the storage version (else the first served one) is used.
    """
    spec = crd.get("spec") or {}
    version = spec.get("version") or crd_storage_version(spec.get("versions") or [])
    return generate_resource_type(
        group=spec.get("group", ""),
        version=version,
        kind=(spec.get("names") or {}).get("kind", ""),
        annotations=(crd.get("metadata") or {}).get("annotations"),
    )


def default_resource_type(kind: str, api_version: str) -> TypeDescriptor:
    """Descriptor for a kind with no discovery data: existence-only, never pruned."""
    return TypeDescriptor(kind=kind, group_version=GroupVersion.from_api_version(api_version))
