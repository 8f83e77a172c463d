"""Extension manifest models and loading.

The manifest is a YAML document published with the release. Only the
``metadata`` and ``lpke`` sections matter here; everything else is ignored.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Upper bound for manifest text
MAX_MANIFEST_SIZE_BYTES = 1024 * 1024


class ManifestError(Exception):
    """Raised when a manifest cannot be read or fails validation."""

    pass


class DesiredState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


def _default_present(v: Any) -> Any:
    # Unset or empty desiredState means present
    if v is None or v == "":
        return DesiredState.PRESENT
    return v


class ManifestMetadata(BaseModel):
    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    schema_version: str = Field("", alias="schemaVersion")
    release: str = ""


class TargetClusterLabel(BaseModel):
    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    key: str
    val: str = ""


class DeploymentPackage(BaseModel):
    """An OCI artifact whose files are uploaded to the application catalog."""

    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    dpkg: str = Field(min_length=1)
    version: str = Field(min_length=1)
    desired_state: DesiredState = Field(DesiredState.PRESENT, alias="desiredState")

    @field_validator("desired_state", mode="before")
    @classmethod
    def default_present(cls, v: Any) -> Any:
        return _default_present(v)


class DeploymentDescriptor(BaseModel):
    """One desired deployment of a deployment package into the project."""

    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    app_name: str = Field(min_length=1, alias="dpName")
    display_name: str = Field("", alias="displayName")
    profile_name: str = Field("", alias="dpProfileName")
    version: str = Field(min_length=1, alias="dpVersion")
    target_clusters: list[TargetClusterLabel] = Field(
        default_factory=list, alias="allAppTargetClusters"
    )
    desired_state: DesiredState = Field(DesiredState.PRESENT, alias="desiredState")

    @field_validator("desired_state", mode="before")
    @classmethod
    def default_present(cls, v: Any) -> Any:
        return _default_present(v)

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of a deployment: (app name, version, profile name)."""
        return (self.app_name, self.version, self.profile_name)

    @property
    def target_cluster_labels(self) -> dict[str, str]:
        return {label.key: label.val for label in self.target_clusters}


class Lpke(BaseModel):
    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    deployment_packages: list[DeploymentPackage] = Field(
        default_factory=list, alias="deploymentPackages"
    )
    deployment_list: list[DeploymentDescriptor] = Field(
        default_factory=list, alias="deploymentList"
    )


class Manifest(BaseModel):
    """The parts of the release manifest used for extension provisioning."""

    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    metadata: ManifestMetadata = Field(default_factory=ManifestMetadata)
    lpke: Lpke = Field(default_factory=Lpke)

    @field_validator("lpke", mode="before")
    @classmethod
    def empty_section(cls, v: Any) -> Any:
        return {} if v is None else v


def load_manifest(content: str | bytes, source: str = "<manifest>") -> Manifest:
    """Parse and validate manifest text.

    Args:
        content: YAML document.
        source: Where the text came from, for error messages.

    Returns:
        Validated manifest.

    Raises:
        ManifestError: If the YAML is invalid or does not match the schema.
    """
    if len(content) > MAX_MANIFEST_SIZE_BYTES:
        raise ManifestError(
            f"Manifest exceeds maximum size of {MAX_MANIFEST_SIZE_BYTES} bytes: {source}"
        )

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {source}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ManifestError(f"Manifest must contain a YAML mapping: {source}")

    try:
        manifest = Manifest.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ManifestError(f"Validation failed for {source}:\n{error_list}") from e

    logger.info(
        "Loaded manifest release %s from %s",
        manifest.metadata.release,
        source,
        extra={
            "schema_version": manifest.metadata.schema_version,
            "deployment_packages": len(manifest.lpke.deployment_packages),
            "deployments": len(manifest.lpke.deployment_list),
        },
    )
    return manifest


def load_manifest_file(path: Path) -> Manifest:
    """Read and parse a manifest file.

    Raises:
        ManifestError: If the file cannot be read or is invalid.
    """
    if not path.is_file():
        raise ManifestError(f"Manifest file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Failed to read manifest file {path}: {e}") from e

    return load_manifest(content, source=str(path))
