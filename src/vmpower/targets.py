"""Target file loading with validation.

A target file lists VMs and the power state each should be in. The file is
only a convenience for reconciling several VMs one after another; each entry
is still reconciled independently.

SECURITY: File size is checked before reading. Input is validated at the
boundary with pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import validate_vm_reference_fields
from .models import DesiredPower, VmReference

logger = logging.getLogger(__name__)

MAX_TARGET_FILE_SIZE_BYTES = 1024 * 1024  # 1MB
MAX_TARGETS_PER_FILE = 500


class TargetLoadError(Exception):
    """Raised when a target file cannot be loaded or fails validation."""

    pass


class PowerTarget(BaseModel):
    """A single VM and its desired power state."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    vm_name: Annotated[str, Field(min_length=1, alias="vmName")]
    resource_group: Annotated[str, Field(min_length=1, alias="resourceGroup")]
    subscription_id: str | None = Field(None, alias="subscriptionId")
    power: DesiredPower

    @field_validator("power", mode="before")
    @classmethod
    def parse_power(cls, v: object) -> DesiredPower:
        # YAML 1.1 reads bare on/off as booleans
        if isinstance(v, bool):
            return DesiredPower.ON if v else DesiredPower.OFF
        return DesiredPower.parse(str(v))


class TargetFile(BaseModel):
    """Top-level structure of a target file."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    subscription_id: str | None = Field(None, alias="subscriptionId")
    targets: Annotated[list[PowerTarget], Field(min_length=1, max_length=MAX_TARGETS_PER_FILE)]

    def resolve(self) -> list[tuple[VmReference, DesiredPower]]:
        """Resolve entries into VM references, applying the default subscription.

        Raises:
            TargetLoadError: If an entry has no subscription, has invalid
                identifiers, or duplicates an earlier entry.
        """
        resolved: list[tuple[VmReference, DesiredPower]] = []
        seen: set[tuple[str, str, str]] = set()
        errors: list[str] = []

        for index, target in enumerate(self.targets):
            subscription_id = target.subscription_id or self.subscription_id or ""
            problems = validate_vm_reference_fields(
                target.vm_name, target.resource_group, subscription_id
            )
            if problems:
                errors.extend(f"  - targets.{index}: {p}" for p in problems)
                continue

            key = (subscription_id.lower(), target.resource_group.lower(), target.vm_name.lower())
            if key in seen:
                errors.append(f"  - targets.{index}: duplicate target {target.vm_name}")
                continue
            seen.add(key)

            vm = VmReference(
                vm_name=target.vm_name,
                resource_group=target.resource_group,
                subscription_id=subscription_id,
            )
            resolved.append((vm, target.power))

        if errors:
            raise TargetLoadError("Invalid targets:\n" + "\n".join(errors))
        return resolved


def load_targets(path: Path) -> list[tuple[VmReference, DesiredPower]]:
    """Load and validate a target file from YAML.

    Returns:
        (VM reference, desired power) pairs in file order.

    Raises:
        TargetLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise TargetLoadError(f"Target file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise TargetLoadError(f"Failed to stat target file {path}: {e}") from e

    if file_size > MAX_TARGET_FILE_SIZE_BYTES:
        raise TargetLoadError(
            f"Target file exceeds maximum size of {MAX_TARGET_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise TargetLoadError(f"Failed to read target file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise TargetLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise TargetLoadError(f"Target file must contain a YAML mapping: {path}")

    try:
        target_file = TargetFile.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise TargetLoadError(f"Validation failed for {path}:\n{error_list}") from e

    resolved = target_file.resolve()
    logger.info("Loaded %d targets from %s", len(resolved), path)
    return resolved
