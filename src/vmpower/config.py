"""Configuration management with validation.

All inputs are validated when the configuration is built so that a bad
invocation fails before any Azure API is touched.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from .models import DesiredPower, VmReference


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Azure naming limits
MAX_VM_NAME_LENGTH = 64
MAX_RESOURCE_GROUP_NAME_LENGTH = 90

# Input validation patterns
VALID_VM_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]+$"
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"

LOG_FORMATS = ("json", "text")


def validate_vm_reference_fields(
    vm_name: str, resource_group: str, subscription_id: str
) -> list[str]:
    """Validate VM identifiers against Azure naming rules.

    Returns:
        List of human-readable problems (empty when valid).
    """
    errors: list[str] = []

    if not vm_name:
        errors.append("VM_NAME is required")
    elif len(vm_name) > MAX_VM_NAME_LENGTH:
        errors.append(f"VM_NAME exceeds maximum length of {MAX_VM_NAME_LENGTH}")
    elif not re.match(VALID_VM_NAME_PATTERN, vm_name):
        errors.append(f"VM_NAME contains invalid characters: {vm_name}")

    if not resource_group:
        errors.append("RESOURCE_GROUP_NAME is required")
    elif len(resource_group) > MAX_RESOURCE_GROUP_NAME_LENGTH:
        errors.append(
            f"RESOURCE_GROUP_NAME exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
        )
    elif not re.match(VALID_RESOURCE_GROUP_PATTERN, resource_group) or resource_group.endswith("."):
        errors.append(f"RESOURCE_GROUP_NAME contains invalid characters: {resource_group}")

    if not subscription_id:
        errors.append("AZURE_SUBSCRIPTION_ID is required")
    elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, subscription_id.lower()):
        errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {subscription_id}")

    return errors


@dataclass(frozen=True)
class Config:
    """Reconciler configuration for a single VM.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-call.
    """

    # Required fields
    vm_name: str
    resource_group: str
    subscription_id: str
    desired_power: DesiredPower

    # Behavior
    dry_run: bool = False
    wait_for_completion: bool = False
    strict_status: bool = False

    # Identity (None selects the system-assigned managed identity)
    managed_identity_client_id: str | None = None

    log_format: str = "json"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors = validate_vm_reference_fields(
            self.vm_name, self.resource_group, self.subscription_id
        )

        if not isinstance(self.desired_power, DesiredPower):
            errors.append(f"DESIRED_POWER must be ON or OFF: {self.desired_power}")

        if self.log_format not in LOG_FORMATS:
            errors.append(f"LOG_FORMAT must be one of {list(LOG_FORMATS)}: {self.log_format}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def vm_reference(self) -> VmReference:
        """Build the immutable reference to the target VM."""
        return VmReference(
            vm_name=self.vm_name,
            resource_group=self.resource_group,
            subscription_id=self.subscription_id,
        )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            VM_NAME: Name of the virtual machine
            RESOURCE_GROUP_NAME: Resource group containing the VM
            AZURE_SUBSCRIPTION_ID: Subscription containing the resource group
            DESIRED_POWER: ON or OFF (case-insensitive)
            DRY_RUN: If "true", report the action without performing it (default: false)
            WAIT_FOR_COMPLETION: If "true", wait for start/deallocate to finish (default: false)
            STRICT_STATUS: If "true", unrecognized power status text is an error (default: false)
            AZURE_CLIENT_ID: Client ID of a user-assigned managed identity (optional)
            LOG_FORMAT: json or text (default: json)
        """

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_power(value: str | None) -> DesiredPower:
            if not value:
                raise ConfigurationError("DESIRED_POWER is required")
            try:
                return DesiredPower.parse(value)
            except ValueError as e:
                raise ConfigurationError(f"DESIRED_POWER must be ON or OFF: {value}") from e

        return cls(
            vm_name=os.environ.get("VM_NAME", ""),
            resource_group=os.environ.get("RESOURCE_GROUP_NAME", ""),
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            desired_power=get_power(os.environ.get("DESIRED_POWER")),
            dry_run=get_bool("DRY_RUN", False),
            wait_for_completion=get_bool("WAIT_FOR_COMPLETION", False),
            strict_status=get_bool("STRICT_STATUS", False),
            managed_identity_client_id=os.environ.get("AZURE_CLIENT_ID") or None,
            log_format=os.environ.get("LOG_FORMAT", "json").lower(),
        )
