"""Data model for VM power-state reconciliation.

These models provide:
1. A validated, immutable reference to the target VM
2. Closed enums for desired power, observed state, and the action taken
3. The status entries reported by the instance view API
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

# Instance view status codes
PROVISIONING_STATE_PREFIX = "ProvisioningState/"
POWER_STATE_PREFIX = "PowerState/"
PROVISIONING_SUCCEEDED_CODE = "ProvisioningState/succeeded"


class DesiredPower(str, Enum):
    """Requested end state for a VM."""

    ON = "ON"
    OFF = "OFF"

    @classmethod
    def parse(cls, value: str | DesiredPower) -> DesiredPower:
        """Parse a desired power value case-insensitively.

        Raises:
            ValueError: If the value is neither ON nor OFF.
        """
        if isinstance(value, DesiredPower):
            return value
        normalized = str(value).strip().upper()
        try:
            return cls(normalized)
        except ValueError as e:
            raise ValueError(f"Desired power must be ON or OFF: {value!r}") from e


class PowerState(str, Enum):
    """Classified power state of a VM."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    DEALLOCATED = "Deallocated"
    UNCLASSIFIED = "Unclassified"
    SKIPPED = "Skipped"


class PowerAction(str, Enum):
    """Mutating action decided by the reconciler."""

    STARTED = "Started"
    STOPPED_AND_DEALLOCATED = "StoppedAndDeallocated"
    NO_ACTION = "NoAction"


# Display status vocabulary reported by the compute API
KNOWN_DISPLAY_STATUSES: dict[str, PowerState] = {
    "VM running": PowerState.RUNNING,
    "VM stopped": PowerState.STOPPED,
    "VM deallocated": PowerState.DEALLOCATED,
}


@dataclass(frozen=True)
class StatusEntry:
    """One entry of a VM instance view status collection."""

    code: str
    display_status: str = ""

    @property
    def is_provisioning(self) -> bool:
        return self.code.startswith(PROVISIONING_STATE_PREFIX)

    @property
    def is_power(self) -> bool:
        return self.code.startswith(POWER_STATE_PREFIX)


class VmReference(BaseModel):
    """Identifies the target VM for one reconciliation call."""

    model_config = {"frozen": True, "populate_by_name": True, "extra": "ignore"}

    vm_name: Annotated[str, Field(min_length=1, max_length=64, alias="vmName")]
    resource_group: Annotated[str, Field(min_length=1, max_length=90, alias="resourceGroup")]
    subscription_id: Annotated[str, Field(min_length=1, alias="subscriptionId")]

    @field_validator("vm_name", "resource_group", "subscription_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    def __str__(self) -> str:
        return f"{self.subscription_id}/{self.resource_group}/{self.vm_name}"
