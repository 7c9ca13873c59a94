"""Azure API Mock for Integration Testing.

This module provides mock implementations of the Azure compute and
subscription APIs that enable testing without Azure connectivity.

Key Features:
- In-memory subscriptions, resource groups and VMs
- Instance view with provisioning and power status entries
- Start / deallocate / power-off that update the VM state immediately
- Error injection for operations and pollers
- Managed Identity simulation

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")
        ...
        assert ctx.state.count("begin_deallocate") == 1
"""

from .compute import (
    ComputeCall,
    MockComputeClient,
    MockComputeState,
    MockPoller,
    MockSubscriptionClient,
)
from .context import MockAzureContext
from .credential import MockManagedIdentityCredential, create_mock_credential

__all__ = [
    "ComputeCall",
    "MockAzureContext",
    "MockComputeClient",
    "MockComputeState",
    "MockManagedIdentityCredential",
    "MockPoller",
    "MockSubscriptionClient",
    "create_mock_credential",
]
