"""Azure session: subscription context and compute operations.

The session is the only component that talks to Azure. It owns the
currently selected subscription explicitly instead of relying on an ambient
process-wide context, and translates Azure SDK exceptions into the
power-state error taxonomy:

    subscription selection    AzureError                  -> ContextSwitchError
    status query              ResourceNotFoundError       -> VmNotFoundError
                              transport / 408 / 429 / 5xx -> TransientQueryError
    start / deallocate        AzureError                  -> ActionFailedError

Nothing is retried here. Long-running operations are only awaited when the
session was created with wait_for_completion=True.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.resource import SubscriptionClient

from .errors import (
    ActionFailedError,
    ContextSwitchError,
    TransientQueryError,
    VmNotFoundError,
)
from .models import StatusEntry

logger = logging.getLogger(__name__)

# HTTP status codes worth surfacing as transient
TRANSIENT_HTTP_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Warned and PastDue subscriptions still accept VM operations
BLOCKED_SUBSCRIPTION_STATES = frozenset({"Disabled", "Deleted", "Expired"})


def _is_transient(error: AzureError) -> bool:
    if isinstance(error, ServiceRequestError | ServiceResponseError):
        return True
    if isinstance(error, HttpResponseError):
        return error.status_code in TRANSIENT_HTTP_STATUS_CODES
    return False


def _state_value(state: Any) -> str:
    """Return the string value of an SDK enum or plain string."""
    return str(getattr(state, "value", state) or "")


class AzureSession:
    """Explicit subscription context with VM power operations.

    Usage:
        session = AzureSession(credential)
        session.select_subscription("00000000-0000-0000-0000-000000000001")
        statuses = session.get_vm_status("rg-app", "Contoso1")
    """

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str | None = None,
        *,
        wait_for_completion: bool = False,
    ) -> None:
        """Create a session.

        Args:
            credential: Azure credential (managed identity in production).
            subscription_id: Subscription to treat as already active, if any.
                It is not verified; reconcilers select their own context.
            wait_for_completion: Wait for start/deallocate pollers to finish.
        """
        self._credential = credential
        self._wait_for_completion = wait_for_completion
        self._subscription_client: SubscriptionClient | None = None
        self._active_subscription_id: str | None = None
        self._compute_client: ComputeManagementClient | None = None

        if subscription_id:
            self._bind(subscription_id)

    def _bind(self, subscription_id: str) -> None:
        if self._compute_client is not None:
            self._compute_client.close()
        self._compute_client = ComputeManagementClient(
            credential=self._credential,
            subscription_id=subscription_id,
        )
        self._active_subscription_id = subscription_id

    def _compute(self) -> ComputeManagementClient:
        if self._compute_client is None:
            raise ContextSwitchError("No subscription context has been selected")
        return self._compute_client

    def get_active_subscription(self) -> str | None:
        """Get the currently selected subscription ID."""
        return self._active_subscription_id

    def select_subscription(self, subscription_id: str) -> None:
        """Verify a subscription is accessible and make it the active context.

        Raises:
            ContextSwitchError: If the subscription is unknown, disabled, deleted,
                expired, or inaccessible to the credential.
        """
        if self._subscription_client is None:
            self._subscription_client = SubscriptionClient(self._credential)

        try:
            subscription = self._subscription_client.subscriptions.get(subscription_id)
        except AzureError as e:
            raise ContextSwitchError(
                f"Cannot select subscription '{subscription_id}': {e}"
            ) from e

        state = _state_value(getattr(subscription, "state", None))
        if state in BLOCKED_SUBSCRIPTION_STATES:
            raise ContextSwitchError(
                f"Subscription '{subscription_id}' is not usable (state: {state})"
            )

        self._bind(subscription_id)
        logger.info(
            "Subscription context selected",
            extra={
                "subscription_id": subscription_id,
                "subscription_name": getattr(subscription, "display_name", None),
            },
        )

    def get_vm_status(self, resource_group: str, vm_name: str) -> list[StatusEntry]:
        """Fetch the instance view status collection of a VM.

        Raises:
            VmNotFoundError: If the VM or resource group does not exist.
            TransientQueryError: For network or retryable service failures.
        """
        compute = self._compute()
        try:
            instance_view = compute.virtual_machines.instance_view(resource_group, vm_name)
        except ResourceNotFoundError as e:
            raise VmNotFoundError(
                f"VM '{vm_name}' not found in resource group '{resource_group}'"
            ) from e
        except AzureError as e:
            if _is_transient(e):
                raise TransientQueryError(f"Status query for VM '{vm_name}' failed: {e}") from e
            raise

        return [
            StatusEntry(code=status.code or "", display_status=status.display_status or "")
            for status in instance_view.statuses or []
        ]

    def start_vm(self, resource_group: str, vm_name: str) -> None:
        """Issue a start call for a VM.

        Raises:
            ActionFailedError: If the start call is rejected or fails.
        """
        compute = self._compute()
        try:
            poller = compute.virtual_machines.begin_start(resource_group, vm_name)
            if self._wait_for_completion:
                poller.result()
        except AzureError as e:
            raise ActionFailedError(f"Start of VM '{vm_name}' failed: {e}") from e

    def stop_and_deallocate_vm(self, resource_group: str, vm_name: str, force: bool = True) -> None:
        """Stop a VM and release its compute resources.

        With force=True the VM is deallocated directly. Otherwise the guest is
        powered off gracefully first and then deallocated.

        Raises:
            ActionFailedError: If either call is rejected or fails.
        """
        compute = self._compute()
        try:
            if not force:
                compute.virtual_machines.begin_power_off(
                    resource_group, vm_name, skip_shutdown=False
                ).result()
            poller = compute.virtual_machines.begin_deallocate(resource_group, vm_name)
            if self._wait_for_completion:
                poller.result()
        except AzureError as e:
            raise ActionFailedError(f"Deallocation of VM '{vm_name}' failed: {e}") from e

    def close(self) -> None:
        """Close the underlying SDK clients."""
        if self._compute_client is not None:
            self._compute_client.close()
            self._compute_client = None
        if self._subscription_client is not None:
            self._subscription_client.close()
            self._subscription_client = None

    def __enter__(self) -> AzureSession:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
