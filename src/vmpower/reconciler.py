"""Power-state reconciliation for a single VM.

One call to PowerStateReconciler.reconcile():
1. Ensures the VM's subscription is the active context
2. Fetches the instance view status collection
3. Classifies it into a closed PowerState
4. Issues at most one mutating call (start XOR stop-and-deallocate)
5. Logs one trace line describing the decision

Decision table:

    desired  observed                 action
    ON       Stopped, Deallocated     start
    OFF      Running, Stopped         stop-and-deallocate (force)
    *        anything else            none

A VM that is stopped but not deallocated still reserves compute and is
billed, so it is deallocated when OFF is requested. Only Deallocated is
treated as off.

Every error propagates to the caller unchanged. Nothing is retried and the
status is not re-checked after a failed mutation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from .errors import UnrecognizedStatusError
from .models import (
    KNOWN_DISPLAY_STATUSES,
    PROVISIONING_SUCCEEDED_CODE,
    DesiredPower,
    PowerAction,
    PowerState,
    StatusEntry,
    VmReference,
)
from .security import log_security_audit_event

logger = logging.getLogger(__name__)

# States from which each desired power value triggers a mutating call
START_FROM_STATES = frozenset({PowerState.STOPPED, PowerState.DEALLOCATED})
DEALLOCATE_FROM_STATES = frozenset({PowerState.RUNNING, PowerState.STOPPED})

WHAT_IF_PREFIX = "What if: "


class ComputeGateway(Protocol):
    """Remote operations the reconciler depends on."""

    def get_active_subscription(self) -> str | None: ...

    def select_subscription(self, subscription_id: str) -> None: ...

    def get_vm_status(self, resource_group: str, vm_name: str) -> list[StatusEntry]: ...

    def start_vm(self, resource_group: str, vm_name: str) -> None: ...

    def stop_and_deallocate_vm(
        self, resource_group: str, vm_name: str, force: bool = True
    ) -> None: ...


@dataclass(frozen=True)
class ObservedStatus:
    """Classified view of a VM's status collection."""

    state: PowerState
    display_status: str


def classify_statuses(statuses: list[StatusEntry]) -> ObservedStatus:
    """Classify an instance view status collection.

    Any provisioning entry other than ProvisioningState/succeeded means the
    VM is still being provisioned (or failed to be), so it is SKIPPED
    regardless of its power text. Otherwise the power entry's display status
    is matched exactly against the known vocabulary.
    """
    for status in statuses:
        if status.is_provisioning and status.code.lower() != PROVISIONING_SUCCEEDED_CODE.lower():
            return ObservedStatus(PowerState.SKIPPED, status.display_status or status.code)

    for status in statuses:
        if status.is_power:
            state = KNOWN_DISPLAY_STATUSES.get(status.display_status, PowerState.UNCLASSIFIED)
            return ObservedStatus(state, status.display_status)

    return ObservedStatus(PowerState.UNCLASSIFIED, "")


def decide_action(state: PowerState, desired: DesiredPower) -> PowerAction:
    """Pick the mutating action for an observed state and desired power."""
    if desired == DesiredPower.ON and state in START_FROM_STATES:
        return PowerAction.STARTED
    if desired == DesiredPower.OFF and state in DEALLOCATE_FROM_STATES:
        return PowerAction.STOPPED_AND_DEALLOCATED
    return PowerAction.NO_ACTION


def format_trace(vm_name: str, observed: ObservedStatus, desired: DesiredPower) -> str:
    """Build the human-readable decision trace."""
    action = decide_action(observed.state, desired)
    if action == PowerAction.STARTED:
        return f"[{vm_name}] powerstate: [{observed.display_status}]. Powering ON....."
    if action == PowerAction.STOPPED_AND_DEALLOCATED:
        return (
            f"[{vm_name}] powerstate: [{observed.display_status}]. "
            "Turning machine OFF and deallocating...."
        )

    match observed.state:
        case PowerState.RUNNING:
            return f"[{vm_name}] is already powered up and running."
        case PowerState.DEALLOCATED:
            return f"[{vm_name}] is already powered off and deallocated."
        case PowerState.SKIPPED:
            return (
                f"[{vm_name}] provisioning state: [{observed.display_status}]. "
                "Skipping until provisioning succeeds."
            )
        case _:
            return (
                f"[{vm_name}] powerstate: [{observed.display_status or 'unknown'}] "
                "is not recognized. No action taken."
            )


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation call."""

    vm: VmReference
    desired: DesiredPower
    prior_state: PowerState
    display_status: str
    action: PowerAction
    message: str
    dry_run: bool = False
    subscription_switched: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def changed(self) -> bool:
        """Check if a mutating call was actually issued."""
        return self.action != PowerAction.NO_ACTION and not self.dry_run


class PowerStateReconciler:
    """Brings one VM's power state in line with a desired state.

    The reconciler holds no state between calls. The subscription context
    lives in the gateway and is checked on every call.
    """

    def __init__(
        self,
        gateway: ComputeGateway,
        *,
        dry_run: bool = False,
        strict_status: bool = False,
    ) -> None:
        """Initialize reconciler.

        Args:
            gateway: Session providing subscription and compute operations.
            dry_run: Report the action that would be taken without issuing it.
            strict_status: Raise UnrecognizedStatusError for unknown power text
                instead of taking no action.
        """
        self._gateway = gateway
        self._dry_run = dry_run
        self._strict_status = strict_status

    def ensure_context(self, subscription_id: str) -> bool:
        """Select the subscription if it is not already active.

        Returns:
            True if the context was switched.

        Raises:
            ContextSwitchError: If the subscription cannot be selected.
        """
        active = self._gateway.get_active_subscription()
        if active is not None and active.lower() == subscription_id.lower():
            return False

        logger.info(
            "Switching subscription context",
            extra={"from_subscription": active, "to_subscription": subscription_id},
        )
        try:
            self._gateway.select_subscription(subscription_id)
        except Exception:
            log_security_audit_event(
                event_type="context_switch",
                target_resource=subscription_id,
                action="select_subscription",
                result="failure",
            )
            raise

        log_security_audit_event(
            event_type="context_switch",
            target_resource=subscription_id,
            action="select_subscription",
            result="success",
        )
        return True

    def observe(self, vm: VmReference) -> ObservedStatus:
        """Ensure context and classify the VM's current status without changing it."""
        self.ensure_context(vm.subscription_id)
        statuses = self._gateway.get_vm_status(vm.resource_group, vm.vm_name)
        return classify_statuses(statuses)

    def reconcile(self, vm: VmReference, desired: DesiredPower) -> ReconcileResult:
        """Bring the VM's power state in line with the desired state.

        Raises:
            ContextSwitchError: If the subscription cannot be selected.
            VmNotFoundError: If the VM or resource group does not exist.
            TransientQueryError: If the status query fails transiently.
            ActionFailedError: If the start or deallocate call fails.
            UnrecognizedStatusError: In strict mode, for unknown power text.
        """
        switched = self.ensure_context(vm.subscription_id)
        statuses = self._gateway.get_vm_status(vm.resource_group, vm.vm_name)
        observed = classify_statuses(statuses)

        if observed.state == PowerState.UNCLASSIFIED:
            logger.warning(
                "Unrecognized power status",
                extra={
                    "vm_name": vm.vm_name,
                    "display_status": observed.display_status,
                    "status_codes": [s.code for s in statuses],
                },
            )
            if self._strict_status:
                raise UnrecognizedStatusError(
                    f"[{vm.vm_name}] power status '{observed.display_status}' is not recognized"
                )

        action = decide_action(observed.state, desired)
        message = format_trace(vm.vm_name, observed, desired)
        if self._dry_run and action != PowerAction.NO_ACTION:
            message = WHAT_IF_PREFIX + message

        logger.info(
            message,
            extra={
                "vm_name": vm.vm_name,
                "resource_group": vm.resource_group,
                "desired": desired.value,
                "prior_state": observed.state.value,
                "action": action.value,
                "dry_run": self._dry_run,
            },
        )

        if action != PowerAction.NO_ACTION:
            self._apply(vm, action)

        return ReconcileResult(
            vm=vm,
            desired=desired,
            prior_state=observed.state,
            display_status=observed.display_status,
            action=action,
            message=message,
            dry_run=self._dry_run,
            subscription_switched=switched,
        )

    def _apply(self, vm: VmReference, action: PowerAction) -> None:
        if self._dry_run:
            log_security_audit_event(
                event_type="power_action",
                target_resource=str(vm),
                action=action.value,
                result="what_if",
                dry_run=True,
            )
            return

        try:
            if action == PowerAction.STARTED:
                self._gateway.start_vm(vm.resource_group, vm.vm_name)
            else:
                self._gateway.stop_and_deallocate_vm(vm.resource_group, vm.vm_name, force=True)
        except Exception:
            log_security_audit_event(
                event_type="power_action",
                target_resource=str(vm),
                action=action.value,
                result="failure",
            )
            raise

        log_security_audit_event(
            event_type="power_action",
            target_resource=str(vm),
            action=action.value,
            result="success",
        )
