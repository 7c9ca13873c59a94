"""Error taxonomy for power-state reconciliation.

Every error raised while reconciling a VM derives from PowerStateError so
callers can catch the whole family. None of these are retried internally.
"""

from __future__ import annotations


class PowerStateError(Exception):
    """Base class for reconciliation failures."""

    pass


class ContextSwitchError(PowerStateError):
    """Raised when the target subscription cannot be selected."""

    pass


class VmNotFoundError(PowerStateError):
    """Raised when the VM or its resource group does not exist."""

    pass


class TransientQueryError(PowerStateError):
    """Raised when a status query fails for network or service reasons."""

    pass


class ActionFailedError(PowerStateError):
    """Raised when a start or deallocate call is rejected or fails."""

    pass


class UnrecognizedStatusError(PowerStateError):
    """Raised in strict mode when the power status text is not recognized."""

    pass
