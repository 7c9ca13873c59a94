"""Secretless authentication for power-state changes.

The reconciler authenticates only with a managed identity (system-assigned
or user-assigned). Service principal secrets, certificates and passwords in
the environment are refused before any credential is created.

SECURITY INVARIANTS:
1. No secret-bearing AZURE_* variable may be present in the environment
2. ManagedIdentityCredential is the only credential type handed out
3. Every power action is written as a structured audit event
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "SECURITY VIOLATION: {env_vars} set. "
    "VM power changes authenticate with a managed identity only; "
    "remove credential variables from the environment and grant the identity "
    "'Virtual Machine Contributor' on the target resource group."
)


class SecretlessViolationError(Exception):
    """Raised when a credential secret is found in the environment.

    No Azure call may be made once it is raised. Only variable names are
    carried, never their values.
    """

    def __init__(self, env_vars: list[str]) -> None:
        self.env_vars = env_vars
        names = ", ".join(env_vars)
        super().__init__(
            SECRETLESS_VIOLATION_MESSAGE.format(
                env_vars=f"{names} {'is' if len(env_vars) == 1 else 'are'}"
            )
        )


def find_credential_env_vars() -> list[str]:
    """Names of secret-bearing variables with a non-empty value."""
    return [name for name in FORBIDDEN_CREDENTIAL_ENV_VARS if os.environ.get(name)]


def enforce_secretless_architecture() -> None:
    """Refuse to run when credential secrets are present in the environment.

    Every offending variable is reported at once.

    Raises:
        SecretlessViolationError: If any credential environment variable is set.
    """
    leaked = find_credential_env_vars()
    if leaked:
        logger.critical(
            "Credential variables found in environment, refusing to authenticate",
            extra={"security_event": "credential_detected", "env_vars": leaked},
        )
        raise SecretlessViolationError(leaked)


def _redact_client_id(client_id: str) -> str:
    return client_id if len(client_id) <= 8 else f"{client_id[:8]}..."


def get_managed_identity_credential(
    client_id: str | None = None,
) -> ManagedIdentityCredential:
    """Return a managed identity credential once the environment is verified clean.

    A client ID selects a user-assigned identity; otherwise the VM's or
    Automation account's system-assigned identity is used.
    """
    enforce_secretless_architecture()

    identity = "user-assigned" if client_id else "system-assigned"
    logger.info(
        f"Authenticating with {identity} managed identity",
        extra={
            "credential_type": "ManagedIdentity",
            "client_id": _redact_client_id(client_id) if client_id else None,
        },
    )
    kwargs = {"client_id": client_id} if client_id else {}
    return ManagedIdentityCredential(**kwargs)


def log_security_audit_event(
    event_type: str,
    target_resource: str,
    action: str,
    result: str,
    dry_run: bool = False,
) -> None:
    """Log a power action or context switch as a structured audit event.

    Args:
        event_type: Kind of event (power_action, context_switch).
        target_resource: VM or subscription being acted on.
        action: Action performed.
        result: success, failure, or what_if.
        dry_run: Whether the action was only simulated.
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
            "dry_run": dry_run,
        },
    )
