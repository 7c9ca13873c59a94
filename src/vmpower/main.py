"""Environment-driven entry point (runbook / container mode).

Reads the target VM and desired power from environment variables,
authenticates with a managed identity, reconciles once and exits.

Exit codes:
    0  reconciled (including no-op and dry run)
    1  configuration or power-state error
    2  secretless violation (credential secret in environment)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from azure.core.exceptions import AzureError

from .azure_session import AzureSession
from .config import Config, ConfigurationError
from .errors import PowerStateError
from .reconciler import PowerStateReconciler, ReconcileResult
from .security import SecretlessViolationError, get_managed_identity_credential

# LogRecord attributes that are not user-supplied extras
_RESERVED_LOG_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_format: str = "json", level: int = logging.INFO) -> None:
    """Configure root logging.

    Args:
        log_format: "json" for structured output, "text" for plain lines.
        level: Root log level.
    """
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def reconcile_from_config(config: Config) -> ReconcileResult:
    """Authenticate and reconcile the VM described by a configuration.

    Raises:
        SecretlessViolationError: If credential secrets are in the environment.
        PowerStateError: If reconciliation fails.
    """
    credential = get_managed_identity_credential(config.managed_identity_client_id)
    with AzureSession(credential, wait_for_completion=config.wait_for_completion) as session:
        reconciler = PowerStateReconciler(
            session,
            dry_run=config.dry_run,
            strict_status=config.strict_status,
        )
        return reconciler.reconcile(config.vm_reference, config.desired_power)


def main() -> int:
    """Run one reconciliation from the environment.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_format)
    logger = logging.getLogger(__name__)

    logger.info(
        "Reconciling VM power state",
        extra={
            "vm_name": config.vm_name,
            "resource_group": config.resource_group,
            "subscription_id": config.subscription_id,
            "desired": config.desired_power.value,
            "dry_run": config.dry_run,
        },
    )

    try:
        result = reconcile_from_config(config)
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2
    except (PowerStateError, AzureError) as e:
        logger.error(
            "Reconciliation failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    logger.info(
        "Reconciliation complete",
        extra={
            "vm_name": config.vm_name,
            "action": result.action.value,
            "prior_state": result.prior_state.value,
        },
    )
    return 0


def run() -> None:
    """Entry point for the runbook mode."""
    sys.exit(main())


if __name__ == "__main__":
    run()
