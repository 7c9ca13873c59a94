"""VM power CLI (vmpower).

Usage:
    vmpower set --vm-name Contoso1 --resource-group rg-app \\
        --subscription-id 00000000-0000-0000-0000-000000000001 --power on
    vmpower set ... --power off --dry-run      # report, do not change
    vmpower status --vm-name Contoso1 ...      # read-only
    vmpower apply --file targets.yaml          # one VM after another
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from azure.core.exceptions import AzureError

from .azure_session import AzureSession
from .config import Config, ConfigurationError, validate_vm_reference_fields
from .errors import PowerStateError
from .main import setup_logging
from .models import DesiredPower, PowerAction, VmReference
from .reconciler import PowerStateReconciler, ReconcileResult
from .security import SecretlessViolationError, get_managed_identity_credential
from .targets import TargetLoadError, load_targets

VERSION = "0.1.0"
POWER_CHOICES = ("ON", "OFF")

F = TypeVar("F", bound=Callable[..., Any])


class InvalidInputExit(click.ClickException):
    """Invalid VM identifiers or target file, exit code 1 as in the runbook."""

    exit_code = 1


class SecurityViolationExit(click.ClickException):
    """Secretless violation, reported with its own exit code."""

    exit_code = 2


def open_session(client_id: str | None, wait: bool) -> AzureSession:
    """Authenticate with a managed identity and open an Azure session."""
    try:
        credential = get_managed_identity_credential(client_id)
    except SecretlessViolationError as e:
        raise SecurityViolationExit(str(e)) from e
    return AzureSession(credential, wait_for_completion=wait)


def echo_result(result: ReconcileResult) -> None:
    color = "yellow" if result.dry_run else ("green" if result.changed else None)
    click.secho(result.message, fg=color)


def vm_options(func: F) -> F:
    """Shared options identifying one VM."""
    func = click.option(
        "--subscription-id",
        "-s",
        envvar="AZURE_SUBSCRIPTION_ID",
        required=True,
        help="Subscription containing the VM",
    )(func)
    func = click.option(
        "--resource-group",
        "-g",
        envvar="RESOURCE_GROUP_NAME",
        required=True,
        help="Resource group containing the VM",
    )(func)
    func = click.option(
        "--vm-name", "-n", envvar="VM_NAME", required=True, help="Virtual machine name"
    )(func)
    return func


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=VERSION, prog_name="vmpower")
@click.option("--verbose", "-v", is_flag=True, help="Emit trace logs")
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"]),
    default="text",
    show_default=True,
    help="Log output format",
)
def cli(verbose: bool, log_format: str) -> None:
    """Inspect and reconcile the power state of Azure virtual machines."""
    setup_logging(log_format, logging.INFO if verbose else logging.WARNING)


@cli.command("set")
@vm_options
@click.option(
    "--power",
    "-p",
    envvar="DESIRED_POWER",
    type=click.Choice(POWER_CHOICES, case_sensitive=False),
    required=True,
    help="Desired power state",
)
@click.option("--dry-run", "--what-if", "dry_run", is_flag=True, help="Report only")
@click.option("--wait", is_flag=True, help="Wait for start/deallocate to complete")
@click.option("--strict", is_flag=True, help="Fail on unrecognized power status text")
@click.option("--client-id", envvar="AZURE_CLIENT_ID", help="User-assigned identity client ID")
def set_power(
    vm_name: str,
    resource_group: str,
    subscription_id: str,
    power: str,
    dry_run: bool,
    wait: bool,
    strict: bool,
    client_id: str | None,
) -> None:
    """Bring one VM to the desired power state."""
    try:
        config = Config(
            vm_name=vm_name,
            resource_group=resource_group,
            subscription_id=subscription_id,
            desired_power=DesiredPower.parse(power),
            dry_run=dry_run,
            wait_for_completion=wait,
            strict_status=strict,
            managed_identity_client_id=client_id,
        )
    except ConfigurationError as e:
        raise InvalidInputExit(str(e)) from e

    with open_session(config.managed_identity_client_id, config.wait_for_completion) as session:
        reconciler = PowerStateReconciler(
            session, dry_run=config.dry_run, strict_status=config.strict_status
        )
        try:
            result = reconciler.reconcile(config.vm_reference, config.desired_power)
        except (PowerStateError, AzureError) as e:
            raise click.ClickException(f"{type(e).__name__}: {e}") from e

    echo_result(result)


@cli.command()
@vm_options
@click.option("--client-id", envvar="AZURE_CLIENT_ID", help="User-assigned identity client ID")
def status(
    vm_name: str, resource_group: str, subscription_id: str, client_id: str | None
) -> None:
    """Show a VM's classified power state without changing it."""
    problems = validate_vm_reference_fields(vm_name, resource_group, subscription_id)
    if problems:
        raise InvalidInputExit("Invalid VM reference:\n  - " + "\n  - ".join(problems))
    vm = VmReference(
        vm_name=vm_name, resource_group=resource_group, subscription_id=subscription_id
    )

    with open_session(client_id, wait=False) as session:
        reconciler = PowerStateReconciler(session)
        try:
            observed = reconciler.observe(vm)
        except (PowerStateError, AzureError) as e:
            raise click.ClickException(f"{type(e).__name__}: {e}") from e

    click.echo(
        f"[{vm.vm_name}] powerstate: [{observed.display_status or 'unknown'}] "
        f"({observed.state.value})"
    )


@cli.command()
@click.option(
    "--file",
    "-f",
    "target_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="YAML file listing VMs and their desired power",
)
@click.option("--dry-run", "--what-if", "dry_run", is_flag=True, help="Report only")
@click.option("--wait", is_flag=True, help="Wait for each start/deallocate to complete")
@click.option("--strict", is_flag=True, help="Fail on unrecognized power status text")
@click.option("--client-id", envvar="AZURE_CLIENT_ID", help="User-assigned identity client ID")
def apply(
    target_file: Path, dry_run: bool, wait: bool, strict: bool, client_id: str | None
) -> None:
    """Reconcile every VM in a target file, one after another.

    Stops at the first error; VMs after it are not touched.
    """
    try:
        targets = load_targets(target_file)
    except TargetLoadError as e:
        raise InvalidInputExit(str(e)) from e

    changed = 0
    with open_session(client_id, wait) as session:
        reconciler = PowerStateReconciler(session, dry_run=dry_run, strict_status=strict)
        for index, (vm, desired) in enumerate(targets):
            try:
                result = reconciler.reconcile(vm, desired)
            except (PowerStateError, AzureError) as e:
                raise click.ClickException(
                    f"{vm.vm_name}: {type(e).__name__}: {e} "
                    f"({index} of {len(targets)} targets reconciled)"
                ) from e
            echo_result(result)
            if result.action != PowerAction.NO_ACTION:
                changed += 1

    verb = "would change" if dry_run else "changed"
    click.echo(f"{len(targets)} targets reconciled, {changed} {verb}")


if __name__ == "__main__":
    cli()
