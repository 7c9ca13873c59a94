"""Integration tests for the reconciliation flow.

These tests use MockAzureContext to run the managed identity, session and
reconciler together without Azure connectivity.
"""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest
from azure.core.exceptions import ServiceRequestError
from azure_mock import MockAzureContext

from vmpower.config import Config
from vmpower.errors import TransientQueryError, VmNotFoundError
from vmpower.main import main, reconcile_from_config
from vmpower.models import DesiredPower, PowerAction, PowerState

SUB = "00000000-0000-0000-0000-000000000001"


def make_config(vm_name: str, desired: DesiredPower, **kwargs: object) -> Config:
    return Config(
        vm_name=vm_name,
        resource_group="rg-app",
        subscription_id=SUB,
        desired_power=desired,
        **kwargs,  # type: ignore[arg-type]
    )


class TestReconcileIntegration:
    """End-to-end reconciliation against mocked Azure APIs."""

    def test_contoso1_deallocated_powered_on(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso1", power_state="deallocated")

            result = reconcile_from_config(make_config("Contoso1", DesiredPower.ON))

            assert ctx.state.count("begin_start") == 1
            assert ctx.state.count("begin_deallocate") == 0
            assert result.message == "[Contoso1] powerstate: [VM deallocated]. Powering ON....."

    def test_contoso2_running_turned_off(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")

            result = reconcile_from_config(make_config("Contoso2", DesiredPower.OFF))

            assert [c.operation for c in ctx.state.mutating_calls()] == ["begin_deallocate"]
            assert ctx.state.get_vm(SUB, "rg-app", "Contoso2").power_state == "deallocated"
            assert result.action == PowerAction.STOPPED_AND_DEALLOCATED

    def test_contoso3_stopped_is_deallocated(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso3", power_state="stopped")

            result = reconcile_from_config(make_config("Contoso3", DesiredPower.OFF))

            assert ctx.state.count("begin_deallocate") == 1
            assert result.prior_state == PowerState.STOPPED

    def test_repeat_is_idempotent(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")
            config = make_config("Contoso2", DesiredPower.OFF)

            reconcile_from_config(config)
            second = reconcile_from_config(config)

            assert second.action == PowerAction.NO_ACTION
            assert len(ctx.state.mutating_calls()) == 1

    def test_fresh_session_selects_subscription(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso1", power_state="running")

            result = reconcile_from_config(make_config("Contoso1", DesiredPower.ON))

            assert ctx.state.subscription_lookups == [SUB]
            assert result.subscription_switched is True

    def test_dry_run_does_not_mutate(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")

            result = reconcile_from_config(
                make_config("Contoso2", DesiredPower.OFF, dry_run=True)
            )

            assert ctx.state.mutating_calls() == []
            assert result.message.startswith("What if: ")

    def test_user_assigned_identity(self) -> None:
        with MockAzureContext(client_id="11111111-2222") as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso1", power_state="running")

            reconcile_from_config(
                make_config("Contoso1", DesiredPower.ON, managed_identity_client_id="11111111-2222")
            )

            assert ctx.credential.client_id == "11111111-2222"

    def test_missing_vm_propagates(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_subscription(SUB)

            with pytest.raises(VmNotFoundError):
                reconcile_from_config(make_config("Ghost", DesiredPower.ON))

    def test_transient_failure_not_retried(self) -> None:
        with MockAzureContext() as ctx:
            ctx.state.add_vm(SUB, "rg-app", "Contoso1", power_state="running")
            ctx.state.fail_next("instance_view", ServiceRequestError(message="timeout"))

            with pytest.raises(TransientQueryError):
                reconcile_from_config(make_config("Contoso1", DesiredPower.OFF))

            assert ctx.state.count("instance_view") == 1


class TestMainExitCodes:
    """Tests for the environment-driven entry point."""

    @staticmethod
    def env(**overrides: str) -> dict[str, str]:
        values = {
            "VM_NAME": "Contoso2",
            "RESOURCE_GROUP_NAME": "rg-app",
            "AZURE_SUBSCRIPTION_ID": SUB,
            "DESIRED_POWER": "off",
        }
        values.update(overrides)
        return values

    def test_success_returns_zero(self, capsys: pytest.CaptureFixture[str]) -> None:
        with MockAzureContext() as ctx, patch.dict(os.environ, self.env(), clear=True):
            ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")
            assert main() == 0

        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        trace = [entry for entry in lines if entry["message"].startswith("[Contoso2]")]
        assert trace[0]["action"] == "StoppedAndDeallocated"

    def test_invalid_config_returns_one(self) -> None:
        with patch.dict(os.environ, self.env(DESIRED_POWER="sideways"), clear=True):
            assert main() == 1

    def test_missing_vm_returns_one(self) -> None:
        with MockAzureContext() as ctx, patch.dict(os.environ, self.env(), clear=True):
            ctx.state.add_subscription(SUB)
            assert main() == 1

    def test_secret_in_environment_returns_two(self) -> None:
        env = self.env(AZURE_CLIENT_SECRET="leaked")
        with MockAzureContext() as ctx, patch.dict(os.environ, env, clear=True):
            ctx.state.add_vm(SUB, "rg-app", "Contoso2", power_state="running")
            assert main() == 2
            assert ctx.state.calls == []
