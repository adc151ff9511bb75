"""Tests for pvenix.cli module."""

from __future__ import annotations

import dataclasses
from unittest.mock import patch

import pytest

from pvenix import cli
from pvenix.exceptions import ValidationError
from pvenix.models import DeployerConfig, GuestOptions, NodeKind
from pvenix.orchestrator import ContainerOrchestrator, VMOrchestrator
from pvenix.runtime import HostInfo

ALL_TOOLS = HostInfo(proxmox=True, tools={"pct": True, "qm": True, "qmrestore": True})


@pytest.fixture
def wired(fake_hypervisor, fake_vm_hypervisor, fast_config, no_sleep):
    """Run main() against in-memory hypervisors on a fully equipped host."""

    def _orchestrator_for(kind, cfg):
        if kind is NodeKind.VM:
            return VMOrchestrator(fake_vm_hypervisor, cfg, sleep=no_sleep)
        return ContainerOrchestrator(fake_hypervisor, cfg, sleep=no_sleep)

    with patch("pvenix.cli.load_config", return_value=fast_config), patch(
        "pvenix.cli.orchestrator_for", side_effect=_orchestrator_for
    ), patch("pvenix.cli.detect_host", return_value=ALL_TOOLS):
        yield fake_hypervisor, fake_vm_hypervisor


class TestUsage:
    def test_no_command_prints_help(self, wired, capsys):
        assert cli.main([]) == 1
        assert "deploy-cluster" in capsys.readouterr().out

    def test_missing_arguments_exit_one(self, wired, capsys):
        assert cli.main(["deploy-cluster", "100"]) == 1
        assert "usage:" in capsys.readouterr().out.lower()

    def test_non_numeric_count(self, wired):
        hv, _ = wired
        assert cli.main(["deploy-cluster", "100", "many", "192.168.0.10/24"]) == 1
        assert hv.calls == []

    def test_bad_address(self, wired):
        hv, _ = wired
        assert cli.main(["create", "100", "web", "192.168.0.300/24"]) == 1
        assert hv.calls == []


class TestDeployCluster:
    def test_success(self, wired):
        hv, _ = wired
        assert cli.main(["deploy-cluster", "100", "3", "192.168.0.10/24"]) == 0
        assert sorted(hv.nodes) == [100, 101, 102]

    def test_failure_exit_code(self, wired):
        hv, _ = wired
        hv.fail("create", 101, "storage full")
        assert cli.main(["deploy-cluster", "100", "3", "192.168.0.10/24"]) == 1
        assert 102 not in hv.touched()

    def test_allocation_error_before_side_effects(self, wired):
        hv, _ = wired
        assert cli.main(["deploy-cluster", "100", "10", "192.168.0.250/24"]) == 1
        assert hv.calls == []

    def test_dry_run_prints_plan_only(self, wired, capsys):
        hv, _ = wired
        assert cli.main(["deploy-cluster", "100", "2", "10.0.0.5", "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "nixos-node-0" in out and "10.0.0.6/24" in out
        assert hv.calls == []

    def test_vm_flag_uses_vm_path(self, wired):
        hv, vm = wired
        assert cli.main(["deploy-cluster", "200", "2", "192.168.0.200/24", "--vm"]) == 0
        assert sorted(vm.nodes) == [200, 201]
        assert hv.calls == []

    def test_unprivileged_argument(self, wired):
        hv, _ = wired
        assert cli.main(["deploy-cluster", "100", "1", "192.168.0.10/24", "192.168.0.1", "0"]) == 0
        create = next(c for c in hv.calls if c[0] == "create")
        assert create[7] is False

    def test_missing_tools_refused(self, wired):
        hv, _ = wired
        with patch("pvenix.cli.detect_host", return_value=HostInfo(proxmox=True, tools={})):
            assert cli.main(["deploy-cluster", "100", "1", "192.168.0.10/24"]) == 1
        assert hv.calls == []


class TestSingleNode:
    def test_create_with_positional_resources(self, wired):
        hv, _ = wired
        argv = ["create", "150", "web", "192.168.0.150/24", "192.168.0.1", "4", "2048", "16", "1"]
        assert cli.main(argv) == 0
        create = next(c for c in hv.calls if c[0] == "create")
        assert create[3] == "web"
        assert (create[4].cores, create[4].memory_mb, create[4].disk_gb) == (4, 2048, 16)

    def test_restore_with_disk_override(self, wired):
        _, vm = wired
        assert cli.main(["restore", "250", "vm1", "192.168.0.250/24", "--disk", "40"]) == 0
        resize = next(c for c in vm.calls if c[0] == "resize_disk")
        assert resize[3] == 40

    def test_create_failure_exit_code(self, wired):
        hv, _ = wired
        hv.fail("start", 150)
        assert cli.main(["create", "150", "web", "192.168.0.150/24"]) == 1


class TestSweeps:
    def test_check_exits_zero_despite_errors(self, wired):
        hv, _ = wired
        hv.fail("status", 100, "pct crashed")
        assert cli.main(["check", "100", "2"]) == 0
        assert hv.calls_for(101) == ["status"]

    def test_check_pings_requested_gateway(self, wired):
        hv, _ = wired
        hv.nodes[100] = True
        assert cli.main(["check", "100", "1", "--gateway", "10.9.0.1"]) == 0
        ping = next(c for c in hv.calls if c[0] == "shell")
        assert ping[2].endswith("ping -c 1 -W 2 10.9.0.1")

    def test_check_defaults_to_configured_gateway(self, wired, fast_config):
        hv, _ = wired
        hv.nodes[100] = True
        assert cli.main(["check", "100", "1"]) == 0
        ping = next(c for c in hv.calls if c[0] == "shell")
        assert ping[2].endswith(f"ping -c 1 -W 2 {fast_config.gateway}")

    def test_check_rejects_bad_gateway(self, wired):
        hv, _ = wired
        assert cli.main(["check", "100", "1", "--gateway", "10.9.0.1/24"]) == 1
        assert hv.calls == []

    def test_cleanup_exits_zero_and_removes(self, wired):
        hv, _ = wired
        hv.nodes.update({100: True, 101: False})
        assert cli.main(["cleanup", "100", "3"]) == 0
        assert hv.nodes == {}


class TestShowConfig:
    def test_masks_password_hash(self, capsys):
        cfg = dataclasses.replace(DeployerConfig(), guest=GuestOptions(password_hash="$2b$12$secret"))
        cli.show_config(cfg)
        out = capsys.readouterr().out
        assert "password_hash: ********" in out
        assert "secret" not in out
        assert "packages: nano, wget, htop, binutils, man" in out

    def test_flag_returns_zero(self, wired, capsys):
        assert cli.main(["--show-config"]) == 0
        assert "storage: local-btrfs" in capsys.readouterr().out


class TestErrors:
    def test_config_error_exits_one(self):
        with patch("pvenix.cli.load_config", side_effect=ValidationError("bad memory")), patch(
            "pvenix.cli.log"
        ) as mock_log:
            assert cli.main(["check", "100", "1"]) == 1
        mock_log.assert_called_once_with("ERROR", "bad memory")

    def test_unexpected_error_is_reported(self, wired):
        with patch("pvenix.cli.BatchCoordinator", side_effect=KeyError("boom")), patch("pvenix.cli.log") as mock_log:
            assert cli.main(["check", "100", "1"]) == 1
        assert mock_log.call_args[0][0] == "ERROR"
        assert "Unexpected error" in mock_log.call_args[0][1]

    def test_preflight_warns_off_proxmox(self):
        host = HostInfo(proxmox=False, tools={"pct": True})
        with patch("pvenix.cli.detect_host", return_value=host), patch("pvenix.cli.log") as mock_log:
            cli.preflight(NodeKind.CONTAINER)
        mock_log.assert_called_once()
        assert mock_log.call_args[0][0] == "WARN"
