"""Shared test fixtures: an in-memory hypervisor and a fast configuration."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import pytest

from pvenix.config import ENV_OVERRIDES
from pvenix.exceptions import HypervisorError
from pvenix.models import (
    ABSENT,
    DeployerConfig,
    HypervisorStatus,
    NetworkAddress,
    NodeKind,
    NodeSpec,
)


class FakeHypervisor:
    """Records every call and keeps node state in a dict.

    ``fail(method, node_id)`` makes that call raise HypervisorError.
    """

    def __init__(self, kind: NodeKind = NodeKind.CONTAINER) -> None:
        self.kind = kind
        self.label = "VM" if kind is NodeKind.VM else "container"
        self.nodes: Dict[int, bool] = {}
        self.files: Dict[Tuple[int, str], str] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[Tuple[str, int], str] = {}
        self.start_runs = True
        self.shell_output = "ok\n"

    def fail(self, method: str, node_id: int, message: str = "boom") -> None:
        self.failures[(method, node_id)] = message

    def _record(self, method: str, node_id: int, *extra) -> None:
        self.calls.append((method, node_id, *extra))
        message = self.failures.get((method, node_id))
        if message is not None:
            raise HypervisorError(message, command=[method, str(node_id)], returncode=1, stderr=message)

    def calls_for(self, node_id: int) -> List[str]:
        return [call[0] for call in self.calls if call[1] == node_id]

    def touched(self) -> List[int]:
        seen: List[int] = []
        for call in self.calls:
            if call[1] not in seen:
                seen.append(call[1])
        return seen

    def status(self, node_id: int) -> HypervisorStatus:
        self._record("status", node_id)
        if node_id not in self.nodes:
            return ABSENT
        return HypervisorStatus(exists=True, running=self.nodes[node_id])

    def create(self, node_id: int, *args) -> None:
        self._record("create", node_id, *args)
        self.nodes[node_id] = False

    def resize_disk(self, node_id: int, device: str, size_gb: int) -> None:
        self._record("resize_disk", node_id, device, size_gb)

    def start(self, node_id: int) -> None:
        self._record("start", node_id)
        if node_id not in self.nodes:
            raise HypervisorError(f"{node_id} does not exist")
        self.nodes[node_id] = self.start_runs

    def stop(self, node_id: int) -> None:
        self._record("stop", node_id)
        if node_id not in self.nodes:
            raise HypervisorError(f"{node_id} does not exist")
        self.nodes[node_id] = False

    def destroy(self, node_id: int) -> None:
        self._record("destroy", node_id)
        if node_id not in self.nodes:
            raise HypervisorError(f"{node_id} does not exist")
        del self.nodes[node_id]

    def exec_in_guest(self, node_id: int, command: List[str], stdin: Optional[str] = None) -> str:
        self._record("exec_in_guest", node_id, tuple(command))
        return self.shell_output

    def shell(self, node_id: int, script: str) -> str:
        self._record("shell", node_id, script)
        return self.shell_output

    def write_file(self, node_id: int, path: str, content: str) -> None:
        self._record("write_file", node_id, path)
        self.files[(node_id, path)] = content


@pytest.fixture
def fake_hypervisor() -> FakeHypervisor:
    return FakeHypervisor()


@pytest.fixture
def fake_vm_hypervisor() -> FakeHypervisor:
    return FakeHypervisor(kind=NodeKind.VM)


@pytest.fixture
def fast_config() -> DeployerConfig:
    """Default configuration with readiness waits shrunk to nothing."""
    return DeployerConfig(ready_attempts=3, ready_interval=0.0, vm_settle_delay=0.0)


@pytest.fixture
def node_spec() -> NodeSpec:
    return NodeSpec(
        node_id=100,
        hostname="nixos-test",
        address=NetworkAddress("192.168.0.100", 24),
    )


@pytest.fixture
def no_sleep():
    """A recording stand-in for time.sleep."""
    calls: List[float] = []

    def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable load_config() reads and hide /etc/pvenix/config.yaml."""
    for key in ENV_OVERRIDES.values():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("PVENIX_CONFIG", raising=False)
    monkeypatch.setattr("pvenix.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
