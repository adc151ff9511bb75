"""Proxmox VE command wrappers (pct for containers, qm/qmrestore for VMs)."""

from __future__ import annotations

import json
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

from pvenix.constants import GUEST_BIN, GUEST_EXEC_TIMEOUT
from pvenix.exceptions import HypervisorError
from pvenix.models import ABSENT, HypervisorStatus, NodeKind, Resources
from pvenix.utils import run


def _summarize(cmd: List[str]) -> str:
    return " ".join(cmd[:3])


class Hypervisor(ABC):
    """Synchronous command interface shared by the container and VM back ends."""

    kind: NodeKind
    tool: str
    label: str = "node"

    def _call(self, cmd: List[str], stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        try:
            result = run(cmd, check=False, capture_output=True, input=stdin)
        except OSError as exc:
            raise HypervisorError(f"Cannot execute {cmd[0]}: {exc}", command=cmd) from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise HypervisorError(
                f"{_summarize(cmd)} failed (exit {result.returncode}): {stderr or 'no output'}",
                command=cmd,
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    def status(self, node_id: int) -> HypervisorStatus:
        cmd = [self.tool, "status", str(node_id)]
        try:
            result = run(cmd, check=False, capture_output=True)
        except OSError as exc:
            raise HypervisorError(f"Cannot execute {self.tool}: {exc}", command=cmd) from exc
        # Non-zero means the configuration file for this id does not exist
        if result.returncode != 0:
            return ABSENT
        return HypervisorStatus(exists=True, running="status: running" in (result.stdout or ""))

    def start(self, node_id: int) -> None:
        self._call([self.tool, "start", str(node_id)])

    def stop(self, node_id: int) -> None:
        self._call([self.tool, "stop", str(node_id)])

    def destroy(self, node_id: int) -> None:
        self._call([self.tool, "destroy", str(node_id)])

    @abstractmethod
    def exec_in_guest(self, node_id: int, command: List[str], stdin: Optional[str] = None) -> str:
        """Run ``command`` inside the guest and return its stdout."""

    @abstractmethod
    def shell(self, node_id: int, script: str) -> str:
        """Run a shell snippet as root inside the guest."""

    def write_file(self, node_id: int, path: str, content: str) -> None:
        self.exec_in_guest(node_id, [f"{GUEST_BIN}/tee", path], stdin=content)


class ContainerHypervisor(Hypervisor):
    kind = NodeKind.CONTAINER
    tool = "pct"
    label = "container"

    def create(
        self,
        node_id: int,
        template: str,
        hostname: str,
        resources: Resources,
        network: str,
        storage: str,
        privileged: bool,
    ) -> None:
        self._call(
            [
                self.tool,
                "create",
                str(node_id),
                template,
                "--arch",
                "amd64",
                "--ostype",
                "unmanaged",
                "--hostname",
                hostname,
                "--cores",
                str(resources.cores),
                "--memory",
                str(resources.memory_mb),
                "--swap",
                "0",
                "--rootfs",
                f"{storage}:{resources.disk_gb}",
                "--net0",
                network,
                "--unprivileged",
                "0" if privileged else "1",
                "--features",
                "nesting=1",
                "--force",
                "1",
            ]
        )

    def exec_in_guest(self, node_id: int, command: List[str], stdin: Optional[str] = None) -> str:
        result = self._call([self.tool, "exec", str(node_id), "--", *command], stdin=stdin)
        return result.stdout or ""

    def shell(self, node_id: int, script: str) -> str:
        return self.exec_in_guest(node_id, [f"{GUEST_BIN}/su", "-c", script, "root"])


class VMHypervisor(Hypervisor):
    kind = NodeKind.VM
    tool = "qm"
    label = "VM"

    def __init__(self, guest_exec_timeout: int = GUEST_EXEC_TIMEOUT) -> None:
        self.guest_exec_timeout = guest_exec_timeout

    def restore_from_image(self, node_id: int, image_path: str, storage: str) -> None:
        self._call(["qmrestore", image_path, str(node_id), "--unique", "true", "--storage", storage])

    def configure(
        self,
        node_id: int,
        hostname: str,
        resources: Resources,
        ipconfig: str,
        nameserver: str,
        network: str,
    ) -> None:
        self._call(
            [
                self.tool,
                "set",
                str(node_id),
                "--name",
                hostname,
                "--cores",
                str(resources.cores),
                "--memory",
                str(resources.memory_mb),
                "--ipconfig0",
                ipconfig,
                "--nameserver",
                nameserver,
                "--net0",
                network,
            ]
        )

    def create(
        self,
        node_id: int,
        image_path: str,
        storage: str,
        hostname: str,
        resources: Resources,
        ipconfig: str,
        nameserver: str,
        network: str,
    ) -> None:
        self.restore_from_image(node_id, image_path, storage)
        self.configure(node_id, hostname, resources, ipconfig, nameserver, network)

    def resize_disk(self, node_id: int, device: str, size_gb: int) -> None:
        self._call([self.tool, "resize", str(node_id), device, f"{size_gb}G"])

    def exec_in_guest(self, node_id: int, command: List[str], stdin: Optional[str] = None) -> str:
        cmd = [self.tool, "guest", "exec", str(node_id), "--timeout", str(self.guest_exec_timeout)]
        if stdin is not None:
            cmd += ["--pass-stdin", "1"]
        cmd += ["--", *command]
        result = self._call(cmd, stdin=stdin)
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise HypervisorError(f"Unreadable guest agent reply: {exc}", command=cmd) from exc
        if not payload.get("exited"):
            raise HypervisorError(
                f"Guest command did not finish within {self.guest_exec_timeout}s: {' '.join(command)}",
                command=cmd,
            )
        exitcode = payload.get("exitcode", -1)
        if exitcode != 0:
            stderr = str(payload.get("err-data", "")).strip()
            raise HypervisorError(
                f"Guest command {' '.join(command)} failed (exit {exitcode}): {stderr or 'no output'}",
                command=cmd,
                returncode=exitcode,
                stderr=stderr,
            )
        return str(payload.get("out-data", ""))

    def shell(self, node_id: int, script: str) -> str:
        return self.exec_in_guest(node_id, [f"{GUEST_BIN}/bash", "-lc", script])


def hypervisor_for(kind: NodeKind, guest_exec_timeout: int = GUEST_EXEC_TIMEOUT) -> Hypervisor:
    if kind is NodeKind.VM:
        return VMHypervisor(guest_exec_timeout=guest_exec_timeout)
    return ContainerHypervisor()
