"""Custom exceptions for pve-nixos-deployer."""

from __future__ import annotations

from typing import List, Optional


class DeployError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ValidationError(DeployError):
    """Bad arguments or configuration, detected before any side effect."""


class AllocationError(DeployError):
    """A batch would allocate a host address outside the usable range."""


class HypervisorError(DeployError):
    """A hypervisor command exited non-zero or could not be executed."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class NodeFailure(DeployError):
    """Fatal failure of one node's lifecycle."""

    def __init__(self, node_id: int, step: str, message: str) -> None:
        super().__init__(f"[{step}] node {node_id}: {message}")
        self.node_id = node_id
        self.step = step


class StepFailure(NodeFailure):
    """A lifecycle step's collaborator call reported failure."""


class StartupTimeoutError(NodeFailure):
    """The node never reported running within the readiness bound."""
