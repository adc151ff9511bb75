"""Data models for pve-nixos-deployer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

from pvenix.constants import (
    ACTIVATE_COMMAND,
    DEFAULT_BRIDGE,
    DEFAULT_CORES,
    DEFAULT_DISK_GB,
    DEFAULT_DNS,
    DEFAULT_GATEWAY,
    DEFAULT_HOSTNAME_PATTERN,
    DEFAULT_MEMORY_MB,
    DEFAULT_PACKAGES,
    DEFAULT_PRIVILEGED,
    DEFAULT_STATE_VERSION,
    DEFAULT_STORAGE,
    DEFAULT_TEMPLATE,
    DEFAULT_VMA_PATH,
    GUEST_EXEC_TIMEOUT,
    HOSTNAME_RE,
    READY_ATTEMPTS,
    READY_INTERVAL,
    VM_DISK_DEVICE,
    VM_SETTLE_DELAY,
)
from pvenix.exceptions import DeployError, ValidationError


class NodeKind(Enum):
    CONTAINER = "container"
    VM = "vm"


class NodeState(Enum):
    ABSENT = "absent"
    CREATED = "created"
    STARTED = "started"
    READY = "ready"
    CONFIG_APPLIED = "config-applied"
    FAILED = "failed"


class HypervisorStatus(NamedTuple):
    """One observation of hypervisor truth for a node identifier."""

    exists: bool
    running: bool = False

    def describe(self) -> str:
        if not self.exists:
            return "absent"
        return "running" if self.running else "stopped"


ABSENT = HypervisorStatus(exists=False)


@dataclass(frozen=True)
class Resources:
    cores: int = DEFAULT_CORES
    memory_mb: int = DEFAULT_MEMORY_MB
    disk_gb: int = DEFAULT_DISK_GB

    def __post_init__(self):
        for name in ("cores", "memory_mb", "disk_gb"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be >= 1 (got {getattr(self, name)})")


@dataclass(frozen=True)
class NetworkAddress:
    ip: str
    prefix: int = 24

    def __str__(self) -> str:
        return f"{self.ip}/{self.prefix}"


@dataclass(frozen=True)
class NodeSpec:
    """Immutable declaration of one node."""

    node_id: int
    hostname: str
    address: NetworkAddress
    gateway: str = DEFAULT_GATEWAY
    dns: str = DEFAULT_DNS
    resources: Resources = field(default_factory=Resources)
    privileged: bool = DEFAULT_PRIVILEGED  # container path only
    disk_override_gb: Optional[int] = None  # VM path only
    kind: NodeKind = NodeKind.CONTAINER
    packages: Tuple[str, ...] = DEFAULT_PACKAGES

    def __post_init__(self):
        if self.node_id < 1:
            raise ValidationError(f"Node id must be a positive integer (got {self.node_id})")
        if not HOSTNAME_RE.match(self.hostname or ""):
            raise ValidationError(f"Invalid hostname '{self.hostname}'")
        if self.disk_override_gb is not None and self.disk_override_gb < 1:
            raise ValidationError(f"Disk override must be >= 1 GB (got {self.disk_override_gb})")


@dataclass(frozen=True)
class BatchSpec:
    base_id: int
    count: int
    base_address: NetworkAddress
    gateway: str = DEFAULT_GATEWAY
    privileged: bool = DEFAULT_PRIVILEGED
    kind: NodeKind = NodeKind.CONTAINER
    dns: str = DEFAULT_DNS
    resources: Resources = field(default_factory=Resources)
    packages: Tuple[str, ...] = DEFAULT_PACKAGES
    hostname_pattern: str = DEFAULT_HOSTNAME_PATTERN

    def __post_init__(self):
        if self.base_id < 1:
            raise ValidationError(f"Base id must be a positive integer (got {self.base_id})")
        if self.count < 1:
            raise ValidationError(f"The number of nodes must be greater than 0 (got {self.count})")


@dataclass(frozen=True)
class GuestOptions:
    state_version: str = DEFAULT_STATE_VERSION
    password_hash: Optional[str] = None
    ssh_pubkey: Optional[str] = None
    permit_root_login: bool = True


@dataclass(frozen=True)
class DeployerConfig:
    """Resolved settings shared by the planner, orchestrators and sweeps."""

    template: str = DEFAULT_TEMPLATE
    vma_path: str = DEFAULT_VMA_PATH
    storage: str = DEFAULT_STORAGE
    bridge: str = DEFAULT_BRIDGE
    gateway: str = DEFAULT_GATEWAY
    dns: str = DEFAULT_DNS
    resources: Resources = field(default_factory=Resources)
    privileged: bool = DEFAULT_PRIVILEGED
    ready_attempts: int = READY_ATTEMPTS
    ready_interval: float = READY_INTERVAL
    vm_settle_delay: float = VM_SETTLE_DELAY
    vm_disk_device: str = VM_DISK_DEVICE
    guest_exec_timeout: int = GUEST_EXEC_TIMEOUT
    activate_command: str = ACTIVATE_COMMAND
    hostname_pattern: str = DEFAULT_HOSTNAME_PATTERN
    packages: Tuple[str, ...] = DEFAULT_PACKAGES
    guest: GuestOptions = field(default_factory=GuestOptions)


@dataclass
class NodeOutcome:
    spec: NodeSpec
    state: NodeState = NodeState.ABSENT
    states: List[NodeState] = field(default_factory=list)
    error: Optional[DeployError] = None

    @property
    def ok(self) -> bool:
        return self.state is NodeState.CONFIG_APPLIED


@dataclass
class BatchResult:
    planned: List[NodeSpec]
    outcomes: List[NodeOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.outcomes) == len(self.planned) and all(o.ok for o in self.outcomes)

    @property
    def attempted(self) -> List[int]:
        return [o.spec.node_id for o in self.outcomes]


@dataclass
class NodeStatusReport:
    node_id: int
    status: Optional[HypervisorStatus] = None
    probe_ok: Optional[bool] = None
    detail: str = ""
    error: Optional[str] = None


@dataclass
class TeardownReport:
    node_id: int
    removed: bool = False
    error: Optional[str] = None
