"""Hypervisor host detection for pve-nixos-deployer."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from pvenix.models import NodeKind
from pvenix.utils import log

PVE_CONFIG_DIR = Path("/etc/pve")

REQUIRED_TOOLS = {
    NodeKind.CONTAINER: ["pct"],
    NodeKind.VM: ["qm", "qmrestore"],
}


@dataclass
class HostInfo:
    proxmox: bool
    tools: Dict[str, bool] = field(default_factory=dict)

    def missing(self, kind: NodeKind) -> List[str]:
        return [tool for tool in REQUIRED_TOOLS[kind] if not self.tools.get(tool)]


def _is_proxmox() -> bool:
    """Proxmox VE mounts its cluster filesystem at /etc/pve."""
    return PVE_CONFIG_DIR.is_dir()


def detect_host() -> HostInfo:
    """Detect whether this is a Proxmox VE host and which CLI tools are on PATH."""
    tools = {}
    for names in REQUIRED_TOOLS.values():
        for name in names:
            tools[name] = shutil.which(name) is not None
    info = HostInfo(proxmox=_is_proxmox(), tools=tools)
    if not info.proxmox:
        log("DEBUG", f"{PVE_CONFIG_DIR} not found; this does not look like a Proxmox VE host")
    return info
