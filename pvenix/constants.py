"""Default settings and well-known paths for pve-nixos-deployer."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/etc/pvenix/config.yaml")

# Proxmox storage and templates
DEFAULT_TEMPLATE = "/var/lib/pve/local-btrfs/template/cache/nixos-24.05-default_20241108_amd64.tar.xz"
DEFAULT_VMA_PATH = "/var/lib/pve/local-btrfs/dump/vzdump-qemu-nixos-24.11beta708443.057f63b6dc1a.vma.zst"
DEFAULT_STORAGE = "local-btrfs"
DEFAULT_BRIDGE = "vmbr0"

# Node defaults
DEFAULT_GATEWAY = "192.168.0.1"
DEFAULT_DNS = "1.1.1.1"
DEFAULT_CORES = 2
DEFAULT_MEMORY_MB = 1024
DEFAULT_DISK_GB = 8
DEFAULT_PRIVILEGED = True
DEFAULT_PACKAGES = ("nano", "wget", "htop", "binutils", "man")
DEFAULT_STATE_VERSION = "24.05"
DEFAULT_HOSTNAME_PATTERN = "nixos-node-{index}"

# Readiness
READY_ATTEMPTS = 30
READY_INTERVAL = 1.0
VM_SETTLE_DELAY = 15.0
GUEST_EXEC_TIMEOUT = 1800
VM_DISK_DEVICE = "scsi0"

# Addressing
DEFAULT_PREFIX = 24
HOST_OCTET_MIN = 1
HOST_OCTET_MAX = 254

# Guest side
GUEST_BIN = "/run/current-system/sw/bin"
GUEST_CONFIG_PATH = "/etc/nixos/configuration.nix"
GUEST_INTERFACE = "eth0"
ACTIVATE_COMMAND = "nixos-rebuild switch"

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}

HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})(?:/(\d{1,2}))?$")

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY
