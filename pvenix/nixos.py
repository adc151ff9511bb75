"""NixOS configuration rendering for pve-nixos-deployer.

Rendering is a pure function of the node spec and guest options: the same
inputs always produce byte-identical text, so re-delivering and re-activating
an unchanged configuration converges to the same system.
"""

from __future__ import annotations

from typing import List

from pvenix.constants import GUEST_INTERFACE
from pvenix.models import GuestOptions, NodeKind, NodeSpec

_CONTAINER_HEADER = [
    "{ modulesPath, config, pkgs, ... }:",
    "",
    "{",
    "  imports = [",
    '    "${modulesPath}/virtualisation/lxc-container.nix"',
    "  ];",
    "",
    "  boot.isContainer = true;",
    "",
    "  # Disable swap",
    "  swapDevices = [];",
    "",
    "  # Remove systemd units incompatible with LXC",
    "  systemd.suppressedSystemUnits = [",
    '    "dev-mqueue.mount"',
    '    "sys-kernel-debug.mount"',
    '    "sys-fs-fuse-connections.mount"',
    "  ];",
    "",
]

_VM_HEADER = [
    "{ modulesPath, config, pkgs, ... }:",
    "",
    "{",
    "  imports = [",
    '    "${modulesPath}/virtualisation/proxmox-image.nix"',
    "  ];",
    "",
    "  proxmox.cloudInit.enable = true;",
    "",
    "  # Disable swap",
    "  swapDevices = [];",
    "",
]


def nix_string(value: str) -> str:
    """Quote ``value`` as a Nix double-quoted string."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")
    return f'"{escaped}"'


def _services(guest: GuestOptions, extra: List[str]) -> List[str]:
    lines = [
        "  # Basic services",
        "  services.openssh = {",
        "    enable = true;",
        "    settings = {",
        "      PasswordAuthentication = true;",
    ]
    if guest.permit_root_login:
        lines.append('      PermitRootLogin = "yes";')
    lines += ["    };", "  };", ""]
    lines += extra
    return lines


def _users(guest: GuestOptions) -> List[str]:
    if not guest.password_hash and not guest.ssh_pubkey:
        return []
    lines = ["  users.users.root = {"]
    if guest.password_hash:
        lines.append(f"    hashedPassword = {nix_string(guest.password_hash)};")
    if guest.ssh_pubkey:
        lines.append(f"    openssh.authorizedKeys.keys = [ {nix_string(guest.ssh_pubkey)} ];")
    lines += ["  };", ""]
    return lines


def _footer(spec: NodeSpec, guest: GuestOptions) -> List[str]:
    lines = ["  # Basic packages", "  environment.systemPackages = with pkgs; ["]
    lines += [f"    {package}" for package in spec.packages]
    lines += ["  ];", "", f"  system.stateVersion = {nix_string(guest.state_version)};", "}"]
    return lines


def render_container_config(spec: NodeSpec, guest: GuestOptions) -> str:
    """configuration.nix for an LXC node with a static address on eth0."""
    lines = list(_CONTAINER_HEADER)
    lines += [
        "  # Network configuration with static IP",
        "  networking = {",
        f"    hostName = {nix_string(spec.hostname)};",
        "    dhcpcd.enable = false;",
        "    enableIPv6 = false;",
        "    useHostResolvConf = false;",
        f"    nameservers = [ {nix_string(spec.dns)} ];",
        f"    defaultGateway = {nix_string(spec.gateway)};",
        "",
        f"    interfaces.{GUEST_INTERFACE} = {{",
        "      useDHCP = false;",
        "      ipv4.addresses = [",
        "        {",
        f"          address = {nix_string(spec.address.ip)};",
        f"          prefixLength = {spec.address.prefix};",
        "        }",
        "      ];",
        "    };",
        "  };",
        "",
    ]
    lines += _services(guest, [])
    lines += _users(guest)
    lines += _footer(spec, guest)
    return "\n".join(lines) + "\n"


def render_vm_config(spec: NodeSpec, guest: GuestOptions) -> str:
    """configuration.nix for a QEMU node; addressing stays with cloud-init."""
    lines = list(_VM_HEADER)
    lines += [
        "  # Network configuration comes from cloud-init (ipconfig0)",
        "  networking = {",
        f"    hostName = {nix_string(spec.hostname)};",
        "    dhcpcd.enable = false;",
        "    enableIPv6 = false;",
        "    useHostResolvConf = false;",
        "  };",
        "",
    ]
    lines += _services(
        guest,
        [
            "  services.qemuGuest.enable = true;",
            "  services.cloud-init = {",
            "    enable = true;",
            "    network.enable = true;",
            "  };",
            "",
        ],
    )
    lines += _users(guest)
    lines += _footer(spec, guest)
    return "\n".join(lines) + "\n"


def render_guest_config(spec: NodeSpec, guest: GuestOptions) -> str:
    if spec.kind is NodeKind.VM:
        return render_vm_config(spec, guest)
    return render_container_config(spec, guest)
