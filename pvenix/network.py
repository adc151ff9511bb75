"""IPv4 address handling and Proxmox network definitions for pve-nixos-deployer."""

from __future__ import annotations

from typing import List, Optional, Tuple

from pvenix.constants import DEFAULT_PREFIX, GUEST_INTERFACE, IPV4_RE
from pvenix.exceptions import ValidationError
from pvenix.models import NetworkAddress, NodeKind, NodeSpec
from pvenix.utils import deterministic_mac


def parse_address(raw: str, default_prefix: int = DEFAULT_PREFIX) -> NetworkAddress:
    """Parse ``a.b.c.d`` or ``a.b.c.d/p``; a missing prefix falls back to ``default_prefix``."""
    match = IPV4_RE.match((raw or "").strip())
    if not match:
        raise ValidationError(f"Invalid IPv4 address '{raw}'. Expected a.b.c.d or a.b.c.d/prefix")
    octets = [int(part) for part in match.group(1, 2, 3, 4)]
    if any(octet > 255 for octet in octets):
        raise ValidationError(f"Invalid IPv4 address '{raw}': octets must be 0-255")
    prefix = int(match.group(5)) if match.group(5) is not None else default_prefix
    if not 0 <= prefix <= 32:
        raise ValidationError(f"Invalid prefix length /{prefix} in '{raw}'")
    return NetworkAddress(ip=".".join(str(octet) for octet in octets), prefix=prefix)


def parse_ip(name: str, raw: str) -> str:
    """Validate a bare IPv4 address such as a gateway or resolver."""
    raw = (raw or "").strip()
    if "/" in raw:
        raise ValidationError(f"{name} must be a bare IPv4 address without prefix (got '{raw}')")
    return parse_address(raw).ip


def split_host_octet(address: NetworkAddress) -> Tuple[str, int]:
    """Return ``("a.b.c", d)`` for ``a.b.c.d``."""
    network, _, octet = address.ip.rpartition(".")
    return network, int(octet)


def with_host_octet(address: NetworkAddress, octet: int) -> NetworkAddress:
    network, _ = split_host_octet(address)
    return NetworkAddress(ip=f"{network}.{octet}", prefix=address.prefix)


def render_container_nic(bridge: str) -> str:
    """``--net0`` value for ``pct create``; addressing is injected from inside the guest."""
    if not bridge:
        raise ValidationError("A bridge name is required for the container network interface")
    return f"name={GUEST_INTERFACE},bridge={bridge}"


def render_vm_nic(bridge: str, hostname: str, mac_address: Optional[str] = None) -> Tuple[str, str]:
    """``--net0`` value for ``qm set`` and the MAC it binds."""
    if not bridge:
        raise ValidationError("A bridge name is required for the VM network interface")
    mac = (mac_address or deterministic_mac(hostname)).upper()
    return f"virtio,bridge={bridge},macaddr={mac}", mac


def render_ipconfig(address: NetworkAddress, gateway: str) -> str:
    """cloud-init ``--ipconfig0`` value for ``qm set``."""
    return f"ip={address},gw={gateway}"


def network_injection_commands(spec: NodeSpec) -> List[str]:
    """Shell commands that bring the guest's interface up with the node's static address."""
    return [
        f"ip link set {GUEST_INTERFACE} up",
        f"ip addr add {spec.address} dev {GUEST_INTERFACE}",
        f"ip route add default via {spec.gateway}",
        f"echo 'nameserver {spec.dns}' > /etc/resolv.conf",
    ]


def liveness_probe_command(gateway: str, kind: NodeKind = NodeKind.CONTAINER) -> str:
    """Show the guest's address, then ping the gateway once.

    Containers always get eth0; a VM's NIC name depends on the image, so any
    global IPv4 address is shown instead.
    """
    if kind is NodeKind.VM:
        show = "ip -4 addr show scope global"
    else:
        show = f"ip addr show {GUEST_INTERFACE}"
    return f"{show} && ping -c 1 -W 2 {gateway}"
