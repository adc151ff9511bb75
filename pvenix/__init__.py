"""pve-nixos-deployer package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "coordinator",
    "exceptions",
    "hypervisor",
    "models",
    "network",
    "nixos",
    "orchestrator",
    "planner",
    "runtime",
    "utils",
]
