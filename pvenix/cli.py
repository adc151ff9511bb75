"""CLI entry points for pve-nixos-deployer."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

from pvenix.config import load_config, parse_positive_int, parse_privileged
from pvenix.coordinator import BatchCoordinator
from pvenix.exceptions import DeployError, ValidationError
from pvenix.models import BatchSpec, DeployerConfig, NodeKind, NodeSpec, Resources
from pvenix.network import parse_address, parse_ip
from pvenix.orchestrator import orchestrator_for
from pvenix.planner import plan
from pvenix.runtime import detect_host
from pvenix.utils import log

_SENSITIVE_FIELDS = {"password_hash"}


class _ArgumentParser(argparse.ArgumentParser):
    """Report usage errors as validation errors so they share exit status 1."""

    def error(self, message: str):  # type: ignore[override]
        raise ValidationError(f"{self.prog}: {message}")


def show_config(cfg: DeployerConfig) -> None:
    """Print the resolved configuration."""
    for f in dataclasses.fields(cfg):
        value = getattr(cfg, f.name)
        if dataclasses.is_dataclass(value):
            print(f"  {f.name}:")
            for sub_field in dataclasses.fields(value):
                sub_value = getattr(value, sub_field.name)
                if sub_field.name in _SENSITIVE_FIELDS and sub_value:
                    sub_value = "********"
                print(f"    {sub_field.name}: {sub_value}")
        elif isinstance(value, tuple):
            print(f"  {f.name}: {', '.join(value)}")
        else:
            print(f"  {f.name}: {value}")


def print_plan(specs: List[NodeSpec]) -> None:
    width = max(len(spec.hostname) for spec in specs)
    for spec in specs:
        res = spec.resources
        print(
            f"  {spec.node_id:<6} {spec.hostname:<{width}}  {spec.address}  gw={spec.gateway}  "
            f"({spec.kind.value}, cores={res.cores}, memory={res.memory_mb} MB, disk={res.disk_gb} GB)"
        )


def preflight(kind: NodeKind) -> None:
    """Refuse to start if the hypervisor tools for ``kind`` are missing."""
    host = detect_host()
    missing = host.missing(kind)
    if missing:
        raise ValidationError(f"Required Proxmox tools not found on PATH: {', '.join(missing)}")
    if not host.proxmox:
        log("WARN", "Proxmox VE configuration directory not found; continuing anyway")


def _kind(args: argparse.Namespace) -> NodeKind:
    return NodeKind.VM if getattr(args, "vm", False) else NodeKind.CONTAINER


def _resources(cfg: DeployerConfig, cores: Optional[str], memory: Optional[str], disk: Optional[str]) -> Resources:
    return Resources(
        cores=parse_positive_int("cores", cores) if cores is not None else cfg.resources.cores,
        memory_mb=parse_positive_int("memory", memory) if memory is not None else cfg.resources.memory_mb,
        disk_gb=parse_positive_int("disk", disk) if disk is not None else cfg.resources.disk_gb,
    )


def _gateway(cfg: DeployerConfig, raw: Optional[str]) -> str:
    return parse_ip("gateway", raw) if raw is not None else cfg.gateway


def cmd_create(args: argparse.Namespace, cfg: DeployerConfig) -> int:
    spec = NodeSpec(
        node_id=parse_positive_int("ct_id", args.id),
        hostname=args.hostname,
        address=parse_address(args.address),
        gateway=_gateway(cfg, args.gateway),
        dns=cfg.dns,
        resources=_resources(cfg, args.cores, args.memory, args.disk),
        privileged=parse_privileged(args.privileged) if args.privileged is not None else cfg.privileged,
        kind=NodeKind.CONTAINER,
        packages=cfg.packages,
    )
    return _provision_one(spec, cfg, args.dry_run)


def cmd_restore(args: argparse.Namespace, cfg: DeployerConfig) -> int:
    spec = NodeSpec(
        node_id=parse_positive_int("vm_id", args.id),
        hostname=args.hostname,
        address=parse_address(args.address),
        gateway=_gateway(cfg, args.gateway),
        dns=cfg.dns,
        resources=_resources(cfg, args.cores, args.memory, None),
        disk_override_gb=parse_positive_int("disk", args.disk) if args.disk is not None else None,
        kind=NodeKind.VM,
        packages=cfg.packages,
    )
    return _provision_one(spec, cfg, args.dry_run)


def _provision_one(spec: NodeSpec, cfg: DeployerConfig, dry_run: bool) -> int:
    if dry_run:
        log("INFO", "=== Dry-run: nothing will be created ===")
        print_plan([spec])
        return 0
    preflight(spec.kind)
    outcome = orchestrator_for(spec.kind, cfg).provision(spec)
    return 0 if outcome.ok else 1


def cmd_deploy_cluster(args: argparse.Namespace, cfg: DeployerConfig) -> int:
    kind = _kind(args)
    batch = BatchSpec(
        base_id=parse_positive_int("base_id", args.base_id),
        count=parse_positive_int("count", args.count),
        base_address=parse_address(args.base_address),
        gateway=_gateway(cfg, args.gateway),
        privileged=parse_privileged(args.privileged) if args.privileged is not None else cfg.privileged,
        kind=kind,
        dns=cfg.dns,
        resources=cfg.resources,
        packages=cfg.packages,
        hostname_pattern=cfg.hostname_pattern,
    )
    if args.dry_run:
        specs = plan(batch)
        log("INFO", f"=== Dry-run: {len(specs)} node(s) planned, nothing will be created ===")
        print_plan(specs)
        return 0
    # Validate the whole range before checking the host or touching any node
    plan(batch)
    preflight(kind)
    coordinator = BatchCoordinator(orchestrator_for(kind, cfg), cfg.gateway)
    result = coordinator.run(batch)
    return 0 if result.ok else 1


def cmd_check(args: argparse.Namespace, cfg: DeployerConfig) -> int:
    kind = _kind(args)
    base_id = parse_positive_int("base_id", args.base_id)
    count = parse_positive_int("count", args.count)
    coordinator = BatchCoordinator(orchestrator_for(kind, cfg), _gateway(cfg, args.gateway))
    coordinator.status_sweep(base_id, count)
    return 0


def cmd_cleanup(args: argparse.Namespace, cfg: DeployerConfig) -> int:
    kind = _kind(args)
    base_id = parse_positive_int("base_id", args.base_id)
    count = parse_positive_int("count", args.count)
    coordinator = BatchCoordinator(orchestrator_for(kind, cfg), cfg.gateway)
    coordinator.teardown_sweep(base_id, count)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="pvenix",
        description="Provision NixOS containers and VMs on a Proxmox VE host",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    subparsers = parser.add_subparsers(dest="command")

    create = subparsers.add_parser("create", help="Create and configure one container")
    create.add_argument("id")
    create.add_argument("hostname")
    create.add_argument("address", help="a.b.c.d/prefix")
    create.add_argument("gateway", nargs="?")
    create.add_argument("cores", nargs="?")
    create.add_argument("memory", nargs="?", help="MB")
    create.add_argument("disk", nargs="?", help="GB")
    create.add_argument("privileged", nargs="?", help="1 (default) or 0 for unprivileged")
    create.add_argument("--dry-run", action="store_true", help="Validate and print the node, then exit")
    create.set_defaults(handler=cmd_create)

    restore = subparsers.add_parser("restore", help="Restore and configure one VM from the VMA image")
    restore.add_argument("id")
    restore.add_argument("hostname")
    restore.add_argument("address", help="a.b.c.d/prefix")
    restore.add_argument("gateway", nargs="?")
    restore.add_argument("--cores", default=None)
    restore.add_argument("--memory", default=None, help="MB")
    restore.add_argument("--disk", default=None, help="resize the boot disk to this many GB")
    restore.add_argument("--dry-run", action="store_true", help="Validate and print the node, then exit")
    restore.set_defaults(handler=cmd_restore)

    deploy = subparsers.add_parser("deploy-cluster", help="Create a contiguous range of nodes")
    deploy.add_argument("base_id")
    deploy.add_argument("count")
    deploy.add_argument("base_address", help="a.b.c.d/prefix (prefix defaults to /24)")
    deploy.add_argument("gateway", nargs="?")
    deploy.add_argument("privileged", nargs="?", help="1 (default) or 0 for unprivileged")
    deploy.add_argument("--vm", action="store_true", help="Deploy VMs instead of containers")
    deploy.add_argument("--dry-run", action="store_true", help="Print the planned nodes, then exit")
    deploy.set_defaults(handler=cmd_deploy_cluster)

    check = subparsers.add_parser("check", help="Report status and connectivity of a node range")
    check.add_argument("base_id")
    check.add_argument("count")
    check.add_argument("--vm", action="store_true", help="Check VMs instead of containers")
    check.add_argument("--gateway", default=None, help="address to ping from each node (default: configured gateway)")
    check.set_defaults(handler=cmd_check)

    cleanup = subparsers.add_parser("cleanup", help="Stop and remove a node range")
    cleanup.add_argument("base_id")
    cleanup.add_argument("count")
    cleanup.add_argument("--vm", action="store_true", help="Remove VMs instead of containers")
    cleanup.set_defaults(handler=cmd_cleanup)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except ValidationError as exc:
        parser.print_usage()
        log("ERROR", str(exc))
        return 1

    try:
        cfg = load_config(args.config)
    except DeployError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    if args.command is None:
        parser.print_help()
        return 1

    try:
        return args.handler(args, cfg)
    except DeployError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
