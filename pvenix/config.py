"""Configuration loading and argument parsing for pve-nixos-deployer."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from pvenix.constants import DEFAULT_CONFIG_PATH
from pvenix.exceptions import ValidationError
from pvenix.models import DeployerConfig, GuestOptions, Resources
from pvenix.network import parse_ip
from pvenix.utils import get_env, hash_password, log, parse_bool, parse_float, parse_int

# config file key -> environment override
ENV_OVERRIDES = {
    "template": "PVE_TEMPLATE",
    "vma_path": "PVE_VMA_PATH",
    "storage": "PVE_STORAGE",
    "bridge": "PVE_BRIDGE",
    "gateway": "NODE_GATEWAY",
    "dns": "NODE_DNS",
    "cores": "NODE_CORES",
    "memory": "NODE_MEMORY",
    "disk": "NODE_DISK",
    "privileged": "NODE_PRIVILEGED",
    "ready_attempts": "READY_ATTEMPTS",
    "ready_interval": "READY_INTERVAL",
    "vm_settle_delay": "VM_SETTLE_DELAY",
    "vm_disk_device": "VM_DISK_DEVICE",
    "guest_exec_timeout": "GUEST_EXEC_TIMEOUT",
    "activate_command": "ACTIVATE_COMMAND",
    "hostname_pattern": "HOSTNAME_PATTERN",
    "packages": "NODE_PACKAGES",
    "state_version": "NIXOS_STATE_VERSION",
    "guest_password": "GUEST_PASSWORD",
    "password_hash": "GUEST_PASSWORD_HASH",
    "ssh_pubkey": "SSH_PUBKEY",
    "permit_root_login": "PERMIT_ROOT_LOGIN",
}

PACKAGE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.+-]*$")
STATE_VERSION_RE = re.compile(r"^\d{2}\.\d{2}$")
CRYPT_HASH_RE = re.compile(r"^\$[0-9a-z]+\$\S+$")


def _resolve_config_path(config_path: Optional[Path]) -> Optional[Path]:
    if config_path is not None:
        return config_path
    env_path = get_env("PVENIX_CONFIG")
    if env_path:
        return Path(env_path)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ValidationError(f"Configuration file missing: {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ValidationError(f"Configuration file {path} contains invalid YAML: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"Configuration file {path} must contain a YAML mapping, got {type(data).__name__}")
    unknown = sorted(set(data) - set(ENV_OVERRIDES))
    if unknown:
        log("WARN", f"Ignoring unknown configuration keys in {path}: {', '.join(unknown)}")
    return {key: value for key, value in data.items() if key in ENV_OVERRIDES}


def _text(raw: Dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key)
    if value is None:
        return default
    value = str(value).strip()
    if not value:
        raise ValidationError(f"{key} must not be empty")
    return value


def _packages(raw: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if raw is None:
        return default
    if isinstance(raw, str):
        items = [item.strip() for item in raw.split(",") if item.strip()]
    elif isinstance(raw, list):
        items = [str(item).strip() for item in raw]
    else:
        raise ValidationError(f"packages must be a list or comma-separated string (got {type(raw).__name__})")
    for item in items:
        if not PACKAGE_RE.match(item):
            raise ValidationError(f"Invalid package attribute name '{item}'")
    return tuple(items)


def _flag(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return parse_bool(key, str(value))


def _password_hash(raw: Dict[str, Any]) -> Optional[str]:
    """A pre-computed crypt hash wins; a plaintext password is salted afresh on every load."""
    value = raw.get("password_hash")
    if value:
        if not CRYPT_HASH_RE.match(value):
            raise ValidationError("password_hash must be a crypt(3) hash such as '\$2b\$12\$...'")
        return value
    password = raw.get("guest_password")
    if not password:
        return None
    log(
        "WARN",
        "GUEST_PASSWORD gets a new salt on every run, so configuration.nix changes each time; "
        "set GUEST_PASSWORD_HASH instead to keep it stable",
    )
    return hash_password(str(password))


def load_config(config_path: Optional[Path] = None) -> DeployerConfig:
    """Resolve settings from defaults, an optional YAML file, then the environment."""
    defaults = DeployerConfig()
    path = _resolve_config_path(config_path)
    raw: Dict[str, Any] = read_config_file(path) if path is not None else {}
    if path is not None:
        log("DEBUG", f"Loaded configuration from {path}")

    for key, env_name in ENV_OVERRIDES.items():
        value = get_env(env_name)
        if value is not None:
            raw[key] = value

    resources = Resources(
        cores=parse_int("cores", raw.get("cores", defaults.resources.cores)),
        memory_mb=parse_int("memory", raw.get("memory", defaults.resources.memory_mb), min_val=16),
        disk_gb=parse_int("disk", raw.get("disk", defaults.resources.disk_gb)),
    )

    state_version = _text(raw, "state_version", defaults.guest.state_version)
    if not STATE_VERSION_RE.match(state_version):
        raise ValidationError(f"state_version must look like YY.MM (got '{state_version}')")

    password_hash = _password_hash(raw)
    ssh_pubkey = str(raw["ssh_pubkey"]).strip() if raw.get("ssh_pubkey") else None

    guest = GuestOptions(
        state_version=state_version,
        password_hash=password_hash,
        ssh_pubkey=ssh_pubkey or None,
        permit_root_login=_flag(raw, "permit_root_login", defaults.guest.permit_root_login),
    )

    return DeployerConfig(
        template=_text(raw, "template", defaults.template),
        vma_path=_text(raw, "vma_path", defaults.vma_path),
        storage=_text(raw, "storage", defaults.storage),
        bridge=_text(raw, "bridge", defaults.bridge),
        gateway=parse_ip("gateway", _text(raw, "gateway", defaults.gateway)),
        dns=parse_ip("dns", _text(raw, "dns", defaults.dns)),
        resources=resources,
        privileged=_flag(raw, "privileged", defaults.privileged),
        ready_attempts=parse_int("ready_attempts", raw.get("ready_attempts", defaults.ready_attempts)),
        ready_interval=parse_float("ready_interval", raw.get("ready_interval", defaults.ready_interval)),
        vm_settle_delay=parse_float("vm_settle_delay", raw.get("vm_settle_delay", defaults.vm_settle_delay)),
        vm_disk_device=_text(raw, "vm_disk_device", defaults.vm_disk_device),
        guest_exec_timeout=parse_int(
            "guest_exec_timeout", raw.get("guest_exec_timeout", defaults.guest_exec_timeout), min_val=0
        ),
        activate_command=_text(raw, "activate_command", defaults.activate_command),
        hostname_pattern=_text(raw, "hostname_pattern", defaults.hostname_pattern),
        packages=_packages(raw.get("packages"), defaults.packages),
        guest=guest,
    )


def parse_positive_int(name: str, raw: str) -> int:
    return parse_int(name, raw, min_val=1)


def parse_privileged(raw: str) -> bool:
    return parse_bool("privileged", raw)
