"""Utility functions for pve-nixos-deployer."""

from __future__ import annotations

import hashlib
import os
import subprocess
import time
from datetime import datetime
from typing import Callable, List, Optional

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

from pvenix.constants import _LOG_VERBOSE, FALSY, TRUTHY
from pvenix.exceptions import ValidationError


def log(level: str, message: str) -> None:
    """Timestamped, colour-coded log line on stdout."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{stamp}] {colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in TRUTHY:
        return True
    if value in FALSY:
        return False
    raise ValidationError(f"{name} must be one of 1/0, yes/no, true/false, on/off (got '{raw}')")


def parse_int(name: str, raw: object, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ValidationError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ValidationError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_float(name: str, raw: object, min_val: float = 0.0) -> float:
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise ValidationError(f"{name} must be >= {min_val} (got {value})")
    return value


def wait_until(
    predicate: Callable[[], bool],
    attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Call ``predicate`` up to ``attempts`` times, ``interval`` seconds apart."""
    for attempt in range(1, attempts + 1):
        if predicate():
            return True
        if attempt < attempts:
            sleep(interval)
    return False


def deterministic_mac(seed: str) -> str:
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    octets = [0x52, 0x54, 0x00, digest[0], digest[1], digest[2]]
    octets[3] = octets[3] | 0x02  # ensure locally administered bit
    octets[3] = octets[3] & 0xFE  # clear multicast bit
    return ":".join(f"{octet:02x}" for octet in octets)


def hash_password(password: str) -> str:
    """Generate a bcrypt hash usable as a NixOS hashedPassword."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
