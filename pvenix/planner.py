"""Identity and address planning for node batches."""

from __future__ import annotations

from typing import List

from pvenix.constants import HOST_OCTET_MAX, HOST_OCTET_MIN
from pvenix.exceptions import AllocationError, ValidationError
from pvenix.models import BatchSpec, NodeSpec
from pvenix.network import split_host_octet, with_host_octet


def hostname_for(pattern: str, index: int) -> str:
    try:
        return pattern.format(index=index)
    except (KeyError, IndexError, ValueError, AttributeError, TypeError) as exc:
        raise ValidationError(f"Invalid hostname pattern '{pattern}': {exc}") from exc


def plan(batch: BatchSpec) -> List[NodeSpec]:
    """Derive every (id, hostname, address) of a batch, in execution order.

    The whole range is checked before anything is returned, so an overflow is
    reported before a single node has been touched.
    """
    _, base_octet = split_host_octet(batch.base_address)
    if base_octet < HOST_OCTET_MIN:
        raise AllocationError(
            f"Base address {batch.base_address} is not a usable host address "
            f"(last octet must be {HOST_OCTET_MIN}-{HOST_OCTET_MAX})"
        )
    last_octet = base_octet + batch.count - 1
    if last_octet > HOST_OCTET_MAX:
        overflow_index = HOST_OCTET_MAX - base_octet + 1
        raise AllocationError(
            f"IP range exceeded for node {overflow_index}: {batch.count} nodes from "
            f"{batch.base_address} would need host octet {last_octet} (max {HOST_OCTET_MAX})"
        )

    specs: List[NodeSpec] = []
    for index in range(batch.count):
        specs.append(
            NodeSpec(
                node_id=batch.base_id + index,
                hostname=hostname_for(batch.hostname_pattern, index),
                address=with_host_octet(batch.base_address, base_octet + index),
                gateway=batch.gateway,
                dns=batch.dns,
                resources=batch.resources,
                privileged=batch.privileged,
                kind=batch.kind,
                packages=batch.packages,
            )
        )
    if len({spec.hostname for spec in specs}) != len(specs):
        raise ValidationError(f"Hostname pattern '{batch.hostname_pattern}' must include {{index}}")
    return specs
