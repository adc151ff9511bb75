"""Node lifecycle orchestration for pve-nixos-deployer.

A node is driven through ABSENT -> CREATED -> STARTED -> READY ->
CONFIG_APPLIED. Every step takes the immutable NodeSpec and the state the
previous step produced, and either returns the next state or raises a
NodeFailure. There is no rollback: each step is idempotent from the outside,
so the recovery for any failure is to provision the node again, which starts
by removing whatever the failed run left behind.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from pvenix.constants import GUEST_CONFIG_PATH
from pvenix.exceptions import HypervisorError, NodeFailure, StartupTimeoutError, StepFailure
from pvenix.hypervisor import ContainerHypervisor, Hypervisor, VMHypervisor, hypervisor_for
from pvenix.models import DeployerConfig, HypervisorStatus, NodeKind, NodeOutcome, NodeSpec, NodeState
from pvenix.network import (
    network_injection_commands,
    render_container_nic,
    render_ipconfig,
    render_vm_nic,
)
from pvenix.nixos import render_guest_config
from pvenix.utils import log, wait_until

Step = Callable[[NodeSpec, NodeState], NodeState]


class NodeOrchestrator(ABC):
    hypervisor: Hypervisor

    def __init__(
        self,
        hypervisor: Hypervisor,
        config: DeployerConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.hypervisor = hypervisor
        self.config = config
        self.sleep = sleep

    @property
    def label(self) -> str:
        return self.hypervisor.label

    @abstractmethod
    def steps(self) -> List[Tuple[str, Step]]:
        """Named lifecycle steps, in execution order."""

    def provision(self, spec: NodeSpec) -> NodeOutcome:
        """Drive one node to CONFIG_APPLIED, stopping at the first failed step."""
        outcome = NodeOutcome(spec=spec, state=NodeState.ABSENT, states=[NodeState.ABSENT])
        self._announce(spec)
        state = NodeState.ABSENT
        try:
            for name, step in self.steps():
                log("DEBUG", f"{spec.hostname} ({spec.node_id}): {name} from {state.value}")
                state = step(spec, state)
                outcome.states.append(state)
        except NodeFailure as exc:
            outcome.state = NodeState.FAILED
            outcome.states.append(NodeState.FAILED)
            outcome.error = exc
            log("ERROR", str(exc))
            return outcome
        outcome.state = state
        self._report_success(spec)
        return outcome

    def _announce(self, spec: NodeSpec) -> None:
        log("INFO", f"Creating {self.label} {spec.hostname} (ID: {spec.node_id})...")

    def _report_success(self, spec: NodeSpec) -> None:
        log("SUCCESS", f"{self.label.capitalize()} {spec.hostname} created and configured successfully.")

    def _expect(self, spec: NodeSpec, step: str, state: NodeState, *allowed: NodeState) -> None:
        if state not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise StepFailure(spec.node_id, step, f"expected state {expected}, found {state.value}")

    def _observe(self, spec: NodeSpec, step: str) -> HypervisorStatus:
        try:
            return self.hypervisor.status(spec.node_id)
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, step, f"status query failed: {exc}") from exc

    def reconcile_absent(self, spec: NodeSpec, state: NodeState) -> NodeState:
        """Remove any pre-existing resource holding the node's identifier."""
        self._expect(spec, "reconcile", state, NodeState.ABSENT)
        observed = self._observe(spec, "reconcile")
        if not observed.exists:
            return NodeState.ABSENT
        log("INFO", f"{self.label.capitalize()} {spec.node_id} already exists ({observed.describe()}). Removing...")
        try:
            self.hypervisor.stop(spec.node_id)
        except HypervisorError as exc:
            log("DEBUG", f"Stop before destroy of {spec.node_id} reported: {exc}")
        try:
            self.hypervisor.destroy(spec.node_id)
        except HypervisorError as exc:
            try:
                after = self.hypervisor.status(spec.node_id)
            except HypervisorError:
                after = None
            if after is None or after.exists:
                raise StepFailure(spec.node_id, "reconcile", f"failed to remove existing {self.label}: {exc}") from exc
            log("WARN", f"Destroy of {spec.node_id} reported an error but it is gone: {exc}")
        return NodeState.ABSENT

    @abstractmethod
    def create(self, spec: NodeSpec, state: NodeState) -> NodeState:
        """Allocate the node on the hypervisor; ABSENT -> CREATED."""

    def start(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "start", state, NodeState.CREATED)
        log("INFO", f"Starting the {self.label}...")
        try:
            self.hypervisor.start(spec.node_id)
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, "start", f"failed to start the {self.label}: {exc}") from exc
        return NodeState.STARTED

    def deliver_config(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "deliver_config", state, NodeState.READY)
        observed = self._observe(spec, "deliver_config")
        if not observed.running:
            raise StepFailure(spec.node_id, "deliver_config", f"{self.label} is {observed.describe()}, not running")
        log("INFO", "Creating NixOS configuration...")
        payload = render_guest_config(spec, self.config.guest)
        try:
            self.hypervisor.write_file(spec.node_id, GUEST_CONFIG_PATH, payload)
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, "deliver_config", f"failed to create configuration file: {exc}") from exc
        return NodeState.READY

    def activate(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "activate", state, NodeState.READY)
        log("INFO", "Applying NixOS configuration...")
        try:
            self.hypervisor.shell(spec.node_id, self.config.activate_command)
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, "activate", f"configuration failed: {exc}") from exc
        return NodeState.CONFIG_APPLIED


class ContainerOrchestrator(NodeOrchestrator):
    hypervisor: ContainerHypervisor

    def steps(self) -> List[Tuple[str, Step]]:
        return [
            ("reconcile", self.reconcile_absent),
            ("create", self.create),
            ("start", self.start),
            ("await_ready", self.await_ready),
            ("inject_network", self.inject_network),
            ("deliver_config", self.deliver_config),
            ("activate", self.activate),
        ]

    def _announce(self, spec: NodeSpec) -> None:
        super()._announce(spec)
        res = spec.resources
        log(
            "INFO",
            f"Configuration: Cores={res.cores}, Memory={res.memory_mb} MB, Disk={res.disk_gb} GB, "
            f"Privileged={int(spec.privileged)}",
        )

    def create(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "create", state, NodeState.ABSENT)
        try:
            self.hypervisor.create(
                spec.node_id,
                self.config.template,
                spec.hostname,
                spec.resources,
                render_container_nic(self.config.bridge),
                self.config.storage,
                spec.privileged,
            )
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, "create", f"failed to create container: {exc}") from exc
        return NodeState.CREATED

    def await_ready(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "await_ready", state, NodeState.STARTED)
        log("INFO", "Waiting for container to be running...")

        def _running() -> bool:
            try:
                return self.hypervisor.status(spec.node_id).running
            except HypervisorError as exc:
                log("DEBUG", f"Status query for {spec.node_id} failed while waiting: {exc}")
                return False

        attempts = self.config.ready_attempts
        interval = self.config.ready_interval
        if not wait_until(_running, attempts, interval, sleep=self.sleep):
            raise StartupTimeoutError(
                spec.node_id,
                "await_ready",
                f"container not running after {attempts} checks {interval:g}s apart",
            )
        return NodeState.READY

    def inject_network(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "inject_network", state, NodeState.READY)
        log("INFO", "Applying network configuration...")
        for command in network_injection_commands(spec):
            try:
                self.hypervisor.shell(spec.node_id, command)
            except HypervisorError as exc:
                raise StepFailure(spec.node_id, "inject_network", f"'{command}' failed: {exc}") from exc
        return NodeState.READY


class VMOrchestrator(NodeOrchestrator):
    hypervisor: VMHypervisor

    def steps(self) -> List[Tuple[str, Step]]:
        return [
            ("reconcile", self.reconcile_absent),
            ("create", self.create),
            ("start", self.start),
            ("settle", self.settle),
            ("deliver_config", self.deliver_config),
            ("activate", self.activate),
        ]

    def _announce(self, spec: NodeSpec) -> None:
        log("INFO", f"Restoring VM {spec.hostname} (ID: {spec.node_id})...")

    def _report_success(self, spec: NodeSpec) -> None:
        _, mac = render_vm_nic(self.config.bridge, spec.hostname)
        log("SUCCESS", f"VM {spec.hostname} restored and configured successfully.")
        log("INFO", f"You can connect via: ssh root@{spec.address.ip}")
        log("INFO", f"MAC Address: {mac}")

    def create(self, spec: NodeSpec, state: NodeState) -> NodeState:
        self._expect(spec, "create", state, NodeState.ABSENT)
        network, _ = render_vm_nic(self.config.bridge, spec.hostname)
        log("INFO", "Restoring from VMA...")
        try:
            self.hypervisor.create(
                spec.node_id,
                self.config.vma_path,
                self.config.storage,
                spec.hostname,
                spec.resources,
                render_ipconfig(spec.address, spec.gateway),
                spec.dns,
                network,
            )
            if spec.disk_override_gb is not None:
                log("INFO", f"Resizing {self.config.vm_disk_device} to {spec.disk_override_gb}G...")
                self.hypervisor.resize_disk(spec.node_id, self.config.vm_disk_device, spec.disk_override_gb)
        except HypervisorError as exc:
            raise StepFailure(spec.node_id, "create", f"failed to restore VM: {exc}") from exc
        return NodeState.CREATED

    def settle(self, spec: NodeSpec, state: NodeState) -> NodeState:
        """Fixed wait; VM readiness is not polled."""
        self._expect(spec, "settle", state, NodeState.STARTED)
        log("INFO", f"Waiting {self.config.vm_settle_delay:g}s for startup...")
        self.sleep(self.config.vm_settle_delay)
        return NodeState.READY


def orchestrator_for(
    kind: NodeKind,
    config: DeployerConfig,
    hypervisor: Optional[Hypervisor] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> NodeOrchestrator:
    hypervisor = hypervisor or hypervisor_for(kind, config.guest_exec_timeout)
    if kind is NodeKind.VM:
        return VMOrchestrator(hypervisor, config, sleep=sleep)
    return ContainerOrchestrator(hypervisor, config, sleep=sleep)
