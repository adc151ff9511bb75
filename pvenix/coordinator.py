"""Batch provisioning and sweeps over contiguous node ranges."""

from __future__ import annotations

from typing import List

from pvenix.exceptions import HypervisorError
from pvenix.hypervisor import Hypervisor
from pvenix.models import BatchResult, BatchSpec, NodeStatusReport, TeardownReport
from pvenix.network import liveness_probe_command
from pvenix.orchestrator import NodeOrchestrator
from pvenix.planner import plan
from pvenix.utils import log


class BatchCoordinator:
    """Runs the orchestrator over a planned batch, one node at a time.

    Nodes share one identifier namespace and one address range with no
    hypervisor-side locking, so they are never provisioned concurrently.
    """

    def __init__(self, orchestrator: NodeOrchestrator, gateway: str) -> None:
        self.orchestrator = orchestrator
        self.gateway = gateway

    @property
    def hypervisor(self) -> Hypervisor:
        return self.orchestrator.hypervisor

    def run(self, batch: BatchSpec) -> BatchResult:
        """Provision every planned node in order; stop at the first failure.

        AllocationError from the planner propagates before any node is touched.
        """
        specs = plan(batch)
        label = self.orchestrator.label
        log("INFO", f"Deploying a cluster of {batch.count} {label}s...")
        result = BatchResult(planned=specs)
        for spec in specs:
            outcome = self.orchestrator.provision(spec)
            result.outcomes.append(outcome)
            if not outcome.ok:
                skipped = len(specs) - len(result.outcomes)
                log("ERROR", f"Aborting cluster deployment at {spec.hostname}; {skipped} node(s) not attempted")
                return result
        log("SUCCESS", "Cluster deployment completed successfully.")
        return result

    def status_sweep(self, base_id: int, count: int) -> List[NodeStatusReport]:
        """Report status and a one-shot liveness probe per node. Never raises for node errors."""
        log("INFO", f"Checking {self.orchestrator.label}s...")
        reports: List[NodeStatusReport] = []
        for node_id in range(base_id, base_id + count):
            report = NodeStatusReport(node_id=node_id)
            reports.append(report)
            try:
                report.status = self.hypervisor.status(node_id)
            except HypervisorError as exc:
                report.error = str(exc)
                log("WARN", f"Status of {node_id}: query failed: {exc}")
                continue
            log("INFO", f"Status of {node_id}: {report.status.describe()}")
            if not report.status.running:
                continue
            try:
                command = liveness_probe_command(self.gateway, self.hypervisor.kind)
                report.detail = self.hypervisor.shell(node_id, command)
                report.probe_ok = True
            except HypervisorError as exc:
                report.probe_ok = False
                report.detail = exc.stderr
                log("WARN", f"Liveness probe for {node_id} failed: {exc}")
                continue
            for line in report.detail.splitlines():
                log("INFO", f"  {line}")
        return reports

    def teardown_sweep(self, base_id: int, count: int) -> List[TeardownReport]:
        """Stop and destroy every node in the range, continuing past failures."""
        label = self.orchestrator.label
        log("INFO", f"Cleaning up {label}s...")
        reports: List[TeardownReport] = []
        for node_id in range(base_id, base_id + count):
            report = TeardownReport(node_id=node_id)
            reports.append(report)
            log("INFO", f"Removing {label} {node_id}...")
            try:
                self.hypervisor.stop(node_id)
            except HypervisorError as exc:
                log("DEBUG", f"Stop of {node_id} reported: {exc}")
            try:
                self.hypervisor.destroy(node_id)
            except HypervisorError as exc:
                report.error = str(exc)
                log("WARN", f"Failed to remove {label} {node_id}: {exc}")
                continue
            report.removed = True
        log("INFO", "Cleanup completed.")
        return reports
