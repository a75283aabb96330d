"""Local cluster bootstrap.

Brings up a single-node development cluster with the platform pieces an
environment expects: minikube, the Istio control plane, Argo CD and
(optionally) a Helm chart skeleton for GitOps values files. Each step is
an action returning ActionResult; the first failure stops the run.
"""

import logging
import time
from pathlib import Path
from typing import Any, Optional

from actions import (
    ArgoCDInstallAction,
    HelmCreateAction,
    IstioInstallAction,
    MinikubeDeleteAction,
    MinikubeStartAction,
)
from common import ActionResult
from config import DriverConfig
from reporting import ApplyReport

logger = logging.getLogger(__name__)


class ClusterBootstrap:
    """Runs the cluster bootstrap phases in order."""

    def __init__(
        self,
        config: DriverConfig,
        chart_dir: Optional[Path] = None,
        fresh: bool = False,
        profile: str = 'minikube',
        report: Optional[ApplyReport] = None,
    ):
        """Initialize bootstrap.

        Args:
            config: Driver configuration
            chart_dir: Create a Helm chart here when set
            fresh: Delete any existing cluster profile first
            profile: minikube profile name
            report: Optional report to record phases into
        """
        self.config = config
        self.chart_dir = chart_dir
        self.fresh = fresh
        self.profile = profile
        self.report = report
        self.context: dict[str, Any] = {}

    def get_phases(self) -> list[tuple[str, Any, str]]:
        """Return list of (phase_name, action, description) tuples."""
        phases: list[tuple[str, Any, str]] = []
        if self.fresh:
            phases.append(('delete_cluster',
                           MinikubeDeleteAction(name='delete-cluster', profile=self.profile),
                           'Delete existing cluster'))
        phases.extend([
            ('start_cluster',
             MinikubeStartAction(name='start-cluster', driver=self.config.minikube_driver,
                                 profile=self.profile),
             'Start minikube cluster'),
            ('install_istio',
             IstioInstallAction(name='install-istio', profile=self.config.istio_profile),
             'Install Istio control plane'),
            ('install_argocd',
             ArgoCDInstallAction(name='install-argocd',
                                 install_url=self.config.argocd_install_url),
             'Install Argo CD'),
        ])
        if self.chart_dir:
            phases.append(('create_chart',
                           HelmCreateAction(name='create-chart', chart_dir=self.chart_dir),
                           'Create Helm chart'))
        return phases

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN: cluster up ({self.profile})")
        print("=" * 65)
        print("")
        for phase_name, action, description in self.get_phases():
            print(f"  [ OK ] {phase_name}: {description}")
            print(f"         Action: {type(action).__name__}")
        print("")
        print("Remove --dry-run to execute.")
        print("")
        return True

    def run(self) -> tuple[bool, list[tuple[str, ActionResult]]]:
        """Run all phases, stopping at the first failure.

        Returns:
            (success, [(phase_name, result), ...])
        """
        results: list[tuple[str, ActionResult]] = []
        start_time = time.time()
        if self.report:
            self.report.start()

        success = True
        for phase_name, action, description in self.get_phases():
            logger.info(f"Running phase: {phase_name} - {description}")
            try:
                result = action.run(self.config, dict(self.context))
            except Exception as e:
                logger.exception(f"Phase {phase_name} raised exception")
                result = ActionResult(success=False, message=str(e))

            results.append((phase_name, result))
            if self.report:
                self.report.add_phase(phase_name, 'passed' if result.success else 'failed',
                                      result.message, result.duration)

            if result.success:
                logger.info(f"Phase {phase_name} passed")
                self.context.update(result.context_updates or {})
                continue

            logger.error(f"Phase {phase_name} failed: {result.message}")
            success = False
            if not result.continue_on_failure:
                break

        logger.info(f"Bootstrap completed in {time.time() - start_time:.1f}s")
        if self.report:
            self.report.finish(success)
        return success, results

    def teardown(self) -> ActionResult:
        """Delete the cluster profile."""
        action = MinikubeDeleteAction(name='delete-cluster', profile=self.profile)
        return action.run(self.config, dict(self.context))
