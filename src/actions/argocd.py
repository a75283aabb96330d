"""Argo CD install action."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult, run_command
from config import DriverConfig
from provision.cluster import ApplyError, KubectlCluster

logger = logging.getLogger(__name__)


@dataclass
class ArgoCDInstallAction:
    """Install Argo CD from its upstream install manifest."""
    name: str
    install_url: Optional[str] = None  # None = config.argocd_install_url
    namespace: str = 'argocd'
    timeout: int = 600

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        """Create the argocd namespace and apply the install manifest."""
        start = time.time()

        install_url = self.install_url or config.argocd_install_url
        kube_context = context.get('kube_context', config.context)
        cluster = KubectlCluster(kubectl=config.kubectl, context=kube_context)

        logger.info(f"[{self.name}] Ensuring namespace {self.namespace}...")
        try:
            cluster.create_namespace(self.namespace, timeout=self.timeout)
        except ApplyError as e:
            return ActionResult(
                success=False,
                message=f"Failed to create namespace {self.namespace}: {e}",
                duration=time.time() - start
            )

        logger.info(f"[{self.name}] Applying {install_url}...")
        cmd = [config.kubectl]
        if kube_context:
            cmd += ['--context', kube_context]
        cmd += ['apply', '-n', self.namespace, '-f', install_url]
        rc, _, err = run_command(cmd, timeout=self.timeout)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"Argo CD install failed: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Argo CD installed in {self.namespace}",
            duration=time.time() - start,
            context_updates={'argocd_namespace': self.namespace}
        )
