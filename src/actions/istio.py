"""Istio service mesh install action."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult, run_command
from config import DriverConfig

logger = logging.getLogger(__name__)


@dataclass
class IstioInstallAction:
    """Install the Istio control plane with istioctl.

    Namespaces opt in to sidecar injection through their labels, which
    the apply orchestrator sets; this action only installs the mesh.
    """
    name: str
    profile: Optional[str] = None  # None = config.istio_profile
    istioctl: str = 'istioctl'
    timeout: int = 600

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        """Run istioctl install."""
        start = time.time()

        profile = self.profile or config.istio_profile
        cmd = [self.istioctl, 'install', '--set', f'profile={profile}', '-y']
        kube_context = context.get('kube_context', config.context)
        if kube_context:
            cmd += ['--context', kube_context]

        logger.info(f"[{self.name}] Installing Istio (profile={profile})...")
        rc, _, err = run_command(cmd, timeout=self.timeout)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"istioctl install failed: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Istio installed with profile {profile}",
            duration=time.time() - start
        )
