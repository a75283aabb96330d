"""Minikube cluster lifecycle actions."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult, run_command
from config import DriverConfig

logger = logging.getLogger(__name__)


@dataclass
class MinikubeDeleteAction:
    """Delete a minikube profile. Deleting an absent profile succeeds."""
    name: str
    profile: str = 'minikube'
    timeout: int = 300

    def run(self, _config: DriverConfig, _context: dict) -> ActionResult:
        """Run minikube delete."""
        start = time.time()

        logger.info(f"[{self.name}] Deleting minikube profile '{self.profile}'...")
        rc, _, err = run_command(['minikube', 'delete', '-p', self.profile], timeout=self.timeout)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"minikube delete failed: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Deleted profile {self.profile}",
            duration=time.time() - start
        )


@dataclass
class MinikubeStartAction:
    """Start (or resume) a minikube cluster."""
    name: str
    driver: Optional[str] = None  # None = config.minikube_driver
    profile: str = 'minikube'
    timeout: int = 900

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        """Run minikube start and record the kube context it creates."""
        start = time.time()

        driver = self.driver or config.minikube_driver
        logger.info(f"[{self.name}] Starting minikube (driver={driver}, profile={self.profile})...")
        rc, _, err = run_command(
            ['minikube', 'start', f'--driver={driver}', '-p', self.profile],
            timeout=self.timeout,
        )

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"minikube start failed: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Cluster '{self.profile}' running on {driver}",
            duration=time.time() - start,
            context_updates={'kube_context': self.profile}
        )
