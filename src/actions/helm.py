"""Helm chart scaffolding action."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from common import ActionResult, run_command
from config import DriverConfig

logger = logging.getLogger(__name__)


@dataclass
class HelmCreateAction:
    """Create a Helm chart skeleton; an existing chart is left untouched."""
    name: str
    chart_dir: Path
    helm: str = 'helm'
    timeout: int = 120

    def run(self, _config: DriverConfig, _context: dict) -> ActionResult:
        """Run helm create."""
        start = time.time()
        chart_dir = Path(self.chart_dir)

        if (chart_dir / 'Chart.yaml').exists():
            return ActionResult(
                success=True,
                message=f"Chart already exists at {chart_dir}",
                duration=time.time() - start,
                context_updates={'chart_dir': str(chart_dir)}
            )

        chart_dir.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{self.name}] Creating chart {chart_dir}...")
        rc, _, err = run_command([self.helm, 'create', str(chart_dir)], timeout=self.timeout)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"helm create failed: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Created chart {chart_dir.name}",
            duration=time.time() - start,
            context_updates={'chart_dir': str(chart_dir)}
        )
