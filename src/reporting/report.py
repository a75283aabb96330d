"""Apply reporting."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from provision.state import ApplyResult


@dataclass
class ReportEntry:
    """One line of a report: a resource or a bootstrap phase."""
    name: str
    kind: str
    status: str  # 'applied', 'failed', 'skipped' (or 'passed' for phases)
    reason: str = ''
    attempts: int = 0
    duration: float = 0.0


@dataclass
class ApplyReport:
    """Collects results of a run and writes JSON and markdown reports.

    Files are named <timestamp>.<environment>.<status>.{json,md} so that
    concurrent runs against different environments never collide.
    """
    environment: str
    graph_id: str
    report_dir: Path
    action: str = 'apply'
    entries: list[ReportEntry] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False
    cancelled: bool = False

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()
        self.report_dir.mkdir(parents=True, exist_ok=True)

    def add_results(self, results: list[ApplyResult]):
        """Record orchestrator results."""
        for r in results:
            self.entries.append(ReportEntry(
                name=r.identity,
                kind=r.kind,
                status=r.status,
                reason=r.reason or '',
                attempts=r.attempts,
                duration=r.duration,
            ))

    def add_phase(self, name: str, status: str, message: str = '', duration: float = 0.0):
        """Record a bootstrap phase."""
        self.entries.append(ReportEntry(
            name=name, kind='phase', status=status, reason=message, duration=duration,
        ))

    def finish(self, success: bool) -> list[Path]:
        """Finalize report and write files.

        Returns:
            Paths of the JSON and markdown reports
        """
        self.finished_at = datetime.now()
        self.success = success
        return [self._write_json(), self._write_markdown()]

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    @property
    def status(self) -> str:
        if self.cancelled:
            return 'cancelled'
        return 'passed' if self.success else 'failed'

    def _write_json(self) -> Path:
        data = {
            'environment': self.environment,
            'action': self.action,
            'graph_id': self.graph_id,
            'success': self.success,
            'cancelled': self.cancelled,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration': self.duration,
            'entries': [
                {
                    'name': e.name,
                    'kind': e.kind,
                    'status': e.status,
                    'reason': e.reason,
                    'attempts': e.attempts,
                    'duration': e.duration,
                }
                for e in self.entries
            ],
        }
        filename = self._report_filename('json')
        with open(filename, 'w', encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return filename

    def _write_markdown(self) -> Path:
        lines = [
            f"# {self.action}: {self.environment}",
            "",
            f"**Graph**: {self.graph_id or 'N/A'}",
            f"**Status**: {self.status.upper()}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Resources" if self.action != 'cluster-up' else "## Phases",
            "",
            "| Name | Kind | Status | Attempts | Duration | Reason |",
            "|------|------|--------|----------|----------|--------|",
        ]

        for e in self.entries:
            marker = {'applied': '✅', 'passed': '✅', 'failed': '❌', 'skipped': '⏭️'}.get(e.status, '❓')
            reason = e.reason.replace('|', '\\|').replace('\n', ' ')
            lines.append(
                f"| {e.name} | {e.kind} | {marker} {e.status} | {e.attempts} | {e.duration:.1f}s | {reason} |"
            )

        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])

        filename = self._report_filename('md')
        with open(filename, 'w', encoding="utf-8") as f:
            f.write('\n'.join(lines))
        return filename

    def _report_filename(self, ext: str) -> Path:
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        slug = self.environment.replace('/', '-')
        return self.report_dir / f"{timestamp}.{slug}.{self.status}.{ext}"

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        result = {
            'environment': self.environment,
            'action': self.action,
            'graph_id': self.graph_id,
            'success': self.success,
            'cancelled': self.cancelled,
            'duration_seconds': round(self.duration, 1),
            'resources': [
                {
                    'name': e.name,
                    'kind': e.kind,
                    'status': e.status,
                    'attempts': e.attempts,
                    'duration': round(e.duration, 1),
                    **({'reason': e.reason} if e.reason else {}),
                }
                for e in self.entries
            ],
        }

        if not self.success:
            for e in self.entries:
                if e.status == 'failed' and e.reason:
                    result['error'] = f"{e.name}: {e.reason}"
                    break
        return result
