"""Tests for reporting.report module."""

import json
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from provision.state import ApplyResult
from reporting import ApplyReport


def _results():
    return [
        ApplyResult(identity='Namespace/dev', kind='Namespace', status='applied', attempts=1, duration=0.2),
        ApplyResult(identity='Secret/dev/db-secret', kind='Secret', status='failed',
                    reason='admission webhook denied', attempts=1, duration=0.1),
        ApplyResult(identity='Deployment/dev/frontend', kind='Deployment', status='skipped',
                    reason='dependency Secret/dev/db-secret was failed'),
    ]


class TestApplyReport:
    """Tests for ApplyReport output."""

    def test_failed_report_files(self, tmp_path):
        report = ApplyReport(environment='dev', graph_id='abc123def456', report_dir=tmp_path)
        report.start()
        report.add_results(_results())
        json_path, md_path = report.finish(success=False)

        assert json_path.name.endswith('.dev.failed.json')
        assert md_path.name.endswith('.dev.failed.md')
        data = json.loads(json_path.read_text())
        assert data['graph_id'] == 'abc123def456'
        assert [e['status'] for e in data['entries']] == ['applied', 'failed', 'skipped']

        markdown = md_path.read_text()
        assert '# apply: dev' in markdown
        assert '| Secret/dev/db-secret | Secret |' in markdown
        assert 'admission webhook denied' in markdown

    def test_passed_status(self, tmp_path):
        report = ApplyReport(environment='dev', graph_id='abc', report_dir=tmp_path)
        report.start()
        report.add_results(_results()[:1])
        json_path, _ = report.finish(success=True)
        assert '.passed.json' in json_path.name

    def test_cancelled_status(self, tmp_path):
        report = ApplyReport(environment='dev', graph_id='abc', report_dir=tmp_path)
        report.start()
        report.cancelled = True
        json_path, _ = report.finish(success=False)
        assert '.cancelled.json' in json_path.name

    def test_to_dict_error_is_first_failure(self, tmp_path):
        report = ApplyReport(environment='dev', graph_id='abc', report_dir=tmp_path)
        report.start()
        report.add_results(_results())
        report.finish(success=False)

        d = report.to_dict()
        assert d['success'] is False
        assert d['error'] == 'Secret/dev/db-secret: admission webhook denied'
        assert len(d['resources']) == 3
        assert 'reason' not in d['resources'][0]

    def test_phases(self, tmp_path):
        report = ApplyReport(environment='minikube', graph_id='', report_dir=tmp_path, action='cluster-up')
        report.start()
        report.add_phase('start_cluster', 'passed', duration=12.0)
        _, md_path = report.finish(success=True)

        markdown = md_path.read_text()
        assert '## Phases' in markdown
        assert '**Graph**: N/A' in markdown
        assert report.to_dict()['resources'][0]['kind'] == 'phase'
