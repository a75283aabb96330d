"""Tests for bootstrap.py - local cluster bring-up."""

import sys
from pathlib import Path
from unittest.mock import patch

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from bootstrap import ClusterBootstrap
from common import ActionResult
from config import DriverConfig
from reporting import ApplyReport


def _ok(**updates):
    return ActionResult(success=True, message='ok', context_updates=updates)


class TestPhases:
    """Tests for phase selection."""

    def test_default_phases(self):
        phases = ClusterBootstrap(DriverConfig()).get_phases()
        assert [name for name, _, _ in phases] == ['start_cluster', 'install_istio', 'install_argocd']

    def test_fresh_and_chart(self, tmp_path):
        bootstrap = ClusterBootstrap(DriverConfig(), chart_dir=tmp_path / 'app', fresh=True)
        names = [name for name, _, _ in bootstrap.get_phases()]
        assert names[0] == 'delete_cluster'
        assert names[-1] == 'create_chart'

    def test_config_flows_into_actions(self):
        config = DriverConfig(minikube_driver='kvm2', istio_profile='minimal')
        phases = dict((name, action) for name, action, _ in ClusterBootstrap(config, profile='envs').get_phases())
        assert phases['start_cluster'].driver == 'kvm2'
        assert phases['start_cluster'].profile == 'envs'
        assert phases['install_istio'].profile == 'minimal'

    def test_preview(self, capsys):
        assert ClusterBootstrap(DriverConfig()).preview() is True
        out = capsys.readouterr().out
        assert 'DRY-RUN' in out
        assert 'IstioInstallAction' in out


class TestRun:
    """Tests for running the phases."""

    def test_all_pass_threads_context(self):
        bootstrap = ClusterBootstrap(DriverConfig())
        with patch('bootstrap.MinikubeStartAction.run', return_value=_ok(kube_context='minikube')), \
             patch('bootstrap.IstioInstallAction.run', return_value=_ok()) as istio_run, \
             patch('bootstrap.ArgoCDInstallAction.run', return_value=_ok(argocd_namespace='argocd')):
            success, results = bootstrap.run()

        assert success
        assert [name for name, _ in results] == ['start_cluster', 'install_istio', 'install_argocd']
        assert istio_run.call_args[0][1] == {'kube_context': 'minikube'}
        assert bootstrap.context == {'kube_context': 'minikube', 'argocd_namespace': 'argocd'}

    def test_action_cannot_mutate_shared_context(self):
        """Only context_updates of a passing phase reach later phases."""
        def meddle(config, context):
            context['kube_context'] = 'hijacked'
            return _ok()

        bootstrap = ClusterBootstrap(DriverConfig())
        with patch('bootstrap.MinikubeStartAction.run', return_value=_ok(kube_context='minikube')), \
             patch('bootstrap.IstioInstallAction.run', side_effect=meddle), \
             patch('bootstrap.ArgoCDInstallAction.run', return_value=_ok()) as argocd_run:
            success, _ = bootstrap.run()

        assert success
        assert argocd_run.call_args[0][1] == {'kube_context': 'minikube'}
        assert bootstrap.context == {'kube_context': 'minikube'}

    def test_stops_at_first_failure(self):
        bootstrap = ClusterBootstrap(DriverConfig())
        failed = ActionResult(success=False, message='istioctl install failed')
        with patch('bootstrap.MinikubeStartAction.run', return_value=_ok()), \
             patch('bootstrap.IstioInstallAction.run', return_value=failed), \
             patch('bootstrap.ArgoCDInstallAction.run') as argocd_run:
            success, results = bootstrap.run()

        assert not success
        assert len(results) == 2
        argocd_run.assert_not_called()

    def test_exception_becomes_failure(self):
        bootstrap = ClusterBootstrap(DriverConfig())
        with patch('bootstrap.MinikubeStartAction.run', side_effect=RuntimeError('docker socket missing')):
            success, results = bootstrap.run()

        assert not success
        assert results[0][1].message == 'docker socket missing'

    def test_records_report(self, tmp_path):
        report = ApplyReport(environment='minikube', graph_id='', report_dir=tmp_path,
                             action='cluster-up')
        bootstrap = ClusterBootstrap(DriverConfig(), report=report)
        with patch('bootstrap.MinikubeStartAction.run', return_value=_ok()), \
             patch('bootstrap.IstioInstallAction.run', return_value=_ok()), \
             patch('bootstrap.ArgoCDInstallAction.run', return_value=_ok()):
            bootstrap.run()

        assert [e.name for e in report.entries] == ['start_cluster', 'install_istio', 'install_argocd']
        assert report.success
        assert list(tmp_path.glob('*.minikube.passed.json'))

    def test_teardown(self):
        with patch('actions.minikube.run_command', return_value=(0, '', '')) as mock_run:
            result = ClusterBootstrap(DriverConfig(), profile='envs').teardown()
        assert result.success
        assert mock_run.call_args[0][0] == ['minikube', 'delete', '-p', 'envs']
