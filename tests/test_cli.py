"""Tests for the CLI entry point and env verb handlers.

Cluster access is replaced with a mock KubectlCluster; everything else
(config loading, graph build, rendering, state and reports) runs for real
against the config_dir fixture.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import cli
from provision.cluster import RejectedApplyError
from provision.history import GraphStore


def _mock_cluster(fail_manifest_containing=None):
    cluster = MagicMock()
    cluster.create_namespace.return_value = 'namespace created'

    def apply_resource(manifest, timeout=60):
        if fail_manifest_containing and fail_manifest_containing in manifest:
            raise RejectedApplyError('admission webhook denied')
        return 'configured'

    cluster.apply_resource.side_effect = apply_resource
    return cluster


class TestMain:
    """Tests for top-level dispatch."""

    def test_no_args_prints_usage(self, capsys):
        assert cli.main([]) == 0
        assert 'Usage: env-driver <noun> <action>' in capsys.readouterr().out

    def test_version(self, capsys):
        with patch('cli.get_version', return_value='v0.1.0'):
            assert cli.main(['--version']) == 0
        assert 'env-driver v0.1.0' in capsys.readouterr().out

    def test_unknown_noun(self, capsys):
        assert cli.main(['vm']) == 1
        assert "Unknown command 'vm'" in capsys.readouterr().out

    def test_env_without_action(self, capsys):
        assert cli.main(['env']) == 1
        out = capsys.readouterr().out
        assert 'rollback-to' in out

    def test_unknown_env_action(self, capsys):
        assert cli.main(['env', 'destroy']) == 1
        assert "Unknown env action 'destroy'" in capsys.readouterr().out

    def test_unknown_cluster_action(self):
        assert cli.main(['cluster', 'scale']) == 1


class TestValidateAndPlan:
    """Tests for verbs that never touch a cluster."""

    def test_validate_ok(self, config_dir, capsys):
        rc = cli.main(['env', 'validate', '-E', 'prod', '--config-dir', str(config_dir)])
        assert rc == 0
        assert "Environment 'prod' is valid (10 resources" in capsys.readouterr().out

    def test_validate_undeclared_namespace(self, config_dir, capsys):
        (config_dir / 'environments' / 'bad.yaml').write_text(
            "name: bad\nnamespaces: [dev]\nservices:\n"
            "  - {name: api, namespace: staging, image: 'api:1'}\n"
        )
        rc = cli.main(['env', 'validate', '-E', 'bad', '--config-dir', str(config_dir)])
        assert rc == 1
        assert "undeclared namespace 'staging'" in capsys.readouterr().err

    def test_missing_environment(self, config_dir, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['env', 'validate', '-E', 'nope', '--config-dir', str(config_dir)])
        assert exc_info.value.code == 1

    def test_validate_env_file_with_bad_replicas(self, config_dir, tmp_path, capsys):
        env_file = tmp_path / 'broken.yaml'
        env_file.write_text(
            "name: broken\nnamespaces: [dev]\nservices:\n"
            "  - {name: api, image: 'api:1', replicas: two}\n"
        )
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['env', 'validate', '--env-file', str(env_file), '--config-dir', str(config_dir)])
        assert exc_info.value.code == 1
        assert "replicas must be an integer, got 'two'" in capsys.readouterr().err

    def test_validate_env_file_with_scalar_namespaces(self, config_dir, tmp_path, capsys):
        env_file = tmp_path / 'broken.yaml'
        env_file.write_text("name: broken\nnamespaces: dev\n")
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['env', 'validate', '--env-file', str(env_file), '--config-dir', str(config_dir)])
        assert exc_info.value.code == 1
        assert 'namespaces must be a list' in capsys.readouterr().err

    def test_plan_json(self, config_dir, capsys):
        rc = cli.main(['env', 'plan', '-E', 'dev', '--config-dir', str(config_dir), '--json-output'])
        assert rc == 0
        data = json.loads(capsys.readouterr().out)
        assert [r['identity'] for r in data['resources']] == [
            'Namespace/dev', 'Secret/dev/db-secret', 'Deployment/dev/frontend',
        ]
        assert data['resources'][1]['depends_on'] == ['Namespace/dev']

    def test_plan_text(self, config_dir, capsys):
        assert cli.main(['env', 'plan', '-E', 'prod', '--config-dir', str(config_dir)]) == 0
        out = capsys.readouterr().out
        assert 'tier 3:' in out
        assert 'VirtualService/prod/frontend (after Namespace/prod, Service/prod/frontend)' in out

    def test_render(self, config_dir, tmp_path, capsys):
        out_dir = tmp_path / 'project'
        rc = cli.main(['env', 'render', '-E', 'dev', '--config-dir', str(config_dir), '-o', str(out_dir)])
        assert rc == 0
        assert (out_dir / 'kubernetes' / 'deployment-frontend.yaml').exists()
        assert (out_dir / 'README.md').exists()


class TestApply:
    """Tests for apply, history and rollback-to."""

    def _apply(self, config_dir, *extra, cluster=None):
        with patch('provision.cli.KubectlCluster', return_value=cluster or _mock_cluster()) as mock_cls:
            rc = cli.main(['env', 'apply', '-E', 'dev', '--config-dir', str(config_dir),
                           '--skip-preflight', *extra])
        return rc, mock_cls

    def test_apply_success(self, config_dir, tmp_path, capsys):
        rc, mock_cls = self._apply(config_dir, '--json-output')

        assert rc == 0
        data = json.loads(capsys.readouterr().out)
        assert data['success'] is True
        assert [r['status'] for r in data['resources']] == ['applied'] * 3
        assert mock_cls.call_args[1]['dry_run'] is False

        state = json.loads((tmp_path / 'states' / 'dev' / 'apply.json').read_text())
        assert state['graph_id'] == data['graph_id']
        assert GraphStore(tmp_path / 'states').list('dev')[0]['graph_id'] == data['graph_id']
        assert list((tmp_path / 'reports').glob('*.dev.passed.json'))

    def test_apply_failure_not_stored(self, config_dir, tmp_path, capsys):
        rc, _ = self._apply(config_dir, '--json-output',
                            cluster=_mock_cluster(fail_manifest_containing='kind: Secret'))

        assert rc == 1
        data = json.loads(capsys.readouterr().out)
        assert data['error'] == 'Secret/dev/db-secret: admission webhook denied'
        assert data['resources'][2]['status'] == 'applied'
        assert (tmp_path / 'states' / 'dev' / 'apply.json').exists()
        assert GraphStore(tmp_path / 'states').list('dev') == []

    def test_dry_run_persists_nothing(self, config_dir, tmp_path):
        rc, mock_cls = self._apply(config_dir, '--dry-run')

        assert rc == 0
        assert mock_cls.call_args[1]['dry_run'] is True
        assert not (tmp_path / 'states').exists()

    def test_preflight_failure(self, config_dir, capsys):
        with patch('provision.cli.validate_readiness', return_value=['Required tool not found: kubectl']), \
             patch('provision.cli.KubectlCluster') as mock_cls:
            rc = cli.main(['env', 'apply', '-E', 'dev', '--config-dir', str(config_dir)])
        assert rc == 1
        assert 'Pre-flight validation failed' in capsys.readouterr().out
        mock_cls.assert_not_called()

    def test_history_and_rollback(self, config_dir, capsys):
        self._apply(config_dir, '--json-output')
        graph_id = json.loads(capsys.readouterr().out)['graph_id']

        assert cli.main(['env', 'history', '-E', 'dev', '--config-dir', str(config_dir)]) == 0
        assert graph_id in capsys.readouterr().out

        cluster = _mock_cluster()
        with patch('provision.cli.KubectlCluster', return_value=cluster):
            rc = cli.main(['env', 'rollback-to', graph_id, '-E', 'dev', '--config-dir', str(config_dir),
                           '--skip-preflight', '--json-output'])
        assert rc == 0
        data = json.loads(capsys.readouterr().out)
        assert data['action'] == 'rollback'
        assert data['graph_id'] == graph_id
        assert cluster.apply_resource.call_count == 2

    def test_rollback_unknown_graph(self, config_dir, capsys):
        rc = cli.main(['env', 'rollback-to', 'ffffffffffff', '-E', 'dev', '--config-dir', str(config_dir),
                       '--skip-preflight'])
        assert rc == 1
        assert 'ffffffffffff' in capsys.readouterr().err

    def test_rollback_rejects_path_like_graph_id(self, config_dir, capsys):
        with patch('provision.cli.KubectlCluster') as mock_cls:
            rc = cli.main(['env', 'rollback-to', '../../etc/passwd', '-E', 'dev',
                           '--config-dir', str(config_dir), '--skip-preflight'])
        assert rc == 1
        assert "Invalid graph id '../../etc/passwd'" in capsys.readouterr().err
        mock_cls.assert_not_called()

    def test_history_empty(self, config_dir, capsys):
        assert cli.main(['env', 'history', '-E', 'dev', '--config-dir', str(config_dir)]) == 0
        assert "No applied graphs stored for 'dev'" in capsys.readouterr().out


class TestCluster:
    """Tests for cluster up/down."""

    def test_up_dry_run(self, config_dir, capsys):
        rc = cli.main(['cluster', 'up', '--dry-run', '--config-dir', str(config_dir)])
        assert rc == 0
        assert 'DRY-RUN: cluster up' in capsys.readouterr().out

    def test_up_preflight_lists_tools(self, config_dir, capsys):
        with patch('validation.shutil.which', return_value=None):
            rc = cli.main(['cluster', 'up', '--config-dir', str(config_dir), '--chart-dir', 'helm/app'])
        assert rc == 1
        out = capsys.readouterr().out
        assert 'minikube' in out
        assert 'helm' in out

    def test_up_runs_bootstrap(self, config_dir):
        with patch('bootstrap.ClusterBootstrap.run', return_value=(True, [])) as mock_run:
            rc = cli.main(['cluster', 'up', '--config-dir', str(config_dir), '--skip-preflight'])
        assert rc == 0
        mock_run.assert_called_once()

    def test_down(self, config_dir, capsys):
        with patch('actions.minikube.run_command', return_value=(0, '', '')):
            rc = cli.main(['cluster', 'down', '--config-dir', str(config_dir)])
        assert rc == 0
        assert 'Deleted profile minikube' in capsys.readouterr().out
