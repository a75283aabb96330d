"""Tests for provision.cluster module (kubectl-backed cluster handle)."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from provision.cluster import (
    ClusterHandle,
    KubectlCluster,
    RejectedApplyError,
    TransientApplyError,
    classify_failure,
)


class TestClassifyFailure:
    """Tests for failure classification."""

    @pytest.mark.parametrize('stderr', [
        'The connection to the server localhost:8443 was refused - did you specify the right host or port?: connection refused',
        'Unable to connect to the server: dial tcp 192.168.49.2:8443: i/o timeout',
        'Error from server (ServiceUnavailable): the server is currently unable to handle the request',
        'Error from server (TooManyRequests): please try again later',
        'net/http: TLS handshake timeout',
        'etcdserver: request timed out',
    ])
    def test_transient(self, stderr):
        assert isinstance(classify_failure(1, stderr), TransientApplyError)

    def test_command_timeout_is_transient(self):
        assert isinstance(classify_failure(-1, 'Command timed out after 60s'), TransientApplyError)

    @pytest.mark.parametrize('stderr', [
        'The Deployment "frontend" is invalid: spec.template.spec.containers[0].image: Required value',
        'Error from server (Forbidden): secrets is forbidden: User "dev" cannot create resource',
        'error: unable to recognize "STDIN": no matches for kind "VirtualService" in version "networking.istio.io/v1alpha3"',
    ])
    def test_rejected(self, stderr):
        assert isinstance(classify_failure(1, stderr), RejectedApplyError)

    def test_empty_stderr_message(self):
        err = classify_failure(2, '')
        assert 'exited with code 2' in str(err)


class TestKubectlCluster:
    """Tests for KubectlCluster command construction."""

    def test_satisfies_protocol(self):
        assert isinstance(KubectlCluster(), ClusterHandle)

    def test_apply_pipes_manifest(self):
        cluster = KubectlCluster(context='minikube')
        with patch('provision.cluster.run_command',
                   return_value=(0, 'deployment.apps/frontend created\n', '')) as mock_run:
            message = cluster.apply_resource('kind: Deployment\n', timeout=30)

        assert message == 'deployment.apps/frontend created'
        cmd = mock_run.call_args[0][0]
        assert cmd == ['kubectl', '--context', 'minikube', 'apply', '-f', '-']
        assert mock_run.call_args[1]['input_text'] == 'kind: Deployment\n'
        assert mock_run.call_args[1]['timeout'] == 30

    def test_apply_dry_run_flag(self):
        cluster = KubectlCluster(dry_run=True)
        with patch('provision.cluster.run_command', return_value=(0, 'ok', '')) as mock_run:
            cluster.apply_resource('kind: Secret\n')
        assert mock_run.call_args[0][0][-1] == '--dry-run=server'

    def test_apply_rejected(self):
        with patch('provision.cluster.run_command', return_value=(1, '', 'admission webhook denied the request')):
            with pytest.raises(RejectedApplyError) as exc_info:
                KubectlCluster().apply_resource('kind: Secret\n')
        assert 'admission webhook' in str(exc_info.value)

    def test_apply_transient(self):
        with patch('provision.cluster.run_command',
                   return_value=(1, '', 'Unable to connect to the server: EOF')):
            with pytest.raises(TransientApplyError):
                KubectlCluster().apply_resource('kind: Secret\n')

    def test_create_namespace_with_labels(self):
        cluster = KubectlCluster()
        with patch('provision.cluster.run_command',
                   side_effect=[(0, 'namespace/dev created\n', ''), (0, 'namespace/dev labeled', '')]) as mock_run:
            message = cluster.create_namespace('dev', {'istio-injection': 'enabled'})

        assert message == 'namespace/dev created'
        assert mock_run.call_args_list[0][0][0] == ['kubectl', 'create', 'namespace', 'dev']
        assert mock_run.call_args_list[1][0][0] == [
            'kubectl', 'label', 'namespace', 'dev', 'istio-injection=enabled', '--overwrite',
        ]

    def test_existing_namespace_is_success(self):
        cluster = KubectlCluster()
        err = 'Error from server (AlreadyExists): namespaces "dev" already exists'
        with patch('provision.cluster.run_command', return_value=(1, '', err)) as mock_run:
            message = cluster.create_namespace('dev')

        assert message == 'namespace/dev unchanged'
        assert mock_run.call_count == 1

    def test_namespace_label_skipped_in_dry_run(self):
        cluster = KubectlCluster(dry_run=True)
        with patch('provision.cluster.run_command', return_value=(0, 'namespace/dev created (server dry run)', '')) as mock_run:
            cluster.create_namespace('dev', {'istio-injection': 'enabled'})
        assert mock_run.call_count == 1
        assert mock_run.call_args[0][0][-1] == '--dry-run=server'

    def test_namespace_create_failure(self):
        with patch('provision.cluster.run_command', return_value=(1, '', 'forbidden')):
            with pytest.raises(RejectedApplyError):
                KubectlCluster().create_namespace('dev')
