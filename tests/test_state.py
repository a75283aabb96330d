"""Tests for provision.state module."""

import json
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from provision.state import (
    APPLIED,
    APPLYING,
    FAILED,
    PENDING,
    SKIPPED,
    ApplyResult,
    ApplyState,
    ResourceState,
    all_applied,
)


class TestResourceState:
    """Tests for the per-resource state machine."""

    def test_initial_state(self):
        state = ResourceState(identity='Namespace/dev', kind='Namespace')
        assert state.status == PENDING
        assert state.attempts == 0
        assert not state.is_terminal

    def test_apply_path(self):
        state = ResourceState(identity='Namespace/dev', kind='Namespace')
        state.start()
        assert state.status == APPLYING
        state.complete('namespace/dev created')
        assert state.status == APPLIED
        assert state.message == 'namespace/dev created'
        assert state.is_terminal
        assert state.duration is not None

    def test_retry_counts_attempts(self):
        state = ResourceState(identity='Secret/dev/s', kind='Secret')
        state.start()
        state.start()
        state.fail('connection refused')
        assert state.attempts == 2
        assert state.status == FAILED
        assert state.error == 'connection refused'

    def test_skip_from_pending(self):
        state = ResourceState(identity='Deployment/dev/web', kind='Deployment')
        state.skip('dependency Secret/dev/s was failed')
        assert state.status == SKIPPED
        assert state.attempts == 0

    def test_cannot_skip_after_start(self):
        state = ResourceState(identity='Deployment/dev/web', kind='Deployment')
        state.start()
        with pytest.raises(ValueError):
            state.skip('late')

    def test_cannot_complete_without_start(self):
        state = ResourceState(identity='Deployment/dev/web', kind='Deployment')
        with pytest.raises(ValueError):
            state.complete()

    def test_terminal_is_final(self):
        state = ResourceState(identity='Deployment/dev/web', kind='Deployment')
        state.start()
        state.complete()
        with pytest.raises(ValueError):
            state.start()
        with pytest.raises(ValueError):
            state.fail('boom')

    def test_to_result(self):
        state = ResourceState(identity='Secret/dev/s', kind='Secret')
        state.start()
        state.fail('invalid')
        result = state.to_result()
        assert result == ApplyResult(identity='Secret/dev/s', kind='Secret', status=FAILED,
                                     reason='invalid', attempts=1, duration=result.duration)
        assert result.failed

    def test_to_result_requires_terminal(self):
        with pytest.raises(ValueError):
            ResourceState(identity='Secret/dev/s', kind='Secret').to_result()

    def test_dict_roundtrip(self):
        state = ResourceState(identity='Secret/dev/s', kind='Secret')
        state.start()
        state.complete('secret/s created')
        assert ResourceState.from_dict(state.to_dict()) == state


class TestApplyResult:
    """Tests for ApplyResult."""

    def test_frozen(self):
        result = ApplyResult(identity='Namespace/dev', kind='Namespace', status=APPLIED)
        with pytest.raises(AttributeError):
            result.status = FAILED

    def test_to_dict_omits_empty(self):
        d = ApplyResult(identity='Namespace/dev', kind='Namespace', status=APPLIED,
                        attempts=1, duration=0.1234).to_dict()
        assert d == {'identity': 'Namespace/dev', 'kind': 'Namespace', 'status': APPLIED,
                     'attempts': 1, 'duration': 0.12}

    def test_all_applied(self):
        ok = ApplyResult(identity='a', kind='Namespace', status=APPLIED)
        skipped = ApplyResult(identity='b', kind='Secret', status=SKIPPED, reason='x')
        assert all_applied([ok])
        assert not all_applied([ok, skipped])


class TestApplyState:
    """Tests for run-level state and persistence."""

    def test_results_only_terminal_in_order(self, tmp_path):
        state = ApplyState('dev', 'abc123', states_dir=tmp_path)
        first = state.add_resource('Namespace/dev', 'Namespace')
        state.add_resource('Secret/dev/s', 'Secret')
        third = state.add_resource('Deployment/dev/web', 'Deployment')
        third.skip('cancelled')
        first.start()
        first.complete()

        assert [r.identity for r in state.results()] == ['Namespace/dev', 'Deployment/dev/web']

    def test_get_unknown(self, tmp_path):
        with pytest.raises(KeyError):
            ApplyState('dev', 'abc', states_dir=tmp_path).get('Namespace/nope')

    def test_save_and_load(self, tmp_path):
        state = ApplyState('dev', 'abc123', action='rollback', states_dir=tmp_path)
        ns = state.add_resource('Namespace/dev', 'Namespace')
        state.start()
        ns.start()
        ns.complete('namespace/dev created')
        state.cancelled = True
        state.finish()

        path = state.save()
        assert path == tmp_path / 'dev' / 'apply.json'
        data = json.loads(path.read_text())
        assert data['graph_id'] == 'abc123'
        assert data['action'] == 'rollback'
        assert data['cancelled'] is True

        loaded = ApplyState.load('dev', states_dir=tmp_path)
        assert loaded.graph_id == 'abc123'
        assert loaded.action == 'rollback'
        assert loaded.cancelled is True
        assert loaded.get('Namespace/dev').status == APPLIED

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ApplyState.load('dev', states_dir=tmp_path)
