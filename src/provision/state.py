"""Apply state management for environment provisioning.

Tracks per-resource status through the apply state machine

    pending -> applying -> applied | failed
    applying -> applying          (retry)
    pending -> skipped            (a dependency did not apply, or cancelled)

and persists the last run to disk so operators can inspect it later.
Terminal states are applied, failed and skipped; there is no rollback
state. Rolling back is a new forward apply of an earlier graph.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from config import get_base_dir

logger = logging.getLogger(__name__)

PENDING = 'pending'
APPLYING = 'applying'
APPLIED = 'applied'
FAILED = 'failed'
SKIPPED = 'skipped'

TERMINAL_STATUSES = (APPLIED, FAILED, SKIPPED)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying one resource. Never mutated after creation.

    Attributes:
        identity: Resource identity (Kind/namespace/name)
        kind: Resource kind
        status: applied, skipped or failed
        reason: Why the resource failed or was skipped
        attempts: Apply attempts made (0 when skipped)
        duration: Seconds spent applying
        message: Output reported by the cluster on success
    """
    identity: str
    kind: str
    status: str
    reason: Optional[str] = None
    attempts: int = 0
    duration: float = 0.0
    message: str = ''

    @property
    def applied(self) -> bool:
        return self.status == APPLIED

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    @property
    def skipped(self) -> bool:
        return self.status == SKIPPED

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'identity': self.identity,
            'kind': self.kind,
            'status': self.status,
            'attempts': self.attempts,
            'duration': round(self.duration, 2),
        }
        if self.reason is not None:
            d['reason'] = self.reason
        if self.message:
            d['message'] = self.message
        return d


def all_applied(results: list[ApplyResult]) -> bool:
    """True only when every resource was applied."""
    return all(r.applied for r in results)


@dataclass
class ResourceState:
    """Per-resource apply state.

    Attributes:
        identity: Resource identity
        kind: Resource kind
        status: Current status
        attempts: Number of times applying was entered
        started_at: Timestamp of the first attempt
        completed_at: Timestamp the resource reached a terminal state
        error: Failure or skip reason
        message: Cluster output on success
    """
    identity: str
    kind: str
    status: str = PENDING
    attempts: int = 0
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    message: str = ''

    def _require(self, *allowed: str, to: str) -> None:
        if self.status not in allowed:
            raise ValueError(f"{self.identity}: cannot move from {self.status} to {to}")

    def start(self) -> None:
        """Enter applying (first attempt or retry)."""
        self._require(PENDING, APPLYING, to=APPLYING)
        self.status = APPLYING
        self.attempts += 1
        if self.started_at is None:
            self.started_at = time.time()

    def complete(self, message: str = '') -> None:
        self._require(APPLYING, to=APPLIED)
        self.status = APPLIED
        self.completed_at = time.time()
        self.message = message

    def fail(self, error: str) -> None:
        self._require(APPLYING, to=FAILED)
        self.status = FAILED
        self.completed_at = time.time()
        self.error = error

    def skip(self, reason: str) -> None:
        self._require(PENDING, to=SKIPPED)
        self.status = SKIPPED
        self.completed_at = time.time()
        self.error = reason

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_result(self) -> ApplyResult:
        """Freeze a terminal state into an ApplyResult.

        Raises:
            ValueError: If the resource has not reached a terminal state
        """
        if not self.is_terminal:
            raise ValueError(f"{self.identity} is still {self.status}")
        return ApplyResult(
            identity=self.identity,
            kind=self.kind,
            status=self.status,
            reason=self.error,
            attempts=self.attempts,
            duration=self.duration or 0.0,
            message=self.message,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'identity': self.identity,
            'kind': self.kind,
            'status': self.status,
            'attempts': self.attempts,
        }
        if self.started_at is not None:
            d['started_at'] = self.started_at
        if self.completed_at is not None:
            d['completed_at'] = self.completed_at
        if self.error is not None:
            d['error'] = self.error
        if self.message:
            d['message'] = self.message
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceState':
        return cls(
            identity=data['identity'],
            kind=data['kind'],
            status=data.get('status', PENDING),
            attempts=data.get('attempts', 0),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
            message=data.get('message', ''),
        )


class ApplyState:
    """Run-level apply state with save/load.

    State is persisted to <states_dir>/<environment>/apply.json and only
    ever describes the most recent run.
    """

    def __init__(self, environment: str, graph_id: str, action: str = 'apply',
                 states_dir: Optional[Path] = None):
        """Initialize apply state.

        Args:
            environment: Environment name
            graph_id: Id of the graph being applied
            action: apply or rollback
            states_dir: Root for state files (default: <base>/.states)
        """
        self.environment = environment
        self.graph_id = graph_id
        self.action = action
        self.states_dir = Path(states_dir) if states_dir else get_base_dir() / '.states'
        self._resources: dict[str, ResourceState] = {}
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None
        self.cancelled = False

    def add_resource(self, identity: str, kind: str) -> ResourceState:
        """Register a resource for tracking."""
        state = ResourceState(identity=identity, kind=kind)
        self._resources[identity] = state
        return state

    def get(self, identity: str) -> ResourceState:
        """Get resource state by identity.

        Raises:
            KeyError: If the resource is not registered
        """
        return self._resources[identity]

    @property
    def resources(self) -> dict[str, ResourceState]:
        return dict(self._resources)

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def results(self) -> list[ApplyResult]:
        """Results for every resource that reached a terminal state, in order."""
        return [s.to_result() for s in self._resources.values() if s.is_terminal]

    def _state_path(self) -> Path:
        return self.states_dir / self.environment / 'apply.json'

    def save(self, path: Optional[Path] = None) -> Path:
        """Save state to a JSON file.

        Args:
            path: Optional override path. Default: <states_dir>/<env>/apply.json

        Returns:
            Path where state was saved
        """
        if path is None:
            path = self._state_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'environment': self.environment,
            'graph_id': self.graph_id,
            'action': self.action,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'cancelled': self.cancelled,
            'resources': [s.to_dict() for s in self._resources.values()],
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Saved apply state to {path}")
        return path

    @classmethod
    def load(cls, environment: str, states_dir: Optional[Path] = None,
             path: Optional[Path] = None) -> 'ApplyState':
        """Load the last saved run for an environment.

        Raises:
            FileNotFoundError: If no state has been saved
        """
        state = cls(environment, graph_id='', states_dir=states_dir)
        if path is None:
            path = state._state_path()

        with open(path, encoding='utf-8') as f:
            data = json.load(f)

        state.graph_id = data.get('graph_id', '')
        state.action = data.get('action', 'apply')
        state.started_at = data.get('started_at')
        state.completed_at = data.get('completed_at')
        state.cancelled = data.get('cancelled', False)
        for item in data.get('resources', []):
            resource = ResourceState.from_dict(item)
            state._resources[resource.identity] = resource

        logger.debug(f"Loaded apply state from {path}")
        return state
