"""Cluster handles: the boundary between the orchestrator and a cluster.

The orchestrator only needs two capabilities: create a namespace and apply
a rendered manifest. KubectlCluster provides them by shelling out to
kubectl and maps failures onto two error classes: transient (worth a
retry) and rejected (the cluster refused the manifest).
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from common import run_command

logger = logging.getLogger(__name__)

# stderr fragments that indicate the cluster was unavailable, not that it
# rejected what we sent
TRANSIENT_MARKERS = (
    'timed out',
    'connection refused',
    'connection reset',
    'i/o timeout',
    'unable to connect to the server',
    'tls handshake timeout',
    'serviceunavailable',
    'service unavailable',
    'toomanyrequests',
    'too many requests',
    'etcdserver: request timed out',
    'the server is currently unable to handle the request',
    'unexpected eof',
)


class ApplyError(Exception):
    """Base for errors raised while applying a resource."""


class TransientApplyError(ApplyError):
    """Network or availability problem; the apply may succeed on retry."""


class RejectedApplyError(ApplyError):
    """The cluster rejected the manifest; retrying will not help."""


@runtime_checkable
class ClusterHandle(Protocol):
    """Capabilities the orchestrator needs from a cluster."""

    def create_namespace(self, name: str, labels: Optional[dict] = None,
                         timeout: int = 60) -> str:
        """Create (or update) a namespace. Returns a short outcome message."""

    def apply_resource(self, manifest: str, timeout: int = 60) -> str:
        """Apply one rendered manifest. Returns a short outcome message."""


def classify_failure(rc: int, stderr: str) -> ApplyError:
    """Map a failed kubectl invocation onto a transient or rejected error."""
    message = stderr.strip() or f'kubectl exited with code {rc}'
    lowered = message.lower()
    if rc == -1 or any(marker in lowered for marker in TRANSIENT_MARKERS):
        return TransientApplyError(message)
    return RejectedApplyError(message)


class KubectlCluster:
    """ClusterHandle backed by the kubectl CLI.

    Args:
        kubectl: kubectl binary name or path
        context: kubeconfig context (None = current context)
        dry_run: Pass --dry-run=server so nothing is persisted
    """

    def __init__(self, kubectl: str = 'kubectl', context: Optional[str] = None,
                 dry_run: bool = False):
        self.kubectl = kubectl
        self.context = context
        self.dry_run = dry_run

    def _base(self) -> list[str]:
        cmd = [self.kubectl]
        if self.context:
            cmd += ['--context', self.context]
        return cmd

    def _dry_run_args(self) -> list[str]:
        return ['--dry-run=server'] if self.dry_run else []

    def create_namespace(self, name: str, labels: Optional[dict] = None,
                         timeout: int = 60) -> str:
        """Create a namespace; an existing namespace counts as success.

        Labels (e.g. istio-injection=enabled) are applied with --overwrite
        so re-running is idempotent.
        """
        cmd = self._base() + ['create', 'namespace', name] + self._dry_run_args()
        rc, out, err = run_command(cmd, timeout=timeout)
        if rc != 0:
            if 'alreadyexists' in err.lower().replace(' ', ''):
                out = f'namespace/{name} unchanged'
            else:
                raise classify_failure(rc, err)

        # A server-side dry run does not persist the namespace, so there is
        # nothing to label yet
        if labels and not self.dry_run:
            pairs = [f'{k}={v}' for k, v in sorted(labels.items())]
            cmd = (self._base() + ['label', 'namespace', name] + pairs
                   + ['--overwrite'] + self._dry_run_args())
            rc, _, err = run_command(cmd, timeout=timeout)
            if rc != 0:
                raise classify_failure(rc, err)

        return out.strip() or f'namespace/{name} created'

    def apply_resource(self, manifest: str, timeout: int = 60) -> str:
        """Pipe a manifest to ``kubectl apply -f -``."""
        cmd = self._base() + ['apply', '-f', '-'] + self._dry_run_args()
        rc, out, err = run_command(cmd, timeout=timeout, input_text=manifest)
        if rc != 0:
            raise classify_failure(rc, err)
        return out.strip()
