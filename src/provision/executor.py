"""Apply orchestrator for environment provisioning.

Applies a resource graph to a cluster handle tier by tier. Every resource
is rendered before the first apply, so a template error never leaves a
half-applied environment behind. Within a tier, resources whose
dependencies have all settled are dispatched together (on a bounded thread
pool when more than one worker is configured); the pool is joined before
the next wave starts.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from render import render
from resources import NamespaceResource, ResourceDescriptor

from provision.cluster import ClusterHandle, RejectedApplyError, TransientApplyError
from provision.graph import ResourceGraph
from provision.state import APPLIED, PENDING, ApplyResult, ApplyState, ResourceState

logger = logging.getLogger(__name__)


@dataclass
class ApplyOrchestrator:
    """Applies resource graphs to a cluster.

    Attributes:
        cluster: Cluster handle the resources are applied to
        max_attempts: Attempts per resource for transient failures
        backoff: Base delay in seconds; attempt n waits backoff * 2**(n-1)
        timeout: Per-call timeout passed to the cluster handle
        workers: Maximum resources applied concurrently within a tier
        sleep: Delay function (injectable for tests)
    """
    cluster: ClusterHandle
    max_attempts: int = 3
    backoff: float = 1.0
    timeout: int = 60
    workers: int = 1
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    def apply(self, graph: ResourceGraph, cancel: Optional[threading.Event] = None,
              state: Optional[ApplyState] = None) -> list[ApplyResult]:
        """Apply a graph and return one result per processed resource.

        Args:
            graph: Graph to apply
            cancel: Checked before each resource is dispatched; once set,
                nothing further is dispatched and partial results are returned
            state: Optional state tracker to record progress into

        Returns:
            ApplyResults in graph order

        Raises:
            RenderError: If any resource fails to render (nothing is applied)
        """
        manifests = {r.identity: render(r) for r in graph}

        if state is None:
            state = ApplyState(graph.environment, graph.graph_id)
        for resource in graph:
            state.add_resource(resource.identity, resource.kind)

        logger.info(f"Applying graph {graph.graph_id} for '{graph.environment}' "
                    f"({len(graph)} resources)")
        state.start()

        for tier, members in graph.tiers():
            if self._cancelled(cancel):
                break
            logger.debug(f"Tier {tier}: {', '.join(r.identity for r in members)}")
            self._apply_tier(graph, members, manifests, state, cancel)

        if self._cancelled(cancel):
            state.cancelled = True
            logger.warning(f"Apply of '{graph.environment}' cancelled")

        state.finish()
        results = state.results()
        applied = sum(1 for r in results if r.applied)
        logger.info(f"Applied {applied}/{len(graph)} resources for '{graph.environment}'")
        return results

    @staticmethod
    def _cancelled(cancel: Optional[threading.Event]) -> bool:
        return cancel is not None and cancel.is_set()

    def _blocked_by(self, graph: ResourceGraph, resource: ResourceDescriptor,
                    state: ApplyState) -> Optional[str]:
        """Name the first dependency that settled without being applied."""
        for dep in graph.depends_on(resource.identity):
            dep_state = state.get(dep)
            if dep_state.is_terminal and dep_state.status != APPLIED:
                return f"dependency {dep} was {dep_state.status}"
        return None

    def _apply_tier(self, graph: ResourceGraph, members: list[ResourceDescriptor],
                    manifests: dict[str, str], state: ApplyState,
                    cancel: Optional[threading.Event]) -> None:
        """Apply one tier in waves until every member has settled."""
        pending = list(members)
        while pending:
            wave = []
            waiting = []
            for resource in pending:
                deps = [state.get(d) for d in graph.depends_on(resource.identity)]
                if all(d.is_terminal for d in deps):
                    wave.append(resource)
                else:
                    waiting.append(resource)

            ready = []
            for resource in wave:
                reason = self._blocked_by(graph, resource, state)
                if reason:
                    state.get(resource.identity).skip(reason)
                    logger.warning(f"Skipping {resource.identity}: {reason}")
                else:
                    ready.append(resource)

            self._dispatch_wave(ready, manifests, state, cancel)
            if self._cancelled(cancel):
                return
            pending = waiting

    def _dispatch_wave(self, ready: list[ResourceDescriptor], manifests: dict[str, str],
                       state: ApplyState, cancel: Optional[threading.Event]) -> None:
        if self.workers == 1 or len(ready) <= 1:
            for resource in ready:
                if self._cancelled(cancel):
                    return
                self._apply_one(resource, manifests[resource.identity],
                                state.get(resource.identity))
            return

        with ThreadPoolExecutor(max_workers=min(self.workers, len(ready))) as pool:
            futures = []
            for resource in ready:
                if self._cancelled(cancel):
                    break
                futures.append(pool.submit(self._apply_one, resource,
                                           manifests[resource.identity],
                                           state.get(resource.identity)))
            for future in futures:
                future.result()

    def _call_cluster(self, resource: ResourceDescriptor, manifest: str) -> str:
        if isinstance(resource, NamespaceResource):
            return self.cluster.create_namespace(resource.name, dict(resource.labels),
                                                 self.timeout)
        return self.cluster.apply_resource(manifest, self.timeout)

    def _apply_one(self, resource: ResourceDescriptor, manifest: str,
                   resource_state: ResourceState) -> None:
        """Apply a single resource, retrying transient failures."""
        if resource_state.status != PENDING:
            return

        for attempt in range(1, self.max_attempts + 1):
            resource_state.start()
            try:
                message = self._call_cluster(resource, manifest)
            except TransientApplyError as e:
                if attempt < self.max_attempts:
                    delay = self.backoff * 2 ** (attempt - 1)
                    logger.warning(f"{resource.identity}: {e} (attempt {attempt}/"
                                   f"{self.max_attempts}, retrying in {delay:.1f}s)")
                    self.sleep(delay)
                    continue
                resource_state.fail(f"{e} (gave up after {attempt} attempts)")
                logger.error(f"Failed {resource.identity}: {resource_state.error}")
                return
            except RejectedApplyError as e:
                resource_state.fail(str(e))
                logger.error(f"Rejected {resource.identity}: {e}")
                return
            except Exception as e:
                resource_state.fail(f"{type(e).__name__}: {e}")
                logger.exception(f"Unexpected error applying {resource.identity}")
                return

            resource_state.complete(message)
            logger.info(f"Applied {resource.identity}")
            return
