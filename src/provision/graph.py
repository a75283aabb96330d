"""Graph module for environment provisioning.

Builds an ordered resource graph from an EnvironmentSpec. The order is
strict: namespaces, then secrets/config, then workloads, then
networking/mesh, then GitOps applications. Later resources reference
earlier ones by name, so the order is an invariant of the graph, checked
when the graph is constructed.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from environment import EnvironmentSpec, ServiceSpec, SpecError
from render import MESH_INJECT_ANNOTATION
from resources import (
    ApplicationResource,
    ConfigMapResource,
    DeploymentResource,
    NamespaceResource,
    ResourceDescriptor,
    SecretResource,
    ServiceResource,
    StatefulSetResource,
    VirtualServiceResource,
    WorkloadResource,
    resource_from_dict,
)

logger = logging.getLogger(__name__)

MESH_INJECTION_LABEL = 'istio-injection'


@dataclass(frozen=True)
class ResourceGraph:
    """Ordered, dependency-annotated set of resources for one environment.

    Attributes:
        environment: Environment name the graph was built for
        resources: Descriptors in apply order (tier never decreases)
        dependencies: identity -> identities that must be applied first
    """
    environment: str
    resources: tuple[ResourceDescriptor, ...]
    dependencies: dict = field(default_factory=dict)

    def __post_init__(self):
        seen: dict[str, int] = {}
        last_tier = -1
        for index, resource in enumerate(self.resources):
            if resource.identity in seen:
                raise ValueError(f"Duplicate resource in graph: {resource.identity}")
            if resource.tier < last_tier:
                raise ValueError(
                    f"{resource.identity} (tier {resource.tier}) is ordered after tier {last_tier}"
                )
            last_tier = resource.tier
            seen[resource.identity] = index

        for identity, deps in self.dependencies.items():
            if identity not in seen:
                raise ValueError(f"Dependencies declared for unknown resource {identity}")
            for dep in deps:
                if dep not in seen:
                    raise ValueError(f"{identity} depends on unknown resource {dep}")
                if seen[dep] >= seen[identity]:
                    raise ValueError(f"{identity} depends on {dep}, which is not applied before it")

    def __len__(self) -> int:
        return len(self.resources)

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self.resources)

    @property
    def identities(self) -> list[str]:
        return [r.identity for r in self.resources]

    def get(self, identity: str) -> ResourceDescriptor:
        """Get a descriptor by identity.

        Raises:
            KeyError: If identity is not in the graph
        """
        for resource in self.resources:
            if resource.identity == identity:
                return resource
        raise KeyError(identity)

    def depends_on(self, identity: str) -> tuple[str, ...]:
        return tuple(self.dependencies.get(identity, ()))

    def tiers(self) -> list[tuple[int, list[ResourceDescriptor]]]:
        """Group resources by tier, preserving graph order."""
        grouped: list[tuple[int, list[ResourceDescriptor]]] = []
        for resource in self.resources:
            if grouped and grouped[-1][0] == resource.tier:
                grouped[-1][1].append(resource)
            else:
                grouped.append((resource.tier, [resource]))
        return grouped

    @property
    def graph_id(self) -> str:
        """Content hash identifying this graph (first 12 hex chars of sha256)."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()[:12]

    def to_dict(self) -> dict:
        return {
            'environment': self.environment,
            'resources': [r.to_dict() for r in self.resources],
            'dependencies': {k: list(v) for k, v in self.dependencies.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceGraph':
        return cls(
            environment=data['environment'],
            resources=tuple(resource_from_dict(r) for r in data.get('resources', [])),
            dependencies={k: tuple(v) for k, v in (data.get('dependencies') or {}).items()},
        )


def validate_references(spec: EnvironmentSpec) -> None:
    """Check every cross-reference in the environment before anything is built.

    Checks for:
    - Duplicate namespaces and duplicate names per kind and namespace
    - References to undeclared namespaces
    - Env bindings to undeclared credential sets/keys or config sets/keys
    - GitOps destination in an undeclared namespace

    Raises:
        SpecError: Naming the first offending reference
    """
    declared = set()
    for ns in spec.namespaces:
        if ns in declared:
            raise SpecError(f"Environment '{spec.name}' declares namespace '{ns}' twice")
        declared.add(ns)

    def _check_namespace(what: str, namespace: str) -> None:
        if not namespace:
            raise SpecError(f"{what} has no namespace and the environment declares none")
        if namespace not in declared:
            raise SpecError(f"{what} references undeclared namespace '{namespace}'")

    def _check_unique(what: str, items) -> None:
        seen: set[tuple[str, str]] = set()
        for item in items:
            key = (item.namespace, item.name)
            if key in seen:
                raise SpecError(f"Duplicate {what} '{item.name}' in namespace '{item.namespace}'")
            seen.add(key)

    for cred in spec.credentials:
        _check_namespace(f"Credential set '{cred.name}'", cred.namespace)
    for cfg in spec.configs:
        _check_namespace(f"Config set '{cfg.name}'", cfg.namespace)
    for svc in spec.services:
        _check_namespace(f"Service '{svc.name}'", svc.namespace)

    _check_unique('credential set', spec.credentials)
    _check_unique('config set', spec.configs)
    _check_unique('service', spec.services)

    credentials = {(c.namespace, c.name): c for c in spec.credentials}
    configs = {(c.namespace, c.name): c for c in spec.configs}
    for svc in spec.services:
        for binding in svc.env:
            if binding.secret:
                cred = credentials.get((svc.namespace, binding.secret))
                if cred is None:
                    raise SpecError(
                        f"Service '{svc.name}' env '{binding.name}' references undeclared "
                        f"credential set '{binding.secret}' in namespace '{svc.namespace}'"
                    )
                if binding.key not in cred.data:
                    raise SpecError(
                        f"Service '{svc.name}' env '{binding.name}' references undeclared "
                        f"secret key '{binding.key}' in '{binding.secret}'"
                    )
            if binding.config:
                cfg = configs.get((svc.namespace, binding.config))
                if cfg is None:
                    raise SpecError(
                        f"Service '{svc.name}' env '{binding.name}' references undeclared "
                        f"config set '{binding.config}' in namespace '{svc.namespace}'"
                    )
                if binding.key not in cfg.data:
                    raise SpecError(
                        f"Service '{svc.name}' env '{binding.name}' references undeclared "
                        f"config key '{binding.key}' in '{binding.config}'"
                    )

    if spec.gitops is not None:
        _check_namespace(f"GitOps application '{spec.gitops.name}'",
                         spec.gitops.destination_namespace)


def _workload_for(svc: ServiceSpec, mesh_injection: bool) -> WorkloadResource:
    common = dict(
        name=svc.name,
        namespace=svc.namespace,
        image=svc.image,
        replicas=svc.replicas,
        ports=svc.ports,
        env=svc.env,
        limits=dict(svc.limits),
        requests=dict(svc.requests),
        probe=svc.probe,
        pod_annotations={MESH_INJECT_ANNOTATION: 'true'} if mesh_injection else {},
    )
    if svc.is_stateful:
        return StatefulSetResource(service_name=svc.name, volume_claim=svc.volume_claim, **common)
    return DeploymentResource(**common)


def build_graph(spec: EnvironmentSpec) -> ResourceGraph:
    """Build the resource graph for an environment.

    Deterministic: the same spec always yields the same graph in the same
    order. References are validated before any descriptor is created.

    Args:
        spec: Environment to provision

    Returns:
        ResourceGraph in apply order

    Raises:
        SpecError: If the environment references anything it does not declare
    """
    validate_references(spec)

    resources: list[ResourceDescriptor] = []
    deps: dict[str, tuple[str, ...]] = {}

    def _add(resource: ResourceDescriptor, depends_on: list[str]) -> None:
        resources.append(resource)
        deps[resource.identity] = tuple(dict.fromkeys(depends_on))

    ns_ids = {}
    for ns in spec.namespaces:
        labels = {MESH_INJECTION_LABEL: 'enabled'} if spec.mesh_injection else {}
        resource = NamespaceResource(name=ns, labels=labels)
        ns_ids[ns] = resource.identity
        _add(resource, [])

    for cred in spec.credentials:
        _add(SecretResource(name=cred.name, namespace=cred.namespace, data=dict(cred.data)),
             [ns_ids[cred.namespace]])

    for cfg in spec.configs:
        _add(ConfigMapResource(name=cfg.name, namespace=cfg.namespace, data=dict(cfg.data)),
             [ns_ids[cfg.namespace]])

    workload_ids: dict[tuple[str, str], str] = {}
    for svc in spec.services:
        workload = _workload_for(svc, spec.mesh_injection)
        depends = [ns_ids[svc.namespace]]
        depends += [f'Secret/{svc.namespace}/{name}' for name in workload.secret_refs]
        depends += [f'ConfigMap/{svc.namespace}/{name}' for name in workload.config_refs]
        workload_ids[(svc.namespace, svc.name)] = workload.identity
        _add(workload, depends)

    for svc in spec.services:
        target: Optional[str] = workload_ids[(svc.namespace, svc.name)]
        if svc.expose:
            service = ServiceResource(
                name=svc.name,
                namespace=svc.namespace,
                selector={'app': svc.name},
                ports=svc.ports,
                service_type=svc.service_type,
            )
            _add(service, [ns_ids[svc.namespace], target])
            target = service.identity
        if svc.traffic_split is not None:
            _add(VirtualServiceResource(
                name=svc.name,
                namespace=svc.namespace,
                hosts=svc.traffic_split.hosts,
                routes=svc.traffic_split.routes,
            ), [ns_ids[svc.namespace], target])

    if spec.gitops is not None:
        g = spec.gitops
        depends = [ns_ids[g.destination_namespace]]
        if g.namespace in ns_ids:
            depends.insert(0, ns_ids[g.namespace])
        _add(ApplicationResource(
            name=g.name,
            namespace=g.namespace,
            project=g.project,
            repo_url=g.repo_url,
            path=g.path,
            target_revision=g.target_revision,
            value_files=g.value_files,
            server=g.server,
            destination_namespace=g.destination_namespace,
            automated=g.automated,
            prune=g.prune,
            self_heal=g.self_heal,
        ), depends)

    graph = ResourceGraph(environment=spec.name, resources=tuple(resources), dependencies=deps)
    logger.debug(f"Built graph {graph.graph_id} for '{spec.name}' with {len(graph)} resources")
    return graph
