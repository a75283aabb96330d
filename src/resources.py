"""Resource descriptors: kind-tagged descriptions of cluster objects.

Each descriptor carries only the fields needed to render its kind. The
tier of a kind fixes where it sits in the apply order:

    0 Namespace
    1 Secret, ConfigMap
    2 Deployment, StatefulSet
    3 Service, VirtualService
    4 Application

Descriptors are frozen; field validation happens at render time.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Optional

from environment import EnvBinding, ProbeSpec, RouteSpec, VolumeClaimSpec

TIER_NAMESPACE = 0
TIER_CONFIG = 1
TIER_WORKLOAD = 2
TIER_NETWORK = 3
TIER_GITOPS = 4

TIER_NAMES = {
    TIER_NAMESPACE: 'namespaces',
    TIER_CONFIG: 'secrets/config',
    TIER_WORKLOAD: 'workloads',
    TIER_NETWORK: 'networking/mesh',
    TIER_GITOPS: 'gitops',
}


@dataclass(frozen=True)
class ResourceDescriptor:
    """Base for all descriptors."""
    kind: ClassVar[str] = ''
    api_version: ClassVar[str] = ''
    tier: ClassVar[int] = 0
    namespaced: ClassVar[bool] = True

    name: str
    namespace: str = ''

    @property
    def identity(self) -> str:
        """Stable key: Kind/namespace/name (Kind/name when cluster-scoped)."""
        if self.namespaced:
            return f'{self.kind}/{self.namespace}/{self.name}'
        return f'{self.kind}/{self.name}'

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'kind': self.kind}
        d.update(asdict(self))
        return d

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        """Turn JSON-decoded values back into descriptor field types."""
        return fields

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceDescriptor':
        fields = {k: v for k, v in data.items() if k != 'kind'}
        return cls(**cls._coerce(fields))

    def __repr__(self) -> str:
        return f"{self.kind}({self.identity.split('/', 1)[1]})"


@dataclass(frozen=True, repr=False)
class NamespaceResource(ResourceDescriptor):
    kind: ClassVar[str] = 'Namespace'
    api_version: ClassVar[str] = 'v1'
    tier: ClassVar[int] = TIER_NAMESPACE
    namespaced: ClassVar[bool] = False

    labels: dict = field(default_factory=dict)


@dataclass(frozen=True, repr=False)
class SecretResource(ResourceDescriptor):
    """Opaque secret. ``data`` values are base64-encoded by the caller."""
    kind: ClassVar[str] = 'Secret'
    api_version: ClassVar[str] = 'v1'
    tier: ClassVar[int] = TIER_CONFIG

    data: dict = field(default_factory=dict)
    secret_type: str = 'Opaque'


@dataclass(frozen=True, repr=False)
class ConfigMapResource(ResourceDescriptor):
    kind: ClassVar[str] = 'ConfigMap'
    api_version: ClassVar[str] = 'v1'
    tier: ClassVar[int] = TIER_CONFIG

    data: dict = field(default_factory=dict)


@dataclass(frozen=True, repr=False)
class WorkloadResource(ResourceDescriptor):
    """Fields shared by Deployment and StatefulSet."""
    api_version: ClassVar[str] = 'apps/v1'
    tier: ClassVar[int] = TIER_WORKLOAD

    image: str = ''
    replicas: int = 1
    ports: tuple[int, ...] = ()
    env: tuple[EnvBinding, ...] = ()
    limits: dict = field(default_factory=dict)
    requests: dict = field(default_factory=dict)
    probe: Optional[ProbeSpec] = None
    pod_annotations: dict = field(default_factory=dict)

    @property
    def secret_refs(self) -> list[str]:
        """Names of secrets referenced by env bindings, in order, unique."""
        return list(dict.fromkeys(e.secret for e in self.env if e.secret))

    @property
    def config_refs(self) -> list[str]:
        """Names of config maps referenced by env bindings, in order, unique."""
        return list(dict.fromkeys(e.config for e in self.env if e.config))

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        fields['ports'] = tuple(fields.get('ports') or ())
        fields['env'] = tuple(EnvBinding(**e) for e in fields.get('env') or ())
        if fields.get('probe'):
            fields['probe'] = ProbeSpec(**fields['probe'])
        return fields


@dataclass(frozen=True, repr=False)
class DeploymentResource(WorkloadResource):
    kind: ClassVar[str] = 'Deployment'


@dataclass(frozen=True, repr=False)
class StatefulSetResource(WorkloadResource):
    kind: ClassVar[str] = 'StatefulSet'

    service_name: str = ''
    volume_claim: Optional[VolumeClaimSpec] = None

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        fields = super()._coerce(fields)
        claim = fields.get('volume_claim')
        if claim:
            claim = dict(claim)
            claim['access_modes'] = tuple(claim.get('access_modes') or ('ReadWriteOnce',))
            fields['volume_claim'] = VolumeClaimSpec(**claim)
        return fields


@dataclass(frozen=True, repr=False)
class ServiceResource(ResourceDescriptor):
    kind: ClassVar[str] = 'Service'
    api_version: ClassVar[str] = 'v1'
    tier: ClassVar[int] = TIER_NETWORK

    selector: dict = field(default_factory=dict)
    ports: tuple[int, ...] = ()
    service_type: str = 'ClusterIP'

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        fields['ports'] = tuple(fields.get('ports') or ())
        return fields


@dataclass(frozen=True, repr=False)
class VirtualServiceResource(ResourceDescriptor):
    kind: ClassVar[str] = 'VirtualService'
    api_version: ClassVar[str] = 'networking.istio.io/v1alpha3'
    tier: ClassVar[int] = TIER_NETWORK

    hosts: tuple[str, ...] = ()
    routes: tuple[RouteSpec, ...] = ()

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        fields['hosts'] = tuple(fields.get('hosts') or ())
        fields['routes'] = tuple(RouteSpec(**r) for r in fields.get('routes') or ())
        return fields


@dataclass(frozen=True, repr=False)
class ApplicationResource(ResourceDescriptor):
    kind: ClassVar[str] = 'Application'
    api_version: ClassVar[str] = 'argoproj.io/v1alpha1'
    tier: ClassVar[int] = TIER_GITOPS

    project: str = 'default'
    repo_url: str = ''
    path: str = ''
    target_revision: str = 'HEAD'
    value_files: tuple[str, ...] = ()
    server: str = 'https://kubernetes.default.svc'
    destination_namespace: str = ''
    automated: bool = True
    prune: bool = True
    self_heal: bool = True

    @classmethod
    def _coerce(cls, fields: dict) -> dict:
        fields['value_files'] = tuple(fields.get('value_files') or ())
        return fields


RESOURCE_TYPES: dict[str, type[ResourceDescriptor]] = {
    cls.kind: cls
    for cls in (
        NamespaceResource,
        SecretResource,
        ConfigMapResource,
        DeploymentResource,
        StatefulSetResource,
        ServiceResource,
        VirtualServiceResource,
        ApplicationResource,
    )
}


def resource_from_dict(data: dict) -> ResourceDescriptor:
    """Rebuild a descriptor from ``to_dict()`` output.

    Raises:
        ValueError: If the kind is unknown
    """
    kind = data.get('kind')
    if kind not in RESOURCE_TYPES:
        raise ValueError(f"Unknown resource kind: {kind!r}")
    return RESOURCE_TYPES[kind].from_dict(data)
