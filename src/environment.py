"""Environment spec loading for declarative provisioning.

An environment file describes one deployment target (dev, prod, ...):
the namespaces it owns, the services to run, credential and config sets,
and an optional GitOps application. Credential values are never literal
defaults: they are supplied pre-encoded, either inline or by reference into
secrets.yaml (credentials.<set>.<key>).

Example environments/dev.yaml:

    name: dev
    namespaces: [dev]
    mesh:
      injection: true
    credentials:
      - name: db-secret
        keys: [username, password]
    configs:
      - name: app-config
        data: {db_host: postgres}
    services:
      - name: frontend
        image: nginx:latest
        replicas: 2
        ports: [80]
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from config import ConfigError, _load_secrets, _parse_yaml, get_config_dir

logger = logging.getLogger(__name__)


class SpecError(ConfigError):
    """Invalid or incomplete environment spec."""


def _require(data: dict, key: str, where: str) -> Any:
    if data.get(key) in (None, ''):
        raise SpecError(f"{where} missing required field: {key}")
    return data[key]


def _int(value: Any, field_name: str, where: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise SpecError(f"{where} {field_name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SpecError(f"{where} {field_name} must be an integer, got {value!r}") from None


def _list(data: dict, key: str, where: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise SpecError(f"{where} {key} must be a list, got {value!r}")
    return value


@dataclass(frozen=True)
class EnvBinding:
    """A container environment variable.

    Exactly one source is set: a literal ``value``, a secret key
    (``secret`` + ``key``) or a config key (``config`` + ``key``).
    """
    name: str
    value: Optional[str] = None
    secret: Optional[str] = None
    config: Optional[str] = None
    key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, where: str) -> 'EnvBinding':
        name = _require(data, 'name', where)
        sources = [s for s in ('value', 'secret', 'config') if data.get(s) is not None]
        if len(sources) != 1:
            raise SpecError(f"{where} env '{name}' needs exactly one of value, secret, config")
        if sources[0] != 'value' and not data.get('key'):
            raise SpecError(f"{where} env '{name}' references {sources[0]} without a key")
        value = data.get('value')
        return cls(
            name=name,
            value=str(value) if value is not None else None,
            secret=data.get('secret'),
            config=data.get('config'),
            key=data.get('key'),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'name': self.name}
        for attr in ('value', 'secret', 'config', 'key'):
            if getattr(self, attr) is not None:
                d[attr] = getattr(self, attr)
        return d


@dataclass(frozen=True)
class ProbeSpec:
    """HTTP liveness probe."""
    path: str
    port: int
    initial_delay: Optional[int] = None
    period: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict, where: str) -> 'ProbeSpec':
        return cls(
            path=_require(data, 'path', where),
            port=_int(_require(data, 'port', where), 'probe port', where),
            initial_delay=_int(data.get('initial_delay'), 'probe initial_delay', where),
            period=_int(data.get('period'), 'probe period', where),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'path': self.path, 'port': self.port}
        if self.initial_delay is not None:
            d['initial_delay'] = self.initial_delay
        if self.period is not None:
            d['period'] = self.period
        return d


@dataclass(frozen=True)
class VolumeClaimSpec:
    """Persistent volume claim template for a stateful service."""
    name: str
    mount_path: str
    storage: str = '1Gi'
    access_modes: tuple[str, ...] = ('ReadWriteOnce',)
    storage_class: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, where: str) -> 'VolumeClaimSpec':
        return cls(
            name=_require(data, 'name', where),
            mount_path=_require(data, 'mount_path', where),
            storage=str(data.get('storage', '1Gi')),
            access_modes=tuple(_list(data, 'access_modes', where) or ['ReadWriteOnce']),
            storage_class=data.get('storage_class'),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'mount_path': self.mount_path,
            'storage': self.storage,
            'access_modes': list(self.access_modes),
        }
        if self.storage_class is not None:
            d['storage_class'] = self.storage_class
        return d


@dataclass(frozen=True)
class RouteSpec:
    """One weighted destination of a mesh traffic split."""
    host: str
    weight: int
    subset: Optional[str] = None
    port: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict, where: str) -> 'RouteSpec':
        return cls(
            host=_require(data, 'host', where),
            weight=_int(_require(data, 'weight', where), 'route weight', where),
            subset=data.get('subset'),
            port=_int(data.get('port'), 'route port', where),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'host': self.host, 'weight': self.weight}
        if self.subset is not None:
            d['subset'] = self.subset
        if self.port is not None:
            d['port'] = self.port
        return d


@dataclass(frozen=True)
class TrafficSplitSpec:
    """Mesh routing rules for a service (rendered as an Istio VirtualService)."""
    routes: tuple[RouteSpec, ...]
    hosts: tuple[str, ...] = ('*',)

    @classmethod
    def from_dict(cls, data: dict, where: str) -> 'TrafficSplitSpec':
        routes = _list(data, 'routes', where)
        if not routes:
            raise SpecError(f"{where} traffic_split has no routes")
        return cls(
            routes=tuple(RouteSpec.from_dict(r, where) for r in routes),
            hosts=tuple(_list(data, 'hosts', where) or ['*']),
        )


@dataclass(frozen=True)
class ServiceSpec:
    """A declared service: one workload, optionally exposed and routed.

    Services with a volume claim are provisioned as StatefulSets,
    everything else as Deployments.
    """
    name: str
    namespace: str
    image: str
    replicas: int = 1
    ports: tuple[int, ...] = ()
    env: tuple[EnvBinding, ...] = ()
    limits: dict = field(default_factory=dict)
    requests: dict = field(default_factory=dict)
    probe: Optional[ProbeSpec] = None
    volume_claim: Optional[VolumeClaimSpec] = None
    expose: bool = False
    service_type: str = 'ClusterIP'
    traffic_split: Optional[TrafficSplitSpec] = None

    @property
    def is_stateful(self) -> bool:
        return self.volume_claim is not None

    @classmethod
    def from_dict(cls, data: dict, default_namespace: str) -> 'ServiceSpec':
        name = _require(data, 'name', 'Service')
        where = f"Service '{name}'"
        resources = data.get('resources') or {}
        probe = data.get('probe')
        claim = data.get('volume_claim')
        split = data.get('traffic_split')
        replicas = data.get('replicas')
        return cls(
            name=name,
            namespace=data.get('namespace') or default_namespace,
            image=_require(data, 'image', where),
            replicas=1 if replicas is None else _int(replicas, 'replicas', where),
            ports=tuple(_int(p, 'port', where) for p in _list(data, 'ports', where)),
            env=tuple(EnvBinding.from_dict(e, where) for e in _list(data, 'env', where)),
            limits=dict(resources.get('limits') or {}),
            requests=dict(resources.get('requests') or {}),
            probe=ProbeSpec.from_dict(probe, where) if probe else None,
            volume_claim=VolumeClaimSpec.from_dict(claim, where) if claim else None,
            expose=bool(data.get('expose', False)),
            service_type=data.get('service_type', 'ClusterIP'),
            traffic_split=TrafficSplitSpec.from_dict(split, where) if split else None,
        )


@dataclass(frozen=True)
class CredentialSet:
    """Named set of pre-encoded (base64) secret values."""
    name: str
    namespace: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ConfigSet:
    """Named set of plain configuration values."""
    name: str
    namespace: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GitOpsSpec:
    """Argo CD application pointing at a repo path for this environment.

    Attributes:
        name: Application name
        repo_url: Git repository URL
        path: Path inside the repository (e.g. helm/my-app)
        destination_namespace: Namespace the controller deploys into
        target_revision: Git revision to track
        project: Argo CD project
        namespace: Namespace holding the Application object
        server: Destination cluster API server
        value_files: Helm value files passed to the source
        automated: Enable automated sync
        prune: Prune resources removed from git (automated sync only)
        self_heal: Revert drift (automated sync only)
        chart: Helm chart directory name for the scaffolded values file
        helm_values: Values written to helm/<chart>/values-<env>.yaml
    """
    name: str
    repo_url: str
    path: str
    destination_namespace: str
    target_revision: str = 'HEAD'
    project: str = 'default'
    namespace: str = 'argocd'
    server: str = 'https://kubernetes.default.svc'
    value_files: tuple[str, ...] = ()
    automated: bool = True
    prune: bool = True
    self_heal: bool = True
    chart: Optional[str] = None
    helm_values: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict, env_name: str, default_namespace: str) -> 'GitOpsSpec':
        where = 'GitOps'
        helm = data.get('helm') or {}
        chart = helm.get('chart')
        value_files = data.get('value_files')
        if value_files is None:
            value_files = [f'values-{env_name}.yaml'] if helm.get('values') else []
        sync = data.get('sync') or {}
        return cls(
            name=data.get('name') or f'{env_name}-app',
            repo_url=_require(data, 'repo_url', where),
            path=_require(data, 'path', where),
            destination_namespace=data.get('destination_namespace') or default_namespace,
            target_revision=str(data.get('target_revision', 'HEAD')),
            project=data.get('project', 'default'),
            namespace=data.get('namespace', 'argocd'),
            server=data.get('server', 'https://kubernetes.default.svc'),
            value_files=tuple(value_files),
            automated=bool(sync.get('automated', True)),
            prune=bool(sync.get('prune', True)),
            self_heal=bool(sync.get('self_heal', True)),
            chart=chart,
            helm_values=dict(helm.get('values') or {}),
        )


@dataclass(frozen=True)
class EnvironmentSpec:
    """Immutable description of one deployment target.

    Attributes:
        name: Environment name (dev, prod, ...)
        namespaces: Declared namespaces, in declaration order
        services: Declared services
        credentials: Credential sets with pre-encoded values
        configs: Config sets
        gitops: Optional Argo CD application
        mesh_injection: Label namespaces for Istio sidecar injection
        source_path: Path the spec was loaded from (for messages)
    """
    name: str
    namespaces: tuple[str, ...] = ()
    services: tuple[ServiceSpec, ...] = ()
    credentials: tuple[CredentialSet, ...] = ()
    configs: tuple[ConfigSet, ...] = ()
    gitops: Optional[GitOpsSpec] = None
    mesh_injection: bool = False
    source_path: Optional[Path] = field(default=None, compare=False)

    @classmethod
    def from_dict(
        cls,
        data: dict,
        secrets: Optional[dict] = None,
        source_path: Optional[Path] = None,
    ) -> 'EnvironmentSpec':
        """Create EnvironmentSpec from dictionary.

        Args:
            data: Environment data dictionary
            secrets: Parsed secrets.yaml used to resolve credential keys
            source_path: Optional source path for error messages

        Returns:
            EnvironmentSpec instance

        Raises:
            SpecError: If the environment is structurally invalid or a
                credential value cannot be resolved
        """
        name = _require(data, 'name', 'Environment')
        namespaces = tuple(_list(data, 'namespaces', 'Environment'))
        default_namespace = data.get('default_namespace') or (namespaces[0] if namespaces else '')

        credentials = tuple(
            _parse_credential_set(c, default_namespace, secrets or {})
            for c in _list(data, 'credentials', 'Environment')
        )
        configs = tuple(
            ConfigSet(
                name=_require(c, 'name', 'Config set'),
                namespace=c.get('namespace') or default_namespace,
                data={k: str(v) for k, v in (c.get('data') or {}).items()},
            )
            for c in _list(data, 'configs', 'Environment')
        )
        services = tuple(
            ServiceSpec.from_dict(s, default_namespace)
            for s in _list(data, 'services', 'Environment')
        )
        gitops_data = data.get('gitops')
        mesh = data.get('mesh') or {}

        return cls(
            name=name,
            namespaces=namespaces,
            services=services,
            credentials=credentials,
            configs=configs,
            gitops=GitOpsSpec.from_dict(gitops_data, name, default_namespace) if gitops_data else None,
            mesh_injection=bool(mesh.get('injection', False)),
            source_path=source_path,
        )


def _parse_credential_set(data: dict, default_namespace: str, secrets: dict) -> CredentialSet:
    """Resolve a credential set from inline data or secrets.yaml.

    Inline ``data`` wins. Otherwise each name in ``keys`` is looked up
    under secrets.yaml credentials.<set>.<key>. Values must already be
    base64-encoded.
    """
    name = _require(data, 'name', 'Credential set')
    inline = data.get('data')
    if inline:
        values = {k: str(v) for k, v in inline.items()}
    else:
        keys = data.get('keys') or []
        if not keys:
            raise SpecError(f"Credential set '{name}' declares no keys")
        stored = (secrets.get('credentials') or {}).get(name) or {}
        missing = [k for k in keys if k not in stored]
        if missing:
            raise SpecError(
                f"Credential set '{name}' key(s) {', '.join(missing)} not found "
                f"in secrets.yaml (credentials.{name})"
            )
        values = {k: str(stored[k]) for k in keys}

    for key, value in values.items():
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise SpecError(f"Credential set '{name}' key '{key}' is not base64-encoded")

    return CredentialSet(
        name=name,
        namespace=data.get('namespace') or default_namespace,
        data=values,
    )


class EnvironmentLoader:
    """Loads environment specs from <config>/environments/."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize loader with config path.

        Args:
            config_dir: Config directory. If None, uses auto-discovery
                        (env var, sibling, /usr/local/etc/env-driver).
        """
        self.config_dir = Path(config_dir) if config_dir else get_config_dir()
        self.environments_dir = self.config_dir / 'environments'

    def list_environments(self) -> list[str]:
        """List available environment names."""
        if not self.environments_dir.exists():
            return []
        return sorted(f.stem for f in self.environments_dir.glob('*.yaml') if f.is_file())

    def load(self, name: str) -> EnvironmentSpec:
        """Load environment by name.

        Raises:
            ConfigError: If the environment file is missing or invalid
        """
        path = self.environments_dir / f'{name}.yaml'
        if not path.exists():
            available = self.list_environments()
            raise ConfigError(
                f"Environment '{name}' not found at {path}. "
                f"Available: {', '.join(available) if available else 'none'}"
            )
        return self.load_file(path)

    def load_file(self, path: Path) -> EnvironmentSpec:
        """Load environment from a specific file path."""
        if not path.exists():
            raise ConfigError(f"Environment file not found: {path}")

        data = _parse_yaml(path)
        secrets = _load_secrets(self.config_dir) or {}
        spec = EnvironmentSpec.from_dict(data, secrets=secrets, source_path=path)
        logger.debug(f"Loaded environment '{spec.name}' from {path}")
        return spec


def load_environment(
    name: Optional[str] = None,
    file_path: Optional[str] = None,
    config_dir: Optional[Path] = None,
) -> EnvironmentSpec:
    """Load an environment spec by name or file path.

    Raises:
        ConfigError: If neither source is given or loading fails
    """
    loader = EnvironmentLoader(config_dir)
    if file_path:
        return loader.load_file(Path(file_path))
    if name:
        return loader.load(name)
    raise ConfigError("No environment specified")
