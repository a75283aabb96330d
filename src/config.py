"""Driver configuration management.

Configuration is loaded from a config directory of YAML files:
- driver.yaml: Driver-wide defaults (kubectl, timeouts, retries, bootstrap)
- secrets.yaml: Pre-encoded credential material (never committed in clear)
- environments/*.yaml: One environment spec per deployment target

Resolution order for the config directory:
1. $ENV_DRIVER_CONFIG environment variable
2. ../env-config/ sibling directory (dev workspace)
3. /usr/local/etc/env-driver/ (installed layout)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_ARGOCD_INSTALL_URL = (
    'https://raw.githubusercontent.com/argoproj/argo-cd/stable/manifests/install.yaml'
)


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class DriverConfig:
    """Driver-wide settings.

    Values come from the ``defaults`` section of driver.yaml. Every field
    has a usable default so a missing driver.yaml is not an error.

    Attributes:
        config_dir: Directory the configuration was loaded from
        kubectl: kubectl binary name or path
        context: kubeconfig context to target (None = current context)
        api_server: API server URL for pre-flight reachability checks
        apply_timeout: Seconds allowed for a single apply call
        max_attempts: Attempts per resource on transient failures
        backoff: Base backoff in seconds (doubled per retry)
        workers: Concurrent applies within one tier
        minikube_driver: Driver passed to ``minikube start``
        istio_profile: Profile passed to ``istioctl install``
        argocd_install_url: Argo CD install manifest URL
        states_dir: Where apply state and graph history are kept
        report_dir: Where apply reports are written
    """
    config_dir: Optional[Path] = None
    kubectl: str = 'kubectl'
    context: Optional[str] = None
    api_server: str = ''
    apply_timeout: int = 60
    max_attempts: int = 3
    backoff: float = 1.0
    workers: int = 1
    minikube_driver: str = 'docker'
    istio_profile: str = 'demo'
    argocd_install_url: str = DEFAULT_ARGOCD_INSTALL_URL
    states_dir: Path = field(default_factory=lambda: get_base_dir() / '.states')
    report_dir: Path = field(default_factory=lambda: get_base_dir() / 'reports')

    def __post_init__(self):
        if isinstance(self.states_dir, str):
            self.states_dir = Path(self.states_dir)
        if isinstance(self.report_dir, str):
            self.report_dir = Path(self.report_dir)
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")

    @classmethod
    def from_dict(cls, data: Optional[dict], config_dir: Optional[Path] = None) -> 'DriverConfig':
        """Create DriverConfig from the ``defaults`` mapping of driver.yaml."""
        data = data or {}
        kwargs = {}
        for key in ('kubectl', 'context', 'api_server', 'apply_timeout', 'max_attempts',
                    'backoff', 'workers', 'minikube_driver', 'istio_profile',
                    'argocd_install_url', 'states_dir', 'report_dir'):
            if key in data and data[key] is not None:
                kwargs[key] = data[key]
        for key, convert in (('apply_timeout', int), ('max_attempts', int),
                             ('workers', int), ('backoff', float)):
            if key not in kwargs:
                continue
            if isinstance(kwargs[key], bool):
                raise ConfigError(f"{key} must be a number, got {kwargs[key]!r}")
            try:
                kwargs[key] = convert(kwargs[key])
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be a number, got {kwargs[key]!r}") from None
        return cls(config_dir=config_dir, **kwargs)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def _load_secrets(config_dir: Path) -> Optional[dict]:
    """Load pre-encoded secret material from secrets.yaml."""
    secrets_file = config_dir / 'secrets.yaml'
    if not secrets_file.exists():
        return None
    return _parse_yaml(secrets_file)


def get_base_dir() -> Path:
    """Get the env-driver directory."""
    return Path(__file__).parent.parent  # src/ -> env-driver/


def get_config_dir() -> Path:
    """Discover the config directory.

    Resolution order:
    1. $ENV_DRIVER_CONFIG environment variable
    2. ../env-config/ sibling directory (dev workspace)
    3. /usr/local/etc/env-driver/ (installed layout)
    """
    if env_path := os.environ.get('ENV_DRIVER_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"ENV_DRIVER_CONFIG={env_path} does not exist")

    sibling = get_base_dir().parent / 'env-config'
    if sibling.exists():
        return sibling

    fhs_path = Path('/usr/local/etc/env-driver')
    if fhs_path.exists():
        return fhs_path

    raise ConfigError(
        "env-config not found. "
        "Set ENV_DRIVER_CONFIG or create env-config as a sibling directory."
    )


def list_environments() -> list[str]:
    """List available environments from environments/*.yaml."""
    try:
        config_dir = get_config_dir()
    except ConfigError:
        return []

    envs_dir = config_dir / 'environments'
    if not envs_dir.exists():
        return []
    return sorted(f.stem for f in envs_dir.glob('*.yaml') if f.is_file())


def load_driver_config(config_dir: Optional[Path] = None) -> DriverConfig:
    """Load driver settings from driver.yaml (defaults when absent)."""
    if config_dir is None:
        config_dir = get_config_dir()
    driver_file = config_dir / 'driver.yaml'
    if not driver_file.exists():
        return DriverConfig(config_dir=config_dir)
    return DriverConfig.from_dict(_parse_yaml(driver_file).get('defaults'), config_dir=config_dir)


def load_secrets(config_dir: Optional[Path] = None) -> dict:
    """Load all secrets from secrets.yaml.

    Returns an empty dict when the file does not exist; an environment
    that needs credentials will fail validation with a precise message.
    """
    if config_dir is None:
        config_dir = get_config_dir()
    return _load_secrets(config_dir) or {}
