"""Shared pytest fixtures for env-driver tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

# base64 of 'admin' and 'secret123!'
ENCODED_USERNAME = 'YWRtaW4='
ENCODED_PASSWORD = 'c2VjcmV0MTIzIQ=='


@pytest.fixture
def config_dir(tmp_path):
    """Create temporary env-config directory structure.

    Creates minimal env-config with:
    - driver.yaml (defaults, state and reports under tmp_path)
    - secrets.yaml (pre-encoded db-secret credentials)
    - environments/dev.yaml (namespace, secret, one deployment)
    - environments/prod.yaml (mesh, config, stateful service, traffic split, gitops)
    """
    config = tmp_path / 'env-config'
    (config / 'environments').mkdir(parents=True)

    (config / 'driver.yaml').write_text(f"""
defaults:
  kubectl: kubectl
  apply_timeout: 30
  max_attempts: 3
  backoff: 0.5
  workers: 2
  minikube_driver: docker
  istio_profile: demo
  states_dir: {tmp_path / 'states'}
  report_dir: {tmp_path / 'reports'}
""")

    (config / 'secrets.yaml').write_text(f"""
credentials:
  db-secret:
    username: "{ENCODED_USERNAME}"
    password: "{ENCODED_PASSWORD}"
""")

    (config / 'environments' / 'dev.yaml').write_text("""
name: dev
namespaces: [dev]
credentials:
  - name: db-secret
    keys: [username, password]
services:
  - name: frontend
    image: nginx:latest
    replicas: 2
    ports: [80]
""")

    (config / 'environments' / 'prod.yaml').write_text("""
name: prod
namespaces: [prod]
mesh:
  injection: true
credentials:
  - name: db-secret
    keys: [username, password]
configs:
  - name: app-config
    data:
      db_host: postgres
services:
  - name: frontend
    image: nginx:latest
    replicas: 4
    ports: [80]
    expose: true
    env:
      - name: DB_HOST
        config: app-config
        key: db_host
    resources:
      limits: {cpu: 500m, memory: 512Mi}
    traffic_split:
      routes:
        - {host: frontend, subset: v1, weight: 90}
        - {host: frontend, subset: v2, weight: 10}
  - name: backend
    image: registry.example.com/backend:1.4.2
    ports: [8080]
    expose: true
    env:
      - {name: DB_USER, secret: db-secret, key: username}
      - {name: DB_PASSWORD, secret: db-secret, key: password}
    probe: {path: /health, port: 8080, initial_delay: 10, period: 5}
  - name: postgres
    image: postgres:13
    ports: [5432]
    env:
      - {name: POSTGRES_USER, secret: db-secret, key: username}
    volume_claim:
      name: postgres-data
      mount_path: /var/lib/postgresql/data
      storage: 1Gi
gitops:
  repo_url: https://git.example.com/platform/app.git
  path: helm/my-app
  helm:
    chart: my-app
    values:
      replicaCount: 4
      image: {repository: registry.example.com/app, tag: stable}
""")

    return config


@pytest.fixture
def dev_spec(config_dir):
    """Loaded dev environment."""
    from environment import load_environment
    return load_environment('dev', config_dir=config_dir)


@pytest.fixture
def prod_spec(config_dir):
    """Loaded prod environment."""
    from environment import load_environment
    return load_environment('prod', config_dir=config_dir)
