"""Pre-flight validation checks.

Readiness checks run before an apply or a cluster bootstrap, catching
missing tools and unreachable clusters early with actionable messages.
Each check returns a list of error strings (empty = ready).
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import requests
import urllib3

from config import DriverConfig

# Local clusters (minikube, kind) serve self-signed certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

INSTALL_HINTS = {
    'kubectl': 'https://kubernetes.io/docs/tasks/tools/',
    'minikube': 'https://minikube.sigs.k8s.io/docs/start/',
    'istioctl': 'https://istio.io/latest/docs/setup/getting-started/#download',
    'helm': 'https://helm.sh/docs/intro/install/',
}


# -----------------------------------------------------------------------------
# Tooling
# -----------------------------------------------------------------------------

def validate_binaries(binaries: list[str]) -> list[str]:
    """Check that required command-line tools are on PATH.

    Args:
        binaries: Binary names (or paths) to look up

    Returns:
        List of validation error messages (empty if all found)
    """
    errors = []
    for binary in binaries:
        path = shutil.which(binary)
        if path is None:
            hint = INSTALL_HINTS.get(Path(binary).name)
            message = f"Required tool not found: {binary}"
            if hint:
                message += f"\n  Install: {hint}"
            errors.append(message)
        else:
            logger.debug(f"Found {binary} at {path}")
    return errors


# -----------------------------------------------------------------------------
# API Server Reachability
# -----------------------------------------------------------------------------

def validate_api_server(api_server: str, timeout: float = 5.0) -> list[str]:
    """Check the Kubernetes API server answers HTTP.

    Any HTTP response counts as reachable, including 401/403: an
    anonymous probe is expected to be refused by an RBAC-enabled cluster.

    Args:
        api_server: API server URL (e.g., https://192.168.49.2:8443)
        timeout: Request timeout in seconds

    Returns:
        List of validation error messages (empty if reachable)
    """
    if not api_server:
        return []

    try:
        resp = requests.get(
            f"{api_server.rstrip('/')}/version",
            verify=False,  # Self-signed cert
            timeout=timeout,
        )
    except requests.exceptions.ConnectionError:
        return [
            f"Cannot connect to API server {api_server}\n"
            f"  Check: cluster is running (env-driver cluster up), api_server in driver.yaml"
        ]
    except requests.exceptions.Timeout:
        return [f"Timeout connecting to API server {api_server}"]
    except requests.exceptions.RequestException as e:
        return [f"Error contacting API server {api_server}: {e}"]

    if resp.status_code in (401, 403):
        logger.info(f"API server {api_server} reachable (HTTP {resp.status_code})")
    elif resp.status_code >= 500:
        return [f"API server {api_server} unhealthy: HTTP {resp.status_code}"]
    else:
        version = ''
        try:
            version = resp.json().get('gitVersion', '')
        except ValueError:
            pass  # non-JSON body is still a live server
        logger.info(f"API server {api_server} reachable {version}".rstrip())
    return []


# -----------------------------------------------------------------------------
# Combined
# -----------------------------------------------------------------------------

def validate_readiness(config: DriverConfig, binaries: Optional[list[str]] = None,
                       check_api: bool = True) -> list[str]:
    """Run all pre-flight checks for a command.

    Args:
        config: Driver configuration
        binaries: Tools the command needs (default: kubectl)
        check_api: Whether to probe the configured API server

    Returns:
        List of all validation error messages
    """
    errors = validate_binaries(binaries if binaries is not None else [config.kubectl])
    if check_api:
        errors.extend(validate_api_server(config.api_server))
    return errors
