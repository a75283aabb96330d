"""Manifest template engine.

Renders resource descriptors into Kubernetes, Istio and Argo CD YAML
documents. Rendering is pure: no I/O, no external state. Optional fields
that are not set are left out of the document rather than rendered as null.
"""

import base64
import binascii
import logging
import re
from typing import Any, Iterable

import yaml

from environment import EnvBinding
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
)

logger = logging.getLogger(__name__)

# RFC 1123 label (namespaces) and subdomain (object names)
_LABEL_RE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')
_SUBDOMAIN_RE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$')

PLACEHOLDER_VALUES = {'changeme', 'change-me', 'changeit', 'placeholder', 'todo', 'xxx'}

MESH_INJECT_ANNOTATION = 'sidecar.istio.io/inject'


class RenderError(Exception):
    """Descriptor is missing a required field or violates an invariant."""


def _check_label(value: str, what: str) -> None:
    if not value:
        raise RenderError(f"{what} is required")
    if len(value) > 63 or not _LABEL_RE.match(value):
        raise RenderError(f"{what} '{value}' is not a valid RFC 1123 label")


def _check_name(value: str, what: str) -> None:
    if not value:
        raise RenderError(f"{what} is required")
    if len(value) > 253 or not _SUBDOMAIN_RE.match(value):
        raise RenderError(f"{what} '{value}' is not a valid RFC 1123 name")


def _check_port(port: Any, what: str) -> None:
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise RenderError(f"{what}: port {port!r} is outside 1-65535")


def _metadata(descriptor: ResourceDescriptor) -> dict:
    where = f"{descriptor.kind} name"
    _check_name(descriptor.name, where)
    meta: dict[str, Any] = {'name': descriptor.name}
    if descriptor.namespaced:
        _check_label(descriptor.namespace, f"{descriptor.kind} '{descriptor.name}' namespace")
        meta['namespace'] = descriptor.namespace
    return meta


def _header(descriptor: ResourceDescriptor) -> dict:
    return {
        'apiVersion': descriptor.api_version,
        'kind': descriptor.kind,
        'metadata': _metadata(descriptor),
    }


def _is_placeholder(encoded: str, where: str) -> bool:
    """True if an encoded secret value decodes to an obvious placeholder."""
    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise RenderError(f"{where} is not valid base64")
    try:
        text = decoded.decode('utf-8').strip()
    except UnicodeDecodeError:
        return False  # binary material is never a placeholder
    if not text:
        return True
    if text.startswith('<') and text.endswith('>'):
        return True
    return text.lower() in PLACEHOLDER_VALUES


def _render_namespace(ns: NamespaceResource) -> dict:
    doc = _header(ns)
    _check_label(ns.name, 'Namespace name')
    if ns.labels:
        doc['metadata']['labels'] = {k: str(v) for k, v in ns.labels.items()}
    return doc


def _render_secret(secret: SecretResource) -> dict:
    doc = _header(secret)
    if not secret.data:
        raise RenderError(f"Secret '{secret.name}' has no data")
    for key, value in secret.data.items():
        where = f"Secret '{secret.name}' key '{key}'"
        if not value:
            raise RenderError(f"{where} is empty")
        if _is_placeholder(str(value), where):
            raise RenderError(f"{where} holds a placeholder value")
    doc['type'] = secret.secret_type
    doc['data'] = {k: str(v) for k, v in secret.data.items()}
    return doc


def _render_configmap(cm: ConfigMapResource) -> dict:
    doc = _header(cm)
    doc['data'] = {k: str(v) for k, v in cm.data.items()}
    return doc


def _render_env(binding: EnvBinding) -> dict:
    if binding.secret:
        return {'name': binding.name, 'valueFrom': {
            'secretKeyRef': {'name': binding.secret, 'key': binding.key}}}
    if binding.config:
        return {'name': binding.name, 'valueFrom': {
            'configMapKeyRef': {'name': binding.config, 'key': binding.key}}}
    return {'name': binding.name, 'value': binding.value if binding.value is not None else ''}


def _render_container(workload: WorkloadResource) -> dict:
    where = f"{workload.kind} '{workload.name}'"
    if not workload.image:
        raise RenderError(f"{where} has no image")

    container: dict[str, Any] = {'name': workload.name, 'image': workload.image}
    if workload.ports:
        for port in workload.ports:
            _check_port(port, where)
        container['ports'] = [{'containerPort': p} for p in workload.ports]
    if workload.env:
        container['env'] = [_render_env(e) for e in workload.env]
    if workload.limits or workload.requests:
        resources: dict[str, Any] = {}
        if workload.limits:
            resources['limits'] = {k: str(v) for k, v in workload.limits.items()}
        if workload.requests:
            resources['requests'] = {k: str(v) for k, v in workload.requests.items()}
        container['resources'] = resources
    if workload.probe:
        _check_port(workload.probe.port, f"{where} probe")
        probe: dict[str, Any] = {'httpGet': {'path': workload.probe.path, 'port': workload.probe.port}}
        if workload.probe.initial_delay is not None:
            probe['initialDelaySeconds'] = workload.probe.initial_delay
        if workload.probe.period is not None:
            probe['periodSeconds'] = workload.probe.period
        container['livenessProbe'] = probe
    return container


def _render_workload(workload: WorkloadResource) -> tuple[dict, dict]:
    """Return (document, container) so StatefulSet can add volume mounts."""
    doc = _header(workload)
    if workload.replicas < 0:
        raise RenderError(f"{workload.kind} '{workload.name}' replicas must be >= 0")

    labels = {'app': workload.name}
    pod_meta: dict[str, Any] = {'labels': dict(labels)}
    if workload.pod_annotations:
        pod_meta['annotations'] = {k: str(v) for k, v in workload.pod_annotations.items()}

    container = _render_container(workload)
    doc['spec'] = {
        'replicas': workload.replicas,
        'selector': {'matchLabels': dict(labels)},
        'template': {
            'metadata': pod_meta,
            'spec': {'containers': [container]},
        },
    }
    return doc, container


def _render_deployment(deployment: DeploymentResource) -> dict:
    doc, _ = _render_workload(deployment)
    return doc


def _render_statefulset(sts: StatefulSetResource) -> dict:
    doc, container = _render_workload(sts)
    _check_name(sts.service_name, f"StatefulSet '{sts.name}' serviceName")

    # serviceName leads the spec mapping, as kubectl prints it
    spec = {'serviceName': sts.service_name}
    spec.update(doc['spec'])
    doc['spec'] = spec

    if sts.volume_claim:
        claim = sts.volume_claim
        _check_name(claim.name, f"StatefulSet '{sts.name}' volume claim name")
        container['volumeMounts'] = [{'name': claim.name, 'mountPath': claim.mount_path}]
        claim_spec: dict[str, Any] = {
            'accessModes': list(claim.access_modes),
            'resources': {'requests': {'storage': claim.storage}},
        }
        if claim.storage_class:
            claim_spec['storageClassName'] = claim.storage_class
        doc['spec']['volumeClaimTemplates'] = [{
            'metadata': {'name': claim.name},
            'spec': claim_spec,
        }]
    return doc


def _render_service(svc: ServiceResource) -> dict:
    doc = _header(svc)
    where = f"Service '{svc.name}'"
    if not svc.ports:
        raise RenderError(f"{where} has no ports")
    if not svc.selector:
        raise RenderError(f"{where} has no selector")
    ports = []
    for port in svc.ports:
        _check_port(port, where)
        entry: dict[str, Any] = {'port': port, 'targetPort': port}
        if len(svc.ports) > 1:
            entry = {'name': f'tcp-{port}', **entry}
        ports.append(entry)
    doc['spec'] = {
        'type': svc.service_type,
        'selector': {k: str(v) for k, v in svc.selector.items()},
        'ports': ports,
    }
    return doc


def _render_virtualservice(vs: VirtualServiceResource) -> dict:
    doc = _header(vs)
    where = f"VirtualService '{vs.name}'"
    if not vs.hosts:
        raise RenderError(f"{where} has no hosts")
    if not vs.routes:
        raise RenderError(f"{where} has no routes")

    total = 0
    route = []
    for r in vs.routes:
        if not r.host:
            raise RenderError(f"{where} route destination has no host")
        if not 0 <= r.weight <= 100:
            raise RenderError(f"{where} weight {r.weight} is outside 0-100")
        total += r.weight
        destination: dict[str, Any] = {'host': r.host}
        if r.subset:
            destination['subset'] = r.subset
        if r.port is not None:
            _check_port(r.port, where)
            destination['port'] = {'number': r.port}
        route.append({'destination': destination, 'weight': r.weight})
    if total != 100:
        raise RenderError(f"{where} route weights sum to {total}, expected 100")

    doc['spec'] = {
        'hosts': list(vs.hosts),
        'http': [{'route': route}],
    }
    return doc


def _render_application(app: ApplicationResource) -> dict:
    doc = _header(app)
    where = f"Application '{app.name}'"
    if not app.repo_url:
        raise RenderError(f"{where} has no repo URL")
    if not app.path:
        raise RenderError(f"{where} has no source path")
    _check_label(app.destination_namespace, f"{where} destination namespace")

    source: dict[str, Any] = {
        'repoURL': app.repo_url,
        'path': app.path,
        'targetRevision': app.target_revision,
    }
    if app.value_files:
        source['helm'] = {'valueFiles': list(app.value_files)}

    spec: dict[str, Any] = {
        'project': app.project,
        'source': source,
        'destination': {'server': app.server, 'namespace': app.destination_namespace},
    }
    if app.automated:
        spec['syncPolicy'] = {'automated': {'prune': app.prune, 'selfHeal': app.self_heal}}
    doc['spec'] = spec
    return doc


_RENDERERS = {
    NamespaceResource: _render_namespace,
    SecretResource: _render_secret,
    ConfigMapResource: _render_configmap,
    DeploymentResource: _render_deployment,
    StatefulSetResource: _render_statefulset,
    ServiceResource: _render_service,
    VirtualServiceResource: _render_virtualservice,
    ApplicationResource: _render_application,
}


def to_document(descriptor: ResourceDescriptor) -> dict:
    """Build the API object for a descriptor.

    Raises:
        RenderError: If a required field is missing or an invariant fails
    """
    renderer = _RENDERERS.get(type(descriptor))
    if renderer is None:
        raise RenderError(f"No template for {type(descriptor).__name__}")
    return renderer(descriptor)


def render(descriptor: ResourceDescriptor) -> str:
    """Render a descriptor to a self-contained YAML document.

    Raises:
        RenderError: If a required field is missing or an invariant fails
    """
    return yaml.safe_dump(to_document(descriptor), sort_keys=False, default_flow_style=False)


def render_all(descriptors: Iterable[ResourceDescriptor]) -> list[str]:
    """Render every descriptor, failing on the first invalid one."""
    rendered = []
    for descriptor in descriptors:
        rendered.append(render(descriptor))
        logger.debug(f"Rendered {descriptor.identity}")
    return rendered
