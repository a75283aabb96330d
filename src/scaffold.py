"""Project scaffold writer.

Writes an environment's rendered manifests to a project directory laid
out for GitOps:

    kubernetes/<kind>-<name>.yaml
    service-mesh/virtualservice-<name>.yaml
    argocd/<name>-application.yaml
    helm/<chart>/values-<env>.yaml
    README.md

Each resource is rendered once and written once. When the environment
declares more than one namespace, namespaced manifests go one directory
deeper (kubernetes/<namespace>/...) so equal names never share a file.
"""

import logging
from pathlib import Path

import yaml

from environment import EnvironmentSpec
from render import render
from resources import ApplicationResource, ResourceDescriptor, VirtualServiceResource

from provision.graph import ResourceGraph

logger = logging.getLogger(__name__)

DEFAULT_CHART = 'app'


class ProjectWriter:
    """Writes rendered resources under a project root, once per identity."""

    def __init__(self, out_dir: Path, split_namespaces: bool = False):
        self.out_dir = Path(out_dir)
        self.split_namespaces = split_namespaces
        self._written: dict[str, Path] = {}

    def path_for(self, descriptor: ResourceDescriptor) -> Path:
        if isinstance(descriptor, ApplicationResource):
            return self.out_dir / 'argocd' / f'{descriptor.name}-application.yaml'

        if isinstance(descriptor, VirtualServiceResource):
            directory = self.out_dir / 'service-mesh'
        else:
            directory = self.out_dir / 'kubernetes'
        if self.split_namespaces and descriptor.namespaced:
            directory = directory / descriptor.namespace
        return directory / f'{descriptor.kind.lower()}-{descriptor.name}.yaml'

    def write(self, descriptor: ResourceDescriptor, content: str) -> Path:
        """Write one rendered resource.

        Raises:
            ValueError: If this identity (or its target file) was already written
        """
        if descriptor.identity in self._written:
            raise ValueError(f"{descriptor.identity} already written to "
                             f"{self._written[descriptor.identity]}")
        path = self.path_for(descriptor)
        if path in self._written.values():
            raise ValueError(f"{path} already holds another resource")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding='utf-8')
        self._written[descriptor.identity] = path
        logger.debug(f"Wrote {descriptor.identity} to {path}")
        return path

    @property
    def written(self) -> dict[str, Path]:
        return dict(self._written)


def _readme(spec: EnvironmentSpec, graph: ResourceGraph) -> str:
    graph_id = graph.graph_id
    lines = [
        f"# {spec.name} environment",
        "",
        f"Generated by env-driver from graph `{graph_id}`.",
        "",
        "## Resources",
        "",
        "Applied in this order:",
        "",
    ]
    for resource in graph:
        lines.append(f"- `{resource.identity}`")

    lines.extend(["", "## Access", ""])
    for ns in spec.namespaces:
        lines.append(f"- View pods: `kubectl get pods -n {ns}`")
    if spec.mesh_injection:
        lines.append("- Istio dashboard: `istioctl dashboard kiali`")
    if spec.gitops is not None:
        lines.append(
            f"- Argo CD UI: `kubectl port-forward svc/argocd-server -n {spec.gitops.namespace} 8080:443`"
            " then open http://localhost:8080"
        )

    lines.extend([
        "",
        "## Rollback",
        "",
        "Every applied graph is stored by id. To return to an earlier state,",
        "list the stored graphs and re-apply one of them:",
        "",
        "```",
        f"env-driver env history -E {spec.name}",
        f"env-driver env rollback-to {graph_id} -E {spec.name}",
        "```",
        "",
        "A rollback is a forward apply of the stored graph; resources added",
        "since then are not deleted.",
    ])
    if spec.gitops is not None:
        lines.extend([
            "",
            "With automated sync enabled, Argo CD reconciles from git; revert the",
            f"commit in {spec.gitops.repo_url} and run `argocd app sync {spec.gitops.name}`.",
        ])
    return '\n'.join(lines) + '\n'


def write_project(spec: EnvironmentSpec, graph: ResourceGraph, out_dir: Path) -> list[Path]:
    """Render a graph and write it out as a project directory.

    Everything is rendered before the first file is written, so a
    template error leaves out_dir untouched.

    Args:
        spec: Environment the graph was built from
        graph: Resource graph to write
        out_dir: Project root

    Returns:
        Paths written, in graph order followed by values file and README

    Raises:
        RenderError: If any resource fails to render
        ValueError: If two resources map to the same identity or file
    """
    rendered = [(resource, render(resource)) for resource in graph]

    writer = ProjectWriter(out_dir, split_namespaces=len(spec.namespaces) > 1)
    paths = [writer.write(resource, content) for resource, content in rendered]

    gitops = spec.gitops
    if gitops is not None and gitops.helm_values:
        chart = gitops.chart or DEFAULT_CHART
        values_path = Path(out_dir) / 'helm' / chart / f'values-{spec.name}.yaml'
        values_path.parent.mkdir(parents=True, exist_ok=True)
        values_path.write_text(
            yaml.safe_dump(gitops.helm_values, sort_keys=False, default_flow_style=False),
            encoding='utf-8',
        )
        paths.append(values_path)

    readme = Path(out_dir) / 'README.md'
    readme.write_text(_readme(spec, graph), encoding='utf-8')
    paths.append(readme)

    logger.info(f"Wrote {len(paths)} files for '{spec.name}' to {out_dir}")
    return paths
