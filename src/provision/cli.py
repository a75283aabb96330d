"""CLI handlers for environment verb commands.

Usage:
    env-driver env plan -E <env> [--json-output]
    env-driver env apply -E <env> [--dry-run] [--workers N] [--json-output]
    env-driver env rollback-to <graph-id> -E <env> [--dry-run] [--json-output]
    env-driver env render -E <env> -o <dir>
    env-driver env validate -E <env>
    env-driver env history -E <env> [--json-output]
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from config import ConfigError, DriverConfig, list_environments, load_driver_config
from environment import EnvironmentSpec, load_environment
from render import RenderError, render_all
from reporting import ApplyReport
from scaffold import write_project
from validation import validate_readiness

from provision.cluster import KubectlCluster
from provision.executor import ApplyOrchestrator
from provision.graph import ResourceGraph, build_graph
from provision.history import GraphStore
from provision.state import ApplyState, all_applied

logger = logging.getLogger(__name__)


def _base_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with the options every verb shares."""
    parser = argparse.ArgumentParser(
        prog=f'env-driver env {verb}',
        description=description,
    )
    parser.add_argument(
        '--env', '-E',
        help=f'Environment name from env-config/environments/. Available: '
             f'{", ".join(list_environments()) or "none"}',
    )
    parser.add_argument(
        '--config-dir',
        type=Path,
        help='Config directory (default: $ENV_DRIVER_CONFIG or ../env-config)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _add_env_file(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--env-file',
        help='Path to an environment file (instead of -E)',
    )


def _add_apply_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Server-side dry run; nothing is persisted',
    )
    parser.add_argument(
        '--workers',
        type=int,
        help='Concurrent applies within a tier (default: driver.yaml workers)',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )


def _setup_logging(verbose: bool, json_output: bool = False) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_config(args) -> DriverConfig:
    """Load driver config, exiting with a message on error."""
    try:
        return load_driver_config(args.config_dir)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _load_spec(args) -> EnvironmentSpec:
    """Load the environment named by -E or --env-file.

    Raises:
        SystemExit: On missing or invalid environment
    """
    env_file = getattr(args, 'env_file', None)
    if not args.env and not env_file:
        print("Error: specify an environment with -E or --env-file", file=sys.stderr)
        sys.exit(1)

    try:
        return load_environment(name=args.env, file_path=env_file, config_dir=args.config_dir)
    except ConfigError as e:
        print(f"Error loading environment: {e}", file=sys.stderr)
        sys.exit(1)


def _build(spec: EnvironmentSpec) -> Optional[ResourceGraph]:
    """Build the graph, printing the reference error on failure."""
    try:
        return build_graph(spec)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def _run_preflight(args, config: DriverConfig) -> Optional[int]:
    """Run preflight checks for apply verbs.

    Returns:
        None if checks pass, exit code (1) if checks fail.
    """
    if args.skip_preflight:
        return None

    # A server-side dry run still needs kubectl and a reachable cluster
    errors = validate_readiness(config)
    if errors:
        print("\nPre-flight validation failed:")
        for error in errors:
            for i, line in enumerate(error.split('\n')):
                prefix = "  ✗ " if i == 0 else "    "
                print(f"{prefix}{line}")
        print("\nUse --skip-preflight to bypass these checks")
        print()
        return 1
    logger.info("Pre-flight validation passed")
    return None


def _print_summary(report: ApplyReport) -> None:
    applied = sum(1 for e in report.entries if e.status == 'applied')
    print("")
    print(f"{report.action}: {report.environment} (graph {report.graph_id})")
    print(f"  {applied}/{len(report.entries)} applied in {report.duration:.1f}s")
    for entry in report.entries:
        if entry.status != 'applied':
            print(f"  ✗ {entry.name}: {entry.status} - {entry.reason}")
    if report.cancelled:
        print("  Cancelled before all resources were dispatched")


def _run_apply(args, config: DriverConfig, graph: ResourceGraph, action: str) -> int:
    """Apply a graph and report the outcome. Shared by apply and rollback-to."""
    preflight_rc = _run_preflight(args, config)
    if preflight_rc is not None:
        return preflight_rc

    cluster = KubectlCluster(kubectl=config.kubectl, context=config.context, dry_run=args.dry_run)
    try:
        orchestrator = ApplyOrchestrator(
            cluster=cluster,
            max_attempts=config.max_attempts,
            backoff=config.backoff,
            timeout=config.apply_timeout,
            workers=args.workers or config.workers,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    graph_id = graph.graph_id
    state = ApplyState(graph.environment, graph_id, action=action, states_dir=config.states_dir)
    report = ApplyReport(environment=graph.environment, graph_id=graph_id,
                         report_dir=config.report_dir, action=action)

    # Ctrl-C stops dispatching; in-flight applies finish
    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())

    mode = " (dry run)" if args.dry_run else ""
    logger.info(f"{action.capitalize()} '{graph.environment}' graph {graph_id}{mode}")
    report.start()
    try:
        results = orchestrator.apply(graph, cancel=cancel, state=state)
    except RenderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous)

    success = all_applied(results) and len(results) == len(graph)
    report.cancelled = state.cancelled
    report.add_results(results)
    report.finish(success)

    if not args.dry_run:
        state.save()
        if success:
            GraphStore(config.states_dir).save(graph)

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_summary(report)

    return 0 if success else 1


def plan_main(argv: list) -> int:
    """Handle 'env plan' verb."""
    parser = _base_parser('plan', 'Validate, build and render; print the apply order')
    _add_env_file(parser)
    parser.add_argument('--json-output', action='store_true',
                        help='Output structured JSON to stdout')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    spec = _load_spec(args)
    graph = _build(spec)
    if graph is None:
        return 1
    try:
        render_all(graph)
    except RenderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps({
            'environment': graph.environment,
            'graph_id': graph.graph_id,
            'resources': [
                {
                    'identity': r.identity,
                    'tier': r.tier,
                    'depends_on': list(graph.depends_on(r.identity)),
                }
                for r in graph
            ],
        }, indent=2))
        return 0

    print(f"Environment '{graph.environment}' graph {graph.graph_id}")
    for tier, members in graph.tiers():
        print(f"  tier {tier}:")
        for r in members:
            deps = graph.depends_on(r.identity)
            suffix = f" (after {', '.join(deps)})" if deps else ""
            print(f"    {r.identity}{suffix}")
    return 0


def apply_main(argv: list) -> int:
    """Handle 'env apply' verb."""
    parser = _base_parser('apply', 'Apply an environment to the cluster')
    _add_env_file(parser)
    _add_apply_options(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    config = _load_config(args)
    spec = _load_spec(args)
    graph = _build(spec)
    if graph is None:
        return 1
    return _run_apply(args, config, graph, 'apply')


def rollback_main(argv: list) -> int:
    """Handle 'env rollback-to' verb."""
    parser = _base_parser('rollback-to', 'Re-apply a previously applied graph')
    parser.add_argument('graph_id', help='Graph id (see env history)')
    _add_apply_options(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    if not args.env:
        print("Error: specify an environment with -E", file=sys.stderr)
        return 1

    config = _load_config(args)
    try:
        graph = GraphStore(config.states_dir).load(args.env, args.graph_id)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return _run_apply(args, config, graph, 'rollback')


def render_main(argv: list) -> int:
    """Handle 'env render' verb."""
    parser = _base_parser('render', 'Write rendered manifests as a project directory')
    _add_env_file(parser)
    parser.add_argument('--output', '-o', type=Path, required=True,
                        help='Project directory to write')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    spec = _load_spec(args)
    graph = _build(spec)
    if graph is None:
        return 1
    try:
        paths = write_project(spec, graph, args.output)
    except (RenderError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for path in paths:
        print(path)
    return 0


def validate_main(argv: list) -> int:
    """Handle 'env validate' verb.

    Validates the environment without touching a cluster:
    - Structure and credential resolution (loading)
    - Namespace, secret and config references (graph build)
    - Template invariants (rendering)
    """
    parser = _base_parser('validate', 'Validate environment references and templates')
    _add_env_file(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    spec = _load_spec(args)
    try:
        graph = build_graph(spec)
        render_all(graph)
    except (ConfigError, RenderError) as e:
        print(f"Environment '{spec.name}' is invalid:", file=sys.stderr)
        print(f"  ✗ {e}", file=sys.stderr)
        return 1

    count = len(graph)
    print(f"Environment '{spec.name}' is valid ({count} resource{'s' if count != 1 else ''}, "
          f"graph {graph.graph_id})")
    return 0


def history_main(argv: list) -> int:
    """Handle 'env history' verb."""
    parser = _base_parser('history', 'List stored graphs for an environment')
    parser.add_argument('--json-output', action='store_true',
                        help='Output structured JSON to stdout')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    if not args.env:
        print("Error: specify an environment with -E", file=sys.stderr)
        return 1

    config = _load_config(args)
    entries = GraphStore(config.states_dir).list(args.env)

    if args.json_output:
        print(json.dumps({'environment': args.env, 'graphs': entries}, indent=2))
        return 0

    if not entries:
        print(f"No applied graphs stored for '{args.env}'")
        return 0
    print(f"{'GRAPH':<14} {'SAVED':<21} RESOURCES")
    for entry in entries:
        print(f"{entry['graph_id']:<14} {entry['saved_at']:<21} {entry['resources']}")
    return 0
