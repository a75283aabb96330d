#!/usr/bin/env python3
"""CLI entry point for env-driver.

Noun-action subcommands:
- env: Environment lifecycle (plan/apply/rollback-to/render/validate/history)
- cluster: Local cluster lifecycle (up/down)
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from config import ConfigError, load_driver_config

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "env": "Environment lifecycle (plan/apply/rollback-to/render/validate/history)",
    "cluster": "Local cluster lifecycle (up/down)",
}

ENV_ACTIONS = {
    "plan": "Validate, build and render; print the apply order",
    "apply": "Apply an environment to the cluster",
    "rollback-to": "Re-apply a previously applied graph",
    "render": "Write rendered manifests as a project directory",
    "validate": "Validate environment references and templates",
    "history": "List stored graphs for an environment",
}


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def dispatch_env(argv: list) -> int:
    """Dispatch 'env' noun to action-specific handler.

    Args:
        argv: Arguments after 'env' (e.g., ['apply', '-E', 'dev'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        print("Usage: env-driver env <action> [options]")
        print()
        print("Actions:")
        for action, desc in ENV_ACTIONS.items():
            print(f"  {action:<12} {desc}")
        print()
        print("Run 'env-driver env <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    from provision import cli as env_cli
    handlers = {
        "plan": env_cli.plan_main,
        "apply": env_cli.apply_main,
        "rollback-to": env_cli.rollback_main,
        "render": env_cli.render_main,
        "validate": env_cli.validate_main,
        "history": env_cli.history_main,
    }
    handler = handlers.get(action)
    if handler is None:
        print(f"Error: Unknown env action '{action}'")
        print(f"Available actions: {', '.join(ENV_ACTIONS)}")
        return 1
    rc: int = handler(rest)
    return rc


def _cluster_parser(action: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f'env-driver cluster {action}',
        description='Start a local cluster with Istio and Argo CD' if action == 'up'
        else 'Delete the local cluster',
    )
    parser.add_argument(
        '--config-dir',
        type=Path,
        help='Config directory (default: $ENV_DRIVER_CONFIG or ../env-config)',
    )
    parser.add_argument(
        '--profile',
        default='minikube',
        help='minikube profile name (default: minikube)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def cluster_up_main(argv: list) -> int:
    """Handle 'cluster up'."""
    from bootstrap import ClusterBootstrap
    from reporting import ApplyReport
    from validation import validate_binaries

    parser = _cluster_parser('up')
    parser.add_argument('--fresh', action='store_true',
                        help='Delete any existing cluster first')
    parser.add_argument('--chart-dir', type=Path,
                        help='Create a Helm chart skeleton at this path')
    parser.add_argument('--dry-run', action='store_true',
                        help='Preview phases without executing')
    parser.add_argument('--skip-preflight', action='store_true',
                        help='Skip pre-flight validation checks')
    parser.add_argument('--json-output', action='store_true',
                        help='Output structured JSON to stdout')
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_driver_config(args.config_dir)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    report = ApplyReport(environment=args.profile, graph_id='', report_dir=config.report_dir,
                         action='cluster-up')
    bootstrap = ClusterBootstrap(config, chart_dir=args.chart_dir, fresh=args.fresh,
                                 profile=args.profile, report=report)
    if args.dry_run:
        bootstrap.preview()
        return 0

    if not args.skip_preflight:
        binaries = ['minikube', config.kubectl, 'istioctl']
        if args.chart_dir:
            binaries.append('helm')
        errors = validate_binaries(binaries)
        if errors:
            print("\nPre-flight validation failed:")
            for error in errors:
                for i, line in enumerate(error.split('\n')):
                    prefix = "  ✗ " if i == 0 else "    "
                    print(f"{prefix}{line}")
            print("\nUse --skip-preflight to bypass these checks")
            return 1

    success, _ = bootstrap.run()
    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2))
    elif success:
        print("Cluster ready.")
        print("Access Argo CD UI: kubectl port-forward svc/argocd-server -n argocd 8080:443")
    return 0 if success else 1


def cluster_down_main(argv: list) -> int:
    """Handle 'cluster down'."""
    from bootstrap import ClusterBootstrap

    parser = _cluster_parser('down')
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_driver_config(args.config_dir)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = ClusterBootstrap(config, profile=args.profile).teardown()
    if not result.success:
        print(f"Error: {result.message}", file=sys.stderr)
        return 1
    print(result.message)
    return 0


def dispatch_cluster(argv: list) -> int:
    """Dispatch 'cluster' noun to action-specific handler."""
    if not argv or argv[0].startswith('-'):
        print("Usage: env-driver cluster <action> [options]")
        print()
        print("Actions:")
        print("  up        Start minikube and install Istio and Argo CD")
        print("  down      Delete the minikube cluster")
        return 1 if not argv else 0

    action = argv[0]
    if action == "up":
        return cluster_up_main(argv[1:])
    if action == "down":
        return cluster_down_main(argv[1:])

    print(f"Error: Unknown cluster action '{action}'")
    print("Available actions: up, down")
    return 1


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "env", "cluster")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "env":
        return dispatch_env(argv)
    if noun == "cluster":
        return dispatch_cluster(argv)
    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"env-driver {get_version()}")
    print()
    print("Usage: env-driver <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'env-driver <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  env-driver cluster up")
    print("  env-driver env plan -E dev")
    print("  env-driver env apply -E dev --workers 4")
    print("  env-driver env rollback-to 3f2a9c1b7d04 -E dev")


def main(argv=None) -> int:
    """CLI entry point: dispatch to noun-action handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0
    if argv[0] == '--version':
        print(f"env-driver {get_version()}")
        return 0

    noun = argv[0]
    if noun in NOUN_COMMANDS:
        return dispatch_noun(noun, argv[1:])

    print(f"Error: Unknown command '{noun}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
