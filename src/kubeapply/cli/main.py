#!/usr/bin/env python3
"""
KUBEAPPLY CLI - Apply & Delete
------------------------------
Primary interface. Translates user commands into engine runs:

    kubeapply apply  <root> --env staging --gc-tag web
    kubeapply delete <root> --env staging -c redis

Author: KubeApply Team
Date: 2026-10-18
"""

import argparse
import logging
import sys
from typing import List, Optional

from kubernetes.dynamic import DynamicClient
from rich.logging import RichHandler

from kubeapply.apply.engine import ApplyConfig, ApplyEngine, DeleteEngine
from kubeapply.cli.formatter import ReportFormatter, console
from kubeapply.cluster.client import KubeResourceClientFactory, connect
from kubeapply.cluster.discovery import KubeDiscovery
from kubeapply.config.environments import EnvironmentRegistry
from kubeapply.core.errors import KubeApplyError
from kubeapply.source.manifests import ManifestDirectorySource

VERSION = "1.0.0"


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    # The kubernetes client is chatty at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class KubeApplyCLI:
    """
    CLI wrapper: binds flags into an ApplyConfig, connects to the cluster
    for the chosen environment and renders the run's report.
    """

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="kubeapply",
            description="KubeApply - Declarative Kubernetes apply with pruning",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.formatter = ReportFormatter(console)
        self._setup_args()

    def _add_common_args(self, parser: argparse.ArgumentParser):
        parser.add_argument("path", help="Manifest root (components/ and environments/)")
        parser.add_argument("--env", default="", help="Environment to target")
        parser.add_argument("-c", "--component", action="append", default=[], dest="components",
                            help="Restrict to a component (repeatable)")
        parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
        parser.add_argument("--verbose", action="store_true", help="Debug logging")

    def _setup_args(self):
        self.parser.add_argument("-v", "--version", action="version", version=f"kubeapply v{VERSION}")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        apply_parser = subparsers.add_parser("apply", help="Reconcile the cluster with the manifests")
        self._add_common_args(apply_parser)
        apply_parser.add_argument("--create", dest="create", action="store_true", default=True,
                                  help="Create objects that don't exist (default)")
        apply_parser.add_argument("--no-create", dest="create", action="store_false",
                                  help="Only update existing objects")
        apply_parser.add_argument("--gc-tag", default="", help="Tag for garbage collection")
        apply_parser.add_argument("--skip-gc", action="store_true", help="Don't garbage collect")

        delete_parser = subparsers.add_parser("delete", help="Delete the declared objects")
        self._add_common_args(delete_parser)
        delete_parser.add_argument("--grace-period", type=int, default=None,
                                   help="Seconds to wait before forceful termination")

    def build_config(self, args: argparse.Namespace) -> ApplyConfig:
        return ApplyConfig(
            env_name=args.env,
            component_names=list(args.components),
            create=getattr(args, "create", True),
            dry_run=args.dry_run,
            gc_tag=getattr(args, "gc_tag", ""),
            skip_gc=getattr(args, "skip_gc", False),
        )

    def _connect(self, context: Optional[str]):
        api_client = connect(context)
        return KubeResourceClientFactory(DynamicClient(api_client)), KubeDiscovery(api_client)

    def _run(self, args: argparse.Namespace):
        setup_logging(args.verbose)
        config = self.build_config(args)

        env = EnvironmentRegistry.load(args.path).resolve(config.env_name)
        source = ManifestDirectorySource(args.path)
        factory, discovery = self._connect(env.context)

        if args.command == "apply":
            self.formatter.print_header(f"Apply: {env.name or env.context or 'current context'}")
            engine = ApplyEngine(config, source, factory, discovery, namespace=env.namespace)
            self.formatter.print_apply_report(engine.apply())
        else:
            self.formatter.print_header(f"Delete: {env.name or env.context or 'current context'}")
            deleter = DeleteEngine(config, source, factory, discovery,
                                   namespace=env.namespace, grace_period=args.grace_period)
            self.formatter.print_deleted(deleter.delete(), config.dry_run)

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Primary routing entry point. Returns the process exit code."""
        args = self.parser.parse_args(argv)
        if args.command not in ("apply", "delete"):
            self.parser.print_help()
            return 0

        try:
            self._run(args)
        except KubeApplyError as e:
            self.formatter.print_error(e)
            return 1
        return 0


def main():
    """Application entry point with interrupt handling."""
    try:
        sys.exit(KubeApplyCLI().run())
    except KeyboardInterrupt:
        console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
