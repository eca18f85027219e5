# File: lattice_link/main.py
"""
lattice-link command line.

Exit codes:
  0 = success (status: everything in sync)
  1 = failed, nothing left behind (rollback complete or nothing created); status: drift
  2 = failed, manual cleanup needed (rollback incomplete, disabled or cancelled)
  3 = invalid desired state
"""

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import Callable, List, Optional

from . import __version__
from .config import Settings
from .desired_state import load_desired_state
from .diagnostics import DiagnosticLogger, configure_logging
from .errors import LatticeLinkError, ValidationError
from .ledger import Ledger
from .models import ConnectivityGraph
from .providers import needs_cluster_driver
from .providers.base import ResourceDriver
from .reconciler import ReconciliationEngine, ReconciliationResult

logger = logging.getLogger("lattice_link")

EXIT_INVALID = 3

DriverFactory = Callable[[Settings, Optional[str]], ResourceDriver]


def _default_driver_factory(settings: Settings, region: Optional[str]) -> ResourceDriver:
    from .providers import build_driver

    return build_driver(settings, region)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db-path", help="Ledger database path or SQLAlchemy URL")
    common.add_argument("--region", help="AWS region (defaults to the desired state, then the environment)")
    common.add_argument("--max-concurrency", type=int, help="Concurrent provider calls per wave")
    common.add_argument("--output", choices=["text", "json"], default="text")
    common.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    common.add_argument("--log-file", help="Also write logs to this file")
    common.add_argument("--no-cluster", action="store_true",
                        help="Skip the Kubernetes Gateway and DNS aliases")

    parser = argparse.ArgumentParser(
        prog="lattice-link",
        description="Provision and tear down cross-VPC VPC Lattice connectivity from a desired-state file",
    )
    parser.add_argument("--version", action="version", version=f"lattice-link {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    apply = sub.add_parser("apply", parents=[common], help="Converge providers onto the desired state")
    apply.add_argument("-f", "--desired-state", required=True, help="Desired-state YAML or JSON file")
    apply.add_argument("--prune", action="store_true", help="Delete resources that are no longer declared")
    apply.add_argument("--dry-run", action="store_true", help="Plan only; issue no writes")
    apply.add_argument("--no-rollback", action="store_true", help="Leave created resources on failure")
    apply.set_defaults(func=cmd_apply)

    destroy = sub.add_parser("destroy", parents=[common], help="Delete every declared resource")
    destroy.add_argument("-f", "--desired-state", required=True, help="Desired-state YAML or JSON file")
    destroy.add_argument("--dry-run", action="store_true", help="Plan only; issue no deletes")
    destroy.set_defaults(func=cmd_destroy)

    status = sub.add_parser("status", parents=[common], help="Report drift without changing anything")
    status.add_argument("-f", "--desired-state", required=True, help="Desired-state YAML or JSON file")
    status.set_defaults(func=cmd_status)

    serve = sub.add_parser("serve", parents=[common], help="Run the REST API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, help="REST port (default LATTICE_LINK_REST_PORT or 8000)")
    serve.set_defaults(func=cmd_serve)
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.db_path:
        settings.db_path = args.db_path
    if args.region:
        settings.region = args.region
    if args.max_concurrency:
        settings.max_concurrency = args.max_concurrency
    if args.log_level:
        settings.log_level = args.log_level
    if args.log_file:
        settings.log_file = args.log_file
    if args.no_cluster:
        settings.enable_cluster = False
    if getattr(args, "no_rollback", False):
        settings.rollback_on_failure = False
    if getattr(args, "port", None):
        settings.rest_port = args.port
    return settings


def _load(args, settings: Settings) -> ConnectivityGraph:
    desired = load_desired_state(args.desired_state)
    if not settings.enable_cluster and (desired.gateway is not None or desired.dns_aliases):
        logger.warning("Cluster objects are disabled; the Gateway and DNS aliases are left alone")
        desired = replace(desired, gateway=None, dns_aliases=())
    return desired


def _engine(settings: Settings, desired: ConnectivityGraph, driver_factory: DriverFactory) -> ReconciliationEngine:
    ledger = Ledger(settings.database_url)
    driver_settings = settings
    if settings.enable_cluster and not needs_cluster_driver(desired, ledger):
        # no kubeconfig is needed for a graph without cluster objects
        driver_settings = replace(settings, enable_cluster=False)
    driver = driver_factory(driver_settings, settings.region or desired.region)
    return ReconciliationEngine(driver, settings, ledger=ledger)


class _CancelOnInterrupt:
    """Turns the first SIGINT into a cancellation request."""

    def __init__(self):
        self.event = threading.Event()
        self._previous = None

    def _handle(self, signum, frame):
        if self.event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received: finishing in-flight calls, starting nothing new")
        self.event.set()

    def __enter__(self):
        if threading.current_thread() is threading.main_thread():
            self._previous = signal.signal(signal.SIGINT, self._handle)
        return self.event

    def __exit__(self, *exc):
        if self._previous is not None:
            signal.signal(signal.SIGINT, self._previous)
        return False


def print_result(result: ReconciliationResult, output: str, diagnostics: DiagnosticLogger) -> None:
    for error in result.errors:
        diagnostics.log_error(str(error), {"operation": result.operation, "graph": result.graph_name})
    if result.rollback is not None:
        for leftover in result.rollback.requires_manual_cleanup:
            diagnostics.log_warning(f"Delete manually: {leftover['resource_type']} {leftover['resource_id']}",
                                    leftover)

    if output == "json":
        data = result.to_dict()
        data["diagnostics"] = diagnostics.generate_report()
        print(json.dumps(data, indent=2, default=str))
        return

    mode = " (dry run)" if result.dry_run else ""
    print(f"{result.operation} {result.graph_name}{mode}")
    for report in result.entities:
        action = f" [{report.action.value}]" if report.action is not None and result.dry_run else ""
        line = f"  {report.status.value:<16} {report.resource_type.value}:{report.key}{action}"
        if report.resource_id:
            line += f"  {report.resource_id}"
        if report.detail.get("degraded"):
            line += "  (degraded: no healthy targets)"
        if report.error:
            line += f"\n      {report.error}"
        print(line)
    counts = ", ".join(f"{count} {status}" for status, count in sorted(result.counts().items()))
    print(f"{counts or 'nothing to do'} in {result.duration_ms:.0f}ms")
    if result.rollback is not None and not result.rollback.complete:
        print("Manual cleanup required:")
        for leftover in result.rollback.requires_manual_cleanup:
            print(f"  {leftover['resource_type']}:{leftover['key']}  {leftover['resource_id']}")


def cmd_apply(args, settings: Settings, driver_factory: DriverFactory) -> int:
    desired = _load(args, settings)
    engine = _engine(settings, desired, driver_factory)
    with _CancelOnInterrupt() as cancel_event:
        result = engine.apply(desired, prune=args.prune, dry_run=args.dry_run, cancel_event=cancel_event)
    print_result(result, args.output, DiagnosticLogger())
    return result.exit_code


def cmd_destroy(args, settings: Settings, driver_factory: DriverFactory) -> int:
    desired = _load(args, settings)
    engine = _engine(settings, desired, driver_factory)
    with _CancelOnInterrupt() as cancel_event:
        result = engine.destroy(desired, dry_run=args.dry_run, cancel_event=cancel_event)
    print_result(result, args.output, DiagnosticLogger())
    return result.exit_code


def cmd_status(args, settings: Settings, driver_factory: DriverFactory) -> int:
    desired = _load(args, settings)
    result = _engine(settings, desired, driver_factory).status(desired)
    print_result(result, args.output, DiagnosticLogger())
    return result.exit_code


def cmd_serve(args, settings: Settings, driver_factory: DriverFactory) -> int:
    import uvicorn

    from .api.rest_api_server import app

    logger.info(f"Starting REST API on {args.host}:{settings.rest_port}...")
    uvicorn.run(app, host=args.host, port=settings.rest_port, log_level=settings.log_level.lower())
    return 0


def main(argv: Optional[List[str]] = None, driver_factory: Optional[DriverFactory] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings_from_args(args)
    configure_logging(settings.log_level, settings.log_file)

    try:
        return args.func(args, settings, driver_factory or _default_driver_factory)
    except ValidationError as e:
        for message in e.messages:
            print(f"invalid desired state: {message}", file=sys.stderr)
        return EXIT_INVALID
    except LatticeLinkError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
