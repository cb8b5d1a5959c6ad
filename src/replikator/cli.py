#!/usr/bin/env python
"""Command-line interface for replikator.

This module provides the main CLI entry point, which turns flags into
engine options, connects to the cluster and runs the manager together
with its metrics and health endpoints until the process is signalled.
"""

import functools
import logging
import signal
import sys
import threading

import click
from icecream import ic

from replikator import __version__
from replikator.cluster import Cluster
from replikator.console import LOG_LEVELS, configure_logging
from replikator.exceptions import ClusterConnectionError, ConfigurationError
from replikator.models import ReplicatedKind
from replikator.runtime.election import LeaderElector
from replikator.runtime.health import start_endpoints
from replikator.runtime.manager import Manager, ManagerOptions
from replikator.settings import ReplicationKeys

logger = logging.getLogger(__name__)


def install_signal_handlers(stop: threading.Event) -> None:
    """Set stop on SIGINT and SIGTERM."""

    def _handle(signum: int, frame: object) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_manager(
    manager: Manager,
    stop: threading.Event,
    *,
    metrics_address: str,
    probe_address: str,
    elector: LeaderElector | None = None,
) -> None:
    """Run the manager with its endpoints until stop is set.

    Args:
        manager: The configured manager.
        stop: Event that ends the run.
        metrics_address: Bind address for /metrics ('0' disables).
        probe_address: Bind address for /healthz and /readyz ('0' disables).
        elector: When set, the manager only runs while this process holds
            the leader lock.

    """
    ready_check = manager.ready if elector is None else functools.partial(elector.ready, manager)
    servers = start_endpoints(
        metrics_address=metrics_address,
        probe_address=probe_address,
        ready_check=ready_check,
    )
    try:
        if elector is None:
            logger.info("Starting manager")
            manager.run(stop)
        else:
            elector.run(manager, stop)
    finally:
        for server in servers:
            server.stop()


@click.command(help="Replicate ConfigMaps and Secrets across Kubernetes namespaces")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="log level",
)
@click.option("--kubeconfig", required=False, type=click.Path(dir_okay=False), help="path to a kubeconfig file")
@click.option("--context", required=False, help="kubeconfig context to use")
@click.option(
    "--config",
    "config_file",
    required=False,
    type=click.Path(dir_okay=False),
    help="YAML file overriding annotation, finalizer and label names",
)
@click.option(
    "--kind",
    "kinds",
    multiple=True,
    type=click.Choice([kind.value for kind in ReplicatedKind]),
    help="kind to replicate (repeatable, default: all)",
)
@click.option("--workers", type=click.IntRange(min=1), default=2, show_default=True, help="workers per kind")
@click.option(
    "--resync-period",
    type=click.FloatRange(min=0),
    default=30.0,
    show_default=True,
    help="seconds between periodic re-checks of enabled objects (0 disables)",
)
@click.option("--metrics-bind-address", default=":8080", show_default=True, help="address the metric endpoint binds to")
@click.option(
    "--health-probe-bind-address", default=":8081", show_default=True, help="address the probe endpoint binds to"
)
@click.option(
    "--leader-elect",
    is_flag=True,
    help="enable leader election, ensuring only one active controller manager",
)
@click.option(
    "--leader-election-namespace",
    required=False,
    help="namespace of the leader lock (default: the pod's namespace)",
)
def cli(
    version: bool,
    debug: bool,
    log_level: str,
    kubeconfig: str | None,
    context: str | None,
    config_file: str | None,
    kinds: tuple[str, ...],
    workers: int,
    resync_period: float,
    metrics_bind_address: str,
    health_probe_bind_address: str,
    leader_elect: bool,
    leader_election_namespace: str | None,
) -> None:
    """Process CLI arguments and run the operator.

    Args:
        version: Print version and exit.
        debug: Enable debug output.
        log_level: Log level when not in debug mode.
        kubeconfig: Path to a kubeconfig file.
        context: Kubeconfig context.
        config_file: Key table overrides.
        kinds: Kinds to replicate.
        workers: Worker threads per kind.
        resync_period: Resync interval in seconds.
        metrics_bind_address: Metrics bind address.
        health_probe_bind_address: Probe bind address.
        leader_elect: Run the manager only while holding the leader lock.
        leader_election_namespace: Namespace of the leader lock.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    configure_logging("DEBUG" if debug else log_level)

    try:
        keys = ReplicationKeys.load(config_file) if config_file else ReplicationKeys.from_prefix()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None
    ic(keys)

    options = ManagerOptions(
        kinds=tuple(ReplicatedKind(kind) for kind in kinds) or ManagerOptions().kinds,
        workers=workers,
        resync_period=resync_period or None,
    )

    try:
        cluster = Cluster(kubeconfig=kubeconfig, context=context)
        cluster.check_connection()
    except ClusterConnectionError as e:
        logger.error("Cluster connection failed: %s", e)
        sys.exit(1)

    manager = Manager.for_cluster(cluster, keys, options)
    elector = LeaderElector(namespace=leader_election_namespace) if leader_elect else None
    ic(elector)
    stop = threading.Event()
    install_signal_handlers(stop)
    try:
        run_manager(
            manager,
            stop,
            metrics_address=metrics_bind_address,
            probe_address=health_probe_bind_address,
            elector=elector,
        )
    except ValueError as e:
        raise click.ClickException(str(e)) from None


if __name__ == "__main__":
    cli()
