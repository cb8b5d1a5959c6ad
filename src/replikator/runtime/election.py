"""Leader election for running several operator replicas.

Only the replica holding the lock runs the manager; the others wait as
followers. The lock is a ConfigMap in the operator's namespace, managed by
the kubernetes client's leaderelection package. Losing the lock stops the
process, so a new leader never overlaps with a stale one for longer than
the lease.
"""

import logging
import socket
import threading
import uuid
from pathlib import Path

from kubernetes.leaderelection import electionconfig
from kubernetes.leaderelection.leaderelection import LeaderElection
from kubernetes.leaderelection.resourcelock.configmaplock import ConfigMapLock

from replikator.console import highlight
from replikator.runtime.manager import Manager

LEADER_ELECTION_ID = "767661ca.pecke.tt"
DEFAULT_NAMESPACE = "default"
SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")

logger = logging.getLogger(__name__)


def detect_namespace(path: Path = SERVICE_ACCOUNT_NAMESPACE) -> str:
    """Return the namespace the operator runs in.

    Args:
        path: Service account namespace file mounted into pods.

    Returns:
        The namespace from the file, or 'default' outside a cluster.

    """
    try:
        namespace = path.read_text().strip()
    except OSError:
        return DEFAULT_NAMESPACE
    return namespace or DEFAULT_NAMESPACE


def default_identity() -> str:
    """Return a candidate identity unique to this process."""
    return f"{socket.gethostname()}_{uuid.uuid4()}"


class LeaderElector:
    """Runs the manager only while holding the leader lock.

    Attributes:
        name: Name of the lock ConfigMap.
        namespace: Namespace of the lock ConfigMap.
        identity: This candidate's identity.
        lease_duration: Seconds a lease is valid without renewal.
        renew_deadline: Seconds the leader keeps retrying a renewal.
        retry_period: Seconds between lock attempts.

    """

    def __init__(
        self,
        *,
        name: str = LEADER_ELECTION_ID,
        namespace: str | None = None,
        identity: str | None = None,
        lease_duration: int = 15,
        renew_deadline: int = 10,
        retry_period: int = 2,
    ) -> None:
        self.name = name
        self.namespace = namespace or detect_namespace()
        self.identity = identity or default_identity()
        self.lease_duration = lease_duration
        self.renew_deadline = renew_deadline
        self.retry_period = retry_period
        self._leading = threading.Event()

    @property
    def is_leader(self) -> bool:
        return self._leading.is_set()

    def ready(self, manager: Manager) -> bool:
        """Followers are ready while waiting; the leader once its manager is."""
        return not self.is_leader or manager.ready()

    def run(self, manager: Manager, stop: threading.Event) -> None:
        """Campaign for the lock and run the manager once elected.

        Returns once stop is set. Losing the lock sets stop.

        Args:
            manager: The manager to run while leading.
            stop: Event that ends the run.

        """

        def _started_leading() -> None:
            self._leading.set()
            logger.info("Acquired leader lock %s, starting controllers", highlight(self._lock_key))
            manager.run(stop)

        def _stopped_leading() -> None:
            was_leading = self.is_leader
            self._leading.clear()
            if not stop.is_set():
                if was_leading:
                    logger.error("Lost leader lock %s, shutting down", highlight(self._lock_key))
                stop.set()

        config = electionconfig.Config(
            ConfigMapLock(self.name, self.namespace, self.identity),
            lease_duration=self.lease_duration,
            renew_deadline=self.renew_deadline,
            retry_period=self.retry_period,
            onstarted_leading=_started_leading,
            onstopped_leading=_stopped_leading,
        )
        logger.info("Waiting for leader lock %s as %s", highlight(self._lock_key), self.identity)
        election = threading.Thread(target=LeaderElection(config).run, name="leader-election", daemon=True)
        election.start()

        stop.wait()
        manager.stop()

    @property
    def _lock_key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __repr__(self) -> str:
        return f"LeaderElector(lock={self._lock_key!r}, identity={self.identity!r})"
