"""Kubernetes cluster connection.

This module provides the Cluster class, which loads client configuration
(in-cluster service account first, kubeconfig otherwise) and checks that
the API server is reachable before the controllers start.
"""

import logging

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from replikator.console import highlight
from replikator.exceptions import ClusterConnectionError
from replikator.models import ReplicatedKind
from replikator.store import KubeObjectStore

IN_CLUSTER = "in-cluster"

logger = logging.getLogger(__name__)


class Cluster:
    """Manages the connection to the Kubernetes API server.

    Attributes:
        context: The kubeconfig context in use, or 'in-cluster'.
        core_v1_api: CoreV1Api shared by every store.

    """

    def __init__(self, *, kubeconfig: str | None = None, context: str | None = None) -> None:
        """Load client configuration.

        Args:
            kubeconfig: Path to a kubeconfig file. When neither this nor
                context is given, in-cluster configuration is tried first.
            context: Kubeconfig context to use instead of the current one.

        """
        self.context: str = self._load_config(kubeconfig=kubeconfig, context=context)
        self.core_v1_api: client.CoreV1Api = client.CoreV1Api()

    @staticmethod
    def _load_config(*, kubeconfig: str | None, context: str | None) -> str:
        """Load in-cluster or kubeconfig configuration.

        Returns:
            The context name, or 'in-cluster'.

        Raises:
            ClusterConnectionError: If kubeconfig is invalid or missing, or
                the requested context does not exist.

        """
        if kubeconfig is None and context is None:
            try:
                config.load_incluster_config()
            except ConfigException:
                logger.debug("Not running in a cluster, falling back to kubeconfig")
            else:
                logger.info("Using %s configuration", highlight(IN_CLUSTER))
                return IN_CLUSTER

        try:
            contexts, current_context = config.list_kube_config_contexts(config_file=kubeconfig)
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

        if context is None:
            context = str(current_context["name"])
        elif context not in [c["name"] for c in contexts]:
            raise ClusterConnectionError(f"Context '{context}' not found in kubeconfig")

        try:
            config.load_kube_config(config_file=kubeconfig, context=context)
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

        logger.info("Working with %s cluster", highlight(context))
        return context

    def check_connection(self) -> None:
        """Make a cheap API call to confirm the cluster is reachable.

        Raises:
            ClusterConnectionError: If the API server cannot be reached or
                rejects the request.

        """
        try:
            self.core_v1_api.list_namespace(limit=1)
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
        except ApiException as e:
            raise ClusterConnectionError(f"Kubernetes API request failed: {e.status} {e.reason}") from e

    def store(self, kind: ReplicatedKind) -> KubeObjectStore:
        """Return an object store for a replicated kind."""
        return KubeObjectStore(kind, self.core_v1_api)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(context={self.context!r})"
