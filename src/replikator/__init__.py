"""replikator: replicate ConfigMaps and Secrets across namespaces.

This package provides a small Kubernetes operator. Source objects opt in
with annotations; the operator keeps a copy of the selected keys in every
matching namespace and removes the copies when the source goes away.

Example usage:
    from replikator import Reconciler, ReplicationKeys, KubeObjectStore
    from replikator.models import ObjectKey, ReplicatedKind

    store = KubeObjectStore(ReplicatedKind.SECRET)
    reconciler = Reconciler(store, ReplicationKeys.from_prefix())
    reconciler.reconcile(ObjectKey(namespace="cert-manager", name="root-ca-tls"))
"""

__version__ = "0.1.0"

from replikator.exceptions import (
    ClusterConnectionError,
    ConfigurationError,
    ConflictError,
    FilterPatternError,
    ReconcileError,
    ReplikatorError,
    StoreError,
)
from replikator.replication.controller import Reconciler
from replikator.settings import ReplicationKeys
from replikator.store import KubeObjectStore

__all__ = [
    # Version
    "__version__",
    # Classes
    "KubeObjectStore",
    "Reconciler",
    "ReplicationKeys",
    # Exceptions
    "ReplikatorError",
    "ClusterConnectionError",
    "ConfigurationError",
    "ConflictError",
    "FilterPatternError",
    "ReconcileError",
    "StoreError",
]
