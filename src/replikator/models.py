"""Data models for replikator.

This module provides the typed view of the objects the engine works on:
source objects carrying replication annotations, the replicas derived from
them, and the small value types passed between components.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import NamedTuple

TLS_SECRET_TYPE = "kubernetes.io/tls"
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"


class ReplicatedKind(str, Enum):
    """Kubernetes kinds that can be replicated.

    Inherits from str so the value can be used directly in log lines,
    metric labels and CLI choices.
    """

    CONFIGMAP = "ConfigMap"
    SECRET = "Secret"


class ObjectKey(NamedTuple):
    """Identity of a namespaced object; also the work queue key."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(slots=True)
class SourceObject:
    """An object that may carry replication intent.

    Attributes:
        kind: The replicated kind this object belongs to.
        name: Object name.
        namespace: Object namespace.
        data: String payload. Secret values are kept base64 encoded,
            exactly as served by the API.
        binary_data: ConfigMap binary payload (base64 encoded).
        labels: Object labels.
        annotations: Object annotations.
        finalizers: Finalizer tokens currently set on the object.
        deletion_timestamp: Set once the object is pending deletion.
        resource_version: Optimistic-concurrency token.
        secret_type: Secret type (None for ConfigMaps).

    """

    kind: ReplicatedKind
    name: str
    namespace: str
    data: dict[str, str] = field(default_factory=dict)
    binary_data: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: datetime | None = None
    resource_version: str | None = None
    secret_type: str | None = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def is_tls(self) -> bool:
        return self.kind is ReplicatedKind.SECRET and self.secret_type == TLS_SECRET_TYPE

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None


@dataclass(slots=True)
class Replica:
    """A derived copy of a source object placed in another namespace.

    A replica with an empty namespace is a template; for_namespace()
    stamps out the per-namespace copies.
    """

    kind: ReplicatedKind
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    data: dict[str, str] = field(default_factory=dict)
    binary_data: dict[str, str] = field(default_factory=dict)
    secret_type: str | None = None
    resource_version: str | None = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def for_namespace(self, namespace: str) -> "Replica":
        """Return a copy of this template placed in the given namespace."""
        return replace(
            self,
            namespace=namespace,
            labels=dict(self.labels),
            data=dict(self.data),
            binary_data=dict(self.binary_data),
            resource_version=None,
        )


@dataclass(frozen=True, slots=True)
class ReplicationSettings:
    """Replication intent resolved from a source object's annotations.

    Attributes:
        enabled: Master switch.
        namespace_patterns: Glob patterns restricting target namespaces.
            Empty means every namespace except the source's own.
        key_patterns: Glob patterns restricting replicated payload keys.
            Empty means every key.

    """

    enabled: bool
    namespace_patterns: tuple[str, ...] = ()
    key_patterns: tuple[str, ...] = ()


class ReconcileResult(NamedTuple):
    """Outcome of a successful reconciliation.

    Attributes:
        requeue_after: Seconds after which the object should be
            reconciled again, or None.

    """

    requeue_after: float | None = None


class WatchEvent(NamedTuple):
    """A change notification for a source object."""

    type: str
    object: SourceObject


class NamespaceEvent(NamedTuple):
    """A change notification for a namespace."""

    type: str
    name: str
    terminating: bool = False
    resource_version: str | None = None
