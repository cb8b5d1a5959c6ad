"""Kubernetes object store for replicated kinds.

This module wraps CoreV1Api behind the small set of operations the
engine needs, converting API models into SourceObject and Replica values
and API failures into the replikator exception hierarchy:

- 404 Not Found is reported as None (reads) or False (deletes)
- 409 Conflict raises ConflictError
- anything else raises StoreError
- connection failures raise ClusterConnectionError
- broken or timed out connections (e.g. a dropped watch) raise StoreError
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any, NamedTuple, Protocol

from icecream import ic
from kubernetes import client, watch
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError, MaxRetryError

from replikator.exceptions import ClusterConnectionError, ConflictError, StoreError
from replikator.models import NamespaceEvent, Replica, ReplicatedKind, SourceObject, WatchEvent

_NOT_FOUND = 404
_CONFLICT = 409


class ObjectStore(Protocol):
    """Operations the reconciliation engine performs against the cluster."""

    kind: ReplicatedKind

    def get_source(self, namespace: str, name: str) -> SourceObject | None: ...

    def list_sources(self) -> list[SourceObject]: ...

    def list_namespaces(self) -> list[str]: ...

    def get_replica(self, namespace: str, name: str) -> Replica | None: ...

    def create_replica(self, replica: Replica) -> Replica: ...

    def update_replica(self, replica: Replica) -> Replica: ...

    def delete_replica(self, namespace: str, name: str) -> bool: ...

    def patch_finalizers(self, source: SourceObject, finalizers: list[str]) -> SourceObject: ...


class _KindMethods(NamedTuple):
    """CoreV1Api method names for one kind."""

    read: str
    list_all: str
    create: str
    replace: str
    delete: str
    patch: str


_METHODS = {
    ReplicatedKind.CONFIGMAP: _KindMethods(
        read="read_namespaced_config_map",
        list_all="list_config_map_for_all_namespaces",
        create="create_namespaced_config_map",
        replace="replace_namespaced_config_map",
        delete="delete_namespaced_config_map",
        patch="patch_namespaced_config_map",
    ),
    ReplicatedKind.SECRET: _KindMethods(
        read="read_namespaced_secret",
        list_all="list_secret_for_all_namespaces",
        create="create_namespaced_secret",
        replace="replace_namespaced_secret",
        delete="delete_namespaced_secret",
        patch="patch_namespaced_secret",
    ),
}


@contextmanager
def api_errors(action: str) -> Generator[None, None, None]:
    """Translate kubernetes client failures into StoreError subclasses.

    Args:
        action: What was being attempted, used in the error message.

    Raises:
        ConflictError: On HTTP 409.
        StoreError: On any other API error (status is kept on the error),
            or when an established connection breaks or times out.
        ClusterConnectionError: If the API server cannot be reached.

    """
    try:
        yield
    except ApiException as e:
        if e.status == _CONFLICT:
            raise ConflictError(f"Conflict while trying to {action}: {e.reason}", status=e.status) from e
        raise StoreError(f"Failed to {action}: {e.status} {e.reason}", status=e.status) from e
    except MaxRetryError as e:
        raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
    except HTTPError as e:
        raise StoreError(f"Connection lost while trying to {action}: {e}") from e


def is_not_found(err: StoreError) -> bool:
    """Return True if a StoreError wraps a 404 response."""
    return err.status == _NOT_FOUND


def source_from_api(kind: ReplicatedKind, obj: Any) -> SourceObject:
    """Convert a V1ConfigMap or V1Secret into a SourceObject."""
    meta = obj.metadata
    return SourceObject(
        kind=kind,
        name=meta.name,
        namespace=meta.namespace,
        data=dict(obj.data or {}),
        binary_data=dict(obj.binary_data or {}) if kind is ReplicatedKind.CONFIGMAP else {},
        labels=dict(meta.labels or {}),
        annotations=dict(meta.annotations or {}),
        finalizers=list(meta.finalizers or []),
        deletion_timestamp=meta.deletion_timestamp,
        resource_version=meta.resource_version,
        secret_type=obj.type if kind is ReplicatedKind.SECRET else None,
    )


def replica_from_api(kind: ReplicatedKind, obj: Any) -> Replica:
    """Convert a V1ConfigMap or V1Secret into a Replica."""
    meta = obj.metadata
    return Replica(
        kind=kind,
        name=meta.name,
        namespace=meta.namespace,
        labels=dict(meta.labels or {}),
        data=dict(obj.data or {}),
        binary_data=dict(obj.binary_data or {}) if kind is ReplicatedKind.CONFIGMAP else {},
        secret_type=obj.type if kind is ReplicatedKind.SECRET else None,
        resource_version=meta.resource_version,
    )


def replica_body(replica: Replica) -> dict[str, Any]:
    """Render a replica as a request body.

    The body fully describes the object, so a replace overwrites labels
    and payload wholesale.
    """
    metadata: dict[str, Any] = {
        "name": replica.name,
        "namespace": replica.namespace,
        "labels": dict(replica.labels),
    }
    if replica.resource_version:
        metadata["resourceVersion"] = replica.resource_version

    body: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": replica.kind.value,
        "metadata": metadata,
        "data": dict(replica.data),
    }
    if replica.kind is ReplicatedKind.CONFIGMAP:
        body["binaryData"] = dict(replica.binary_data)
    else:
        body["type"] = replica.secret_type or "Opaque"
    return body


def _namespace_terminating(obj: Any) -> bool:
    if obj.metadata.deletion_timestamp is not None:
        return True
    return obj.status is not None and obj.status.phase == "Terminating"


class KubeObjectStore:
    """ObjectStore backed by the Kubernetes CoreV1 API.

    Attributes:
        kind: The replicated kind served by this store.
        api: CoreV1Api instance used for every call.

    """

    def __init__(self, kind: ReplicatedKind, api: client.CoreV1Api | None = None) -> None:
        self.kind = kind
        self.api = api if api is not None else client.CoreV1Api()
        self._methods = _METHODS[kind]

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        return getattr(self.api, method)(*args, **kwargs)

    def get_source(self, namespace: str, name: str) -> SourceObject | None:
        """Read a source object, or None if it does not exist."""
        try:
            with api_errors(f"get {self.kind.value} {namespace}/{name}"):
                obj = self._call(self._methods.read, name, namespace)
        except StoreError as err:
            if is_not_found(err):
                return None
            raise
        return source_from_api(self.kind, obj)

    def list_sources(self) -> list[SourceObject]:
        """List every object of this kind in the cluster."""
        return self.list_sources_with_version()[0]

    def list_sources_with_version(self) -> tuple[list[SourceObject], str | None]:
        """List every object of this kind along with the list's resourceVersion."""
        with api_errors(f"list {self.kind.value} objects"):
            result = self._call(self._methods.list_all)
        sources = [source_from_api(self.kind, obj) for obj in result.items]
        return sources, result.metadata.resource_version

    def list_namespaces(self) -> list[str]:
        """List the names of all namespaces in the cluster."""
        return self.list_namespaces_with_version()[0]

    def list_namespaces_with_version(self) -> tuple[list[str], str | None]:
        """List namespace names along with the list's resourceVersion."""
        with api_errors("list namespaces"):
            result = self.api.list_namespace()
        ns_list = [ns.metadata.name for ns in result.items]
        ic(ns_list)
        return ns_list, result.metadata.resource_version

    def get_replica(self, namespace: str, name: str) -> Replica | None:
        """Read a replica, or None if it does not exist."""
        try:
            with api_errors(f"get replicated {self.kind.value} {namespace}/{name}"):
                obj = self._call(self._methods.read, name, namespace)
        except StoreError as err:
            if is_not_found(err):
                return None
            raise
        return replica_from_api(self.kind, obj)

    def create_replica(self, replica: Replica) -> Replica:
        """Create a replica."""
        with api_errors(f"create replicated {self.kind.value} {replica.key}"):
            obj = self._call(self._methods.create, replica.namespace, replica_body(replica))
        return replica_from_api(self.kind, obj)

    def update_replica(self, replica: Replica) -> Replica:
        """Overwrite a replica; resource_version guards against concurrent writers."""
        with api_errors(f"update replicated {self.kind.value} {replica.key}"):
            obj = self._call(self._methods.replace, replica.name, replica.namespace, replica_body(replica))
        return replica_from_api(self.kind, obj)

    def delete_replica(self, namespace: str, name: str) -> bool:
        """Delete a replica.

        Returns:
            True if it was deleted, False if it did not exist.

        """
        try:
            with api_errors(f"delete replicated {self.kind.value} {namespace}/{name}"):
                self._call(self._methods.delete, name, namespace)
        except StoreError as err:
            if is_not_found(err):
                return False
            raise
        return True

    def patch_finalizers(self, source: SourceObject, finalizers: list[str]) -> SourceObject:
        """Set the finalizer list of a source object.

        The patch also asserts the resourceVersion the caller read, so the
        API server rejects it with 409 if the object changed meanwhile.
        """
        patch: list[dict[str, Any]] = []
        if source.resource_version:
            patch.append({"op": "add", "path": "/metadata/resourceVersion", "value": source.resource_version})
        patch.append({"op": "add", "path": "/metadata/finalizers", "value": finalizers})

        with api_errors(f"update finalizers of {self.kind.value} {source.key}"):
            obj = self._call(self._methods.patch, source.name, source.namespace, patch)
        return source_from_api(self.kind, obj)

    def stream_sources(
        self, watcher: watch.Watch, *, resource_version: str | None, timeout_seconds: int
    ) -> Iterator[WatchEvent]:
        """Stream change events for objects of this kind.

        Raises:
            StoreError: With status 410 when resource_version has expired.

        """
        with api_errors(f"watch {self.kind.value} objects"):
            for event in watcher.stream(
                getattr(self.api, self._methods.list_all),
                resource_version=resource_version,
                timeout_seconds=timeout_seconds,
            ):
                if event["type"] == "ERROR":
                    raw = event.get("raw_object") or {}
                    raise StoreError(f"Watch error: {raw.get('message', '')}", status=raw.get("code"))
                yield WatchEvent(type=event["type"], object=source_from_api(self.kind, event["object"]))

    def stream_namespaces(
        self, watcher: watch.Watch, *, resource_version: str | None, timeout_seconds: int
    ) -> Iterator[NamespaceEvent]:
        """Stream namespace change events."""
        with api_errors("watch namespaces"):
            for event in watcher.stream(
                self.api.list_namespace,
                resource_version=resource_version,
                timeout_seconds=timeout_seconds,
            ):
                if event["type"] == "ERROR":
                    raw = event.get("raw_object") or {}
                    raise StoreError(f"Watch error: {raw.get('message', '')}", status=raw.get("code"))
                obj = event["object"]
                yield NamespaceEvent(
                    type=event["type"],
                    name=obj.metadata.name,
                    terminating=_namespace_terminating(obj),
                    resource_version=obj.metadata.resource_version,
                )

    def __repr__(self) -> str:
        return f"KubeObjectStore(kind={self.kind.value!r})"
