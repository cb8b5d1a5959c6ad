"""Shared test fixtures for replikator tests."""

import copy
from unittest.mock import MagicMock, patch

import pytest

from replikator.exceptions import ConflictError
from replikator.models import TLS_SECRET_TYPE, ObjectKey, Replica, ReplicatedKind, SourceObject
from replikator.settings import ReplicationKeys


class FakeStore:
    """In-memory ObjectStore recording every write.

    Sources and replicas live in separate maps. Removing the last
    finalizer from a deleting source removes the source, like the API
    server's garbage collection does.
    """

    def __init__(self, kind=ReplicatedKind.CONFIGMAP, namespaces=(), sources=(), replicas=()):
        self.kind = kind
        self.namespaces = list(namespaces)
        self.sources = {}
        self.replicas = {}
        self.writes = []
        self.failures = {}
        self._version = 0
        for source in sources:
            self.add_source(source)
        for replica in replicas:
            self.add_replica(replica)

    def _next_version(self):
        self._version += 1
        return str(self._version)

    def _check(self, operation):
        if operation in self.failures:
            raise self.failures[operation]

    def add_source(self, source):
        source = copy.deepcopy(source)
        source.resource_version = self._next_version()
        self.sources[source.key] = source
        return source

    def add_replica(self, replica):
        replica = copy.deepcopy(replica)
        replica.resource_version = self._next_version()
        self.replicas[replica.key] = replica
        return replica

    def get_source(self, namespace, name):
        self._check("get_source")
        source = self.sources.get(ObjectKey(namespace, name))
        return copy.deepcopy(source)

    def list_sources(self):
        self._check("list_sources")
        return [copy.deepcopy(source) for source in self.sources.values()]

    def list_namespaces(self):
        self._check("list_namespaces")
        return list(self.namespaces)

    def get_replica(self, namespace, name):
        self._check("get_replica")
        return copy.deepcopy(self.replicas.get(ObjectKey(namespace, name)))

    def create_replica(self, replica):
        self._check("create_replica")
        if replica.key in self.replicas:
            raise ConflictError(f"{replica.key} already exists", status=409)
        self.writes.append(("create", replica.key))
        return self.add_replica(replica)

    def update_replica(self, replica):
        self._check("update_replica")
        current = self.replicas[replica.key]
        if replica.resource_version != current.resource_version:
            raise ConflictError(f"{replica.key} was modified", status=409)
        self.writes.append(("update", replica.key))
        return self.add_replica(replica)

    def delete_replica(self, namespace, name):
        self._check("delete_replica")
        key = ObjectKey(namespace, name)
        if key not in self.replicas:
            return False
        del self.replicas[key]
        self.writes.append(("delete", key))
        return True

    def patch_finalizers(self, source, finalizers):
        self._check("patch_finalizers")
        current = self.sources[source.key]
        if source.resource_version != current.resource_version:
            raise ConflictError(f"{source.key} was modified", status=409)
        self.writes.append(("finalizers", source.key))
        current.finalizers = list(finalizers)
        current.resource_version = self._next_version()
        if current.is_deleting and not current.finalizers:
            del self.sources[source.key]
        return copy.deepcopy(current)



class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

@pytest.fixture
def keys():
    """Default key table."""
    return ReplicationKeys.from_prefix()


@pytest.fixture
def make_source(keys):
    """Factory for source objects with replication enabled by default."""

    def _make(
        name="test-configmap",
        namespace="test-namespace",
        *,
        kind=ReplicatedKind.CONFIGMAP,
        enabled=True,
        data=None,
        annotations=None,
        **kwargs,
    ):
        all_annotations = {keys.enabled_annotation: "true"} if enabled else {}
        all_annotations.update(annotations or {})
        return SourceObject(
            kind=kind,
            name=name,
            namespace=namespace,
            data=dict(data if data is not None else {"key": "test-value", "key-2": "another-test-value"}),
            annotations=all_annotations,
            **kwargs,
        )

    return _make


@pytest.fixture
def tls_source(make_source, keys):
    """An enabled TLS secret that only replicates its CA certificate."""
    return make_source(
        "root-ca-tls",
        "cert-manager",
        kind=ReplicatedKind.SECRET,
        secret_type=TLS_SECRET_TYPE,
        data={"tls.crt": "Y2VydA==", "tls.key": "a2V5", "ca.crt": "Y2E="},
        annotations={keys.replicate_keys_annotation: "ca*"},
    )


@pytest.fixture
def make_replica():
    """Factory for replicas as found in the cluster."""

    def _make(namespace, name="test-configmap", *, kind=ReplicatedKind.CONFIGMAP, **kwargs):
        return Replica(kind=kind, name=name, namespace=namespace, **kwargs)

    return _make


@pytest.fixture
def mock_core_v1_api():
    """Mock CoreV1Api instance."""
    with patch("kubernetes.client.CoreV1Api") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        yield api_instance


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}, {"name": "other-context"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def mock_not_in_cluster():
    """Make in-cluster configuration unavailable."""
    from kubernetes.config.config_exception import ConfigException

    with patch("kubernetes.config.load_incluster_config") as mock:
        mock.side_effect = ConfigException("Service host/port is not set.")
        yield mock
