"""Tests for store.py module."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError, NewConnectionError, ProtocolError, ReadTimeoutError

from replikator.exceptions import ClusterConnectionError, ConflictError, StoreError
from replikator.models import Replica, ReplicatedKind
from replikator.store import KubeObjectStore, replica_body


def _api_object(name, namespace, *, data=None, secret_type=None, **meta):
    obj = MagicMock()
    obj.metadata.name = name
    obj.metadata.namespace = namespace
    obj.metadata.labels = meta.get("labels")
    obj.metadata.annotations = meta.get("annotations")
    obj.metadata.finalizers = meta.get("finalizers")
    obj.metadata.deletion_timestamp = meta.get("deletion_timestamp")
    obj.metadata.resource_version = meta.get("resource_version", "1")
    obj.data = data
    obj.binary_data = meta.get("binary_data")
    obj.type = secret_type
    return obj


def _namespace(name, *, deleting=False, phase="Active", resource_version="10"):
    ns = MagicMock()
    ns.metadata.name = name
    ns.metadata.deletion_timestamp = datetime.now(timezone.utc) if deleting else None
    ns.metadata.resource_version = resource_version
    ns.status.phase = phase
    return ns


@pytest.fixture
def api():
    return MagicMock()


class TestReads:
    """Tests for get and list operations."""

    def test_get_source_configmap(self, api):
        """Test conversion of a ConfigMap."""
        api.read_namespaced_config_map.return_value = _api_object(
            "cm",
            "default",
            data={"k": "v"},
            binary_data={"b": "AA=="},
            labels={"a": "b"},
            annotations={"x": "y"},
            finalizers=["f"],
            resource_version="42",
        )
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        source = store.get_source("default", "cm")

        api.read_namespaced_config_map.assert_called_once_with("cm", "default")
        assert source.data == {"k": "v"}
        assert source.binary_data == {"b": "AA=="}
        assert source.labels == {"a": "b"}
        assert source.annotations == {"x": "y"}
        assert source.finalizers == ["f"]
        assert source.resource_version == "42"
        assert source.secret_type is None
        assert not source.is_deleting

    def test_get_source_tls_secret(self, api):
        """Test conversion of a TLS secret."""
        api.read_namespaced_secret.return_value = _api_object(
            "tls", "default", data={"tls.crt": "YQ=="}, secret_type="kubernetes.io/tls"
        )
        store = KubeObjectStore(ReplicatedKind.SECRET, api)

        source = store.get_source("default", "tls")

        assert source.is_tls
        assert source.binary_data == {}

    def test_get_source_handles_empty_fields(self, api):
        """Test that None maps become empty containers."""
        api.read_namespaced_config_map.return_value = _api_object("cm", "default")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        source = store.get_source("default", "cm")

        assert source.data == {}
        assert source.labels == {}
        assert source.finalizers == []

    def test_get_source_not_found(self, api):
        """Test that 404 is reported as None."""
        api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        assert store.get_source("default", "missing") is None

    def test_get_replica_not_found(self, api):
        """Test that a missing replica is None."""
        api.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")
        store = KubeObjectStore(ReplicatedKind.SECRET, api)

        assert store.get_replica("default", "missing") is None

    def test_get_replica_server_error(self, api):
        """Test that other errors are raised."""
        api.read_namespaced_secret.side_effect = ApiException(status=500, reason="Internal Server Error")
        store = KubeObjectStore(ReplicatedKind.SECRET, api)

        with pytest.raises(StoreError) as exc_info:
            store.get_replica("default", "x")

        assert exc_info.value.status == 500

    def test_list_namespaces(self, api):
        """Test namespace listing."""
        api.list_namespace.return_value.items = [_namespace("default"), _namespace("kube-system")]
        api.list_namespace.return_value.metadata.resource_version = "99"
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        assert store.list_namespaces() == ["default", "kube-system"]
        assert store.list_namespaces_with_version() == (["default", "kube-system"], "99")

    def test_list_sources(self, api):
        """Test listing across all namespaces."""
        api.list_config_map_for_all_namespaces.return_value.items = [
            _api_object("a", "ns1"),
            _api_object("b", "ns2"),
        ]
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        assert [s.key for s in store.list_sources()] == [("ns1", "a"), ("ns2", "b")]

    def test_connection_error(self, api):
        """Test that an unreachable cluster raises ClusterConnectionError."""
        connection_error = NewConnectionError(None, "Failed to establish a new connection")
        api.list_namespace.side_effect = MaxRetryError(pool=None, url="/api/v1/namespaces", reason=connection_error)
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        with pytest.raises(ClusterConnectionError) as exc_info:
            store.list_namespaces()

        assert "Failed to connect" in str(exc_info.value)


class TestWrites:
    """Tests for create, update, delete and finalizer patches."""

    def test_create_configmap_replica(self, api):
        """Test the create request body."""
        api.create_namespaced_config_map.return_value = _api_object("cm", "other")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)
        replica = Replica(
            kind=ReplicatedKind.CONFIGMAP, name="cm", namespace="other", labels={"l": "v"}, data={"k": "v"}
        )

        store.create_replica(replica)

        namespace, body = api.create_namespaced_config_map.call_args[0]
        assert namespace == "other"
        assert body["metadata"] == {"name": "cm", "namespace": "other", "labels": {"l": "v"}}
        assert body["data"] == {"k": "v"}
        assert body["binaryData"] == {}
        assert "type" not in body

    def test_update_secret_replica_carries_version(self, api):
        """Test that replace sends the resourceVersion and the type."""
        api.replace_namespaced_secret.return_value = _api_object("s", "other", secret_type="Opaque")
        store = KubeObjectStore(ReplicatedKind.SECRET, api)
        replica = Replica(
            kind=ReplicatedKind.SECRET, name="s", namespace="other", secret_type="kubernetes.io/tls", resource_version="5"
        )

        store.update_replica(replica)

        name, namespace, body = api.replace_namespaced_secret.call_args[0]
        assert (name, namespace) == ("s", "other")
        assert body["metadata"]["resourceVersion"] == "5"
        assert body["type"] == "kubernetes.io/tls"

    def test_update_conflict(self, api):
        """Test that 409 raises ConflictError."""
        api.replace_namespaced_config_map.side_effect = ApiException(status=409, reason="Conflict")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        with pytest.raises(ConflictError):
            store.update_replica(Replica(kind=ReplicatedKind.CONFIGMAP, name="cm", namespace="other"))

    def test_delete(self, api):
        """Test deleting an existing replica."""
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        assert store.delete_replica("other", "cm") is True
        api.delete_namespaced_config_map.assert_called_once_with("cm", "other")

    def test_delete_not_found(self, api):
        """Test that deleting a missing replica is not an error."""
        api.delete_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        assert store.delete_replica("other", "cm") is False

    def test_patch_finalizers(self, api, make_source):
        """Test that the patch asserts the resourceVersion read."""
        api.patch_namespaced_config_map.return_value = _api_object("test-configmap", "test-namespace", finalizers=["f"])
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)
        source = make_source(resource_version="7")

        updated = store.patch_finalizers(source, ["f"])

        name, namespace, patch = api.patch_namespaced_config_map.call_args[0]
        assert (name, namespace) == ("test-configmap", "test-namespace")
        assert patch == [
            {"op": "add", "path": "/metadata/resourceVersion", "value": "7"},
            {"op": "add", "path": "/metadata/finalizers", "value": ["f"]},
        ]
        assert updated.finalizers == ["f"]

    def test_replica_body_defaults_secret_type(self):
        """Test that a secret without a type is sent as Opaque."""
        body = replica_body(Replica(kind=ReplicatedKind.SECRET, name="s", namespace="ns"))

        assert body["type"] == "Opaque"
        assert body["kind"] == "Secret"


class TestWatches:
    """Tests for watch streams."""

    def test_stream_sources(self, api):
        """Test conversion of watch events."""
        watcher = MagicMock()
        watcher.stream.return_value = iter([{"type": "ADDED", "object": _api_object("cm", "default")}])
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        events = list(store.stream_sources(watcher, resource_version="5", timeout_seconds=60))

        assert events[0].type == "ADDED"
        assert events[0].object.key == ("default", "cm")
        watcher.stream.assert_called_once_with(
            api.list_config_map_for_all_namespaces, resource_version="5", timeout_seconds=60
        )

    def test_stream_error_event(self, api):
        """Test that an expired watch raises StoreError with status 410."""
        watcher = MagicMock()
        watcher.stream.return_value = iter([{"type": "ERROR", "raw_object": {"code": 410, "message": "too old"}}])
        store = KubeObjectStore(ReplicatedKind.SECRET, api)

        with pytest.raises(StoreError) as exc_info:
            list(store.stream_sources(watcher, resource_version="5", timeout_seconds=60))

        assert exc_info.value.status == 410

    def test_stream_expired_exception(self, api):
        """Test that ApiException 410 from the client is translated too."""
        watcher = MagicMock()
        watcher.stream.side_effect = ApiException(status=410, reason="Gone")
        store = KubeObjectStore(ReplicatedKind.SECRET, api)

        with pytest.raises(StoreError) as exc_info:
            list(store.stream_namespaces(watcher, resource_version="5", timeout_seconds=60))

        assert exc_info.value.status == 410

    def test_stream_namespaces(self, api):
        """Test namespace events, including terminating namespaces."""
        watcher = MagicMock()
        watcher.stream.return_value = iter(
            [
                {"type": "ADDED", "object": _namespace("new", resource_version="11")},
                {"type": "MODIFIED", "object": _namespace("old", phase="Terminating")},
            ]
        )
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        events = list(store.stream_namespaces(watcher, resource_version=None, timeout_seconds=60))

        assert events[0].name == "new"
        assert not events[0].terminating
        assert events[0].resource_version == "11"
        assert events[1].terminating

    def test_stream_connection_broken(self, api):
        """Test that a dropped watch connection raises StoreError."""
        watcher = MagicMock()
        watcher.stream.side_effect = ProtocolError("Connection broken: InvalidChunkLength(got length b'', 0 bytes read)")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        with pytest.raises(StoreError) as exc_info:
            list(store.stream_sources(watcher, resource_version="5", timeout_seconds=60))

        assert "Connection lost while trying to watch ConfigMap objects" in str(exc_info.value)
        assert not isinstance(exc_info.value, ClusterConnectionError)

    def test_read_timeout(self, api):
        """Test that a read timeout raises StoreError."""
        api.list_namespace.side_effect = ReadTimeoutError(None, "/api/v1/namespaces", "Read timed out.")
        store = KubeObjectStore(ReplicatedKind.CONFIGMAP, api)

        with pytest.raises(StoreError, match="Connection lost while trying to list namespaces"):
            store.list_namespaces()
