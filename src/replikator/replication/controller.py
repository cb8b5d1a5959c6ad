"""Reconciliation of one source object.

A Reconciler converges the replicas of a single source object identified
by its ObjectKey. Each run reads everything it needs from the store, so it
is idempotent and can resume after a failure at any step; a run against an
already converged object performs no writes.
"""

import logging
from collections.abc import Generator, Sequence
from contextlib import contextmanager

from icecream import ic

from replikator.console import ObjectLogger, highlight
from replikator.exceptions import ReconcileError, ReplikatorError
from replikator.models import ObjectKey, ReconcileResult, Replica, ReplicatedKind, ReplicationSettings, SourceObject
from replikator.replication.annotations import resolve_settings
from replikator.replication.diff import diff_replicas, replica_needs_update
from replikator.replication.filters import GlobFilter
from replikator.replication.finalizers import FinalizerManager
from replikator.replication.projector import project_replica
from replikator.runtime import metrics
from replikator.settings import ReplicationKeys
from replikator.store import ObjectStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Converges the replicas of source objects of one kind.

    Attributes:
        store: Object store for the replicated kind.
        keys: Annotation/finalizer/label key table.
        requeue_after: Resync interval in seconds returned after every
            successful non-deleting run, or None to rely on triggers only.
        finalizers: FinalizerManager for the source objects.

    """

    def __init__(self, store: ObjectStore, keys: ReplicationKeys, *, requeue_after: float | None = None) -> None:
        self.store = store
        self.keys = keys
        self.requeue_after = requeue_after
        self.finalizers = FinalizerManager(store, keys.finalizer)

    @property
    def kind(self) -> ReplicatedKind:
        return self.store.kind

    @contextmanager
    def _step(self, key: ObjectKey, step: str) -> Generator[None, None, None]:
        """Attribute any failure inside the block to a named step."""
        try:
            yield
        except ReplikatorError as err:
            raise ReconcileError(f"{step} failed: {err}", key=key, step=step) from err

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """Run one reconciliation for the object identified by key.

        Args:
            key: Namespace and name of the source object.

        Returns:
            ReconcileResult, with requeue_after set when a resync is due.

        Raises:
            ReconcileError: If any step fails. Nothing is rolled back; the
                next attempt picks up where this one stopped.

        """
        log = ObjectLogger(logger, self.kind.value, key)
        log.debug("Reconciling")

        with self._step(key, "load"):
            source = self.store.get_source(key.namespace, key.name)
        if source is None:
            log.debug("Not found, nothing to do")
            return ReconcileResult()

        settings = resolve_settings(source.annotations, self.keys)
        if not settings.enabled:
            # A protected object must never get stuck in deletion.
            if not (source.is_deleting and self.finalizers.is_protected(source)):
                log.debug("Replication not enabled")
                return ReconcileResult()
            log.info("Replication disabled on a deleting object, cleaning up")

        if not source.is_deleting:
            with self._step(key, "protect"):
                source = self.finalizers.ensure_present(source)

        with self._step(key, "discover"):
            namespaces = self.store.list_namespaces()
            existing = self._discover(source, namespaces)

        if source.is_deleting:
            log.info("Deleting %d replica(s)", len(existing))
            with self._step(key, "teardown"):
                self._teardown(source, existing)
            return ReconcileResult()

        with self._step(key, "project"):
            desired = self._project(source, settings, namespaces)

        with self._step(key, "converge"):
            writes = self._converge(existing, desired)

        if writes:
            log.info("Replicated to %s namespace(s), %d write(s)", highlight(len(desired)), writes)
        else:
            log.debug("Already converged")
        return ReconcileResult(requeue_after=self.requeue_after)

    def _discover(self, source: SourceObject, namespaces: Sequence[str]) -> list[Replica]:
        """Find the replicas that currently exist for a source."""
        existing: list[Replica] = []
        for namespace in namespaces:
            if namespace == source.namespace:
                continue
            replica = self.store.get_replica(namespace, source.name)
            if replica is not None:
                existing.append(replica)
        return existing

    def _teardown(self, source: SourceObject, existing: Sequence[Replica]) -> None:
        """Delete every replica, then release the source object."""
        for replica in existing:
            if self.store.delete_replica(replica.namespace, replica.name):
                metrics.record_write(self.kind, "delete")
        self.finalizers.ensure_absent(source)

    def _project(self, source: SourceObject, settings: ReplicationSettings, namespaces: Sequence[str]) -> list[Replica]:
        """Build the desired replicas for every matching namespace.

        Raises:
            FilterPatternError: If either filter holds a malformed pattern.

        """
        key_filter = GlobFilter(settings.key_patterns)
        namespace_filter = GlobFilter(settings.namespace_patterns)

        template = project_replica(source, key_filter, self.keys)
        return [
            template.for_namespace(namespace)
            for namespace in namespaces
            if namespace != source.namespace and namespace_filter.matches(namespace)
        ]

    def _converge(self, existing: Sequence[Replica], desired: Sequence[Replica]) -> int:
        """Apply the delta between existing and desired replicas.

        Returns:
            The number of writes issued.

        """
        delta = diff_replicas(existing, desired)
        ic([r.namespace for r in delta.to_delete], [r.namespace for r in delta.to_upsert])

        writes = 0
        for replica in delta.to_delete:
            if self.store.delete_replica(replica.namespace, replica.name):
                metrics.record_write(self.kind, "delete")
                writes += 1

        for replica in delta.to_upsert:
            writes += self._upsert(replica)

        # Replicas that already exist are overwritten only if they drifted.
        current_by_namespace = {replica.namespace: replica for replica in existing}
        for wanted in desired:
            current = current_by_namespace.get(wanted.namespace)
            if current is not None and replica_needs_update(current, wanted):
                wanted.resource_version = current.resource_version
                self.store.update_replica(wanted)
                metrics.record_write(self.kind, "update")
                writes += 1

        return writes

    def _upsert(self, replica: Replica) -> int:
        """Create a replica, or overwrite one that appeared meanwhile."""
        current = self.store.get_replica(replica.namespace, replica.name)
        if current is None:
            self.store.create_replica(replica)
            metrics.record_write(self.kind, "create")
            return 1
        if not replica_needs_update(current, replica):
            return 0
        replica.resource_version = current.resource_version
        self.store.update_replica(replica)
        metrics.record_write(self.kind, "update")
        return 1

    def __repr__(self) -> str:
        return f"Reconciler(kind={self.kind.value!r}, requeue_after={self.requeue_after!r})"
