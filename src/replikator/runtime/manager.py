"""Run the replication controllers.

The manager owns, per replicated kind, a work queue and a pool of worker
threads, plus one list-then-watch loop per watched resource:

- a source loop per kind enqueues every source object on start and every
  changed object afterwards
- a single namespace loop fans the creation of a namespace out to every
  enabled source of every kind

Workers take keys from the queue and run the kind's Reconciler. Failed
runs are retried with per-key backoff; successful runs may schedule a
resync. Shutdown is cooperative and abandons in-flight work.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from icecream import ic
from kubernetes import watch

from replikator.cluster import Cluster
from replikator.console import highlight
from replikator.exceptions import ReconcileError, StoreError
from replikator.models import NamespaceEvent, ObjectKey, ReplicatedKind, WatchEvent
from replikator.replication.controller import Reconciler
from replikator.replication.triggers import TriggerRouter
from replikator.runtime import metrics
from replikator.runtime.workqueue import WorkQueue
from replikator.settings import ReplicationKeys
from replikator.store import KubeObjectStore

logger = logging.getLogger(__name__)

_GONE = 410
_MAX_WATCH_BACKOFF = 30.0


@dataclass(frozen=True, slots=True)
class ManagerOptions:
    """Engine options set at startup.

    Attributes:
        kinds: Replicated kinds to run controllers for.
        workers: Worker threads per kind.
        resync_period: Seconds between periodic re-checks of each enabled
            source; None or 0 disables them.
        watch_timeout: Server-side timeout of one watch stream in seconds.
        watch_backoff: Initial delay before restarting a failed watch.

    """

    kinds: tuple[ReplicatedKind, ...] = (ReplicatedKind.CONFIGMAP, ReplicatedKind.SECRET)
    workers: int = 2
    resync_period: float | None = 30.0
    watch_timeout: int = 300
    watch_backoff: float = 1.0


class KindController:
    """Reconciler, work queue and trigger router for one kind.

    Attributes:
        store: Object store for the kind.
        reconciler: Reconciler run by the workers.
        router: Trigger router translating events into keys.
        queue: Work queue of pending keys.

    """

    def __init__(self, store: KubeObjectStore, keys: ReplicationKeys, *, resync_period: float | None = None) -> None:
        self.store = store
        self.reconciler = Reconciler(store, keys, requeue_after=resync_period or None)
        self.router = TriggerRouter(keys)
        self.queue = WorkQueue()

    @property
    def kind(self) -> ReplicatedKind:
        return self.store.kind

    def enqueue(self, keys: Iterable[ObjectKey]) -> None:
        for key in keys:
            self.queue.add(key)
        metrics.workqueue_depth.labels(kind=self.kind.value).set(len(self.queue))

    def handle_source_event(self, event: WatchEvent) -> None:
        self.enqueue(self.router.requests_for_source_event(event))

    def handle_namespace_event(self, event: NamespaceEvent) -> None:
        """Re-enqueue every enabled source when a namespace is created."""
        if not self.router.is_namespace_trigger(event):
            return
        keys = self.router.requests_for_namespace_event(event, self.store.list_sources())
        ic(event.name, keys)
        if keys:
            logger.info(
                "Namespace %s created, re-checking %d %s source(s)", highlight(event.name), len(keys), self.kind.value
            )
        self.enqueue(keys)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile the next queued key.

        Args:
            timeout: Seconds to wait for a key.

        Returns:
            False if no key was available (timeout or shutdown).

        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False

        started = time.monotonic()
        try:
            result = self.reconciler.reconcile(key)
        except ReconcileError as err:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                "%s %s: %s step failed, retrying in %.3fs: %s", self.kind.value, highlight(key), err.step, delay, err
            )
            metrics.record_reconcile(self.kind, "error", time.monotonic() - started)
        except Exception:
            delay = self.queue.add_rate_limited(key)
            logger.exception("%s %s: unexpected error, retrying in %.3fs", self.kind.value, highlight(key), delay)
            metrics.record_reconcile(self.kind, "error", time.monotonic() - started)
        else:
            self.queue.forget(key)
            if result.requeue_after:
                self.queue.add_after(key, result.requeue_after)
            metrics.record_reconcile(self.kind, "success", time.monotonic() - started)
        finally:
            self.queue.done(key)
            metrics.workqueue_depth.labels(kind=self.kind.value).set(len(self.queue))
        return True

    def run_worker(self, stop: threading.Event) -> None:
        while not stop.is_set() and not self.queue.shutting_down:
            self.process_next(timeout=1.0)

    def __repr__(self) -> str:
        return f"KindController(kind={self.kind.value!r}, queue={self.queue!r})"


def _event_version(event: WatchEvent | NamespaceEvent) -> str | None:
    if isinstance(event, NamespaceEvent):
        return event.resource_version
    return event.object.resource_version


class _WatchLoop:
    """List-then-watch loop for one resource.

    Lists once to get a starting resourceVersion, hands the listed items
    to on_list, then streams events to on_event. Expired versions (410)
    trigger a fresh list. Any other failure, including one raised by a
    callback, marks the loop as not synced and re-lists after a backoff.
    """

    def __init__(
        self,
        name: str,
        list_fn: Callable[[], tuple[list[Any], str | None]],
        stream_fn: Callable[..., Iterator[Any]],
        on_list: Callable[[list[Any]], None],
        on_event: Callable[[Any], None],
        options: ManagerOptions,
    ) -> None:
        self.name = name
        self.list_fn = list_fn
        self.stream_fn = stream_fn
        self.on_list = on_list
        self.on_event = on_event
        self.options = options
        self.synced = threading.Event()
        self._watcher: watch.Watch | None = None
        self._lock = threading.Lock()

    def stop(self) -> None:
        with self._lock:
            if self._watcher is not None:
                self._watcher.stop()

    def run(self, stop: threading.Event) -> None:
        resource_version: str | None = None
        backoff = self.options.watch_backoff
        while not stop.is_set():
            try:
                if resource_version is None:
                    items, resource_version = self.list_fn()
                    self.on_list(items)
                    self.synced.set()

                watcher = watch.Watch()
                with self._lock:
                    self._watcher = watcher
                for event in self.stream_fn(
                    watcher, resource_version=resource_version, timeout_seconds=self.options.watch_timeout
                ):
                    if stop.is_set():
                        watcher.stop()
                        break
                    resource_version = _event_version(event) or resource_version
                    self.on_event(event)
                backoff = self.options.watch_backoff
            except StoreError as err:
                metrics.watch_restarts_total.labels(resource=self.name).inc()
                if err.status == _GONE:
                    logger.info("Watch on %s expired, re-listing", self.name)
                    resource_version = None
                    continue
                logger.warning("Watch on %s failed, re-listing in %.1fs: %s", self.name, backoff, err)
                self._fail(stop, backoff)
                resource_version = None
                backoff = min(backoff * 2, _MAX_WATCH_BACKOFF)
            except Exception:
                metrics.watch_restarts_total.labels(resource=self.name).inc()
                logger.exception("Watch on %s crashed, re-listing in %.1fs", self.name, backoff)
                self._fail(stop, backoff)
                resource_version = None
                backoff = min(backoff * 2, _MAX_WATCH_BACKOFF)

    def _fail(self, stop: threading.Event, backoff: float) -> None:
        """Mark the loop as not synced and wait before the next list.

        Events may have been missed, so the loop always starts over with a
        fresh list.
        """
        self.synced.clear()
        stop.wait(backoff)


class Manager:
    """Runs the kind controllers, their workers and the watch loops.

    Attributes:
        controllers: One KindController per replicated kind.
        namespace_store: Store used to list and watch namespaces.
        options: Engine options.

    """

    def __init__(
        self, controllers: list[KindController], namespace_store: KubeObjectStore, options: ManagerOptions
    ) -> None:
        if not controllers:
            raise ValueError("At least one controller is required")
        self.controllers = controllers
        self.namespace_store = namespace_store
        self.options = options
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._loops: list[_WatchLoop] = self._build_loops()

    @classmethod
    def for_cluster(cls, cluster: Cluster, keys: ReplicationKeys, options: ManagerOptions) -> "Manager":
        """Build a manager with one controller per configured kind."""
        controllers = [
            KindController(cluster.store(kind), keys, resync_period=options.resync_period) for kind in options.kinds
        ]
        return cls(controllers, controllers[0].store, options)

    def _build_loops(self) -> list[_WatchLoop]:
        loops = [
            _WatchLoop(
                name=controller.kind.value,
                list_fn=controller.store.list_sources_with_version,
                stream_fn=controller.store.stream_sources,
                on_list=lambda items, c=controller: c.enqueue(item.key for item in items),
                on_event=controller.handle_source_event,
                options=self.options,
            )
            for controller in self.controllers
        ]
        loops.append(
            _WatchLoop(
                name="Namespace",
                list_fn=self.namespace_store.list_namespaces_with_version,
                stream_fn=self.namespace_store.stream_namespaces,
                # Existing namespaces are covered by the initial source list.
                on_list=lambda items: None,
                on_event=self._fan_out_namespace_event,
                options=self.options,
            )
        )
        return loops

    def _fan_out_namespace_event(self, event: NamespaceEvent) -> None:
        for controller in self.controllers:
            try:
                controller.handle_namespace_event(event)
            except StoreError as err:
                # The periodic resync picks up the namespace later.
                logger.error("Failed to list %s sources for namespace %s: %s", controller.kind.value, event.name, err)

    def ready(self) -> bool:
        """Return True once every watch loop has completed its first list."""
        return all(loop.synced.is_set() for loop in self._loops) and not self._stop.is_set()

    def start(self) -> None:
        """Start the watch loops and the worker threads."""
        for loop in self._loops:
            self._spawn(f"watch-{loop.name}", loop.run)
        for controller in self.controllers:
            for index in range(self.options.workers):
                self._spawn(f"worker-{controller.kind.value}-{index}", controller.run_worker)
        logger.info(
            "Started controllers for %s with %d worker(s) each",
            ", ".join(highlight(c.kind.value) for c in self.controllers),
            self.options.workers,
        )

    def _spawn(self, name: str, target: Callable[[threading.Event], None]) -> None:
        thread = threading.Thread(target=target, args=(self._stop,), name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop every loop and worker, abandoning in-flight work."""
        self._stop.set()
        for loop in self._loops:
            loop.stop()
        for controller in self.controllers:
            controller.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Stopped controllers")

    def run(self, stop: threading.Event) -> None:
        """Run until stop is set."""
        self.start()
        try:
            stop.wait()
        finally:
            self.stop()

    def __repr__(self) -> str:
        return f"Manager(kinds={[c.kind.value for c in self.controllers]!r}, options={self.options!r})"
