"""Prometheus metrics for the operator."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from replikator.models import ReplicatedKind

REGISTRY = CollectorRegistry()

reconcile_total = Counter(
    "replikator_reconcile_total",
    "Reconciliations by kind and result",
    ["kind", "result"],
    registry=REGISTRY,
)

reconcile_duration_seconds = Histogram(
    "replikator_reconcile_duration_seconds",
    "Time spent in a single reconciliation",
    ["kind"],
    registry=REGISTRY,
)

replica_writes_total = Counter(
    "replikator_replica_writes_total",
    "Replica create/update/delete calls issued",
    ["kind", "operation"],
    registry=REGISTRY,
)

workqueue_depth = Gauge(
    "replikator_workqueue_depth",
    "Requests waiting in the work queue",
    ["kind"],
    registry=REGISTRY,
)

watch_restarts_total = Counter(
    "replikator_watch_restarts_total",
    "Watch streams restarted after an error",
    ["resource"],
    registry=REGISTRY,
)


def record_write(kind: ReplicatedKind, operation: str) -> None:
    replica_writes_total.labels(kind=kind.value, operation=operation).inc()


def record_reconcile(kind: ReplicatedKind, result: str, duration: float) -> None:
    reconcile_total.labels(kind=kind.value, result=result).inc()
    reconcile_duration_seconds.labels(kind=kind.value).observe(duration)
