"""Compute the delta between existing and desired replicas.

Replicas are compared by namespace only. The comparison is pairwise,
which is fine for the tens of namespaces a source is expected to span.
"""

from collections.abc import Sequence
from typing import NamedTuple

from replikator.models import Replica


class ReplicaDelta(NamedTuple):
    """Replicas to remove and replicas to create.

    Attributes:
        to_delete: Existing replicas whose namespace is no longer desired.
        to_upsert: Desired replicas whose namespace has no replica yet.

    """

    to_delete: list[Replica]
    to_upsert: list[Replica]


def diff_replicas(existing: Sequence[Replica], desired: Sequence[Replica]) -> ReplicaDelta:
    """Diff existing replicas against desired ones by namespace name.

    A namespace present in both inputs appears in neither output list;
    content changes inside such a namespace are not this function's
    concern (see replica_needs_update).

    Args:
        existing: Replicas discovered in the cluster.
        desired: Replicas projected from the source.

    Returns:
        The ReplicaDelta.

    """
    to_delete = [
        current
        for current in existing
        if not any(current.namespace == wanted.namespace for wanted in desired)
    ]
    to_upsert = [
        wanted
        for wanted in desired
        if not any(current.namespace == wanted.namespace for current in existing)
    ]
    return ReplicaDelta(to_delete=to_delete, to_upsert=to_upsert)


def replica_needs_update(current: Replica, wanted: Replica) -> bool:
    """Return True if an existing replica differs from its template."""
    return (
        current.labels != wanted.labels
        or current.data != wanted.data
        or current.binary_data != wanted.binary_data
        or current.secret_type != wanted.secret_type
    )
