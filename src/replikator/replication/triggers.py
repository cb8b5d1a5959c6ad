"""Translate watch events into reconciliation requests.

The router is pure: it turns an event (and, for namespaces, a snapshot of
the source objects) into the keys to enqueue. Watching and enqueueing are
left to the manager.
"""

from collections.abc import Iterable

from replikator.models import NamespaceEvent, ObjectKey, SourceObject, WatchEvent
from replikator.replication.annotations import is_enabled
from replikator.settings import ReplicationKeys


class TriggerRouter:
    """Maps source and namespace events to reconciliation requests.

    Attributes:
        keys: Key table used to decide whether a source is enabled.

    """

    def __init__(self, keys: ReplicationKeys) -> None:
        self.keys = keys

    def requests_for_source_event(self, event: WatchEvent) -> list[ObjectKey]:
        """Every change to a source object reconciles that object.

        Deletions are included; the reconciler treats a missing object
        as already converged.
        """
        return [event.object.key]

    def is_namespace_trigger(self, event: NamespaceEvent) -> bool:
        """Return True if the event announces a new, live namespace."""
        return event.type == "ADDED" and not event.terminating

    def requests_for_namespace_event(
        self, event: NamespaceEvent, sources: Iterable[SourceObject]
    ) -> list[ObjectKey]:
        """A newly created namespace reconciles every enabled source.

        This fans out to all enabled sources regardless of their
        replicate-to filters; the reconciler decides whether the new
        namespace is a target.

        Args:
            event: The namespace event.
            sources: Current source objects of one kind.

        Returns:
            Keys of the enabled sources, or nothing for events other than
            the creation of a live namespace.

        """
        if not self.is_namespace_trigger(event):
            return []
        return [source.key for source in sources if is_enabled(source.annotations, self.keys)]
