"""Finalizer handling for source objects.

The finalizer is the only thing keeping a deleted source object around
until its replicas are gone. Adding and removing it are single
optimistic-concurrency patches; a lost race surfaces as ConflictError and
is retried by the caller, never looped here.
"""

import logging

from replikator.models import SourceObject
from replikator.store import ObjectStore

logger = logging.getLogger(__name__)


class FinalizerManager:
    """Adds and removes the replication finalizer.

    Attributes:
        store: Store used to patch the source object.
        token: The finalizer token.

    """

    def __init__(self, store: ObjectStore, token: str) -> None:
        self.store = store
        self.token = token

    def is_protected(self, source: SourceObject) -> bool:
        """Return True if the source carries the finalizer."""
        return self.token in source.finalizers

    def ensure_present(self, source: SourceObject) -> SourceObject:
        """Attach the finalizer if it is missing.

        Args:
            source: The source object as last read.

        Returns:
            The source object after the change (unchanged if it was
            already protected).

        Raises:
            ConflictError: If the object changed since it was read.
            StoreError: If the patch fails.

        """
        if self.is_protected(source):
            return source
        logger.info("Adding finalizer to %s %s", source.kind.value, source.key)
        return self.store.patch_finalizers(source, [*source.finalizers, self.token])

    def ensure_absent(self, source: SourceObject) -> SourceObject:
        """Remove the finalizer if it is present.

        Args:
            source: The source object as last read.

        Returns:
            The source object after the change.

        Raises:
            ConflictError: If the object changed since it was read.
            StoreError: If the patch fails.

        """
        if not self.is_protected(source):
            return source
        logger.info("Removing finalizer from %s %s", source.kind.value, source.key)
        return self.store.patch_finalizers(source, [f for f in source.finalizers if f != self.token])
