"""Resolve a source object's annotations into replication settings."""

from collections.abc import Mapping

from replikator.models import ReplicationSettings
from replikator.replication.filters import split_patterns
from replikator.settings import ReplicationKeys


def is_enabled(annotations: Mapping[str, str] | None, keys: ReplicationKeys) -> bool:
    """Return True if the enabled annotation is "true" (case-insensitive)."""
    if not annotations:
        return False
    return annotations.get(keys.enabled_annotation, "").lower() == "true"


def resolve_settings(annotations: Mapping[str, str] | None, keys: ReplicationKeys) -> ReplicationSettings:
    """Read the replication annotations of a source object.

    Patterns are split but not compiled here; compiling happens when the
    filters are built so a malformed pattern cannot get in the way of
    tearing down an object that is being deleted.

    Args:
        annotations: The object's annotations (may be None).
        keys: The annotation key table.

    Returns:
        The resolved ReplicationSettings.

    """
    annotations = annotations or {}
    return ReplicationSettings(
        enabled=is_enabled(annotations, keys),
        namespace_patterns=split_patterns(annotations.get(keys.replicate_to_annotation)),
        key_patterns=split_patterns(annotations.get(keys.replicate_keys_annotation)),
    )
