"""Build the desired replica for a source object."""

from replikator.models import TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY, Replica, SourceObject
from replikator.replication.filters import GlobFilter
from replikator.settings import ReplicationKeys


def project_replica(source: SourceObject, key_filter: GlobFilter, keys: ReplicationKeys) -> Replica:
    """Project a source object into a replica template.

    Labels are copied from the source and the managed-by marker is set on
    top. The payload holds every key selected by the key filter. TLS
    secrets always carry the certificate and private key fields, empty
    when they are filtered out, since the API server rejects TLS secrets
    without them.

    Args:
        source: The source object.
        key_filter: Filter over payload keys.
        keys: Key table providing the managed-by label.

    Returns:
        A replica template with an empty namespace; use
        Replica.for_namespace() to place it.

    """
    labels = dict(source.labels)
    labels[keys.managed_by_label] = keys.managed_by_value

    data: dict[str, str] = {}
    if source.is_tls:
        data[TLS_CERT_KEY] = ""
        data[TLS_PRIVATE_KEY_KEY] = ""

    for key, value in source.data.items():
        if key_filter.matches(key):
            data[key] = value

    binary_data = {key: value for key, value in source.binary_data.items() if key_filter.matches(key)}

    return Replica(
        kind=source.kind,
        name=source.name,
        namespace="",
        labels=labels,
        data=data,
        binary_data=binary_data,
        secret_type=source.secret_type,
    )
