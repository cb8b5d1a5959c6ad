"""Process-wide key table for replikator.

The annotation names, the finalizer token and the managed-by label are
shared by every replicated kind. They are built once at startup, either
from a prefix or from a YAML file, and injected into the components that
need them.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from replikator.exceptions import ConfigurationError

DEFAULT_PREFIX = "replikator.pecke.tt"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "replikator"


@dataclass(frozen=True, slots=True)
class ReplicationKeys:
    """Annotation names, finalizer token and managed-by label.

    Attributes:
        enabled_annotation: Master switch annotation.
        replicate_to_annotation: Comma-separated namespace globs.
        replicate_keys_annotation: Comma-separated payload key globs.
        finalizer: Finalizer token guarding replica cleanup.
        managed_by_label: Label key injected into every replica.
        managed_by_value: Label value identifying this operator.

    """

    enabled_annotation: str
    replicate_to_annotation: str
    replicate_keys_annotation: str
    finalizer: str
    managed_by_label: str = MANAGED_BY_LABEL
    managed_by_value: str = MANAGED_BY_VALUE

    @classmethod
    def from_prefix(cls, prefix: str = DEFAULT_PREFIX) -> "ReplicationKeys":
        """Build the key table for an annotation prefix.

        Args:
            prefix: DNS-style prefix, e.g. 'replikator.pecke.tt'.

        Returns:
            A ReplicationKeys with every annotation under the prefix.

        Raises:
            ConfigurationError: If the prefix is empty.

        """
        prefix = prefix.strip().rstrip("/")
        if not prefix:
            raise ConfigurationError("Annotation prefix cannot be empty")
        return cls(
            enabled_annotation=f"{prefix}/enabled",
            replicate_to_annotation=f"{prefix}/replicate-to",
            replicate_keys_annotation=f"{prefix}/replicate-keys",
            finalizer=f"{prefix}/finalizer",
        )

    @classmethod
    def load(cls, path: str | Path) -> "ReplicationKeys":
        """Load the key table from a YAML file.

        The file may set 'prefix' and override any individual field,
        for example:

            prefix: example.com
            finalizer: example.com/cleanup

        Args:
            path: Path to the YAML file.

        Returns:
            The resulting ReplicationKeys.

        Raises:
            ConfigurationError: If the file is missing, malformed, or sets
                an unknown or empty key.

        """
        try:
            with open(path) as stream:
                document = yaml.safe_load(stream)
        except FileNotFoundError as err:
            raise ConfigurationError(f"Configuration file '{path}' does not exist") from err
        except yaml.YAMLError as err:
            raise ConfigurationError(f"Configuration file '{path}' contains malformed YAML: {err}") from err

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ConfigurationError(f"Configuration file '{path}' does not contain a YAML mapping")

        return cls.from_mapping(document)

    @classmethod
    def from_mapping(cls, document: dict[str, Any]) -> "ReplicationKeys":
        """Build the key table from an already parsed mapping."""
        overrides = dict(document)
        base = cls.from_prefix(str(overrides.pop("prefix", DEFAULT_PREFIX)))

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        values = {f.name: getattr(base, f.name) for f in fields(cls)}
        for name, value in overrides.items():
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"Configuration key '{name}' must be a non-empty string")
            values[name] = value.strip()

        return cls(**values)
