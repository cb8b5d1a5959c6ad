"""Custom exceptions for replikator.

This module defines the exception hierarchy used throughout the operator.
Everything raised by the reconciliation engine derives from
ReplikatorError, so a worker can treat any of them as a retryable failure.
"""


class ReplikatorError(Exception):
    """Base exception for all replikator errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all replikator errors with a single
    except clause if desired.
    """

    pass


class ConfigurationError(ReplikatorError):
    """Raised when the operator configuration cannot be loaded.

    This can occur when:
    - The configuration file does not exist
    - The file is not valid YAML or not a mapping
    - A key table entry is empty or has the wrong type
    """

    pass


class FilterPatternError(ReplikatorError):
    """Raised when a glob pattern in a filter annotation is malformed.

    A malformed pattern fails the whole reconciliation attempt; no filter
    is ever partially applied.
    """

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"malformed pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class StoreError(ReplikatorError):
    """Raised when a call to the Kubernetes API fails.

    Not-found responses never surface as StoreError; the store reports
    them as None or False instead.
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConflictError(StoreError):
    """Raised when a write loses an optimistic-concurrency race.

    The object was modified after it was read. The caller retries the
    whole reconciliation later, there is no internal retry loop.
    """

    pass


class ClusterConnectionError(StoreError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The cluster is unreachable
    - Authentication fails
    """

    pass


class ReconcileError(ReplikatorError):
    """Raised when a reconciliation attempt aborts.

    Attributes:
        key: Identity of the source object being reconciled.
        step: Name of the step that failed (load, protect, discover,
            teardown, project, converge).

    """

    def __init__(self, message: str, *, key: object, step: str) -> None:
        super().__init__(message)
        self.key = key
        self.step = step
