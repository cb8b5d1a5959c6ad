"""Replication engine subpackage.

This package contains the glob filters, finalizer handling, replica
projection, convergence diff, the per-kind reconciler and the trigger
router.
"""

from replikator.replication.annotations import is_enabled, resolve_settings
from replikator.replication.controller import Reconciler
from replikator.replication.diff import ReplicaDelta, diff_replicas, replica_needs_update
from replikator.replication.filters import GlobFilter, compile_pattern, matches, split_patterns
from replikator.replication.finalizers import FinalizerManager
from replikator.replication.projector import project_replica
from replikator.replication.triggers import TriggerRouter

__all__ = [
    # annotations
    "is_enabled",
    "resolve_settings",
    # controller
    "Reconciler",
    # diff
    "ReplicaDelta",
    "diff_replicas",
    "replica_needs_update",
    # filters
    "GlobFilter",
    "compile_pattern",
    "matches",
    "split_patterns",
    # finalizers
    "FinalizerManager",
    # projector
    "project_replica",
    # triggers
    "TriggerRouter",
]
