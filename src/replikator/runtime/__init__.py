"""Operator runtime subpackage.

This package contains the work queue, the manager that runs the watch
loops and worker threads, and the metrics and health endpoints.
"""
