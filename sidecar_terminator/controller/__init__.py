"""Reconciliation engine: filter, queue, reconciler, terminator and worker pool."""
