"""Kubernetes Event recording for reconciliation outcomes."""

from sidecar_terminator.notifications.recorder import EventRecorder

__all__ = ["EventRecorder"]
