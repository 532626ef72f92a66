"""Pod list/watch source feeding the pod store and the event filter."""
