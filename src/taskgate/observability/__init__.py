"""TaskGate observability helpers."""

from taskgate.observability.metrics import metrics

__all__ = ["metrics"]
