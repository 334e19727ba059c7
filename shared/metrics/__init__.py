from shared.metrics.metrics import MetricsCollector

__all__ = ["MetricsCollector"]
