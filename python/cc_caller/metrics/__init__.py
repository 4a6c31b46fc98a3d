"""Metrics collection module."""
from .collector import MetricsCollector, get_metrics

__all__ = ["MetricsCollector", "get_metrics"]
