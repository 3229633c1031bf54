"""Observability module for feedcursor."""

from feedcursor.observability.logging import configure_logging, get_logger
from feedcursor.observability.metrics import MetricsCollector, get_metrics_collector

__all__ = ["configure_logging", "get_logger", "MetricsCollector", "get_metrics_collector"]
