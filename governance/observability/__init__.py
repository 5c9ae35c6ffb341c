"""
Observability module - Logging, Metrics, and Tracing.
"""

from governance.observability.logging import get_logger, log_context, setup_logging
from governance.observability.metrics import metrics
from governance.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
