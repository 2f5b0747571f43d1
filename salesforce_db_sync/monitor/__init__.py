from .logger import setup_logger
from .metrics import MetricsCollector

__all__ = ['setup_logger', 'MetricsCollector']
