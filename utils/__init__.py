"""Utilities for the proof server."""

from .utils import (
    setup_logging,
    PerformanceMonitor,
    create_performance_report,
    generate_secure_id,
    secure_delete
)

__all__ = [
    'setup_logging',
    'PerformanceMonitor',
    'create_performance_report',
    'generate_secure_id',
    'secure_delete'
]
