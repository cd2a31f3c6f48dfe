"""
Shared utilities for the proof server: logging setup, step timing,
request identifiers and overwrite-before-delete for sensitive files.
"""

import logging
import os
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

import numpy as np
import psutil

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    memory_mb: float
    timestamp: float
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None,
                  log_dir: Optional[Path] = None):
    """Setup root logging; a file handler is added when a log file or directory is given"""
    if log_file is None and log_dir is not None:
        log_file = Path(log_dir) / \
            f"proof_server_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        handlers=handlers
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if log_file is not None:
        logger.info(f"Logging initialized. Log file: {log_file}")
    return logging.getLogger("proof_server")


@dataclass
class OperationStats:
    """Running aggregates for one operation name"""
    count: int = 0
    failures: int = 0
    total_duration: float = 0.0
    total_squared: float = 0.0
    min_duration: float = float('inf')
    max_duration: float = 0.0
    peak_memory_mb: float = 0.0

    def add(self, metric: PerformanceMetrics):
        duration = metric.duration_seconds
        self.count += 1
        if metric.additional_data.get('exception'):
            self.failures += 1
        self.total_duration += duration
        self.total_squared += duration * duration
        self.min_duration = min(self.min_duration, duration)
        self.max_duration = max(self.max_duration, duration)
        self.peak_memory_mb = max(self.peak_memory_mb, metric.memory_mb)


class PerformanceMonitor:
    """Collects per-step timings across sessions.

    Totals are kept as running aggregates; only the most recent ``history``
    samples per operation are retained, for percentiles.
    """

    def __init__(self, history: int = 1000):
        self.history = history
        self.stats: Dict[str, OperationStats] = {}
        self.recent: Dict[str, Deque[PerformanceMetrics]] = {}
        self.process = psutil.Process()

    def start_operation(self, operation_name: str) -> 'OperationContext':
        return OperationContext(self, operation_name)

    def record_metric(self, metric: PerformanceMetrics):
        self.stats.setdefault(metric.operation, OperationStats()).add(metric)
        self.recent.setdefault(
            metric.operation, deque(maxlen=self.history)).append(metric)

    def current_memory_mb(self) -> float:
        try:
            return self.process.memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            logger.debug(f"Performance monitoring error: {e}")
            return 0.0

    def get_summary(self) -> Dict[str, Any]:
        summary = {
            'total_operations': sum(s.count for s in self.stats.values()),
            'total_duration': sum(s.total_duration for s in self.stats.values()),
            'operations': {}
        }

        for op_name, stats in self.stats.items():
            mean = stats.total_duration / stats.count
            variance = stats.total_squared / stats.count - mean * mean
            recent = np.array([m.duration_seconds for m in self.recent[op_name]])
            summary['operations'][op_name] = {
                'count': stats.count,
                'failures': stats.failures,
                'total_duration': stats.total_duration,
                'avg_duration': mean,
                'min_duration': stats.min_duration,
                'max_duration': stats.max_duration,
                'std_duration': float(np.sqrt(max(variance, 0.0))) if stats.count > 1 else 0.0,
                'p95_duration': float(np.percentile(recent, 95)),
                'peak_memory_mb': stats.peak_memory_mb
            }

        return summary

    def reset(self):
        self.stats.clear()
        self.recent.clear()


class OperationContext:
    """Context manager timing one operation"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = 0.0
        self.start_memory = 0.0

    def __enter__(self):
        self.start_time = time.time()
        self.start_memory = self.monitor.current_memory_mb()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        end_memory = self.monitor.current_memory_mb()

        metric = PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            memory_mb=max(self.start_memory, end_memory),
            timestamp=self.start_time,
            additional_data={'exception': exc_type is not None}
        )

        self.monitor.record_metric(metric)


def create_performance_report(monitor: PerformanceMonitor) -> str:
    """Human-readable summary of recorded step timings"""
    summary = monitor.get_summary()

    lines = ["PROOF SERVER PERFORMANCE REPORT"]
    lines.append(f"Total operations: {summary['total_operations']}")
    lines.append(f"Total duration: {summary['total_duration']:.3f}s")

    for op_name, stats in summary['operations'].items():
        lines.append(
            f"  {op_name}: count={stats['count']} failures={stats['failures']} "
            f"avg={stats['avg_duration']:.3f}s std={stats['std_duration']:.3f}s "
            f"p95={stats['p95_duration']:.3f}s "
            f"min={stats['min_duration']:.3f}s max={stats['max_duration']:.3f}s "
            f"peak_rss={stats['peak_memory_mb']:.1f}MB")

    return "\n".join(lines)


def generate_secure_id(prefix: str = "", length: int = 32) -> str:
    """Random hex identifier; the timestamp part only aids sorting"""
    random_part = secrets.token_hex(length // 2)
    timestamp = int(time.time() * 1000) % 1000000  # Last 6 digits of timestamp

    if prefix:
        return f"{prefix}_{timestamp}_{random_part}"
    return f"{timestamp}_{random_part}"


def secure_delete(path: Union[str, Path]) -> bool:
    """Overwrite a file with zeros and unlink it; returns False if it could not be removed"""
    path = Path(path)
    if not path.exists():
        return True

    try:
        size = path.stat().st_size
        with open(path, 'r+b') as f:
            f.write(b'\0' * size)
            f.flush()
            os.fsync(f.fileno())
        path.unlink()
        return True
    except OSError as e:
        logger.error(f"Secure delete failed for {path.name}: {e}")
        return False
